"""Payback — the recipient retires debt tokens to the project issuer.

The amount that counts is what the ledger shows leaving the recipient's
account, not what the caller asked to send: the recipient's debt balance
is read before and after the transfer and the difference is compared with
the oracle's amount due for the period.

Two layers:
- PaybackLedger performs the transfer and classifies the observed payment.
- RepaymentService applies a classified payment to the project's books
  (balance left, carried credit, stage) under the project lock.

Over-payment policy: the excess over the effective due is carried as
credit and reduces the next period's due. The due never exceeds the
balance left, so the last instalment can close the project. A tendered
amount short of the due is refused before any transfer. A shortfall seen
only after the transfer is reported as an error; the period stays unpaid,
but the balance left follows the tokens that reached the issuer.
"""

from __future__ import annotations

import enum
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from typing import Callable, Optional

from openfinancing.engine.funding import FundingStateMachine, PaybackApplication
from openfinancing.engine.locks import ProjectLocks
from openfinancing.errors import ConsistencyError, UnderPaymentError, ValidationError
from openfinancing.identity.keys import Keypair
from openfinancing.identity.session import SessionContext
from openfinancing.ledger.adapter import LedgerAdapter
from openfinancing.models.project import Project
from openfinancing.notify.notifier import NotificationDispatcher
from openfinancing.notify.templates import NotificationKind, render
from openfinancing.oracle import PriceOracle
from openfinancing.persistence.event_log import EventKind, EventLog
from openfinancing.persistence.repository import EntityRepository

logger = logging.getLogger(__name__)


class PaybackClass(str, enum.Enum):
    UNDER = "under"
    EXACT = "exact"
    OVER = "over"


@dataclass(frozen=True)
class PaybackOutcome:
    """What the ledger showed for one payback."""
    classification: PaybackClass
    tendered: Decimal
    paid: Decimal
    due: Decimal
    balance_before: Decimal
    balance_after: Decimal
    tx_ref: str

    @property
    def shortfall(self) -> Decimal:
        return max(Decimal("0"), self.due - self.paid)

    @property
    def excess(self) -> Decimal:
        return max(Decimal("0"), self.paid - self.due)


def classify(paid: Decimal, due: Decimal) -> PaybackClass:
    if paid < due:
        return PaybackClass.UNDER
    if paid > due:
        return PaybackClass.OVER
    return PaybackClass.EXACT


class PaybackLedger:
    """Submits a payback and measures it.

    Usage:
        ledger = PaybackLedger(adapter, FixedPriceOracle())
        outcome = ledger.payback(recipient_keys, debt_code, issuer_address, Decimal("200"))
    """

    def __init__(self, adapter: LedgerAdapter, oracle: PriceOracle) -> None:
        self._adapter = adapter
        self._oracle = oracle

    def amount_due(
        self,
        debt_code: str,
        credit: Decimal = Decimal("0"),
        ceiling: Optional[Decimal] = None,
    ) -> Decimal:
        """Oracle due less carried credit, capped at ceiling (the debt still owed)."""
        due = max(Decimal("0"), self._oracle.amount_due(debt_code) - credit)
        if ceiling is not None:
            due = min(due, ceiling)
        return due

    def payback(
        self,
        recipient: Keypair,
        debt_code: str,
        issuer_address: str,
        amount: Decimal,
        credit: Decimal = Decimal("0"),
        ceiling: Optional[Decimal] = None,
    ) -> PaybackOutcome:
        """Return amount of debt tokens to the issuer and classify the result.

        Raises:
            ValidationError: amount is not positive or exceeds the holding.
            UnderPaymentError: amount is short of the due (nothing submitted),
                or the observed payment fell short; ``outcome`` then holds
                the measured balances.
        """
        if amount <= Decimal("0"):
            raise ValidationError(f"Payback amount must be positive, got {amount}")
        before = self._adapter.get_asset_balance(recipient.address, debt_code, issuer_address)
        if before < amount:
            raise ValidationError(
                f"{recipient.address} holds {before} {debt_code}, cannot pay back {amount}"
            )
        due = self.amount_due(debt_code, credit, ceiling)
        if amount < due:
            raise UnderPaymentError(
                f"Tendered {amount} {debt_code} against {due} due; short by {due - amount}",
                due=due,
            )

        tx = self._adapter.transfer_to_issuer(recipient, debt_code, issuer_address, amount)
        after = self._adapter.get_asset_balance(recipient.address, debt_code, issuer_address)
        paid = before - after
        outcome = PaybackOutcome(
            classification=classify(paid, due),
            tendered=amount,
            paid=paid,
            due=due,
            balance_before=before,
            balance_after=after,
            tx_ref=tx,
        )
        logger.info("Payback of %s %s: balance %s -> %s, paid %s, due %s (%s)",
                    amount, debt_code, before, after, paid, due,
                    outcome.classification.value)
        if outcome.classification == PaybackClass.UNDER:
            raise UnderPaymentError(
                f"Paid {paid} {debt_code} against {due} due; short by {outcome.shortfall}",
                due=due,
                outcome=outcome,
            )
        return outcome


@dataclass(frozen=True)
class RepaymentResult:
    project: Project
    outcome: PaybackOutcome
    application: PaybackApplication


class RepaymentService:
    """Applies paybacks to projects.

    Usage:
        service = RepaymentService(repo, PaybackLedger(adapter, oracle), oracle, dispatcher)
        result = service.payback(project_index=1, recipient_index=2,
                                 amount=Decimal("200"), session=session)
    """

    def __init__(
        self,
        repository: EntityRepository,
        ledger: PaybackLedger,
        oracle: PriceOracle,
        dispatcher: NotificationDispatcher,
        event_log: Optional[EventLog] = None,
        locks: Optional[ProjectLocks] = None,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ) -> None:
        self._repo = repository
        self._ledger = ledger
        self._oracle = oracle
        self._dispatcher = dispatcher
        self._events = event_log
        self._locks = locks or ProjectLocks()
        self._clock = clock

    def payback(
        self,
        project_index: int,
        recipient_index: int,
        amount: Decimal,
        session: SessionContext,
    ) -> RepaymentResult:
        with self._locks.hold(("project", project_index)):
            project = self._repo.get_project(project_index)
            recipient = self._repo.get_recipient(recipient_index)
            FundingStateMachine.check_repayable(project)
            if recipient.index != project.recipient_index:
                raise ValidationError(
                    f"Recipient {recipient.index} does not owe on project {project.index}"
                )
            recipient_keys = session.require_recipient()
            if recipient_keys.address != recipient.address:
                raise ValidationError(
                    f"Session recipient key does not belong to recipient {recipient.index}"
                )
            if project.debt_asset_code is None or project.issuer_address is None:
                raise ConsistencyError(f"Project {project.index} is funded but has no debt token")

            oracle_due = self._oracle.amount_due(project.debt_asset_code)
            try:
                outcome = self._ledger.payback(
                    recipient_keys,
                    project.debt_asset_code,
                    project.issuer_address,
                    amount,
                    credit=project.payback_credit,
                    ceiling=project.balance_left,
                )
            except UnderPaymentError as e:
                payload = {
                    "project_index": project.index,
                    "amount": str(amount),
                    "reason": e.message,
                }
                if e.outcome is not None:
                    FundingStateMachine.record_shortfall(project, e.outcome.paid)
                    self._repo.put_project(project)
                    payload["paid"] = str(e.outcome.paid)
                    payload["balance_left"] = str(project.balance_left)
                    payload["tx_ref"] = e.outcome.tx_ref
                self._record_event(EventKind.PAYBACK_REJECTED, recipient.index, payload)
                raise

            application = FundingStateMachine.record_payback(
                project, outcome.paid, oracle_due, now=self._clock()
            )
            self._repo.put_project(project)
            self._record_event(EventKind.PAYBACK_RECORDED, recipient.index, {
                "project_index": project.index,
                "paid": str(outcome.paid),
                "due": str(outcome.due),
                "classification": outcome.classification.value,
                "balance_left": str(project.balance_left),
                "payback_credit": str(project.payback_credit),
                "tx_ref": outcome.tx_ref,
            })
            if application.closed:
                self._record_event(EventKind.PROJECT_CLOSED, recipient.index, {
                    "project_index": project.index,
                })
            if recipient.notify:
                self._dispatcher.dispatch(render(
                    NotificationKind.PAYBACK, recipient.email, project.index,
                    {"Payback": outcome.tx_ref},
                    {"Paid": str(outcome.paid), "Balance left": str(project.balance_left)},
                ))
            return RepaymentResult(project=project, outcome=outcome, application=application)

    def _record_event(self, kind: EventKind, recipient_index: int, payload: dict) -> None:
        if self._events is not None:
            self._events.record(kind, f"recipient:{recipient_index}", payload, now=self._clock())
