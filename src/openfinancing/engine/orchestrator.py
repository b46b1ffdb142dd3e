"""Investment orchestrator — the Invest operation end to end.

An investment runs these steps, each of which may touch the ledger:

    1. bootstrap   create the project issuer if needed and fund its reserve
    2. pay         move the payment token to the platform, verify arrival
    3. trust       investor opens a trust line to the project's token
    4. mint        issuer mints the investor token to the investor
    5. book        money raised, investor and project records updated
    6. notify      best-effort message to the investor
    7. complete    if the raise target is met: deliver debt and payback
                   tokens to the recipient, freeze the issuer
    8. settle      cursor closed

The ledger is not transactional with the store, so progress is kept in an
InvestmentRecord persisted after every step. Retrying with the same
investment id skips what already went through. Booking is guarded by the
investment id on the project record, and funding completion tops balances
up to their targets instead of minting blindly, so neither can run twice.

All precondition checks run before step 1. A call refused there has
submitted nothing to the ledger and written nothing to the store. Every
call holds the project's lock from the first read to the last write.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from typing import Callable, Optional

from openfinancing.assets.resolver import resolve_asset_code
from openfinancing.config import EngineConfig
from openfinancing.engine.funding import FundingStateMachine
from openfinancing.engine.issuers import IssuerRegistry
from openfinancing.engine.locks import ProjectLocks
from openfinancing.engine.payments import PaymentCollector
from openfinancing.errors import (
    ConsistencyError,
    IssuerFrozenError,
    LedgerError,
    ValidationError,
)
from openfinancing.identity.keys import Keypair
from openfinancing.identity.session import SessionContext
from openfinancing.ledger.adapter import LedgerAdapter
from openfinancing.models.assets import INVESTMENT_ROLES, AssetRole
from openfinancing.models.investment import InvestmentRecord, InvestmentStep
from openfinancing.models.participants import Investor, Recipient
from openfinancing.models.project import Project
from openfinancing.notify.notifier import NotificationDispatcher
from openfinancing.notify.templates import NotificationKind, render
from openfinancing.persistence.event_log import EventKind, EventLog
from openfinancing.persistence.repository import EntityRepository

logger = logging.getLogger(__name__)

MONTHS_PER_YEAR = 12


@dataclass(frozen=True)
class InvestmentOutcome:
    """Final state of a successful Invest call."""
    project: Project
    record: InvestmentRecord
    funded: bool


class InvestmentOrchestrator:
    """Runs investments and funding completion against one ledger and store.

    Usage:
        orchestrator = InvestmentOrchestrator(repo, adapter, issuers, config, dispatcher)
        outcome = orchestrator.invest(
            project_index=1, investor_index=3, recipient_index=2,
            amount=Decimal("600"), role=AssetRole.INVESTOR, session=session,
        )
    """

    def __init__(
        self,
        repository: EntityRepository,
        adapter: LedgerAdapter,
        issuers: IssuerRegistry,
        config: EngineConfig,
        dispatcher: NotificationDispatcher,
        event_log: Optional[EventLog] = None,
        locks: Optional[ProjectLocks] = None,
        payments: Optional[PaymentCollector] = None,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ) -> None:
        self._repo = repository
        self._adapter = adapter
        self._issuers = issuers
        self._config = config
        self._dispatcher = dispatcher
        self._events = event_log
        self._locks = locks or ProjectLocks()
        self._payments = payments or PaymentCollector(adapter, config)
        self._clock = clock

    @property
    def locks(self) -> ProjectLocks:
        return self._locks

    # ------------------------------------------------------------------
    # Invest
    # ------------------------------------------------------------------

    def invest(
        self,
        project_index: int,
        investor_index: int,
        recipient_index: int,
        amount: Decimal,
        role: AssetRole,
        session: SessionContext,
        investment_id: Optional[str] = None,
    ) -> InvestmentOutcome:
        """Invest amount of the payment token into a project.

        Raises:
            ValidationError: a precondition failed; nothing was submitted.
            LedgerError: a ledger call failed; ``step`` names the last
                durable step. Retry with the same investment_id.
            ConsistencyError: ledger and bookkeeping disagree.
        """
        if role not in INVESTMENT_ROLES:
            raise ValidationError(f"Cannot invest in {role.value} tokens")
        if amount <= Decimal("0"):
            raise ValidationError(f"Investment amount must be positive, got {amount}")

        with self._locks.hold(("project", project_index)):
            project = self._repo.get_project(project_index)
            investor = self._repo.get_investor(investor_index)
            recipient = self._repo.get_recipient(recipient_index)
            investor_keys = session.require_investor()

            record = self._load_cursor(
                investment_id, project_index, investor_index, recipient_index, amount, role
            )
            if record.step == InvestmentStep.SETTLED:
                logger.info("Investment %s already settled", record.investment_id)
                return InvestmentOutcome(project, record, FundingStateMachine.is_funded(project))

            if not record.has_completed(InvestmentStep.PAID):
                self._check_preconditions(
                    project, investor, recipient, amount, role, session, investor_keys
                )
            if record.step == InvestmentStep.STARTED:
                record.created_utc = record.created_utc or self._clock()
                self._save_cursor(record)

            try:
                funded = self._run_steps(
                    project, investor, recipient, record, session, investor_keys
                )
            except LedgerError as e:
                if e.step is None:
                    e.step = record.step.value
                logger.warning("Investment %s stopped after %s: %s",
                               record.investment_id, record.step.value, e)
                raise
            return InvestmentOutcome(project, record, funded)

    def _run_steps(
        self,
        project: Project,
        investor: Investor,
        recipient: Recipient,
        record: InvestmentRecord,
        session: SessionContext,
        investor_keys: Keypair,
    ) -> bool:
        amount = record.amount

        if not record.has_completed(InvestmentStep.BOOTSTRAPPED):
            boot = self._issuers.bootstrap(project.index, session.issuer_password, session.platform)
            if project.issuer_address is None:
                project.issuer_address = boot.address
                self._repo.put_project(project)
                self._record_event(EventKind.ISSUER_BOOTSTRAPPED, f"project:{project.index}", {
                    "project_index": project.index,
                    "issuer": boot.address,
                })
            self._advance(record, InvestmentStep.BOOTSTRAPPED, boot.funding_tx)

        if not record.has_completed(InvestmentStep.PAID):
            tx = self._payments.collect(investor_keys, session.platform.address, amount)
            self._advance(record, InvestmentStep.PAID, tx)

        if not record.has_completed(InvestmentStep.TRUSTED):
            code = resolve_asset_code(record.role, project.identity_string())
            if project.asset_code(record.role) != code:
                project.set_asset_code(record.role, code)
                self._repo.put_project(project)
            record.asset_code = code
            tx = self._adapter.create_trust_line(
                investor_keys, self._issuer_address(project), code, project.total_value
            )
            self._advance(record, InvestmentStep.TRUSTED, tx)

        if not record.has_completed(InvestmentStep.MINTED):
            if project.issuer_frozen:
                raise IssuerFrozenError(
                    f"Investment {record.investment_id} was paid but project "
                    f"{project.index} is already funded and its issuer frozen; "
                    f"refund required"
                )
            if amount > project.remaining:
                raise ConsistencyError(
                    f"Investment {record.investment_id} was paid but only "
                    f"{project.remaining} remains on project {project.index}; refund required"
                )
            issuer = self._issuers.retrieve(project.index, session.issuer_password)
            tx = self._adapter.mint_and_send(issuer, record.asset_code, investor.address, amount)
            self._advance(record, InvestmentStep.MINTED, tx)

        if not record.has_completed(InvestmentStep.BOOKED):
            self._book(project, investor, record)
            self._advance(record, InvestmentStep.BOOKED)
            self._notify_investor(project, investor, record)

        funded = False
        if FundingStateMachine.needs_completion(project):
            funded = self._complete_funding(project, recipient, session)

        self._advance(record, InvestmentStep.SETTLED)
        logger.info("Investment %s settled: %s into project %s (%s/%s raised)",
                    record.investment_id, amount, project.index,
                    project.money_raised, project.total_value)
        return funded

    def _check_preconditions(
        self,
        project: Project,
        investor: Investor,
        recipient: Recipient,
        amount: Decimal,
        role: AssetRole,
        session: SessionContext,
        investor_keys: Keypair,
    ) -> None:
        FundingStateMachine.check_investable(project, amount, self._reserved(project.index))
        if recipient.index != project.recipient_index:
            raise ValidationError(
                f"Recipient {recipient.index} is not the recipient of project {project.index}"
            )
        if investor_keys.address != investor.address:
            raise ValidationError(
                f"Session investor key does not belong to investor {investor.index}"
            )
        if role == AssetRole.SEED and project.investor_asset_code is not None:
            raise ValidationError(
                f"Seed round for project {project.index} is closed: "
                f"investor tokens are already issued"
            )
        if amount == project.remaining:
            recipient_keys = session.require_recipient()
            if recipient_keys.address != recipient.address:
                raise ValidationError(
                    f"Session recipient key does not belong to recipient {recipient.index}"
                )
        FundingStateMachine.ensure_mintable(project)
        self._payments.check_funds(investor.address, amount)

    def _book(self, project: Project, investor: Investor, record: InvestmentRecord) -> None:
        # Project write is the commit point; the investor write follows it.
        if not project.has_booked(record.investment_id):
            FundingStateMachine.record_investment(project, record.amount, record.investment_id)
            indices = (
                project.seed_investor_indices if record.role == AssetRole.SEED
                else project.investor_indices
            )
            if investor.index not in indices:
                indices.append(investor.index)
            self._repo.put_project(project)
            self._record_event(EventKind.INVESTMENT_BOOKED, f"investor:{investor.index}", {
                "investment_id": record.investment_id,
                "project_index": project.index,
                "amount": str(record.amount),
                "role": record.role.value,
                "asset_code": record.asset_code,
                "money_raised": str(project.money_raised),
            })
        # Investor records span projects; re-read under the investor lock.
        with self._locks.hold(("investor", investor.index)):
            current = self._repo.get_investor(investor.index)
            if current.record_investment(record.amount, record.asset_code, record.investment_id):
                self._repo.put_investor(current)

    # ------------------------------------------------------------------
    # Funding completion
    # ------------------------------------------------------------------

    def complete_funding(self, project_index: int, session: SessionContext) -> bool:
        """Deliver debt and payback tokens for a fully raised project.

        Returns True if this call completed funding, False if the project
        was already funded. Safe to call repeatedly.
        """
        with self._locks.hold(("project", project_index)):
            project = self._repo.get_project(project_index)
            recipient = self._repo.get_recipient(project.recipient_index)
            return self._complete_funding(project, recipient, session)

    def _complete_funding(
        self, project: Project, recipient: Recipient, session: SessionContext
    ) -> bool:
        if FundingStateMachine.is_funded(project):
            logger.info("Project %s already funded; nothing to mint", project.index)
            self._sync_recipient(project, recipient)
            return False
        FundingStateMachine.check_completable(project)
        FundingStateMachine.ensure_mintable(project)

        recipient_keys = session.require_recipient()
        if recipient_keys.address != recipient.address:
            raise ValidationError(
                f"Session recipient key does not belong to recipient {recipient.index}"
            )
        issuer = self._issuers.retrieve(project.index, session.issuer_password)
        identity = project.identity_string()
        debt_code = resolve_asset_code(AssetRole.DEBT, identity)
        payback_code = resolve_asset_code(AssetRole.PAYBACK, identity)

        payback_amount = Decimal(project.years * MONTHS_PER_YEAR)
        debt_amount = project.total_value
        txs: dict[str, str] = {}

        txs["payback_trust"] = self._adapter.create_trust_line(
            recipient_keys, issuer.address, payback_code,
            payback_amount * self._config.payback_trust_multiplier,
        )
        tx = self._mint_to_target(issuer, payback_code, recipient.address, payback_amount)
        if tx:
            txs["payback_mint"] = tx
        txs["debt_trust"] = self._adapter.create_trust_line(
            recipient_keys, issuer.address, debt_code,
            debt_amount * self._config.debt_trust_multiplier,
        )
        tx = self._mint_to_target(issuer, debt_code, recipient.address, debt_amount)
        if tx:
            txs["debt_mint"] = tx

        freeze_tx = self._issuers.freeze(project.index, session.issuer_password)
        if freeze_tx:
            txs["freeze"] = freeze_tx

        project.set_asset_code(AssetRole.DEBT, debt_code)
        project.set_asset_code(AssetRole.PAYBACK, payback_code)
        FundingStateMachine.mark_funded(project, self._clock())
        self._repo.put_project(project)
        self._sync_recipient(project, recipient)

        self._record_event(EventKind.PROJECT_FUNDED, f"project:{project.index}", {
            "project_index": project.index,
            "recipient_index": recipient.index,
            "debt_asset_code": debt_code,
            "payback_asset_code": payback_code,
            "tx_refs": txs,
        })
        self._record_event(EventKind.ISSUER_FROZEN, f"project:{project.index}", {
            "project_index": project.index,
            "issuer": issuer.address,
        })
        logger.info("Project %s funded: %s %s and %s %s delivered to recipient %s",
                    project.index, debt_amount, debt_code,
                    payback_amount, payback_code, recipient.index)
        if recipient.notify:
            self._dispatcher.dispatch(render(
                NotificationKind.PROJECT_FUNDED, recipient.email, project.index, txs,
            ))
        return True

    def _mint_to_target(
        self, issuer: Keypair, code: str, destination: str, target: Decimal
    ) -> Optional[str]:
        """Mint only what the destination is missing from target."""
        held = self._adapter.get_asset_balance(destination, code, issuer.address)
        if held > target:
            raise ConsistencyError(
                f"{destination} holds {held} {code}, more than the {target} "
                f"ever due; refusing to mint"
            )
        if held == target:
            logger.info("%s already holds %s %s", destination, target, code)
            return None
        return self._adapter.mint_and_send(issuer, code, destination, target - held)

    def _sync_recipient(self, project: Project, recipient: Recipient) -> None:
        with self._locks.hold(("recipient", recipient.index)):
            current = self._repo.get_recipient(recipient.index)
            changed = False
            if (project.debt_asset_code
                    and project.debt_asset_code not in current.received_debt_assets):
                current.received_debt_assets.append(project.debt_asset_code)
                changed = True
            if (project.payback_asset_code
                    and project.payback_asset_code not in current.received_payback_assets):
                current.received_payback_assets.append(project.payback_asset_code)
                changed = True
            if changed:
                self._repo.put_recipient(current)

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _reserved(self, project_index: int) -> Decimal:
        return sum(
            (r.amount for r in self._repo.list_investments()
             if r.project_index == project_index and r.awaits_booking),
            Decimal("0"),
        )

    def _load_cursor(
        self,
        investment_id: Optional[str],
        project_index: int,
        investor_index: int,
        recipient_index: int,
        amount: Decimal,
        role: AssetRole,
    ) -> InvestmentRecord:
        if investment_id is not None:
            existing = self._repo.find_investment(investment_id)
            if existing is not None:
                if not existing.matches(project_index, investor_index, amount, role):
                    raise ValidationError(
                        f"Investment id {investment_id} was used for a different investment"
                    )
                logger.info("Resuming investment %s after %s",
                            investment_id, existing.step.value)
                return existing
        return InvestmentRecord(
            investment_id=investment_id or new_investment_id(),
            project_index=project_index,
            investor_index=investor_index,
            recipient_index=recipient_index,
            amount=amount,
            role=role,
        )

    def _advance(
        self, record: InvestmentRecord, step: InvestmentStep, tx_ref: Optional[str] = None
    ) -> None:
        record.advance(step, tx_ref, now=self._clock())
        self._save_cursor(record)

    def _save_cursor(self, record: InvestmentRecord) -> None:
        self._repo.put_investment(record)

    @staticmethod
    def _issuer_address(project: Project) -> str:
        if project.issuer_address is None:
            raise ConsistencyError(f"Project {project.index} has no issuer")
        return project.issuer_address

    def _notify_investor(
        self, project: Project, investor: Investor, record: InvestmentRecord
    ) -> None:
        if not investor.notify:
            return
        kind = (
            NotificationKind.SEED_INVESTMENT if record.role == AssetRole.SEED
            else NotificationKind.INVESTMENT
        )
        txs = {
            "Payment": record.tx_refs.get(InvestmentStep.PAID.value, ""),
            "Trust line": record.tx_refs.get(InvestmentStep.TRUSTED.value, ""),
            "Tokens issued": record.tx_refs.get(InvestmentStep.MINTED.value, ""),
        }
        self._dispatcher.dispatch(render(kind, investor.email, project.index, txs, {
            "Amount": str(record.amount),
            "Asset": record.asset_code or "",
        }))

    def _record_event(self, kind: EventKind, actor_id: str, payload: dict) -> None:
        if self._events is not None:
            self._events.record(kind, actor_id, payload, now=self._clock())


def new_investment_id() -> str:
    return f"inv_{uuid.uuid4().hex[:16]}"
