"""Funding state machine — stage rules for a project's raise and repayment.

Decides whether an investment may be accepted, when a project counts as
funded, and how a confirmed payback moves the outstanding balance. It
never talks to the ledger: the orchestrator asks it first and acts on the
answer, so a refused transition costs no ledger operations.

State machine:
    PROPOSED → OPEN → PARTIALLY_FUNDED → FUNDED → IN_REPAYMENT → CLOSED
    FUNDED → CLOSED when a single payback retires the whole balance

Funding completes exactly once. A second completion request against a
project already in a post-funding stage is answered with "already done",
never with a second mint.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional

from openfinancing.errors import (
    InvalidStateError,
    IssuerFrozenError,
    OverSubscriptionError,
    ValidationError,
)
from openfinancing.models.project import (
    POST_FUNDING_STAGES,
    Project,
    ProjectStage,
)

_ZERO = Decimal("0")


@dataclass(frozen=True)
class PaybackApplication:
    """What a confirmed payback did to the project's books."""
    paid: Decimal
    credit_used: Decimal
    credit_added: Decimal
    balance_left: Decimal
    closed: bool


class FundingStateMachine:
    """Stage rules for one project at a time. Stateless.

    Usage:
        FundingStateMachine.check_investable(project, amount)
        ...ledger steps...
        FundingStateMachine.record_investment(project, amount, investment_id)
        if FundingStateMachine.needs_completion(project):
            ...mint debt and payback tokens...
            FundingStateMachine.mark_funded(project, now)
    """

    @staticmethod
    def open(project: Project) -> None:
        project.transition_to(ProjectStage.OPEN)

    @staticmethod
    def check_investable(
        project: Project, amount: Decimal, reserved: Decimal = _ZERO
    ) -> None:
        """Raise ValidationError if the project cannot take this amount now.

        reserved is capacity held by investments that were paid but not
        yet booked; they resume ahead of any new investor.
        """
        if amount <= _ZERO:
            raise ValidationError(f"Investment amount must be positive, got {amount}")
        if not project.accepts_investment:
            raise ValidationError(
                f"Project {project.index} is {project.stage.value} "
                f"and not accepting investment"
            )
        if amount > project.remaining - reserved:
            raise OverSubscriptionError(
                f"Investing {amount} would exceed project {project.index} total value: "
                f"{project.money_raised} of {project.total_value} raised, "
                f"{reserved} held by paid investments awaiting delivery, "
                f"{project.remaining - reserved} remaining"
            )

    @staticmethod
    def ensure_mintable(project: Project) -> None:
        """Fail before any ledger contact if the project's issuer is frozen."""
        if project.issuer_frozen:
            raise IssuerFrozenError(
                f"Issuer {project.issuer_address} of project {project.index} is frozen; "
                f"no further tokens can be minted"
            )

    @staticmethod
    def record_investment(project: Project, amount: Decimal, investment_id: str) -> None:
        """Book a delivered investment into money_raised."""
        if not project.accepts_investment:
            raise InvalidStateError(
                f"Cannot book investment on project {project.index} "
                f"in stage {project.stage.value}"
            )
        project.record_raise(amount, investment_id)
        if project.stage == ProjectStage.OPEN:
            project.transition_to(ProjectStage.PARTIALLY_FUNDED)

    @staticmethod
    def is_funded(project: Project) -> bool:
        """True once debt and payback tokens were delivered and the issuer frozen."""
        return (
            project.stage in POST_FUNDING_STAGES
            and project.debt_asset_code is not None
            and project.issuer_frozen
        )

    @staticmethod
    def needs_completion(project: Project) -> bool:
        return project.is_fully_raised and not FundingStateMachine.is_funded(project)

    @staticmethod
    def check_completable(project: Project) -> None:
        """Raise InvalidStateError unless funding completion may run now."""
        if project.stage != ProjectStage.PARTIALLY_FUNDED:
            raise InvalidStateError(
                f"Project {project.index} is {project.stage.value}; "
                f"funding can only complete from partially_funded"
            )
        if not project.is_fully_raised:
            raise InvalidStateError(
                f"Project {project.index} has raised {project.money_raised} "
                f"of {project.total_value}; funding is not complete"
            )

    @staticmethod
    def mark_funded(project: Project, now: Optional[datetime] = None) -> None:
        """Record completion. Debt and payback codes must already be set."""
        if project.debt_asset_code is None or project.payback_asset_code is None:
            raise InvalidStateError(
                f"Project {project.index} cannot be marked funded without "
                f"debt and payback asset codes"
            )
        project.transition_to(ProjectStage.FUNDED)
        project.balance_left = project.total_value
        project.issuer_frozen = True
        project.date_funded = now or datetime.now(timezone.utc)

    # ------------------------------------------------------------------
    # Repayment
    # ------------------------------------------------------------------

    @staticmethod
    def check_repayable(project: Project) -> None:
        if project.stage not in (ProjectStage.FUNDED, ProjectStage.IN_REPAYMENT):
            raise InvalidStateError(
                f"Project {project.index} is {project.stage.value}; "
                f"paybacks are accepted only once funded and before closing"
            )

    @staticmethod
    def effective_due(project: Project, oracle_due: Decimal) -> Decimal:
        """Amount due this period after applying carried-over credit."""
        return max(_ZERO, oracle_due - project.payback_credit)

    @staticmethod
    def record_payback(
        project: Project,
        paid: Decimal,
        oracle_due: Decimal,
        now: Optional[datetime] = None,
    ) -> PaybackApplication:
        """Apply a confirmed, non-short payback to the project's books.

        Credit from earlier over-payments is consumed first; any excess of
        this payment over the effective due becomes new credit. The
        balance left never goes below zero.
        """
        FundingStateMachine.check_repayable(project)
        effective = FundingStateMachine.effective_due(project, oracle_due)
        credit_used = oracle_due - effective
        credit_added = max(_ZERO, paid - effective)
        project.payback_credit = project.payback_credit - credit_used + credit_added
        project.balance_left = max(_ZERO, project.balance_left - paid)
        project.date_last_paid = now or datetime.now(timezone.utc)

        closed = project.balance_left == _ZERO
        if closed:
            project.transition_to(ProjectStage.CLOSED)
        elif project.stage == ProjectStage.FUNDED:
            project.transition_to(ProjectStage.IN_REPAYMENT)
        return PaybackApplication(
            paid=paid,
            credit_used=credit_used,
            credit_added=credit_added,
            balance_left=project.balance_left,
            closed=closed,
        )

    @staticmethod
    def record_shortfall(project: Project, paid: Decimal) -> PaybackApplication:
        """Apply debt that left the recipient in a payment short of the due.

        The period stays unpaid: no credit moves and date_last_paid is kept.
        Only the balance left follows the tokens, so it keeps matching the
        recipient's debt holding.
        """
        FundingStateMachine.check_repayable(project)
        project.balance_left = max(_ZERO, project.balance_left - paid)
        closed = project.balance_left == _ZERO
        if closed:
            project.transition_to(ProjectStage.CLOSED)
        elif paid > _ZERO and project.stage == ProjectStage.FUNDED:
            project.transition_to(ProjectStage.IN_REPAYMENT)
        return PaybackApplication(
            paid=paid,
            credit_used=_ZERO,
            credit_added=_ZERO,
            balance_left=project.balance_left,
            closed=closed,
        )
