"""Error taxonomy for the financing engine.

Every failure the engine can report falls into one of four families:

- ValidationError: a precondition failed before any ledger operation was
  submitted. Nothing happened; the caller may retry after fixing input.
- LedgerError: a ledger submission or query failed. May be transient; the
  caller retries the whole operation (the step cursor lets it resume).
- ConsistencyError: observed ledger state disagrees with bookkeeping, or an
  operation was attempted out of order. Fatal for the call, must reach an
  operator, never silently retried.
- NotificationError: best-effort delivery failed. Always logged and
  swallowed by the dispatcher, never propagated to callers.
"""

from __future__ import annotations

from typing import Optional


class FinancingError(Exception):
    """Base class for all engine errors."""

    code = "financing_error"
    retry_safe = False

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class ValidationError(FinancingError, ValueError):
    """A precondition failed. No ledger operation was performed."""

    code = "validation_error"
    retry_safe = True


class NotFoundError(ValidationError):
    """A referenced entity does not exist in the store."""

    code = "not_found"


class InsufficientBalanceError(ValidationError):
    """The investor cannot cover the requested amount."""

    code = "insufficient_balance"


class OverSubscriptionError(ValidationError):
    """The amount would push money raised above the project's total value."""

    code = "over_subscription"


class LedgerError(FinancingError):
    """A ledger submission or query failed.

    ``step`` names the last investment step that was durably recorded
    before the failure, so callers can tell how far the attempt got.
    """

    code = "ledger_error"
    retry_safe = True

    def __init__(self, message: str, step: Optional[str] = None) -> None:
        super().__init__(message)
        self.step = step


class ConsistencyError(FinancingError):
    """Ledger state and bookkeeping disagree. Requires manual reconciliation."""

    code = "consistency_error"


class PaymentMismatchError(ConsistencyError):
    """The platform did not observe the expected payment."""

    code = "payment_mismatch"


class InvalidStateError(ConsistencyError):
    """A lifecycle transition was attempted out of order."""

    code = "invalid_state"


class IssuerFrozenError(ConsistencyError):
    """A mint was attempted against an issuer that has been frozen."""

    code = "issuer_frozen"


class UnderPaymentError(FinancingError):
    """A payback covered less than the amount due for the period.

    Raised before the transfer when the tendered amount is short; nothing
    moved and the call is safe to retry with a larger amount. Raised after
    the transfer when the observed payment fell short; ``outcome`` then
    carries the measured balances and the tokens have already left the
    recipient's account, so the call is not retry-safe.
    """

    code = "under_payment"

    def __init__(
        self, message: str, due: object = None, outcome: object = None
    ) -> None:
        super().__init__(message)
        self.due = due
        self.outcome = outcome
        self.retry_safe = outcome is None


class NotificationError(FinancingError):
    """Notification delivery failed. Never propagated past the dispatcher."""

    code = "notification_error"
    retry_safe = True
