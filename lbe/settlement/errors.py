"""Settlement error taxonomy."""

from __future__ import annotations

from typing import Any


class SettlementError(Exception):
    """Base class for all settlement errors."""


class ValidationFailure(SettlementError):
    """A transition precondition does not hold. Never retried automatically."""

    code = "VALIDATION_FAILURE"

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(f"{self.code}: {message}")

    def to_dict(self) -> dict[str, Any]:
        return {"code": self.code, "message": self.message}


class InvalidRecord(ValidationFailure):
    code = "INVALID_RECORD"


class EventNotFound(ValidationFailure):
    code = "EVENT_NOT_FOUND"


class IdentityMismatch(ValidationFailure):
    code = "IDENTITY_MISMATCH"


class InvalidParameters(ValidationFailure):
    code = "INVALID_PARAMETERS"


class InvalidProjectDetails(ValidationFailure):
    code = "INVALID_PROJECT_DETAILS"


class TimeWindowViolation(ValidationFailure):
    code = "TIME_WINDOW_VIOLATION"


class EventAlreadyCancelled(ValidationFailure):
    code = "EVENT_ALREADY_CANCELLED"


class EventNotCancelled(ValidationFailure):
    code = "EVENT_NOT_CANCELLED"


class OwnerMismatch(ValidationFailure):
    code = "OWNER_MISMATCH"


class OutstandingSellers(ValidationFailure):
    code = "OUTSTANDING_SELLERS"


class ManagerAlreadyCollected(ValidationFailure):
    code = "MANAGER_ALREADY_COLLECTED"


class ManagerNotCollected(ValidationFailure):
    code = "MANAGER_NOT_COLLECTED"


class OrderAlreadyCollected(ValidationFailure):
    code = "ORDER_ALREADY_COLLECTED"


class OrderNotCollected(ValidationFailure):
    code = "ORDER_NOT_COLLECTED"


class InvalidBatch(ValidationFailure):
    code = "INVALID_BATCH"


class CollectionIncomplete(ValidationFailure):
    code = "COLLECTION_INCOMPLETE"


class RaiseBelowMinimum(ValidationFailure):
    code = "RAISE_BELOW_MINIMUM"


class MinimumRaiseReached(ValidationFailure):
    code = "MINIMUM_RAISE_REACHED"


class PoolAlreadyCreated(ValidationFailure):
    code = "POOL_ALREADY_CREATED"


class PoolNotCreated(ValidationFailure):
    code = "POOL_NOT_CREATED"


class LiquidityTooLow(ValidationFailure):
    code = "LIQUIDITY_TOO_LOW"


class FactoryMismatch(ValidationFailure):
    code = "FACTORY_MISMATCH"


class WithdrawalExceedsBalance(ValidationFailure):
    code = "WITHDRAWAL_EXCEEDS_BALANCE"


class OrderBelowMinimum(ValidationFailure):
    code = "ORDER_BELOW_MINIMUM"


class RefundsOutstanding(ValidationFailure):
    code = "REFUNDS_OUTSTANDING"


class LedgerError(SettlementError):
    """Failure reported by the ledger collaborator."""


class LedgerConflict(LedgerError):
    """A consumed record was already spent by a concurrent submission."""

    def __init__(self, message: str, refs: list[str] | None = None) -> None:
        self.refs = refs or []
        super().__init__(message)


class LedgerUnavailable(LedgerError):
    """The ledger could not be read or written."""


class LedgerRejected(LedgerError):
    """The ledger refused a transition (e.g. outside its validity range)."""
