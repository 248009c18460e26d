"""Typed ledger failures surfaced to callers of the service layer."""

from __future__ import annotations

from decimal import Decimal
from typing import Any, Dict, Optional


class LedgerError(Exception):
    """Base class for every failure raised by the ledger core."""

    code = "ledger_error"
    status_code = 400

    def __init__(self, message: str, **extra: Any):
        super().__init__(message)
        self.message = message
        self.extra: Dict[str, Any] = {
            key: (str(value) if isinstance(value, Decimal) else value) for key, value in extra.items()
        }

    def to_dict(self) -> Dict[str, Any]:
        return {"error": self.code, "detail": self.message, **self.extra}


# NotFound


class NotFound(LedgerError):
    code = "not_found"
    status_code = 404


class MemberNotFound(NotFound):
    code = "member_not_found"


class CardNotFound(NotFound):
    code = "card_not_found"


class StoreNotFound(NotFound):
    code = "store_not_found"


class SettlementNotFound(NotFound):
    code = "settlement_not_found"


# Conflict


class Conflict(LedgerError):
    code = "conflict"
    status_code = 409


class DuplicateActiveCard(Conflict):
    code = "duplicate_active_card"


class ConflictingActiveCard(Conflict):
    code = "conflicting_active_card"


class CardSpaceExhausted(Conflict):
    code = "card_space_exhausted"
    status_code = 503


class StoreAlreadyRegistered(Conflict):
    code = "store_already_registered"


# InvalidState


class InvalidState(LedgerError):
    code = "invalid_state"
    status_code = 409


class AlreadyCompleted(InvalidState):
    code = "already_completed"


# LimitExceeded


class LimitExceeded(LedgerError):
    code = "limit_exceeded"
    status_code = 422


class InsufficientBalance(LimitExceeded):
    code = "insufficient_balance"


class DailyLimitExceeded(LimitExceeded):
    code = "daily_limit_exceeded"


class ExceedsPending(LimitExceeded):
    code = "exceeds_pending"


class ExceedsRemaining(LimitExceeded):
    code = "exceeds_remaining"


# ValidationError


class ValidationFailed(LedgerError):
    code = "validation_failed"
    status_code = 422


class LedgerTimeout(LedgerError):
    code = "ledger_timeout"
    status_code = 503


def require_positive(amount: Any, field: str = "amount") -> Decimal:
    """Parse a money amount, rejecting non-positive input and sub-paisa precision."""
    try:
        value = Decimal(str(amount))
    except (ArithmeticError, TypeError, ValueError) as exc:
        raise ValidationFailed(f"{field} must be a number", field=field) from exc
    if not value.is_finite():
        raise ValidationFailed(f"{field} must be a number", field=field)
    if value <= 0:
        raise ValidationFailed(f"{field} must be greater than 0", field=field)
    return require_cents(value, field)


def require_cents(value: Decimal, field: str = "amount") -> Decimal:
    """Return ``value`` at two decimals; finer precision is rejected, never rounded."""
    try:
        cents = value.quantize(Decimal("0.01"))
    except ArithmeticError as exc:
        raise ValidationFailed(f"{field} is out of range", field=field) from exc
    if cents != value:
        raise ValidationFailed(f"{field} must have at most two decimal places", field=field)
    return cents


def require_member_ref(member_ref: Optional[Any]) -> int:
    """GR numbers are positive integers; reject anything else before querying."""
    try:
        value = int(str(member_ref).strip())
    except (TypeError, ValueError) as exc:
        raise ValidationFailed("GR number must be a valid number", field="member_ref") from exc
    if value <= 0:
        raise ValidationFailed("GR number must be a valid number", field="member_ref")
    return value
