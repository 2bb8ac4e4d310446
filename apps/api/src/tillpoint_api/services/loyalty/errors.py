"""Exceptions raised by the loyalty ledger and the engines built on it."""

from __future__ import annotations

from uuid import UUID


class LoyaltyError(RuntimeError):
    """Base class for loyalty domain failures."""


class CustomerNotFoundError(LoyaltyError):
    """Customer is unknown or belongs to another tenant."""

    def __init__(self, customer_id: UUID | str) -> None:
        super().__init__(f"Customer {customer_id} not found")
        self.customer_id = customer_id


class InactiveCustomerError(CustomerNotFoundError):
    """Customer exists but is deactivated and may not accrue or spend points."""

    def __init__(self, customer_id: UUID | str) -> None:
        LoyaltyError.__init__(self, f"Customer {customer_id} is inactive")
        self.customer_id = customer_id


class InsufficientPointsError(LoyaltyError):
    def __init__(self, available: int, requested: int) -> None:
        super().__init__(f"Insufficient points: available {available}, requested {requested}")
        self.available = available
        self.requested = requested

    @property
    def shortfall(self) -> int:
        return max(self.requested - self.available, 0)


class InvalidTransactionTypeError(LoyaltyError):
    """Sign of the points delta does not match the transaction type."""


class ConcurrencyConflictError(LoyaltyError):
    """Ledger append kept losing races after every retry."""

    def __init__(self, attempts: int, detail: str | None = None) -> None:
        message = f"Ledger write conflicted after {attempts} attempts"
        if detail:
            message = f"{message}: {detail}"
        super().__init__(message)
        self.attempts = attempts


class OfferNotFoundError(LoyaltyError):
    def __init__(self, offer_id: UUID | str) -> None:
        super().__init__(f"Offer {offer_id} not found")
        self.offer_id = offer_id


class SchedulerItemFailedError(LoyaltyError):
    """One customer in a batch job failed; siblings keep going."""

    def __init__(self, customer_id: UUID | str, cause: BaseException) -> None:
        super().__init__(f"Customer {customer_id} failed: {cause}")
        self.customer_id = customer_id
        self.cause = cause


__all__ = [
    "ConcurrencyConflictError",
    "CustomerNotFoundError",
    "InactiveCustomerError",
    "InsufficientPointsError",
    "InvalidTransactionTypeError",
    "LoyaltyError",
    "OfferNotFoundError",
    "SchedulerItemFailedError",
]
