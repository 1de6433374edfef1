"""Domain exceptions shared by the mart and accrual services."""

from __future__ import annotations


class LoyaltyError(RuntimeError):
    """Base exception for order pipeline failures."""


class ValidationError(LoyaltyError):
    """Raised for malformed input: bad Luhn number, bad body, bad reward type."""


class ConflictError(LoyaltyError):
    """Raised when a unique resource is already owned by someone else."""


class InsufficientFundsError(LoyaltyError):
    """Raised when a withdrawal exceeds the spendable balance."""

    def __init__(self, requested: object, available: object | None = None) -> None:
        message = f"Insufficient funds for withdrawal of {requested}"
        if available is not None:
            message = f"{message} (available {available})"
        super().__init__(message)
        self.requested = requested
        self.available = available


class StorageError(LoyaltyError):
    """Raised when the ledger store rejects or fails an operation."""


class NotFoundError(LoyaltyError):
    """Raised when a referenced user or order does not exist."""


class OrderQueueFullError(LoyaltyError):
    """Raised by the worker pool when intake is full and overflow is rejected."""


class PoolClosedError(LoyaltyError):
    """Raised when work is submitted to a pool that is shutting down."""


class PoolShutdownTimeoutError(LoyaltyError):
    """Raised when draining the worker pool exceeds the caller's timeout."""

    def __init__(self, pending: int, timeout: float) -> None:
        super().__init__(f"{pending} order task(s) still running after {timeout:.1f}s shutdown timeout")
        self.pending = pending
        self.timeout = timeout


__all__ = [
    "ConflictError",
    "InsufficientFundsError",
    "LoyaltyError",
    "NotFoundError",
    "OrderQueueFullError",
    "PoolClosedError",
    "PoolShutdownTimeoutError",
    "StorageError",
    "ValidationError",
]
