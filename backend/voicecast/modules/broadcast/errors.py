"""Broadcast error taxonomy.

Expected control flow (validation, eligibility, limits, payment) is raised
as one of these and converted into a structured rejection by the
orchestrator. Only ``TransientError`` is worth retrying as-is.
"""

from typing import Any, Optional


class BroadcastError(Exception):
    """Base exception for broadcast operations."""

    error_code: str = "INTERNAL_ERROR"
    http_status: int = 500

    def __init__(
        self,
        message: str,
        detail: Optional[dict[str, Any]] = None,
        error_code: Optional[str] = None,
    ):
        self.message = message
        self.detail = detail or {}
        if error_code:
            self.error_code = error_code
        super().__init__(message)


class ValidationError(BroadcastError):
    """Malformed or missing input."""
    error_code = "VALIDATION_ERROR"
    http_status = 400


class EligibilityError(BroadcastError):
    """Sender is not allowed to broadcast or reply."""
    error_code = "FORBIDDEN"
    http_status = 403


class LimitError(BroadcastError):
    """Rate limit hit. ``error_code`` names which limit."""
    error_code = "DAILY_LIMIT_EXCEEDED"
    http_status = 429


class PaymentError(BroadcastError):
    """Wallet balance is below the broadcast cost."""
    error_code = "PAYMENT_REQUIRED"
    http_status = 402

    def __init__(self, balance_needed: int, current_balance: int):
        super().__init__(
            "Insufficient balance for broadcast",
            detail={"balanceNeeded": balance_needed, "currentBalance": current_balance},
        )


class NotFoundError(BroadcastError):
    error_code = "NOT_FOUND"
    http_status = 404


class ConflictError(BroadcastError):
    error_code = "ALREADY_REPLIED"
    http_status = 409


class TransientError(BroadcastError):
    """Storage or transport I/O failure. Safe to retry the whole operation."""
    error_code = "INTERNAL_ERROR"
    http_status = 500


class InternalError(BroadcastError):
    error_code = "INTERNAL_ERROR"
    http_status = 500
