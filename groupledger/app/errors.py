"""
errors.py — AppError hierarchy and error code registry.

Every error returned by the GroupLedger API uses a code defined here.
Do not raise strings or generic exceptions from service or route code.

Taxonomy:
  ValidationError     — bad input (split/percentage mismatch, non-positive
                        amount, missing field). Rejected with no state change.
  NotFoundError       — referenced user/group/expense does not exist.
  ConcurrencyConflict — a balance edge was changed by another writer between
                        read and write. Recoverable by retrying with a fresh read.
  InvariantViolation  — both directions of a balance edge are present. Fatal
                        for the request; the ledger refuses to guess.

Error codes are a versioned contract. Messages are human-readable prose and
may be improved at any time.
"""

from __future__ import annotations


class AppError(Exception):

    def __init__(
            self,
            code: str,
            message: str,
            http_status: int,
            field: str | None = None,
    ) -> None:
        super().__init__(message)
        self.code        = code
        self.message     = message
        self.http_status = http_status
        self.field       = field  # which request field caused the error

    def to_dict(self) -> dict:
        payload = {
            "code":    self.code,
            "message": self.message,
        }
        if self.field is not None:
            payload["field"] = self.field
        return {"error": payload}

    def __repr__(self) -> str:
        return (
            f"{type(self).__name__}(code={self.code!r}, "
            f"http_status={self.http_status}, "
            f"message={self.message!r})"
        )


class ValidationError(AppError):
    """Input rejected before any ledger state changes. Defaults to 422."""

    def __init__(self, code: str, message: str, field: str | None = None,
                 http_status: int = 422) -> None:
        super().__init__(code, message, http_status, field=field)


class NotFoundError(AppError):

    def __init__(self, code: str, message: str, field: str | None = None) -> None:
        super().__init__(code, message, 404, field=field)


class ConcurrencyConflict(AppError):

    def __init__(self, message: str) -> None:
        super().__init__(ErrorCode.CONCURRENT_UPDATE, message, 409)


class InvariantViolation(AppError):

    def __init__(self, message: str) -> None:
        super().__init__(ErrorCode.LEDGER_INVARIANT_VIOLATION, message, 500)


# ── Error Code Registry ────────────────────────────────────────────────────
#
# Organised by category. HTTP status is indicated in the comment.
# These are the string values sent in the API response.
# ──────────────────────────────────────────────────────────────────────────

class ErrorCode:

    # ── Schema / Input Errors (400) ────────────────────────────────────────
    MISSING_FIELD              = "MISSING_FIELD"
    INVALID_FIELD              = "INVALID_FIELD"
    INVALID_AMOUNT_PRECISION   = "INVALID_AMOUNT_PRECISION"
    INVALID_SPLIT_TYPE         = "INVALID_SPLIT_TYPE"
    VALUES_SENT_FOR_EQUAL_SPLIT = "VALUES_SENT_FOR_EQUAL_SPLIT"
    DUPLICATE_SPLIT_USER       = "DUPLICATE_SPLIT_USER"
    NO_FIELDS_TO_UPDATE        = "NO_FIELDS_TO_UPDATE"
    MISSING_LOOKUP_KEY         = "MISSING_LOOKUP_KEY"

    # ── Conflict Errors (409) ──────────────────────────────────────────────
    DUPLICATE_EMAIL            = "DUPLICATE_EMAIL"
    DUPLICATE_USERNAME         = "DUPLICATE_USERNAME"
    ALREADY_MEMBER             = "ALREADY_MEMBER"
    CONCURRENT_UPDATE          = "CONCURRENT_UPDATE"
    MEMBER_HAS_BALANCE         = "MEMBER_HAS_BALANCE"

    # ── Not Found Errors (404) ─────────────────────────────────────────────
    USER_NOT_FOUND             = "USER_NOT_FOUND"
    GROUP_NOT_FOUND            = "GROUP_NOT_FOUND"
    EXPENSE_NOT_FOUND          = "EXPENSE_NOT_FOUND"

    # ── Business Rule Violations (422) ────────────────────────────────────
    INVALID_AMOUNT             = "INVALID_AMOUNT"
    NO_PARTICIPANTS            = "NO_PARTICIPANTS"
    SPLIT_COUNT_MISMATCH       = "SPLIT_COUNT_MISMATCH"
    SPLIT_SUM_MISMATCH         = "SPLIT_SUM_MISMATCH"
    PERCENTAGE_SUM_MISMATCH    = "PERCENTAGE_SUM_MISMATCH"
    PAYER_NOT_MEMBER           = "PAYER_NOT_MEMBER"
    SPLIT_USER_NOT_MEMBER      = "SPLIT_USER_NOT_MEMBER"
    RECIPIENT_NOT_MEMBER       = "RECIPIENT_NOT_MEMBER"
    NOT_GROUP_MEMBER           = "NOT_GROUP_MEMBER"
    SELF_SETTLEMENT            = "SELF_SETTLEMENT"
    EXPENSE_DELETED            = "EXPENSE_DELETED"

    # ── System Errors (500) ────────────────────────────────────────────────
    LEDGER_INVARIANT_VIOLATION = "LEDGER_INVARIANT_VIOLATION"
    INTERNAL_ERROR             = "INTERNAL_ERROR"


# ── Warning Code Registry ──────────────────────────────────────────────────
#
# Warnings are returned alongside a 2xx response in the `warnings` array.
# They do not block the request.
# ──────────────────────────────────────────────────────────────────────────

class WarningCode:

    # Settlement amount exceeds the payer's current debt to the recipient.
    # Still recorded; the surplus flips the edge direction.
    OVERPAYMENT = "OVERPAYMENT"

    # Equal split shares do not add up to the expense total exactly.
    SPLIT_REMAINDER = "SPLIT_REMAINDER"
