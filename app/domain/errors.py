# app/domain/errors.py
"""
Error taxonomy for the filing engine.

Every error carries enough structure (field identifiers, states, versions)
for the API layer to route the user to the exact section that needs work.
"""

from __future__ import annotations

from typing import Iterable


class FilingError(Exception):
    """Base class for all filing engine errors."""

    code = "filing_error"

    def to_dict(self) -> dict:
        return {"code": self.code, "message": str(self)}


class ValidationError(FilingError):
    """Missing or malformed input; recoverable by user input."""

    code = "validation_error"

    def __init__(self, field_ids: str | Iterable[str], message: str = ""):
        if isinstance(field_ids, str):
            field_ids = [field_ids]
        self.field_ids: list[str] = list(field_ids)
        super().__init__(message or f"Invalid or missing fields: {', '.join(self.field_ids)}")

    def to_dict(self) -> dict:
        return {**super().to_dict(), "field_ids": self.field_ids}


class DuplicateFiling(ValidationError):
    """An in-progress filing already exists for the same owner/year/filing_for key."""

    code = "duplicate_filing"

    def __init__(self, existing_filing_id: str):
        self.existing_filing_id = existing_filing_id
        super().__init__(
            "filing_for",
            f"A filing is already in progress for this assessment year (id={existing_filing_id})",
        )


class InvalidTransition(FilingError):
    """Illegal lifecycle move."""

    code = "invalid_transition"

    def __init__(self, current: str, attempted: str, allowed: Iterable[str] = ()):
        self.current = current
        self.attempted = attempted
        self.allowed = list(allowed)
        super().__init__(
            f"Cannot transition from '{current}' to '{attempted}'. "
            f"Allowed: {self.allowed}"
        )

    def to_dict(self) -> dict:
        return {
            **super().to_dict(),
            "current": self.current,
            "attempted": self.attempted,
            "allowed": self.allowed,
        }


class BuildError(FilingError):
    """Schema assembly blocked by missing mandatory data."""

    code = "build_error"

    def __init__(self, field_ids: str | Iterable[str], itr_type: str = "", message: str = ""):
        if isinstance(field_ids, str):
            field_ids = [field_ids]
        self.field_ids: list[str] = list(field_ids)
        self.itr_type = itr_type
        super().__init__(
            message or f"Cannot build {itr_type or 'return'}: missing {', '.join(self.field_ids)}"
        )

    def to_dict(self) -> dict:
        return {**super().to_dict(), "field_ids": self.field_ids, "itr_type": self.itr_type}


class ConcurrentModification(FilingError):
    """Stale write: the filing changed since the caller last read it."""

    code = "concurrent_modification"

    def __init__(self, filing_id: str, expected_version: int, actual_version: int | None):
        self.filing_id = filing_id
        self.expected_version = expected_version
        self.actual_version = actual_version
        super().__init__(
            f"Filing {filing_id} was modified concurrently "
            f"(expected version {expected_version}, found {actual_version})"
        )

    def to_dict(self) -> dict:
        return {
            **super().to_dict(),
            "expected_version": self.expected_version,
            "actual_version": self.actual_version,
        }


class SubmissionError(FilingError):
    """External gateway failure."""

    code = "submission_error"

    def __init__(
        self,
        message: str,
        *,
        retriable: bool = True,
        timed_out: bool = False,
        status_code: int | None = None,
    ):
        self.retriable = retriable
        self.timed_out = timed_out
        self.status_code = status_code
        super().__init__(message)

    def to_dict(self) -> dict:
        return {
            **super().to_dict(),
            "retriable": self.retriable,
            "timed_out": self.timed_out,
        }


class ImmutableStateViolation(FilingError):
    """Attempted edit on a submitted, verified, processed or voided filing."""

    code = "immutable_state"

    def __init__(self, filing_id: str, status: str, operation: str):
        self.filing_id = filing_id
        self.status = status
        self.operation = operation
        super().__init__(
            f"Filing {filing_id} is '{status}' and cannot be modified ({operation}). "
            "File a revised return instead."
        )

    def to_dict(self) -> dict:
        return {**super().to_dict(), "status": self.status, "operation": self.operation}


class PermissionDenied(FilingError):
    code = "permission_denied"

    def __init__(self, action: str, role: str):
        self.action = action
        self.role = role
        super().__init__(f"Role '{role}' is not allowed to perform '{action}'")


class FilingNotFound(FilingError):
    code = "not_found"

    def __init__(self, filing_id: str):
        self.filing_id = filing_id
        super().__init__(f"Filing {filing_id} not found")
