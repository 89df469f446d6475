"""
Error types shared by the services and the HTTP layer.

Services raise these; main.py turns every one of them into a JSON body
of the form {"error": message, "details": ...}.
"""

from typing import Any, Optional

from sqlalchemy.exc import DBAPIError, IntegrityError


class AppError(Exception):
    status_code = 500

    def __init__(self, message: str, details: Optional[Any] = None, status_code: Optional[int] = None):
        super().__init__(message)
        self.message = message
        self.details = details
        if status_code is not None:
            self.status_code = status_code

    def to_dict(self) -> dict:
        payload = {"error": self.message}
        if self.details is not None:
            payload["details"] = self.details
        return payload


class ValidationError(AppError):
    status_code = 400


class SchemaError(AppError):
    status_code = 400


class NotFoundError(AppError):
    status_code = 404


class ConflictError(AppError):
    status_code = 409


class CapabilityDisabledError(AppError):
    status_code = 503


class PersistenceError(AppError):
    pass


class PipelineError(AppError):
    """Row processing failed; the batch was recorded as failed and nothing else persisted."""

    def __init__(self, message: str, batch_id: Optional[int] = None, **kwargs):
        super().__init__(message, **kwargs)
        self.batch_id = batch_id


# Postgres SQLSTATE codes and the SQLite messages for the same violations
_UNIQUE = ("23505", "UNIQUE constraint failed")
_FOREIGN_KEY = ("23503", "FOREIGN KEY constraint failed")
_NOT_NULL = ("23502", "NOT NULL constraint failed")
_INVALID_INPUT = ("22P02",)


def _matches(orig, markers) -> bool:
    code = getattr(orig, "pgcode", None) or getattr(orig, "sqlstate", None)
    if code and code in markers:
        return True
    text = str(orig)
    return any(marker in text for marker in markers if not marker[0].isdigit())


def map_database_error(exc: Exception) -> Exception:
    """Translate a driver error into a PersistenceError; anything else is returned as-is."""
    if not isinstance(exc, DBAPIError):
        return exc

    orig = exc.orig
    if isinstance(exc, IntegrityError) and _matches(orig, _UNIQUE):
        return PersistenceError("Duplicate value violates unique constraint", status_code=409)
    if _matches(orig, _FOREIGN_KEY):
        return PersistenceError("Invalid reference. Check related entity IDs.", status_code=400)
    if _matches(orig, _NOT_NULL):
        return PersistenceError("Missing required database field.", status_code=400)
    if _matches(orig, _INVALID_INPUT):
        return PersistenceError("Invalid input syntax for one of the fields.", status_code=400)
    return PersistenceError(f"Database error: {orig}", status_code=500)
