"""
Domain error taxonomy.

Every error raised by the story core derives from DomainError. The HTTP layer
maps them to status codes with a single exception handler, so services raise
these directly and let them propagate.
"""
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from sqlalchemy.exc import IntegrityError, SQLAlchemyError


class DomainError(Exception):
    code = "DOMAIN_ERROR"
    status_code = 500

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}
        self.timestamp = datetime.now(timezone.utc)

    def to_response(self) -> dict:
        """
        Serializes the error into the JSON body returned to API clients.
        """
        body = {
            "code": self.code,
            "message": self.message,
            "timestamp": self.timestamp.isoformat(),
        }
        if self.details:
            body["details"] = self.details
        return {"success": False, "error": body}


class ValidationError(DomainError):
    code = "VALIDATION_ERROR"
    status_code = 400


class NotFoundError(DomainError):
    code = "RESOURCE_NOT_FOUND"
    status_code = 404

    @classmethod
    def story(cls, story_id: str) -> "NotFoundError":
        return cls(f"Story not found: {story_id}", {"story_id": story_id})

    @classmethod
    def content(cls, content_id: str) -> "NotFoundError":
        return cls(f"Content not found: {content_id}", {"content_id": content_id})

    @classmethod
    def choice(cls, choice_id: str) -> "NotFoundError":
        return cls(f"Choice not found: {choice_id}", {"choice_id": choice_id})


class ForbiddenError(DomainError):
    code = "FORBIDDEN"
    status_code = 403

    @classmethod
    def story_access(cls, story_id: str, user_id: int) -> "ForbiddenError":
        return cls(
            "You do not have permission to access this story",
            {"story_id": story_id, "user_id": user_id},
        )


class ConflictError(DomainError):
    code = "CONFLICT"
    status_code = 409


class InvalidStateError(DomainError):
    """Raised by the choice ledger when a choice cannot be selected."""
    code = "INVALID_STATE"
    status_code = 409


class ExternalServiceError(DomainError):
    code = "EXTERNAL_SERVICE_ERROR"
    status_code = 502

    def __init__(self, message: str, operation: str, cause: str, details: Optional[Dict[str, Any]] = None):
        merged = {"operation": operation, "cause": cause}
        merged.update(details or {})
        super().__init__(message, merged)
        self.operation = operation
        self.cause = cause

    @classmethod
    def ai_provider(cls, operation: str, provider: str, reason: str) -> "ExternalServiceError":
        return cls(
            f"AI provider error ({provider}): {reason}",
            operation=operation,
            cause=reason,
            details={"provider": provider},
        )

    @classmethod
    def database(cls, operation: str, reason: str) -> "ExternalServiceError":
        return cls(
            f"Database error during {operation}: {reason}",
            operation=operation,
            cause=reason,
        )


@contextmanager
def database_errors(operation: str):
    """
    Re-raises persistence failures as domain errors: unique-key violations
    become ConflictError, everything else ExternalServiceError.
    """
    try:
        yield
    except IntegrityError as e:
        raise ConflictError(
            f"Conflicting write during {operation}",
            {"operation": operation, "cause": str(e.orig)},
        ) from e
    except SQLAlchemyError as e:
        raise ExternalServiceError.database(operation, str(e)) from e
