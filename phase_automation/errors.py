"""
Phase Automation Errors

Structured error taxonomy shared by the registry, the template instantiator
and the rule engine.

- NotFoundError: unknown template, phase or rule id
- PermissionDeniedError: mutating a built-in phase definition
- ValidationError: malformed input rejected before storage

Silent skips inside the reconciler (missing reference date, disabled
automation, out-of-window, failed condition) are NOT errors and never
raise.
"""

from typing import Any, Dict, List, Optional


class AutomationError(Exception):
    """Base automation error with structured details."""
    def __init__(self, code: str, message: str, details: Optional[Dict[str, Any]] = None):
        self.code = code
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "error": True,
            "code": self.code,
            "message": self.message,
            "details": self.details,
        }


class NotFoundError(AutomationError):
    def __init__(self, kind: str, identifier: str):
        super().__init__(
            code="NOT_FOUND",
            message=f"{kind.capitalize()} '{identifier}' not found",
            details={"kind": kind, "id": identifier}
        )


class PermissionDeniedError(AutomationError):
    def __init__(self, phase_id: str, action: str):
        super().__init__(
            code="PERMISSION_DENIED",
            message=f"Built-in phase '{phase_id}' cannot be {action}",
            details={"phase_id": phase_id, "action": action}
        )


class ValidationError(AutomationError):
    def __init__(self, errors: List[str]):
        super().__init__(
            code="VALIDATION_FAILED",
            message="Validation failed: " + "; ".join(errors),
            details={"errors": errors}
        )

    @classmethod
    def from_pydantic(cls, exc: Exception) -> "ValidationError":
        """Translate a pydantic ValidationError into the automation taxonomy."""
        errors = []
        for error in getattr(exc, "errors", lambda: [])():
            location = ".".join(str(part) for part in error.get("loc", ()))
            errors.append(f"{location}: {error.get('msg')}" if location else str(error.get("msg")))
        return cls(errors or [str(exc)])
