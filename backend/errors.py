# errors.py — Typed application errors
# Services raise these; only the exception handlers in main.py turn them
# into HTTP responses.
# Codes follow TL-{DOMAIN}-{NUMBER}.
from typing import Dict, List, Optional


class AppError(Exception):
    status_code = 500
    code = "TL-SYS-001"

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        errors: Optional[Dict[str, List[str]]] = None,
    ):
        super().__init__(message)
        self.message = message
        if code:
            self.code = code
        self.errors = errors


class ValidationError(AppError):
    """Malformed or out-of-range input (400)."""
    status_code = 400
    code = "TL-VAL-001"


class InvalidTransition(ValidationError):
    """A review decision that the transition table does not allow."""
    code = "TL-REVIEW-001"


class AuthenticationError(AppError):
    """Missing, expired or invalid credentials (401)."""
    status_code = 401
    code = "TL-AUTH-001"


class AuthorizationError(AppError):
    """Role or ownership check failed (403)."""
    status_code = 403
    code = "TL-AUTH-003"


class NotFoundError(AppError):
    status_code = 404
    code = "TL-DB-002"


class ConflictError(AppError):
    """Duplicate active timer or unique-constraint violation (409)."""
    status_code = 409
    code = "TL-DB-003"
