from typing import Any, Dict, Optional

# --- Custom Service Layer Exception Classes ---
# Every error carries an HTTP status, a stable machine-readable `code` and a
# human-readable message. Clients branch on `code`, never on the message.


class ServiceError(Exception):
    """General exception class for the service layer."""
    status_code: int = 400
    code: str = "SERVICE_ERROR"

    def __init__(self, message: str, code: Optional[str] = None, status_code: Optional[int] = None, **extra: Any):
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code
        if status_code is not None:
            self.status_code = status_code
        self.extra: Dict[str, Any] = extra

    def to_dict(self) -> Dict[str, Any]:
        return {"error": self.message, "code": self.code, **self.extra}


class InvalidInputError(ServiceError):
    status_code = 400
    code = "VALIDATION_ERROR"


class AuthenticationError(ServiceError):
    status_code = 401
    code = "AUTH_REQUIRED"


class AuthorizationError(ServiceError):
    status_code = 403
    code = "FORBIDDEN"


class NotFoundError(ServiceError):
    status_code = 404
    code = "NOT_FOUND"


class ConflictError(ServiceError):
    status_code = 409
    code = "CONFLICT"


# --- Session token failures ---
# Each one names the audit action it is recorded under.

class TokenError(ServiceError):
    status_code = 400
    code = "TOKEN_INVALID"
    audit_action = "TOKEN_INVALID"


class TokenNotFoundError(TokenError):
    code = "TOKEN_NOT_FOUND"
    audit_action = "TOKEN_INVALID"

    def __init__(self, message: str = "Session token not found."):
        super().__init__(message)


class TokenUsedError(TokenError):
    code = "TOKEN_USED"
    audit_action = "TOKEN_USED"

    def __init__(self, message: str = "Session token has already been used."):
        super().__init__(message)


class TokenExpiredError(TokenError):
    code = "TOKEN_EXPIRED"
    audit_action = "TOKEN_EXPIRED"

    def __init__(self, message: str = "Session token has expired."):
        super().__init__(message)


class TokenClassMismatchError(TokenError):
    code = "TOKEN_CLASS_MISMATCH"
    audit_action = "TOKEN_INVALID"

    def __init__(self, message: str = "Session token does not belong to this class."):
        super().__init__(message)
