"""
Authentication error taxonomy.

Adapter, storage and backend failures are translated into one of these kinds at
the call site, so the flow controller never handles a raw transport error.
"""

from enum import Enum
from typing import Any, Dict, Optional

from src.core.exceptions.handler import ServiceError, ServiceErrorCode


class AuthErrorKind(str, Enum):
    NOT_INSTALLED = "not_installed"
    USER_REJECTED = "user_rejected"
    NETWORK_ERROR = "network_error"
    ALREADY_LINKED = "already_linked"
    EXPIRED = "expired"
    MISMATCH = "mismatch"
    MALFORMED_RECORD = "malformed_record"
    SIGNING_FAILED = "signing_failed"
    INVALID_INPUT = "invalid_input"
    AUTH_REJECTED = "auth_rejected"
    INVALID_TRANSITION = "invalid_transition"


class AuthFlowError(ServiceError):
    """Base class for every error the flow controller can receive"""

    kind: AuthErrorKind = AuthErrorKind.NETWORK_ERROR
    code: str = ServiceErrorCode.INTERNAL_ERROR
    http_status: int = 500
    default_message: str = "Authentication error"

    def __init__(self, message: Optional[str] = None, details: Optional[Dict[str, Any]] = None):
        super().__init__(
            code=self.code,
            message=message or self.default_message,
            status_code=self.http_status,
            details=details
        )


class NotInstalledError(AuthFlowError):
    kind = AuthErrorKind.NOT_INSTALLED
    code = ServiceErrorCode.NOT_INSTALLED
    http_status = 404
    default_message = "Wallet is not installed"


class UserRejectedError(AuthFlowError):
    kind = AuthErrorKind.USER_REJECTED
    code = ServiceErrorCode.USER_REJECTED
    http_status = 409
    default_message = "Request cancelled by user"


class NetworkError(AuthFlowError):
    kind = AuthErrorKind.NETWORK_ERROR
    code = ServiceErrorCode.NETWORK_ERROR
    http_status = 503
    default_message = "Network error. Please check your connection and try again"


class AlreadyLinkedError(AuthFlowError):
    kind = AuthErrorKind.ALREADY_LINKED
    code = ServiceErrorCode.ALREADY_LINKED
    http_status = 409
    default_message = "This wallet is already linked to another account"


class SessionExpiredError(AuthFlowError):
    kind = AuthErrorKind.EXPIRED
    code = ServiceErrorCode.EXPIRED
    http_status = 401
    default_message = "Session expired"


class WalletMismatchError(AuthFlowError):
    kind = AuthErrorKind.MISMATCH
    code = ServiceErrorCode.MISMATCH
    http_status = 401
    default_message = "Connected wallet does not match the saved session"


class MalformedRecordError(AuthFlowError):
    kind = AuthErrorKind.MALFORMED_RECORD
    code = ServiceErrorCode.MALFORMED_RECORD
    http_status = 401
    default_message = "Saved session could not be read"


class SigningFailedError(AuthFlowError):
    kind = AuthErrorKind.SIGNING_FAILED
    code = ServiceErrorCode.SIGNING_FAILED
    http_status = 400
    default_message = "Failed to sign message"


class InvalidInputError(AuthFlowError):
    kind = AuthErrorKind.INVALID_INPUT
    code = ServiceErrorCode.INVALID_INPUT
    http_status = 422
    default_message = "Invalid input"


class AuthRejectedError(AuthFlowError):
    kind = AuthErrorKind.AUTH_REJECTED
    code = ServiceErrorCode.AUTH_REJECTED
    http_status = 401
    default_message = "Authentication rejected"


class InvalidTransitionError(AuthFlowError):
    kind = AuthErrorKind.INVALID_TRANSITION
    code = ServiceErrorCode.INVALID_TRANSITION
    http_status = 409
    default_message = "Action not allowed in the current state"

