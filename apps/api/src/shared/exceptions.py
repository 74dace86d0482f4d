# apps/api/src/shared/exceptions.py
from enum import Enum
from typing import Any, Dict, Optional

from fastapi import HTTPException, status


class ErrorKind(str, Enum):
    """Classification attached to every sync failure."""

    VALIDATION = "VALIDATION"
    AUTH = "AUTH"
    ALREADY_SYNCED = "ALREADY_SYNCED"
    CONFLICT = "CONFLICT"
    REMOTE_FAULT = "REMOTE_FAULT"
    NETWORK = "NETWORK"
    INTERNAL = "INTERNAL"


ERROR_KIND_STATUS = {
    ErrorKind.VALIDATION: status.HTTP_400_BAD_REQUEST,
    ErrorKind.AUTH: status.HTTP_401_UNAUTHORIZED,
    ErrorKind.ALREADY_SYNCED: status.HTTP_400_BAD_REQUEST,
    ErrorKind.CONFLICT: status.HTTP_409_CONFLICT,
    ErrorKind.REMOTE_FAULT: status.HTTP_400_BAD_REQUEST,
    ErrorKind.NETWORK: status.HTTP_502_BAD_GATEWAY,
    ErrorKind.INTERNAL: status.HTTP_500_INTERNAL_SERVER_ERROR,
}


class BaseHTTPException(HTTPException):
    """
    Base for every error the API renders itself.

    Subclasses set ``status_code``, ``error_code``, ``kind`` and a default
    ``message`` as class attributes; callers may override the message and
    attach structured ``data`` for the response body.
    """

    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR
    error_code: str = "INTERNAL_ERROR"
    kind: ErrorKind = ErrorKind.INTERNAL
    message: str = "Internal server error"

    def __init__(
        self,
        message: Optional[str] = None,
        *,
        error_code: Optional[str] = None,
        data: Optional[Dict[str, Any]] = None,
    ) -> None:
        self.message = message or self.message
        if error_code:
            self.error_code = error_code
        self.data = data
        super().__init__(status_code=self.status_code, detail=self.message)

    def __str__(self) -> str:
        return self.message


# Validation / Request Exceptions
class SyncValidationError(BaseHTTPException):
    status_code = status.HTTP_400_BAD_REQUEST
    error_code = "VALIDATION_ERROR"
    kind = ErrorKind.VALIDATION
    message = "Invalid request data"


class PayloadValidationError(SyncValidationError):
    """Raised when a local record cannot be turned into a valid remote payload."""

    error_code = "PAYLOAD_INVALID"
    message = "Record cannot be converted to a QuickBooks payload"


class ConnectionNotFoundError(BaseHTTPException):
    status_code = status.HTTP_404_NOT_FOUND
    error_code = "CONNECTION_NOT_FOUND"
    kind = ErrorKind.VALIDATION
    message = "QuickBooks connection not found"


class EntityNotFoundError(BaseHTTPException):
    status_code = status.HTTP_404_NOT_FOUND
    error_code = "NOT_FOUND"
    kind = ErrorKind.VALIDATION
    message = "Record not found"


# Authentication Exceptions
class AuthExpiredError(BaseHTTPException):
    """The connection must be re-authorized before it can be used again."""

    status_code = status.HTTP_401_UNAUTHORIZED
    error_code = "AUTH_EXPIRED"
    kind = ErrorKind.AUTH
    message = "QuickBooks authorization expired. Please reconnect."


class OAuthStateError(BaseHTTPException):
    status_code = status.HTTP_400_BAD_REQUEST
    error_code = "INVALID_STATE"
    kind = ErrorKind.VALIDATION
    message = "Invalid or expired OAuth state"


# Sync lifecycle Exceptions
class AlreadySyncedError(BaseHTTPException):
    status_code = status.HTTP_400_BAD_REQUEST
    error_code = "ALREADY_SYNCED"
    kind = ErrorKind.ALREADY_SYNCED
    message = "Record is already synced to QuickBooks"


class SyncConflictError(BaseHTTPException):
    status_code = status.HTTP_409_CONFLICT
    error_code = "SYNC_CONFLICT"
    kind = ErrorKind.CONFLICT
    message = "Record is already being synced"


class RealmConflictError(BaseHTTPException):
    status_code = status.HTTP_409_CONFLICT
    error_code = "REALM_ID_CONFLICT"
    kind = ErrorKind.CONFLICT
    message = "This QuickBooks company is already connected"


# Remote platform Exceptions
class RemoteFaultError(BaseHTTPException):
    """Business-rule fault returned by QuickBooks, code and detail preserved."""

    status_code = status.HTTP_400_BAD_REQUEST
    error_code = "REMOTE_FAULT"
    kind = ErrorKind.REMOTE_FAULT
    message = "QuickBooks rejected the request"

    def __init__(
        self,
        code: str,
        detail: str,
        *,
        element: Optional[str] = None,
        http_status: Optional[int] = None,
    ) -> None:
        self.fault_code = code
        self.fault_detail = detail
        self.element = element
        self.http_status = http_status
        super().__init__(
            detail,
            error_code=code,
            data={"code": code, "detail": detail, "element": element},
        )


class RemoteAuthError(BaseHTTPException):
    status_code = status.HTTP_401_UNAUTHORIZED
    error_code = "REMOTE_AUTH"
    kind = ErrorKind.AUTH
    message = "QuickBooks rejected the access token"


class NetworkError(BaseHTTPException):
    status_code = status.HTTP_502_BAD_GATEWAY
    error_code = "NETWORK_ERROR"
    kind = ErrorKind.NETWORK
    message = "Could not reach QuickBooks"


class RemoteHttpError(NetworkError):
    """Non-fault HTTP error from QuickBooks, keyed by status code."""

    def __init__(self, http_status: int, body: str = "") -> None:
        self.http_status = http_status
        super().__init__(
            f"QuickBooks returned HTTP {http_status}: {body[:500]}",
            error_code=f"HTTP_{http_status}",
        )


class InternalError(BaseHTTPException):
    pass
