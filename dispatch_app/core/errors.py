from __future__ import annotations

from enum import Enum


class DispatchError(RuntimeError):
    status_code = 500

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code


class ValidationError(DispatchError):
    status_code = 400


class AuthError(DispatchError):
    status_code = 401


class NotFoundError(DispatchError):
    status_code = 404


class PersistenceError(DispatchError):
    status_code = 500


class ExtractionError(DispatchError):
    status_code = 500


class CompressionFailure(str, Enum):
    INVALID_CREDENTIALS = "invalid_credentials"
    FORBIDDEN = "forbidden"
    MALFORMED_REQUEST = "malformed_request"
    OVERSIZE = "oversize"
    TIMEOUT = "timeout"
    UNAVAILABLE = "unavailable"
    NOT_CONFIGURED = "not_configured"
    UNKNOWN = "unknown"


class ExternalServiceError(DispatchError):
    status_code = 502

    def __init__(
        self,
        message: str,
        *,
        kind: CompressionFailure = CompressionFailure.UNKNOWN,
        http_status: int | None = None,
        status_code: int | None = None,
    ) -> None:
        super().__init__(message, status_code=status_code)
        self.kind = kind
        self.http_status = http_status

    @property
    def is_transient(self) -> bool:
        return self.http_status is not None and self.http_status >= 500
