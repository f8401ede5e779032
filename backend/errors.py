# errors.py — Error taxonomy for the board sync engine
# Every error carries a machine-readable code and the HTTP status that
# tells the provider whether to redeliver (4xx = do not retry, 5xx = retry).
from typing import Optional


class SyncError(Exception):
    """Base class for errors rendered as structured JSON responses"""

    status_code = 500
    code = "internal_error"

    def __init__(self, message: str = "", code: Optional[str] = None, field: Optional[str] = None):
        super().__init__(message or self.code)
        self.message = message or self.code
        if code:
            self.code = code
        self.field = field

    def to_dict(self) -> dict:
        body = {"error": self.code, "detail": self.message}
        if self.field:
            body["field"] = self.field
        return body


class AuthenticationError(SyncError):
    status_code = 401
    code = "invalid_signature"


class NotFoundError(SyncError):
    status_code = 404
    code = "not_found"


class ValidationError(SyncError):
    status_code = 400
    code = "invalid_payload"


class ConflictError(SyncError):
    status_code = 409
    code = "conflict"


class TransientUpstreamError(SyncError):
    status_code = 502
    code = "upstream_unavailable"


class PersistenceError(SyncError):
    status_code = 500
    code = "persistence_error"
