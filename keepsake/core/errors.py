"""
Error taxonomy shared by the group lifecycle and capsule modules.

Validation, authorization and consistency errors are raised before any remote
write. RemoteError wraps a failed backing-store call and records which step of
a multi-step operation failed.
"""

from enum import Enum
from typing import Optional


class ValidationReason(str, Enum):
    INVALID_NAME = "invalid_name"
    INVALID_CODE = "invalid_code"
    INVALID_SCHEDULE = "invalid_schedule"
    INVALID_TARGET = "invalid_target"
    MISSING_FIELD = "missing_field"
    INVALID_ATTACHMENT = "invalid_attachment"


class ConsistencyReason(str, Enum):
    MUST_DELETE_INSTEAD = "must_delete_instead"
    TRANSFER_REQUIRED = "transfer_required"
    ADMIN_REMOVAL = "admin_removal"
    ADMIN_CHANGED = "admin_changed"


class ConflictReason(str, Enum):
    ALREADY_MEMBER = "already_member"
    REQUEST_PENDING = "request_pending"
    REQUEST_NOT_PENDING = "request_not_pending"
    CODE_EXHAUSTED = "code_exhausted"


class KeepsakeError(Exception):
    status_code = 400
    code = "error"

    def __init__(self, detail: str, reason: Optional[Enum] = None):
        super().__init__(detail)
        self.detail = detail
        self.reason = reason

    def to_dict(self) -> dict:
        body = {"detail": self.detail, "code": self.code}
        if self.reason is not None:
            body["reason"] = self.reason.value
        return body


class ValidationError(KeepsakeError):
    status_code = 422
    code = "validation_error"


class AuthorizationError(KeepsakeError):
    status_code = 403
    code = "authorization_error"


class ConsistencyError(KeepsakeError):
    status_code = 409
    code = "consistency_error"


class NotFoundError(KeepsakeError):
    status_code = 404
    code = "not_found"


class ConflictError(KeepsakeError):
    status_code = 409
    code = "conflict"


class RemoteError(KeepsakeError):
    status_code = 502
    code = "remote_error"

    def __init__(self, detail: str, operation: str, step: Optional[int] = None):
        super().__init__(detail)
        self.operation = operation
        self.step = step

    def to_dict(self) -> dict:
        body = super().to_dict()
        body["operation"] = self.operation
        if self.step is not None:
            body["step"] = self.step
        return body
