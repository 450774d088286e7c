"""Domain error taxonomy for the approval engine.

Every error carries a machine-readable ``code`` and the HTTP status the API
layer maps it to. Services raise these; routers never catch them; the
handler registered in ``main.py`` turns them into JSON responses.
"""


class ApprovalServiceError(Exception):
    code = "approval_error"
    status_code = 400

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict:
        return {"detail": self.message, "code": self.code}


class ValidationError(ApprovalServiceError):
    """Malformed input or a violated rule/session invariant."""

    code = "validation_error"
    status_code = 422

    def __init__(self, message: str, invariant: str):
        super().__init__(message)
        self.invariant = invariant

    def to_dict(self) -> dict:
        return {**super().to_dict(), "invariant": self.invariant}


class NotFoundError(ApprovalServiceError):
    code = "not_found"
    status_code = 404


class NoMatchError(ApprovalServiceError):
    """No active rule covers the transaction; fallback policy belongs to the caller."""

    code = "no_matching_rule"
    status_code = 422


class InvalidLevelError(ApprovalServiceError):
    code = "invalid_level"
    status_code = 422


class UnauthorizedApproverError(ApprovalServiceError):
    code = "unauthorized_approver"
    status_code = 403


class AlreadyDecidedError(ApprovalServiceError):
    code = "already_decided"
    status_code = 409


class StorageTimeoutError(ApprovalServiceError):
    code = "storage_timeout"
    status_code = 503
