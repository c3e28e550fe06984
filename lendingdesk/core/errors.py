"""Error taxonomy for LendingDesk.

Every expected rejection carries a machine-readable ``code`` and the HTTP
status the API layer renders it with. Only ``StorageFault`` indicates a
system failure; the rest are ordinary outcomes of a request.
"""
from typing import Optional


class LendingDeskError(Exception):
    """Base class for all rejections raised by the services."""

    code = "error"
    status_code = 400

    def __init__(self, detail: str, code: Optional[str] = None):
        super().__init__(detail)
        self.detail = detail
        if code is not None:
            self.code = code

    def to_dict(self) -> dict:
        return {"error": self.code, "detail": self.detail}


class ValidationError(LendingDeskError):
    """A required field is missing or empty."""

    code = "validation_error"
    status_code = 400


class NotFoundError(LendingDeskError):
    """A referenced item or user does not exist."""

    code = "not_found"
    status_code = 404


class ConflictError(LendingDeskError):
    """The request conflicts with the current state of a record."""

    code = "conflict"
    status_code = 409


class AlreadyIssued(ConflictError):
    code = "already_issued"

    def __init__(self, item_id: str):
        super().__init__("Book already issued")
        self.item_id = item_id


class AlreadyAvailable(ConflictError):
    code = "already_available"

    def __init__(self, item_id: str):
        super().__init__("Book already available")
        self.item_id = item_id


class UsernameTaken(ConflictError):
    code = "username_taken"

    def __init__(self, username: str):
        super().__init__("Username already taken")
        self.username = username


class NotAuthorizedError(LendingDeskError):
    """The caller's role may not perform the requested action."""

    code = "not_authorized"
    status_code = 403


class StorageFault(LendingDeskError):
    """The backing store is unreachable or a write failed.

    The detail is logged but never shown to clients.
    """

    code = "storage_fault"
    status_code = 500

    def to_dict(self) -> dict:
        return {"error": self.code, "detail": "Internal server error"}


class AuthenticationRequired(Exception):
    """No valid session: the caller is sent back to the login page."""

    def __init__(self, reason: str = "Authentication required"):
        super().__init__(reason)
        self.reason = reason
