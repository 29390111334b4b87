from __future__ import annotations

from typing import Optional


class DocVaultError(Exception):
    """Base exception raised by the access & hierarchy engine."""

    code = "error"
    status_code = 500

    def __init__(self, message: str, *, resource_id: Optional[str] = None) -> None:
        super().__init__(message)
        self.message = message
        self.resource_id = resource_id


class NotFound(DocVaultError):
    """A resource, parent, department or ACL entry does not exist."""

    code = "not_found"
    status_code = 404


class ParentNotFound(NotFound):
    code = "parent_not_found"


class InvalidMove(DocVaultError):
    """The target parent is the resource itself or one of its descendants."""

    code = "invalid_move"
    status_code = 400


class ParentStillDeleted(DocVaultError):
    """Restore was attempted while the direct parent is still in the trash."""

    code = "parent_still_deleted"
    status_code = 409


class PermissionDenied(DocVaultError):
    code = "permission_denied"
    status_code = 403

    def __init__(self, action: str, *, resource_id: Optional[str] = None) -> None:
        super().__init__(f"Permission '{action}' denied", resource_id=resource_id)
        self.action = action


class ValidationError(DocVaultError):
    """Malformed identifiers, duplicate sibling names or a Document used as a parent."""

    code = "validation_error"
    status_code = 422


class ConfirmationRequired(DocVaultError):
    code = "confirmation_required"
    status_code = 400


class CascadeFailed(DocVaultError):
    """A structural cascade could not complete; the transaction was rolled back."""

    code = "cascade_failed"
    status_code = 503


class AclStoreError(DocVaultError):
    """The ACL backend could not be reached or rejected the request."""

    code = "acl_store_unavailable"
    status_code = 503
