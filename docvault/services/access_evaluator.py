from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Iterable, Optional, Sequence, TypeVar

from docvault.core.errors import ValidationError
from docvault.models.identity import Identity
from docvault.models.resource import Department
from docvault.models.schemas import ALL_PERMISSIONS, OwnerType, ResourceKind, Role
from docvault.services.acl_store import AclStore, normalize_resource_type
from docvault.services.resource_store import Resource, ResourceRepository, ResourceStore

T = TypeVar("T")

CONTAINER_KINDS = (ResourceKind.FOLDER, ResourceKind.DEPARTMENT)
DEPARTMENT_ADMIN_ROLES = (Role.ADMIN, Role.DEPARTMENT_OWNER)


@dataclass(frozen=True)
class PermissionSummary:
    permissions: tuple[str, ...] = ()
    can_create_subfolder: bool = False
    can_upload_file: bool = False
    implicit: bool = False

    def allows(self, action: str) -> bool:
        return action in self.permissions

    def as_actions(self) -> dict[str, bool]:
        actions = {f"can_{permission}": permission in self.permissions for permission in ALL_PERMISSIONS}
        actions["can_create_folder"] = self.can_create_subfolder
        return actions


def _ordered(permissions: Iterable[str]) -> tuple[str, ...]:
    granted = set(permissions)
    return tuple(permission for permission in ALL_PERMISSIONS if permission in granted)


def _summary(kind: ResourceKind, permissions: Iterable[str], *, implicit: bool = False) -> PermissionSummary:
    ordered = _ordered(permissions)
    can_add = kind in CONTAINER_KINDS and "upload" in ordered
    return PermissionSummary(
        permissions=ordered,
        can_create_subfolder=can_add,
        can_upload_file=can_add,
        implicit=implicit,
    )


def normalize_action(action: str) -> str:
    normalized = str(getattr(action, "value", action)).strip().lower()
    if normalized not in ALL_PERMISSIONS:
        raise ValidationError(f"Unknown action: {action}")
    return normalized


def has_implicit_access(identity: Identity, department: Optional[Department]) -> bool:
    """Role and ownership access that needs no ACL row and covers every action."""
    if identity is None or department is None:
        return False

    # MyDrive: only its owner, whatever their role.
    if department.owner_type == OwnerType.USER.value:
        return bool(identity.my_drive_department_id) and identity.my_drive_department_id == department.id

    if identity.role == Role.SUPER_ADMIN and department.owner_type == OwnerType.ORG.value:
        return True

    if identity.role in DEPARTMENT_ADMIN_ROLES:
        return identity.administers(department.id)

    return False


class AccessEvaluator:
    """Decide whether an identity may perform an action on a resource.

    Order: implicit role access, then the resource's own ACL when it has any
    entry at all, then the ACLs of its ancestors up to the department.
    Stateless; every call reads the stores afresh.
    """

    def __init__(self, store: ResourceStore, acl_store: AclStore, *, logger: Optional[logging.Logger] = None) -> None:
        self.logger = logger or logging.getLogger(__name__)
        self.store = store
        self.acl_store = acl_store

    def _department_of(self, repo: ResourceRepository, resource: Resource) -> Optional[Department]:
        if resource.kind is ResourceKind.DEPARTMENT:
            return repo.get_department(resource.id)
        if not resource.department_id:
            return None
        return repo.get_department(resource.department_id)

    def _direct(self, identity: Identity, resource_type: str, resource_id: str) -> frozenset[str]:
        return self.acl_store.effective_permissions(
            resource_type, resource_id, identity.user_id, sorted(identity.group_ids)
        )

    def _ancestors(self, repo: ResourceRepository, resource: Resource):
        """Yield (resource_type, ancestor) upward, ending at the department.

        A missing or deleted folder falls back to a department lookup; a missing
        or inactive department ends the walk.
        """
        seen = {resource.id}
        current = resource
        while current.parent_id and current.parent_id not in seen:
            parent = repo.get_folder(current.parent_id)
            parent_type = ResourceKind.FOLDER
            if parent is None or parent.is_deleted:
                parent = repo.get_department(current.parent_id)
                parent_type = ResourceKind.DEPARTMENT
                if parent is None or not parent.is_active:
                    return

            yield parent_type.value, parent
            if parent_type is ResourceKind.DEPARTMENT:
                return
            seen.add(parent.id)
            current = parent

    def has_inherited_permission(
        self,
        identity: Identity,
        resource: Resource,
        action: str,
        repo: Optional[ResourceRepository] = None,
    ) -> bool:
        """True when any ancestor's own ACL grants ``action``."""
        if repo is None:
            with self.store.read() as read_repo:
                return self.has_inherited_permission(identity, resource, action, read_repo)

        for ancestor_type, ancestor in self._ancestors(repo, resource):
            if action in self._direct(identity, ancestor_type, ancestor.id):
                return True
        return False

    def inherited_permissions(
        self,
        identity: Identity,
        resource: Resource,
        repo: ResourceRepository,
    ) -> frozenset[str]:
        """Every permission some ancestor grants; same result as probing each kind."""
        granted: set[str] = set()
        for ancestor_type, ancestor in self._ancestors(repo, resource):
            granted |= self._direct(identity, ancestor_type, ancestor.id)
            if granted.issuperset(ALL_PERMISSIONS):
                break
        return frozenset(granted)

    def evaluate_permission(
        self,
        identity: Identity,
        resource: Optional[Resource],
        resource_type: ResourceKind | str,
        action: str,
    ) -> bool:
        action = normalize_action(action)
        if resource is None:
            return False
        resource_type = normalize_resource_type(resource_type)

        with self.store.read() as repo:
            department = self._department_of(repo, resource)
            if department is None:
                return False
            if has_implicit_access(identity, department):
                return True

            # An explicit ACL on the resource shadows everything inherited, even when it
            # does not grant this action.
            if self.acl_store.has_any_acl(resource_type, resource.id):
                return action in self._direct(identity, resource_type, resource.id)

            return self.has_inherited_permission(identity, resource, action, repo)

    def check(self, identity: Identity, resource: Optional[Resource], action: str) -> bool:
        if resource is None:
            return False
        return self.evaluate_permission(identity, resource, resource.kind, action)

    def permissions_for(self, identity: Identity, resource: Optional[Resource]) -> PermissionSummary:
        if resource is None or resource.is_deleted:
            return PermissionSummary()

        with self.store.read() as repo:
            department = self._department_of(repo, resource)
            if department is None:
                return PermissionSummary()
            if has_implicit_access(identity, department):
                return _summary(resource.kind, ALL_PERMISSIONS, implicit=True)

            resource_type = resource.kind.value
            if self.acl_store.has_any_acl(resource_type, resource.id):
                return _summary(resource.kind, self._direct(identity, resource_type, resource.id))

            return _summary(resource.kind, self.inherited_permissions(identity, resource, repo))

    def get_user_permissions(
        self,
        identity: Identity,
        resource_type: ResourceKind | str,
        resource_id: str,
    ) -> PermissionSummary:
        resource = self.store.get(normalize_resource_type(resource_type), resource_id)
        return self.permissions_for(identity, resource)

    def allowed_actions(self, identity: Identity, resource: Resource) -> dict[str, bool]:
        return self.permissions_for(identity, resource).as_actions()

    def filter_visible(self, identity: Identity, resources: Sequence[T]) -> list[T]:
        return [resource for resource in resources if self.check(identity, resource, "view")]
