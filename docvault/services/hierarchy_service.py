from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Iterable, Optional, Union

from docvault.core.database import utcnow
from docvault.core.errors import (
    AclStoreError,
    ConfirmationRequired,
    DocVaultError,
    NotFound,
    PermissionDenied,
    ValidationError,
)
from docvault.models.identity import Identity
from docvault.models.resource import Department, Document, Folder
from docvault.models.schemas import OwnerType, ResourceDTO, ResourceKind, Role, SubjectType, TrashItemDTO
from docvault.services.access_evaluator import DEPARTMENT_ADMIN_ROLES, AccessEvaluator, PermissionSummary, normalize_action
from docvault.services.acl_store import AclEntry, AclStore, normalize_resource_type, preset_permissions
from docvault.services.activity_log import ActivityLogger, action_name
from docvault.services.path_manager import PathManager
from docvault.services.resource_store import Resource, ResourceStore
from docvault.services.subtree_locks import Deadline


class HierarchyService:
    """Public operations: authorize with the evaluator, then change the tree or the ACLs."""

    def __init__(
        self,
        *,
        store: ResourceStore,
        path_manager: PathManager,
        acl_store: AclStore,
        evaluator: AccessEvaluator,
        activity: Optional[ActivityLogger] = None,
        retention_days: int = 30,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.logger = logger or logging.getLogger(__name__)
        self.store = store
        self.path_manager = path_manager
        self.acl_store = acl_store
        self.evaluator = evaluator
        self.activity = activity or ActivityLogger()
        self.retention = timedelta(days=retention_days)

    # --- helpers ---

    def _get(self, kind: ResourceKind | str, resource_id: str) -> Resource:
        kind = ResourceKind(normalize_resource_type(kind))
        resource = self.store.get(kind, resource_id)
        if resource is None:
            raise NotFound(f"{kind.value.title()} not found", resource_id=resource_id)
        return resource

    def _get_item(self, item_id: str) -> Union[Folder, Document]:
        item = self.store.find_item(item_id)
        if item is None:
            raise NotFound("Item not found", resource_id=item_id)
        return item

    def _parent(self, parent_id: str) -> Union[Folder, Department]:
        with self.store.read() as repo:
            return repo.resolve_parent(parent_id)

    def _authorize(self, identity: Identity, resource: Resource, action: str) -> None:
        if not self.evaluator.check(identity, resource, action):
            raise PermissionDenied(action, resource_id=resource.id)

    @staticmethod
    def _authorize_department_admin(identity: Identity, department: Department, action: str) -> None:
        """ORG departments are managed by super admins and by the admins assigned to them."""
        if department.owner_type != OwnerType.ORG.value:
            raise PermissionDenied(action, resource_id=department.id)
        if identity.role == Role.SUPER_ADMIN:
            return
        if identity.role in DEPARTMENT_ADMIN_ROLES and identity.administers(department.id):
            return
        raise PermissionDenied(action, resource_id=department.id)

    @staticmethod
    def _deadline(seconds: Optional[float]) -> Optional[Deadline]:
        return None if seconds is None else Deadline(seconds)

    # --- structure ---

    def create_department(
        self,
        identity: Identity,
        name: str,
        *,
        code: Optional[str] = None,
    ) -> Department:
        if identity.role not in (Role.SUPER_ADMIN, Role.ADMIN):
            raise PermissionDenied("create_department")
        department = self.path_manager.create_department(name, code=code)
        self.activity.log("DEPARTMENT_CREATED", identity.user_id, ResourceKind.DEPARTMENT, department.id, name=department.name)
        return department

    def update_department(
        self,
        identity: Identity,
        department_id: str,
        *,
        name: Optional[str] = None,
        is_active: Optional[bool] = None,
        deadline_seconds: Optional[float] = None,
    ) -> Department:
        """Rename and/or (de)activate an ORG department."""
        department = self._get(ResourceKind.DEPARTMENT, department_id)
        self._authorize_department_admin(identity, department, "update_department")

        changes = {}
        if name is not None and name != department.name:
            changes["old_name"] = department.name
            department = self.path_manager.rename(department, name, deadline=self._deadline(deadline_seconds))
            changes["new_name"] = department.name
        if is_active is not None and bool(is_active) != bool(department.is_active):
            department = self.path_manager.set_department_active(department, is_active)
            changes["is_active"] = department.is_active

        if changes:
            self.activity.log("DEPARTMENT_UPDATED", identity.user_id, ResourceKind.DEPARTMENT, department.id, **changes)
        return department

    def create_resource(
        self,
        identity: Identity,
        kind: ResourceKind | str,
        name: str,
        parent_id: str,
        *,
        auto_rename: bool = False,
        extension: Optional[str] = None,
        size: Optional[int] = None,
    ) -> Union[Folder, Document]:
        kind = ResourceKind(normalize_resource_type(kind))
        parent = self._parent(parent_id)
        self._authorize(identity, parent, "upload")

        resource = self.path_manager.create(
            kind,
            name,
            parent.id,
            created_by=identity.user_id,
            auto_rename=auto_rename,
            extension=extension,
            size=size,
        )
        verb = "UPLOADED" if kind is ResourceKind.DOCUMENT else "CREATED"
        self.activity.log(action_name(kind, verb), identity.user_id, kind, resource.id, path=resource.path, parent_id=parent.id)
        return resource

    def move_resource(
        self,
        identity: Identity,
        kind: ResourceKind | str,
        resource_id: str,
        new_parent_id: str,
        *,
        deadline_seconds: Optional[float] = None,
    ) -> Union[Folder, Document]:
        resource = self._get(kind, resource_id)
        new_parent = self._parent(new_parent_id)
        self._authorize(identity, resource, "delete")
        self._authorize(identity, new_parent, "upload")

        old_parent_id, old_path = resource.parent_id, resource.path
        moved = self.path_manager.move_to(resource, new_parent.id, deadline=self._deadline(deadline_seconds))
        self.activity.log(
            action_name(moved.kind, "MOVED"),
            identity.user_id,
            moved.kind,
            moved.id,
            from_parent_id=old_parent_id,
            to_parent_id=moved.parent_id,
            old_path=old_path,
            new_path=moved.path,
        )
        return moved

    def rename_resource(
        self,
        identity: Identity,
        kind: ResourceKind | str,
        resource_id: str,
        new_name: str,
        *,
        deadline_seconds: Optional[float] = None,
    ) -> Resource:
        resource = self._get(kind, resource_id)
        if resource.kind is ResourceKind.DEPARTMENT:
            return self.update_department(
                identity, resource.id, name=new_name, deadline_seconds=deadline_seconds
            )
        self._authorize(identity, resource, "upload")

        old_name = resource.name
        renamed = self.path_manager.rename(resource, new_name, deadline=self._deadline(deadline_seconds))
        self.activity.log(
            action_name(renamed.kind, "UPDATED"),
            identity.user_id,
            renamed.kind,
            renamed.id,
            old_name=old_name,
            new_name=renamed.name,
        )
        return renamed

    def soft_delete_resource(
        self,
        identity: Identity,
        kind: ResourceKind | str,
        resource_id: str,
        *,
        deadline_seconds: Optional[float] = None,
    ) -> Union[Folder, Document]:
        resource = self._get(kind, resource_id)
        self._authorize(identity, resource, "delete")

        deleted = self.path_manager.soft_delete(resource, deadline=self._deadline(deadline_seconds))
        self.activity.log(action_name(deleted.kind, "DELETED"), identity.user_id, deleted.kind, deleted.id, path=deleted.path)
        return deleted

    def restore_resource(
        self,
        identity: Identity,
        kind: ResourceKind | str,
        resource_id: str,
        *,
        deadline_seconds: Optional[float] = None,
    ) -> Union[Folder, Document]:
        resource = self._get(kind, resource_id)
        self._authorize(identity, resource, "delete")

        restored = self.path_manager.restore(resource, deadline=self._deadline(deadline_seconds))
        self.activity.log(action_name(restored.kind, "RESTORED"), identity.user_id, restored.kind, restored.id, path=restored.path)
        return restored

    def bulk_restore(self, identity: Identity, item_ids: Iterable[str]) -> tuple[list[str], dict[str, str]]:
        """Restore each item independently; returns (restored ids, {failed id: error code})."""
        restored: list[str] = []
        failed: dict[str, str] = {}
        for item_id in item_ids:
            try:
                item = self._get_item(item_id)
                self.restore_resource(identity, item.kind, item.id)
            except DocVaultError as exc:
                failed[item_id] = exc.code
            else:
                restored.append(item_id)
        return restored, failed

    def permanently_delete_resource(
        self,
        identity: Identity,
        kind: ResourceKind | str,
        resource_id: str,
        *,
        confirmed: bool = False,
        deadline_seconds: Optional[float] = None,
    ) -> list[tuple[ResourceKind, str]]:
        if not confirmed:
            raise ConfirmationRequired("Confirmation required to permanently delete item", resource_id=resource_id)
        resource = self._get(kind, resource_id)
        self._authorize(identity, resource, "delete")

        removed = self.path_manager.permanent_delete(
            resource, confirmed=True, deadline=self._deadline(deadline_seconds)
        )
        self._drop_acls(removed)
        self.activity.log(
            action_name(resource.kind, "PERMANENTLY_DELETED"),
            identity.user_id,
            resource.kind,
            resource.id,
            path=resource.path,
            removed=len(removed),
        )
        return removed

    def _drop_acls(self, removed: list[tuple[ResourceKind, str]]) -> None:
        # The resources are already gone; leftover rows only cost storage.
        try:
            self.acl_store.delete_for_resources(removed)
        except AclStoreError as exc:
            self.logger.warning("ACL cleanup failed for %d removed resources: %s", len(removed), exc)

    # --- trash ---

    def auto_delete_at(self, item: Union[Folder, Document]) -> Optional[datetime]:
        if item.deleted_at is None:
            return None
        return item.deleted_at + self.retention

    def list_trash(self, identity: Identity, *, now: Optional[datetime] = None) -> list[TrashItemDTO]:
        since = (now or utcnow()) - self.retention
        with self.store.read() as repo:
            items = repo.list_trash(since=since)
        visible = self.evaluator.filter_visible(identity, items)
        return [
            TrashItemDTO(**ResourceDTO.model_validate(item).model_dump(), auto_delete_at=self.auto_delete_at(item))
            for item in visible
        ]

    def purge_trash(self, identity: Identity, *, now: Optional[datetime] = None) -> list[tuple[ResourceKind, str]]:
        if identity.role != Role.SUPER_ADMIN:
            raise PermissionDenied("purge_trash")
        removed = self.path_manager.purge_expired(now=now)
        if removed:
            self._drop_acls(removed)
            self.logger.info("Purged %d expired trash items", len(removed))
        return removed

    # --- sharing ---

    def grant_access(
        self,
        identity: Identity,
        resource_type: ResourceKind | str,
        resource_id: str,
        subject_type: SubjectType | str,
        subject_id: str,
        permissions: Optional[Iterable[str]] = None,
        *,
        preset: Optional[str] = None,
    ) -> AclEntry:
        resource = self._get(resource_type, resource_id)
        if resource.is_deleted:
            raise ValidationError("Cannot share a deleted item", resource_id=resource.id)
        self._authorize(identity, resource, "share")

        if preset:
            permissions = preset_permissions(preset)
        entry = self.acl_store.grant(
            resource.kind, resource.id, subject_type, subject_id, permissions or (), identity.user_id
        )
        self.activity.log(
            "ACCESS_GRANTED",
            identity.user_id,
            resource.kind,
            resource.id,
            subject_type=entry.subject_type,
            subject_id=entry.subject_id,
            permissions=list(entry.permissions),
        )
        return entry

    def revoke_access(
        self,
        identity: Identity,
        resource_type: ResourceKind | str,
        resource_id: str,
        subject_type: SubjectType | str,
        subject_id: str,
    ) -> None:
        resource = self._get(resource_type, resource_id)
        self._authorize(identity, resource, "share")

        if not self.acl_store.revoke(resource.kind, resource.id, subject_type, subject_id):
            raise NotFound("Access entry not found", resource_id=resource.id)
        self.activity.log(
            "ACCESS_REVOKED",
            identity.user_id,
            resource.kind,
            resource.id,
            subject_type=str(getattr(subject_type, "value", subject_type)).upper(),
            subject_id=subject_id,
        )

    def list_access(self, identity: Identity, resource_type: ResourceKind | str, resource_id: str) -> list[AclEntry]:
        resource = self._get(resource_type, resource_id)
        self._authorize(identity, resource, "share")
        return self.acl_store.list_for_resource(resource.kind, resource.id)

    # --- queries ---

    def check_permission(
        self,
        identity: Identity,
        resource_type: ResourceKind | str,
        resource_id: str,
        action: str,
    ) -> bool:
        action = normalize_action(action)
        resource = self.store.get(normalize_resource_type(resource_type), resource_id)
        return self.evaluator.evaluate_permission(identity, resource, resource_type, action)

    def get_effective_permissions(
        self,
        identity: Identity,
        resource_type: ResourceKind | str,
        resource_id: str,
    ) -> PermissionSummary:
        return self.evaluator.get_user_permissions(identity, resource_type, resource_id)

    def get_resource(self, identity: Identity, kind: ResourceKind | str, resource_id: str) -> Resource:
        resource = self._get(kind, resource_id)
        self._authorize(identity, resource, "view")
        return resource

    def list_children(
        self,
        identity: Identity,
        parent_id: str,
        *,
        include_deleted: bool = False,
    ) -> list[Union[Folder, Document]]:
        parent = self._parent(parent_id)
        children = self.store.list_children(parent.id, include_deleted=include_deleted)
        return self.evaluator.filter_visible(identity, children)

