from __future__ import annotations

import logging
from contextlib import contextmanager
from datetime import datetime, timedelta
from typing import Iterable, Iterator, Optional, Union

from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from docvault.core.database import utcnow
from docvault.core.errors import (
    CascadeFailed,
    ConfirmationRequired,
    DocVaultError,
    InvalidMove,
    NotFound,
    ParentNotFound,
    ParentStillDeleted,
    ValidationError,
)
from docvault.models.resource import Department, Document, Folder
from docvault.models.schemas import OwnerType, ResourceKind
from docvault.services.resource_store import TREE_MODELS, Resource, ResourceRepository, ResourceStore
from docvault.services.subtree_locks import Deadline, SubtreeLocks
from docvault.utils.paths import department_path, is_same_or_descendant, join_path, normalize_name

RemovedResource = tuple[ResourceKind, str]

# A move whose subtree changes department between planning and locking plans again.
LOCK_PLANNING_ATTEMPTS = 3


class LocksOutdated(CascadeFailed):
    """The resource left the locked departments before the locks were taken."""


class PathManager:
    """Keep materialized paths consistent under create, move, rename, delete and restore.

    Every structural operation runs in one store transaction while holding the
    locks of the departments it touches; descendant rows are rewritten with
    set-based updates by path prefix.
    """

    def __init__(
        self,
        store: ResourceStore,
        *,
        locks: Optional[SubtreeLocks] = None,
        retention_days: int = 30,
        default_timeout: Optional[float] = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.logger = logger or logging.getLogger(__name__)
        self.store = store
        self.locks = locks or SubtreeLocks()
        self.retention = timedelta(days=retention_days)
        self.default_timeout = default_timeout

    # --- plumbing ---

    def _deadline(self, deadline: Optional[Deadline]) -> Deadline:
        return deadline or Deadline(self.default_timeout)

    @contextmanager
    def _structural(
        self,
        operation: str,
        lock_keys: Iterable[Optional[str]],
        deadline: Deadline,
    ) -> Iterator[ResourceRepository]:
        locked = {key for key in lock_keys if key}
        try:
            with self.locks.hold(locked, deadline=deadline):
                with self.store.transaction() as repo:
                    yield repo
                    # Still inside the transaction: an expired deadline rolls everything back.
                    deadline.check(operation)
        except DocVaultError:
            raise
        except IntegrityError as exc:
            raise ValidationError(f"{operation} conflicts with an existing resource") from exc
        except SQLAlchemyError as exc:
            raise CascadeFailed(f"{operation} could not be completed") from exc

    def _current_department(self, resource: Resource) -> Optional[str]:
        """Department the stored row belongs to now; callers may hold a stale copy."""
        with self.store.read() as repo:
            current = repo.get(resource.kind, resource.id)
        return resource.department_id if current is None else current.department_id

    @staticmethod
    def _require_locked(resource: Resource, locked: set[str]) -> None:
        if resource.department_id not in locked:
            raise LocksOutdated("Resource changed department concurrently; retry", resource_id=resource.id)

    @staticmethod
    def _load(repo: ResourceRepository, resource: Resource) -> Resource:
        current = repo.get(resource.kind, resource.id)
        if current is None:
            raise NotFound(f"{resource.kind.value.title()} not found", resource_id=resource.id)
        return current

    def _available_name(
        self,
        repo: ResourceRepository,
        parent_id: str,
        name: str,
        *,
        auto_rename: bool = False,
        exclude_id: Optional[str] = None,
    ) -> str:
        """Sibling names are unique across folders and documents, ignoring case."""
        taken = set()
        for kind in (ResourceKind.FOLDER, ResourceKind.DOCUMENT):
            taken |= {existing.lower() for existing in repo.sibling_names(kind, parent_id, exclude_id=exclude_id)}

        if name.lower() not in taken:
            return name
        if not auto_rename:
            raise ValidationError(f"A resource named '{name}' already exists here")

        counter = 1
        while f"{name} ({counter})".lower() in taken:
            counter += 1
        return f"{name} ({counter})"

    # --- path derivation ---

    def build_path(self, resource: Resource, repo: Optional[ResourceRepository] = None) -> str:
        """Set ``resource.path`` from its parent chain. Callers persist the change."""
        if repo is None:
            with self.store.read() as read_repo:
                return self.build_path(resource, read_repo)

        if resource.kind is ResourceKind.DEPARTMENT:
            resource.path = department_path(resource.name)
            return resource.path

        parent = repo.resolve_parent(resource.parent_id)
        resource.path = join_path(parent.path, resource.name)
        return resource.path

    def update_descendant_paths(
        self,
        repo: ResourceRepository,
        old_path: str,
        new_path: str,
        *,
        department_id: Optional[str] = None,
        deadline: Optional[Deadline] = None,
    ) -> int:
        """Rewrite the ``old_path`` prefix of every descendant folder and document."""
        deadline = self._deadline(deadline)
        rewritten = 0
        for model in TREE_MODELS:
            deadline.check("Path rewrite")
            rewritten += repo.rewrite_path_prefix(model, old_path, new_path, department_id=department_id)
        self.logger.debug("Rewrote %s -> %s on %d descendants", old_path, new_path, rewritten)
        return rewritten

    # --- creation ---

    def create_department(
        self,
        name: str,
        *,
        owner_type: OwnerType = OwnerType.ORG,
        owner_user_id: Optional[str] = None,
        code: Optional[str] = None,
    ) -> Department:
        name = normalize_name(name)
        if owner_type is OwnerType.USER and not owner_user_id:
            raise ValidationError("A USER department needs an owner")
        department = Department(
            name=name,
            code=(code or name[:10]).upper(),
            owner_type=OwnerType(owner_type).value,
            owner_user_id=owner_user_id,
            path=department_path(name),
        )
        try:
            with self.store.transaction() as repo:
                repo.add(department)
        except IntegrityError as exc:
            raise ValidationError(f"Department '{name}' already exists") from exc
        return department

    def create(
        self,
        kind: ResourceKind,
        name: str,
        parent_id: str,
        *,
        created_by: Optional[str] = None,
        auto_rename: bool = False,
        extension: Optional[str] = None,
        size: Optional[int] = None,
    ) -> Union[Folder, Document]:
        kind = ResourceKind(kind)
        if kind is ResourceKind.DEPARTMENT:
            raise ValidationError("Use create_department for departments")
        name = normalize_name(name)

        with self.store.read() as repo:
            parent = repo.resolve_parent(parent_id)
            lock_key = parent.department_id

        deadline = self._deadline(None)
        with self._structural("Create", [lock_key], deadline) as repo:
            parent = repo.resolve_parent(parent_id)
            if parent.is_deleted:
                raise ValidationError("Cannot create inside a deleted folder", resource_id=parent.id)
            if isinstance(parent, Department) and not parent.is_active:
                raise ValidationError("Department is inactive", resource_id=parent.id)

            name = self._available_name(repo, parent.id, name, auto_rename=auto_rename)
            if kind is ResourceKind.FOLDER:
                resource = Folder(name=name, parent_id=parent.id, department_id=parent.department_id)
            else:
                resource = Document(
                    name=name,
                    parent_id=parent.id,
                    department_id=parent.department_id,
                    extension=extension or _extension_of(name),
                    size=size or 0,
                    version=1,
                )
            resource.created_by = created_by
            self.build_path(resource, repo)
            repo.add(resource)
        return resource

    # --- structural changes ---

    def move_to(
        self,
        resource: Resource,
        new_parent_id: str,
        *,
        deadline: Optional[Deadline] = None,
    ) -> Union[Folder, Document]:
        if resource.kind is ResourceKind.DEPARTMENT:
            raise InvalidMove("Departments are tree roots and cannot be moved", resource_id=resource.id)

        deadline = self._deadline(deadline)
        for attempt in range(1, LOCK_PLANNING_ATTEMPTS + 1):
            try:
                return self._move_once(resource, new_parent_id, deadline)
            except LocksOutdated:
                if attempt == LOCK_PLANNING_ATTEMPTS:
                    raise
                self.logger.debug("Move of %s raced a department change; planning again", resource.id)

    def _move_once(self, resource: Resource, new_parent_id: str, deadline: Deadline) -> Union[Folder, Document]:
        with self.store.read() as repo:
            new_parent = repo.resolve_parent(new_parent_id)
            current = repo.get(resource.kind, resource.id)
            lock_keys = {(current or resource).department_id, new_parent.department_id}

        with self._structural("Move", lock_keys, deadline) as repo:
            current = self._load(repo, resource)
            self._require_locked(current, lock_keys)
            new_parent = repo.resolve_parent(new_parent_id)
            self._require_locked(new_parent, lock_keys)

            if new_parent.id == current.id or is_same_or_descendant(new_parent.path, current.path):
                raise InvalidMove("Cannot move a folder into itself or its own descendant", resource_id=current.id)
            if new_parent.is_deleted:
                raise ValidationError("Cannot move into a deleted folder", resource_id=new_parent.id)
            if current.parent_id == new_parent.id:
                return current

            self._available_name(repo, new_parent.id, current.name)

            old_path = current.path
            department_changed = current.department_id != new_parent.department_id
            current.parent_id = new_parent.id
            current.department_id = new_parent.department_id
            self.build_path(current, repo)
            repo.flush()

            if current.kind is ResourceKind.FOLDER:
                self.update_descendant_paths(
                    repo,
                    old_path,
                    current.path,
                    department_id=current.department_id if department_changed else None,
                    deadline=deadline,
                )
        return current

    def rename(self, resource: Resource, new_name: str, *, deadline: Optional[Deadline] = None) -> Resource:
        new_name = normalize_name(new_name)
        deadline = self._deadline(deadline)
        lock_keys = {self._current_department(resource)}

        with self._structural("Rename", lock_keys, deadline) as repo:
            current = self._load(repo, resource)
            self._require_locked(current, lock_keys)
            if current.name == new_name:
                return current

            if current.kind is not ResourceKind.DEPARTMENT:
                self._available_name(repo, current.parent_id, new_name, exclude_id=current.id)

            old_path = current.path
            current.name = new_name
            self.build_path(current, repo)
            repo.flush()

            if current.kind is not ResourceKind.DOCUMENT:
                self.update_descendant_paths(repo, old_path, current.path, deadline=deadline)
        return current

    def set_department_active(self, department: Department, is_active: bool) -> Department:
        deadline = self._deadline(None)
        with self._structural("Department update", [department.id], deadline) as repo:
            current = repo.get_department(department.id)
            if current is None:
                raise NotFound("Department not found", resource_id=department.id)
            current.is_active = bool(is_active)
        return current

    def soft_delete(self, resource: Resource, *, deadline: Optional[Deadline] = None) -> Union[Folder, Document]:
        if resource.kind is ResourceKind.DEPARTMENT:
            raise ValidationError("Departments cannot be moved to the trash", resource_id=resource.id)

        deadline = self._deadline(deadline)
        lock_keys = {self._current_department(resource)}
        with self._structural("Delete", lock_keys, deadline) as repo:
            current = self._load(repo, resource)
            self._require_locked(current, lock_keys)
            if current.is_deleted:
                raise ValidationError(f"{current.kind.value.title()} is already deleted", resource_id=current.id)

            deleted_at = utcnow()
            current.is_deleted = True
            current.deleted_at = deleted_at
            repo.flush()

            if current.kind is ResourceKind.FOLDER:
                for model in TREE_MODELS:
                    deadline.check("Delete")
                    repo.mark_deleted_under(model, current.path, deleted_at)
        return current

    def restore(self, resource: Resource, *, deadline: Optional[Deadline] = None) -> Union[Folder, Document]:
        deadline = self._deadline(deadline)
        lock_keys = {self._current_department(resource)}
        with self._structural("Restore", lock_keys, deadline) as repo:
            current = self._load(repo, resource)
            self._require_locked(current, lock_keys)
            if not current.is_deleted:
                raise ValidationError(f"{current.kind.value.title()} is not deleted", resource_id=current.id)

            parent = repo.get_container(current.parent_id)
            if parent is None:
                raise ParentNotFound("Parent folder/department not found", resource_id=current.parent_id)
            if parent.is_deleted:
                raise ParentStillDeleted("Parent is deleted; restore the parent first", resource_id=parent.id)

            current.is_deleted = False
            current.deleted_at = None
            repo.flush()

            # Every still-deleted descendant comes back, whenever it was deleted.
            if current.kind is ResourceKind.FOLDER:
                for model in TREE_MODELS:
                    deadline.check("Restore")
                    repo.clear_deleted_under(model, current.path)
        return current

    def permanent_delete(
        self,
        resource: Resource,
        *,
        confirmed: bool = False,
        deadline: Optional[Deadline] = None,
    ) -> list[RemovedResource]:
        """Irreversibly remove a resource and its subtree. Returns what was removed."""
        if not confirmed:
            raise ConfirmationRequired("Confirmation required to permanently delete", resource_id=resource.id)
        if resource.kind is ResourceKind.DEPARTMENT:
            raise ValidationError("Departments cannot be permanently deleted here", resource_id=resource.id)

        deadline = self._deadline(deadline)
        lock_keys = {self._current_department(resource)}
        with self._structural("Permanent delete", lock_keys, deadline) as repo:
            current = self._load(repo, resource)
            self._require_locked(current, lock_keys)
            removed = self._remove_subtree(repo, current, deadline)
        return removed

    def purge_expired(self, *, now: Optional[datetime] = None) -> list[RemovedResource]:
        """Permanently remove trash older than the retention window."""
        cutoff = (now or utcnow()) - self.retention
        with self.store.read() as repo:
            lock_keys = {item.department_id for item in repo.list_expired_trash(before=cutoff)}
        if not lock_keys:
            return []

        deadline = self._deadline(None)
        removed: list[RemovedResource] = []
        with self._structural("Purge", lock_keys, deadline) as repo:
            removed_ids: set[str] = set()
            for item in repo.list_expired_trash(before=cutoff):
                if item.id in removed_ids or item.department_id not in lock_keys:
                    continue
                for entry in self._remove_subtree(repo, item, deadline):
                    removed_ids.add(entry[1])
                    removed.append(entry)
        self.logger.debug("Purged %d expired trash items", len(removed))
        return removed

    def _remove_subtree(
        self,
        repo: ResourceRepository,
        resource: Union[Folder, Document],
        deadline: Deadline,
    ) -> list[RemovedResource]:
        removed: list[RemovedResource] = [(resource.kind, resource.id)]
        if resource.kind is ResourceKind.FOLDER:
            for model in TREE_MODELS:
                deadline.check("Permanent delete")
                removed.extend((model.kind, resource_id) for resource_id in repo.ids_under(model, resource.path))
                repo.delete_under(model, resource.path)
        repo.delete(resource)
        return removed


def _extension_of(name: str) -> Optional[str]:
    if "." not in name.strip("."):
        return None
    return name.rsplit(".", 1)[-1].lower()
