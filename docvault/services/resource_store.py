from __future__ import annotations

import logging
from contextlib import contextmanager
from datetime import datetime
from typing import Iterable, Iterator, Optional, Sequence, Union

from sqlalchemy import String, and_, delete, func, literal, select, update
from sqlalchemy.orm import Session, sessionmaker

from docvault.core.database import session_scope, utcnow
from docvault.core.errors import ParentNotFound, ValidationError
from docvault.models.resource import MODEL_BY_KIND, Department, Document, Folder
from docvault.models.schemas import ResourceKind
from docvault.utils.paths import descendant_prefix

Container = Union[Folder, Department]
Resource = Union[Department, Folder, Document]

# Folders and documents are the only kinds that live under a path prefix.
TREE_MODELS: tuple[type, ...] = (Folder, Document)


def _under_prefix(column, prefix: str):
    """Exact, case-sensitive prefix match; LIKE wildcards in ``prefix`` are escaped."""
    return and_(
        column.startswith(prefix, autoescape=True),
        func.substr(column, 1, len(prefix)) == prefix,
    )


class ResourceRepository:
    """Session-bound queries over the resource tree. One instance per unit of work."""

    def __init__(self, session: Session) -> None:
        self.session = session

    # --- lookups ---

    def get(self, kind: ResourceKind | str, resource_id: str) -> Optional[Resource]:
        model = MODEL_BY_KIND[ResourceKind(kind)]
        return self.session.get(model, resource_id)

    def get_department(self, department_id: str) -> Optional[Department]:
        return self.session.get(Department, department_id)

    def get_folder(self, folder_id: str) -> Optional[Folder]:
        return self.session.get(Folder, folder_id)

    def get_document(self, document_id: str) -> Optional[Document]:
        return self.session.get(Document, document_id)

    def find_item(self, item_id: str) -> Optional[Union[Folder, Document]]:
        """Look an id up as a folder, then as a document."""
        return self.get_folder(item_id) or self.get_document(item_id)

    def get_container(self, container_id: str) -> Optional[Container]:
        """Resolve an id that may name a Folder or a Department."""
        if not container_id:
            return None
        return self.get_folder(container_id) or self.get_department(container_id)

    def resolve_parent(self, parent_id: str) -> Container:
        """Like get_container, but documents are rejected and a miss raises."""
        if not parent_id:
            raise ValidationError("Parent id is required")
        container = self.get_container(parent_id)
        if container is not None:
            return container
        if self.get_document(parent_id) is not None:
            raise ValidationError("A document cannot be a parent", resource_id=parent_id)
        raise ParentNotFound("Parent (Department or Folder) not found", resource_id=parent_id)

    def sibling_names(self, kind: ResourceKind, parent_id: str, *, exclude_id: Optional[str] = None) -> set[str]:
        model = MODEL_BY_KIND[ResourceKind(kind)]
        query = select(model.name).where(model.parent_id == parent_id)
        if exclude_id:
            query = query.where(model.id != exclude_id)
        rows = self.session.execute(query)
        return {row[0] for row in rows}

    def list_children(self, parent_id: str, *, include_deleted: bool = False) -> list[Union[Folder, Document]]:
        children: list[Union[Folder, Document]] = []
        for model in TREE_MODELS:
            query = select(model).where(model.parent_id == parent_id)
            if not include_deleted:
                query = query.where(model.is_deleted.is_(False))
            children.extend(self.session.scalars(query.order_by(model.name)))
        return children

    def find_by_path_prefix(
        self,
        prefix: str,
        *,
        include_deleted: bool = True,
        models: Iterable[type] = TREE_MODELS,
    ) -> list[Union[Folder, Document]]:
        results: list[Union[Folder, Document]] = []
        for model in models:
            query = select(model).where(_under_prefix(model.path, prefix))
            if not include_deleted:
                query = query.where(model.is_deleted.is_(False))
            results.extend(self.session.scalars(query.order_by(model.path)))
        return results

    def list_trash(self, *, since: datetime) -> list[Union[Folder, Document]]:
        items: list[Union[Folder, Document]] = []
        for model in TREE_MODELS:
            query = select(model).where(
                model.is_deleted.is_(True),
                model.deleted_at.is_not(None),
                model.deleted_at >= since,
            )
            items.extend(self.session.scalars(query))
        return sorted(items, key=lambda item: item.deleted_at, reverse=True)

    def list_expired_trash(self, *, before: datetime) -> list[Union[Folder, Document]]:
        items: list[Union[Folder, Document]] = []
        for model in TREE_MODELS:
            query = select(model).where(
                model.is_deleted.is_(True),
                model.deleted_at.is_not(None),
                model.deleted_at < before,
            )
            items.extend(self.session.scalars(query))
        # Shallowest first so a purged folder takes its subtree with it.
        return sorted(items, key=lambda item: item.path.count("/"))

    # --- writes ---

    def add(self, resource: Resource) -> Resource:
        self.session.add(resource)
        self.session.flush()
        return resource

    def flush(self) -> None:
        self.session.flush()

    def rewrite_path_prefix(
        self,
        model: type,
        old_path: str,
        new_path: str,
        *,
        department_id: Optional[str] = None,
    ) -> int:
        """Replace ``old_path`` with ``new_path`` on every strict descendant row of ``model``."""
        values = {
            "path": literal(new_path, type_=String) + func.substr(model.path, len(old_path) + 1, type_=String),
            "updated_at": utcnow(),
        }
        if department_id is not None:
            values["department_id"] = department_id
        statement = (
            update(model)
            .where(_under_prefix(model.path, descendant_prefix(old_path)))
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        return self.session.execute(statement).rowcount or 0

    def mark_deleted_under(self, model: type, path: str, deleted_at: datetime) -> int:
        statement = (
            update(model)
            .where(_under_prefix(model.path, descendant_prefix(path)))
            .values(is_deleted=True, deleted_at=deleted_at, updated_at=utcnow())
            .execution_options(synchronize_session="fetch")
        )
        return self.session.execute(statement).rowcount or 0

    def clear_deleted_under(self, model: type, path: str) -> int:
        statement = (
            update(model)
            .where(_under_prefix(model.path, descendant_prefix(path)), model.is_deleted.is_(True))
            .values(is_deleted=False, deleted_at=None, updated_at=utcnow())
            .execution_options(synchronize_session="fetch")
        )
        return self.session.execute(statement).rowcount or 0

    def ids_under(self, model: type, path: str) -> list[str]:
        rows = self.session.execute(select(model.id).where(_under_prefix(model.path, descendant_prefix(path))))
        return [row[0] for row in rows]

    def delete_under(self, model: type, path: str) -> int:
        statement = (
            delete(model)
            .where(_under_prefix(model.path, descendant_prefix(path)))
            .execution_options(synchronize_session=False)
        )
        return self.session.execute(statement).rowcount or 0

    def delete(self, resource: Resource) -> None:
        self.session.delete(resource)
        self.session.flush()


class ResourceStore:
    """SQLAlchemy persistence for departments, folders and documents."""

    def __init__(self, session_factory: sessionmaker, *, logger: Optional[logging.Logger] = None) -> None:
        self.logger = logger or logging.getLogger(__name__)
        self._session_factory = session_factory

    @contextmanager
    def transaction(self) -> Iterator[ResourceRepository]:
        """One session spanning departments, folders and documents; all or nothing."""
        with session_scope(self._session_factory) as session:
            yield ResourceRepository(session)

    @contextmanager
    def read(self) -> Iterator[ResourceRepository]:
        session: Session = self._session_factory()
        try:
            yield ResourceRepository(session)
        finally:
            session.close()

    # Convenience single-shot reads used outside of a unit of work.

    def get(self, kind: ResourceKind | str, resource_id: str) -> Optional[Resource]:
        with self.read() as repo:
            return repo.get(kind, resource_id)

    def get_container(self, container_id: str) -> Optional[Container]:
        with self.read() as repo:
            return repo.get_container(container_id)

    def find_item(self, item_id: str) -> Optional[Union[Folder, Document]]:
        with self.read() as repo:
            return repo.find_item(item_id)

    def find_by_path_prefix(self, prefix: str, *, include_deleted: bool = True) -> Sequence[Union[Folder, Document]]:
        with self.read() as repo:
            return repo.find_by_path_prefix(prefix, include_deleted=include_deleted)

    def list_children(self, parent_id: str, *, include_deleted: bool = False) -> Sequence[Union[Folder, Document]]:
        with self.read() as repo:
            return repo.list_children(parent_id, include_deleted=include_deleted)
