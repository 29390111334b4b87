from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Iterable, Optional, Protocol, Sequence

from sqlalchemy import and_, delete, exists, or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, sessionmaker

from docvault.core.database import session_scope, utcnow
from docvault.core.errors import ValidationError
from docvault.models.acl import AccessControlEntry
from docvault.models.schemas import ALL_PERMISSIONS, PERMISSION_PRESETS, ResourceKind, SubjectType


@dataclass(frozen=True)
class AclEntry:
    resource_type: str
    resource_id: str
    subject_type: str
    subject_id: str
    permissions: tuple[str, ...]
    granted_by: str
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


def normalize_permissions(permissions: Iterable[str]) -> tuple[str, ...]:
    """Validate a permission set and return it deduplicated in canonical order."""
    requested = {str(getattr(permission, "value", permission)).strip().lower() for permission in permissions}
    unknown = requested.difference(ALL_PERMISSIONS)
    if unknown:
        raise ValidationError(f"Unknown permissions: {', '.join(sorted(unknown))}")
    return tuple(permission for permission in ALL_PERMISSIONS if permission in requested)


def preset_permissions(preset: str) -> tuple[str, ...]:
    try:
        return PERMISSION_PRESETS[preset.upper()]
    except KeyError:
        raise ValidationError(f"Invalid preset: {preset}") from None


def normalize_resource_type(resource_type: ResourceKind | str) -> str:
    try:
        return ResourceKind(str(getattr(resource_type, "value", resource_type)).upper()).value
    except ValueError:
        raise ValidationError(f"Unknown resource type: {resource_type}") from None


def normalize_subject_type(subject_type: SubjectType | str) -> str:
    try:
        return SubjectType(str(getattr(subject_type, "value", subject_type)).upper()).value
    except ValueError:
        raise ValidationError(f"Unknown subject type: {subject_type}") from None


def require_id(value: str, label: str) -> str:
    cleaned = (value or "").strip()
    if not cleaned:
        raise ValidationError(f"{label} is required")
    return cleaned


class AclStore(Protocol):
    """Explicit grants keyed by (resource_type, resource_id, subject_type, subject_id)."""

    def grant(
        self,
        resource_type: ResourceKind | str,
        resource_id: str,
        subject_type: SubjectType | str,
        subject_id: str,
        permissions: Iterable[str],
        granted_by: str,
    ) -> AclEntry: ...

    def revoke(
        self,
        resource_type: ResourceKind | str,
        resource_id: str,
        subject_type: SubjectType | str,
        subject_id: str,
    ) -> bool: ...

    def has_any_acl(self, resource_type: ResourceKind | str, resource_id: str) -> bool: ...

    def effective_permissions(
        self,
        resource_type: ResourceKind | str,
        resource_id: str,
        user_id: str,
        group_ids: Sequence[str] = (),
    ) -> frozenset[str]: ...

    def list_for_resource(self, resource_type: ResourceKind | str, resource_id: str) -> list[AclEntry]: ...

    def list_for_subject(self, subject_type: SubjectType | str, subject_id: str) -> list[AclEntry]: ...

    def delete_for_resources(self, resources: Iterable[tuple[ResourceKind | str, str]]) -> int: ...


def user_has_permission(
    store: AclStore,
    resource_type: ResourceKind | str,
    resource_id: str,
    user_id: str,
    action: str,
    group_ids: Sequence[str] = (),
) -> bool:
    """Direct check on one resource; no ancestor walk."""
    return action in store.effective_permissions(resource_type, resource_id, user_id, group_ids)


def _to_entry(row: AccessControlEntry) -> AclEntry:
    return AclEntry(
        resource_type=row.resource_type,
        resource_id=row.resource_id,
        subject_type=row.subject_type,
        subject_id=row.subject_id,
        permissions=tuple(row.permissions or ()),
        granted_by=row.granted_by,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


class SqlAclStore:
    """ACL rows in their own SQLAlchemy persistence unit."""

    def __init__(self, session_factory: sessionmaker, *, logger: Optional[logging.Logger] = None) -> None:
        self.logger = logger or logging.getLogger(__name__)
        self._session_factory = session_factory

    def _read(self) -> Session:
        return self._session_factory()

    @staticmethod
    def _key_filter(resource_type: str, resource_id: str, subject_type: str, subject_id: str):
        return and_(
            AccessControlEntry.resource_type == resource_type,
            AccessControlEntry.resource_id == resource_id,
            AccessControlEntry.subject_type == subject_type,
            AccessControlEntry.subject_id == subject_id,
        )

    def grant(
        self,
        resource_type: ResourceKind | str,
        resource_id: str,
        subject_type: SubjectType | str,
        subject_id: str,
        permissions: Iterable[str],
        granted_by: str,
    ) -> AclEntry:
        key = (
            normalize_resource_type(resource_type),
            require_id(resource_id, "Resource id"),
            normalize_subject_type(subject_type),
            require_id(subject_id, "Subject id"),
        )
        granted = list(normalize_permissions(permissions))
        granted_by = require_id(granted_by, "Granter id")

        try:
            return self._upsert(key, granted, granted_by)
        except IntegrityError:
            # A concurrent first grant on the same key won the insert; replace its set instead.
            self.logger.debug("Concurrent grant on %s; retrying as update", key)
            return self._upsert(key, granted, granted_by)

    def _upsert(self, key: tuple[str, str, str, str], permissions: list[str], granted_by: str) -> AclEntry:
        with session_scope(self._session_factory) as session:
            row = session.scalars(select(AccessControlEntry).where(self._key_filter(*key))).first()
            if row is None:
                row = AccessControlEntry(
                    resource_type=key[0],
                    resource_id=key[1],
                    subject_type=key[2],
                    subject_id=key[3],
                )
                session.add(row)
            row.permissions = permissions
            row.granted_by = granted_by
            row.updated_at = utcnow()
            session.flush()
            return _to_entry(row)

    def revoke(
        self,
        resource_type: ResourceKind | str,
        resource_id: str,
        subject_type: SubjectType | str,
        subject_id: str,
    ) -> bool:
        key = (normalize_resource_type(resource_type), resource_id, normalize_subject_type(subject_type), subject_id)
        with session_scope(self._session_factory) as session:
            result = session.execute(delete(AccessControlEntry).where(self._key_filter(*key)))
            return bool(result.rowcount)

    def has_any_acl(self, resource_type: ResourceKind | str, resource_id: str) -> bool:
        query = select(
            exists().where(
                AccessControlEntry.resource_type == normalize_resource_type(resource_type),
                AccessControlEntry.resource_id == resource_id,
            )
        )
        with self._read() as session:
            return bool(session.scalar(query))

    def effective_permissions(
        self,
        resource_type: ResourceKind | str,
        resource_id: str,
        user_id: str,
        group_ids: Sequence[str] = (),
    ) -> frozenset[str]:
        subjects = [
            and_(
                AccessControlEntry.subject_type == SubjectType.USER.value,
                AccessControlEntry.subject_id == user_id,
            )
        ]
        groups = [group_id for group_id in group_ids if group_id]
        if groups:
            subjects.append(
                and_(
                    AccessControlEntry.subject_type == SubjectType.GROUP.value,
                    AccessControlEntry.subject_id.in_(groups),
                )
            )
        query = select(AccessControlEntry.permissions).where(
            AccessControlEntry.resource_type == normalize_resource_type(resource_type),
            AccessControlEntry.resource_id == resource_id,
            or_(*subjects),
        )
        merged: set[str] = set()
        with self._read() as session:
            for permissions in session.scalars(query):
                merged.update(permissions or ())
        return frozenset(merged)

    def list_for_resource(self, resource_type: ResourceKind | str, resource_id: str) -> list[AclEntry]:
        query = (
            select(AccessControlEntry)
            .where(
                AccessControlEntry.resource_type == normalize_resource_type(resource_type),
                AccessControlEntry.resource_id == resource_id,
            )
            .order_by(AccessControlEntry.subject_type, AccessControlEntry.subject_id)
        )
        with self._read() as session:
            return [_to_entry(row) for row in session.scalars(query)]

    def list_for_subject(self, subject_type: SubjectType | str, subject_id: str) -> list[AclEntry]:
        query = (
            select(AccessControlEntry)
            .where(
                AccessControlEntry.subject_type == normalize_subject_type(subject_type),
                AccessControlEntry.subject_id == subject_id,
            )
            .order_by(AccessControlEntry.resource_type, AccessControlEntry.resource_id)
        )
        with self._read() as session:
            return [_to_entry(row) for row in session.scalars(query)]

    def delete_for_resources(self, resources: Iterable[tuple[ResourceKind | str, str]]) -> int:
        by_type: dict[str, list[str]] = {}
        for resource_type, resource_id in resources:
            by_type.setdefault(normalize_resource_type(resource_type), []).append(resource_id)
        if not by_type:
            return 0

        removed = 0
        with session_scope(self._session_factory) as session:
            for resource_type, resource_ids in by_type.items():
                result = session.execute(
                    delete(AccessControlEntry).where(
                        AccessControlEntry.resource_type == resource_type,
                        AccessControlEntry.resource_id.in_(resource_ids),
                    )
                )
                removed += result.rowcount or 0
        return removed
