from __future__ import annotations

import logging
from typing import Any, Iterable, Optional, Sequence

from supabase import Client, create_client

from docvault.core.config import Settings
from docvault.core.errors import AclStoreError
from docvault.models.schemas import ResourceKind, SubjectType
from docvault.services.acl_store import (
    AclEntry,
    require_id,
    normalize_permissions,
    normalize_resource_type,
    normalize_subject_type,
)

ACL_COLUMNS = "resource_type, resource_id, subject_type, subject_id, permissions, granted_by, created_at, updated_at"
UNIQUE_KEY = "resource_type,resource_id,subject_type,subject_id"


def _quoted(value: str) -> str:
    """Quote a value for a PostgREST filter so reserved characters stay literal."""
    escaped = str(value).replace("\\", "\\\\").replace('"', '\\"')
    return f'"{escaped}"'


def _entry_from_record(record: dict[str, Any]) -> AclEntry:
    return AclEntry(
        resource_type=str(record.get("resource_type") or ""),
        resource_id=str(record.get("resource_id") or ""),
        subject_type=str(record.get("subject_type") or ""),
        subject_id=str(record.get("subject_id") or ""),
        permissions=tuple(record.get("permissions") or ()),
        granted_by=str(record.get("granted_by") or ""),
        created_at=record.get("created_at"),
        updated_at=record.get("updated_at"),
    )


class SupabaseAclStore:
    """ACL entries kept in a Supabase table with a unique index on the grant key."""

    def __init__(
        self,
        settings: Settings,
        *,
        client: Optional[Client] = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.logger = logger or logging.getLogger(__name__)
        self._settings = settings
        self._table = settings.supabase_acl_table
        self._client: Optional[Client] = client

        if self._client is None and settings.supabase_url and settings.supabase_key:
            try:
                self._client = create_client(settings.supabase_url, settings.supabase_key)
            except Exception as exc:  # pragma: no cover - defensive logging
                self.logger.error("Failed to initialise Supabase client for ACL entries: %s", exc)
        elif self._client is None:
            self.logger.warning("Supabase credentials missing; Supabase ACL store disabled")

    def _require_client(self) -> Client:
        if self._client is None:
            raise AclStoreError("Supabase client is not configured for ACL entries")
        return self._client

    def _resource_query(self, query, resource_type: ResourceKind | str, resource_id: str):
        return query.eq("resource_type", normalize_resource_type(resource_type)).eq("resource_id", resource_id)

    def grant(
        self,
        resource_type: ResourceKind | str,
        resource_id: str,
        subject_type: SubjectType | str,
        subject_id: str,
        permissions: Iterable[str],
        granted_by: str,
    ) -> AclEntry:
        client = self._require_client()
        payload = {
            "resource_type": normalize_resource_type(resource_type),
            "resource_id": require_id(resource_id, "Resource id"),
            "subject_type": normalize_subject_type(subject_type),
            "subject_id": require_id(subject_id, "Subject id"),
            "permissions": list(normalize_permissions(permissions)),
            "granted_by": require_id(granted_by, "Granter id"),
        }

        try:
            response = client.table(self._table).upsert(payload, on_conflict=UNIQUE_KEY).execute()
        except Exception as exc:
            self.logger.error("Failed to grant access: %s", exc)
            raise AclStoreError("Failed to grant access") from exc

        records = response.data or []
        return _entry_from_record(records[0] if records else payload)

    def revoke(
        self,
        resource_type: ResourceKind | str,
        resource_id: str,
        subject_type: SubjectType | str,
        subject_id: str,
    ) -> bool:
        client = self._require_client()
        query = self._resource_query(client.table(self._table).delete(), resource_type, resource_id)
        query = query.eq("subject_type", normalize_subject_type(subject_type)).eq("subject_id", subject_id)

        try:
            response = query.execute()
        except Exception as exc:
            self.logger.error("Failed to revoke access: %s", exc)
            raise AclStoreError("Failed to revoke access") from exc

        return bool(response.data)

    def has_any_acl(self, resource_type: ResourceKind | str, resource_id: str) -> bool:
        client = self._require_client()
        query = self._resource_query(client.table(self._table).select("resource_id", count="exact"), resource_type, resource_id)

        # Errors propagate: reporting "no ACL" here would switch inheritance on.
        try:
            response = query.limit(1).execute()
        except Exception as exc:
            self.logger.error("Failed to check ACL presence: %s", exc)
            raise AclStoreError("Failed to check ACL presence") from exc

        if response.count is not None:
            return response.count > 0
        return bool(response.data)

    def effective_permissions(
        self,
        resource_type: ResourceKind | str,
        resource_id: str,
        user_id: str,
        group_ids: Sequence[str] = (),
    ) -> frozenset[str]:
        client = self._require_client()
        conditions = [f"and(subject_type.eq.{SubjectType.USER.value},subject_id.eq.{_quoted(user_id)})"]
        sanitized_groups = [group_id for group_id in group_ids if group_id]
        if sanitized_groups:
            group_clause = ",".join(_quoted(group_id) for group_id in sanitized_groups)
            conditions.append(f"and(subject_type.eq.{SubjectType.GROUP.value},subject_id.in.({group_clause}))")

        query = self._resource_query(client.table(self._table).select("permissions"), resource_type, resource_id)
        try:
            response = query.or_(",".join(conditions)).execute()
        except Exception as exc:  # pragma: no cover - defensive logging
            self.logger.error("Failed to fetch ACL permissions: %s", exc)
            return frozenset()

        merged: set[str] = set()
        for record in response.data or []:
            merged.update(record.get("permissions") or ())
        return frozenset(merged)

    def list_for_resource(self, resource_type: ResourceKind | str, resource_id: str) -> list[AclEntry]:
        client = self._require_client()
        query = self._resource_query(client.table(self._table).select(ACL_COLUMNS), resource_type, resource_id)
        try:
            response = query.order("subject_id").execute()
        except Exception as exc:
            self.logger.error("Failed to list ACL entries: %s", exc)
            raise AclStoreError("Failed to list ACL entries") from exc
        return [_entry_from_record(record) for record in response.data or []]

    def list_for_subject(self, subject_type: SubjectType | str, subject_id: str) -> list[AclEntry]:
        client = self._require_client()
        try:
            response = (
                client.table(self._table)
                .select(ACL_COLUMNS)
                .eq("subject_type", normalize_subject_type(subject_type))
                .eq("subject_id", subject_id)
                .execute()
            )
        except Exception as exc:
            self.logger.error("Failed to list ACL entries for subject: %s", exc)
            raise AclStoreError("Failed to list ACL entries for subject") from exc
        return [_entry_from_record(record) for record in response.data or []]

    def delete_for_resources(self, resources: Iterable[tuple[ResourceKind | str, str]]) -> int:
        client = self._require_client()
        by_type: dict[str, list[str]] = {}
        for resource_type, resource_id in resources:
            by_type.setdefault(normalize_resource_type(resource_type), []).append(resource_id)

        removed = 0
        for resource_type, resource_ids in by_type.items():
            try:
                response = (
                    client.table(self._table)
                    .delete()
                    .eq("resource_type", resource_type)
                    .in_("resource_id", resource_ids)
                    .execute()
                )
            except Exception as exc:
                self.logger.error("Failed to clear ACL entries for removed resources: %s", exc)
                raise AclStoreError("Failed to clear ACL entries") from exc
            removed += len(response.data or [])
        return removed
