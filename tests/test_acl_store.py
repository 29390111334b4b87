"""Tests for the SQL-backed ACL store."""

import pytest

from docvault.core.errors import ValidationError
from docvault.models.schemas import ResourceKind, SubjectType
from docvault.services.acl_store import normalize_permissions, preset_permissions, user_has_permission

FOLDER = ResourceKind.FOLDER
USER = SubjectType.USER
GROUP = SubjectType.GROUP


class TestGrant:
    def test_grant_creates_an_entry(self, acl_store):
        entry = acl_store.grant(FOLDER, "f1", USER, "alice", ["view", "download"], "root")

        assert entry.resource_type == "FOLDER"
        assert entry.subject_type == "USER"
        assert entry.permissions == ("view", "download")
        assert entry.granted_by == "root"
        assert acl_store.has_any_acl(FOLDER, "f1")

    def test_regrant_replaces_the_set(self, acl_store):
        acl_store.grant(FOLDER, "f1", USER, "alice", ["view", "download", "share"], "root")
        acl_store.grant(FOLDER, "f1", USER, "alice", ["upload"], "bob")

        entries = acl_store.list_for_resource(FOLDER, "f1")
        assert len(entries) == 1
        assert entries[0].permissions == ("upload",)
        assert entries[0].granted_by == "bob"

    def test_grant_is_idempotent(self, acl_store):
        first = acl_store.grant(FOLDER, "f1", USER, "alice", ["view"], "root")
        second = acl_store.grant(FOLDER, "f1", USER, "alice", ["view"], "root")
        assert first.permissions == second.permissions
        assert len(acl_store.list_for_resource(FOLDER, "f1")) == 1

    def test_empty_grant_still_counts_as_an_acl(self, acl_store):
        acl_store.grant(FOLDER, "f1", USER, "alice", [], "root")
        assert acl_store.has_any_acl(FOLDER, "f1")
        assert acl_store.effective_permissions(FOLDER, "f1", "alice") == frozenset()

    def test_unknown_permission_is_rejected(self, acl_store):
        with pytest.raises(ValidationError):
            acl_store.grant(FOLDER, "f1", USER, "alice", ["view", "admin"], "root")

    def test_blank_subject_is_rejected(self, acl_store):
        with pytest.raises(ValidationError):
            acl_store.grant(FOLDER, "f1", USER, "  ", ["view"], "root")

    def test_unknown_subject_type_is_rejected(self, acl_store):
        with pytest.raises(ValidationError):
            acl_store.grant(FOLDER, "f1", "ROBOT", "r2", ["view"], "root")


class TestRevoke:
    def test_revoke_reports_whether_a_row_was_removed(self, acl_store):
        acl_store.grant(FOLDER, "f1", USER, "alice", ["view"], "root")

        assert acl_store.revoke(FOLDER, "f1", USER, "alice") is True
        assert acl_store.revoke(FOLDER, "f1", USER, "alice") is False
        assert not acl_store.has_any_acl(FOLDER, "f1")


class TestEffectivePermissions:
    def test_union_of_user_and_group_entries(self, acl_store):
        acl_store.grant(FOLDER, "f1", USER, "alice", ["view"], "root")
        acl_store.grant(FOLDER, "f1", GROUP, "accounting", ["download", "upload"], "root")
        acl_store.grant(FOLDER, "f1", GROUP, "sales", ["delete"], "root")

        granted = acl_store.effective_permissions(FOLDER, "f1", "alice", ["accounting"])
        assert granted == frozenset({"view", "download", "upload"})

    def test_other_resource_types_do_not_leak(self, acl_store):
        acl_store.grant(ResourceKind.DOCUMENT, "f1", USER, "alice", ["view"], "root")
        assert acl_store.effective_permissions(FOLDER, "f1", "alice") == frozenset()
        assert not acl_store.has_any_acl(FOLDER, "f1")

    def test_user_has_permission(self, acl_store):
        acl_store.grant(FOLDER, "f1", GROUP, "accounting", ["view"], "root")
        assert user_has_permission(acl_store, FOLDER, "f1", "alice", "view", ["accounting"])
        assert not user_has_permission(acl_store, FOLDER, "f1", "alice", "view")


class TestListing:
    def test_list_for_subject(self, acl_store):
        acl_store.grant(FOLDER, "f1", USER, "alice", ["view"], "root")
        acl_store.grant(ResourceKind.DOCUMENT, "d1", USER, "alice", ["download"], "root")
        acl_store.grant(FOLDER, "f2", USER, "bob", ["view"], "root")

        entries = acl_store.list_for_subject(USER, "alice")
        assert [(entry.resource_type, entry.resource_id) for entry in entries] == [
            ("DOCUMENT", "d1"),
            ("FOLDER", "f1"),
        ]

    def test_delete_for_resources(self, acl_store):
        acl_store.grant(FOLDER, "f1", USER, "alice", ["view"], "root")
        acl_store.grant(FOLDER, "f1", GROUP, "accounting", ["view"], "root")
        acl_store.grant(ResourceKind.DOCUMENT, "d1", USER, "alice", ["view"], "root")
        acl_store.grant(FOLDER, "keep", USER, "alice", ["view"], "root")

        removed = acl_store.delete_for_resources([(FOLDER, "f1"), (ResourceKind.DOCUMENT, "d1")])

        assert removed == 3
        assert not acl_store.has_any_acl(FOLDER, "f1")
        assert acl_store.has_any_acl(FOLDER, "keep")
        assert acl_store.delete_for_resources([]) == 0


def test_permissions_are_normalized_to_canonical_order():
    assert normalize_permissions(["SHARE", "view", "view"]) == ("view", "share")


def test_presets():
    assert preset_permissions("viewer") == ("view",)
    assert preset_permissions("OWNER") == ("view", "download", "upload", "delete", "share")
    with pytest.raises(ValidationError):
        preset_permissions("ADMIN")
