"""Tests for the public operations: authorization, structural changes and auditing."""

from datetime import timedelta

import pytest

from docvault.core.database import utcnow
from docvault.core.errors import (
    AclStoreError,
    ConfirmationRequired,
    NotFound,
    PermissionDenied,
    ValidationError,
)
from docvault.models.identity import Identity
from docvault.models.schemas import ResourceKind, Role, SubjectType
from docvault.services.activity_log import ActivityLogger
from docvault.services.hierarchy_service import HierarchyService

FOLDER = ResourceKind.FOLDER
DOCUMENT = ResourceKind.DOCUMENT
USER = SubjectType.USER


def share(acl_store, resource, identity, *permissions):
    acl_store.grant(resource.kind, resource.id, USER, identity.user_id, permissions, "root")


class TestCreateResource:
    def test_upload_on_parent_is_required(self, service, bob, reports):
        with pytest.raises(PermissionDenied):
            service.create_resource(bob, DOCUMENT, "notes.txt", reports.id)

    def test_contributor_can_upload(self, service, acl_store, sink, bob, reports):
        share(acl_store, reports, bob, "view", "upload")

        document = service.create_resource(bob, "document", "notes.txt", reports.id, size=12)

        assert document.path == "/Finance/Reports/notes.txt"
        assert document.size == 12
        assert sink.actions == ["DOCUMENT_UPLOADED"]
        assert sink.events[0].actor_id == "bob"

    def test_auto_rename_on_request(self, service, super_admin, finance, reports):
        folder = service.create_resource(super_admin, FOLDER, "Reports", finance.id, auto_rename=True)
        assert folder.name == "Reports (1)"

    def test_unknown_parent(self, service, super_admin):
        with pytest.raises(NotFound):
            service.create_resource(super_admin, FOLDER, "Anywhere", "missing")

    def test_create_department_needs_an_admin_role(self, service, super_admin, finance_admin, bob):
        with pytest.raises(PermissionDenied):
            service.create_department(bob, "Legal")
        legal = service.create_department(super_admin, "Legal", code="lg")
        assert legal.path == "/Legal"
        assert legal.code == "LG"
        assert service.create_department(finance_admin, "Audit").path == "/Audit"


class TestDepartmentManagement:
    def test_upload_grant_does_not_allow_renaming_a_department(self, service, store, acl_store, bob, finance, q1):
        share(acl_store, finance, bob, "view", "upload")

        with pytest.raises(PermissionDenied):
            service.rename_resource(bob, ResourceKind.DEPARTMENT, finance.id, "Hijacked")
        with pytest.raises(PermissionDenied):
            service.update_department(bob, finance.id, name="Hijacked")
        assert store.get(ResourceKind.DEPARTMENT, finance.id).path == "/Finance"
        assert store.get(DOCUMENT, q1.id).path == "/Finance/Reports/Q1.pdf"

    def test_assigned_admin_renames_the_department(self, service, store, sink, finance_admin, finance, q1):
        renamed = service.rename_resource(finance_admin, ResourceKind.DEPARTMENT, finance.id, "Treasury")

        assert renamed.path == "/Treasury"
        assert store.get(DOCUMENT, q1.id).path == "/Treasury/Reports/Q1.pdf"
        assert sink.actions == ["DEPARTMENT_UPDATED"]

    def test_admin_of_another_department_is_refused(self, service, finance_admin, hr):
        with pytest.raises(PermissionDenied):
            service.update_department(finance_admin, hr.id, name="People")

    def test_my_drive_cannot_be_renamed(self, service, my_drive):
        owner = Identity(user_id="alice", my_drive_department_id=my_drive.id)
        with pytest.raises(PermissionDenied):
            service.rename_resource(owner, ResourceKind.DEPARTMENT, my_drive.id, "Mine")
        with pytest.raises(PermissionDenied):
            service.update_department(
                Identity(user_id="root", role=Role.SUPER_ADMIN), my_drive.id, name="Mine"
            )

    def test_deactivation_stops_inheritance_and_creation(
        self, service, store, acl_store, super_admin, bob, finance, q1
    ):
        share(acl_store, finance, bob, "view")
        assert service.check_permission(bob, DOCUMENT, q1.id, "view")

        updated = service.update_department(super_admin, finance.id, is_active=False)

        assert updated.is_active is False
        assert store.get(ResourceKind.DEPARTMENT, finance.id).is_active is False
        assert not service.check_permission(bob, DOCUMENT, q1.id, "view")
        with pytest.raises(ValidationError):
            service.create_resource(super_admin, FOLDER, "Late", finance.id)

        service.update_department(super_admin, finance.id, is_active=True)
        assert service.check_permission(bob, DOCUMENT, q1.id, "view")

    def test_unknown_department(self, service, super_admin):
        with pytest.raises(NotFound):
            service.update_department(super_admin, "missing", is_active=False)


class TestMoveAndRename:
    def test_move_needs_rights_on_both_ends(self, service, finance_admin, hr, reports):
        with pytest.raises(PermissionDenied):
            service.move_resource(finance_admin, FOLDER, reports.id, hr.id)

    def test_move_across_departments(self, service, store, sink, super_admin, hr, reports, q1):
        moved = service.move_resource(super_admin, FOLDER, reports.id, hr.id)

        assert moved.department_id == hr.id
        child = store.get(DOCUMENT, q1.id)
        assert child.department_id == hr.id
        assert child.path == "/HR/Reports/Q1.pdf"
        assert sink.actions == ["FOLDER_MOVED"]
        assert sink.events[0].details["old_path"] == "/Finance/Reports"

    def test_acl_holder_can_move_within_granted_area(self, service, acl_store, bob, finance, reports, q1):
        archive = service.path_manager.create(FOLDER, "Archive", finance.id)
        share(acl_store, q1, bob, "view", "delete")
        share(acl_store, archive, bob, "view", "upload")

        moved = service.move_resource(bob, DOCUMENT, q1.id, archive.id)
        assert moved.path == "/Finance/Archive/Q1.pdf"

    def test_rename_requires_upload(self, service, acl_store, bob, reports):
        with pytest.raises(PermissionDenied):
            service.rename_resource(bob, FOLDER, reports.id, "Statements")
        share(acl_store, reports, bob, "view", "upload")
        assert service.rename_resource(bob, FOLDER, reports.id, "Statements").path == "/Finance/Statements"

    def test_unknown_kind(self, service, super_admin, reports):
        with pytest.raises(ValidationError):
            service.rename_resource(super_admin, "shelf", reports.id, "x")


class TestTrash:
    def test_delete_and_restore(self, service, store, sink, finance_admin, reports, q1):
        service.soft_delete_resource(finance_admin, FOLDER, reports.id)
        assert store.get(DOCUMENT, q1.id).is_deleted

        service.restore_resource(finance_admin, FOLDER, reports.id)
        assert not store.get(DOCUMENT, q1.id).is_deleted
        assert sink.actions == ["FOLDER_DELETED", "FOLDER_RESTORED"]

    def test_delete_requires_delete_permission(self, service, acl_store, bob, q1):
        share(acl_store, q1, bob, "view")
        with pytest.raises(PermissionDenied):
            service.soft_delete_resource(bob, DOCUMENT, q1.id)

    def test_bulk_restore_reports_each_item(self, service, finance_admin, finance, reports, q1):
        loose = service.path_manager.create(DOCUMENT, "loose.txt", finance.id)
        service.soft_delete_resource(finance_admin, DOCUMENT, loose.id)
        service.soft_delete_resource(finance_admin, FOLDER, reports.id)

        restored, failed = service.bulk_restore(finance_admin, [loose.id, q1.id, "missing"])

        assert restored == [loose.id]
        assert failed == {q1.id: "parent_still_deleted", "missing": "not_found"}

    def test_list_trash_shows_purge_date(self, service, finance_admin, bob, q1):
        service.soft_delete_resource(finance_admin, DOCUMENT, q1.id)

        items = service.list_trash(finance_admin)
        assert [item.id for item in items] == [q1.id]
        assert items[0].auto_delete_at == items[0].deleted_at + timedelta(days=30)
        assert service.list_trash(bob) == []
        assert service.list_trash(finance_admin, now=utcnow() + timedelta(days=31)) == []

    def test_permanent_delete_requires_confirmation_first(self, service, bob):
        with pytest.raises(ConfirmationRequired):
            service.permanently_delete_resource(bob, FOLDER, "missing")

    def test_permanent_delete_clears_acl_rows(self, service, store, acl_store, finance_admin, bob, reports, q1):
        share(acl_store, reports, bob, "view")
        share(acl_store, q1, bob, "view")

        removed = service.permanently_delete_resource(finance_admin, FOLDER, reports.id, confirmed=True)

        assert len(removed) == 2
        assert store.get(DOCUMENT, q1.id) is None
        assert not acl_store.has_any_acl(FOLDER, reports.id)
        assert not acl_store.has_any_acl(DOCUMENT, q1.id)

    def test_acl_cleanup_failure_does_not_fail_the_delete(self, service, store, monkeypatch, finance_admin, q1):
        def unavailable(resources):
            raise AclStoreError("down")

        monkeypatch.setattr(service.acl_store, "delete_for_resources", unavailable)
        service.permanently_delete_resource(finance_admin, DOCUMENT, q1.id, confirmed=True)
        assert store.get(DOCUMENT, q1.id) is None

    def test_purge_trash(self, service, store, super_admin, finance_admin, reports, q1):
        service.soft_delete_resource(finance_admin, FOLDER, reports.id)
        with pytest.raises(PermissionDenied):
            service.purge_trash(finance_admin)

        assert service.purge_trash(super_admin) == []
        removed = service.purge_trash(super_admin, now=utcnow() + timedelta(days=31))
        assert {resource_id for _, resource_id in removed} == {reports.id, q1.id}
        assert store.get(FOLDER, reports.id) is None


class TestSharing:
    def test_grant_needs_share(self, service, acl_store, bob, alice, reports):
        share(acl_store, reports, bob, "view")
        with pytest.raises(PermissionDenied):
            service.grant_access(bob, FOLDER, reports.id, USER, alice.user_id, ["view"])

    def test_grant_with_preset(self, service, acl_store, sink, finance_admin, alice, reports, q1):
        entry = service.grant_access(finance_admin, FOLDER, reports.id, USER, alice.user_id, preset="contributor")

        assert entry.permissions == ("view", "download", "upload")
        assert entry.granted_by == finance_admin.user_id
        assert service.check_permission(alice, DOCUMENT, q1.id, "upload")
        assert sink.actions == ["ACCESS_GRANTED"]

    def test_delegated_sharing(self, service, acl_store, bob, alice, reports, q1):
        share(acl_store, reports, bob, "view", "share")
        service.grant_access(bob, FOLDER, reports.id, "user", alice.user_id, ["view"])
        assert service.check_permission(alice, DOCUMENT, q1.id, "view")

    def test_revoke(self, service, finance_admin, alice, reports):
        service.grant_access(finance_admin, FOLDER, reports.id, USER, alice.user_id, ["view"])
        service.revoke_access(finance_admin, FOLDER, reports.id, USER, alice.user_id)

        assert service.list_access(finance_admin, FOLDER, reports.id) == []
        with pytest.raises(NotFound):
            service.revoke_access(finance_admin, FOLDER, reports.id, USER, alice.user_id)

    def test_cannot_share_a_deleted_item(self, service, finance_admin, alice, q1):
        service.soft_delete_resource(finance_admin, DOCUMENT, q1.id)
        with pytest.raises(ValidationError):
            service.grant_access(finance_admin, DOCUMENT, q1.id, USER, alice.user_id, ["view"])


class TestQueries:
    def test_check_permission_on_missing_resource(self, service, super_admin):
        assert service.check_permission(super_admin, DOCUMENT, "missing", "view") is False

    def test_effective_permissions(self, service, acl_store, bob, reports):
        share(acl_store, reports, bob, "view", "upload")
        summary = service.get_effective_permissions(bob, FOLDER, reports.id)
        assert summary.permissions == ("view", "upload")
        assert summary.can_create_subfolder

    def test_list_children_is_filtered_by_view(self, service, acl_store, bob, finance, reports):
        hidden = service.path_manager.create(FOLDER, "Hidden", finance.id)
        share(acl_store, reports, bob, "view")

        assert [child.id for child in service.list_children(bob, finance.id)] == [reports.id]

    def test_get_resource_requires_view(self, service, bob, q1):
        with pytest.raises(PermissionDenied):
            service.get_resource(bob, DOCUMENT, q1.id)


def test_audit_failure_never_fails_the_operation(store, paths, acl_store, evaluator, super_admin, finance):
    class BrokenSink:
        def record(self, event):
            raise RuntimeError("audit backend down")

    service = HierarchyService(
        store=store,
        path_manager=paths,
        acl_store=acl_store,
        evaluator=evaluator,
        activity=ActivityLogger(BrokenSink()),
    )
    folder = service.create_resource(super_admin, FOLDER, "Audited", finance.id)
    assert store.get(FOLDER, folder.id) is not None
