"""HTTP surface tests using FastAPI's TestClient."""

import pytest
from fastapi.testclient import TestClient

from docvault.core.dependencies import get_hierarchy_service
from docvault.main import app


@pytest.fixture
def client(service):
    app.dependency_overrides[get_hierarchy_service] = lambda: service
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


def headers(user_id, role="USER", departments=(), groups=(), my_drive=None):
    values = {"X-User-Id": user_id, "X-User-Role": role}
    if departments:
        values["X-User-Departments"] = ",".join(departments)
    if groups:
        values["X-User-Groups"] = ",".join(groups)
    if my_drive:
        values["X-User-MyDrive"] = my_drive
    return values


ROOT = headers("root", role="SUPER_ADMIN")


def test_root(client):
    response = client.get("/")
    assert response.status_code == 200


def test_identity_headers_are_required(client):
    response = client.get("/trash")
    assert response.status_code == 401


def test_unknown_role_is_rejected(client):
    response = client.get("/trash", headers=headers("bob", role="WIZARD"))
    assert response.status_code == 401


def test_finance_scenario_over_http(client):
    response = client.post("/resources/departments", json={"name": "Finance"}, headers=ROOT)
    assert response.status_code == 201
    finance = response.json()
    assert finance["path"] == "/Finance"

    reports = client.post(
        "/resources",
        json={"kind": "FOLDER", "name": "Reports", "parent_id": finance["id"]},
        headers=ROOT,
    ).json()
    q1 = client.post(
        "/resources",
        json={"kind": "DOCUMENT", "name": "Q1.pdf", "parent_id": reports["id"], "size": 1024},
        headers=ROOT,
    ).json()
    assert q1["path"] == "/Finance/Reports/Q1.pdf"
    assert q1["extension"] == "pdf"

    response = client.post(
        "/sharing/grant",
        json={
            "resource_type": "FOLDER",
            "resource_id": reports["id"],
            "subject_id": "bob",
            "permissions": ["view"],
        },
        headers=ROOT,
    )
    assert response.status_code == 201
    assert response.json()["permissions"] == ["view"]

    bob = headers("bob")
    check = client.get(f"/resources/document/{q1['id']}/check", params={"action": "view"}, headers=bob)
    assert check.json()["allowed"] is True
    check = client.get(f"/resources/document/{q1['id']}/check", params={"action": "delete"}, headers=bob)
    assert check.json()["allowed"] is False

    client.post(
        "/sharing/grant",
        json={"resource_type": "DOCUMENT", "resource_id": q1["id"], "subject_id": "bob", "permissions": ["delete"]},
        headers=ROOT,
    )
    check = client.get(f"/resources/document/{q1['id']}/check", params={"action": "view"}, headers=bob)
    assert check.json()["allowed"] is False

    permissions = client.get(f"/resources/document/{q1['id']}/permissions", headers=bob).json()
    assert permissions["permissions"] == ["delete"]


def test_errors_carry_their_status(client, finance, reports, q1):
    response = client.post(f"/resources/folder/{reports.id}/move", json={"new_parent_id": q1.id}, headers=ROOT)
    assert response.status_code == 422
    assert response.json()["detail"]["code"] == "validation_error"

    child = client.post(
        "/resources", json={"kind": "FOLDER", "name": "Child", "parent_id": reports.id}, headers=ROOT
    ).json()
    response = client.post(f"/resources/folder/{reports.id}/move", json={"new_parent_id": child["id"]}, headers=ROOT)
    assert response.status_code == 400
    assert response.json()["detail"]["code"] == "invalid_move"

    response = client.get(f"/resources/folder/{reports.id}", headers=headers("bob"))
    assert response.status_code == 403

    response = client.get("/resources/folder/missing", headers=ROOT)
    assert response.status_code == 404


def test_department_update(client, finance, reports):
    response = client.patch(f"/resources/departments/{finance.id}", json={"name": "Hijacked"}, headers=headers("bob"))
    assert response.status_code == 403

    admin = headers("fin-admin", role="ADMIN", departments=[finance.id])
    response = client.patch(
        f"/resources/departments/{finance.id}", json={"name": "Treasury", "is_active": False}, headers=admin
    )
    assert response.status_code == 200
    body = response.json()
    assert body["path"] == "/Treasury"
    assert body["is_active"] is False

    folder = client.get(f"/resources/folder/{reports.id}", headers=ROOT).json()
    assert folder["path"] == "/Treasury/Reports"


def test_trash_flow(client, finance, reports, q1):
    admin = headers("fin-admin", role="ADMIN", departments=[finance.id])

    response = client.delete(f"/resources/folder/{reports.id}", headers=admin)
    assert response.json()["is_deleted"] is True

    trash = client.get("/trash", headers=admin).json()
    assert {item["id"] for item in trash} == {reports.id, q1.id}
    assert all(item["auto_delete_at"] for item in trash)

    response = client.post("/trash/restore", json={"item_ids": [q1.id]}, headers=admin)
    assert response.json() == {"restored": [], "failed": {q1.id: "parent_still_deleted"}}

    response = client.post(f"/trash/folder/{reports.id}/restore", headers=admin)
    assert response.status_code == 200
    assert response.json()["is_deleted"] is False

    response = client.delete(f"/trash/document/{q1.id}", headers=admin)
    assert response.status_code == 400
    assert response.json()["detail"]["code"] == "confirmation_required"

    response = client.delete(f"/trash/document/{q1.id}", params={"confirm": "true"}, headers=admin)
    assert response.json()["removed"] == 1


def test_sharing_listing_and_revoke(client, finance, reports):
    client.post(
        "/sharing/grant",
        json={"resource_type": "FOLDER", "resource_id": reports.id, "subject_type": "GROUP",
              "subject_id": "accounting", "preset": "VIEWER_DOWNLOAD"},
        headers=ROOT,
    )
    entries = client.get(f"/sharing/folder/{reports.id}", headers=ROOT).json()
    assert entries[0]["subject_type"] == "GROUP"
    assert entries[0]["permissions"] == ["view", "download"]

    member = headers("carol", groups=["accounting"])
    children = client.get("/resources/children", params={"parent_id": finance.id}, headers=member).json()
    assert [child["id"] for child in children] == [reports.id]

    payload = {"resource_type": "FOLDER", "resource_id": reports.id, "subject_type": "GROUP", "subject_id": "accounting"}
    assert client.post("/sharing/revoke", json=payload, headers=ROOT).status_code == 200
    assert client.post("/sharing/revoke", json=payload, headers=ROOT).status_code == 404


def test_presets(client):
    presets = client.get("/sharing/presets").json()
    assert presets["OWNER"] == ["view", "download", "upload", "delete", "share"]
