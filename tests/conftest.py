"""Pytest configuration and fixtures for docvault tests."""

import pytest

from docvault.core.database import (
    create_db_engine,
    create_session_factory,
    init_acl_database,
    init_database,
)
from docvault.models.identity import Identity
from docvault.models.schemas import OwnerType, ResourceKind, Role
from docvault.services.access_evaluator import AccessEvaluator
from docvault.services.acl_store import SqlAclStore
from docvault.services.activity_log import ActivityLogger
from docvault.services.hierarchy_service import HierarchyService
from docvault.services.path_manager import PathManager
from docvault.services.resource_store import ResourceStore


class RecordingSink:
    """Activity sink that keeps events in memory."""

    def __init__(self):
        self.events = []

    def record(self, event):
        self.events.append(event)

    @property
    def actions(self):
        return [event.action for event in self.events]


@pytest.fixture
def store():
    engine = create_db_engine("sqlite://")
    init_database(engine)
    yield ResourceStore(create_session_factory(engine))
    engine.dispose()


@pytest.fixture
def acl_store():
    # Separate in-memory database: ACL rows are their own persistence unit.
    engine = create_db_engine("sqlite://")
    init_acl_database(engine)
    yield SqlAclStore(create_session_factory(engine))
    engine.dispose()


@pytest.fixture
def paths(store):
    return PathManager(store, retention_days=30, default_timeout=30)


@pytest.fixture
def evaluator(store, acl_store):
    return AccessEvaluator(store, acl_store)


@pytest.fixture
def sink():
    return RecordingSink()


@pytest.fixture
def service(store, paths, acl_store, evaluator, sink):
    return HierarchyService(
        store=store,
        path_manager=paths,
        acl_store=acl_store,
        evaluator=evaluator,
        activity=ActivityLogger(sink),
        retention_days=30,
    )


@pytest.fixture
def finance(paths):
    return paths.create_department("Finance")


@pytest.fixture
def hr(paths):
    return paths.create_department("HR")


@pytest.fixture
def reports(paths, finance):
    return paths.create(ResourceKind.FOLDER, "Reports", finance.id, created_by="admin")


@pytest.fixture
def q1(paths, reports):
    return paths.create(ResourceKind.DOCUMENT, "Q1.pdf", reports.id, created_by="admin")


@pytest.fixture
def super_admin():
    return Identity(user_id="root", role=Role.SUPER_ADMIN)


@pytest.fixture
def alice():
    return Identity(user_id="alice", group_ids=frozenset({"accounting"}))


@pytest.fixture
def bob():
    return Identity(user_id="bob")


@pytest.fixture
def finance_admin(finance):
    return Identity(user_id="fin-admin", role=Role.ADMIN, department_ids=frozenset({finance.id}))


@pytest.fixture
def my_drive(paths):
    return paths.create_department("MyDrive-alice", owner_type=OwnerType.USER, owner_user_id="alice")
