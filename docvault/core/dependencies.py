from __future__ import annotations

import logging
from dataclasses import dataclass
from functools import lru_cache
from typing import Optional

from docvault.core.config import Settings, get_settings
from docvault.core.database import (
    create_db_engine,
    create_session_factory,
    init_acl_database,
    init_database,
)
from docvault.services.access_evaluator import AccessEvaluator
from docvault.services.acl_store import AclStore, SqlAclStore
from docvault.services.activity_log import ActivityLogger
from docvault.services.hierarchy_service import HierarchyService
from docvault.services.path_manager import PathManager
from docvault.services.resource_store import ResourceStore
from docvault.services.supabase_acl_store import SupabaseAclStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Services:
    store: ResourceStore
    path_manager: PathManager
    acl_store: AclStore
    evaluator: AccessEvaluator
    hierarchy: HierarchyService


def build_acl_store(settings: Settings) -> AclStore:
    if settings.acl_backend == "supabase":
        return SupabaseAclStore(settings, logger=logging.getLogger("docvault.acl"))
    if settings.acl_backend != "sql":
        raise ValueError(f"Unknown ACL_BACKEND: {settings.acl_backend}")

    engine = create_db_engine(settings.acl_database_url or settings.database_url)
    init_acl_database(engine)
    return SqlAclStore(create_session_factory(engine), logger=logging.getLogger("docvault.acl"))


def build_services(settings: Settings, *, acl_store: Optional[AclStore] = None) -> Services:
    """Wire the engine components for one database and one ACL backend."""
    engine = create_db_engine(settings.database_url)
    init_database(engine)

    store = ResourceStore(create_session_factory(engine))
    acl_store = acl_store or build_acl_store(settings)
    path_manager = PathManager(
        store,
        retention_days=settings.trash_retention_days,
        default_timeout=settings.cascade_timeout_seconds,
    )
    evaluator = AccessEvaluator(store, acl_store)
    hierarchy = HierarchyService(
        store=store,
        path_manager=path_manager,
        acl_store=acl_store,
        evaluator=evaluator,
        activity=ActivityLogger(),
        retention_days=settings.trash_retention_days,
    )
    logger.info("docvault services ready (ACL backend: %s)", settings.acl_backend)
    return Services(
        store=store,
        path_manager=path_manager,
        acl_store=acl_store,
        evaluator=evaluator,
        hierarchy=hierarchy,
    )


@lru_cache
def get_services() -> Services:
    return build_services(get_settings())


def get_hierarchy_service() -> HierarchyService:
    """FastAPI dependency; tests override it with their own wiring."""
    return get_services().hierarchy
