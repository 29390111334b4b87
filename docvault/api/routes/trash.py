from __future__ import annotations

from typing import List

from fastapi import APIRouter, Depends, Query

from docvault.api.dependencies.identity import require_identity
from docvault.api.errors import call_service
from docvault.core.dependencies import get_hierarchy_service
from docvault.models.identity import Identity
from docvault.models.schemas import BulkRestoreRequest, BulkRestoreResult, ResourceDTO, TrashItemDTO
from docvault.services.hierarchy_service import HierarchyService

router = APIRouter(
    prefix="/trash",
    tags=["trash"],
)


@router.get("", response_model=List[TrashItemDTO])
async def list_trash(
    identity: Identity = Depends(require_identity),
    service: HierarchyService = Depends(get_hierarchy_service),
) -> List[TrashItemDTO]:
    """
    Trashed items still inside the retention window, with their purge date.
    """
    return await call_service(service.list_trash, identity)


@router.post("/restore", response_model=BulkRestoreResult)
async def bulk_restore(
    payload: BulkRestoreRequest,
    identity: Identity = Depends(require_identity),
    service: HierarchyService = Depends(get_hierarchy_service),
) -> BulkRestoreResult:
    restored, failed = await call_service(service.bulk_restore, identity, payload.item_ids)
    return BulkRestoreResult(restored=restored, failed=failed)


@router.post("/purge")
async def purge_trash(
    identity: Identity = Depends(require_identity),
    service: HierarchyService = Depends(get_hierarchy_service),
) -> dict:
    removed = await call_service(service.purge_trash, identity)
    return {"purged": len(removed)}


@router.post("/{kind}/{resource_id}/restore", response_model=ResourceDTO)
async def restore_resource(
    kind: str,
    resource_id: str,
    identity: Identity = Depends(require_identity),
    service: HierarchyService = Depends(get_hierarchy_service),
) -> ResourceDTO:
    resource = await call_service(service.restore_resource, identity, kind, resource_id)
    return ResourceDTO.model_validate(resource)


@router.delete("/{kind}/{resource_id}")
async def permanently_delete_resource(
    kind: str,
    resource_id: str,
    confirm: bool = Query(False),
    identity: Identity = Depends(require_identity),
    service: HierarchyService = Depends(get_hierarchy_service),
) -> dict:
    """
    Irreversibly remove an item and everything under it. Requires ``confirm=true``.
    """
    removed = await call_service(
        service.permanently_delete_resource, identity, kind, resource_id, confirmed=confirm
    )
    return {"message": "Item permanently deleted", "removed": len(removed)}
