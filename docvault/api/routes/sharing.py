from __future__ import annotations

from dataclasses import asdict
from typing import Dict, List

from fastapi import APIRouter, Depends, status

from docvault.api.dependencies.identity import require_identity
from docvault.api.errors import call_service
from docvault.core.dependencies import get_hierarchy_service
from docvault.models.identity import Identity
from docvault.models.schemas import (
    PERMISSION_PRESETS,
    AccessEntryDTO,
    GrantAccessRequest,
    RevokeAccessRequest,
)
from docvault.services.hierarchy_service import HierarchyService

router = APIRouter(
    prefix="/sharing",
    tags=["sharing"],
)


@router.get("/presets", response_model=Dict[str, List[str]])
async def list_presets() -> Dict[str, List[str]]:
    return {name: list(permissions) for name, permissions in PERMISSION_PRESETS.items()}


@router.post("/grant", response_model=AccessEntryDTO, status_code=status.HTTP_201_CREATED)
async def grant_access(
    payload: GrantAccessRequest,
    identity: Identity = Depends(require_identity),
    service: HierarchyService = Depends(get_hierarchy_service),
) -> AccessEntryDTO:
    """
    Grant (or replace) a user's or group's permissions on a resource.
    Either a preset name or an explicit permission list is accepted.
    """
    entry = await call_service(
        service.grant_access,
        identity,
        payload.resource_type,
        payload.resource_id,
        payload.subject_type,
        payload.subject_id,
        [permission.value for permission in payload.permissions],
        preset=payload.preset,
    )
    return AccessEntryDTO(**asdict(entry))


@router.post("/revoke", status_code=status.HTTP_200_OK)
async def revoke_access(
    payload: RevokeAccessRequest,
    identity: Identity = Depends(require_identity),
    service: HierarchyService = Depends(get_hierarchy_service),
) -> dict:
    await call_service(
        service.revoke_access,
        identity,
        payload.resource_type,
        payload.resource_id,
        payload.subject_type,
        payload.subject_id,
    )
    return {"message": "Access revoked"}


@router.get("/{resource_type}/{resource_id}", response_model=List[AccessEntryDTO])
async def list_access(
    resource_type: str,
    resource_id: str,
    identity: Identity = Depends(require_identity),
    service: HierarchyService = Depends(get_hierarchy_service),
) -> List[AccessEntryDTO]:
    entries = await call_service(service.list_access, identity, resource_type, resource_id)
    return [AccessEntryDTO(**asdict(entry)) for entry in entries]
