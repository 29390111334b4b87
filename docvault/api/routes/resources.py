from __future__ import annotations

import logging
from typing import List

from fastapi import APIRouter, Depends, Query, status

from docvault.api.dependencies.identity import require_identity
from docvault.api.errors import call_service
from docvault.core.dependencies import get_hierarchy_service
from docvault.models.identity import Identity
from docvault.models.schemas import (
    CreateDepartmentRequest,
    CreateResourceRequest,
    EffectivePermissionsDTO,
    MoveResourceRequest,
    Permission,
    PermissionCheckDTO,
    RenameResourceRequest,
    ResourceDTO,
    ResourceKind,
    UpdateDepartmentRequest,
)
from docvault.services.hierarchy_service import HierarchyService

router = APIRouter(
    prefix="/resources",
    tags=["resources"],
)

logger = logging.getLogger("docvault.api.resources")


@router.post("/departments", response_model=ResourceDTO, status_code=status.HTTP_201_CREATED)
async def create_department(
    payload: CreateDepartmentRequest,
    identity: Identity = Depends(require_identity),
    service: HierarchyService = Depends(get_hierarchy_service),
) -> ResourceDTO:
    department = await call_service(service.create_department, identity, payload.name, code=payload.code)
    return ResourceDTO.model_validate(department)


@router.patch("/departments/{department_id}", response_model=ResourceDTO)
async def update_department(
    department_id: str,
    payload: UpdateDepartmentRequest,
    identity: Identity = Depends(require_identity),
    service: HierarchyService = Depends(get_hierarchy_service),
) -> ResourceDTO:
    """
    Rename or (de)activate an ORG department. Renaming rewrites every path beneath it.
    """
    department = await call_service(
        service.update_department,
        identity,
        department_id,
        name=payload.name,
        is_active=payload.is_active,
    )
    return ResourceDTO.model_validate(department)


@router.post("", response_model=ResourceDTO, status_code=status.HTTP_201_CREATED)
async def create_resource(
    payload: CreateResourceRequest,
    identity: Identity = Depends(require_identity),
    service: HierarchyService = Depends(get_hierarchy_service),
) -> ResourceDTO:
    """
    Create a folder or register a document under a department or folder.
    """
    resource = await call_service(
        service.create_resource,
        identity,
        payload.kind,
        payload.name,
        payload.parent_id,
        auto_rename=payload.auto_rename,
        extension=payload.extension,
        size=payload.size,
    )
    return ResourceDTO.model_validate(resource)


@router.get("/children", response_model=List[ResourceDTO])
async def list_children(
    parent_id: str = Query(..., min_length=1),
    identity: Identity = Depends(require_identity),
    service: HierarchyService = Depends(get_hierarchy_service),
) -> List[ResourceDTO]:
    """
    Folders and documents directly under a container that the caller may view.
    """
    children = await call_service(service.list_children, identity, parent_id)
    return [ResourceDTO.model_validate(child) for child in children]


@router.get("/{kind}/{resource_id}", response_model=ResourceDTO)
async def get_resource(
    kind: str,
    resource_id: str,
    identity: Identity = Depends(require_identity),
    service: HierarchyService = Depends(get_hierarchy_service),
) -> ResourceDTO:
    resource = await call_service(service.get_resource, identity, kind, resource_id)
    return ResourceDTO.model_validate(resource)


@router.patch("/{kind}/{resource_id}", response_model=ResourceDTO)
async def rename_resource(
    kind: str,
    resource_id: str,
    payload: RenameResourceRequest,
    identity: Identity = Depends(require_identity),
    service: HierarchyService = Depends(get_hierarchy_service),
) -> ResourceDTO:
    resource = await call_service(service.rename_resource, identity, kind, resource_id, payload.name)
    return ResourceDTO.model_validate(resource)


@router.post("/{kind}/{resource_id}/move", response_model=ResourceDTO)
async def move_resource(
    kind: str,
    resource_id: str,
    payload: MoveResourceRequest,
    identity: Identity = Depends(require_identity),
    service: HierarchyService = Depends(get_hierarchy_service),
) -> ResourceDTO:
    """
    Move a folder or document; a folder's whole subtree follows it.
    """
    resource = await call_service(service.move_resource, identity, kind, resource_id, payload.new_parent_id)
    return ResourceDTO.model_validate(resource)


@router.delete("/{kind}/{resource_id}", response_model=ResourceDTO)
async def soft_delete_resource(
    kind: str,
    resource_id: str,
    identity: Identity = Depends(require_identity),
    service: HierarchyService = Depends(get_hierarchy_service),
) -> ResourceDTO:
    """
    Move a folder or document (and a folder's contents) to the trash.
    """
    resource = await call_service(service.soft_delete_resource, identity, kind, resource_id)
    return ResourceDTO.model_validate(resource)


@router.get("/{kind}/{resource_id}/permissions", response_model=EffectivePermissionsDTO)
async def get_effective_permissions(
    kind: str,
    resource_id: str,
    identity: Identity = Depends(require_identity),
    service: HierarchyService = Depends(get_hierarchy_service),
) -> EffectivePermissionsDTO:
    summary = await call_service(service.get_effective_permissions, identity, kind, resource_id)
    return EffectivePermissionsDTO(
        resource_type=ResourceKind(kind.upper()),
        resource_id=resource_id,
        permissions=list(summary.permissions),
        can_create_subfolder=summary.can_create_subfolder,
        can_upload_file=summary.can_upload_file,
    )


@router.get("/{kind}/{resource_id}/check", response_model=PermissionCheckDTO)
async def check_permission(
    kind: str,
    resource_id: str,
    action: Permission = Query(...),
    identity: Identity = Depends(require_identity),
    service: HierarchyService = Depends(get_hierarchy_service),
) -> PermissionCheckDTO:
    allowed = await call_service(service.check_permission, identity, kind, resource_id, action.value)
    return PermissionCheckDTO(
        resource_type=ResourceKind(kind.upper()),
        resource_id=resource_id,
        action=action,
        allowed=allowed,
    )
