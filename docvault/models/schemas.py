from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field

# --- Enums ---

class ResourceKind(str, Enum):
    DEPARTMENT = "DEPARTMENT"
    FOLDER = "FOLDER"
    DOCUMENT = "DOCUMENT"

class OwnerType(str, Enum):
    ORG = "ORG"
    USER = "USER"

class SubjectType(str, Enum):
    USER = "USER"
    GROUP = "GROUP"

class Permission(str, Enum):
    VIEW = "view"
    DOWNLOAD = "download"
    UPLOAD = "upload"
    DELETE = "delete"
    SHARE = "share"

class Role(str, Enum):
    SUPER_ADMIN = "SUPER_ADMIN"
    ADMIN = "ADMIN"
    DEPARTMENT_OWNER = "DEPARTMENT_OWNER"
    USER = "USER"


ALL_PERMISSIONS: tuple[str, ...] = tuple(permission.value for permission in Permission)

PERMISSION_PRESETS: dict[str, tuple[str, ...]] = {
    "VIEWER": ("view",),
    "VIEWER_DOWNLOAD": ("view", "download"),
    "CONTRIBUTOR": ("view", "upload", "download"),
    "EDITOR": ("view", "upload", "download", "delete"),
    "OWNER": ALL_PERMISSIONS,
}

# --- Resources ---

class ResourceDTO(BaseModel):
    id: str
    kind: ResourceKind
    name: str
    parent_id: Optional[str] = None
    department_id: Optional[str] = None
    path: str
    is_deleted: bool = False
    deleted_at: Optional[datetime] = None
    is_active: Optional[bool] = None
    extension: Optional[str] = None
    size: Optional[int] = None
    version: Optional[int] = None

    class Config:
        from_attributes = True

class CreateDepartmentRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    code: Optional[str] = Field(default=None, max_length=10)

class UpdateDepartmentRequest(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=255)
    is_active: Optional[bool] = None

class CreateResourceRequest(BaseModel):
    kind: ResourceKind
    name: str = Field(..., min_length=1, max_length=255)
    parent_id: str
    extension: Optional[str] = None
    size: Optional[int] = Field(default=None, ge=0)
    auto_rename: bool = False

class MoveResourceRequest(BaseModel):
    new_parent_id: str

class RenameResourceRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)

class BulkRestoreRequest(BaseModel):
    item_ids: List[str] = Field(..., min_length=1)

class BulkRestoreResult(BaseModel):
    restored: List[str] = []
    failed: dict[str, str] = {}

class TrashItemDTO(ResourceDTO):
    auto_delete_at: datetime

# --- Access control ---

class AccessEntryDTO(BaseModel):
    resource_type: ResourceKind
    resource_id: str
    subject_type: SubjectType
    subject_id: str
    permissions: List[Permission]
    granted_by: str
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

class GrantAccessRequest(BaseModel):
    resource_type: ResourceKind
    resource_id: str
    subject_type: SubjectType = SubjectType.USER
    subject_id: str
    permissions: List[Permission] = []
    preset: Optional[str] = None

class RevokeAccessRequest(BaseModel):
    resource_type: ResourceKind
    resource_id: str
    subject_type: SubjectType = SubjectType.USER
    subject_id: str

class EffectivePermissionsDTO(BaseModel):
    resource_type: ResourceKind
    resource_id: str
    permissions: List[Permission]
    can_create_subfolder: bool = False
    can_upload_file: bool = False

class PermissionCheckDTO(BaseModel):
    resource_type: ResourceKind
    resource_id: str
    action: Permission
    allowed: bool
