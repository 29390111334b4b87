"""
Resource tree models: departments, folders and documents
"""
from __future__ import annotations

from uuid import uuid4

from sqlalchemy import BigInteger, Boolean, Column, DateTime, Index, Integer, String, UniqueConstraint

from docvault.core.database import Base, utcnow
from docvault.models.schemas import OwnerType, ResourceKind


def new_id() -> str:
    return uuid4().hex


class Department(Base):
    """
    Tree root. ORG departments belong to the organisation, USER departments are
    a single user's MyDrive.
    """
    __tablename__ = "departments"

    kind = ResourceKind.DEPARTMENT

    id = Column(String(32), primary_key=True, default=new_id)
    name = Column(String(255), nullable=False, unique=True)
    code = Column(String(50), nullable=True)
    owner_type = Column(String(10), nullable=False, default=OwnerType.ORG.value)
    owner_user_id = Column(String(64), nullable=True, index=True)
    is_active = Column(Boolean, nullable=False, default=True)
    path = Column(String(2048), nullable=False)
    is_deleted = Column(Boolean, nullable=False, default=False)
    deleted_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    @property
    def parent_id(self) -> None:
        return None

    @property
    def department_id(self) -> str:
        return self.id

    def __repr__(self) -> str:
        return f"<Department {self.id} {self.path!r}>"


class Folder(Base):
    __tablename__ = "folders"

    kind = ResourceKind.FOLDER

    id = Column(String(32), primary_key=True, default=new_id)
    name = Column(String(255), nullable=False)
    parent_id = Column(String(32), nullable=False)
    department_id = Column(String(32), nullable=False)
    path = Column(String(2048), nullable=False)
    is_deleted = Column(Boolean, nullable=False, default=False)
    deleted_at = Column(DateTime, nullable=True)
    created_by = Column(String(64), nullable=True)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    __table_args__ = (
        UniqueConstraint("parent_id", "name", name="uq_folder_parent_name"),
        Index("idx_folder_parent", "parent_id", "is_deleted"),
        Index("idx_folder_path", "path"),
        Index("idx_folder_department", "department_id"),
    )

    def __repr__(self) -> str:
        return f"<Folder {self.id} {self.path!r}>"


class Document(Base):
    __tablename__ = "documents"

    kind = ResourceKind.DOCUMENT

    id = Column(String(32), primary_key=True, default=new_id)
    name = Column(String(255), nullable=False)
    parent_id = Column(String(32), nullable=False)
    department_id = Column(String(32), nullable=False)
    path = Column(String(2048), nullable=False)
    is_deleted = Column(Boolean, nullable=False, default=False)
    deleted_at = Column(DateTime, nullable=True)
    extension = Column(String(20), nullable=True)
    size = Column(BigInteger, nullable=True)
    version = Column(Integer, nullable=False, default=1)
    created_by = Column(String(64), nullable=True)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    __table_args__ = (
        UniqueConstraint("parent_id", "name", name="uq_document_parent_name"),
        Index("idx_document_parent", "parent_id", "is_deleted"),
        Index("idx_document_path", "path"),
        Index("idx_document_department", "department_id"),
    )

    def __repr__(self) -> str:
        return f"<Document {self.id} {self.path!r}>"


MODEL_BY_KIND = {
    ResourceKind.DEPARTMENT: Department,
    ResourceKind.FOLDER: Folder,
    ResourceKind.DOCUMENT: Document,
}
