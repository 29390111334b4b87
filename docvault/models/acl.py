"""
Access control models
"""
from __future__ import annotations

from sqlalchemy import JSON, Column, DateTime, Index, Integer, String, UniqueConstraint

from docvault.core.database import AclBase, utcnow


class AccessControlEntry(AclBase):
    """
    Explicit grant of a permission set to a user or group on one resource
    """
    __tablename__ = "access_control_entries"

    id = Column(Integer, primary_key=True, autoincrement=True)
    resource_type = Column(String(20), nullable=False)
    resource_id = Column(String(64), nullable=False)
    subject_type = Column(String(10), nullable=False)
    subject_id = Column(String(64), nullable=False)
    permissions = Column(JSON, nullable=False, default=list)
    granted_by = Column(String(64), nullable=False)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    __table_args__ = (
        UniqueConstraint(
            "resource_type", "resource_id", "subject_type", "subject_id",
            name="uq_acl_resource_subject",
        ),
        Index("idx_acl_resource", "resource_type", "resource_id"),
        Index("idx_acl_subject", "subject_type", "subject_id"),
    )
