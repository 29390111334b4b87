from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional

from docvault.models.schemas import Role


@dataclass(frozen=True)
class Identity:
    """Pre-authenticated caller, as supplied by the identity provider."""

    user_id: str
    role: Role = Role.USER
    department_ids: frozenset[str] = field(default_factory=frozenset)
    my_drive_department_id: Optional[str] = None
    group_ids: frozenset[str] = field(default_factory=frozenset)

    def administers(self, department_id: str) -> bool:
        return department_id in self.department_ids
