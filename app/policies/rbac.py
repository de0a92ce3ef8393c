#app/policies/rbac.py
from __future__ import annotations
from dataclasses import dataclass
from typing import Optional

from app.models.enums import UserRole


SYSTEM_ACTOR = "SYSTEM"


@dataclass(frozen=True)
class Principal:
    user_id: int
    role: UserRole
    agency_id: Optional[int] = None
    display_name: str = "Unknown"

    @property
    def actor(self) -> str:
        # lifecycle events store the acting user as a string
        return str(self.user_id)
