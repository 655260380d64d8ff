"""
The acting user, passed explicitly into every workflow operation.

Authentication happens upstream; the engine only needs who is acting and in
which capacity.  ``role`` doubles as the directory kind for students and
employees because their ids live in separate spaces.
"""

from __future__ import annotations

from dataclasses import dataclass

ACTOR_ROLES = frozenset({"student", "employee", "admin"})

# Positions allowed to administer fund balances besides admins
FUND_ADMIN_POSITIONS = frozenset({"Accounting Personnel"})


@dataclass(frozen=True)
class Actor:
    id: int
    role: str
    position: str = ""
    department: str = ""

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"

    @property
    def can_manage_funds(self) -> bool:
        return self.is_admin or self.position in FUND_ADMIN_POSITIONS

    def is_identity(self, person_id: int | None, kind: str | None) -> bool:
        """True when (person_id, kind) names this actor."""
        return person_id is not None and person_id == self.id and kind == self.role

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "role": self.role,
            "position": self.position,
            "department": self.department,
        }
