"""
Domain: Actors who act on converts.

Access rules for lifecycle transitions:
- A soul winner registers converts; the convert is owned by that soul winner.
- Manual status overrides, reopening and detail edits: a soul winner may act
  only on converts they own; any admin role may act on any convert.
- Visit toggles and milestone updates are not gated here.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from uuid import UUID

from .convert import ConvertRecord
from .errors import PermissionDeniedError, ValidationError


class ActorRole(str, Enum):
    SOUL_WINNER = "soul_winner"
    PARISH_ADMIN = "parish_admin"
    AREA_ADMIN = "area_admin"
    ZONAL_ADMIN = "zonal_admin"
    SUPER_ADMIN = "super_admin"


@dataclass(frozen=True, slots=True)
class Actor:
    actor_id: UUID
    role: ActorRole

    def __post_init__(self) -> None:
        if not isinstance(self.role, ActorRole):
            try:
                object.__setattr__(self, "role", ActorRole(self.role))
            except ValueError:
                raise ValidationError(f"Unknown actor role: {self.role!r}") from None

    def is_admin(self) -> bool:
        return self.role is not ActorRole.SOUL_WINNER

    def can_manage(self, record: ConvertRecord) -> bool:
        """Check if this actor may override status or edit details of the convert."""
        return self.is_admin() or record.soul_winner_id == self.actor_id


def require_can_manage(actor: Actor, record: ConvertRecord) -> None:
    if not actor.can_manage(record):
        raise PermissionDeniedError(
            f"Actor {actor.actor_id} ({actor.role.value}) may not manage convert {record.convert_id}"
        )
