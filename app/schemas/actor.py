from typing import Optional
from pydantic import BaseModel

from app.models.appointment import ActorRole


class Actor(BaseModel):
    """The party performing an operation, as asserted by the upstream gateway."""

    role: ActorRole
    id: Optional[int] = None

    @property
    def is_provider(self) -> bool:
        return self.role == ActorRole.PROVIDER


SYSTEM_ACTOR = Actor(role=ActorRole.SYSTEM)
