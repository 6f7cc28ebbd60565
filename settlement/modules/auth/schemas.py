from pydantic import BaseModel
from typing import Optional
from uuid import UUID

from settlement.common.actors import Actor


class AuthContext(BaseModel):
    user_id: UUID
    tenant_id: UUID
    user_role: Optional[str] = None

    @property
    def actor(self) -> Actor:
        return Actor.human(self.user_id)
