"""
Identidad del actor que origina un cambio auditado.

Cada registro de auditoría guarda una variante explícita: humano (con su
user_id), sistema (procesos internos como el matching) o gateway (webhooks de
un proveedor). No se usan UUIDs centinela.
"""
import enum
from typing import Optional
from uuid import UUID

from pydantic import BaseModel


class ActorType(str, enum.Enum):
    HUMAN = "human"
    SYSTEM = "system"
    GATEWAY = "gateway"


class Actor(BaseModel):
    type: ActorType
    user_id: Optional[UUID] = None
    label: Optional[str] = None

    model_config = {"frozen": True}

    @classmethod
    def human(cls, user_id: UUID) -> "Actor":
        return cls(type=ActorType.HUMAN, user_id=user_id)

    @classmethod
    def system(cls, label: str = "system") -> "Actor":
        return cls(type=ActorType.SYSTEM, label=label)

    @classmethod
    def gateway(cls, provider: str) -> "Actor":
        return cls(type=ActorType.GATEWAY, label=provider)
