from enum import Enum
from typing import Optional, Set

from pydantic import BaseModel


class EntityType(str, Enum):
    USER = "user"
    DEVELOPER = "developer"


class AuthContext(BaseModel):
    """JWT decoded context"""

    entity_type: EntityType = EntityType.USER
    tenant_id: str  # workspace the session is bound to
    user_id: str  # actor id used for ownership checks and rate limiting
    email: Optional[str] = None
    display_name: Optional[str] = None
    permissions: Set[str] = {"read", "write"}
