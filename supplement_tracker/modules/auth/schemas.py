from pydantic import BaseModel, Field
from typing import Optional, Dict, Any

from supplement_tracker.modules.roles.schemas import UserRole


class CurrentUserResponse(BaseModel):
    id: str
    email: Optional[str] = None
    user_metadata: Dict[str, Any] = Field(default_factory=dict)
    role: UserRole
