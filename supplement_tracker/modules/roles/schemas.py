from enum import Enum
from pydantic import BaseModel
from typing import Optional
from datetime import datetime


class UserRole(str, Enum):
    ATHLETE = "athlete"
    COACH = "coach"
    ADMIN = "admin"


class RoleAssign(BaseModel):
    role: UserRole


class UserRoleResponse(BaseModel):
    user_id: str
    role: UserRole
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class CoachAthleteLink(BaseModel):
    coach_id: str
    athlete_id: str


class CoachAthleteResponse(BaseModel):
    id: str
    coach_id: str
    athlete_id: str
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True
