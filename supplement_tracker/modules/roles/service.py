from supabase import Client
from supplement_tracker.modules.roles.schemas import (
    UserRole, UserRoleResponse, CoachAthleteLink, CoachAthleteResponse
)
from typing import List
from fastapi import HTTPException
import logging

logger = logging.getLogger(__name__)


class PermissionResolver:
    """Decides whether an actor may read or write an athlete's logbook.

    Read access is wider than write access: any coach or admin may read,
    but a coach may only write for athletes linked to them.
    """

    def __init__(self, supabase: Client):
        self.supabase = supabase

    def get_user_role(self, user_id: str) -> UserRole:
        """Role from user_roles; missing or unreadable roles resolve to athlete."""
        try:
            result = self.supabase.table("user_roles")\
                .select("role")\
                .eq("user_id", user_id)\
                .limit(1)\
                .execute()
            if not result.data:
                return UserRole.ATHLETE
            return UserRole(result.data[0].get("role"))
        except ValueError:
            logger.warning(f"Unknown role stored for user {user_id}, defaulting to athlete")
            return UserRole.ATHLETE
        except Exception as e:
            logger.warning(f"Error getting role for user {user_id}: {e}")
            return UserRole.ATHLETE

    def has_coach_relationship(self, coach_id: str, athlete_id: str) -> bool:
        try:
            result = self.supabase.table("coach_athlete_relationships")\
                .select("id")\
                .eq("coach_id", coach_id)\
                .eq("athlete_id", athlete_id)\
                .limit(1)\
                .execute()
            return bool(result.data)
        except Exception as e:
            logger.warning(f"Error checking coach relationship {coach_id} -> {athlete_id}: {e}")
            return False

    def can_write(self, actor_id: str, athlete_id: str) -> bool:
        if actor_id == athlete_id:
            return True
        role = self.get_user_role(actor_id)
        if role is UserRole.ADMIN:
            return True
        if role is UserRole.COACH:
            return self.has_coach_relationship(actor_id, athlete_id)
        return False

    def can_read(self, actor_id: str, athlete_id: str) -> bool:
        if actor_id == athlete_id:
            return True
        return self.get_user_role(actor_id) in (UserRole.COACH, UserRole.ADMIN)


class RoleService:
    def __init__(self, supabase: Client):
        self.supabase = supabase

    def assign_role(self, user_id: str, role: UserRole) -> UserRoleResponse:
        """Create or replace the role of a user"""
        try:
            result = self.supabase.table("user_roles")\
                .upsert({"user_id": user_id, "role": role.value}, on_conflict="user_id")\
                .execute()

            if not result.data:
                raise HTTPException(status_code=500, detail="Failed to assign role")

            logger.info(f"Assigned role {role.value} to user {user_id}")
            return UserRoleResponse(**result.data[0])
        except HTTPException:
            raise
        except Exception as e:
            raise HTTPException(status_code=500, detail=str(e))

    def link_coach(self, link: CoachAthleteLink) -> CoachAthleteResponse:
        """Link a coach to an athlete; the coach must hold the coach role"""
        try:
            if PermissionResolver(self.supabase).get_user_role(link.coach_id) is not UserRole.COACH:
                raise HTTPException(status_code=400, detail="User is not a coach")

            existing = self.supabase.table("coach_athlete_relationships")\
                .select("id")\
                .eq("coach_id", link.coach_id)\
                .eq("athlete_id", link.athlete_id)\
                .execute()

            if existing.data:
                raise HTTPException(status_code=400, detail="Coach already linked to athlete")

            result = self.supabase.table("coach_athlete_relationships").insert({
                "coach_id": link.coach_id,
                "athlete_id": link.athlete_id
            }).execute()

            if not result.data:
                raise HTTPException(status_code=500, detail="Failed to link coach")

            return CoachAthleteResponse(**result.data[0])
        except HTTPException:
            raise
        except Exception as e:
            raise HTTPException(status_code=500, detail=str(e))

    def unlink_coach(self, coach_id: str, athlete_id: str) -> bool:
        try:
            result = self.supabase.table("coach_athlete_relationships")\
                .delete()\
                .eq("coach_id", coach_id)\
                .eq("athlete_id", athlete_id)\
                .execute()

            return len(result.data) > 0
        except Exception as e:
            raise HTTPException(status_code=500, detail=str(e))

    def list_athletes_for_coach(self, coach_id: str) -> List[CoachAthleteResponse]:
        try:
            result = self.supabase.table("coach_athlete_relationships")\
                .select("*")\
                .eq("coach_id", coach_id)\
                .order("created_at", desc=True)\
                .execute()
            return [CoachAthleteResponse(**row) for row in result.data]
        except Exception as e:
            raise HTTPException(status_code=500, detail=str(e))
