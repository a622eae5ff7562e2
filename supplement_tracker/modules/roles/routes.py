from fastapi import APIRouter, Depends, HTTPException, status
from supplement_tracker.database.supabase_client import get_service_supabase
from supplement_tracker.modules.roles.schemas import (
    RoleAssign, UserRoleResponse, CoachAthleteLink, CoachAthleteResponse, UserRole
)
from supplement_tracker.modules.roles.service import RoleService, PermissionResolver
from supplement_tracker.core.dependencies import require_admin, get_current_user_id, get_permission_resolver
from supabase import Client
from typing import List, Dict

router = APIRouter(prefix="/roles", tags=["roles"])


def get_role_service(supabase: Client = Depends(get_service_supabase)) -> RoleService:
    return RoleService(supabase)


@router.get("/users/{user_id}", response_model=UserRoleResponse)
async def get_user_role(
    user_id: str,
    user_data: Dict = Depends(get_current_user_id),
    resolver: PermissionResolver = Depends(get_permission_resolver)
):
    """Get the effective role of a user (athlete when none is assigned)"""
    return UserRoleResponse(user_id=user_id, role=resolver.get_user_role(user_id))


@router.put("/users/{user_id}", response_model=UserRoleResponse)
async def assign_role(
    user_id: str,
    role_data: RoleAssign,
    user_data: Dict = Depends(require_admin),
    service: RoleService = Depends(get_role_service)
):
    """Assign a role to a user (admin only)"""
    return service.assign_role(user_id, role_data.role)


@router.post("/coach-athletes", response_model=CoachAthleteResponse, status_code=201)
async def link_coach(
    link: CoachAthleteLink,
    user_data: Dict = Depends(require_admin),
    service: RoleService = Depends(get_role_service)
):
    """Link a coach to an athlete, granting write access to the athlete's logbook"""
    return service.link_coach(link)


@router.delete("/coach-athletes/{coach_id}/{athlete_id}", status_code=204)
async def unlink_coach(
    coach_id: str,
    athlete_id: str,
    user_data: Dict = Depends(require_admin),
    service: RoleService = Depends(get_role_service)
):
    """Remove a coach-athlete link"""
    if not service.unlink_coach(coach_id, athlete_id):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Coach-athlete link not found")
    return None


@router.get("/coaches/{coach_id}/athletes", response_model=List[CoachAthleteResponse])
async def list_coach_athletes(
    coach_id: str,
    user_data: Dict = Depends(get_current_user_id),
    resolver: PermissionResolver = Depends(get_permission_resolver),
    service: RoleService = Depends(get_role_service)
):
    """List athletes linked to a coach (the coach themself or an admin)"""
    if user_data["id"] != coach_id and resolver.get_user_role(user_data["id"]) is not UserRole.ADMIN:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Not allowed to view this coach's athletes")
    return service.list_athletes_for_coach(coach_id)
