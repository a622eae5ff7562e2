from fastapi import APIRouter, Depends
from supplement_tracker.modules.auth.schemas import CurrentUserResponse
from supplement_tracker.modules.roles.service import PermissionResolver
from supplement_tracker.core.dependencies import get_current_user_id, get_permission_resolver
from typing import Dict

router = APIRouter(prefix="/auth", tags=["auth"])


@router.get("/me", response_model=CurrentUserResponse)
async def get_me(
    current_user: Dict = Depends(get_current_user_id),
    resolver: PermissionResolver = Depends(get_permission_resolver),
):
    """Resolved identity of the bearer token with its logbook role"""
    return CurrentUserResponse(**current_user, role=resolver.get_user_role(current_user["id"]))
