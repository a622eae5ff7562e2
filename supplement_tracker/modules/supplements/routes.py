from fastapi import APIRouter, Depends
from supplement_tracker.database.supabase_client import get_supabase
from supplement_tracker.modules.supplements.schemas import SupplementResponse
from supplement_tracker.modules.supplements.service import SupplementService
from supplement_tracker.core.dependencies import get_current_user_id
from supabase import Client
from typing import List, Dict

router = APIRouter(prefix="/supplements", tags=["supplements"])


def get_supplement_service(supabase: Client = Depends(get_supabase)) -> SupplementService:
    return SupplementService(supabase)


@router.get("", response_model=List[SupplementResponse])
async def list_supplements(
    limit: int = 50,
    offset: int = 0,
    user_data: Dict = Depends(get_current_user_id),
    service: SupplementService = Depends(get_supplement_service)
):
    """List supplements with their certifications"""
    return service.list_supplements(limit=limit, offset=offset)
