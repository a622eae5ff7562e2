from fastapi import APIRouter, Depends
from supplement_tracker.modules.compliance.schemas import ComplianceSummary
from supplement_tracker.modules.compliance.service import ComplianceService
from supplement_tracker.core.dependencies import get_compliance_service, get_optional_user
from supplement_tracker.core.exceptions import unwrap
from typing import Optional, Dict
from datetime import datetime

router = APIRouter(prefix="/compliance", tags=["compliance"])


@router.get("/athletes/{athlete_id}", response_model=ComplianceSummary)
async def get_compliance_summary(
    athlete_id: str,
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
    user_data: Optional[Dict] = Depends(get_optional_user),
    service: ComplianceService = Depends(get_compliance_service)
):
    """Compliance metrics and alerts for an athlete over a period (default: last 30 days)"""
    return unwrap(await service.get_compliance_summary(athlete_id, user_data, start_date, end_date))
