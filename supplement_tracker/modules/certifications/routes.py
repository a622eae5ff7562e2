from fastapi import APIRouter, Depends
from supplement_tracker.core.dependencies import get_certification_service, get_current_user_id, require_admin
from supplement_tracker.core.exceptions import unwrap
from supplement_tracker.modules.certifications.schemas import VerificationResult
from supplement_tracker.modules.certifications.service import CertificationService
from typing import Dict

router = APIRouter(prefix="/certifications", tags=["certifications"])


@router.get("/verify/{barcode}", response_model=VerificationResult)
async def verify_barcode(
    barcode: str,
    user_data: Dict = Depends(get_current_user_id),
    service: CertificationService = Depends(get_certification_service)
):
    """Verify a scanned barcode against certification authorities"""
    return unwrap(await service.verify_barcode(barcode))


@router.delete("/cache", status_code=204)
async def clear_cache(
    user_data: Dict = Depends(require_admin),
    service: CertificationService = Depends(get_certification_service)
):
    """Drop every cached verification so the next scans are re-verified live"""
    service.clear_cache()
    return None
