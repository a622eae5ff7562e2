from fastapi import APIRouter, Depends
from supplement_tracker.modules.logbook.schemas import (
    SecureLogbookEntry, SecureEntryCreateRequest, LogbookEntryUpdate, VerifyEntryRequest
)
from supplement_tracker.modules.logbook.service import SecureLogbookService
from supplement_tracker.core.dependencies import get_logbook_service, get_optional_user, get_client_ip
from supplement_tracker.core.exceptions import unwrap
from typing import List, Optional, Dict
from datetime import datetime

router = APIRouter(prefix="/logbook", tags=["logbook"])


@router.post("/entries", response_model=SecureLogbookEntry, status_code=201)
async def create_entry(
    request: SecureEntryCreateRequest,
    user_data: Optional[Dict] = Depends(get_optional_user),
    ip_address: Optional[str] = Depends(get_client_ip),
    service: SecureLogbookService = Depends(get_logbook_service)
):
    """Create a logbook entry, verifying the barcode when one is supplied"""
    return unwrap(await service.create_secure_entry(request.entry, user_data, request.verification, ip_address))


@router.get("/athletes/{athlete_id}/entries", response_model=List[SecureLogbookEntry])
async def list_entries(
    athlete_id: str,
    limit: Optional[int] = None,
    offset: int = 0,
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
    include_audit: bool = True,
    include_deleted: bool = False,
    user_data: Optional[Dict] = Depends(get_optional_user),
    service: SecureLogbookService = Depends(get_logbook_service)
):
    """List an athlete's entries, newest first"""
    filters = {
        "limit": limit,
        "offset": offset,
        "start_date": start_date,
        "end_date": end_date,
        "include_audit": include_audit,
        "include_deleted": include_deleted,
    }
    return unwrap(await service.get_secure_entries(athlete_id, user_data, filters))


@router.get("/entries/{entry_id}", response_model=SecureLogbookEntry)
async def get_entry(
    entry_id: str,
    user_data: Optional[Dict] = Depends(get_optional_user),
    service: SecureLogbookService = Depends(get_logbook_service)
):
    """Get a single entry with its audit trail"""
    return unwrap(await service.get_secure_entry(entry_id, user_data))


@router.patch("/entries/{entry_id}", response_model=SecureLogbookEntry)
async def update_entry(
    entry_id: str,
    updates: LogbookEntryUpdate,
    user_data: Optional[Dict] = Depends(get_optional_user),
    ip_address: Optional[str] = Depends(get_client_ip),
    service: SecureLogbookService = Depends(get_logbook_service)
):
    """Update an entry; the audit trail records only the fields sent"""
    return unwrap(await service.update_secure_entry(entry_id, updates, user_data, ip_address))


@router.post("/entries/{entry_id}/verify", response_model=SecureLogbookEntry)
async def verify_entry(
    entry_id: str,
    request: VerifyEntryRequest,
    user_data: Optional[Dict] = Depends(get_optional_user),
    ip_address: Optional[str] = Depends(get_client_ip),
    service: SecureLogbookService = Depends(get_logbook_service)
):
    """Verify an existing entry against certification authorities"""
    return unwrap(await service.verify_secure_entry(entry_id, request.barcode, user_data, ip_address))


@router.delete("/entries/{entry_id}", response_model=SecureLogbookEntry)
async def delete_entry(
    entry_id: str,
    user_data: Optional[Dict] = Depends(get_optional_user),
    ip_address: Optional[str] = Depends(get_client_ip),
    service: SecureLogbookService = Depends(get_logbook_service)
):
    """Tombstone an entry; it stays in storage with its audit trail"""
    return unwrap(await service.delete_secure_entry(entry_id, user_data, ip_address))
