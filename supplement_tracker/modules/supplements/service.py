from supabase import Client
from supplement_tracker.modules.supplements.schemas import SupplementResponse, BarcodeMatch
from supplement_tracker.modules.certifications.schemas import SupplementInfo
from typing import List, Optional
from fastapi import HTTPException
import logging

logger = logging.getLogger(__name__)


class SupplementService:
    def __init__(self, supabase: Client):
        self.supabase = supabase

    def list_supplements(self, limit: int = 50, offset: int = 0) -> List[SupplementResponse]:
        """List supplements with their certifications flattened from the join table"""
        try:
            result = self.supabase.table("supplements")\
                .select("*, supplement_certifications(certifications(*))")\
                .order("name")\
                .range(offset, offset + limit - 1)\
                .execute()

            supplements = []
            for row in result.data or []:
                links = row.pop("supplement_certifications", None) or []
                row["certifications"] = [link["certifications"] for link in links if link.get("certifications")]
                supplements.append(SupplementResponse(**row))
            return supplements
        except Exception as e:
            raise HTTPException(status_code=500, detail=str(e))

    def get_by_barcode(self, barcode: str) -> Optional[SupplementInfo]:
        """Descriptive metadata for a barcode. Errors propagate to the caller."""
        result = self.supabase.table("supplements")\
            .select("name, brand, description")\
            .eq("barcode", barcode)\
            .limit(1)\
            .execute()
        if not result.data:
            return None
        return SupplementInfo(**result.data[0])

    def verify_by_barcode(self, barcode: str) -> Optional[BarcodeMatch]:
        """Database-side barcode verification via RPC. Errors propagate to the caller."""
        result = self.supabase.rpc("verify_supplement_by_barcode", {"barcode_input": barcode}).execute()
        if not result.data:
            return None
        return BarcodeMatch(**result.data[0])
