from pydantic import BaseModel, Field
from typing import Optional, List
from datetime import datetime

from supplement_tracker.modules.certifications.schemas import Certification


class SupplementResponse(BaseModel):
    id: str
    name: str
    brand: str
    description: Optional[str] = None
    barcode: Optional[str] = None
    certifications: List[Certification] = Field(default_factory=list)
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class BarcodeMatch(BaseModel):
    """Row returned by the verify_supplement_by_barcode RPC"""
    name: str
    brand: str
    description: Optional[str] = None
    certifications: List[Certification] = Field(default_factory=list)
