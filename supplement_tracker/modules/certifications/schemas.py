from enum import Enum
from pydantic import BaseModel, Field
from typing import Optional, List
from datetime import datetime, timezone


class CertificationType(str, Enum):
    NSF = "NSF"
    INFORMED_SPORT = "Informed_Sport"
    ISO_17025 = "ISO_17025"
    WADA_COMPLIANT = "WADA_Compliant"


class Certification(BaseModel):
    id: str
    name: str
    issuer: str
    type: CertificationType
    valid_until: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        """A certification without an expiry date never expires."""
        if self.valid_until is None:
            return False
        now = now or datetime.now(timezone.utc)
        valid_until = self.valid_until
        if valid_until.tzinfo is None:
            valid_until = valid_until.replace(tzinfo=timezone.utc)
        return valid_until < now


class SupplementInfo(BaseModel):
    name: str
    brand: str
    description: Optional[str] = None


class VerificationSource(str, Enum):
    LIVE = "live"
    CACHE = "cache"
    FALLBACK = "fallback"


class VerificationResult(BaseModel):
    verified: bool
    certifications: List[Certification] = Field(default_factory=list)
    supplement: Optional[SupplementInfo] = None
    cached: bool = False
    source: VerificationSource = VerificationSource.LIVE
    error: Optional[str] = None


class AuthorityResult(BaseModel):
    verified: bool
    valid_until: Optional[datetime] = None
