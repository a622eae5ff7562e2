from enum import Enum
from pydantic import BaseModel, Field, field_validator, model_validator
from typing import Optional, List, Dict, Any
from datetime import datetime, timezone

from supplement_tracker.modules.certifications.schemas import Certification


class SupplementUnit(str, Enum):
    MG = "mg"
    G = "g"
    ML = "ml"
    CAPSULES = "capsules"
    TABLETS = "tablets"


class VerificationMethod(str, Enum):
    MANUAL = "manual"
    BARCODE_SCAN = "barcode_scan"
    API_VERIFICATION = "api_verification"


class AuditAction(str, Enum):
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"
    VERIFY = "verify"


class LogbookEntryCreate(BaseModel):
    athlete_id: str
    supplement_id: str
    amount: float = Field(ge=0)
    unit: SupplementUnit
    timestamp: Optional[datetime] = None  # defaults to now
    notes: Optional[str] = None

    class Config:
        extra = "forbid"


class LogbookEntryUpdate(BaseModel):
    """Partial update. Only explicitly set fields are applied and audited."""
    supplement_id: Optional[str] = None
    amount: Optional[float] = Field(default=None, ge=0)
    unit: Optional[SupplementUnit] = None
    timestamp: Optional[datetime] = None
    notes: Optional[str] = None

    class Config:
        extra = "forbid"

    @model_validator(mode="after")
    def reject_null_required_fields(self):
        for field in ("supplement_id", "amount", "unit", "timestamp"):
            if field in self.model_fields_set and getattr(self, field) is None:
                raise ValueError(f"{field} cannot be null")
        return self


class VerificationHint(BaseModel):
    barcode: Optional[str] = None
    certifications: Optional[List[Certification]] = None
    verification_method: Optional[VerificationMethod] = None


class VerificationData(BaseModel):
    certifications: List[Certification] = Field(default_factory=list)
    verified_at: datetime
    verified_by: str
    verification_method: VerificationMethod


class AuditEntry(BaseModel):
    id: str
    timestamp: datetime
    action: AuditAction
    user_id: str
    user_role: str
    changes: Dict[str, Any] = Field(default_factory=dict)
    ip_address: Optional[str] = None
    encryption_version: Optional[str] = None  # encoding of sensitive values in changes; None = plaintext

    class Config:
        frozen = True


class SecurityMetadata(BaseModel):
    encryption_version: str
    audit_trail: List[AuditEntry] = Field(default_factory=list)
    created_by_ip: Optional[str] = None
    last_modified_by_ip: Optional[str] = None


class LogbookEntry(BaseModel):
    id: str
    athlete_id: str
    supplement_id: str
    amount: float = Field(ge=0)
    unit: SupplementUnit
    timestamp: datetime
    notes: Optional[str] = None
    verified: bool = False
    verified_at: Optional[datetime] = None
    verified_by: Optional[str] = None
    deleted_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True

    @property
    def is_deleted(self) -> bool:
        return self.deleted_at is not None


class SecureLogbookEntry(LogbookEntry):
    verification_data: Optional[VerificationData] = None
    security_metadata: SecurityMetadata


class LogbookFilters(BaseModel):
    limit: Optional[int] = Field(default=None, ge=1, le=500)
    offset: int = Field(default=0, ge=0)
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    include_audit: bool = True
    include_deleted: bool = False

    @field_validator("start_date", "end_date")
    @classmethod
    def assume_utc(cls, value: Optional[datetime]) -> Optional[datetime]:
        if value is not None and value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value

    @model_validator(mode="after")
    def check_window(self):
        if self.start_date and self.end_date and self.start_date > self.end_date:
            raise ValueError("start_date must not be after end_date")
        return self


class SecureEntryCreateRequest(BaseModel):
    entry: LogbookEntryCreate
    verification: Optional[VerificationHint] = None


class VerifyEntryRequest(BaseModel):
    barcode: str
