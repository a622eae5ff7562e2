from enum import Enum
from pydantic import BaseModel, Field
from typing import Optional, List
from datetime import datetime


class AlertType(str, Enum):
    UNVERIFIED_ENTRY = "unverified_entry"
    VERIFICATION_EXPIRED = "verification_expired"
    COMPLIANCE_BREACH = "compliance_breach"


class AlertSeverity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class ComplianceAlert(BaseModel):
    id: str
    type: AlertType
    severity: AlertSeverity
    message: str
    entry_id: Optional[str] = None
    created_at: datetime


class CompliancePeriod(BaseModel):
    start: datetime
    end: datetime


class ComplianceMetrics(BaseModel):
    total_entries: int = 0
    verified_entries: int = 0
    compliance_rate: float = Field(default=0.0, ge=0, le=100)
    unique_supplements: int = 0
    certifications_count: int = 0


class ComplianceSummary(BaseModel):
    athlete_id: str
    period: CompliancePeriod
    metrics: ComplianceMetrics
    alerts: List[ComplianceAlert] = Field(default_factory=list)
