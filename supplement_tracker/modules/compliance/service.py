import logging
import uuid
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Iterable, List, Optional

from supplement_tracker.config.settings import settings
from supplement_tracker.core.exceptions import ApiResponse, LogbookError
from supplement_tracker.modules.compliance.schemas import (
    AlertSeverity, AlertType, ComplianceAlert, ComplianceMetrics, CompliancePeriod, ComplianceSummary
)
from supplement_tracker.modules.logbook.schemas import SecureLogbookEntry
from supplement_tracker.modules.logbook.service import SecureLogbookService

logger = logging.getLogger(__name__)


def _as_utc(value: datetime) -> datetime:
    return value.replace(tzinfo=timezone.utc) if value.tzinfo is None else value


def compute_metrics(entries: List[SecureLogbookEntry]) -> ComplianceMetrics:
    total = len(entries)
    verified = [entry for entry in entries if entry.verified]
    return ComplianceMetrics(
        total_entries=total,
        verified_entries=len(verified),
        compliance_rate=(len(verified) / total * 100) if total else 0.0,
        unique_supplements=len({entry.supplement_id for entry in entries}),
        certifications_count=sum(
            len(entry.verification_data.certifications) for entry in verified if entry.verification_data
        ),
    )


def generate_compliance_alerts(
    entries: Iterable[SecureLogbookEntry], now: Optional[datetime] = None
) -> List[ComplianceAlert]:
    """One medium alert per unverified entry, one high alert per expired
    certification on a verified entry."""
    now = now or datetime.now(timezone.utc)
    alerts = []
    for entry in entries:
        if not entry.verified:
            alerts.append(ComplianceAlert(
                id=str(uuid.uuid4()),
                type=AlertType.UNVERIFIED_ENTRY,
                severity=AlertSeverity.MEDIUM,
                message=f"Entry for {entry.supplement_id} is not verified",
                entry_id=entry.id,
                created_at=now,
            ))
            continue
        if not entry.verification_data:
            continue
        for certification in entry.verification_data.certifications:
            if certification.is_expired(now):
                alerts.append(ComplianceAlert(
                    id=str(uuid.uuid4()),
                    type=AlertType.VERIFICATION_EXPIRED,
                    severity=AlertSeverity.HIGH,
                    message=f"{certification.name} certification has expired",
                    entry_id=entry.id,
                    created_at=now,
                ))
    return alerts


class ComplianceService:
    def __init__(self, logbook: SecureLogbookService, window_days: Optional[int] = None):
        self.logbook = logbook
        self.window_days = window_days if window_days is not None else settings.compliance_default_window_days

    async def get_compliance_summary(
        self,
        athlete_id: str,
        current_user: Optional[Dict[str, Any]],
        start_date: Optional[datetime] = None,
        end_date: Optional[datetime] = None,
    ) -> ApiResponse[ComplianceSummary]:
        try:
            return ApiResponse[ComplianceSummary].success(
                await self.summarize(athlete_id, current_user, start_date, end_date)
            )
        except LogbookError as e:
            logger.warning(f"Compliance summary for {athlete_id} failed ({e.code}): {e.message}")
            return ApiResponse[ComplianceSummary].failure(e)

    async def summarize(
        self,
        athlete_id: str,
        current_user: Optional[Dict[str, Any]],
        start_date: Optional[datetime] = None,
        end_date: Optional[datetime] = None,
    ) -> ComplianceSummary:
        now = datetime.now(timezone.utc)
        end = _as_utc(end_date) if end_date else now
        start = _as_utc(start_date) if start_date else end - timedelta(days=self.window_days)

        # Read permission errors come from the logbook read path
        entries = await self.logbook.list_entries(
            athlete_id,
            current_user,
            {"start_date": start, "end_date": end, "include_audit": False},
        )
        return ComplianceSummary(
            athlete_id=athlete_id,
            period=CompliancePeriod(start=start, end=end),
            metrics=compute_metrics(entries),
            alerts=generate_compliance_alerts(entries, now),
        )
