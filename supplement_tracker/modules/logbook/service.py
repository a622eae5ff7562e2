import logging
import uuid
from datetime import datetime, timezone
from typing import Any, Awaitable, Dict, List, Optional, Type, TypeVar, Union

from pydantic import BaseModel, ValidationError
from supabase import Client

from supplement_tracker.core.encryption import SENSITIVE_FIELDS, FieldCipher
from supplement_tracker.core.exceptions import (
    ApiResponse, AuthRequired, LogbookError, NotFound, PermissionDenied,
    StorageFailure, ValidationFailure, VerificationFailed
)
from supplement_tracker.modules.certifications.service import CertificationService
from supplement_tracker.modules.logbook.schemas import (
    AuditAction, AuditEntry, LogbookEntryCreate, LogbookEntryUpdate, LogbookFilters,
    SecureLogbookEntry, SecurityMetadata, VerificationData, VerificationHint, VerificationMethod
)
from supplement_tracker.modules.roles.schemas import UserRole
from supplement_tracker.modules.roles.service import PermissionResolver

logger = logging.getLogger(__name__)

TABLE = "secure_logbook_entries"
# Partial column update plus jsonb append of one audit record (see models.py)
APPEND_AUDIT_RPC = "append_secure_logbook_audit"

M = TypeVar("M", bound=BaseModel)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _iso(value: datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat()


def _format_validation_error(error: ValidationError) -> str:
    return "; ".join(
        f"{'.'.join(str(part) for part in err['loc']) or 'entry'}: {err['msg']}"
        for err in error.errors()
    )


class SecureLogbookService:
    """Audited, permissioned store for supplement logbook entries.

    Every mutation appends exactly one audit entry to the row's
    security_metadata.audit_trail; stored audit entries are never rewritten.
    notes and verification_data are encrypted before they reach the database
    and decrypted on every read path. Rows are never physically deleted.

    Public operations return ApiResponse; the raising variants (create,
    list_entries, update, ...) are used by other services.
    """

    def __init__(
        self,
        supabase: Client,
        permissions: PermissionResolver,
        certifications: CertificationService,
        cipher: FieldCipher,
    ):
        self.supabase = supabase
        self.permissions = permissions
        self.certifications = certifications
        self.cipher = cipher

    # ApiResponse boundary

    async def create_secure_entry(
        self,
        entry_data: Union[LogbookEntryCreate, Dict[str, Any]],
        current_user: Optional[Dict[str, Any]],
        verification: Union[VerificationHint, Dict[str, Any], None] = None,
        ip_address: Optional[str] = None,
    ) -> ApiResponse[SecureLogbookEntry]:
        return await self._respond(self.create(entry_data, current_user, verification, ip_address))

    async def get_secure_entries(
        self,
        athlete_id: str,
        current_user: Optional[Dict[str, Any]],
        filters: Union[LogbookFilters, Dict[str, Any], None] = None,
    ) -> ApiResponse[List[SecureLogbookEntry]]:
        try:
            return ApiResponse[List[SecureLogbookEntry]].success(
                await self.list_entries(athlete_id, current_user, filters)
            )
        except LogbookError as e:
            logger.warning(f"get_secure_entries failed ({e.code}): {e.message}")
            return ApiResponse[List[SecureLogbookEntry]].failure(e)

    async def get_secure_entry(
        self, entry_id: str, current_user: Optional[Dict[str, Any]]
    ) -> ApiResponse[SecureLogbookEntry]:
        return await self._respond(self.get_entry(entry_id, current_user))

    async def update_secure_entry(
        self,
        entry_id: str,
        updates: Union[LogbookEntryUpdate, Dict[str, Any]],
        current_user: Optional[Dict[str, Any]],
        ip_address: Optional[str] = None,
    ) -> ApiResponse[SecureLogbookEntry]:
        return await self._respond(self.update(entry_id, updates, current_user, ip_address))

    async def verify_secure_entry(
        self,
        entry_id: str,
        barcode: str,
        current_user: Optional[Dict[str, Any]],
        ip_address: Optional[str] = None,
    ) -> ApiResponse[SecureLogbookEntry]:
        return await self._respond(self.verify(entry_id, barcode, current_user, ip_address))

    async def delete_secure_entry(
        self,
        entry_id: str,
        current_user: Optional[Dict[str, Any]],
        ip_address: Optional[str] = None,
    ) -> ApiResponse[SecureLogbookEntry]:
        return await self._respond(self.delete(entry_id, current_user, ip_address))

    async def _respond(self, operation: Awaitable[SecureLogbookEntry]) -> ApiResponse[SecureLogbookEntry]:
        try:
            return ApiResponse[SecureLogbookEntry].success(await operation)
        except LogbookError as e:
            logger.warning(f"Logbook operation failed ({e.code}): {e.message}")
            return ApiResponse[SecureLogbookEntry].failure(e)

    # Operations

    async def create(
        self,
        entry_data: Union[LogbookEntryCreate, Dict[str, Any]],
        current_user: Optional[Dict[str, Any]],
        verification: Union[VerificationHint, Dict[str, Any], None] = None,
        ip_address: Optional[str] = None,
    ) -> SecureLogbookEntry:
        actor_id = self._require_actor(current_user)
        entry = self._validate(LogbookEntryCreate, entry_data)
        hint = self._validate(VerificationHint, verification) if verification is not None else None

        if not self.permissions.can_write(actor_id, entry.athlete_id):
            raise PermissionDenied("Insufficient permissions to create logbook entry")
        role = self.permissions.get_user_role(actor_id)

        now = _utcnow()
        verification_data = await self._resolve_verification(hint, actor_id, now)
        audit = self._audit_record(
            AuditAction.CREATE, actor_id, role,
            entry.model_dump(mode="json", exclude_none=True), ip_address, now,
        )
        metadata = SecurityMetadata(
            encryption_version=self.cipher.version,
            created_by_ip=ip_address,
            last_modified_by_ip=ip_address,
        ).model_dump(mode="json")
        metadata["audit_trail"] = [audit]

        row = {
            "id": str(uuid.uuid4()),
            "athlete_id": entry.athlete_id,
            "supplement_id": entry.supplement_id,
            "amount": entry.amount,
            "unit": entry.unit.value,
            "timestamp": _iso(entry.timestamp or now),
            "notes": entry.notes,
            "verified": verification_data is not None,
            "verified_at": _iso(verification_data.verified_at) if verification_data else None,
            "verified_by": verification_data.verified_by if verification_data else None,
            "verification_data": verification_data.model_dump(mode="json") if verification_data else None,
            "deleted_at": None,
            "created_at": _iso(now),
            "updated_at": _iso(now),
            "security_metadata": metadata,
        }
        result = self._execute(
            self.supabase.table(TABLE).insert(self.cipher.encrypt_fields(row)),
            "Failed to create secure entry",
        )
        if not result.data:
            raise StorageFailure("Failed to create secure entry")

        logger.info(f"Created logbook entry {row['id']} for athlete {entry.athlete_id} by {actor_id}")
        return self._decode(result.data[0])

    async def list_entries(
        self,
        athlete_id: str,
        current_user: Optional[Dict[str, Any]],
        filters: Union[LogbookFilters, Dict[str, Any], None] = None,
    ) -> List[SecureLogbookEntry]:
        actor_id = self._require_actor(current_user)
        filters = self._validate(LogbookFilters, filters or {})
        if not self.permissions.can_read(actor_id, athlete_id):
            raise PermissionDenied("Insufficient permissions to view logbook entries")

        query = self.supabase.table(TABLE).select("*").eq("athlete_id", athlete_id)
        if not filters.include_deleted:
            query = query.is_("deleted_at", "null")
        if filters.start_date:
            query = query.gte("timestamp", _iso(filters.start_date))
        if filters.end_date:
            query = query.lte("timestamp", _iso(filters.end_date))
        query = query.order("timestamp", desc=True)
        if filters.offset:
            query = query.range(filters.offset, filters.offset + (filters.limit or 50) - 1)
        elif filters.limit:
            query = query.limit(filters.limit)

        result = self._execute(query, "Failed to fetch secure entries")
        return [self._decode(row, include_audit=filters.include_audit) for row in result.data or []]

    async def get_entry(self, entry_id: str, current_user: Optional[Dict[str, Any]]) -> SecureLogbookEntry:
        actor_id = self._require_actor(current_user)
        existing = self._fetch_row(entry_id)
        if not self.permissions.can_read(actor_id, existing["athlete_id"]):
            raise PermissionDenied("Insufficient permissions to view logbook entry")
        return self._decode(existing)

    async def update(
        self,
        entry_id: str,
        updates: Union[LogbookEntryUpdate, Dict[str, Any]],
        current_user: Optional[Dict[str, Any]],
        ip_address: Optional[str] = None,
    ) -> SecureLogbookEntry:
        actor_id = self._require_actor(current_user)
        updates = self._validate(LogbookEntryUpdate, updates)
        changes = updates.model_dump(mode="json", exclude_unset=True)
        if not changes:
            raise ValidationFailure("No fields to update")

        existing = self._fetch_writable(entry_id, actor_id, "update")
        role = self.permissions.get_user_role(actor_id)
        if "timestamp" in changes:
            changes["timestamp"] = _iso(updates.timestamp)

        audit = self._audit_record(AuditAction.UPDATE, actor_id, role, changes, ip_address)
        updated = self._apply(existing, changes, audit, ip_address)
        logger.info(f"Updated logbook entry {entry_id} ({', '.join(changes)}) by {actor_id}")
        return updated

    async def verify(
        self,
        entry_id: str,
        barcode: str,
        current_user: Optional[Dict[str, Any]],
        ip_address: Optional[str] = None,
    ) -> SecureLogbookEntry:
        actor_id = self._require_actor(current_user)
        self._fetch_writable(entry_id, actor_id, "verify")
        role = self.permissions.get_user_role(actor_id)

        result = await self.certifications.verify(barcode)
        if not result.verified:
            raise VerificationFailed(result.error or f"Barcode {barcode} is not certified by any authority")

        # Reload: other writes may have landed during the authority round-trip
        existing = self._fetch_writable(entry_id, actor_id, "verify")

        now = _utcnow()
        verification_data = VerificationData(
            certifications=result.certifications,
            verified_at=now,
            verified_by=actor_id,
            verification_method=VerificationMethod.BARCODE_SCAN,
        )
        changes = {
            "verified": True,
            "verified_at": _iso(now),
            "verified_by": actor_id,
            "verification_data": verification_data.model_dump(mode="json"),
        }
        audit = self._audit_record(AuditAction.VERIFY, actor_id, role, changes, ip_address, now)
        verified = self._apply(existing, changes, audit, ip_address)
        logger.info(f"Verified logbook entry {entry_id} via barcode {barcode} ({result.source.value}) by {actor_id}")
        return verified

    async def delete(
        self,
        entry_id: str,
        current_user: Optional[Dict[str, Any]],
        ip_address: Optional[str] = None,
    ) -> SecureLogbookEntry:
        """Tombstone an entry. The row and its audit trail are kept."""
        actor_id = self._require_actor(current_user)
        existing = self._fetch_writable(entry_id, actor_id, "delete")
        role = self.permissions.get_user_role(actor_id)

        now = _utcnow()
        changes = {"deleted_at": _iso(now)}
        audit = self._audit_record(AuditAction.DELETE, actor_id, role, changes, ip_address, now)
        deleted = self._apply(existing, changes, audit, ip_address)
        logger.info(f"Deleted (tombstoned) logbook entry {entry_id} by {actor_id}")
        return deleted

    # Helpers

    @staticmethod
    def _require_actor(current_user: Optional[Dict[str, Any]]) -> str:
        if not current_user or not current_user.get("id"):
            raise AuthRequired()
        return current_user["id"]

    @staticmethod
    def _validate(model: Type[M], data: Any) -> M:
        if isinstance(data, model):
            return data
        try:
            if isinstance(data, BaseModel):
                data = data.model_dump(exclude_unset=True)
            return model.model_validate(data)
        except ValidationError as e:
            raise ValidationFailure(_format_validation_error(e))

    async def _resolve_verification(
        self, hint: Optional[VerificationHint], actor_id: str, now: datetime
    ) -> Optional[VerificationData]:
        if hint is None:
            return None
        if hint.barcode:
            try:
                result = await self.certifications.verify(hint.barcode)
            except Exception as e:
                logger.warning(f"Verification of barcode {hint.barcode} failed, storing entry unverified: {e}")
                return None
            if not result.verified:
                logger.info(f"Barcode {hint.barcode} not verified, storing entry unverified")
                return None
            return VerificationData(
                certifications=result.certifications,
                verified_at=now,
                verified_by=actor_id,
                verification_method=hint.verification_method or VerificationMethod.BARCODE_SCAN,
            )
        if hint.certifications:
            return VerificationData(
                certifications=hint.certifications,
                verified_at=now,
                verified_by=actor_id,
                verification_method=hint.verification_method or VerificationMethod.MANUAL,
            )
        return None

    def _audit_record(
        self,
        action: AuditAction,
        actor_id: str,
        role: UserRole,
        changes: Dict[str, Any],
        ip_address: Optional[str],
        now: Optional[datetime] = None,
    ) -> Dict[str, Any]:
        """Stored form of a new audit entry, sensitive change values sealed."""
        entry = AuditEntry(
            id=str(uuid.uuid4()),
            timestamp=now or _utcnow(),
            action=action,
            user_id=actor_id,
            user_role=role.value,
            changes=changes,
            ip_address=ip_address,
            encryption_version=self.cipher.version,
        )
        record = entry.model_dump(mode="json")
        record["changes"] = self.cipher.encrypt_fields(record["changes"])
        return record

    def _fetch_row(self, entry_id: str) -> Dict[str, Any]:
        result = self._execute(
            self.supabase.table(TABLE).select("*").eq("id", entry_id).limit(1),
            "Failed to load logbook entry",
        )
        if not result.data:
            raise NotFound(f"Logbook entry {entry_id} not found")
        return result.data[0]

    def _fetch_writable(self, entry_id: str, actor_id: str, action: str) -> Dict[str, Any]:
        existing = self._fetch_row(entry_id)
        if not self.permissions.can_write(actor_id, existing["athlete_id"]):
            raise PermissionDenied(f"Insufficient permissions to {action} logbook entry")
        if existing.get("deleted_at"):
            raise ValidationFailure(f"Logbook entry {entry_id} has been deleted")
        return existing

    def _apply(
        self,
        existing: Dict[str, Any],
        changes: Dict[str, Any],
        audit: Dict[str, Any],
        ip_address: Optional[str],
    ) -> SecureLogbookEntry:
        """Persist only the changed columns and append the audit record in one call.

        The append runs server-side against the current trail, so concurrent
        writers never overwrite each other's audit entries.
        """
        columns = dict(changes)
        stored_version = (existing.get("security_metadata") or {}).get("encryption_version")
        if stored_version != self.cipher.version:
            # Reseal unchanged sensitive columns so the row carries one encryption version
            plain = self.cipher.decrypt_fields(existing, stored_version)
            for field in SENSITIVE_FIELDS:
                columns.setdefault(field, plain.get(field))
        columns["updated_at"] = _iso(_utcnow())

        result = self._execute(
            self.supabase.rpc(APPEND_AUDIT_RPC, {
                "p_entry_id": existing["id"],
                "p_changes": self.cipher.encrypt_fields(columns),
                "p_audit": audit,
                "p_encryption_version": self.cipher.version,
                "p_ip_address": ip_address,
            }),
            "Failed to update secure entry",
        )
        if not result.data:
            # The RPC only touches live rows
            raise ValidationFailure(f"Logbook entry {existing['id']} has been deleted")
        return self._decode(result.data[0])

    def _decode(self, row: Dict[str, Any], include_audit: bool = True) -> SecureLogbookEntry:
        metadata = dict(row.get("security_metadata") or {})
        decoded = self.cipher.decrypt_fields(row, metadata.get("encryption_version"))
        trail = []
        if include_audit:
            for record in metadata.get("audit_trail") or []:
                version = record.get("encryption_version")
                if version:
                    record = {**record, "changes": self.cipher.decrypt_fields(record.get("changes") or {}, version)}
                trail.append(record)
        decoded["security_metadata"] = {**metadata, "audit_trail": trail}
        try:
            return SecureLogbookEntry(**decoded)
        except ValidationError as e:
            logger.error(f"Malformed logbook row {row.get('id')}: {e}")
            raise StorageFailure(f"Stored logbook entry {row.get('id')} is malformed")

    @staticmethod
    def _execute(query, failure_message: str):
        try:
            return query.execute()
        except Exception as e:
            logger.error(f"{failure_message}: {e}")
            raise StorageFailure(f"{failure_message}: {e}")
