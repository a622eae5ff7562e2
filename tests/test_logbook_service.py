import asyncio
import base64
import json
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock

import pytest

from supplement_tracker.core.encryption import LEGACY_ENCRYPTION_VERSION
from supplement_tracker.core.exceptions import (
    AuthRequired, NotFound, PermissionDenied, StorageFailure, ValidationFailure, VerificationFailed
)
from supplement_tracker.modules.certifications.schemas import AuthorityResult, CertificationType
from supplement_tracker.modules.logbook.schemas import AuditAction
from supplement_tracker.modules.logbook.service import APPEND_AUDIT_RPC, TABLE
from tests.conftest import ATHLETE_ID, COACH_ID, OTHER_ATHLETE_ID, StubAuthority, user

BARCODE = "1234567890123"


def _entry(**overrides):
    entry = {"athlete_id": ATHLETE_ID, "supplement_id": "whey", "amount": 25, "unit": "g"}
    entry.update(overrides)
    return entry


def _stored(supabase):
    return supabase.tables.get(TABLE, [])


class TestCreate:
    @pytest.mark.asyncio
    async def test_create_without_hint_is_unverified_with_one_audit_entry(self, logbook):
        entry = await logbook.create(_entry(), user(ATHLETE_ID), ip_address="10.0.0.1")

        assert entry.verified is False
        assert entry.verification_data is None
        trail = entry.security_metadata.audit_trail
        assert len(trail) == 1
        assert trail[0].action is AuditAction.CREATE
        assert trail[0].user_id == ATHLETE_ID
        assert trail[0].user_role == "athlete"
        assert trail[0].ip_address == "10.0.0.1"
        assert entry.security_metadata.created_by_ip == "10.0.0.1"

    @pytest.mark.asyncio
    async def test_notes_are_encrypted_at_rest(self, logbook, supabase):
        entry = await logbook.create(_entry(notes="felt dizzy"), user(ATHLETE_ID))

        row = _stored(supabase)[0]
        assert row["notes"] != "felt dizzy"
        assert "felt dizzy" not in str(row["security_metadata"])
        assert entry.notes == "felt dizzy"
        assert entry.security_metadata.audit_trail[0].changes["notes"] == "felt dizzy"

    @pytest.mark.asyncio
    async def test_create_with_affirmed_barcode_is_verified(self, logbook, nsf):
        nsf.result = AuthorityResult(verified=True, valid_until=datetime(2025, 12, 31, tzinfo=timezone.utc))

        entry = await logbook.create(_entry(), user(ATHLETE_ID), verification={"barcode": BARCODE})

        assert entry.verified is True
        assert entry.verified_by == ATHLETE_ID
        assert [c.type for c in entry.verification_data.certifications] == [CertificationType.NSF]

    @pytest.mark.asyncio
    async def test_create_with_manual_certifications_is_verified(self, logbook):
        hint = {"certifications": [{"id": "c1", "name": "NSF", "issuer": "NSF International", "type": "NSF"}]}

        entry = await logbook.create(_entry(), user(ATHLETE_ID), verification=hint)

        assert entry.verified is True
        assert entry.verification_data.verification_method.value == "manual"

    @pytest.mark.asyncio
    async def test_verifier_error_stores_entry_unverified(self, logbook, supabase):
        logbook.certifications = AsyncMock()
        logbook.certifications.verify.side_effect = RuntimeError("network down")

        entry = await logbook.create(_entry(), user(ATHLETE_ID), verification={"barcode": BARCODE})

        assert entry.verified is False
        assert len(_stored(supabase)) == 1

    @pytest.mark.asyncio
    async def test_linked_coach_creates_for_athlete(self, logbook):
        entry = await logbook.create(_entry(), user(COACH_ID))

        assert entry.athlete_id == ATHLETE_ID
        assert entry.security_metadata.audit_trail[0].user_role == "coach"

    @pytest.mark.asyncio
    async def test_anonymous_create_is_rejected_without_side_effects(self, logbook, supabase):
        with pytest.raises(AuthRequired):
            await logbook.create(_entry(), None)
        assert _stored(supabase) == []

    @pytest.mark.asyncio
    async def test_foreign_athlete_create_is_denied_without_side_effects(self, logbook, supabase):
        with pytest.raises(PermissionDenied):
            await logbook.create(_entry(), user(OTHER_ATHLETE_ID))
        assert _stored(supabase) == []

    @pytest.mark.asyncio
    async def test_negative_amount_is_rejected(self, logbook, supabase):
        with pytest.raises(ValidationFailure):
            await logbook.create(_entry(amount=-1), user(ATHLETE_ID))
        assert _stored(supabase) == []

    @pytest.mark.asyncio
    async def test_storage_error_surfaces_as_storage_failure(self, logbook, supabase):
        supabase.failures[(TABLE, "insert")] = RuntimeError("insert failed")
        with pytest.raises(StorageFailure):
            await logbook.create(_entry(), user(ATHLETE_ID))

    @pytest.mark.asyncio
    async def test_response_wrapper_carries_error_code(self, logbook):
        response = await logbook.create_secure_entry(_entry(), None)

        assert response.data is None
        assert response.error_code == "auth_required"
        assert not response.ok


class TestRead:
    @pytest.mark.asyncio
    async def test_entries_are_newest_first(self, logbook):
        base = datetime(2024, 3, 1, tzinfo=timezone.utc)
        for days in (0, 2, 1):
            await logbook.create(_entry(timestamp=base + timedelta(days=days)), user(ATHLETE_ID))

        entries = await logbook.list_entries(ATHLETE_ID, user(ATHLETE_ID))

        assert [e.timestamp for e in entries] == [
            base + timedelta(days=2), base + timedelta(days=1), base,
        ]

    @pytest.mark.asyncio
    async def test_date_window_and_limit(self, logbook):
        base = datetime(2024, 3, 1, tzinfo=timezone.utc)
        for days in range(5):
            await logbook.create(_entry(timestamp=base + timedelta(days=days)), user(ATHLETE_ID))

        entries = await logbook.list_entries(ATHLETE_ID, user(ATHLETE_ID), {
            "start_date": base + timedelta(days=1),
            "end_date": base + timedelta(days=3),
            "limit": 2,
        })

        assert [e.timestamp for e in entries] == [base + timedelta(days=3), base + timedelta(days=2)]

    @pytest.mark.asyncio
    async def test_inverted_window_is_rejected(self, logbook):
        with pytest.raises(ValidationFailure):
            await logbook.list_entries(ATHLETE_ID, user(ATHLETE_ID), {
                "start_date": datetime(2024, 3, 2), "end_date": datetime(2024, 3, 1),
            })

    @pytest.mark.asyncio
    async def test_audit_can_be_left_out(self, logbook):
        await logbook.create(_entry(), user(ATHLETE_ID))

        entries = await logbook.list_entries(ATHLETE_ID, user(ATHLETE_ID), {"include_audit": False})
        assert entries[0].security_metadata.audit_trail == []

    @pytest.mark.asyncio
    async def test_unlinked_coach_can_read(self, logbook, supabase):
        supabase.tables["user_roles"].append({"user_id": "coach-2", "role": "coach"})
        await logbook.create(_entry(), user(ATHLETE_ID))

        entries = await logbook.list_entries(ATHLETE_ID, user("coach-2"))
        assert len(entries) == 1

    @pytest.mark.asyncio
    async def test_other_athlete_cannot_read(self, logbook):
        with pytest.raises(PermissionDenied):
            await logbook.list_entries(ATHLETE_ID, user(OTHER_ATHLETE_ID))

    @pytest.mark.asyncio
    async def test_get_missing_entry(self, logbook):
        with pytest.raises(NotFound):
            await logbook.get_entry("missing", user(ATHLETE_ID))


class TestMutations:
    @pytest.mark.asyncio
    async def test_update_audits_only_changed_fields(self, logbook):
        created = await logbook.create(_entry(notes="am"), user(ATHLETE_ID))

        updated = await logbook.update(created.id, {"amount": 200}, user(ATHLETE_ID))

        assert updated.amount == 200
        assert updated.notes == "am"
        trail = updated.security_metadata.audit_trail
        assert [a.action for a in trail] == [AuditAction.CREATE, AuditAction.UPDATE]
        assert trail[1].changes == {"amount": 200}
        assert trail[0] == created.security_metadata.audit_trail[0]

    @pytest.mark.asyncio
    async def test_empty_or_null_update_is_rejected(self, logbook):
        created = await logbook.create(_entry(), user(ATHLETE_ID))

        with pytest.raises(ValidationFailure):
            await logbook.update(created.id, {}, user(ATHLETE_ID))
        with pytest.raises(ValidationFailure):
            await logbook.update(created.id, {"amount": None}, user(ATHLETE_ID))

    @pytest.mark.asyncio
    async def test_unlinked_coach_cannot_update(self, logbook, supabase):
        supabase.tables["user_roles"].append({"user_id": "coach-2", "role": "coach"})
        created = await logbook.create(_entry(), user(ATHLETE_ID))

        with pytest.raises(PermissionDenied):
            await logbook.update(created.id, {"amount": 1}, user("coach-2"))

        stored = await logbook.get_entry(created.id, user(ATHLETE_ID))
        assert stored.amount == 25
        assert len(stored.security_metadata.audit_trail) == 1

    @pytest.mark.asyncio
    async def test_verify_with_affirming_authority(self, logbook, nsf):
        nsf.result = AuthorityResult(verified=True, valid_until=datetime(2025, 12, 31, tzinfo=timezone.utc))
        created = await logbook.create(_entry(), user(ATHLETE_ID))

        verified = await logbook.verify(created.id, BARCODE, user(ATHLETE_ID), ip_address="10.0.0.2")

        assert verified.verified is True
        assert verified.verified_by == ATHLETE_ID
        certifications = verified.verification_data.certifications
        assert len(certifications) == 1
        assert certifications[0].valid_until == datetime(2025, 12, 31, tzinfo=timezone.utc)
        trail = verified.security_metadata.audit_trail
        assert [a.action for a in trail] == [AuditAction.CREATE, AuditAction.VERIFY]
        assert trail[1].changes["verified"] is True
        assert verified.security_metadata.last_modified_by_ip == "10.0.0.2"

    @pytest.mark.asyncio
    async def test_failed_verification_changes_nothing(self, logbook, supabase):
        created = await logbook.create(_entry(), user(ATHLETE_ID))
        before = [dict(row) for row in _stored(supabase)]

        with pytest.raises(VerificationFailed):
            await logbook.verify(created.id, BARCODE, user(ATHLETE_ID))

        assert _stored(supabase) == before

    @pytest.mark.asyncio
    async def test_delete_tombstones_entry(self, logbook, supabase):
        created = await logbook.create(_entry(), user(ATHLETE_ID))

        deleted = await logbook.delete(created.id, user(ATHLETE_ID))

        assert deleted.is_deleted
        assert deleted.security_metadata.audit_trail[-1].action is AuditAction.DELETE
        assert len(_stored(supabase)) == 1
        assert await logbook.list_entries(ATHLETE_ID, user(ATHLETE_ID)) == []
        kept = await logbook.list_entries(ATHLETE_ID, user(ATHLETE_ID), {"include_deleted": True})
        assert [e.id for e in kept] == [created.id]

        with pytest.raises(ValidationFailure):
            await logbook.update(created.id, {"amount": 1}, user(ATHLETE_ID))


class GatedAuthority(StubAuthority):
    """Affirms only once released, so writes can land mid-verification."""

    def __init__(self):
        super().__init__("NSF Certified for Sport", CertificationType.NSF)
        self.started = asyncio.Event()
        self.release = asyncio.Event()

    async def check(self, barcode, client):
        self.calls.append(barcode)
        self.started.set()
        await self.release.wait()
        return AuthorityResult(verified=True)


class TestConcurrentWrites:
    @pytest.mark.asyncio
    async def test_update_during_verification_keeps_both_audit_entries(self, logbook, certification_service):
        gated = GatedAuthority()
        certification_service.authorities = [gated]
        created = await logbook.create(_entry(amount=100), user(ATHLETE_ID))

        verifying = asyncio.create_task(logbook.verify(created.id, BARCODE, user(ATHLETE_ID)))
        await asyncio.wait_for(gated.started.wait(), timeout=1)
        await logbook.update(created.id, {"amount": 200}, user(COACH_ID))
        gated.release.set()
        verified = await verifying

        stored = await logbook.get_entry(created.id, user(ATHLETE_ID))
        assert [a.action for a in stored.security_metadata.audit_trail] == [
            AuditAction.CREATE, AuditAction.UPDATE, AuditAction.VERIFY,
        ]
        assert stored.amount == 200
        assert stored.verified is True
        assert verified.amount == 200

    @pytest.mark.asyncio
    async def test_writes_touch_only_changed_columns(self, logbook, supabase):
        created = await logbook.create(_entry(notes="keep me"), user(ATHLETE_ID))
        sealed_notes = _stored(supabase)[0]["notes"]

        await logbook.update(created.id, {"amount": 40}, user(ATHLETE_ID))

        append_calls = [params for name, params in supabase.rpc_calls if name == APPEND_AUDIT_RPC]
        assert set(append_calls[-1]["p_changes"]) == {"amount", "updated_at"}
        assert _stored(supabase)[0]["notes"] == sealed_notes

    @pytest.mark.asyncio
    async def test_legacy_row_is_resealed_on_write(self, logbook, supabase, cipher):
        legacy_note = base64.b64encode(json.dumps("old note").encode()).decode()
        supabase.tables[TABLE] = [{
            "id": "legacy-1", "athlete_id": ATHLETE_ID, "supplement_id": "whey", "amount": 5, "unit": "g",
            "timestamp": "2024-01-01T00:00:00+00:00", "notes": legacy_note, "verified": False,
            "verification_data": None, "deleted_at": None,
            "security_metadata": {"encryption_version": LEGACY_ENCRYPTION_VERSION, "audit_trail": []},
        }]

        updated = await logbook.update("legacy-1", {"amount": 6}, user(ATHLETE_ID))

        assert updated.notes == "old note"
        row = _stored(supabase)[0]
        assert row["security_metadata"]["encryption_version"] == cipher.version
        assert cipher.decrypt_value(row["notes"]) == "old note"

    @pytest.mark.asyncio
    async def test_audit_append_failure_is_storage_failure(self, logbook, supabase):
        created = await logbook.create(_entry(), user(ATHLETE_ID))
        supabase.failures[(APPEND_AUDIT_RPC, "rpc")] = RuntimeError("statement timeout")

        with pytest.raises(StorageFailure):
            await logbook.update(created.id, {"amount": 1}, user(ATHLETE_ID))
