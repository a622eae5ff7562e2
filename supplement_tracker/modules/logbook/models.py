# Supabase table: secure_logbook_entries
# This file documents the expected database schema
# Actual operations are handled via Supabase SDK in service.py

"""
Expected Supabase table structure:
- id: uuid (primary key)
- athlete_id: uuid (foreign key to auth.users.id, not null)
- supplement_id: uuid (foreign key to supplements.id, not null)
- amount: numeric (not null, check amount >= 0)
- unit: text (not null) - values: mg, g, ml, capsules, tablets
- timestamp: timestamptz (not null) - when the supplement was taken
- notes: text (nullable) - encrypted JSON string
- verified: boolean (not null, default: false)
- verified_at: timestamptz (nullable)
- verified_by: uuid (nullable)
- verification_data: text (nullable) - encrypted JSON of
  {certifications, verified_at, verified_by, verification_method}
- security_metadata: jsonb (not null) -
  {encryption_version, audit_trail: [AuditEntry, ...], created_by_ip, last_modified_by_ip}
  audit entries are only ever appended; sensitive values inside an audit
  entry's changes are sealed with that entry's own encryption_version
- deleted_at: timestamptz (nullable) - tombstone; rows are never physically deleted
- created_at: timestamptz (default: now())
- updated_at: timestamptz (nullable)

Indexes: (athlete_id, timestamp desc)
Row-level security restricts direct access; writes go through the service.
"""

"""
RPC: append_secure_logbook_audit(p_entry_id uuid, p_changes jsonb, p_audit jsonb,
                                 p_encryption_version text, p_ip_address text)
     returns setof secure_logbook_entries

Writes only the columns present in p_changes and appends p_audit to the
current trail in the same statement. Tombstoned rows are left untouched and
nothing is returned for them.

    update secure_logbook_entries e set
        supplement_id     = coalesce(p.supplement_id, e.supplement_id),
        amount            = coalesce(p.amount, e.amount),
        unit              = coalesce(p.unit, e.unit),
        timestamp         = coalesce(p.timestamp, e.timestamp),
        notes             = case when p_changes ? 'notes' then p.notes else e.notes end,
        verified          = coalesce(p.verified, e.verified),
        verified_at       = coalesce(p.verified_at, e.verified_at),
        verified_by       = coalesce(p.verified_by, e.verified_by),
        verification_data = coalesce(p.verification_data, e.verification_data),
        deleted_at        = coalesce(p.deleted_at, e.deleted_at),
        updated_at        = coalesce(p.updated_at, now()),
        security_metadata = jsonb_set(
            e.security_metadata
                || jsonb_build_object('encryption_version', p_encryption_version)
                || case when p_ip_address is null then '{}'::jsonb
                        else jsonb_build_object('last_modified_by_ip', p_ip_address) end,
            '{audit_trail}',
            coalesce(e.security_metadata->'audit_trail', '[]'::jsonb) || jsonb_build_array(p_audit)
        )
    from jsonb_populate_record(null::secure_logbook_entries, p_changes) p
    where e.id = p_entry_id and e.deleted_at is null
    returning e.*;
"""
