# Supabase tables: supplements, certifications, supplement_certifications
# This file documents the expected database schema
# Actual operations are handled via Supabase SDK in service.py

"""
Expected Supabase table structure:

supplements:
- id: uuid (primary key)
- name: text (not null)
- brand: text (not null)
- description: text (nullable)
- barcode: text (nullable, unique)
- created_at: timestamp (default: now())
- updated_at: timestamp (nullable)

certifications:
- id: uuid (primary key)
- name: text (not null)
- issuer: text (not null)
- type: text (not null) - values: NSF, Informed_Sport, ISO_17025, WADA_Compliant
- valid_until: timestamp (nullable) - null means no expiry
- created_at: timestamp (default: now())
- updated_at: timestamp (nullable)

supplement_certifications:
- supplement_id: uuid (foreign key to supplements.id)
- certification_id: uuid (foreign key to certifications.id)

RPC verify_supplement_by_barcode(barcode_input text):
returns rows of (name, brand, description, certifications jsonb) for the
supplement whose barcode matches; used as the verification fallback when
every certification authority is unreachable.
"""
