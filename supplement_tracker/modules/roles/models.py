# Supabase tables: user_roles, coach_athlete_relationships
# This file documents the expected database schema
# Actual operations are handled via Supabase SDK in service.py

"""
Expected Supabase table structure:

user_roles:
- user_id: uuid (primary key, foreign key to auth.users.id)
- role: text (not null) - values: athlete, coach, admin
- created_at: timestamp (default: now())
- updated_at: timestamp (nullable)

A user without a user_roles row is treated as an athlete.

coach_athlete_relationships:
- id: uuid (primary key)
- coach_id: uuid (foreign key to auth.users.id, not null)
- athlete_id: uuid (foreign key to auth.users.id, not null)
- created_at: timestamp (default: now())
- unique constraint on (coach_id, athlete_id)
"""
