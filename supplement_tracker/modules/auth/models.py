# Identity comes from Supabase Auth (auth.users); there is no auth table of our own.

"""
Sign-up, sign-in and session refresh happen between the client and
Supabase Auth. The backend receives the session access token as a Bearer
header and resolves it with auth.get_user(jwt=...).

Only the user id (and email, for display) is used here. Roles are kept in
user_roles (see modules/roles/models.py) so they cannot be edited through
client-writable user metadata.
"""
