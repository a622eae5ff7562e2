"""
Bearer token resolution against Supabase Auth.

Clients sign in with Supabase Auth directly; this backend only turns a
session token back into a user identity for the logbook services.
"""

import hashlib
import logging
import time
from typing import Any, Dict, Optional, Tuple

from fastapi import HTTPException
from supabase import Client

logger = logging.getLogger(__name__)

TOKEN_CACHE_TTL_SECONDS = 60
TOKEN_CACHE_MAX_SIZE = 500

# sha256(token) -> (user, monotonic expiry)
_resolved_users: Dict[str, Tuple[Dict[str, Any], float]] = {}


def _token_key(token: str) -> str:
    return hashlib.sha256(token.encode()).hexdigest()


def _cached_user(key: str, now: float) -> Optional[Dict[str, Any]]:
    hit = _resolved_users.get(key)
    if hit is None:
        return None
    user, expires_at = hit
    if now >= expires_at:
        _resolved_users.pop(key, None)
        return None
    return user


def _remember_user(key: str, user: Dict[str, Any], now: float) -> None:
    if len(_resolved_users) >= TOKEN_CACHE_MAX_SIZE:
        for stale in [k for k, (_, expires_at) in _resolved_users.items() if expires_at <= now]:
            del _resolved_users[stale]
    if len(_resolved_users) < TOKEN_CACHE_MAX_SIZE:
        _resolved_users[key] = (user, now + TOKEN_CACHE_TTL_SECONDS)


def clear_token_cache() -> None:
    _resolved_users.clear()


class AuthService:
    def __init__(self, supabase: Client):
        self.supabase = supabase

    def get_current_user(self, token: str) -> Dict[str, Any]:
        """{"id", "email", "user_metadata"} for a valid token, else HTTP 401.

        Resolved users are reused for a minute so a scan followed by a
        logbook write costs one Supabase Auth round-trip.
        """
        key = _token_key(token)
        now = time.monotonic()
        user = _cached_user(key, now)
        if user is not None:
            return user

        try:
            response = self.supabase.auth.get_user(jwt=token)
        except Exception as e:
            logger.info(f"Token rejected by Supabase Auth: {e}")
            raise HTTPException(status_code=401, detail="Invalid or expired token")
        if not response or not response.user:
            raise HTTPException(status_code=401, detail="Invalid or expired token")

        user = {
            "id": response.user.id,
            "email": response.user.email,
            "user_metadata": response.user.user_metadata or {},
        }
        _remember_user(key, user, now)
        return user
