"""
Core dependencies for route protection and service wiring
"""

from functools import lru_cache
from fastapi import Depends, HTTPException, Request, Security, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from supplement_tracker.config.settings import settings
from supplement_tracker.core.encryption import FieldCipher, get_field_cipher
from supplement_tracker.database.supabase_client import get_supabase
from supplement_tracker.modules.auth.service import AuthService
from supplement_tracker.modules.certifications.cache import (
    CertificationCache, FileCertificationCache, MemoryCertificationCache
)
from supplement_tracker.modules.certifications.service import CertificationService
from supplement_tracker.modules.compliance.service import ComplianceService
from supplement_tracker.modules.logbook.service import SecureLogbookService
from supplement_tracker.modules.roles.schemas import UserRole
from supplement_tracker.modules.roles.service import PermissionResolver
from supabase import Client
from typing import Optional, Dict, Any
import logging

logger = logging.getLogger(__name__)

security = HTTPBearer()
optional_security = HTTPBearer(auto_error=False)


def get_auth_service(supabase: Client = Depends(get_supabase)) -> AuthService:
    return AuthService(supabase)


def get_current_user_id(
    credentials: HTTPAuthorizationCredentials = Security(security),
    auth_service: AuthService = Depends(get_auth_service)
) -> dict:
    """Extract current user info from JWT token"""
    token = credentials.credentials
    user_data = auth_service.get_current_user(token)
    return user_data


def get_optional_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Security(optional_security),
    auth_service: AuthService = Depends(get_auth_service)
) -> Optional[Dict[str, Any]]:
    """Current user or None; the logbook services decide whether anonymous access is an error."""
    if credentials is None:
        return None
    return auth_service.get_current_user(credentials.credentials)


def get_client_ip(request: Request) -> Optional[str]:
    """Peer address, or the X-Forwarded-For client when the peer is a trusted proxy.

    The header is read right to left and trusted hops are skipped; entries
    left of the first untrusted hop are client-supplied and ignored.
    """
    peer = request.client.host if request.client else None
    trusted = settings.get_trusted_proxies_list()
    forwarded = request.headers.get("x-forwarded-for")
    if not forwarded or peer not in trusted:
        return peer
    hops = [hop.strip() for hop in forwarded.split(",") if hop.strip()]
    for hop in reversed(hops):
        if hop not in trusted:
            return hop
    return hops[0] if hops else peer


def get_permission_resolver(supabase: Client = Depends(get_supabase)) -> PermissionResolver:
    return PermissionResolver(supabase)


def require_admin(
    user_data: dict = Depends(get_current_user_id),
    resolver: PermissionResolver = Depends(get_permission_resolver)
) -> dict:
    """Dependency to check that the user holds the admin role"""
    if resolver.get_user_role(user_data["id"]) is not UserRole.ADMIN:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Admin role required"
        )
    return user_data


@lru_cache(maxsize=1)
def get_certification_cache() -> CertificationCache:
    """Process-scoped certification cache; persisted to disk when a path is configured."""
    if settings.certification_cache_path:
        logger.info(f"Using file certification cache at {settings.certification_cache_path}")
        return FileCertificationCache(settings.certification_cache_path, settings.certification_cache_max_entries)
    return MemoryCertificationCache(settings.certification_cache_max_entries)


def get_certification_service(
    supabase: Client = Depends(get_supabase),
    cache: CertificationCache = Depends(get_certification_cache)
) -> CertificationService:
    return CertificationService(supabase, cache=cache)


def get_cipher() -> FieldCipher:
    try:
        return get_field_cipher()
    except RuntimeError as e:
        logger.error(str(e))
        raise HTTPException(status_code=500, detail="Logbook encryption is not configured")


def get_logbook_service(
    supabase: Client = Depends(get_supabase),
    resolver: PermissionResolver = Depends(get_permission_resolver),
    certifications: CertificationService = Depends(get_certification_service),
    cipher: FieldCipher = Depends(get_cipher)
) -> SecureLogbookService:
    return SecureLogbookService(supabase, resolver, certifications, cipher)


def get_compliance_service(
    logbook: SecureLogbookService = Depends(get_logbook_service)
) -> ComplianceService:
    return ComplianceService(logbook)
