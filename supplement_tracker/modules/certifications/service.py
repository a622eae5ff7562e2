import asyncio
import logging
import time
import uuid
from datetime import datetime, timezone
from typing import Callable, List, Optional, Tuple

import httpx
from pydantic import ValidationError
from supabase import Client

from supplement_tracker.config.settings import settings
from supplement_tracker.core.exceptions import ApiResponse, ValidationFailure
from supplement_tracker.modules.certifications.authorities import CertificationAuthority, build_default_authorities
from supplement_tracker.modules.certifications.cache import (
    CertificationCache, MemoryCertificationCache, is_cache_expired
)
from supplement_tracker.modules.certifications.schemas import (
    AuthorityResult, Certification, SupplementInfo, VerificationResult, VerificationSource
)
from supplement_tracker.modules.supplements.service import SupplementService

logger = logging.getLogger(__name__)


class CertificationService:
    """Verifies a barcode against certification authorities, with a TTL cache.

    Fresh cache hits never reach the authorities. On a miss every authority
    is queried concurrently under its own timeout; a failing authority counts
    as a non-affirming answer. Only answers from at least one reachable
    authority are cached. When no authority is reachable the supplements
    database is consulted instead and the result is reported with
    source=fallback.
    """

    def __init__(
        self,
        supabase: Client,
        cache: Optional[CertificationCache] = None,
        authorities: Optional[List[CertificationAuthority]] = None,
        ttl_hours: Optional[float] = None,
        timeout_seconds: Optional[float] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.supabase = supabase
        self.supplements = SupplementService(supabase)
        self.cache = cache if cache is not None else MemoryCertificationCache()
        self.authorities = authorities if authorities is not None else build_default_authorities(settings)
        self.ttl_seconds = (ttl_hours if ttl_hours is not None else settings.certification_cache_ttl_hours) * 3600
        self.timeout_seconds = timeout_seconds if timeout_seconds is not None else settings.authority_timeout_seconds
        self.http_client = http_client
        self._clock = clock

    async def verify_barcode(self, barcode: str) -> ApiResponse[VerificationResult]:
        try:
            return ApiResponse[VerificationResult].success(await self.verify(barcode))
        except ValidationFailure as e:
            return ApiResponse[VerificationResult].failure(e)

    async def verify(self, barcode: str) -> VerificationResult:
        barcode = (barcode or "").strip()
        if not barcode:
            raise ValidationFailure("Barcode is required")

        cached = self._get_cached(barcode)
        if cached is not None:
            return cached

        if self.http_client is not None:
            answers, supplement = await self._query_all(barcode, self.http_client)
        else:
            async with httpx.AsyncClient(timeout=self.timeout_seconds) as client:
                answers, supplement = await self._query_all(barcode, client)

        if all(answer is None for answer in answers):
            logger.warning(f"All certification authorities failed for barcode {barcode}, using database fallback")
            return self._fallback(barcode)

        now = datetime.now(timezone.utc)
        certifications = [
            self._to_certification(authority, barcode, answer, now)
            for authority, answer in zip(self.authorities, answers)
            if answer is not None and answer.verified
        ]
        result = VerificationResult(
            verified=bool(certifications),
            certifications=certifications,
            supplement=supplement,
            cached=False,
            source=VerificationSource.LIVE,
        )
        self.cache.put(
            barcode,
            result.model_dump(mode="json", exclude={"cached", "source", "error"}),
            self._clock(),
        )
        return result

    def clear_cache(self) -> None:
        self.cache.clear()
        logger.info("Certification cache cleared")

    def _get_cached(self, barcode: str) -> Optional[VerificationResult]:
        entry = self.cache.get(barcode)
        if entry is None:
            return None
        if is_cache_expired(entry.timestamp, self.ttl_seconds, self._clock()):
            logger.debug(f"Certification cache entry for {barcode} expired")
            self.cache.delete(barcode)
            return None
        try:
            result = VerificationResult(**entry.data)
        except (ValidationError, TypeError) as e:
            logger.warning(f"Discarding malformed certification cache entry for {barcode}: {e}")
            self.cache.delete(barcode)
            return None
        logger.debug(f"Certification cache hit for {barcode}")
        return result.model_copy(update={"cached": True, "source": VerificationSource.CACHE})

    async def _query_all(
        self, barcode: str, client: httpx.AsyncClient
    ) -> Tuple[List[Optional[AuthorityResult]], Optional[SupplementInfo]]:
        results = await asyncio.gather(
            asyncio.to_thread(self._get_supplement_info, barcode),
            *[self._query_authority(authority, barcode, client) for authority in self.authorities],
        )
        return list(results[1:]), results[0]

    async def _query_authority(
        self, authority: CertificationAuthority, barcode: str, client: httpx.AsyncClient
    ) -> Optional[AuthorityResult]:
        try:
            return await asyncio.wait_for(authority.check(barcode, client), timeout=self.timeout_seconds)
        except asyncio.TimeoutError:
            logger.warning(f"{authority.name} timed out after {self.timeout_seconds}s for barcode {barcode}")
        except Exception as e:
            logger.warning(f"{authority.name} verification failed for barcode {barcode}: {e}")
        return None

    def _get_supplement_info(self, barcode: str) -> Optional[SupplementInfo]:
        try:
            return self.supplements.get_by_barcode(barcode)
        except Exception as e:
            logger.warning(f"Error getting supplement info for barcode {barcode}: {e}")
            return None

    def _fallback(self, barcode: str) -> VerificationResult:
        try:
            match = self.supplements.verify_by_barcode(barcode)
        except Exception as e:
            logger.error(f"Database fallback failed for barcode {barcode}: {e}")
            match = None
        if match is None:
            return VerificationResult(
                verified=False,
                source=VerificationSource.FALLBACK,
                error="Verification failed: no certification authority reachable and no local match",
            )
        return VerificationResult(
            verified=True,
            certifications=match.certifications,
            supplement=SupplementInfo(name=match.name, brand=match.brand, description=match.description),
            cached=False,
            source=VerificationSource.FALLBACK,
        )

    @staticmethod
    def _to_certification(
        authority: CertificationAuthority, barcode: str, answer: AuthorityResult, now: datetime
    ) -> Certification:
        return Certification(
            id=str(uuid.uuid5(uuid.NAMESPACE_URL, f"{authority.certification_type.value}:{barcode}")),
            name=authority.name,
            issuer=authority.issuer,
            type=authority.certification_type,
            valid_until=answer.valid_until,
            created_at=now,
            updated_at=now,
        )
