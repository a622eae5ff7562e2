"""
Third-party certification authorities queried for a barcode.

Each authority answers {"verified": bool, "valid_until": iso-date | null}.
Any exception raised by check() is treated by the verifier as a
non-affirming answer.
"""

import logging
from typing import List, Optional

import httpx

from supplement_tracker.config.settings import Settings
from supplement_tracker.modules.certifications.schemas import AuthorityResult, CertificationType

logger = logging.getLogger(__name__)


class AuthorityUnavailable(Exception):
    pass


class CertificationAuthority:
    name: str = ""
    issuer: str = ""
    certification_type: CertificationType = CertificationType.WADA_COMPLIANT

    async def check(self, barcode: str, client: httpx.AsyncClient) -> AuthorityResult:
        raise NotImplementedError


class HttpCertificationAuthority(CertificationAuthority):
    def __init__(
        self,
        name: str,
        issuer: str,
        certification_type: CertificationType,
        url: Optional[str],
        api_key: Optional[str] = None,
    ):
        self.name = name
        self.issuer = issuer
        self.certification_type = certification_type
        self.url = url
        self.api_key = api_key

    async def check(self, barcode: str, client: httpx.AsyncClient) -> AuthorityResult:
        if not self.url:
            raise AuthorityUnavailable(f"{self.name} endpoint is not configured")
        headers = {"Accept": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        response = await client.get(self.url, params={"barcode": barcode}, headers=headers)
        response.raise_for_status()
        payload = response.json()
        return AuthorityResult(
            verified=bool(payload.get("verified")),
            valid_until=payload.get("valid_until") or payload.get("validUntil"),
        )


def build_default_authorities(settings: Settings) -> List[CertificationAuthority]:
    return [
        HttpCertificationAuthority(
            name="NSF Certified for Sport",
            issuer="NSF International",
            certification_type=CertificationType.NSF,
            url=settings.nsf_api_url,
            api_key=settings.authority_api_key,
        ),
        HttpCertificationAuthority(
            name="Informed Sport",
            issuer="LGC Group",
            certification_type=CertificationType.INFORMED_SPORT,
            url=settings.informed_sport_api_url,
            api_key=settings.authority_api_key,
        ),
        HttpCertificationAuthority(
            name="Global DRO",
            issuer="Global Drug Reference Online",
            certification_type=CertificationType.WADA_COMPLIANT,
            url=settings.global_dro_api_url,
            api_key=settings.authority_api_key,
        ),
    ]
