from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import Optional, List


class Settings(BaseSettings):
    # Supabase
    supabase_url: str = ""
    supabase_key: str = ""
    supabase_service_role_key: Optional[str] = None  # Required for role administration bypassing RLS

    # Logbook field encryption (Fernet key, urlsafe base64 of 32 bytes)
    logbook_encryption_key: Optional[str] = None

    # Certification verification
    certification_cache_ttl_hours: int = 24
    certification_cache_path: Optional[str] = None  # JSON file; in-memory cache when unset
    certification_cache_max_entries: int = 5000
    authority_timeout_seconds: float = 5.0
    authority_api_key: Optional[str] = None
    nsf_api_url: Optional[str] = None
    informed_sport_api_url: Optional[str] = None
    global_dro_api_url: Optional[str] = None

    # Compliance
    compliance_default_window_days: int = 30

    # App
    app_name: str = "supplement-tracker-backend"
    debug: bool = False
    environment: str = "development"  # development | staging | production
    log_level: str = "INFO"
    cors_origins: str = "http://localhost:3000,http://localhost:3001,http://127.0.0.1:3000"
    rate_limit: str = "100/minute"  # slowapi format, e.g. "100/minute"
    trusted_proxies: str = ""  # comma-separated proxy IPs whose X-Forwarded-For is honoured

    @property
    def is_production(self) -> bool:
        return self.environment == "production"

    def get_trusted_proxies_list(self) -> List[str]:
        return [p.strip() for p in self.trusted_proxies.split(",") if p.strip()]

    def get_cors_origins_list(self) -> List[str]:
        return [o.strip() for o in self.cors_origins.split(",") if o.strip()]

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=False,
        env_prefix="",  # No prefix needed
        extra="ignore"
    )


settings = Settings()
