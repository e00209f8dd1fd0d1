"""
Service Configuration - backend of record, Google Play, record store and observability.

NO DICTIONARIES - All configuration is strongly typed.
FAIL FAST - Critical config is validated at startup.
"""

import sys

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class ConfigurationError(Exception):
    """Critical configuration is missing or invalid."""


class Settings(BaseSettings):
    """Service settings, read from the environment or a .env file."""

    # Local Record Store - "sql" (PostgreSQL) or "memory"
    record_store_backend: str = "sql"

    # Database Configuration - NO DEFAULT for production safety
    database_url: str = ""
    database_pool_size: int = 10
    database_max_overflow: int = 5
    database_pool_timeout: int = 30
    database_pool_recycle: int = 3600

    # API Configuration
    api_host: str = "0.0.0.0"
    api_port: int = 8000
    api_title: str = "Entitlement Sync API"
    api_version: str = "0.1.0"
    api_description: str = "Purchase reconciliation and acknowledgement for mobile entitlements"

    # Backend of record (register / acknowledge / status / transfer)
    backend_base_url: str = ""
    backend_timeout_seconds: float = 10.0

    # Google Play Developer API
    GOOGLE_PLAY_SERVICE_ACCOUNT: str = ""  # Path to service account JSON
    ANDROID_PACKAGE_NAME: str = ""  # e.g., "com.example.subscriptions"

    # Caller authentication - Google ID tokens (web + Android client IDs, comma-separated)
    GOOGLE_CLIENT_IDS: str = ""
    id_token_cache_size: int = 10000

    # Per-process caches
    max_user_sessions: int = 10000
    max_content_entries: int = 10000
    acknowledged_tokens_cache_size: int = 10000

    # Acknowledgement retry policy
    ack_max_attempts: int = 3
    ack_backoff_base_seconds: float = 0.5

    # Product catalog (must match Google Play Console configuration)
    basic_product_id: str = "basic_subscription"
    premium_product_id: str = "premium_subscription"
    one_time_product_id: str = "otp"

    # Logging
    log_level: str = "INFO"
    log_format: str = "json"  # json or console

    # Observability - Metrics
    metrics_enabled: bool = True

    # Observability - Tracing
    tracing_enabled: bool = False
    otlp_endpoint: str = "http://otel-collector:4317"
    otlp_insecure: bool = True
    service_name: str = "entitlement-sync"

    @property
    def valid_google_client_ids(self) -> list[str]:
        """Configured client IDs in order, without blanks or duplicates."""
        ids: list[str] = []
        for client_id in self.GOOGLE_CLIENT_IDS.split(","):
            client_id = client_id.strip()
            if client_id and client_id not in ids:
                ids.append(client_id)
        return ids

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    def _backend_errors(self) -> list[str]:
        if not self.backend_base_url:
            return ["BACKEND_BASE_URL is required but empty or missing"]
        if not self.backend_base_url.startswith(("http://", "https://")):
            return [f"BACKEND_BASE_URL must be an http(s) URL, got: {self.backend_base_url[:20]}..."]
        return []

    def _record_store_errors(self) -> list[str]:
        if self.record_store_backend == "memory":
            return []
        if self.record_store_backend != "sql":
            return [
                f"RECORD_STORE_BACKEND must be 'sql' or 'memory', got: {self.record_store_backend}"
            ]
        if not self.database_url:
            return ["DATABASE_URL is required when RECORD_STORE_BACKEND=sql"]
        if not self.database_url.startswith(("postgresql", "postgres")):
            return [f"DATABASE_URL must be a PostgreSQL URL, got: {self.database_url[:20]}..."]
        return []

    def _billing_errors(self) -> list[str]:
        errors = [
            f"{name} is required but empty or missing"
            for name in ("GOOGLE_PLAY_SERVICE_ACCOUNT", "ANDROID_PACKAGE_NAME")
            if not getattr(self, name)
        ]
        if not self.valid_google_client_ids:
            errors.append("GOOGLE_CLIENT_IDS is required but empty or missing")
        if self.ack_max_attempts < 1:
            errors.append(f"ACK_MAX_ATTEMPTS must be at least 1, got: {self.ack_max_attempts}")
        return errors

    def _cache_errors(self) -> list[str]:
        sizes = (
            ("ID_TOKEN_CACHE_SIZE", self.id_token_cache_size),
            ("MAX_USER_SESSIONS", self.max_user_sessions),
            ("MAX_CONTENT_ENTRIES", self.max_content_entries),
            ("ACKNOWLEDGED_TOKENS_CACHE_SIZE", self.acknowledged_tokens_cache_size),
        )
        return [f"{name} must be at least 1, got: {size}" for name, size in sizes if size < 1]

    @model_validator(mode="after")
    def validate_critical_config(self) -> "Settings":
        """FAIL FAST: the service refuses to start with a missing or malformed critical setting."""
        errors = (
            self._backend_errors()
            + self._record_store_errors()
            + self._billing_errors()
            + self._cache_errors()
        )
        if errors:
            banner = "=" * 60
            error_msg = "\n".join(
                ["", banner, "CRITICAL CONFIGURATION ERROR - SERVICE CANNOT START", banner]
                + [f"  ✗ {e}" for e in errors]
                + [banner, ""]
            )
            print(error_msg, file=sys.stderr)
            raise ConfigurationError(error_msg)

        return self


# Global settings instance - validates at import time
settings = Settings()
