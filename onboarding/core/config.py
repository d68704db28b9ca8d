"""Application configuration loaded from environment variables."""

from __future__ import annotations

import os
from dataclasses import dataclass, field


@dataclass(frozen=True)
class RegistryConfig:
    """External provider registry, postal resolver and address search endpoints."""

    registry_api_url: str
    postal_api_url: str
    timeout_seconds: int
    address_search_url: str = "https://photon.komoot.io/api/"


@dataclass(frozen=True)
class BackendConfig:
    """Client registry backend connection settings."""

    base_url: str
    api_token: str
    timeout_seconds: int


@dataclass(frozen=True)
class LookupConfig:
    """Debounce windows for wizard lookups."""

    registry_debounce_ms: int = 400
    postal_debounce_ms: int = 500
    address_debounce_ms: int = 500

    @property
    def registry_debounce_seconds(self) -> float:
        return self.registry_debounce_ms / 1000.0

    @property
    def postal_debounce_seconds(self) -> float:
        return self.postal_debounce_ms / 1000.0

    @property
    def address_debounce_seconds(self) -> float:
        return self.address_debounce_ms / 1000.0


@dataclass(frozen=True)
class SessionConfig:
    """Lifetime of in-memory wizard sessions."""

    idle_ttl_seconds: int = 1800


@dataclass(frozen=True)
class LoggingConfig:
    """Structured logging configuration."""

    level: str


@dataclass(frozen=True)
class SecurityConfig:
    """API perimeter security settings."""

    cors_allowed_origins: list[str]
    request_max_bytes: int


@dataclass(frozen=True)
class AppConfig:
    """Top-level application configuration."""

    registry: RegistryConfig
    backend: BackendConfig
    lookup: LookupConfig
    logging: LoggingConfig
    security: SecurityConfig
    sessions: SessionConfig = field(default_factory=SessionConfig)

    @staticmethod
    def from_env() -> "AppConfig":
        """Build app config from process environment."""
        registry_api_url = (
            os.getenv("REGISTRY_API_URL", "").strip()
            or "https://npiregistry.cms.hhs.gov/api/"
        )
        postal_api_url = (
            os.getenv("POSTAL_API_URL", "").strip() or "https://api.zippopotam.us/us"
        )
        address_search_url = (
            os.getenv("ADDRESS_SEARCH_URL", "").strip()
            or "https://photon.komoot.io/api/"
        )
        registry_timeout = int(os.getenv("REGISTRY_TIMEOUT_SECONDS", "10"))
        backend_url = (
            os.getenv("BACKEND_API_URL", "").strip() or "http://localhost:8000"
        )
        backend_token = os.getenv("BACKEND_API_TOKEN", "").strip()
        backend_timeout = int(os.getenv("BACKEND_TIMEOUT_SECONDS", "15"))
        registry_debounce_ms = int(os.getenv("REGISTRY_DEBOUNCE_MS", "400"))
        postal_debounce_ms = int(os.getenv("POSTAL_DEBOUNCE_MS", "500"))
        address_debounce_ms = int(os.getenv("ADDRESS_DEBOUNCE_MS", "500"))
        session_idle_ttl = int(os.getenv("SESSION_IDLE_TTL_SECONDS", "1800"))
        log_level = os.getenv("LOG_LEVEL", "INFO").strip() or "INFO"
        cors_allowed_origins = [
            origin.strip()
            for origin in os.getenv(
                "CORS_ALLOWED_ORIGINS",
                "http://localhost:3000,http://127.0.0.1:3000",
            ).split(",")
            if origin.strip()
        ]
        request_max_bytes = int(os.getenv("REQUEST_MAX_BYTES", str(1024 * 1024)))

        return AppConfig(
            registry=RegistryConfig(
                registry_api_url=registry_api_url,
                postal_api_url=postal_api_url.rstrip("/"),
                timeout_seconds=registry_timeout,
                address_search_url=address_search_url,
            ),
            backend=BackendConfig(
                base_url=backend_url.rstrip("/"),
                api_token=backend_token,
                timeout_seconds=backend_timeout,
            ),
            lookup=LookupConfig(
                registry_debounce_ms=registry_debounce_ms,
                postal_debounce_ms=postal_debounce_ms,
                address_debounce_ms=address_debounce_ms,
            ),
            logging=LoggingConfig(level=log_level),
            security=SecurityConfig(
                cors_allowed_origins=cors_allowed_origins,
                request_max_bytes=request_max_bytes,
            ),
            sessions=SessionConfig(idle_ttl_seconds=session_idle_ttl),
        )
