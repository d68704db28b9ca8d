from __future__ import annotations

import logging

from dotenv import load_dotenv
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from onboarding.api.http_setup import register_exception_handlers, register_http_middleware
from onboarding.api.runtime_routes import register_runtime_routes
from onboarding.backend.client import BackendClient
from onboarding.core.config import AppConfig
from onboarding.core.logging import setup_logging
from onboarding.registry.client import (
    AddressSearchClient,
    PostalResolverClient,
    RegistryLookupClient,
)
from onboarding.sessions.router import create_onboarding_router
from onboarding.sessions.service import OnboardingSessionService

load_dotenv()
APP_CONFIG = AppConfig.from_env()
setup_logging(APP_CONFIG.logging.level)
LOGGER = logging.getLogger(__name__)


def build_session_service(config: AppConfig) -> OnboardingSessionService:
    return OnboardingSessionService(
        backend=BackendClient(
            config.backend.base_url,
            api_token=config.backend.api_token,
            timeout_sec=config.backend.timeout_seconds,
        ),
        registry=RegistryLookupClient(
            config.registry.registry_api_url,
            timeout_sec=config.registry.timeout_seconds,
        ),
        postal=PostalResolverClient(
            config.registry.postal_api_url,
            timeout_sec=config.registry.timeout_seconds,
        ),
        address_search=AddressSearchClient(
            config.registry.address_search_url,
            timeout_sec=config.registry.timeout_seconds,
        ),
        lookup_config=config.lookup,
        session_config=config.sessions,
        logger=LOGGER,
    )


def create_app(
    config: AppConfig = APP_CONFIG,
    *,
    session_service: OnboardingSessionService | None = None,
) -> FastAPI:
    app = FastAPI(title="Provider Onboarding Console API", version="1.0.0")
    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.security.cors_allowed_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
        allow_headers=["Authorization", "Content-Type"],
    )
    register_http_middleware(app, config=config, logger=LOGGER)
    register_exception_handlers(app, logger=LOGGER)

    service = session_service or build_session_service(config)
    app.include_router(create_onboarding_router(service=service))
    register_runtime_routes(app, on_shutdown=service.close_all)
    return app


app = create_app()
