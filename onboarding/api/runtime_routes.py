"""Health endpoint and lifecycle hooks of the onboarding API."""

from __future__ import annotations

from typing import Callable

from fastapi import FastAPI

from onboarding.api.contracts import HealthResponse


def register_runtime_routes(app: FastAPI, *, on_shutdown: Callable[[], None]) -> None:
    """Register ``/api/health`` and the shutdown hook."""

    @app.on_event("shutdown")
    async def shutdown_sessions() -> None:
        on_shutdown()

    @app.get(
        "/api/health",
        response_model=HealthResponse,
    )
    def health() -> HealthResponse:
        return HealthResponse(status="ok")
