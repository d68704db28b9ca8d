"""Business logic for onboarding wizard session endpoints."""

from __future__ import annotations

import logging
import time
import uuid
from collections.abc import Callable, Iterator, Mapping
from contextlib import contextmanager
from typing import Any, Protocol

from onboarding.api.errors import ApiError, ApiErrorCode
from onboarding.backend.client import BackendError, ClientNotFoundError
from onboarding.core.config import LookupConfig, SessionConfig
from onboarding.wizard.controller import ClientBackend, WizardController
from onboarding.wizard.errors import WizardClosedError, WizardError
from onboarding.wizard.graph import EntityGraph, parse_client_kind
from onboarding.wizard.lookup import (
    AddressSearch,
    LookupOrchestrator,
    PostalResolver,
    RegistryLookup,
    RunBlocking,
    run_in_default_executor,
)
from onboarding.wizard.workflow import WizardStep


class OnboardingBackend(ClientBackend, Protocol):
    """Backend calls used by the session service."""

    def get_client(self, client_id: str) -> dict[str, Any]:
        """Return the persisted client record or raise ``ClientNotFoundError``."""


@contextmanager
def _wizard_errors() -> Iterator[None]:
    try:
        yield
    except WizardClosedError as exc:
        raise ApiError(
            status_code=409,
            error_code=ApiErrorCode.SESSION_CLOSED,
            message=str(exc),
        ) from exc
    except WizardError as exc:
        raise ApiError(
            status_code=422,
            error_code=ApiErrorCode.WIZARD_INVALID_OPERATION,
            message=str(exc),
        ) from exc


class OnboardingSessionService:
    """Application service owning the in-memory wizard sessions."""

    def __init__(
        self,
        *,
        backend: OnboardingBackend,
        registry: RegistryLookup,
        postal: PostalResolver,
        lookup_config: LookupConfig,
        logger: logging.Logger,
        address_search: AddressSearch | None = None,
        session_config: SessionConfig | None = None,
        run_blocking: RunBlocking = run_in_default_executor,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._backend = backend
        self._registry = registry
        self._postal = postal
        self._address_search = address_search
        self._lookup_config = lookup_config
        self._session_config = session_config or SessionConfig()
        self._logger = logger
        self._run_blocking = run_blocking
        self._clock = clock
        self._sessions: dict[str, WizardController] = {}
        self._last_touched: dict[str, float] = {}

    def __len__(self) -> int:
        return len(self._sessions)

    async def open_session(
        self, *, client_id: str = "", kind: str = "", status_id: Any = ""
    ) -> dict[str, Any]:
        """Open a new-client wizard, or an edit wizard hydrated from the backend."""
        self.purge_expired()
        with _wizard_errors():
            if client_id:
                graph = EntityGraph.from_record(await self._fetch_client(client_id))
            else:
                graph = EntityGraph.new(
                    parse_client_kind(kind or "individual"), status_id=status_id
                )

        session_id = uuid.uuid4().hex
        orchestrator = LookupOrchestrator(
            graph=graph,
            registry=self._registry,
            postal=self._postal,
            duplicates=self._backend,
            address_search=self._address_search,
            config=self._lookup_config,
            run_blocking=self._run_blocking,
            session_id=session_id,
            logger=self._logger,
        )
        controller = WizardController(
            graph=graph,
            orchestrator=orchestrator,
            backend=self._backend,
            run_blocking=self._run_blocking,
            session_id=session_id,
            logger=self._logger,
        )
        self._sessions[session_id] = controller
        self._last_touched[session_id] = self._clock()
        self._logger.info(
            "wizard_opened is_edit=%s",
            graph.is_edit,
            extra={"session_id": session_id, "step": str(controller.step)},
        )
        return controller.snapshot()

    async def _fetch_client(self, client_id: str) -> Mapping[str, Any]:
        try:
            return await self._run_blocking(self._backend.get_client, client_id)
        except ClientNotFoundError as exc:
            raise ApiError(
                status_code=404,
                error_code=ApiErrorCode.CLIENT_NOT_FOUND,
                message=f"Client not found: {client_id}",
            ) from exc
        except BackendError as exc:
            raise ApiError(
                status_code=502,
                error_code=ApiErrorCode.BACKEND_UNAVAILABLE,
                message=str(exc),
            ) from exc

    def get_controller(self, session_id: str) -> WizardController:
        self.purge_expired()
        controller = self._sessions.get(session_id)
        if controller is None:
            raise ApiError(
                status_code=404,
                error_code=ApiErrorCode.SESSION_NOT_FOUND,
                message=f"Wizard session not found: {session_id}",
            )
        self._last_touched[session_id] = self._clock()
        return controller

    def purge_expired(self) -> int:
        """Discard sessions idle for longer than the configured TTL."""
        ttl = self._session_config.idle_ttl_seconds
        if ttl <= 0:
            return 0
        deadline = self._clock() - ttl
        expired = [
            session_id
            for session_id, touched in self._last_touched.items()
            if touched < deadline
        ]
        for session_id in expired:
            controller = self._drop(session_id)
            if controller is not None:
                controller.cancel()
                self._logger.info(
                    "wizard_expired",
                    extra={"session_id": session_id, "step": str(controller.step)},
                )
        return len(expired)

    def _drop(self, session_id: str) -> WizardController | None:
        self._last_touched.pop(session_id, None)
        return self._sessions.pop(session_id, None)

    def get_state(self, session_id: str) -> dict[str, Any]:
        return self.get_controller(session_id).snapshot()

    def cancel(self, session_id: str) -> dict[str, Any]:
        controller = self.get_controller(session_id)
        controller.cancel()
        self._drop(session_id)
        return controller.snapshot()

    def close_all(self) -> None:
        """Discard every open session (application shutdown)."""
        for controller in self._sessions.values():
            controller.cancel()
        self._sessions.clear()
        self._last_touched.clear()

    def set_client_kind(self, session_id: str, kind: str) -> dict[str, Any]:
        controller = self.get_controller(session_id)
        with _wizard_errors():
            controller.set_client_variant(kind)
        return controller.snapshot()

    def update_client(self, session_id: str, changes: Mapping[str, Any]) -> dict[str, Any]:
        controller = self.get_controller(session_id)
        with _wizard_errors():
            controller.update_client_fields(changes)
        return controller.snapshot()

    def set_has_providers(self, session_id: str, has_providers: bool) -> dict[str, Any]:
        controller = self.get_controller(session_id)
        with _wizard_errors():
            controller.set_has_providers(has_providers)
        return controller.snapshot()

    def add_address(self, session_id: str) -> dict[str, Any]:
        controller = self.get_controller(session_id)
        with _wizard_errors():
            controller.add_address()
        return controller.snapshot()

    def update_address(
        self, session_id: str, temp_id: str, changes: Mapping[str, Any]
    ) -> dict[str, Any]:
        controller = self.get_controller(session_id)
        with _wizard_errors():
            controller.update_address(temp_id, changes)
        return controller.snapshot()

    def remove_address(self, session_id: str, temp_id: str) -> dict[str, Any]:
        controller = self.get_controller(session_id)
        with _wizard_errors():
            controller.remove_address(temp_id)
        return controller.snapshot()

    def select_address_suggestion(
        self, session_id: str, slot: str, index: int
    ) -> dict[str, Any]:
        controller = self.get_controller(session_id)
        with _wizard_errors():
            controller.select_address_suggestion(slot, index)
        return controller.snapshot()

    def add_provider(self, session_id: str) -> dict[str, Any]:
        controller = self.get_controller(session_id)
        with _wizard_errors():
            controller.add_provider()
        return controller.snapshot()

    def update_provider(
        self, session_id: str, index: int, changes: Mapping[str, Any]
    ) -> dict[str, Any]:
        controller = self.get_controller(session_id)
        with _wizard_errors():
            controller.update_provider(index, changes)
        return controller.snapshot()

    def remove_provider(self, session_id: str, index: int) -> dict[str, Any]:
        controller = self.get_controller(session_id)
        with _wizard_errors():
            controller.remove_provider(index)
        return controller.snapshot()

    async def submit(self, session_id: str) -> dict[str, Any]:
        controller = self.get_controller(session_id)
        with _wizard_errors():
            step = await controller.submit()
        if step is WizardStep.SUBMITTED:
            self._drop(session_id)
        return controller.snapshot()

    def back(self, session_id: str) -> dict[str, Any]:
        controller = self.get_controller(session_id)
        with _wizard_errors():
            controller.back()
        return controller.snapshot()
