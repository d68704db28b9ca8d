"""FastAPI router for onboarding wizard sessions."""

from __future__ import annotations

from fastapi import APIRouter

from onboarding.api.contracts import (
    AddressSuggestionSelectRequest,
    AddressUpdateRequest,
    ApiErrorResponse,
    ClientFieldsRequest,
    ClientKindRequest,
    HasProvidersRequest,
    OpenSessionRequest,
    ProviderUpdateRequest,
    WizardSessionResponse,
)
from onboarding.sessions.service import OnboardingSessionService

_PREFIX = "/api/onboarding/sessions"

_SESSION_ERRORS = {
    404: {"model": ApiErrorResponse},
    409: {"model": ApiErrorResponse},
    422: {"model": ApiErrorResponse},
}


class OnboardingRouter:
    """Factory wrapper that builds the wizard session router from a service."""

    def __init__(self, service: OnboardingSessionService) -> None:
        self._service = service

    def build(self) -> APIRouter:
        """Create and return configured onboarding router."""
        router = APIRouter(tags=["onboarding"])

        # Handlers are async so lookup timers and tasks land on the app's event loop.

        @router.post(
            _PREFIX,
            response_model=WizardSessionResponse,
            responses={
                404: {"model": ApiErrorResponse},
                422: {"model": ApiErrorResponse},
                502: {"model": ApiErrorResponse},
            },
        )
        async def open_session(req: OpenSessionRequest) -> WizardSessionResponse:
            """Open a wizard for a new client or for editing an existing one."""
            state = await self._service.open_session(
                client_id=req.client_id.strip(),
                kind=req.kind,
                status_id=req.status_id if req.status_id is not None else "",
            )
            return WizardSessionResponse(**state)

        @router.get(
            f"{_PREFIX}/{{session_id}}",
            response_model=WizardSessionResponse,
            responses={404: {"model": ApiErrorResponse}},
        )
        async def get_session(session_id: str) -> WizardSessionResponse:
            return WizardSessionResponse(**self._service.get_state(session_id))

        @router.delete(
            f"{_PREFIX}/{{session_id}}",
            response_model=WizardSessionResponse,
            responses={404: {"model": ApiErrorResponse}},
        )
        async def cancel_session(session_id: str) -> WizardSessionResponse:
            """Discard the wizard and drop any pending lookup."""
            return WizardSessionResponse(**self._service.cancel(session_id))

        @router.put(
            f"{_PREFIX}/{{session_id}}/client/kind",
            response_model=WizardSessionResponse,
            responses=_SESSION_ERRORS,
        )
        async def set_client_kind(
            session_id: str, req: ClientKindRequest
        ) -> WizardSessionResponse:
            state = self._service.set_client_kind(session_id, req.kind)
            return WizardSessionResponse(**state)

        @router.patch(
            f"{_PREFIX}/{{session_id}}/client",
            response_model=WizardSessionResponse,
            responses=_SESSION_ERRORS,
        )
        async def update_client(
            session_id: str, req: ClientFieldsRequest
        ) -> WizardSessionResponse:
            state = self._service.update_client(
                session_id, req.model_dump(exclude_unset=True)
            )
            return WizardSessionResponse(**state)

        @router.put(
            f"{_PREFIX}/{{session_id}}/client/has-providers",
            response_model=WizardSessionResponse,
            responses=_SESSION_ERRORS,
        )
        async def set_has_providers(
            session_id: str, req: HasProvidersRequest
        ) -> WizardSessionResponse:
            state = self._service.set_has_providers(session_id, req.has_providers)
            return WizardSessionResponse(**state)

        @router.post(
            f"{_PREFIX}/{{session_id}}/addresses",
            response_model=WizardSessionResponse,
            responses=_SESSION_ERRORS,
        )
        async def add_address(session_id: str) -> WizardSessionResponse:
            """Append a blank secondary address."""
            return WizardSessionResponse(**self._service.add_address(session_id))

        @router.patch(
            f"{_PREFIX}/{{session_id}}/addresses/{{temp_id}}",
            response_model=WizardSessionResponse,
            responses=_SESSION_ERRORS,
        )
        async def update_address(
            session_id: str, temp_id: str, req: AddressUpdateRequest
        ) -> WizardSessionResponse:
            state = self._service.update_address(
                session_id, temp_id, req.model_dump(exclude_unset=True)
            )
            return WizardSessionResponse(**state)

        @router.delete(
            f"{_PREFIX}/{{session_id}}/addresses/{{temp_id}}",
            response_model=WizardSessionResponse,
            responses=_SESSION_ERRORS,
        )
        async def remove_address(session_id: str, temp_id: str) -> WizardSessionResponse:
            """Remove a secondary address; removing the primary is a no-op."""
            return WizardSessionResponse(
                **self._service.remove_address(session_id, temp_id)
            )

        @router.post(
            f"{_PREFIX}/{{session_id}}/address-suggestions/select",
            response_model=WizardSessionResponse,
            responses=_SESSION_ERRORS,
        )
        async def select_address_suggestion(
            session_id: str, req: AddressSuggestionSelectRequest
        ) -> WizardSessionResponse:
            """Fill an address from one of the suggestions listed for its slot."""
            state = self._service.select_address_suggestion(
                session_id, req.slot, req.index
            )
            return WizardSessionResponse(**state)

        @router.post(
            f"{_PREFIX}/{{session_id}}/providers",
            response_model=WizardSessionResponse,
            responses=_SESSION_ERRORS,
        )
        async def add_provider(session_id: str) -> WizardSessionResponse:
            """Append a blank provider linked to the primary address."""
            return WizardSessionResponse(**self._service.add_provider(session_id))

        @router.patch(
            f"{_PREFIX}/{{session_id}}/providers/{{index}}",
            response_model=WizardSessionResponse,
            responses=_SESSION_ERRORS,
        )
        async def update_provider(
            session_id: str, index: int, req: ProviderUpdateRequest
        ) -> WizardSessionResponse:
            state = self._service.update_provider(
                session_id, index, req.model_dump(exclude_unset=True)
            )
            return WizardSessionResponse(**state)

        @router.delete(
            f"{_PREFIX}/{{session_id}}/providers/{{index}}",
            response_model=WizardSessionResponse,
            responses=_SESSION_ERRORS,
        )
        async def remove_provider(session_id: str, index: int) -> WizardSessionResponse:
            return WizardSessionResponse(
                **self._service.remove_provider(session_id, index)
            )

        @router.post(
            f"{_PREFIX}/{{session_id}}/submit",
            response_model=WizardSessionResponse,
            responses=_SESSION_ERRORS,
        )
        async def submit_step(session_id: str) -> WizardSessionResponse:
            """Validate the current step, then advance or persist the client."""
            return WizardSessionResponse(**await self._service.submit(session_id))

        @router.post(
            f"{_PREFIX}/{{session_id}}/back",
            response_model=WizardSessionResponse,
            responses=_SESSION_ERRORS,
        )
        async def step_back(session_id: str) -> WizardSessionResponse:
            return WizardSessionResponse(**self._service.back(session_id))

        return router


def create_onboarding_router(service: OnboardingSessionService) -> APIRouter:
    """Create onboarding router using provided application service."""
    return OnboardingRouter(service=service).build()
