"""Public API request/response contracts."""

from onboarding.api.contracts.models import (
    AddressSuggestionResponse,
    AddressSuggestionSelectRequest,
    AddressUpdateRequest,
    ApiErrorResponse,
    ClientFieldsRequest,
    ClientKindRequest,
    FieldIssueResponse,
    HasProvidersRequest,
    HealthResponse,
    OpenSessionRequest,
    ProviderUpdateRequest,
    WizardSessionResponse,
)

__all__ = [
    "AddressSuggestionResponse",
    "AddressSuggestionSelectRequest",
    "AddressUpdateRequest",
    "ApiErrorResponse",
    "ClientFieldsRequest",
    "ClientKindRequest",
    "FieldIssueResponse",
    "HasProvidersRequest",
    "HealthResponse",
    "OpenSessionRequest",
    "ProviderUpdateRequest",
    "WizardSessionResponse",
]
