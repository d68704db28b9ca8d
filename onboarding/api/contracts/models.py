"""Pydantic API request/response models used in OpenAPI contracts."""

from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, Field


class ApiErrorResponse(BaseModel):
    """Stable error envelope for API responses."""

    error_code: str = Field(description="Machine-readable error code")
    message: str = Field(description="Human-readable error message")


class HealthResponse(BaseModel):
    """Health check response payload."""

    status: Literal["ok"]


class OpenSessionRequest(BaseModel):
    """Open a wizard for a new client, or for editing ``client_id``."""

    client_id: str = ""
    kind: str = "individual"
    status_id: str | int | None = Field(
        default=None, description="Initial status for a new client; ignored when editing"
    )


class ClientKindRequest(BaseModel):
    kind: str


class ClientFieldsRequest(BaseModel):
    """Partial update of the subject client; unset fields are left alone."""

    business_name: str | None = None
    first_name: str | None = None
    middle_name: str | None = None
    last_name: str | None = None
    registry_number: str | None = None
    description: str | None = None


class HasProvidersRequest(BaseModel):
    has_providers: bool


class AddressUpdateRequest(BaseModel):
    """Partial update of one address."""

    line1: str | None = None
    line2: str | None = None
    city: str | None = None
    state_code: str | None = None
    state_name: str | None = None
    postal_code: str | None = None
    country: str | None = None


class ProviderUpdateRequest(AddressUpdateRequest):
    """Partial update of one provider, including its practice address."""

    first_name: str | None = None
    middle_name: str | None = None
    last_name: str | None = None
    registry_number: str | None = None
    address_ref: str | None = None


class AddressSuggestionSelectRequest(BaseModel):
    """Pick one listed suggestion for a lookup slot."""

    slot: str = Field(description="`subject`, `address:<temp_id>` or `provider:<index>`")
    index: int = Field(ge=0)


class AddressSuggestionResponse(BaseModel):
    label: str
    line1: str = ""
    city: str = ""
    state_name: str = ""
    state_code: str = ""
    postal_code: str = ""
    country: str = ""


class FieldIssueResponse(BaseModel):
    """Single field-level error."""

    code: str
    field: str
    message: str
    address: int | None = None
    provider: int | None = None


class WizardSessionResponse(BaseModel):
    """Current state of one onboarding wizard session."""

    session_id: str
    step: Literal["step1", "step2", "submitted", "discarded"]
    is_edit: bool
    client_id: str = ""
    client: dict[str, Any] = Field(default_factory=dict)
    primary_ref: str
    addresses: list[dict[str, Any]] = Field(default_factory=list)
    providers: list[dict[str, Any]] = Field(default_factory=list)
    suggestions: dict[str, list[AddressSuggestionResponse]] = Field(
        default_factory=dict
    )
    errors: dict[str, Any] = Field(default_factory=dict)
    issues: list[FieldIssueResponse] = Field(default_factory=list)
    lookup_pending: bool = False
    notice: str = ""
    result: dict[str, Any] | None = None
