"""Turn an entity graph into the create/update request payload."""

from __future__ import annotations

from typing import Any

from onboarding.wizard.errors import AssemblyError
from onboarding.wizard.graph import (
    ADDRESS_FIELDS,
    Address,
    EntityGraph,
    OrganizationClient,
    Provider,
)
from onboarding.wizard.identity import is_temporary
from onboarding.wizard.normalizers import clean_spaces, is_valid_postal_code, safe
from onboarding.wizard.validation import (
    CODE_INVALID_FORMAT,
    CODE_UNRESOLVED_REFERENCE,
    POSTAL_FORMAT_MESSAGE,
    FieldErrors,
)


def _address_payload(address: Address) -> dict[str, Any]:
    payload: dict[str, Any] = {"temp_id": address.temp_id}
    # Adopted durable ids double as temp ids; only those exist on the backend.
    if not is_temporary(address.temp_id):
        payload["id"] = address.temp_id
    payload.update({name: clean_spaces(getattr(address, name)) for name in ADDRESS_FIELDS})
    payload["is_primary"] = address.is_primary
    return payload


def _provider_payload(provider: Provider, address: Address) -> dict[str, Any]:
    payload: dict[str, Any] = {}
    if provider.durable_id:
        payload["id"] = provider.durable_id
    payload.update(
        {
            "first_name": clean_spaces(provider.first_name),
            "middle_name": clean_spaces(provider.middle_name),
            "last_name": clean_spaces(provider.last_name),
            "registry_number": safe(provider.registry_number),
            "address_ref": address.temp_id,
        }
    )
    if not is_temporary(address.temp_id):
        payload["durable_location_id"] = address.temp_id
    payload.update(
        {name: clean_spaces(getattr(provider, name)) for name in ADDRESS_FIELDS}
    )
    return payload


def _subject_payload(graph: EntityGraph) -> dict[str, Any]:
    client = graph.client
    payload: dict[str, Any] = {
        "type": str(client.kind),
        "registry_number": safe(client.registry_number),
        "description": clean_spaces(client.description),
    }
    if isinstance(client, OrganizationClient):
        payload["business_name"] = clean_spaces(client.business_name)
        payload["has_providers"] = client.has_providers
    else:
        payload["first_name"] = clean_spaces(client.first_name)
        payload["middle_name"] = clean_spaces(client.middle_name)
        payload["last_name"] = clean_spaces(client.last_name)
    if graph.status_id and not graph.is_edit:
        payload["status_id"] = graph.status_id
    return payload


def assemble_submission(graph: EntityGraph) -> dict[str, Any]:
    """Build the submission payload or raise :class:`AssemblyError`.

    Organizations send every address, individuals only their primary one.
    Providers are included only when the organization declared it has them,
    and each provider's ``address_ref`` must resolve against the emitted
    address list.
    """
    payload = _subject_payload(graph)
    primary = graph.primary_address

    if isinstance(graph.client, OrganizationClient):
        addresses = list(graph.addresses)
    else:
        addresses = [primary]
    by_temp_id = {address.temp_id: address for address in addresses}

    payload["primary_ref"] = primary.temp_id
    payload["addresses"] = [_address_payload(address) for address in addresses]

    if not graph.has_providers:
        return payload

    errors = FieldErrors()
    providers: list[dict[str, Any]] = []
    for index, provider in enumerate(graph.providers):
        if not is_valid_postal_code(provider.postal_code):
            errors.add(
                CODE_INVALID_FORMAT,
                "postal_code",
                POSTAL_FORMAT_MESSAGE,
                provider=index,
            )
        address = by_temp_id.get(provider.address_ref)
        if address is None:
            errors.add(
                CODE_UNRESOLVED_REFERENCE,
                "address_ref",
                f"Provider {index + 1} is linked to an address that does not exist",
                provider=index,
            )
            continue
        providers.append(_provider_payload(provider, address))

    if errors:
        raise AssemblyError(errors)
    payload["providers"] = providers
    return payload
