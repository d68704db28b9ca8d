"""Step validation rules for the onboarding wizard.

``validate(step, graph)`` is a pure function: it reads a graph snapshot and
returns a :class:`FieldErrors` map. Errors are keyed by client field, by address
index (position in ``graph.addresses``) and by provider index so the UI can
render them next to the offending input.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from onboarding.wizard.graph import EntityGraph, OrganizationClient
from onboarding.wizard.normalizers import (
    is_valid_postal_code,
    is_valid_registry_number,
    safe,
)
from onboarding.wizard.workflow import WizardStep

CODE_MISSING_REQUIRED = "missing_required"
CODE_INVALID_FORMAT = "invalid_format"
CODE_UNRESOLVED_REFERENCE = "unresolved_reference"
CODE_DUPLICATE_REGISTRY_NUMBER = "duplicate_registry_number"
CODE_LOOKUP_FAILED = "lookup_failed"
CODE_KIND_MISMATCH = "kind_mismatch"

POSTAL_FORMAT_MESSAGE = "ZIP code must be in format 11111-1111"


@dataclass
class FieldErrors:
    """Field-level errors grouped by the entity they belong to."""

    client: dict[str, list[str]] = field(default_factory=dict)
    addresses: dict[int, dict[str, list[str]]] = field(default_factory=dict)
    providers: dict[int, dict[str, list[str]]] = field(default_factory=dict)
    issues: list[dict[str, Any]] = field(default_factory=list)

    def add(
        self,
        code: str,
        field_name: str,
        message: str,
        *,
        address: int | None = None,
        provider: int | None = None,
    ) -> None:
        if provider is not None:
            bucket = self.providers.setdefault(provider, {})
            path = f"providers[{provider}].{field_name}"
        elif address is not None:
            bucket = self.addresses.setdefault(address, {})
            path = f"addresses[{address}].{field_name}"
        else:
            bucket = self.client
            path = f"client.{field_name}"
        bucket.setdefault(field_name, []).append(message)
        self.issues.append(
            {
                "code": code,
                "field": path,
                "message": message,
                "address": address,
                "provider": provider,
            }
        )

    def merge(self, other: "FieldErrors") -> "FieldErrors":
        for issue in other.issues:
            self.add(
                issue["code"],
                issue["field"].rsplit(".", 1)[-1],
                issue["message"],
                address=issue["address"],
                provider=issue["provider"],
            )
        return self

    def codes(self) -> set[str]:
        return {issue["code"] for issue in self.issues}

    def is_empty(self) -> bool:
        return not self.issues

    def __bool__(self) -> bool:
        return bool(self.issues)

    def as_issues(self) -> list[dict[str, Any]]:
        return [dict(issue) for issue in self.issues]

    def as_dict(self) -> dict[str, Any]:
        return {
            "client": {key: list(value) for key, value in self.client.items()},
            "addresses": {
                str(index): {key: list(value) for key, value in bucket.items()}
                for index, bucket in self.addresses.items()
            },
            "providers": {
                str(index): {key: list(value) for key, value in bucket.items()}
                for index, bucket in self.providers.items()
            },
        }


def _check_registry_number(
    errors: FieldErrors, value: str, *, provider: int | None = None
) -> None:
    if not safe(value):
        errors.add(
            CODE_MISSING_REQUIRED,
            "registry_number",
            "NPI is required",
            provider=provider,
        )
    elif not is_valid_registry_number(value):
        errors.add(
            CODE_INVALID_FORMAT,
            "registry_number",
            "NPI must be exactly 10 digits",
            provider=provider,
        )


def _check_postal_code(
    errors: FieldErrors,
    value: str,
    *,
    address: int | None = None,
    provider: int | None = None,
) -> None:
    if not safe(value):
        errors.add(
            CODE_MISSING_REQUIRED,
            "postal_code",
            "ZIP code is required",
            address=address,
            provider=provider,
        )
    elif not is_valid_postal_code(value):
        errors.add(
            CODE_INVALID_FORMAT,
            "postal_code",
            POSTAL_FORMAT_MESSAGE,
            address=address,
            provider=provider,
        )


def validate_step1(graph: EntityGraph) -> FieldErrors:
    """Client identity, primary address and organization secondary addresses."""
    errors = FieldErrors()
    client = graph.client

    if isinstance(client, OrganizationClient):
        if not safe(client.business_name):
            errors.add(
                CODE_MISSING_REQUIRED,
                "business_name",
                "Business name is required for organizations",
            )
    elif not safe(client.first_name):
        errors.add(
            CODE_MISSING_REQUIRED,
            "first_name",
            "First name is required for individuals",
        )

    _check_registry_number(errors, client.registry_number)

    for index, address in enumerate(graph.addresses):
        if address.is_primary:
            if not safe(address.city):
                errors.add(
                    CODE_MISSING_REQUIRED, "city", "City is required", address=index
                )
            _check_postal_code(errors, address.postal_code, address=index)
            continue

        # Secondary addresses belong to organizations only; a partial one is an
        # error, never silently dropped.
        if not isinstance(client, OrganizationClient):
            continue
        if not safe(address.line1):
            errors.add(
                CODE_MISSING_REQUIRED,
                "line1",
                "Address line 1 is required",
                address=index,
            )
        if not safe(address.city):
            errors.add(CODE_MISSING_REQUIRED, "city", "City is required", address=index)
        _check_postal_code(errors, address.postal_code, address=index)

    return errors


def validate_step2(graph: EntityGraph) -> FieldErrors:
    """Provider identity, practice address and address reference."""
    errors = FieldErrors()
    known_refs = {address.temp_id for address in graph.addresses}

    for index, provider in enumerate(graph.providers):
        if not safe(provider.first_name):
            errors.add(
                CODE_MISSING_REQUIRED,
                "first_name",
                "First name is required",
                provider=index,
            )
        if not safe(provider.last_name):
            errors.add(
                CODE_MISSING_REQUIRED,
                "last_name",
                "Last name is required",
                provider=index,
            )
        _check_registry_number(errors, provider.registry_number, provider=index)
        if not safe(provider.city):
            errors.add(
                CODE_MISSING_REQUIRED, "city", "City is required", provider=index
            )
        _check_postal_code(errors, provider.postal_code, provider=index)

        if not safe(provider.address_ref):
            errors.add(
                CODE_MISSING_REQUIRED,
                "address_ref",
                "Select the address this provider practices at",
                provider=index,
            )
        elif provider.address_ref not in known_refs:
            errors.add(
                CODE_UNRESOLVED_REFERENCE,
                "address_ref",
                "Linked address no longer exists; choose another address",
                provider=index,
            )

    return errors


def validate(step: WizardStep, graph: EntityGraph) -> FieldErrors:
    """Return field errors for ``step``; terminal steps have none."""
    if step is WizardStep.STEP1:
        return validate_step1(graph)
    if step is WizardStep.STEP2:
        return validate_step2(graph)
    return FieldErrors()
