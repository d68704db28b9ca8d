"""In-memory entity graph built by the onboarding wizard.

One client (organization or individual), an ordered arena of addresses keyed
by temp id with exactly one primary entry, and an ordered list of providers
that reference addresses by temp id.

Records are frozen dataclasses. Every mutation builds a new record with
``dataclasses.replace`` and writes it back at the same position, so a snapshot
taken with :meth:`EntityGraph.copy` never observes later edits.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field, fields, replace
from enum import StrEnum
from typing import Any, ClassVar

from onboarding.wizard.errors import GraphError
from onboarding.wizard.identity import TempIdAllocator
from onboarding.wizard.normalizers import (
    format_postal_code,
    mask_registry_number,
    safe,
)

DEFAULT_COUNTRY = "United States"


class ClientKind(StrEnum):
    """Tag of the active client variant."""

    ORGANIZATION = "organization"
    INDIVIDUAL = "individual"


_KIND_ALIASES: dict[str, ClientKind] = {
    "organization": ClientKind.ORGANIZATION,
    "organisation": ClientKind.ORGANIZATION,
    "group": ClientKind.ORGANIZATION,
    "npi2": ClientKind.ORGANIZATION,
    "npi-2": ClientKind.ORGANIZATION,
    "individual": ClientKind.INDIVIDUAL,
    "npi1": ClientKind.INDIVIDUAL,
    "npi-1": ClientKind.INDIVIDUAL,
}


def parse_client_kind(value: Any) -> ClientKind:
    """Resolve a client kind from its tag or a legacy registry type label."""
    kind = _KIND_ALIASES.get(safe(value).lower())
    if kind is None:
        raise GraphError(f"Unknown client kind: {value!r}")
    return kind


@dataclass(frozen=True)
class OrganizationClient:
    business_name: str = ""
    registry_number: str = ""
    description: str = ""
    has_providers: bool = False

    kind: ClassVar[ClientKind] = ClientKind.ORGANIZATION


@dataclass(frozen=True)
class IndividualClient:
    first_name: str = ""
    middle_name: str = ""
    last_name: str = ""
    registry_number: str = ""
    description: str = ""

    kind: ClassVar[ClientKind] = ClientKind.INDIVIDUAL


Client = OrganizationClient | IndividualClient

_CLIENT_TYPES: dict[ClientKind, type[OrganizationClient] | type[IndividualClient]] = {
    ClientKind.ORGANIZATION: OrganizationClient,
    ClientKind.INDIVIDUAL: IndividualClient,
}
SHARED_CLIENT_FIELDS = ("registry_number", "description")


@dataclass(frozen=True)
class Address:
    temp_id: str
    line1: str = ""
    line2: str = ""
    city: str = ""
    state_code: str = ""
    state_name: str = ""
    postal_code: str = ""
    country: str = DEFAULT_COUNTRY
    is_primary: bool = False
    durable_id: str = ""


ADDRESS_FIELDS = (
    "line1",
    "line2",
    "city",
    "state_code",
    "state_name",
    "postal_code",
    "country",
)


@dataclass(frozen=True)
class Provider:
    first_name: str = ""
    middle_name: str = ""
    last_name: str = ""
    registry_number: str = ""
    address_ref: str = ""
    line1: str = ""
    line2: str = ""
    city: str = ""
    state_code: str = ""
    state_name: str = ""
    postal_code: str = ""
    country: str = DEFAULT_COUNTRY
    durable_id: str = ""
    durable_location_id: str = ""


PROVIDER_EDITABLE_FIELDS = (
    "first_name",
    "middle_name",
    "last_name",
    "registry_number",
    "address_ref",
    *ADDRESS_FIELDS,
)


def _field_names(record_type: type) -> set[str]:
    return {item.name for item in fields(record_type)}


def normalize_field_value(name: str, value: Any, previous: Any = "") -> Any:
    """Apply the input mask for ``name`` to an incoming edit."""
    if name == "registry_number":
        return mask_registry_number(value, previous=str(previous or ""))
    if name == "postal_code":
        return format_postal_code(value)
    if name == "state_code":
        return safe(value).upper()[:2]
    if name == "has_providers":
        return bool(value)
    if value is None:
        return ""
    return str(value)


def _normalized_changes(
    current: Any, changes: Mapping[str, Any], allowed: set[str] | tuple[str, ...]
) -> dict[str, Any]:
    unknown = sorted(set(changes) - set(allowed))
    if unknown:
        raise GraphError(
            f"Unknown or read-only fields for {type(current).__name__}: "
            + ", ".join(unknown)
        )
    return {
        name: normalize_field_value(name, value, getattr(current, name))
        for name, value in changes.items()
    }


@dataclass
class EntityGraph:
    """Client, address arena and providers for one wizard session."""

    client: Client
    addresses: list[Address]
    providers: list[Provider] = field(default_factory=list)
    allocator: TempIdAllocator = field(default_factory=TempIdAllocator)
    durable_client_id: str = ""
    original_registry_numbers: frozenset[str] = frozenset()
    original_subject_registry_number: str = ""
    status_id: str = ""

    @classmethod
    def new(
        cls, kind: ClientKind = ClientKind.INDIVIDUAL, *, status_id: Any = ""
    ) -> "EntityGraph":
        """Empty graph for the new-client flow."""
        allocator = TempIdAllocator()
        primary = Address(temp_id=allocator.allocate(), is_primary=True)
        return cls(
            client=_CLIENT_TYPES[kind](),
            addresses=[primary],
            allocator=allocator,
            status_id=safe(status_id),
        )

    @classmethod
    def from_record(cls, record: Mapping[str, Any]) -> "EntityGraph":
        """Hydrate a graph from a persisted client record (edit flow)."""
        allocator = TempIdAllocator()
        kind = parse_client_kind(record.get("type") or ClientKind.INDIVIDUAL)
        registry_number = mask_registry_number(record.get("registry_number"))
        description = safe(record.get("description"))
        raw_providers = [
            item for item in record.get("providers") or [] if isinstance(item, Mapping)
        ]

        client: Client
        if kind is ClientKind.ORGANIZATION:
            client = OrganizationClient(
                business_name=safe(record.get("business_name")),
                registry_number=registry_number,
                description=description,
                has_providers=bool(record.get("has_providers")) or bool(raw_providers),
            )
        else:
            client = IndividualClient(
                first_name=safe(record.get("first_name")),
                middle_name=safe(record.get("middle_name")),
                last_name=safe(record.get("last_name")),
                registry_number=registry_number,
                description=description,
            )

        addresses: list[Address] = []
        for item in record.get("addresses") or []:
            if not isinstance(item, Mapping):
                continue
            durable_id = safe(item.get("id"))
            temp_id = allocator.adopt(durable_id) if durable_id else allocator.allocate()
            addresses.append(
                Address(
                    temp_id=temp_id,
                    durable_id=durable_id,
                    is_primary=bool(item.get("is_primary")),
                    **{
                        name: normalize_field_value(name, item.get(name))
                        for name in ADDRESS_FIELDS
                    },
                )
            )
        addresses = _with_single_primary(addresses, allocator)

        providers: list[Provider] = []
        for item in raw_providers:
            location_id = safe(item.get("location_id") or item.get("address_ref"))
            providers.append(
                Provider(
                    durable_id=safe(item.get("id")),
                    durable_location_id=location_id,
                    address_ref=location_id,
                    first_name=safe(item.get("first_name")),
                    middle_name=safe(item.get("middle_name")),
                    last_name=safe(item.get("last_name")),
                    registry_number=mask_registry_number(item.get("registry_number")),
                    **{
                        name: normalize_field_value(name, item.get(name))
                        for name in ADDRESS_FIELDS
                    },
                )
            )

        originals = {registry_number} | {p.registry_number for p in providers}
        return cls(
            client=client,
            addresses=addresses,
            providers=providers,
            allocator=allocator,
            durable_client_id=safe(record.get("id")),
            original_registry_numbers=frozenset(x for x in originals if x),
            original_subject_registry_number=registry_number,
        )

    @property
    def is_edit(self) -> bool:
        return bool(self.durable_client_id)

    @property
    def kind(self) -> ClientKind:
        return self.client.kind

    @property
    def has_providers(self) -> bool:
        return isinstance(self.client, OrganizationClient) and self.client.has_providers

    @property
    def primary_address(self) -> Address:
        for address in self.addresses:
            if address.is_primary:
                return address
        raise GraphError("Graph has no primary address")

    @property
    def secondary_addresses(self) -> list[Address]:
        return [address for address in self.addresses if not address.is_primary]

    def address(self, temp_id: str) -> Address | None:
        for address in self.addresses:
            if address.temp_id == temp_id:
                return address
        return None

    def address_index(self, temp_id: str) -> int:
        for index, address in enumerate(self.addresses):
            if address.temp_id == temp_id:
                return index
        raise GraphError(f"Unknown address: {temp_id}")

    def provider(self, index: int) -> Provider:
        if index < 0 or index >= len(self.providers):
            raise GraphError(f"Provider index out of range: {index}")
        return self.providers[index]

    def copy(self) -> "EntityGraph":
        """Shallow snapshot; records are immutable so lists are enough."""
        return replace(
            self, addresses=list(self.addresses), providers=list(self.providers)
        )

    # Builder operations

    def set_client_variant(self, kind: ClientKind | str) -> Client:
        """Switch client variant; shared fields survive, the rest is cleared."""
        target = parse_client_kind(kind)
        if target is self.client.kind:
            return self.client
        carried = {name: getattr(self.client, name) for name in SHARED_CLIENT_FIELDS}
        self.client = _CLIENT_TYPES[target](**carried)
        return self.client

    def update_client_field(self, name: str, value: Any) -> Any:
        """Set one field of the active variant and return the stored value."""
        return self.update_client_fields({name: value})[name]

    def update_client_fields(self, changes: Mapping[str, Any]) -> dict[str, Any]:
        """Apply several client edits at once, or none when any name is rejected.

        Returns the stored (masked) values keyed by field name.
        """
        allowed = _field_names(type(self.client)) - {"has_providers"}
        normalized = _normalized_changes(self.client, changes, tuple(allowed))
        self.client = replace(self.client, **normalized)
        return normalized

    def set_has_providers(self, has_providers: bool) -> None:
        if not isinstance(self.client, OrganizationClient):
            raise GraphError("Only organizations can declare providers")
        self.client = replace(self.client, has_providers=bool(has_providers))

    def add_address(self) -> Address:
        address = Address(temp_id=self.allocator.allocate())
        self.addresses.append(address)
        return address

    def remove_address(self, temp_id: str) -> bool:
        """Remove a secondary address; the primary one is never removed.

        Providers referencing the removed address keep their reference.
        """
        index = self.address_index(temp_id)
        if self.addresses[index].is_primary:
            return False
        del self.addresses[index]
        return True

    def update_address(self, temp_id: str, changes: Mapping[str, Any]) -> Address:
        index = self.address_index(temp_id)
        current = self.addresses[index]
        updated = replace(current, **_normalized_changes(current, changes, ADDRESS_FIELDS))
        self.addresses[index] = updated
        return updated

    def add_provider(self) -> int:
        """Append a blank provider linked to the primary address."""
        self.providers.append(Provider(address_ref=self.primary_address.temp_id))
        return len(self.providers) - 1

    def remove_provider(self, index: int) -> Provider:
        removed = self.provider(index)
        del self.providers[index]
        return removed

    def update_provider(self, index: int, changes: Mapping[str, Any]) -> Provider:
        current = self.provider(index)
        updated = replace(
            current,
            **_normalized_changes(current, changes, PROVIDER_EDITABLE_FIELDS),
        )
        self.providers[index] = updated
        return updated

    def seed_provider(self) -> Provider:
        """Replace the provider list with one blank provider at the primary address."""
        primary = self.primary_address
        seeded = Provider(
            address_ref=primary.temp_id,
            **{name: getattr(primary, name) for name in ADDRESS_FIELDS},
        )
        self.providers = [seeded]
        return seeded


def _with_single_primary(
    addresses: list[Address], allocator: TempIdAllocator
) -> list[Address]:
    """Keep the first primary flag, or promote the first address, or create one."""
    if not addresses:
        return [Address(temp_id=allocator.allocate(), is_primary=True)]
    primary_index = next(
        (index for index, item in enumerate(addresses) if item.is_primary), 0
    )
    return [
        replace(item, is_primary=(index == primary_index))
        for index, item in enumerate(addresses)
    ]
