"""HTTP clients for the provider registry, postal resolver and address search."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any

import requests

from onboarding.wizard.normalizers import (
    clean_spaces,
    digits_only,
    registry_postal_code,
    safe,
    state_code_for,
)

LOGGER = logging.getLogger(__name__)


class RegistryLookupError(RuntimeError):
    """Registry or postal service could not be queried."""


class RegistryKind(StrEnum):
    ORGANIZATION = "organization"
    INDIVIDUAL = "individual"


_ENUMERATION_KINDS = {
    "NPI-1": RegistryKind.INDIVIDUAL,
    "NPI-2": RegistryKind.ORGANIZATION,
}


@dataclass(frozen=True)
class RegistryAddress:
    purpose: str = ""
    line1: str = ""
    line2: str = ""
    city: str = ""
    state_code: str = ""
    postal_code: str = ""
    country: str = ""


@dataclass(frozen=True)
class RegistryRecord:
    kind: RegistryKind
    registry_number: str
    first_name: str = ""
    middle_name: str = ""
    last_name: str = ""
    organization_name: str = ""
    addresses: tuple[RegistryAddress, ...] = field(default_factory=tuple)

    def practice_address(self) -> RegistryAddress | None:
        """Prefer the practice location, fall back to the first address."""
        for address in self.addresses:
            if address.purpose.upper() == "LOCATION":
                return address
        return self.addresses[0] if self.addresses else None


@dataclass(frozen=True)
class PostalPlace:
    city: str
    state_name: str
    state_code: str
    country: str


@dataclass(frozen=True)
class AddressSuggestion:
    label: str
    line1: str = ""
    city: str = ""
    state_name: str = ""
    state_code: str = ""
    postal_code: str = ""
    country: str = ""


def parse_registry_result(result: dict[str, Any]) -> RegistryRecord | None:
    """Map one NPPES result entry to a :class:`RegistryRecord`."""
    kind = _ENUMERATION_KINDS.get(safe(result.get("enumeration_type")).upper())
    if kind is None:
        return None
    basic = result.get("basic") or {}
    addresses = tuple(
        RegistryAddress(
            purpose=safe(item.get("address_purpose")),
            line1=safe(item.get("address_1")),
            line2=safe(item.get("address_2")),
            city=safe(item.get("city")),
            state_code=safe(item.get("state")).upper(),
            postal_code=safe(item.get("postal_code")),
            country=safe(item.get("country_name")),
        )
        for item in result.get("addresses") or []
        if isinstance(item, dict)
    )
    return RegistryRecord(
        kind=kind,
        registry_number=safe(result.get("number")),
        first_name=safe(basic.get("first_name")),
        middle_name=safe(basic.get("middle_name")),
        last_name=safe(basic.get("last_name")),
        organization_name=safe(basic.get("organization_name"))
        or safe(basic.get("authorized_official_organization_name")),
        addresses=addresses,
    )


class RegistryLookupClient:
    """Stateless wrapper around the NPPES-style provider registry."""

    def __init__(self, base_url: str, timeout_sec: int = 10) -> None:
        self._base_url = base_url
        self._timeout_sec = timeout_sec

    def lookup(self, registry_number: str) -> RegistryRecord | None:
        number = digits_only(registry_number)
        if len(number) != 10:
            return None

        params = {"version": "2.1", "number": number}
        try:
            response = requests.get(
                self._base_url, params=params, timeout=self._timeout_sec
            )
            response.raise_for_status()
            payload = response.json()
        except (requests.RequestException, ValueError) as exc:
            LOGGER.warning("Registry lookup failed number=%s error=%s", number, exc)
            raise RegistryLookupError("Failed to fetch NPI details") from exc

        if payload.get("Errors"):
            LOGGER.warning("Registry rejected number=%s errors=%s", number, payload["Errors"])
            raise RegistryLookupError("Failed to fetch NPI details")

        for result in payload.get("results") or []:
            if isinstance(result, dict):
                record = parse_registry_result(result)
                if record is not None:
                    return record
        return None


class PostalResolverClient:
    """Stateless wrapper around a zippopotam-style postal code service."""

    def __init__(self, base_url: str, timeout_sec: int = 10) -> None:
        self._base_url = base_url.rstrip("/")
        self._timeout_sec = timeout_sec

    def resolve(self, postal_prefix: str) -> PostalPlace | None:
        prefix = digits_only(postal_prefix)[:5]
        if len(prefix) != 5:
            return None

        try:
            response = requests.get(
                f"{self._base_url}/{prefix}", timeout=self._timeout_sec
            )
            if response.status_code == 404:
                return None
            response.raise_for_status()
            payload = response.json()
        except (requests.RequestException, ValueError) as exc:
            LOGGER.warning("Postal lookup failed prefix=%s error=%s", prefix, exc)
            raise RegistryLookupError("Failed to fetch ZIP code details") from exc

        places = payload.get("places") or []
        if not places or not isinstance(places[0], dict):
            return None
        place = places[0]
        return PostalPlace(
            city=safe(place.get("place name")),
            state_name=safe(place.get("state")),
            state_code=safe(place.get("state abbreviation")).upper(),
            country=safe(payload.get("country")),
        )


def parse_address_feature(feature: dict[str, Any]) -> AddressSuggestion:
    """Map one photon GeoJSON feature to an :class:`AddressSuggestion`."""
    props = feature.get("properties") or {}
    street = clean_spaces(f"{safe(props.get('housenumber'))} {safe(props.get('street'))}")
    state_name = safe(props.get("state"))
    label = ", ".join(
        part
        for part in (
            safe(props.get("housenumber")),
            safe(props.get("street")),
            safe(props.get("city")),
            state_name,
            safe(props.get("postcode")),
            safe(props.get("country")),
        )
        if part
    )
    return AddressSuggestion(
        label=label,
        line1=street or safe(props.get("name")),
        city=safe(props.get("city")),
        state_name=state_name,
        state_code=state_code_for(state_name),
        postal_code=registry_postal_code(props.get("postcode")),
        country=safe(props.get("country")),
    )


class AddressSearchClient:
    """Free-text address search against a photon-compatible geocoder."""

    def __init__(
        self,
        base_url: str,
        timeout_sec: int = 10,
        *,
        country_codes: tuple[str, ...] = ("US", "IN"),
        max_results: int = 5,
    ) -> None:
        self._base_url = base_url
        self._timeout_sec = timeout_sec
        self._country_codes = {code.upper() for code in country_codes}
        self._max_results = max_results

    def search(self, query: str) -> list[AddressSuggestion]:
        text = clean_spaces(query)
        if len(text) < 3:
            return []

        try:
            response = requests.get(
                self._base_url,
                params={"q": text, "limit": 50},
                timeout=self._timeout_sec,
            )
            response.raise_for_status()
            payload = response.json()
        except (requests.RequestException, ValueError) as exc:
            LOGGER.warning("Address search failed query=%s error=%s", text, exc)
            raise RegistryLookupError("Address search failed") from exc

        suggestions: list[AddressSuggestion] = []
        for feature in payload.get("features") or []:
            if not isinstance(feature, dict):
                continue
            props = feature.get("properties") or {}
            if safe(props.get("countrycode")).upper() not in self._country_codes:
                continue
            suggestions.append(parse_address_feature(feature))
            if len(suggestions) >= self._max_results:
                break
        return suggestions
