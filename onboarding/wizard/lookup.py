"""Debounced registry, postal and address lookups that autofill the entity graph.

Every lookup target is a *slot*: the subject (client plus primary address), a
secondary address, or a provider by index. Each ``(slot, kind)`` pair owns one
cancellable debounce timer and one cache entry. A slot never has two fetches
in flight: a debounce that fires while a fetch is running is queued and runs
once the running fetch finishes.

Lookup failures never propagate. They are kept as slot errors and exposed via
:meth:`LookupOrchestrator.field_errors`.

Address lookups do not autofill. They keep a short list of suggestions per
slot until the operator picks one with
:meth:`LookupOrchestrator.apply_suggestion`.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from enum import StrEnum
from functools import partial
from typing import Any, Awaitable, Callable, Protocol

from onboarding.backend.client import BackendError
from onboarding.core.config import LookupConfig
from onboarding.registry.client import (
    AddressSuggestion,
    PostalPlace,
    RegistryKind,
    RegistryLookupError,
    RegistryRecord,
)
from onboarding.wizard.errors import GraphError
from onboarding.wizard.graph import DEFAULT_COUNTRY, EntityGraph, OrganizationClient
from onboarding.wizard.normalizers import (
    REGISTRY_NUMBER_LENGTH,
    clean_spaces,
    digits_only,
    postal_prefix,
    registry_postal_code,
    state_name_for,
)
from onboarding.wizard.validation import (
    CODE_DUPLICATE_REGISTRY_NUMBER,
    CODE_KIND_MISMATCH,
    CODE_LOOKUP_FAILED,
    FieldErrors,
)

LOGGER = logging.getLogger(__name__)

SUBJECT_SLOT = "subject"
_PROVIDER_PREFIX = "provider:"
_ADDRESS_PREFIX = "address:"


def provider_slot(index: int) -> str:
    return f"{_PROVIDER_PREFIX}{index}"


def address_slot(temp_id: str) -> str:
    return f"{_ADDRESS_PREFIX}{temp_id}"


def slot_provider_index(slot: str) -> int | None:
    if not slot.startswith(_PROVIDER_PREFIX):
        return None
    try:
        return int(slot[len(_PROVIDER_PREFIX) :])
    except ValueError:
        return None


def slot_address_id(slot: str) -> str | None:
    if not slot.startswith(_ADDRESS_PREFIX):
        return None
    return slot[len(_ADDRESS_PREFIX) :]


class LookupKind(StrEnum):
    REGISTRY = "registry"
    POSTAL = "postal"
    ADDRESS = "address"


_FIELD_BY_KIND = {
    LookupKind.REGISTRY: "registry_number",
    LookupKind.POSTAL: "postal_code",
    LookupKind.ADDRESS: "line1",
}
MIN_ADDRESS_QUERY_LENGTH = 3
# Subject slot fields that live on the primary address.
_PRIMARY_ADDRESS_FIELDS = ("postal_code", "line1")


@dataclass
class LookupCacheEntry:
    last_queried_value: str = ""
    in_flight: bool = False
    queued_value: str = ""


class RegistryLookup(Protocol):
    def lookup(self, registry_number: str) -> RegistryRecord | None:
        """Return the registry record for a 10-digit number, if any."""


class PostalResolver(Protocol):
    def resolve(self, postal_prefix: str) -> PostalPlace | None:
        """Return the place for a 5-digit postal prefix, if any."""


class AddressSearch(Protocol):
    def search(self, query: str) -> list[AddressSuggestion]:
        """Return address suggestions for a free-text query."""


class DuplicateCheck(Protocol):
    def check_existing(self, registry_numbers: list[str]) -> list[str]:
        """Return the registry numbers already present in the system."""


RunBlocking = Callable[..., Awaitable[Any]]


async def run_in_default_executor(fn: Callable[..., Any], *args: Any) -> Any:
    loop = asyncio.get_running_loop()
    return await loop.run_in_executor(None, partial(fn, *args))


class LookupOrchestrator:
    """Per-slot debounce, dedup and autofill for one wizard session."""

    def __init__(
        self,
        *,
        graph: EntityGraph,
        registry: RegistryLookup,
        postal: PostalResolver,
        duplicates: DuplicateCheck | None = None,
        address_search: AddressSearch | None = None,
        config: LookupConfig | None = None,
        run_blocking: RunBlocking = run_in_default_executor,
        session_id: str = "",
        logger: logging.Logger = LOGGER,
    ) -> None:
        self._graph = graph
        self._registry = registry
        self._postal = postal
        self._duplicates = duplicates
        self._address_search = address_search
        self._config = config or LookupConfig()
        self._run_blocking = run_blocking
        self._session_id = session_id
        self._logger = logger
        self._entries: dict[tuple[str, LookupKind], LookupCacheEntry] = {}
        self._timers: dict[tuple[str, LookupKind], asyncio.TimerHandle] = {}
        self._tasks: dict[tuple[str, LookupKind], asyncio.Task[None]] = {}
        self._errors: dict[str, dict[str, tuple[str, str]]] = {}
        self._suggestions: dict[str, list[AddressSuggestion]] = {}
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def entry(self, slot: str, kind: LookupKind) -> LookupCacheEntry:
        return self._entries.setdefault((slot, kind), LookupCacheEntry())

    def has_pending_timer(self, slot: str, kind: LookupKind) -> bool:
        return (slot, kind) in self._timers

    def is_idle(self) -> bool:
        return not self._timers and not self._tasks

    async def wait_idle(self, poll_seconds: float = 0.005) -> None:
        """Wait until no debounce timer is pending and no fetch is running."""
        while not self._closed and not self.is_idle():
            tasks = list(self._tasks.values())
            if tasks:
                await asyncio.gather(*tasks, return_exceptions=True)
            else:
                await asyncio.sleep(poll_seconds)

    def on_field_change(self, slot: str, kind: LookupKind, value: str) -> bool:
        """Record an edit to a lookup trigger field.

        Returns ``True`` when a debounced lookup was (re)scheduled.
        """
        key = (slot, kind)
        self._cancel_timer(key)
        if self._closed:
            return False

        entry = self.entry(slot, kind)
        entry.queued_value = ""
        if kind is LookupKind.REGISTRY:
            query = digits_only(value)
            delay = self._config.registry_debounce_seconds
        elif kind is LookupKind.POSTAL:
            query = postal_prefix(value)
            delay = self._config.postal_debounce_seconds
        else:
            query = clean_spaces(value or "")
            delay = self._config.address_debounce_seconds
            if len(query) < MIN_ADDRESS_QUERY_LENGTH:
                self._suggestions.pop(slot, None)

        if query != entry.last_queried_value:
            self._clear_error(slot, _FIELD_BY_KIND[kind])
        if not self._is_eligible(slot, kind, query):
            return False

        loop = asyncio.get_running_loop()
        self._timers[key] = loop.call_later(delay, self._on_timer_fired, key, query)
        return True

    def forget_providers_from(self, index: int) -> None:
        """Drop provider slot state at or after ``index`` (indices shift on removal)."""
        slots = {
            slot
            for slot, _ in [*self._entries, *self._timers, *self._tasks]
            if (slot_index := slot_provider_index(slot)) is not None
            and slot_index >= index
        }
        slots |= {
            slot
            for slot in self._errors
            if (slot_index := slot_provider_index(slot)) is not None
            and slot_index >= index
        }
        for slot in slots:
            self.forget_slot(slot)

    def forget_slot(self, slot: str) -> None:
        for kind in LookupKind:
            key = (slot, kind)
            self._cancel_timer(key)
            task = self._tasks.pop(key, None)
            if task is not None:
                task.cancel()
            self._entries.pop(key, None)
        self._errors.pop(slot, None)
        self._suggestions.pop(slot, None)

    def close(self) -> None:
        """Cancel every timer and fetch; late results become no-ops."""
        self._closed = True
        for handle in self._timers.values():
            handle.cancel()
        self._timers.clear()
        for task in self._tasks.values():
            task.cancel()
        self._tasks.clear()
        self._suggestions.clear()

    def slot_errors(self) -> dict[str, dict[str, str]]:
        return {
            slot: {name: message for name, (_, message) in fields.items()}
            for slot, fields in self._errors.items()
            if fields
        }

    def suggestions(self, slot: str) -> list[AddressSuggestion]:
        return list(self._suggestions.get(slot) or [])

    def all_suggestions(self) -> dict[str, list[AddressSuggestion]]:
        return {slot: list(items) for slot, items in self._suggestions.items() if items}

    def field_errors(self) -> FieldErrors:
        """Project slot errors onto graph positions."""
        errors = FieldErrors()
        for slot, fields in self._errors.items():
            for field_name, (code, message) in fields.items():
                if slot == SUBJECT_SLOT:
                    if field_name in _PRIMARY_ADDRESS_FIELDS:
                        primary_index = self._graph.address_index(
                            self._graph.primary_address.temp_id
                        )
                        errors.add(code, field_name, message, address=primary_index)
                    else:
                        errors.add(code, field_name, message)
                elif (temp_id := slot_address_id(slot)) is not None:
                    if self._graph.address(temp_id) is not None:
                        errors.add(
                            code,
                            field_name,
                            message,
                            address=self._graph.address_index(temp_id),
                        )
                elif (index := slot_provider_index(slot)) is not None:
                    if index < len(self._graph.providers):
                        errors.add(code, field_name, message, provider=index)
        return errors

    def _is_eligible(self, slot: str, kind: LookupKind, query: str) -> bool:
        entry = self.entry(slot, kind)
        if not query or query == entry.last_queried_value:
            return False
        if kind is LookupKind.POSTAL:
            return True
        if kind is LookupKind.ADDRESS:
            return (
                self._address_search is not None
                and len(query) >= MIN_ADDRESS_QUERY_LENGTH
            )
        if len(query) != REGISTRY_NUMBER_LENGTH:
            return False
        if (
            slot == SUBJECT_SLOT
            and self._graph.is_edit
            and query == self._graph.original_subject_registry_number
        ):
            return False
        return True

    def _cancel_timer(self, key: tuple[str, LookupKind]) -> None:
        handle = self._timers.pop(key, None)
        if handle is not None:
            handle.cancel()

    def _on_timer_fired(self, key: tuple[str, LookupKind], query: str) -> None:
        self._timers.pop(key, None)
        if self._closed:
            return
        entry = self.entry(*key)
        if entry.in_flight:
            entry.queued_value = query
            return
        self._start(key, query)

    def _start(self, key: tuple[str, LookupKind], query: str) -> None:
        entry = self.entry(*key)
        entry.in_flight = True
        entry.last_queried_value = query
        loop = asyncio.get_running_loop()
        self._tasks[key] = loop.create_task(self._run(key, query))

    async def _run(self, key: tuple[str, LookupKind], query: str) -> None:
        slot, kind = key
        entry = self.entry(slot, kind)
        try:
            if kind is LookupKind.REGISTRY:
                await self._run_registry(slot, query)
            elif kind is LookupKind.POSTAL:
                await self._run_postal(slot, query)
            else:
                await self._run_address(slot, query)
        except (RegistryLookupError, BackendError) as exc:
            self._logger.warning(
                "lookup_failed kind=%s error=%s",
                kind,
                exc,
                extra={"session_id": self._session_id, "slot": slot},
            )
            self._set_error(slot, _FIELD_BY_KIND[kind], CODE_LOOKUP_FAILED, str(exc))
        except asyncio.CancelledError:
            raise
        except Exception:
            self._logger.exception(
                "lookup_crashed kind=%s",
                kind,
                extra={"session_id": self._session_id, "slot": slot},
            )
            self._set_error(
                slot,
                _FIELD_BY_KIND[kind],
                CODE_LOOKUP_FAILED,
                "Lookup failed; enter the details manually",
            )
        finally:
            entry.in_flight = False
            if self._tasks.get(key) is asyncio.current_task():
                self._tasks.pop(key, None)
            queued, entry.queued_value = entry.queued_value, ""
            if (
                queued
                and queued != entry.last_queried_value
                and not self._closed
                and self._entries.get(key) is entry
            ):
                self._start(key, queued)

    def _expected_kind(self, slot: str) -> RegistryKind | None:
        if slot == SUBJECT_SLOT:
            if isinstance(self._graph.client, OrganizationClient):
                return RegistryKind.ORGANIZATION
            return RegistryKind.INDIVIDUAL
        index = slot_provider_index(slot)
        if index is not None and index < len(self._graph.providers):
            return RegistryKind.INDIVIDUAL
        return None

    def _is_original_number(self, number: str) -> bool:
        return self._graph.is_edit and number in self._graph.original_registry_numbers

    async def _run_registry(self, slot: str, number: str) -> None:
        if self._duplicates is not None and not self._is_original_number(number):
            existing = await self._run_blocking(
                self._duplicates.check_existing, [number]
            )
            if self._closed:
                return
            if number in existing:
                self._set_error(
                    slot,
                    "registry_number",
                    CODE_DUPLICATE_REGISTRY_NUMBER,
                    "This NPI is already registered in the system",
                )
                return

        record = await self._run_blocking(self._registry.lookup, number)
        if self._closed:
            return
        if record is None:
            self._set_error(
                slot,
                "registry_number",
                CODE_LOOKUP_FAILED,
                "No provider found for this NPI",
            )
            return

        expected = self._expected_kind(slot)
        if expected is None:
            return
        if record.kind is not expected:
            self._logger.info(
                "lookup_kind_mismatch expected=%s actual=%s",
                expected,
                record.kind,
                extra={"session_id": self._session_id, "slot": slot},
            )
            self._set_error(
                slot,
                "registry_number",
                CODE_KIND_MISMATCH,
                f"Found {record.kind} but expected {expected}",
            )
            return

        self._apply_registry_record(slot, record)

    def _apply_registry_record(self, slot: str, record: RegistryRecord) -> None:
        address_changes: dict[str, str] = {}
        practice = record.practice_address()
        if practice is not None:
            address_changes = {
                "line1": practice.line1,
                "line2": practice.line2,
                "city": practice.city,
                "state_code": practice.state_code,
            }
            state_name = state_name_for(practice.state_code)
            if state_name:
                address_changes["state_name"] = state_name
            postal_code = registry_postal_code(practice.postal_code)
            if postal_code:
                address_changes["postal_code"] = postal_code
            if practice.country:
                address_changes["country"] = practice.country

        if slot == SUBJECT_SLOT:
            if isinstance(self._graph.client, OrganizationClient):
                self._graph.update_client_field(
                    "business_name", record.organization_name
                )
            else:
                self._graph.update_client_fields(
                    {
                        name: getattr(record, name)
                        for name in ("first_name", "middle_name", "last_name")
                    }
                )
            if address_changes:
                self._graph.update_address(
                    self._graph.primary_address.temp_id, address_changes
                )
        else:
            index = slot_provider_index(slot)
            if index is None or index >= len(self._graph.providers):
                return
            self._graph.update_provider(
                index,
                {
                    "first_name": record.first_name,
                    "middle_name": record.middle_name,
                    "last_name": record.last_name,
                    **address_changes,
                },
            )
        self._clear_error(slot, "registry_number")
        self._logger.info(
            "lookup_autofilled kind=%s",
            record.kind,
            extra={"session_id": self._session_id, "slot": slot},
        )

    async def _run_postal(self, slot: str, prefix: str) -> None:
        place = await self._run_blocking(self._postal.resolve, prefix)
        if self._closed:
            return
        if place is None:
            self._set_error(
                slot, "postal_code", CODE_LOOKUP_FAILED, "No place found for this ZIP code"
            )
            return

        self._clear_error(slot, "postal_code")
        changes = {
            "city": place.city,
            "state_code": place.state_code,
            "state_name": place.state_name or state_name_for(place.state_code),
            "country": place.country or DEFAULT_COUNTRY,
        }
        self._update_slot_address(slot, changes)

    def _update_slot_address(self, slot: str, changes: dict[str, str]) -> bool:
        """Write address fields to the record behind ``slot``, if it still exists."""
        if slot == SUBJECT_SLOT:
            self._graph.update_address(self._graph.primary_address.temp_id, changes)
            return True
        if (temp_id := slot_address_id(slot)) is not None:
            if self._graph.address(temp_id) is not None:
                self._graph.update_address(temp_id, changes)
                return True
            return False
        if (index := slot_provider_index(slot)) is not None:
            if index < len(self._graph.providers):
                self._graph.update_provider(index, changes)
                return True
        return False

    async def _run_address(self, slot: str, query: str) -> None:
        if self._address_search is None:
            return
        try:
            suggestions = await self._run_blocking(self._address_search.search, query)
        except RegistryLookupError as exc:
            # Suggestions are optional; the operator keeps typing the address.
            self._logger.warning(
                "address_search_failed error=%s",
                exc,
                extra={"session_id": self._session_id, "slot": slot},
            )
            suggestions = []
        # A suggestion applied meanwhile moved the slot past this query.
        entry = self.entry(slot, LookupKind.ADDRESS)
        if self._closed or entry.last_queried_value != query:
            return
        if suggestions:
            self._suggestions[slot] = list(suggestions)
        else:
            self._suggestions.pop(slot, None)

    def apply_suggestion(self, slot: str, index: int) -> AddressSuggestion:
        """Fill the slot's address from a listed suggestion and drop the list."""
        listed = self._suggestions.get(slot) or []
        if index < 0 or index >= len(listed):
            raise GraphError(f"No address suggestion {index} for {slot}")
        chosen = listed[index]
        changes = {
            "line1": chosen.line1,
            "city": chosen.city,
            "state_code": chosen.state_code,
            "state_name": chosen.state_name,
            "postal_code": chosen.postal_code,
        }
        if chosen.country:
            changes["country"] = chosen.country
        if not self._update_slot_address(slot, changes):
            raise GraphError(f"Address target no longer exists: {slot}")

        key = (slot, LookupKind.ADDRESS)
        self._cancel_timer(key)
        self.entry(*key).last_queried_value = clean_spaces(chosen.line1)
        self._suggestions.pop(slot, None)
        self._clear_error(slot, "postal_code")
        self._logger.info(
            "address_suggestion_applied",
            extra={"session_id": self._session_id, "slot": slot},
        )
        return chosen

    def _set_error(self, slot: str, field_name: str, code: str, message: str) -> None:
        self._errors.setdefault(slot, {})[field_name] = (code, message)

    def _clear_error(self, slot: str, field_name: str) -> None:
        fields = self._errors.get(slot)
        if fields is not None:
            fields.pop(field_name, None)
            if not fields:
                self._errors.pop(slot, None)
