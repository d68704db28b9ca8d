"""Step state machine of the onboarding wizard.

The controller owns the entity graph for the life of a session. UI events are
applied through its handlers, which mutate the graph via builder operations
and forward lookup trigger fields to the :class:`LookupOrchestrator`.

Transitions::

    step1 --submit (no providers)--> submitted
    step1 --submit (has providers)--> step2
    step2 --back--> step1
    step2 --submit--> submitted
    any   --cancel--> discarded
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import asdict
from typing import Any, Protocol

from onboarding.backend.client import BackendError, BackendRejectedError
from onboarding.wizard.assembler import assemble_submission
from onboarding.wizard.errors import AssemblyError, GraphError, WizardClosedError, WizardError
from onboarding.wizard.graph import Address, ClientKind, EntityGraph, Provider
from onboarding.wizard.lookup import (
    SUBJECT_SLOT,
    LookupKind,
    LookupOrchestrator,
    RunBlocking,
    address_slot,
    provider_slot,
    run_in_default_executor,
    slot_provider_index,
)
from onboarding.wizard.validation import (
    CODE_DUPLICATE_REGISTRY_NUMBER,
    FieldErrors,
    validate,
)
from onboarding.wizard.workflow import WizardStep, is_terminal

LOGGER = logging.getLogger(__name__)

DUPLICATE_MESSAGE = "This NPI is already registered in the system"


class ClientBackend(Protocol):
    def check_existing(self, registry_numbers: list[str]) -> list[str]:
        """Return the registry numbers already present in the system."""

    def create_client(self, payload: dict[str, Any]) -> dict[str, Any]:
        """Persist a new client and return the stored record."""

    def update_client(self, client_id: str, payload: dict[str, Any]) -> dict[str, Any]:
        """Persist changes to an existing client and return the stored record."""


def should_seed_provider(graph: EntityGraph) -> bool:
    """Return ``True`` when no provider has been started yet.

    A sole provider counts as started once it has a registry number or any
    name part, so re-entering step 2 never wipes typed data.
    """
    if graph.is_edit:
        return False
    if not graph.providers:
        return True
    if len(graph.providers) > 1:
        return False
    sole = graph.providers[0]
    return not any(
        value.strip()
        for value in (
            sole.registry_number,
            sole.first_name,
            sole.middle_name,
            sole.last_name,
        )
    )


class WizardController:
    """One onboarding wizard session."""

    def __init__(
        self,
        *,
        graph: EntityGraph,
        orchestrator: LookupOrchestrator,
        backend: ClientBackend,
        run_blocking: RunBlocking = run_in_default_executor,
        session_id: str = "",
        logger: logging.Logger = LOGGER,
    ) -> None:
        self._graph = graph
        self._orchestrator = orchestrator
        self._backend = backend
        self._run_blocking = run_blocking
        self._session_id = session_id
        self._logger = logger
        self._step = WizardStep.STEP1
        self._errors = FieldErrors()
        self._notice = ""
        self._result: dict[str, Any] | None = None
        self._submitting = False

    @property
    def step(self) -> WizardStep:
        return self._step

    @property
    def graph(self) -> EntityGraph:
        return self._graph

    @property
    def orchestrator(self) -> LookupOrchestrator:
        return self._orchestrator

    @property
    def notice(self) -> str:
        return self._notice

    @property
    def result(self) -> dict[str, Any] | None:
        return self._result

    @property
    def session_id(self) -> str:
        return self._session_id

    def errors(self) -> FieldErrors:
        """Errors from the last transition attempt plus current lookup errors."""
        merged = FieldErrors().merge(self._errors)
        if not self._orchestrator.closed:
            merged.merge(self._orchestrator.field_errors())
        return merged

    def _log(self, message: str, *args: Any) -> None:
        self._logger.info(
            message,
            *args,
            extra={"session_id": self._session_id, "step": str(self._step)},
        )

    def _accept(self, event: str) -> None:
        if is_terminal(self._step):
            raise WizardClosedError(f"Wizard session is {self._step}")
        self._logger.debug(
            "wizard_event event=%s",
            event,
            extra={"session_id": self._session_id, "step": str(self._step)},
        )

    def _ensure_step1(self, what: str) -> None:
        if self._step is WizardStep.STEP2:
            raise GraphError(f"{what} are locked while editing providers")

    # Client events

    def set_client_variant(self, kind: ClientKind | str) -> None:
        self._accept("set_client_variant")
        self._ensure_step1("Client type changes")
        before = self._graph.kind
        client = self._graph.set_client_variant(kind)
        if client.kind is before:
            return
        self._log("client_variant_changed kind=%s", client.kind)
        # Expected registry kind changed, so the subject number may be looked up again.
        self._orchestrator.forget_slot(SUBJECT_SLOT)
        self._orchestrator.on_field_change(
            SUBJECT_SLOT, LookupKind.REGISTRY, client.registry_number
        )
        self._orchestrator.on_field_change(
            SUBJECT_SLOT, LookupKind.POSTAL, self._graph.primary_address.postal_code
        )

    def update_client_fields(self, changes: Mapping[str, Any]) -> None:
        self._accept("update_client_fields")
        self._ensure_step1("Client details")
        stored = self._graph.update_client_fields(changes)
        if "registry_number" in stored:
            self._orchestrator.on_field_change(
                SUBJECT_SLOT, LookupKind.REGISTRY, stored["registry_number"]
            )

    def set_has_providers(self, has_providers: bool) -> None:
        self._accept("set_has_providers")
        self._ensure_step1("Provider declarations")
        self._graph.set_has_providers(has_providers)

    # Address events

    def add_address(self) -> Address:
        self._accept("add_address")
        self._ensure_step1("Addresses")
        return self._graph.add_address()

    def remove_address(self, temp_id: str) -> bool:
        self._accept("remove_address")
        self._ensure_step1("Addresses")
        removed = self._graph.remove_address(temp_id)
        if removed:
            self._orchestrator.forget_slot(address_slot(temp_id))
        return removed

    def update_address(self, temp_id: str, changes: Mapping[str, Any]) -> Address:
        self._accept("update_address")
        self._ensure_step1("Addresses")
        address = self._graph.update_address(temp_id, changes)
        slot = SUBJECT_SLOT if address.is_primary else address_slot(temp_id)
        if "postal_code" in changes:
            self._orchestrator.on_field_change(
                slot, LookupKind.POSTAL, address.postal_code
            )
        if "line1" in changes:
            self._orchestrator.on_field_change(slot, LookupKind.ADDRESS, address.line1)
        return address

    def select_address_suggestion(self, slot: str, index: int) -> None:
        """Fill the address behind ``slot`` from one of its listed suggestions."""
        self._accept("select_address_suggestion")
        if slot_provider_index(slot) is None:
            self._ensure_step1("Addresses")
        self._orchestrator.apply_suggestion(slot, index)

    # Provider events

    def add_provider(self) -> int:
        self._accept("add_provider")
        return self._graph.add_provider()

    def remove_provider(self, index: int) -> Provider:
        self._accept("remove_provider")
        removed = self._graph.remove_provider(index)
        self._orchestrator.forget_providers_from(index)
        return removed

    def update_provider(self, index: int, changes: Mapping[str, Any]) -> Provider:
        self._accept("update_provider")
        provider = self._graph.update_provider(index, changes)
        slot = provider_slot(index)
        if "registry_number" in changes:
            self._orchestrator.on_field_change(
                slot, LookupKind.REGISTRY, provider.registry_number
            )
        if "postal_code" in changes:
            self._orchestrator.on_field_change(
                slot, LookupKind.POSTAL, provider.postal_code
            )
        if "line1" in changes:
            self._orchestrator.on_field_change(slot, LookupKind.ADDRESS, provider.line1)
        return provider

    # Transitions

    async def submit(self) -> WizardStep:
        """Validate the current step, then advance or submit."""
        self._accept("submit")
        if self._submitting:
            raise WizardError("Submission already in progress")
        self._notice = ""
        errors = validate(self._step, self._graph)
        if self._step is WizardStep.STEP2:
            # Subject and addresses are persisted too, so step 1 must still hold.
            errors = validate(WizardStep.STEP1, self._graph).merge(errors)
        self._errors = errors
        if errors:
            self._log("transition_blocked issues=%d", len(errors.issues))
            return self._step

        if self._step is WizardStep.STEP1 and self._graph.has_providers:
            self._enter_step2()
            return self._step

        self._submitting = True
        try:
            return await self._finish()
        finally:
            self._submitting = False

    def back(self) -> WizardStep:
        self._accept("back")
        if self._step is not WizardStep.STEP2:
            raise WizardError("Already at the first step")
        self._step = WizardStep.STEP1
        self._errors = FieldErrors()
        self._log("step_back")
        return self._step

    def cancel(self) -> WizardStep:
        """Discard the session; pending lookups never land afterwards."""
        self._orchestrator.close()
        if is_terminal(self._step):
            return self._step
        self._step = WizardStep.DISCARDED
        self._errors = FieldErrors()
        self._log("wizard_discarded")
        return self._step

    def _enter_step2(self) -> None:
        if should_seed_provider(self._graph):
            self._graph.seed_provider()
            self._orchestrator.forget_providers_from(0)
            self._log("provider_seeded")
        self._step = WizardStep.STEP2
        self._log("step_advanced")

    async def _finish(self) -> WizardStep:
        duplicate_errors = await self._check_duplicates()
        if duplicate_errors is None:
            return self._step
        if duplicate_errors:
            self._errors = duplicate_errors
            self._log("submission_blocked_duplicates")
            return self._step

        try:
            payload = assemble_submission(self._graph)
        except AssemblyError as exc:
            self._errors = exc.errors
            self._log("submission_assembly_failed issues=%d", len(exc.errors.issues))
            return self._step

        try:
            if self._graph.is_edit:
                result = await self._run_blocking(
                    self._backend.update_client, self._graph.durable_client_id, payload
                )
            else:
                result = await self._run_blocking(self._backend.create_client, payload)
        except BackendRejectedError as exc:
            self._notice = exc.message
            self._logger.warning(
                "submission_rejected status=%s message=%s",
                exc.status_code,
                exc.message,
                extra={"session_id": self._session_id, "step": str(self._step)},
            )
            return self._step
        except BackendError as exc:
            self._notice = str(exc)
            self._logger.warning(
                "submission_failed error=%s",
                exc,
                extra={"session_id": self._session_id, "step": str(self._step)},
            )
            return self._step

        self._result = result
        self._errors = FieldErrors()
        self._step = WizardStep.SUBMITTED
        self._orchestrator.close()
        self._log("wizard_submitted")
        return self._step

    async def _check_duplicates(self) -> FieldErrors | None:
        """Return duplicate errors, or ``None`` when the check itself failed."""
        graph = self._graph
        candidates: list[tuple[str, int | None]] = [
            (graph.client.registry_number, None)
        ]
        if graph.has_providers:
            candidates.extend(
                (provider.registry_number, index)
                for index, provider in enumerate(graph.providers)
            )
        candidates = [
            (number, index)
            for number, index in candidates
            if number and number not in graph.original_registry_numbers
        ]

        errors = FieldErrors()
        if not candidates:
            return errors
        try:
            existing = set(
                await self._run_blocking(
                    self._backend.check_existing,
                    sorted({number for number, _ in candidates}),
                )
            )
        except BackendError as exc:
            self._notice = f"Could not verify NPIs: {exc}"
            self._logger.warning(
                "duplicate_check_failed error=%s",
                exc,
                extra={"session_id": self._session_id, "step": str(self._step)},
            )
            return None

        for number, index in candidates:
            if number in existing:
                errors.add(
                    CODE_DUPLICATE_REGISTRY_NUMBER,
                    "registry_number",
                    DUPLICATE_MESSAGE,
                    provider=index,
                )
        return errors

    def snapshot(self) -> dict[str, Any]:
        """Serializable view of the session for the operator UI."""
        graph = self._graph
        errors = self.errors()
        client = asdict(graph.client)
        client["kind"] = str(graph.kind)
        return {
            "session_id": self._session_id,
            "step": str(self._step),
            "is_edit": graph.is_edit,
            "client_id": graph.durable_client_id,
            "client": client,
            "primary_ref": graph.primary_address.temp_id,
            "addresses": [asdict(address) for address in graph.addresses],
            "providers": [asdict(provider) for provider in graph.providers],
            "suggestions": {
                slot: [asdict(item) for item in items]
                for slot, items in self._orchestrator.all_suggestions().items()
            },
            "errors": errors.as_dict(),
            "issues": errors.as_issues(),
            "lookup_pending": not self._orchestrator.is_idle(),
            "notice": self._notice,
            "result": self._result,
        }
