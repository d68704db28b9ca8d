from __future__ import annotations

import asyncio
from typing import Any, Callable

import pytest

from onboarding.backend.client import BackendError, BackendRejectedError
from onboarding.core.config import LookupConfig
from onboarding.registry.client import AddressSuggestion, RegistryKind, RegistryRecord
from onboarding.wizard.controller import WizardController, should_seed_provider
from onboarding.wizard.errors import GraphError, WizardClosedError, WizardError
from onboarding.wizard.graph import ClientKind, EntityGraph
from onboarding.wizard.lookup import (
    SUBJECT_SLOT,
    LookupKind,
    LookupOrchestrator,
    provider_slot,
)
from onboarding.wizard.validation import CODE_DUPLICATE_REGISTRY_NUMBER
from onboarding.wizard.workflow import WizardStep
from tests.sample_graph import (
    INDIVIDUAL_NUMBER,
    ORG_NUMBER,
    PRIMARY_ADDRESS,
    PROVIDER_NUMBER,
    fill_provider,
    organization_graph,
    persisted_organization_record,
)

FAST = LookupConfig(
    registry_debounce_ms=5, postal_debounce_ms=5, address_debounce_ms=5
)
SETTLE = 0.03


class _FakeRegistry:
    def __init__(self, records: dict[str, RegistryRecord] | None = None) -> None:
        self.records = records or {}
        self.calls: list[str] = []

    def lookup(self, registry_number: str) -> RegistryRecord | None:
        self.calls.append(registry_number)
        return self.records.get(registry_number)


class _FakePostal:
    def resolve(self, postal_prefix: str) -> None:
        return None


class _FakeBackend:
    def __init__(self, existing: set[str] | None = None) -> None:
        self.existing = existing or set()
        self.reject: Exception | None = None
        self.checked: list[list[str]] = []
        self.created: list[dict[str, Any]] = []
        self.updated: list[tuple[str, dict[str, Any]]] = []

    def check_existing(self, registry_numbers: list[str]) -> list[str]:
        self.checked.append(list(registry_numbers))
        return [item for item in registry_numbers if item in self.existing]

    def create_client(self, payload: dict[str, Any]) -> dict[str, Any]:
        if self.reject is not None:
            raise self.reject
        self.created.append(payload)
        return {"id": "client-9", **payload}

    def update_client(self, client_id: str, payload: dict[str, Any]) -> dict[str, Any]:
        if self.reject is not None:
            raise self.reject
        self.updated.append((client_id, payload))
        return {"id": client_id, **payload}


async def _run_inline(fn: Callable[..., Any], *args: Any) -> Any:
    return fn(*args)


class _FakeAddressSearch:
    def __init__(self, results: list[AddressSuggestion]) -> None:
        self.results = results

    def search(self, query: str) -> list[AddressSuggestion]:
        return list(self.results)


def _controller(
    graph: EntityGraph,
    backend: _FakeBackend | None = None,
    registry: _FakeRegistry | None = None,
    address_search: _FakeAddressSearch | None = None,
) -> WizardController:
    backend = backend or _FakeBackend()
    orchestrator = LookupOrchestrator(
        graph=graph,
        registry=registry or _FakeRegistry(),
        postal=_FakePostal(),
        address_search=address_search,
        config=FAST,
        run_blocking=_run_inline,
        session_id="session-1",
    )
    return WizardController(
        graph=graph,
        orchestrator=orchestrator,
        backend=backend,
        run_blocking=_run_inline,
        session_id="session-1",
    )


def _fill_individual(controller: WizardController) -> None:
    controller.update_client_fields(
        {"first_name": "Ann", "last_name": "Smith", "registry_number": INDIVIDUAL_NUMBER}
    )
    controller.update_address(controller.graph.primary_address.temp_id, PRIMARY_ADDRESS)


def test_individual_submission_has_no_providers_key() -> None:
    async def scenario() -> None:
        backend = _FakeBackend()
        controller = _controller(EntityGraph.new(ClientKind.INDIVIDUAL), backend)
        _fill_individual(controller)

        step = await controller.submit()

        assert step is WizardStep.SUBMITTED
        assert "providers" not in backend.created[0]
        assert backend.checked == [[INDIVIDUAL_NUMBER]]
        assert controller.result == {"id": "client-9", **backend.created[0]}
        assert controller.orchestrator.closed

    asyncio.run(scenario())


def test_validation_errors_block_transition() -> None:
    async def scenario() -> None:
        backend = _FakeBackend()
        controller = _controller(EntityGraph.new(ClientKind.ORGANIZATION), backend)

        step = await controller.submit()

        state = controller.snapshot()
        assert step is WizardStep.STEP1
        assert state["errors"]["client"]["business_name"]
        assert state["errors"]["addresses"]["0"]["postal_code"] == ["ZIP code is required"]
        assert backend.checked == []

    asyncio.run(scenario())


def test_entering_step2_seeds_one_provider_at_primary_address() -> None:
    async def scenario() -> None:
        graph = organization_graph(has_providers=True)
        controller = _controller(graph)

        step = await controller.submit()

        assert step is WizardStep.STEP2
        assert len(graph.providers) == 1
        seeded = graph.providers[0]
        assert seeded.address_ref == graph.primary_address.temp_id
        assert seeded.city == "Springfield"
        assert seeded.postal_code == "62701-1234"

    asyncio.run(scenario())


def test_reentering_step2_keeps_populated_providers() -> None:
    async def scenario() -> None:
        graph = organization_graph(has_providers=True)
        controller = _controller(graph)
        await controller.submit()
        controller.add_provider()
        controller.update_provider(0, {"first_name": "Jane", "last_name": "Doe"})
        controller.update_provider(1, {"first_name": "John", "last_name": "Roe"})
        populated = list(graph.providers)

        assert controller.back() is WizardStep.STEP1
        assert await controller.submit() is WizardStep.STEP2

        assert graph.providers == populated

    asyncio.run(scenario())


def test_step2_submission_resolves_provider_addresses() -> None:
    async def scenario() -> None:
        backend = _FakeBackend()
        graph = organization_graph(has_providers=True)
        controller = _controller(graph, backend)
        await controller.submit()
        fill_provider(graph, 0)

        step = await controller.submit()

        payload = backend.created[0]
        assert step is WizardStep.SUBMITTED
        assert payload["providers"][0]["address_ref"] == payload["primary_ref"]
        assert sorted(backend.checked[0]) == [ORG_NUMBER, PROVIDER_NUMBER]

    asyncio.run(scenario())


def test_backend_rejection_keeps_step_and_sets_notice() -> None:
    async def scenario() -> None:
        backend = _FakeBackend()
        backend.reject = BackendRejectedError(400, "Business name already used")
        graph = organization_graph()
        controller = _controller(graph, backend)

        step = await controller.submit()

        assert step is WizardStep.STEP1
        assert controller.notice == "Business name already used"
        assert graph.client.business_name == "Acme Health"

        backend.reject = None
        assert await controller.submit() is WizardStep.SUBMITTED
        assert controller.notice == ""

    asyncio.run(scenario())


def test_unreachable_backend_on_duplicate_check_sets_notice() -> None:
    async def scenario() -> None:
        backend = _FakeBackend()

        def _fail(registry_numbers: list[str]) -> list[str]:
            raise BackendError("Backend unavailable: timeout")

        backend.check_existing = _fail  # type: ignore[method-assign]
        controller = _controller(organization_graph(), backend)

        assert await controller.submit() is WizardStep.STEP1
        assert controller.notice.startswith("Could not verify NPIs")
        assert backend.created == []

    asyncio.run(scenario())


def test_duplicate_registry_number_blocks_submission() -> None:
    async def scenario() -> None:
        backend = _FakeBackend(existing={PROVIDER_NUMBER})
        graph = organization_graph(has_providers=True)
        controller = _controller(graph, backend)
        await controller.submit()
        fill_provider(graph, 0)

        step = await controller.submit()

        errors = controller.errors()
        assert step is WizardStep.STEP2
        assert errors.codes() == {CODE_DUPLICATE_REGISTRY_NUMBER}
        assert errors.providers[0]["registry_number"]
        assert "registry_number" not in errors.client
        assert backend.created == []

    asyncio.run(scenario())


def test_edit_flow_updates_without_reseeding_or_rechecking_originals() -> None:
    async def scenario() -> None:
        backend = _FakeBackend(existing={ORG_NUMBER, PROVIDER_NUMBER})
        graph = EntityGraph.from_record(persisted_organization_record())
        controller = _controller(graph, backend)

        assert await controller.submit() is WizardStep.STEP2
        assert graph.providers[0].durable_id == "prov-1"
        assert not should_seed_provider(graph)

        assert await controller.submit() is WizardStep.SUBMITTED
        client_id, payload = backend.updated[0]
        assert client_id == "client-1"
        assert payload["providers"][0]["durable_location_id"] == "addr-2"
        assert backend.checked == []

    asyncio.run(scenario())


def test_kind_switch_reruns_subject_lookup() -> None:
    async def scenario() -> None:
        record = RegistryRecord(
            kind=RegistryKind.ORGANIZATION,
            registry_number=ORG_NUMBER,
            organization_name="Acme Health",
        )
        registry = _FakeRegistry({ORG_NUMBER: record})
        graph = EntityGraph.new(ClientKind.INDIVIDUAL)
        controller = _controller(graph, registry=registry)

        controller.update_client_fields({"registry_number": ORG_NUMBER})
        await asyncio.sleep(SETTLE)
        await controller.orchestrator.wait_idle()
        assert controller.snapshot()["errors"]["client"]["registry_number"]

        controller.set_client_variant("organization")
        await asyncio.sleep(SETTLE)
        await controller.orchestrator.wait_idle()

        assert registry.calls == [ORG_NUMBER, ORG_NUMBER]
        assert graph.client.business_name == "Acme Health"
        assert controller.errors().is_empty()

    asyncio.run(scenario())


def test_step2_locks_kind_and_back_requires_step2() -> None:
    async def scenario() -> None:
        controller = _controller(organization_graph(has_providers=True))

        with pytest.raises(WizardError):
            controller.back()
        await controller.submit()
        with pytest.raises(GraphError):
            controller.set_client_variant("individual")
        with pytest.raises(GraphError):
            controller.set_has_providers(False)

    asyncio.run(scenario())


def test_cancel_clears_pending_lookups_and_closes_wizard() -> None:
    async def scenario() -> None:
        registry = _FakeRegistry()
        controller = _controller(EntityGraph.new(ClientKind.ORGANIZATION), registry=registry)
        controller.update_client_fields({"registry_number": ORG_NUMBER})

        assert controller.cancel() is WizardStep.DISCARDED
        await asyncio.sleep(SETTLE)

        assert registry.calls == []
        with pytest.raises(WizardClosedError):
            controller.add_address()
        with pytest.raises(WizardClosedError):
            await controller.submit()
        assert controller.cancel() is WizardStep.DISCARDED

    asyncio.run(scenario())


def test_remove_provider_forgets_lookup_state() -> None:
    async def scenario() -> None:
        graph = organization_graph(has_providers=True)
        controller = _controller(graph)
        await controller.submit()
        controller.add_provider()
        controller.update_provider(1, {"registry_number": "2222222222"})
        await asyncio.sleep(SETTLE)
        await controller.orchestrator.wait_idle()
        assert controller.errors().providers[1]["registry_number"]

        controller.remove_provider(1)

        assert controller.errors().is_empty()
        assert len(graph.providers) == 1

    asyncio.run(scenario())


def test_step2_locks_client_and_address_edits() -> None:
    async def scenario() -> None:
        graph = organization_graph(has_providers=True)
        controller = _controller(graph)
        primary_ref = graph.primary_address.temp_id
        await controller.submit()

        with pytest.raises(GraphError):
            controller.update_client_fields({"registry_number": "123", "business_name": ""})
        with pytest.raises(GraphError):
            controller.update_address(primary_ref, {"postal_code": "1", "city": ""})
        with pytest.raises(GraphError):
            controller.add_address()
        with pytest.raises(GraphError):
            controller.remove_address(primary_ref)

        assert graph.client.registry_number == ORG_NUMBER
        assert graph.client.business_name == "Acme Health"
        assert graph.primary_address.postal_code == "62701-1234"
        assert len(graph.addresses) == 1

    asyncio.run(scenario())


def test_final_submit_rechecks_step1_data() -> None:
    async def scenario() -> None:
        backend = _FakeBackend()
        graph = organization_graph(has_providers=True)
        controller = _controller(graph, backend)
        await controller.submit()
        fill_provider(graph, 0)
        # Edits that bypass the controller, such as a late lookup autofill.
        graph.update_client_fields({"business_name": "", "registry_number": "123"})
        graph.update_address(graph.primary_address.temp_id, {"postal_code": "1"})
        half_filled = graph.add_address()
        graph.update_address(half_filled.temp_id, {"line1": "half filled"})

        step = await controller.submit()

        errors = controller.errors()
        assert step is WizardStep.STEP2
        assert backend.created == []
        assert errors.client["business_name"]
        assert errors.client["registry_number"]
        assert errors.addresses[0]["postal_code"]
        assert errors.addresses[1]["city"]

    asyncio.run(scenario())


def test_rejected_client_field_leaves_other_fields_untouched() -> None:
    graph = EntityGraph.new(ClientKind.INDIVIDUAL)
    controller = _controller(graph)

    with pytest.raises(GraphError):
        controller.update_client_fields({"first_name": "Ann", "business_name": "X"})

    assert graph.client.first_name == ""


def test_address_suggestion_selection_per_step() -> None:
    async def scenario() -> None:
        suggestion = AddressSuggestion(
            label="200, Elm St, Peoria, Illinois",
            line1="200 Elm St",
            city="Peoria",
            state_name="Illinois",
            state_code="IL",
            postal_code="61602-1234",
        )
        graph = organization_graph(has_providers=True)
        controller = _controller(graph, address_search=_FakeAddressSearch([suggestion]))

        controller.update_address(graph.primary_address.temp_id, {"line1": "200 Elm"})
        await asyncio.sleep(SETTLE)
        await controller.orchestrator.wait_idle()
        assert controller.snapshot()["suggestions"][SUBJECT_SLOT][0]["line1"] == "200 Elm St"
        controller.select_address_suggestion(SUBJECT_SLOT, 0)
        assert graph.primary_address.city == "Peoria"
        assert controller.snapshot()["suggestions"] == {}

        await controller.submit()
        controller.update_provider(0, {"line1": "200 Elm"})
        await asyncio.sleep(SETTLE)
        await controller.orchestrator.wait_idle()
        controller.select_address_suggestion(provider_slot(0), 0)
        assert graph.providers[0].state_code == "IL"

        controller.orchestrator.on_field_change(SUBJECT_SLOT, LookupKind.ADDRESS, "300 Oak")
        await asyncio.sleep(SETTLE)
        await controller.orchestrator.wait_idle()
        with pytest.raises(GraphError):
            controller.select_address_suggestion(SUBJECT_SLOT, 0)

    asyncio.run(scenario())
