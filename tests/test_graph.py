from __future__ import annotations

import pytest

from onboarding.wizard.errors import GraphError
from onboarding.wizard.graph import (
    ClientKind,
    EntityGraph,
    IndividualClient,
    OrganizationClient,
    parse_client_kind,
)
from tests.sample_graph import ORG_NUMBER, organization_graph, persisted_organization_record


def _primary_count(graph: EntityGraph) -> int:
    return sum(1 for address in graph.addresses if address.is_primary)


def test_new_graph_has_exactly_one_primary_address() -> None:
    graph = EntityGraph.new()

    assert graph.kind is ClientKind.INDIVIDUAL
    assert _primary_count(graph) == 1
    assert not graph.is_edit


def test_removing_primary_address_is_a_noop() -> None:
    graph = organization_graph()
    secondary = graph.add_address()

    assert graph.remove_address(graph.primary_address.temp_id) is False
    assert _primary_count(graph) == 1
    assert graph.remove_address(secondary.temp_id) is True
    assert len(graph.addresses) == 1


def test_remove_unknown_address_raises() -> None:
    graph = organization_graph()

    with pytest.raises(GraphError):
        graph.remove_address("tmp-missing")


def test_switching_variant_keeps_shared_fields_only() -> None:
    graph = organization_graph(has_providers=True)
    graph.update_client_field("description", "Clinic")

    client = graph.set_client_variant("individual")

    assert isinstance(client, IndividualClient)
    assert client.registry_number == ORG_NUMBER
    assert client.description == "Clinic"
    assert not hasattr(client, "business_name")
    assert not graph.has_providers


def test_fields_of_other_variant_are_rejected() -> None:
    graph = EntityGraph.new(ClientKind.INDIVIDUAL)

    with pytest.raises(GraphError):
        graph.update_client_field("business_name", "Acme")
    with pytest.raises(GraphError):
        graph.set_has_providers(True)


def test_update_client_fields_is_all_or_nothing() -> None:
    graph = EntityGraph.new(ClientKind.INDIVIDUAL)

    with pytest.raises(GraphError):
        graph.update_client_fields({"first_name": "Ann", "business_name": "Acme"})
    stored = graph.update_client_fields({"first_name": " Ann", "registry_number": "1-2"})

    assert stored == {"first_name": " Ann", "registry_number": "12"}
    assert graph.client.first_name == " Ann"


def test_update_client_field_applies_masks() -> None:
    graph = EntityGraph.new(ClientKind.ORGANIZATION)

    assert graph.update_client_field("registry_number", "123-456-7890") == "1234567890"
    assert graph.update_client_field("registry_number", "123456789012") == "1234567890"


def test_parse_client_kind_accepts_registry_labels() -> None:
    assert parse_client_kind("NPI-2") is ClientKind.ORGANIZATION
    assert parse_client_kind("Individual") is ClientKind.INDIVIDUAL
    with pytest.raises(GraphError):
        parse_client_kind("robot")


def test_new_provider_links_to_primary_address() -> None:
    graph = organization_graph(has_providers=True)

    index = graph.add_provider()

    assert graph.providers[index].address_ref == graph.primary_address.temp_id


def test_seed_provider_copies_primary_address() -> None:
    graph = organization_graph(has_providers=True)
    graph.add_provider()
    graph.add_provider()

    seeded = graph.seed_provider()

    assert graph.providers == [seeded]
    assert seeded.address_ref == graph.primary_address.temp_id
    assert seeded.city == "Springfield"
    assert seeded.postal_code == "62701-1234"


def test_update_provider_out_of_range_raises() -> None:
    graph = organization_graph(has_providers=True)

    with pytest.raises(GraphError):
        graph.update_provider(3, {"first_name": "X"})
    with pytest.raises(GraphError):
        graph.update_provider(graph.add_provider(), {"unknown": "X"})


def test_from_record_hydrates_edit_graph() -> None:
    graph = EntityGraph.from_record(persisted_organization_record())

    assert graph.is_edit
    assert graph.durable_client_id == "client-1"
    assert isinstance(graph.client, OrganizationClient)
    assert graph.has_providers
    assert [address.temp_id for address in graph.addresses] == ["addr-1", "addr-2"]
    assert graph.primary_address.temp_id == "addr-1"
    assert graph.providers[0].address_ref == "addr-2"
    assert graph.providers[0].durable_location_id == "addr-2"
    assert graph.original_subject_registry_number == ORG_NUMBER
    assert graph.original_registry_numbers == {ORG_NUMBER, "1555555555"}


def test_from_record_repairs_primary_flags() -> None:
    record = persisted_organization_record()
    for address in record["addresses"]:
        address["is_primary"] = True

    graph = EntityGraph.from_record(record)

    assert _primary_count(graph) == 1
    assert graph.primary_address.temp_id == "addr-1"

    record["addresses"] = []
    assert _primary_count(EntityGraph.from_record(record)) == 1
