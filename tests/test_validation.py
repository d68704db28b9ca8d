from __future__ import annotations

from onboarding.wizard.validation import (
    CODE_INVALID_FORMAT,
    CODE_MISSING_REQUIRED,
    CODE_UNRESOLVED_REFERENCE,
    validate,
    validate_step1,
    validate_step2,
)
from onboarding.wizard.workflow import WizardStep
from tests.sample_graph import fill_provider, individual_graph, organization_graph


def test_valid_organization_passes_step1() -> None:
    assert not validate_step1(organization_graph())


def test_step1_reports_missing_identity_fields() -> None:
    graph = organization_graph()
    graph.update_client_field("business_name", " ")
    graph.update_client_field("registry_number", "123")

    errors = validate_step1(graph)

    assert errors.client["business_name"]
    assert errors.client["registry_number"] == ["NPI must be exactly 10 digits"]
    assert errors.codes() == {CODE_MISSING_REQUIRED, CODE_INVALID_FORMAT}


def test_step1_requires_confirmed_primary_postal_code() -> None:
    graph = individual_graph()
    graph.update_address(graph.primary_address.temp_id, {"postal_code": "62701"})

    errors = validate_step1(graph)

    assert errors.addresses[0]["postal_code"] == ["ZIP code must be in format 11111-1111"]


def test_partial_secondary_address_is_an_error() -> None:
    graph = organization_graph()
    secondary = graph.add_address()
    graph.update_address(secondary.temp_id, {"city": "Chicago"})

    errors = validate_step1(graph)

    assert set(errors.addresses[1]) == {"line1", "postal_code"}
    assert "addresses[1].line1" in {issue["field"] for issue in errors.as_issues()}


def test_step2_validates_providers() -> None:
    graph = organization_graph(has_providers=True)
    fill_provider(graph, graph.add_provider())
    graph.add_provider()

    errors = validate_step2(graph)

    assert 0 not in errors.providers
    assert set(errors.providers[1]) == {
        "first_name",
        "last_name",
        "registry_number",
        "city",
        "postal_code",
    }


def test_removing_referenced_address_leaves_dangling_provider() -> None:
    graph = organization_graph(has_providers=True)
    secondary = graph.add_address()
    index = graph.add_provider()
    fill_provider(graph, index, address_ref=secondary.temp_id)

    graph.remove_address(secondary.temp_id)
    errors = validate(WizardStep.STEP2, graph)

    assert graph.providers[index].address_ref == secondary.temp_id
    assert CODE_UNRESOLVED_REFERENCE in errors.codes()
    assert errors.providers[index]["address_ref"]


def test_terminal_steps_have_no_validation() -> None:
    graph = organization_graph()
    graph.update_client_field("business_name", "")

    assert not validate(WizardStep.SUBMITTED, graph)
