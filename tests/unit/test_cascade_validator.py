import pytest

from envpersist.services.cascade_validator import CascadeOperationValidator


@pytest.fixture
def validator(registry):
    return CascadeOperationValidator(registry)


def test_missing_entity_is_blocked(validator):
    result = validator.validate_cascade_operations(None)
    assert result.errors == ["cascade blocked: no entity to validate"]


def test_unmapped_entity_is_blocked(validator):
    result = validator.validate_cascade_operations(object())
    assert not result.is_valid
    assert "not a mapped entity" in result.errors[0]


def test_new_graph_is_valid(registry, validator, make_company, make_shop, make_customer):
    registry.activate("dev")
    company = make_company("Acme")
    customer = make_customer(company=company, shop=make_shop("Main", company=company))
    result = validator.validate_cascade_operations(customer)
    assert result.is_valid
    assert result.warnings == []


def test_required_field_errors_are_included(registry, validator, make_company, make_shop):
    registry.activate("dev")
    result = validator.validate_cascade_operations(make_shop("Valid Shop", company=make_company("")))
    assert result.errors == ["label is required for Company"]


def test_managed_graph_has_no_findings(registry, seed, validator, make_company, make_shop):
    shop = seed("dev", make_shop("Main", company=make_company("Acme")))
    registry.activate("dev")
    result = validator.validate_cascade_operations(shop)
    assert result.is_valid
    assert result.warnings == []
    assert result.info == []


def test_detached_reference_missing_in_active_backend_is_blocked(
    registry, seed, validator, make_company, make_shop
):
    company = seed("prod", make_company("Prod Only"))
    registry.activate("dev")  # first use of dev clears prod, company is now detached

    result = validator.validate_cascade_operations(make_shop("New Shop", company=company))
    assert len(result.errors) == 1
    error = result.errors[0]
    assert error.startswith("cascade blocked:")
    assert f"Company#{company.id}" in error
    assert "persistence context 'dev'" in error
    assert any("detached" in w for w in result.warnings)


def test_detached_reference_present_in_active_backend_is_a_warning(
    registry, seed, validator, make_company, make_shop
):
    seed("dev", make_company("Acme", id=1))
    company = seed("prod", make_company("Acme", id=1))
    registry.activate("dev")
    registry.get_context("prod").clear()

    result = validator.validate_cascade_operations(make_shop("New Shop", company=company))
    assert result.is_valid
    assert any("detached" in w and "will be merged" in w for w in result.warnings)
    assert result.info


def test_foreign_context_with_divergent_data_is_blocked(live_registry, seed, validator, make_company, make_shop):
    seed("dev", make_company("Acme", id=1))
    prod_company = seed("prod", make_company("Acme Prod", id=1))
    live_registry.activate("dev")

    result = validator.validate_cascade_operations(make_shop("New Shop", company=prod_company))
    assert len(result.errors) == 1
    error = result.errors[0]
    assert error.startswith("cascade blocked: Company#1 is managed by persistence context 'prod'")
    assert "diverging from 'dev'" in error
    assert "label" in error


def test_foreign_context_with_matching_data_is_a_warning(live_registry, seed, validator, make_company, make_shop):
    seed("dev", make_company("Acme", id=1))
    prod_company = seed("prod", make_company("Acme", id=1))
    live_registry.activate("dev")

    result = validator.validate_cascade_operations(make_shop("New Shop", company=prod_company))
    assert result.is_valid
    assert any("matches 'dev'" in w for w in result.warnings)


def test_foreign_root_missing_in_active_backend_will_be_copied(live_registry, seed, validator, make_company):
    prod_company = seed("prod", make_company("Prod Only"))
    live_registry.activate("dev")

    result = validator.validate_cascade_operations(prod_company)
    assert result.is_valid
    assert any("will be copied into 'dev'" in w for w in result.warnings)


def test_backend_failures_become_errors(registry, validator, make_company, make_shop, monkeypatch):
    registry.activate("dev")
    context = registry.current_context()

    def broken(*args, **kwargs):
        raise RuntimeError("connection reset")

    monkeypatch.setattr(context, "fetch_row", broken)
    company = make_company("Acme", id=5)
    result = validator.validate_related_entity_states(make_shop("New Shop", company=company))
    assert not result.is_valid
    assert result.errors[0].startswith("cascade blocked:")
    assert "connection reset" in result.errors[0]


def test_sub_checks_accept_none(validator):
    assert validator.validate_related_entity_states(None).is_valid
    assert validator.ensure_same_persistence_context(None).is_valid
