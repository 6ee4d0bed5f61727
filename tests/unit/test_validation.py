import random
import string

import pytest

from envpersist.services.validation import EntityValidationService, ValidationResult


@pytest.fixture
def service():
    return EntityValidationService()


@pytest.mark.parametrize("label", ["", "   ", "\t\n", None])
def test_blank_label_is_invalid(service, make_company, label):
    result = service.validate_required_fields(make_company(label))
    assert not result.is_valid
    assert result.errors == ["label is required for Company"]


@pytest.mark.parametrize("label", ["Acme", "  padded  ", "x"])
def test_non_blank_label_is_valid(service, make_company, label):
    assert service.validate_required_fields(make_company(label)).is_valid


def test_validity_matches_stripped_label_on_random_input(service, make_company):
    rng = random.Random(20240115)
    alphabet = " \t" + string.ascii_letters
    for _ in range(200):
        label = "".join(rng.choice(alphabet) for _ in range(rng.randint(0, 6)))
        result = service.validate_required_fields(make_company(label))
        assert result.is_valid is bool(label.strip()), repr(label)


def test_types_without_required_label_are_always_valid(service, make_customer):
    assert service.validate_required_fields(make_customer()).is_valid
    assert service.validate_required_fields(None).is_valid


def test_validation_is_idempotent_and_read_only(service, make_company, make_shop):
    shop = make_shop("  ", company=make_company(""))
    first = service.validate_for_persistence(shop)
    second = service.validate_for_persistence(shop)
    assert first == second
    assert shop.label == "  "
    assert shop.company.label == ""


def test_graph_error_names_offending_type(service, make_company, make_shop):
    shop = make_shop("Valid Shop", company=make_company(""))
    result = service.validate_for_persistence(shop)
    assert result.errors == ["label is required for Company"]


def test_graph_reports_every_invalid_node(service, make_company, make_shop, make_customer):
    company = make_company(None)
    customer = make_customer(company=company, shop=make_shop("", company=company))
    result = service.validate_for_persistence(customer)
    # the shared company is visited once
    assert sorted(result.errors) == ["label is required for Company", "label is required for Shop"]


def test_valid_graph(service, make_company, make_shop, make_customer):
    company = make_company("Acme")
    customer = make_customer(company=company, shop=make_shop("Main", company=company))
    assert service.validate_for_persistence(customer).is_valid


def test_missing_entity_is_an_error(service):
    result = service.validate_for_persistence(None)
    assert result.errors == ["cannot validate a missing entity"]


def test_unloaded_label_on_detached_entity_is_skipped(registry, seed, service, make_company):
    company = seed("dev", make_company("Acme"))
    with registry.using("dev") as context:
        context.session.expire(company, ["label"])
        context.expunge(company)

    result = service.validate_for_persistence(company)
    assert result.is_valid
    assert result.has_warnings
    assert "not loaded" in result.warnings[0]


def test_validation_result_merge_and_format():
    left = ValidationResult().add_error("a").add_warning("w1")
    right = ValidationResult().add_error("b").add_info("i")
    merged = left.merge(right)
    assert merged is left
    assert merged.errors == ["a", "b"]
    assert merged.formatted_errors() == "a; b"
    assert merged.formatted_warnings() == "w1"
    assert merged.info == ["i"]
    assert merged.has_errors and merged.has_warnings and not merged.is_valid
