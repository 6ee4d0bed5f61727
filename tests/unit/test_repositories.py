import pytest

from envpersist.db import models
from envpersist.db.proxies import Loaded, Unloaded
from envpersist.db.repositories import (
    CompanyRepository,
    CustomerRepository,
    EnvironmentScopedRepository,
    ShopRepository,
)
from envpersist.exceptions import InvalidCriteriaError, QueryExecutionError


@pytest.fixture
def companies(registry):
    registry.activate("dev")
    return CompanyRepository(registry)


def _seed_companies(repo, make_company, labels):
    for label in labels:
        repo.save(make_company(label))


def test_repository_requires_a_model(registry):
    with pytest.raises(TypeError):
        EnvironmentScopedRepository(registry)
    generic = EnvironmentScopedRepository(registry, models.Shop)
    assert "company_id" in generic.field_names


def test_save_assigns_id_and_find_by_id(companies, make_company):
    company = companies.save(make_company("Acme"))
    assert company.id is not None
    assert companies.find_by_id(company.id) is company
    assert companies.find_by_id(9999) is None
    assert companies.find_by_id(None) is None


def test_find_all_and_count(companies, make_company):
    _seed_companies(companies, make_company, ["A", "B", "C"])
    assert [c.label for c in companies.find_all()] == ["A", "B", "C"]
    assert companies.count() == 3
    assert companies.count({"label": "B"}) == 1


def test_find_by_with_order_limit_offset(companies, make_company):
    _seed_companies(companies, make_company, ["A", "B", "C", "D"])
    rows = companies.find_by({"is_active": True}, order_by={"label": "desc"}, limit=2, offset=1)
    assert [c.label for c in rows] == ["C", "B"]
    rows = companies.find_by(order_by=[("label", "ASC")])
    assert [c.label for c in rows] == ["A", "B", "C", "D"]


def test_find_one_by(companies, make_company):
    _seed_companies(companies, make_company, ["A", "B"])
    assert companies.find_one_by({"label": "B"}).label == "B"
    assert companies.find_one_by({"label": "Z"}) is None


def test_unknown_criteria_field_raises(companies):
    with pytest.raises(InvalidCriteriaError) as exc:
        companies.find_by({"nope": 1, "label": "x"})
    assert exc.value.invalid == ["nope"]
    assert "label" in exc.value.valid
    assert exc.value.method == "find_by"
    assert "[Repository: CompanyRepository]" in exc.value.formatted_message()


def test_unknown_order_field_and_direction_raise(companies):
    with pytest.raises(InvalidCriteriaError):
        companies.find_by(order_by={"missing": "asc"})
    with pytest.raises(InvalidCriteriaError) as exc:
        companies.find_by(order_by={"label": "sideways"})
    assert exc.value.context == {"type": "invalid_direction"}


def test_count_rejects_unknown_field(companies):
    with pytest.raises(InvalidCriteriaError):
        companies.count({"nope": 1})


def test_paginate(companies, make_company):
    _seed_companies(companies, make_company, [f"Company {i:02d}" for i in range(7)])
    page = companies.paginate(page=2, per_page=3, order_by=[("id", "asc")])
    assert [c.label for c in page.items] == ["Company 03", "Company 04", "Company 05"]
    assert page.total_count == 7
    assert page.total_pages == 3
    assert page.has_next_page
    assert page.has_previous_page

    last = companies.paginate(page=3, per_page=3)
    assert len(last.items) == 1
    assert not last.has_next_page


def test_remove(companies, make_company):
    company = companies.save(make_company("Gone"))
    companies.remove(company)
    assert companies.count() == 0


def test_save_without_flush_keeps_entity_pending(registry, companies, make_company):
    company = companies.save(make_company("Pending"), flush=False)
    assert company.id is None
    assert registry.current_context().contains(company)
    companies.flush()
    assert company.id is not None


def test_repository_follows_the_active_label(registry, make_company):
    repo = CompanyRepository(registry)
    with registry.using("dev"):
        repo.save(make_company("Dev Co"))
    with registry.using("prod"):
        assert repo.count() == 0
        repo.save(make_company("Prod Co"))
        repo.save(make_company("Prod Co 2"))
    with registry.using("dev"):
        assert [c.label for c in repo.find_all()] == ["Dev Co"]
    with registry.using("prod"):
        assert repo.count() == 2


def test_saving_an_entity_held_by_another_context_fails(live_registry, make_company):
    repo = CompanyRepository(live_registry)
    with live_registry.using("prod"):
        company = repo.save(make_company("Prod Co"))
    with live_registry.using("dev"):
        with pytest.raises(QueryExecutionError) as exc:
            repo.save(company)
    assert exc.value.method == "save"
    assert "dev" in str(exc.value)


def test_commit_failure_rolls_back_and_raises(registry, make_customer):
    registry.activate("dev")
    repo = CustomerRepository(registry)
    repo.save(make_customer("C-1"))
    with pytest.raises(QueryExecutionError):
        repo.save(make_customer("C-1"))
    assert not registry.current_context().session.new
    assert repo.count() == 1


def test_reference_resolves_against_active_context(registry, make_company):
    repo = CompanyRepository(registry)
    with registry.using("dev"):
        saved = repo.save(make_company("Dev Co"))
        ref = repo.reference(saved.id)
    assert isinstance(ref, Unloaded)

    with registry.using("dev"):
        loaded = ref.load()
    assert isinstance(loaded, Loaded)
    assert loaded.entity.label == "Dev Co"

    with registry.using("prod"):
        assert ref.load() is None


def test_company_finders(companies, make_company):
    _seed_companies(companies, make_company, ["Zeta", "Alpha"])
    inactive = make_company("Beta", is_active=False)
    companies.save(inactive)

    assert companies.find_by_label("alpha").label == "Alpha"
    assert companies.find_by_label("missing") is None
    assert [c.label for c in companies.find_active()] == ["Alpha", "Zeta"]


def test_shop_and_customer_finders(registry, make_company, make_shop, make_customer):
    registry.activate("dev")
    shops = ShopRepository(registry)
    customers = CustomerRepository(registry)

    company = make_company("Acme")
    shop = shops.save(make_shop("Main", company=company))
    shops.save(make_shop("Second", company=company))
    customers.save(make_customer("C-2", company=company, shop=shop, last_name="Young"))
    customers.save(make_customer("C-1", company=company, shop=shop, last_name="Adams"))

    assert [s.label for s in shops.find_by_company(company.id)] == ["Main", "Second"]
    assert [s.label for s in shops.find_by_company(company.id, skip=1)] == ["Second"]
    assert [c.last_name for c in customers.find_by_shop(shop.id)] == ["Adams", "Young"]
    assert customers.find_by_number("C-2").last_name == "Young"
    assert customers.find_by_number("") is None
    assert customers.count_by_company(company.id) == 2
