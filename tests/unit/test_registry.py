from concurrent.futures import ThreadPoolExecutor

import pytest

from envpersist.db import models
from envpersist.db.database import DatabaseSettings
from envpersist.db.registry import PersistenceContextRegistry
from envpersist.db.repositories import CompanyRepository
from envpersist.exceptions import ContextError
from envpersist.utils.environments import EnvironmentLabel


def test_get_context_is_memoized_per_label(registry):
    first = registry.get_context("dev")
    assert registry.get_context(EnvironmentLabel.dev) is first
    assert registry.get_context("prod") is not first
    assert first.label is EnvironmentLabel.dev


def test_default_label_is_prod(registry):
    assert registry.current_label is EnvironmentLabel.prod
    assert registry.current_context().label is EnvironmentLabel.prod


def test_activate_changes_current_context(registry):
    registry.activate("dev")
    assert registry.current_label is EnvironmentLabel.dev
    assert registry.current_context().label is EnvironmentLabel.dev


def test_using_restores_previous_label(registry):
    registry.activate("dev")
    with registry.using("prod") as context:
        assert context.label is EnvironmentLabel.prod
        assert registry.current_label is EnvironmentLabel.prod
    assert registry.current_label is EnvironmentLabel.dev


def test_new_label_clears_other_identity_maps(registry, seed, make_company):
    company = seed("prod", make_company("Acme"))
    prod = registry.get_context("prod")
    assert prod.contains(company)

    registry.get_context("dev")
    assert not prod.contains(company)
    assert prod.identity_map_size == 0


def test_cached_label_does_not_clear_again(live_registry, seed, make_company):
    company = seed("prod", make_company("Acme"))
    live_registry.get_context("dev")
    assert live_registry.get_context("prod").contains(company)
    assert live_registry.owner_label(company) is EnvironmentLabel.prod


@pytest.mark.parametrize("label", ["staging", "", None, 42])
def test_unknown_label_raises_context_error(registry, label):
    with pytest.raises(ContextError):
        registry.get_context(label)


def test_unconfigured_label_raises_context_error(prod_only_registry):
    with pytest.raises(ContextError) as exc:
        prod_only_registry.get_context("dev")
    assert exc.value.label == "dev"
    assert prod_only_registry.cached_labels() == []


def test_unreachable_backend_raises_context_error(tmp_path):
    missing_dir = tmp_path / "does-not-exist" / "nested"
    settings = DatabaseSettings.from_urls({"prod": f"sqlite:///{missing_dir}/prod.db"})
    registry = PersistenceContextRegistry(settings)
    try:
        with pytest.raises(ContextError) as exc:
            registry.get_context("prod")
        assert "unavailable" in str(exc.value)
    finally:
        registry.dispose()


def test_reset_environment_drops_contexts_and_label(registry):
    registry.activate("dev")
    old = registry.get_context("dev")
    registry.reset_environment()

    assert registry.cached_labels() == []
    assert registry.current_label is EnvironmentLabel.prod
    assert old.closed
    assert registry.get_context("dev") is not old


def test_data_survives_reset_environment(registry, seed, make_company):
    seed("dev", make_company("Kept"))
    registry.reset_environment()
    with registry.using("dev") as context:
        assert context.fetch_row(models.Company, 1)["label"] == "Kept"


def test_peek_context_does_not_create(registry):
    assert registry.peek_context("dev") is None
    created = registry.get_context("dev")
    assert registry.peek_context("dev") is created


def test_contexts_compare_by_label(registry):
    dev = registry.get_context("dev")
    registry.reset_environment()
    assert registry.get_context("dev") == dev
    assert registry.get_context("prod") != dev


def test_transaction_commits_on_success(registry, make_company):
    with registry.using("dev"):
        with registry.transaction() as context:
            context.add(make_company("Committed"))
        assert not registry.is_transaction_active()
        assert context.fetch_row(models.Company, 1) is not None


def test_transaction_rolls_back_on_error(registry, make_company):
    with registry.using("dev"):
        with pytest.raises(RuntimeError):
            with registry.transaction() as context:
                context.add(make_company("Rolled Back"))
                context.flush()
                raise RuntimeError("boom")
        assert context.fetch_row(models.Company, 1) is None


def test_concurrent_work_on_one_label_is_serialized(live_registry, make_company):
    repo = CompanyRepository(live_registry)

    def worker(n):
        counts = []
        with live_registry.using("dev"):
            for i in range(25):
                with live_registry.transaction() as context:
                    context.add(make_company(f"Worker {n}-{i}"))
                counts.append(repo.count())
        return counts

    with ThreadPoolExecutor(max_workers=8) as pool:
        results = list(pool.map(worker, range(8)))

    assert all(c >= 1 for counts in results for c in counts)
    with live_registry.using("dev"):
        assert repo.count() == 200
    with live_registry.using("prod"):
        assert repo.count() == 0
