"""
API dependency helpers.

Every dependency reads the registry from ``app.state`` and the label bound
by the environment middleware, so handlers never pick a backend themselves.
"""
from typing import Callable, Type

from fastapi import Depends, Request

from envpersist.db.context import PersistenceContext
from envpersist.db.registry import PersistenceContextRegistry
from envpersist.db.repositories import EnvironmentScopedRepository
from envpersist.services.cascade_validator import CascadeOperationValidator
from envpersist.services.lifecycle import EntityLifecycleManager
from envpersist.services.safe_persistence import SafePersistenceHandler
from envpersist.utils.environments import EnvironmentLabel


def get_registry(request: Request) -> PersistenceContextRegistry:
    return request.app.state.registry


def get_environment_label(request: Request) -> EnvironmentLabel:
    # Set by the environment middleware for every request
    return request.state.database_env


def get_current_context(
    registry: PersistenceContextRegistry = Depends(get_registry),
) -> PersistenceContext:
    return registry.current_context()


def get_lifecycle_manager(
    registry: PersistenceContextRegistry = Depends(get_registry),
) -> EntityLifecycleManager:
    return EntityLifecycleManager(registry)


def get_cascade_validator(
    registry: PersistenceContextRegistry = Depends(get_registry),
) -> CascadeOperationValidator:
    return CascadeOperationValidator(registry)


def get_safe_persistence_handler(
    registry: PersistenceContextRegistry = Depends(get_registry),
    lifecycle: EntityLifecycleManager = Depends(get_lifecycle_manager),
    cascade_validator: CascadeOperationValidator = Depends(get_cascade_validator),
) -> SafePersistenceHandler:
    return SafePersistenceHandler(registry, lifecycle=lifecycle, cascade_validator=cascade_validator)


def get_repository(repository_cls: Type[EnvironmentScopedRepository]) -> Callable[..., EnvironmentScopedRepository]:
    """Dependency factory: ``Depends(get_repository(CompanyRepository))``."""

    def _dependency(registry: PersistenceContextRegistry = Depends(get_registry)) -> EnvironmentScopedRepository:
        return repository_cls(registry)

    return _dependency
