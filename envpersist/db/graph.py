"""
Entity graph helpers shared by the validators and the lifecycle manager.

Attribute access here never triggers a lazy load on an entity that is not
attached to a session, so inspecting a detached graph cannot raise
``DetachedInstanceError``.
"""
from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Iterator, List, Optional, Set, Tuple

from sqlalchemy import inspect
from sqlalchemy.orm.base import NO_VALUE

from envpersist.utils.environments import EnvironmentLabel

# Returned for attributes that are not loaded on a detached entity
NOT_LOADED = NO_VALUE


class EntityState(str, Enum):
    TRANSIENT = "transient"
    MANAGED = "managed"
    DETACHED = "detached"
    PROXY = "proxy"


@dataclass(frozen=True)
class EntityStatus:
    """State of an entity relative to the active context.

    ``label`` is the owning context for MANAGED entities; ``foreign_label``
    is set for DETACHED entities still held by another live context.
    """
    state: EntityState
    label: Optional[EnvironmentLabel] = None
    foreign_label: Optional[EnvironmentLabel] = None

    @property
    def is_managed(self) -> bool:
        return self.state is EntityState.MANAGED


def is_mapped(entity: Any) -> bool:
    try:
        inspect(entity)
    except Exception:
        return False
    return True


def type_name(entity: Any) -> str:
    return type(entity).__name__


def read_attribute(entity: Any, name: str):
    """Return an attribute value, or ``NOT_LOADED`` when reading it would need
    a session the entity does not have."""
    state = inspect(entity)
    if name in state.dict:
        return state.dict[name]
    if state.session is not None or state.transient or state.pending:
        return getattr(entity, name, None)
    return NOT_LOADED


def entity_id(entity: Any):
    """Primary key value of a mapped entity (None when unset or unreadable)."""
    if entity is None:
        return None
    try:
        value = read_attribute(entity, "id")
    except Exception:
        return getattr(entity, "id", None)
    return None if value is NOT_LOADED else value


def scalar_values(entity: Any) -> Dict[str, Any]:
    """Loaded column attribute values keyed by attribute name."""
    state = inspect(entity)
    values = {}
    for attr in state.mapper.column_attrs:
        if attr.key in state.dict:
            values[attr.key] = state.dict[attr.key]
    return values


def related(entity: Any) -> List[Tuple[str, Any]]:
    """Non-null, loaded relations declared in ``__validated_relations__``."""
    pairs = []
    for name in getattr(type(entity), "__validated_relations__", ()):
        value = read_attribute(entity, name)
        if value is None or value is NOT_LOADED:
            continue
        pairs.append((name, value))
    return pairs


def walk(entity: Any) -> Iterator[Tuple[Optional[Any], Optional[str], Any]]:
    """Yield ``(parent, relation, node)`` for every reachable node, root first.

    Each node is yielded once (by object identity), so cycles terminate.
    """
    seen: Set[int] = set()
    stack: List[Tuple[Optional[Any], Optional[str], Any]] = [(None, None, entity)]
    while stack:
        parent, name, node = stack.pop()
        if id(node) in seen:
            continue
        seen.add(id(node))
        yield parent, name, node
        # reversed keeps declaration order on the LIFO stack
        for rel_name, child in reversed(related(node)):
            stack.append((node, rel_name, child))


def edges(entity: Any) -> Iterator[Tuple[Any, str, Any]]:
    """Every ``(parent, relation, child)`` edge of the reachable graph."""
    for _, _, node in walk(entity):
        for rel_name, child in related(node):
            yield node, rel_name, child
