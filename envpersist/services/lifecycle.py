"""
Entity lifecycle reconciliation against the active persistence context.

State machine, per entity and relative to the active context C:

    TRANSIENT   --ensure_managed / save-->  MANAGED(C)
    MANAGED(C)  --detach / label switch-->  DETACHED
    DETACHED    --merge_detached------->   MANAGED(C')
    MANAGED(C)  --ensure_managed------->   MANAGED(C)   (no-op)

An entity read under one label stays in that label's identity map after the
active label changes; relative to the new context it is DETACHED.

Every operation accepts ``None`` and returns ``None`` / ``False``. Backend
errors are logged and the input is passed through; only ``ContextError``
(the active backend is unreachable) propagates.
"""
from __future__ import annotations

import logging
from typing import Any, Dict, Optional, Set, Tuple

from sqlalchemy import inspect
from sqlalchemy.exc import NoInspectionAvailable, SQLAlchemyError

from envpersist.db.context import PersistenceContext
from envpersist.db.graph import EntityState, EntityStatus, entity_id, is_mapped, related, type_name
from envpersist.db.proxies import Loaded, Unloaded
from envpersist.db.registry import PersistenceContextRegistry

logger = logging.getLogger(__name__)


class EntityLifecycleManager:
    def __init__(self, registry: PersistenceContextRegistry):
        self.registry = registry
        # (label, type, id) -> entity resolved from an Unloaded reference
        self._resolved: Dict[Tuple[str, type, Any], Any] = {}

    @property
    def context(self) -> PersistenceContext:
        return self.registry.current_context()

    def _held_elsewhere(self, entity: Any, context: PersistenceContext) -> bool:
        owner = self.registry.owner_label(entity)
        return owner is not None and owner != context.label

    def _concrete(self, entity: Any):
        if isinstance(entity, Loaded):
            return entity.entity
        if isinstance(entity, Unloaded):
            return self.resolve_proxy(entity)
        return entity

    def _reattach_relations(self, entity: Any, context: PersistenceContext, seen: Set[int]) -> bool:
        """Point the relations of a new entity at instances tracked by ``context``.

        Stored references are swapped for the active context's instance of the
        same row. Returns False, leaving the session untouched, when a
        reference is pending in another context or has no row in the active
        backend.
        """
        if id(entity) in seen:
            return True
        seen.add(id(entity))
        for name, child in related(entity):
            if context.contains(child):
                continue
            ident = entity_id(child)
            if ident is None:
                if self._held_elsewhere(child, context) or not self._reattach_relations(child, context, seen):
                    return False
                continue
            managed = context.find(type(child), ident)
            if managed is None:
                logger.warning(
                    "reference_missing: entity=%s id=%s environment=%s", type_name(child), ident, context.label.value
                )
                return False
            setattr(entity, name, managed)
        return True

    def _register_new(self, entity: Any, context: PersistenceContext) -> bool:
        if self._held_elsewhere(entity, context) or not self._reattach_relations(entity, context, set()):
            logger.warning(
                "entity_not_registered: entity=%s environment=%s references another persistence context",
                type_name(entity), context.label.value,
            )
            return False
        context.add(entity)
        logger.debug("entity_registered: entity=%s environment=%s", type_name(entity), context.label.value)
        return True

    def _discard_pending(self, entity: Any, context: PersistenceContext) -> None:
        # a failed add may already have cascaded the entity into the session
        try:
            context.discard(entity)
        except SQLAlchemyError as e:
            logger.error("discard_pending_failed: entity=%s error=%s", type_name(entity), e)

    # --- state queries --------------------------------------------------

    def entity_state(self, entity: Any) -> Optional[EntityStatus]:
        if entity is None:
            return None
        if isinstance(entity, Unloaded):
            return EntityStatus(EntityState.PROXY)
        if isinstance(entity, Loaded):
            entity = entity.entity
        context = self.context
        if context.contains(entity):
            return EntityStatus(EntityState.MANAGED, label=context.label)
        if entity_id(entity) is None:
            return EntityStatus(EntityState.TRANSIENT)
        return EntityStatus(EntityState.DETACHED, foreign_label=self.registry.owner_label(entity))

    def is_detached(self, entity: Any) -> bool:
        """True iff the entity has an id and the active identity map does not track it."""
        if entity is None or isinstance(entity, Unloaded):
            return False
        entity = self._concrete(entity)
        if entity_id(entity) is None:
            return False
        return not self.context.contains(entity)

    def validate_context(self, entity: Any) -> bool:
        """True iff the entity is attached to, or safely attachable to, the active context."""
        if entity is None:
            return False
        if isinstance(entity, Unloaded):
            return True
        entity = self._concrete(entity)
        if not is_mapped(entity):
            return False
        try:
            context = self.context
            if context.contains(entity):
                return True
            return not self._held_elsewhere(entity, context)
        except SQLAlchemyError as e:
            logger.error("validate_context_failed: entity=%s error=%s", type_name(entity), e)
            return False

    # --- transitions ----------------------------------------------------

    def ensure_managed(self, entity: Any):
        """Return an instance of ``entity`` bound to the active context.

        New entities are registered with the unit of work (their id comes at
        flush) unless a relation cannot be bound to the active context; see
        ``_reattach_relations``. Stored entities are swapped for the active context's instance
        when the backend has one.
        """
        if entity is None:
            return None
        entity = self._concrete(entity)
        if entity is None:
            return None
        context = self.context
        try:
            if context.contains(entity):
                return entity

            ident = entity_id(entity)
            if ident is None:
                self._register_new(entity, context)
                return entity

            managed = context.find(type(entity), ident)
            if managed is not None:
                logger.debug(
                    "entity_reattached: entity=%s id=%s environment=%s", type_name(entity), ident, context.label.value
                )
                return managed
            return entity
        except SQLAlchemyError as e:
            logger.error("ensure_managed_failed: entity=%s error=%s", type_name(entity), e)
            self._discard_pending(entity, context)
            return entity

    def detach(self, entity: Any) -> None:
        if entity is None:
            return None
        entity = self._concrete(entity)
        context = self.context
        try:
            if context.contains(entity):
                context.expunge(entity)
                logger.debug(
                    "entity_detached: entity=%s id=%s environment=%s",
                    type_name(entity), entity_id(entity), context.label.value,
                )
        except SQLAlchemyError as e:
            logger.error("detach_failed: entity=%s error=%s", type_name(entity), e)
        return None

    def merge_detached(self, entity: Any):
        """Return an equivalent instance tracked by the active context.

        Scalar fields are copied exactly from ``entity``; the argument itself
        is left untouched unless it is new and free to attach.
        """
        if entity is None:
            return None
        entity = self._concrete(entity)
        if entity is None:
            return None
        context = self.context
        try:
            if context.contains(entity):
                return entity
            if entity_id(entity) is None and not self._held_elsewhere(entity, context):
                self._register_new(entity, context)
                return entity
            merged = context.merge(entity)
            logger.debug(
                "entity_merged: entity=%s id=%s environment=%s", type_name(entity), entity_id(merged), context.label.value
            )
            return merged
        except SQLAlchemyError as e:
            logger.error("merge_detached_failed: entity=%s error=%s", type_name(entity), e)
            self._discard_pending(entity, context)
            return entity

    def resolve_proxy(self, entity: Any):
        """Return a concrete, fully loaded entity for a stand-in.

        ``Unloaded`` references are loaded from the active context (``None``
        when the row does not exist there); concrete entities with unloaded
        attributes are completed.
        """
        if entity is None:
            return None
        if isinstance(entity, Loaded):
            return entity.entity
        if isinstance(entity, Unloaded):
            return self._load_reference(entity)

        try:
            state = inspect(entity)
        except NoInspectionAvailable:
            return entity
        if state.transient or state.pending or not state.unloaded:
            return entity

        try:
            if state.session is not None:
                for key in list(state.unloaded):
                    getattr(entity, key)
                return entity
            ident = entity_id(entity)
            if ident is not None:
                loaded = self.context.find(type(entity), ident)
                if loaded is not None:
                    return loaded
        except SQLAlchemyError as e:
            logger.error("resolve_proxy_failed: entity=%s error=%s", type_name(entity), e)
        return entity

    def _load_reference(self, reference: Unloaded):
        label = self.registry.current_label.value
        key = (label, reference.entity_type, reference.id)
        cached = self._resolved.get(key)
        if cached is not None:
            return cached
        try:
            loaded = reference.load()
        except SQLAlchemyError as e:
            logger.error("resolve_proxy_failed: entity=%s id=%s error=%s", reference.entity_type.__name__, reference.id, e)
            return None
        if loaded is None:
            logger.warning(
                "proxy_target_missing: entity=%s id=%s environment=%s", reference.entity_type.__name__, reference.id, label
            )
            return None
        self._resolved[key] = loaded.entity
        logger.debug("proxy_resolved: entity=%s id=%s environment=%s", reference.entity_type.__name__, reference.id, label)
        return loaded.entity

    def refresh_in_current_context(self, entity: Any):
        """Re-synchronize ``entity`` with the active context; never raises for data problems."""
        if entity is None:
            return None
        concrete = self._concrete(entity)
        if concrete is None:
            return entity
        if entity_id(concrete) is None:
            return concrete
        context = self.context
        try:
            if context.contains(concrete):
                context.refresh(concrete)
                logger.debug(
                    "entity_refreshed: entity=%s id=%s environment=%s",
                    type_name(concrete), entity_id(concrete), context.label.value,
                )
                return concrete
        except SQLAlchemyError as e:
            logger.error("refresh_failed: entity=%s error=%s", type_name(concrete), e)
            return concrete
        return self.ensure_managed(concrete)

    def clear_cache(self) -> None:
        """Forget resolved references and clear the active context's identity map."""
        self._resolved.clear()
        context = self.registry.peek_context()
        if context is not None:
            context.clear()
            logger.info("entity_cache_cleared: environment=%s", context.label.value)
