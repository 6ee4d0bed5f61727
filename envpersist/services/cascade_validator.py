"""
Cascade validation: checks a whole entity graph before a cascading save.

Combines required-field validation, related-entity state checks and
same-persistence-context checks against the registry's active context.
Problems are reported in the returned ``ValidationResult``; nothing here
raises for odd graphs (null links, ids that were never persisted, entities
held by another context).

Lifecycle inconsistencies are reported with a ``cascade blocked:`` prefix
and name the type, id and persistence context label involved.
"""
from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Optional

from envpersist.db.context import PersistenceContext
from envpersist.db.graph import edges, entity_id, is_mapped, scalar_values, type_name, walk
from envpersist.db.registry import PersistenceContextRegistry
from envpersist.services.validation import EntityValidationService, ValidationResult

logger = logging.getLogger(__name__)


def _same_value(stored: Any, current: Any) -> bool:
    # SQLite hands back naive datetimes for timezone-aware columns.
    if isinstance(stored, datetime) and isinstance(current, datetime):
        if (stored.tzinfo is None) != (current.tzinfo is None):
            return stored.replace(tzinfo=None) == current.replace(tzinfo=None)
    return stored == current


def _describe(entity: Any) -> str:
    ident = entity_id(entity)
    return f"{type_name(entity)}#{ident}" if ident is not None else f"new {type_name(entity)}"


class CascadeOperationValidator:
    def __init__(
        self,
        registry: PersistenceContextRegistry,
        entity_validation_service: Optional[EntityValidationService] = None,
    ):
        self.registry = registry
        self.entity_validation_service = entity_validation_service or EntityValidationService()

    def validate_cascade_operations(self, entity: Any) -> ValidationResult:
        """Run every cascade check on the graph reachable from ``entity``."""
        result = ValidationResult()
        if entity is None:
            return result.add_error("cascade blocked: no entity to validate")
        if not is_mapped(entity):
            return result.add_error(f"cascade blocked: {type_name(entity)} is not a mapped entity")

        result.merge(self.entity_validation_service.validate_for_persistence(entity))
        result.merge(self.validate_related_entity_states(entity))
        result.merge(self.ensure_same_persistence_context(entity))
        return result

    def validate_related_entity_states(self, entity: Any) -> ValidationResult:
        """Flag new entities that reference stored entities the active backend lacks."""
        result = ValidationResult()
        if entity is None:
            return result
        try:
            context = self.registry.current_context()
            for parent, relation, child in edges(entity):
                if entity_id(parent) is not None:
                    continue
                child_id = entity_id(child)
                if child_id is None or context.contains(child):
                    continue
                if context.fetch_row(type(child), child_id) is None:
                    result.add_error(
                        f"cascade blocked: {_describe(parent)}.{relation} references {_describe(child)}, "
                        f"which does not exist in persistence context '{context.label.value}' and cannot be reconciled"
                    )
                else:
                    result.add_info(
                        f"{_describe(child)} referenced by {type_name(parent)}.{relation} is detached and will be merged"
                    )
        except Exception as e:
            result.add_error(f"cascade blocked: related entity state check failed for {_describe(entity)}: {e}")
            logger.error("related_state_validation_error: entity=%s error=%s", type_name(entity), e)
        return result

    def ensure_same_persistence_context(self, entity: Any) -> ValidationResult:
        """Every node must end up in the active context; conflicting copies are errors."""
        result = ValidationResult()
        if entity is None:
            return result
        try:
            context = self.registry.current_context()
            for _, _, node in walk(entity):
                self._check_node_context(node, context, result)
        except Exception as e:
            result.add_error(f"cascade blocked: persistence context check failed for {_describe(entity)}: {e}")
            logger.error("persistence_context_validation_error: entity=%s error=%s", type_name(entity), e)
        return result

    def _check_node_context(self, node: Any, context: PersistenceContext, result: ValidationResult) -> None:
        node_id = entity_id(node)
        if context.contains(node) or node_id is None:
            return

        owner = self.registry.owner_label(node)
        if owner is None:
            result.add_warning(
                f"{_describe(node)} is detached from persistence context '{context.label.value}' and will be merged"
            )
            return

        stored = context.fetch_row(type(node), node_id)
        if stored is None:
            result.add_warning(
                f"{_describe(node)} is managed by persistence context '{owner.value}' "
                f"and will be copied into '{context.label.value}'"
            )
            return

        current = scalar_values(node)
        diverging = sorted(k for k, v in current.items() if k in stored and not _same_value(stored[k], v))
        if diverging:
            result.add_error(
                f"cascade blocked: {_describe(node)} is managed by persistence context '{owner.value}' "
                f"with data diverging from '{context.label.value}' ({', '.join(diverging)})"
            )
        else:
            result.add_warning(
                f"{_describe(node)} is managed by persistence context '{owner.value}' "
                f"and matches '{context.label.value}'; it will be merged"
            )
