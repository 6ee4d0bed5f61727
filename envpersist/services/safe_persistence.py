"""
Validate-then-write operations over whole entity graphs.

Each operation validates first and only then touches the unit of work. When
the write step fails the active context is rolled back, so nothing from a
partially normalised cascade can reach a later commit. Committing stays with
the caller (``registry.transaction()`` or a repository ``save``).
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from sqlalchemy.exc import SQLAlchemyError

from envpersist.db.context import PersistenceContext
from envpersist.db.graph import entity_id, related, type_name
from envpersist.db.registry import PersistenceContextRegistry
from envpersist.services.cascade_validator import CascadeOperationValidator
from envpersist.services.lifecycle import EntityLifecycleManager
from envpersist.services.validation import EntityValidationService, ValidationResult

logger = logging.getLogger(__name__)


@dataclass
class SafePersistenceResult:
    success: bool
    entity: Any = None
    message: str = ""
    errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    info: List[str] = field(default_factory=list)

    @classmethod
    def ok(cls, entity: Any, message: str, validation: Optional[ValidationResult] = None) -> "SafePersistenceResult":
        validation = validation or ValidationResult()
        return cls(
            success=True,
            entity=entity,
            message=message,
            warnings=list(validation.warnings),
            info=list(validation.info),
        )

    @classmethod
    def failed(
        cls, message: str, validation: Optional[ValidationResult] = None, entity: Any = None
    ) -> "SafePersistenceResult":
        validation = validation or ValidationResult()
        return cls(
            success=False,
            entity=entity,
            message=message,
            errors=list(validation.errors) or [message],
            warnings=list(validation.warnings),
            info=list(validation.info),
        )

    @property
    def has_warnings(self) -> bool:
        return bool(self.warnings)

    def formatted_errors(self) -> str:
        return "; ".join(self.errors)


class SafePersistenceHandler:
    def __init__(
        self,
        registry: PersistenceContextRegistry,
        lifecycle: Optional[EntityLifecycleManager] = None,
        cascade_validator: Optional[CascadeOperationValidator] = None,
        validation_service: Optional[EntityValidationService] = None,
    ):
        self.registry = registry
        self.validation_service = validation_service or EntityValidationService()
        self.lifecycle = lifecycle or EntityLifecycleManager(registry)
        self.cascade_validator = cascade_validator or CascadeOperationValidator(registry, self.validation_service)

    # --- persist --------------------------------------------------------

    def safe_persist(self, entity: Any, flush: bool = False) -> SafePersistenceResult:
        """Validate the graph of ``entity`` and register it with the active context."""
        if entity is None:
            return SafePersistenceResult.failed("no entity to persist")

        validation = self.cascade_validator.validate_cascade_operations(entity)
        if validation.has_errors:
            logger.warning(
                "safe_persist_rejected: entity=%s errors=%s", type_name(entity), validation.formatted_errors()
            )
            return SafePersistenceResult.failed("cascade validation failed", validation, entity)

        context = self.registry.current_context()
        try:
            root = self._normalize(entity, context, {})
            context.add(root)
            if flush:
                context.flush()
        except SQLAlchemyError as e:
            context.rollback()
            logger.error("safe_persist_failed: entity=%s environment=%s error=%s", type_name(entity), context.label.value, e)
            return SafePersistenceResult.failed(f"persist failed: {e}", validation, entity)
        except Exception:
            context.rollback()
            raise

        logger.info(
            "entity_persisted: entity=%s id=%s environment=%s",
            type_name(root), entity_id(root) or "pending", context.label.value,
        )
        return SafePersistenceResult.ok(root, f"{type_name(root)} persisted", validation)

    def _normalize(self, node: Any, context: PersistenceContext, memo: Dict[int, Any]):
        """Bring ``node`` and everything it references into ``context``, children first.

        Returns the instance tracked by ``context``. Only parents that are new
        and free to attach get their relations repointed; nodes held by
        another context are merged as copies and left untouched.
        """
        key = id(node)
        if key in memo:
            return memo[key]
        memo[key] = node

        owner = self.registry.owner_label(node)
        repointable = entity_id(node) is None and (owner is None or owner == context.label)
        for name, child in related(node):
            attached = self._normalize(child, context, memo)
            if attached is not child and repointable:
                setattr(node, name, attached)

        if context.contains(node):
            result = node
        elif repointable:
            context.add(node)
            result = node
        else:
            result = context.merge(node)
            logger.debug(
                "entity_copied: entity=%s id=%s environment=%s", type_name(node), entity_id(node), context.label.value
            )
        memo[key] = result
        return result

    # --- update ---------------------------------------------------------

    def safe_update(self, entity: Any, flush: bool = False) -> SafePersistenceResult:
        """Apply the state of a stored entity to the active context."""
        if entity is None:
            return SafePersistenceResult.failed("no entity to update")
        ident = entity_id(entity)
        if ident is None:
            return SafePersistenceResult.failed(f"cannot update new {type_name(entity)}; persist it first", entity=entity)

        context = self.registry.current_context()
        validation = ValidationResult()
        validation.merge(self.validation_service.validate_for_persistence(entity))
        validation.merge(self.cascade_validator.validate_related_entity_states(entity))
        if not context.contains(entity) and context.fetch_row(type(entity), ident) is None:
            validation.add_error(
                f"{type_name(entity)}#{ident} does not exist in persistence context '{context.label.value}'"
            )
        if validation.has_errors:
            logger.warning("safe_update_rejected: entity=%s errors=%s", type_name(entity), validation.formatted_errors())
            return SafePersistenceResult.failed("update validation failed", validation, entity)

        try:
            managed = entity if context.contains(entity) else context.merge(entity)
            if flush:
                context.flush()
        except SQLAlchemyError as e:
            context.rollback()
            logger.error("safe_update_failed: entity=%s id=%s error=%s", type_name(entity), ident, e)
            return SafePersistenceResult.failed(f"update failed: {e}", validation, entity)
        except Exception:
            context.rollback()
            raise

        logger.info("entity_updated: entity=%s id=%s environment=%s", type_name(managed), ident, context.label.value)
        return SafePersistenceResult.ok(managed, f"{type_name(managed)} updated", validation)

    # --- remove ---------------------------------------------------------

    def safe_remove(self, entity: Any, flush: bool = False) -> SafePersistenceResult:
        if entity is None:
            return SafePersistenceResult.failed("no entity to remove")
        ident = entity_id(entity)
        if ident is None:
            return SafePersistenceResult.failed(f"cannot remove new {type_name(entity)}", entity=entity)

        context = self.registry.current_context()
        managed = self.lifecycle.ensure_managed(entity)
        if not context.contains(managed):
            return SafePersistenceResult.failed(
                f"{type_name(entity)}#{ident} does not exist in persistence context '{context.label.value}'",
                entity=entity,
            )

        validation = self.cascade_validator.validate_cascade_operations(managed)
        if validation.has_errors:
            logger.warning("safe_remove_rejected: entity=%s errors=%s", type_name(entity), validation.formatted_errors())
            return SafePersistenceResult.failed("remove validation failed", validation, entity)

        try:
            context.delete(managed)
            if flush:
                context.flush()
        except SQLAlchemyError as e:
            context.rollback()
            logger.error("safe_remove_failed: entity=%s id=%s error=%s", type_name(entity), ident, e)
            return SafePersistenceResult.failed(f"remove failed: {e}", validation, entity)
        except Exception:
            context.rollback()
            raise

        logger.info("entity_removed: entity=%s id=%s environment=%s", type_name(managed), ident, context.label.value)
        return SafePersistenceResult.ok(managed, f"{type_name(managed)} removed", validation)
