"""
Entity validation before persistence.

Validation problems are returned as ``ValidationResult`` objects, never
raised. The services only read the entities they inspect.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, List

from envpersist.db.graph import NOT_LOADED, entity_id, read_attribute, type_name, walk
from envpersist.db.models import HasRequiredLabel

logger = logging.getLogger(__name__)


@dataclass
class ValidationResult:
    errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    info: List[str] = field(default_factory=list)

    @property
    def is_valid(self) -> bool:
        return not self.errors

    @property
    def has_errors(self) -> bool:
        return bool(self.errors)

    @property
    def has_warnings(self) -> bool:
        return bool(self.warnings)

    def add_error(self, message: str) -> "ValidationResult":
        self.errors.append(message)
        return self

    def add_warning(self, message: str) -> "ValidationResult":
        self.warnings.append(message)
        return self

    def add_info(self, message: str) -> "ValidationResult":
        self.info.append(message)
        return self

    def merge(self, other: "ValidationResult") -> "ValidationResult":
        """Append the other result's messages, keeping their order."""
        self.errors.extend(other.errors)
        self.warnings.extend(other.warnings)
        self.info.extend(other.info)
        return self

    def formatted_errors(self) -> str:
        return "; ".join(self.errors)

    def formatted_warnings(self) -> str:
        return "; ".join(self.warnings)


def label_required_message(entity: Any) -> str:
    return f"label is required for {type_name(entity)}"


class EntityValidationService:
    """Required-field validation over an entity and its reachable graph."""

    def validate_required_fields(self, entity: Any) -> ValidationResult:
        result = ValidationResult()
        if entity is None or not isinstance(entity, HasRequiredLabel):
            return result

        value = read_attribute(entity, entity.required_label_field)
        if value is NOT_LOADED:
            # Detached with an unloaded label: the stored row is authoritative.
            result.add_warning(
                f"{entity.required_label_field} of {type_name(entity)}#{entity_id(entity)} is not loaded; skipped"
            )
            return result
        if value is None or not str(value).strip():
            result.add_error(label_required_message(entity))
        return result

    def validate_for_persistence(self, entity: Any) -> ValidationResult:
        result = ValidationResult()
        if entity is None:
            result.add_error("cannot validate a missing entity")
            return result

        try:
            for _, _, node in walk(entity):
                result.merge(self.validate_required_fields(node))
        except Exception as e:
            result.add_error(f"validation of {type_name(entity)} failed: {e}")
            logger.error("entity_validation_error: entity=%s error=%s", type_name(entity), e)

        if not result.is_valid:
            logger.warning(
                "entity_validation_failed: entity=%s id=%s errors=%s",
                type_name(entity), entity_id(entity) or "new", result.errors,
            )
        return result
