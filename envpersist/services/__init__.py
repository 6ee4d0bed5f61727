"""
Validation and lifecycle services built on the persistence context registry.
"""
from .validation import EntityValidationService, ValidationResult
from .cascade_validator import CascadeOperationValidator
from .lifecycle import EntityLifecycleManager
from .safe_persistence import SafePersistenceHandler, SafePersistenceResult

__all__ = [
    "EntityValidationService",
    "ValidationResult",
    "CascadeOperationValidator",
    "EntityLifecycleManager",
    "SafePersistenceHandler",
    "SafePersistenceResult",
]
