"""
Exceptions raised by the persistence routing layer.

Only infrastructure failures are raised. Business-rule violations are
returned as ``ValidationResult`` objects by the validation services.
"""
from __future__ import annotations

import json
from typing import Any, Dict, Iterable, Optional


class EnvPersistError(Exception):
    """Base class for envpersist errors."""


class ContextError(EnvPersistError):
    """The backend for an environment label cannot be reached or is not configured."""

    def __init__(self, label: str, message: Optional[str] = None):
        self.label = label
        super().__init__(message or f"Persistence context '{label}' is unavailable")


class RepositoryError(EnvPersistError):
    """Base class for repository-related errors."""

    def __init__(
        self,
        message: str = "",
        *,
        repository: str = "",
        method: str = "",
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.repository = repository
        self.method = method
        self.context = context or {}

    def formatted_message(self) -> str:
        message = str(self)
        if self.repository:
            message += f" [Repository: {self.repository}]"
        if self.method:
            message += f" [Method: {self.method}]"
        if self.context:
            message += f" [Context: {json.dumps(self.context, default=str, ensure_ascii=False)}]"
        return message


class InvalidCriteriaError(RepositoryError):
    """Raised when criteria or ordering reference unknown fields or directions."""

    def __init__(
        self,
        message: str,
        invalid: Iterable[str] = (),
        valid: Iterable[str] = (),
        **kwargs,
    ):
        super().__init__(message, **kwargs)
        self.invalid = list(invalid)
        self.valid = sorted(valid)

    @classmethod
    def invalid_fields(cls, invalid, valid, repository: str, method: str) -> "InvalidCriteriaError":
        return cls(
            "Invalid field names: " + ", ".join(invalid),
            invalid,
            valid,
            repository=repository,
            method=method,
            context={"type": "invalid_fields"},
        )


class QueryExecutionError(RepositoryError):
    """Raised when a query or flush fails in the backend."""


__all__ = [
    "EnvPersistError",
    "ContextError",
    "RepositoryError",
    "InvalidCriteriaError",
    "QueryExecutionError",
]
