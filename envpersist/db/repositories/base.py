"""
Environment-scoped repository base.

Every call reads the registry's active context at call time, so a repository
instance can be shared across requests that target different backends.
Entities returned earlier are never migrated when the environment changes;
callers re-read or merge them explicitly.
"""
from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import Any, Dict, Generic, Iterable, List, Mapping, Optional, Sequence, Tuple, Type, TypeVar, Union

from sqlalchemy import func, inspect, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from envpersist.db.context import PersistenceContext
from envpersist.db.proxies import Unloaded
from envpersist.db.registry import PersistenceContextRegistry
from envpersist.exceptions import InvalidCriteriaError, QueryExecutionError

logger = logging.getLogger(__name__)

T = TypeVar("T")

OrderBy = Union[Mapping[str, str], Sequence[Tuple[str, str]], None]

_DIRECTIONS = ("asc", "desc")


@dataclass(frozen=True)
class PaginationResult(Generic[T]):
    items: List[T]
    total_count: int
    current_page: int
    items_per_page: int

    @property
    def total_pages(self) -> int:
        if self.items_per_page <= 0:
            return 0
        return int(math.ceil(self.total_count / self.items_per_page))

    @property
    def has_next_page(self) -> bool:
        return self.current_page < self.total_pages

    @property
    def has_previous_page(self) -> bool:
        return self.current_page > 1


class EnvironmentScopedRepository(Generic[T]):
    """CRUD facade bound to whichever persistence context is active."""

    model: Type[T]

    def __init__(self, registry: PersistenceContextRegistry, model: Optional[Type[T]] = None):
        self.registry = registry
        if model is not None:
            self.model = model
        if getattr(self, "model", None) is None:
            raise TypeError(f"{type(self).__name__} requires a model class")

    # --- plumbing -------------------------------------------------------

    @property
    def context(self) -> PersistenceContext:
        return self.registry.current_context()

    @property
    def session(self) -> Session:
        return self.context.session

    @property
    def field_names(self) -> List[str]:
        return [attr.key for attr in inspect(self.model).column_attrs]

    def _column(self, name: str):
        return getattr(self.model, name)

    def _check_fields(self, names: Iterable[str], method: str) -> None:
        valid = set(self.field_names)
        invalid = [n for n in names if n not in valid]
        if invalid:
            raise InvalidCriteriaError.invalid_fields(invalid, valid, type(self).__name__, method)

    def _normalize_order(self, order_by: OrderBy, method: str) -> List[Tuple[str, str]]:
        if not order_by:
            return []
        pairs = list(order_by.items()) if isinstance(order_by, Mapping) else list(order_by)
        self._check_fields([field for field, _ in pairs], method)
        normalized = []
        for field, direction in pairs:
            direction = (direction or "asc").lower()
            if direction not in _DIRECTIONS:
                raise InvalidCriteriaError(
                    f"Invalid sort direction '{direction}' for '{field}'",
                    [field],
                    self.field_names,
                    repository=type(self).__name__,
                    method=method,
                    context={"type": "invalid_direction"},
                )
            normalized.append((field, direction))
        return normalized

    def _filtered(self, stmt, criteria: Optional[Mapping[str, Any]], method: str):
        criteria = criteria or {}
        self._check_fields(criteria.keys(), method)
        for field, value in criteria.items():
            stmt = stmt.where(self._column(field) == value)
        return stmt

    def _execute(self, method: str, stmt, scalar: bool = False):
        try:
            if scalar:
                return self.context.execute(stmt).scalar_one()
            return list(self.context.execute(stmt).unique().scalars().all())
        except SQLAlchemyError as e:
            logger.error("query_failed: repository=%s method=%s error=%s", type(self).__name__, method, e)
            raise QueryExecutionError(
                f"Query failed: {e}",
                repository=type(self).__name__,
                method=method,
                context={"environment": self.registry.current_label.value},
            ) from e

    # --- reads ----------------------------------------------------------

    def find_by_id(self, entity_id) -> Optional[T]:
        if entity_id is None:
            return None
        try:
            return self.context.find(self.model, entity_id)
        except SQLAlchemyError as e:
            raise QueryExecutionError(
                f"Query failed: {e}", repository=type(self).__name__, method="find_by_id"
            ) from e

    def find_all(self) -> List[T]:
        return self._execute("find_all", select(self.model))

    def find_by(
        self,
        criteria: Optional[Mapping[str, Any]] = None,
        order_by: OrderBy = None,
        limit: Optional[int] = None,
        offset: Optional[int] = None,
    ) -> List[T]:
        stmt = self._filtered(select(self.model), criteria, "find_by")
        for field, direction in self._normalize_order(order_by, "find_by"):
            column = self._column(field)
            stmt = stmt.order_by(column.desc() if direction == "desc" else column.asc())
        if limit is not None:
            stmt = stmt.limit(limit)
        if offset is not None:
            stmt = stmt.offset(offset)
        return self._execute("find_by", stmt)

    def find_one_by(self, criteria: Optional[Mapping[str, Any]] = None, order_by: OrderBy = None) -> Optional[T]:
        rows = self.find_by(criteria, order_by=order_by, limit=1)
        return rows[0] if rows else None

    def count(self, criteria: Optional[Mapping[str, Any]] = None) -> int:
        stmt = self._filtered(select(func.count()).select_from(self.model), criteria, "count")
        return int(self._execute("count", stmt, scalar=True))

    def paginate(
        self,
        page: int = 1,
        per_page: int = 20,
        criteria: Optional[Mapping[str, Any]] = None,
        order_by: OrderBy = None,
    ) -> PaginationResult[T]:
        page = max(1, page)
        per_page = max(1, per_page)
        items = self.find_by(criteria, order_by=order_by, limit=per_page, offset=(page - 1) * per_page)
        return PaginationResult(items=items, total_count=self.count(criteria), current_page=page, items_per_page=per_page)

    def reference(self, entity_id) -> Unloaded[T]:
        """Lazy stand-in read from whichever context is active when resolved."""
        return Unloaded(self.model, entity_id, lambda entity_type, ident: self.registry.current_context().find(entity_type, ident))

    # --- writes ---------------------------------------------------------

    def save(self, entity: T, flush: bool = True) -> T:
        context = self.context
        self._stage(context, context.add, entity, "save")
        if flush:
            self._commit(context, "save")
        return entity

    def remove(self, entity: T, flush: bool = True) -> None:
        context = self.context
        self._stage(context, context.delete, entity, "remove")
        if flush:
            self._commit(context, "remove")

    def flush(self) -> None:
        self._commit(self.context, "flush")

    def _stage(self, context: PersistenceContext, operation, entity: T, method: str) -> None:
        # An entity still held by another context's session is rejected here;
        # it has to be merged into the active context first.
        try:
            operation(entity)
        except SQLAlchemyError as e:
            context.discard(entity)
            raise QueryExecutionError(
                f"Cannot stage {type(entity).__name__} in persistence context '{context.label.value}': {e}",
                repository=type(self).__name__,
                method=method,
                context={"environment": context.label.value},
            ) from e

    def _commit(self, context: PersistenceContext, method: str) -> None:
        try:
            context.commit()
        except SQLAlchemyError as e:
            context.rollback()
            logger.error(
                "write_failed: repository=%s method=%s environment=%s error=%s",
                type(self).__name__, method, context.label.value, e,
            )
            raise QueryExecutionError(
                f"Write failed: {e}",
                repository=type(self).__name__,
                method=method,
                context={"environment": context.label.value},
            ) from e
