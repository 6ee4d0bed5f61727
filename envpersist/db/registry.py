"""
Registry of persistence contexts keyed by environment label.

The registry is owned by the composition root (see ``envpersist.api.main``)
and injected into repositories and services. It hands out the context for
the active label and clears the other contexts' identity maps the first time
a new label is used, so an entity managed under one label is never treated as
managed under another.
"""
from __future__ import annotations

import logging
import threading
from contextlib import contextmanager
from contextvars import ContextVar, Token
from typing import Any, Dict, Iterator, Optional

from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from envpersist.db.context import PersistenceContext
from envpersist.db.database import DatabaseSettings, build_engine
from envpersist.exceptions import ContextError
from envpersist.utils.environments import DEFAULT_ENVIRONMENT, EnvironmentLabel, parse_label

logger = logging.getLogger(__name__)


class PersistenceContextRegistry:
    """Label → context cache with single-context-per-label semantics."""

    def __init__(self, settings: DatabaseSettings, *, create_schema: Optional[bool] = None):
        self.settings = settings
        self.create_schema = create_schema
        self._engines: Dict[EnvironmentLabel, Engine] = {}
        self._contexts: Dict[EnvironmentLabel, PersistenceContext] = {}
        self._lock = threading.RLock()
        self._active: ContextVar[Optional[EnvironmentLabel]] = ContextVar(
            f"envpersist_active_label_{id(self)}", default=None
        )

    # --- label handling -------------------------------------------------

    @staticmethod
    def _coerce(label) -> EnvironmentLabel:
        parsed = parse_label(label)
        if parsed is None:
            raise ContextError(str(label), f"Unknown environment label '{label}'")
        return parsed

    @property
    def current_label(self) -> EnvironmentLabel:
        return self._active.get() or DEFAULT_ENVIRONMENT

    def activate(self, label) -> PersistenceContext:
        """Make ``label`` the active one for the current execution context."""
        label = self._coerce(label)
        context = self.get_context(label)
        self._active.set(label)
        return context

    def bind(self, label) -> Token:
        """Activate ``label`` and return a token for ``deactivate``."""
        label = self._coerce(label)
        self.get_context(label)
        return self._active.set(label)

    def deactivate(self, token: Token) -> None:
        self._active.reset(token)

    @contextmanager
    def using(self, label) -> Iterator[PersistenceContext]:
        """Temporarily activate ``label``."""
        token = self.bind(label)
        try:
            yield self.get_context(self._coerce(label))
        finally:
            self.deactivate(token)

    # --- contexts -------------------------------------------------------

    def _engine_for(self, label: EnvironmentLabel) -> Engine:
        engine = self._engines.get(label)
        if engine is not None:
            return engine
        backend = self.settings.for_label(label)
        if backend is None:
            raise ContextError(label.value, f"No database configured for environment '{label.value}'")
        try:
            engine = build_engine(backend, create_schema=self.create_schema)
        except (SQLAlchemyError, OSError) as e:
            logger.error("engine_creation_failed: label=%s error=%s", label.value, e)
            raise ContextError(label.value, f"Persistence context '{label.value}' is unavailable: {e}") from e
        self._engines[label] = engine
        return engine

    def get_context(self, label) -> PersistenceContext:
        """Return the memoized context for ``label``, creating it on first use."""
        label = self._coerce(label)
        with self._lock:
            context = self._contexts.get(label)
            if context is not None:
                return context

            # New label in this cycle: nothing managed elsewhere may leak in.
            for other in self._contexts.values():
                other.clear()

            context = PersistenceContext(label, self._engine_for(label))
            try:
                context.ping()
            except SQLAlchemyError as e:
                context.close()
                logger.error("context_unreachable: label=%s error=%s", label.value, e)
                raise ContextError(label.value, f"Persistence context '{label.value}' is unavailable: {e}") from e

            self._contexts[label] = context
            logger.info("persistence_context_created: label=%s dialect=%s", label.value, context.dialect)
            return context

    def current_context(self) -> PersistenceContext:
        return self.get_context(self.current_label)

    def peek_context(self, label=None) -> Optional[PersistenceContext]:
        """Cached context for ``label`` (default: active label) without creating one."""
        label = self.current_label if label is None else self._coerce(label)
        with self._lock:
            return self._contexts.get(label)

    def cached_labels(self):
        with self._lock:
            return list(self._contexts.keys())

    def live_contexts(self):
        with self._lock:
            return list(self._contexts.values())

    def owner_label(self, entity: Any) -> Optional[EnvironmentLabel]:
        """Label of the live context whose identity map holds ``entity``."""
        for context in self.live_contexts():
            if context.holds(entity):
                return context.label
        return None

    def reset_environment(self) -> None:
        """Drop the active label and every memoized context.

        Engines are kept so in-memory databases and connection pools survive;
        use ``dispose`` to release them.
        """
        with self._lock:
            for context in self._contexts.values():
                context.close()
            self._contexts.clear()
        self._active.set(None)
        logger.info("environment_reset")

    def dispose(self) -> None:
        self.reset_environment()
        with self._lock:
            for engine in self._engines.values():
                engine.dispose()
            self._engines.clear()

    # --- transactions ---------------------------------------------------

    @contextmanager
    def transaction(self) -> Iterator[PersistenceContext]:
        """Run a block on the active context; commit on success, roll back on error."""
        context = self.current_context()
        with context.lock:
            try:
                yield context
                context.commit()
            except Exception:
                context.rollback()
                raise

    def is_transaction_active(self) -> bool:
        return self.current_context().in_transaction()
