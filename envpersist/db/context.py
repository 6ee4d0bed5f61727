"""
Persistence context: one backend connection plus one identity map.

A context pairs the engine of one environment label with a SQLAlchemy
``Session`` whose identity map decides which entities are managed.

A ``Session`` is not thread-safe, and every request routed to a label shares
that label's context. Each operation below holds the context's re-entrant
``lock``; callers that chain several steps into one unit of work (see
``PersistenceContextRegistry.transaction``) hold it for the whole block.
"""
from __future__ import annotations

import logging
import threading
from typing import Any, Dict, Optional, Type

from sqlalchemy import inspect, select, text
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from envpersist.utils.environments import EnvironmentLabel

logger = logging.getLogger(__name__)


class PersistenceContext:
    """Unit of work bound to exactly one environment label."""

    def __init__(self, label: EnvironmentLabel, engine: Engine):
        self.label = label
        self.engine = engine
        self._session_factory = sessionmaker(
            bind=engine, autoflush=False, autocommit=False, expire_on_commit=False
        )
        self.session: Session = self._session_factory()
        self.lock = threading.RLock()
        self.closed = False

    def __repr__(self) -> str:
        return f"<PersistenceContext label={self.label.value} managed={self.identity_map_size}>"

    def __eq__(self, other) -> bool:
        # Same label means same context, whatever the instance.
        if not isinstance(other, PersistenceContext):
            return NotImplemented
        return self.label == other.label

    def __hash__(self) -> int:
        return hash(self.label)

    @property
    def dialect(self) -> str:
        return self.engine.dialect.name

    @property
    def identity_map_size(self) -> int:
        with self.lock:
            return len(self.session.identity_map)

    def ping(self) -> None:
        """Open a connection and run a trivial query; raises on failure."""
        with self.engine.connect() as conn:
            conn.execute(text("SELECT 1"))

    def contains(self, entity: Any) -> bool:
        try:
            with self.lock:
                return entity in self.session
        except Exception:  # unmapped objects are never tracked
            return False

    def holds(self, entity: Any) -> bool:
        """True if the entity's instance state points at this context's session."""
        try:
            state = inspect(entity)
        except Exception:
            return False
        return state.session is self.session

    def find(self, entity_type: Type, entity_id: Any):
        with self.lock:
            return self.session.get(entity_type, entity_id)

    def execute(self, stmt):
        with self.lock:
            return self.session.execute(stmt)

    def fetch_row(self, entity_type: Type, entity_id: Any) -> Optional[Dict[str, Any]]:
        """Read the raw column values for an id without touching the identity map."""
        mapper = inspect(entity_type)
        table = mapper.local_table
        pk = mapper.primary_key[0]
        with self.lock:
            row = self.session.execute(select(table).where(pk == entity_id)).mappings().first()
        if row is None:
            return None
        return {attr.key: row[attr.columns[0].key] for attr in mapper.column_attrs}

    def add(self, entity: Any) -> None:
        with self.lock:
            self.session.add(entity)

    def merge(self, entity: Any):
        with self.lock:
            return self.session.merge(entity)

    def expunge(self, entity: Any) -> None:
        with self.lock:
            self.session.expunge(entity)

    def discard(self, entity: Any) -> bool:
        """Expunge ``entity`` if it is pending here; True when something was removed."""
        with self.lock:
            if entity in self.session and inspect(entity).pending:
                self.session.expunge(entity)
                return True
        return False

    def refresh(self, entity: Any) -> None:
        with self.lock:
            self.session.refresh(entity)

    def delete(self, entity: Any) -> None:
        with self.lock:
            self.session.delete(entity)

    def flush(self) -> None:
        with self.lock:
            self.session.flush()

    def commit(self) -> None:
        with self.lock:
            self.session.commit()

    def rollback(self) -> None:
        with self.lock:
            self.session.rollback()

    def in_transaction(self) -> bool:
        return self.session.in_transaction()

    def clear(self) -> None:
        """Detach every managed entity without touching stored data."""
        with self.lock:
            self.session.expunge_all()

    def close(self) -> None:
        if self.closed:
            return
        try:
            with self.lock:
                self.session.close()
        finally:
            self.closed = True
            logger.debug("persistence_context_closed: label=%s", self.label.value)
