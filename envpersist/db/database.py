"""
Database engine configuration per environment label.

Builds one SQLAlchemy engine per backend ("dev" / "prod") from environment
configuration, with an in-memory SQLite fallback when running under pytest.
"""
import logging
import os
import sys
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.pool import StaticPool

from envpersist.utils.environments import ALL_ENVIRONMENTS, EnvironmentLabel

logger = logging.getLogger(__name__)

_POSTGRES_PARTS = ("USER", "PASSWORD", "HOST", "PORT", "DB")

SQLITE_MEMORY_URL = "sqlite+pysqlite:///:memory:"


def _is_pytest_runtime() -> bool:
    """Best-effort detection that we're executing under pytest.

    ``PYTEST_CURRENT_TEST`` is only set while a test runs, so also look for
    the pytest package in ``sys.modules`` (present from collection on).
    ``PYTEST_RUNNING=1`` forces the answer.
    """
    if os.getenv("PYTEST_RUNNING") == "1":
        return True
    if "PYTEST_CURRENT_TEST" in os.environ:
        return True
    return "pytest" in sys.modules


def _get_database_url(label: str) -> Optional[str]:
    """Return the URL configured for ``label`` or None if nothing is set.

    ``<LABEL>_DATABASE_URL`` wins; otherwise the URL is composed from the
    ``<LABEL>_POSTGRES_*`` components, all of which must be present.
    """
    prefix = label.upper()
    explicit = os.getenv(f"{prefix}_DATABASE_URL")
    if explicit:
        return explicit

    values = {part: os.getenv(f"{prefix}_POSTGRES_{part}") for part in _POSTGRES_PARTS}
    if not any(values.values()):
        return None

    missing = [f"{prefix}_POSTGRES_{part}" for part, value in values.items() if not value]
    if missing:
        raise ValueError(f"Missing required database environment variables: {', '.join(missing)}")

    return (
        f"postgresql://{values['USER']}:{values['PASSWORD']}"
        f"@{values['HOST']}:{values['PORT']}/{values['DB']}"
    )


def engine_kwargs_for(url: str) -> Dict[str, Any]:
    """Engine keyword arguments suited to the URL's dialect."""
    if url.startswith("sqlite") and ":memory:" in url:
        # StaticPool so the in-memory schema persists across connections
        return {"connect_args": {"check_same_thread": False}, "poolclass": StaticPool}
    if url.startswith("sqlite"):
        return {"connect_args": {"check_same_thread": False}}
    return {"pool_pre_ping": True}


@dataclass
class BackendSettings:
    url: str
    engine_kwargs: Dict[str, Any] = field(default_factory=dict)

    @property
    def is_sqlite(self) -> bool:
        return self.url.startswith("sqlite")


@dataclass
class DatabaseSettings:
    """Connection settings for every environment label."""

    backends: Dict[EnvironmentLabel, BackendSettings] = field(default_factory=dict)

    @classmethod
    def from_urls(cls, urls: Dict[Any, str]) -> "DatabaseSettings":
        backends = {}
        for label, url in urls.items():
            backends[EnvironmentLabel(label)] = BackendSettings(url=url, engine_kwargs=engine_kwargs_for(url))
        return cls(backends=backends)

    @classmethod
    def from_env(cls) -> "DatabaseSettings":
        """Read settings from the process environment.

        Labels without configuration fall back to in-memory SQLite under
        pytest and are otherwise left unconfigured.
        """
        backends = {}
        for name in sorted(ALL_ENVIRONMENTS):
            label = EnvironmentLabel(name)
            url = _get_database_url(name)
            if url is None and _is_pytest_runtime():
                url = SQLITE_MEMORY_URL
            if url is None:
                logger.warning("database_unconfigured: label=%s", name)
                continue
            backends[label] = BackendSettings(url=url, engine_kwargs=engine_kwargs_for(url))
        return cls(backends=backends)

    def for_label(self, label: EnvironmentLabel) -> Optional[BackendSettings]:
        return self.backends.get(label)


def build_engine(backend: BackendSettings, create_schema: Optional[bool] = None) -> Engine:
    """Create the engine for one backend.

    SQLite schemas are created eagerly (``create_schema=None``) so fresh
    in-memory databases are usable straight away. Server databases are owned
    by the surrounding application's migrations.
    """
    engine = create_engine(backend.url, **backend.engine_kwargs)
    if create_schema is None:
        create_schema = backend.is_sqlite
    if create_schema:
        from envpersist.db import models  # local import to avoid circular import at module load
        models.Base.metadata.create_all(bind=engine)
    return engine
