"""
Database environment labels and per-request resolution.

Centralized definitions for the two backend labels plus the resolver that
picks one of them from request signals (query parameter, header, session).
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import FrozenSet, MutableMapping, Optional

logger = logging.getLogger(__name__)

ENV_DEV = "dev"
ENV_PROD = "prod"

ALL_ENVIRONMENTS: FrozenSet[str] = frozenset({ENV_DEV, ENV_PROD})

# Request signal names
ENV_QUERY_PARAM = "env"
ENV_HEADER = "X-Database-Env"
ENV_SESSION_KEY = "database_env"


class EnvironmentLabel(str, Enum):
    """Backend selector for a request."""
    dev = ENV_DEV
    prod = ENV_PROD


DEFAULT_ENVIRONMENT = EnvironmentLabel.prod


def parse_label(value) -> Optional[EnvironmentLabel]:
    """Return the label for a raw signal value, or None when it is not one."""
    if value is None:
        return None
    if isinstance(value, EnvironmentLabel):
        return value
    if not isinstance(value, str):
        return None
    normalized = value.strip().lower()
    if normalized in ALL_ENVIRONMENTS:
        return EnvironmentLabel(normalized)
    return None


def is_valid_label(value) -> bool:
    """Return True if the provided value names a supported environment."""
    return parse_label(value) is not None


@dataclass(frozen=True)
class EnvironmentSignals:
    """Raw inputs read at the request boundary."""
    query_param: Optional[str] = None
    header: Optional[str] = None
    session: Optional[MutableMapping[str, str]] = None


class EnvironmentResolver:
    """Resolve the environment label for one logical request.

    Precedence: explicit query parameter, explicit header, session-stored
    prior value, then the fixed default. Invalid values fall through. An
    explicit value is written back to the session so later signal-less
    requests in the same session reuse it.

    The first result is memoized; create one resolver per request or call
    ``reset()`` to resolve again.
    """

    def __init__(self, default: EnvironmentLabel = DEFAULT_ENVIRONMENT):
        self.default = default
        self._resolved: Optional[EnvironmentLabel] = None

    @property
    def resolved(self) -> Optional[EnvironmentLabel]:
        return self._resolved

    def resolve(self, signals: Optional[EnvironmentSignals] = None) -> EnvironmentLabel:
        if self._resolved is not None:
            return self._resolved

        signals = signals or EnvironmentSignals()
        session = signals.session

        label = parse_label(signals.query_param)
        source = "query"
        if label is None:
            label = parse_label(signals.header)
            source = "header"

        if label is not None:
            if session is not None:
                session[ENV_SESSION_KEY] = label.value
        elif session is not None and parse_label(session.get(ENV_SESSION_KEY)) is not None:
            label = parse_label(session.get(ENV_SESSION_KEY))
            source = "session"
        else:
            label = self.default
            source = "default"

        logger.debug("environment_resolved: label=%s source=%s", label.value, source)
        self._resolved = label
        return label

    def reset(self) -> None:
        """Forget the memoized label (next ``resolve`` reads the signals again)."""
        self._resolved = None
