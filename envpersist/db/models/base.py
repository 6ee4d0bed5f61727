"""
Shared SQLAlchemy base and entity capabilities.
"""
from datetime import datetime, UTC

from sqlalchemy import Column, String
from sqlalchemy.orm import declarative_base


def now_utc():
    """Return an aware UTC datetime for default/updated timestamps."""
    return datetime.now(UTC)


Base = declarative_base()


class HasRequiredLabel:
    """Capability mixin: the entity carries a label that must not be blank.

    Validators dispatch on ``isinstance(entity, HasRequiredLabel)``.
    """

    required_label_field = "label"

    label = Column(String(255), nullable=True)


class GraphNode:
    """Mixin for entities that take part in cascade validation.

    ``__validated_relations__`` lists the many-to-one relationship attributes
    walked when a graph is validated or normalized.
    """

    __validated_relations__: tuple = ()

    def __repr__(self) -> str:
        return f"<{type(self).__name__} id={getattr(self, 'id', None)!r}>"
