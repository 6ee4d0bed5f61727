"""
Domain-split SQLAlchemy models.

Exposes `Base`, `now_utc`, the entity capabilities and all ORM classes.
"""

from .base import Base, now_utc, HasRequiredLabel, GraphNode  # re-export

# Domain models
from .companies import Company, Shop, Branch
from .customers import Customer

__all__ = [
    # base
    "Base",
    "now_utc",
    "HasRequiredLabel",
    "GraphNode",
    # organisation
    "Company",
    "Shop",
    "Branch",
    # customers
    "Customer",
]
