"""Environment-scoped persistence routing for SQLAlchemy applications."""

__version__ = "1.0.0"
