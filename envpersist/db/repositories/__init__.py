"""
Environment-scoped repositories.

`base.EnvironmentScopedRepository` carries the generic CRUD; the per-domain
modules add finders for their entity types.
"""
from .base import EnvironmentScopedRepository, PaginationResult
from .companies import CompanyRepository, ShopRepository, BranchRepository
from .customers import CustomerRepository

__all__ = [
    "EnvironmentScopedRepository",
    "PaginationResult",
    "CompanyRepository",
    "ShopRepository",
    "BranchRepository",
    "CustomerRepository",
]
