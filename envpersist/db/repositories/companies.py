"""
Company, shop and branch repositories.
"""
from __future__ import annotations

from typing import List, Optional

from sqlalchemy import func, select

from envpersist.db import models
from envpersist.db.repositories.base import EnvironmentScopedRepository


class CompanyRepository(EnvironmentScopedRepository[models.Company]):
    model = models.Company

    def find_by_label(self, label: str) -> Optional[models.Company]:
        stmt = select(models.Company).where(func.lower(models.Company.label) == func.lower(label))
        rows = self._execute("find_by_label", stmt.limit(1))
        return rows[0] if rows else None

    def find_active(self) -> List[models.Company]:
        return self.find_by({"is_active": True}, order_by=[("label", "asc")])


class ShopRepository(EnvironmentScopedRepository[models.Shop]):
    model = models.Shop

    def find_by_company(self, company_id: int, skip: int = 0, limit: int = 100) -> List[models.Shop]:
        return self.find_by({"company_id": company_id}, order_by=[("id", "asc")], limit=limit, offset=skip)


class BranchRepository(EnvironmentScopedRepository[models.Branch]):
    model = models.Branch

    def find_by_shop(self, shop_id: int) -> List[models.Branch]:
        return self.find_by({"shop_id": shop_id}, order_by=[("id", "asc")])
