"""
Customer repository.
"""
from __future__ import annotations

from typing import List, Optional

from envpersist.db import models
from envpersist.db.repositories.base import EnvironmentScopedRepository


class CustomerRepository(EnvironmentScopedRepository[models.Customer]):
    model = models.Customer

    def find_by_number(self, number: str) -> Optional[models.Customer]:
        if not number:
            return None
        return self.find_one_by({"number": number})

    def find_by_shop(self, shop_id: int, skip: int = 0, limit: int = 100) -> List[models.Customer]:
        return self.find_by(
            {"shop_id": shop_id},
            order_by=[("last_name", "asc"), ("id", "asc")],
            limit=limit,
            offset=skip,
        )

    def count_by_company(self, company_id: int) -> int:
        return self.count({"company_id": company_id})
