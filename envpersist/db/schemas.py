from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict


class EnvironmentInfo(BaseModel):
    environment: str
    dialect: str
    identity_map_size: int
    cached_environments: List[str] = []


class HealthStatus(BaseModel):
    status: str
    environment: str
    database: str
    detail: Optional[str] = None


# Read schemas
class CompanyBase(BaseModel):
    label: Optional[str] = None
    email: Optional[str] = None
    is_active: Optional[bool] = True


class Company(CompanyBase):
    id: int
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class CompanyPage(BaseModel):
    items: List[Company]
    total_count: int
    current_page: int
    total_pages: int
    has_next_page: bool
