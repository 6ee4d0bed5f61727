from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, Index
from sqlalchemy.orm import relationship

from .base import Base, GraphNode, now_utc


class Customer(GraphNode, Base):
    __tablename__ = 'customers'
    __validated_relations__ = ('company', 'shop', 'branch')

    id = Column(Integer, primary_key=True, autoincrement=True)
    number = Column(String(255), nullable=True, unique=True)
    last_name = Column(String(255), nullable=True)
    first_name = Column(String(255), nullable=True)
    company_id = Column(Integer, ForeignKey('companies.id'), nullable=True)
    shop_id = Column(Integer, ForeignKey('shops.id'), nullable=True)
    branch_id = Column(Integer, ForeignKey('branches.id'), nullable=True)
    created_at = Column(DateTime(timezone=True), default=now_utc)
    updated_at = Column(DateTime(timezone=True), default=now_utc, onupdate=now_utc)

    company = relationship("Company", lazy="joined")
    shop = relationship("Shop", lazy="joined")
    branch = relationship("Branch", lazy="joined")

    __table_args__ = (
        Index('idx_customers_company_id', 'company_id'),
        Index('idx_customers_shop_id', 'shop_id'),
    )
