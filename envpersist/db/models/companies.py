from sqlalchemy import Column, Integer, String, DateTime, Boolean, ForeignKey, Index
from sqlalchemy.orm import relationship

from .base import Base, GraphNode, HasRequiredLabel, now_utc


class Company(GraphNode, HasRequiredLabel, Base):
    __tablename__ = 'companies'
    id = Column(Integer, primary_key=True, autoincrement=True)
    email = Column(String(255), nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), default=now_utc)
    updated_at = Column(DateTime(timezone=True), default=now_utc, onupdate=now_utc)


class Shop(GraphNode, HasRequiredLabel, Base):
    __tablename__ = 'shops'
    __validated_relations__ = ('company',)

    id = Column(Integer, primary_key=True, autoincrement=True)
    contact = Column(String(255), nullable=True)
    situation = Column(String(255), nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)
    company_id = Column(Integer, ForeignKey('companies.id'), nullable=True)
    created_at = Column(DateTime(timezone=True), default=now_utc)
    updated_at = Column(DateTime(timezone=True), default=now_utc, onupdate=now_utc)

    company = relationship("Company", lazy="joined")

    __table_args__ = (
        Index('idx_shops_company_id', 'company_id'),
    )


class Branch(GraphNode, HasRequiredLabel, Base):
    __tablename__ = 'branches'
    __validated_relations__ = ('shop', 'company')

    id = Column(Integer, primary_key=True, autoincrement=True)
    contact = Column(String(255), nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)
    shop_id = Column(Integer, ForeignKey('shops.id'), nullable=True)
    company_id = Column(Integer, ForeignKey('companies.id'), nullable=True)
    created_at = Column(DateTime(timezone=True), default=now_utc)
    updated_at = Column(DateTime(timezone=True), default=now_utc, onupdate=now_utc)

    shop = relationship("Shop", lazy="joined")
    company = relationship("Company", lazy="joined")

    __table_args__ = (
        Index('idx_branches_shop_id', 'shop_id'),
        Index('idx_branches_company_id', 'company_id'),
    )
