"""
Reference data used to enrich outbound document payloads.

Documents store ids only; the payload carries the names and codes the
external system matches on.
"""
from sqlalchemy import Column, Integer, String, ForeignKey

from app.db.database import Base


class Warehouse(Base):
    __tablename__ = "warehouses"

    id = Column(Integer, primary_key=True, index=True)
    organization_id = Column(Integer, ForeignKey("organizations.id"), nullable=True, index=True)
    code = Column(String(50), nullable=True)
    name = Column(String(255), nullable=False)


class BankAccount(Base):
    __tablename__ = "bank_accounts"

    id = Column(Integer, primary_key=True, index=True)
    organization_id = Column(Integer, ForeignKey("organizations.id"), nullable=True, index=True)
    code = Column(String(50), nullable=True)  # account number
    name = Column(String(255), nullable=False)


class Contract(Base):
    __tablename__ = "contracts"

    id = Column(Integer, primary_key=True, index=True)
    organization_id = Column(Integer, ForeignKey("organizations.id"), nullable=True, index=True)
    code = Column(String(50), nullable=True)
    name = Column(String(255), nullable=False)
