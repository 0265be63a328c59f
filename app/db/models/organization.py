"""
Organization Model - document owner and analytics subscriber
"""
from sqlalchemy import Column, Integer, String, DateTime

from app.core.clock import utcnow
from app.db.database import Base


class Organization(Base):
    __tablename__ = "organizations"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(255), nullable=False)
    inn = Column(String(20), nullable=True)

    created_at = Column(DateTime, default=utcnow)
