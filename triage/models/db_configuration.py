"""
Versioned settings documents. The newest row is the active configuration;
older rows stay so any lead's ``configuration_version`` can be looked up.
"""
from sqlalchemy import Column, Text, Integer, DateTime, JSON
from sqlalchemy.sql import func

from triage.database import Base


class DbConfiguration(Base):
    __tablename__ = 'configurations'

    version = Column(Integer, primary_key=True, autoincrement=True)
    data = Column(JSON, nullable=False)
    updated_by = Column(Text, default='')
    created_at = Column(DateTime(timezone=True), server_default=func.now())
