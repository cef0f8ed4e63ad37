"""
Stored lead document. ``version`` is the compare-and-swap token: every
successful write bumps it by exactly one.
"""
from sqlalchemy import Column, Text, Integer, DateTime, JSON, Index
from sqlalchemy.sql import func

from triage.database import Base


class DbLead(Base):
    __tablename__ = 'leads'

    id = Column(Text, primary_key=True)
    version = Column(Integer, nullable=False, default=1)
    status = Column(Text, nullable=False, default='classify')
    document = Column(JSON, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (
        Index('ix_leads_status', 'status'),
    )
