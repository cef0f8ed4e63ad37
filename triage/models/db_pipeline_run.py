"""
Pipeline run checkpoint — one row per lead, holding each completed stage's
output and the configuration snapshot the run is pinned to.
"""
from sqlalchemy import Column, Text, Integer, DateTime, JSON, ForeignKey
from sqlalchemy.sql import func

from triage.database import Base


class DbPipelineRun(Base):
    __tablename__ = 'pipeline_runs'

    lead_id = Column(Text, ForeignKey('leads.id', ondelete='CASCADE'), primary_key=True)
    attempt = Column(Integer, nullable=False, default=1)
    status = Column(Text, nullable=False, default='queued')
    current_stage = Column(Text, default='')
    last_completed_stage = Column(Text, nullable=True)
    stage_outputs = Column(JSON, nullable=True)
    config_snapshot = Column(JSON, nullable=True)
    ledger_baseline = Column(Integer, nullable=True)
    error = Column(Text, nullable=True)
    error_stage = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now())
    finished_at = Column(DateTime(timezone=True), nullable=True)
