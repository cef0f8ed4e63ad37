"""
PipelineRun — checkpoint state of one lead's trip through the pipeline.
"""
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

from triage.config import PIPELINE_STAGES
from triage.timestamps import to_iso


@dataclass
class PipelineRun:
    lead_id: str
    attempt: int = 1
    status: str = 'queued'
    current_stage: str = ''
    last_completed_stage: Optional[str] = None
    stage_outputs: Dict[str, Dict[str, Any]] = field(default_factory=dict)
    config_snapshot: Optional[Dict[str, Any]] = None
    # Ledger length when this attempt started; entries past it were added during the run
    ledger_baseline: Optional[int] = None
    error: Optional[str] = None
    error_stage: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None

    @property
    def completed_stages(self) -> List[str]:
        """Stages with a checkpointed output, in pipeline order."""
        if not self.last_completed_stage:
            return []
        idx = PIPELINE_STAGES.index(self.last_completed_stage)
        return PIPELINE_STAGES[:idx + 1]

    @property
    def next_stage(self) -> Optional[str]:
        done = self.completed_stages
        if len(done) == len(PIPELINE_STAGES):
            return None
        return PIPELINE_STAGES[len(done)]

    def to_dict(self) -> Dict[str, Any]:
        return {
            'lead_id': self.lead_id,
            'attempt': self.attempt,
            'status': self.status,
            'current_stage': self.current_stage,
            'last_completed_stage': self.last_completed_stage,
            'next_stage': self.next_stage,
            'stage_outputs': self.stage_outputs,
            'configuration_version': (self.config_snapshot or {}).get('version'),
            'ledger_baseline': self.ledger_baseline,
            'error': self.error,
            'error_stage': self.error_stage,
            'created_at': to_iso(self.created_at),
            'updated_at': to_iso(self.updated_at),
            'finished_at': to_iso(self.finished_at),
        }
