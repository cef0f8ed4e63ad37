"""
Pipeline run persistence — checkpoints for the pipeline manager.

Each completed stage's output is written before the next stage starts, so a
run killed mid-way resumes at the first stage without a checkpoint, with the
configuration snapshot it was started with.
"""
import logging
from typing import Any, Dict, Optional

from triage.config import PIPELINE_STAGES
from triage.models.db_pipeline_run import DbPipelineRun
from triage.models.pipeline_run import PipelineRun
from triage.timestamps import utcnow

logger = logging.getLogger('services.runs')


def _to_domain(row: DbPipelineRun) -> PipelineRun:
    return PipelineRun(
        lead_id=row.lead_id,
        attempt=row.attempt,
        status=row.status,
        current_stage=row.current_stage or '',
        last_completed_stage=row.last_completed_stage,
        stage_outputs=dict(row.stage_outputs or {}),
        config_snapshot=dict(row.config_snapshot) if row.config_snapshot else None,
        ledger_baseline=row.ledger_baseline,
        error=row.error,
        error_stage=row.error_stage,
        created_at=row.created_at,
        updated_at=row.updated_at,
        finished_at=row.finished_at,
    )


class RunStore:

    def __init__(self, session_factory=None):
        self._session_factory = session_factory

    def _session(self):
        if self._session_factory is not None:
            return self._session_factory()
        from triage import database
        return database.get_session()

    def _write(self, lead_id: str, **values) -> PipelineRun:
        session = self._session()
        try:
            row = session.get(DbPipelineRun, lead_id)
            if row is None:
                raise KeyError(f"No pipeline run for lead {lead_id}")
            for key, value in values.items():
                setattr(row, key, value)
            row.updated_at = utcnow()
            session.commit()
            return _to_domain(row)
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def load(self, lead_id: str) -> Optional[PipelineRun]:
        session = self._session()
        try:
            row = session.get(DbPipelineRun, lead_id)
            if row is None:
                return None
            session.refresh(row)
            return _to_domain(row)
        finally:
            session.close()

    def create(self, lead_id: str) -> PipelineRun:
        """Record a queued run for a freshly submitted lead."""
        session = self._session()
        try:
            now = utcnow()
            row = DbPipelineRun(lead_id=lead_id, attempt=1, status='queued', stage_outputs={},
                                created_at=now, updated_at=now)
            session.add(row)
            session.commit()
            return _to_domain(row)
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def pin_snapshot(self, lead_id: str, snapshot: Dict[str, Any]) -> PipelineRun:
        return self._write(lead_id, config_snapshot=snapshot)

    def pin_ledger_baseline(self, lead_id: str, length: int) -> PipelineRun:
        """Remember how many classifications the lead had when this attempt started."""
        return self._write(lead_id, ledger_baseline=length)

    def mark_running(self, lead_id: str, stage: str = '') -> PipelineRun:
        return self._write(lead_id, status='running', current_stage=stage, error=None, error_stage=None)

    def checkpoint(self, lead_id: str, stage: str, output: Dict[str, Any]) -> PipelineRun:
        run = self.load(lead_id)
        outputs = dict(run.stage_outputs)
        outputs[stage] = output
        return self._write(lead_id, stage_outputs=outputs, last_completed_stage=stage)

    def mark_completed(self, lead_id: str) -> PipelineRun:
        return self._write(lead_id, status='completed', current_stage='', finished_at=utcnow())

    def mark_failed(self, lead_id: str, stage: str, error: str) -> PipelineRun:
        return self._write(lead_id, status='failed', error=error, error_stage=stage, finished_at=utcnow())

    def mark_cancelled(self, lead_id: str, stage: str) -> PipelineRun:
        return self._write(lead_id, status='cancelled', current_stage=stage, finished_at=utcnow())

    def reset_from(self, lead_id: str, stage: str) -> PipelineRun:
        """
        Drop the checkpoints of ``stage`` and every stage after it and start a
        new attempt. The pinned snapshot is kept; the ledger baseline is taken
        again when the attempt starts.
        """
        if stage not in PIPELINE_STAGES:
            raise ValueError(f"Unknown stage: {stage}")
        run = self.load(lead_id)
        idx = PIPELINE_STAGES.index(stage)
        kept = {s: run.stage_outputs[s] for s in PIPELINE_STAGES[:idx] if s in run.stage_outputs}
        last = PIPELINE_STAGES[idx - 1] if idx > 0 and PIPELINE_STAGES[idx - 1] in kept else None
        attempt = run.attempt + 1
        logger.info("Run for lead %s reset to resume at '%s' (attempt %d)", lead_id, stage, attempt,
                    extra={'lead_id': lead_id})
        return self._write(lead_id, stage_outputs=kept, last_completed_stage=last, status='queued',
                           attempt=attempt, ledger_baseline=None, finished_at=None)
