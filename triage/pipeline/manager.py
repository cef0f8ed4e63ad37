"""
Pipeline Manager — per-lead orchestration of the triage stages.

  RESEARCH → MATCH REFERENCES → CLASSIFY → GENERATE → DECIDE → PERSIST

Every stage's output is checkpointed to the lead's pipeline run before the
next stage starts. A run that dies part-way resumes at the first stage
without a checkpoint, using the configuration snapshot pinned when it began.
Transient collaborator failures are retried with exponential backoff; write
conflicts in the persist stage re-read the lead and try again.
"""
import logging
import time
from typing import Any, Callable, Dict, Optional, Type

import redis

from triage.config import (
    PIPELINE_STAGES, MOCK_PIPELINE, STAGE_MAX_ATTEMPTS, STAGE_BACKOFF_SECONDS,
    PERSIST_MAX_CONFLICTS, PIPELINE_JOB_TIMEOUT, CANCEL_FLAG_TTL_SECONDS,
)
from triage.errors import (
    ConcurrencyConflict, InvalidClassificationError, PipelineCancelled, PipelineFailed,
    TransientCollaboratorError,
)
from triage.models.pipeline_run import PipelineRun
from triage.models.snapshot import ConfigurationSnapshot
from triage.pipeline.base import (
    StageAdapter, StageResult, PipelineContext, get_adapter, rollout_rng,
)
from triage.pipeline.research import ResearchStage
from triage.pipeline.matching import CatalogReferenceMatcher, ReferenceMatchStage
from triage.pipeline.classify import ClassifyStage
from triage.pipeline.generate import GenerateContentStage
from triage.pipeline.decide import DecideStage
from triage.pipeline.persist import PersistStage
from triage.services.notifications import notify_pipeline_failed
from triage.services.reference_data import reference_catalog
from triage.services.runs import RunStore
from triage.services.settings import ConfigurationProvider
from triage.services.store import LeadStore
from triage.timestamps import utcnow

logger = logging.getLogger('pipeline.manager')

# ── RQ queue (lazy init to avoid import-time Redis connection) ────────────────
_queue = None


def _get_queue():
    global _queue
    if _queue is None:
        from triage.extensions import redis_client
        from rq import Queue
        _queue = Queue(connection=redis_client)
    return _queue


# ── Stage registry ────────────────────────────────────────────────────────────

STAGE_REGISTRY: Dict[str, Type[StageAdapter]] = {
    'research': ResearchStage,
    'match_references': ReferenceMatchStage,
    'classify': ClassifyStage,
    'generate': GenerateContentStage,
    'decide': DecideStage,
    'persist': PersistStage,
}


def default_collaborators():
    """Classifier, generator and matcher for this process (mocks when MOCK_PIPELINE=1)."""
    if MOCK_PIPELINE:
        from triage.pipeline.mock_adapters import (
            MockClassifier, MockContentGenerator, mock_reference_matcher,
        )
        logger.info("MOCK_PIPELINE enabled, using mock collaborators")
        return MockClassifier(delay=0.5), MockContentGenerator(delay=0.5), mock_reference_matcher()
    from triage.services.openai_client import OpenAIClassifier, OpenAIContentGenerator
    matcher = CatalogReferenceMatcher(reference_catalog())
    return OpenAIClassifier(), OpenAIContentGenerator(), matcher


# ── Cancellation flags (Redis) ────────────────────────────────────────────────

def _cancel_key(lead_id: str) -> str:
    return f"pipeline:cancel:{lead_id}"


def request_cancel(lead_id: str):
    """Ask a running pipeline to stop before its next stage."""
    from triage.extensions import redis_client
    redis_client.setex(_cancel_key(lead_id), CANCEL_FLAG_TTL_SECONDS, '1')
    logger.info("Cancellation requested for lead %s", lead_id, extra={'lead_id': lead_id})


def clear_cancel(lead_id: str):
    from triage.extensions import redis_client
    redis_client.delete(_cancel_key(lead_id))


def cancel_requested(lead_id: str) -> bool:
    from triage.extensions import redis_client
    try:
        return bool(redis_client.get(_cancel_key(lead_id)))
    except redis.RedisError as e:
        logger.warning("Could not read cancel flag for lead %s: %s", lead_id, e)
        return False


# ── Public API ────────────────────────────────────────────────────────────────

def launch_pipeline(lead_id: str, retry_from_stage: Optional[str] = None) -> str:
    """Enqueue the pipeline for a lead as a background RQ job; returns the job id."""
    if retry_from_stage is not None and retry_from_stage not in PIPELINE_STAGES:
        raise ValueError(f"Unknown stage: {retry_from_stage}. Available: {PIPELINE_STAGES}")
    clear_cancel(lead_id)
    job = _get_queue().enqueue(run_pipeline, lead_id, retry_from_stage, job_timeout=PIPELINE_JOB_TIMEOUT)
    logger.info("Pipeline for lead %s enqueued (job %s%s)", lead_id, job.id,
                f", from '{retry_from_stage}'" if retry_from_stage else '', extra={'lead_id': lead_id})
    return job.id


def run_pipeline(lead_id: str, retry_from_stage: Optional[str] = None) -> Dict[str, Any]:
    """RQ job entry point."""
    return PipelineOrchestrator().process(lead_id, retry_from_stage=retry_from_stage).to_dict()


# ── Orchestrator ──────────────────────────────────────────────────────────────

class PipelineOrchestrator:
    """
    Runs one lead through STAGE_REGISTRY in PIPELINE_STAGES order.

    Everything with side effects is injectable: stores, collaborators, the
    cancel check, ``sleep`` for backoff and ``clock``.
    """

    def __init__(self, store=None, runs=None, settings=None,
                 classifier=None, generator=None, matcher=None,
                 cancel_check: Optional[Callable[[str], bool]] = None,
                 notify_failure: Optional[Callable[[str, str, Exception], None]] = None,
                 sleep: Callable[[float], None] = time.sleep,
                 clock=utcnow,
                 rng_factory=rollout_rng,
                 max_attempts: int = STAGE_MAX_ATTEMPTS,
                 backoff_seconds: float = STAGE_BACKOFF_SECONDS,
                 max_conflicts: int = PERSIST_MAX_CONFLICTS):
        if classifier is None or generator is None:
            default_classifier, default_generator, default_matcher = default_collaborators()
            classifier = classifier or default_classifier
            generator = generator or default_generator
            matcher = matcher or default_matcher
        if notify_failure is None:
            notify_failure = notify_pipeline_failed

        self.store = store or LeadStore()
        self.runs = runs or RunStore()
        self.settings = settings or ConfigurationProvider()
        self.classifier = classifier
        self.generator = generator
        self.matcher = matcher
        self._cancel_check = cancel_check or cancel_requested
        self._notify_failure = notify_failure
        self._sleep = sleep
        self._clock = clock
        self._rng_factory = rng_factory
        self.max_attempts = max_attempts
        self.backoff_seconds = backoff_seconds
        self.max_conflicts = max_conflicts

    def process(self, lead_id: str, retry_from_stage: Optional[str] = None) -> PipelineRun:
        """
        Run (or resume) the pipeline for a lead.

        Raises PipelineFailed when a stage fails for good, PipelineCancelled
        when a cancel was requested, LeadNotFound for an unknown lead.
        """
        lead = self.store.get(lead_id)
        run = self.runs.load(lead_id) or self.runs.create(lead_id)
        if retry_from_stage:
            run = self.runs.reset_from(lead_id, retry_from_stage)
        if run.next_stage is None:
            logger.info("Pipeline for lead %s already complete", lead_id, extra={'lead_id': lead_id})
            if run.status != 'completed':
                run = self.runs.mark_completed(lead_id)
            return run

        if run.config_snapshot is None:
            snapshot = self.settings.snapshot()
            run = self.runs.pin_snapshot(lead_id, snapshot.to_dict())
        if run.ledger_baseline is None:
            run = self.runs.pin_ledger_baseline(lead_id, len(lead.classifications))
        snapshot = ConfigurationSnapshot.from_dict(run.config_snapshot)

        context = PipelineContext(
            lead_id=lead_id,
            attempt=run.attempt,
            ledger_baseline=run.ledger_baseline,
            snapshot=snapshot,
            classifier=self.classifier,
            generator=self.generator,
            matcher=self.matcher,
            store=self.store,
            outputs=dict(run.stage_outputs),
            clock=self._clock,
            rng_factory=self._rng_factory,
        )

        completed = run.completed_stages
        if completed:
            logger.info("Resuming lead %s at '%s' (config v%s)", lead_id, run.next_stage, snapshot.version,
                        extra={'lead_id': lead_id})
        else:
            logger.info("Starting pipeline for lead %s (attempt %d, config v%s)", lead_id, run.attempt,
                        snapshot.version, extra={'lead_id': lead_id})

        for stage_name in PIPELINE_STAGES:
            if stage_name in completed:
                continue

            if self._cancel_check(lead_id):
                self.runs.mark_cancelled(lead_id, stage_name)
                logger.warning("Pipeline for lead %s cancelled before '%s'", lead_id, stage_name,
                               extra={'lead_id': lead_id, 'stage': stage_name})
                raise PipelineCancelled(lead_id, stage_name)

            adapter = get_adapter(STAGE_REGISTRY, stage_name)
            self.runs.mark_running(lead_id, stage_name)
            started = time.monotonic()
            try:
                result = self._execute_stage(adapter, lead_id, context)
            except Exception as e:
                self._fail(lead_id, stage_name, e)

            context.outputs[stage_name] = result.output
            self.runs.checkpoint(lead_id, stage_name, result.output)
            logger.info("Stage '%s' done in %.2fs%s", stage_name, time.monotonic() - started,
                        ' (skipped)' if result.skipped else '',
                        extra={'lead_id': lead_id, 'stage': stage_name})

        run = self.runs.mark_completed(lead_id)
        logger.info("Pipeline for lead %s completed: %s", lead_id,
                    context.output_of('persist').get('outcome'), extra={'lead_id': lead_id})
        return run

    def _execute_stage(self, adapter: StageAdapter, lead_id: str, context: PipelineContext) -> StageResult:
        """Run one stage against fresh lead state, retrying what is worth retrying."""
        attempts = 0
        conflicts = 0
        while True:
            lead = self.store.get(lead_id)
            try:
                return adapter.run(lead, context)
            except ConcurrencyConflict:
                conflicts += 1
                if conflicts >= self.max_conflicts:
                    raise
                logger.info("Stage '%s': lead %s changed underneath, re-reading (%d/%d)",
                            adapter.stage, lead_id, conflicts, self.max_conflicts,
                            extra={'lead_id': lead_id, 'stage': adapter.stage})
            except InvalidClassificationError:
                raise
            except Exception as e:
                if adapter.is_best_effort(context):
                    logger.warning("Stage '%s' failed for lead %s, continuing without it: %s",
                                   adapter.stage, lead_id, e, extra={'lead_id': lead_id, 'stage': adapter.stage})
                    return adapter.fallback(lead, context, e)
                if not isinstance(e, TransientCollaboratorError):
                    raise
                attempts += 1
                if attempts >= self.max_attempts:
                    raise
                delay = self.backoff_seconds * (2 ** (attempts - 1))
                logger.warning("Stage '%s' attempt %d/%d for lead %s failed (%s), retrying in %.1fs",
                               adapter.stage, attempts, self.max_attempts, lead_id, e, delay,
                               extra={'lead_id': lead_id, 'stage': adapter.stage})
                self._sleep(delay)

    def _fail(self, lead_id: str, stage: str, error: Exception):
        retryable = isinstance(error, (TransientCollaboratorError, ConcurrencyConflict))
        logger.error("Stage '%s' FAILED for lead %s: %s", stage, lead_id, error, exc_info=True,
                     extra={'lead_id': lead_id, 'stage': stage})
        self.runs.mark_failed(lead_id, stage, f"{type(error).__name__}: {error}")
        self._notify_failure(lead_id, stage, error)
        raise PipelineFailed(lead_id, stage, error, retryable=retryable) from error
