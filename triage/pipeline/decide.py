"""
AutonomyDecisionEngine — turns a classification and its confidence into
"act now" or "a person looks first".

``decide`` is a pure function of its inputs and the injected random draw:

  1. below the classification's threshold → review
  2. otherwise a rollout draw picks whether to act without review
  3. the highest-value class stays in review unless explicitly allowed

In ``routing`` rollout mode the draw happens first and leads outside the
rollout are handed to a person unclassified.
"""
import logging
from datetime import datetime
from typing import Callable, Optional

from triage.errors import ValidationError
from triage.models.classification import Classification, parse_classification
from triage.models.decision import AutonomyDecision
from triage.models.lead import Lead
from triage.models.snapshot import ConfigurationSnapshot
from triage.pipeline.base import StageAdapter, StageResult, PipelineContext
from triage.timestamps import utcnow

logger = logging.getLogger('pipeline.decide')


def decide(classification, confidence: float, config: ConfigurationSnapshot,
           draw: Callable[[], float], now: Optional[datetime] = None) -> AutonomyDecision:
    classification = parse_classification(classification)
    threshold = config.threshold_for(classification)
    if not 0.0 <= confidence <= 1.0:
        raise ValidationError(f"Confidence {confidence} is outside [0, 1]")
    rollout = config.rollout
    needs_review = confidence < threshold

    if rollout.mode == 'routing':
        if not (rollout.enabled and draw() < rollout.percentage):
            return AutonomyDecision(needs_review=needs_review, applied_threshold=threshold,
                                    routed_to_human=True)
        if needs_review:
            return AutonomyDecision(needs_review=True, applied_threshold=threshold)
        act_now = True
    else:
        if needs_review:
            return AutonomyDecision(needs_review=True, applied_threshold=threshold)
        act_now = rollout.enabled and draw() < rollout.percentage

    if (act_now and classification == config.highest_value_classification
            and not config.allow_high_value_auto_send):
        logger.debug("High-value %s held for review", classification.value)
        act_now = False

    if act_now:
        return AutonomyDecision(needs_review=False, applied_threshold=threshold, auto_send=True,
                                sent_at=now or utcnow(), sent_by='bot')
    return AutonomyDecision(needs_review=False, applied_threshold=threshold, held_for_review=True)


def system_decision(config: ConfigurationSnapshot, now: Optional[datetime] = None) -> AutonomyDecision:
    """Existing customers are forwarded to their account team without a confidence check."""
    return AutonomyDecision(
        needs_review=False,
        applied_threshold=config.threshold_for(Classification.EXISTING),
        auto_send=True,
        sent_at=now or utcnow(),
        sent_by='system',
    )


def human_decision(classification, actor: str, config: ConfigurationSnapshot,
                   now: Optional[datetime] = None) -> AutonomyDecision:
    """
    A person's classification is acted on at once, except where the class
    needs a generated reply: then the lead goes to review so the reply can
    be checked before it is sent.
    """
    classification = parse_classification(classification)
    threshold = config.threshold_for(classification)
    if config.content_policy_for(classification) == 'required':
        return AutonomyDecision(needs_review=False, applied_threshold=threshold)
    return AutonomyDecision(needs_review=False, applied_threshold=threshold, auto_send=True,
                            sent_at=now or utcnow(), sent_by=actor)


class DecideStage(StageAdapter):
    stage = 'decide'
    description = 'Decide between acting now and human review'
    apis = []

    def run(self, lead: Lead, context: PipelineContext) -> StageResult:
        classified = context.output_of('classify')
        classification = parse_classification(classified['classification'])
        snapshot = context.snapshot

        if (classified.get('existing_customer')
                and classification == Classification.EXISTING
                and snapshot.auto_forward_existing_customers):
            decision = system_decision(snapshot, now=context.now())
        else:
            rng = context.rng_factory(context.lead_id, context.attempt)
            decision = decide(classification, classified['confidence'], snapshot,
                              draw=rng.random, now=context.now())

        logger.info("Lead %s: %s → %s (threshold %.2f)", lead.id, classification.value,
                    decision.status, decision.applied_threshold,
                    extra={'lead_id': lead.id, 'stage': self.stage})
        return StageResult(output=decision.to_dict())
