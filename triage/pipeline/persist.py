"""
Persist stage — writes the run's results onto the lead in one
compare-and-swap: bot research, matched references, content, the ledger
entry and the resulting status.

The ledger entry carries an event id derived from the lead and attempt, so
replaying this stage after a crash cannot append it twice. If a person
classified the lead while the pipeline was running, the bot's verdict is
stored as research only and the human's decision stands. A retry attempt
may reclassify a lead in review; only entries appended after the attempt
started count as a person's decision.
"""
import logging

from triage.models.classification import ClassificationEntry, parse_classification
from triage.models.decision import AutonomyDecision
from triage.models.lead import BotResearch, Lead, LeadContent, MatchedReference
from triage.models.state_machine import DONE, apply_classification, set_content
from triage.pipeline.base import StageAdapter, StageResult, PipelineContext
from triage.timestamps import from_iso

logger = logging.getLogger('pipeline.persist')


def bot_event_id(lead_id: str, attempt: int) -> str:
    return f"{lead_id}:{attempt}:bot"


class PersistStage(StageAdapter):
    stage = 'persist'
    description = 'Store classification, content and status on the lead'
    apis = []

    def run(self, lead: Lead, context: PipelineContext) -> StageResult:
        event_id = bot_event_id(context.lead_id, context.attempt)
        if lead.classifications.has_event(event_id):
            logger.info("Lead %s: results of attempt %d already stored", lead.id, context.attempt,
                        extra={'lead_id': lead.id, 'stage': self.stage})
            return StageResult(output={'outcome': 'already_applied', 'status': lead.status,
                                       'version': lead.version})

        research_out = context.output_of('research')
        classified = context.output_of('classify')
        decision = AutonomyDecision.from_dict(context.output_of('decide'))
        classification = parse_classification(classified['classification'])
        classified_at = from_iso(classified.get('classified_at'))

        updated = lead
        if lead.bot_research is None:
            updated = updated.evolve(bot_research=BotResearch(
                report=research_out.get('report', ''),
                classification=classification,
                confidence=classified['confidence'],
                reasoning=classified.get('reasoning', ''),
                industry=research_out.get('industry'),
                existing_customer=bool(classified.get('existing_customer')),
                timestamp=classified_at,
            ))

        superseded = lead.status == DONE or len(lead.classifications) > context.ledger_baseline
        if superseded:
            outcome = 'superseded'
            logger.info("Lead %s: classified by a person during the run, keeping bot verdict as research only",
                        lead.id, extra={'lead_id': lead.id, 'stage': self.stage})
        elif decision.routed_to_human:
            outcome = 'routed_to_human'
        else:
            refs = context.output_of('match_references').get('references') or []
            if refs and not updated.matched_references:
                updated = updated.evolve(matched_references=tuple(MatchedReference.from_dict(r) for r in refs))
            content = context.output_of('generate').get('content')
            if content and updated.content is None:
                updated = set_content(updated, LeadContent.from_dict(content))
            entry = ClassificationEntry.bot(
                classification,
                confidence=classified['confidence'],
                reasoning=classified.get('reasoning', ''),
                applied_threshold=decision.applied_threshold,
                event_id=event_id,
                timestamp=classified_at,
            )
            updated = apply_classification(updated, entry, decision)
            updated = updated.evolve(configuration_version=context.snapshot.version)
            outcome = 'auto_sent' if decision.auto_send else 'review'

        version = context.store.compare_and_swap(lead.id, lead.version, updated)
        logger.info("Lead %s: stored as %s (status=%s, version=%d)", lead.id, outcome, updated.status,
                    version, extra={'lead_id': lead.id, 'stage': self.stage})
        return StageResult(output={'outcome': outcome, 'status': updated.status, 'version': version})
