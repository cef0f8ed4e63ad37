"""
Content generation — the reply a lead would receive.

What gets produced depends on the classification's content policy:
``required`` always generates and a failure fails the run; ``optional``
generates when replies are enabled and tolerates failure; ``template``
points at a canned reply when replies are enabled; ``none`` produces nothing.
"""
import logging

from triage.errors import TransientCollaboratorError
from triage.models.classification import parse_classification
from triage.models.lead import Lead, LeadContent, MatchedReference
from triage.pipeline.base import StageAdapter, StageResult, PipelineContext
from triage.timestamps import to_iso

logger = logging.getLogger('pipeline.generate')

_EMPTY = {'content': None, 'mentioned_references': []}


def _classification(context: PipelineContext):
    return parse_classification(context.output_of('classify')['classification'])


class GenerateContentStage(StageAdapter):
    stage = 'generate'
    description = 'Write the reply (or pick the template) for the classification'
    apis = ['OpenAI']

    def is_best_effort(self, context: PipelineContext) -> bool:
        return context.snapshot.content_policy_for(_classification(context)) != 'required'

    def run(self, lead: Lead, context: PipelineContext) -> StageResult:
        classification = _classification(context)
        policy = context.snapshot.content_policy_for(classification)
        enabled = context.snapshot.response_enabled_for(classification)
        now = context.now()

        if policy == 'required' or (policy == 'optional' and enabled):
            references = [MatchedReference.from_dict(r)
                          for r in context.output_of('match_references').get('references', [])]
            generated = context.generator.generate(
                lead, context.output_of('research').get('report', ''), classification, references)
            if not generated.body or not generated.body.strip():
                raise TransientCollaboratorError('content generator', 'empty body returned')
            content = LeadContent(kind='generated', text=generated.body, created_at=now)
            logger.info("Lead %s: generated %d-char reply", lead.id, len(generated.body),
                        extra={'lead_id': lead.id, 'stage': self.stage})
            return StageResult(output={'content': content.to_dict(),
                                       'mentioned_references': list(generated.references)})

        if policy == 'template' and enabled:
            content = LeadContent(kind='template', template_key=classification.value, created_at=now)
            return StageResult(output={'content': content.to_dict(), 'mentioned_references': []})

        return StageResult(output=dict(_EMPTY), skipped=True,
                           meta={'reason': f"policy={policy}, response_enabled={enabled}",
                                 'generated_at': to_iso(now)})

    def fallback(self, lead: Lead, context: PipelineContext, error: Exception) -> StageResult:
        logger.warning("Lead %s: reply generation failed, continuing without content: %s",
                       lead.id, error, extra={'lead_id': lead.id, 'stage': self.stage})
        return StageResult(output=dict(_EMPTY), skipped=True, errors=[str(error)])
