"""
Reference matching — finds reference customers in the lead's industry to
mention in the reply. Best-effort: a failure leaves the run with no matches.
"""
import logging
from typing import Any, Dict, List, Optional

from triage.models.lead import Lead, MatchedReference
from triage.pipeline.base import StageAdapter, StageResult, PipelineContext, ReferenceMatcher

logger = logging.getLogger('pipeline.matching')


class CatalogReferenceMatcher(ReferenceMatcher):
    """Matches against a fixed list of reference customers by industry."""

    def __init__(self, catalog: List[Dict[str, Any]], limit: int = 1):
        self.catalog = catalog
        self.limit = limit

    def match(self, lead: Lead, industry: str) -> List[MatchedReference]:
        matches = []
        for item in self.catalog:
            if item.get('industry') != industry:
                continue
            matches.append(MatchedReference(
                reference_id=item['id'],
                company=item['company'],
                industry=industry,
                url=item.get('url'),
                match_type='industry',
                match_reason=f"Same industry: {industry}",
            ))
            if len(matches) >= self.limit:
                break
        return matches


class ReferenceMatchStage(StageAdapter):
    stage = 'match_references'
    description = 'Match the lead to reference customers in the same industry'
    apis = []
    best_effort = True

    def run(self, lead: Lead, context: PipelineContext) -> StageResult:
        industry: Optional[str] = context.output_of('research').get('industry')
        reason = None
        if not context.snapshot.reference_matching:
            reason = 'reference matching disabled'
        elif not industry:
            reason = 'no industry found'
        elif context.matcher is None:
            reason = 'no reference matcher configured'
        if reason:
            return StageResult(output={'references': []}, skipped=True, meta={'reason': reason})

        matches = context.matcher.match(lead, industry)
        logger.info("Lead %s: %d reference(s) matched for %s", lead.id, len(matches), industry,
                    extra={'lead_id': lead.id, 'stage': self.stage})
        return StageResult(output={'references': [m.to_dict() for m in matches]})

    def fallback(self, lead: Lead, context: PipelineContext, error: Exception) -> StageResult:
        return StageResult(output={'references': []}, skipped=True, errors=[str(error)])
