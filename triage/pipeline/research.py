"""
Research stage — the classifier's free-text report on the lead and company,
plus an industry tag the reference matcher can use.
"""
import logging

from triage.config import INDUSTRIES
from triage.models.lead import Lead
from triage.pipeline.base import StageAdapter, StageResult, PipelineContext

logger = logging.getLogger('pipeline.research')


class ResearchStage(StageAdapter):
    stage = 'research'
    description = 'Research the lead and their company, tag the industry'
    apis = ['OpenAI']

    def run(self, lead: Lead, context: PipelineContext) -> StageResult:
        report = context.classifier.research(lead)
        industry = report.industry if report.industry in INDUSTRIES else None
        if report.industry and industry is None:
            logger.info("Lead %s: ignoring unknown industry %r", lead.id, report.industry,
                        extra={'lead_id': lead.id, 'stage': self.stage})
        logger.info("Lead %s: research done (%d chars, industry=%s)",
                    lead.id, len(report.report or ''), industry or 'none',
                    extra={'lead_id': lead.id, 'stage': self.stage})
        return StageResult(output={'report': report.report or '', 'industry': industry})
