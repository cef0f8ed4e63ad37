"""
Classify stage — the classifier's verdict on the research report.
"""
import logging

from triage.models.classification import Classification
from triage.models.lead import Lead
from triage.pipeline.base import StageAdapter, StageResult, PipelineContext
from triage.timestamps import to_iso

logger = logging.getLogger('pipeline.classify')


class ClassifyStage(StageAdapter):
    stage = 'classify'
    description = 'Classify the lead with a confidence score'
    apis = ['OpenAI']

    def run(self, lead: Lead, context: PipelineContext) -> StageResult:
        report = context.output_of('research').get('report', '')
        verdict = context.classifier.classify(lead, report)

        classification = verdict.classification
        if (verdict.existing_customer
                and context.snapshot.auto_forward_existing_customers
                and classification != Classification.EXISTING):
            logger.info("Lead %s: existing customer, classifying as existing instead of %s",
                        lead.id, classification.value, extra={'lead_id': lead.id, 'stage': self.stage})
            classification = Classification.EXISTING

        # Fail before anything is generated when the class has no threshold
        context.snapshot.threshold_for(classification)

        logger.info("Lead %s: classified %s (confidence %.2f)", lead.id, classification.value,
                    verdict.confidence, extra={'lead_id': lead.id, 'stage': self.stage})
        return StageResult(output={
            'classification': classification.value,
            'model_classification': verdict.classification.value,
            'confidence': verdict.confidence,
            'reasoning': verdict.reasoning,
            'existing_customer': verdict.existing_customer,
            'classified_at': to_iso(context.now()),
        })
