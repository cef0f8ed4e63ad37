"""Tests for the individual pipeline stage adapters."""
import pytest
from unittest.mock import MagicMock

from triage.errors import InvalidClassificationError, TransientCollaboratorError
from triage.models.classification import Classification, ClassificationEntry
from triage.models.decision import AutonomyDecision
from triage.models.snapshot import ConfigurationSnapshot
from triage.models.state_machine import apply_classification
from triage.pipeline.base import (
    ClassifierVerdict, GeneratedContent, PipelineContext, ResearchReport, rollout_rng,
)
from triage.pipeline.classify import ClassifyStage
from triage.pipeline.decide import DecideStage
from triage.pipeline.generate import GenerateContentStage
from triage.pipeline.matching import CatalogReferenceMatcher, ReferenceMatchStage
from triage.pipeline.persist import PersistStage, bot_event_id
from triage.pipeline.research import ResearchStage
from triage.timestamps import to_iso


@pytest.fixture
def classifier():
    mock = MagicMock()
    mock.research.return_value = ResearchReport(report='Mid-size logistics firm.', industry='Software')
    mock.classify.return_value = ClassifierVerdict('high-quality', 0.99, 'Clear intent')
    return mock


@pytest.fixture
def generator():
    mock = MagicMock()
    mock.generate.return_value = GeneratedContent(body='Hi Dana, happy to set up a demo.')
    return mock


@pytest.fixture
def make_context(make_snapshot, classifier, generator, lead_store, now):
    def _make(snapshot=None, outputs=None, matcher=None, attempt=1, lead_id='lead-001', ledger_baseline=0):
        return PipelineContext(
            lead_id=lead_id,
            attempt=attempt,
            ledger_baseline=ledger_baseline,
            snapshot=snapshot or make_snapshot(),
            classifier=classifier,
            generator=generator,
            matcher=matcher,
            store=lead_store,
            outputs=dict(outputs or {}),
            clock=lambda: now,
        )
    return _make


def _classified(classification='high-quality', confidence=0.99, existing=False, at=None):
    return {
        'classification': classification,
        'model_classification': classification,
        'confidence': confidence,
        'reasoning': 'because',
        'existing_customer': existing,
        'classified_at': at,
    }


class TestResearchStage:

    def test_returns_report_and_industry(self, make_lead, make_context):
        result = ResearchStage().run(make_lead(), make_context())
        assert result.output == {'report': 'Mid-size logistics firm.', 'industry': 'Software'}

    def test_unknown_industry_dropped(self, make_lead, make_context, classifier):
        classifier.research.return_value = ResearchReport(report='r', industry='Aerospace')
        result = ResearchStage().run(make_lead(), make_context())
        assert result.output['industry'] is None


class TestReferenceMatchStage:

    CATALOG = [
        {'id': 'ref-1', 'company': 'Tailspin', 'industry': 'Software'},
        {'id': 'ref-2', 'company': 'Contoso', 'industry': 'Healthcare'},
    ]

    def test_disabled_by_default(self, make_lead, make_context):
        context = make_context(outputs={'research': {'industry': 'Software'}},
                               matcher=CatalogReferenceMatcher(self.CATALOG))
        result = ReferenceMatchStage().run(make_lead(), context)
        assert result.skipped is True
        assert result.output == {'references': []}

    def test_matches_industry(self, make_lead, make_context, make_snapshot):
        context = make_context(snapshot=make_snapshot(reference_matching=True),
                               outputs={'research': {'industry': 'Software'}},
                               matcher=CatalogReferenceMatcher(self.CATALOG))
        result = ReferenceMatchStage().run(make_lead(), context)
        assert [r['company'] for r in result.output['references']] == ['Tailspin']
        assert result.output['references'][0]['match_type'] == 'industry'

    def test_no_industry_skips(self, make_lead, make_context, make_snapshot):
        context = make_context(snapshot=make_snapshot(reference_matching=True),
                               outputs={'research': {'industry': None}},
                               matcher=CatalogReferenceMatcher(self.CATALOG))
        result = ReferenceMatchStage().run(make_lead(), context)
        assert result.skipped is True
        assert result.meta['reason'] == 'no industry found'

    def test_is_best_effort(self, make_lead, make_context):
        stage = ReferenceMatchStage()
        result = stage.fallback(make_lead(), make_context(), RuntimeError('index down'))
        assert stage.is_best_effort(make_context()) is True
        assert result.output == {'references': []}
        assert result.errors == ['index down']


class TestClassifyStage:

    def test_passes_verdict_through(self, make_lead, make_context, classifier):
        context = make_context(outputs={'research': {'report': 'the report'}})
        result = ClassifyStage().run(make_lead(), context)
        assert result.output['classification'] == 'high-quality'
        assert result.output['confidence'] == 0.99
        assert classifier.classify.call_args[0][1] == 'the report'

    def test_existing_customer_forced_to_existing(self, make_lead, make_context, classifier):
        classifier.classify.return_value = ClassifierVerdict('support', 0.6, 'asks for help',
                                                             existing_customer=True)
        result = ClassifyStage().run(make_lead(), make_context())
        assert result.output['classification'] == 'existing'
        assert result.output['model_classification'] == 'support'

    def test_existing_customer_kept_when_auto_forward_off(self, make_lead, make_context, make_snapshot,
                                                          classifier):
        classifier.classify.return_value = ClassifierVerdict('support', 0.6, existing_customer=True)
        context = make_context(snapshot=make_snapshot(auto_forward_existing_customers=False))
        assert ClassifyStage().run(make_lead(), context).output['classification'] == 'support'

    def test_unknown_classification_from_classifier(self, make_lead, make_context, classifier):
        classifier.classify.side_effect = lambda lead, report: ClassifierVerdict('spam', 0.9)
        with pytest.raises(InvalidClassificationError):
            ClassifyStage().run(make_lead(), make_context())

    def test_missing_threshold_fails_before_generation(self, make_lead, make_context):
        snapshot = ConfigurationSnapshot.from_dict({'thresholds': {'support': 0.9}}, version=2)
        with pytest.raises(InvalidClassificationError):
            ClassifyStage().run(make_lead(), make_context(snapshot=snapshot))


class TestGenerateContentStage:

    def test_required_policy_generates(self, make_lead, make_context, generator):
        context = make_context(outputs={'classify': _classified('high-quality'),
                                        'research': {'report': 'r'}})
        stage = GenerateContentStage()
        result = stage.run(make_lead(), context)
        assert result.output['content']['kind'] == 'generated'
        assert result.output['content']['text'].startswith('Hi Dana')
        assert stage.is_best_effort(context) is False
        generator.generate.assert_called_once()

    def test_empty_body_is_an_error(self, make_lead, make_context, generator):
        generator.generate.return_value = GeneratedContent(body='  ')
        context = make_context(outputs={'classify': _classified('high-quality')})
        with pytest.raises(TransientCollaboratorError):
            GenerateContentStage().run(make_lead(), context)

    def test_template_policy_with_response_enabled(self, make_lead, make_context, make_snapshot, generator):
        snapshot = make_snapshot(response_enabled={'low-quality': True})
        context = make_context(snapshot=snapshot, outputs={'classify': _classified('low-quality', 0.8)})
        result = GenerateContentStage().run(make_lead(), context)
        assert result.output['content']['kind'] == 'template'
        assert result.output['content']['template_key'] == 'low-quality'
        generator.generate.assert_not_called()

    def test_template_policy_with_response_disabled(self, make_lead, make_context, generator):
        context = make_context(outputs={'classify': _classified('low-quality', 0.8)})
        result = GenerateContentStage().run(make_lead(), context)
        assert result.skipped is True
        assert result.output['content'] is None

    def test_none_policy_is_best_effort(self, make_lead, make_context):
        context = make_context(outputs={'classify': _classified('support', 0.95)})
        stage = GenerateContentStage()
        assert stage.is_best_effort(context) is True
        assert stage.run(make_lead(), context).output['content'] is None

    def test_optional_policy_generates_when_enabled(self, make_lead, make_context, make_snapshot, generator):
        snapshot = make_snapshot(content_policy={'support': 'optional'}, response_enabled={'support': True})
        context = make_context(snapshot=snapshot, outputs={'classify': _classified('support', 0.95)})
        result = GenerateContentStage().run(make_lead(), context)
        assert result.output['content']['kind'] == 'generated'


class TestDecideStage:

    def test_existing_customer_gets_system_decision(self, make_lead, make_context):
        context = make_context(outputs={'classify': _classified('existing', 0.3, existing=True)})
        result = DecideStage().run(make_lead(), context)
        assert result.output['auto_send'] is True
        assert result.output['sent_by'] == 'system'

    def test_uses_seeded_rng(self, make_lead, make_context, make_snapshot):
        snapshot = make_snapshot(rollout={'enabled': True, 'percentage': 0.5})
        context = make_context(snapshot=snapshot, outputs={'classify': _classified('support', 0.95)})
        expected = rollout_rng('lead-001', 1).random() < 0.5
        first = DecideStage().run(make_lead(), context)
        second = DecideStage().run(make_lead(), context)
        assert first.output == second.output
        assert first.output['auto_send'] is expected

    def test_low_confidence_review(self, make_lead, make_context):
        context = make_context(outputs={'classify': _classified('low-quality', 0.4)})
        result = DecideStage().run(make_lead(), context)
        assert result.output['needs_review'] is True
        assert result.output['status'] == 'review'


class TestPersistStage:

    def _outputs(self, now, classification='support', confidence=0.95, decision=None, content=None):
        decision = decision or AutonomyDecision(needs_review=False, applied_threshold=0.9, auto_send=True,
                                                sent_at=now, sent_by='bot')
        return {
            'research': {'report': 'A report', 'industry': 'Software'},
            'match_references': {'references': []},
            'classify': _classified(classification, confidence, at=to_iso(now)),
            'generate': {'content': content, 'mentioned_references': []},
            'decide': decision.to_dict(),
        }

    def test_writes_entry_and_status(self, stored_lead, make_context, lead_store, now):
        context = make_context(outputs=self._outputs(now))
        result = PersistStage().run(stored_lead, context)

        lead = lead_store.get(stored_lead.id)
        assert result.output['outcome'] == 'auto_sent'
        assert result.output['version'] == 2
        assert lead.version == 2
        assert lead.status == 'done'
        assert lead.sent_by == 'bot'
        assert lead.outcome == 'forwarded_support'
        assert lead.bot_research.report == 'A report'
        entry = lead.classifications.current()
        assert entry.event_id == bot_event_id(stored_lead.id, 1)
        assert entry.applied_threshold == 0.9
        assert lead.configuration_version == context.snapshot.version

    def test_replay_is_idempotent(self, stored_lead, make_context, lead_store, now):
        context = make_context(outputs=self._outputs(now))
        PersistStage().run(stored_lead, context)
        fresh = lead_store.get(stored_lead.id)

        result = PersistStage().run(fresh, context)

        assert result.output['outcome'] == 'already_applied'
        after = lead_store.get(stored_lead.id)
        assert len(after.classifications) == 1
        assert after.version == fresh.version

    def test_review_decision_with_content(self, stored_lead, make_context, lead_store, now):
        decision = AutonomyDecision(needs_review=False, applied_threshold=0.98, held_for_review=True)
        content = {'kind': 'generated', 'text': 'Hello', 'created_at': to_iso(now)}
        context = make_context(outputs=self._outputs(now, 'high-quality', 0.99, decision, content))
        PersistStage().run(stored_lead, context)
        lead = lead_store.get(stored_lead.id)
        assert lead.status == 'review'
        assert lead.content.text == 'Hello'
        assert lead.sent_at is None

    def test_superseded_by_human(self, stored_lead, make_context, lead_store, now):
        """A person classified the lead while the pipeline was running."""
        human = ClassificationEntry.human('existing', actor='sam', timestamp=now)
        decided = AutonomyDecision(needs_review=False, applied_threshold=0.95, auto_send=True,
                                   sent_at=now, sent_by='sam')
        classified = apply_classification(stored_lead, human, decided)
        lead_store.compare_and_swap(stored_lead.id, 1, classified)
        current = lead_store.get(stored_lead.id)

        result = PersistStage().run(current, make_context(outputs=self._outputs(now)))

        lead = lead_store.get(stored_lead.id)
        assert result.output['outcome'] == 'superseded'
        assert len(lead.classifications) == 1
        assert lead.current_classification() is Classification.EXISTING
        assert lead.sent_by == 'sam'
        assert lead.bot_research.classification is Classification.SUPPORT

    def test_routed_to_human_records_research_only(self, stored_lead, make_context, lead_store, now):
        decision = AutonomyDecision(needs_review=False, applied_threshold=0.9, routed_to_human=True)
        result = PersistStage().run(stored_lead, make_context(outputs=self._outputs(now, decision=decision)))
        lead = lead_store.get(stored_lead.id)
        assert result.output['outcome'] == 'routed_to_human'
        assert lead.status == 'classify'
        assert len(lead.classifications) == 0
        assert lead.bot_research is not None

    def _review_lead(self, stored_lead, lead_store, now):
        first = ClassificationEntry.bot('high-quality', confidence=0.99, event_id=bot_event_id(stored_lead.id, 1),
                                       applied_threshold=0.98, timestamp=now)
        held = AutonomyDecision(needs_review=False, applied_threshold=0.98, held_for_review=True)
        lead_store.compare_and_swap(stored_lead.id, 1, apply_classification(stored_lead, first, held))
        return lead_store.get(stored_lead.id)

    def test_retry_attempt_reclassifies_lead_in_review(self, stored_lead, make_context, lead_store, now):
        current = self._review_lead(stored_lead, lead_store, now)
        context = make_context(outputs=self._outputs(now), attempt=2, ledger_baseline=1)

        result = PersistStage().run(current, context)

        lead = lead_store.get(stored_lead.id)
        assert result.output['outcome'] == 'auto_sent'
        assert [e.classification.value for e in lead.classifications] == ['high-quality', 'support']
        assert lead.classifications.current().event_id == bot_event_id(stored_lead.id, 2)
        assert lead.status == 'done'
        assert lead.outcome == 'forwarded_support'

    def test_retry_attempt_superseded_by_later_human_entry(self, stored_lead, make_context, lead_store, now):
        current = self._review_lead(stored_lead, lead_store, now)
        human = ClassificationEntry.human('low-quality', actor='sam', timestamp=now)
        held = AutonomyDecision(needs_review=False, applied_threshold=0.85)
        lead_store.compare_and_swap(stored_lead.id, current.version, apply_classification(current, human, held))
        current = lead_store.get(stored_lead.id)

        result = PersistStage().run(current, make_context(outputs=self._outputs(now), attempt=2,
                                                          ledger_baseline=1))

        lead = lead_store.get(stored_lead.id)
        assert result.output['outcome'] == 'superseded'
        assert len(lead.classifications) == 2
        assert lead.current_classification() is Classification.LOW_QUALITY
        assert lead.status == 'review'
