"""Tests for triage.services.lead_actions — submissions and human decisions."""
import pytest
from unittest.mock import MagicMock

from triage.errors import (
    InvalidClassificationError, InvalidTransitionError, TransientCollaboratorError, ValidationError,
)
from triage.models.classification import Author, Classification
from triage.pipeline.mock_adapters import MockContentGenerator
from triage.services.lead_actions import LeadActions
from triage.services.reference_data import CustomerDirectory, CustomerMatch
from triage.services.settings import ConfigurationProvider

FORM = {
    'name': 'Dana Whitfield',
    'email': 'dana@northwind-logistics.com',
    'company': 'Northwind Logistics',
    'message': 'We are evaluating tools for a team of 40 and would like a demo.',
}


@pytest.fixture
def launcher():
    return MagicMock(return_value='job-1')


@pytest.fixture
def notify_reroute():
    return MagicMock()


@pytest.fixture
def actions(lead_store, run_store, launcher, notify_reroute, now):
    return LeadActions(
        store=lead_store,
        runs=run_store,
        settings=ConfigurationProvider(),
        generator=MockContentGenerator(),
        launcher=launcher,
        notify_reroute=notify_reroute,
        clock=lambda: now,
    )


@pytest.fixture
def in_review(actions, stored_lead):
    """A high-quality lead a person classified, waiting in review with a generated reply."""
    return actions.manually_classify(stored_lead.id, 'high-quality', actor='sam')


class TestSubmit:

    def test_stores_lead_and_enqueues(self, actions, launcher, lead_store, run_store):
        lead = actions.submit(FORM, metadata={'utm_source': 'ads'})

        assert lead.status == 'classify'
        assert lead.version == 1
        launcher.assert_called_once_with(lead.id)
        assert lead_store.get(lead.id).metadata == {'utm_source': 'ads'}
        assert run_store.load(lead.id).status == 'queued'

    def test_invalid_form_stores_nothing(self, actions, launcher, lead_store):
        with pytest.raises(ValidationError):
            actions.submit({**FORM, 'email': 'not-an-email'})
        launcher.assert_not_called()
        assert lead_store.list_leads() == []

    def test_existing_customer_forwarded_without_pipeline(self, actions, launcher, lead_store, run_store, now):
        actions.customers = CustomerDirectory([
            {'id': 'SF-002', 'company': 'CloudStartup', 'domains': ['cloudstartup.io'],
             'contacts': ['maria@cloudstartup.io'], 'account_team': 'James Park'},
        ])
        form = {**FORM, 'name': 'Maria Lopez', 'email': 'maria@cloudstartup.io', 'company': 'CloudStartup'}

        lead = actions.submit(form)

        launcher.assert_not_called()
        assert run_store.load(lead.id) is None
        stored = lead_store.get(lead.id)
        assert stored.status == 'done'
        assert stored.sent_by == 'system'
        assert lead.sent_at == now
        assert stored.outcome == 'forwarded_account_team'
        assert stored.bot_research is None
        entry = stored.classifications.current()
        assert entry.author is Author.SYSTEM
        assert entry.classification is Classification.EXISTING
        assert entry.applied_threshold == 0.95
        assert stored.metadata['crm_match']['customer_id'] == 'SF-002'
        assert stored.metadata['crm_match']['reason'] == 'Exact email match'

    def test_existing_customer_enqueued_when_auto_forward_off(self, actions, launcher, lead_store):
        actions.customers = MagicMock()
        actions.customers.find.return_value = CustomerMatch('SF-003', 'DesignCo', 'Company name match')
        actions.settings.save({'auto_forward_existing_customers': False}, updated_by='ops')

        lead = actions.submit(FORM)

        launcher.assert_called_once_with(lead.id)
        assert lead_store.get(lead.id).status == 'classify'

    def test_customer_lookup_uses_submission(self, actions, launcher):
        actions.customers = MagicMock()
        actions.customers.find.return_value = None

        actions.submit(FORM)

        submission = actions.customers.find.call_args.args[0]
        assert submission.email == 'dana@northwind-logistics.com'
        launcher.assert_called_once()


class TestManuallyClassify:

    def test_non_required_class_completes(self, actions, stored_lead, now):
        lead = actions.manually_classify(stored_lead.id, 'support', actor='sam')

        assert lead.status == 'done'
        assert lead.sent_by == 'sam'
        assert lead.sent_at == now
        assert lead.outcome == 'forwarded_support'
        assert lead.configuration_version == 0
        entry = lead.classifications.current()
        assert entry.author is Author.HUMAN
        assert entry.confidence is None
        assert entry.applied_threshold == 0.90

    def test_required_reply_goes_to_review_with_content(self, in_review):
        assert in_review.status == 'review'
        assert in_review.content.kind == 'generated'
        assert in_review.content.text.startswith('Hi Dana')

    def test_generation_failure_leaves_review_without_content(self, actions, stored_lead):
        generator = MagicMock()
        generator.generate.side_effect = TransientCollaboratorError('content generator', '503')
        actions._generator = generator

        lead = actions.manually_classify(stored_lead.id, 'high-quality', actor='sam')

        assert lead.status == 'review'
        assert lead.content is None

    def test_unexpected_generator_error_keeps_classification(self, actions, stored_lead, lead_store):
        generator = MagicMock()
        generator.generate.side_effect = ValueError('400 Bad Request from model')
        actions._generator = generator

        lead = actions.manually_classify(stored_lead.id, 'high-quality', actor='sam')

        assert lead.status == 'review'
        assert lead.content is None
        assert lead.current_classification() is Classification.HIGH_QUALITY
        assert lead_store.get(stored_lead.id).version == lead.version

    def test_already_classified(self, actions, in_review):
        with pytest.raises(InvalidTransitionError):
            actions.manually_classify(in_review.id, 'support', actor='sam')

    def test_unknown_classification(self, actions, stored_lead, lead_store):
        with pytest.raises(InvalidClassificationError):
            actions.manually_classify(stored_lead.id, 'partner', actor='sam')
        assert lead_store.get(stored_lead.id).version == 1


class TestReclassify:

    def test_unclassified_lead(self, actions, stored_lead):
        with pytest.raises(InvalidTransitionError):
            actions.reclassify(stored_lead.id, 'support', actor='sam')

    def test_in_review(self, actions, in_review, notify_reroute):
        lead = actions.reclassify(in_review.id, 'support', actor='alex')

        assert lead.status == 'done'
        assert lead.sent_by == 'alex'
        assert [e.classification for e in lead.classifications] == [
            Classification.HIGH_QUALITY, Classification.SUPPORT]
        notify_reroute.assert_not_called()

    def test_done_lead_is_rerouted(self, actions, stored_lead, notify_reroute):
        actions.manually_classify(stored_lead.id, 'low-quality', actor='sam')

        lead = actions.reclassify(stored_lead.id, 'high-quality', actor='alex')

        assert lead.status == 'review'
        assert lead.reroute.source == 'sales'
        assert lead.reroute.original_classification is Classification.LOW_QUALITY
        assert 'alex' in lead.reroute.reason
        assert lead.sent_at is None
        notify_reroute.assert_called_once()


class TestReview:

    def test_approve(self, actions, in_review, now):
        lead = actions.approve(in_review.id, actor='alex')
        assert lead.status == 'done'
        assert lead.outcome == 'sent_meeting_offer'
        assert lead.sent_by == 'alex'
        assert lead.sent_at == now

    def test_approve_without_required_reply(self, actions, stored_lead):
        generator = MagicMock()
        generator.generate.side_effect = RuntimeError('OPENAI_API_KEY not set')
        actions._generator = generator
        lead = actions.manually_classify(stored_lead.id, 'high-quality', actor='sam')

        with pytest.raises(InvalidTransitionError):
            actions.approve(lead.id, actor='alex')

    def test_reject(self, actions, in_review):
        lead = actions.reject(in_review.id, actor='alex', reason='Competitor fishing')
        assert lead.status == 'done'
        assert lead.outcome == 'closed'
        assert lead.sent_at is None
        assert lead.edit_note == '[Rejected by alex] Competitor fishing'

    def test_edit_content(self, actions, in_review, now):
        lead = actions.edit_content(in_review.id, 'Hi Dana, thanks!', editor='alex', note='shorter')
        assert lead.content.text == 'Hi Dana, thanks!'
        assert lead.content.last_edited_by == 'alex'
        assert lead.content.edited_at == now
        assert lead.edit_note == 'shorter'
        assert lead.version == in_review.version + 1

    def test_edit_content_empty(self, actions, in_review):
        with pytest.raises(ValidationError):
            actions.edit_content(in_review.id, '   ', editor='alex')

    def test_approve_done_lead(self, actions, in_review):
        actions.approve(in_review.id, actor='alex')
        with pytest.raises(InvalidTransitionError):
            actions.approve(in_review.id, actor='blake')


class TestReroute:

    def test_customer_reroute_to_high_quality(self, actions, stored_lead, notify_reroute):
        """A closed-out low-quality lead turns out to be worth a meeting."""
        actions.manually_classify(stored_lead.id, 'low-quality', actor='sam')

        lead = actions.reroute(stored_lead.id, 'customer', 'They replied asking for a demo',
                               new_classification='high-quality', actor='dana')

        assert lead.status == 'review'
        assert lead.reroute.source == 'customer'
        assert lead.reroute.previous_terminal_state == 'done'
        assert lead.reroute.original_classification is Classification.LOW_QUALITY
        assert len(lead.classifications) == 2
        latest = lead.classifications.current()
        assert latest.author is Author.HUMAN
        assert latest.classification is Classification.HIGH_QUALITY
        assert lead.content.kind == 'generated'
        notify_reroute.assert_called_once()

    def test_reroute_without_classification(self, actions, stored_lead):
        actions.manually_classify(stored_lead.id, 'support', actor='sam')
        lead = actions.reroute(stored_lead.id, 'support', 'Not a product question')
        assert lead.status == 'classify'
        assert lead.edit_note == '[Support reroute] Not a product question'
        assert lead.current_classification() is Classification.SUPPORT

    def test_reroute_requires_done(self, actions, in_review, notify_reroute):
        with pytest.raises(InvalidTransitionError):
            actions.reroute(in_review.id, 'sales', 'wrong queue')
        notify_reroute.assert_not_called()

    def test_reroute_unknown_source(self, actions, stored_lead):
        actions.manually_classify(stored_lead.id, 'support', actor='sam')
        with pytest.raises(ValidationError):
            actions.reroute(stored_lead.id, 'marketing', 'because')
