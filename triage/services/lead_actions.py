"""
Lead actions — submissions and human decisions on leads.

Every action loads the lead, applies a pure LeadStateMachine transition and
compare-and-swaps the result. On a write conflict the lead is re-read and
the transition applied again, up to ACTION_MAX_CONFLICTS times.
"""
import logging
from typing import Any, Callable, Dict, Optional

from triage.config import ACTION_MAX_CONFLICTS
from triage.errors import InvalidTransitionError
from triage.models.classification import Classification, ClassificationEntry, parse_classification
from triage.models.lead import Lead, LeadContent, Submission
from triage.models.snapshot import ConfigurationSnapshot
from triage.models.state_machine import (
    CLASSIFY, DONE, REVIEW, apply_classification, approve, edit_content, reject, reroute, set_content,
)
from triage.pipeline.decide import human_decision, system_decision
from triage.pipeline.manager import default_collaborators, launch_pipeline
from triage.services.notifications import notify_lead_rerouted
from triage.services.reference_data import CustomerDirectory, CustomerMatch
from triage.services.runs import RunStore
from triage.services.settings import ConfigurationProvider
from triage.services.store import LeadStore
from triage.timestamps import utcnow

logger = logging.getLogger('services.lead_actions')


class LeadActions:

    def __init__(self, store=None, runs=None, settings=None, generator=None, customers=None,
                 launcher: Optional[Callable[[str], Any]] = None,
                 notify_reroute: Optional[Callable[[Lead], None]] = None,
                 clock=utcnow, max_conflicts: int = ACTION_MAX_CONFLICTS):
        self.store = store or LeadStore()
        self.runs = runs or RunStore()
        self.settings = settings or ConfigurationProvider()
        self._generator = generator
        self.customers = customers or CustomerDirectory()
        self._launch = launcher or launch_pipeline
        self._notify_reroute = notify_reroute or notify_lead_rerouted
        self._clock = clock
        self.max_conflicts = max_conflicts

    @property
    def generator(self):
        if self._generator is None:
            self._generator = default_collaborators()[1]
        return self._generator

    def _mutate(self, lead_id: str, transition: Callable[[Lead], Lead]) -> Lead:
        return self.store.mutate(lead_id, transition, self.max_conflicts)

    # ── Submission ────────────────────────────────────────────────────────────

    def submit(self, form: Dict[str, Any], metadata: Optional[Dict[str, Any]] = None) -> Lead:
        """
        Validate a contact-form submission, store it and enqueue its pipeline.

        A submission from a known CRM customer is forwarded to the account
        team straight away and never reaches the classifier.
        """
        submission = Submission.from_form(form)
        lead = Lead.new(submission, metadata=metadata, received_at=self._clock())
        match = self.customers.find(submission)
        if match is not None:
            snapshot = self.settings.snapshot()
            if snapshot.auto_forward_existing_customers:
                return self._forward_existing_customer(lead, match, snapshot)

        lead = self.store.create(lead)
        self.runs.create(lead.id)
        self._launch(lead.id)
        logger.info("Lead %s submitted (%s)", lead.id, submission.company, extra={'lead_id': lead.id})
        return lead

    def _forward_existing_customer(self, lead: Lead, match: CustomerMatch,
                                   snapshot: ConfigurationSnapshot) -> Lead:
        entry = ClassificationEntry.system(Classification.EXISTING, timestamp=lead.received_at,
                                           applied_threshold=snapshot.threshold_for(Classification.EXISTING))
        forwarded = apply_classification(lead, entry, system_decision(snapshot, now=lead.received_at))
        forwarded = forwarded.evolve(configuration_version=snapshot.version,
                                     metadata={**lead.metadata, 'crm_match': match.to_dict()})
        lead = self.store.create(forwarded)
        logger.info("Lead %s from existing customer %s (%s), forwarded to account team",
                    lead.id, match.company, match.reason, extra={'lead_id': lead.id})
        return lead

    # ── Classification ────────────────────────────────────────────────────────

    def manually_classify(self, lead_id: str, classification, actor: str) -> Lead:
        """A person classifies a lead that has no classification yet."""
        classification = parse_classification(classification)
        snapshot = self.settings.snapshot()
        now = self._clock()

        def transition(lead: Lead) -> Lead:
            if lead.status != CLASSIFY:
                raise InvalidTransitionError('manually classify', lead.status,
                                             'use reclassify for classified leads')
            entry = ClassificationEntry.human(classification, actor=actor, timestamp=now,
                                              applied_threshold=snapshot.threshold_for(classification))
            decision = human_decision(classification, actor, snapshot, now)
            return apply_classification(lead, entry, decision).evolve(configuration_version=snapshot.version)

        lead = self._mutate(lead_id, transition)
        logger.info("Lead %s classified %s by %s → %s", lead_id, classification.value, actor, lead.status,
                    extra={'lead_id': lead_id})
        return self._ensure_content(lead, snapshot)

    def reclassify(self, lead_id: str, new_classification, actor: str,
                   source: str = 'sales', reason: Optional[str] = None) -> Lead:
        """
        A person overrides the current classification.

        In review the new classification is applied directly. A done lead is
        rerouted back to review with the new classification appended.
        """
        classification = parse_classification(new_classification)
        snapshot = self.settings.snapshot()
        now = self._clock()
        rerouted = []

        def transition(lead: Lead) -> Lead:
            rerouted.clear()
            entry = ClassificationEntry.human(classification, actor=actor, timestamp=now,
                                              applied_threshold=snapshot.threshold_for(classification))
            if lead.status == CLASSIFY:
                raise InvalidTransitionError('reclassify', lead.status, 'lead has not been classified yet')
            if lead.status == DONE:
                rerouted.append(True)
                return reroute(lead, source, reason or f"Reclassified as {classification.value} by {actor}",
                               new_entry=entry, now=now)
            decision = human_decision(classification, actor, snapshot, now)
            return apply_classification(lead, entry, decision)

        lead = self._mutate(lead_id, transition)
        logger.info("Lead %s reclassified %s by %s → %s", lead_id, classification.value, actor, lead.status,
                    extra={'lead_id': lead_id})
        if rerouted:
            self._notify_reroute(lead)
        return self._ensure_content(lead, snapshot)

    # ── Review ────────────────────────────────────────────────────────────────

    def approve(self, lead_id: str, actor: str) -> Lead:
        snapshot = self.settings.snapshot()
        now = self._clock()

        def transition(lead: Lead) -> Lead:
            current = lead.current_classification()
            if (current is not None and lead.content is None
                    and snapshot.content_policy_for(current) == 'required'):
                raise InvalidTransitionError('approve', lead.status, 'there is no reply to send yet')
            return approve(lead, actor, now=now)

        lead = self._mutate(lead_id, transition)
        logger.info("Lead %s approved by %s (%s)", lead_id, actor, lead.outcome, extra={'lead_id': lead_id})
        return lead

    def reject(self, lead_id: str, actor: str, reason: Optional[str] = None) -> Lead:
        lead = self._mutate(lead_id, lambda current: reject(current, actor, reason))
        logger.info("Lead %s rejected by %s", lead_id, actor, extra={'lead_id': lead_id})
        return lead

    def edit_content(self, lead_id: str, text: str, editor: str, note: Optional[str] = None) -> Lead:
        now = self._clock()
        return self._mutate(lead_id, lambda current: edit_content(current, text, editor, note, now=now))

    # ── Reroute ───────────────────────────────────────────────────────────────

    def reroute(self, lead_id: str, source: str, reason: str, new_classification=None,
                actor: Optional[str] = None) -> Lead:
        """
        Send a done lead back: to review with a new classification, or to
        classify for a person to decide.
        """
        snapshot = self.settings.snapshot()
        now = self._clock()
        classification = parse_classification(new_classification) if new_classification else None

        def transition(lead: Lead) -> Lead:
            entry = None
            if classification is not None:
                entry = ClassificationEntry.human(classification, actor=actor or source, timestamp=now,
                                                  applied_threshold=snapshot.threshold_for(classification))
            return reroute(lead, source, reason, new_entry=entry, now=now)

        lead = self._mutate(lead_id, transition)
        logger.info("Lead %s rerouted by %s → %s", lead_id, source, lead.status, extra={'lead_id': lead_id})
        self._notify_reroute(lead)
        return self._ensure_content(lead, snapshot)

    # ── Content ───────────────────────────────────────────────────────────────

    def _ensure_content(self, lead: Lead, snapshot: ConfigurationSnapshot) -> Lead:
        """
        Generate a reply for a lead in review whose classification needs one
        and does not have a generated reply yet. Best-effort: the reviewer can
        always write one by hand.
        """
        current = lead.current_classification()
        if (lead.status != REVIEW or current is None
                or snapshot.content_policy_for(current) != 'required'
                or (lead.content is not None and lead.content.kind != 'template')):
            return lead

        report = lead.bot_research.report if lead.bot_research else ''
        try:
            generated = self.generator.generate(lead, report, current, list(lead.matched_references))
        except Exception as e:
            # The classification is already stored; a reviewer can write the reply by hand
            logger.warning("Lead %s: could not generate reply (%s), leaving it to the reviewer", lead.id, e,
                           exc_info=True, extra={'lead_id': lead.id})
            return lead
        if not generated.body.strip():
            return lead

        content = LeadContent(kind='generated', text=generated.body, created_at=self._clock())
        try:
            return self._mutate(lead.id, lambda current_lead: set_content(current_lead, content, replace=True))
        except InvalidTransitionError as e:
            # The lead left review while the reply was being written
            logger.info("Lead %s: reply not attached (%s)", lead.id, e, extra={'lead_id': lead.id})
            return self.store.get(lead.id)
