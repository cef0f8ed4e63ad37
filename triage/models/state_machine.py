"""
LeadStateMachine — the only place a lead's status changes.

    classify ──▶ review ──▶ done     classification, then approve or reject
    classify ──▶ done                auto-send
    review   ──▶ review | done       reclassify
    done     ──▶ review | classify   reroute

Every transition is a pure function from a Lead (plus an event) to a new
Lead; persisting the result is the caller's job. Forbidden transitions raise
InvalidTransitionError and leave nothing half-applied.
"""
from datetime import datetime
from typing import Optional

from triage.config import REROUTE_SOURCES
from triage.errors import InvalidTransitionError, ValidationError
from triage.models.classification import Classification, ClassificationEntry, parse_classification
from triage.models.decision import AutonomyDecision
from triage.models.lead import BotResearch, Lead, LeadContent, Reroute
from triage.timestamps import utcnow

CLASSIFY = 'classify'
REVIEW = 'review'
DONE = 'done'

# Outcome recorded when a lead reaches done with a given classification
OUTCOMES = {
    Classification.HIGH_QUALITY: 'sent_meeting_offer',
    Classification.LOW_QUALITY: 'sent_generic',
    Classification.SUPPORT: 'forwarded_support',
    Classification.EXISTING: 'forwarded_account_team',
}
CLOSED = 'closed'


def terminal_outcome(classification) -> str:
    return OUTCOMES[parse_classification(classification)]


def _require(lead: Lead, action: str, *allowed: str, detail: str = ''):
    if lead.status not in allowed:
        raise InvalidTransitionError(action, lead.status, detail)


def _require_classified(lead: Lead, action: str):
    if lead.current_classification() is None:
        raise InvalidTransitionError(action, lead.status, 'lead has no classification')


# ── Classification ────────────────────────────────────────────────────────────

def apply_classification(lead: Lead, entry: ClassificationEntry, decision: AutonomyDecision) -> Lead:
    """
    Append a classification and move the lead according to the decision.

    Allowed from classify and from review (reclassification). An auto-send
    decision finishes the lead; anything else parks it in review.
    """
    _require(lead, 'classify', CLASSIFY, REVIEW)
    if decision.routed_to_human:
        raise ValueError("A decision routed to a human does not classify the lead")
    if entry.event_id and lead.classifications.has_event(entry.event_id):
        raise InvalidTransitionError('classify', lead.status, f"event {entry.event_id} already recorded")

    ledger = lead.classifications.append(entry)
    if decision.auto_send:
        return lead.evolve(
            classifications=ledger,
            status=DONE,
            sent_at=decision.sent_at,
            sent_by=decision.sent_by,
            outcome=terminal_outcome(entry.classification),
        )
    return lead.evolve(classifications=ledger, status=REVIEW)


def record_bot_research(lead: Lead, research: BotResearch) -> Lead:
    if lead.bot_research is not None:
        raise InvalidTransitionError('record research for', lead.status, 'bot research is already set')
    return lead.evolve(bot_research=research)


def set_content(lead: Lead, content: LeadContent, replace: bool = False) -> Lead:
    """Attach outbound content; existing content is only swapped when ``replace`` is set."""
    if lead.status == DONE:
        raise InvalidTransitionError('attach content to', lead.status)
    if lead.content is not None and not replace:
        raise InvalidTransitionError('attach content to', lead.status, 'content is already set')
    return lead.evolve(content=content)


# ── Human review ──────────────────────────────────────────────────────────────

def approve(lead: Lead, actor: str, now: Optional[datetime] = None) -> Lead:
    """Send the lead's response (or forward it) as classified: review → done."""
    _require(lead, 'approve', REVIEW)
    _require_classified(lead, 'approve')
    return lead.evolve(
        status=DONE,
        sent_at=now or utcnow(),
        sent_by=actor,
        outcome=terminal_outcome(lead.current_classification()),
    )


def reject(lead: Lead, actor: str, reason: Optional[str] = None) -> Lead:
    """Close the lead without sending anything: review → done."""
    _require(lead, 'reject', REVIEW)
    _require_classified(lead, 'reject')
    note = f"[Rejected by {actor}]"
    if reason:
        note += f" {reason}"
    return lead.evolve(status=DONE, sent_at=None, sent_by=None, outcome=CLOSED, edit_note=note)


def edit_content(lead: Lead, text: str, editor: str, note: Optional[str] = None,
                 now: Optional[datetime] = None) -> Lead:
    _require(lead, 'edit content of', REVIEW)
    if not text or not text.strip():
        raise ValidationError("Content text must not be empty")
    now = now or utcnow()
    if lead.content is None:
        content = LeadContent(kind='manual', text=text, created_at=now, edited_at=now,
                              last_edited_by=editor)
    else:
        content = LeadContent(kind=lead.content.kind, text=text, template_key=lead.content.template_key,
                              created_at=lead.content.created_at, edited_at=now, last_edited_by=editor)
    return lead.evolve(content=content, edit_note=note if note is not None else lead.edit_note)


# ── Reroute ───────────────────────────────────────────────────────────────────

def reroute(lead: Lead, source: str, reason: str,
            new_entry: Optional[ClassificationEntry] = None,
            now: Optional[datetime] = None) -> Lead:
    """
    Reopen a done lead.

    The ledger keeps every earlier entry. With a new classification the lead
    goes back to review; without one it goes back to classify for a person to
    decide. Send/outcome fields are cleared and the previous ones are kept on
    the Reroute record.
    """
    _require(lead, 'reroute', DONE, detail='only done leads can be rerouted')
    if source not in REROUTE_SOURCES:
        raise ValidationError(f"Reroute source must be one of {REROUTE_SOURCES}, got {source!r}")
    if not reason or not reason.strip():
        raise ValidationError("A reroute needs a reason")

    now = now or utcnow()
    record = Reroute(
        source=source,
        reason=reason,
        previous_terminal_state=lead.status,
        original_classification=lead.current_classification(),
        previous_outcome=lead.outcome,
        timestamp=now,
    )
    ledger = lead.classifications
    if new_entry is not None:
        if new_entry.event_id and ledger.has_event(new_entry.event_id):
            raise InvalidTransitionError('reroute', lead.status, f"event {new_entry.event_id} already recorded")
        ledger = ledger.append(new_entry)

    return lead.evolve(
        reroute=record,
        classifications=ledger,
        status=REVIEW if new_entry is not None else CLASSIFY,
        sent_at=None,
        sent_by=None,
        outcome=None,
        edit_note=f"[{source.capitalize()} reroute] {reason}",
    )
