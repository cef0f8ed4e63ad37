"""
Lead — the domain record a contact-form submission becomes.

Leads are immutable values. Every change goes through a LeadStateMachine
transition, which returns a new Lead, and the store persists it with a
compare-and-swap on ``version``.
"""
import re
import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Any, Dict, Optional, Tuple

from triage.errors import ValidationError
from triage.models.classification import Classification, parse_classification
from triage.models.ledger import ClassificationLedger
from triage.timestamps import utcnow, to_iso, from_iso

_EMAIL_RE = re.compile(r'^[^@\s]+@[^@\s]+\.[^@\s]+$')
MIN_MESSAGE_LENGTH = 10


@dataclass(frozen=True)
class Submission:
    name: str
    email: str
    company: str
    message: str

    @classmethod
    def from_form(cls, form: Dict[str, Any]) -> 'Submission':
        """Validate a raw contact-form payload."""
        if not isinstance(form, dict):
            raise ValidationError("Submission must be a JSON object")
        values = {k: str(form.get(k) or '').strip() for k in ('name', 'email', 'company', 'message')}
        missing = [k for k, v in values.items() if not v]
        if missing:
            raise ValidationError(f"Missing required fields: {', '.join(missing)}")
        if not _EMAIL_RE.match(values['email']):
            raise ValidationError(f"Invalid email address: {values['email']!r}")
        if len(values['message']) < MIN_MESSAGE_LENGTH:
            raise ValidationError(f"Message must be at least {MIN_MESSAGE_LENGTH} characters")
        return cls(**values)

    @property
    def email_domain(self) -> str:
        return self.email.rsplit('@', 1)[-1].lower()

    def to_dict(self) -> Dict[str, str]:
        return {'name': self.name, 'email': self.email, 'company': self.company, 'message': self.message}


@dataclass(frozen=True)
class BotResearch:
    """What the classifier concluded on its own; recorded once, never overwritten."""
    report: str
    classification: Classification
    confidence: float
    reasoning: str = ''
    industry: Optional[str] = None
    existing_customer: bool = False
    timestamp: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'report': self.report,
            'classification': self.classification.value,
            'confidence': self.confidence,
            'reasoning': self.reasoning,
            'industry': self.industry,
            'existing_customer': self.existing_customer,
            'timestamp': to_iso(self.timestamp),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'BotResearch':
        return cls(
            report=data.get('report', ''),
            classification=parse_classification(data['classification']),
            confidence=data['confidence'],
            reasoning=data.get('reasoning', ''),
            industry=data.get('industry'),
            existing_customer=bool(data.get('existing_customer', False)),
            timestamp=from_iso(data.get('timestamp')),
        )


@dataclass(frozen=True)
class MatchedReference:
    reference_id: str
    company: str
    industry: Optional[str] = None
    url: Optional[str] = None
    match_type: str = 'industry'
    match_reason: str = ''

    def to_dict(self) -> Dict[str, Any]:
        return {
            'reference_id': self.reference_id,
            'company': self.company,
            'industry': self.industry,
            'url': self.url,
            'match_type': self.match_type,
            'match_reason': self.match_reason,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'MatchedReference':
        return cls(**{k: data.get(k) for k in ('reference_id', 'company', 'industry', 'url')},
                   match_type=data.get('match_type', 'industry'),
                   match_reason=data.get('match_reason', ''))


@dataclass(frozen=True)
class LeadContent:
    """Outbound response: generated text, or a reference to a canned template."""
    kind: str
    text: Optional[str] = None
    template_key: Optional[str] = None
    created_at: Optional[datetime] = None
    edited_at: Optional[datetime] = None
    last_edited_by: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'kind': self.kind,
            'text': self.text,
            'template_key': self.template_key,
            'created_at': to_iso(self.created_at),
            'edited_at': to_iso(self.edited_at),
            'last_edited_by': self.last_edited_by,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'LeadContent':
        return cls(
            kind=data['kind'],
            text=data.get('text'),
            template_key=data.get('template_key'),
            created_at=from_iso(data.get('created_at')),
            edited_at=from_iso(data.get('edited_at')),
            last_edited_by=data.get('last_edited_by'),
        )


@dataclass(frozen=True)
class Reroute:
    """Why a done lead was reopened, and what it looked like before."""
    source: str
    reason: str
    previous_terminal_state: str
    original_classification: Optional[Classification] = None
    previous_outcome: Optional[str] = None
    timestamp: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'source': self.source,
            'reason': self.reason,
            'previous_terminal_state': self.previous_terminal_state,
            'original_classification': (self.original_classification.value
                                        if self.original_classification else None),
            'previous_outcome': self.previous_outcome,
            'timestamp': to_iso(self.timestamp),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Reroute':
        original = data.get('original_classification')
        return cls(
            source=data['source'],
            reason=data.get('reason', ''),
            previous_terminal_state=data['previous_terminal_state'],
            original_classification=parse_classification(original) if original else None,
            previous_outcome=data.get('previous_outcome'),
            timestamp=from_iso(data.get('timestamp')),
        )


@dataclass(frozen=True)
class Lead:
    id: str
    submission: Submission
    status: str = 'classify'
    classifications: ClassificationLedger = field(default_factory=ClassificationLedger)
    bot_research: Optional[BotResearch] = None
    content: Optional[LeadContent] = None
    matched_references: Tuple[MatchedReference, ...] = ()
    reroute: Optional[Reroute] = None
    received_at: Optional[datetime] = None
    sent_at: Optional[datetime] = None
    sent_by: Optional[str] = None
    outcome: Optional[str] = None
    edit_note: Optional[str] = None
    configuration_version: Optional[int] = None
    metadata: Dict[str, Any] = field(default_factory=dict)
    version: int = 0

    @classmethod
    def new(cls, submission: Submission, lead_id: Optional[str] = None,
            metadata: Optional[Dict[str, Any]] = None,
            received_at: Optional[datetime] = None) -> 'Lead':
        return cls(
            id=lead_id or str(uuid.uuid4()),
            submission=submission,
            received_at=received_at or utcnow(),
            metadata=dict(metadata or {}),
        )

    def evolve(self, **changes) -> 'Lead':
        return replace(self, **changes)

    def current_classification(self) -> Optional[Classification]:
        return self.classifications.current_classification()

    def to_dict(self) -> Dict[str, Any]:
        """Stored document; ``version`` lives in its own column, not in here."""
        return {
            'id': self.id,
            'submission': self.submission.to_dict(),
            'status': self.status,
            'classifications': self.classifications.to_list(),
            'bot_research': self.bot_research.to_dict() if self.bot_research else None,
            'content': self.content.to_dict() if self.content else None,
            'matched_references': [r.to_dict() for r in self.matched_references],
            'reroute': self.reroute.to_dict() if self.reroute else None,
            'received_at': to_iso(self.received_at),
            'sent_at': to_iso(self.sent_at),
            'sent_by': self.sent_by,
            'outcome': self.outcome,
            'edit_note': self.edit_note,
            'configuration_version': self.configuration_version,
            'metadata': dict(self.metadata),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any], version: int = 0) -> 'Lead':
        return cls(
            id=data['id'],
            submission=Submission(**data['submission']),
            status=data.get('status', 'classify'),
            classifications=ClassificationLedger.from_list(data.get('classifications')),
            bot_research=BotResearch.from_dict(data['bot_research']) if data.get('bot_research') else None,
            content=LeadContent.from_dict(data['content']) if data.get('content') else None,
            matched_references=tuple(MatchedReference.from_dict(r)
                                     for r in data.get('matched_references') or []),
            reroute=Reroute.from_dict(data['reroute']) if data.get('reroute') else None,
            received_at=from_iso(data.get('received_at')),
            sent_at=from_iso(data.get('sent_at')),
            sent_by=data.get('sent_by'),
            outcome=data.get('outcome'),
            edit_note=data.get('edit_note'),
            configuration_version=data.get('configuration_version'),
            metadata=dict(data.get('metadata') or {}),
            version=version,
        )

    def to_api(self) -> Dict[str, Any]:
        data = self.to_dict()
        data['version'] = self.version
        data['current_classification'] = (self.current_classification().value
                                          if self.current_classification() else None)
        return data
