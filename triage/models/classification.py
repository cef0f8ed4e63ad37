"""
Classification vocabulary and ledger entries.

The set of classifications is closed: values coming from the classifier, the
API or a stored document all go through ``parse_classification`` and anything
unknown is rejected with InvalidClassificationError.
"""
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional

from triage.errors import InvalidClassificationError
from triage.timestamps import utcnow, to_iso, from_iso


class Classification(str, Enum):
    HIGH_QUALITY = 'high-quality'
    LOW_QUALITY = 'low-quality'
    SUPPORT = 'support'
    EXISTING = 'existing'


class Author(str, Enum):
    BOT = 'bot'
    HUMAN = 'human'
    SYSTEM = 'system'


def parse_classification(value) -> Classification:
    if isinstance(value, Classification):
        return value
    try:
        return Classification(value)
    except ValueError:
        allowed = ', '.join(c.value for c in Classification)
        raise InvalidClassificationError(value, f"expected one of: {allowed}") from None


@dataclass(frozen=True)
class ClassificationEntry:
    """
    One judgment about a lead, by the bot, by a person or by a deterministic
    system rule.

    Bot entries always carry a confidence in [0, 1]; human and system entries
    never carry confidence or reasoning. ``event_id`` makes a write idempotent: the ledger
    refuses a second entry with the same id.
    """
    author: Author
    classification: Classification
    timestamp: datetime
    confidence: Optional[float] = None
    reasoning: Optional[str] = None
    applied_threshold: Optional[float] = None
    event_id: Optional[str] = None
    actor: Optional[str] = None

    def __post_init__(self):
        object.__setattr__(self, 'author', Author(self.author))
        object.__setattr__(self, 'classification', parse_classification(self.classification))
        if self.author == Author.BOT:
            if self.confidence is None:
                raise ValueError("Bot classification entries require a confidence")
            if not 0.0 <= self.confidence <= 1.0:
                raise ValueError(f"Confidence {self.confidence} is outside [0, 1]")
        elif self.confidence is not None or self.reasoning is not None:
            raise ValueError(f"{self.author.value.capitalize()} classification entries carry no confidence or reasoning")

    @classmethod
    def bot(cls, classification, confidence: float, reasoning: str = '',
            applied_threshold: Optional[float] = None, event_id: Optional[str] = None,
            timestamp: Optional[datetime] = None) -> 'ClassificationEntry':
        return cls(
            author=Author.BOT,
            classification=classification,
            timestamp=timestamp or utcnow(),
            confidence=float(confidence),
            reasoning=reasoning,
            applied_threshold=applied_threshold,
            event_id=event_id,
            actor='bot',
        )

    @classmethod
    def human(cls, classification, actor: str, applied_threshold: Optional[float] = None,
              event_id: Optional[str] = None,
              timestamp: Optional[datetime] = None) -> 'ClassificationEntry':
        return cls(
            author=Author.HUMAN,
            classification=classification,
            timestamp=timestamp or utcnow(),
            applied_threshold=applied_threshold,
            event_id=event_id,
            actor=actor,
        )

    @classmethod
    def system(cls, classification, applied_threshold: Optional[float] = None,
               event_id: Optional[str] = None,
               timestamp: Optional[datetime] = None) -> 'ClassificationEntry':
        return cls(
            author=Author.SYSTEM,
            classification=classification,
            timestamp=timestamp or utcnow(),
            applied_threshold=applied_threshold,
            event_id=event_id,
            actor='system',
        )

    @property
    def is_bot(self) -> bool:
        return self.author == Author.BOT

    @property
    def is_human(self) -> bool:
        return self.author == Author.HUMAN

    def to_dict(self) -> Dict[str, Any]:
        return {
            'author': self.author.value,
            'classification': self.classification.value,
            'timestamp': to_iso(self.timestamp),
            'confidence': self.confidence,
            'reasoning': self.reasoning,
            'applied_threshold': self.applied_threshold,
            'event_id': self.event_id,
            'actor': self.actor,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'ClassificationEntry':
        return cls(
            author=data['author'],
            classification=data['classification'],
            timestamp=from_iso(data['timestamp']),
            confidence=data.get('confidence'),
            reasoning=data.get('reasoning'),
            applied_threshold=data.get('applied_threshold'),
            event_id=data.get('event_id'),
            actor=data.get('actor'),
        )
