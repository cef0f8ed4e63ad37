"""
AutonomyDecision — what should happen to a lead once it has a classification.
"""
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Optional

from triage.timestamps import to_iso, from_iso


@dataclass(frozen=True)
class AutonomyDecision:
    """
    ``auto_send`` means act now: status becomes done with ``sent_at`` and
    ``sent_by`` set. ``held_for_review`` marks a confident classification that
    was still sent to a person (rollout or high-value gate). ``routed_to_human``
    means the bot's verdict is kept for comparison only and a person classifies
    the lead from scratch.
    """
    needs_review: bool
    applied_threshold: float
    auto_send: bool = False
    sent_at: Optional[datetime] = None
    sent_by: Optional[str] = None
    held_for_review: bool = False
    routed_to_human: bool = False

    def __post_init__(self):
        if self.auto_send and self.needs_review:
            raise ValueError("A decision cannot both need review and auto-send")
        if self.auto_send and (self.sent_at is None or not self.sent_by):
            raise ValueError("Auto-send decisions require sent_at and sent_by")

    @property
    def status(self) -> str:
        if self.auto_send:
            return 'done'
        if self.routed_to_human:
            return 'classify'
        return 'review'

    def to_dict(self) -> Dict[str, Any]:
        return {
            'needs_review': self.needs_review,
            'applied_threshold': self.applied_threshold,
            'auto_send': self.auto_send,
            'sent_at': to_iso(self.sent_at),
            'sent_by': self.sent_by,
            'held_for_review': self.held_for_review,
            'routed_to_human': self.routed_to_human,
            'status': self.status,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'AutonomyDecision':
        return cls(
            needs_review=bool(data['needs_review']),
            applied_threshold=float(data['applied_threshold']),
            auto_send=bool(data.get('auto_send', False)),
            sent_at=from_iso(data.get('sent_at')),
            sent_by=data.get('sent_by'),
            held_for_review=bool(data.get('held_for_review', False)),
            routed_to_human=bool(data.get('routed_to_human', False)),
        )
