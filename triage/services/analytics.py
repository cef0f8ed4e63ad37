"""
Agreement analytics — how often people agree with the bot.

Each lead contributes at most one comparison: the bot's verdict against the
first human classification that came after it.

  override: the bot's verdict was on the ledger and a person replaced it
  blind:    the bot's verdict was kept as research only (routed to a person,
            or superseded), so the person classified without seeing it
"""
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional

from triage.models.classification import Classification
from triage.models.lead import Lead

CONFIDENCE_BUCKETS = ['0-50%', '50-70%', '70-90%', '90-100%']


def confidence_bucket(confidence: float) -> str:
    if confidence < 0.5:
        return '0-50%'
    if confidence < 0.7:
        return '50-70%'
    if confidence < 0.9:
        return '70-90%'
    return '90-100%'


@dataclass(frozen=True)
class Comparison:
    lead_id: str
    bot_classification: Classification
    bot_confidence: float
    human_classification: Classification
    comparison_type: str

    @property
    def agreed(self) -> bool:
        return self.bot_classification == self.human_classification


@dataclass
class AgreementCounter:
    total: int = 0
    agreements: int = 0

    def add(self, agreed: bool):
        self.total += 1
        if agreed:
            self.agreements += 1

    @property
    def rate(self) -> float:
        return round(100 * self.agreements / self.total) if self.total else 0

    def to_dict(self) -> Dict[str, Any]:
        return {'total': self.total, 'agreements': self.agreements, 'agreement_rate': self.rate}


@dataclass
class AgreementStats:
    overall: AgreementCounter = field(default_factory=AgreementCounter)
    by_comparison_type: Dict[str, AgreementCounter] = field(
        default_factory=lambda: {'blind': AgreementCounter(), 'override': AgreementCounter()})
    by_classification: Dict[str, AgreementCounter] = field(
        default_factory=lambda: {c.value: AgreementCounter() for c in Classification})
    by_confidence: Dict[str, AgreementCounter] = field(
        default_factory=lambda: {b: AgreementCounter() for b in CONFIDENCE_BUCKETS})
    confusion_matrix: Dict[str, Dict[str, int]] = field(
        default_factory=lambda: {b.value: {h.value: 0 for h in Classification} for b in Classification})

    def add(self, comparison: Comparison):
        agreed = comparison.agreed
        self.overall.add(agreed)
        self.by_comparison_type[comparison.comparison_type].add(agreed)
        self.by_classification[comparison.bot_classification.value].add(agreed)
        self.by_confidence[confidence_bucket(comparison.bot_confidence)].add(agreed)
        self.confusion_matrix[comparison.bot_classification.value][comparison.human_classification.value] += 1

    def to_dict(self) -> Dict[str, Any]:
        return {
            'total_comparisons': self.overall.total,
            'agreements': self.overall.agreements,
            'disagreements': self.overall.total - self.overall.agreements,
            'agreement_rate': self.overall.rate,
            'by_comparison_type': {k: v.to_dict() for k, v in self.by_comparison_type.items()},
            'by_classification': {k: v.to_dict() for k, v in self.by_classification.items()},
            'by_confidence': {k: v.to_dict() for k, v in self.by_confidence.items()},
            'confusion_matrix': self.confusion_matrix,
        }


def compare_lead(lead: Lead) -> Optional[Comparison]:
    """Pair the bot's verdict on a lead with the first human classification after it."""
    entries = list(lead.classifications)
    for idx, entry in enumerate(entries):
        if entry.is_bot:
            human = next((e for e in entries[idx + 1:] if e.is_human), None)
            if human is None:
                return None
            return Comparison(lead.id, entry.classification, entry.confidence,
                              human.classification, 'override')

    if lead.bot_research is None:
        return None
    human = next((e for e in entries if e.is_human), None)
    if human is None:
        return None
    return Comparison(lead.id, lead.bot_research.classification, lead.bot_research.confidence,
                      human.classification, 'blind')


def compute_agreement(leads: Iterable[Lead]) -> AgreementStats:
    stats = AgreementStats()
    for lead in leads:
        comparison = compare_lead(lead)
        if comparison is not None:
            stats.add(comparison)
    return stats


def disagreements(leads: Iterable[Lead], limit: int = 20) -> List[Dict[str, Any]]:
    """Most recent leads where the person and the bot disagreed."""
    rows = []
    for lead in leads:
        comparison = compare_lead(lead)
        if comparison is None or comparison.agreed:
            continue
        rows.append({
            'lead_id': lead.id,
            'company': lead.submission.company,
            'bot_classification': comparison.bot_classification.value,
            'bot_confidence': comparison.bot_confidence,
            'human_classification': comparison.human_classification.value,
            'comparison_type': comparison.comparison_type,
        })
        if len(rows) >= limit:
            break
    return rows
