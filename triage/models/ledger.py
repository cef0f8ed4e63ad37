"""
ClassificationLedger — append-only history of judgments about a lead.

Entries are kept in insertion order and never edited or removed; the lead's
current classification is always the last entry. ``append`` returns a new
ledger, so a ledger held by a persisted Lead can never change underneath it.
"""
from dataclasses import dataclass
from typing import Any, Dict, Iterator, List, Optional, Tuple

from triage.models.classification import ClassificationEntry, Classification


@dataclass(frozen=True)
class ClassificationLedger:
    entries: Tuple[ClassificationEntry, ...] = ()

    def __post_init__(self):
        object.__setattr__(self, 'entries', tuple(self.entries))

    def __len__(self) -> int:
        return len(self.entries)

    def __iter__(self) -> Iterator[ClassificationEntry]:
        return iter(self.entries)

    def append(self, entry: ClassificationEntry) -> 'ClassificationLedger':
        if not isinstance(entry, ClassificationEntry):
            raise TypeError(f"Expected ClassificationEntry, got {type(entry).__name__}")
        if entry.event_id and self.has_event(entry.event_id):
            raise ValueError(f"Event {entry.event_id} is already recorded")
        return ClassificationLedger(self.entries + (entry,))

    def current(self) -> Optional[ClassificationEntry]:
        return self.entries[-1] if self.entries else None

    def current_classification(self) -> Optional[Classification]:
        entry = self.current()
        return entry.classification if entry else None

    def has_event(self, event_id: str) -> bool:
        return any(e.event_id == event_id for e in self.entries)

    def bot_entries(self) -> List[ClassificationEntry]:
        return [e for e in self.entries if e.is_bot]

    def human_entries(self) -> List[ClassificationEntry]:
        return [e for e in self.entries if e.is_human]

    def to_list(self) -> List[Dict[str, Any]]:
        return [e.to_dict() for e in self.entries]

    @classmethod
    def from_list(cls, items: Optional[List[Dict[str, Any]]]) -> 'ClassificationLedger':
        return cls(tuple(ClassificationEntry.from_dict(item) for item in (items or [])))
