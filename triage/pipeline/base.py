"""
Pipeline stage contracts.

Every stage adapter implements StageAdapter.run() and returns a StageResult
whose ``output`` is checkpointed before the next stage starts. Collaborators
(classifier, content generator, reference matcher) are injected through the
PipelineContext; the manager only sees the uniform interface.
"""
import random
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List, Any, Callable, Optional, Tuple, Type

from triage.errors import InvalidClassificationError
from triage.models.classification import Classification, parse_classification
from triage.models.lead import Lead, MatchedReference
from triage.models.snapshot import ConfigurationSnapshot
from triage.timestamps import utcnow


@dataclass
class StageResult:
    """Uniform output from every pipeline stage."""
    output: Dict[str, Any] = field(default_factory=dict)
    skipped: bool = False
    errors: List[str] = field(default_factory=list)
    meta: Dict[str, Any] = field(default_factory=dict)


# ── Collaborator contracts ────────────────────────────────────────────────────

@dataclass(frozen=True)
class ResearchReport:
    report: str
    industry: Optional[str] = None


@dataclass(frozen=True)
class ClassifierVerdict:
    """A classifier's answer; anything outside the closed set is rejected on construction."""
    classification: Classification
    confidence: float
    reasoning: str = ''
    existing_customer: bool = False

    def __post_init__(self):
        object.__setattr__(self, 'classification', parse_classification(self.classification))
        try:
            confidence = float(self.confidence)
        except (TypeError, ValueError):
            raise InvalidClassificationError(self.classification.value,
                                             f"confidence {self.confidence!r} is not a number") from None
        if not 0.0 <= confidence <= 1.0:
            raise InvalidClassificationError(self.classification.value,
                                             f"confidence {confidence} is outside [0, 1]")
        object.__setattr__(self, 'confidence', confidence)


@dataclass(frozen=True)
class GeneratedContent:
    body: str
    references: Tuple[str, ...] = ()


class Classifier(ABC):
    """Researches a lead and classifies it into the closed set."""

    @abstractmethod
    def research(self, lead: Lead) -> ResearchReport:
        ...

    @abstractmethod
    def classify(self, lead: Lead, report: str) -> ClassifierVerdict:
        ...


class ContentGenerator(ABC):

    @abstractmethod
    def generate(self, lead: Lead, report: str, classification: Classification,
                 references: List[MatchedReference]) -> GeneratedContent:
        ...


class ReferenceMatcher(ABC):

    @abstractmethod
    def match(self, lead: Lead, industry: str) -> List[MatchedReference]:
        ...


# ── Context + adapter base ────────────────────────────────────────────────────

def rollout_rng(lead_id: str, attempt: int) -> random.Random:
    """Rollout draws are seeded per lead and attempt, so a replayed decide stage draws the same."""
    return random.Random(f"{lead_id}:{attempt}")


@dataclass
class PipelineContext:
    lead_id: str
    attempt: int
    snapshot: ConfigurationSnapshot
    classifier: Classifier
    generator: ContentGenerator
    store: Any
    matcher: Optional[ReferenceMatcher] = None
    ledger_baseline: int = 0
    outputs: Dict[str, Dict[str, Any]] = field(default_factory=dict)
    clock: Callable[[], datetime] = utcnow
    rng_factory: Callable[[str, int], random.Random] = rollout_rng

    def now(self) -> datetime:
        return self.clock()

    def output_of(self, stage: str) -> Dict[str, Any]:
        return self.outputs.get(stage) or {}


class StageAdapter(ABC):
    """
    Base class for all pipeline stage adapters.

    The adapter receives the lead as currently stored and the run context,
    does its work and returns a StageResult. A best-effort stage that fails
    yields ``fallback()`` instead of failing the run.
    """
    stage: str = ''

    # Metadata served by GET /api/pipeline
    description: str = ''
    apis: List[str] = []
    best_effort: bool = False

    @abstractmethod
    def run(self, lead: Lead, context: PipelineContext) -> StageResult:
        ...

    def is_best_effort(self, context: PipelineContext) -> bool:
        return self.best_effort

    def fallback(self, lead: Lead, context: PipelineContext, error: Exception) -> StageResult:
        return StageResult(output={}, skipped=True, errors=[str(error)])


def get_adapter(stage_registry: Dict[str, Type[StageAdapter]], stage: str) -> StageAdapter:
    """Look up and instantiate the adapter for a stage."""
    adapter_cls = stage_registry.get(stage)
    if not adapter_cls:
        raise ValueError(f"No adapter registered for stage '{stage}'")
    return adapter_cls()


def get_pipeline_info(stage_registry: Dict[str, Type[StageAdapter]]) -> Dict[str, Any]:
    """
    Serialize the stage registry into a JSON-friendly dict.

    Returns: { "research": { "description": "...", "apis": [...], "best_effort": false }, ... }
    """
    return {
        stage_name: {
            'description': cls.description or '',
            'apis': cls.apis if isinstance(cls.apis, list) else [],
            'best_effort': cls.best_effort,
        }
        for stage_name, cls in stage_registry.items()
    }
