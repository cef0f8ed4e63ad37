"""
ConfigurationSnapshot — immutable view of the autonomy settings.

A snapshot is read once when a lead's pipeline run starts and pinned to that
run, so editing the settings never changes a decision already in flight.
"""
from dataclasses import dataclass, field
from datetime import datetime
from types import MappingProxyType
from typing import Any, Dict, Mapping, Optional

from triage.config import CONTENT_POLICIES, ROLLOUT_MODES
from triage.errors import InvalidClassificationError, ValidationError
from triage.models.classification import Classification, parse_classification
from triage.timestamps import to_iso, from_iso


@dataclass(frozen=True)
class RolloutPolicy:
    enabled: bool = False
    percentage: float = 0.0
    mode: str = 'post_threshold'

    def __post_init__(self):
        if not 0.0 <= self.percentage <= 1.0:
            raise ValidationError(f"rollout.percentage must be within [0, 1], got {self.percentage}")
        if self.mode not in ROLLOUT_MODES:
            raise ValidationError(f"rollout.mode must be one of {ROLLOUT_MODES}, got {self.mode!r}")

    def to_dict(self) -> Dict[str, Any]:
        return {'enabled': self.enabled, 'percentage': self.percentage, 'mode': self.mode}


def _classification_map(raw: Optional[Mapping], name: str, convert) -> Mapping[Classification, Any]:
    if raw is None:
        return MappingProxyType({})
    if not isinstance(raw, Mapping):
        raise ValidationError(f"{name} must be a mapping of classification to value")
    return MappingProxyType({parse_classification(k): convert(k, v) for k, v in raw.items()})


def _threshold(key, value) -> float:
    try:
        value = float(value)
    except (TypeError, ValueError):
        raise ValidationError(f"Threshold for {key} must be a number, got {value!r}") from None
    if not 0.0 <= value <= 1.0:
        raise ValidationError(f"Threshold for {key} must be within [0, 1], got {value}")
    return value


def _policy(key, value) -> str:
    if value not in CONTENT_POLICIES:
        raise ValidationError(f"Content policy for {key} must be one of {CONTENT_POLICIES}, got {value!r}")
    return value


@dataclass(frozen=True)
class ConfigurationSnapshot:
    version: int
    thresholds: Mapping[Classification, float]
    rollout: RolloutPolicy = field(default_factory=RolloutPolicy)
    response_enabled: Mapping[Classification, bool] = field(default_factory=lambda: MappingProxyType({}))
    content_policy: Mapping[Classification, str] = field(default_factory=lambda: MappingProxyType({}))
    allow_high_value_auto_send: bool = False
    highest_value_classification: Classification = Classification.HIGH_QUALITY
    reference_matching: bool = False
    auto_forward_existing_customers: bool = True
    updated_at: Optional[datetime] = None
    updated_by: str = ''

    def threshold_for(self, classification) -> float:
        """Threshold in force for a classification; a missing one is a configuration error."""
        classification = parse_classification(classification)
        if classification not in self.thresholds:
            raise InvalidClassificationError(classification.value, "no confidence threshold configured")
        return self.thresholds[classification]

    def content_policy_for(self, classification) -> str:
        return self.content_policy.get(parse_classification(classification), 'none')

    def response_enabled_for(self, classification) -> bool:
        return bool(self.response_enabled.get(parse_classification(classification), False))

    def to_dict(self) -> Dict[str, Any]:
        return {
            'version': self.version,
            'updated_at': to_iso(self.updated_at),
            'updated_by': self.updated_by,
            'thresholds': {k.value: v for k, v in self.thresholds.items()},
            'rollout': self.rollout.to_dict(),
            'response_enabled': {k.value: v for k, v in self.response_enabled.items()},
            'content_policy': {k.value: v for k, v in self.content_policy.items()},
            'allow_high_value_auto_send': self.allow_high_value_auto_send,
            'highest_value_classification': self.highest_value_classification.value,
            'reference_matching': self.reference_matching,
            'auto_forward_existing_customers': self.auto_forward_existing_customers,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any], version: Optional[int] = None,
                  updated_at=None, updated_by: Optional[str] = None) -> 'ConfigurationSnapshot':
        """
        Build a validated snapshot from a settings document.

        Raises ValidationError for malformed values and InvalidClassificationError
        for keys outside the closed classification set.
        """
        rollout = data.get('rollout') or {}
        try:
            rollout_policy = RolloutPolicy(
                enabled=bool(rollout.get('enabled', False)),
                percentage=float(rollout.get('percentage', 0.0)),
                mode=rollout.get('mode', 'post_threshold'),
            )
        except (TypeError, ValueError) as e:
            raise ValidationError(f"Invalid rollout settings: {e}") from None
        return cls(
            version=int(version if version is not None else data.get('version') or 0),
            thresholds=_classification_map(data.get('thresholds'), 'thresholds', _threshold),
            rollout=rollout_policy,
            response_enabled=_classification_map(data.get('response_enabled'), 'response_enabled',
                                                 lambda k, v: bool(v)),
            content_policy=_classification_map(data.get('content_policy'), 'content_policy', _policy),
            allow_high_value_auto_send=bool(data.get('allow_high_value_auto_send', False)),
            highest_value_classification=parse_classification(
                data.get('highest_value_classification', Classification.HIGH_QUALITY.value)),
            reference_matching=bool(data.get('reference_matching', False)),
            auto_forward_existing_customers=bool(data.get('auto_forward_existing_customers', True)),
            updated_at=from_iso(updated_at if updated_at is not None else data.get('updated_at')),
            updated_by=updated_by if updated_by is not None else data.get('updated_by', ''),
        )
