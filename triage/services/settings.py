"""
Configuration provider — versioned autonomy settings.

The active configuration is the newest row in ``configurations``. Until one
is saved, defaults come from settings_defaults.yaml (hardcoded fallback if
the file is missing) as version 0. Saved documents are validated by building
a snapshot from them before anything is written.
"""
import copy
import logging
from typing import Any, Dict

import yaml

from triage.config import SETTINGS_DEFAULTS_PATH
from triage.errors import ValidationError
from triage.models.db_configuration import DbConfiguration
from triage.models.snapshot import ConfigurationSnapshot
from triage.timestamps import utcnow

logger = logging.getLogger('services.settings')

_defaults = None


def _default_config() -> Dict[str, Any]:
    """Hardcoded fallback, mirrors settings_defaults.yaml."""
    return {
        'version': 0,
        'thresholds': {
            'high-quality': 0.98,
            'low-quality': 0.51,
            'support': 0.90,
            'existing': 0.95,
        },
        'rollout': {'enabled': False, 'percentage': 0.0, 'mode': 'post_threshold'},
        'highest_value_classification': 'high-quality',
        'allow_high_value_auto_send': False,
        'response_enabled': {
            'high-quality': True,
            'low-quality': False,
            'support': False,
            'existing': False,
        },
        'content_policy': {
            'high-quality': 'required',
            'low-quality': 'template',
            'support': 'none',
            'existing': 'none',
        },
        'reference_matching': False,
        'auto_forward_existing_customers': True,
    }


def load_defaults() -> Dict[str, Any]:
    """Load the default settings from YAML, with in-memory cache and hardcoded fallback."""
    global _defaults
    if _defaults is None:
        try:
            with open(SETTINGS_DEFAULTS_PATH, 'r') as f:
                _defaults = yaml.safe_load(f)
            logger.info("Settings defaults loaded from YAML (version=%s)", _defaults.get('version', '?'))
        except (OSError, yaml.YAMLError) as e:
            logger.warning("Settings defaults YAML unavailable (%s), using hardcoded defaults", e)
            _defaults = _default_config()
    return copy.deepcopy(_defaults)


def _merge(base: Dict[str, Any], overrides: Dict[str, Any]) -> Dict[str, Any]:
    merged = copy.deepcopy(base)
    for key, value in overrides.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _merge(merged[key], value)
        else:
            merged[key] = value
    return merged


class ConfigurationProvider:
    """Reads and writes configuration versions through a session factory."""

    def __init__(self, session_factory=None):
        self._session_factory = session_factory

    def _session(self):
        if self._session_factory is not None:
            return self._session_factory()
        from triage import database
        return database.get_session()

    def snapshot(self) -> ConfigurationSnapshot:
        """The active configuration as an immutable snapshot."""
        session = self._session()
        try:
            record = (session.query(DbConfiguration)
                      .order_by(DbConfiguration.version.desc())
                      .first())
            if record is None:
                return ConfigurationSnapshot.from_dict(load_defaults(), version=0, updated_by='defaults')
            return ConfigurationSnapshot.from_dict(
                record.data, version=record.version,
                updated_at=record.created_at, updated_by=record.updated_by or '',
            )
        finally:
            session.close()

    def save(self, changes: Dict[str, Any], updated_by: str) -> ConfigurationSnapshot:
        """
        Store a new configuration version.

        ``changes`` is merged over the active settings, so callers may send
        only the keys they want to change.
        """
        if not isinstance(changes, dict):
            raise ValidationError("Settings must be a JSON object")
        current = self.snapshot().to_dict()
        for key in ('version', 'updated_at', 'updated_by'):
            current.pop(key, None)
        data = _merge(current, changes)
        data.pop('version', None)
        ConfigurationSnapshot.from_dict(data, version=0)

        session = self._session()
        try:
            record = DbConfiguration(data=data, updated_by=updated_by or '', created_at=utcnow())
            session.add(record)
            session.commit()
            version = record.version
            created_at = record.created_at
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()
        logger.info("Configuration version %s saved by %s", version, updated_by or 'unknown')
        return ConfigurationSnapshot.from_dict(data, version=version, updated_at=created_at,
                                               updated_by=updated_by or '')
