"""
Analytics + settings routes — bot/human agreement and the autonomy settings.
"""
from flask import Blueprint, request, jsonify

from triage.errors import ValidationError
from triage.services.analytics import compute_agreement, disagreements
from triage.services.settings import ConfigurationProvider
from triage.services.store import LeadStore

bp = Blueprint('analytics', __name__)


@bp.route('/api/analytics/agreement')
def agreement():
    leads = LeadStore().list_leads()
    stats = compute_agreement(leads).to_dict()
    stats['recent_disagreements'] = disagreements(leads, limit=request.args.get('limit', 20, type=int))
    return jsonify({'success': True, 'stats': stats})


@bp.route('/api/settings')
def get_settings():
    return jsonify({'success': True, 'settings': ConfigurationProvider().snapshot().to_dict()})


@bp.route('/api/settings', methods=['PUT'])
def save_settings():
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        raise ValidationError("Settings must be a JSON object")
    updated_by = data.pop('updated_by', None) or 'api'
    snapshot = ConfigurationProvider().save(data, updated_by=updated_by)
    return jsonify({'success': True, 'settings': snapshot.to_dict()})
