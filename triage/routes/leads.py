"""
Lead routes — submission, lead detail, and the human action surface.
"""
import logging
from flask import Blueprint, request, jsonify

from triage.config import PIPELINE_STAGES
from triage.errors import LeadNotFound, ValidationError
from triage.pipeline.manager import launch_pipeline, request_cancel
from triage.services.lead_actions import LeadActions
from triage.services.runs import RunStore
from triage.services.store import LeadStore

logger = logging.getLogger('routes.leads')

bp = Blueprint('leads', __name__)


def _actions() -> LeadActions:
    return LeadActions()


def _body() -> dict:
    data = request.get_json(silent=True)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValidationError("Request body must be a JSON object")
    return data


def _required(data: dict, key: str) -> str:
    value = data.get(key)
    if value is None or (isinstance(value, str) and not value.strip()):
        raise ValidationError(f"'{key}' is required")
    return value


def _lead_response(lead, status_code=200):
    return jsonify({'success': True, 'lead': lead.to_api()}), status_code


# ── Submission + detail ──────────────────────────────────────────────────────

@bp.route('/api/leads', methods=['POST'])
def submit_lead():
    """Contact-form submission; the pipeline runs in the background."""
    data = _body()
    metadata = data.pop('metadata', None)
    lead = _actions().submit(data, metadata=metadata)
    return jsonify({'success': True, 'lead_id': lead.id, 'status': lead.status}), 202


@bp.route('/api/leads')
def list_leads():
    status = request.args.get('status')
    limit = request.args.get('limit', 50, type=int)
    leads = LeadStore().list_leads(status=status, limit=limit)
    return jsonify({'success': True, 'leads': [lead.to_api() for lead in leads]})


@bp.route('/api/leads/<lead_id>')
def get_lead(lead_id):
    lead = LeadStore().get(lead_id)
    run = RunStore().load(lead_id)
    return jsonify({'success': True, 'lead': lead.to_api(), 'pipeline': run.to_dict() if run else None})


# ── Human actions ────────────────────────────────────────────────────────────

@bp.route('/api/leads/<lead_id>/classify', methods=['POST'])
def classify_lead(lead_id):
    data = _body()
    lead = _actions().manually_classify(lead_id, _required(data, 'classification'),
                                        actor=data.get('actor') or 'human')
    return _lead_response(lead)


@bp.route('/api/leads/<lead_id>/reclassify', methods=['POST'])
def reclassify_lead(lead_id):
    data = _body()
    lead = _actions().reclassify(lead_id, _required(data, 'new_classification'),
                                 actor=data.get('actor') or 'human',
                                 source=data.get('source') or 'sales',
                                 reason=data.get('reason'))
    return _lead_response(lead)


@bp.route('/api/leads/<lead_id>/approve', methods=['POST'])
def approve_lead(lead_id):
    data = _body()
    return _lead_response(_actions().approve(lead_id, actor=data.get('actor') or 'human'))


@bp.route('/api/leads/<lead_id>/reject', methods=['POST'])
def reject_lead(lead_id):
    data = _body()
    return _lead_response(_actions().reject(lead_id, actor=data.get('actor') or 'human',
                                            reason=data.get('reason')))


@bp.route('/api/leads/<lead_id>/reroute', methods=['POST'])
def reroute_lead(lead_id):
    data = _body()
    lead = _actions().reroute(lead_id, _required(data, 'source'), _required(data, 'reason'),
                              new_classification=data.get('new_classification'),
                              actor=data.get('actor'))
    return _lead_response(lead)


@bp.route('/api/leads/<lead_id>/content', methods=['PATCH'])
def edit_lead_content(lead_id):
    data = _body()
    lead = _actions().edit_content(lead_id, _required(data, 'text'),
                                   editor=data.get('editor') or 'human', note=data.get('note'))
    return _lead_response(lead)


# ── Pipeline control ─────────────────────────────────────────────────────────

@bp.route('/api/leads/<lead_id>/retry', methods=['POST'])
def retry_lead_pipeline(lead_id):
    """Re-enqueue a lead's pipeline, resuming from its checkpoint or a given stage."""
    data = _body()
    from_stage = data.get('from_stage')
    if from_stage and from_stage not in PIPELINE_STAGES:
        raise ValidationError(f"Invalid stage: {from_stage}")
    if RunStore().load(lead_id) is None:
        raise LeadNotFound(lead_id)
    job_id = launch_pipeline(lead_id, retry_from_stage=from_stage)
    return jsonify({'success': True, 'lead_id': lead_id, 'job_id': job_id}), 202


@bp.route('/api/leads/<lead_id>/cancel', methods=['POST'])
def cancel_lead_pipeline(lead_id):
    LeadStore().get(lead_id)
    request_cancel(lead_id)
    return jsonify({'success': True, 'lead_id': lead_id}), 202
