"""
Monitor routes — health check and pipeline metadata.
"""
from flask import Blueprint, jsonify

from triage.pipeline.base import get_pipeline_info
from triage.pipeline.manager import STAGE_REGISTRY

bp = Blueprint('monitor', __name__)


@bp.route('/health')
def health_check():
    """Health check endpoint."""
    return jsonify({"status": "healthy"}), 200


@bp.route('/api/pipeline')
def pipeline_info():
    """Stage metadata: description, APIs, best-effort flag."""
    return jsonify(get_pipeline_info(STAGE_REGISTRY))
