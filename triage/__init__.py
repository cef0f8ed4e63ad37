"""
Flask application factory.

Creates and configures the Flask app, registers all blueprints and maps
TriageError subclasses onto JSON error responses.
"""
import hmac
import logging
from flask import Flask, request, jsonify

from triage.errors import TriageError

logger = logging.getLogger('triage.app')


def _handle_triage_error(error: TriageError):
    if error.http_status >= 500:
        logger.error("%s %s failed: %s", request.method, request.path, error)
    else:
        logger.info("%s %s rejected (%s): %s", request.method, request.path, error.kind, error)
    return jsonify({'success': False, 'error': str(error), 'kind': error.kind}), error.http_status


def create_app():
    """Create and configure the Flask application."""
    from triage.logging_config import configure_logging

    app = Flask(__name__)

    configure_logging(app)

    # ── Simple bearer-token auth ────────────────────────────────────────
    from triage.config import API_TOKEN

    OPEN_PATHS = {'/health'}

    @app.before_request
    def require_token():
        if not API_TOKEN:
            return  # No token set: open access (local dev)
        if request.path in OPEN_PATHS:
            return
        supplied = request.headers.get('Authorization', '').removeprefix('Bearer ').strip()
        if hmac.compare_digest(supplied, API_TOKEN):
            return
        return jsonify({'success': False, 'error': 'Unauthorized', 'kind': 'unauthorized'}), 401

    app.register_error_handler(TriageError, _handle_triage_error)

    # Register blueprints
    from triage.routes.leads import bp as leads_bp
    from triage.routes.analytics import bp as analytics_bp
    from triage.routes.monitor import bp as monitor_bp

    app.register_blueprint(leads_bp)
    app.register_blueprint(analytics_bp)
    app.register_blueprint(monitor_bp)

    # Import models so Base.metadata knows about them (required for SQLAlchemy).
    # Schema is managed by Alembic, no create_all() call.
    import importlib
    importlib.import_module('triage.models.db_lead')
    importlib.import_module('triage.models.db_pipeline_run')
    importlib.import_module('triage.models.db_configuration')

    return app
