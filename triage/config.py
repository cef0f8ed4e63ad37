"""
Centralized configuration — env vars, pipeline constants, status values.
"""
import os

# ── Logging ───────────────────────────────────────────────────────────────────
LOG_LEVEL = os.getenv('LOG_LEVEL', 'INFO')
LOG_FORMAT = os.getenv('LOG_FORMAT', 'text')

# ── Redis (RQ queue + cancellation flags) ─────────────────────────────────────
REDIS_URL = os.getenv('REDIS_URL', 'redis://localhost:6379/0')

# ── Database ──────────────────────────────────────────────────────────────────
DATABASE_URL = os.getenv('DATABASE_URL', 'sqlite:///triage.db')

# ── OpenAI ────────────────────────────────────────────────────────────────────
OPENAI_API_KEY = os.getenv('OPENAI_API_KEY')
OPENAI_MODEL = os.getenv('OPENAI_MODEL', 'gpt-4o')
OPENAI_TIMEOUT_SECONDS = float(os.getenv('OPENAI_TIMEOUT_SECONDS', '60'))

# ── Slack ─────────────────────────────────────────────────────────────────────
SLACK_WEBHOOK_URL = os.getenv('SLACK_WEBHOOK_URL')

# ── API auth (unset = open, for local dev) ────────────────────────────────────
API_TOKEN = os.getenv('API_TOKEN', '')

# ── Mock collaborators (no OpenAI calls) ──────────────────────────────────────
MOCK_PIPELINE = bool(os.getenv('MOCK_PIPELINE'))

# ── Default configuration document ────────────────────────────────────────────
SETTINGS_DEFAULTS_PATH = os.getenv(
    'SETTINGS_DEFAULTS_PATH',
    os.path.join(os.path.dirname(__file__), 'settings_defaults.yaml'),
)

# ── Reference customers and CRM customer directory ───────────────────────────
REFERENCE_DATA_PATH = os.getenv(
    'REFERENCE_DATA_PATH',
    os.path.join(os.path.dirname(__file__), 'reference_data.yaml'),
)

# ── Retry / backoff ───────────────────────────────────────────────────────────
STAGE_MAX_ATTEMPTS = int(os.getenv('STAGE_MAX_ATTEMPTS', '3'))
STAGE_BACKOFF_SECONDS = float(os.getenv('STAGE_BACKOFF_SECONDS', '2.0'))
PERSIST_MAX_CONFLICTS = int(os.getenv('PERSIST_MAX_CONFLICTS', '5'))
ACTION_MAX_CONFLICTS = int(os.getenv('ACTION_MAX_CONFLICTS', '3'))
PIPELINE_JOB_TIMEOUT = int(os.getenv('PIPELINE_JOB_TIMEOUT', '900'))
CANCEL_FLAG_TTL_SECONDS = 3600

# ── Pipeline stages ───────────────────────────────────────────────────────────
PIPELINE_STAGES = [
    'research',
    'match_references',
    'classify',
    'generate',
    'decide',
    'persist',
]

# ── Status values ─────────────────────────────────────────────────────────────
LEAD_STATUSES = ['classify', 'review', 'done']
RUN_STATUSES = ['queued', 'running', 'completed', 'failed', 'cancelled']
REROUTE_SOURCES = ['customer', 'support', 'sales']
CONTENT_POLICIES = ['required', 'optional', 'template', 'none']
ROLLOUT_MODES = ['post_threshold', 'routing']

# Industries the research step may tag a lead with
INDUSTRIES = [
    'AI',
    'Software',
    'Retail',
    'Business Services',
    'Finance & Insurance',
    'Media',
    'Healthcare',
    'Energy & Utilities',
]
