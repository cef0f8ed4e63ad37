"""Shared test fixtures."""
from datetime import datetime, timezone

import pytest
from unittest.mock import patch, MagicMock
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from triage.database import Base
from triage.models.lead import Lead, Submission
from triage.models.snapshot import ConfigurationSnapshot
from triage.services.settings import load_defaults


@pytest.fixture
def db_engine():
    """In-memory SQLite engine with schema created."""
    engine = create_engine('sqlite:///:memory:')
    import triage.models.db_lead
    import triage.models.db_pipeline_run
    import triage.models.db_configuration
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def db_session(db_engine):
    """SQLAlchemy session bound to in-memory SQLite. Rolls back after each test."""
    Session = sessionmaker(bind=db_engine)
    session = Session()
    yield session
    session.rollback()
    session.close()


@pytest.fixture(autouse=True)
def patch_get_session(db_session):
    """Route all get_session() calls to the test session.

    We disable close() so that services calling session.close() in their
    finally blocks don't invalidate the shared test session.
    """
    _real_close = db_session.close
    db_session.close = lambda: None
    with patch('triage.database.get_session', return_value=db_session):
        yield db_session
    db_session.close = _real_close


@pytest.fixture
def mock_redis():
    """Mock Redis client. Returns a MagicMock with common Redis methods."""
    mock = MagicMock()
    mock.get.return_value = None
    mock.setex.return_value = True
    mock.delete.return_value = 1
    with patch('triage.extensions.redis_client', mock):
        yield mock


@pytest.fixture
def app():
    """Flask test app."""
    from triage import create_app
    app = create_app()
    app.config['TESTING'] = True
    yield app


@pytest.fixture
def client(app):
    """Flask test client."""
    with app.test_client() as c:
        yield c


@pytest.fixture
def now():
    return datetime(2026, 3, 2, 9, 30, tzinfo=timezone.utc)


@pytest.fixture
def make_snapshot():
    """Factory fixture — default settings with overrides merged in."""
    def _make(version=1, **overrides):
        data = load_defaults()
        for key, value in overrides.items():
            if isinstance(value, dict) and isinstance(data.get(key), dict):
                data[key] = {**data[key], **value}
            else:
                data[key] = value
        return ConfigurationSnapshot.from_dict(data, version=version)
    return _make


@pytest.fixture
def make_lead(now):
    """Factory fixture — builds an unclassified Lead without touching the DB."""
    def _make(lead_id='lead-001', **overrides):
        submission = overrides.pop('submission', None) or Submission(
            name='Dana Whitfield',
            email='dana@northwind-logistics.com',
            company='Northwind Logistics',
            message='We are evaluating tools for a team of 40 and would like a demo.',
        )
        lead = Lead.new(submission, lead_id=lead_id, received_at=now)
        return lead.evolve(**overrides) if overrides else lead
    return _make


@pytest.fixture
def lead_store():
    from triage.services.store import LeadStore
    return LeadStore()


@pytest.fixture
def run_store():
    from triage.services.runs import RunStore
    return RunStore()


@pytest.fixture
def stored_lead(lead_store, make_lead):
    """An unclassified lead persisted at version 1."""
    return lead_store.create(make_lead())
