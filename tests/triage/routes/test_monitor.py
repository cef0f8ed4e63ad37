"""Tests for triage.routes.monitor — health check and pipeline metadata."""
from triage.config import PIPELINE_STAGES


class TestMonitor:

    def test_health(self, client):
        resp = client.get('/health')
        assert resp.status_code == 200
        assert resp.get_json() == {"status": "healthy"}

    def test_pipeline_info(self, client):
        info = client.get('/api/pipeline').get_json()
        assert set(info) == set(PIPELINE_STAGES)
        assert info['match_references']['best_effort'] is True
        assert info['classify']['best_effort'] is False
