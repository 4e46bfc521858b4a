"""
Application factory, middleware and scheduler tests
"""
import logging
from unittest.mock import patch

from fleetrelay.middleware import RequestIdFilter
from fleetrelay.scheduler import _dispatch_pending, init_scheduler


class TestApp:
    """Test app-wide behaviour"""

    def test_health(self, client):
        response = client.get('/health')
        assert response.status_code == 200
        assert response.get_json() == {'status': 'healthy', 'service': 'fleetrelay'}

    def test_request_id_generated(self, client):
        response = client.get('/health')
        assert response.headers.get('X-Request-ID')

    def test_request_id_propagated(self, client):
        response = client.get('/health', headers={'X-Request-ID': 'trace-123'})
        assert response.headers['X-Request-ID'] == 'trace-123'

    def test_security_headers(self, client):
        response = client.get('/health')
        assert response.headers['X-Content-Type-Options'] == 'nosniff'
        assert response.headers['X-Frame-Options'] == 'DENY'

    def test_json_404(self, client):
        response = client.get('/api/nowhere')
        assert response.status_code == 404
        assert response.get_json() == {'error': 'Not found'}

    def test_log_filter_outside_request(self):
        record = logging.LogRecord('fleetrelay', logging.INFO, __file__, 1, 'msg', None, None)
        assert RequestIdFilter().filter(record) is True
        assert record.request_id == '-'


class TestScheduler:
    """Test the opt-in background scheduler"""

    def test_disabled_by_config(self, app):
        assert app.config['ENABLE_SCHEDULER'] is False
        assert init_scheduler(app) is None

    def test_registers_all_jobs(self, app, monkeypatch):
        monkeypatch.setitem(app.config, 'ENABLE_SCHEDULER', True)

        with patch('apscheduler.schedulers.background.BackgroundScheduler') as scheduler_cls:
            scheduler = init_scheduler(app)

        assert scheduler is scheduler_cls.return_value
        jobs = {c.kwargs['id']: c.kwargs['minutes'] for c in scheduler.add_job.call_args_list}
        assert jobs == {
            'sweep_offers': app.config['OFFER_SWEEP_INTERVAL_MINUTES'],
            'dispatch_pending': app.config['DISPATCH_PENDING_INTERVAL_MINUTES'],
            'retry_payouts': app.config['PAYOUT_RETRY_INTERVAL_MINUTES'],
        }
        scheduler.start.assert_called_once_with()

    def test_dispatch_pending_job(self, app, monkeypatch):
        calls = []
        monkeypatch.setattr('fleetrelay.services.offers.dispatch_pending_offers', lambda: calls.append(1))

        _dispatch_pending(app)

        assert calls == [1]
