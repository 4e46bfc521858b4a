"""
Dispatch webhook endpoint tests
"""
import hashlib
import hmac
import json

from fleetrelay import db
from fleetrelay.models import DeliveryOrder, Route

URL = '/api/webhooks/dispatch'


def _post(client, payload, headers=None):
    return client.post(URL, data=json.dumps(payload), content_type='application/json',
                       headers=headers or {})


class TestValidation:
    """Test provider URL validation and payload checks"""

    def test_check_echo(self, client):
        response = client.get(URL + '?check=a1b2c3')
        assert response.status_code == 200
        assert response.get_data(as_text=True) == 'a1b2c3'
        assert response.headers['Content-Type'].startswith('text/plain')

    def test_not_json(self, client):
        response = client.post(URL, data='not json', content_type='text/plain')
        assert response.status_code == 400
        assert response.get_json()['code'] == 'INVALID_PAYLOAD'

    def test_unknown_trigger(self, client, make_payload):
        response = _post(client, make_payload('r1s1', 'taskDeleted'))
        assert response.status_code == 400

    def test_unknown_task(self, client, make_payload):
        response = _post(client, make_payload('ghost', 'taskStarted'))
        assert response.status_code == 404
        assert response.get_json()['code'] == 'UNKNOWN_TASK'


class TestSignature:
    """Test HMAC verification when a secret is configured"""

    def test_missing_signature(self, app, client, route_factory, make_payload, monkeypatch):
        monkeypatch.setitem(app.config, 'DISPATCH_WEBHOOK_SECRET', 'whsec')
        route_factory(stops=1)

        response = _post(client, make_payload('r1s1', 'taskStarted'))
        assert response.status_code == 400
        assert response.get_json()['code'] == 'INVALID_SIGNATURE'

    def test_valid_signature(self, app, client, route_factory, make_payload, monkeypatch):
        monkeypatch.setitem(app.config, 'DISPATCH_WEBHOOK_SECRET', 'whsec')
        route_factory(stops=1)
        body = json.dumps(make_payload('r1s1', 'taskStarted')).encode('utf-8')
        signature = hmac.new(b'whsec', body, hashlib.sha512).hexdigest()

        response = client.post(URL, data=body, content_type='application/json',
                               headers={'X-Onfleet-Signature': signature})
        assert response.status_code == 200


class TestDelivery:
    """Test events flowing through to state changes and side effects"""

    def test_completed_stop(self, client, driver_factory, route_factory, make_payload, notifications):
        route = route_factory(stops=2, driver=driver_factory())

        response = _post(client, make_payload('r1s1', 'taskCompleted', photoUploadId='ph1'))

        assert response.status_code == 200
        data = response.get_json()
        assert data['received'] is True
        assert data['replay'] is False
        assert data['trigger'] == 'completed'
        assert data['route_id'] == route.id
        assert data['side_effects']['feedback_sent'] is True
        assert data['side_effects']['route_completed'] is False
        assert db.session.get(DeliveryOrder, data['order_id']).status == 'Delivered'

    def test_replay(self, client, driver_factory, route_factory, make_payload, notifications):
        route_factory(stops=2, driver=driver_factory())
        payload = make_payload('r1s1', 'taskCompleted')

        _post(client, payload)
        response = _post(client, payload)

        data = response.get_json()
        assert response.status_code == 200
        assert data['replay'] is True
        assert 'side_effects' not in data
        assert len(notifications.sms_named('completion_feedback')) == 1

    def test_full_route(self, client, driver_factory, route_factory, make_payload, settlement):
        route = route_factory(stops=2, driver=driver_factory())

        for short_id in ('r1s1', 'r1s2'):
            _post(client, make_payload(short_id, 'taskStarted'))
        _post(client, make_payload('r1s1', 'taskCompleted'))
        response = _post(client, make_payload('r1s2', 'taskCompleted'))

        side_effects = response.get_json()['side_effects']
        assert side_effects['route_completed'] is True
        assert side_effects['payouts'][0]['success'] is True
        assert settlement.calls == [('route', route.id)]
        assert db.session.get(Route, route.id).route_status == 'completed'

    def test_side_effect_failure_still_acknowledged(self, client, driver_factory, route_factory,
                                                    make_payload, monkeypatch):
        def boom(update, now=None):
            raise RuntimeError('sms provider down')

        monkeypatch.setattr('fleetrelay.blueprints.webhooks.handle_task_update', boom)
        route_factory(stops=1, driver=driver_factory())

        response = _post(client, make_payload('r1s1', 'taskCompleted'))

        assert response.status_code == 200
        data = response.get_json()
        assert data['side_effects'] is None
        assert db.session.get(DeliveryOrder, data['order_id']).status == 'Delivered'
