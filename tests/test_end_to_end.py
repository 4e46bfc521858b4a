"""
End-to-end route lifecycle
Offer cascade through delivery webhooks to a single settlement
"""
import json

from fleetrelay import db
from fleetrelay.models import Route
from fleetrelay.services.offers import dispatch_next_offer


def _webhook(client, payload):
    response = client.post('/api/webhooks/dispatch', data=json.dumps(payload),
                           content_type='application/json')
    assert response.status_code == 200
    return response.get_json()


class TestRouteLifecycle:
    """Test a two-stop route from first offer to payout"""

    def test_decline_then_accept_then_deliver(self, client, driver_factory, route_factory,
                                              make_payload, notifications, settlement):
        first = driver_factory(average_rating=4.9, completed_jobs=12)
        second = driver_factory(average_rating=4.6, completed_jobs=140)
        route = route_factory(stops=2)

        offered = dispatch_next_offer('route', route.id)
        assert offered.extra['driver_id'] == first.id

        declined = client.post('/api/driver-offers/{}/respond'.format(offered.extra['token']),
                               json={'action': 'decline'})
        assert declined.get_json()['next_offer']['driver_id'] == second.id

        reply = client.post('/api/driver-offers/sms-reply', data={'From': second.phone, 'Body': 'Yes'})
        assert reply.status_code == 200
        assert db.session.get(Route, route.id).driver_id == second.id

        for short_id in ('r1s1', 'r1s2'):
            _webhook(client, make_payload(short_id, 'taskStarted'))
        _webhook(client, make_payload('r1s1', 'taskCompleted', drivingDistance=1609.34, drivingTime=900))
        _webhook(client, make_payload('r1s1', 'taskCompleted', drivingDistance=1609.34, drivingTime=900))
        final = _webhook(client, make_payload('r1s2', 'taskCompleted', drivingDistance=3218.68, drivingTime=900))

        assert final['side_effects']['route_completed'] is True
        assert settlement.calls == [('route', route.id)]

        route = db.session.get(Route, route.id)
        assert route.route_status == 'completed'
        assert route.total_distance_miles == 3.0
        assert route.total_time_minutes == 30.0
        # 20 + 2 x 2 + ~3 mi x 0.67 + 0.5 h x 14
        assert route.payout_amount == 33.01

        payouts = notifications.sms_named('route_payout')
        assert [m.to for m in payouts] == [second.phone]
        assert payouts[0].variables['amount'] == '$33.01'
        assert len(notifications.sms_named('completion_feedback')) == 2
