"""
Driver endpoint tests
"""
import uuid
from datetime import date, datetime, timedelta, timezone

from fleetrelay.services.offers import dispatch_next_offer

ROUTE_DATE = date(2030, 6, 4)


def _url(driver_id):
    return '/api/drivers/{}/pending-offers'.format(driver_id)


class TestPendingOffers:
    """Test the open-offer listing for a driver"""

    def test_lists_open_offers_oldest_first(self, client, api_headers, driver_factory, route_factory):
        driver = driver_factory()
        now = datetime.now(timezone.utc)
        today_route = route_factory(stops=3)
        next_day_route = route_factory(route_date=ROUTE_DATE + timedelta(days=1))
        lapsed_route = route_factory(route_date=ROUTE_DATE + timedelta(days=2))

        dispatch_next_offer('route', lapsed_route.id, now=now - timedelta(hours=1))
        dispatch_next_offer('route', next_day_route.id, now=now - timedelta(minutes=5))
        dispatch_next_offer('route', today_route.id, now=now)

        response = client.get(_url(driver.id), headers=api_headers)

        assert response.status_code == 200
        data = response.get_json()
        assert data['count'] == 2
        assert [o['subject']['id'] for o in data['offers']] == [next_day_route.id, today_route.id]
        newest = data['offers'][1]
        assert newest['subject']['total_stops'] == 3
        assert newest['first_stop_address'] == '101 Main St, Springfield, IL'
        assert newest['estimates']['payout_estimate'] == '$30.00'
        assert newest['offer_url'] == 'https://fleetrelay.test/driver/offer/{}'.format(newest['token'])
        assert datetime.fromisoformat(newest['expires_at']) > now

    def test_other_drivers_offers_hidden(self, client, api_headers, driver_factory, route_factory):
        driver_factory(average_rating=4.9)
        idle = driver_factory(average_rating=4.0)
        route = route_factory()
        dispatch_next_offer('route', route.id)

        response = client.get(_url(idle.id), headers=api_headers)

        assert response.status_code == 200
        assert response.get_json() == {'success': True, 'offers': [], 'count': 0}

    def test_requires_api_key(self, client, driver_factory):
        driver = driver_factory()
        assert client.get(_url(driver.id)).status_code == 401

    def test_unknown_driver(self, client, api_headers):
        assert client.get(_url(uuid.uuid4()), headers=api_headers).status_code == 404

    def test_invalid_driver_id(self, client, api_headers):
        response = client.get(_url('not-a-uuid'), headers=api_headers)
        assert response.status_code == 400
        assert response.get_json()['error'] == 'Invalid driver ID'
