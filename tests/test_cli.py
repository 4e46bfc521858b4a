"""
CLI command tests
"""
from fleetrelay import db
from fleetrelay.models import Route


class TestOfferCommands:
    """Test the offers command group"""

    def test_dispatch_pending(self, app, driver_factory, route_factory):
        driver_factory()
        route = route_factory()

        result = app.test_cli_runner().invoke(args=['offers', 'dispatch-pending'])

        assert result.exit_code == 0
        assert 'Attempted 1, offered 1, escalated 0' in result.output
        assert db.session.get(Route, route.id).offer_status == 'sent'

    def test_sweep_with_nothing_stale(self, app):
        result = app.test_cli_runner().invoke(args=['offers', 'sweep'])

        assert result.exit_code == 0
        assert 'Expired 0, reclaimed 0, re-offered 0, escalated 0' in result.output


class TestPayoutCommands:
    """Test the payouts command group"""

    def test_retry(self, app, driver_factory, route_factory):
        route = route_factory(driver=driver_factory())
        for order in route.orders:
            order.status = 'Delivered'
        route.route_status = 'completed'
        route.payout_status = 'failed'
        db.session.commit()

        result = app.test_cli_runner().invoke(args=['payouts', 'retry'])

        assert result.exit_code == 0
        assert 'Retried 1 payouts, 1 succeeded' in result.output
        assert db.session.get(Route, route.id).payout_status == 'completed'
