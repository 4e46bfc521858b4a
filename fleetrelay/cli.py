"""
Flask CLI commands

The sweeps are short-lived invocations meant to be run by cron:

    * * * * *   flask offers sweep
    */15 * * * * flask offers dispatch-pending
    0 * * * *   flask payouts retry
"""
import click
from flask.cli import AppGroup

from fleetrelay import db

offers_cli = AppGroup('offers', help='Driver offer cascade.')
payouts_cli = AppGroup('payouts', help='Driver payouts.')


@offers_cli.command('sweep')
def offers_sweep():
    """Expire stale offers and cascade to the next driver."""
    from fleetrelay.services.offers import expire_stale_offers

    summary = expire_stale_offers()
    click.echo("Expired {expired}, reclaimed {reclaimed}, re-offered {reoffered}, escalated {escalated}".format(
        **summary.to_dict()))


@offers_cli.command('dispatch-pending')
def offers_dispatch_pending():
    """Start offer cascades for driverless routes and standalone orders."""
    from fleetrelay.services.offers import dispatch_pending_offers

    summary = dispatch_pending_offers()
    click.echo("Attempted {attempted}, offered {offered}, escalated {escalated}".format(
        **summary.to_dict()))


@payouts_cli.command('retry')
def payouts_retry():
    """Re-attempt failed driver payouts."""
    from fleetrelay.services.completion import retry_failed_payouts

    attempted, succeeded = retry_failed_payouts()
    click.echo("Retried {} payouts, {} succeeded".format(attempted, succeeded))


def register_cli(app):
    app.cli.add_command(offers_cli)
    app.cli.add_command(payouts_cli)

    @app.cli.command('init-db')
    def init_db():
        """Create all database tables."""
        db.create_all()
        click.echo("Database tables created.")
