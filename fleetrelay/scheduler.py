"""
Background scheduler

Runs the offer expiry sweep, pending offer dispatch and the payout retry
in-process for single-instance deployments. Only starts when
ENABLE_SCHEDULER=true; with more than one instance, run the ``flask offers``
/ ``flask payouts`` CLI commands from cron instead.
"""
import logging

logger = logging.getLogger(__name__)


def _sweep_offers(app):
    """Expire stale offers and move their cascades along."""
    with app.app_context():
        from fleetrelay import db
        from fleetrelay.services.offers import expire_stale_offers
        try:
            expire_stale_offers()
        except Exception:
            db.session.rollback()
            logger.exception("Offer sweep failed")
        finally:
            db.session.remove()


def _dispatch_pending(app):
    """Start offer cascades for driverless work."""
    with app.app_context():
        from fleetrelay import db
        from fleetrelay.services.offers import dispatch_pending_offers
        try:
            dispatch_pending_offers()
        except Exception:
            db.session.rollback()
            logger.exception("Pending offer dispatch failed")
        finally:
            db.session.remove()


def _retry_payouts(app):
    """Re-attempt failed payouts."""
    with app.app_context():
        from fleetrelay import db
        from fleetrelay.services.completion import retry_failed_payouts
        try:
            retry_failed_payouts()
        except Exception:
            db.session.rollback()
            logger.exception("Payout retry failed")
        finally:
            db.session.remove()


def init_scheduler(app):
    """Initialize and start the background scheduler.

    Only runs if ENABLE_SCHEDULER is set.
    """
    if not app.config.get('ENABLE_SCHEDULER'):
        logger.info("Scheduler disabled (set ENABLE_SCHEDULER=true to enable)")
        return None

    try:
        from apscheduler.schedulers.background import BackgroundScheduler

        scheduler = BackgroundScheduler(daemon=True)

        scheduler.add_job(
            _sweep_offers,
            "interval",
            minutes=app.config['OFFER_SWEEP_INTERVAL_MINUTES'],
            args=[app],
            id="sweep_offers",
            name="Expire stale driver offers",
            max_instances=1,
            coalesce=True,
        )

        scheduler.add_job(
            _dispatch_pending,
            "interval",
            minutes=app.config['DISPATCH_PENDING_INTERVAL_MINUTES'],
            args=[app],
            id="dispatch_pending",
            name="Offer driverless routes, orders and appointments",
            max_instances=1,
            coalesce=True,
        )

        scheduler.add_job(
            _retry_payouts,
            "interval",
            minutes=app.config['PAYOUT_RETRY_INTERVAL_MINUTES'],
            args=[app],
            id="retry_payouts",
            name="Retry failed payouts",
            max_instances=1,
            coalesce=True,
        )

        scheduler.start()
        logger.info("Background scheduler started with 3 jobs")
        return scheduler
    except Exception:
        logger.exception("Failed to start scheduler")
        return None
