"""
Completion & settlement coordinator

Runs the side effects a ``TaskUpdate`` earned, after the state change has been
committed: the customer feedback text, route completion, settlement, and the
driver payout text. Nothing here can undo a delivery status; failures are
logged and sent to the operator channel.
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import List, Optional

from flask import current_app

from fleetrelay import db
from fleetrelay.extensions import get_gateways
from fleetrelay.models import Appointment, DeliveryOrder, Driver, Route
from fleetrelay.models.appointment import APPOINTMENT_AWAITING_CHECK_IN
from fleetrelay.models.base import PAYOUT_FAILED
from fleetrelay.models.order import ORDER_CANCELLED, ORDER_DELIVERED, ORDER_TERMINAL_STATES
from fleetrelay.models.route import ROUTE_ASSIGNED, ROUTE_COMPLETED, ROUTE_FAILED, ROUTE_IN_PROGRESS
from fleetrelay.services import templates
from fleetrelay.services.event_normalizer import resolve_worker_name
from fleetrelay.services.transitions import attempt_transition
from fleetrelay.utils.helpers import format_currency, meters_to_miles

logger = logging.getLogger(__name__)

ROUTE_OPEN_STATES = (ROUTE_ASSIGNED, ROUTE_IN_PROGRESS)


def _now():
    return datetime.now(timezone.utc)


@dataclass
class CompletionOutcome:
    feedback_sent: bool = False
    route_completed: bool = False
    route_failed: bool = False
    payouts: List[object] = field(default_factory=list)

    def to_dict(self):
        return {
            'feedback_sent': self.feedback_sent,
            'route_completed': self.route_completed,
            'route_failed': self.route_failed,
            'payouts': [
                {'success': p.success, 'amount': p.amount, 'transfer_id': p.transfer_id, 'error': p.error}
                for p in self.payouts
            ],
        }


@dataclass
class RouteCheck:
    route_id: str
    pending: int = 0
    completed: bool = False
    failed: bool = False
    payout: Optional[object] = None


# ---------------------------------------------------------------------------
# Notifications
# ---------------------------------------------------------------------------
def send_completion_feedback(order, event):
    """Text the customer that the delivery happened, with a feedback link."""
    if not order.customer_phone:
        return False
    result = get_gateways().notifications.send_sms(
        order.customer_phone,
        templates.COMPLETION_FEEDBACK,
        {
            'driver_name': resolve_worker_name(event, order.assigned_driver),
            'feedback_url': '{}/feedback/{}'.format(current_app.config['APP_URL'].rstrip('/'), order.id),
        },
    )
    return result.success


def _alert_operators(operation, subject_type, subject_id, error, now):
    config = current_app.config
    gateways = get_gateways()
    variables = {
        'operation': operation,
        'subject_type': subject_type,
        'subject_id': subject_id,
        'error': error,
        'timestamp': now.isoformat(),
    }
    for email in config['ADMIN_EMAILS']:
        gateways.notifications.send_email(email, templates.SYSTEM_FAILURE, variables)


def _payout_driver(subject_type, subject):
    if subject_type == 'route':
        return subject.driver
    if subject_type == 'order':
        return subject.assigned_driver
    return subject.driver


# ---------------------------------------------------------------------------
# Settlement
# ---------------------------------------------------------------------------
def settle(subject_type, subject_id, now=None):
    """
    Pay the driver for a finished unit of work and tell them about it

    On failure the operators get a system-failure email; the subject keeps
    its delivered/completed status either way.
    """
    now = now or _now()
    result = get_gateways().settlement.process_payout(subject_type, subject_id, now=now)

    if not result.success:
        if not (result.already_settled or result.skipped):
            _alert_operators('payout', subject_type, subject_id, result.error, now)
        return result

    subject = db.session.get(
        {'route': Route, 'order': DeliveryOrder, 'appointment': Appointment}[subject_type], subject_id)
    driver = _payout_driver(subject_type, subject) if subject is not None else None
    if driver is None or not driver.phone:
        logger.warning("Payout for %s %s has no driver phone to notify", subject_type, subject_id)
        return result

    if subject_type == 'route':
        get_gateways().notifications.send_sms(driver.phone, templates.ROUTE_PAYOUT, {
            'amount': format_currency(result.amount),
            'route_id': subject_id,
            'total_stops': subject.completed_stops or subject.stop_count,
        })
    else:
        get_gateways().notifications.send_sms(driver.phone, templates.INDIVIDUAL_PAYOUT, {
            'amount': format_currency(result.amount),
            'job_id': getattr(subject, 'job_code', None) or subject_id,
        })
    return result


def check_route_completion(route_id, now=None):
    """
    Complete (or fail) a route once every non-cancelled stop is terminal

    Only the caller whose guarded transition wins settles the route.
    """
    now = now or _now()
    check = RouteCheck(route_id=route_id)

    route = db.session.get(Route, route_id)
    if route is None or route.route_status not in ROUTE_OPEN_STATES:
        return check

    siblings = DeliveryOrder.query.filter(
        DeliveryOrder.route_id == route_id,
        DeliveryOrder.status != ORDER_CANCELLED,
    ).all()
    if not siblings:
        return check

    check.pending = sum(1 for o in siblings if o.status not in ORDER_TERMINAL_STATES)
    if check.pending:
        logger.debug("Route %s has %d stops outstanding", route_id, check.pending)
        return check

    delivered = [o for o in siblings if o.status == ORDER_DELIVERED]
    if len(delivered) < len(siblings):
        check.failed = attempt_transition(
            Route, route_id, 'route_status', ROUTE_OPEN_STATES,
            {'route_status': ROUTE_FAILED, 'completed_at': now, 'completed_stops': len(delivered)},
        )
        if check.failed:
            logger.warning("Route %s finished with %d failed stops", route_id, len(siblings) - len(delivered))
            _alert_operators('route_completion', 'route', route_id,
                             '{} of {} stops failed'.format(len(siblings) - len(delivered), len(siblings)), now)
        return check

    distance = sum(o.driving_distance_meters or 0 for o in delivered)
    seconds = sum(o.driving_time_seconds or 0 for o in delivered)
    driver_id = route.driver_id

    check.completed = attempt_transition(
        Route, route_id, 'route_status', ROUTE_OPEN_STATES,
        {
            'route_status': ROUTE_COMPLETED,
            'completed_at': now,
            'completed_stops': len(delivered),
            'total_distance_miles': round(meters_to_miles(distance), 2),
            'total_time_minutes': round(seconds / 60.0, 1),
        },
        commit=False,
    )
    if not check.completed:
        db.session.rollback()
        return check

    if driver_id:
        Driver.query.filter(Driver.id == driver_id).update(
            {'completed_jobs': Driver.completed_jobs + 1}, synchronize_session=False)
    db.session.commit()
    logger.info("Route %s completed (%d stops)", route_id, len(delivered))

    check.payout = settle('route', route_id, now=now)
    return check


def handle_task_update(update, now=None):
    """Perform the side effects earned by a committed ``TaskUpdate``."""
    now = now or _now()
    outcome = CompletionOutcome()
    if update.replay:
        return outcome

    if update.order_delivered:
        order = db.session.get(DeliveryOrder, update.order_id)
        outcome.feedback_sent = send_completion_feedback(order, update.event)
        if order.route_id is None:
            outcome.payouts.append(settle('order', order.id, now=now))

    if update.route_id and (update.order_delivered or update.order_failed):
        check = check_route_completion(update.route_id, now=now)
        outcome.route_completed = check.completed
        outcome.route_failed = check.failed
        if check.payout is not None:
            outcome.payouts.append(check.payout)

    if update.appointment_completed:
        outcome.payouts.append(settle('appointment', update.appointment_id, now=now))

    return outcome


# ---------------------------------------------------------------------------
# Retry sweep
# ---------------------------------------------------------------------------
def retry_failed_payouts(now=None):
    """Re-attempt failed settlements. Returns (attempted, succeeded)."""
    now = now or _now()
    targets = []
    targets += [('route', r.id) for r in Route.query.with_entities(Route.id).filter(
        Route.route_status == ROUTE_COMPLETED, Route.payout_status == PAYOUT_FAILED).all()]
    targets += [('order', o.id) for o in DeliveryOrder.query.with_entities(DeliveryOrder.id).filter(
        DeliveryOrder.route_id.is_(None),
        DeliveryOrder.status == ORDER_DELIVERED,
        DeliveryOrder.payout_status == PAYOUT_FAILED).all()]
    targets += [('appointment', a.id) for a in Appointment.query.with_entities(Appointment.id).filter(
        Appointment.status == APPOINTMENT_AWAITING_CHECK_IN,
        Appointment.payout_status == PAYOUT_FAILED).all()]

    succeeded = 0
    for subject_type, subject_id in targets:
        try:
            if settle(subject_type, subject_id, now=now).success:
                succeeded += 1
        except Exception:
            db.session.rollback()
            logger.exception("Payout retry failed for %s %s", subject_type, subject_id)

    if targets:
        logger.info("Payout retry: %d of %d succeeded", succeeded, len(targets))
    return len(targets), succeeded
