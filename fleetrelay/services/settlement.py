"""
Settlement service: driver payouts through Stripe Connect.

Payout = base + stops x per-stop + miles x per-mile + hours x hourly.

A payout is claimed with a guarded ``pending|failed -> processing`` transition
before any money moves, so concurrent completions, operator retries and the
retry sweep can never pay the same route, order or appointment twice. The
claim also bumps ``payout_attempts``, which keys the Stripe transfer. Like the
notification gateway, ``process_payout`` never raises; failures come back as a
``PayoutResult`` and leave the subject in ``failed`` for the next retry.
"""
import uuid
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

from fleetrelay import db
from fleetrelay.models import Appointment, DeliveryOrder, Route
from fleetrelay.models.appointment import APPOINTMENT_AWAITING_CHECK_IN
from fleetrelay.models.base import (
    PAYOUT_COMPLETED, PAYOUT_FAILED, PAYOUT_PENDING, PAYOUT_PROCESSING,
)
from fleetrelay.models.order import ORDER_DELIVERED
from fleetrelay.models.route import ROUTE_COMPLETED
from fleetrelay.services.transitions import attempt_transition
from fleetrelay.utils.helpers import meters_to_miles, round_money, seconds_to_hours, to_cents

logger = logging.getLogger(__name__)

PAYABLE_MODELS = {
    'route': Route,
    'order': DeliveryOrder,
    'appointment': Appointment,
}


@dataclass
class PayoutResult:
    success: bool
    amount: Optional[float] = None
    transfer_id: Optional[str] = None
    error: Optional[str] = None
    already_settled: bool = False
    # Nothing to pay yet (unknown subject or work not finished)
    skipped: bool = False


@dataclass(frozen=True)
class PayoutRates:
    base: float = 20.00
    per_stop: float = 2.00
    per_mile: float = 0.67
    hourly: float = 14.00

    @classmethod
    def from_config(cls, config):
        return cls(
            base=config.get('PAYOUT_BASE_RATE', cls.base),
            per_stop=config.get('PAYOUT_PER_STOP_RATE', cls.per_stop),
            per_mile=config.get('PAYOUT_PER_MILE_RATE', cls.per_mile),
            hourly=config.get('PAYOUT_HOURLY_RATE', cls.hourly),
        )


@dataclass(frozen=True)
class WorkMetrics:
    stops: int
    distance_meters: float = 0.0
    time_seconds: float = 0.0

    @property
    def miles(self):
        return meters_to_miles(self.distance_meters or 0.0)

    @property
    def hours(self):
        return seconds_to_hours(self.time_seconds or 0.0)


def calculate_payout(metrics, rates=None):
    """
    Dollar payout for a unit of work

    Args:
        metrics (WorkMetrics): stops, driving distance (meters) and time (seconds)
        rates (PayoutRates): rate card

    Returns:
        float: amount rounded to cents
    """
    rates = rates or PayoutRates()
    amount = (
        rates.base
        + metrics.stops * rates.per_stop
        + metrics.miles * rates.per_mile
        + metrics.hours * rates.hourly
    )
    return round_money(amount)


def _sum(values):
    return sum(v for v in values if v is not None)


def route_metrics(route):
    delivered = [o for o in route.orders if o.status == ORDER_DELIVERED]
    return WorkMetrics(
        stops=len(delivered),
        distance_meters=_sum(o.driving_distance_meters for o in delivered),
        time_seconds=_sum(o.driving_time_seconds for o in delivered),
    )


def order_metrics(order):
    return WorkMetrics(
        stops=1,
        distance_meters=order.driving_distance_meters or 0.0,
        time_seconds=order.driving_time_seconds or 0.0,
    )


def appointment_metrics(appointment):
    done = [t for t in appointment.tasks if t.completed_at is not None]
    return WorkMetrics(
        stops=len(done),
        distance_meters=_sum(t.driving_distance_meters for t in done),
        time_seconds=_sum(t.driving_time_seconds for t in done),
    )


class SettlementService:
    """Computes and transfers driver payouts."""

    def __init__(self, stripe_secret_key='', rates=None, timeout=10):
        self.stripe_secret_key = stripe_secret_key
        self.rates = rates or PayoutRates()
        self.timeout = timeout
        self._stripe = None

    @classmethod
    def from_config(cls, config):
        return cls(
            stripe_secret_key=config.get('STRIPE_SECRET_KEY', ''),
            rates=PayoutRates.from_config(config),
            timeout=config.get('EXTERNAL_TIMEOUT_SECONDS', 10),
        )

    def _get_stripe(self):
        if self._stripe is None:
            import stripe
            stripe.api_key = self.stripe_secret_key
            stripe.max_network_retries = 0
            stripe.default_http_client = stripe.RequestsClient(timeout=self.timeout)
            self._stripe = stripe
        return self._stripe

    # -----------------------------------------------------------------------
    # Eligibility
    # -----------------------------------------------------------------------
    def _check_ready(self, subject_type, subject):
        """Return (driver, metrics) or an error string."""
        if subject_type == 'route':
            if subject.route_status != ROUTE_COMPLETED:
                return 'Route is not completed'
            return subject.driver, route_metrics(subject)
        if subject_type == 'order':
            if subject.route_id is not None:
                return 'Order is settled with its route'
            if subject.status != ORDER_DELIVERED:
                return 'Order is not delivered'
            return subject.assigned_driver, order_metrics(subject)
        if subject.status != APPOINTMENT_AWAITING_CHECK_IN:
            return 'Appointment is not finished'
        return subject.driver, appointment_metrics(subject)

    def _fail(self, model, subject_id, error):
        attempt_transition(model, subject_id, 'payout_status', PAYOUT_PROCESSING,
                           {'payout_status': PAYOUT_FAILED, 'payout_failure_reason': error})
        logger.error("Payout for %s %s failed: %s", model.__tablename__, subject_id, error)

    # -----------------------------------------------------------------------
    # Payout
    # -----------------------------------------------------------------------
    def process_payout(self, subject_type, subject_id, now=None):
        """Settle a completed route, standalone order or appointment exactly once."""
        now = now or datetime.now(timezone.utc)
        model = PAYABLE_MODELS.get(subject_type)
        if model is None:
            return PayoutResult(success=False, error='Unknown subject type: {}'.format(subject_type), skipped=True)

        subject = db.session.get(model, subject_id)
        if subject is None:
            return PayoutResult(success=False, error='{} not found'.format(subject_type), skipped=True)
        if subject.payout_status == PAYOUT_COMPLETED:
            return PayoutResult(success=False, amount=subject.payout_amount,
                                transfer_id=subject.payout_transfer_id,
                                error='Payout already completed', already_settled=True)

        ready = self._check_ready(subject_type, subject)
        if isinstance(ready, str):
            return PayoutResult(success=False, error=ready, skipped=True)
        driver, metrics = ready

        claimed = attempt_transition(
            model, subject_id, 'payout_status', (PAYOUT_PENDING, PAYOUT_FAILED),
            {'payout_status': PAYOUT_PROCESSING, 'payout_failure_reason': None,
             'payout_attempts': model.payout_attempts + 1},
        )
        if not claimed:
            return PayoutResult(success=False, error='Payout already in progress', already_settled=True)

        if driver is None:
            self._fail(model, subject_id, 'No driver assigned')
            return PayoutResult(success=False, error='No driver assigned')
        if not driver.can_receive_payouts:
            error = 'Driver {} has no payout-enabled Stripe account'.format(driver.id)
            self._fail(model, subject_id, error)
            return PayoutResult(success=False, error=error)

        amount = calculate_payout(metrics, self.rates)
        attempt = db.session.get(model, subject_id).payout_attempts
        try:
            transfer_id = self._transfer(subject_type, subject_id, driver, amount, attempt)
        except Exception as e:
            logger.exception("Stripe transfer failed for %s %s", subject_type, subject_id)
            self._fail(model, subject_id, str(e))
            return PayoutResult(success=False, amount=amount, error=str(e))

        attempt_transition(
            model, subject_id, 'payout_status', PAYOUT_PROCESSING,
            {
                'payout_status': PAYOUT_COMPLETED,
                'payout_amount': amount,
                'payout_transfer_id': transfer_id,
                'payout_processed_at': now,
            },
            commit=False,
        )
        if subject_type == 'route':
            self._distribute(subject_id, amount, transfer_id, now)
        db.session.commit()

        logger.info("Payout of $%.2f for %s %s sent to driver %s (transfer %s)",
                    amount, subject_type, subject_id, driver.id, transfer_id)
        return PayoutResult(success=True, amount=amount, transfer_id=transfer_id)

    def _transfer(self, subject_type, subject_id, driver, amount, attempt=1):
        """
        Move the money

        The idempotency key is scoped to one processing claim; each retry
        claim sends a new key.
        """
        if not self.stripe_secret_key:
            transfer_id = 'tr_dev_{}'.format(uuid.uuid4().hex[:16])
            logger.info("[PAYOUT-DEV] $%.2f to %s for %s %s",
                        amount, driver.stripe_connect_id, subject_type, subject_id)
            return transfer_id

        stripe = self._get_stripe()
        transfer = stripe.Transfer.create(
            amount=to_cents(amount),
            currency="usd",
            destination=driver.stripe_connect_id,
            metadata={
                "subject_type": subject_type,
                "subject_id": subject_id,
                "driver_id": driver.id,
            },
            idempotency_key='payout-{}-{}-{}'.format(subject_type, subject_id, attempt),
        )
        return transfer.id

    def _distribute(self, route_id, amount, transfer_id, now):
        """Split a route payout evenly across its delivered orders."""
        orders = DeliveryOrder.query.filter_by(route_id=route_id, status=ORDER_DELIVERED).all()
        if not orders:
            return
        share = round_money(amount / len(orders))
        for order in orders:
            order.payout_amount = share
            order.payout_status = PAYOUT_COMPLETED
            order.payout_transfer_id = transfer_id
            order.payout_processed_at = now
