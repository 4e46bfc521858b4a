"""
Driver candidate selection

``CandidateQuery`` is the typed description of who may take a job;
``find_eligible_drivers`` is the one repository method that answers it.

Driver availability is stored as local ``HH:MM`` strings, so job windows are
converted to ``DISPATCH_TIMEZONE`` before they are compared.
"""
import logging
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, timezone
from typing import FrozenSet, Optional, Tuple

from sqlalchemy import and_, exists, or_

from fleetrelay.models import Appointment, DeliveryOrder, Driver, DriverAvailability, Route
from fleetrelay.models.appointment import APPOINTMENT_ACTIVE_STATES
from fleetrelay.models.base import OFFER_SENT
from fleetrelay.models.driver import DRIVER_ACTIVE
from fleetrelay.models.order import ORDER_TERMINAL_STATES
from fleetrelay.models.route import ROUTE_ACTIVE_STATES
from fleetrelay.utils.helpers import day_of_week, get_timezone, to_local
from fleetrelay.utils.validators import validate_time_of_day

logger = logging.getLogger(__name__)

DELIVERY_SERVICE_TYPES = ('delivery', 'both')
MOVING_SERVICE_TYPES = ('moving', 'both')


@dataclass(frozen=True)
class CandidateQuery:
    target_date: date
    window_start: str
    window_end: str
    excluded_driver_ids: FrozenSet[str] = frozenset()
    service_types: Tuple[str, ...] = DELIVERY_SERVICE_TYPES
    require_payouts: bool = True
    subject_type: Optional[str] = None
    subject_id: Optional[str] = None
    timezone_name: str = 'UTC'

    @property
    def day_of_week(self):
        return day_of_week(self.target_date)


def _window_bounds(subject):
    if subject.subject_type == 'order':
        return subject.delivery_window_start, subject.delivery_window_end
    if subject.subject_type == 'appointment':
        return subject.scheduled_start, subject.scheduled_end
    return None, None


def candidate_query_for(subject, config, today=None):
    """Build the query for a route, standalone order or appointment."""
    tz_name = config.get('DISPATCH_TIMEZONE') or 'UTC'
    tz = get_timezone(tz_name)
    window_start = config['ROUTE_WINDOW_START']
    window_end = config['ROUTE_WINDOW_END']
    target = subject.target_date

    if subject.subject_type != 'route':
        start, end = _window_bounds(subject)
        start, end = to_local(start, tz), to_local(end, tz)
        if start is not None:
            target = start.date()
            if end is not None and start.date() == end.date():
                window_start = start.strftime('%H:%M')
                window_end = end.strftime('%H:%M')
        if target is None:
            target = today or datetime.now(tz).date()

    if not (validate_time_of_day(window_start) and validate_time_of_day(window_end)):
        raise ValueError('Offer window must be HH:MM, got {}-{}'.format(window_start, window_end))

    return CandidateQuery(
        target_date=target,
        window_start=window_start,
        window_end=window_end,
        excluded_driver_ids=frozenset(subject.excluded_driver_ids),
        service_types=MOVING_SERVICE_TYPES if subject.subject_type == 'appointment' else DELIVERY_SERVICE_TYPES,
        subject_type=subject.subject_type,
        subject_id=subject.id,
        timezone_name=tz_name,
    )


def day_bounds(target_date, tz_name='UTC'):
    """Start and end of ``target_date`` in the dispatch zone, expressed in UTC."""
    start = datetime.combine(target_date, time.min, tzinfo=get_timezone(tz_name))
    end = start + timedelta(days=1)
    return start.astimezone(timezone.utc), end.astimezone(timezone.utc)


def find_eligible_drivers(query, limit=None):
    """
    Drivers who can take the job described by ``query``, best first

    Eligibility: approved, active, application complete, reachable by phone,
    registered with the dispatch platform, payout-capable, offering the right
    service, not excluded, available for the whole window on that weekday, and
    not already committed to another route, delivery or appointment that day.

    Ranking: average rating (unrated last), then completed jobs, then id.
    """
    conditions = [
        Driver.is_approved.is_(True),
        Driver.status == DRIVER_ACTIVE,
        Driver.application_complete.is_(True),
        Driver.phone.isnot(None),
        Driver.platform_worker_id.isnot(None),
        Driver.service_type.in_(query.service_types),
    ]
    if query.require_payouts:
        conditions.append(Driver.stripe_connect_id.isnot(None))
        conditions.append(Driver.payouts_enabled.is_(True))
    if query.excluded_driver_ids:
        conditions.append(Driver.id.notin_(sorted(query.excluded_driver_ids)))

    available = exists().where(
        DriverAvailability.driver_id == Driver.id,
        DriverAvailability.day_of_week == query.day_of_week,
        DriverAvailability.is_blocked.is_(False),
        DriverAvailability.start_time <= query.window_start,
        DriverAvailability.end_time >= query.window_end,
    )
    conditions.append(available)

    route_conflict = [
        Route.route_date == query.target_date,
        Route.route_status.in_(ROUTE_ACTIVE_STATES),
        or_(
            Route.driver_id == Driver.id,
            and_(Route.offered_driver_id == Driver.id, Route.offer_status == OFFER_SENT),
        ),
    ]
    if query.subject_type == 'route' and query.subject_id:
        route_conflict.append(Route.id != query.subject_id)
    conditions.append(~exists().where(*route_conflict))

    day_start, day_end = day_bounds(query.target_date, query.timezone_name)
    order_conflict = [
        DeliveryOrder.route_id.is_(None),
        DeliveryOrder.status.notin_(ORDER_TERMINAL_STATES),
        DeliveryOrder.delivery_window_start >= day_start,
        DeliveryOrder.delivery_window_start < day_end,
        or_(
            DeliveryOrder.assigned_driver_id == Driver.id,
            and_(DeliveryOrder.offered_driver_id == Driver.id,
                 DeliveryOrder.offer_status == OFFER_SENT),
        ),
    ]
    if query.subject_type == 'order' and query.subject_id:
        order_conflict.append(DeliveryOrder.id != query.subject_id)
    conditions.append(~exists().where(*order_conflict))

    appointment_conflict = [
        Appointment.status.in_(APPOINTMENT_ACTIVE_STATES),
        Appointment.scheduled_start >= day_start,
        Appointment.scheduled_start < day_end,
        or_(
            Appointment.driver_id == Driver.id,
            and_(Appointment.offered_driver_id == Driver.id,
                 Appointment.offer_status == OFFER_SENT),
        ),
    ]
    if query.subject_type == 'appointment' and query.subject_id:
        appointment_conflict.append(Appointment.id != query.subject_id)
    conditions.append(~exists().where(*appointment_conflict))

    q = Driver.query.filter(*conditions).order_by(
        Driver.average_rating.is_(None),
        Driver.average_rating.desc(),
        Driver.completed_jobs.desc(),
        Driver.id.asc(),
    )
    if limit:
        q = q.limit(limit)

    drivers = q.all()
    logger.debug("Candidate query for %s %s on %s returned %d drivers",
                 query.subject_type, query.subject_id, query.target_date, len(drivers))
    return drivers
