"""
Driver-offer cascade

A route, standalone order or appointment moves through

    unoffered -> offer_pending -> sent -> accepted | declined | expired

and every declined or expired offer loops back into candidate selection with
the previous driver excluded, until a driver accepts or the pool is empty and
the subject is escalated to an operator.

All transitions use the guarded ``attempt_transition`` primitive, so the
expiry sweep, webhook-driven reassignment, operator retries and driver
responses can race without double-issuing an offer. A step that fails after
claiming a subject hands the claim back; a claim orphaned by a crashed worker
is re-opened by the expiry sweep after ``OFFER_CLAIM_TIMEOUT_MINUTES``.
"""
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

from flask import current_app
from sqlalchemy import or_

from fleetrelay import db
from fleetrelay.extensions import get_gateways
from fleetrelay.models import Appointment, DeliveryOrder, DispatchTask, Driver, Route
from fleetrelay.models.appointment import APPOINTMENT_SCHEDULED
from fleetrelay.models.base import (
    OFFER_ACCEPTED, OFFER_CLAIMABLE, OFFER_DECLINED, OFFER_ESCALATED, OFFER_EXPIRED,
    OFFER_PENDING, OFFER_SENT, OFFER_UNOFFERED, as_utc,
)
from fleetrelay.models.order import ORDER_ASSIGNED, ORDER_PENDING
from fleetrelay.models.route import ROUTE_ASSIGNED, ROUTE_OPTIMIZED
from fleetrelay.services import templates
from fleetrelay.services.candidates import candidate_query_for, day_bounds, find_eligible_drivers
from fleetrelay.services.exceptions import (
    ALREADY_ACCEPTED, ALREADY_IN_PROGRESS, EXPIRED, NOT_FOUND, NOT_SENT, WRONG_DRIVER,
    OfferResult, OfferTokenExpiredError, OfferTokenInvalidError, SubjectNotFoundError,
)
from fleetrelay.services.offer_tokens import issue_offer_token, offer_url, verify_offer_token
from fleetrelay.services.reply_intent import ReplyIntent, classify_reply
from fleetrelay.services.transitions import attempt_transition
from fleetrelay.utils.helpers import (
    format_currency, format_offer_date, format_phone, get_timezone, round_money,
)

logger = logging.getLogger(__name__)

SUBJECT_MODELS = {
    'route': Route,
    'order': DeliveryOrder,
    'appointment': Appointment,
}

# Why the cascade is being (re)entered
REASON_INITIAL = 'initial'
REASON_DECLINED = 'declined'
REASON_EXPIRED = 'expired'
REASON_FAILED = 'failed'

ESCALATION_REASONS = {
    REASON_DECLINED: 'declined_exhausted',
    REASON_EXPIRED: 'expired_exhausted',
    REASON_FAILED: 'failed_exhausted',
    REASON_INITIAL: 'failed_exhausted',
}

ESCALATION_REASON_TEXT = {
    'declined_exhausted': 'all offers declined',
    'expired_exhausted': 'offer expired with no remaining candidates',
    'failed_exhausted': 'assignment attempt failed with no remaining candidates',
}

NO_CANDIDATES = 'NO_CANDIDATES'


def _now():
    return datetime.now(timezone.utc)


def subject_model(subject_type):
    model = SUBJECT_MODELS.get(subject_type)
    if model is None:
        raise SubjectNotFoundError('Unknown subject type: {}'.format(subject_type))
    return model


def get_subject(subject_type, subject_id):
    """Load an offerable subject or raise ``SubjectNotFoundError``."""
    subject = db.session.get(subject_model(subject_type), subject_id)
    if subject is None:
        raise SubjectNotFoundError('{} {} not found'.format(subject_type.capitalize(), subject_id))
    if subject_type == 'order' and not subject.is_standalone:
        raise SubjectNotFoundError('Order {} is dispatched as part of route {}'.format(
            subject_id, subject.route_id))
    return subject


def _driver_column(model):
    return getattr(model, model.driver_column)


# ---------------------------------------------------------------------------
# Offer content
# ---------------------------------------------------------------------------
def _delivery_area(subject):
    if subject.subject_type == 'appointment':
        address = subject.address
    else:
        orders = subject.orders if subject.subject_type == 'route' else [subject]
        address = next((o.delivery_address for o in orders if o.delivery_address), None)
    if not address:
        return 'your area'
    parts = [p.strip() for p in address.split(',') if p.strip()]
    return parts[1] if len(parts) > 1 else parts[0]


def offer_stops(subject):
    """Stop number and address for each stop the offer covers."""
    if subject.subject_type == 'route':
        return [{'stop_number': o.stop_number, 'address': o.delivery_address} for o in subject.orders]
    if subject.subject_type == 'appointment':
        return [{'stop_number': t.step_number, 'address': subject.address} for t in subject.tasks]
    return [{'stop_number': subject.stop_number, 'address': subject.delivery_address}]


def offer_task_id(subject):
    """Dispatch task named in the offer token; routes span several and name none."""
    if subject.subject_type == 'route':
        return None
    if subject.subject_type == 'appointment':
        task = subject.first_task
    else:
        task = DispatchTask.query.filter_by(order_id=subject.id).first()
    if task is None:
        return None
    return task.provider_task_id or task.short_id


def offer_estimates(subject, config):
    """
    Distance, duration and payout shown in the offer text

    Distance comes from the route's metrics when known. Duration falls back to
    a fixed time per stop. The payout estimate is a per-stop rate plus the
    per-mile rate.
    """
    stops = subject.stop_count
    miles = getattr(subject, 'total_distance_miles', None)
    minutes = getattr(subject, 'total_time_minutes', None)
    if not minutes:
        minutes = stops * config['ESTIMATED_MINUTES_PER_STOP']

    payout = stops * config['OFFER_ESTIMATE_PER_STOP_RATE'] + (miles or 0) * config['PAYOUT_PER_MILE_RATE']
    hours, mins = divmod(int(round(minutes)), 60)

    return {
        'estimated_distance': '{:.1f} mi'.format(miles) if miles else 'distance TBD',
        'estimated_duration': '{}h {}m'.format(hours, mins) if hours else '{}m'.format(mins),
        'payout_estimate': format_currency(round_money(payout)),
    }


def offer_variables(subject, token, config, target_date=None):
    variables = {
        'formatted_date': format_offer_date(target_date or subject.target_date),
        'total_stops': subject.stop_count,
        'delivery_area': _delivery_area(subject),
        'offer_url': offer_url(config['APP_URL'], token),
        'timeout_minutes': config['OFFER_TIMEOUT_MINUTES'],
    }
    variables.update(offer_estimates(subject, config))
    return variables


# ---------------------------------------------------------------------------
# Cascade step
# ---------------------------------------------------------------------------
def dispatch_next_offer(subject_type, subject_id, reason=REASON_INITIAL, now=None):
    """
    Offer the subject to the best remaining candidate, or escalate

    Only one caller can claim the subject for a given step; everyone else gets
    ``ALREADY_IN_PROGRESS`` and must treat it as a no-op. If the step raises
    after the claim, the subject goes back to the state it was claimed from
    before the error propagates.
    """
    now = now or _now()
    model = subject_model(subject_type)

    subject = db.session.get(model, subject_id)
    if subject is None:
        return OfferResult(success=False, message='Not found', error_code=NOT_FOUND)
    if getattr(subject, model.driver_column) is not None:
        return OfferResult(success=False, subject=subject, message='Already assigned',
                           error_code=ALREADY_ACCEPTED)

    prior_status = subject.offer_status
    claimed = prior_status in OFFER_CLAIMABLE and attempt_transition(
        model, subject_id, 'offer_status', prior_status,
        {'offer_status': OFFER_PENDING, 'offer_claimed_at': now},
        conditions=[_driver_column(model).is_(None)],
    )
    if not claimed:
        logger.info("Offer step for %s %s skipped; another caller holds it", subject_type, subject_id)
        return OfferResult(success=False, subject=subject, message='Offer already in progress',
                           error_code=ALREADY_IN_PROGRESS)

    try:
        return _offer_to_next_candidate(model, subject_id, reason, now)
    except Exception:
        db.session.rollback()
        if release_claim(model, subject_id, prior_status):
            logger.warning("Offer step for %s %s failed; returned to %s",
                           subject_type, subject_id, prior_status)
        raise


def release_claim(model, subject_id, status):
    """Move a subject out of ``offer_pending`` so the next invocation can retry it."""
    return attempt_transition(model, subject_id, 'offer_status', OFFER_PENDING,
                              {'offer_status': status, 'offer_claimed_at': None})


def _offer_to_next_candidate(model, subject_id, reason, now):
    config = current_app.config
    subject = db.session.get(model, subject_id)
    query = candidate_query_for(subject, config, today=now.date())
    candidates = find_eligible_drivers(query, limit=1)
    if not candidates:
        return _escalate(subject, reason, now)

    driver = candidates[0]
    token, claims = issue_offer_token(
        subject, driver.id, config['OFFER_TOKEN_SECRET'], config['OFFER_TIMEOUT_MINUTES'], now=now,
        task_id=offer_task_id(subject), target_date=query.target_date,
    )

    sent = attempt_transition(
        model, subject_id, 'offer_status', OFFER_PENDING,
        {
            'offer_status': OFFER_SENT,
            'offered_driver_id': driver.id,
            'offered_driver_ids': subject.excluded_driver_ids + [driver.id],
            'offer_token_id': claims.jti,
            'offer_token': token,
            'offer_claimed_at': None,
            'offer_sent_at': now,
            'offer_expires_at': claims.expires_at,
            'escalation_reason': None,
            'escalated_at': None,
        },
    )
    if not sent:
        return OfferResult(success=False, subject=subject, message='Offer already in progress',
                           error_code=ALREADY_IN_PROGRESS)

    subject = db.session.get(model, subject_id)
    notification = get_gateways().notifications.send_sms(
        driver.phone, templates.JOB_OFFER,
        offer_variables(subject, token, config, target_date=query.target_date),
    )
    if not notification.success:
        # The offer stays sent; the expiry sweep moves the cascade along.
        logger.warning("Offer SMS to driver %s for %s %s failed: %s",
                       driver.id, subject.subject_type, subject_id, notification.error)

    logger.info("Offered %s %s to driver %s (reason=%s, expires %s)",
                subject.subject_type, subject_id, driver.id, reason, claims.expires_at.isoformat())
    return OfferResult(
        success=True,
        subject=subject,
        message='Offer sent',
        extra={'driver_id': driver.id, 'token': token, 'notified': notification.success},
    )


def _escalate(subject, reason, now):
    model = type(subject)
    reason_code = ESCALATION_REASONS.get(reason, ESCALATION_REASONS[REASON_FAILED])

    escalated = attempt_transition(
        model, subject.id, 'offer_status', OFFER_PENDING,
        {
            'offer_status': OFFER_ESCALATED,
            'escalation_reason': reason_code,
            'escalated_at': now,
            'offered_driver_id': None,
            'offer_token_id': None,
            'offer_token': None,
            'offer_claimed_at': None,
        },
    )
    subject = db.session.get(model, subject.id)
    if not escalated:
        return OfferResult(success=False, subject=subject, message='Offer already in progress',
                           error_code=ALREADY_IN_PROGRESS)

    logger.warning("No eligible drivers for %s %s; escalated (%s)",
                   subject.subject_type, subject.id, reason_code)
    config = current_app.config
    get_gateways().notifications.notify_operators(
        config['ADMIN_EMAILS'],
        config['OPERATOR_PHONE'],
        templates.NO_DRIVER_ALERT,
        {
            'subject_type': subject.subject_type,
            'subject_id': subject.id,
            'delivery_date': subject.target_date.isoformat() if subject.target_date else 'unscheduled',
            'total_stops': subject.stop_count,
            'reason': reason_code,
            'reason_text': ESCALATION_REASON_TEXT[reason_code],
        },
    )
    return OfferResult(
        success=False,
        subject=subject,
        message='No eligible drivers; escalated to operator',
        error_code=NO_CANDIDATES,
        extra={'escalated': True, 'reason': reason_code},
    )


# ---------------------------------------------------------------------------
# Driver responses
# ---------------------------------------------------------------------------
def _diagnose(model, claims, now):
    subject = db.session.get(model, claims.subject_id)
    if subject is None:
        return OfferResult(success=False, message='Offer not found', error_code=NOT_FOUND)

    if subject.offer_status == OFFER_ACCEPTED or getattr(subject, model.driver_column):
        return OfferResult(success=False, subject=subject, message='Offer already accepted',
                           error_code=ALREADY_ACCEPTED)
    if subject.offer_status == OFFER_EXPIRED:
        return OfferResult(success=False, subject=subject, message='Offer has expired',
                           error_code=EXPIRED)
    if subject.offer_status != OFFER_SENT:
        return OfferResult(success=False, subject=subject, message='No open offer',
                           error_code=NOT_SENT)
    if subject.offered_driver_id != claims.driver_id or subject.offer_token_id != claims.jti:
        return OfferResult(success=False, subject=subject, message='Offer belongs to another driver',
                           error_code=WRONG_DRIVER)
    expires_at = as_utc(subject.offer_expires_at)
    if expires_at is not None and expires_at <= now:
        return OfferResult(success=False, subject=subject, message='Offer has expired',
                           error_code=EXPIRED)
    return OfferResult(success=False, subject=subject, message='Offer could not be updated',
                       error_code=NOT_SENT)


def accept_offer(claims, now=None):
    """Atomically assign the subject to the driver named in ``claims``."""
    now = now or _now()
    model = SUBJECT_MODELS.get(claims.subject_type)
    if model is None:
        return OfferResult(success=False, message='Offer not found', error_code=NOT_FOUND)

    values = {
        'offer_status': OFFER_ACCEPTED,
        model.driver_column: claims.driver_id,
    }
    if model is Route:
        values['route_status'] = ROUTE_ASSIGNED
    elif model is DeliveryOrder:
        values['status'] = ORDER_ASSIGNED

    accepted = attempt_transition(
        model, claims.subject_id, 'offer_status', OFFER_SENT, values,
        conditions=[
            model.offered_driver_id == claims.driver_id,
            model.offer_token_id == claims.jti,
            model.offer_expires_at > now,
            _driver_column(model).is_(None),
        ],
        commit=False,
    )
    if not accepted:
        db.session.rollback()
        result = _diagnose(model, claims, now)
        logger.info("Accept by driver %s for %s %s refused: %s",
                    claims.driver_id, claims.subject_type, claims.subject_id, result.error_code)
        return result

    if model is Route:
        DeliveryOrder.query.filter(
            DeliveryOrder.route_id == claims.subject_id,
            DeliveryOrder.status == ORDER_PENDING,
        ).update(
            {'assigned_driver_id': claims.driver_id, 'status': ORDER_ASSIGNED},
            synchronize_session=False,
        )
    elif model is Appointment:
        driver = db.session.get(Driver, claims.driver_id)
        DispatchTask.query.filter(DispatchTask.appointment_id == claims.subject_id).update(
            {'worker_id': driver.platform_worker_id if driver else None},
            synchronize_session=False,
        )
    db.session.commit()

    subject = db.session.get(model, claims.subject_id)
    logger.info("Driver %s accepted %s %s", claims.driver_id, claims.subject_type, claims.subject_id)
    return OfferResult(success=True, subject=subject, message='Offer accepted',
                       extra={'driver_id': claims.driver_id})


def decline_offer(claims, now=None):
    """Record a decline and move the cascade to the next candidate."""
    now = now or _now()
    model = SUBJECT_MODELS.get(claims.subject_type)
    if model is None:
        return OfferResult(success=False, message='Offer not found', error_code=NOT_FOUND)

    declined = attempt_transition(
        model, claims.subject_id, 'offer_status', OFFER_SENT,
        {'offer_status': OFFER_DECLINED, 'offered_driver_id': None,
         'offer_token_id': None, 'offer_token': None},
        conditions=[
            model.offered_driver_id == claims.driver_id,
            model.offer_token_id == claims.jti,
            _driver_column(model).is_(None),
        ],
    )
    if not declined:
        return _diagnose(model, claims, now)

    logger.info("Driver %s declined %s %s", claims.driver_id, claims.subject_type, claims.subject_id)
    next_step = dispatch_next_offer(claims.subject_type, claims.subject_id, REASON_DECLINED, now=now)
    return OfferResult(success=True, subject=next_step.subject, message='Offer declined',
                       extra={'next_offer': next_step})


def respond_to_offer(token, action, now=None):
    """Verify ``token`` and apply ``action`` ('accept' or 'decline')."""
    claims = verify_offer_token(token, current_app.config['OFFER_TOKEN_SECRET'])
    if action == 'accept':
        return accept_offer(claims, now=now)
    return decline_offer(claims, now=now)


# ---------------------------------------------------------------------------
# Sweeps
# ---------------------------------------------------------------------------
@dataclass
class ExpirySweepSummary:
    expired: int = 0
    reclaimed: int = 0
    reoffered: int = 0
    escalated: int = 0

    def to_dict(self):
        return {'expired': self.expired, 'reclaimed': self.reclaimed,
                'reoffered': self.reoffered, 'escalated': self.escalated}

    def count(self, result):
        if result.success:
            self.reoffered += 1
        elif result.extra.get('escalated'):
            self.escalated += 1


# Reason the cascade re-enters selection, by the state it was left in
RESUME_REASONS = {
    OFFER_DECLINED: REASON_DECLINED,
    OFFER_EXPIRED: REASON_EXPIRED,
}


def _driverless_ids(model, *criteria):
    return [row.id for row in model.query.with_entities(model.id).filter(
        _driver_column(model).is_(None), *criteria).all()]


def expire_stale_offers(now=None):
    """
    Keep every cascade moving

    1. Re-open claims left in ``offer_pending`` past the claim timeout.
    2. Expire sent offers past their deadline.
    3. Offer every declined or expired, still driverless subject to the next
       candidate (or escalate it).
    """
    now = now or _now()
    summary = ExpirySweepSummary()
    claim_cutoff = now - timedelta(minutes=current_app.config['OFFER_CLAIM_TIMEOUT_MINUTES'])

    for subject_type, model in SUBJECT_MODELS.items():
        stuck = or_(model.offer_claimed_at.is_(None), model.offer_claimed_at <= claim_cutoff)
        for subject_id in _driverless_ids(model, model.offer_status == OFFER_PENDING, stuck):
            try:
                if not attempt_transition(
                    model, subject_id, 'offer_status', OFFER_PENDING,
                    {'offer_status': OFFER_UNOFFERED, 'offer_claimed_at': None},
                    conditions=[stuck, _driver_column(model).is_(None)],
                ):
                    continue
                summary.reclaimed += 1
                logger.warning("Re-opened stuck offer claim for %s %s", subject_type, subject_id)
                summary.count(dispatch_next_offer(subject_type, subject_id, REASON_FAILED, now=now))
            except Exception:
                db.session.rollback()
                logger.exception("Failed to re-open offer claim for %s %s", subject_type, subject_id)

        for subject_id in _driverless_ids(model, model.offer_status == OFFER_SENT,
                                          model.offer_expires_at <= now):
            if attempt_transition(
                model, subject_id, 'offer_status', OFFER_SENT,
                {'offer_status': OFFER_EXPIRED, 'offered_driver_id': None,
                 'offer_token_id': None, 'offer_token': None},
                conditions=[model.offer_expires_at <= now, _driver_column(model).is_(None)],
            ):
                summary.expired += 1

        stranded = model.query.with_entities(model.id, model.offer_status).filter(
            _driver_column(model).is_(None),
            model.offer_status.in_(tuple(RESUME_REASONS)),
        ).all()
        for row in stranded:
            try:
                summary.count(dispatch_next_offer(subject_type, row.id, RESUME_REASONS[row.offer_status],
                                                  now=now))
            except Exception:
                db.session.rollback()
                logger.exception("Failed to move offer cascade for %s %s", subject_type, row.id)

    if summary.expired or summary.reclaimed or summary.reoffered or summary.escalated:
        logger.info("Offer sweep: expired %d, reclaimed %d, re-offered %d, escalated %d",
                    summary.expired, summary.reclaimed, summary.reoffered, summary.escalated)
    return summary


@dataclass
class DispatchSummary:
    attempted: int = 0
    offered: int = 0
    escalated: int = 0

    def to_dict(self):
        return {'attempted': self.attempted, 'offered': self.offered, 'escalated': self.escalated}


def dispatch_pending_offers(today=None, now=None):
    """
    Start cascades for driverless routes, standalone orders and appointments
    from ``today`` (in the dispatch timezone) on.
    """
    now = now or _now()
    tz_name = current_app.config.get('DISPATCH_TIMEZONE') or 'UTC'
    today = today or now.astimezone(get_timezone(tz_name)).date()
    day_start, _ = day_bounds(today, tz_name)
    summary = DispatchSummary()

    route_ids = [r.id for r in Route.query.with_entities(Route.id).filter(
        Route.offer_status == OFFER_UNOFFERED,
        Route.driver_id.is_(None),
        Route.route_status == ROUTE_OPTIMIZED,
        Route.route_date >= today,
    ).order_by(Route.route_date).all()]

    order_ids = [o.id for o in DeliveryOrder.query.with_entities(DeliveryOrder.id).filter(
        DeliveryOrder.route_id.is_(None),
        DeliveryOrder.assigned_driver_id.is_(None),
        DeliveryOrder.status == ORDER_PENDING,
        DeliveryOrder.offer_status == OFFER_UNOFFERED,
        DeliveryOrder.delivery_window_start >= day_start,
    ).order_by(DeliveryOrder.delivery_window_start).all()]

    appointment_ids = [a.id for a in Appointment.query.with_entities(Appointment.id).filter(
        Appointment.driver_id.is_(None),
        Appointment.status == APPOINTMENT_SCHEDULED,
        Appointment.offer_status == OFFER_UNOFFERED,
        Appointment.scheduled_start >= day_start,
    ).order_by(Appointment.scheduled_start).all()]

    for subject_type, ids in (('route', route_ids), ('order', order_ids), ('appointment', appointment_ids)):
        for subject_id in ids:
            summary.attempted += 1
            try:
                result = dispatch_next_offer(subject_type, subject_id, REASON_INITIAL, now=now)
            except Exception:
                db.session.rollback()
                logger.exception("Failed to dispatch offer for %s %s", subject_type, subject_id)
                continue
            if result.success:
                summary.offered += 1
            elif result.extra.get('escalated'):
                summary.escalated += 1

    return summary


# ---------------------------------------------------------------------------
# Operator actions
# ---------------------------------------------------------------------------
def release_assignment(subject_type, subject_id, driver_id, now=None):
    """
    A driver dropped an accepted job before starting it.

    The assignment is cleared, the driver stays excluded, and the cascade
    re-enters selection as a failed assignment.
    """
    now = now or _now()
    model = subject_model(subject_type)
    get_subject(subject_type, subject_id)

    values = {
        'offer_status': OFFER_DECLINED,
        model.driver_column: None,
        'offered_driver_id': None,
        'offer_token_id': None,
        'offer_token': None,
    }
    conditions = [_driver_column(model) == driver_id]
    if model is Route:
        values['route_status'] = ROUTE_OPTIMIZED
        conditions.append(Route.route_status == ROUTE_ASSIGNED)
    elif model is DeliveryOrder:
        values['status'] = ORDER_PENDING
        conditions.append(DeliveryOrder.status == ORDER_ASSIGNED)
    else:
        conditions.append(Appointment.status == APPOINTMENT_SCHEDULED)

    released = attempt_transition(model, subject_id, 'offer_status', OFFER_ACCEPTED, values,
                                  conditions=conditions, commit=False)
    if not released:
        db.session.rollback()
        return OfferResult(success=False, subject=db.session.get(model, subject_id),
                           message='Assignment cannot be released', error_code=NOT_SENT)

    if model is Route:
        DeliveryOrder.query.filter(
            DeliveryOrder.route_id == subject_id,
            DeliveryOrder.status == ORDER_ASSIGNED,
        ).update({'assigned_driver_id': None, 'status': ORDER_PENDING}, synchronize_session=False)
    elif model is Appointment:
        DispatchTask.query.filter(DispatchTask.appointment_id == subject_id).update(
            {'worker_id': None}, synchronize_session=False)
    db.session.commit()

    logger.info("Driver %s released %s %s", driver_id, subject_type, subject_id)
    next_step = dispatch_next_offer(subject_type, subject_id, REASON_FAILED, now=now)
    return OfferResult(success=True, subject=next_step.subject, message='Assignment released',
                       extra={'next_offer': next_step})


def reset_escalation(subject_type, subject_id, clear_exclusions=False):
    """Re-open an escalated subject for automated offers."""
    model = subject_model(subject_type)
    get_subject(subject_type, subject_id)

    values = {'offer_status': OFFER_UNOFFERED, 'escalation_reason': None, 'escalated_at': None}
    if clear_exclusions:
        values['offered_driver_ids'] = []

    reset = attempt_transition(model, subject_id, 'offer_status', OFFER_ESCALATED, values)
    subject = db.session.get(model, subject_id)
    if not reset:
        return OfferResult(success=False, subject=subject, message='Subject is not escalated',
                           error_code=NOT_SENT)
    logger.info("Escalation reset for %s %s (clear_exclusions=%s)", subject_type, subject_id, clear_exclusions)
    return OfferResult(success=True, subject=subject, message='Escalation reset')


# ---------------------------------------------------------------------------
# SMS replies
# ---------------------------------------------------------------------------
@dataclass
class SmsReplyOutcome:
    intent: ReplyIntent
    result: OfferResult = None
    reply_template: object = None
    reply_variables: dict = None


def pending_offers_for_driver(driver_id, now=None):
    """
    Open offers held by ``driver_id``, oldest first

    Offers already past their deadline are left out; the expiry sweep owns them.
    """
    now = now or _now()
    offers = []
    for model in SUBJECT_MODELS.values():
        offers.extend(model.query.filter(
            model.offer_status == OFFER_SENT,
            model.offered_driver_id == driver_id,
            model.offer_expires_at > now,
            _driver_column(model).is_(None),
        ).all())
    return sorted(offers, key=lambda s: as_utc(s.offer_sent_at))


def _live_offer_for(driver, now):
    """The most recent open offer held by ``driver``, if any."""
    offers = pending_offers_for_driver(driver.id, now=now)
    return offers[-1] if offers else None


def handle_sms_reply(from_phone, body, now=None):
    """
    Act on a free-text reply to an offer SMS

    The reply is routed through the stored offer token, so it is subject to
    the same expiry and driver checks as the offer link.
    """
    now = now or _now()
    intent = classify_reply(body)

    phone = format_phone(from_phone)
    driver = Driver.query.filter(Driver.phone.in_([phone, from_phone])).first() if phone else None
    subject = _live_offer_for(driver, now) if driver else None
    if subject is None:
        return SmsReplyOutcome(intent=intent, reply_template=templates.OFFER_UNAVAILABLE,
                               reply_variables={})

    variables = {
        'formatted_date': format_offer_date(subject.target_date),
        'total_stops': subject.stop_count,
    }
    if intent is ReplyIntent.AMBIGUOUS:
        return SmsReplyOutcome(intent=intent, reply_template=templates.AMBIGUOUS_REPLY,
                               reply_variables=variables)

    try:
        claims = verify_offer_token(subject.offer_token, current_app.config['OFFER_TOKEN_SECRET'])
    except (OfferTokenExpiredError, OfferTokenInvalidError):
        return SmsReplyOutcome(intent=intent, reply_template=templates.OFFER_UNAVAILABLE,
                               reply_variables=variables)

    if intent is ReplyIntent.ACCEPT:
        result = accept_offer(claims, now=now)
        template = templates.OFFER_ACCEPTED if result.success else templates.OFFER_UNAVAILABLE
    else:
        result = decline_offer(claims, now=now)
        template = templates.OFFER_DECLINED if result.success else templates.OFFER_UNAVAILABLE

    return SmsReplyOutcome(intent=intent, result=result, reply_template=template,
                           reply_variables=variables)
