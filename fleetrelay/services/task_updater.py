"""
Task state updater

Applies one normalized ``DispatchEvent`` to the task, order, route and
appointment rows it concerns. Each ``(task, trigger)`` pair is recorded once in
the ``webhook_events`` ledger inside the same transaction as the state changes,
so a replayed event hits the unique constraint and changes nothing.

The updater performs no notifications or settlement itself; it returns a
``TaskUpdate`` that says which side effects the event earned.
"""
import logging
from dataclasses import dataclass, field
from typing import List, Optional

from sqlalchemy.exc import IntegrityError

from fleetrelay import db
from fleetrelay.models import Appointment, DeliveryOrder, DispatchTask, Route, WebhookEvent
from fleetrelay.models.appointment import (
    APPOINTMENT_AWAITING_CHECK_IN, APPOINTMENT_IN_TRANSIT, APPOINTMENT_SCHEDULED,
)
from fleetrelay.models.order import (
    ORDER_ASSIGNED, ORDER_DELIVERED, ORDER_DRIVER_ARRIVED, ORDER_FAILED, ORDER_IN_TRANSIT,
    ORDER_PENDING,
)
from fleetrelay.models.route import ROUTE_ASSIGNED, ROUTE_IN_PROGRESS
from fleetrelay.models.webhook_event import EVENT_IGNORED, EVENT_PROCESSED
from fleetrelay.services.event_normalizer import (
    TRIGGER_ARRIVAL, TRIGGER_COMPLETED, TRIGGER_FAILED, TRIGGER_STARTED,
)
from fleetrelay.services.exceptions import UnknownTaskError
from fleetrelay.services.transitions import attempt_transition

logger = logging.getLogger(__name__)

# Job types whose unknown tasks are registered on first sight
AUTO_REGISTER_JOB_TYPES = ('delivery', 'packing_supply_delivery')

ORDER_OPEN_STATES = (ORDER_PENDING, ORDER_ASSIGNED, ORDER_IN_TRANSIT, ORDER_DRIVER_ARRIVED)


@dataclass
class TaskUpdate:
    """What one event changed, and which side effects it earned."""
    event: object
    task_short_id: Optional[str] = None
    replay: bool = False
    order_id: Optional[str] = None
    route_id: Optional[str] = None
    appointment_id: Optional[str] = None
    order_delivered: bool = False
    order_failed: bool = False
    route_started: bool = False
    appointment_completed: bool = False
    changes: List[str] = field(default_factory=list)

    def to_dict(self):
        return {
            'task': self.task_short_id,
            'trigger': self.event.trigger,
            'replay': self.replay,
            'order_id': self.order_id,
            'route_id': self.route_id,
            'appointment_id': self.appointment_id,
            'changes': list(self.changes),
        }


# ---------------------------------------------------------------------------
# Task resolution
# ---------------------------------------------------------------------------
def _find_task(event):
    task = None
    if event.short_id:
        task = DispatchTask.query.filter_by(short_id=event.short_id).first()
    if task is None and event.task_id:
        task = DispatchTask.query.filter_by(provider_task_id=event.task_id).first()
    return task


def _auto_register(event):
    if not event.order_id or event.job_type not in AUTO_REGISTER_JOB_TYPES:
        return None
    order = db.session.get(DeliveryOrder, event.order_id)
    if order is None:
        logger.warning("Task %s names unknown order %s", event.task_ref, event.order_id)
        return None

    task = DispatchTask(
        provider_task_id=event.task_id,
        short_id=event.short_id or event.task_id,
        order_id=order.id,
        step_number=event.step,
    )
    db.session.add(task)
    try:
        db.session.commit()
    except IntegrityError:
        # Registered concurrently by another delivery of the same task
        db.session.rollback()
        return _find_task(event)

    logger.info("Registered task %s for order %s", task.short_id, order.id)
    return task


def resolve_task(event):
    """Find the tracked task for ``event``, registering delivery tasks on first sight."""
    task = _find_task(event) or _auto_register(event)
    if task is None:
        raise UnknownTaskError('Unknown task: {}'.format(event.task_ref))
    return task


# ---------------------------------------------------------------------------
# Trigger handlers
# ---------------------------------------------------------------------------
def _move_order(update, order_id, allowed, values):
    moved = attempt_transition(DeliveryOrder, order_id, 'status', allowed, values, commit=False)
    if moved:
        update.changes.append('order:{}'.format(values['status']))
    return moved


def _on_started(update, task, event):
    task.webhook_time = event.occurred_at
    update.changes.append('task:started')

    if update.order_id:
        _move_order(update, update.order_id, (ORDER_PENDING, ORDER_ASSIGNED),
                    {'status': ORDER_IN_TRANSIT})
    if update.route_id:
        update.route_started = attempt_transition(
            Route, update.route_id, 'route_status', ROUTE_ASSIGNED,
            {'route_status': ROUTE_IN_PROGRESS, 'started_at': event.occurred_at},
            commit=False,
        )
        if update.route_started:
            update.changes.append('route:{}'.format(ROUTE_IN_PROGRESS))
    if update.appointment_id:
        if attempt_transition(Appointment, update.appointment_id, 'status', APPOINTMENT_SCHEDULED,
                              {'status': APPOINTMENT_IN_TRANSIT}, commit=False):
            update.changes.append('appointment:{}'.format(APPOINTMENT_IN_TRANSIT))


def _on_arrival(update, task, event):
    if update.order_id:
        _move_order(update, update.order_id, (ORDER_PENDING, ORDER_ASSIGNED, ORDER_IN_TRANSIT),
                    {'status': ORDER_DRIVER_ARRIVED})


def _on_completed(update, task, event):
    if task.completed_at is None:
        task.completion_photo_url = event.photo_url
        task.gallery_photo_urls = event.gallery_photo_urls
        task.completed_at = event.occurred_at
        task.driving_distance_meters = event.driving_distance_meters
        task.driving_time_seconds = event.driving_time_seconds
        update.changes.append('task:completed')

    if update.order_id:
        update.order_delivered = _move_order(update, update.order_id, ORDER_OPEN_STATES, {
            'status': ORDER_DELIVERED,
            'delivery_photo_url': event.photo_url,
            'actual_delivery_time': event.occurred_at,
            'driving_distance_meters': event.driving_distance_meters,
            'driving_time_seconds': event.driving_time_seconds,
        })
        if update.order_delivered and update.route_id:
            attempt_transition(
                Route, update.route_id, 'route_status', (ROUTE_ASSIGNED, ROUTE_IN_PROGRESS),
                {'completed_stops': Route.completed_stops + 1},
                conditions=[Route.completed_stops < Route.total_stops],
                commit=False,
            )

    if update.appointment_id:
        appointment = db.session.get(Appointment, update.appointment_id)
        step = task.step_number or event.step
        if appointment is not None and step is not None and step >= appointment.completion_step:
            update.appointment_completed = attempt_transition(
                Appointment, update.appointment_id, 'status',
                (APPOINTMENT_SCHEDULED, APPOINTMENT_IN_TRANSIT),
                {'status': APPOINTMENT_AWAITING_CHECK_IN},
                commit=False,
            )
            if update.appointment_completed:
                update.changes.append('appointment:{}'.format(APPOINTMENT_AWAITING_CHECK_IN))


def _on_failed(update, task, event):
    if task.failed_at is None:
        task.failed_at = event.occurred_at
        task.failure_reason = event.failure_reason or event.failure_notes
        update.changes.append('task:failed')

    if update.order_id:
        update.order_failed = _move_order(update, update.order_id, ORDER_OPEN_STATES,
                                          {'status': ORDER_FAILED})


HANDLERS = {
    TRIGGER_STARTED: _on_started,
    TRIGGER_ARRIVAL: _on_arrival,
    TRIGGER_COMPLETED: _on_completed,
    TRIGGER_FAILED: _on_failed,
}


def apply_event(event, raw_payload=None):
    """
    Apply ``event`` exactly once

    Args:
        event (DispatchEvent): normalized webhook event
        raw_payload (dict): original body, kept in the ledger for audit

    Returns:
        TaskUpdate: ``replay=True`` when this (task, trigger) was already applied

    Raises:
        UnknownTaskError: the event names a task we do not track
    """
    task = resolve_task(event)

    order = task.order
    update = TaskUpdate(
        event=event,
        task_short_id=task.short_id,
        order_id=task.order_id,
        route_id=order.route_id if order is not None else None,
        appointment_id=task.appointment_id,
    )

    ledger = WebhookEvent(
        task_short_id=task.short_id,
        trigger=event.trigger,
        event_time=event.occurred_at,
        payload=raw_payload,
    )
    db.session.add(ledger)
    try:
        db.session.flush()
    except IntegrityError:
        db.session.rollback()
        logger.info("Replay of %s for task %s ignored", event.trigger, update.task_short_id)
        update.replay = True
        return update

    # A failed completion report is a failure
    trigger = event.trigger
    if trigger == TRIGGER_COMPLETED and event.is_success is False:
        trigger = TRIGGER_FAILED

    try:
        HANDLERS[trigger](update, task, event)
        ledger.status = EVENT_PROCESSED if update.changes else EVENT_IGNORED
        db.session.commit()
    except Exception:
        db.session.rollback()
        logger.exception("Failed to apply %s for task %s", event.trigger, update.task_short_id)
        raise

    logger.info("Applied %s for task %s: %s", event.trigger, update.task_short_id,
                ', '.join(update.changes) or 'no changes')
    return update
