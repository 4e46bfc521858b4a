"""
Task state updater tests
Per-trigger transitions, replays and out-of-order delivery
"""
import pytest

from fleetrelay import db
from fleetrelay.models import DeliveryOrder, DispatchTask, Route, WebhookEvent
from fleetrelay.services.event_normalizer import normalize_webhook
from fleetrelay.services.exceptions import UnknownTaskError
from fleetrelay.services.task_updater import apply_event


def _apply(app, payload):
    event = normalize_webhook(payload, app.config['PHOTO_URL_TEMPLATE'])
    return apply_event(event, raw_payload=payload)


class TestTriggers:
    """Test state changes for each trigger"""

    def test_started_moves_order_and_route(self, app, driver_factory, route_factory, make_payload):
        route = route_factory(stops=2, driver=driver_factory())
        update = _apply(app, make_payload('r1s1', 'taskStarted'))

        task = DispatchTask.query.filter_by(short_id='r1s1').one()
        route = db.session.get(Route, route.id)
        assert task.webhook_time is not None
        assert db.session.get(DeliveryOrder, task.order_id).status == 'In Transit'
        assert route.route_status == 'in_progress'
        assert route.started_at is not None
        assert update.route_started is True

    def test_arrival(self, app, driver_factory, route_factory, make_payload):
        route_factory(stops=1, driver=driver_factory())
        _apply(app, make_payload('r1s1', 'taskStarted'))
        _apply(app, make_payload('r1s1', 'taskArrival'))

        task = DispatchTask.query.filter_by(short_id='r1s1').one()
        assert db.session.get(DeliveryOrder, task.order_id).status == 'Driver Arrived'
        assert task.completion_photo_url is None

    def test_completed_records_photos_and_metrics(self, app, driver_factory, route_factory, make_payload):
        route = route_factory(stops=2, driver=driver_factory())
        update = _apply(app, make_payload(
            'r1s1', 'taskCompleted',
            photoUploadIds=['ph1', 'ph2'], drivingDistance=3218.68, drivingTime=1200))

        task = DispatchTask.query.filter_by(short_id='r1s1').one()
        order = db.session.get(DeliveryOrder, task.order_id)
        assert update.order_delivered is True
        assert order.status == 'Delivered'
        assert order.delivery_photo_url.endswith('/ph1/800x.png')
        assert order.driving_distance_meters == 3218.68
        assert order.actual_delivery_time is not None
        assert task.completed_at is not None
        assert task.gallery_photo_urls == [task.completion_photo_url.replace('ph1', 'ph2')]
        assert db.session.get(Route, route.id).completed_stops == 1

    def test_failed(self, app, driver_factory, route_factory, make_payload):
        route_factory(stops=2, driver=driver_factory())
        update = _apply(app, make_payload('r1s2', 'taskFailed', failureReason='CUSTOMER_UNAVAILABLE'))

        task = DispatchTask.query.filter_by(short_id='r1s2').one()
        assert update.order_failed is True
        assert db.session.get(DeliveryOrder, task.order_id).status == 'Failed'
        assert task.failure_reason == 'CUSTOMER_UNAVAILABLE'
        assert task.completion_photo_url is None

    def test_appointment_final_step(self, app, driver_factory, appointment_factory, make_payload):
        appointment = appointment_factory(driver=driver_factory())

        first = _apply(app, make_payload('a1', 'taskCompleted'))
        last = _apply(app, make_payload('a3', 'taskCompleted', photoUploadId='final'))

        assert first.appointment_completed is False
        assert last.appointment_completed is True
        db.session.refresh(appointment)
        assert appointment.status == 'Awaiting Admin Check In'


class TestIdempotency:
    """Test replays and out-of-order delivery"""

    def test_replay_is_noop(self, app, driver_factory, route_factory, make_payload):
        route = route_factory(stops=2, driver=driver_factory())
        payload = make_payload('r1s1', 'taskCompleted', photoUploadId='ph1')

        first = _apply(app, payload)
        second = _apply(app, payload)

        assert first.replay is False
        assert second.replay is True
        assert second.order_delivered is False
        assert WebhookEvent.query.count() == 1
        assert db.session.get(Route, route.id).completed_stops == 1

    def test_late_started_does_not_regress(self, app, driver_factory, route_factory, make_payload):
        route_factory(stops=1, driver=driver_factory())
        _apply(app, make_payload('r1s1', 'taskCompleted'))
        update = _apply(app, make_payload('r1s1', 'taskStarted'))

        task = DispatchTask.query.filter_by(short_id='r1s1').one()
        assert db.session.get(DeliveryOrder, task.order_id).status == 'Delivered'
        assert 'order:In Transit' not in update.changes

    def test_failed_after_delivered_is_ignored(self, app, driver_factory, route_factory, make_payload):
        route_factory(stops=1, driver=driver_factory())
        _apply(app, make_payload('r1s1', 'taskCompleted'))
        update = _apply(app, make_payload('r1s1', 'taskFailed'))

        task = DispatchTask.query.filter_by(short_id='r1s1').one()
        assert update.order_failed is False
        assert db.session.get(DeliveryOrder, task.order_id).status == 'Delivered'


class TestTaskResolution:
    """Test lookup and auto-registration of tasks"""

    def test_lookup_by_provider_id(self, app, order_factory):
        order_factory()
        payload = {'taskId': 'task-o1', 'time': 1780000000, 'triggerName': 'taskStarted', 'data': {}}
        update = _apply(app, payload)
        assert update.task_short_id == 'o1'

    def test_unknown_task(self, app, make_payload):
        with pytest.raises(UnknownTaskError):
            _apply(app, make_payload('nope', 'taskStarted'))

    def test_auto_registers_delivery_task(self, app, order_factory):
        order = order_factory()
        payload = {
            'taskId': 'new-task',
            'time': 1780000000,
            'triggerName': 'taskStarted',
            'data': {'task': {'shortId': 'fresh1', 'metadata': [
                {'name': 'order_id', 'value': order.id},
                {'name': 'job_type', 'value': 'packing_supply_delivery'},
            ]}},
        }
        update = _apply(app, payload)

        task = DispatchTask.query.filter_by(short_id='fresh1').one()
        assert task.order_id == order.id
        assert update.order_id == order.id
