"""
Pytest configuration and fixtures for FleetRelay tests
"""
import os
from collections import namedtuple
from datetime import date, datetime, time, timedelta, timezone

import pytest

from fleetrelay import create_app, db
from fleetrelay.models import (
    Appointment, DeliveryOrder, DispatchTask, Driver, DriverAvailability, Route,
)
from fleetrelay.services.notifications import NotificationGateway, NotificationResult
from fleetrelay.services.settlement import SettlementService
from fleetrelay.services.templates import get_template

# A Tuesday, far enough out that "today or later" filters include it
ROUTE_DATE = date(2030, 6, 4)

WEEKDAYS = ('monday', 'tuesday', 'wednesday', 'thursday', 'friday', 'saturday', 'sunday')

SentMessage = namedtuple('SentMessage', ['to', 'template', 'variables'])


class RecordingNotifications(NotificationGateway):
    """Notification gateway that records sends instead of calling providers."""

    def __init__(self):
        super().__init__()
        self.sms = []
        self.emails = []
        self.fail_sms = False

    def reset(self):
        self.sms = []
        self.emails = []
        self.fail_sms = False

    def send_sms(self, to_phone, template, variables=None):
        self.sms.append(SentMessage(to_phone, get_template(template).name, dict(variables or {})))
        if self.fail_sms:
            return NotificationResult(success=False, error='provider unavailable')
        return NotificationResult(success=True, message_id='SM{:04d}'.format(len(self.sms)))

    def send_email(self, to_email, template, variables=None):
        self.emails.append(SentMessage(to_email, get_template(template).name, dict(variables or {})))
        return NotificationResult(success=True, message_id='EM{:04d}'.format(len(self.emails)))

    def sms_named(self, name):
        return [m for m in self.sms if m.template == name]

    def emails_named(self, name):
        return [m for m in self.emails if m.template == name]


class RecordingSettlement(SettlementService):
    """Dev-mode settlement that records every payout attempt."""

    def __init__(self):
        super().__init__(stripe_secret_key='')
        self.calls = []

    def reset(self):
        self.calls = []

    def process_payout(self, subject_type, subject_id, now=None):
        self.calls.append((subject_type, subject_id))
        return super().process_payout(subject_type, subject_id, now=now)


_notifications = RecordingNotifications()
_settlement = RecordingSettlement()


@pytest.fixture(scope='session')
def app():
    """Create application instance for testing"""
    os.environ['FLASK_ENV'] = 'testing'
    app = create_app('testing', notifications=_notifications, settlement=_settlement)

    with app.app_context():
        db.create_all()
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture(autouse=True)
def _clean_db(app):
    """Every test starts with empty tables and empty gateway recordings"""
    db.session.remove()
    db.drop_all()
    db.create_all()
    _notifications.reset()
    _settlement.reset()
    yield
    db.session.remove()


@pytest.fixture
def client(app):
    """Create test client"""
    return app.test_client()


@pytest.fixture
def notifications():
    return _notifications


@pytest.fixture
def settlement():
    return _settlement


@pytest.fixture
def api_headers(app):
    return {'X-API-Key': app.config['API_KEY'], 'Content-Type': 'application/json'}


# ---------------------------------------------------------------------------
# Factories
# ---------------------------------------------------------------------------
@pytest.fixture
def driver_factory():
    """Create an eligible, approved driver available all week 08:00-20:00"""
    counter = {'n': 0}

    def _create(days=WEEKDAYS, start='08:00', end='20:00', **kwargs):
        counter['n'] += 1
        n = counter['n']
        values = dict(
            first_name='Driver{}'.format(n),
            last_name='Test',
            phone='+1555100{:04d}'.format(n),
            email='driver{}@fleetrelay.test'.format(n),
            is_approved=True,
            status='Active',
            application_complete=True,
            platform_worker_id='wkr{}'.format(n),
            service_type='delivery',
            stripe_connect_id='acct_test{}'.format(n),
            payouts_enabled=True,
            average_rating=4.5,
            completed_jobs=10,
        )
        values.update(kwargs)
        driver = Driver(**values)
        for day in days:
            driver.availability.append(DriverAvailability(day_of_week=day, start_time=start, end_time=end))
        db.session.add(driver)
        db.session.commit()
        return driver

    return _create


@pytest.fixture
def route_factory():
    """Create a route with N stops, each with its own dispatch task"""
    counter = {'n': 0}

    def _create(stops=2, route_date=ROUTE_DATE, driver=None, **kwargs):
        counter['n'] += 1
        n = counter['n']
        if driver is not None:
            kwargs.setdefault('route_status', 'assigned')
            kwargs.setdefault('offer_status', 'accepted')
        route = Route(
            route_date=route_date,
            route_name='Route {}'.format(n),
            total_stops=stops,
            driver_id=driver.id if driver else None,
            **kwargs
        )
        db.session.add(route)
        db.session.flush()
        for stop in range(1, stops + 1):
            order = DeliveryOrder(
                route_id=route.id,
                stop_number=stop,
                assigned_driver_id=driver.id if driver else None,
                status='Assigned' if driver else 'Pending',
                customer_name='Customer {}-{}'.format(n, stop),
                customer_phone='+1555200{:02d}{:02d}'.format(n, stop),
                delivery_address='{} Main St, Springfield, IL'.format(100 + stop),
            )
            db.session.add(order)
            db.session.flush()
            db.session.add(DispatchTask(
                short_id='r{}s{}'.format(n, stop),
                provider_task_id='task-r{}s{}'.format(n, stop),
                order_id=order.id,
            ))
        db.session.commit()
        return route

    return _create


@pytest.fixture
def order_factory():
    """Create a standalone delivery order with a dispatch task"""
    counter = {'n': 0}

    def _create(day=ROUTE_DATE, start=time(13, 0), end=time(14, 0), driver=None, **kwargs):
        counter['n'] += 1
        n = counter['n']
        values = dict(
            status='Assigned' if driver else 'Pending',
            assigned_driver_id=driver.id if driver else None,
            customer_name='Solo Customer {}'.format(n),
            customer_phone='+1555300{:04d}'.format(n),
            delivery_address='{} Oak Ave, Springfield, IL'.format(n),
            delivery_window_start=datetime.combine(day, start, tzinfo=timezone.utc),
            delivery_window_end=datetime.combine(day, end, tzinfo=timezone.utc),
        )
        if driver is not None:
            values['offer_status'] = 'accepted'
        values.update(kwargs)
        order = DeliveryOrder(**values)
        db.session.add(order)
        db.session.flush()
        db.session.add(DispatchTask(
            short_id='o{}'.format(n),
            provider_task_id='task-o{}'.format(n),
            order_id=order.id,
        ))
        db.session.commit()
        return order

    return _create


@pytest.fixture
def appointment_factory():
    """Create a three-step appointment with one task per step, 09:00-12:00 UTC on the route date"""

    def _create(driver=None, steps=3, **kwargs):
        kwargs.setdefault('address', '500 Storage Way, Springfield, IL')
        kwargs.setdefault('scheduled_start', datetime.combine(ROUTE_DATE, time(9, 0), tzinfo=timezone.utc))
        kwargs.setdefault('scheduled_end', datetime.combine(ROUTE_DATE, time(12, 0), tzinfo=timezone.utc))
        if driver is not None:
            kwargs.setdefault('offer_status', 'accepted')
        appointment = Appointment(
            job_code='APT-1001',
            driver_id=driver.id if driver else None,
            customer_phone='+15554000001',
            completion_step=steps,
            **kwargs
        )
        db.session.add(appointment)
        db.session.flush()
        for step in range(1, steps + 1):
            db.session.add(DispatchTask(
                short_id='a{}'.format(step),
                provider_task_id='task-a{}'.format(step),
                appointment_id=appointment.id,
                step_number=step,
            ))
        db.session.commit()
        return appointment

    return _create


def webhook_payload(short_id, trigger, ts=1780000000, **details):
    """Build a provider webhook body"""
    task = {'shortId': short_id}
    if details:
        task['completionDetails'] = details
    return {
        'taskId': 'task-{}'.format(short_id),
        'time': ts,
        'triggerName': trigger,
        'data': {'task': task},
    }


@pytest.fixture
def make_payload():
    return webhook_payload


@pytest.fixture
def later():
    """A moment past any offer issued during the test"""
    return datetime.now(timezone.utc) + timedelta(hours=1)
