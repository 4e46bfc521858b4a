"""SQLAlchemy models package"""
from .base import generate_uuid, utcnow
from .driver import Driver, DriverAvailability
from .route import Route
from .order import DeliveryOrder
from .appointment import Appointment
from .task import DispatchTask
from .webhook_event import WebhookEvent

__all__ = [
    'generate_uuid',
    'utcnow',
    'Driver',
    'DriverAvailability',
    'Route',
    'DeliveryOrder',
    'Appointment',
    'DispatchTask',
    'WebhookEvent',
]
