"""Delivery order model"""
from sqlalchemy import Column, String, Integer, Float, Text, DateTime, ForeignKey, Index
from sqlalchemy.orm import relationship

from .base import BaseModel, OfferMixin, PayoutMixin

ORDER_PENDING = 'Pending'
ORDER_ASSIGNED = 'Assigned'
ORDER_IN_TRANSIT = 'In Transit'
ORDER_DRIVER_ARRIVED = 'Driver Arrived'
ORDER_DELIVERED = 'Delivered'
ORDER_FAILED = 'Failed'
ORDER_CANCELLED = 'Cancelled'

ORDER_TERMINAL_STATES = (ORDER_DELIVERED, ORDER_FAILED, ORDER_CANCELLED)


class DeliveryOrder(BaseModel, OfferMixin, PayoutMixin):
    """
    Delivery order - one customer drop-off, either a route stop or standalone.
    The offer columns are only used while the order is standalone.
    """
    __tablename__ = 'delivery_orders'

    route_id = Column(String(36), ForeignKey('routes.id'), nullable=True, index=True)
    stop_number = Column(Integer, nullable=True)
    assigned_driver_id = Column(String(36), ForeignKey('drivers.id'), nullable=True)

    status = Column(String(20), nullable=False, default=ORDER_PENDING)

    customer_name = Column(String(255), nullable=True)
    customer_phone = Column(String(20), nullable=True)
    customer_email = Column(String(255), nullable=True)
    delivery_address = Column(Text, nullable=True)

    delivery_window_start = Column(DateTime(timezone=True), nullable=True)
    delivery_window_end = Column(DateTime(timezone=True), nullable=True)

    delivery_photo_url = Column(Text, nullable=True)
    actual_delivery_time = Column(DateTime(timezone=True), nullable=True)
    driving_distance_meters = Column(Float, nullable=True)
    driving_time_seconds = Column(Float, nullable=True)

    route = relationship('Route', back_populates='orders')
    assigned_driver = relationship('Driver', lazy='joined')

    __table_args__ = (
        Index('idx_orders_route_status', 'route_id', 'status'),
    )

    subject_type = 'order'
    driver_column = 'assigned_driver_id'

    def __repr__(self):
        return f'<DeliveryOrder {self.id} {self.status}>'

    @property
    def is_standalone(self):
        return self.route_id is None

    @property
    def driver_id(self):
        return self.assigned_driver_id

    @property
    def driver(self):
        return self.assigned_driver

    @property
    def target_date(self):
        if self.delivery_window_start is None:
            return None
        return self.delivery_window_start.date()

    @property
    def stop_count(self):
        return 1
