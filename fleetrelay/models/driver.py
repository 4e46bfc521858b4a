"""Driver and availability models"""
from sqlalchemy import Column, String, Float, Boolean, Integer, ForeignKey, Index
from sqlalchemy.orm import relationship

from .base import BaseModel

DRIVER_ACTIVE = 'Active'
DRIVER_INACTIVE = 'Inactive'


class Driver(BaseModel):
    """
    Driver model - workers who receive route and delivery offers.
    Owned by the onboarding subsystem; the dispatch engine only reads and ranks them.
    """
    __tablename__ = 'drivers'

    first_name = Column(String(100), nullable=False)
    last_name = Column(String(100), nullable=False, default='')
    phone = Column(String(20), nullable=True, index=True)
    email = Column(String(255), nullable=True)

    is_approved = Column(Boolean, nullable=False, default=False)
    status = Column(String(20), nullable=False, default=DRIVER_ACTIVE)
    application_complete = Column(Boolean, nullable=False, default=False)

    # Dispatch platform worker id
    platform_worker_id = Column(String(64), nullable=True)
    service_type = Column(String(20), nullable=False, default='delivery')  # delivery, moving, both

    stripe_connect_id = Column(String(255), nullable=True)
    payouts_enabled = Column(Boolean, nullable=False, default=False)

    average_rating = Column(Float, nullable=True)
    completed_jobs = Column(Integer, nullable=False, default=0)

    availability = relationship(
        'DriverAvailability', back_populates='driver', lazy='selectin', cascade='all, delete-orphan'
    )

    def __repr__(self):
        return f'<Driver {self.full_name}>'

    @property
    def full_name(self):
        return ' '.join(part for part in (self.first_name, self.last_name) if part)

    @property
    def can_receive_payouts(self):
        return bool(self.stripe_connect_id) and bool(self.payouts_enabled)


class DriverAvailability(BaseModel):
    """Weekly availability window for a driver"""
    __tablename__ = 'driver_availability'

    driver_id = Column(String(36), ForeignKey('drivers.id', ondelete='CASCADE'), nullable=False)
    day_of_week = Column(String(10), nullable=False)  # monday .. sunday
    start_time = Column(String(5), nullable=False)  # HH:MM
    end_time = Column(String(5), nullable=False)
    is_blocked = Column(Boolean, nullable=False, default=False)

    driver = relationship('Driver', back_populates='availability')

    __table_args__ = (
        Index('idx_driver_availability_day', 'day_of_week', 'driver_id'),
    )

    def __repr__(self):
        return f'<DriverAvailability {self.day_of_week} {self.start_time}-{self.end_time}>'
