"""Appointment model - multi-step storage jobs tracked through step-tagged tasks"""
from sqlalchemy import Column, String, Integer, Text, DateTime, ForeignKey
from sqlalchemy.orm import relationship

from .base import BaseModel, OfferMixin, PayoutMixin

APPOINTMENT_SCHEDULED = 'Scheduled'
APPOINTMENT_IN_TRANSIT = 'In Transit'
APPOINTMENT_AWAITING_CHECK_IN = 'Awaiting Admin Check In'

# Appointment states that commit a driver for the calendar day
APPOINTMENT_ACTIVE_STATES = (APPOINTMENT_SCHEDULED, APPOINTMENT_IN_TRANSIT)


class Appointment(BaseModel, OfferMixin, PayoutMixin):
    """
    Appointment model - a moving/storage job worked by one driver.
    Offered through the same cascade as routes; its tasks carry the step number.
    """
    __tablename__ = 'appointments'

    job_code = Column(String(32), nullable=True)
    status = Column(String(40), nullable=False, default=APPOINTMENT_SCHEDULED)
    driver_id = Column(String(36), ForeignKey('drivers.id'), nullable=True)
    customer_name = Column(String(255), nullable=True)
    customer_phone = Column(String(20), nullable=True)
    address = Column(Text, nullable=True)

    scheduled_start = Column(DateTime(timezone=True), nullable=True)
    scheduled_end = Column(DateTime(timezone=True), nullable=True)

    # Step whose completion finishes the job and releases the payout
    completion_step = Column(Integer, nullable=False, default=3)

    driver = relationship('Driver', lazy='joined')
    tasks = relationship('DispatchTask', back_populates='appointment', lazy='selectin',
                         order_by='DispatchTask.step_number')

    subject_type = 'appointment'
    driver_column = 'driver_id'

    def __repr__(self):
        return f'<Appointment {self.job_code or self.id} {self.status}>'

    @property
    def target_date(self):
        if self.scheduled_start is None:
            return None
        return self.scheduled_start.date()

    @property
    def stop_count(self):
        return len(self.tasks) or self.completion_step

    @property
    def first_task(self):
        """The step-one task the driver is offered."""
        return self.tasks[0] if self.tasks else None
