"""Dispatch task model"""
from sqlalchemy import Column, String, Integer, Float, Boolean, Text, DateTime, ForeignKey, JSON
from sqlalchemy.orm import relationship

from .base import BaseModel


class DispatchTask(BaseModel):
    """
    The unit of work tracked by the dispatch platform: one per route stop,
    standalone delivery, or appointment step.
    """
    __tablename__ = 'dispatch_tasks'

    provider_task_id = Column(String(64), nullable=True, unique=True)
    short_id = Column(String(32), nullable=False, unique=True, index=True)

    order_id = Column(String(36), ForeignKey('delivery_orders.id'), nullable=True, index=True)
    appointment_id = Column(String(36), ForeignKey('appointments.id'), nullable=True, index=True)
    step_number = Column(Integer, nullable=True)

    worker_id = Column(String(64), nullable=True)
    is_verified = Column(Boolean, nullable=False, default=False)

    # Last taskStarted instant
    webhook_time = Column(DateTime(timezone=True), nullable=True)

    completion_photo_url = Column(Text, nullable=True)
    gallery_photo_urls = Column(JSON, nullable=False, default=list)
    completed_at = Column(DateTime(timezone=True), nullable=True)
    driving_distance_meters = Column(Float, nullable=True)
    driving_time_seconds = Column(Float, nullable=True)

    failed_at = Column(DateTime(timezone=True), nullable=True)
    failure_reason = Column(Text, nullable=True)

    order = relationship('DeliveryOrder', lazy='joined')
    appointment = relationship('Appointment', back_populates='tasks')

    def __repr__(self):
        return f'<DispatchTask {self.short_id}>'
