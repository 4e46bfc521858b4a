"""WebhookEvent - audit log and replay guard for inbound dispatch webhooks"""
from sqlalchemy import Column, String, Text, DateTime, JSON, UniqueConstraint

from .base import BaseModel

EVENT_PROCESSED = 'processed'
EVENT_IGNORED = 'ignored'


class WebhookEvent(BaseModel):
    __tablename__ = 'webhook_events'

    task_short_id = Column(String(32), nullable=False)
    trigger = Column(String(20), nullable=False)
    event_time = Column(DateTime(timezone=True), nullable=True)
    payload = Column(JSON, nullable=True)
    status = Column(String(20), nullable=False, default=EVENT_PROCESSED)
    error_message = Column(Text, nullable=True)

    __table_args__ = (
        UniqueConstraint('task_short_id', 'trigger', name='uq_webhook_events_task_trigger'),
    )

    def __repr__(self):
        return f'<WebhookEvent {self.task_short_id} {self.trigger}>'
