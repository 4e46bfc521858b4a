"""
Base model with common fields and methods
"""
import uuid
from datetime import datetime, date, timezone

from sqlalchemy import Column, String, DateTime, Float, Integer, Text, JSON

from fleetrelay import db


def generate_uuid():
    return str(uuid.uuid4())


def utcnow():
    return datetime.now(timezone.utc)


def as_utc(value):
    """Attach UTC to naive datetimes read back from SQLite."""
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class BaseModel(db.Model):
    """Abstract base model with common fields"""
    __abstract__ = True

    id = Column(String(36), primary_key=True, default=generate_uuid)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False)

    def to_dict(self, exclude=None):
        """
        Convert model to dictionary

        Args:
            exclude (list): List of fields to exclude

        Returns:
            dict: Model as dictionary
        """
        exclude = exclude or []
        data = {}

        for column in self.__table__.columns:
            if column.name not in exclude:
                value = getattr(self, column.name)

                if isinstance(value, datetime):
                    value = as_utc(value).isoformat()
                elif isinstance(value, date):
                    value = value.isoformat()

                data[column.name] = value

        return data


# ---------------------------------------------------------------------------
# Offer fields (routes, standalone orders, appointments)
# ---------------------------------------------------------------------------
OFFER_UNOFFERED = 'unoffered'
OFFER_PENDING = 'offer_pending'
OFFER_SENT = 'sent'
OFFER_ACCEPTED = 'accepted'
OFFER_DECLINED = 'declined'
OFFER_EXPIRED = 'expired'
OFFER_ESCALATED = 'escalated'

# States from which a new cascade step may claim the subject
OFFER_CLAIMABLE = (OFFER_UNOFFERED, OFFER_DECLINED, OFFER_EXPIRED)


class OfferMixin:
    """Columns describing the live driver offer for a route, standalone order or appointment"""
    offer_status = Column(String(20), nullable=False, default=OFFER_UNOFFERED, index=True)
    offered_driver_id = Column(String(36), nullable=True)
    offered_driver_ids = Column(JSON, nullable=False, default=list)
    offer_token_id = Column(String(36), nullable=True)
    offer_token = Column(Text, nullable=True)
    # Set when a cascade step claims the subject (offer_pending)
    offer_claimed_at = Column(DateTime(timezone=True), nullable=True)
    offer_sent_at = Column(DateTime(timezone=True), nullable=True)
    offer_expires_at = Column(DateTime(timezone=True), nullable=True)
    escalation_reason = Column(String(40), nullable=True)
    escalated_at = Column(DateTime(timezone=True), nullable=True)

    @property
    def excluded_driver_ids(self):
        return list(self.offered_driver_ids or [])


# ---------------------------------------------------------------------------
# Payout fields (routes, orders, appointments)
# ---------------------------------------------------------------------------
PAYOUT_PENDING = 'pending'
PAYOUT_PROCESSING = 'processing'
PAYOUT_COMPLETED = 'completed'
PAYOUT_FAILED = 'failed'


class PayoutMixin:
    """Settlement bookkeeping"""
    payout_amount = Column(Float, nullable=True)
    payout_status = Column(String(20), nullable=False, default=PAYOUT_PENDING)
    payout_transfer_id = Column(String(255), nullable=True)
    payout_processed_at = Column(DateTime(timezone=True), nullable=True)
    payout_failure_reason = Column(Text, nullable=True)
    # Incremented by every processing claim; part of the transfer idempotency key
    payout_attempts = Column(Integer, nullable=False, default=0)
