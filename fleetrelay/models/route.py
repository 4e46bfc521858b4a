"""Route model"""
from sqlalchemy import Column, String, Integer, Float, Date, DateTime, ForeignKey, Index
from sqlalchemy.orm import relationship

from .base import BaseModel, OfferMixin, PayoutMixin

ROUTE_OPTIMIZED = 'optimized'
ROUTE_ASSIGNED = 'assigned'
ROUTE_IN_PROGRESS = 'in_progress'
ROUTE_COMPLETED = 'completed'
ROUTE_FAILED = 'failed'

# Route states that commit a driver for the calendar day
ROUTE_ACTIVE_STATES = (ROUTE_OPTIMIZED, ROUTE_ASSIGNED, ROUTE_IN_PROGRESS)


class Route(BaseModel, OfferMixin, PayoutMixin):
    """
    Route model - a batch of delivery stops worked by one driver on one day
    """
    __tablename__ = 'routes'

    route_date = Column(Date, nullable=False)
    route_name = Column(String(255))

    driver_id = Column(String(36), ForeignKey('drivers.id'), nullable=True)

    total_stops = Column(Integer, nullable=False, default=0)
    completed_stops = Column(Integer, nullable=False, default=0)

    route_status = Column(String(20), nullable=False, default=ROUTE_OPTIMIZED)

    # Aggregate metrics, filled from task completions
    total_distance_miles = Column(Float, nullable=True)
    total_time_minutes = Column(Float, nullable=True)

    started_at = Column(DateTime(timezone=True))
    completed_at = Column(DateTime(timezone=True))

    driver = relationship('Driver', lazy='joined')
    orders = relationship('DeliveryOrder', back_populates='route', lazy='selectin',
                          order_by='DeliveryOrder.stop_number')

    __table_args__ = (
        Index('idx_routes_date_status', 'route_date', 'route_status'),
        Index('idx_routes_offer', 'offer_status', 'offer_expires_at'),
    )

    subject_type = 'route'
    driver_column = 'driver_id'

    def __repr__(self):
        return f'<Route {self.id} - {self.route_date}>'

    @property
    def target_date(self):
        return self.route_date

    @property
    def stop_count(self):
        return self.total_stops or len(self.orders)
