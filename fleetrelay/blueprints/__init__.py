"""HTTP blueprints"""
from .webhooks import webhooks_bp
from .offers import offers_bp
from .settlements import settlements_bp
from .drivers import drivers_bp

__all__ = ['webhooks_bp', 'offers_bp', 'settlements_bp', 'drivers_bp']
