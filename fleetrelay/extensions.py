"""
Shared Flask extension instances and the gateway registry.

The limiter lives here to avoid circular imports between the factory and the
blueprints. Provider gateways are constructed once per app and kept in
``app.extensions`` so request handlers, CLI commands and scheduler jobs all
reach the same instances.
"""
import os
from dataclasses import dataclass

from flask import current_app
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address

# Use Redis for rate-limit storage when available (production), otherwise
# fall back to in-memory storage (single-process / development).
_storage_uri = os.environ.get('REDIS_URL') or 'memory://'

limiter = Limiter(
    key_func=get_remote_address,
    storage_uri=_storage_uri,
    default_limits=['100 per minute'],
)

_GATEWAYS_KEY = 'fleetrelay.gateways'


@dataclass
class Gateways:
    notifications: object
    settlement: object


def init_gateways(app, notifications=None, settlement=None):
    """Build provider-backed gateways from config unless overrides are given."""
    from fleetrelay.services.notifications import NotificationGateway
    from fleetrelay.services.settlement import SettlementService

    if notifications is None:
        notifications = NotificationGateway.from_config(app.config)
    if settlement is None:
        settlement = SettlementService.from_config(app.config)

    gateways = Gateways(notifications=notifications, settlement=settlement)
    app.extensions[_GATEWAYS_KEY] = gateways
    return gateways


def get_gateways(app=None):
    app = app or current_app
    return app.extensions[_GATEWAYS_KEY]
