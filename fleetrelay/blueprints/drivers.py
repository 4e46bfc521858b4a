"""
Drivers blueprint
Open job offers for a driver's dashboard
"""
from flask import Blueprint, current_app, jsonify

from fleetrelay import db
from fleetrelay.blueprints.common import require_api_key, subject_summary
from fleetrelay.models import Driver
from fleetrelay.models.base import as_utc
from fleetrelay.services.exceptions import SubjectNotFoundError
from fleetrelay.services.offer_tokens import offer_url
from fleetrelay.services.offers import offer_estimates, offer_stops, pending_offers_for_driver
from fleetrelay.utils.validators import validate_uuid

drivers_bp = Blueprint('drivers', __name__)


def _offer_payload(subject, config):
    sent_at = as_utc(subject.offer_sent_at)
    expires_at = as_utc(subject.offer_expires_at)
    stops = offer_stops(subject)
    return {
        'subject': subject_summary(subject),
        'first_stop_address': stops[0]['address'] if stops else None,
        'estimates': offer_estimates(subject, config),
        'notified_at': sent_at.isoformat() if sent_at else None,
        'expires_at': expires_at.isoformat() if expires_at else None,
        'token': subject.offer_token,
        'offer_url': offer_url(config['APP_URL'], subject.offer_token),
    }


@drivers_bp.route('/<driver_id>/pending-offers', methods=['GET'])
@require_api_key
def pending_offers(driver_id):
    """
    Offers waiting on a driver's answer, oldest (most urgent) first

    GET /api/drivers/<id>/pending-offers
    """
    if not validate_uuid(driver_id):
        return jsonify({'error': 'Invalid driver ID'}), 400
    if db.session.get(Driver, driver_id) is None:
        raise SubjectNotFoundError('Driver {} not found'.format(driver_id))

    offers = [_offer_payload(s, current_app.config) for s in pending_offers_for_driver(driver_id)]
    return jsonify({'success': True, 'offers': offers, 'count': len(offers)}), 200
