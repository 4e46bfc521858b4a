"""
Driver offers blueprint
Offer links, SMS replies, and operator controls for the offer cascade
"""
import logging

from flask import Blueprint, current_app, jsonify, request

from fleetrelay import db
from fleetrelay.blueprints.common import offer_result_response, require_api_key, subject_summary
from fleetrelay.extensions import limiter
from fleetrelay.models.base import OFFER_SENT, as_utc
from fleetrelay.services import templates
from fleetrelay.services.exceptions import InvalidPayloadError, SubjectNotFoundError
from fleetrelay.services.offer_tokens import verify_offer_token
from fleetrelay.services.offers import (
    REASON_INITIAL, SUBJECT_MODELS, dispatch_next_offer, get_subject, handle_sms_reply, offer_estimates,
    offer_stops, release_assignment, reset_escalation, respond_to_offer,
)
from fleetrelay.utils.validators import validate_uuid

logger = logging.getLogger(__name__)

offers_bp = Blueprint('driver_offers', __name__)

OFFER_ACTIONS = ('accept', 'decline')


# ---------------------------------------------------------------------------
# Driver-facing
# ---------------------------------------------------------------------------
@offers_bp.route('/sms-reply', methods=['POST'])
def sms_reply():
    """
    Twilio inbound SMS webhook

    POST /api/driver-offers/sms-reply
    Form: From, Body
    Returns TwiML with the reply text.
    """
    from twilio.twiml.messaging_response import MessagingResponse

    auth_token = current_app.config.get('TWILIO_AUTH_TOKEN')
    if auth_token:
        from twilio.request_validator import RequestValidator
        validator = RequestValidator(auth_token)
        signature = request.headers.get('X-Twilio-Signature', '')
        if not validator.validate(request.url, request.form, signature):
            return jsonify({'error': 'Invalid signature'}), 403

    from_phone = request.form.get('From', '')
    body = request.form.get('Body', '')

    outcome = handle_sms_reply(from_phone, body)
    logger.info("SMS reply from %s classified as %s", from_phone, outcome.intent.value)

    response = MessagingResponse()
    if outcome.reply_template is not None:
        _, text = templates.render(outcome.reply_template, outcome.reply_variables)
        response.message(text)
    return str(response), 200, {'Content-Type': 'application/xml'}


@offers_bp.route('/<token>', methods=['GET'])
def get_offer(token):
    """
    Offer details for the link in the offer SMS

    GET /api/driver-offers/<token>
    """
    claims = verify_offer_token(token, current_app.config['OFFER_TOKEN_SECRET'])
    model = SUBJECT_MODELS.get(claims.subject_type)
    subject = db.session.get(model, claims.subject_id) if model else None
    if subject is None:
        raise SubjectNotFoundError('Offer not found')

    is_live = (
        subject.offer_status == OFFER_SENT
        and subject.offer_token_id == claims.jti
        and subject.offered_driver_id == claims.driver_id
    )
    expires_at = as_utc(subject.offer_expires_at) if is_live else claims.expires_at

    return jsonify({
        'offer': {
            'subject': subject_summary(subject),
            'driver_id': claims.driver_id,
            'expires_at': expires_at.isoformat() if expires_at else None,
            'is_live': is_live,
            'estimates': offer_estimates(subject, current_app.config),
            'task_id': claims.task_id,
            'stops': offer_stops(subject),
        }
    }), 200


@offers_bp.route('/<token>/respond', methods=['POST'])
@limiter.limit('20 per minute')
def respond(token):
    """
    Accept or decline an offer

    POST /api/driver-offers/<token>/respond
    Body: {"action": "accept" | "decline"}
    """
    data = request.get_json(silent=True) or {}
    action = (data.get('action') or '').strip().lower()
    if action not in OFFER_ACTIONS:
        raise InvalidPayloadError('action must be one of: {}'.format(', '.join(OFFER_ACTIONS)))

    result = respond_to_offer(token, action)
    return offer_result_response(result)


# ---------------------------------------------------------------------------
# Operator controls
# ---------------------------------------------------------------------------
def _check_subject_type(subject_type):
    if subject_type not in SUBJECT_MODELS:
        raise SubjectNotFoundError('Unknown subject type: {}'.format(subject_type))


@offers_bp.route('/<subject_type>/<subject_id>/dispatch', methods=['POST'])
@require_api_key
def dispatch(subject_type, subject_id):
    """
    Start (or continue) the offer cascade for a route, standalone order or appointment

    POST /api/driver-offers/route/<id>/dispatch
    """
    _check_subject_type(subject_type)
    get_subject(subject_type, subject_id)
    result = dispatch_next_offer(subject_type, subject_id, REASON_INITIAL)
    if result.extra.get('escalated'):
        # Escalation is a valid outcome, not a client error
        body, _ = offer_result_response(result)
        return body, 200
    return offer_result_response(result)


@offers_bp.route('/<subject_type>/<subject_id>/release', methods=['POST'])
@require_api_key
def release(subject_type, subject_id):
    """
    Release a driver from an accepted job and re-offer it

    POST /api/driver-offers/route/<id>/release
    Body: {"driver_id": "uuid"}
    """
    _check_subject_type(subject_type)
    data = request.get_json(silent=True) or {}
    driver_id = data.get('driver_id')
    if not driver_id:
        return jsonify({'error': 'driver_id is required'}), 400
    if not validate_uuid(driver_id):
        return jsonify({'error': 'driver_id must be a valid id'}), 400

    result = release_assignment(subject_type, subject_id, driver_id)
    return offer_result_response(result)


@offers_bp.route('/<subject_type>/<subject_id>/reset', methods=['POST'])
@require_api_key
def reset(subject_type, subject_id):
    """
    Re-open an escalated route, order or appointment for automated offers

    POST /api/driver-offers/route/<id>/reset
    Body: {"clear_exclusions": false}
    """
    _check_subject_type(subject_type)
    data = request.get_json(silent=True) or {}
    result = reset_escalation(subject_type, subject_id,
                              clear_exclusions=bool(data.get('clear_exclusions')))
    return offer_result_response(result)
