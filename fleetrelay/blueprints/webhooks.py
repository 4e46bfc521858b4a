"""
Dispatch webhooks blueprint
Receives task lifecycle events from the dispatch platform
"""
import hmac
import hashlib
import logging

from flask import Blueprint, current_app, jsonify, request

from fleetrelay import db
from fleetrelay.extensions import limiter
from fleetrelay.services.completion import handle_task_update
from fleetrelay.services.event_normalizer import normalize_webhook
from fleetrelay.services.exceptions import InvalidPayloadError, InvalidSignatureError
from fleetrelay.services.task_updater import apply_event

logger = logging.getLogger(__name__)

webhooks_bp = Blueprint('webhooks', __name__)

SIGNATURE_HEADER = 'X-Onfleet-Signature'


def verify_signature(raw_body, signature, secret):
    """Check the hex HMAC-SHA512 of the raw body against the provider header."""
    expected = hmac.new(secret.encode('utf-8'), raw_body, hashlib.sha512).hexdigest()
    if not signature or not hmac.compare_digest(expected, signature.strip().lower()):
        raise InvalidSignatureError('Invalid webhook signature')


@webhooks_bp.route('/dispatch', methods=['GET'])
@limiter.exempt
def validate_webhook():
    """
    Provider URL validation

    GET /api/webhooks/dispatch?check=abc123 -> abc123
    """
    return request.args.get('check', ''), 200, {'Content-Type': 'text/plain'}


@webhooks_bp.route('/dispatch', methods=['POST'])
@limiter.exempt
def dispatch_webhook():
    """
    Handle a task lifecycle event

    POST /api/webhooks/dispatch
    Body: {
        "taskId": "...",
        "time": 1718035200,
        "triggerName": "taskCompleted",
        "data": {"task": {"shortId": "...", "completionDetails": {...}, "metadata": [...]}}
    }

    Downstream notification and settlement failures never change the
    response: once the event is applied it has been received.
    """
    raw_body = request.get_data()
    secret = current_app.config.get('DISPATCH_WEBHOOK_SECRET')
    if secret:
        verify_signature(raw_body, request.headers.get(SIGNATURE_HEADER, ''), secret)

    payload = request.get_json(silent=True)
    if payload is None:
        raise InvalidPayloadError('Invalid JSON')

    event = normalize_webhook(payload, current_app.config['PHOTO_URL_TEMPLATE'])
    update = apply_event(event, raw_payload=payload)

    body = {'received': True}
    body.update(update.to_dict())
    if update.replay:
        return jsonify(body), 200

    try:
        outcome = handle_task_update(update)
        body['side_effects'] = outcome.to_dict()
    except Exception:
        db.session.rollback()
        logger.exception("Side effects failed for %s on task %s", event.trigger, update.task_short_id)
        body['side_effects'] = None

    return jsonify(body), 200
