"""
Settlements blueprint
Operator retry of failed driver payouts
"""
from flask import Blueprint, jsonify

from fleetrelay import db
from fleetrelay.blueprints.common import require_api_key
from fleetrelay.services.completion import settle
from fleetrelay.services.exceptions import SubjectNotFoundError
from fleetrelay.services.settlement import PAYABLE_MODELS

settlements_bp = Blueprint('settlements', __name__)


@settlements_bp.route('/<subject_type>/<subject_id>/retry', methods=['POST'])
@require_api_key
def retry_payout(subject_type, subject_id):
    """
    Re-attempt settlement for a completed route, standalone order or appointment

    POST /api/settlements/route/<id>/retry
    """
    if subject_type not in PAYABLE_MODELS:
        raise SubjectNotFoundError('Unknown subject type: {}'.format(subject_type))

    if db.session.get(PAYABLE_MODELS[subject_type], subject_id) is None:
        raise SubjectNotFoundError('{} {} not found'.format(subject_type.capitalize(), subject_id))

    result = settle(subject_type, subject_id)
    body = {
        'success': result.success,
        'amount': result.amount,
        'transfer_id': result.transfer_id,
    }
    if not result.success:
        body['error'] = result.error
        return jsonify(body), 409 if result.already_settled else 400
    return jsonify(body), 200
