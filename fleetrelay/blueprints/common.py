"""Helpers shared by the blueprints"""
from functools import wraps

from flask import current_app, jsonify, request


def require_api_key(f):
    """Operator endpoints authenticate with the X-API-Key header."""
    @wraps(f)
    def decorated_function(*args, **kwargs):
        api_key = request.headers.get('X-API-Key')
        if not api_key or api_key != current_app.config['API_KEY']:
            return jsonify({'error': 'Invalid or missing API key'}), 401
        return f(*args, **kwargs)
    return decorated_function


def offer_result_response(result):
    """Serialize an ``OfferResult`` with its HTTP status."""
    body = {
        'success': result.success,
        'message': result.message,
    }
    if result.error_code:
        body['code'] = result.error_code
    if not result.success:
        body['error'] = result.message
    if result.subject is not None:
        body['subject'] = subject_summary(result.subject)
    for key, value in result.extra.items():
        if key == 'token':
            continue
        if key == 'next_offer':
            body[key] = {'success': value.success, 'code': value.error_code,
                         'driver_id': value.extra.get('driver_id')}
        else:
            body[key] = value
    return jsonify(body), result.http_status


def subject_summary(subject):
    target = subject.target_date
    return {
        'type': subject.subject_type,
        'id': subject.id,
        'date': target.isoformat() if target else None,
        'total_stops': subject.stop_count,
        'offer_status': subject.offer_status,
        'driver_id': subject.driver_id,
        'escalation_reason': subject.escalation_reason,
    }
