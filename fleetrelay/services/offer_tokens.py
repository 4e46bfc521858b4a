"""
Driver offer tokens

A token is a signed HS256 JWT naming one subject (route, standalone order or
appointment), the dispatch task it covers where there is one, one driver and
an absolute expiry. It is the only credential accepted for responding to an
offer, whether it arrives through the offer link or is looked up for an SMS
reply.
"""
import uuid
import logging
from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone
from typing import Optional

import jwt

from fleetrelay.services.exceptions import OfferTokenExpiredError, OfferTokenInvalidError

logger = logging.getLogger(__name__)

OFFER_ACTION = 'driver_offer'
ALGORITHM = 'HS256'


@dataclass(frozen=True)
class OfferClaims:
    jti: str
    subject_type: str
    subject_id: str
    driver_id: str
    expires_at: datetime
    target_date: Optional[date] = None
    task_id: Optional[str] = None


def issue_offer_token(subject, driver_id, secret, timeout_minutes, now=None, task_id=None,
                      target_date=None):
    """
    Sign an offer token for ``driver_id``

    Returns:
        tuple: (token string, OfferClaims)
    """
    now = now or datetime.now(timezone.utc)
    expires_at = now + timedelta(minutes=timeout_minutes)
    target = target_date or subject.target_date

    claims = OfferClaims(
        jti=str(uuid.uuid4()),
        subject_type=subject.subject_type,
        subject_id=subject.id,
        driver_id=driver_id,
        expires_at=expires_at,
        target_date=target,
        task_id=task_id,
    )
    payload = {
        'jti': claims.jti,
        'action': OFFER_ACTION,
        'subject_type': claims.subject_type,
        'subject_id': claims.subject_id,
        'driver_id': claims.driver_id,
        'task_id': task_id,
        'target_date': target.isoformat() if target else None,
        'expires_at': expires_at.isoformat(),
        'iat': int(now.timestamp()),
        'exp': int(expires_at.timestamp()),
    }
    token = jwt.encode(payload, secret, algorithm=ALGORITHM)
    return token, claims


def verify_offer_token(token, secret):
    """
    Validate structure, signature and expiry of an offer token

    Raises:
        OfferTokenInvalidError: malformed, tampered or not an offer token
        OfferTokenExpiredError: well-formed but past its expiry
    """
    if not isinstance(token, str) or token.count('.') != 2 or not all(token.split('.')):
        raise OfferTokenInvalidError('Malformed offer token')

    try:
        payload = jwt.decode(
            token,
            secret,
            algorithms=[ALGORITHM],
            options={'require': ['exp', 'jti']},
        )
    except jwt.ExpiredSignatureError:
        raise OfferTokenExpiredError('Offer token has expired')
    except jwt.InvalidTokenError as e:
        logger.info("Rejected offer token: %s", e)
        raise OfferTokenInvalidError('Invalid offer token')

    if payload.get('action') != OFFER_ACTION:
        raise OfferTokenInvalidError('Invalid offer token')
    if not payload.get('subject_id') or not payload.get('driver_id'):
        raise OfferTokenInvalidError('Invalid offer token')

    target = payload.get('target_date')
    return OfferClaims(
        jti=payload['jti'],
        subject_type=payload.get('subject_type'),
        subject_id=payload['subject_id'],
        driver_id=payload['driver_id'],
        expires_at=datetime.fromtimestamp(payload['exp'], tz=timezone.utc),
        target_date=date.fromisoformat(target) if target else None,
        task_id=payload.get('task_id'),
    )


def offer_url(app_url, token):
    return '{}/driver/offer/{}'.format(app_url.rstrip('/'), token)
