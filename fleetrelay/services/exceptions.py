"""Custom exceptions and result types for dispatch services."""
from dataclasses import dataclass, field
from typing import Any, Dict, Optional


class DispatchError(Exception):
    """Base error; carries the HTTP status the API layer should use."""
    status_code = 400
    code = None

    def __init__(self, message=None, code=None):
        super().__init__(message or self.__class__.__doc__)
        self.message = message or self.__class__.__doc__
        if code is not None:
            self.code = code


class InvalidPayloadError(DispatchError):
    """Raised when a webhook payload is structurally invalid."""
    status_code = 400
    code = 'INVALID_PAYLOAD'


class InvalidSignatureError(DispatchError):
    """Raised when a webhook signature does not match."""
    status_code = 400
    code = 'INVALID_SIGNATURE'


class UnknownTaskError(DispatchError):
    """Raised when a webhook references a task we do not track."""
    status_code = 404
    code = 'UNKNOWN_TASK'


class SubjectNotFoundError(DispatchError):
    """Raised when a route, order or appointment cannot be found."""
    status_code = 404
    code = 'NOT_FOUND'


class OfferTokenInvalidError(DispatchError):
    """Raised when an offer token is malformed or its signature is bad."""
    status_code = 401
    code = 'TOKEN_INVALID'


class OfferTokenExpiredError(DispatchError):
    """Raised when an offer token is past its expiry."""
    status_code = 410
    code = 'TOKEN_EXPIRED'


# Error codes returned by accept_offer
NOT_FOUND = 'NOT_FOUND'
ALREADY_ACCEPTED = 'ALREADY_ACCEPTED'
EXPIRED = 'EXPIRED'
NOT_SENT = 'NOT_SENT'
WRONG_DRIVER = 'WRONG_DRIVER'
ALREADY_IN_PROGRESS = 'ALREADY_IN_PROGRESS'

ERROR_STATUS = {
    NOT_FOUND: 404,
    ALREADY_ACCEPTED: 409,
    EXPIRED: 410,
    NOT_SENT: 400,
    WRONG_DRIVER: 403,
    ALREADY_IN_PROGRESS: 409,
}


@dataclass
class OfferResult:
    """Outcome of a cascade operation."""
    success: bool
    subject: Any = None
    message: str = ''
    error_code: Optional[str] = None
    extra: Dict[str, Any] = field(default_factory=dict)

    @property
    def http_status(self):
        if self.success:
            return 200
        return ERROR_STATUS.get(self.error_code, 400)
