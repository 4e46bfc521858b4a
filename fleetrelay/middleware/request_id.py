"""
Request ID middleware for webhook tracing

Dispatch platforms retry deliveries, so every inbound call is tagged with an
id that shows up in the response headers and in log records.
"""
import uuid
import logging

from flask import has_request_context, request


class RequestIdMiddleware:
    """
    WSGI middleware to add unique request ID to each request
    """

    def __init__(self, app):
        self.app = app

    def __call__(self, environ, start_response):
        # Generate or extract request ID
        request_id = environ.get('HTTP_X_REQUEST_ID') or str(uuid.uuid4())
        environ['request_id'] = request_id

        def custom_start_response(status, headers, exc_info=None):
            headers.append(('X-Request-ID', request_id))
            return start_response(status, headers, exc_info)

        return self.app(environ, custom_start_response)


def get_request_id():
    """Return the current request id, or None outside a request."""
    if not has_request_context():
        return None
    return request.environ.get('request_id')


class RequestIdFilter(logging.Filter):
    """Attach ``request_id`` to log records so formatters can print it."""

    def filter(self, record):
        record.request_id = get_request_id() or '-'
        return True
