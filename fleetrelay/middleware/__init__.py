"""Middleware package"""
from .request_id import RequestIdMiddleware, RequestIdFilter, get_request_id

__all__ = [
    'RequestIdMiddleware',
    'RequestIdFilter',
    'get_request_id',
]
