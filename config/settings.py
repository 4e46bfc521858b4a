"""
Configuration settings for different environments
"""
import os
import secrets
import logging

from dotenv import load_dotenv

load_dotenv()


def _require_in_production(var_name, default):
    """Return env var value. In production, warn loudly if still using default."""
    value = os.environ.get(var_name, "")
    if value:
        return value
    env = os.environ.get("FLASK_ENV", "development")
    if env != "development" and default:
        logging.getLogger(__name__).warning(
            "%s is using an insecure default. Set it via environment variable!", var_name
        )
    return default


def _database_url():
    url = os.environ.get('DATABASE_URL', '')
    if not url:
        return 'sqlite:///fleetrelay.db'
    # Fix postgres:// to postgresql:// for SQLAlchemy 2.x
    if url.startswith('postgres://'):
        url = url.replace('postgres://', 'postgresql://', 1)
    return url


class Config:
    """Base configuration"""
    SECRET_KEY = _require_in_production('SECRET_KEY', 'dev-only-' + secrets.token_hex(16))

    # Operator endpoints (X-API-Key header)
    API_KEY = _require_in_production('API_KEY', 'dev-only-' + secrets.token_hex(16))

    # HS256 key for driver offer tokens
    OFFER_TOKEN_SECRET = _require_in_production(
        'OFFER_TOKEN_SECRET', 'dev-only-' + secrets.token_hex(32)
    )

    # Database
    SQLALCHEMY_DATABASE_URI = _database_url()
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    SQLALCHEMY_ENGINE_OPTIONS = {
        'pool_pre_ping': True,
    }

    MAX_CONTENT_LENGTH = 16 * 1024 * 1024  # 16MB

    # CORS
    CORS_ORIGINS = os.environ.get('CORS_ORIGINS', '*').split(',')
    API_PREFIX = '/api'

    # Rate limiting
    RATELIMIT_STORAGE_URI = os.environ.get('REDIS_URL') or 'memory://'
    RATELIMIT_ENABLED = True

    # Public links (offer pages, customer feedback)
    APP_URL = os.environ.get('APP_URL', 'http://localhost:5000').rstrip('/')

    # Driver offers
    OFFER_TIMEOUT_MINUTES = int(os.environ.get('OFFER_TIMEOUT_MINUTES', 20))
    ROUTE_WINDOW_START = os.environ.get('ROUTE_WINDOW_START', '12:00')
    ROUTE_WINDOW_END = os.environ.get('ROUTE_WINDOW_END', '15:00')
    ESTIMATED_MINUTES_PER_STOP = int(os.environ.get('ESTIMATED_MINUTES_PER_STOP', 15))
    OFFER_ESTIMATE_PER_STOP_RATE = float(os.environ.get('OFFER_ESTIMATE_PER_STOP_RATE', '10.00'))
    # A cascade step stuck in offer_pending longer than this is re-opened by the sweep
    OFFER_CLAIM_TIMEOUT_MINUTES = int(os.environ.get('OFFER_CLAIM_TIMEOUT_MINUTES', 5))
    # IANA zone of driver availability times and job windows
    DISPATCH_TIMEZONE = os.environ.get('DISPATCH_TIMEZONE', 'UTC')

    # Settlement formula
    PAYOUT_BASE_RATE = float(os.environ.get('PAYOUT_BASE_RATE', '20.00'))
    PAYOUT_PER_STOP_RATE = float(os.environ.get('PAYOUT_PER_STOP_RATE', '2.00'))
    PAYOUT_PER_MILE_RATE = float(os.environ.get('PAYOUT_PER_MILE_RATE', '0.67'))
    PAYOUT_HOURLY_RATE = float(os.environ.get('PAYOUT_HOURLY_RATE', '14.00'))

    # Operator alert channel
    ADMIN_EMAILS = [e.strip() for e in os.environ.get('ADMIN_EMAILS', '').split(',') if e.strip()]
    OPERATOR_PHONE = os.environ.get('OPERATOR_PHONE', '')

    # Stripe Connect
    STRIPE_SECRET_KEY = os.environ.get('STRIPE_SECRET_KEY', '')

    # SMS
    TWILIO_ACCOUNT_SID = os.environ.get('TWILIO_ACCOUNT_SID', '')
    TWILIO_AUTH_TOKEN = os.environ.get('TWILIO_AUTH_TOKEN', '')
    TWILIO_PHONE_NUMBER = os.environ.get('TWILIO_PHONE_NUMBER',
                                         os.environ.get('TWILIO_FROM_NUMBER', ''))

    # Email: Resend (preferred) or SendGrid (legacy fallback)
    RESEND_API_KEY = os.environ.get('RESEND_API_KEY', '')
    SENDGRID_API_KEY = os.environ.get('SENDGRID_API_KEY', '')
    EMAIL_FROM = os.environ.get('EMAIL_FROM', 'dispatch@fleetrelay.app')
    EMAIL_FROM_NAME = os.environ.get('EMAIL_FROM_NAME', 'FleetRelay Dispatch')

    # Outbound provider calls
    EXTERNAL_TIMEOUT_SECONDS = int(os.environ.get('EXTERNAL_TIMEOUT_SECONDS', 10))

    # Dispatch platform webhooks
    DISPATCH_WEBHOOK_SECRET = os.environ.get('DISPATCH_WEBHOOK_SECRET', '')
    PHOTO_URL_TEMPLATE = os.environ.get(
        'PHOTO_URL_TEMPLATE', 'https://d15p8tr8p0vffz.cloudfront.net/{id}/800x.png'
    )

    # Error monitoring
    SENTRY_DSN = os.environ.get('SENTRY_DSN', '')

    LOG_LEVEL = os.environ.get('LOG_LEVEL', 'INFO')

    # In-process sweeps; leave off when cron runs the CLI commands
    ENABLE_SCHEDULER = os.environ.get('ENABLE_SCHEDULER', '').lower() == 'true'
    OFFER_SWEEP_INTERVAL_MINUTES = int(os.environ.get('OFFER_SWEEP_INTERVAL_MINUTES', 1))
    PAYOUT_RETRY_INTERVAL_MINUTES = int(os.environ.get('PAYOUT_RETRY_INTERVAL_MINUTES', 60))
    DISPATCH_PENDING_INTERVAL_MINUTES = int(os.environ.get('DISPATCH_PENDING_INTERVAL_MINUTES', 15))


class DevelopmentConfig(Config):
    """Development configuration"""
    DEBUG = True
    TESTING = False


class ProductionConfig(Config):
    """Production configuration"""
    DEBUG = False
    TESTING = False

    SQLALCHEMY_ENGINE_OPTIONS = {
        'pool_size': 20,
        'max_overflow': 40,
        'pool_recycle': 3600,
        'pool_pre_ping': True,
    }


# Configuration dictionary
config = {
    'development': DevelopmentConfig,
    'production': ProductionConfig,
    'default': DevelopmentConfig
}
