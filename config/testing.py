"""
Testing configuration for the FleetRelay backend
"""
import os
from config.settings import Config


class TestingConfig(Config):
    """Testing configuration with isolated database and safe defaults"""

    TESTING = True
    DEBUG = False

    # Use in-memory SQLite for fast tests
    SQLALCHEMY_DATABASE_URI = os.getenv(
        'TEST_DATABASE_URL',
        'sqlite:///:memory:'
    )
    SQLALCHEMY_ENGINE_OPTIONS = {}

    SECRET_KEY = 'test-secret-key'
    API_KEY = 'test-api-key'
    OFFER_TOKEN_SECRET = 'test-offer-token-secret'

    # Disable rate limiting in tests
    RATELIMIT_ENABLED = False

    APP_URL = 'https://fleetrelay.test'

    # Providers stay in dev mode; tests install recording gateways
    STRIPE_SECRET_KEY = ''
    TWILIO_ACCOUNT_SID = ''
    TWILIO_AUTH_TOKEN = ''
    RESEND_API_KEY = ''
    SENDGRID_API_KEY = ''
    DISPATCH_WEBHOOK_SECRET = ''
    ENABLE_SCHEDULER = False

    ADMIN_EMAILS = ['ops@fleetrelay.test']
    OPERATOR_PHONE = '+15550000000'

    # Logging
    LOG_LEVEL = 'WARNING'

    # CORS - allow all in tests
    CORS_ORIGINS = ['http://localhost:5173', 'http://localhost:3000']
