"""
FleetRelay - delivery webhook orchestration and driver-offer cascade engine
"""
import os
import logging

from flask import Flask, jsonify
from flask_sqlalchemy import SQLAlchemy
from flask_cors import CORS

db = SQLAlchemy()

logger = logging.getLogger(__name__)


def create_app(config_name=None, notifications=None, settlement=None):
    """Flask application factory

    ``notifications`` and ``settlement`` override the provider-backed gateways,
    which is how tests install recording fakes.
    """
    app = Flask(__name__)

    # Load configuration
    if config_name is None:
        config_name = os.getenv('FLASK_ENV', 'development')

    from config import config
    app.config.from_object(config[config_name])

    _init_sentry(app)

    # Initialize extensions
    from fleetrelay.extensions import limiter, init_gateways
    from fleetrelay.middleware import RequestIdMiddleware

    db.init_app(app)
    CORS(app, resources={r'/api/*': {'origins': app.config['CORS_ORIGINS']}})
    limiter.init_app(app)
    app.wsgi_app = RequestIdMiddleware(app.wsgi_app)
    init_gateways(app, notifications=notifications, settlement=settlement)

    # Models must be imported before create_all
    from fleetrelay import models  # noqa: F401

    # Register blueprints
    from fleetrelay.blueprints import webhooks_bp, offers_bp, settlements_bp, drivers_bp

    api_prefix = app.config['API_PREFIX']
    app.register_blueprint(webhooks_bp, url_prefix=f'{api_prefix}/webhooks')
    app.register_blueprint(offers_bp, url_prefix=f'{api_prefix}/driver-offers')
    app.register_blueprint(settlements_bp, url_prefix=f'{api_prefix}/settlements')
    app.register_blueprint(drivers_bp, url_prefix=f'{api_prefix}/drivers')

    _register_error_handlers(app)
    _register_security_headers(app)

    from fleetrelay.cli import register_cli
    register_cli(app)

    # Health check endpoint
    @app.route('/health')
    def health():
        return {'status': 'healthy', 'service': 'fleetrelay'}, 200

    if not app.config.get('TESTING'):
        from fleetrelay.scheduler import init_scheduler
        app.extensions['fleetrelay.scheduler'] = init_scheduler(app)

    return app


# ---------------------------------------------------------------------------
# Sentry error monitoring (optional -- only active when SENTRY_DSN is set)
# ---------------------------------------------------------------------------
def _init_sentry(app):
    dsn = app.config.get('SENTRY_DSN')
    if not dsn:
        return
    import sentry_sdk
    from sentry_sdk.integrations.flask import FlaskIntegration
    sentry_sdk.init(
        dsn=dsn,
        integrations=[FlaskIntegration()],
        traces_sample_rate=0.1,
    )


def _register_error_handlers(app):
    from fleetrelay.services.exceptions import DispatchError

    @app.errorhandler(DispatchError)
    def dispatch_error_handler(e):
        body = {'error': e.message}
        if e.code:
            body['code'] = e.code
        return jsonify(body), e.status_code

    @app.errorhandler(404)
    def not_found_handler(e):
        return jsonify({'error': 'Not found'}), 404

    @app.errorhandler(429)
    def ratelimit_handler(e):
        # Retry-After header is set by Flask-Limiter; read it back.
        retry_after = e.get_headers().get('Retry-After') if hasattr(e, 'get_headers') else None
        retry_after_seconds = int(retry_after) if retry_after else 60
        return jsonify({
            'error': 'Too many requests. Please try again later.',
            'retry_after': retry_after_seconds,
        }), 429


def _register_security_headers(app):
    @app.after_request
    def set_security_headers(response):
        response.headers['X-Content-Type-Options'] = 'nosniff'
        response.headers['X-Frame-Options'] = 'DENY'
        response.headers['Referrer-Policy'] = 'strict-origin-when-cross-origin'
        if not app.debug and not app.testing:
            response.headers['Strict-Transport-Security'] = 'max-age=31536000; includeSubDomains'
        return response
