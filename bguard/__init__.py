"""
BGuard Suite - Threat Modeling and Security Review Platform
Version: 1.0.0

A multi-tenant security platform with:
- STRIDE threat modeling with AI-assisted analysis
- Application asset inventory and endpoint discovery
- Design reviews and third-party security reviews
- Compliance mapping (NIST 800-53, OWASP Top 10, ASVS, CVSS)
- PDF/Excel reporting
- Role-based access control and audit logging
"""

import os
import logging
from flask import Flask
from flask_sqlalchemy import SQLAlchemy
from flask_wtf.csrf import CSRFProtect
from flask_talisman import Talisman
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address
from flask_login import LoginManager

# Initialize extensions
db = SQLAlchemy()
csrf = CSRFProtect()
limiter = Limiter(key_func=get_remote_address, default_limits=["2000 per day", "500 per hour"])
login_manager = LoginManager()

# Configure logging - SECURITY: Don't log sensitive data
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


def create_app(config_name=None):
    """
    Application factory pattern for Flask app.
    This pattern allows for better testing and multiple instances.
    """
    app = Flask(__name__)

    # Load configuration
    if config_name is None:
        config_name = os.environ.get('FLASK_ENV', 'development')

    app.config.from_object(f'bguard.config.{config_name.capitalize()}Config')

    # Security: Ensure secret key is set
    if not app.config.get('SECRET_KEY'):
        if config_name == 'production':
            raise ValueError("SECRET_KEY must be set in production!")
        app.config['SECRET_KEY'] = os.urandom(32).hex()

    # SECURITY: Enforce DEBUG=False in production
    if config_name == 'production':
        app.config['DEBUG'] = False
        app.config['TESTING'] = False

    logging.getLogger().setLevel(app.config.get('LOG_LEVEL', 'INFO'))

    # Initialize extensions with app
    db.init_app(app)
    csrf.init_app(app)
    limiter.init_app(app)
    login_manager.init_app(app)

    # Security headers configuration
    if config_name == 'production':
        Talisman(app,
                 force_https=True,
                 strict_transport_security=True,
                 strict_transport_security_max_age=31536000,
                 session_cookie_secure=True,
                 session_cookie_http_only=True,
                 content_security_policy={
                     'default-src': "'self'",
                     'frame-ancestors': "'none'",
                     'form-action': "'self'",
                 },
                 x_content_type_options=True,
                 x_xss_protection=True,
                 referrer_policy='strict-origin-when-cross-origin'
                 )
    else:
        Talisman(app,
                 force_https=False,
                 strict_transport_security=False,
                 session_cookie_secure=False,
                 content_security_policy=None,
                 x_content_type_options=True,
                 x_xss_protection=True
                 )

    # Register blueprints
    from bguard.api import api_bp

    app.register_blueprint(api_bp, url_prefix='/api/v1')

    # SECURITY: Exempt API blueprint from CSRF (JSON clients, session cookie is SameSite)
    csrf.exempt(api_bp)

    # Create database tables
    with app.app_context():
        from bguard import models  # noqa: F401
        db.create_all()

    # Register error handlers
    register_error_handlers(app)

    return app


def register_error_handlers(app):
    """Register custom error handlers for better security."""

    @app.errorhandler(400)
    def bad_request(error):
        return {'error': 'Bad Request', 'message': 'Invalid request parameters'}, 400

    @app.errorhandler(401)
    def unauthorized(error):
        return {'error': 'Unauthorized', 'message': 'Authentication required'}, 401

    @app.errorhandler(403)
    def forbidden(error):
        return {'error': 'Forbidden', 'message': 'Access denied'}, 403

    @app.errorhandler(404)
    def not_found(error):
        return {'error': 'Not Found', 'message': 'Resource not found'}, 404

    @app.errorhandler(405)
    def method_not_allowed(error):
        return {'error': 'Method Not Allowed', 'message': 'Method not supported for this resource'}, 405

    @app.errorhandler(409)
    def conflict(error):
        return {'error': 'Conflict', 'message': 'Resource already exists'}, 409

    @app.errorhandler(429)
    def rate_limit_exceeded(error):
        return {'error': 'Rate Limit Exceeded', 'message': 'Too many requests'}, 429

    @app.errorhandler(500)
    def internal_error(error):
        db.session.rollback()
        return {'error': 'Internal Server Error', 'message': 'An unexpected error occurred'}, 500
