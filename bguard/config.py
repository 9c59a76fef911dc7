"""
BGuard Suite Configuration Module

Secure configuration management following Flask best practices.
All sensitive values are loaded from environment variables.
"""

import os
from datetime import timedelta
from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()


class BaseConfig:
    """Base configuration with secure defaults."""

    # Application
    APP_NAME = 'BGuard Suite'
    APP_VERSION = '1.0.0'

    # Security - NEVER hardcode in production
    SECRET_KEY = os.environ.get('SECRET_KEY')
    WTF_CSRF_SECRET_KEY = os.environ.get('WTF_CSRF_SECRET_KEY', os.urandom(32).hex())

    # Database
    SQLALCHEMY_DATABASE_URI = os.environ.get('DATABASE_URL', 'sqlite:///bguard.db')
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    SQLALCHEMY_ENGINE_OPTIONS = {
        'pool_recycle': 300,
        'pool_pre_ping': True,
    }

    # Session Security
    SESSION_COOKIE_SECURE = True
    SESSION_COOKIE_HTTPONLY = True
    SESSION_COOKIE_SAMESITE = 'Lax'
    PERMANENT_SESSION_LIFETIME = timedelta(hours=8)

    # CSRF Protection
    WTF_CSRF_ENABLED = True
    WTF_CSRF_TIME_LIMIT = 3600  # 1 hour

    # Rate Limiting
    RATELIMIT_ENABLED = True
    RATELIMIT_STORAGE_URI = os.environ.get('REDIS_URL', 'memory://')
    RATELIMIT_STRATEGY = 'fixed-window'
    RATELIMIT_DEFAULT = "500 per hour"

    # Account lockout defaults (overridden per organization)
    DEFAULT_MAX_FAILED_LOGINS = 5
    DEFAULT_LOCKOUT_MINUTES = 10
    FAILED_LOGIN_ALERT_THRESHOLD = 3
    FAILED_LOGIN_ALERT_WINDOW_MINUTES = 5
    PASSWORD_RESET_TOKEN_HOURS = 1
    EXPOSE_RESET_TOKENS = False

    # LLM analysis
    LLM_PROVIDER = os.environ.get('LLM_PROVIDER', 'auto')  # auto, anthropic, openai, fallback
    LLM_MODEL = os.environ.get('LLM_MODEL')
    ANTHROPIC_API_KEY = os.environ.get('ANTHROPIC_API_KEY')
    OPENAI_API_KEY = os.environ.get('OPENAI_API_KEY')
    LLM_MAX_TOKENS = 4000
    LLM_CACHE_SIZE = int(os.environ.get('LLM_CACHE_SIZE', 128))

    # Endpoint discovery
    DISCOVERY_MAX_DEPTH = 3
    DISCOVERY_MAX_PAGES = 50
    DISCOVERY_TIMEOUT = 15
    DISCOVERY_CONCURRENT_REQUESTS = 5
    DISCOVERY_DELAY_BETWEEN_REQUESTS = 0.2  # seconds
    DISCOVERY_ALLOW_PRIVATE_HOSTS = False
    DISCOVERY_USER_AGENT = 'BGuard Endpoint Discovery/1.0'

    # Reports
    REPORT_COMPANY_NAME = os.environ.get('REPORT_COMPANY_NAME', 'BGuard Suite')

    # Request size
    MAX_CONTENT_LENGTH = 16 * 1024 * 1024  # 16MB max


class DevelopmentConfig(BaseConfig):
    """Development configuration with relaxed security for testing."""

    DEBUG = True
    TESTING = False

    # Relaxed security for development
    SESSION_COOKIE_SECURE = False
    WTF_CSRF_ENABLED = True  # Keep CSRF even in dev

    # SQLite for development
    SQLALCHEMY_DATABASE_URI = os.environ.get('DATABASE_URL', 'sqlite:///bguard_dev.db')

    # Local targets are fine while developing
    DISCOVERY_ALLOW_PRIVATE_HOSTS = True

    # More verbose logging
    LOG_LEVEL = 'DEBUG'


class TestingConfig(BaseConfig):
    """Testing configuration."""

    DEBUG = True
    TESTING = True
    SECRET_KEY = 'testing-secret-key'

    # Use in-memory SQLite for tests
    SQLALCHEMY_DATABASE_URI = 'sqlite:///:memory:'
    SQLALCHEMY_ENGINE_OPTIONS = {}

    SESSION_COOKIE_SECURE = False

    # Disable CSRF and rate limits for easier testing
    WTF_CSRF_ENABLED = False
    RATELIMIT_ENABLED = False

    # Never call out to a real model from tests
    LLM_PROVIDER = 'fallback'

    DISCOVERY_ALLOW_PRIVATE_HOSTS = True
    DISCOVERY_MAX_DEPTH = 1
    DISCOVERY_MAX_PAGES = 5
    DISCOVERY_TIMEOUT = 2

    EXPOSE_RESET_TOKENS = True


class ProductionConfig(BaseConfig):
    """Production configuration with maximum security."""

    DEBUG = False
    TESTING = False

    # Production database
    SQLALCHEMY_DATABASE_URI = os.environ.get('DATABASE_URL', 'sqlite:///bguard_prod.db')

    # Strict security
    SESSION_COOKIE_SECURE = True
    SESSION_COOKIE_HTTPONLY = True
    SESSION_COOKIE_SAMESITE = 'Strict'

    # Production logging
    LOG_LEVEL = 'WARNING'

    # Stricter rate limiting
    RATELIMIT_DEFAULT = "200 per hour"


# Configuration dictionary for easy access
config = {
    'development': DevelopmentConfig,
    'testing': TestingConfig,
    'production': ProductionConfig,
    'default': DevelopmentConfig
}
