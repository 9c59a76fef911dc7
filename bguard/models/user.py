"""
User Model for BGuard Suite

Secure user authentication with PBKDF2 password hashing, roles and
per-organization account lockout.
"""

from datetime import datetime, timedelta
from enum import Enum
from flask_login import UserMixin
from werkzeug.security import generate_password_hash, check_password_hash
from bguard import db, login_manager
from bguard.models.base import isoformat
import re
import logging
import hashlib
import secrets

security_logger = logging.getLogger('security')


class UserRole(Enum):
    """Platform roles, highest privilege first."""
    ADMIN = 'ADMIN'
    BUSINESS_ADMIN = 'BUSINESS_ADMIN'
    BUSINESS_USER = 'BUSINESS_USER'
    USER = 'USER'


class User(UserMixin, db.Model):
    """
    User model with secure password handling.

    Security features:
    - Passwords are hashed with PBKDF2-SHA256 (via werkzeug)
    - Email validation
    - Account lockout tracking driven by organization settings
    - Security logging
    """

    __tablename__ = 'users'

    id = db.Column(db.Integer, primary_key=True)
    email = db.Column(db.String(120), unique=True, nullable=False, index=True)
    first_name = db.Column(db.String(80), nullable=True)
    last_name = db.Column(db.String(80), nullable=True)
    password_hash = db.Column(db.String(256), nullable=False)

    role = db.Column(db.Enum(UserRole), default=UserRole.BUSINESS_USER, nullable=False, index=True)
    organization_id = db.Column(db.Integer, db.ForeignKey('organizations.id'), nullable=True, index=True)

    # Security tracking
    is_active = db.Column(db.Boolean, default=True)
    email_verified = db.Column(db.Boolean, default=False)
    failed_login_attempts = db.Column(db.Integer, default=0)
    locked_until = db.Column(db.DateTime, nullable=True)
    last_failed_login = db.Column(db.DateTime, nullable=True)

    # Timestamps
    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)
    last_login = db.Column(db.DateTime, nullable=True)

    PASSWORD_REGEX = re.compile(
        r'^(?=.*[a-z])(?=.*[A-Z])(?=.*\d)(?=.*[!@#$%^&*()_+\-=\[\]{};:\'"\\|,.<>\/?`~])'
        r'.{8,128}$'
    )
    EMAIL_REGEX = re.compile(r'^[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}$')

    def __init__(self, email, password, first_name=None, last_name=None,
                 role=UserRole.BUSINESS_USER, organization_id=None):
        """Initialize user with validated inputs."""
        self.email = self._validate_email(email)
        self.first_name = self._validate_name(first_name, 'First name')
        self.last_name = self._validate_name(last_name, 'Last name')
        self.set_password(password)
        self.role = role
        self.organization_id = organization_id
        self.is_active = True
        self.failed_login_attempts = 0

    @staticmethod
    def _validate_email(email):
        """Validate email format."""
        email = (email or '').strip()
        if not email or not User.EMAIL_REGEX.match(email):
            raise ValueError("Invalid email format")
        return email.lower()

    @staticmethod
    def _validate_name(value, label):
        if value is None:
            return None
        value = value.strip()
        if len(value) > 80:
            raise ValueError(f"{label} must be at most 80 characters")
        return value or None

    def set_password(self, password):
        """
        Hash and set password with validation.

        Password requirements:
        - Minimum 8 characters
        - At least one uppercase letter
        - At least one lowercase letter
        - At least one number
        - At least one special character
        """
        if not password or not self.PASSWORD_REGEX.match(password):
            raise ValueError(
                "Password must be at least 8 characters with uppercase, "
                "lowercase, number, and special character"
            )
        self.password_hash = generate_password_hash(password, method='pbkdf2:sha256:260000')

    def check_password(self, password):
        """Verify password against hash."""
        if not password:
            return False
        return check_password_hash(self.password_hash, password)

    @property
    def name(self):
        full = ' '.join(part for part in (self.first_name, self.last_name) if part)
        return full or self.email

    @property
    def is_admin(self):
        return self.role == UserRole.ADMIN

    def is_locked(self):
        """Check if account is locked due to failed attempts."""
        if self.locked_until and self.locked_until > datetime.utcnow():
            return True
        return False

    def lockout_policy(self):
        """Return (max_failed_logins, lockout_minutes) for this user."""
        from flask import current_app
        max_attempts = current_app.config.get('DEFAULT_MAX_FAILED_LOGINS', 5)
        minutes = current_app.config.get('DEFAULT_LOCKOUT_MINUTES', 10)
        if self.organization is not None:
            max_attempts = self.organization.max_failed_logins or max_attempts
            minutes = self.organization.lockout_duration_minutes or minutes
        return max_attempts, minutes

    def record_failed_login(self):
        """
        Record failed login attempt and lock if necessary.

        Returns True when this attempt locked the account.
        """
        max_attempts, minutes = self.lockout_policy()
        self.failed_login_attempts = (self.failed_login_attempts or 0) + 1
        self.last_failed_login = datetime.utcnow()
        locked = False
        if self.failed_login_attempts >= max_attempts:
            self.locked_until = datetime.utcnow() + timedelta(minutes=minutes)
            locked = True
            security_logger.warning(f"Account locked for user {self.id} for {minutes} minutes")
        db.session.commit()
        return locked

    def record_successful_login(self):
        """Reset failed attempts on successful login."""
        self.failed_login_attempts = 0
        self.locked_until = None
        self.last_login = datetime.utcnow()
        db.session.commit()

    def unlock(self):
        self.failed_login_attempts = 0
        self.locked_until = None

    def to_dict(self, include_security=False):
        data = {
            'id': self.id,
            'email': self.email,
            'first_name': self.first_name,
            'last_name': self.last_name,
            'name': self.name,
            'role': self.role.value if self.role else None,
            'organization_id': self.organization_id,
            'organization_name': self.organization.name if self.organization else None,
            'is_active': self.is_active,
            'status': 'ACTIVE' if self.is_active else 'SUSPENDED',
            'email_verified': self.email_verified,
            'created_at': isoformat(self.created_at),
            'last_login': isoformat(self.last_login),
        }
        if include_security:
            data['failed_login_attempts'] = self.failed_login_attempts
            data['locked_until'] = isoformat(self.locked_until)
        return data

    def __repr__(self):
        return f'<User {self.email}>'


class PasswordResetToken(db.Model):
    """
    One-time password reset token.

    Only the SHA-256 hash of the token is stored.
    """

    __tablename__ = 'password_reset_tokens'

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=False, index=True)
    token_hash = db.Column(db.String(64), unique=True, nullable=False, index=True)
    expires_at = db.Column(db.DateTime, nullable=False)
    used_at = db.Column(db.DateTime, nullable=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    user = db.relationship('User', backref=db.backref('reset_tokens', lazy='dynamic'))

    @staticmethod
    def hash_token(token):
        return hashlib.sha256(token.encode()).hexdigest()

    @classmethod
    def issue(cls, user, valid_hours=1):
        """Create a reset token for ``user``; returns (record, plain_token)."""
        token = secrets.token_urlsafe(32)
        record = cls(
            user_id=user.id,
            token_hash=cls.hash_token(token),
            expires_at=datetime.utcnow() + timedelta(hours=valid_hours),
        )
        db.session.add(record)
        return record, token

    @classmethod
    def find_valid(cls, token):
        if not token:
            return None
        record = cls.query.filter_by(token_hash=cls.hash_token(token)).first()
        if record is None or record.used_at is not None:
            return None
        if record.expires_at < datetime.utcnow():
            return None
        return record


@login_manager.user_loader
def load_user(user_id):
    """Load user by ID for Flask-Login."""
    user = db.session.get(User, int(user_id))
    if user is not None and not user.is_active:
        return None
    return user


@login_manager.request_loader
def load_user_from_request(request):
    """Load user from API key in request header."""
    api_key = request.headers.get('X-API-Key')
    if api_key:
        from bguard.security.api_keys import authenticate_api_key
        user = authenticate_api_key(api_key)
        if user and user.is_active and not user.is_locked():
            return user
        key_hash = hashlib.sha256(api_key.encode()).hexdigest()[:16]
        security_logger.warning(f"Rejected API key {key_hash}...")
    return None
