"""
Organization Model for BGuard Suite

Tenants of the platform and their account security settings.
"""

import re
from datetime import datetime
from bguard import db
from bguard.models.base import isoformat


class Organization(db.Model):
    """
    A tenant organization.

    Organization names are unique across the platform. Security settings
    drive session lifetime and account lockout for every member.
    """

    __tablename__ = 'organizations'

    NAME_REGEX = re.compile(r'^[a-zA-Z0-9\s\-_.,()&]+$')

    # (min, max) bounds for the security settings
    SETTING_BOUNDS = {
        'session_timeout_minutes': (5, 480),
        'max_failed_logins': (3, 10),
        'lockout_duration_minutes': (5, 1440),
    }

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(100), unique=True, nullable=False, index=True)
    description = db.Column(db.Text, nullable=True)
    domain = db.Column(db.String(255), nullable=True)
    industry = db.Column(db.String(100), nullable=True)
    size = db.Column(db.String(50), nullable=True)
    is_active = db.Column(db.Boolean, default=True)

    # Security settings
    session_timeout_minutes = db.Column(db.Integer, default=60)
    max_failed_logins = db.Column(db.Integer, default=5)
    lockout_duration_minutes = db.Column(db.Integer, default=10)
    require_two_factor = db.Column(db.Boolean, default=False)
    allow_sso = db.Column(db.Boolean, default=False)

    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    users = db.relationship('User', backref='organization', lazy='dynamic')

    def __init__(self, name, description=None, domain=None, industry=None, size=None):
        self.name = self.validate_name(name)
        self.description = description
        self.domain = domain
        self.industry = industry
        self.size = size
        self.is_active = True
        self.session_timeout_minutes = 60
        self.max_failed_logins = 5
        self.lockout_duration_minutes = 10
        self.require_two_factor = False
        self.allow_sso = False

    @classmethod
    def validate_name(cls, name):
        """Validate organization name format."""
        if name is not None and not isinstance(name, str):
            raise ValueError("Organization name must be a string")
        name = (name or '').strip()
        if len(name) < 2 or len(name) > 100:
            raise ValueError("Organization name must be between 2 and 100 characters")
        if not cls.NAME_REGEX.match(name):
            raise ValueError("Organization name contains invalid characters")
        return name

    def update_security_settings(self, data):
        """Apply validated security settings from a request payload."""
        for field, (low, high) in self.SETTING_BOUNDS.items():
            if data.get(field) is None:
                continue
            try:
                value = int(data[field])
            except (TypeError, ValueError):
                raise ValueError(f"{field} must be an integer")
            if value < low or value > high:
                raise ValueError(f"{field} must be between {low} and {high}")
            setattr(self, field, value)

        for flag in ('require_two_factor', 'allow_sso'):
            if flag in data and data[flag] is not None:
                setattr(self, flag, bool(data[flag]))

    def security_settings(self):
        return {
            'session_timeout_minutes': self.session_timeout_minutes,
            'max_failed_logins': self.max_failed_logins,
            'lockout_duration_minutes': self.lockout_duration_minutes,
            'require_two_factor': self.require_two_factor,
            'allow_sso': self.allow_sso,
        }

    def to_dict(self, include_stats=False):
        data = {
            'id': self.id,
            'name': self.name,
            'description': self.description,
            'domain': self.domain,
            'industry': self.industry,
            'size': self.size,
            'is_active': self.is_active,
            'security_settings': self.security_settings(),
            'created_at': isoformat(self.created_at),
            'updated_at': isoformat(self.updated_at),
        }
        if include_stats:
            data['user_count'] = self.users.count()
        return data

    def __repr__(self):
        return f'<Organization {self.name}>'
