"""
API Key Model for BGuard Suite

Named, scoped API keys. Only a SHA-256 hash of each key is stored.
"""

from datetime import datetime
from bguard import db
from bguard.models.base import json_text_property, isoformat


class ApiKey(db.Model):
    """Programmatic access credential owned by a user."""

    __tablename__ = 'api_keys'

    PREFIX = 'bguard_'

    VALID_SCOPES = (
        '*',
        'threat_models:read', 'threat_models:write',
        'findings:read', 'findings:write',
        'assets:read', 'assets:write',
        'reviews:read', 'reviews:write',
        'reports:read', 'reports:write',
    )

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(100), nullable=False)
    key_hash = db.Column(db.String(64), unique=True, nullable=False, index=True)
    key_prefix = db.Column(db.String(16), nullable=False)  # Displayed to help users identify keys
    _scopes = db.Column('scopes', db.Text, nullable=True)
    scopes = json_text_property('_scopes')

    user_id = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=False, index=True)
    is_active = db.Column(db.Boolean, default=True, index=True)
    last_used_at = db.Column(db.DateTime, nullable=True)
    expires_at = db.Column(db.DateTime, nullable=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    user = db.relationship('User', backref=db.backref('api_keys', lazy='dynamic'))

    @staticmethod
    def validate_name(name):
        name = (name or '').strip()
        if len(name) < 3 or len(name) > 100:
            raise ValueError("API key name must be between 3 and 100 characters")
        return name

    @classmethod
    def validate_scopes(cls, scopes):
        if not isinstance(scopes, list) or not 1 <= len(scopes) <= 10:
            raise ValueError("Between 1 and 10 scopes are required")
        invalid = [scope for scope in scopes if scope not in cls.VALID_SCOPES]
        if invalid:
            raise ValueError(f"Invalid scopes: {', '.join(map(str, invalid))}")
        return scopes

    def has_scope(self, scope):
        return '*' in self.scopes or scope in self.scopes

    @property
    def is_expired(self):
        return self.expires_at is not None and self.expires_at < datetime.utcnow()

    def to_dict(self):
        return {
            'id': self.id,
            'name': self.name,
            'key_prefix': self.key_prefix,
            'scopes': self.scopes,
            'is_active': self.is_active,
            'last_used_at': isoformat(self.last_used_at),
            'expires_at': isoformat(self.expires_at),
            'created_at': isoformat(self.created_at),
        }
