"""
BGuard API Key Service

Issues, authenticates, rotates and revokes ``bguard_``-prefixed API keys.
Raw keys are shown once at creation; only SHA-256 hashes are stored.
"""

import hashlib
import logging
import secrets
from datetime import datetime, timedelta

from bguard import db
from bguard.models.api_key import ApiKey
from bguard.models.activity import EventSeverity
from bguard.security.events import SecurityEventService

security_logger = logging.getLogger('security')


def hash_key(raw_key):
    return hashlib.sha256(raw_key.encode()).hexdigest()


def generate_api_key(user, name, scopes, expires_in_days=None):
    """
    Create a key for ``user``.

    Returns (ApiKey, raw_key). Raises ValueError on invalid input.
    """
    name = ApiKey.validate_name(name)
    scopes = ApiKey.validate_scopes(scopes)
    expires_at = None
    if expires_in_days is not None:
        try:
            days = int(expires_in_days)
        except (TypeError, ValueError):
            raise ValueError("expires_in_days must be an integer")
        if days < 1 or days > 365:
            raise ValueError("expires_in_days must be between 1 and 365")
        expires_at = datetime.utcnow() + timedelta(days=days)

    raw_key = ApiKey.PREFIX + secrets.token_urlsafe(32)
    api_key = ApiKey(
        name=name,
        key_hash=hash_key(raw_key),
        key_prefix=raw_key[:12],
        user_id=user.id,
        is_active=True,
        expires_at=expires_at,
    )
    api_key.scopes = scopes
    db.session.add(api_key)
    db.session.commit()

    SecurityEventService.log_event(
        'API_KEY_CREATED', EventSeverity.LOW, f"API key '{name}' created",
        user=user, metadata={'api_key_id': api_key.id, 'scopes': scopes},
    )
    return api_key, raw_key


def authenticate_api_key(raw_key):
    """Resolve a raw key to its active owner, recording use. Returns None when invalid."""
    if not raw_key or not raw_key.startswith(ApiKey.PREFIX):
        return None
    api_key = ApiKey.query.filter_by(key_hash=hash_key(raw_key), is_active=True).first()
    if api_key is None:
        return None
    if api_key.is_expired:
        deactivate_api_key(api_key, reason='EXPIRED')
        return None

    api_key.last_used_at = datetime.utcnow()
    db.session.commit()
    SecurityEventService.log_event(
        'API_KEY_USED', EventSeverity.LOW, f"API key '{api_key.name}' used",
        user=api_key.user, metadata={'api_key_id': api_key.id},
    )
    return api_key.user


def deactivate_api_key(api_key, reason='REVOKED', actor=None):
    api_key.is_active = False
    db.session.commit()
    security_logger.info(f"API key {api_key.id} deactivated: {reason}")
    SecurityEventService.log_event(
        'API_KEY_DELETED', EventSeverity.MEDIUM, f"API key '{api_key.name}' deactivated",
        user=actor or api_key.user, metadata={'api_key_id': api_key.id, 'reason': reason},
    )
    return api_key


def rotate_api_key(api_key):
    """Replace the key material, keeping name, scopes and expiry. Returns the new raw key."""
    raw_key = ApiKey.PREFIX + secrets.token_urlsafe(32)
    api_key.key_hash = hash_key(raw_key)
    api_key.key_prefix = raw_key[:12]
    api_key.last_used_at = None
    db.session.commit()
    SecurityEventService.log_event(
        'API_KEY_CREATED', EventSeverity.MEDIUM, f"API key '{api_key.name}' rotated",
        user=api_key.user, metadata={'api_key_id': api_key.id, 'rotated': True},
    )
    return raw_key


def cleanup_expired_keys():
    """Deactivate every expired key; returns how many were deactivated."""
    expired = ApiKey.query.filter(
        ApiKey.is_active.is_(True),
        ApiKey.expires_at.isnot(None),
        ApiKey.expires_at < datetime.utcnow(),
    ).all()
    for api_key in expired:
        deactivate_api_key(api_key, reason='EXPIRED')
    return len(expired)


def api_key_stats(user):
    now = datetime.utcnow()
    query = ApiKey.query.filter_by(user_id=user.id)
    active = query.filter(ApiKey.is_active.is_(True))
    return {
        'total': query.count(),
        'active': active.count(),
        'recently_used': active.filter(ApiKey.last_used_at >= now - timedelta(hours=24)).count(),
        'expiring_soon': active.filter(
            ApiKey.expires_at.isnot(None),
            ApiKey.expires_at <= now + timedelta(days=7),
        ).count(),
    }
