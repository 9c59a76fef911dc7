"""
BGuard Security Event Service

Records security events, raises alerts for repeated login failures and
exposes scoped listing, resolution and statistics.
"""

import logging
from datetime import datetime, timedelta
from flask import current_app

from bguard import db
from bguard.models.activity import SecurityEvent, EventSeverity
from bguard.models.base import parse_enum
from bguard.models.user import UserRole
from bguard.security.activity import get_request_info, log_security_event

logger = logging.getLogger(__name__)
security_logger = logging.getLogger('security')


class SecurityEventService:
    """Security event recording and queries."""

    LOGIN_FAILED = 'LOGIN_FAILED'
    MULTIPLE_FAILED_LOGINS = 'MULTIPLE_FAILED_LOGINS'
    SUSPICIOUS_EVENTS = ('MULTIPLE_FAILED_LOGINS', 'SUSPICIOUS_LOGIN', 'LOGIN_BLOCKED')

    @staticmethod
    def log_event(event_type, severity, description, user=None, metadata=None,
                  organization_id=None, user_id=None):
        """
        Persist a security event and mirror it to the activity log.

        Returns the event, or None if it could not be written.
        """
        severity = parse_enum(EventSeverity, severity, 'severity', EventSeverity.LOW)
        try:
            ip, user_agent = get_request_info()
            event = SecurityEvent(
                event_type=event_type,
                severity=severity,
                description=description,
                user_id=user.id if user is not None else user_id,
                organization_id=(user.organization_id if user is not None else organization_id),
                ip_address=ip,
                user_agent=user_agent,
            )
            event.event_metadata = metadata or {}
            db.session.add(event)
            db.session.commit()
        except Exception as e:
            db.session.rollback()
            logger.error(f"Failed to record security event {event_type}: {e}")
            return None

        log_fn = security_logger.warning if severity in (EventSeverity.HIGH, EventSeverity.CRITICAL) \
            else security_logger.info
        log_fn(f"Security event {event_type} [{severity.value}] user={event.user_id}")
        log_security_event(event_type, severity.value, description, user=user, details=metadata)
        return event

    @classmethod
    def check_for_alerts(cls, user):
        """
        Raise MULTIPLE_FAILED_LOGINS when ``user`` has failed to log in
        repeatedly within the alert window.
        """
        threshold = current_app.config.get('FAILED_LOGIN_ALERT_THRESHOLD', 3)
        window = current_app.config.get('FAILED_LOGIN_ALERT_WINDOW_MINUTES', 5)
        since = datetime.utcnow() - timedelta(minutes=window)
        recent = SecurityEvent.query.filter(
            SecurityEvent.user_id == user.id,
            SecurityEvent.event_type == cls.LOGIN_FAILED,
            SecurityEvent.created_at >= since,
        ).count()
        if recent >= threshold:
            return cls.log_event(
                cls.MULTIPLE_FAILED_LOGINS,
                EventSeverity.HIGH,
                f"{recent} failed login attempts within {window} minutes",
                user=user,
                metadata={'failed_attempts': recent, 'window_minutes': window},
            )
        return None

    @staticmethod
    def scoped_query(user):
        """ADMIN sees every event, BUSINESS_ADMIN their organization, others their own."""
        query = SecurityEvent.query
        if user.role == UserRole.ADMIN:
            return query
        if user.role == UserRole.BUSINESS_ADMIN and user.organization_id is not None:
            return query.filter(SecurityEvent.organization_id == user.organization_id)
        return query.filter(SecurityEvent.user_id == user.id)

    @classmethod
    def list_events(cls, user, limit=50, severity=None, event_type=None, resolved=None):
        query = cls.scoped_query(user)
        if severity:
            query = query.filter(SecurityEvent.severity == parse_enum(EventSeverity, severity, 'severity'))
        if event_type:
            query = query.filter(SecurityEvent.event_type == event_type)
        if resolved is not None:
            query = query.filter(SecurityEvent.is_resolved == resolved)
        return query.order_by(SecurityEvent.created_at.desc()).limit(limit).all()

    @staticmethod
    def resolve(event, user):
        event.resolve(f"{user.name} ({user.role.value})")
        db.session.commit()
        security_logger.info(f"Security event {event.id} resolved by user {user.id}")
        return event

    @classmethod
    def stats(cls, user, days=30):
        since = datetime.utcnow() - timedelta(days=days)
        query = cls.scoped_query(user).filter(SecurityEvent.created_at >= since)
        return {
            'period_days': days,
            'total': query.count(),
            'critical': query.filter(SecurityEvent.severity == EventSeverity.CRITICAL).count(),
            'high': query.filter(SecurityEvent.severity == EventSeverity.HIGH).count(),
            'unresolved': query.filter(SecurityEvent.is_resolved.is_(False)).count(),
            'login_failures': query.filter(SecurityEvent.event_type == cls.LOGIN_FAILED).count(),
            'suspicious_logins': query.filter(SecurityEvent.event_type.in_(cls.SUSPICIOUS_EVENTS)).count(),
        }
