"""
BGuard Activity Logging

Persisted audit trail of user actions. Writing an entry never fails the
request that triggered it.
"""

import logging
from flask import request, has_request_context
from sqlalchemy import func

from bguard import db
from bguard.models.activity import ActivityLog, ActivityStatus
from bguard.security.rbac import role_level
from bguard.models.base import enum_value

logger = logging.getLogger(__name__)
security_logger = logging.getLogger('security')


def get_request_info():
    """Return (ip_address, user_agent) for the current request."""
    if not has_request_context():
        return None, None
    forwarded = request.headers.get('X-Forwarded-For')
    if forwarded:
        ip = forwarded.split(',')[0].strip()
    else:
        ip = request.headers.get('X-Real-IP') or request.remote_addr
    user_agent = request.headers.get('User-Agent')
    return ip, (user_agent[:512] if user_agent else None)


def log_activity(action, user=None, description=None, details=None, status=ActivityStatus.SUCCESS,
                 entity_type=None, entity_id=None, error_message=None, organization_id=None):
    """
    Record an activity log entry and commit it.

    Errors are logged and swallowed.
    """
    try:
        ip, user_agent = get_request_info()
        entry = ActivityLog(
            action=action,
            status=status,
            description=description,
            user_id=user.id if user is not None else None,
            organization_id=organization_id if organization_id is not None else (
                user.organization_id if user is not None else None),
            entity_type=entity_type,
            entity_id=str(entity_id) if entity_id is not None else None,
            ip_address=ip,
            user_agent=user_agent,
            error_message=error_message,
        )
        entry.details = details or {}
        db.session.add(entry)
        db.session.commit()
        return entry
    except Exception as e:
        db.session.rollback()
        logger.error(f"Failed to write activity log for {action}: {e}")
        return None


def log_role_change(actor, target, old_role, new_role):
    """Log a role change; elevations are flagged."""
    elevated = role_level(new_role) > role_level(old_role)
    if elevated:
        security_logger.warning(
            f"Role elevated for user {target.id}: {enum_value(old_role)} -> {enum_value(new_role)} by {actor.id}"
        )
    return log_activity(
        'UPDATE_USER_ROLE',
        user=actor,
        description=f"Changed role of {target.email} from {enum_value(old_role)} to {enum_value(new_role)}",
        details={
            'target_user_id': target.id,
            'old_role': enum_value(old_role),
            'new_role': enum_value(new_role),
            'role_elevation': elevated,
        },
        entity_type='user',
        entity_id=target.id,
    )


def log_security_event(event_type, severity, description, user=None, details=None):
    """Mirror a security event into the activity log."""
    return log_activity(
        event_type,
        user=user,
        description=f"SECURITY EVENT [{severity}]: {description}",
        details=details,
        entity_type='security_event',
    )


def activity_stats(query):
    """Totals, success rate and top actions over a scoped activity query."""
    total = query.count()
    success = query.filter(ActivityLog.status == ActivityStatus.SUCCESS).count()
    failed = query.filter(ActivityLog.status == ActivityStatus.FAILED).count()
    top_actions = (
        query.with_entities(ActivityLog.action, func.count(ActivityLog.id))
        .group_by(ActivityLog.action)
        .order_by(func.count(ActivityLog.id).desc())
        .limit(10)
        .all()
    )
    return {
        'total': total,
        'success': success,
        'failed': failed,
        'success_rate': round(success / total * 100, 1) if total else 0,
        'top_actions': [{'action': action, 'count': count} for action, count in top_actions],
    }
