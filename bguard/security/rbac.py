"""
BGuard Role-Based Access Control

Role hierarchy, permission sets and the scoping rules that decide which
records a user may see or change.
"""

import logging
from functools import wraps
from flask import jsonify
from flask_login import current_user

from bguard.models.user import UserRole

security_logger = logging.getLogger('security')


ROLE_HIERARCHY = {
    UserRole.ADMIN: 4,
    UserRole.BUSINESS_ADMIN: 3,
    UserRole.BUSINESS_USER: 2,
    UserRole.USER: 1,
}


class Permission:
    """Permission names."""
    MANAGE_ALL_USERS = 'MANAGE_ALL_USERS'
    MANAGE_ALL_ORGANIZATIONS = 'MANAGE_ALL_ORGANIZATIONS'
    MANAGE_SYSTEM_SETTINGS = 'MANAGE_SYSTEM_SETTINGS'
    VIEW_ALL_SECURITY_EVENTS = 'VIEW_ALL_SECURITY_EVENTS'
    VIEW_ALL_THREAT_MODELS = 'VIEW_ALL_THREAT_MODELS'
    VIEW_ALL_REPORTS = 'VIEW_ALL_REPORTS'
    CREATE_ORGANIZATIONS = 'CREATE_ORGANIZATIONS'
    ASSIGN_ANY_ROLE = 'ASSIGN_ANY_ROLE'

    MANAGE_ORG_USERS = 'MANAGE_ORG_USERS'
    VIEW_ORG_USERS = 'VIEW_ORG_USERS'
    VIEW_ORG_THREAT_MODELS = 'VIEW_ORG_THREAT_MODELS'
    VIEW_ORG_REPORTS = 'VIEW_ORG_REPORTS'
    VIEW_ORG_SECURITY = 'VIEW_ORG_SECURITY'
    MANAGE_ORG_SETTINGS = 'MANAGE_ORG_SETTINGS'
    ASSIGN_BUSINESS_USER = 'ASSIGN_BUSINESS_USER'

    VIEW_OWN_THREAT_MODELS = 'VIEW_OWN_THREAT_MODELS'
    VIEW_OWN_REPORTS = 'VIEW_OWN_REPORTS'
    CREATE_THREAT_MODELS = 'CREATE_THREAT_MODELS'
    CREATE_REPORTS = 'CREATE_REPORTS'

    VIEW_THREAT_MODELS = 'VIEW_THREAT_MODELS'


_BASE_USER = {
    Permission.VIEW_OWN_THREAT_MODELS,
    Permission.VIEW_OWN_REPORTS,
    Permission.CREATE_THREAT_MODELS,
    Permission.VIEW_THREAT_MODELS,
}

_BUSINESS_USER = _BASE_USER | {Permission.CREATE_REPORTS}

_BUSINESS_ADMIN = _BUSINESS_USER | {
    Permission.MANAGE_ORG_USERS,
    Permission.VIEW_ORG_USERS,
    Permission.VIEW_ORG_THREAT_MODELS,
    Permission.VIEW_ORG_REPORTS,
    Permission.VIEW_ORG_SECURITY,
    Permission.MANAGE_ORG_SETTINGS,
    Permission.ASSIGN_BUSINESS_USER,
}

_ADMIN = _BUSINESS_ADMIN | {
    Permission.MANAGE_ALL_USERS,
    Permission.MANAGE_ALL_ORGANIZATIONS,
    Permission.MANAGE_SYSTEM_SETTINGS,
    Permission.VIEW_ALL_SECURITY_EVENTS,
    Permission.VIEW_ALL_THREAT_MODELS,
    Permission.VIEW_ALL_REPORTS,
    Permission.CREATE_ORGANIZATIONS,
    Permission.ASSIGN_ANY_ROLE,
}

PERMISSIONS = {
    UserRole.ADMIN: frozenset(_ADMIN),
    UserRole.BUSINESS_ADMIN: frozenset(_BUSINESS_ADMIN),
    UserRole.BUSINESS_USER: frozenset(_BUSINESS_USER),
    UserRole.USER: frozenset(_BASE_USER),
}


def _role(value):
    if isinstance(value, UserRole):
        return value
    try:
        return UserRole(value)
    except ValueError:
        return None


def role_level(role):
    return ROLE_HIERARCHY.get(_role(role), 0)


def has_permission(role, permission):
    return permission in PERMISSIONS.get(_role(role), frozenset())


def has_any_permission(role, permissions):
    return any(has_permission(role, p) for p in permissions)


def can_manage_user(manager_role, target_role):
    """A manager must rank strictly above the user they manage."""
    return role_level(manager_role) > role_level(target_role)


def can_assign_role(assigner_role, role):
    """
    Check whether ``assigner_role`` may grant ``role``.

    Only platform admins assign ADMIN, BUSINESS_ADMIN and USER. Business
    admins may only hand out BUSINESS_USER.
    """
    assigner, target = _role(assigner_role), _role(role)
    if assigner is None or target is None:
        return False
    if assigner == UserRole.ADMIN:
        return True
    if assigner == UserRole.BUSINESS_ADMIN:
        return target == UserRole.BUSINESS_USER
    return False


def is_same_organization(user, target):
    """ADMIN spans every organization; everyone else needs a matching, non-null org."""
    if user.role == UserRole.ADMIN:
        return True
    return user.organization_id is not None and user.organization_id == target.organization_id


def build_user_scope(query, model, user):
    """
    Restrict ``query`` over ``model`` to the rows ``user`` may see.

    ADMIN sees everything, BUSINESS_ADMIN sees their organization, everyone
    else sees their own rows.
    """
    if user.role == UserRole.ADMIN:
        return query
    if user.role == UserRole.BUSINESS_ADMIN and user.organization_id is not None:
        return query.filter(model.organization_id == user.organization_id)
    return query.filter(model.user_id == user.id)


def can_access_resource(user, owner_id, owner_org_id):
    if user.role == UserRole.ADMIN:
        return True
    if owner_id is not None and owner_id == user.id:
        return True
    return (user.role == UserRole.BUSINESS_ADMIN
            and user.organization_id is not None
            and owner_org_id == user.organization_id)


def can_modify_resource(user, resource):
    """Owners, platform admins and business admins of the owning org may modify."""
    return can_access_resource(user, resource.user_id, resource.organization_id)


def require_permission(*permissions):
    """
    Decorator requiring any of ``permissions`` for the current user.

    Must be placed after ``api_login_required``.
    """
    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            if not has_any_permission(current_user.role, permissions):
                security_logger.warning(
                    f"Permission denied for user {current_user.id}: requires {', '.join(permissions)}"
                )
                return jsonify({'error': 'Insufficient permissions'}), 403
            return f(*args, **kwargs)
        return decorated_function
    return decorator


def require_role(*roles):
    """Decorator requiring the current user to hold one of ``roles``."""
    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            if current_user.role not in roles:
                security_logger.warning(
                    f"Role check failed for user {current_user.id} on {f.__name__}"
                )
                return jsonify({'error': 'Insufficient permissions'}), 403
            return f(*args, **kwargs)
        return decorated_function
    return decorator
