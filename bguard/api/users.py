"""
BGuard User Management Routes

Listing, creation, role and status changes, organization moves and
deletion with ownership transfer.
"""

import logging
from flask import jsonify, request
from flask_login import current_user
from sqlalchemy import or_

from bguard import db, limiter
from bguard.api import api_bp
from bguard.api.forms import AdminCreateUserForm
from bguard.api.helpers import api_login_required, get_json_body, paginate
from bguard.models import (
    User, UserRole, Organization, PasswordResetToken, ApiKey, SecurityEvent, ActivityLog,
    ThreatModel, Finding, Report, ApplicationAsset, AssetThreatModelLink, AssetDesignReviewLink,
    DesignReview, ThirdPartyReview, EndpointDiscoverySession, Tag, FindingTag, SlaSettings, EventSeverity
)
from bguard.models.base import parse_enum
from bguard.security.activity import log_activity, log_role_change
from bguard.security.events import SecurityEventService
from bguard.security.rbac import (
    Permission, require_permission, require_role, can_assign_role, can_manage_user,
    is_same_organization, role_level
)

security_logger = logging.getLogger('security')

BUSINESS_ROLES = (UserRole.BUSINESS_ADMIN, UserRole.BUSINESS_USER)

# Records that move to the new owner when their owner is deleted
OWNED_MODELS = (ThreatModel, Finding, Report, ApplicationAsset, DesignReview, ThirdPartyReview)


def _can_view_user(target):
    if current_user.is_admin or target.id == current_user.id:
        return True
    return current_user.role == UserRole.BUSINESS_ADMIN and is_same_organization(current_user, target)


def _manages_in_org(target):
    """BUSINESS_ADMIN may only act on non-admin members of their organization."""
    return (current_user.organization_id is not None
            and target.organization_id == current_user.organization_id
            and target.role not in (UserRole.ADMIN, UserRole.BUSINESS_ADMIN))


@api_bp.route('/users', methods=['GET'])
@api_login_required
@require_permission(Permission.MANAGE_ALL_USERS, Permission.VIEW_ORG_USERS)
def list_users():
    """List users: ADMIN sees all, BUSINESS_ADMIN their organization."""
    query = User.query
    if not current_user.is_admin:
        query = query.filter(User.organization_id == current_user.organization_id)

    search = (request.args.get('search') or '').strip()
    if search:
        pattern = f'%{search}%'
        query = query.filter(or_(User.email.ilike(pattern), User.first_name.ilike(pattern),
                                 User.last_name.ilike(pattern)))
    try:
        role = parse_enum(UserRole, request.args.get('role'), 'role')
    except ValueError as e:
        return jsonify({'error': str(e)}), 400
    if role:
        query = query.filter(User.role == role)
    organization_id = request.args.get('organization_id', type=int)
    if organization_id and current_user.is_admin:
        query = query.filter(User.organization_id == organization_id)

    return jsonify(paginate(query.order_by(User.created_at.desc()), lambda u: u.to_dict(include_security=True),
                            key='users'))


@api_bp.route('/users', methods=['POST'])
@api_login_required
@require_permission(Permission.MANAGE_ORG_USERS)
@limiter.limit("30 per hour")
def create_user():
    """
    Create a user. ADMIN may create any role in any organization;
    BUSINESS_ADMIN creates assignable roles in their own organization.
    """
    form = AdminCreateUserForm()
    if not form.validate():
        return jsonify({'error': form.error_message()}), 400

    try:
        role = parse_enum(UserRole, form.role.data, 'role', UserRole.BUSINESS_USER)
    except ValueError as e:
        return jsonify({'error': str(e)}), 400
    if not can_assign_role(current_user.role, role):
        security_logger.warning(f"User {current_user.id} attempted to create a {role.value} account")
        return jsonify({'error': 'You cannot assign this role'}), 403

    if current_user.is_admin:
        organization_id = form.organization_id.data
        if organization_id and db.session.get(Organization, organization_id) is None:
            return jsonify({'error': 'Organization not found'}), 400
    else:
        organization_id = current_user.organization_id

    try:
        user = User(
            email=form.email.data,
            password=form.password.data,
            first_name=form.first_name.data,
            last_name=form.last_name.data,
            role=role,
            organization_id=organization_id,
        )
        db.session.add(user)
        db.session.commit()
    except ValueError as e:
        db.session.rollback()
        return jsonify({'error': str(e)}), 400
    except Exception as e:
        db.session.rollback()
        security_logger.error(f"User creation error: {e}")
        return jsonify({'error': 'Failed to create user'}), 500

    log_activity('ADMIN_CREATE_USER', user=current_user, description=f"Created user {user.email}",
                 entity_type='user', entity_id=user.id, details={'role': role.value})
    return jsonify({'message': 'User created', 'user': user.to_dict()}), 201


@api_bp.route('/users/<int:user_id>', methods=['GET'])
@api_login_required
def get_user(user_id):
    target = db.session.get(User, user_id)
    if target is None:
        return jsonify({'error': 'User not found'}), 404
    if not _can_view_user(target):
        security_logger.warning(f"Unauthorized user access: {user_id} by user {current_user.id}")
        return jsonify({'error': 'Access denied'}), 403
    return jsonify(target.to_dict(include_security=True))


@api_bp.route('/users/<int:user_id>/role', methods=['PUT'])
@api_login_required
@require_permission(Permission.MANAGE_ORG_USERS)
@limiter.limit("50 per hour")
def update_user_role(user_id):
    """
    Change a user's role.

    Request body: {"role": "BUSINESS_ADMIN", "organization_id": 2}
    """
    data = get_json_body()
    try:
        new_role = parse_enum(UserRole, data.get('role'), 'role')
    except ValueError as e:
        return jsonify({'error': str(e)}), 400
    if new_role is None:
        return jsonify({'error': 'Role is required'}), 400

    target = db.session.get(User, user_id)
    if target is None:
        return jsonify({'error': 'User not found'}), 404

    if target.id == current_user.id and current_user.is_admin and new_role != UserRole.ADMIN:
        return jsonify({'error': 'You cannot remove your own admin role'}), 400
    if not can_assign_role(current_user.role, new_role):
        security_logger.warning(f"User {current_user.id} attempted to assign {new_role.value} to {target.id}")
        return jsonify({'error': 'You cannot assign this role'}), 403
    if not current_user.is_admin and not is_same_organization(current_user, target):
        security_logger.warning(f"Cross-organization role change attempt by {current_user.id} on {target.id}")
        return jsonify({'error': 'Access denied'}), 403
    if target.id != current_user.id and not can_manage_user(current_user.role, target.role):
        return jsonify({'error': 'You cannot manage this user'}), 403

    if 'organization_id' in data and current_user.is_admin and new_role in BUSINESS_ROLES:
        organization_id = data.get('organization_id')
        if organization_id is not None and db.session.get(Organization, organization_id) is None:
            return jsonify({'error': 'Organization not found'}), 400
        target.organization_id = organization_id

    old_role = target.role
    target.role = new_role
    db.session.commit()

    log_role_change(current_user, target, old_role, new_role)
    if role_level(new_role) > role_level(old_role):
        SecurityEventService.log_event(
            'ROLE_ELEVATION', EventSeverity.HIGH,
            f"Role of user {target.id} elevated from {old_role.value} to {new_role.value}",
            user=current_user,
            metadata={'target_user_id': target.id, 'old_role': old_role.value, 'new_role': new_role.value},
        )
    return jsonify({'message': 'Role updated', 'user': target.to_dict()})


@api_bp.route('/users/<int:user_id>/status', methods=['PUT'])
@api_login_required
@require_role(UserRole.ADMIN, UserRole.BUSINESS_ADMIN)
@limiter.limit("50 per hour")
def update_user_status(user_id):
    """Request body: {"status": "ACTIVE" | "SUSPENDED"}"""
    status = str(get_json_body().get('status') or '').upper()
    if status not in ('ACTIVE', 'SUSPENDED'):
        return jsonify({'error': 'Status must be ACTIVE or SUSPENDED'}), 400

    target = db.session.get(User, user_id)
    if target is None:
        return jsonify({'error': 'User not found'}), 404
    if target.id == current_user.id:
        return jsonify({'error': 'You cannot change your own status'}), 400
    if not current_user.is_admin and not _manages_in_org(target):
        security_logger.warning(f"Unauthorized status change by {current_user.id} on {target.id}")
        return jsonify({'error': 'Access denied'}), 403

    target.is_active = status == 'ACTIVE'
    if target.is_active:
        target.unlock()
    db.session.commit()

    event_type = 'ACCOUNT_UNLOCKED' if target.is_active else 'ACCOUNT_LOCKED'
    SecurityEventService.log_event(
        event_type, EventSeverity.MEDIUM, f"User {target.id} set to {status}", user=current_user,
        metadata={'target_user_id': target.id, 'status': status},
    )
    return jsonify({'message': f'User status set to {status}', 'user': target.to_dict()})


@api_bp.route('/users/<int:user_id>/organization', methods=['PUT'])
@api_login_required
@require_role(UserRole.ADMIN)
def update_user_organization(user_id):
    """Move a user to another organization (or none)."""
    data = get_json_body()
    if 'organization_id' not in data:
        return jsonify({'error': 'organization_id is required'}), 400

    target = db.session.get(User, user_id)
    if target is None:
        return jsonify({'error': 'User not found'}), 404

    organization_id = data.get('organization_id')
    if organization_id is not None and (isinstance(organization_id, bool) or not isinstance(organization_id, int)):
        return jsonify({'error': 'organization_id must be an integer or null'}), 400
    if organization_id is not None and db.session.get(Organization, organization_id) is None:
        return jsonify({'error': 'Organization not found'}), 400

    old_organization_id = target.organization_id
    target.organization_id = organization_id
    db.session.commit()

    log_activity('UPDATE_USER_ORGANIZATION', user=current_user, entity_type='user', entity_id=target.id,
                 description=f"Moved {target.email} to organization {organization_id}",
                 details={'old_organization_id': old_organization_id, 'new_organization_id': organization_id})
    return jsonify({'message': 'Organization updated', 'user': target.to_dict()})


def _delete_user(target, actor):
    """
    Delete ``target`` in the current transaction.

    Credentials and events go with the user, activity entries are
    anonymised and owned records move to ``actor`` when a business admin
    deletes (or lose their owner when a platform admin does).
    """
    new_owner = actor.id if actor.role == UserRole.BUSINESS_ADMIN else None

    ApiKey.query.filter_by(user_id=target.id).delete(synchronize_session=False)
    SecurityEvent.query.filter_by(user_id=target.id).delete(synchronize_session=False)
    PasswordResetToken.query.filter_by(user_id=target.id).delete(synchronize_session=False)
    SlaSettings.query.filter_by(user_id=target.id).delete(synchronize_session=False)

    for entry in ActivityLog.query.filter_by(user_id=target.id):
        entry.user_id = None
        entry.ip_address = None
        entry.user_agent = None
        entry.details = {'anonymized': True}

    for model in OWNED_MODELS:
        model.query.filter_by(user_id=target.id).update({'user_id': new_owner}, synchronize_session=False)

    for model, column in ((AssetThreatModelLink, 'linked_by'), (AssetDesignReviewLink, 'linked_by'),
                          (Report, 'deleted_by'), (DesignReview, 'last_modified_by'),
                          (EndpointDiscoverySession, 'created_by'), (Tag, 'created_by'),
                          (FindingTag, 'applied_by')):
        model.query.filter(getattr(model, column) == target.id).update({column: None}, synchronize_session=False)

    db.session.expire_all()
    db.session.delete(db.session.get(User, target.id))


def _deletion_check(target):
    """Return an error response if the current user may not delete ``target``."""
    if target.id == current_user.id:
        return jsonify({'error': 'You cannot delete your own account'}), 400
    if current_user.is_admin:
        data = get_json_body()
        if data.get('confirmation_text') != 'DELETE':
            return jsonify({'error': 'confirmation_text must be DELETE'}), 400
        if not current_user.check_password(data.get('confirm_password')):
            security_logger.warning(f"User deletion with wrong password by admin {current_user.id}")
            return jsonify({'error': 'Password confirmation failed'}), 400
        return None
    if current_user.role == UserRole.BUSINESS_ADMIN and _manages_in_org(target):
        return None
    security_logger.warning(f"Unauthorized user deletion attempt by {current_user.id} on {target.id}")
    return jsonify({'error': 'Access denied'}), 403


@api_bp.route('/users/<int:user_id>', methods=['DELETE'])
@api_login_required
@limiter.limit("20 per hour")
def delete_user(user_id):
    target = db.session.get(User, user_id)
    if target is None:
        return jsonify({'error': 'User not found'}), 404

    error = _deletion_check(target)
    if error:
        return error

    deleted = {'deleted_user_id': target.id, 'role': target.role.value,
               'organization_id': target.organization_id}
    try:
        _delete_user(target, current_user)
        db.session.commit()
    except Exception as e:
        db.session.rollback()
        security_logger.error(f"User deletion failed for {user_id}: {e}")
        return jsonify({'error': 'Failed to delete user'}), 500

    SecurityEventService.log_event('USER_DELETED', EventSeverity.HIGH, f"User {user_id} deleted",
                                   user=current_user, metadata=deleted)
    return jsonify({'message': 'User deleted'})


@api_bp.route('/users/bulk', methods=['POST'])
@api_login_required
@require_role(UserRole.ADMIN)
@limiter.limit("10 per hour")
def bulk_user_action():
    """
    Request body:
    {"action": "activate" | "deactivate" | "delete", "user_ids": [1, 2],
     "confirm_password": "...", "confirmation_text": "DELETE"}
    """
    data = get_json_body()
    action = data.get('action')
    user_ids = data.get('user_ids')
    if action not in ('activate', 'deactivate', 'delete'):
        return jsonify({'error': 'Action must be activate, deactivate or delete'}), 400
    if not isinstance(user_ids, list) or not user_ids:
        return jsonify({'error': 'user_ids must be a non-empty list'}), 400

    if action == 'delete':
        if data.get('confirmation_text') != 'DELETE' or not current_user.check_password(data.get('confirm_password')):
            return jsonify({'error': 'Deletion requires confirm_password and confirmation_text DELETE'}), 400

    targets = User.query.filter(User.id.in_(user_ids), User.id != current_user.id).all()
    affected = [t.id for t in targets]
    try:
        for target in targets:
            if action == 'delete':
                _delete_user(target, current_user)
            else:
                target.is_active = action == 'activate'
                if target.is_active:
                    target.unlock()
        db.session.commit()
    except Exception as e:
        db.session.rollback()
        security_logger.error(f"Bulk user {action} failed: {e}")
        return jsonify({'error': 'Bulk action failed'}), 500

    SecurityEventService.log_event(
        'BULK_USER_ACTION', EventSeverity.HIGH if action == 'delete' else EventSeverity.MEDIUM,
        f"Bulk {action} of {len(affected)} users", user=current_user,
        metadata={'action': action, 'user_ids': affected},
    )
    return jsonify({'message': f'Bulk {action} completed', 'affected': len(affected), 'user_ids': affected})
