"""
BGuard Organization Routes

Platform-admin organization management, member access to their own
organization and organization security settings.
"""

import logging
from flask import jsonify, request
from flask_login import current_user

from bguard import db, limiter
from bguard.api import api_bp
from bguard.api.helpers import api_login_required, get_json_body, paginate
from bguard.models import (
    Organization, UserRole, EventSeverity, Tag, ThreatModel, Finding, ApplicationAsset, DesignReview,
    ThirdPartyReview, Report, ActivityLog, SecurityEvent
)
from bguard.security.activity import log_activity
from bguard.security.events import SecurityEventService
from bguard.security.rbac import Permission, require_permission, require_role

security_logger = logging.getLogger('security')

EDITABLE_FIELDS = ('description', 'domain', 'industry', 'size')

# Records kept after their organization is deleted, as admin-only data
DETACHED_ON_DELETE = (ThreatModel, Finding, ApplicationAsset, DesignReview, ThirdPartyReview, Report,
                      ActivityLog, SecurityEvent)


def _name_taken(name, exclude_id=None):
    query = Organization.query.filter(db.func.lower(Organization.name) == name.lower())
    if exclude_id is not None:
        query = query.filter(Organization.id != exclude_id)
    return query.first() is not None


def _can_manage_settings(organization):
    if current_user.is_admin:
        return True
    return (current_user.role == UserRole.BUSINESS_ADMIN
            and current_user.organization_id == organization.id)


@api_bp.route('/organizations/public', methods=['GET'])
@limiter.limit("60 per hour")
def public_organizations():
    """Active organizations (id and name only) for the signup form."""
    organizations = Organization.query.filter_by(is_active=True).order_by(Organization.name).all()
    return jsonify({'organizations': [{'id': o.id, 'name': o.name} for o in organizations]})


@api_bp.route('/organizations', methods=['GET'])
@api_login_required
@require_permission(Permission.MANAGE_ALL_ORGANIZATIONS)
def list_organizations():
    query = Organization.query
    search = (request.args.get('search') or '').strip()
    if search:
        pattern = f'%{search}%'
        query = query.filter(db.or_(Organization.name.ilike(pattern), Organization.domain.ilike(pattern)))
    return jsonify(paginate(query.order_by(Organization.name), lambda o: o.to_dict(include_stats=True),
                            key='organizations'))


@api_bp.route('/organizations', methods=['POST'])
@api_login_required
@require_permission(Permission.CREATE_ORGANIZATIONS)
@limiter.limit("30 per hour")
def create_organization():
    data = get_json_body()
    try:
        name = Organization.validate_name(data.get('name'))
        if _name_taken(name):
            return jsonify({'error': 'Organization already exists'}), 409
        organization = Organization(
            name=name,
            description=data.get('description'),
            domain=data.get('domain'),
            industry=data.get('industry'),
            size=data.get('size'),
        )
        db.session.add(organization)
        db.session.commit()
    except ValueError as e:
        return jsonify({'error': str(e)}), 400
    except Exception as e:
        db.session.rollback()
        security_logger.error(f"Organization creation error: {e}")
        return jsonify({'error': 'Failed to create organization'}), 500

    log_activity('ADMIN_CREATE_ORGANIZATION', user=current_user, entity_type='organization',
                 entity_id=organization.id, description=f"Created organization {organization.name}")
    return jsonify({'message': 'Organization created', 'organization': organization.to_dict()}), 201


@api_bp.route('/organizations/<int:organization_id>', methods=['GET'])
@api_login_required
def get_organization(organization_id):
    organization = db.session.get(Organization, organization_id)
    if organization is None:
        return jsonify({'error': 'Organization not found'}), 404
    if not current_user.is_admin and current_user.organization_id != organization.id:
        security_logger.warning(f"Unauthorized organization access: {organization_id} by user {current_user.id}")
        return jsonify({'error': 'Access denied'}), 403
    return jsonify(organization.to_dict(include_stats=True))


@api_bp.route('/organizations/<int:organization_id>', methods=['PUT'])
@api_login_required
@require_role(UserRole.ADMIN)
def update_organization(organization_id):
    organization = db.session.get(Organization, organization_id)
    if organization is None:
        return jsonify({'error': 'Organization not found'}), 404

    data = get_json_body()
    try:
        if 'name' in data:
            name = Organization.validate_name(data['name'])
            if _name_taken(name, exclude_id=organization.id):
                return jsonify({'error': 'Organization already exists'}), 409
            organization.name = name
        for field in EDITABLE_FIELDS:
            if field in data:
                setattr(organization, field, data[field])
        if 'is_active' in data:
            organization.is_active = bool(data['is_active'])
        db.session.commit()
    except ValueError as e:
        db.session.rollback()
        return jsonify({'error': str(e)}), 400

    log_activity('ADMIN_UPDATE_ORGANIZATION', user=current_user, entity_type='organization',
                 entity_id=organization.id, details={'fields': sorted(data.keys())})
    return jsonify({'message': 'Organization updated', 'organization': organization.to_dict()})


@api_bp.route('/organizations/<int:organization_id>', methods=['DELETE'])
@api_login_required
@require_role(UserRole.ADMIN)
def delete_organization(organization_id):
    organization = db.session.get(Organization, organization_id)
    if organization is None:
        return jsonify({'error': 'Organization not found'}), 404
    if organization.users.count():
        return jsonify({'error': 'Organization still has users'}), 400

    name = organization.name
    for tag in Tag.query.filter_by(organization_id=organization.id):
        db.session.delete(tag)
    for model in DETACHED_ON_DELETE:
        model.query.filter_by(organization_id=organization.id).update(
            {'organization_id': None}, synchronize_session=False)
    db.session.delete(organization)
    db.session.commit()
    log_activity('ADMIN_DELETE_ORGANIZATION', user=current_user, entity_type='organization',
                 entity_id=organization_id, description=f"Deleted organization {name}")
    return jsonify({'message': 'Organization deleted'})


@api_bp.route('/organizations/<int:organization_id>/security-settings', methods=['GET'])
@api_login_required
def get_security_settings(organization_id):
    organization = db.session.get(Organization, organization_id)
    if organization is None:
        return jsonify({'error': 'Organization not found'}), 404
    if not _can_manage_settings(organization):
        return jsonify({'error': 'Access denied'}), 403
    return jsonify(organization.security_settings())


@api_bp.route('/organizations/<int:organization_id>/security-settings', methods=['PUT'])
@api_login_required
@limiter.limit("30 per hour")
def update_security_settings(organization_id):
    organization = db.session.get(Organization, organization_id)
    if organization is None:
        return jsonify({'error': 'Organization not found'}), 404
    if not _can_manage_settings(organization):
        security_logger.warning(f"Unauthorized security settings change on {organization_id} by {current_user.id}")
        return jsonify({'error': 'Access denied'}), 403

    data = get_json_body()
    try:
        organization.update_security_settings(data)
        db.session.commit()
    except ValueError as e:
        db.session.rollback()
        return jsonify({'error': str(e)}), 400

    SecurityEventService.log_event(
        'SECURITY_SETTINGS_UPDATED', EventSeverity.MEDIUM,
        f"Security settings updated for organization {organization.id}", user=current_user,
        metadata=organization.security_settings(),
    )
    return jsonify({'message': 'Security settings updated', 'security_settings': organization.security_settings()})
