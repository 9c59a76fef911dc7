"""
BGuard Tag Routes

System tags are read-only; organization tags are managed by business
admins and platform admins.
"""

import logging
from flask import jsonify
from flask_login import current_user

from bguard import db
from bguard.api import api_bp
from bguard.api.helpers import api_login_required, get_json_body, bool_arg, is_admin_or_business_admin
from bguard.models import Tag
from bguard.security.activity import log_activity

security_logger = logging.getLogger('security')


def _name_taken(name, organization_id, exclude_id=None):
    query = Tag.query.filter(Tag.organization_id == organization_id,
                             db.func.lower(Tag.name) == name.lower())
    if exclude_id is not None:
        query = query.filter(Tag.id != exclude_id)
    return query.first() is not None


def _get_managed_tag(tag_id):
    """Organization tag the current user may change, or an error response."""
    tag = db.session.get(Tag, tag_id)
    if tag is None:
        return None, (jsonify({'error': 'Tag not found'}), 404)
    if tag.is_system:
        return None, (jsonify({'error': 'System tags cannot be modified'}), 400)
    if not is_admin_or_business_admin():
        return None, (jsonify({'error': 'Insufficient permissions'}), 403)
    if not current_user.is_admin and tag.organization_id != current_user.organization_id:
        security_logger.warning(f"Unauthorized tag access: {tag_id} by user {current_user.id}")
        return None, (jsonify({'error': 'Access denied'}), 403)
    return tag, None


@api_bp.route('/tags', methods=['GET'])
@api_login_required
def list_tags():
    """System tags first, then organization tags, each by name."""
    include_system = bool_arg('include_system', True)
    filters = []
    if current_user.organization_id is not None:
        filters.append(Tag.organization_id == current_user.organization_id)
    if include_system:
        filters.append(Tag.is_system.is_(True))
    if not filters:
        return jsonify({'tags': []})

    tags = Tag.query.filter(db.or_(*filters)).order_by(Tag.is_system.desc(), Tag.name).all()
    return jsonify({'tags': [t.to_dict() for t in tags]})


@api_bp.route('/tags', methods=['POST'])
@api_login_required
def create_tag():
    """Request body: {"name": "PCI", "color": "#112233", "description": "..."}"""
    if current_user.organization_id is None:
        return jsonify({'error': 'You must belong to an organization to create tags'}), 400

    data = get_json_body()
    try:
        name = Tag.validate_name(data.get('name'))
        if _name_taken(name, current_user.organization_id):
            return jsonify({'error': 'A tag with this name already exists'}), 409
        tag = Tag(name=name, color=data.get('color'), description=data.get('description'),
                  organization_id=current_user.organization_id, created_by=current_user.id)
        db.session.add(tag)
        db.session.commit()
    except ValueError as e:
        db.session.rollback()
        return jsonify({'error': str(e)}), 400

    log_activity('CREATE_TAG', user=current_user, entity_type='tag', entity_id=tag.id,
                 description=f"Created tag {tag.name}")
    return jsonify({'message': 'Tag created', 'tag': tag.to_dict()}), 201


@api_bp.route('/tags/<int:tag_id>', methods=['PUT'])
@api_login_required
def update_tag(tag_id):
    tag, error = _get_managed_tag(tag_id)
    if error:
        return error

    data = get_json_body()
    try:
        if 'name' in data:
            name = Tag.validate_name(data['name'])
            if _name_taken(name, tag.organization_id, exclude_id=tag.id):
                return jsonify({'error': 'A tag with this name already exists'}), 409
            tag.name = name
        if 'color' in data:
            tag.color = Tag.validate_color(data['color'])
        if 'description' in data:
            tag.description = data['description']
        db.session.commit()
    except ValueError as e:
        db.session.rollback()
        return jsonify({'error': str(e)}), 400

    log_activity('UPDATE_TAG', user=current_user, entity_type='tag', entity_id=tag.id)
    return jsonify({'message': 'Tag updated', 'tag': tag.to_dict()})


@api_bp.route('/tags/<int:tag_id>', methods=['DELETE'])
@api_login_required
def delete_tag(tag_id):
    """Delete an organization tag and remove it from every finding."""
    tag, error = _get_managed_tag(tag_id)
    if error:
        return error

    name = tag.name
    db.session.delete(tag)
    db.session.commit()
    log_activity('DELETE_TAG', user=current_user, entity_type='tag', entity_id=tag_id,
                 description=f"Deleted tag {name}")
    return jsonify({'message': 'Tag deleted'})
