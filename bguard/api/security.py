"""
BGuard Security Routes

Security event monitoring and API key management.
"""

import logging
from flask import jsonify, request
from flask_login import current_user

from bguard import db, limiter
from bguard.api import api_bp
from bguard.api.helpers import api_login_required, get_json_body, int_arg, bool_arg, is_admin_or_business_admin
from bguard.models import SecurityEvent, ApiKey, UserRole
from bguard.security.api_keys import generate_api_key, deactivate_api_key, rotate_api_key, api_key_stats
from bguard.security.events import SecurityEventService

security_logger = logging.getLogger('security')


@api_bp.route('/security/events', methods=['GET'])
@api_login_required
def list_security_events():
    """Query args: limit, severity, event_type, resolved."""
    try:
        events = SecurityEventService.list_events(
            current_user,
            limit=int_arg('limit', 50, maximum=500),
            severity=request.args.get('severity'),
            event_type=request.args.get('event_type'),
            resolved=bool_arg('resolved'),
        )
    except ValueError as e:
        return jsonify({'error': str(e)}), 400
    return jsonify({'events': [e.to_dict() for e in events], 'total': len(events)})


@api_bp.route('/security/events/<int:event_id>/resolve', methods=['POST'])
@api_login_required
def resolve_security_event(event_id):
    if not is_admin_or_business_admin():
        return jsonify({'error': 'Insufficient permissions'}), 403

    event = db.session.get(SecurityEvent, event_id)
    if event is None:
        return jsonify({'error': 'Security event not found'}), 404
    if (current_user.role == UserRole.BUSINESS_ADMIN
            and event.organization_id != current_user.organization_id):
        security_logger.warning(f"Unauthorized security event access: {event_id} by user {current_user.id}")
        return jsonify({'error': 'Access denied'}), 403
    if event.is_resolved:
        return jsonify({'error': 'Security event already resolved'}), 400

    SecurityEventService.resolve(event, current_user)
    return jsonify({'message': 'Security event resolved', 'event': event.to_dict()})


@api_bp.route('/security/stats', methods=['GET'])
@api_login_required
def security_stats():
    return jsonify(SecurityEventService.stats(current_user, days=int_arg('days', 30, maximum=365)))


@api_bp.route('/api-keys', methods=['GET'])
@api_login_required
def list_api_keys():
    keys = current_user.api_keys.order_by(ApiKey.created_at.desc()).all()
    return jsonify({'api_keys': [k.to_dict() for k in keys], 'valid_scopes': list(ApiKey.VALID_SCOPES)})


@api_bp.route('/api-keys', methods=['POST'])
@api_login_required
@limiter.limit("10 per hour")
def create_api_key():
    """
    Create an API key. The raw key is returned once.

    Request body: {"name": "CI pipeline", "scopes": ["threat_models:read"], "expires_in_days": 90}
    """
    data = get_json_body()
    try:
        api_key, raw_key = generate_api_key(current_user, data.get('name'), data.get('scopes'),
                                            data.get('expires_in_days'))
    except ValueError as e:
        db.session.rollback()
        return jsonify({'error': str(e)}), 400

    return jsonify({
        'message': 'API key created. Store it now; it will not be shown again.',
        'api_key': raw_key,
        'key': api_key.to_dict(),
    }), 201


@api_bp.route('/api-keys/stats', methods=['GET'])
@api_login_required
def get_api_key_stats():
    return jsonify(api_key_stats(current_user))


def _own_key(key_id):
    api_key = current_user.api_keys.filter_by(id=key_id).first()
    if api_key is None:
        return None, (jsonify({'error': 'API key not found'}), 404)
    return api_key, None


@api_bp.route('/api-keys/<int:key_id>', methods=['DELETE'])
@api_login_required
def revoke_api_key(key_id):
    api_key, error = _own_key(key_id)
    if error:
        return error
    if not api_key.is_active:
        return jsonify({'error': 'API key already revoked'}), 400
    deactivate_api_key(api_key, reason='REVOKED', actor=current_user)
    return jsonify({'message': 'API key revoked'})


@api_bp.route('/api-keys/<int:key_id>/rotate', methods=['POST'])
@api_login_required
@limiter.limit("10 per hour")
def rotate_key(key_id):
    api_key, error = _own_key(key_id)
    if error:
        return error
    if not api_key.is_active:
        return jsonify({'error': 'Cannot rotate a revoked API key'}), 400
    raw_key = rotate_api_key(api_key)
    return jsonify({'message': 'API key rotated', 'api_key': raw_key, 'key': api_key.to_dict()})
