"""
BGuard Endpoint Discovery Routes

Start a crawl of an asset's domain, poll its status and read or export
the classified endpoints.
"""

import logging
from flask import jsonify, request, current_app
from flask_login import current_user

from bguard import db, limiter
from bguard.ai import get_llm_service
from bguard.api import api_bp
from bguard.api.helpers import api_login_required, get_json_body, get_accessible, csv_response
from bguard.discovery import run_discovery, validate_discovery_target
from bguard.models import (
    ApplicationAsset, EndpointDiscoverySession, DiscoveredEndpoint, DiscoveryStatus,
    EndpointRiskLevel, EndpointType, ActivityStatus
)
from bguard.models.base import parse_enum
from bguard.security.activity import log_activity

logger = logging.getLogger(__name__)
security_logger = logging.getLogger('security')

EXPORT_COLUMNS = [
    'url', 'method', 'path', 'status_code', 'content_type', 'endpoint_type', 'sensitivity',
    'risk_score', 'risk_level', 'function_purpose', 'security_concerns', 'is_anomaly', 'depth',
    'discovery_method',
]


def _get_session(session_id):
    """Discovery session whose asset the current user may access."""
    session = db.session.get(EndpointDiscoverySession, session_id)
    if session is None:
        return None, (jsonify({'error': 'Discovery session not found'}), 404)
    _, error = get_accessible(ApplicationAsset, session.asset_id, 'Asset')
    if error:
        return None, error
    return session, None


@api_bp.route('/assets/<int:asset_id>/discovery', methods=['POST'])
@api_login_required
@limiter.limit("10 per hour")
def start_discovery(asset_id):
    """
    Crawl and classify the endpoints of a domain.

    Request body:
    {
        "domain": "app.example.com",      (defaults to the asset's application URL)
        "max_depth": 3,                   (1-10)
        "include_subdomains": false
    }
    """
    asset, error = get_accessible(ApplicationAsset, asset_id, 'Asset')
    if error:
        return error

    data = get_json_body()
    target = data.get('domain') or asset.application_url
    try:
        domain, start_url = validate_discovery_target(
            target, allow_private=current_app.config.get('DISCOVERY_ALLOW_PRIVATE_HOSTS', False))
    except ValueError as e:
        security_logger.warning(f"Rejected discovery target from user {current_user.id}: {e}")
        return jsonify({'error': str(e)}), 400

    try:
        max_depth = int(data.get('max_depth', current_app.config.get('DISCOVERY_MAX_DEPTH', 3)))
    except (TypeError, ValueError):
        return jsonify({'error': 'max_depth must be an integer'}), 400
    if max_depth < 1 or max_depth > 10:
        return jsonify({'error': 'max_depth must be between 1 and 10'}), 400

    active = EndpointDiscoverySession.query.filter(
        EndpointDiscoverySession.asset_id == asset.id,
        EndpointDiscoverySession.domain == domain,
        EndpointDiscoverySession.status.in_(DiscoveryStatus.active()),
    ).first()
    if active:
        return jsonify({'error': 'A discovery session is already running for this domain',
                        'session_id': active.id}), 409

    session = EndpointDiscoverySession(
        asset_id=asset.id,
        domain=domain,
        start_url=start_url,
        status=DiscoveryStatus.PENDING,
        max_depth=max_depth,
        include_subdomains=bool(data.get('include_subdomains', False)),
        created_by=current_user.id,
    )
    db.session.add(session)
    db.session.commit()

    run_discovery(session, get_llm_service())

    failed = session.status == DiscoveryStatus.FAILED
    log_activity('START_ENDPOINT_DISCOVERY', user=current_user,
                 status=ActivityStatus.FAILED if failed else ActivityStatus.SUCCESS,
                 entity_type='asset', entity_id=asset.id, error_message=session.error_message,
                 details={'session_id': session.id, 'domain': domain,
                          'total_endpoints': session.total_endpoints})
    return jsonify({'message': 'Discovery failed' if failed else 'Discovery completed',
                    'session': session.to_dict()}), 201


@api_bp.route('/assets/<int:asset_id>/discovery', methods=['GET'])
@api_login_required
def list_discovery_sessions(asset_id):
    asset, error = get_accessible(ApplicationAsset, asset_id, 'Asset')
    if error:
        return error
    sessions = asset.discovery_sessions.order_by(EndpointDiscoverySession.created_at.desc()).all()
    return jsonify({'sessions': [s.to_dict() for s in sessions]})


@api_bp.route('/discovery/<int:session_id>', methods=['GET'])
@api_login_required
def discovery_status(session_id):
    session, error = _get_session(session_id)
    if error:
        return error
    return jsonify(session.to_dict())


@api_bp.route('/discovery/<int:session_id>/endpoints', methods=['GET'])
@api_login_required
def discovery_results(session_id):
    """Endpoints of a session, highest risk first. Query args: risk_level, endpoint_type."""
    session, error = _get_session(session_id)
    if error:
        return error

    query = session.endpoints
    try:
        risk = parse_enum(EndpointRiskLevel, request.args.get('risk_level'), 'risk_level')
        endpoint_type = parse_enum(EndpointType, request.args.get('endpoint_type'), 'endpoint_type')
    except ValueError as e:
        return jsonify({'error': str(e)}), 400
    if risk:
        query = query.filter(DiscoveredEndpoint.risk_level == risk)
    if endpoint_type:
        query = query.filter(DiscoveredEndpoint.endpoint_type == endpoint_type)

    endpoints = query.order_by(DiscoveredEndpoint.risk_score.desc(), DiscoveredEndpoint.url).all()
    return jsonify({'session': session.to_dict(), 'endpoints': [e.to_dict() for e in endpoints],
                    'total': len(endpoints)})


@api_bp.route('/discovery/<int:session_id>/export', methods=['GET'])
@api_login_required
@limiter.limit("20 per hour")
def export_discovery(session_id):
    session, error = _get_session(session_id)
    if error:
        return error

    endpoints = session.endpoints.order_by(DiscoveredEndpoint.risk_score.desc()).all()
    log_activity('EXPORT_DISCOVERY', user=current_user, entity_type='asset', entity_id=session.asset_id,
                 details={'session_id': session.id, 'count': len(endpoints)})
    return csv_response([e.to_dict() for e in endpoints], EXPORT_COLUMNS,
                        f'discovery_{session.domain}_{session.id}.csv')
