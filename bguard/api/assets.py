"""
BGuard Asset Inventory Routes

Application asset CRUD, links to threat models and design reviews,
inventory statistics, export and bulk operations.
"""

import logging
from datetime import datetime
from flask import jsonify, request
from flask_login import current_user
from sqlalchemy import func

from bguard import db, limiter
from bguard.api import api_bp
from bguard.api.helpers import (
    api_login_required, get_json_body, scoped_query, get_accessible, paginate, export_response
)
from bguard.models import (
    ApplicationAsset, AssetType, AssetStatus, BusinessCriticality, DataClassification, Environment,
    ReviewStatus, AssetThreatModelLink, AssetDesignReviewLink, ThreatModel, DesignReview
)
from bguard.models.base import parse_enum, require_enum
from bguard.security.activity import log_activity

logger = logging.getLogger(__name__)
security_logger = logging.getLogger('security')

ENUM_FIELDS = (
    ('asset_type', AssetType),
    ('status', AssetStatus),
    ('business_criticality', BusinessCriticality),
    ('data_classification', DataClassification),
    ('environment', Environment),
)

EXPORT_COLUMNS = [
    'id', 'name', 'asset_type', 'status', 'business_criticality', 'data_classification',
    'environment', 'owner', 'team', 'application_url', 'tech_stack', 'compliance_requirements',
    'threat_model_status', 'design_review_status', 'created_at',
]


def apply_asset_fields(asset, data):
    """Copy client-settable fields from ``data`` onto ``asset``."""
    if 'name' in data:
        asset.name = ApplicationAsset.validate_name(data['name'])
    for field, enum_cls in ENUM_FIELDS:
        if field in data:
            setattr(asset, field, require_enum(enum_cls, data[field], field))
    for field in ApplicationAsset.TEXT_FIELDS:
        if field in data:
            setattr(asset, field, data[field])
    for field in ApplicationAsset.FLAG_FIELDS:
        if field in data:
            setattr(asset, field, bool(data[field]))
    for field in ApplicationAsset.LIST_FIELDS:
        if field in data:
            value = data[field]
            if isinstance(value, str):
                value = [v.strip() for v in value.split(',') if v.strip()]
            if not isinstance(value, list):
                raise ValueError(f"{field} must be a list")
            setattr(asset, field, value)


@api_bp.route('/assets', methods=['GET'])
@api_login_required
def list_assets():
    """
    Assets in scope.

    Query args: search, asset_type, status, business_criticality,
    environment, page, per_page.
    """
    query = scoped_query(ApplicationAsset)
    try:
        for field, enum_cls in ENUM_FIELDS:
            value = parse_enum(enum_cls, request.args.get(field), field)
            if value:
                query = query.filter(getattr(ApplicationAsset, field) == value)
    except ValueError as e:
        return jsonify({'error': str(e)}), 400

    search = (request.args.get('search') or '').strip()
    if search:
        pattern = f'%{search}%'
        query = query.filter(db.or_(
            ApplicationAsset.name.ilike(pattern),
            ApplicationAsset.description.ilike(pattern),
            ApplicationAsset.owner.ilike(pattern),
            ApplicationAsset.team.ilike(pattern),
        ))

    return jsonify(paginate(query.order_by(ApplicationAsset.created_at.desc()),
                            lambda a: a.to_dict(), key='assets'))


@api_bp.route('/assets', methods=['POST'])
@api_login_required
@limiter.limit("100 per hour")
def create_asset():
    """Create an asset; name and asset_type are required."""
    data = get_json_body()
    if not data.get('name') or not data.get('asset_type'):
        return jsonify({'error': 'Name and asset type are required'}), 400

    try:
        asset = ApplicationAsset(
            status=AssetStatus.ACTIVE,
            business_criticality=BusinessCriticality.MEDIUM,
            data_classification=DataClassification.INTERNAL,
            environment=Environment.PRODUCTION,
            threat_model_status=ReviewStatus.NOT_STARTED,
            design_review_status=ReviewStatus.NOT_STARTED,
            user_id=current_user.id,
            organization_id=current_user.organization_id,
        )
        apply_asset_fields(asset, data)
        db.session.add(asset)
        db.session.commit()
    except ValueError as e:
        db.session.rollback()
        return jsonify({'error': str(e)}), 400
    except Exception as e:
        db.session.rollback()
        security_logger.error(f"Asset creation error: {e}")
        return jsonify({'error': 'Failed to create asset'}), 500

    log_activity('CREATE_ASSET', user=current_user, entity_type='asset', entity_id=asset.id,
                 description=f"Created asset {asset.name}")
    return jsonify({'message': 'Asset created', 'asset': asset.to_dict()}), 201


@api_bp.route('/assets/stats', methods=['GET'])
@api_login_required
def asset_stats():
    """Inventory counts by type, status and criticality, plus high-risk assets."""
    query = scoped_query(ApplicationAsset)

    def grouped(column):
        return {value.value: count
                for value, count in query.with_entities(column, func.count(ApplicationAsset.id)).group_by(column)
                if value is not None}

    assets = query.all()
    high_risk = [a for a in assets if a.is_high_risk]
    return jsonify({
        'total': len(assets),
        'by_type': grouped(ApplicationAsset.asset_type),
        'by_status': grouped(ApplicationAsset.status),
        'by_criticality': grouped(ApplicationAsset.business_criticality),
        'by_environment': grouped(ApplicationAsset.environment),
        'threat_model_coverage': sum(1 for a in assets if a.threat_model_status == ReviewStatus.COMPLETED),
        'design_review_coverage': sum(1 for a in assets if a.design_review_status == ReviewStatus.COMPLETED),
        'high_risk_count': len(high_risk),
        'high_risk_assets': [{'id': a.id, 'name': a.name} for a in high_risk[:10]],
    })


@api_bp.route('/assets/export', methods=['GET'])
@api_login_required
@limiter.limit("20 per hour")
def export_assets():
    assets = scoped_query(ApplicationAsset).order_by(ApplicationAsset.name).all()
    log_activity('EXPORT_ASSETS', user=current_user, details={'count': len(assets),
                                                              'format': request.args.get('format', 'json')})
    return export_response([a.to_dict() for a in assets], EXPORT_COLUMNS, 'assets')


@api_bp.route('/assets/bulk', methods=['POST'])
@api_login_required
@limiter.limit("30 per hour")
def bulk_assets():
    """
    Bulk status update or delete.

    Request body: {"asset_ids": [1, 2], "action": "update_status", "status": "RETIRED"}
    or {"asset_ids": [1, 2], "action": "delete"}
    """
    data = get_json_body()
    ids = data.get('asset_ids')
    action = data.get('action')
    if not isinstance(ids, list) or not ids:
        return jsonify({'error': 'asset_ids must be a non-empty list'}), 400
    if action not in ('update_status', 'delete'):
        return jsonify({'error': 'Action must be update_status or delete'}), 400

    try:
        status = parse_enum(AssetStatus, data.get('status'), 'status') if action == 'update_status' else None
    except ValueError as e:
        return jsonify({'error': str(e)}), 400
    if action == 'update_status' and status is None:
        return jsonify({'error': 'Status is required'}), 400

    assets = scoped_query(ApplicationAsset).filter(ApplicationAsset.id.in_(ids)).all()
    for asset in assets:
        if action == 'delete':
            db.session.delete(asset)
        else:
            asset.status = status
    db.session.commit()

    log_activity('BULK_ASSET_OPERATION', user=current_user, entity_type='asset',
                 details={'action': action, 'requested': len(ids), 'affected': len(assets)})
    return jsonify({'message': f'{len(assets)} assets processed', 'affected': len(assets)})


@api_bp.route('/assets/<int:asset_id>', methods=['GET'])
@api_login_required
def get_asset(asset_id):
    asset, error = get_accessible(ApplicationAsset, asset_id, 'Asset')
    if error:
        return error
    return jsonify(asset.to_dict(include_links=True))


@api_bp.route('/assets/<int:asset_id>', methods=['PUT'])
@api_login_required
def update_asset(asset_id):
    asset, error = get_accessible(ApplicationAsset, asset_id, 'Asset')
    if error:
        return error

    data = get_json_body()
    try:
        apply_asset_fields(asset, data)
        db.session.commit()
    except ValueError as e:
        db.session.rollback()
        return jsonify({'error': str(e)}), 400

    log_activity('UPDATE_ASSET', user=current_user, entity_type='asset', entity_id=asset.id,
                 details={'fields': sorted(data.keys())})
    return jsonify({'message': 'Asset updated', 'asset': asset.to_dict()})


@api_bp.route('/assets/<int:asset_id>', methods=['DELETE'])
@api_login_required
def delete_asset(asset_id):
    asset, error = get_accessible(ApplicationAsset, asset_id, 'Asset')
    if error:
        return error

    name = asset.name
    db.session.delete(asset)
    db.session.commit()
    log_activity('DELETE_ASSET', user=current_user, entity_type='asset', entity_id=asset_id,
                 description=f"Deleted asset {name}")
    return jsonify({'message': 'Asset deleted'})


@api_bp.route('/assets/<int:asset_id>/threat-models', methods=['POST'])
@api_login_required
def link_threat_model(asset_id):
    """Request body: {"threat_model_id": 5}"""
    asset, error = get_accessible(ApplicationAsset, asset_id, 'Asset')
    if error:
        return error
    threat_model, error = get_accessible(ThreatModel, get_json_body().get('threat_model_id'), 'Threat model')
    if error:
        return error

    if asset.threat_model_links.filter_by(threat_model_id=threat_model.id).first():
        return jsonify({'error': 'Threat model already linked to this asset'}), 400

    db.session.add(AssetThreatModelLink(asset_id=asset.id, threat_model_id=threat_model.id,
                                        linked_by=current_user.id))
    asset.threat_model_status = ReviewStatus.COMPLETED
    asset.last_security_review = datetime.utcnow()
    db.session.commit()

    log_activity('LINK_ASSET_THREAT_MODEL', user=current_user, entity_type='asset', entity_id=asset.id,
                 details={'threat_model_id': threat_model.id})
    return jsonify({'message': 'Threat model linked', 'asset': asset.to_dict(include_links=True)}), 201


@api_bp.route('/assets/<int:asset_id>/threat-models/<int:threat_model_id>', methods=['DELETE'])
@api_login_required
def unlink_threat_model(asset_id, threat_model_id):
    asset, error = get_accessible(ApplicationAsset, asset_id, 'Asset')
    if error:
        return error

    link = asset.threat_model_links.filter_by(threat_model_id=threat_model_id).first()
    if link is None:
        return jsonify({'error': 'Threat model is not linked to this asset'}), 404
    db.session.delete(link)
    db.session.flush()
    asset.refresh_threat_model_status()
    db.session.commit()

    log_activity('UNLINK_ASSET_THREAT_MODEL', user=current_user, entity_type='asset', entity_id=asset.id,
                 details={'threat_model_id': threat_model_id})
    return jsonify({'message': 'Threat model unlinked', 'asset': asset.to_dict(include_links=True)})


@api_bp.route('/assets/<int:asset_id>/design-reviews', methods=['POST'])
@api_login_required
def link_asset_design_review(asset_id):
    """Request body: {"design_review_id": 2}"""
    asset, error = get_accessible(ApplicationAsset, asset_id, 'Asset')
    if error:
        return error
    review, error = get_accessible(DesignReview, get_json_body().get('design_review_id'), 'Design review')
    if error:
        return error

    if asset.design_review_links.filter_by(design_review_id=review.id).first():
        return jsonify({'error': 'Design review already linked to this asset'}), 400

    db.session.add(AssetDesignReviewLink(asset_id=asset.id, design_review_id=review.id,
                                         linked_by=current_user.id))
    asset.design_review_status = ReviewStatus.COMPLETED
    asset.last_security_review = datetime.utcnow()
    db.session.commit()

    log_activity('LINK_ASSET_DESIGN_REVIEW', user=current_user, entity_type='asset', entity_id=asset.id,
                 details={'design_review_id': review.id})
    return jsonify({'message': 'Design review linked', 'asset': asset.to_dict(include_links=True)}), 201


@api_bp.route('/assets/<int:asset_id>/design-reviews/<int:design_review_id>', methods=['DELETE'])
@api_login_required
def unlink_asset_design_review(asset_id, design_review_id):
    asset, error = get_accessible(ApplicationAsset, asset_id, 'Asset')
    if error:
        return error

    link = asset.design_review_links.filter_by(design_review_id=design_review_id).first()
    if link is None:
        return jsonify({'error': 'Design review is not linked to this asset'}), 404
    db.session.delete(link)
    db.session.flush()
    asset.refresh_design_review_status()
    db.session.commit()

    log_activity('UNLINK_ASSET_DESIGN_REVIEW', user=current_user, entity_type='asset', entity_id=asset.id,
                 details={'design_review_id': design_review_id})
    return jsonify({'message': 'Design review unlinked', 'asset': asset.to_dict(include_links=True)})
