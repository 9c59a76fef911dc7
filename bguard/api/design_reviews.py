"""
BGuard Design Review Routes

Design review CRUD, AI-assisted architecture analysis, asset links,
statistics, export and bulk status changes.
"""

import logging
from datetime import datetime
from flask import jsonify, request
from flask_login import current_user
from sqlalchemy import func

from bguard import db, limiter
from bguard.ai import DesignAnalyzer, get_llm_service
from bguard.api import api_bp
from bguard.api.helpers import (
    api_login_required, get_json_body, scoped_query, get_accessible, paginate, export_response
)
from bguard.models import (
    DesignReview, DesignReviewType, DesignReviewStatus, SystemType, SecurityGrade, RiskLevel,
    ApplicationAsset, AssetDesignReviewLink, ReviewStatus, ActivityStatus
)
from bguard.models.base import parse_enum
from bguard.security.activity import log_activity

logger = logging.getLogger(__name__)

FILTERS = (
    ('status', DesignReviewStatus, DesignReview.status),
    ('review_type', DesignReviewType, DesignReview.review_type),
    ('system_type', SystemType, DesignReview.system_type),
    ('security_grade', SecurityGrade, DesignReview.security_grade),
    ('risk_level', RiskLevel, DesignReview.overall_risk),
)

EXPORT_COLUMNS = [
    'id', 'name', 'review_type', 'system_type', 'status', 'progress', 'security_score',
    'security_grade', 'overall_risk', 'compliance_score', 'last_analysis_date', 'created_at',
]


def apply_review_fields(review, data):
    if 'name' in data:
        review.name = DesignReview.validate_name(data['name'])
    if 'review_type' in data:
        review.review_type = parse_enum(DesignReviewType, data['review_type'], 'review_type',
                                        DesignReviewType.ARCHITECTURE)
    if 'system_type' in data:
        review.system_type = parse_enum(SystemType, data['system_type'], 'system_type',
                                        SystemType.WEB_APPLICATION)
    if 'overall_risk' in data:
        review.overall_risk = parse_enum(RiskLevel, data['overall_risk'], 'overall_risk', RiskLevel.MEDIUM)
    if 'status' in data:
        review.status = parse_enum(DesignReviewStatus, data['status'], 'status', review.status)
    for field in DesignReview.TEXT_FIELDS:
        if field in data:
            setattr(review, field, data[field])
    if 'compliance_frameworks' in data:
        frameworks = data['compliance_frameworks'] or []
        if not isinstance(frameworks, list):
            raise ValueError("compliance_frameworks must be a list")
        review.compliance_frameworks = frameworks
    review.last_modified_by = current_user.id


@api_bp.route('/design-reviews', methods=['GET'])
@api_login_required
def list_design_reviews():
    """
    Design reviews in scope.

    Query args: search, status, review_type, system_type, security_grade,
    risk_level, page, limit.
    """
    query = scoped_query(DesignReview)
    try:
        for arg, enum_cls, column in FILTERS:
            value = parse_enum(enum_cls, request.args.get(arg), arg)
            if value:
                query = query.filter(column == value)
    except ValueError as e:
        return jsonify({'error': str(e)}), 400

    search = (request.args.get('search') or '').strip()
    if search:
        pattern = f'%{search}%'
        query = query.filter(db.or_(
            DesignReview.name.ilike(pattern),
            DesignReview.description.ilike(pattern),
            DesignReview.scope.ilike(pattern),
        ))

    return jsonify(paginate(query.order_by(DesignReview.created_at.desc()), lambda r: r.to_dict(),
                            key='design_reviews', default_per_page=10, per_page_arg='limit'))


@api_bp.route('/design-reviews', methods=['POST'])
@api_login_required
@limiter.limit("50 per hour")
def create_design_review():
    data = get_json_body()
    if not data.get('name'):
        return jsonify({'error': 'Name is required'}), 400

    try:
        review = DesignReview(
            review_type=DesignReviewType.ARCHITECTURE,
            system_type=SystemType.WEB_APPLICATION,
            overall_risk=RiskLevel.MEDIUM,
            status=DesignReviewStatus.DRAFT,
            progress=0,
            user_id=current_user.id,
            organization_id=current_user.organization_id,
        )
        apply_review_fields(review, data)
        db.session.add(review)
        db.session.commit()
    except ValueError as e:
        db.session.rollback()
        return jsonify({'error': str(e)}), 400

    log_activity('CREATE_DESIGN_REVIEW', user=current_user, entity_type='design_review',
                 entity_id=review.id, description=f"Created design review {review.name}")
    return jsonify({'message': 'Design review created', 'design_review': review.to_dict()}), 201


@api_bp.route('/design-reviews/stats', methods=['GET'])
@api_login_required
def design_review_stats():
    query = scoped_query(DesignReview)

    def grouped(column):
        return {value.value: count
                for value, count in query.with_entities(column, func.count(DesignReview.id)).group_by(column)
                if value is not None}

    average = query.with_entities(func.avg(DesignReview.security_score)).scalar()
    return jsonify({
        'total': query.count(),
        'by_status': grouped(DesignReview.status),
        'by_type': grouped(DesignReview.review_type),
        'by_grade': grouped(DesignReview.security_grade),
        'by_risk': grouped(DesignReview.overall_risk),
        'average_security_score': round(average) if average is not None else None,
    })


@api_bp.route('/design-reviews/export', methods=['GET'])
@api_login_required
@limiter.limit("20 per hour")
def export_design_reviews():
    reviews = scoped_query(DesignReview).order_by(DesignReview.created_at.desc()).all()
    log_activity('EXPORT_DESIGN_REVIEWS', user=current_user, details={'count': len(reviews)})
    return export_response([r.to_dict() for r in reviews], EXPORT_COLUMNS, 'design_reviews')


@api_bp.route('/design-reviews/bulk', methods=['POST'])
@api_login_required
def bulk_design_reviews():
    """Request body: {"review_ids": [1, 2], "status": "ARCHIVED"}"""
    data = get_json_body()
    ids = data.get('review_ids')
    if not isinstance(ids, list) or not ids:
        return jsonify({'error': 'review_ids must be a non-empty list'}), 400
    try:
        status = parse_enum(DesignReviewStatus, data.get('status'), 'status')
    except ValueError as e:
        return jsonify({'error': str(e)}), 400
    if status is None:
        return jsonify({'error': 'Status is required'}), 400

    reviews = scoped_query(DesignReview).filter(DesignReview.id.in_(ids)).all()
    for review in reviews:
        review.status = status
        review.last_modified_by = current_user.id
    db.session.commit()

    log_activity('BULK_UPDATE_DESIGN_REVIEWS', user=current_user, entity_type='design_review',
                 details={'status': status.value, 'affected': len(reviews)})
    return jsonify({'message': f'{len(reviews)} design reviews updated', 'affected': len(reviews)})


@api_bp.route('/design-reviews/<int:review_id>', methods=['GET'])
@api_login_required
def get_design_review(review_id):
    review, error = get_accessible(DesignReview, review_id, 'Design review')
    if error:
        return error
    return jsonify(review.to_dict(include_results=True))


@api_bp.route('/design-reviews/<int:review_id>', methods=['PUT'])
@api_login_required
def update_design_review(review_id):
    review, error = get_accessible(DesignReview, review_id, 'Design review')
    if error:
        return error

    data = get_json_body()
    try:
        apply_review_fields(review, data)
        db.session.commit()
    except ValueError as e:
        db.session.rollback()
        return jsonify({'error': str(e)}), 400

    log_activity('UPDATE_DESIGN_REVIEW', user=current_user, entity_type='design_review',
                 entity_id=review.id, details={'fields': sorted(data.keys())})
    return jsonify({'message': 'Design review updated', 'design_review': review.to_dict()})


@api_bp.route('/design-reviews/<int:review_id>', methods=['DELETE'])
@api_login_required
def delete_design_review(review_id):
    review, error = get_accessible(DesignReview, review_id, 'Design review')
    if error:
        return error

    name = review.name
    assets = [link.asset for link in review.asset_links]
    db.session.delete(review)
    db.session.flush()
    for asset in assets:
        asset.refresh_design_review_status()
    db.session.commit()

    log_activity('DELETE_DESIGN_REVIEW', user=current_user, entity_type='design_review',
                 entity_id=review_id, description=f"Deleted design review {name}")
    return jsonify({'message': 'Design review deleted'})


@api_bp.route('/design-reviews/<int:review_id>/analyze', methods=['POST'])
@api_login_required
@limiter.limit("20 per hour")
def analyze_design_review(review_id):
    """Score the review's architecture description and store the results."""
    review, error = get_accessible(DesignReview, review_id, 'Design review')
    if error:
        return error
    if not (review.architecture_description or '').strip():
        return jsonify({'error': 'Architecture description is required for analysis'}), 400

    review.status = DesignReviewStatus.IN_PROGRESS
    review.progress = 25
    db.session.commit()

    try:
        analysis = DesignAnalyzer(get_llm_service()).analyze(
            review.architecture_description,
            tech_stack=review.tech_stack,
            system_type=review.system_type.value if review.system_type else None,
            compliance_frameworks=review.compliance_frameworks,
        )
        review.security_score = analysis.security_score
        review.security_grade = parse_enum(SecurityGrade, analysis.security_grade, 'security_grade')
        review.overall_risk = parse_enum(RiskLevel, analysis.overall_risk, 'overall_risk', RiskLevel.MEDIUM)
        review.domain_scores = analysis.domain_scores
        review.security_findings = analysis.security_findings
        review.recommendations = analysis.recommendations
        review.prioritized_actions = analysis.prioritized_actions
        review.compliance_score = analysis.compliance_score
        review.compliance_gaps = analysis.compliance_gaps
        review.analysis_results = analysis.raw
        review.last_analysis_date = datetime.utcnow()
        review.review_completed_date = review.last_analysis_date
        review.status = DesignReviewStatus.COMPLETED
        review.progress = 100
        db.session.commit()
    except Exception as e:
        db.session.rollback()
        logger.error(f"Design analysis failed for review {review_id}: {e}")
        review.status = DesignReviewStatus.DRAFT
        review.progress = 0
        db.session.commit()
        log_activity('START_DESIGN_ANALYSIS', user=current_user, status=ActivityStatus.FAILED,
                     entity_type='design_review', entity_id=review.id, error_message=str(e)[:500])
        return jsonify({'error': 'Design analysis failed'}), 500

    log_activity('START_DESIGN_ANALYSIS', user=current_user, entity_type='design_review',
                 entity_id=review.id, details={'security_score': review.security_score,
                                               'analysis_method': analysis.method})
    return jsonify({'message': 'Analysis completed', 'design_review': review.to_dict(include_results=True)})


@api_bp.route('/design-reviews/<int:review_id>/assets', methods=['POST'])
@api_login_required
def link_design_review_asset(review_id):
    """Request body: {"asset_id": 4}"""
    review, error = get_accessible(DesignReview, review_id, 'Design review')
    if error:
        return error
    asset, error = get_accessible(ApplicationAsset, get_json_body().get('asset_id'), 'Asset')
    if error:
        return error

    if review.asset_links.filter_by(asset_id=asset.id).first():
        return jsonify({'error': 'Asset already linked to this design review'}), 400

    db.session.add(AssetDesignReviewLink(asset_id=asset.id, design_review_id=review.id,
                                         linked_by=current_user.id))
    asset.design_review_status = ReviewStatus.COMPLETED
    asset.last_security_review = datetime.utcnow()
    db.session.commit()
    return jsonify({'message': 'Asset linked', 'design_review': review.to_dict()}), 201


@api_bp.route('/design-reviews/<int:review_id>/assets/<int:asset_id>', methods=['DELETE'])
@api_login_required
def unlink_design_review_asset(review_id, asset_id):
    review, error = get_accessible(DesignReview, review_id, 'Design review')
    if error:
        return error

    link = review.asset_links.filter_by(asset_id=asset_id).first()
    if link is None:
        return jsonify({'error': 'Asset is not linked to this design review'}), 404
    asset = link.asset
    db.session.delete(link)
    db.session.flush()
    asset.refresh_design_review_status()
    db.session.commit()
    return jsonify({'message': 'Asset unlinked', 'design_review': review.to_dict()})
