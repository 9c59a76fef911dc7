"""
BGuard Third-Party Review Routes

Vendor application reviews: CRUD, passive security scans, statistics,
export and bulk operations.
"""

import logging
from datetime import datetime, timedelta
from flask import current_app, jsonify, request
from flask_login import current_user
from sqlalchemy import func

from bguard import db, limiter
from bguard.ai import VendorAnalyzer, get_llm_service
from bguard.api import api_bp
from bguard.api.helpers import (
    api_login_required, get_json_body, scoped_query, get_accessible, paginate, export_response
)
from bguard.discovery import observe_site, validate_discovery_target
from bguard.models import (
    ThirdPartyReview, ThirdPartyReviewStatus, ScanFrequency, SecurityGrade, RiskLevel,
    BusinessCriticality, DataClassification, ActivityStatus
)
from bguard.models.base import parse_enum
from bguard.security.activity import log_activity

logger = logging.getLogger(__name__)
security_logger = logging.getLogger('security')

SCAN_INTERVALS = {
    ScanFrequency.WEEKLY: 7,
    ScanFrequency.MONTHLY: 30,
    ScanFrequency.QUARTERLY: 90,
    ScanFrequency.YEARLY: 365,
}

EXPORT_COLUMNS = [
    'id', 'name', 'vendor', 'application_url', 'status', 'scan_frequency', 'overall_score',
    'security_grade', 'risk_level', 'tls_grade', 'headers_score', 'privacy_policy_status',
    'terms_of_service_status', 'last_scan_date', 'next_scan_date',
]


def next_scan_date(frequency, scanned_at):
    days = SCAN_INTERVALS.get(frequency)
    return scanned_at + timedelta(days=days) if days else None


def check_scan_target(url):
    """Refuse vendor URLs on loopback, private or link-local hosts."""
    validate_discovery_target(url, allow_private=current_app.config.get('DISCOVERY_ALLOW_PRIVATE_HOSTS', False))


def apply_vendor_fields(review, data):
    if 'name' in data:
        review.name = ThirdPartyReview.validate_name(data['name'])
    if 'application_url' in data:
        review.application_url = ThirdPartyReview.validate_url(data['application_url'])
        check_scan_target(review.application_url)
    for field in ThirdPartyReview.TEXT_FIELDS:
        if field in data:
            setattr(review, field, data[field])
    if 'data_processing_agreement' in data:
        review.data_processing_agreement = bool(data['data_processing_agreement'])
    if 'data_types' in data:
        types = data['data_types'] or []
        if not isinstance(types, list):
            raise ValueError("data_types must be a list")
        review.data_types = types
    if 'scan_frequency' in data:
        review.scan_frequency = parse_enum(ScanFrequency, data['scan_frequency'], 'scan_frequency',
                                           ScanFrequency.MANUAL)
    if 'data_classification' in data:
        review.data_classification = parse_enum(DataClassification, data['data_classification'],
                                                'data_classification', DataClassification.INTERNAL)
    if 'business_criticality' in data:
        review.business_criticality = parse_enum(BusinessCriticality, data['business_criticality'],
                                                 'business_criticality', BusinessCriticality.MEDIUM)


@api_bp.route('/third-party-reviews', methods=['GET'])
@api_login_required
def list_third_party_reviews():
    """Query args: search, status, risk_level, security_grade, vendor, page, per_page."""
    query = scoped_query(ThirdPartyReview)
    try:
        status = parse_enum(ThirdPartyReviewStatus, request.args.get('status'), 'status')
        risk = parse_enum(RiskLevel, request.args.get('risk_level'), 'risk_level')
        grade = parse_enum(SecurityGrade, request.args.get('security_grade'), 'security_grade')
    except ValueError as e:
        return jsonify({'error': str(e)}), 400

    if status:
        query = query.filter(ThirdPartyReview.status == status)
    if risk:
        query = query.filter(ThirdPartyReview.risk_level == risk)
    if grade:
        query = query.filter(ThirdPartyReview.security_grade == grade)
    if request.args.get('vendor'):
        query = query.filter(ThirdPartyReview.vendor.ilike(request.args['vendor']))
    search = (request.args.get('search') or '').strip()
    if search:
        pattern = f'%{search}%'
        query = query.filter(db.or_(
            ThirdPartyReview.name.ilike(pattern),
            ThirdPartyReview.vendor.ilike(pattern),
            ThirdPartyReview.application_url.ilike(pattern),
        ))

    return jsonify(paginate(query.order_by(ThirdPartyReview.created_at.desc()), lambda r: r.to_dict(),
                            key='third_party_reviews'))


@api_bp.route('/third-party-reviews', methods=['POST'])
@api_login_required
@limiter.limit("50 per hour")
def create_third_party_review():
    """Name and application_url are required."""
    data = get_json_body()
    if not data.get('name') or not data.get('application_url'):
        return jsonify({'error': 'Name and application URL are required'}), 400

    try:
        review = ThirdPartyReview(
            status=ThirdPartyReviewStatus.PENDING,
            scan_frequency=ScanFrequency.MANUAL,
            user_id=current_user.id,
            organization_id=current_user.organization_id,
        )
        apply_vendor_fields(review, data)
        db.session.add(review)
        db.session.commit()
    except ValueError as e:
        db.session.rollback()
        return jsonify({'error': str(e)}), 400

    log_activity('CREATE_THIRD_PARTY_REVIEW', user=current_user, entity_type='third_party_review',
                 entity_id=review.id, description=f"Created third-party review {review.name}")
    return jsonify({'message': 'Third-party review created', 'third_party_review': review.to_dict()}), 201


@api_bp.route('/third-party-reviews/stats', methods=['GET'])
@api_login_required
def third_party_review_stats():
    query = scoped_query(ThirdPartyReview)

    def grouped(column):
        return {value.value: count
                for value, count in query.with_entities(column, func.count(ThirdPartyReview.id)).group_by(column)
                if value is not None}

    average = query.with_entities(func.avg(ThirdPartyReview.overall_score)).scalar()
    due = query.filter(ThirdPartyReview.next_scan_date.isnot(None),
                       ThirdPartyReview.next_scan_date <= datetime.utcnow()).count()
    return jsonify({
        'total': query.count(),
        'by_status': grouped(ThirdPartyReview.status),
        'by_risk_level': grouped(ThirdPartyReview.risk_level),
        'by_grade': grouped(ThirdPartyReview.security_grade),
        'average_score': round(average) if average is not None else None,
        'scans_due': due,
    })


@api_bp.route('/third-party-reviews/export', methods=['GET'])
@api_login_required
@limiter.limit("20 per hour")
def export_third_party_reviews():
    reviews = scoped_query(ThirdPartyReview).order_by(ThirdPartyReview.name).all()
    log_activity('EXPORT_THIRD_PARTY_REVIEWS', user=current_user, details={'count': len(reviews)})
    return export_response([r.to_dict() for r in reviews], EXPORT_COLUMNS, 'third_party_reviews')


@api_bp.route('/third-party-reviews/bulk', methods=['POST'])
@api_login_required
def bulk_third_party_reviews():
    """
    Request body: {"review_ids": [1, 2], "action": "delete"}
    or {"review_ids": [1, 2], "action": "update_frequency", "scan_frequency": "MONTHLY"}
    """
    data = get_json_body()
    ids = data.get('review_ids')
    action = data.get('action')
    if not isinstance(ids, list) or not ids:
        return jsonify({'error': 'review_ids must be a non-empty list'}), 400
    if action not in ('delete', 'update_frequency'):
        return jsonify({'error': 'Action must be delete or update_frequency'}), 400

    frequency = None
    if action == 'update_frequency':
        try:
            frequency = parse_enum(ScanFrequency, data.get('scan_frequency'), 'scan_frequency')
        except ValueError as e:
            return jsonify({'error': str(e)}), 400
        if frequency is None:
            return jsonify({'error': 'Scan frequency is required'}), 400

    reviews = scoped_query(ThirdPartyReview).filter(ThirdPartyReview.id.in_(ids)).all()
    for review in reviews:
        if action == 'delete':
            db.session.delete(review)
        else:
            review.scan_frequency = frequency
            review.next_scan_date = next_scan_date(frequency, review.last_scan_date) if review.last_scan_date else None
    db.session.commit()

    log_activity('BULK_THIRD_PARTY_REVIEWS', user=current_user, entity_type='third_party_review',
                 details={'action': action, 'affected': len(reviews)})
    return jsonify({'message': f'{len(reviews)} reviews processed', 'affected': len(reviews)})


@api_bp.route('/third-party-reviews/<int:review_id>', methods=['GET'])
@api_login_required
def get_third_party_review(review_id):
    review, error = get_accessible(ThirdPartyReview, review_id, 'Third-party review')
    if error:
        return error
    return jsonify(review.to_dict(include_results=True))


@api_bp.route('/third-party-reviews/<int:review_id>', methods=['PUT'])
@api_login_required
def update_third_party_review(review_id):
    review, error = get_accessible(ThirdPartyReview, review_id, 'Third-party review')
    if error:
        return error

    data = get_json_body()
    try:
        apply_vendor_fields(review, data)
        db.session.commit()
    except ValueError as e:
        db.session.rollback()
        return jsonify({'error': str(e)}), 400

    log_activity('UPDATE_THIRD_PARTY_REVIEW', user=current_user, entity_type='third_party_review',
                 entity_id=review.id, details={'fields': sorted(data.keys())})
    return jsonify({'message': 'Third-party review updated', 'third_party_review': review.to_dict()})


@api_bp.route('/third-party-reviews/<int:review_id>', methods=['DELETE'])
@api_login_required
def delete_third_party_review(review_id):
    review, error = get_accessible(ThirdPartyReview, review_id, 'Third-party review')
    if error:
        return error

    name = review.name
    db.session.delete(review)
    db.session.commit()
    log_activity('DELETE_THIRD_PARTY_REVIEW', user=current_user, entity_type='third_party_review',
                 entity_id=review_id, description=f"Deleted third-party review {name}")
    return jsonify({'message': 'Third-party review deleted'})


@api_bp.route('/third-party-reviews/<int:review_id>/scan', methods=['POST'])
@api_login_required
@limiter.limit("10 per hour")
def scan_third_party_review(review_id):
    """
    Passively assess the vendor application.

    Fetches the URL once, records headers and cookies, and scores the
    result with the vendor analyzer.
    """
    review, error = get_accessible(ThirdPartyReview, review_id, 'Third-party review')
    if error:
        return error
    if review.status == ThirdPartyReviewStatus.IN_PROGRESS:
        return jsonify({'error': 'Scan already in progress'}), 409
    try:
        check_scan_target(review.application_url)
    except ValueError as e:
        security_logger.warning(f"Blocked vendor scan of {review.application_url} by user {current_user.id}")
        return jsonify({'error': str(e)}), 400

    review.status = ThirdPartyReviewStatus.IN_PROGRESS
    review.last_scan_date = datetime.utcnow()
    review.error_message = None
    db.session.commit()

    try:
        observation = observe_site(review.application_url)
        analysis = VendorAnalyzer(get_llm_service()).analyze(observation, vendor=review.vendor)

        review.overall_score = analysis.overall_score
        review.security_grade = parse_enum(SecurityGrade, analysis.security_grade, 'security_grade')
        review.risk_level = parse_enum(RiskLevel, analysis.risk_level, 'risk_level')
        review.tls_grade = analysis.tls_grade
        review.headers_score = analysis.headers_score
        review.security_headers = analysis.security_headers
        review.cookie_analysis = analysis.cookie_analysis
        review.privacy_policy_status = analysis.privacy_policy_status
        review.terms_of_service_status = analysis.terms_of_service_status
        review.security_findings = analysis.security_findings
        review.recommendations = analysis.recommendations
        review.risk_factors = analysis.risk_factors
        review.next_scan_date = next_scan_date(review.scan_frequency, review.last_scan_date)
        review.status = ThirdPartyReviewStatus.COMPLETED
        db.session.commit()
    except Exception as e:
        db.session.rollback()
        logger.error(f"Third-party scan failed for review {review_id}: {e}")
        review.status = ThirdPartyReviewStatus.FAILED
        review.error_message = str(e)[:1000]
        db.session.commit()
        log_activity('SCAN_THIRD_PARTY_REVIEW', user=current_user, status=ActivityStatus.FAILED,
                     entity_type='third_party_review', entity_id=review.id, error_message=str(e)[:500])
        return jsonify({'error': 'Scan failed', 'third_party_review': review.to_dict()}), 502

    log_activity('SCAN_THIRD_PARTY_REVIEW', user=current_user, entity_type='third_party_review',
                 entity_id=review.id, details={'overall_score': review.overall_score,
                                               'analysis_method': analysis.method})
    return jsonify({'message': 'Scan completed', 'third_party_review': review.to_dict(include_results=True)})
