"""
BGuard Dashboard Routes

Health check, the unified security posture dashboard and platform admin
statistics.
"""

from datetime import datetime, timedelta, date
from flask import jsonify, current_app
from sqlalchemy import func

from bguard.api import api_bp
from bguard.api.helpers import api_login_required, scoped_query, int_arg
from bguard.models import (
    User, UserRole, Organization, ThreatModel, ThreatModelStatus, Finding, FindingStatus, Severity,
    ApplicationAsset, BusinessCriticality, ReviewStatus, DesignReview, DesignReviewStatus,
    ThirdPartyReview, ThirdPartyReviewStatus, RiskLevel, Report, ActivityLog, AdminStats
)
from bguard.security.rbac import require_role

DEFAULT_POSTURE_SCORE = 75


@api_bp.route('/health', methods=['GET'])
def health_check():
    """Health check endpoint."""
    return jsonify({
        'status': 'healthy',
        'version': current_app.config.get('APP_VERSION', '1.0.0')
    })


def _grouped(query, model, column):
    return {value.value: count
            for value, count in query.with_entities(column, func.count(model.id)).group_by(column)
            if value is not None}


def posture_trend(score):
    if score >= 80:
        return 'IMPROVING'
    if score >= 60:
        return 'STABLE'
    return 'DECLINING'


def compliance_score(completed_models, total_models, modeled_assets, reviewed_assets, total_assets, score):
    """Weighted coverage score: threat model completion 30, asset coverage 25 + 25, posture 20."""
    return round(
        completed_models / max(total_models, 1) * 30
        + modeled_assets / max(total_assets, 1) * 25
        + reviewed_assets / max(total_assets, 1) * 25
        + score / 100 * 20
    )


def _threat_modeling_stats():
    models = scoped_query(ThreatModel)
    findings = scoped_query(Finding)
    return {
        'total_threat_models': models.count(),
        'completed_threat_models': models.filter(ThreatModel.status == ThreatModelStatus.COMPLETED).count(),
        'total_findings': findings.count(),
        'critical_findings': findings.filter(Finding.severity == Severity.CRITICAL).count(),
        'open_findings': findings.filter(Finding.status != FindingStatus.RESOLVED).count(),
        'recent_threat_models': [tm.to_dict() for tm in models.order_by(ThreatModel.created_at.desc()).limit(3)],
    }


def _asset_stats():
    assets = scoped_query(ApplicationAsset)
    uncovered = (ReviewStatus.NOT_STARTED, ReviewStatus.IN_PROGRESS)
    high_risk = assets.filter(
        ApplicationAsset.business_criticality.in_((BusinessCriticality.HIGH, BusinessCriticality.VERY_HIGH)),
        (ApplicationAsset.threat_model_status.in_(uncovered) | ApplicationAsset.design_review_status.in_(uncovered)),
    ).count()
    return {
        'total_assets': assets.count(),
        'assets_by_type': _grouped(assets, ApplicationAsset, ApplicationAsset.asset_type),
        'assets_by_status': _grouped(assets, ApplicationAsset, ApplicationAsset.status),
        'assets_by_criticality': _grouped(assets, ApplicationAsset, ApplicationAsset.business_criticality),
        'threat_modeled_assets': assets.filter(ApplicationAsset.threat_model_status == ReviewStatus.COMPLETED).count(),
        'design_reviewed_assets': assets.filter(ApplicationAsset.design_review_status == ReviewStatus.COMPLETED).count(),
        'high_risk_assets': high_risk,
        'recent_assets': [a.to_dict() for a in assets.order_by(ApplicationAsset.created_at.desc()).limit(3)],
    }


def _design_review_stats():
    reviews = scoped_query(DesignReview)
    average = reviews.with_entities(func.avg(DesignReview.security_score)).scalar()
    month_start = date.today().replace(day=1)
    return {
        'total_reviews': reviews.count(),
        'reviews_by_status': _grouped(reviews, DesignReview, DesignReview.status),
        'reviews_by_grade': _grouped(reviews, DesignReview, DesignReview.security_grade),
        'reviews_by_risk': _grouped(reviews, DesignReview, DesignReview.overall_risk),
        'average_security_score': average,
        'completed_reviews_this_month': reviews.filter(
            DesignReview.status == DesignReviewStatus.COMPLETED,
            DesignReview.review_completed_date >= datetime.combine(month_start, datetime.min.time()),
        ).count(),
        'pending_reviews': reviews.filter(DesignReview.status.in_((
            DesignReviewStatus.DRAFT, DesignReviewStatus.IN_PROGRESS, DesignReviewStatus.UNDER_REVIEW,
        ))).count(),
        'recent_reviews': [r.to_dict() for r in reviews.order_by(DesignReview.created_at.desc()).limit(3)],
    }


def _third_party_stats():
    reviews = scoped_query(ThirdPartyReview)
    average = reviews.with_entities(func.avg(ThirdPartyReview.overall_score)).scalar()
    return {
        'total_reviews': reviews.count(),
        'reviews_by_status': _grouped(reviews, ThirdPartyReview, ThirdPartyReview.status),
        'reviews_by_grade': _grouped(reviews, ThirdPartyReview, ThirdPartyReview.security_grade),
        'reviews_by_risk': _grouped(reviews, ThirdPartyReview, ThirdPartyReview.risk_level),
        'average_security_score': average,
        'scheduled_scans': reviews.filter(ThirdPartyReview.next_scan_date >= datetime.utcnow()).count(),
        'failed_scans': reviews.filter(ThirdPartyReview.status == ThirdPartyReviewStatus.FAILED).count(),
        'high_risk_applications': reviews.filter(ThirdPartyReview.risk_level.in_((
            RiskLevel.HIGH, RiskLevel.VERY_HIGH, RiskLevel.CRITICAL,
        ))).count(),
        'recent_reviews': [r.to_dict() for r in reviews.order_by(ThirdPartyReview.created_at.desc()).limit(3)],
    }


@api_bp.route('/dashboard', methods=['GET'])
@api_login_required
def unified_dashboard():
    """Aggregates across threat modeling, assets, design reviews and vendor reviews."""
    threat_modeling = _threat_modeling_stats()
    assets = _asset_stats()
    design = _design_review_stats()
    vendors = _third_party_stats()

    scores = [s for s in (design['average_security_score'], vendors['average_security_score']) if s is not None]
    overall = round(sum(scores) / len(scores)) if scores else DEFAULT_POSTURE_SCORE

    risk_distribution = {}
    for level in RiskLevel:
        count = design['reviews_by_risk'].get(level.value, 0) + vendors['reviews_by_risk'].get(level.value, 0)
        if count:
            risk_distribution[level.value] = count

    for section in (design, vendors):
        section['average_security_score'] = round(section['average_security_score'] or 0)

    return jsonify({
        'threat_modeling': threat_modeling,
        'asset_management': assets,
        'design_reviews': design,
        'third_party_reviews': vendors,
        'overall_security_posture': {
            'overall_score': overall,
            'trend': posture_trend(overall),
            'risk_distribution': risk_distribution,
            'compliance_score': compliance_score(
                threat_modeling['completed_threat_models'], threat_modeling['total_threat_models'],
                assets['threat_modeled_assets'], assets['design_reviewed_assets'], assets['total_assets'],
                overall,
            ),
        },
    })


@api_bp.route('/admin/stats', methods=['GET'])
@api_login_required
@require_role(UserRole.ADMIN)
def admin_stats():
    """Platform totals, role distribution and the daily usage history."""
    since = datetime.utcnow() - timedelta(hours=24)
    days = int_arg('days', 30, maximum=365)
    history = (AdminStats.query
               .filter(AdminStats.date >= date.today() - timedelta(days=days))
               .order_by(AdminStats.date).all())
    return jsonify({
        'total_users': User.query.count(),
        'total_organizations': Organization.query.count(),
        'total_threat_models': ThreatModel.query.count(),
        'total_findings': Finding.query.count(),
        'total_reports': Report.query.filter(Report.deleted_at.is_(None)).count(),
        'active_users': User.query.filter(User.last_login >= since).count(),
        'critical_findings': Finding.query.filter(Finding.severity == Severity.CRITICAL,
                                                  Finding.status != FindingStatus.RESOLVED).count(),
        'recent_activity': ActivityLog.query.filter(ActivityLog.created_at >= since).count(),
        'role_distribution': _grouped(User.query, User, User.role),
        'daily_stats': [row.to_dict() for row in history],
    })
