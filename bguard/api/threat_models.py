"""
BGuard Threat Model Routes

Threat model lifecycle, STRIDE analysis, threat model assets, compliance
mapping and threat modeling analytics.
"""

import logging
from flask import jsonify, request
from flask_login import current_user
from sqlalchemy import func

from bguard import db, limiter
from bguard.ai import ThreatAnalyzer, ThreatModelContext, get_llm_service
from bguard.api import api_bp
from bguard.api.helpers import api_login_required, get_json_body, scoped_query, get_accessible, int_arg
from bguard.models import (
    ThreatModel, ThreatModelStatus, Finding, FindingStatus, Severity, StrideCategory,
    ThreatAsset, AdminStats, ActivityStatus
)
from bguard.models.base import parse_enum, require_enum
from bguard.security.activity import log_activity
from bguard.security.frameworks import map_finding, compliance_summary
from bguard.security.rbac import Permission, require_permission

logger = logging.getLogger(__name__)
security_logger = logging.getLogger('security')


def persist_threats(threat_model, result):
    """Store analysis threats as OPEN findings with framework fields."""
    created = []
    for threat in result.threats:
        severity = parse_enum(Severity, threat.severity, 'severity', Severity.MEDIUM)
        category = parse_enum(StrideCategory, threat.stride_category, 'stride_category',
                              StrideCategory.INFORMATION_DISCLOSURE)
        finding = Finding(
            threat_model_id=threat_model.id,
            threat_scenario=threat.title,
            stride_category=category,
            severity=severity,
            description=threat.description,
            recommendation=threat.recommendation,
            user_id=threat_model.user_id,
            organization_id=threat_model.organization_id,
        )
        mapped = map_finding(category, severity)
        finding.nist_controls = threat.nist_controls or mapped['nist_controls']
        finding.owasp_category = threat.owasp_category or mapped['owasp_category']
        finding.cvss_score = threat.cvss_score if threat.cvss_score is not None else mapped['cvss_score']
        finding.asvs_level = threat.asvs_level or mapped['asvs_level']
        db.session.add(finding)
        created.append(finding)
    return created


def run_analysis(threat_model, exclude_titles=None):
    """
    Run STRIDE analysis for ``threat_model`` and persist its findings.

    Returns the created findings. The caller handles failures.
    """
    analyzer = ThreatAnalyzer(get_llm_service())
    context = ThreatModelContext.from_request(threat_model.context, threat_model.prompt, threat_model.system_type)
    result = analyzer.analyze(threat_model.prompt, context, exclude_titles=exclude_titles)
    findings = persist_threats(threat_model, result)
    if not exclude_titles:
        threat_model.summary = result.summary
    return findings, result.method


def _add_threat_assets(threat_model, assets):
    if assets is not None and not isinstance(assets, list):
        raise ValueError("Assets must be a list")
    for raw in assets or []:
        if not isinstance(raw, dict) or not isinstance(raw.get('name'), str) or not raw['name'].strip():
            raise ValueError("Each asset needs a name")
        db.session.add(ThreatAsset(
            threat_model_id=threat_model.id,
            name=raw['name'].strip()[:200],
            asset_type=raw.get('asset_type'),
            description=raw.get('description'),
            criticality=parse_enum(Severity, raw.get('criticality'), 'criticality', Severity.MEDIUM),
        ))


@api_bp.route('/threat-models', methods=['GET'])
@api_login_required
@require_permission(Permission.VIEW_THREAT_MODELS)
def list_threat_models():
    """Threat models in the caller's scope, newest first."""
    query = scoped_query(ThreatModel)
    try:
        status = parse_enum(ThreatModelStatus, request.args.get('status'), 'status')
    except ValueError as e:
        return jsonify({'error': str(e)}), 400
    if status:
        query = query.filter(ThreatModel.status == status)

    query = query.order_by(ThreatModel.created_at.desc())
    if request.args.get('limit'):
        query = query.limit(int_arg('limit', 10, maximum=100))
    threat_models = query.all()
    return jsonify({'threat_models': [tm.to_dict() for tm in threat_models], 'total': len(threat_models)})


@api_bp.route('/threat-models', methods=['POST'])
@api_login_required
@require_permission(Permission.CREATE_THREAT_MODELS)
@limiter.limit("20 per hour")
def create_threat_model():
    """
    Create a threat model and run STRIDE analysis.

    Request body:
    {
        "name": "Payments API",
        "prompt": "System description ...",
        "description": "...",
        "system_type": "api",
        "context": {"dataStores": ["postgres"], "networkExposure": "public"},
        "assets": [{"name": "Card vault", "asset_type": "database", "criticality": "HIGH"}]
    }
    """
    data = get_json_body()
    if not data.get('name') or not data.get('prompt'):
        return jsonify({'error': 'Name and prompt are required'}), 400

    try:
        context = data.get('context') if isinstance(data.get('context'), dict) else {}
        threat_model = ThreatModel(
            name=data.get('name'),
            prompt=data.get('prompt'),
            description=data.get('description'),
            system_type=data.get('system_type'),
            context=context,
            user_id=current_user.id,
            organization_id=current_user.organization_id,
        )
        threat_model.status = ThreatModelStatus.ANALYZING
        db.session.add(threat_model)
        db.session.flush()
        _add_threat_assets(threat_model, data.get('assets'))
        db.session.commit()
    except ValueError as e:
        db.session.rollback()
        return jsonify({'error': str(e)}), 400

    try:
        findings, method = run_analysis(threat_model)
        threat_model.status = ThreatModelStatus.COMPLETED
        threat_model.error_message = None
        AdminStats.snapshot()
        db.session.commit()
    except Exception as e:
        db.session.rollback()
        logger.error(f"Threat analysis failed for threat model {threat_model.id}: {e}")
        threat_model.status = ThreatModelStatus.DRAFT
        threat_model.error_message = 'Analysis failed'
        db.session.commit()
        log_activity('CREATE_THREAT_MODEL', user=current_user, status=ActivityStatus.FAILED,
                     entity_type='threat_model', entity_id=threat_model.id, error_message=str(e)[:500])
        return jsonify({'error': 'Threat analysis failed', 'threat_model': threat_model.to_dict()}), 500

    log_activity('CREATE_THREAT_MODEL', user=current_user, entity_type='threat_model',
                 entity_id=threat_model.id, description=f"Created threat model {threat_model.name}",
                 details={'findings': len(findings), 'analysis_method': method})
    return jsonify({'message': 'Threat model created',
                    'threat_model': threat_model.to_dict(include_findings=True)}), 201


@api_bp.route('/threat-models/analytics', methods=['GET'])
@api_login_required
@require_permission(Permission.VIEW_THREAT_MODELS)
def threat_model_analytics():
    """Finding counts by severity, STRIDE category and status, plus mean CVSS."""
    findings = scoped_query(Finding)
    models = scoped_query(ThreatModel)

    def grouped(column, enum_cls):
        counts = {member.value: 0 for member in enum_cls}
        for value, count in findings.with_entities(column, func.count(Finding.id)).group_by(column):
            if value is not None:
                counts[value.value] = count
        return counts

    mean_cvss = findings.with_entities(func.avg(Finding.cvss_score)).scalar()
    model_status = {s.value: 0 for s in ThreatModelStatus}
    for value, count in models.with_entities(ThreatModel.status, func.count(ThreatModel.id)).group_by(ThreatModel.status):
        if value is not None:
            model_status[value.value] = count

    return jsonify({
        'total_threat_models': models.count(),
        'total_findings': findings.count(),
        'threat_models_by_status': model_status,
        'by_severity': grouped(Finding.severity, Severity),
        'by_stride_category': grouped(Finding.stride_category, StrideCategory),
        'by_status': grouped(Finding.status, FindingStatus),
        'average_cvss': round(mean_cvss, 1) if mean_cvss is not None else None,
    })


@api_bp.route('/threat-models/<int:threat_model_id>', methods=['GET'])
@api_login_required
def get_threat_model(threat_model_id):
    threat_model, error = get_accessible(ThreatModel, threat_model_id, 'Threat model')
    if error:
        return error
    return jsonify(threat_model.to_dict(include_findings=True))


@api_bp.route('/threat-models/<int:threat_model_id>', methods=['PUT'])
@api_login_required
def update_threat_model(threat_model_id):
    threat_model, error = get_accessible(ThreatModel, threat_model_id, 'Threat model')
    if error:
        return error

    data = get_json_body()
    try:
        if 'name' in data:
            threat_model.name = ThreatModel._validate_name(data['name'])
        if 'description' in data:
            threat_model.description = data['description']
        if 'status' in data:
            threat_model.status = require_enum(ThreatModelStatus, data['status'], 'status')
        db.session.commit()
    except ValueError as e:
        db.session.rollback()
        return jsonify({'error': str(e)}), 400

    log_activity('UPDATE_THREAT_MODEL', user=current_user, entity_type='threat_model',
                 entity_id=threat_model.id, details={'fields': sorted(data.keys())})
    return jsonify({'message': 'Threat model updated', 'threat_model': threat_model.to_dict()})


@api_bp.route('/threat-models/<int:threat_model_id>', methods=['DELETE'])
@api_login_required
@limiter.limit("50 per hour")
def delete_threat_model(threat_model_id):
    """Delete a threat model with its findings, reports and assets."""
    threat_model, error = get_accessible(ThreatModel, threat_model_id, 'Threat model')
    if error:
        return error

    name = threat_model.name
    linked_assets = [link.asset for link in threat_model.asset_links]
    try:
        db.session.delete(threat_model)
        db.session.flush()
        for asset in linked_assets:
            asset.refresh_threat_model_status()
        AdminStats.snapshot()
        db.session.commit()
    except Exception as e:
        db.session.rollback()
        logger.error(f"Error deleting threat model {threat_model_id}: {e}")
        return jsonify({'error': 'Failed to delete threat model'}), 500

    log_activity('DELETE_THREAT_MODEL', user=current_user, entity_type='threat_model',
                 entity_id=threat_model_id, description=f"Deleted threat model {name}")
    return jsonify({'message': 'Threat model deleted'})


@api_bp.route('/threat-models/<int:threat_model_id>/generate-more', methods=['POST'])
@api_login_required
@require_permission(Permission.CREATE_THREAT_MODELS)
@limiter.limit("20 per hour")
def generate_more_findings(threat_model_id):
    """Run another analysis pass, skipping threats the model already has."""
    threat_model, error = get_accessible(ThreatModel, threat_model_id, 'Threat model')
    if error:
        return error
    if threat_model.status == ThreatModelStatus.ANALYZING:
        return jsonify({'error': 'Analysis already in progress'}), 409

    existing = [f.threat_scenario for f in threat_model.findings]
    try:
        findings, method = run_analysis(threat_model, exclude_titles=existing)
        threat_model.status = ThreatModelStatus.COMPLETED
        AdminStats.snapshot()
        db.session.commit()
    except Exception as e:
        db.session.rollback()
        logger.error(f"Additional analysis failed for threat model {threat_model_id}: {e}")
        log_activity('GENERATE_MORE_FINDINGS', user=current_user, status=ActivityStatus.FAILED,
                     entity_type='threat_model', entity_id=threat_model_id, error_message=str(e)[:500])
        return jsonify({'error': 'Threat analysis failed'}), 500

    log_activity('GENERATE_MORE_FINDINGS', user=current_user, entity_type='threat_model',
                 entity_id=threat_model.id, details={'new_findings': len(findings), 'analysis_method': method})
    return jsonify({
        'message': f'{len(findings)} new findings generated',
        'new_findings': [f.to_dict() for f in findings],
        'threat_model': threat_model.to_dict(),
    })


@api_bp.route('/threat-models/<int:threat_model_id>/compliance', methods=['GET'])
@api_login_required
def threat_model_compliance(threat_model_id):
    """NIST, OWASP, ASVS and CVSS coverage for a threat model's findings."""
    threat_model, error = get_accessible(ThreatModel, threat_model_id, 'Threat model')
    if error:
        return error
    return jsonify(compliance_summary(threat_model.findings))


@api_bp.route('/threat-models/<int:threat_model_id>/assets', methods=['GET'])
@api_login_required
def list_threat_assets(threat_model_id):
    threat_model, error = get_accessible(ThreatModel, threat_model_id, 'Threat model')
    if error:
        return error
    return jsonify({'assets': [a.to_dict() for a in threat_model.assets.order_by(ThreatAsset.id)]})


@api_bp.route('/threat-models/<int:threat_model_id>/assets', methods=['POST'])
@api_login_required
def create_threat_asset(threat_model_id):
    """Request body: {"name": "...", "asset_type": "...", "description": "...", "criticality": "HIGH"}"""
    threat_model, error = get_accessible(ThreatModel, threat_model_id, 'Threat model')
    if error:
        return error
    try:
        _add_threat_assets(threat_model, [get_json_body()])
        db.session.commit()
    except ValueError as e:
        db.session.rollback()
        return jsonify({'error': str(e)}), 400
    asset = threat_model.assets.order_by(ThreatAsset.id.desc()).first()
    return jsonify({'message': 'Asset added', 'asset': asset.to_dict()}), 201


@api_bp.route('/threat-models/<int:threat_model_id>/assets/<int:asset_id>', methods=['DELETE'])
@api_login_required
def delete_threat_asset(threat_model_id, asset_id):
    threat_model, error = get_accessible(ThreatModel, threat_model_id, 'Threat model')
    if error:
        return error
    asset = threat_model.assets.filter_by(id=asset_id).first()
    if asset is None:
        return jsonify({'error': 'Asset not found'}), 404
    db.session.delete(asset)
    db.session.commit()
    return jsonify({'message': 'Asset removed'})
