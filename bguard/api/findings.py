"""
BGuard Finding Routes

Finding listing and triage, finding tags with justifications and links
between findings and threat model assets.
"""

import logging
from flask import jsonify, request
from flask_login import current_user
from sqlalchemy.exc import IntegrityError

from bguard import db
from bguard.api import api_bp
from bguard.api.helpers import api_login_required, get_json_body, scoped_query, get_accessible, paginate
from bguard.models import (
    Finding, FindingStatus, Severity, StrideCategory, Tag, FindingTag, ThreatAsset,
    FindingAsset, AssetImpact
)
from bguard.models.base import parse_enum, require_enum
from bguard.security.activity import log_activity
from bguard.security.frameworks import map_finding

logger = logging.getLogger(__name__)
security_logger = logging.getLogger('security')

FRAMEWORK_FIELDS = ('nist_controls', 'owasp_category', 'cvss_score', 'asvs_level')


def _tag_visible(tag):
    return tag.is_system or (tag.organization_id is not None
                             and tag.organization_id == current_user.organization_id)


@api_bp.route('/findings', methods=['GET'])
@api_login_required
def list_findings():
    """
    Findings in scope.

    Query args: severity, status, stride_category, threat_model_id, search,
    page, per_page.
    """
    query = scoped_query(Finding)
    try:
        severity = parse_enum(Severity, request.args.get('severity'), 'severity')
        status = parse_enum(FindingStatus, request.args.get('status'), 'status')
        category = parse_enum(StrideCategory, request.args.get('stride_category'), 'stride_category')
    except ValueError as e:
        return jsonify({'error': str(e)}), 400

    if severity:
        query = query.filter(Finding.severity == severity)
    if status:
        query = query.filter(Finding.status == status)
    if category:
        query = query.filter(Finding.stride_category == category)
    threat_model_id = request.args.get('threat_model_id', type=int)
    if threat_model_id:
        query = query.filter(Finding.threat_model_id == threat_model_id)
    search = (request.args.get('search') or '').strip()
    if search:
        pattern = f'%{search}%'
        query = query.filter(db.or_(Finding.threat_scenario.ilike(pattern), Finding.description.ilike(pattern)))

    return jsonify(paginate(query.order_by(Finding.created_at.desc()), lambda f: f.to_dict(), key='findings'))


@api_bp.route('/findings/<int:finding_id>', methods=['GET'])
@api_login_required
def get_finding(finding_id):
    finding, error = get_accessible(Finding, finding_id, 'Finding')
    if error:
        return error
    return jsonify(finding.to_dict())


@api_bp.route('/findings/<int:finding_id>', methods=['PUT'])
@api_login_required
def update_finding(finding_id):
    """
    Edit a finding.

    Changing severity or STRIDE category re-derives the NIST, OWASP, CVSS
    and ASVS mappings unless the request supplies them.
    """
    finding, error = get_accessible(Finding, finding_id, 'Finding')
    if error:
        return error

    data = get_json_body()
    try:
        if 'threat_scenario' in data:
            scenario = data['threat_scenario']
            scenario = scenario.strip() if isinstance(scenario, str) else ''
            if not scenario:
                raise ValueError("Threat scenario is required")
            finding.threat_scenario = scenario[:500]
        for field in ('description', 'recommendation', 'comments'):
            if field in data:
                setattr(finding, field, data[field])
        if 'status' in data:
            finding.status = require_enum(FindingStatus, data['status'], 'status')

        remap = False
        if 'severity' in data:
            finding.severity = require_enum(Severity, data['severity'], 'severity')
            remap = True
        if 'stride_category' in data:
            finding.stride_category = require_enum(StrideCategory, data['stride_category'], 'stride_category')
            remap = True
        mapped = map_finding(finding.stride_category, finding.severity) if remap else {}
        for field in FRAMEWORK_FIELDS:
            if field in data:
                setattr(finding, field, data[field])
            elif remap:
                setattr(finding, field, mapped[field])
        db.session.commit()
    except ValueError as e:
        db.session.rollback()
        return jsonify({'error': str(e)}), 400

    log_activity('UPDATE_FINDING', user=current_user, entity_type='finding', entity_id=finding.id,
                 details={'fields': sorted(data.keys())})
    return jsonify({'message': 'Finding updated', 'finding': finding.to_dict()})


@api_bp.route('/findings/<int:finding_id>', methods=['PATCH'])
@api_login_required
def patch_finding(finding_id):
    """Quick triage: only status and comments."""
    finding, error = get_accessible(Finding, finding_id, 'Finding')
    if error:
        return error

    data = get_json_body()
    if not set(data) & {'status', 'comments'}:
        return jsonify({'error': 'Provide status or comments'}), 400
    try:
        if 'status' in data:
            finding.status = require_enum(FindingStatus, data['status'], 'status')
        if 'comments' in data:
            finding.comments = data['comments']
        db.session.commit()
    except ValueError as e:
        db.session.rollback()
        return jsonify({'error': str(e)}), 400

    log_activity('UPDATE_FINDING_STATUS', user=current_user, entity_type='finding', entity_id=finding.id,
                 details={'status': finding.status.value})
    return jsonify({'message': 'Finding updated', 'finding': finding.to_dict()})


@api_bp.route('/findings/<int:finding_id>/tags', methods=['POST'])
@api_login_required
def apply_tag(finding_id):
    """
    Apply a tag to a finding.

    Request body: {"tag_id": 3, "justification": "..."}
    "False Positive" and "Not Applicable" require a justification.
    """
    finding, error = get_accessible(Finding, finding_id, 'Finding')
    if error:
        return error

    data = get_json_body()
    tag = db.session.get(Tag, data.get('tag_id')) if data.get('tag_id') else None
    if tag is None or not _tag_visible(tag):
        return jsonify({'error': 'Tag not found'}), 404

    justification = data.get('justification')
    justification = justification.strip() if isinstance(justification, str) else ''
    if tag.requires_justification and not justification:
        return jsonify({'error': f'A justification is required for the "{tag.name}" tag'}), 400
    if finding.finding_tags.filter_by(tag_id=tag.id).first():
        return jsonify({'error': 'Tag already applied'}), 409

    db.session.add(FindingTag(finding_id=finding.id, tag_id=tag.id,
                              justification=justification or None, applied_by=current_user.id))
    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        return jsonify({'error': 'Tag already applied'}), 409

    log_activity('APPLY_TAG', user=current_user, entity_type='finding', entity_id=finding.id,
                 details={'tag': tag.name})
    return jsonify({'message': 'Tag applied', 'finding': finding.to_dict()}), 201


@api_bp.route('/findings/<int:finding_id>/tags/<int:tag_id>', methods=['DELETE'])
@api_login_required
def remove_tag(finding_id, tag_id):
    finding, error = get_accessible(Finding, finding_id, 'Finding')
    if error:
        return error

    applied = finding.finding_tags.filter_by(tag_id=tag_id).first()
    if applied is None:
        return jsonify({'error': 'Tag not applied to this finding'}), 404
    db.session.delete(applied)
    db.session.commit()

    log_activity('REMOVE_TAG', user=current_user, entity_type='finding', entity_id=finding.id,
                 details={'tag_id': tag_id})
    return jsonify({'message': 'Tag removed'})


@api_bp.route('/findings/<int:finding_id>/assets', methods=['POST'])
@api_login_required
def link_finding_asset(finding_id):
    """
    Link a finding to an asset of the same threat model.

    Request body: {"asset_id": 7, "impact": "DIRECT"}
    """
    finding, error = get_accessible(Finding, finding_id, 'Finding')
    if error:
        return error

    data = get_json_body()
    asset = db.session.get(ThreatAsset, data.get('asset_id')) if data.get('asset_id') else None
    if asset is None:
        return jsonify({'error': 'Asset not found'}), 404
    if asset.threat_model_id != finding.threat_model_id:
        return jsonify({'error': 'Asset belongs to a different threat model'}), 400

    try:
        impact = parse_enum(AssetImpact, data.get('impact'), 'impact', AssetImpact.DIRECT)
    except ValueError as e:
        return jsonify({'error': str(e)}), 400
    if finding.finding_assets.filter_by(asset_id=asset.id).first():
        return jsonify({'error': 'Asset already linked'}), 409

    db.session.add(FindingAsset(finding_id=finding.id, asset_id=asset.id, impact=impact))
    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        return jsonify({'error': 'Asset already linked'}), 409
    return jsonify({'message': 'Asset linked', 'finding': finding.to_dict()}), 201


@api_bp.route('/findings/<int:finding_id>/assets/<int:asset_id>', methods=['DELETE'])
@api_login_required
def unlink_finding_asset(finding_id, asset_id):
    finding, error = get_accessible(Finding, finding_id, 'Finding')
    if error:
        return error

    link = finding.finding_assets.filter_by(asset_id=asset_id).first()
    if link is None:
        return jsonify({'error': 'Asset not linked to this finding'}), 404
    db.session.delete(link)
    db.session.commit()
    return jsonify({'message': 'Asset unlinked'})
