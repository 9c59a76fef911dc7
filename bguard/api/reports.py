"""
BGuard Report Routes

Generate, list, download and delete PDF and Excel threat model reports.
"""

import io
import logging
from flask import jsonify, send_file, current_app
from flask_login import current_user

from bguard import db, limiter
from bguard.api import api_bp
from bguard.api.helpers import api_login_required, get_json_body, scoped_query, get_accessible, paginate
from bguard.models import Report, ReportFormat, ThreatModel, AdminStats, ActivityStatus
from bguard.models.base import parse_enum
from bguard.reports import render_report
from bguard.security.activity import log_activity
from bguard.security.rbac import Permission, require_permission

logger = logging.getLogger(__name__)
security_logger = logging.getLogger('security')


def _get_report(report_id):
    report, error = get_accessible(Report, report_id, 'Report')
    if error:
        return None, error
    if report.deleted_at is not None:
        return None, (jsonify({'error': 'Report not found'}), 404)
    return report, None


@api_bp.route('/threat-models/<int:threat_model_id>/reports', methods=['POST'])
@api_login_required
@require_permission(Permission.CREATE_REPORTS)
@limiter.limit("30 per hour")
def generate_report(threat_model_id):
    """
    Generate a report for a threat model.

    Request body: {"format": "PDF"} or {"format": "EXCEL"}
    """
    threat_model, error = get_accessible(ThreatModel, threat_model_id, 'Threat model')
    if error:
        return error

    try:
        report_format = parse_enum(ReportFormat, get_json_body().get('format'), 'format')
    except ValueError:
        report_format = None
    if report_format is None:
        return jsonify({'error': 'Format must be PDF or EXCEL'}), 400

    action = f'EXPORT_{report_format.value}'
    try:
        content = render_report(threat_model, report_format,
                                current_app.config.get('REPORT_COMPANY_NAME', 'BGuard Suite'))
        report = Report(threat_model, report_format, content, user_id=current_user.id)
        db.session.add(report)
        db.session.flush()
        AdminStats.snapshot()
        db.session.commit()
    except Exception as e:
        db.session.rollback()
        logger.error(f"Report generation failed for threat model {threat_model_id}: {e}")
        log_activity(action, user=current_user, status=ActivityStatus.FAILED, entity_type='threat_model',
                     entity_id=threat_model_id, error_message=str(e)[:500])
        return jsonify({'error': 'Report generation failed'}), 500

    log_activity(action, user=current_user, entity_type='report', entity_id=report.id,
                 description=f"Generated {report.name}",
                 details={'threat_model_id': threat_model.id, 'file_size': report.file_size})
    return jsonify({'message': 'Report generated', 'report': report.to_dict()}), 201


@api_bp.route('/reports', methods=['GET'])
@api_login_required
def list_reports():
    query = scoped_query(Report).filter(Report.deleted_at.is_(None))
    return jsonify(paginate(query.order_by(Report.created_at.desc()), lambda r: r.to_dict(), key='reports'))


@api_bp.route('/reports/<int:report_id>/download', methods=['GET'])
@api_login_required
@limiter.limit("100 per hour")
def download_report(report_id):
    report, error = _get_report(report_id)
    if error:
        return error

    report.record_download()
    db.session.commit()
    log_activity('DOWNLOAD_REPORT', user=current_user, entity_type='report', entity_id=report.id)
    return send_file(
        io.BytesIO(report.content),
        mimetype=report.format.mimetype,
        as_attachment=True,
        download_name=report.filename,
    )


@api_bp.route('/reports/<int:report_id>', methods=['DELETE'])
@api_login_required
def delete_report(report_id):
    report, error = _get_report(report_id)
    if error:
        return error

    report.soft_delete(current_user.id)
    AdminStats.snapshot()
    db.session.commit()
    log_activity('DELETE_REPORT', user=current_user, entity_type='report', entity_id=report.id,
                 description=f"Deleted {report.name}")
    return jsonify({'message': 'Report deleted'})
