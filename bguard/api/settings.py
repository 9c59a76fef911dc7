"""
BGuard Settings Routes

Per-user remediation SLA settings and SLA status of open findings.
"""

from datetime import datetime, timedelta
from flask import jsonify
from flask_login import current_user

from bguard import db
from bguard.api import api_bp
from bguard.api.helpers import api_login_required, get_json_body, scoped_query
from bguard.models import SlaSettings, Finding, FindingStatus
from bguard.security.activity import log_activity


def _settings_for(user):
    return SlaSettings.query.filter_by(user_id=user.id).first()


@api_bp.route('/settings/sla', methods=['GET'])
@api_login_required
def get_sla_settings():
    settings = _settings_for(current_user)
    if settings is None:
        return jsonify({'sla_settings': dict(SlaSettings.DEFAULTS), 'is_default': True})
    return jsonify({'sla_settings': settings.to_dict(), 'is_default': False})


@api_bp.route('/settings/sla', methods=['PUT', 'POST'])
@api_login_required
def update_sla_settings():
    """Request body: {"critical": 7, "high": 30, "medium": 90, "low": 180}"""
    try:
        values = SlaSettings.validate(get_json_body())
    except ValueError as e:
        return jsonify({'error': str(e)}), 400

    settings = _settings_for(current_user)
    if settings is None:
        settings = SlaSettings(user_id=current_user.id)
        db.session.add(settings)
    for level, days in values.items():
        setattr(settings, level, days)
    db.session.commit()

    log_activity('UPDATE_SLA_SETTINGS', user=current_user, entity_type='sla_settings',
                 entity_id=settings.id, details=values)
    return jsonify({'message': 'SLA settings saved', 'sla_settings': settings.to_dict()})


@api_bp.route('/settings/sla/status', methods=['GET'])
@api_login_required
def findings_sla_status():
    """
    Deadline of every unresolved finding in scope.

    A finding is breached once its age exceeds the SLA for its severity.
    """
    settings = _settings_for(current_user)
    limits = settings.to_dict() if settings else dict(SlaSettings.DEFAULTS)
    now = datetime.utcnow()

    rows = []
    counts = {'breached': 0, 'due_soon': 0, 'on_track': 0}
    findings = scoped_query(Finding).filter(Finding.status != FindingStatus.RESOLVED).all()
    for finding in findings:
        days = limits[finding.severity.value.lower()]
        due = finding.created_at + timedelta(days=days)
        remaining = (due - now).days
        if due < now:
            state = 'breached'
        elif remaining <= max(1, days // 5):
            state = 'due_soon'
        else:
            state = 'on_track'
        counts[state] += 1
        rows.append({
            'finding_id': finding.id,
            'threat_scenario': finding.threat_scenario,
            'severity': finding.severity.value,
            'status': finding.status.value,
            'sla_days': days,
            'due_date': due.isoformat(),
            'days_remaining': remaining,
            'sla_status': state,
        })

    rows.sort(key=lambda r: r['days_remaining'])
    return jsonify({'sla_settings': limits, 'summary': counts, 'findings': rows})
