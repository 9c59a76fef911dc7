"""
Dashboard, SLA settings, activity log and security event tests.
"""

from datetime import datetime, timedelta

import pytest

from bguard import db
from bguard.api.dashboard import compliance_score, posture_trend
from bguard.models import Finding, SecurityEvent, ThirdPartyReview, UserRole
from tests.conftest import login


# ==================== Dashboard ====================

@pytest.mark.parametrize('score, trend', [(80, 'IMPROVING'), (79, 'STABLE'), (60, 'STABLE'), (59, 'DECLINING')])
def test_posture_trend(score, trend):
    assert posture_trend(score) == trend


def test_compliance_score_weights():
    assert compliance_score(0, 0, 0, 0, 0, 75) == 15
    assert compliance_score(2, 2, 1, 1, 2, 100) == 75
    assert compliance_score(1, 1, 4, 4, 4, 100) == 100


def test_health_check(client):
    assert client.get('/api/v1/health').get_json()['status'] == 'healthy'


def test_empty_dashboard_uses_default_score(member_client):
    data = member_client.get('/api/v1/dashboard').get_json()
    posture = data['overall_security_posture']
    assert posture == {'overall_score': 75, 'trend': 'STABLE', 'risk_distribution': {}, 'compliance_score': 15}
    assert data['threat_modeling']['total_threat_models'] == 0
    assert data['design_reviews']['average_security_score'] == 0
    assert set(data) == {'threat_modeling', 'asset_management', 'design_reviews', 'third_party_reviews',
                         'overall_security_posture'}


def test_dashboard_reflects_reviews(member_client, threat_model):
    review = member_client.post('/api/v1/design-reviews', json={
        'name': 'IdP', 'architecture_description': ('OAuth login with MFA, RBAC permission checks, TLS and KMS '
                                                    'encryption, schema validation, audit logging, rate limit'),
    }).get_json()['design_review']
    member_client.post(f"/api/v1/design-reviews/{review['id']}/analyze")

    data = member_client.get('/api/v1/dashboard').get_json()
    assert data['threat_modeling']['completed_threat_models'] == 1
    assert data['threat_modeling']['open_findings'] == 4
    assert data['design_reviews']['average_security_score'] == 84
    assert data['design_reviews']['completed_reviews_this_month'] == 1

    posture = data['overall_security_posture']
    assert posture['overall_score'] == 84
    assert posture['trend'] == 'IMPROVING'
    assert posture['risk_distribution'] == {'LOW': 1}
    assert posture['compliance_score'] == 47


def test_dashboard_is_scoped(outsider_client, threat_model):
    data = outsider_client.get('/api/v1/dashboard').get_json()
    assert data['threat_modeling']['total_findings'] == 0


def test_zero_scores_count_toward_posture(member_client):
    created = member_client.post('/api/v1/third-party-reviews', json={
        'name': 'Legacy vendor', 'application_url': 'http://legacy.example.com',
    }).get_json()['third_party_review']
    review = db.session.get(ThirdPartyReview, created['id'])
    review.overall_score = 0
    db.session.commit()

    posture = member_client.get('/api/v1/dashboard').get_json()['overall_security_posture']
    assert posture['overall_score'] == 0
    assert posture['trend'] == 'DECLINING'


def test_admin_stats_requires_admin(member_client):
    assert member_client.get('/api/v1/admin/stats').status_code == 403


def test_admin_stats(admin_client, member):
    data = admin_client.get('/api/v1/admin/stats').get_json()
    assert data['total_users'] == 2
    assert data['total_organizations'] == 1
    assert data['active_users'] == 1
    assert data['role_distribution'] == {'ADMIN': 1, 'BUSINESS_USER': 1}
    assert data['daily_stats'] == []


# ==================== SLA settings ====================

def test_sla_defaults(member_client):
    data = member_client.get('/api/v1/settings/sla').get_json()
    assert data == {'sla_settings': {'critical': 7, 'high': 30, 'medium': 90, 'low': 180}, 'is_default': True}


@pytest.mark.parametrize('payload', [
    {'critical': 7, 'high': 30, 'medium': 90},
    {'critical': 7, 'high': 7, 'medium': 90, 'low': 180},
    {'critical': 0, 'high': 30, 'medium': 90, 'low': 180},
    {'critical': 7, 'high': 30, 'medium': 90, 'low': 400},
    {'critical': 'soon', 'high': 30, 'medium': 90, 'low': 180},
])
def test_sla_validation(member_client, payload):
    assert member_client.put('/api/v1/settings/sla', json=payload).status_code == 400


def test_sla_update(member_client):
    resp = member_client.put('/api/v1/settings/sla', json={'critical': '3', 'high': 14, 'medium': 45, 'low': 120})
    assert resp.status_code == 200
    assert resp.get_json()['sla_settings']['critical'] == 3

    data = member_client.get('/api/v1/settings/sla').get_json()
    assert data['is_default'] is False
    assert data['sla_settings']['low'] == 120


def _age_finding(title, days):
    finding = Finding.query.filter_by(threat_scenario=title).one()
    finding.created_at = datetime.utcnow() - timedelta(days=days)
    db.session.commit()
    return finding


def test_sla_status(member_client, threat_model):
    breached = _age_finding('Unauthorized Data Access', 31)
    due_soon = _age_finding('Excessive Network Exposure', 27)
    medium = Finding.query.filter_by(threat_scenario='Weak Authentication Mechanism').one()
    member_client.patch(f'/api/v1/findings/{medium.id}', json={'status': 'RESOLVED'})

    data = member_client.get('/api/v1/settings/sla/status').get_json()
    assert data['summary'] == {'breached': 1, 'due_soon': 1, 'on_track': 1}
    assert [row['finding_id'] for row in data['findings'][:2]] == [breached.id, due_soon.id]
    assert data['findings'][0]['sla_status'] == 'breached'
    assert data['findings'][1]['sla_days'] == 30


def test_sla_status_uses_saved_settings(member_client, threat_model):
    member_client.put('/api/v1/settings/sla', json={'critical': 1, 'high': 2, 'medium': 3, 'low': 4})
    _age_finding('Unauthorized Data Access', 3)
    data = member_client.get('/api/v1/settings/sla/status').get_json()
    assert data['summary'] == {'breached': 1, 'due_soon': 2, 'on_track': 1}


# ==================== Activity log ====================

def test_activity_listing_and_filters(member_client, outsider_client):
    member_client.post('/api/v1/design-reviews', json={'name': 'Audit trail'})

    data = member_client.get('/api/v1/activity?action=CREATE_DESIGN_REVIEW').get_json()
    assert data['total'] == 1
    assert data['activities'][0]['entity_type'] == 'design_review'

    data = member_client.get('/api/v1/activity?entity_type=security_event').get_json()
    assert {a['action'] for a in data['activities']} == {'LOGIN_SUCCESS'}

    today = datetime.utcnow().date().isoformat()
    assert member_client.get(f'/api/v1/activity?end_date={today}').get_json()['total'] == 0
    assert member_client.get('/api/v1/activity?start_date=yesterday').status_code == 400
    assert member_client.get('/api/v1/activity?status=MAYBE').status_code == 400

    assert outsider_client.get('/api/v1/activity?action=CREATE_DESIGN_REVIEW').get_json()['total'] == 0


def test_activity_stats(member_client):
    member_client.post('/api/v1/design-reviews', json={'name': 'One'})
    member_client.post('/api/v1/design-reviews', json={'name': 'Two'})
    stats = member_client.get('/api/v1/activity/stats').get_json()
    assert stats['total'] == 3
    assert stats['success_rate'] == 100.0
    assert stats['top_actions'][0] == {'action': 'CREATE_DESIGN_REVIEW', 'count': 2}


# ==================== Security events ====================

@pytest.fixture
def failed_logins(app, member):
    attacker = app.test_client()
    for _ in range(3):
        assert login(attacker, member.email, 'Wrong!Passw0rd').status_code == 401


def test_failed_logins_raise_alert(member_client, failed_logins):
    events = member_client.get('/api/v1/security/events?event_type=LOGIN_FAILED').get_json()
    assert events['total'] == 3

    high = member_client.get('/api/v1/security/events?severity=HIGH').get_json()['events']
    assert [e['event_type'] for e in high] == ['MULTIPLE_FAILED_LOGINS']
    assert member_client.get('/api/v1/security/events?severity=LOUD').status_code == 400

    stats = member_client.get('/api/v1/security/stats').get_json()
    assert stats['login_failures'] == 3
    assert stats['suspicious_logins'] == 1
    assert stats['high'] == 1


def test_members_cannot_resolve_events(member_client, failed_logins):
    event = SecurityEvent.query.filter_by(event_type='MULTIPLE_FAILED_LOGINS').one()
    assert member_client.post(f'/api/v1/security/events/{event.id}/resolve').status_code == 403


def test_business_admin_resolves_organization_events(app, business_admin, member, failed_logins):
    owner = app.test_client()
    login(owner, business_admin.email)
    event = SecurityEvent.query.filter_by(event_type='MULTIPLE_FAILED_LOGINS').one()

    resp = owner.post(f'/api/v1/security/events/{event.id}/resolve')
    assert resp.status_code == 200
    assert resp.get_json()['event']['is_resolved'] is True
    assert owner.post(f'/api/v1/security/events/{event.id}/resolve').status_code == 400
    assert owner.post('/api/v1/security/events/9999/resolve').status_code == 404

    unresolved = owner.get('/api/v1/security/events?resolved=false&event_type=MULTIPLE_FAILED_LOGINS')
    assert unresolved.get_json()['total'] == 0


def test_business_admin_cannot_resolve_other_organizations(app, make_user, make_org, failed_logins):
    rival = make_user('rival@other.io', role=UserRole.BUSINESS_ADMIN, organization=make_org('Rival'))
    client = app.test_client()
    login(client, rival.email)
    event = SecurityEvent.query.filter_by(event_type='MULTIPLE_FAILED_LOGINS').one()
    assert client.post(f'/api/v1/security/events/{event.id}/resolve').status_code == 403
    assert client.get('/api/v1/security/events?event_type=LOGIN_FAILED').get_json()['total'] == 0
