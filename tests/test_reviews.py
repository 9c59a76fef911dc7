"""
Design review and third-party review tests.
"""

from datetime import datetime

import pytest

from bguard.ai import DesignAnalyzer, VendorAnalyzer, SiteObservation, create_llm_service
from bguard.ai.review_analyzer import analyze_headers, analyze_cookies, security_grade, risk_level
from bguard.api.third_party_reviews import next_scan_date
from bguard.models import ScanFrequency, ActivityLog

WELL_DESIGNED = ('OAuth login with MFA, RBAC permission checks, TLS and KMS encryption, '
                 'schema validation, audit logging, rate limit')


@pytest.fixture
def fallback():
    return create_llm_service(provider='fallback')


# ==================== Design Reviews ====================

def test_rule_based_design_scores_bare_architecture(fallback):
    analysis = DesignAnalyzer(fallback).analyze('Monolith with a single database', compliance_frameworks=['SOC2'])
    assert analysis.security_score == 55
    assert analysis.security_grade == 'F'
    assert analysis.overall_risk == 'VERY_HIGH'
    assert len(analysis.security_findings) == 6
    assert {f['severity'] for f in analysis.security_findings} == {'HIGH'}
    assert len(analysis.prioritized_actions) == 5
    assert len(analysis.compliance_gaps) == 6
    assert analysis.compliance_score == 25


def test_rule_based_design_rewards_described_controls(fallback):
    analysis = DesignAnalyzer(fallback).analyze(WELL_DESIGNED)
    assert analysis.domain_scores['data_protection'] == 95
    assert analysis.domain_scores['secure_design'] == 70
    assert analysis.security_score == 84
    assert analysis.security_grade == 'B'
    assert analysis.security_findings == []
    assert analysis.compliance_score is None


@pytest.mark.parametrize('score, grade, risk', [
    (95, 'A', 'VERY_LOW'), (85, 'B', 'LOW'), (72, 'C', 'MEDIUM'), (61, 'D', 'HIGH'), (45, 'F', 'VERY_HIGH'),
    (10, 'F', 'CRITICAL'),
])
def test_grade_and_risk_bands(score, grade, risk):
    assert security_grade(score) == grade
    assert risk_level(score) == risk


def test_design_review_crud(member_client):
    assert member_client.post('/api/v1/design-reviews', json={}).status_code == 400

    resp = member_client.post('/api/v1/design-reviews', json={
        'name': 'Checkout redesign', 'system_type': 'API', 'compliance_frameworks': ['PCI-DSS'],
    })
    assert resp.status_code == 201
    review = resp.get_json()['design_review']
    assert review['status'] == 'DRAFT'
    assert review['review_type'] == 'ARCHITECTURE'

    url = f"/api/v1/design-reviews/{review['id']}"
    assert member_client.put(url, json={'compliance_frameworks': 'PCI'}).status_code == 400
    resp = member_client.put(url, json={'scope': 'Checkout and payment flows'})
    assert resp.get_json()['design_review']['scope'] == 'Checkout and payment flows'

    data = member_client.get('/api/v1/design-reviews?search=payment').get_json()
    assert data['total'] == 1
    assert data['per_page'] == 10

    assert member_client.delete(url).status_code == 200
    assert member_client.get(url).status_code == 404


def test_analyze_requires_architecture(member_client):
    review = member_client.post('/api/v1/design-reviews', json={'name': 'Empty'}).get_json()['design_review']
    resp = member_client.post(f"/api/v1/design-reviews/{review['id']}/analyze")
    assert resp.status_code == 400


def test_analyze_design_review(member_client):
    review = member_client.post('/api/v1/design-reviews', json={
        'name': 'Identity platform', 'architecture_description': WELL_DESIGNED,
    }).get_json()['design_review']

    resp = member_client.post(f"/api/v1/design-reviews/{review['id']}/analyze")
    assert resp.status_code == 200
    analyzed = resp.get_json()['design_review']
    assert analyzed['status'] == 'COMPLETED'
    assert analyzed['progress'] == 100
    assert analyzed['security_score'] == 84
    assert analyzed['security_grade'] == 'B'
    assert analyzed['overall_risk'] == 'LOW'
    assert analyzed['review_completed_date'] is not None

    stats = member_client.get('/api/v1/design-reviews/stats').get_json()
    assert stats['by_grade'] == {'B': 1}
    assert stats['average_security_score'] == 84


def test_failed_analysis_resets_review(member_client, monkeypatch):
    def explode(self, *args, **kwargs):
        raise RuntimeError('model offline')

    monkeypatch.setattr(DesignAnalyzer, 'analyze', explode)
    review = member_client.post('/api/v1/design-reviews', json={
        'name': 'Broken', 'architecture_description': 'Anything',
    }).get_json()['design_review']

    resp = member_client.post(f"/api/v1/design-reviews/{review['id']}/analyze")
    assert resp.status_code == 500
    reloaded = member_client.get(f"/api/v1/design-reviews/{review['id']}").get_json()
    assert reloaded['status'] == 'DRAFT'
    assert reloaded['progress'] == 0
    entry = ActivityLog.query.filter_by(action='START_DESIGN_ANALYSIS').one()
    assert entry.status.value == 'FAILED'


def test_design_review_bulk_and_export(member_client, outsider_client):
    ids = [member_client.post('/api/v1/design-reviews', json={'name': name}).get_json()['design_review']['id']
           for name in ('One', 'Two')]
    foreign = outsider_client.post('/api/v1/design-reviews', json={'name': 'Theirs'}).get_json()['design_review']

    resp = member_client.post('/api/v1/design-reviews/bulk',
                              json={'review_ids': ids + [foreign['id']], 'status': 'ARCHIVED'})
    assert resp.get_json()['affected'] == 2
    assert member_client.post('/api/v1/design-reviews/bulk', json={'review_ids': ids}).status_code == 400

    exported = member_client.get('/api/v1/design-reviews/export').get_json()
    assert {r['status'] for r in exported['design_reviews']} == {'ARCHIVED'}
    csv_text = member_client.get('/api/v1/design-reviews/export?format=csv').get_data(as_text=True)
    assert csv_text.splitlines()[0].startswith('id,name,review_type')


def test_design_review_asset_links(member_client):
    review = member_client.post('/api/v1/design-reviews', json={'name': 'Linked'}).get_json()['design_review']
    asset = member_client.post('/api/v1/assets', json={'name': 'CRM', 'asset_type': 'WEB_APPLICATION'}).get_json()['asset']
    url = f"/api/v1/design-reviews/{review['id']}/assets"

    resp = member_client.post(url, json={'asset_id': asset['id']})
    assert resp.status_code == 201
    assert resp.get_json()['design_review']['linked_assets'] == [asset['id']]
    assert member_client.post(url, json={'asset_id': asset['id']}).status_code == 400

    member_client.delete(f"/api/v1/design-reviews/{review['id']}")
    assert member_client.get(f"/api/v1/assets/{asset['id']}").get_json()['design_review_status'] == 'NOT_STARTED'


# ==================== Third-Party Reviews ====================

HARDENED_HEADERS = {
    'strict-transport-security': 'max-age=63072000',
    'Content-Security-Policy': "default-src 'self'",
    'X-Frame-Options': 'DENY',
    'X-Content-Type-Options': 'nosniff',
}
GOOD_COOKIE = {'name': 'sid', 'secure': True, 'httponly': True, 'samesite': 'Lax'}


def test_header_analysis_is_case_insensitive():
    result = analyze_headers(HARDENED_HEADERS)
    assert result['score'] == 57
    assert result['headers']['Strict-Transport-Security']['present'] is True
    assert result['headers']['Referrer-Policy']['severity'] == 'MEDIUM'


def test_cookie_analysis_lists_missing_flags():
    result = analyze_cookies([GOOD_COOKIE, {'name': 'tracker'}])
    assert result['score'] == 50
    assert result['issues'] == ["Cookie 'tracker' is missing Secure, HttpOnly, SameSite"]
    assert analyze_cookies([])['score'] == 100


def test_vendor_rules_score_hardened_site(fallback):
    observation = SiteObservation(url='https://vendor.example.com', status_code=200,
                                  headers=HARDENED_HEADERS, cookies=[GOOD_COOKIE],
                                  has_privacy_link=True, has_terms_link=False)
    analysis = VendorAnalyzer(fallback).analyze(observation)
    assert analysis.tls_grade == 'A'
    assert analysis.overall_score == 83
    assert analysis.security_grade == 'B'
    assert analysis.privacy_policy_status == 'FOUND'
    assert analysis.terms_of_service_status == 'NOT_FOUND'
    assert analysis.security_findings == []


def test_vendor_rules_flag_plain_http(fallback):
    analysis = VendorAnalyzer(fallback).analyze(SiteObservation(url='http://legacy.example.com'))
    assert analysis.tls_grade == 'F'
    assert analysis.security_findings[0]['severity'] == 'CRITICAL'
    assert 'No encryption in transit' in analysis.risk_factors


def test_vendor_rules_need_an_observation(fallback):
    with pytest.raises(ValueError):
        VendorAnalyzer(fallback).analyze(SiteObservation(url='https://down.example.com', error='timeout'))


def test_next_scan_date():
    scanned = datetime(2026, 1, 1)
    assert next_scan_date(ScanFrequency.WEEKLY, scanned) == datetime(2026, 1, 8)
    assert next_scan_date(ScanFrequency.QUARTERLY, scanned) == datetime(2026, 4, 1)
    assert next_scan_date(ScanFrequency.MANUAL, scanned) is None


@pytest.fixture
def vendor_review(member_client):
    resp = member_client.post('/api/v1/third-party-reviews', json={
        'name': 'Payroll SaaS', 'application_url': 'https://payroll.example.com',
        'vendor': 'Payroll Inc', 'scan_frequency': 'MONTHLY', 'data_types': ['PII'],
    })
    assert resp.status_code == 201
    return resp.get_json()['third_party_review']


def test_create_third_party_review_validation(member_client):
    resp = member_client.post('/api/v1/third-party-reviews', json={'name': 'No URL'})
    assert resp.status_code == 400
    resp = member_client.post('/api/v1/third-party-reviews',
                              json={'name': 'Bad URL', 'application_url': 'ftp://files.example.com'})
    assert resp.status_code == 400


@pytest.fixture
def internal_hosts_blocked(app):
    app.config['DISCOVERY_ALLOW_PRIVATE_HOSTS'] = False


@pytest.mark.parametrize('url', [
    'http://169.254.169.254/latest/meta-data/',
    'http://127.0.0.1:8080/admin',
    'https://10.0.0.5/portal',
    'https://localhost/',
])
def test_internal_vendor_urls_are_rejected(member_client, internal_hosts_blocked, url):
    resp = member_client.post('/api/v1/third-party-reviews', json={'name': 'Internal', 'application_url': url})
    assert resp.status_code == 400


def test_vendor_url_update_is_checked(member_client, vendor_review, internal_hosts_blocked):
    resp = member_client.put(f"/api/v1/third-party-reviews/{vendor_review['id']}",
                             json={'application_url': 'http://169.254.169.254/'})
    assert resp.status_code == 400


def test_scan_refuses_internal_url(app, member_client, monkeypatch):
    fetched = []
    monkeypatch.setattr('bguard.api.third_party_reviews.observe_site', fetched.append)
    created = member_client.post('/api/v1/third-party-reviews', json={
        'name': 'Metadata', 'application_url': 'http://169.254.169.254/latest/meta-data/',
    })
    assert created.status_code == 201
    review_id = created.get_json()['third_party_review']['id']

    app.config['DISCOVERY_ALLOW_PRIVATE_HOSTS'] = False
    resp = member_client.post(f'/api/v1/third-party-reviews/{review_id}/scan')
    assert resp.status_code == 400
    assert fetched == []
    assert member_client.get(f'/api/v1/third-party-reviews/{review_id}').get_json()['status'] == 'PENDING'


def test_scan_third_party_review(member_client, vendor_review, monkeypatch):
    monkeypatch.setattr('bguard.api.third_party_reviews.observe_site', lambda url: SiteObservation(
        url=url, status_code=200, headers=HARDENED_HEADERS, cookies=[GOOD_COOKIE],
        has_privacy_link=True, has_terms_link=True))

    resp = member_client.post(f"/api/v1/third-party-reviews/{vendor_review['id']}/scan")
    assert resp.status_code == 200
    scanned = resp.get_json()['third_party_review']
    assert scanned['status'] == 'COMPLETED'
    assert scanned['overall_score'] == 83
    assert scanned['risk_level'] == 'LOW'
    assert scanned['cookie_analysis']['secure'] == 1
    last = datetime.fromisoformat(scanned['last_scan_date'])
    assert (datetime.fromisoformat(scanned['next_scan_date']) - last).days == 30


def test_failed_scan_marks_review_failed(member_client, vendor_review, monkeypatch):
    monkeypatch.setattr('bguard.api.third_party_reviews.observe_site',
                        lambda url: SiteObservation(url=url, error='connection refused'))

    resp = member_client.post(f"/api/v1/third-party-reviews/{vendor_review['id']}/scan")
    assert resp.status_code == 502
    assert resp.get_json()['third_party_review']['status'] == 'FAILED'
    detail = member_client.get(f"/api/v1/third-party-reviews/{vendor_review['id']}").get_json()
    assert 'connection refused' in detail['error_message']

    stats = member_client.get('/api/v1/third-party-reviews/stats').get_json()
    assert stats['by_status'] == {'FAILED': 1}


def test_third_party_review_scoping_and_updates(member_client, outsider_client, vendor_review):
    url = f"/api/v1/third-party-reviews/{vendor_review['id']}"
    assert outsider_client.get(url).status_code == 403
    assert member_client.put(url, json={'application_url': 'not a url'}).status_code == 400
    resp = member_client.put(url, json={'business_owner': 'Finance'})
    assert resp.get_json()['third_party_review']['business_owner'] == 'Finance'


def test_third_party_bulk_and_export(member_client, vendor_review):
    resp = member_client.post('/api/v1/third-party-reviews/bulk', json={
        'review_ids': [vendor_review['id']], 'action': 'update_frequency', 'scan_frequency': 'YEARLY',
    })
    assert resp.get_json()['affected'] == 1

    exported = member_client.get('/api/v1/third-party-reviews/export').get_json()
    assert exported['third_party_reviews'][0]['scan_frequency'] == 'YEARLY'

    resp = member_client.post('/api/v1/third-party-reviews/bulk',
                              json={'review_ids': [vendor_review['id']], 'action': 'delete'})
    assert resp.get_json()['affected'] == 1
    assert member_client.get('/api/v1/third-party-reviews').get_json()['total'] == 0
