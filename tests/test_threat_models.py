"""
Threat model lifecycle and rule-based STRIDE analysis tests.
"""

import json

import pytest

from bguard import db
from bguard.ai import ThreatAnalyzer, ThreatModelContext
from bguard.ai.llm import (
    LLMService, LLMProvider, LLMError, PromptCache, create_llm_service, extract_json, get_llm_service
)
from bguard.ai.threat_analyzer import rule_based_threats, baseline_threats, STRIDE_CATEGORIES
from bguard.models import ActivityLog, ThreatModel, ThreatModelStatus
from tests.conftest import login


def _titles(threat_model):
    return {f['threat_scenario'] for f in threat_model['findings']}


def test_context_is_inferred_from_description():
    ctx = ThreatModelContext.from_request(
        {}, 'Customer-facing web portal with a MySQL database and login form')
    assert ctx.system_type == 'web application'
    assert 'mysql' in ctx.data_stores
    assert ctx.authentication_methods == ['password']
    assert ctx.network_exposure == 'public'


def test_explicit_context_wins_over_inference():
    ctx = ThreatModelContext.from_request(
        {'networkExposure': 'Internal', 'dataStores': 'redis, s3'}, 'public api with a database')
    assert ctx.network_exposure == 'internal'
    assert ctx.data_stores == ['redis', 's3']


def test_rule_based_threats_follow_context():
    ctx = ThreatModelContext(system_type='web application', trusted_boundaries=['dmz'])
    titles = {t.title for t in rule_based_threats(ctx)}
    assert titles == {'Trust Boundary Violation', 'Cross-Site Scripting (XSS)'}


def test_baseline_covers_every_stride_category():
    threats = baseline_threats()
    assert sorted(t.stride_category for t in threats) == sorted(STRIDE_CATEGORIES)
    assert all(t.severity == 'MEDIUM' and t.cvss_score == 7.7 for t in threats)


def test_analyzer_without_provider_excludes_known_titles(app):
    analyzer = ThreatAnalyzer(create_llm_service(provider='fallback'))
    result = analyzer.analyze('Nightly batch job', exclude_titles=['identity spoofing'])
    assert result.method == 'fallback'
    assert len(result.threats) == 5
    assert 'Identity Spoofing' not in {t.title for t in result.threats}


class FakeClient:
    """Stands in for a provider client and returns a canned response."""

    def __init__(self, response=None, error=None):
        self.response = response
        self.error = error
        self.calls = []

    def generate(self, system_prompt, user_prompt, temperature=0.7, max_tokens=4000):
        self.calls.append(user_prompt)
        if self.error:
            raise self.error
        return self.response


LLM_ANALYSIS = {
    'summary': 'Two notable threats',
    'strideAnalysis': [
        {'category': 'Spoofing', 'threats': [
            {'title': 'Session Hijacking', 'description': 'Stolen cookies', 'severity': 'critical',
             'recommendation': 'Rotate session ids'},
        ]},
        {'category': 'Made Up', 'threats': [
            {'title': 'Verbose Errors', 'severity': 'extreme'},
        ]},
    ],
}


def test_llm_analysis_is_normalized_and_merged_with_rules():
    client = FakeClient('```json\n' + json.dumps(LLM_ANALYSIS) + '\n```')
    analyzer = ThreatAnalyzer(LLMService(LLMProvider.ANTHROPIC, client))
    ctx = ThreatModelContext(data_stores=['postgres'])

    result = analyzer.analyze('Billing service', ctx)

    by_title = {t.title: t for t in result.threats}
    assert result.method == 'anthropic'
    assert by_title['Session Hijacking'].severity == 'CRITICAL'
    assert by_title['Session Hijacking'].cvss_score == 10.0
    assert by_title['Session Hijacking'].asvs_level == 3
    assert by_title['Verbose Errors'].stride_category == 'INFORMATION_DISCLOSURE'
    assert by_title['Verbose Errors'].severity == 'MEDIUM'
    assert 'Unauthorized Data Access' in by_title


def test_llm_failure_falls_back_to_rules():
    client = FakeClient(error=RuntimeError('quota exceeded'))
    analyzer = ThreatAnalyzer(LLMService(LLMProvider.OPENAI, client))
    result = analyzer.analyze('Public website with login')
    assert result.method == 'fallback'
    assert 'Weak Authentication Mechanism' in {t.title for t in result.threats}


def test_generate_more_prompt_lists_existing_titles():
    client = FakeClient(json.dumps({'summary': 'none', 'strideAnalysis': []}))
    ThreatAnalyzer(LLMService(LLMProvider.ANTHROPIC, client)).analyze(
        'Billing service', ThreatModelContext(), exclude_titles=['Session Hijacking'])
    assert '- Session Hijacking' in client.calls[0]


def test_extract_json_tolerates_prose():
    assert extract_json('Here you go: {"a": 1} hope it helps') == {'a': 1}
    with pytest.raises(LLMError):
        extract_json('no json here')


def test_prompt_cache_serves_repeated_prompts():
    client = FakeClient('{"ok": true}')
    service = LLMService(LLMProvider.ANTHROPIC, client, cache=PromptCache(max_entries=2))
    assert service.complete_json('system', 'same prompt') == {'ok': True}
    assert service.complete_json('system', 'same prompt') == {'ok': True}
    assert len(client.calls) == 1
    assert service.cache.hits == 1

    service.complete('system', 'same prompt', temperature=0.9)
    assert len(client.calls) == 2


def test_prompt_cache_evicts_least_recently_used():
    cache = PromptCache(max_entries=2)
    keys = [cache.key('system', prompt, 0.3) for prompt in ('a', 'b', 'c')]
    cache.store(keys[0], 'A')
    cache.store(keys[1], 'B')
    assert cache.lookup(keys[0]) == 'A'
    cache.store(keys[2], 'C')
    assert len(cache) == 2
    assert cache.lookup(keys[1]) is None
    assert cache.lookup(keys[0]) == 'A'


def test_failed_requests_are_not_cached():
    client = FakeClient(error=RuntimeError('timeout'))
    service = LLMService(LLMProvider.OPENAI, client, cache=PromptCache())
    for _ in range(2):
        with pytest.raises(LLMError):
            service.complete('system', 'prompt')
    assert len(client.calls) == 2
    assert len(service.cache) == 0


def test_app_reuses_one_llm_service(app):
    service = get_llm_service()
    assert get_llm_service() is service
    assert service.is_available() is False
    assert create_llm_service('anthropic', anthropic_key='sk-test', cache_size=0).cache is None


def test_create_threat_model_runs_analysis(threat_model):
    assert threat_model['status'] == 'COMPLETED'
    assert _titles(threat_model) == {
        'Unauthorized Data Access',
        'Weak Authentication Mechanism',
        'Excessive Network Exposure',
        'API Security Misconfiguration',
    }
    assert threat_model['summary'].startswith('Rule-based STRIDE analysis of the api')

    by_title = {f['threat_scenario']: f for f in threat_model['findings']}
    api = by_title['API Security Misconfiguration']
    assert api['cvss_score'] == 7.5
    assert api['nist_controls'] == ['AC-3', 'AC-6']
    assert api['status'] == 'OPEN'
    assert by_title['Unauthorized Data Access']['cvss_score'] == 9.8
    assert by_title['Weak Authentication Mechanism']['asvs_level'] == 1


def test_create_requires_name_and_prompt(member_client):
    resp = member_client.post('/api/v1/threat-models', json={'name': 'No prompt'})
    assert resp.status_code == 400


@pytest.mark.parametrize('payload', [
    {'name': 12345, 'prompt': 'A public web API for card payments.'},
    {'name': 'Payments API', 'prompt': ['A public web API', 'for card payments']},
    {'name': 'Payments API', 'prompt': 'A public web API for card payments.', 'assets': 'Card vault'},
    {'name': 'Payments API', 'prompt': 'A public web API for card payments.', 'assets': [{'name': 7}]},
])
def test_create_rejects_malformed_fields(member_client, payload):
    assert member_client.post('/api/v1/threat-models', json=payload).status_code == 400
    assert ThreatModel.query.count() == 0


def test_create_with_assets(member_client):
    resp = member_client.post('/api/v1/threat-models', json={
        'name': 'Ledger', 'prompt': 'Nightly reconciliation batch',
        'assets': [{'name': 'Ledger DB', 'asset_type': 'database', 'criticality': 'HIGH'}],
    })
    body = resp.get_json()['threat_model']
    assert resp.status_code == 201
    assert body['assets'][0]['criticality'] == 'HIGH'
    assert len(body['findings']) == 6


def test_create_logs_activity(threat_model):
    entry = ActivityLog.query.filter_by(action='CREATE_THREAT_MODEL').one()
    assert entry.entity_id == str(threat_model['id'])
    assert entry.details['analysis_method'] == 'fallback'


def test_outsider_cannot_read_threat_model(threat_model, outsider_client):
    resp = outsider_client.get(f"/api/v1/threat-models/{threat_model['id']}")
    assert resp.status_code == 403
    assert outsider_client.get('/api/v1/threat-models').get_json()['total'] == 0


def test_business_admin_sees_organization_models(threat_model, app, business_admin):
    owner = app.test_client()
    login(owner, business_admin.email)
    listed = owner.get('/api/v1/threat-models').get_json()
    assert [tm['id'] for tm in listed['threat_models']] == [threat_model['id']]


def test_unknown_threat_model_is_404(member_client):
    resp = member_client.get('/api/v1/threat-models/999')
    assert resp.status_code == 404
    assert resp.get_json()['error'] == 'Threat model not found'


def test_list_filters_by_status(member_client, threat_model):
    assert member_client.get('/api/v1/threat-models?status=DRAFT').get_json()['total'] == 0
    assert member_client.get('/api/v1/threat-models?status=COMPLETED').get_json()['total'] == 1
    assert member_client.get('/api/v1/threat-models?status=BOGUS').status_code == 400


def test_update_threat_model(member_client, threat_model):
    resp = member_client.put(f"/api/v1/threat-models/{threat_model['id']}",
                             json={'name': 'Payments API v2', 'status': 'ARCHIVED'})
    assert resp.status_code == 200
    assert resp.get_json()['threat_model']['name'] == 'Payments API v2'

    resp = member_client.put(f"/api/v1/threat-models/{threat_model['id']}", json={'status': 'DONE'})
    assert resp.status_code == 400
    assert member_client.put(f"/api/v1/threat-models/{threat_model['id']}", json={'status': None}).status_code == 400
    assert member_client.put(f"/api/v1/threat-models/{threat_model['id']}", json={'name': 99}).status_code == 400


def test_generate_more_skips_existing_threats(member_client, threat_model):
    resp = member_client.post(f"/api/v1/threat-models/{threat_model['id']}/generate-more")
    assert resp.status_code == 200
    assert resp.get_json()['new_findings'] == []
    assert resp.get_json()['threat_model']['findings_count'] == 4


def test_generate_more_conflicts_while_analyzing(member_client, threat_model):
    model = db.session.get(ThreatModel, threat_model['id'])
    model.status = ThreatModelStatus.ANALYZING
    db.session.commit()
    resp = member_client.post(f"/api/v1/threat-models/{threat_model['id']}/generate-more")
    assert resp.status_code == 409


def test_analytics(member_client, threat_model):
    data = member_client.get('/api/v1/threat-models/analytics').get_json()
    assert data['total_threat_models'] == 1
    assert data['total_findings'] == 4
    assert data['by_severity']['HIGH'] == 3
    assert data['by_severity']['MEDIUM'] == 1
    assert data['by_stride_category']['REPUDIATION'] == 0
    assert data['threat_models_by_status']['COMPLETED'] == 1


def test_compliance_summary(member_client, threat_model):
    data = member_client.get(f"/api/v1/threat-models/{threat_model['id']}/compliance").get_json()
    control_ids = {c['id'] for c in data['nist']['controls']}
    assert {'AC-3', 'AC-6', 'IA-2'} <= control_ids
    assert data['cvss']['max'] == 9.8
    assert data['asvs']['level_2'] == 3


def test_threat_asset_management(member_client, threat_model):
    url = f"/api/v1/threat-models/{threat_model['id']}/assets"
    assert member_client.post(url, json={'asset_type': 'queue'}).status_code == 400

    created = member_client.post(url, json={'name': 'Card vault', 'criticality': 'CRITICAL'})
    assert created.status_code == 201
    asset_id = created.get_json()['asset']['id']
    assert len(member_client.get(url).get_json()['assets']) == 1

    assert member_client.delete(f'{url}/{asset_id}').status_code == 200
    assert member_client.delete(f'{url}/{asset_id}').status_code == 404


def test_delete_threat_model(member_client, threat_model):
    url = f"/api/v1/threat-models/{threat_model['id']}"
    assert member_client.delete(url).status_code == 200
    assert member_client.get(url).status_code == 404
