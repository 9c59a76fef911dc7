"""
Finding triage, tag and finding-asset link tests.
"""

import pytest

from bguard import db
from bguard.models import Tag, ActivityLog
from tests.conftest import login


def system_tag(name):
    return Tag.query.filter_by(name=name, is_system=True).one()


@pytest.fixture
def finding(threat_model):
    by_title = {f['threat_scenario']: f for f in threat_model['findings']}
    return by_title['Weak Authentication Mechanism']


@pytest.fixture
def owner_client(app, business_admin):
    owner = app.test_client()
    assert login(owner, business_admin.email).status_code == 200
    return owner


def test_list_findings_with_filters(member_client, threat_model):
    data = member_client.get('/api/v1/findings?severity=HIGH').get_json()
    assert data['total'] == 3
    assert {f['severity'] for f in data['findings']} == {'HIGH'}

    data = member_client.get('/api/v1/findings?search=password').get_json()
    assert [f['threat_scenario'] for f in data['findings']] == ['Weak Authentication Mechanism']

    assert member_client.get('/api/v1/findings?stride_category=NOPE').status_code == 400


def test_findings_are_scoped(outsider_client, threat_model, finding):
    assert outsider_client.get('/api/v1/findings').get_json()['total'] == 0
    assert outsider_client.get(f"/api/v1/findings/{finding['id']}").status_code == 403


def test_severity_change_remaps_frameworks(member_client, finding):
    resp = member_client.put(f"/api/v1/findings/{finding['id']}", json={'severity': 'CRITICAL'})
    updated = resp.get_json()['finding']
    assert resp.status_code == 200
    assert updated['cvss_score'] == 10.0
    assert updated['asvs_level'] == 3
    assert updated['owasp_category'] == 'A07'


def test_supplied_framework_fields_are_kept(member_client, finding):
    resp = member_client.put(f"/api/v1/findings/{finding['id']}",
                             json={'stride_category': 'TAMPERING', 'owasp_category': 'A08'})
    updated = resp.get_json()['finding']
    assert updated['owasp_category'] == 'A08'
    assert updated['nist_controls'] == ['SI-1', 'SI-2', 'CM-1', 'CM-2']


def test_update_without_remap_leaves_frameworks(member_client, finding):
    resp = member_client.put(f"/api/v1/findings/{finding['id']}", json={'comments': 'Tracked in JIRA'})
    assert resp.get_json()['finding']['cvss_score'] == finding['cvss_score']
    assert ActivityLog.query.filter_by(action='UPDATE_FINDING').count() == 1


def test_blank_threat_scenario_rejected(member_client, finding):
    resp = member_client.put(f"/api/v1/findings/{finding['id']}", json={'threat_scenario': '  '})
    assert resp.status_code == 400


@pytest.mark.parametrize('payload', [
    {'severity': None},
    {'severity': ''},
    {'stride_category': None},
    {'status': None},
    {'threat_scenario': 42},
])
def test_required_fields_cannot_be_cleared(member_client, threat_model, finding, payload):
    resp = member_client.put(f"/api/v1/findings/{finding['id']}", json=payload)
    assert resp.status_code == 400

    current = member_client.get(f"/api/v1/findings/{finding['id']}").get_json()
    assert current['severity'] == 'MEDIUM'
    assert current['status'] == 'OPEN'
    resp = member_client.get(f"/api/v1/threat-models/{threat_model['id']}")
    assert resp.status_code == 200
    assert resp.get_json()['severity_counts']['MEDIUM'] == 1
    assert member_client.get('/api/v1/dashboard').status_code == 200


def test_patch_rejects_null_status(member_client, finding):
    url = f"/api/v1/findings/{finding['id']}"
    resp = member_client.patch(url, json={'status': None})
    assert resp.status_code == 400
    assert resp.get_json()['error'] == 'status cannot be empty'
    assert member_client.get(url).get_json()['status'] == 'OPEN'


def test_patch_status_and_comments(member_client, finding):
    url = f"/api/v1/findings/{finding['id']}"
    assert member_client.patch(url, json={}).status_code == 400
    assert member_client.patch(url, json={'status': 'CLOSED'}).status_code == 400

    resp = member_client.patch(url, json={'status': 'RESOLVED', 'comments': 'MFA rolled out'})
    assert resp.status_code == 200
    assert resp.get_json()['finding']['status'] == 'RESOLVED'
    assert resp.get_json()['finding']['comments'] == 'MFA rolled out'


def test_false_positive_requires_justification(member_client, finding):
    url = f"/api/v1/findings/{finding['id']}/tags"
    tag = system_tag('False Positive')

    assert member_client.post(url, json={'tag_id': tag.id}).status_code == 400

    resp = member_client.post(url, json={'tag_id': tag.id, 'justification': 'MFA is enforced upstream'})
    assert resp.status_code == 201
    applied = resp.get_json()['finding']['tags']
    assert applied[0]['name'] == 'False Positive'
    assert applied[0]['justification'] == 'MFA is enforced upstream'

    resp = member_client.post(url, json={'tag_id': tag.id, 'justification': 'again'})
    assert resp.status_code == 409


def test_tag_without_justification_requirement(member_client, finding):
    url = f"/api/v1/findings/{finding['id']}/tags"
    tag = system_tag('Quick Win')
    assert member_client.post(url, json={'tag_id': tag.id}).status_code == 201
    assert member_client.delete(f'{url}/{tag.id}').status_code == 200
    assert member_client.delete(f'{url}/{tag.id}').status_code == 404


def test_unknown_tag_is_404(member_client, finding):
    resp = member_client.post(f"/api/v1/findings/{finding['id']}/tags", json={'tag_id': 999})
    assert resp.status_code == 404


def test_other_organizations_tag_is_invisible(member_client, finding, outsider):
    foreign = Tag(name='Vendor', organization_id=outsider.organization_id)
    db.session.add(foreign)
    db.session.commit()
    resp = member_client.post(f"/api/v1/findings/{finding['id']}/tags", json={'tag_id': foreign.id})
    assert resp.status_code == 404


def test_finding_asset_links(member_client, threat_model, finding):
    assets_url = f"/api/v1/threat-models/{threat_model['id']}/assets"
    asset_id = member_client.post(assets_url, json={'name': 'Login service'}).get_json()['asset']['id']
    url = f"/api/v1/findings/{finding['id']}/assets"

    assert member_client.post(url, json={'asset_id': asset_id, 'impact': 'SIDEWAYS'}).status_code == 400
    resp = member_client.post(url, json={'asset_id': asset_id, 'impact': 'INDIRECT'})
    assert resp.status_code == 201
    assert resp.get_json()['finding']['assets'][0]['impact'] == 'INDIRECT'
    assert member_client.post(url, json={'asset_id': asset_id}).status_code == 409

    assert member_client.delete(f'{url}/{asset_id}').status_code == 200
    assert member_client.delete(f'{url}/{asset_id}').status_code == 404


def test_finding_asset_must_share_threat_model(member_client, finding):
    other = member_client.post('/api/v1/threat-models', json={
        'name': 'Second system', 'prompt': 'Nightly batch job',
    }).get_json()['threat_model']
    asset_id = member_client.post(f"/api/v1/threat-models/{other['id']}/assets",
                                  json={'name': 'Job runner'}).get_json()['asset']['id']
    resp = member_client.post(f"/api/v1/findings/{finding['id']}/assets", json={'asset_id': asset_id})
    assert resp.status_code == 400


def test_list_tags_orders_system_first(owner_client, member_client):
    owner_client.post('/api/v1/tags', json={'name': 'Aardvark'})
    names = [t['name'] for t in member_client.get('/api/v1/tags').get_json()['tags']]
    assert names[-1] == 'Aardvark'
    assert names[:5] == sorted(name for name, _, _ in Tag.SYSTEM_TAGS)

    names = [t['name'] for t in member_client.get('/api/v1/tags?include_system=false').get_json()['tags']]
    assert names == ['Aardvark']


def test_create_tag_validation(owner_client):
    assert owner_client.post('/api/v1/tags', json={'name': 'PCI', 'color': 'red'}).status_code == 400
    assert owner_client.post('/api/v1/tags', json={'name': 'PCI', 'color': '#112233'}).status_code == 201
    assert owner_client.post('/api/v1/tags', json={'name': 'pci'}).status_code == 409


def test_tag_creation_needs_an_organization(admin_client):
    assert admin_client.post('/api/v1/tags', json={'name': 'Global'}).status_code == 400


def test_system_tags_are_read_only(owner_client):
    tag = system_tag('Needs Review')
    assert owner_client.put(f'/api/v1/tags/{tag.id}', json={'name': 'Renamed'}).status_code == 400
    assert owner_client.delete(f'/api/v1/tags/{tag.id}').status_code == 400


def test_members_cannot_manage_tags(owner_client, member_client):
    tag_id = owner_client.post('/api/v1/tags', json={'name': 'PII'}).get_json()['tag']['id']
    assert member_client.put(f'/api/v1/tags/{tag_id}', json={'name': 'Personal'}).status_code == 403

    resp = owner_client.put(f'/api/v1/tags/{tag_id}', json={'name': 'Personal data'})
    assert resp.get_json()['tag']['name'] == 'Personal data'
    assert owner_client.delete(f'/api/v1/tags/{tag_id}').status_code == 200


def test_deleting_tag_removes_it_from_findings(owner_client, member_client, finding):
    tag_id = owner_client.post('/api/v1/tags', json={'name': 'Sprint 12'}).get_json()['tag']['id']
    member_client.post(f"/api/v1/findings/{finding['id']}/tags", json={'tag_id': tag_id})
    owner_client.delete(f'/api/v1/tags/{tag_id}')
    assert member_client.get(f"/api/v1/findings/{finding['id']}").get_json()['tags'] == []
