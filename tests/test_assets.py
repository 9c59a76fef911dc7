"""
Asset inventory tests.
"""

import pytest


def create_asset(client, **fields):
    payload = {'name': 'Customer Portal', 'asset_type': 'WEB_APPLICATION'}
    payload.update(fields)
    resp = client.post('/api/v1/assets', json=payload)
    assert resp.status_code == 201, resp.get_json()
    return resp.get_json()['asset']


@pytest.fixture
def asset(member_client):
    return create_asset(member_client, business_criticality='VERY_HIGH', owner='Platform',
                        tech_stack='python, postgres', application_url='https://portal.example.com')


def test_create_asset_defaults(member_client):
    asset = create_asset(member_client, name='Ledger DB', asset_type='DATABASE')
    assert asset['status'] == 'ACTIVE'
    assert asset['business_criticality'] == 'MEDIUM'
    assert asset['data_classification'] == 'INTERNAL'
    assert asset['environment'] == 'PRODUCTION'
    assert asset['threat_model_status'] == 'NOT_STARTED'


def test_list_fields_accept_comma_strings(asset):
    assert asset['tech_stack'] == ['python', 'postgres']


def test_create_asset_validation(member_client):
    assert member_client.post('/api/v1/assets', json={'name': 'No type'}).status_code == 400
    resp = member_client.post('/api/v1/assets', json={'name': 'Odd', 'asset_type': 'TOASTER'})
    assert resp.status_code == 400
    resp = member_client.post('/api/v1/assets', json={'name': 'Odd', 'asset_type': 'OTHER', 'tags': 5})
    assert resp.status_code == 400


def test_list_filters_and_search(member_client, asset):
    create_asset(member_client, name='Batch Runner', asset_type='MICROSERVICE', environment='STAGING')
    data = member_client.get('/api/v1/assets?environment=STAGING').get_json()
    assert [a['name'] for a in data['assets']] == ['Batch Runner']
    data = member_client.get('/api/v1/assets?search=platform').get_json()
    assert [a['name'] for a in data['assets']] == ['Customer Portal']
    assert member_client.get('/api/v1/assets?status=LOST').status_code == 400


def test_assets_are_scoped(outsider_client, asset):
    assert outsider_client.get('/api/v1/assets').get_json()['total'] == 0
    assert outsider_client.get(f"/api/v1/assets/{asset['id']}").status_code == 403
    assert outsider_client.delete(f"/api/v1/assets/{asset['id']}").status_code == 403


def test_update_asset(member_client, asset):
    resp = member_client.put(f"/api/v1/assets/{asset['id']}",
                             json={'status': 'DEPRECATED', 'encryption_at_rest': 1})
    updated = resp.get_json()['asset']
    assert updated['status'] == 'DEPRECATED'
    assert updated['encryption_at_rest'] is True

    resp = member_client.put(f"/api/v1/assets/{asset['id']}", json={'asset_type': None})
    assert resp.status_code == 400


def test_threat_model_link_lifecycle(member_client, asset, threat_model):
    url = f"/api/v1/assets/{asset['id']}/threat-models"
    resp = member_client.post(url, json={'threat_model_id': threat_model['id']})
    assert resp.status_code == 201
    linked = resp.get_json()['asset']
    assert linked['threat_model_status'] == 'COMPLETED'
    assert linked['linked_threat_models'][0]['threat_model_name'] == 'Payments API'

    assert member_client.post(url, json={'threat_model_id': threat_model['id']}).status_code == 400

    resp = member_client.delete(f"{url}/{threat_model['id']}")
    assert resp.get_json()['asset']['threat_model_status'] == 'NOT_STARTED'
    assert member_client.delete(f"{url}/{threat_model['id']}").status_code == 404


def test_link_requires_accessible_threat_model(member_client, asset):
    url = f"/api/v1/assets/{asset['id']}/threat-models"
    assert member_client.post(url, json={}).status_code == 404
    assert member_client.post(url, json={'threat_model_id': 4242}).status_code == 404


def test_deleting_threat_model_resets_asset_coverage(member_client, asset, threat_model):
    member_client.post(f"/api/v1/assets/{asset['id']}/threat-models", json={'threat_model_id': threat_model['id']})
    member_client.delete(f"/api/v1/threat-models/{threat_model['id']}")
    assert member_client.get(f"/api/v1/assets/{asset['id']}").get_json()['threat_model_status'] == 'NOT_STARTED'


def test_design_review_link_lifecycle(member_client, asset):
    review = member_client.post('/api/v1/design-reviews', json={'name': 'Portal review'}).get_json()['design_review']
    url = f"/api/v1/assets/{asset['id']}/design-reviews"

    resp = member_client.post(url, json={'design_review_id': review['id']})
    assert resp.status_code == 201
    assert resp.get_json()['asset']['design_review_status'] == 'COMPLETED'
    assert member_client.post(url, json={'design_review_id': review['id']}).status_code == 400

    resp = member_client.delete(f"{url}/{review['id']}")
    assert resp.get_json()['asset']['design_review_status'] == 'NOT_STARTED'


def test_stats_report_high_risk_assets(member_client, asset, threat_model):
    create_asset(member_client, name='Wiki', asset_type='OTHER', business_criticality='LOW')
    stats = member_client.get('/api/v1/assets/stats').get_json()
    assert stats['total'] == 2
    assert stats['by_type'] == {'WEB_APPLICATION': 1, 'OTHER': 1}
    assert stats['high_risk_count'] == 1
    assert stats['high_risk_assets'] == [{'id': asset['id'], 'name': 'Customer Portal'}]

    member_client.post(f"/api/v1/assets/{asset['id']}/threat-models", json={'threat_model_id': threat_model['id']})
    stats = member_client.get('/api/v1/assets/stats').get_json()
    assert stats['threat_model_coverage'] == 1
    # design review coverage is still missing
    assert stats['high_risk_count'] == 1


def test_export_json_and_csv(member_client, asset):
    data = member_client.get('/api/v1/assets/export').get_json()
    assert data['total'] == 1
    assert data['assets'][0]['name'] == 'Customer Portal'

    resp = member_client.get('/api/v1/assets/export?format=csv')
    assert resp.mimetype == 'text/csv'
    lines = resp.get_data(as_text=True).splitlines()
    assert lines[0].startswith('id,name,asset_type')
    assert 'python, postgres' in lines[1]

    assert member_client.get('/api/v1/assets/export?format=xml').status_code == 400


def test_bulk_status_update_and_delete(member_client, asset, outsider_client):
    foreign = create_asset(outsider_client, name='Not yours', asset_type='OTHER')
    second = create_asset(member_client, name='Search API', asset_type='API_SERVICE')

    resp = member_client.post('/api/v1/assets/bulk', json={
        'asset_ids': [asset['id'], second['id'], foreign['id']], 'action': 'update_status', 'status': 'RETIRED',
    })
    assert resp.get_json()['affected'] == 2

    assert member_client.post('/api/v1/assets/bulk', json={'asset_ids': [asset['id']], 'action': 'archive'}).status_code == 400
    assert member_client.post('/api/v1/assets/bulk', json={'asset_ids': [], 'action': 'delete'}).status_code == 400

    resp = member_client.post('/api/v1/assets/bulk', json={'asset_ids': [asset['id'], second['id']], 'action': 'delete'})
    assert resp.get_json()['affected'] == 2
    assert member_client.get('/api/v1/assets').get_json()['total'] == 0
    assert outsider_client.get(f"/api/v1/assets/{foreign['id']}").get_json()['status'] == 'ACTIVE'
