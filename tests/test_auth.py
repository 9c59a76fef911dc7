"""
Authentication tests: signup, login lockout, password change and reset,
and API key authentication.
"""

from bguard import db
from bguard.models import User, UserRole, Organization, SecurityEvent, ActivityLog
from tests.conftest import PASSWORD, login


def signup(client, **overrides):
    payload = {
        'email': 'new.user@bguard.io',
        'password': PASSWORD,
        'first_name': 'New',
        'last_name': 'User',
    }
    payload.update(overrides)
    return client.post('/api/v1/auth/signup', json=payload)


def test_signup_creates_business_user_and_organization(client):
    resp = signup(client, organization_name='Northwind')
    assert resp.status_code == 201
    user = resp.get_json()['user']
    assert user['role'] == 'BUSINESS_USER'
    assert user['organization_name'] == 'Northwind'
    assert Organization.query.filter_by(name='Northwind').count() == 1


def test_signup_rejects_existing_email(client, member):
    resp = signup(client, email=member.email)
    assert resp.status_code == 400
    assert ActivityLog.query.filter_by(action='SIGNUP_ATTEMPT_EXISTING_USER').count() == 1


def test_signup_duplicate_organization_conflicts(client, org):
    resp = signup(client, organization_name=org.name.upper())
    assert resp.status_code == 409


def test_signup_rejects_weak_password(client):
    resp = signup(client, password='weakpassword')
    assert resp.status_code == 400
    assert 'uppercase' in resp.get_json()['error']


def test_signup_rejects_both_organization_fields(client, org):
    resp = signup(client, organization_name='Another', organization_id=org.id)
    assert resp.status_code == 400


def test_login_and_me_returns_permissions(client, member):
    assert login(client, member.email).status_code == 200
    me = client.get('/api/v1/auth/me').get_json()
    assert me['email'] == member.email
    assert 'CREATE_REPORTS' in me['permissions']
    assert 'MANAGE_ALL_USERS' not in me['permissions']


def test_unauthenticated_request_gets_json_401(client):
    resp = client.get('/api/v1/threat-models')
    assert resp.status_code == 401
    assert resp.get_json()['error'] == 'Authentication required'


def test_wrong_password_locks_account_after_org_limit(client, member, org):
    org.max_failed_logins = 3
    db.session.commit()

    for _ in range(3):
        assert login(client, member.email, 'Wr0ng!Password').status_code == 401

    resp = login(client, member.email)
    assert resp.status_code == 423
    assert SecurityEvent.query.filter_by(event_type='ACCOUNT_LOCKED').count() == 1
    assert SecurityEvent.query.filter_by(event_type='MULTIPLE_FAILED_LOGINS').count() >= 1


def test_unknown_email_gets_generic_error(client):
    resp = login(client, 'nobody@bguard.io')
    assert resp.status_code == 401
    assert resp.get_json()['error'] == 'Invalid email or password'


def test_suspended_user_cannot_log_in(client, member):
    member.is_active = False
    db.session.commit()
    assert login(client, member.email).status_code == 403


def test_change_password(member_client, member):
    resp = member_client.post('/api/v1/auth/change-password', json={
        'current_password': PASSWORD, 'new_password': 'N3w!Passw0rd',
    })
    assert resp.status_code == 200
    assert db.session.get(User, member.id).check_password('N3w!Passw0rd')


def test_change_password_with_wrong_current_password(member_client):
    resp = member_client.post('/api/v1/auth/change-password', json={
        'current_password': 'Wr0ng!Password', 'new_password': 'N3w!Passw0rd',
    })
    assert resp.status_code == 400
    assert SecurityEvent.query.filter_by(event_type='PASSWORD_CHANGE_FAILED').count() == 1


def test_password_reset_flow(client, member):
    resp = client.post('/api/v1/auth/password-reset/request', json={'email': member.email})
    token = resp.get_json()['reset_token']

    resp = client.post('/api/v1/auth/password-reset/confirm',
                       json={'token': token, 'new_password': 'R3set!Passw0rd'})
    assert resp.status_code == 200
    assert login(client, member.email, 'R3set!Passw0rd').status_code == 200

    # tokens are single use
    resp = client.post('/api/v1/auth/password-reset/confirm',
                       json={'token': token, 'new_password': 'An0ther!Passw0rd'})
    assert resp.status_code == 400


def test_password_reset_for_unknown_email_looks_the_same(client):
    resp = client.post('/api/v1/auth/password-reset/request', json={'email': 'ghost@bguard.io'})
    assert resp.status_code == 200
    assert 'reset_token' not in resp.get_json()


def test_api_key_authenticates_requests(app, member_client, member):
    resp = member_client.post('/api/v1/api-keys', json={'name': 'CI pipeline', 'scopes': ['*']})
    assert resp.status_code == 201
    raw_key = resp.get_json()['api_key']
    assert raw_key.startswith('bguard_')

    other = app.test_client()
    resp = other.get('/api/v1/auth/me', headers={'X-API-Key': raw_key})
    assert resp.status_code == 200
    assert resp.get_json()['id'] == member.id


def test_revoked_api_key_is_rejected(app, member_client):
    created = member_client.post('/api/v1/api-keys', json={'name': 'Temp key', 'scopes': ['findings:read']})
    key_id = created.get_json()['key']['id']
    raw_key = created.get_json()['api_key']

    assert member_client.delete(f'/api/v1/api-keys/{key_id}').status_code == 200
    resp = app.test_client().get('/api/v1/auth/me', headers={'X-API-Key': raw_key})
    assert resp.status_code == 401


def test_rotated_api_key_replaces_old_material(app, member_client):
    created = member_client.post('/api/v1/api-keys', json={'name': 'Rotating', 'scopes': ['*']})
    key_id = created.get_json()['key']['id']
    old_key = created.get_json()['api_key']

    new_key = member_client.post(f'/api/v1/api-keys/{key_id}/rotate').get_json()['api_key']
    assert new_key != old_key
    other = app.test_client()
    assert other.get('/api/v1/auth/me', headers={'X-API-Key': old_key}).status_code == 401
    assert other.get('/api/v1/auth/me', headers={'X-API-Key': new_key}).status_code == 200


def test_api_key_rejects_invalid_scopes(member_client):
    resp = member_client.post('/api/v1/api-keys', json={'name': 'Bad scopes', 'scopes': ['root']})
    assert resp.status_code == 400


def test_admin_role_listing_requires_permission(member_client):
    assert member_client.get('/api/v1/users').status_code == 403


def test_business_user_signup_role_is_not_admin(client):
    signup(client)
    assert User.query.filter_by(email='new.user@bguard.io').first().role == UserRole.BUSINESS_USER


def test_clients_keep_separate_identities(app, member_client, outsider_client, member, outsider):
    assert member_client.get('/api/v1/auth/me').get_json()['id'] == member.id
    assert outsider_client.get('/api/v1/auth/me').get_json()['id'] == outsider.id
    assert member_client.get('/api/v1/auth/me').get_json()['id'] == member.id
    assert app.test_client().get('/api/v1/auth/me').status_code == 401
