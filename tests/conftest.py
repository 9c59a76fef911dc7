"""
Shared fixtures for the BGuard Suite test suite.

Every test gets a fresh application backed by an in-memory SQLite
database, with rate limits, CSRF and remote LLM calls disabled.
"""

import pytest
from flask import g

from bguard import create_app, db
from bguard.models import User, UserRole, Organization, Tag

PASSWORD = 'Str0ng!Passw0rd'


@pytest.fixture
def app():
    app = create_app('testing')

    @app.before_request
    def forget_cached_user():
        # requests share this fixture's app context, and with it Flask-Login's cached user
        g.pop('_login_user', None)

    ctx = app.app_context()
    ctx.push()
    Tag.seed_system_tags()
    yield app
    db.session.remove()
    db.drop_all()
    ctx.pop()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def make_org(app):
    def _make(name='Acme Security'):
        org = Organization(name=name)
        db.session.add(org)
        db.session.commit()
        return org
    return _make


@pytest.fixture
def make_user(app):
    def _make(email, role=UserRole.BUSINESS_USER, organization=None, password=PASSWORD):
        user = User(email=email, password=password, first_name='Test', last_name='User', role=role,
                    organization_id=organization.id if organization else None)
        db.session.add(user)
        db.session.commit()
        return user
    return _make


def login(client, email, password=PASSWORD):
    return client.post('/api/v1/auth/login', json={'email': email, 'password': password})


@pytest.fixture
def org(make_org):
    return make_org()


@pytest.fixture
def admin(make_user):
    return make_user('admin@bguard.io', role=UserRole.ADMIN)


@pytest.fixture
def business_admin(make_user, org):
    return make_user('owner@bguard.io', role=UserRole.BUSINESS_ADMIN, organization=org)


@pytest.fixture
def member(make_user, org):
    return make_user('analyst@bguard.io', role=UserRole.BUSINESS_USER, organization=org)


@pytest.fixture
def outsider(make_user, make_org):
    return make_user('outsider@other.io', role=UserRole.BUSINESS_USER, organization=make_org('Other Corp'))


@pytest.fixture
def member_client(client, member):
    assert login(client, member.email).status_code == 200
    return client


@pytest.fixture
def admin_client(client, admin):
    assert login(client, admin.email).status_code == 200
    return client


@pytest.fixture
def threat_model(member_client):
    resp = member_client.post('/api/v1/threat-models', json={
        'name': 'Payments API',
        'prompt': 'A public web API for card payments with a PostgreSQL database and password login.',
        'system_type': 'api',
    })
    assert resp.status_code == 201, resp.get_json()
    return resp.get_json()['threat_model']


@pytest.fixture
def outsider_client(app, outsider):
    other = app.test_client()
    assert login(other, outsider.email).status_code == 200
    return other
