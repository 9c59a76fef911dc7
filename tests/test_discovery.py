"""
Endpoint discovery tests: target validation, crawling, classification and routes.
"""

import asyncio

import pytest

from bguard import db
from bguard.ai.endpoints import (
    EndpointInfo, fallback_classification, parse_classification, risk_level_for_score
)
from bguard.discovery import validate_discovery_target, observe_site
from bguard.discovery.crawler import AsyncCrawler, CrawlResult
from bguard.discovery.parser import HTMLParser
from bguard.discovery.requester import Response
from bguard.models import EndpointDiscoverySession, DiscoveryStatus

BASE = 'https://example.com'

HOME = """
<html><head><title>Example</title></head><body>
  <a href="/login">Sign in</a>
  <a href="/about#team">Team</a>
  <a href="/about">About</a>
  <a href="/logout">Sign out</a>
  <a href="/static/app.js">Script</a>
  <a href="https://other.com/partner">Partner</a>
  <a href="mailto:hello@example.com">Mail</a>
  <form action="/session" method="post">
    <input type="hidden" name="csrf_token" value="x">
    <input type="email" name="email" required>
    <input type="password" name="password">
  </form>
</body></html>
"""


def html_response(url, body='<html></html>', status=200):
    return Response(url=url, status=status, headers={'Content-Type': 'text/html; charset=utf-8'},
                    body=body, elapsed=0.01)


class FakeRequester:
    """Serves canned pages; anything else fails like a refused connection."""

    def __init__(self, pages):
        self.pages = pages
        self.requested = []

    async def get(self, url, allow_redirects=True):
        self.requested.append(url)
        if url in self.pages:
            return html_response(url, self.pages[url])
        return Response(url=url, status=0, headers={}, body='', elapsed=0.0, error='Client error: refused')


def crawl(pages, **kwargs):
    requester = FakeRequester(pages)

    async def run():
        crawler = AsyncCrawler(requester, **kwargs)
        results = await crawler.crawl(BASE + '/')
        return crawler, results

    crawler, results = asyncio.run(run())
    return requester, crawler, results


# ==================== Target validation ====================

@pytest.mark.parametrize('target, expected', [
    ('example.com', ('example.com', 'https://example.com/')),
    ('http://Example.com/app', ('example.com', 'http://example.com/app')),
    ('  shop.example.co.uk ', ('shop.example.co.uk', 'https://shop.example.co.uk/')),
])
def test_valid_targets(target, expected):
    assert validate_discovery_target(target) == expected


@pytest.mark.parametrize('target', [
    '', 'bad_host!', 'localhost', 'api.localhost', '127.0.0.1', '10.1.2.3', '169.254.169.254',
])
def test_rejected_targets(target):
    with pytest.raises(ValueError):
        validate_discovery_target(target)


def test_private_hosts_can_be_allowed():
    assert validate_discovery_target('127.0.0.1:5000', allow_private=True) == (
        '127.0.0.1:5000', 'https://127.0.0.1:5000/')


# ==================== Parsing and crawling ====================

def test_parser_extracts_forms_and_links():
    page = HTMLParser(BASE).parse(HOME, BASE + '/')
    assert page.title == 'Example'

    form = page.forms[0]
    assert form.action == BASE + '/session'
    assert form.method == 'POST'
    assert form.has_csrf_token
    assert form.has_password
    assert [f.required for f in form.fields] == [False, True, False]

    internal = {link.url for link in page.links if link.is_internal}
    assert BASE + '/login' in internal
    assert 'https://other.com/partner' not in internal
    assert not any(link.url.startswith('mailto:') for link in page.links)
    assert page.has_link_matching('sign in')
    assert not page.has_link_matching('privacy')


def test_subdomains_are_internal_when_requested():
    parser = HTMLParser(BASE, include_subdomains=True)
    assert parser.is_internal('api.example.com')
    assert not HTMLParser(BASE).is_internal('api.example.com')


def test_crawler_maps_pages_within_scope():
    requester, crawler, results = crawl({
        BASE + '/': HOME,
        BASE + '/login': '<a href="/deeper">too deep</a>',
        BASE + '/about': '<html></html>',
    }, max_depth=1, workers=3)

    by_url = {(r.method, r.url): r for r in results}
    assert set(by_url) == {
        ('GET', BASE + '/'), ('GET', BASE + '/login'), ('GET', BASE + '/about'), ('POST', BASE + '/session'),
    }
    assert by_url[('GET', BASE + '/login')].depth == 1
    assert by_url[('GET', BASE + '/login')].parent_url == BASE + '/'

    form = by_url[('POST', BASE + '/session')]
    assert form.discovery_method == 'form'
    assert form.response.status == 0

    # state-changing links, assets, other hosts and depth-2 pages are never fetched
    assert BASE + '/logout' not in requester.requested
    assert BASE + '/static/app.js' not in requester.requested
    assert BASE + '/deeper' not in requester.requested
    assert requester.requested.count(BASE + '/about') == 1
    assert crawler.stats.urls_skipped == 2
    assert crawler.stats.forms_found == 1


def test_crawler_records_failed_fetches():
    _, crawler, results = crawl({BASE + '/': '<a href="/gone">Gone</a>'}, max_depth=2)
    failed = [r for r in results if r.error]
    assert [r.url for r in failed] == [BASE + '/gone']
    assert crawler.stats.urls_failed == 1


def test_crawler_stops_at_page_limit():
    _, _, results = crawl({BASE + '/': HOME, BASE + '/login': '', BASE + '/about': ''},
                          max_depth=3, max_pages=2)
    assert len(results) == 2


def test_normalize_url_sorts_query_and_strips_fragments():
    crawler = AsyncCrawler(FakeRequester({}))
    assert crawler._normalize_url(BASE + '/search/?b=2&a=1#top') == BASE + '/search?a=1&b=2'
    assert crawler._normalize_url(BASE) == BASE + '/'


# ==================== Classification ====================

@pytest.mark.parametrize('path, status, endpoint_type, score, level', [
    ('/login', 200, 'LOGIN_PAGE', 7, 'HIGH'),
    ('/admin/users', 200, 'ADMIN_PANEL', 9, 'CRITICAL'),
    ('/api/orders', 200, 'API_ENDPOINT', 6, 'HIGH'),
    ('/upload', 200, 'FILE_UPLOAD', 8, 'CRITICAL'),
    ('/nowhere', 404, 'ERROR_PAGE', 2, 'LOW'),
    ('/about', 200, 'OTHER', 5, 'MEDIUM'),
])
def test_fallback_classification(path, status, endpoint_type, score, level):
    result = fallback_classification(EndpointInfo(url=BASE + path, path=path, domain='example.com',
                                                  status_code=status))
    assert result.endpoint_type == endpoint_type
    assert result.risk_score == score
    assert result.risk_level == level
    assert result.classification['method'] == 'fallback'


def test_risk_level_for_score_bands():
    assert [risk_level_for_score(s) for s in (8, 6, 4, 3.9)] == ['CRITICAL', 'HIGH', 'MEDIUM', 'LOW']


def test_parse_classification_normalizes_model_output():
    result = parse_classification({
        'endpointType': 'SECRET_DOOR', 'sensitivity': 'RESTRICTED', 'riskScore': 42,
        'riskLevel': 'SEVERE', 'securityConcerns': 'not a list', 'isAnomaly': True, 'anomalyScore': 3,
        'functionPurpose': 'Exports customer records', 'reasoning': 'Bulk export without paging controls',
    })
    assert result.endpoint_type == 'OTHER'
    assert result.sensitivity == 'RESTRICTED'
    assert result.risk_score == 10.0
    assert result.risk_level == 'MEDIUM'
    assert result.security_concerns == []
    assert result.anomaly_score == 1.0
    assert result.classification['confidence'] == 1.0


# ==================== Site observation ====================

class FakeSiteRequester:
    def __init__(self, **kwargs):
        pass

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        return False

    async def get(self, url, allow_redirects=True):
        response = html_response(url, '<a href="/privacy">Privacy Policy</a>')
        response.cookies = [{'name': 'sid', 'secure': True, 'httponly': False, 'samesite': None}]
        return response


def test_observe_site_records_legal_links(monkeypatch):
    monkeypatch.setattr('bguard.discovery.service.AsyncRequester', FakeSiteRequester)
    observation = observe_site('https://vendor.example.com', config={'DISCOVERY_TIMEOUT': 5})
    assert observation.status_code == 200
    assert observation.has_privacy_link is True
    assert observation.has_terms_link is False
    assert observation.cookies[0]['name'] == 'sid'
    assert observation.error is None


class RedirectingSiteRequester(FakeSiteRequester):
    async def get(self, url, allow_redirects=True):
        return html_response('http://169.254.169.254/latest/meta-data/')


def test_observe_site_rejects_redirect_to_internal_host(monkeypatch):
    monkeypatch.setattr('bguard.discovery.service.AsyncRequester', RedirectingSiteRequester)
    with pytest.raises(ValueError, match='private or internal'):
        observe_site('https://vendor.example.com', config={'DISCOVERY_TIMEOUT': 5})

    observation = observe_site('https://vendor.example.com',
                               config={'DISCOVERY_TIMEOUT': 5, 'DISCOVERY_ALLOW_PRIVATE_HOSTS': True})
    assert observation.url == 'http://169.254.169.254/latest/meta-data/'


# ==================== Routes ====================

def fake_results():
    return [
        CrawlResult(url=BASE + '/login?next=/home', response=html_response(BASE + '/login?next=/home')),
        CrawlResult(url=BASE + '/admin', response=Response(
            url=BASE + '/admin', status=200, headers={'Content-Type': 'text/html', 'X-Frame-Options': 'DENY'},
            body='<html>admin</html>', elapsed=0.2), depth=1, parent_url=BASE + '/'),
        CrawlResult(url=BASE + '/missing', response=html_response(BASE + '/missing', status=404)),
        CrawlResult(url=BASE + '/down', response=Response(url=BASE + '/down', status=0, headers={},
                                                          body='', elapsed=0.0, error='Request timeout')),
    ]


@pytest.fixture
def fake_crawl(monkeypatch):
    calls = []

    async def crawl_domain(start_url, max_depth, include_subdomains, config):
        calls.append((start_url, max_depth, include_subdomains))
        return fake_results(), {'urls_crawled': 3}

    monkeypatch.setattr('bguard.discovery.service.crawl_domain', crawl_domain)
    return calls


@pytest.fixture
def asset(member_client):
    resp = member_client.post('/api/v1/assets', json={
        'name': 'Storefront', 'asset_type': 'WEB_APPLICATION', 'application_url': BASE,
    })
    return resp.get_json()['asset']


def start(client, asset, **body):
    return client.post(f"/api/v1/assets/{asset['id']}/discovery", json=body)


def test_discovery_run_classifies_endpoints(member_client, asset, fake_crawl):
    resp = start(member_client, asset)
    assert resp.status_code == 201
    session = resp.get_json()['session']
    assert fake_crawl == [(BASE + '/', 1, False)]
    assert session['status'] == 'COMPLETED'
    assert session['domain'] == 'example.com'
    assert session['total_endpoints'] == 3
    assert session['high_risk_count'] == 2
    assert session['crawl_stats'] == {'urls_crawled': 3}
    assert session['summary'].startswith('Endpoint discovery completed for example.com')

    data = member_client.get(f"/api/v1/discovery/{session['id']}/endpoints").get_json()
    assert [e['endpoint_type'] for e in data['endpoints']] == ['ADMIN_PANEL', 'LOGIN_PAGE', 'ERROR_PAGE']
    admin, login_page, _ = data['endpoints']
    assert admin['security_headers'] == {'X-Frame-Options': 'DENY'}
    assert admin['depth'] == 1
    assert login_page['query_params'] == ['next']


def test_endpoint_filters_and_export(member_client, asset, fake_crawl):
    session_id = start(member_client, asset).get_json()['session']['id']
    url = f'/api/v1/discovery/{session_id}/endpoints'
    assert member_client.get(f'{url}?risk_level=CRITICAL').get_json()['total'] == 1
    assert member_client.get(f'{url}?endpoint_type=ERROR_PAGE').get_json()['total'] == 1
    assert member_client.get(f'{url}?risk_level=EXTREME').status_code == 400

    resp = member_client.get(f'/api/v1/discovery/{session_id}/export')
    assert resp.mimetype == 'text/csv'
    lines = resp.get_data(as_text=True).splitlines()
    assert lines[0].startswith('url,method,path')
    assert len(lines) == 4


def test_discovery_target_validation(member_client, asset, fake_crawl):
    assert start(member_client, asset, domain='not a domain!').status_code == 400
    assert start(member_client, asset, max_depth=0).status_code == 400
    assert start(member_client, asset, max_depth='deep').status_code == 400

    bare = member_client.post('/api/v1/assets', json={'name': 'No URL', 'asset_type': 'OTHER'}).get_json()['asset']
    resp = start(member_client, bare)
    assert resp.status_code == 400
    assert resp.get_json()['error'] == 'Domain is required'
    assert fake_crawl == []


def test_active_session_conflicts(member_client, asset, fake_crawl):
    db.session.add(EndpointDiscoverySession(asset_id=asset['id'], domain='example.com', start_url=BASE + '/',
                                            status=DiscoveryStatus.SCANNING))
    db.session.commit()
    resp = start(member_client, asset)
    assert resp.status_code == 409
    assert 'session_id' in resp.get_json()

    # a different domain is not blocked
    assert start(member_client, asset, domain='shop.example.com').status_code == 201


def test_failed_crawl_marks_session_failed(member_client, asset, monkeypatch):
    async def crawl_domain(*args):
        raise RuntimeError('DNS lookup failed')

    monkeypatch.setattr('bguard.discovery.service.crawl_domain', crawl_domain)
    resp = start(member_client, asset)
    assert resp.status_code == 201
    body = resp.get_json()
    assert body['message'] == 'Discovery failed'
    assert body['session']['status'] == 'FAILED'
    assert body['session']['error_message'] == 'DNS lookup failed'


def test_sessions_are_scoped_to_asset_access(member_client, outsider_client, asset, fake_crawl):
    session_id = start(member_client, asset).get_json()['session']['id']
    sessions = member_client.get(f"/api/v1/assets/{asset['id']}/discovery").get_json()['sessions']
    assert [s['id'] for s in sessions] == [session_id]

    assert outsider_client.get(f'/api/v1/discovery/{session_id}').status_code == 403
    assert outsider_client.get(f'/api/v1/discovery/{session_id}/endpoints').status_code == 403
    assert start(outsider_client, asset).status_code == 403
    assert member_client.get('/api/v1/discovery/9999').status_code == 404
