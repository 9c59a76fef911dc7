"""
Discovery Service for BGuard Suite

Runs an endpoint discovery session end to end (crawl, classify, persist,
summarise) and fetches vendor sites for third-party reviews.
"""

import asyncio
import ipaddress
import logging
import re
from typing import List, Tuple
from urllib.parse import urlparse, parse_qsl

from flask import current_app

from bguard import db
from bguard.ai.endpoints import EndpointClassifier, EndpointInfo
from bguard.ai.review_analyzer import SiteObservation, SECURITY_HEADERS
from bguard.discovery.crawler import AsyncCrawler, CrawlResult
from bguard.discovery.requester import AsyncRequester
from bguard.discovery.parser import HTMLParser
from bguard.models.endpoint import (
    EndpointDiscoverySession, DiscoveredEndpoint, DiscoveryStatus,
    EndpointType, EndpointSensitivity, EndpointRiskLevel
)

logger = logging.getLogger(__name__)

HOSTNAME_REGEX = re.compile(
    r'^(?=.{1,253}$)(?!-)[A-Za-z0-9-]{1,63}(?<!-)(\.(?!-)[A-Za-z0-9-]{1,63}(?<!-))*$'
)
BLOCKED_HOSTNAMES = {'localhost', 'localhost.localdomain', 'metadata.google.internal'}


def run_async(coro):
    """Run a coroutine to completion on a private event loop."""
    loop = asyncio.new_event_loop()
    try:
        return loop.run_until_complete(coro)
    finally:
        loop.close()


def validate_discovery_target(target: str, allow_private: bool = False) -> Tuple[str, str]:
    """
    Validate a discovery domain or URL.

    Returns ``(domain, start_url)``. Raises ValueError for malformed input
    and, unless ``allow_private`` is set, for loopback, private, link-local
    or reserved addresses.
    """
    target = (target or '').strip()
    if not target:
        raise ValueError("Domain is required")

    if not target.startswith(('http://', 'https://')):
        target = 'https://' + target
    parsed = urlparse(target)
    hostname = (parsed.hostname or '').lower()
    if not hostname:
        raise ValueError("Invalid domain format")

    try:
        ip = ipaddress.ip_address(hostname)
    except ValueError:
        ip = None
        if not HOSTNAME_REGEX.match(hostname):
            raise ValueError("Invalid domain format")

    if not allow_private:
        # SECURITY: no requests to internal networks
        if hostname in BLOCKED_HOSTNAMES or hostname.endswith('.localhost'):
            raise ValueError("Requests to localhost are not allowed")
        if ip is not None and (ip.is_private or ip.is_loopback or ip.is_link_local
                               or ip.is_reserved or ip.is_multicast or ip.is_unspecified):
            raise ValueError("Requests to private or internal networks are not allowed")

    path = parsed.path or '/'
    return parsed.netloc.lower(), f"{parsed.scheme}://{parsed.netloc.lower()}{path}"


def _requester(config) -> AsyncRequester:
    return AsyncRequester(
        timeout=config.get('DISCOVERY_TIMEOUT', 15),
        max_concurrent=config.get('DISCOVERY_CONCURRENT_REQUESTS', 5),
        delay=config.get('DISCOVERY_DELAY_BETWEEN_REQUESTS', 0.2),
        user_agent=config.get('DISCOVERY_USER_AGENT'),
    )


async def crawl_domain(start_url: str, max_depth: int, include_subdomains: bool, config) -> Tuple[List[CrawlResult], dict]:
    """Crawl ``start_url`` and return the results with crawl statistics."""
    async with _requester(config) as requester:
        crawler = AsyncCrawler(
            requester,
            max_depth=max_depth,
            max_pages=config.get('DISCOVERY_MAX_PAGES', 50),
            include_subdomains=include_subdomains,
            workers=config.get('DISCOVERY_CONCURRENT_REQUESTS', 5),
        )
        results = await crawler.crawl(start_url)
        stats = crawler.stats.to_dict()
        stats.update(requester.stats)
        return results, stats


def endpoint_info(result: CrawlResult, domain: str) -> EndpointInfo:
    parsed = urlparse(result.url)
    response = result.response
    security_headers = {name: response.get_header(name) for name in SECURITY_HEADERS
                        if response.get_header(name)}
    forms = [form.to_dict() for form in result.parsed.forms] if result.parsed else []
    return EndpointInfo(
        url=result.url,
        path=parsed.path or '/',
        domain=domain,
        method=result.method,
        query_params=sorted({name for name, _ in parse_qsl(parsed.query, keep_blank_values=True)}),
        status_code=response.status or None,
        content_type=response.get_header('Content-Type') or None,
        response_size=len(response.body) if response.body else None,
        security_headers=security_headers,
        forms=forms,
    )


def run_discovery(session: EndpointDiscoverySession, llm, config=None) -> EndpointDiscoverySession:
    """
    Execute a discovery session and persist its endpoints.

    The session moves SCANNING -> CLASSIFYING -> COMPLETED, or FAILED with
    the error message when crawling or persistence raises.
    """
    config = config or current_app.config
    session.start()
    db.session.commit()

    try:
        results, stats = run_async(crawl_domain(session.start_url, session.max_depth,
                                                session.include_subdomains, config))
        session.crawl_stats = stats
        session.status = DiscoveryStatus.CLASSIFYING
        session.progress = 50
        db.session.commit()

        reachable = [r for r in results if not r.error]
        infos = [endpoint_info(r, session.domain) for r in reachable]
        classifier = EndpointClassifier(llm)
        classifications = classifier.classify_all(infos)

        for result, info, cls in zip(reachable, infos, classifications):
            db.session.add(DiscoveredEndpoint(
                session_id=session.id,
                url=info.url[:2048],
                method=info.method,
                path=info.path[:2048],
                status_code=info.status_code,
                content_type=(info.content_type or '')[:200] or None,
                response_size=info.response_size,
                response_time=round(result.response.elapsed, 3),
                server_header=(result.response.get_header('Server') or '')[:200] or None,
                depth=result.depth,
                parent_url=result.parent_url,
                query_params=info.query_params,
                security_headers=info.security_headers,
                forms=info.forms,
                endpoint_type=EndpointType[cls.endpoint_type],
                sensitivity=EndpointSensitivity[cls.sensitivity],
                risk_score=cls.risk_score,
                risk_level=EndpointRiskLevel[cls.risk_level],
                function_purpose=cls.function_purpose,
                security_concerns=cls.security_concerns,
                data_exposure=cls.data_exposure,
                is_anomaly=cls.is_anomaly,
                anomaly_reason=cls.anomaly_reason,
                anomaly_score=cls.anomaly_score,
                classification=cls.classification,
                discovery_method=result.discovery_method,
            ))

        session.total_endpoints = len(classifications)
        session.high_risk_count = sum(1 for c in classifications if c.risk_level in ('HIGH', 'CRITICAL'))
        session.anomaly_count = sum(1 for c in classifications if c.is_anomaly)
        session.complete(classifier.summarize(classifications, session.domain))
        db.session.commit()
        logger.info(f"Discovery session {session.id} completed: {session.total_endpoints} endpoints")

    except Exception as e:
        db.session.rollback()
        logger.error(f"Discovery session {session.id} failed: {e}")
        session.fail(e)
        db.session.commit()

    return session


async def fetch_site(url: str, config) -> SiteObservation:
    """Fetch a vendor application and record headers, cookies and legal links."""
    async with AsyncRequester(
            timeout=config.get('DISCOVERY_TIMEOUT', 15),
            max_concurrent=1,
            delay=0,
            user_agent=config.get('DISCOVERY_USER_AGENT'),
    ) as requester:
        response = await requester.get(url)

    if response.error:
        return SiteObservation(url=url, error=response.error)
    validate_discovery_target(response.url, allow_private=config.get('DISCOVERY_ALLOW_PRIVATE_HOSTS', False))

    has_privacy = has_terms = None
    if response.is_html:
        page = HTMLParser(response.url).parse(response.body, response.url)
        has_privacy = page.has_link_matching('privacy')
        has_terms = page.has_link_matching('terms', 'conditions', 'legal')

    return SiteObservation(
        url=response.url,
        status_code=response.status,
        headers=response.headers,
        cookies=response.cookies,
        has_privacy_link=has_privacy,
        has_terms_link=has_terms,
    )


def observe_site(url: str, config=None) -> SiteObservation:
    return run_async(fetch_site(url, config or current_app.config))
