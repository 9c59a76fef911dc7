"""
BGuard Discovery Module

Async crawling of application domains for endpoint discovery, and site
fetching for third-party reviews.
"""

from bguard.discovery.service import (
    run_discovery, validate_discovery_target, observe_site, crawl_domain
)

__all__ = ['run_discovery', 'validate_discovery_target', 'observe_site', 'crawl_domain']
