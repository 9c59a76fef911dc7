"""
Async Endpoint Crawler for BGuard Discovery

Depth-limited crawler that maps the reachable endpoints of a domain:
- Domain or subdomain scope
- URL normalization and deduplication
- Page limit
- Parent URL and depth tracking per endpoint
"""

import asyncio
import re
from typing import Set, List, Optional, Callable
from urllib.parse import urlparse, urldefrag, parse_qsl, urlencode
from dataclasses import dataclass, asdict
import logging

from bguard.discovery.requester import AsyncRequester, Response
from bguard.discovery.parser import HTMLParser, ParsedPage

logger = logging.getLogger(__name__)


@dataclass
class CrawlResult:
    """Result of crawling a single URL."""
    url: str
    response: Response
    parsed: Optional[ParsedPage] = None
    depth: int = 0
    parent_url: Optional[str] = None
    method: str = 'GET'
    discovery_method: str = 'crawler'

    @property
    def error(self) -> Optional[str]:
        return self.response.error


@dataclass
class CrawlStats:
    """Crawling statistics."""
    urls_discovered: int = 0
    urls_crawled: int = 0
    urls_skipped: int = 0
    urls_failed: int = 0
    forms_found: int = 0
    parameters_found: int = 0

    def to_dict(self):
        return asdict(self)


class AsyncCrawler:
    """
    Async crawler for endpoint discovery.

    Workers pull ``(url, depth, parent)`` items off a queue until it is
    drained or ``max_pages`` results have been collected. Form actions are
    recorded as endpoints of their own, with the form's method.
    """

    SKIP_EXTENSIONS = {
        '.css', '.js', '.jpg', '.jpeg', '.png', '.gif', '.svg', '.ico',
        '.woff', '.woff2', '.ttf', '.eot', '.pdf', '.doc', '.docx',
        '.xls', '.xlsx', '.ppt', '.pptx', '.zip', '.rar', '.tar', '.gz',
        '.mp3', '.mp4', '.avi', '.mov', '.wmv', '.flv', '.webm'
    }

    # Never follow links that change state on the target
    SKIP_PATTERNS = [
        r'logout', r'signout', r'sign-out', r'log-out',
        r'delete', r'remove', r'unsubscribe',
    ]

    def __init__(
            self,
            requester: AsyncRequester,
            max_depth: int = 3,
            max_pages: int = 100,
            include_subdomains: bool = False,
            workers: int = 5,
            progress_callback: Optional[Callable[[int, int, str], None]] = None
    ):
        self.requester = requester
        self.max_depth = max_depth
        self.max_pages = max_pages
        self.include_subdomains = include_subdomains
        self.workers = workers
        self.progress_callback = progress_callback

        self._visited: Set[str] = set()
        self._queue: asyncio.Queue = asyncio.Queue()
        self._cancelled = False
        self._base_url = ''
        self._base_domain = ''

        self.stats = CrawlStats()
        self.results: List[CrawlResult] = []

    async def crawl(self, start_url: str) -> List[CrawlResult]:
        self._base_url = start_url
        self._base_domain = urlparse(start_url).netloc
        self._visited.clear()
        self.results = []
        self._cancelled = False
        self.stats = CrawlStats()

        await self._queue.put((start_url, 0, None))
        self.stats.urls_discovered = 1

        workers = [
            asyncio.create_task(self._worker())
            for _ in range(max(1, min(self.workers, self.max_pages)))
        ]
        await self._queue.join()

        for worker in workers:
            worker.cancel()
        await asyncio.gather(*workers, return_exceptions=True)

        return self.results

    async def _worker(self):
        while True:
            url, depth, parent = await self._queue.get()
            try:
                if not self._cancelled:
                    await self._process_url(url, depth, parent)
            except Exception as e:
                logger.error(f"Error processing {url}: {e}")
            finally:
                self._queue.task_done()

    async def _process_url(self, url: str, depth: int, parent: Optional[str]):
        if len(self.results) >= self.max_pages:
            self._cancelled = True
            return

        url = self._normalize_url(url)
        if url in self._visited:
            return
        self._visited.add(url)

        if not self._should_crawl(url):
            self.stats.urls_skipped += 1
            return

        if self.progress_callback:
            self.progress_callback(len(self.results), self.max_pages, url)

        response = await self.requester.get(url)
        if response.error:
            self.stats.urls_failed += 1
            self.results.append(CrawlResult(url=url, response=response, depth=depth, parent_url=parent))
            return

        self.stats.urls_crawled += 1

        parsed = None
        if response.is_html:
            parser = HTMLParser(self._base_url, include_subdomains=self.include_subdomains)
            parsed = parser.parse(response.body, url)
            self.stats.forms_found += len(parsed.forms)
            self.stats.parameters_found += sum(len(link.parameters) for link in parsed.links)

            if depth < self.max_depth:
                for link in parsed.links:
                    if not link.is_internal:
                        continue
                    normalized = self._normalize_url(link.url)
                    if normalized not in self._visited:
                        await self._queue.put((normalized, depth + 1, url))
                        self.stats.urls_discovered += 1

        self.results.append(CrawlResult(url=url, response=response, parsed=parsed,
                                        depth=depth, parent_url=parent))

        if parsed:
            self._record_form_actions(parsed, response, depth, url)

    def _record_form_actions(self, parsed: ParsedPage, response: Response, depth: int, page_url: str):
        """Add non-GET form targets as endpoints without submitting them."""
        for form in parsed.forms:
            if form.method == 'GET':
                continue
            action = self._normalize_url(form.action)
            key = f"{form.method} {action}"
            if key in self._visited or not self._should_crawl(action):
                continue
            if len(self.results) >= self.max_pages:
                return
            self._visited.add(key)
            self.results.append(CrawlResult(
                url=action,
                response=Response(url=action, status=0, headers=response.headers, body='', elapsed=0.0),
                depth=depth + 1,
                parent_url=page_url,
                method=form.method,
                discovery_method='form',
            ))

    def _normalize_url(self, url: str) -> str:
        """Normalize URL for deduplication."""
        url, _ = urldefrag(url)
        parsed = urlparse(url)

        path = parsed.path
        if not path:
            path = '/'
        elif path != '/' and path.endswith('/'):
            path = path.rstrip('/')

        query = urlencode(sorted(parse_qsl(parsed.query))) if parsed.query else ''

        normalized = f"{parsed.scheme}://{parsed.netloc}{path}"
        if query:
            normalized += f"?{query}"
        return normalized

    def _should_crawl(self, url: str) -> bool:
        parsed = urlparse(url)

        if parsed.scheme not in ('http', 'https'):
            return False

        if parsed.netloc != self._base_domain:
            if not (self.include_subdomains and parsed.netloc.endswith('.' + self._base_domain)):
                return False

        path_lower = parsed.path.lower()
        if any(path_lower.endswith(ext) for ext in self.SKIP_EXTENSIONS):
            return False

        for pattern in self.SKIP_PATTERNS:
            if re.search(pattern, url, re.IGNORECASE):
                return False

        return True
