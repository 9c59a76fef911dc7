"""
Async HTTP Requester for BGuard Discovery

Async HTTP client used by the endpoint crawler and the third-party site
scan:
- Connection pooling
- Per-host rate limiting
- Retry on transport errors
- Security header and cookie capture
"""

import asyncio
import aiohttp
import time
from typing import Dict, Optional, List, Any
from urllib.parse import urlparse
from dataclasses import dataclass, field
import logging

logger = logging.getLogger(__name__)


@dataclass
class Response:
    """An HTTP response with the metadata discovery cares about."""
    url: str
    status: int
    headers: Dict[str, str]
    body: str
    elapsed: float
    cookies: List[Dict[str, Any]] = field(default_factory=list)
    redirect_url: Optional[str] = None
    error: Optional[str] = None
    request_method: str = 'GET'

    @property
    def is_success(self) -> bool:
        return 200 <= self.status < 300

    @property
    def content_type(self) -> str:
        return self.get_header('Content-Type').lower()

    @property
    def is_html(self) -> bool:
        return 'text/html' in self.content_type

    def get_header(self, name: str, default: str = '') -> str:
        """Get header value (case-insensitive)."""
        for key, value in self.headers.items():
            if key.lower() == name.lower():
                return value
        return default


class AsyncRequester:
    """
    Async HTTP requester.

    Features:
    - Async requests with aiohttp
    - Rate limiting with semaphore and per-host delay
    - Automatic retry with backoff
    """

    DEFAULT_HEADERS = {
        'User-Agent': 'BGuard/1.0 Endpoint Discovery',
        'Accept': 'text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8',
        'Accept-Language': 'en-US,en;q=0.5',
    }

    MAX_BODY = 2 * 1024 * 1024

    def __init__(
            self,
            timeout: int = 15,
            max_concurrent: int = 5,
            delay: float = 0.2,
            max_retries: int = 2,
            user_agent: Optional[str] = None,
    ):
        self.timeout = aiohttp.ClientTimeout(total=timeout)
        self.max_concurrent = max_concurrent
        self.delay = delay
        self.max_retries = max_retries

        self.headers = self.DEFAULT_HEADERS.copy()
        if user_agent:
            self.headers['User-Agent'] = user_agent

        self._semaphore: Optional[asyncio.Semaphore] = None
        self._last_request_time: Dict[str, float] = {}
        self._session: Optional[aiohttp.ClientSession] = None

        self.stats = {
            'requests_made': 0,
            'requests_successful': 0,
            'requests_failed': 0,
            'total_bytes': 0,
        }

    async def __aenter__(self):
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    async def start(self):
        """Initialize the aiohttp session."""
        if self._session is None or self._session.closed:
            connector = aiohttp.TCPConnector(
                limit=self.max_concurrent * 2,
                limit_per_host=self.max_concurrent,
            )
            self._session = aiohttp.ClientSession(
                connector=connector,
                timeout=self.timeout,
                headers=self.headers,
            )
            self._semaphore = asyncio.Semaphore(self.max_concurrent)

    async def close(self):
        if self._session and not self._session.closed:
            await self._session.close()
            self._session = None

    async def _rate_limit(self, host: str):
        if host in self._last_request_time:
            elapsed = time.time() - self._last_request_time[host]
            if elapsed < self.delay:
                await asyncio.sleep(self.delay - elapsed)
        self._last_request_time[host] = time.time()

    @staticmethod
    def _cookie_info(resp) -> List[Dict[str, Any]]:
        cookies = []
        for name, morsel in resp.cookies.items():
            cookies.append({
                'name': name,
                'secure': bool(morsel['secure']),
                'httponly': bool(morsel['httponly']),
                'samesite': morsel['samesite'] or None,
            })
        return cookies

    async def get(self, url: str, allow_redirects: bool = True) -> Response:
        """
        Fetch ``url``.

        Transport failures are returned as a Response with ``error`` set
        and status 0.
        """
        if self._session is None:
            await self.start()

        host = urlparse(url).netloc
        last_error = None

        for attempt in range(self.max_retries):
            try:
                async with self._semaphore:
                    await self._rate_limit(host)
                    start_time = time.time()
                    self.stats['requests_made'] += 1

                    async with self._session.get(url, allow_redirects=allow_redirects) as resp:
                        elapsed = time.time() - start_time
                        body = await resp.text(errors='ignore')
                        if len(body) > self.MAX_BODY:
                            body = body[:self.MAX_BODY]
                        redirect_url = str(resp.history[-1].url) if resp.history else None

                        self.stats['requests_successful'] += 1
                        self.stats['total_bytes'] += len(body)
                        return Response(
                            url=str(resp.url),
                            status=resp.status,
                            headers=dict(resp.headers),
                            body=body,
                            elapsed=elapsed,
                            cookies=self._cookie_info(resp),
                            redirect_url=redirect_url,
                        )

            except asyncio.TimeoutError:
                last_error = 'Request timeout'
            except aiohttp.ClientError as e:
                last_error = f'Client error: {e}'

            if attempt < self.max_retries - 1:
                await asyncio.sleep(0.5 * (2 ** attempt))

        self.stats['requests_failed'] += 1
        logger.debug(f"Request failed for {url}: {last_error}")
        return Response(url=url, status=0, headers={}, body='', elapsed=0.0, error=last_error)
