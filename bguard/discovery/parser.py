"""
HTML Parser for BGuard Discovery

Extracts the parts of a page that matter for endpoint discovery:
- Forms and input fields
- Links and their query parameters
- Privacy policy and terms of service links
"""

from typing import List, Dict, Optional, Set
from dataclasses import dataclass, field, asdict
from urllib.parse import urljoin, urlparse, parse_qs
from bs4 import BeautifulSoup
import logging

logger = logging.getLogger(__name__)


@dataclass
class FormField:
    """Represents an HTML form field."""
    name: str
    field_type: str
    required: bool = False


@dataclass
class Form:
    """Represents an HTML form."""
    action: str
    method: str
    fields: List[FormField] = field(default_factory=list)
    enctype: str = 'application/x-www-form-urlencoded'
    has_csrf_token: bool = False

    @property
    def has_password(self) -> bool:
        return any(f.field_type == 'password' for f in self.fields)

    @property
    def has_file_upload(self) -> bool:
        return any(f.field_type == 'file' for f in self.fields)

    def to_dict(self) -> Dict:
        data = asdict(self)
        data['has_password'] = self.has_password
        data['has_file_upload'] = self.has_file_upload
        return data


@dataclass
class Link:
    """Represents a link extracted from HTML."""
    url: str
    text: str = ''
    is_internal: bool = True
    parameters: Dict[str, str] = field(default_factory=dict)


@dataclass
class ParsedPage:
    """Represents parsed HTML page data."""
    url: str
    title: str = ''
    forms: List[Form] = field(default_factory=list)
    links: List[Link] = field(default_factory=list)

    def has_link_matching(self, *keywords: str) -> bool:
        for link in self.links:
            haystack = f"{link.url} {link.text}".lower()
            if any(keyword in haystack for keyword in keywords):
                return True
        return False


class HTMLParser:
    """HTML parser for endpoint discovery."""

    CSRF_NAMES = {
        'csrf', 'csrf_token', 'csrftoken', 'csrfmiddlewaretoken',
        '_token', 'authenticity_token', '_csrf', '__requestverificationtoken',
        'xsrf', 'xsrf_token', '_xsrf'
    }

    def __init__(self, base_url: str, include_subdomains: bool = False):
        self.base_url = base_url
        self.base_domain = urlparse(base_url).netloc
        self.include_subdomains = include_subdomains

    def parse(self, html: str, url: Optional[str] = None) -> ParsedPage:
        page_url = url or self.base_url
        soup = BeautifulSoup(html, 'html.parser')

        parsed = ParsedPage(url=page_url)
        title_tag = soup.find('title')
        if title_tag and title_tag.string:
            parsed.title = title_tag.string.strip()
        parsed.forms = self._extract_forms(soup, page_url)
        parsed.links = self._extract_links(soup, page_url)
        return parsed

    def is_internal(self, netloc: str) -> bool:
        if netloc in ('', self.base_domain):
            return True
        return self.include_subdomains and netloc.endswith('.' + self.base_domain)

    def _extract_forms(self, soup: BeautifulSoup, page_url: str) -> List[Form]:
        forms = []
        for form_tag in soup.find_all('form'):
            action = form_tag.get('action', '')
            action = urljoin(page_url, action) if action else page_url

            fields = []
            for tag in form_tag.find_all(['input', 'textarea', 'select']):
                name = tag.get('name', '')
                if not name:
                    continue
                field_type = tag.get('type', 'text').lower() if tag.name == 'input' else tag.name
                fields.append(FormField(name=name, field_type=field_type, required=tag.has_attr('required')))

            forms.append(Form(
                action=action,
                method=form_tag.get('method', 'GET').upper(),
                fields=fields,
                enctype=form_tag.get('enctype', 'application/x-www-form-urlencoded'),
                has_csrf_token=any(f.name.lower() in self.CSRF_NAMES for f in fields),
            ))
        return forms

    def _extract_links(self, soup: BeautifulSoup, page_url: str) -> List[Link]:
        links = []
        seen_urls: Set[str] = set()

        for a_tag in soup.find_all('a', href=True):
            href = a_tag['href'].strip()
            if not href or href.startswith(('javascript:', 'mailto:', 'tel:', '#')):
                continue

            full_url = urljoin(page_url, href)
            if full_url in seen_urls:
                continue
            seen_urls.add(full_url)

            parsed = urlparse(full_url)
            parameters = {k: v[0] if v else '' for k, v in parse_qs(parsed.query).items()}
            links.append(Link(
                url=full_url,
                text=a_tag.get_text(strip=True)[:100],
                is_internal=self.is_internal(parsed.netloc),
                parameters=parameters,
            ))
        return links
