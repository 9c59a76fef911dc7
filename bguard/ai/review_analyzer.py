"""
BGuard Review Analyzers

Security scoring for architecture design reviews and third-party vendor
applications. Both use the LLM service when available and fall back to
deterministic heuristics otherwise.
"""

import logging
from dataclasses import dataclass, field
from typing import Optional, List, Dict, Any

from bguard.ai.llm import LLMService, LLMError

logger = logging.getLogger(__name__)


def security_grade(score: float) -> str:
    if score >= 90:
        return 'A'
    if score >= 80:
        return 'B'
    if score >= 70:
        return 'C'
    if score >= 60:
        return 'D'
    return 'F'


def risk_level(score: float) -> str:
    if score >= 90:
        return 'VERY_LOW'
    if score >= 80:
        return 'LOW'
    if score >= 70:
        return 'MEDIUM'
    if score >= 60:
        return 'HIGH'
    if score >= 40:
        return 'VERY_HIGH'
    return 'CRITICAL'


def _score(value, default):
    """Coerce a model-supplied score into 0-100, falling back on falsy values."""
    try:
        number = int(round(float(value)))
    except (TypeError, ValueError):
        return default
    if number <= 0:
        return default
    return min(number, 100)


# ==================== Design Reviews ====================

@dataclass
class DesignAnalysis:
    security_score: int
    security_grade: str
    overall_risk: str
    domain_scores: Dict[str, int]
    security_findings: List[Dict[str, Any]] = field(default_factory=list)
    recommendations: List[Dict[str, Any]] = field(default_factory=list)
    prioritized_actions: List[Dict[str, Any]] = field(default_factory=list)
    compliance_score: Optional[int] = None
    compliance_gaps: List[Dict[str, Any]] = field(default_factory=list)
    raw: Dict[str, Any] = field(default_factory=dict)
    method: str = 'fallback'


# (response key, stored key)
DOMAIN_KEYS = (
    ('authentication', 'authentication'),
    ('authorization', 'authorization'),
    ('dataProtection', 'data_protection'),
    ('inputValidation', 'input_validation'),
    ('logging', 'logging_monitoring'),
    ('secureDesign', 'secure_design'),
)

# Keywords that indicate a control is present in an architecture description
DOMAIN_SIGNALS = {
    'authentication': ('mfa', '2fa', 'multi-factor', 'oauth', 'oidc', 'sso', 'saml', 'jwt', 'password hashing'),
    'authorization': ('rbac', 'role-based', 'abac', 'least privilege', 'permission', 'access control'),
    'data_protection': ('encrypt', 'tls', 'https', 'kms', 'vault', 'at rest', 'hashing'),
    'input_validation': ('validation', 'sanitiz', 'parameterized', 'prepared statement', 'schema', 'waf'),
    'logging_monitoring': ('logging', 'audit', 'monitor', 'siem', 'alert', 'tracing'),
    'secure_design': ('segmentation', 'defense in depth', 'zero trust', 'rate limit', 'threat model', 'backup'),
}

DOMAIN_LABELS = {
    'authentication': 'Authentication',
    'authorization': 'Authorization',
    'data_protection': 'Data Protection',
    'input_validation': 'Input Validation',
    'logging_monitoring': 'Logging & Monitoring',
    'secure_design': 'Secure Design',
}

DOMAIN_ADVICE = {
    'authentication': 'Adopt a central identity provider with multi-factor authentication',
    'authorization': 'Enforce role-based access control on every service boundary',
    'data_protection': 'Encrypt sensitive data in transit and at rest with managed keys',
    'input_validation': 'Validate and sanitize all external input with allow-list schemas',
    'logging_monitoring': 'Centralize security logging and alert on anomalous activity',
    'secure_design': 'Apply network segmentation, rate limiting and defense in depth',
}


class DesignAnalyzer:
    """Scores an architecture description across six security domains."""

    PROMPT_TEMPLATE = """You are a senior security architect performing a security assessment of a system architecture.

System Details:
- Architecture Description: {architecture}
- Tech Stack: {tech_stack}
- System Type: {system_type}
- Compliance Requirements: {frameworks}

Respond with JSON only, using these keys:
- overallSecurityScore: integer 0-100
- domainScores: object with integer 0-100 values for authentication, authorization,
  dataProtection, inputValidation, logging, secureDesign
- securityFindings: 3-7 objects with category, title, description, severity (LOW, MEDIUM, HIGH,
  CRITICAL), impact, recommendation
- recommendations: 5-10 objects with category, title, description, priority, effort, impact
- priorityActions: 3-5 objects with title, description, category, priority (1-5), timeframe
{compliance_section}"""

    COMPLIANCE_SECTION = """- complianceScore: integer 0-100
- complianceGaps: objects with framework, requirement, description, severity, remediation
  for each of: {frameworks}"""

    def __init__(self, llm: LLMService):
        self.llm = llm

    def analyze(self, architecture: str, tech_stack: Optional[str] = None,
                system_type: Optional[str] = None,
                compliance_frameworks: Optional[List[str]] = None) -> DesignAnalysis:
        """
        Analyze an architecture description.

        Raises LLMError when the configured provider fails or returns
        unparseable output.
        """
        if self.llm.is_available():
            return self._analyze_with_llm(architecture, tech_stack, system_type, compliance_frameworks or [])
        return self._analyze_with_rules(architecture, tech_stack, compliance_frameworks or [])

    def _analyze_with_llm(self, architecture, tech_stack, system_type, frameworks) -> DesignAnalysis:
        prompt = self.PROMPT_TEMPLATE.format(
            architecture=architecture,
            tech_stack=tech_stack or 'Not specified',
            system_type=system_type or 'Not specified',
            frameworks=', '.join(frameworks) or 'None specified',
            compliance_section=self.COMPLIANCE_SECTION.format(frameworks=', '.join(frameworks))
            if frameworks else '',
        )
        data = self.llm.complete_json(
            'You are a security architecture reviewer. Respond with valid JSON only.',
            prompt, temperature=0.1,
        )
        if not isinstance(data, dict):
            raise LLMError("Unexpected design analysis format")

        score = _score(data.get('overallSecurityScore'), 75)
        raw_domains = data.get('domainScores') or {}
        domains = {stored: _score(raw_domains.get(key), 70) for key, stored in DOMAIN_KEYS}
        compliance_score = data.get('complianceScore')
        return DesignAnalysis(
            security_score=score,
            security_grade=security_grade(score),
            overall_risk=risk_level(score),
            domain_scores=domains,
            security_findings=list(data.get('securityFindings') or []),
            recommendations=list(data.get('recommendations') or []),
            prioritized_actions=list(data.get('priorityActions') or []),
            compliance_score=_score(compliance_score, None) if compliance_score is not None else None,
            compliance_gaps=list(data.get('complianceGaps') or []),
            raw=data,
            method=self.llm.provider.value,
        )

    def _analyze_with_rules(self, architecture, tech_stack, frameworks) -> DesignAnalysis:
        text = f"{architecture} {tech_stack or ''}".lower()
        domains = {}
        for domain, signals in DOMAIN_SIGNALS.items():
            hits = sum(1 for signal in signals if signal in text)
            domains[domain] = min(95, 55 + 15 * hits)

        score = round(sum(domains.values()) / len(domains))
        weak = sorted((d for d, s in domains.items() if s < 70), key=lambda d: domains[d])

        findings = [{
            'category': DOMAIN_LABELS[d],
            'title': f"No {DOMAIN_LABELS[d].lower()} controls described",
            'description': f"The architecture does not describe {DOMAIN_LABELS[d].lower()} controls.",
            'severity': 'HIGH' if domains[d] <= 55 else 'MEDIUM',
            'impact': 'Gaps in this domain increase the likelihood of a successful attack.',
            'recommendation': DOMAIN_ADVICE[d],
        } for d in weak]

        recommendations = [{
            'category': DOMAIN_LABELS[d],
            'title': DOMAIN_ADVICE[d],
            'description': DOMAIN_ADVICE[d],
            'priority': 'HIGH' if domains[d] < 70 else 'MEDIUM',
            'effort': 'MEDIUM',
            'impact': 'HIGH' if domains[d] < 70 else 'MEDIUM',
        } for d in sorted(domains, key=lambda d: domains[d])]

        actions = [{
            'title': DOMAIN_ADVICE[d],
            'description': f"Close the {DOMAIN_LABELS[d].lower()} gap identified in the review.",
            'category': DOMAIN_LABELS[d],
            'priority': index + 1,
            'timeframe': 'Immediate' if index == 0 else 'Within 1 month',
        } for index, d in enumerate(weak[:5])]

        gaps = [{
            'framework': framework,
            'requirement': f"{DOMAIN_LABELS[d]} controls",
            'description': f"{framework} expects documented {DOMAIN_LABELS[d].lower()} controls.",
            'severity': 'MEDIUM',
            'remediation': DOMAIN_ADVICE[d],
        } for framework in frameworks for d in weak]

        return DesignAnalysis(
            security_score=score,
            security_grade=security_grade(score),
            overall_risk=risk_level(score),
            domain_scores=domains,
            security_findings=findings,
            recommendations=recommendations,
            prioritized_actions=actions,
            compliance_score=max(0, score - 5 * len(weak)) if frameworks else None,
            compliance_gaps=gaps,
            raw={'method': 'fallback'},
            method='fallback',
        )


# ==================== Third-Party Reviews ====================

SECURITY_HEADERS = (
    'Strict-Transport-Security',
    'Content-Security-Policy',
    'X-Frame-Options',
    'X-Content-Type-Options',
    'Referrer-Policy',
    'Permissions-Policy',
    'X-XSS-Protection',
)


@dataclass
class SiteObservation:
    """What was observed when fetching a vendor application."""
    url: str
    status_code: Optional[int] = None
    headers: Dict[str, str] = field(default_factory=dict)
    cookies: List[Dict[str, Any]] = field(default_factory=list)
    has_privacy_link: Optional[bool] = None
    has_terms_link: Optional[bool] = None
    error: Optional[str] = None

    @property
    def is_https(self) -> bool:
        return self.url.lower().startswith('https://')


@dataclass
class VendorAnalysis:
    overall_score: int
    security_grade: str
    risk_level: str
    tls_grade: str
    headers_score: int
    security_headers: Dict[str, Any]
    cookie_analysis: Dict[str, Any]
    privacy_policy_status: str
    terms_of_service_status: str
    security_findings: List[Dict[str, Any]] = field(default_factory=list)
    recommendations: List[Dict[str, Any]] = field(default_factory=list)
    risk_factors: List[str] = field(default_factory=list)
    method: str = 'fallback'


def analyze_headers(headers: Dict[str, str]) -> Dict[str, Any]:
    """Score the presence of standard security headers."""
    lowered = {k.lower(): v for k, v in (headers or {}).items()}
    results = {}
    present = 0
    for name in SECURITY_HEADERS:
        value = lowered.get(name.lower())
        if value is not None:
            present += 1
        results[name] = {
            'present': value is not None,
            'value': value,
            'severity': None if value is not None else (
                'HIGH' if name in ('Strict-Transport-Security', 'Content-Security-Policy') else 'MEDIUM'),
        }
    return {'score': round(present / len(SECURITY_HEADERS) * 100), 'headers': results}


def analyze_cookies(cookies: List[Dict[str, Any]]) -> Dict[str, Any]:
    total = len(cookies)
    secure = sum(1 for c in cookies if c.get('secure'))
    http_only = sum(1 for c in cookies if c.get('httponly'))
    same_site = sum(1 for c in cookies if c.get('samesite'))
    issues = []
    for cookie in cookies:
        missing = [flag for flag, key in (('Secure', 'secure'), ('HttpOnly', 'httponly'),
                                          ('SameSite', 'samesite')) if not cookie.get(key)]
        if missing:
            issues.append(f"Cookie '{cookie.get('name')}' is missing {', '.join(missing)}")
    score = 100 if not total else round((secure + http_only + same_site) / (3 * total) * 100)
    return {'score': score, 'totalCookies': total, 'secure': secure, 'httpOnly': http_only,
            'sameSite': same_site, 'issues': issues}


class VendorAnalyzer:
    """Security posture assessment of a third-party web application."""

    PROMPT_TEMPLATE = """You are a cybersecurity expert assessing the security of a third-party web application.

Target URL: {url}
Vendor: {vendor}
Observed response status: {status}
Observed response headers:
{headers}
Observed cookies: {cookies}

Respond with JSON only, using these keys:
- overallSecurityScore: integer 0-100
- tlsGrade: one of A+, A, B, C, D, F
- httpSecurityHeaders: {{"score": 0-100, "headers": {{"<header>": {{"present": bool, "value": str,
  "recommendation": str, "severity": str}}}}}}
- cookieAnalysis: {{"score": 0-100, "totalCookies": int, "secure": int, "httpOnly": int,
  "sameSite": int, "issues": [str]}}
- privacyPolicyStatus: NOT_FOUND, FOUND, REVIEWED, COMPLIANT, NON_COMPLIANT or OUTDATED
- termsOfServiceStatus: NOT_FOUND, FOUND, REVIEWED, ACCEPTABLE, CONCERNING or UNACCEPTABLE
- securityFindings: 3-8 objects with category, title, description, severity, impact, recommendation
- recommendations: 5-10 objects with category, title, description, priority, effort, impact
- riskFactors: list of strings"""

    def __init__(self, llm: LLMService):
        self.llm = llm

    def analyze(self, observation: SiteObservation, vendor: Optional[str] = None) -> VendorAnalysis:
        """
        Assess a vendor application.

        Without an LLM a successful fetch is required; the rule-based path
        raises ValueError when nothing was observed.
        """
        if self.llm.is_available():
            return self._analyze_with_llm(observation, vendor)
        if observation.error:
            raise ValueError(f"Could not reach {observation.url}: {observation.error}")
        return self._analyze_with_rules(observation)

    def _analyze_with_llm(self, obs: SiteObservation, vendor: Optional[str]) -> VendorAnalysis:
        headers = '\n'.join(f"  {k}: {v}" for k, v in obs.headers.items()) or '  (not available)'
        prompt = self.PROMPT_TEMPLATE.format(
            url=obs.url, vendor=vendor or 'Unknown', status=obs.status_code or 'unavailable',
            headers=headers, cookies=[c.get('name') for c in obs.cookies] or 'none observed',
        )
        data = self.llm.complete_json(
            'You are a third-party risk assessor. Respond with valid JSON only.', prompt, temperature=0.1,
        )
        if not isinstance(data, dict):
            raise LLMError("Unexpected vendor analysis format")

        score = _score(data.get('overallSecurityScore'), 75)
        headers_result = data.get('httpSecurityHeaders') or {'score': 70, 'headers': {}}
        cookies_result = data.get('cookieAnalysis') or {
            'score': 70, 'totalCookies': 5, 'secure': 3, 'httpOnly': 4, 'sameSite': 2, 'issues': [],
        }
        return VendorAnalysis(
            overall_score=score,
            security_grade=security_grade(score),
            risk_level=risk_level(score),
            tls_grade=str(data.get('tlsGrade') or 'B')[:3],
            headers_score=_score(headers_result.get('score'), 70),
            security_headers=headers_result,
            cookie_analysis=cookies_result,
            privacy_policy_status=data.get('privacyPolicyStatus') or 'FOUND',
            terms_of_service_status=data.get('termsOfServiceStatus') or 'FOUND',
            security_findings=list(data.get('securityFindings') or []),
            recommendations=list(data.get('recommendations') or []),
            risk_factors=list(data.get('riskFactors') or []),
            method=self.llm.provider.value,
        )

    def _analyze_with_rules(self, obs: SiteObservation) -> VendorAnalysis:
        headers_result = analyze_headers(obs.headers)
        cookies_result = analyze_cookies(obs.cookies)
        hsts = headers_result['headers']['Strict-Transport-Security']['present']
        if obs.is_https:
            tls_grade, tls_score = ('A', 100) if hsts else ('B', 80)
        else:
            tls_grade, tls_score = 'F', 0

        score = round(0.4 * tls_score + 0.4 * headers_result['score'] + 0.2 * cookies_result['score'])

        findings, recommendations, risk_factors = [], [], []
        if not obs.is_https:
            findings.append({
                'category': 'Network Security', 'title': 'Application served without TLS',
                'description': 'Traffic to the application is not encrypted.', 'severity': 'CRITICAL',
                'impact': 'Credentials and data can be intercepted.',
                'recommendation': 'Serve the application exclusively over HTTPS.',
            })
            risk_factors.append('No encryption in transit')
        for name, info in headers_result['headers'].items():
            if not info['present'] and info['severity'] == 'HIGH':
                findings.append({
                    'category': 'HTTP Security Headers', 'title': f"Missing {name} header",
                    'description': f"The response does not set {name}.", 'severity': 'MEDIUM',
                    'impact': 'Browser-side protections are not enabled.',
                    'recommendation': f"Configure the {name} header.",
                })
        for issue in cookies_result['issues']:
            risk_factors.append(issue)
        missing = [n for n, i in headers_result['headers'].items() if not i['present']]
        if missing:
            recommendations.append({
                'category': 'HTTP Security Headers', 'title': 'Add missing security headers',
                'description': f"Configure {', '.join(missing)}.", 'priority': 'HIGH',
                'effort': 'LOW', 'impact': 'MEDIUM',
            })
            risk_factors.append(f"{len(missing)} security headers missing")
        if cookies_result['issues']:
            recommendations.append({
                'category': 'Session Management', 'title': 'Harden cookie attributes',
                'description': 'Set Secure, HttpOnly and SameSite on all cookies.', 'priority': 'MEDIUM',
                'effort': 'LOW', 'impact': 'MEDIUM',
            })

        def link_status(found):
            if found is None:
                return 'FOUND'
            return 'FOUND' if found else 'NOT_FOUND'

        return VendorAnalysis(
            overall_score=score,
            security_grade=security_grade(score),
            risk_level=risk_level(score),
            tls_grade=tls_grade,
            headers_score=headers_result['score'],
            security_headers=headers_result,
            cookie_analysis=cookies_result,
            privacy_policy_status=link_status(obs.has_privacy_link),
            terms_of_service_status=link_status(obs.has_terms_link),
            security_findings=findings,
            recommendations=recommendations,
            risk_factors=risk_factors,
            method='fallback',
        )
