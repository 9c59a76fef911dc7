"""
BGuard Compliance Framework Mapping

Maps STRIDE findings to NIST SP 800-53 controls and the OWASP Top 10
(2021), and estimates CVSS scores and ASVS verification levels.
"""

from dataclasses import dataclass
from typing import Dict, List, Optional, Iterable

from bguard.models.base import enum_value


@dataclass(frozen=True)
class NISTControl:
    id: str
    family: str
    title: str


@dataclass(frozen=True)
class OWASPCategory:
    id: str
    name: str
    risk: str


NIST_CONTROLS: Dict[str, NISTControl] = {
    'AC-1': NISTControl('AC-1', 'Access Control', 'Access Control Policy and Procedures'),
    'AC-2': NISTControl('AC-2', 'Access Control', 'Account Management'),
    'AC-3': NISTControl('AC-3', 'Access Control', 'Access Enforcement'),
    'AC-6': NISTControl('AC-6', 'Access Control', 'Least Privilege'),
    'AU-1': NISTControl('AU-1', 'Audit and Accountability', 'Audit and Accountability Policy and Procedures'),
    'AU-2': NISTControl('AU-2', 'Audit and Accountability', 'Audit Events'),
    'AU-3': NISTControl('AU-3', 'Audit and Accountability', 'Content of Audit Records'),
    'CM-1': NISTControl('CM-1', 'Configuration Management', 'Configuration Management Policy and Procedures'),
    'CM-2': NISTControl('CM-2', 'Configuration Management', 'Baseline Configuration'),
    'IA-1': NISTControl('IA-1', 'Identification and Authentication',
                        'Identification and Authentication Policy and Procedures'),
    'IA-2': NISTControl('IA-2', 'Identification and Authentication',
                        'Identification and Authentication (Organizational Users)'),
    'SC-1': NISTControl('SC-1', 'System and Communications Protection',
                        'System and Communications Protection Policy and Procedures'),
    'SC-7': NISTControl('SC-7', 'System and Communications Protection', 'Boundary Protection'),
    'SI-1': NISTControl('SI-1', 'System and Information Integrity',
                        'System and Information Integrity Policy and Procedures'),
    'SI-2': NISTControl('SI-2', 'System and Information Integrity', 'Flaw Remediation'),
}

OWASP_CATEGORIES: Dict[str, OWASPCategory] = {
    'A01': OWASPCategory('A01', 'Broken Access Control', 'High'),
    'A02': OWASPCategory('A02', 'Cryptographic Failures', 'High'),
    'A03': OWASPCategory('A03', 'Injection', 'High'),
    'A04': OWASPCategory('A04', 'Insecure Design', 'High'),
    'A05': OWASPCategory('A05', 'Security Misconfiguration', 'Medium'),
    'A06': OWASPCategory('A06', 'Vulnerable and Outdated Components', 'Medium'),
    'A07': OWASPCategory('A07', 'Identification and Authentication Failures', 'Medium'),
    'A08': OWASPCategory('A08', 'Software and Data Integrity Failures', 'Medium'),
    'A09': OWASPCategory('A09', 'Security Logging and Monitoring Failures', 'Low'),
    'A10': OWASPCategory('A10', 'Server-Side Request Forgery', 'Medium'),
}

STRIDE_TO_NIST: Dict[str, List[str]] = {
    'SPOOFING': ['IA-1', 'IA-2', 'AC-2'],
    'TAMPERING': ['SI-1', 'SI-2', 'CM-1', 'CM-2'],
    'REPUDIATION': ['AU-1', 'AU-2', 'AU-3'],
    'INFORMATION_DISCLOSURE': ['AC-1', 'AC-3', 'SC-1', 'SC-7'],
    'DENIAL_OF_SERVICE': ['SC-1', 'SC-7', 'SI-1'],
    'ELEVATION_OF_PRIVILEGE': ['AC-1', 'AC-3', 'AC-6', 'IA-1'],
}

STRIDE_TO_OWASP: Dict[str, List[str]] = {
    'SPOOFING': ['A07'],
    'TAMPERING': ['A03', 'A04', 'A08'],
    'REPUDIATION': ['A09'],
    'INFORMATION_DISCLOSURE': ['A01', 'A02'],
    'DENIAL_OF_SERVICE': ['A05', 'A06'],
    'ELEVATION_OF_PRIVILEGE': ['A01', 'A04'],
}

CVSS_BASE_SCORES = {'LOW': 3.9, 'MEDIUM': 6.9, 'HIGH': 8.9, 'CRITICAL': 10.0}


def map_stride_to_nist(stride_category) -> List[str]:
    return list(STRIDE_TO_NIST.get(enum_value(stride_category), []))


def map_stride_to_owasp(stride_category) -> List[str]:
    return list(STRIDE_TO_OWASP.get(enum_value(stride_category), []))


def calculate_cvss_score(severity, network_access: bool = False,
                         privileges_required: Optional[bool] = None,
                         user_interaction: Optional[bool] = None,
                         confidentiality_impact: Optional[str] = None,
                         integrity_impact: Optional[str] = None,
                         availability_impact: Optional[str] = None) -> float:
    """
    Estimate a CVSS base score from severity and exploit context.

    ``privileges_required`` and ``user_interaction`` only raise the score
    when explicitly False.
    """
    score = CVSS_BASE_SCORES.get(enum_value(severity), 0.0)
    if network_access:
        score += 0.5
    if privileges_required is False:
        score += 0.3
    if user_interaction is False:
        score += 0.2
    for impact in (confidentiality_impact, integrity_impact, availability_impact):
        if impact == 'HIGH':
            score += 0.4
    return min(10.0, max(0.0, round(score, 1)))


def get_asvs_level(severity) -> int:
    severity = enum_value(severity)
    if severity == 'CRITICAL':
        return 3
    if severity == 'HIGH':
        return 2
    return 1


def severity_from_cvss(cvss_score: float) -> str:
    if cvss_score >= 9.0:
        return 'CRITICAL'
    if cvss_score >= 7.0:
        return 'HIGH'
    if cvss_score >= 4.0:
        return 'MEDIUM'
    return 'LOW'


def map_finding(stride_category, severity) -> Dict:
    """
    Framework fields for a finding.

    Assumes a network-reachable flaw needing no privileges but some user
    interaction; the OWASP category is the first match.
    """
    owasp = map_stride_to_owasp(stride_category)
    return {
        'nist_controls': map_stride_to_nist(stride_category),
        'owasp_category': owasp[0] if owasp else None,
        'cvss_score': calculate_cvss_score(severity, network_access=True,
                                           privileges_required=False, user_interaction=True),
        'asvs_level': get_asvs_level(severity),
    }


def compliance_summary(findings: Iterable) -> Dict:
    """
    Per-framework coverage for a set of findings.

    Counts how many findings touch each NIST control and OWASP category.
    """
    nist_counts: Dict[str, int] = {}
    owasp_counts: Dict[str, int] = {}
    asvs_counts = {1: 0, 2: 0, 3: 0}
    cvss_scores = []

    for finding in findings:
        for control in finding.nist_controls or []:
            nist_counts[control] = nist_counts.get(control, 0) + 1
        if finding.owasp_category:
            owasp_counts[finding.owasp_category] = owasp_counts.get(finding.owasp_category, 0) + 1
        if finding.asvs_level in asvs_counts:
            asvs_counts[finding.asvs_level] += 1
        if finding.cvss_score is not None:
            cvss_scores.append(finding.cvss_score)

    return {
        'nist': {
            'controls_touched': len(nist_counts),
            'total_controls': len(NIST_CONTROLS),
            'controls': [
                {'id': cid, 'family': NIST_CONTROLS[cid].family, 'title': NIST_CONTROLS[cid].title,
                 'findings': count}
                for cid, count in sorted(nist_counts.items()) if cid in NIST_CONTROLS
            ],
        },
        'owasp': {
            'categories_touched': len(owasp_counts),
            'categories': [
                {'id': oid, 'name': OWASP_CATEGORIES[oid].name, 'findings': count}
                for oid, count in sorted(owasp_counts.items()) if oid in OWASP_CATEGORIES
            ],
        },
        'asvs': {f'level_{level}': count for level, count in asvs_counts.items()},
        'cvss': {
            'average': round(sum(cvss_scores) / len(cvss_scores), 1) if cvss_scores else None,
            'max': max(cvss_scores) if cvss_scores else None,
        },
    }
