"""
Report data assembly for BGuard Suite.

Collects a threat model and its findings into the plain structure that
the PDF and Excel renderers consume.
"""

from collections import OrderedDict
from datetime import datetime

from bguard.models.threat_model import Finding, Severity, StrideCategory, FindingStatus
from bguard.models.base import enum_value

SEVERITY_ORDER = {'CRITICAL': 0, 'HIGH': 1, 'MEDIUM': 2, 'LOW': 3}

STRIDE_LABELS = OrderedDict([
    ('SPOOFING', 'Spoofing'),
    ('TAMPERING', 'Tampering'),
    ('REPUDIATION', 'Repudiation'),
    ('INFORMATION_DISCLOSURE', 'Information Disclosure'),
    ('DENIAL_OF_SERVICE', 'Denial of Service'),
    ('ELEVATION_OF_PRIVILEGE', 'Elevation of Privilege'),
])


def build_report_data(threat_model, company_name='BGuard Suite'):
    findings = sorted(
        threat_model.findings.order_by(Finding.id).all(),
        key=lambda f: SEVERITY_ORDER.get(enum_value(f.severity), 4),
    )

    severity_counts = {s.value: 0 for s in Severity}
    status_counts = {s.value: 0 for s in FindingStatus}
    stride = OrderedDict((c.value, {'label': STRIDE_LABELS[c.value], 'count': 0,
                                    'critical': 0, 'high': 0}) for c in StrideCategory)

    rows = []
    for finding in findings:
        severity = enum_value(finding.severity)
        category = enum_value(finding.stride_category)
        severity_counts[severity] += 1
        status_counts[enum_value(finding.status)] += 1
        stride[category]['count'] += 1
        if severity in ('CRITICAL', 'HIGH'):
            stride[category][severity.lower()] += 1
        rows.append({
            'id': finding.id,
            'threat_scenario': finding.threat_scenario,
            'description': finding.description or '',
            'severity': severity,
            'stride_category': STRIDE_LABELS.get(category, category),
            'status': enum_value(finding.status),
            'recommendation': finding.recommendation or '',
            'nist_controls': ', '.join(finding.nist_controls or []),
            'owasp_category': finding.owasp_category or '',
            'cvss_score': finding.cvss_score,
            'asvs_level': finding.asvs_level,
        })

    return {
        'company_name': company_name,
        'generated_at': datetime.utcnow(),
        'threat_model': {
            'id': threat_model.id,
            'name': threat_model.name,
            'description': threat_model.description or '',
            'prompt': threat_model.prompt,
            'status': enum_value(threat_model.status),
            'summary': threat_model.summary or '',
            'created_at': threat_model.created_at,
        },
        'total_findings': len(rows),
        'severity_counts': severity_counts,
        'status_counts': status_counts,
        'stride': stride,
        'findings': rows,
    }


def executive_summary(data):
    """One paragraph describing the findings of a report."""
    total = data['total_findings']
    if not total:
        return (f"The threat model \"{data['threat_model']['name']}\" has no recorded findings. "
                f"Run an analysis to identify STRIDE threats.")
    counts = data['severity_counts']
    urgent = counts['CRITICAL'] + counts['HIGH']
    text = (f"Threat modeling of \"{data['threat_model']['name']}\" identified {total} "
            f"finding{'s' if total != 1 else ''}: {counts['CRITICAL']} critical, {counts['HIGH']} high, "
            f"{counts['MEDIUM']} medium and {counts['LOW']} low severity. "
            f"{data['status_counts']['OPEN']} remain open and {data['status_counts']['RESOLVED']} are resolved.")
    if urgent:
        text += f" The {urgent} critical and high severity findings should be remediated first."
    return text
