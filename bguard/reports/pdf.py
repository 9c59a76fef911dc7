"""
PDF report rendering for BGuard Suite.

Builds a threat model report with ReportLab platypus: title block,
executive summary, STRIDE breakdown and the findings table.
"""

from io import BytesIO

from markupsafe import escape
from reportlab.lib import colors
from reportlab.lib.enums import TA_CENTER
from reportlab.lib.pagesizes import A4, landscape
from reportlab.lib.styles import getSampleStyleSheet, ParagraphStyle
from reportlab.lib.units import inch
from reportlab.platypus import SimpleDocTemplate, Paragraph, Spacer, Table, TableStyle, PageBreak

from bguard.reports.summary import executive_summary

SEVERITY_COLORS = {
    'CRITICAL': colors.HexColor('#B91C1C'),
    'HIGH': colors.HexColor('#EA580C'),
    'MEDIUM': colors.HexColor('#CA8A04'),
    'LOW': colors.HexColor('#15803D'),
}

HEADER_COLOR = colors.HexColor('#1E3A5F')


def _styles():
    styles = getSampleStyleSheet()
    styles.add(ParagraphStyle(
        name='ReportTitle',
        parent=styles['Title'],
        fontSize=24,
        textColor=HEADER_COLOR,
        spaceAfter=12,
        alignment=TA_CENTER
    ))
    styles.add(ParagraphStyle(
        name='ReportSubtitle',
        parent=styles['Normal'],
        fontSize=11,
        textColor=colors.HexColor('#475569'),
        alignment=TA_CENTER,
        spaceAfter=6
    ))
    styles.add(ParagraphStyle(
        name='SectionTitle',
        parent=styles['Heading2'],
        textColor=HEADER_COLOR,
        spaceBefore=14,
        spaceAfter=8
    ))
    styles.add(ParagraphStyle(
        name='Cell',
        parent=styles['Normal'],
        fontSize=8,
        leading=10
    ))
    return styles


def _table(rows, col_widths):
    table = Table(rows, colWidths=col_widths, repeatRows=1)
    commands = [
        ('FONTNAME', (0, 0), (-1, -1), 'Helvetica'),
        ('FONTSIZE', (0, 0), (-1, -1), 9),
        ('GRID', (0, 0), (-1, -1), 0.5, colors.HexColor('#CBD5E1')),
        ('VALIGN', (0, 0), (-1, -1), 'TOP'),
        ('BACKGROUND', (0, 0), (-1, 0), HEADER_COLOR),
        ('TEXTCOLOR', (0, 0), (-1, 0), colors.white),
        ('FONTNAME', (0, 0), (-1, 0), 'Helvetica-Bold'),
    ]
    for i in range(2, len(rows), 2):
        commands.append(('BACKGROUND', (0, i), (-1, i), colors.HexColor('#F1F5F9')))
    table.setStyle(TableStyle(commands))
    return table


def _p(text, style):
    # Paragraph parses a mini-markup, so user text must be escaped
    return Paragraph(str(escape(text or '')), style)


def render_pdf(data):
    """Render report data to PDF bytes."""
    buffer = BytesIO()
    doc = SimpleDocTemplate(
        buffer,
        pagesize=landscape(A4),
        rightMargin=40,
        leftMargin=40,
        topMargin=40,
        bottomMargin=40,
        title=f"{data['threat_model']['name']} - Threat Model Report",
        author=data['company_name'],
    )
    styles = _styles()
    story = []

    tm = data['threat_model']
    story.append(_p(data['company_name'], styles['ReportSubtitle']))
    story.append(_p('Threat Model Report', styles['ReportTitle']))
    story.append(_p(tm['name'], styles['ReportSubtitle']))
    story.append(_p(f"Generated {data['generated_at'].strftime('%B %d, %Y %H:%M UTC')}",
                    styles['ReportSubtitle']))
    story.append(Spacer(1, 0.3 * inch))

    story.append(_p('Executive Summary', styles['SectionTitle']))
    story.append(_p(executive_summary(data), styles['Normal']))
    if tm['summary']:
        story.append(Spacer(1, 0.1 * inch))
        story.append(_p(tm['summary'], styles['Normal']))
    story.append(Spacer(1, 0.2 * inch))

    counts = data['severity_counts']
    severity_rows = [['Severity', 'Findings']] + [[s, str(counts[s])] for s in ('CRITICAL', 'HIGH', 'MEDIUM', 'LOW')]
    severity_table = _table(severity_rows, [1.5 * inch, 1 * inch])
    for i, severity in enumerate(('CRITICAL', 'HIGH', 'MEDIUM', 'LOW'), start=1):
        severity_table.setStyle(TableStyle([('TEXTCOLOR', (0, i), (0, i), SEVERITY_COLORS[severity])]))
    story.append(severity_table)
    story.append(Spacer(1, 0.15 * inch))

    status_rows = [['Status', 'Findings']] + [[s.replace('_', ' ').title(), str(c)]
                                             for s, c in data['status_counts'].items()]
    story.append(_table(status_rows, [1.5 * inch, 1 * inch]))

    story.append(_p('STRIDE Analysis', styles['SectionTitle']))
    stride_rows = [['Category', 'Findings', 'Critical', 'High']]
    for entry in data['stride'].values():
        stride_rows.append([entry['label'], str(entry['count']), str(entry['critical']), str(entry['high'])])
    story.append(_table(stride_rows, [2.5 * inch, 1 * inch, 1 * inch, 1 * inch]))

    if data['findings']:
        story.append(PageBreak())
        story.append(_p('Findings', styles['SectionTitle']))
        cell = styles['Cell']
        rows = [['Threat', 'STRIDE', 'Severity', 'Status', 'Recommendation', 'NIST', 'OWASP', 'CVSS', 'ASVS']]
        for f in data['findings']:
            rows.append([
                _p(f['threat_scenario'], cell),
                _p(f['stride_category'], cell),
                f['severity'],
                f['status'].replace('_', ' '),
                _p(f['recommendation'], cell),
                _p(f['nist_controls'], cell),
                f['owasp_category'],
                '' if f['cvss_score'] is None else f"{f['cvss_score']:.1f}",
                '' if f['asvs_level'] is None else str(f['asvs_level']),
            ])
        findings_table = _table(rows, [2.2 * inch, 1.1 * inch, 0.8 * inch, 0.8 * inch, 2.6 * inch,
                                       1.0 * inch, 0.6 * inch, 0.5 * inch, 0.5 * inch])
        for i, f in enumerate(data['findings'], start=1):
            findings_table.setStyle(TableStyle([
                ('TEXTCOLOR', (2, i), (2, i), SEVERITY_COLORS.get(f['severity'], colors.black)),
            ]))
        story.append(findings_table)

    doc.build(story)
    return buffer.getvalue()
