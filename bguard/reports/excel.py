"""
Excel report rendering for BGuard Suite.

Writes a workbook with Summary, Findings and STRIDE Analysis sheets.
"""

from io import BytesIO

from openpyxl import Workbook
from openpyxl.styles import Font, PatternFill, Alignment
from openpyxl.utils import get_column_letter

from bguard.reports.summary import executive_summary

HEADER_FILL = PatternFill(start_color='1E3A5F', end_color='1E3A5F', fill_type='solid')
HEADER_FONT = Font(bold=True, color='FFFFFF')

SEVERITY_FILLS = {
    'CRITICAL': PatternFill(start_color='FECACA', end_color='FECACA', fill_type='solid'),
    'HIGH': PatternFill(start_color='FED7AA', end_color='FED7AA', fill_type='solid'),
    'MEDIUM': PatternFill(start_color='FEF08A', end_color='FEF08A', fill_type='solid'),
    'LOW': PatternFill(start_color='BBF7D0', end_color='BBF7D0', fill_type='solid'),
}

FINDING_COLUMNS = [
    ('ID', 'id', 8),
    ('Threat Scenario', 'threat_scenario', 45),
    ('STRIDE Category', 'stride_category', 22),
    ('Severity', 'severity', 12),
    ('Status', 'status', 14),
    ('Description', 'description', 60),
    ('Recommendation', 'recommendation', 60),
    ('NIST Controls', 'nist_controls', 20),
    ('OWASP Category', 'owasp_category', 14),
    ('CVSS Score', 'cvss_score', 12),
    ('ASVS Level', 'asvs_level', 12),
]


def _header(sheet, row, titles):
    for col, title in enumerate(titles, start=1):
        cell = sheet.cell(row=row, column=col, value=title)
        cell.fill = HEADER_FILL
        cell.font = HEADER_FONT


def _summary_sheet(sheet, data):
    tm = data['threat_model']
    sheet.title = 'Summary'
    sheet['A1'] = f"{data['company_name']} - Threat Model Report"
    sheet['A1'].font = Font(bold=True, size=14)

    rows = [
        ('Threat Model', tm['name']),
        ('Description', tm['description']),
        ('Status', tm['status']),
        ('Generated', data['generated_at'].strftime('%Y-%m-%d %H:%M UTC')),
        ('Total Findings', data['total_findings']),
    ]
    for offset, (label, value) in enumerate(rows, start=3):
        sheet.cell(row=offset, column=1, value=label).font = Font(bold=True)
        sheet.cell(row=offset, column=2, value=value)

    row = len(rows) + 4
    sheet.cell(row=row, column=1, value='Executive Summary').font = Font(bold=True)
    summary_cell = sheet.cell(row=row, column=2, value=executive_summary(data))
    summary_cell.alignment = Alignment(wrap_text=True, vertical='top')

    row += 2
    _header(sheet, row, ['Severity', 'Findings'])
    for severity in ('CRITICAL', 'HIGH', 'MEDIUM', 'LOW'):
        row += 1
        sheet.cell(row=row, column=1, value=severity).fill = SEVERITY_FILLS[severity]
        sheet.cell(row=row, column=2, value=data['severity_counts'][severity])

    row += 2
    _header(sheet, row, ['Status', 'Findings'])
    for status, count in data['status_counts'].items():
        row += 1
        sheet.cell(row=row, column=1, value=status)
        sheet.cell(row=row, column=2, value=count)

    sheet.column_dimensions['A'].width = 22
    sheet.column_dimensions['B'].width = 90


def _findings_sheet(sheet, data):
    _header(sheet, 1, [title for title, _, _ in FINDING_COLUMNS])
    for row, finding in enumerate(data['findings'], start=2):
        for col, (_, key, _) in enumerate(FINDING_COLUMNS, start=1):
            cell = sheet.cell(row=row, column=col, value=finding[key])
            cell.alignment = Alignment(wrap_text=True, vertical='top')
            if key == 'severity':
                cell.fill = SEVERITY_FILLS.get(finding[key], PatternFill())
    for col, (_, _, width) in enumerate(FINDING_COLUMNS, start=1):
        sheet.column_dimensions[get_column_letter(col)].width = width
    sheet.freeze_panes = 'A2'


def _stride_sheet(sheet, data):
    _header(sheet, 1, ['STRIDE Category', 'Findings', 'Critical', 'High'])
    for row, entry in enumerate(data['stride'].values(), start=2):
        sheet.cell(row=row, column=1, value=entry['label'])
        sheet.cell(row=row, column=2, value=entry['count'])
        sheet.cell(row=row, column=3, value=entry['critical'])
        sheet.cell(row=row, column=4, value=entry['high'])
    sheet.column_dimensions['A'].width = 28


def render_excel(data):
    """Render report data to XLSX bytes."""
    workbook = Workbook()
    _summary_sheet(workbook.active, data)
    _findings_sheet(workbook.create_sheet('Findings'), data)
    _stride_sheet(workbook.create_sheet('STRIDE Analysis'), data)

    buffer = BytesIO()
    workbook.save(buffer)
    return buffer.getvalue()
