"""Export a route transport list to Excel (XLSX)."""

from datetime import datetime
from io import BytesIO
import logging
import re

from openpyxl import Workbook
from openpyxl.styles import Alignment, Border, Font, PatternFill, Side
from openpyxl.utils import get_column_letter

from report_filters import build_report_table

logger = logging.getLogger(__name__)

TITLE_ROW = 1
GENERATED_ROW = 2
HEADER_ROW = 4
FIRST_DATA_ROW = 5

MIN_COLUMN_WIDTH = 10
MAX_COLUMN_WIDTH = 30
MAX_SHEET_TITLE = 31
DEFAULT_SHEET_TITLE = 'Learners'

TAB_COLOR = 'D32F2F'
TITLE_FONT = Font(size=16, bold=True, color='D32F2F')
GENERATED_FONT = Font(size=10, italic=True, color='666666')
HEADER_FONT = Font(bold=True, color='FFFFFF')
HEADER_FILL = PatternFill('solid', fgColor='1E1E1E')
ALT_ROW_FILL = PatternFill('solid', fgColor='F5F5F5')
THIN_SIDE = Side(style='thin', color='E0E0E0')
CELL_BORDER = Border(left=THIN_SIDE, right=THIN_SIDE, top=THIN_SIDE, bottom=THIN_SIDE)
CENTER = Alignment(horizontal='center')

_INVALID_SHEET_CHARS = re.compile(r'[\[\]:*?/\\\x00-\x1f\x7f]')


def worksheet_title(route_name):
    """Route name made safe for a worksheet tab"""
    title = _INVALID_SHEET_CHARS.sub('', route_name or '').strip().strip("'")
    title = title[:MAX_SHEET_TITLE].strip()
    return title or DEFAULT_SHEET_TITLE


def column_widths(report_table):
    """Width per column from the longest header or cell value, clamped"""
    widths = []
    for position, header in enumerate(report_table.headers):
        values = [header] + [row[position] for row in report_table.rows]
        longest = max(len(str(v)) for v in values)
        widths.append(min(max(longest + 2, MIN_COLUMN_WIDTH), MAX_COLUMN_WIDTH))
    return widths


def build_workbook(route, learners, config, generated_at=None):
    generated_at = generated_at or datetime.now()
    report_table = build_report_table(learners, config)
    width = len(report_table.headers)

    wb = Workbook()
    wb.properties.creator = 'Transport Management System'
    wb.properties.created = generated_at
    ws = wb.active
    ws.title = worksheet_title(route.get('name'))
    ws.sheet_properties.tabColor = TAB_COLOR

    term_year = ' '.join(str(v) for v in (route.get('term'), route.get('year')) if v)
    ws.merge_cells(start_row=TITLE_ROW, start_column=1, end_row=TITLE_ROW, end_column=width)
    title = ws.cell(TITLE_ROW, 1, f"{route.get('name') or ''} - Transport List ({term_year})")
    title.data_type = 's'
    title.font = TITLE_FONT
    title.alignment = CENTER

    ws.merge_cells(start_row=GENERATED_ROW, start_column=1, end_row=GENERATED_ROW, end_column=width)
    generated = ws.cell(GENERATED_ROW, 1, f"Generated: {generated_at.strftime('%d/%m/%Y, %H:%M:%S')}")
    generated.font = GENERATED_FONT
    generated.alignment = CENTER

    # Row 3 stays empty as a spacer
    for column, header in enumerate(report_table.headers, start=1):
        cell = ws.cell(HEADER_ROW, column, header)
        cell.font = HEADER_FONT
        cell.fill = HEADER_FILL
        cell.alignment = CENTER
        cell.border = CELL_BORDER
    ws.row_dimensions[HEADER_ROW].height = 25

    for index, row in enumerate(report_table.rows):
        row_number = FIRST_DATA_ROW + index
        for column, value in enumerate(row, start=1):
            cell = ws.cell(row_number, column, value)
            if isinstance(value, str):
                # Learner text is never a formula
                cell.data_type = 's'
            cell.border = CELL_BORDER
            if index % 2 == 1:
                cell.fill = ALT_ROW_FILL

    for column, col_width in enumerate(column_widths(report_table), start=1):
        ws.column_dimensions[get_column_letter(column)].width = col_width

    return wb


def render_excel(route, learners, config, generated_at=None):
    """Render the transport list and return the XLSX bytes"""
    wb = build_workbook(route, learners, config, generated_at=generated_at)
    buf = BytesIO()
    wb.save(buf)
    logger.info(f"Rendered Excel transport list for route {route.get('name')} with {len(learners)} learners")
    return buf.getvalue()
