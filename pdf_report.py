"""
Branded PDF route report.

Landscape A4 with a red banner on the first page, route and personnel
boxes, the areas covered strip, the learners table and a footer with
"Page X of N" on every page.
"""

from datetime import datetime
from functools import partial
from io import BytesIO
import logging
from xml.sax.saxutils import escape

from reportlab.lib import colors
from reportlab.lib.pagesizes import A4, landscape
from reportlab.lib.styles import ParagraphStyle, getSampleStyleSheet
from reportlab.lib.units import mm
from reportlab.pdfgen import canvas
from reportlab.platypus import Paragraph, SimpleDocTemplate, Spacer, Table, TableStyle

from report_config import PLACEHOLDER
from report_filters import build_report_table, distinct_pickup_areas

logger = logging.getLogger(__name__)

DEFAULT_SCHOOL_NAME = 'Lelani School'
SUBTITLE = 'TRANSPORT MANAGEMENT SYSTEM'
REPORT_TITLE = 'ROUTE LEARNERS REPORT'
AREA_SEPARATOR = '  •  '
NO_AREAS_TEXT = 'No areas defined'

PAGE_SIZE = landscape(A4)
MARGIN = 10 * mm
BOTTOM_MARGIN = 16 * mm
BANNER_HEIGHT = 35 * mm
CONTENT_WIDTH = PAGE_SIZE[0] - 2 * MARGIN
BOX_GAP = 10 * mm
INDEX_COLUMN_WIDTH = 8 * mm

PRIMARY_RED = colors.HexColor('#D32F2F')
TABLE_HEADER_RED = colors.HexColor('#B42828')
DARK_GREY = colors.HexColor('#323232')
LIGHT_GREY = colors.HexColor('#787878')
BORDER_GREY = colors.HexColor('#C8C8C8')
GRID_GREY = colors.HexColor('#DCDCDC')
STRIP_BACKGROUND = colors.HexColor('#FAFAFA')
ALT_ROW = colors.HexColor('#FCFCFC')

CELL_STYLE = ParagraphStyle(
    'LearnerCell',
    fontName='Helvetica',
    fontSize=8,
    leading=10,
    textColor=DARK_GREY,
)


def school_name_from(settings, default=DEFAULT_SCHOOL_NAME):
    if settings and settings.get('school_name'):
        return settings['school_name']
    return default


def school_initials(name):
    words = [w for w in name.split() if w[:1].isalnum()]
    return ''.join(w[0] for w in words[:2]).upper() or 'S'


def _or_placeholder(value):
    if value is None or str(value).strip() == '':
        return PLACEHOLDER
    return str(value)


class NumberedCanvas(canvas.Canvas):
    """Canvas that defers the footer until the total page count is known"""

    def __init__(self, *args, footer_text='', **kwargs):
        super().__init__(*args, **kwargs)
        self._saved_page_states = []
        self.footer_text = footer_text

    def showPage(self):
        self._saved_page_states.append(dict(self.__dict__))
        self._startPage()

    def save(self):
        page_count = len(self._saved_page_states)
        for state in self._saved_page_states:
            self.__dict__.update(state)
            self.draw_footer(page_count)
            super().showPage()
        super().save()

    def draw_footer(self, page_count):
        width, _ = self._pagesize
        self.saveState()
        self.setStrokeColor(BORDER_GREY)
        self.setLineWidth(0.5)
        self.line(MARGIN, 12 * mm, width - MARGIN, 12 * mm)
        self.setFont('Helvetica', 7)
        self.setFillColor(LIGHT_GREY)
        self.drawString(MARGIN, 7 * mm, self.footer_text)
        self.drawRightString(width - MARGIN, 7 * mm, f"Page {self._pageNumber} of {page_count}")
        self.restoreState()


def draw_banner(canv, doc, school_name):
    """Red header band drawn on the first page only"""
    width, height = doc.pagesize
    top = height - BANNER_HEIGHT
    centre_y = top + BANNER_HEIGHT / 2

    canv.saveState()
    canv.setFillColor(PRIMARY_RED)
    canv.rect(0, top, width, BANNER_HEIGHT, stroke=0, fill=1)

    # Logo disc with the school initials
    canv.setFillColor(colors.white)
    canv.circle(20 * mm, centre_y, 12 * mm, stroke=0, fill=1)
    canv.setFillColor(PRIMARY_RED)
    canv.setFont('Helvetica-Bold', 10)
    canv.drawCentredString(20 * mm, centre_y - 3.5, school_initials(school_name))

    canv.setFillColor(colors.white)
    canv.setFont('Helvetica-Bold', 26)
    canv.drawCentredString(width / 2, height - 13 * mm, school_name.upper())
    canv.setFont('Helvetica', 10)
    canv.drawCentredString(width / 2, height - 20 * mm, SUBTITLE)
    canv.setFont('Helvetica-Bold', 14)
    canv.drawCentredString(width / 2, height - 29 * mm, REPORT_TITLE)
    canv.restoreState()


def _info_box(title, pairs, width):
    data = [[title, '']] + [[label, value] for label, value in pairs]
    box = Table(data, colWidths=[34 * mm, width - 34 * mm])
    box.setStyle(TableStyle([
        ('SPAN', (0, 0), (1, 0)),
        ('BOX', (0, 0), (-1, -1), 0.8, BORDER_GREY),
        ('FONTNAME', (0, 0), (-1, 0), 'Helvetica-Bold'),
        ('FONTSIZE', (0, 0), (-1, 0), 11),
        ('TEXTCOLOR', (0, 0), (-1, 0), PRIMARY_RED),
        ('FONTNAME', (0, 1), (0, -1), 'Helvetica'),
        ('FONTNAME', (1, 1), (1, -1), 'Helvetica-Bold'),
        ('FONTSIZE', (0, 1), (-1, -1), 9),
        ('TEXTCOLOR', (0, 1), (-1, -1), DARK_GREY),
        ('LEFTPADDING', (0, 0), (-1, -1), 4 * mm),
        ('BOTTOMPADDING', (0, 0), (-1, 0), 3 * mm),
    ]))
    return box


def build_info_section(route, learner_count, driver=None, minder=None):
    """Route information and personnel boxes side by side"""
    half = (CONTENT_WIDTH - BOX_GAP) / 2
    driver = driver or {}
    minder = minder or {}
    term_year = ', '.join(str(v) for v in (route.get('term'), route.get('year')) if v) or PLACEHOLDER

    route_box = _info_box('ROUTE INFORMATION', [
        ('Route Name:', _or_placeholder(route.get('name'))),
        ('Vehicle Reg:', _or_placeholder(route.get('vehicle_no'))),
        ('Term/Year:', term_year),
        ('Total Learners:', str(learner_count)),
    ], half)
    personnel_box = _info_box('PERSONNEL', [
        ('Driver:', _or_placeholder(driver.get('name'))),
        ('Phone:', _or_placeholder(driver.get('phone'))),
        ('Minder:', _or_placeholder(minder.get('name'))),
        ('Phone:', _or_placeholder(minder.get('phone'))),
    ], half)

    section = Table([[route_box, '', personnel_box]], colWidths=[half, BOX_GAP, half])
    section.setStyle(TableStyle([
        ('VALIGN', (0, 0), (-1, -1), 'TOP'),
        ('LEFTPADDING', (0, 0), (-1, -1), 0),
        ('RIGHTPADDING', (0, 0), (-1, -1), 0),
    ]))
    return section


def areas_covered_text(areas, learners):
    """Explicit areas when given, otherwise the learners' own pickup areas"""
    names = [a for a in (areas or []) if a] or distinct_pickup_areas(learners)
    return AREA_SEPARATOR.join(names) or NO_AREAS_TEXT


def build_areas_strip(areas, learners):
    strip = Table([['AREAS COVERED'], [areas_covered_text(areas, learners)]], colWidths=[CONTENT_WIDTH])
    strip.setStyle(TableStyle([
        ('BACKGROUND', (0, 0), (-1, -1), STRIP_BACKGROUND),
        ('BOX', (0, 0), (-1, -1), 0.8, BORDER_GREY),
        ('FONTNAME', (0, 0), (-1, -1), 'Helvetica-Bold'),
        ('FONTSIZE', (0, 0), (-1, 0), 10),
        ('TEXTCOLOR', (0, 0), (-1, 0), PRIMARY_RED),
        ('FONTSIZE', (0, 1), (-1, 1), 9),
        ('TEXTCOLOR', (0, 1), (-1, 1), DARK_GREY),
        ('LEFTPADDING', (0, 0), (-1, -1), 4 * mm),
    ]))
    return strip


def column_widths(report_table, available=CONTENT_WIDTH):
    """Index column fixed; the rest shared by the length of their longest value"""
    weights = []
    for position in range(1, len(report_table.headers)):
        values = [report_table.headers[position]] + [row[position] for row in report_table.rows]
        longest = max(len(str(v)) for v in values)
        weights.append(min(max(longest, 4), 40))
    remaining = available - INDEX_COLUMN_WIDTH
    total = sum(weights)
    return [INDEX_COLUMN_WIDTH] + [remaining * w / total for w in weights]


def _wrapped(value):
    if isinstance(value, str):
        return Paragraph(escape(value), CELL_STYLE)
    return value


def cell_text(cell):
    """Plain value of a learners table cell, unwrapping paragraphs"""
    if isinstance(cell, Paragraph):
        return cell.getPlainText()
    return cell


def build_learners_table(report_table):
    data = [list(report_table.headers)] + [[_wrapped(v) for v in row] for row in report_table.rows]
    table = Table(data, colWidths=column_widths(report_table), repeatRows=1)
    table.setStyle(TableStyle([
        ('FONTNAME', (0, 0), (-1, -1), 'Helvetica'),
        ('FONTSIZE', (0, 0), (-1, -1), 8),
        ('TEXTCOLOR', (0, 1), (-1, -1), DARK_GREY),
        ('GRID', (0, 0), (-1, -1), 0.5, GRID_GREY),
        ('BOX', (0, 0), (-1, -1), 0.8, BORDER_GREY),
        ('BACKGROUND', (0, 0), (-1, 0), TABLE_HEADER_RED),
        ('TEXTCOLOR', (0, 0), (-1, 0), colors.white),
        ('FONTNAME', (0, 0), (-1, 0), 'Helvetica-Bold'),
        ('ALIGN', (0, 0), (-1, 0), 'CENTER'),
        ('ALIGN', (0, 1), (0, -1), 'CENTER'),
        ('ROWBACKGROUNDS', (0, 1), (-1, -1), [colors.white, ALT_ROW]),
        ('VALIGN', (0, 0), (-1, -1), 'MIDDLE'),
        ('TOPPADDING', (0, 0), (-1, -1), 2 * mm),
        ('BOTTOMPADDING', (0, 0), (-1, -1), 2 * mm),
    ]))
    return table


def build_story(route, learners, config, driver=None, minder=None, areas=None):
    """Flowables of the report body, in page order"""
    styles = getSampleStyleSheet()
    heading = ParagraphStyle(
        'SectionHeading',
        parent=styles['Normal'],
        fontName='Helvetica-Bold',
        fontSize=11,
        textColor=PRIMARY_RED,
        spaceAfter=2 * mm,
    )
    report_table = build_report_table(learners, config)
    return [
        Spacer(1, BANNER_HEIGHT),
        build_info_section(route, len(learners), driver, minder),
        Spacer(1, 6 * mm),
        build_areas_strip(areas, learners),
        Spacer(1, 6 * mm),
        Paragraph('LEARNERS LIST', heading),
        build_learners_table(report_table),
    ]


def render_pdf(route, learners, config, settings=None, driver=None, minder=None,
               areas=None, generated_at=None, default_school_name=DEFAULT_SCHOOL_NAME,
               canvasmaker=NumberedCanvas):
    """Render the route report and return the PDF bytes"""
    generated_at = generated_at or datetime.now()
    school_name = school_name_from(settings, default_school_name)
    footer_text = (
        f"Generated by {school_name} Transport Management System"
        f"{AREA_SEPARATOR}{generated_at.strftime('%d %b %Y')}"
    )

    buffer = BytesIO()
    doc = SimpleDocTemplate(
        buffer,
        pagesize=PAGE_SIZE,
        leftMargin=MARGIN,
        rightMargin=MARGIN,
        topMargin=MARGIN,
        bottomMargin=BOTTOM_MARGIN,
        title=f"{route.get('name') or ''} Route Report",
        author=school_name,
    )
    story = build_story(route, learners, config, driver=driver, minder=minder, areas=areas)
    doc.build(
        story,
        onFirstPage=partial(_first_page, school_name=school_name),
        canvasmaker=partial(canvasmaker, footer_text=footer_text),
    )
    logger.info(f"Rendered PDF report for route {route.get('name')} with {len(learners)} learners")
    return buffer.getvalue()


def _first_page(canv, doc, school_name):
    draw_banner(canv, doc, school_name)
