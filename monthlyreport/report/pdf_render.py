from __future__ import annotations

import base64
import io
import logging
from dataclasses import dataclass
from typing import Iterable, Literal, Sequence

import httpx
from reportlab.lib import colors
from reportlab.pdfgen import canvas as pdf_canvas

from monthlyreport.errors import ResourceFetchError
from monthlyreport.types import CostRow

from .formatter import BulletGroup, FormattedReportBlock, Heading, Paragraph
from .images import FetchedImage, ReportImage, decode_image, fetch_images
from .layout import LayoutSpec, MoneyFormatter, fit_rect, font_width_function, format_money, wrap_text


logger = logging.getLogger(__name__)

FONT_REGULAR = 'Helvetica'
FONT_BOLD = 'Helvetica-Bold'

BODY_COLOR = colors.Color(0.15, 0.15, 0.15)
TABLE_HEADER_COLOR = colors.Color(0.2, 0.2, 0.2)
CAPTION_COLOR = colors.Color(0.35, 0.35, 0.35)
ERROR_COLOR = colors.Color(0.6, 0.1, 0.1)

BULLET_PREFIX = '• '
IMAGE_ERROR_PREFIX = 'could not load image: '


@dataclass
class ImagePlacement:
    url: str
    status: Literal['embedded', 'placeholder']
    page: int
    width: float = 0.0
    height: float = 0.0
    error: str | None = None


class ReportPdfBuilder:
    """Draws the monthly report on a reportlab canvas.

    The layout is a single downward-moving cursor. Before each atomic unit
    (a heading, a wrapped paragraph, one bullet item, one table row, one
    image) ``ensure_space`` starts a new page if the unit would cross the
    bottom margin. Every wrapped line is checked again, so a unit taller
    than a page flows onto the following pages.
    """

    def __init__(
        self,
        *,
        layout: LayoutSpec | None = None,
        format_money_fn: MoneyFormatter | None = None,
        document_title: str = 'Monthly Report',
    ):
        self.layout = layout or LayoutSpec()
        self.format_money_fn = format_money_fn
        self.page_width, self.page_height = self.layout.page_dimensions
        self.margin = self.layout.margin
        self.x = self.margin
        self.max_width = self.page_width - self.margin * 2

        self._buffer = io.BytesIO()
        self.canvas = pdf_canvas.Canvas(self._buffer, pagesize=(self.page_width, self.page_height))
        self.canvas.setTitle(document_title)
        self.canvas.setProducer('monthlyreport')

        self.page_count = 1
        self.y = self.page_height - self.margin
        self.placements: list[ImagePlacement] = []
        self.table_header_pages: list[int] = []
        self._in_table = False

    # cursor

    def new_page(self) -> None:
        self.canvas.showPage()
        self.page_count += 1
        self.y = self.page_height - self.margin
        if self._in_table:
            self.draw_table_header()

    def ensure_space(self, needed: float) -> None:
        if self.y - needed >= self.margin:
            return
        self.new_page()

    def _text(self, text: str, *, x: float, size: float, font: str, color: colors.Color) -> None:
        self.canvas.setFont(font, size)
        self.canvas.setFillColor(color)
        self.canvas.drawString(x, self.y - size, text)

    def _wrap(self, text: str, *, size: float, max_width: float, font: str = FONT_REGULAR) -> list[str]:
        return wrap_text(text, font_width_function(font, size), max_width)

    # blocks

    def draw_heading(self, text: str, level: int) -> None:
        size = self.layout.heading_size(level)
        self.ensure_space(size + 10)
        self._text(text, x=self.x, size=size, font=FONT_BOLD, color=self.layout.primary)
        self.y -= size + 10

    def _keep_together(self, needed: float) -> None:
        # units taller than one page are split line by line instead
        if needed <= self.page_height - self.margin * 2:
            self.ensure_space(needed)

    def _draw_lines(self, lines: Sequence[str], *, x: float, size: float) -> None:
        for line in lines:
            self.ensure_space(size + 3)
            self._text(line, x=x, size=size, font=FONT_REGULAR, color=BODY_COLOR)
            self.y -= size + 3

    def draw_paragraph(self, text: str) -> None:
        size = self.layout.body_size
        lines = self._wrap(text, size=size, max_width=self.max_width)
        self._keep_together(len(lines) * (size + 3) + 8)
        self._draw_lines(lines, x=self.x, size=size)
        self.y -= 8

    def draw_bullets(self, items: Sequence[str]) -> None:
        size = self.layout.body_size
        for item in items:
            lines = self._wrap(BULLET_PREFIX + item, size=size, max_width=self.max_width)
            self._keep_together(len(lines) * (size + 3) + 6)
            self._draw_lines(lines, x=self.x, size=size)
            self.y -= 2
        self.y -= 6

    def draw_block(self, block: FormattedReportBlock) -> None:
        if isinstance(block, Heading):
            self.draw_heading(block.text, block.level)
        elif isinstance(block, Paragraph):
            self.draw_paragraph(block.text)
        elif isinstance(block, BulletGroup):
            self.draw_bullets(block.items)

    # cost table

    @property
    def _concept_width(self) -> float:
        lay = self.layout
        return self.max_width - lay.date_column_width - lay.amount_column_width - lay.column_gutter

    @property
    def _concept_x(self) -> float:
        return self.x + self.layout.date_column_width + self.layout.column_gutter

    @property
    def _amount_x(self) -> float:
        return self._concept_x + self._concept_width + self.layout.column_gutter

    def draw_table_header(self) -> None:
        size = self.layout.table_size
        self._text('Date', x=self.x, size=size, font=FONT_BOLD, color=TABLE_HEADER_COLOR)
        self._text('Concept', x=self._concept_x, size=size, font=FONT_BOLD, color=TABLE_HEADER_COLOR)
        self._text('Amount', x=self._amount_x, size=size, font=FONT_BOLD, color=TABLE_HEADER_COLOR)
        self.y -= size + 8
        self.table_header_pages.append(self.page_count)

    def draw_cost_table(self, rows: Sequence[CostRow]) -> None:
        size = self.layout.table_size
        self.ensure_space(24)
        self.draw_table_header()
        self._in_table = True
        try:
            for row in rows:
                concept_lines = self._wrap(str(row.concept or ''), size=size, max_width=self._concept_width)
                amount = format_money(row.amount, self.format_money_fn)
                self._keep_together(len(concept_lines) * (size + 3) + 10)

                # date and amount share the first concept line; later lines may continue on the next page
                self.ensure_space(size + 3)
                self._text(str(row.date or ''), x=self.x, size=size, font=FONT_REGULAR, color=BODY_COLOR)
                self._text(amount, x=self._amount_x, size=size, font=FONT_REGULAR, color=BODY_COLOR)
                self._draw_lines(concept_lines, x=self._concept_x, size=size)
                self.y -= 6
        finally:
            self._in_table = False

    # images

    def draw_image_placeholder(self, url: str, error: str | None) -> None:
        size = self.layout.caption_size
        self.ensure_space(24)
        self._text(f'{IMAGE_ERROR_PREFIX}{url}', x=self.x, size=size, font=FONT_REGULAR, color=ERROR_COLOR)
        self.y -= 18
        self.placements.append(ImagePlacement(url=url, status='placeholder', page=self.page_count, error=error))

    def draw_image(self, image: FetchedImage) -> None:
        if not image.ok:
            self.draw_image_placeholder(image.url, image.error)
            return
        try:
            decoded = decode_image(image.data or b'', url=image.url)
        except ResourceFetchError as exc:
            logger.warning('Image decode failed for %s: %s', image.url, exc.reason)
            self.draw_image_placeholder(image.url, exc.reason)
            return

        width, height = fit_rect(decoded.width, decoded.height, self.max_width, self.layout.image_max_height)
        self.ensure_space(height + 34)
        try:
            self.canvas.drawImage(decoded.reader, self.x, self.y - height, width=width, height=height, mask='auto')
        except Exception as exc:
            logger.warning('Image embed failed for %s: %s', image.url, exc)
            self.draw_image_placeholder(image.url, f'{type(exc).__name__}: {exc}')
            return
        self.placements.append(
            ImagePlacement(url=image.url, status='embedded', page=self.page_count, width=width, height=height)
        )
        self.y -= height + 6

        caption = str(image.caption or '').strip()
        if not caption:
            self.y -= 10
            return
        size = self.layout.caption_size
        for line in self._wrap(caption, size=size, max_width=self.max_width):
            self.ensure_space(16)
            self._text(line, x=self.x, size=size, font=FONT_REGULAR, color=CAPTION_COLOR)
            self.y -= 13
        self.y -= 6

    def finish(self) -> bytes:
        self.canvas.save()
        return self._buffer.getvalue()


def build_report_pdf(
    *,
    subject_title: str,
    period: str,
    blocks: Iterable[FormattedReportBlock],
    costs: Sequence[CostRow],
    total_cost: float,
    images: Sequence[FetchedImage],
    subject_location: str | None = None,
    layout: LayoutSpec | None = None,
    format_money_fn: MoneyFormatter | None = None,
    builder: ReportPdfBuilder | None = None,
) -> bytes:
    """Lay out an already-fetched report and return the PDF bytes."""
    pdf = builder or ReportPdfBuilder(
        layout=layout,
        format_money_fn=format_money_fn,
        document_title=f'Monthly Report {period}',
    )

    pdf.draw_heading(f'Monthly report {period}', 1)
    location = str(subject_location or '').strip()
    pdf.draw_paragraph(f'{subject_title} · {location}' if location else subject_title)

    for block in blocks:
        pdf.draw_block(block)

    pdf.draw_heading('Costs', 2)
    pdf.draw_paragraph(f'Period total: {format_money(total_cost, pdf.format_money_fn)}')
    if costs:
        pdf.draw_cost_table(costs)
    else:
        pdf.draw_paragraph('No costs recorded.')

    if images:
        pdf.draw_heading('Images', 2)
        for image in images:
            pdf.draw_image(image)

    return pdf.finish()


async def render_report_pdf(
    *,
    subject_title: str,
    period: str,
    blocks: Iterable[FormattedReportBlock],
    costs: Sequence[CostRow],
    total_cost: float,
    images: Sequence[ReportImage],
    subject_location: str | None = None,
    layout: LayoutSpec | None = None,
    format_money_fn: MoneyFormatter | None = None,
    client: httpx.AsyncClient | None = None,
    fetch_concurrency: int = 4,
    fetch_timeout_seconds: float = 20.0,
    image_max_bytes: int = 4 * 1024 * 1024,
    builder: ReportPdfBuilder | None = None,
) -> bytes:
    fetched = await fetch_images(
        images,
        client=client,
        concurrency=fetch_concurrency,
        timeout_seconds=fetch_timeout_seconds,
        max_bytes=image_max_bytes,
    )
    return build_report_pdf(
        subject_title=subject_title,
        period=period,
        blocks=blocks,
        costs=costs,
        total_cost=total_cost,
        images=fetched,
        subject_location=subject_location,
        layout=layout,
        format_money_fn=format_money_fn,
        builder=builder,
    )


def bytes_to_base64(data: bytes) -> str:
    return base64.b64encode(data).decode('ascii')
