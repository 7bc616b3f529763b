from __future__ import annotations

import math
import re
from dataclasses import dataclass
from typing import Any, Callable

from reportlab.lib import colors
from reportlab.lib.pagesizes import A4, LETTER
from reportlab.pdfbase import pdfmetrics


DEFAULT_PAGE_SIZE = 'LETTER'
DEFAULT_MARGIN = 40.0
DEFAULT_PRIMARY_COLOR = '#0f172a'

PAGE_SIZES: dict[str, tuple[float, float]] = {
    'LETTER': LETTER,
    'A4': A4,
}

MoneyFormatter = Callable[[float], str]
WidthFunction = Callable[[str], float]


def _parse_hex_color(value: object) -> colors.Color | None:
    token = str(value or '').strip()
    if not re.fullmatch(r'#?[0-9a-fA-F]{6}', token):
        return None
    if token.startswith('#'):
        token = token[1:]
    r = int(token[0:2], 16) / 255.0
    g = int(token[2:4], 16) / 255.0
    b = int(token[4:6], 16) / 255.0
    return colors.Color(r, g, b)


def normalize_page_size(value: object) -> str:
    token = str(value or '').strip().upper()
    if token in PAGE_SIZES:
        return token
    return DEFAULT_PAGE_SIZE


def _normalize_margin(value: object) -> float:
    try:
        margin = float(value)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        return DEFAULT_MARGIN
    if not math.isfinite(margin) or margin <= 0:
        return DEFAULT_MARGIN
    return margin


@dataclass(frozen=True)
class LayoutSpec:
    """Page geometry and font sizes for the monthly report.

    Malformed overrides fall back to defaults instead of failing the render.
    """

    page_size: str = DEFAULT_PAGE_SIZE
    margin: float = DEFAULT_MARGIN
    primary_color: str = DEFAULT_PRIMARY_COLOR

    heading_sizes: tuple[float, float, float] = (18, 14, 12)
    body_size: float = 11
    table_size: float = 10
    caption_size: float = 10
    image_max_height: float = 240

    date_column_width: float = 70
    amount_column_width: float = 90
    column_gutter: float = 10

    @classmethod
    def create(
        cls,
        *,
        page_size: object = None,
        margin: object = None,
        primary_color: object = None,
    ) -> LayoutSpec:
        color_token = str(primary_color or '').strip()
        return cls(
            page_size=normalize_page_size(page_size),
            margin=_normalize_margin(margin) if margin is not None else DEFAULT_MARGIN,
            primary_color=color_token if _parse_hex_color(color_token) is not None else DEFAULT_PRIMARY_COLOR,
        )

    @classmethod
    def from_template_spec(cls, spec: Any, *, defaults: LayoutSpec | None = None) -> LayoutSpec:
        base = defaults or cls()
        if not isinstance(spec, dict):
            return base
        layout = spec.get('layout') if isinstance(spec.get('layout'), dict) else {}
        branding = spec.get('branding') if isinstance(spec.get('branding'), dict) else {}
        return cls.create(
            page_size=layout.get('pageSize') or layout.get('page_size') or base.page_size,
            margin=layout.get('margin') or base.margin,
            primary_color=branding.get('primaryColor') or branding.get('primary_color') or base.primary_color,
        )

    @property
    def page_dimensions(self) -> tuple[float, float]:
        return PAGE_SIZES[normalize_page_size(self.page_size)]

    @property
    def primary(self) -> colors.Color:
        return _parse_hex_color(self.primary_color) or _parse_hex_color(DEFAULT_PRIMARY_COLOR)

    def heading_size(self, level: int) -> float:
        if level <= 1:
            return self.heading_sizes[0]
        if level == 2:
            return self.heading_sizes[1]
        return self.heading_sizes[2]


def font_width_function(font_name: str, font_size: float) -> WidthFunction:
    def measure(text: str) -> float:
        return float(pdfmetrics.stringWidth(text, font_name, font_size))

    return measure


def wrap_text(text: str, width_of: WidthFunction, max_width: float) -> list[str]:
    """Greedy word wrap. Always returns at least one (possibly empty) line.

    A single word wider than ``max_width`` is kept whole on its own line.
    """
    words = [w for w in str(text or '').split() if w]
    lines: list[str] = []
    current = ''
    for word in words:
        candidate = f'{current} {word}' if current else word
        if width_of(candidate) <= max_width:
            current = candidate
            continue
        if current:
            lines.append(current)
        current = word
    if current:
        lines.append(current)
    return lines or ['']


def fit_rect(src_width: float, src_height: float, max_width: float, max_height: float) -> tuple[float, float]:
    if src_width <= 0 or src_height <= 0:
        return (max_width, max_height)
    scale = min(max_width / src_width, max_height / src_height, 1.0)
    return (src_width * scale, src_height * scale)


def default_money(amount: float) -> str:
    return f'{amount:,.2f}'


def format_money(amount: Any, formatter: MoneyFormatter | None = None) -> str:
    try:
        value = float(amount)
    except (TypeError, ValueError):
        value = 0.0
    if not math.isfinite(value):
        value = 0.0
    if formatter is not None:
        return formatter(value)
    return default_money(value)
