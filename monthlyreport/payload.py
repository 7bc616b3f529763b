from __future__ import annotations

import math
import re
from dataclasses import dataclass, field
from typing import Any, Iterable, Mapping

from .types import CostRow, ImageItem, ReportPayload, ReportTotals


_PERIOD_PATTERN = re.compile(r'^\d{4}-\d{2}$')


@dataclass
class PayloadValidation:
    ok: bool
    errors: list[str] = field(default_factory=list)


def normalize_period(value: Any) -> str | None:
    token = str(value if value is not None else '').strip()
    if not _PERIOD_PATTERN.fullmatch(token):
        return None
    return token


def parse_amount(value: Any) -> float:
    """Parse a UI amount. Unparseable values become NaN, never raise."""
    if value is None or isinstance(value, bool):
        return math.nan
    if isinstance(value, (int, float)):
        return float(value)
    token = str(value).replace(',', '').strip()
    if not token:
        return math.nan
    try:
        return float(token)
    except ValueError:
        return math.nan


def _parse_order(value: Any) -> float:
    if value is None or value == '':
        return 0.0
    if isinstance(value, bool):
        return math.nan
    try:
        return float(value)
    except (TypeError, ValueError):
        return math.nan


def is_http_url(value: str) -> bool:
    return value.startswith('http://') or value.startswith('https://')


def _field(row: Any, key: str) -> Any:
    if isinstance(row, Mapping):
        return row.get(key)
    return getattr(row, key, None)


def _text(row: Any, key: str) -> str:
    value = _field(row, key)
    return str(value).strip() if value is not None else ''


def _is_valid_cost(date: str, concept: str, amount: float) -> bool:
    return bool(date) and bool(concept) and math.isfinite(amount) and amount > 0


def normalize_costs(rows: Iterable[Any] | None) -> list[CostRow]:
    kept: list[CostRow] = []
    for row in rows or []:
        date = _text(row, 'date')
        concept = _text(row, 'concept')
        amount = parse_amount(_field(row, 'amount'))
        if not _is_valid_cost(date, concept, amount):
            continue
        kept.append(CostRow(date=date, concept=concept, amount=amount))
    kept.sort(key=lambda c: c.date)
    return kept


def normalize_images(rows: Iterable[Any] | None) -> list[ImageItem]:
    kept: list[ImageItem] = []
    for row in rows or []:
        url = _text(row, 'url')
        order = _parse_order(_field(row, 'order'))
        if not url or not is_http_url(url) or not math.isfinite(order):
            continue
        kept.append(
            ImageItem(
                url=url,
                caption=_text(row, 'caption'),
                order=order,
                name=_text(row, 'name') or None,
            )
        )
    kept.sort(key=lambda i: i.order)
    return kept


def build_payload(
    *,
    subject_id: Any,
    period: Any,
    incident_text: Any,
    images: Iterable[Any] | None = None,
    costs: Iterable[Any] | None = None,
) -> ReportPayload:
    kept_costs = normalize_costs(costs)
    return ReportPayload(
        subject_id=str(subject_id or '').strip(),
        period=str(period if period is not None else '').strip(),
        incident_text=str(incident_text or '').strip(),
        costs=kept_costs,
        images=normalize_images(images),
        totals=ReportTotals(total_cost=sum(c.amount for c in kept_costs)),
    )


def validate_payload(payload: ReportPayload) -> PayloadValidation:
    errors: list[str] = []
    if not payload.subject_id.strip():
        errors.append('Missing subject_id')
    if normalize_period(payload.period) is None:
        errors.append('Invalid period')
    if not payload.incident_text.strip():
        errors.append('Missing incident_text')
    for cost in payload.costs:
        if not _is_valid_cost(cost.date.strip(), cost.concept.strip(), cost.amount):
            errors.append('Invalid cost row')
    for image in payload.images:
        url = image.url.strip()
        if not url or not is_http_url(url):
            errors.append('Invalid image url')
    return PayloadValidation(ok=not errors, errors=errors)


def find_incomplete_cost_rows(rows: Iterable[Any] | None) -> list[int]:
    """Indices of form rows with some, but not all, fields validly filled.

    Entirely blank rows are ignored; a row counts as started once it has a
    date, a concept or a parseable amount.
    """
    incomplete: list[int] = []
    for index, row in enumerate(rows or []):
        date = _text(row, 'date')
        concept = _text(row, 'concept')
        amount = parse_amount(_field(row, 'amount'))
        started = bool(date) or bool(concept) or math.isfinite(amount)
        if started and not _is_valid_cost(date, concept, amount):
            incomplete.append(index)
    return incomplete


def can_submit(incident_text: Any, cost_rows: Iterable[Any] | None) -> bool:
    if not str(incident_text or '').strip():
        return False
    return not find_incomplete_cost_rows(cost_rows)
