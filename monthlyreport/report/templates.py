from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field, ValidationError

from monthlyreport.storage import read_json


logger = logging.getLogger(__name__)


class PdfTemplate(BaseModel):
    id: str
    name: str = ''
    report_key: str
    enabled: bool = True
    priority: float = 0
    template_spec: dict[str, Any] = Field(default_factory=dict)
    match_rules: dict[str, Any] = Field(default_factory=dict)
    updated_at: datetime | None = None


@dataclass
class TemplateContext:
    report_key: str
    subject_id: str | None = None
    total_cost: float | None = None
    events_count: int | None = None
    has_images: bool | None = None
    location: str | None = None


def _as_number(value: Any) -> float | None:
    if value is None or isinstance(value, bool):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    return number if math.isfinite(number) else None


def _as_bool(value: Any) -> bool | None:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        if value.lower() == 'true':
            return True
        if value.lower() == 'false':
            return False
    return None


def _outside(value: float | None, low: float | None, high: float | None) -> bool:
    if low is not None and (value is None or value < low):
        return True
    if high is not None and (value is None or value > high):
        return True
    return False


def matches_rules(rules: dict[str, Any] | None, ctx: TemplateContext) -> bool:
    r = rules if isinstance(rules, dict) else {}

    subject_id = str(ctx.subject_id or '').strip()
    required_subject = r.get('subject_id') or r.get('property_id')
    if required_subject and str(required_subject) != subject_id:
        return False

    total = _as_number(ctx.total_cost)
    if _outside(total, _as_number(r.get('min_total_cost')), _as_number(r.get('max_total_cost'))):
        return False

    events = _as_number(ctx.events_count)
    if _outside(events, _as_number(r.get('min_events')), _as_number(r.get('max_events'))):
        return False

    need_images = _as_bool(r.get('has_images'))
    has_images = _as_bool(ctx.has_images)
    if need_images is not None and (has_images is None or has_images != need_images):
        return False

    contains = str(r.get('location_contains') or '').strip().lower()
    location = str(ctx.location or '').strip().lower()
    if contains and (not location or contains not in location):
        return False

    return True


def select_pdf_template(templates: list[PdfTemplate], ctx: TemplateContext) -> PdfTemplate | None:
    """Lowest priority wins; ties go to the most recently updated template."""
    candidates = [
        t for t in templates
        if t.enabled and t.report_key == ctx.report_key and matches_rules(t.match_rules, ctx)
    ]
    if not candidates:
        return None

    def sort_key(template: PdfTemplate) -> tuple[float, float]:
        updated = template.updated_at.timestamp() if template.updated_at else 0.0
        return (template.priority, -updated)

    return sorted(candidates, key=sort_key)[0]


def load_pdf_templates(path: Path) -> list[PdfTemplate]:
    if not path.exists():
        return []
    payload = read_json(path)
    rows = payload.get('templates') if isinstance(payload, dict) else payload
    templates: list[PdfTemplate] = []
    for row in rows or []:
        try:
            templates.append(PdfTemplate.model_validate(row))
        except ValidationError as exc:
            logger.warning('Skipping malformed PDF template in %s: %s', path, exc)
    return templates
