from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Iterable
from uuid import uuid4

import httpx

from .adapters.llm import NarrativeClient, NarrativeConfig
from .archival import ArchivalCoordinator, build_coordinator
from .config import get_settings
from .errors import PayloadValidationError, ReportAccessError, ReportError
from .payload import build_payload, validate_payload
from .prompts import build_report_prompt, fallback_narrative
from .report.formatter import FormattedReport, parse_report_text
from .report.images import ReportImage
from .report.layout import LayoutSpec, MoneyFormatter
from .report.pdf_render import bytes_to_base64, render_report_pdf
from .report.templates import PdfTemplate, TemplateContext, load_pdf_templates, select_pdf_template
from .storage import ReportEventLogger
from .types import LedgerEvents, LedgerRecord, ReportPayload, RequestContext, SendResult


logger = logging.getLogger(__name__)


@dataclass
class GeneratedReport:
    payload: ReportPayload
    narrative: str
    formatted: FormattedReport
    pdf_bytes: bytes
    ledger: LedgerRecord
    template_id: str | None = None

    @property
    def pdf_base64(self) -> str:
        return bytes_to_base64(self.pdf_bytes)


def require_report_role(ctx: RequestContext) -> None:
    role = str(ctx.role or '').strip().lower()
    if role not in get_settings().allowed_report_roles():
        raise ReportAccessError(role)


def build_narrative_client(*, fallback: Callable[[str], str] | None = None) -> NarrativeClient:
    settings = get_settings()
    return NarrativeClient(
        NarrativeConfig(
            base_url=settings.narrative_base_url,
            api_key=settings.narrative_api_key,
            model=settings.narrative_model,
            temperature=settings.narrative_temperature,
            timeout_seconds=settings.narrative_timeout_seconds,
            max_attempts=settings.narrative_max_attempts,
        ),
        fallback=fallback,
    )


def _default_layout() -> LayoutSpec:
    settings = get_settings()
    return LayoutSpec.create(
        page_size=settings.pdf_page_size,
        margin=settings.pdf_page_margin,
        primary_color=settings.pdf_primary_color,
    )


async def generate_report(
    ctx: RequestContext,
    *,
    subject_id: str,
    period: str,
    incident_text: str,
    images: Iterable[Any] | None = None,
    costs: Iterable[Any] | None = None,
    subject_title: str = 'Property',
    subject_location: str | None = None,
    narrative_client: NarrativeClient | None = None,
    coordinator: ArchivalCoordinator | None = None,
    templates: list[PdfTemplate] | None = None,
    format_money_fn: MoneyFormatter | None = None,
    http_client: httpx.AsyncClient | None = None,
    events_root: Path | None = None,
) -> GeneratedReport:
    """Build, narrate, render and record one monthly report.

    Validation failures raise before any I/O. The ledger write is the last
    step, so a failed render leaves the previous ledger record untouched.
    """
    require_report_role(ctx)
    settings = get_settings()

    payload = build_payload(
        subject_id=subject_id,
        period=period,
        incident_text=incident_text,
        images=images,
        costs=costs,
    )
    validation = validate_payload(payload)
    if not validation.ok:
        raise PayloadValidationError(validation.errors)

    events = ReportEventLogger(payload.subject_id, payload.period, root=events_root)
    events.info(
        'start',
        'Report generation started',
        costs_count=len(payload.costs),
        images_count=len(payload.images),
    )

    try:
        client = narrative_client or build_narrative_client(fallback=lambda _prompt: fallback_narrative(payload))
        prompt = build_report_prompt(payload, subject_title=subject_title)
        narrative = await client.generate(prompt)
        events.info('narrative', 'Narrative generated', chars=len(narrative))

        formatted = parse_report_text(narrative, title=f'Monthly report {payload.period}')

        if templates is None:
            templates = load_pdf_templates(settings.templates_file())
        selected = select_pdf_template(
            templates,
            TemplateContext(
                report_key=settings.report_key,
                subject_id=payload.subject_id,
                total_cost=payload.totals.total_cost,
                events_count=len(payload.costs),
                has_images=bool(payload.images),
                location=subject_location,
            ),
        )
        layout = _default_layout()
        if selected is not None:
            layout = LayoutSpec.from_template_spec(selected.template_spec, defaults=layout)
        events.info(
            'templates',
            'Template resolved',
            templates_count=len(templates),
            selected_template_id=selected.id if selected else None,
        )

        report_images = [
            ReportImage(url=item.url, caption=item.caption)
            for item in payload.images[: max(0, settings.report_max_images)]
        ]
        pdf_bytes = await render_report_pdf(
            subject_title=subject_title,
            subject_location=subject_location,
            period=payload.period,
            blocks=formatted.blocks,
            costs=payload.costs,
            total_cost=payload.totals.total_cost,
            images=report_images,
            layout=layout,
            format_money_fn=format_money_fn,
            client=http_client,
            fetch_concurrency=settings.image_fetch_concurrency,
            fetch_timeout_seconds=settings.image_fetch_timeout_seconds,
            image_max_bytes=settings.image_max_bytes,
        )
        events.info('pdf', 'PDF rendered', bytes=len(pdf_bytes))

        archival = coordinator or build_coordinator()
        ledger = archival.save_ledger(
            subject_id=payload.subject_id,
            period=payload.period,
            events=LedgerEvents(
                incident_text=payload.incident_text,
                generated_narrative=narrative,
                costs=payload.costs,
                images=payload.images,
            ),
            totals=payload.totals,
            artifact_bytes=pdf_bytes,
            created_by=ctx.user_id,
        )
        events.info('ledger', 'Monthly ledger saved')
    except ReportError as exc:
        events.error('error', 'Report generation failed', detail=str(exc), error_type=type(exc).__name__)
        raise

    logger.info('Generated report for %s/%s (%s bytes)', payload.subject_id, payload.period, len(pdf_bytes))
    return GeneratedReport(
        payload=payload,
        narrative=narrative,
        formatted=formatted,
        pdf_bytes=pdf_bytes,
        ledger=ledger,
        template_id=selected.id if selected else None,
    )


async def send_report(
    ctx: RequestContext,
    *,
    subject_id: str,
    period: str,
    artifact_bytes: bytes | None = None,
    run_id: str | None = None,
    coordinator: ArchivalCoordinator | None = None,
    events_root: Path | None = None,
) -> SendResult:
    """Version and archive a rendered report.

    Without ``artifact_bytes`` the artifact stored in the ledger is sent.
    Pass the same ``run_id`` when retrying the same logical send.
    """
    require_report_role(ctx)
    archival = coordinator or build_coordinator()
    events = ReportEventLogger(subject_id, period, root=events_root)
    token = str(run_id or '').strip() or str(uuid4())
    events.info('start', 'Send/archive started', run_id=token)

    try:
        data = artifact_bytes
        if data is None:
            record = archival.load_ledger(subject_id, period)
            if record is None:
                raise PayloadValidationError([f'No generated report for {subject_id} {period}'])
            data = record.artifact_bytes
        if data[:4] != b'%PDF':
            raise PayloadValidationError(['Artifact is not a PDF document'])

        result = await archival.send_and_archive(
            subject_id=subject_id,
            period=period,
            artifact_bytes=data,
            run_id=token,
            uploaded_by=ctx.user_id,
        )
    except ReportError as exc:
        events.error('error', 'Send/archive failed', detail=str(exc), run_id=token, error_type=type(exc).__name__)
        raise

    events.info(
        'archive',
        'Report versioned and archived',
        document_id=result.document_id,
        version=result.version_number,
        run_id=token,
    )
    return result
