from __future__ import annotations

from .types import ReportPayload


REQUIRED_SECTIONS = (
    'Executive summary',
    'Events of the period',
    'Detailed costs',
    'Recommendations',
)


def build_report_prompt(payload: ReportPayload, *, subject_title: str) -> str:
    costs_text = '\n'.join(f'- {c.date}: {c.concept} ({c.amount:g})' for c in payload.costs)
    images_text = '\n'.join(
        f"- {f'{i.caption} · ' if i.caption else ''}{i.url}" for i in payload.images
    )

    lines = [
        'Write a professional monthly report for a property management client.',
        'Do not use emojis. Use # for headings and - for bullet lists.',
        f'Property: {subject_title or "Property"}',
        f'Period (YYYY-MM): {payload.period}',
        '',
        'Incident / event context (entered by the administrator):',
        payload.incident_text,
        '',
        'Recorded costs (date: concept (amount)):',
        costs_text or '- (no costs)',
        '',
        'Relevant images (caption/url):',
        images_text or '- (no images)',
        '',
        'Required structure:',
        *(f'# {section}' for section in REQUIRED_SECTIONS),
    ]
    return '\n'.join(lines)


def fallback_narrative(payload: ReportPayload) -> str:
    return '\n'.join(
        [
            '# Executive summary',
            '- Report generated without a narrative provider (no API key configured).',
            '',
            '# Events of the period',
            payload.incident_text,
        ]
    )
