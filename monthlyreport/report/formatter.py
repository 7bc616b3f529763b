from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Literal, Union


DEFAULT_TITLE = 'Report'
EMPTY_PLACEHOLDER = 'No content.'

_TAG_PATTERN = re.compile(r'<[^>]*>')
_SPACE_PATTERN = re.compile(r'\s+')
_LINE_SPLIT_PATTERN = re.compile(r'\r\n|\r|\n')
_HEADING_PATTERN = re.compile(r'^(#{1,3})(?:\s+|$)')
_BULLET_PATTERN = re.compile(r'^(-|\*|•)\s+')


@dataclass(frozen=True)
class Heading:
    text: str
    level: Literal[1, 2, 3]
    type: str = field(default='heading', init=False)


@dataclass(frozen=True)
class Paragraph:
    text: str
    type: str = field(default='paragraph', init=False)


@dataclass(frozen=True)
class BulletGroup:
    items: tuple[str, ...]
    type: str = field(default='bullets', init=False)


FormattedReportBlock = Union[Heading, Paragraph, BulletGroup]


@dataclass
class FormattedReport:
    title: str
    blocks: list[FormattedReportBlock]


def strip_tags(value: str) -> str:
    return _TAG_PATTERN.sub('', value)


def normalize_spaces(value: str) -> str:
    return _SPACE_PATTERN.sub(' ', value).strip()


def _heading_level(marker: str) -> Literal[1, 2, 3]:
    if len(marker) == 1:
        return 1
    if len(marker) == 2:
        return 2
    return 3


def parse_report_text(raw: str | None, *, title: str | None = None) -> FormattedReport:
    """Turn narrative text into headings, paragraphs and bullet groups.

    One non-empty line is one paragraph; consecutive bullet lines collapse into
    a single group. Never raises.
    """
    # tags may span lines, so they are removed before splitting
    source = strip_tags(str(raw or ''))
    whole = normalize_spaces(source)

    lines: list[str] = []
    for raw_line in _LINE_SPLIT_PATTERN.split(source):
        line = normalize_spaces(raw_line)
        if line:
            lines.append(line)

    blocks: list[FormattedReportBlock] = []
    pending_bullets: list[str] = []

    def flush_bullets() -> None:
        if not pending_bullets:
            return
        blocks.append(BulletGroup(items=tuple(pending_bullets)))
        pending_bullets.clear()

    for line in lines:
        heading_match = _HEADING_PATTERN.match(line)
        if heading_match:
            flush_bullets()
            text = normalize_spaces(line[heading_match.end():])
            if text:
                blocks.append(Heading(text=text, level=_heading_level(heading_match.group(1))))
            continue

        bullet_match = _BULLET_PATTERN.match(line)
        if bullet_match:
            pending_bullets.append(normalize_spaces(line[bullet_match.end():]))
            continue

        flush_bullets()
        blocks.append(Paragraph(text=line))

    flush_bullets()

    resolved_title = normalize_spaces(title or '')
    if not resolved_title:
        first_h1 = next((b for b in blocks if isinstance(b, Heading) and b.level == 1), None)
        resolved_title = first_h1.text if first_h1 is not None else DEFAULT_TITLE

    if not whole:
        return FormattedReport(title=resolved_title, blocks=[Paragraph(text=EMPTY_PLACEHOLDER)])
    if not blocks:
        return FormattedReport(title=resolved_title, blocks=[Paragraph(text=whole)])
    return FormattedReport(title=resolved_title, blocks=blocks)
