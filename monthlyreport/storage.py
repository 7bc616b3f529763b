from __future__ import annotations

import hashlib
import json
import logging
import re
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from .config import get_settings


logger = logging.getLogger(__name__)

_SAFE_TOKEN_PATTERN = re.compile(r'^[A-Za-z0-9][A-Za-z0-9_.-]{0,127}$')


def data_root() -> Path:
    root = get_settings().data_dir
    root.mkdir(parents=True, exist_ok=True)
    return root


def safe_token(value: Any, *, label: str = 'id') -> str:
    token = str(value or '').strip()
    if not token:
        raise ValueError(f'{label} is required')
    if not _SAFE_TOKEN_PATTERN.fullmatch(token) or '..' in token:
        raise ValueError(f'invalid {label}: {value}')
    return token


def storage_key(value: Any, *, label: str = 'id') -> str:
    """File-name token for any non-empty id.

    Ids that are already safe tokens are kept readable; anything else maps to
    ``_`` plus its sha256 digest, a form no safe token can take.
    """
    token = str(value or '').strip()
    if not token:
        raise ValueError(f'{label} is required')
    if _SAFE_TOKEN_PATTERN.fullmatch(token) and '..' not in token:
        return token
    return '_' + hashlib.sha256(token.encode('utf-8')).hexdigest()


def events_path(subject_id: str, period: str, *, root: Path | None = None) -> Path:
    base = (root or data_root()) / 'events'
    return base / storage_key(subject_id, label='subject_id') / f"{storage_key(period, label='period')}.jsonl"


def write_json_atomic(path: Path, payload: dict[str, Any] | list[Any]) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = path.with_suffix(path.suffix + '.tmp')
    tmp.write_text(json.dumps(payload, ensure_ascii=False, indent=2), encoding='utf-8')
    tmp.replace(path)


def write_bytes_atomic(path: Path, content: bytes) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = path.with_suffix(path.suffix + '.tmp')
    tmp.write_bytes(content)
    tmp.replace(path)


def read_json(path: Path) -> Any:
    return json.loads(path.read_text(encoding='utf-8'))


def append_event(
    subject_id: str,
    period: str,
    event: str,
    *,
    root: Path | None = None,
    **extra: Any,
) -> None:
    now = datetime.now(timezone.utc).isoformat()
    row = {
        'ts': now,
        'event': event,
        **extra,
    }
    events_file = events_path(subject_id, period, root=root)
    events_file.parent.mkdir(parents=True, exist_ok=True)
    with events_file.open('a', encoding='utf-8') as f:
        f.write(json.dumps(row, ensure_ascii=False, default=str) + '\n')


def read_events(subject_id: str, period: str, *, root: Path | None = None) -> list[dict[str, Any]]:
    path = events_path(subject_id, period, root=root)
    if not path.exists():
        return []
    rows: list[dict[str, Any]] = []
    for line in path.read_text(encoding='utf-8').splitlines():
        if not line.strip():
            continue
        rows.append(json.loads(line))
    return rows


class ReportEventLogger:
    """Per (subject, period) generation log, written as JSON lines.

    Failures to write an event are logged and swallowed so that logging can
    never fail a report generation.
    """

    def __init__(self, subject_id: str, period: str, *, root: Path | None = None):
        self.subject_id = subject_id
        self.period = period
        self.root = root

    def _write(self, level: str, step: str, message: str, data: dict[str, Any] | None) -> None:
        log_level = logging.WARNING if level == 'warn' else logging.getLevelName(level.upper())
        logger.log(log_level, '[%s/%s] %s: %s', self.subject_id, self.period, step, message)
        try:
            append_event(
                self.subject_id,
                self.period,
                'report_generation',
                root=self.root,
                level=level,
                step=step or None,
                message=message or '',
                data=data,
            )
        except (OSError, ValueError) as exc:
            logger.error('Failed to write report generation event: %s', exc)

    def debug(self, step: str, message: str, **data: Any) -> None:
        self._write('debug', step, message, data or None)

    def info(self, step: str, message: str, **data: Any) -> None:
        self._write('info', step, message, data or None)

    def warn(self, step: str, message: str, **data: Any) -> None:
        self._write('warn', step, message, data or None)

    def error(self, step: str, message: str, **data: Any) -> None:
        self._write('error', step, message, data or None)
