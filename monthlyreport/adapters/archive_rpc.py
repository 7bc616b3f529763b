from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from datetime import date, datetime, timezone
from pathlib import Path
from typing import Any, Protocol

import httpx

from monthlyreport.errors import ArchiveRpcError, classify_error_kind
from monthlyreport.storage import read_json, write_json_atomic


logger = logging.getLogger(__name__)


class ArchiveClient(Protocol):
    async def archive_range(
        self,
        *,
        subject_id: str,
        from_date: date,
        to_date: date,
        run_id: str,
    ) -> dict[str, Any]: ...


@dataclass
class ArchiveRpcConfig:
    url: str | None
    api_key: str | None
    timeout_seconds: int


class HttpArchiveClient:
    """Calls the remote "archive operational records in range" procedure."""

    def __init__(self, cfg: ArchiveRpcConfig, *, transport: httpx.AsyncBaseTransport | None = None):
        self.cfg = cfg
        self._transport = transport

    @property
    def configured(self) -> bool:
        return bool(self.cfg.url)

    async def archive_range(
        self,
        *,
        subject_id: str,
        from_date: date,
        to_date: date,
        run_id: str,
    ) -> dict[str, Any]:
        if not self.configured:
            raise ArchiveRpcError('Archive procedure URL is not configured', run_id=run_id)
        assert self.cfg.url is not None

        headers = {'Content-Type': 'application/json'}
        api_key = str(self.cfg.api_key or '').strip()
        if api_key:
            headers['Authorization'] = f'Bearer {api_key}'
        payload = {
            'p_subject_id': subject_id,
            'p_from_date': from_date.isoformat(),
            'p_to_date': to_date.isoformat(),
            'p_report_run_id': run_id,
        }

        try:
            async with httpx.AsyncClient(
                timeout=max(5, int(self.cfg.timeout_seconds)),
                transport=self._transport,
            ) as client:
                response = await client.post(self.cfg.url, headers=headers, json=payload)
            response.raise_for_status()
            data = response.json()
        except httpx.HTTPError as exc:
            raise ArchiveRpcError(str(exc) or type(exc).__name__, kind=classify_error_kind(exc), run_id=run_id) from exc
        except ValueError as exc:
            raise ArchiveRpcError(f'invalid JSON response: {exc}', run_id=run_id) from exc

        if isinstance(data, dict) and data.get('ok') is False:
            raise ArchiveRpcError(str(data.get('error') or 'archive procedure returned ok=false'), run_id=run_id)
        if isinstance(data, dict):
            return data
        return {'ok': True, 'result': data}


class LocalArchiveClient:
    """File-backed stand-in for the archive procedure.

    Each run id is applied once; a replay returns the stored result marked
    ``replayed``.
    """

    _lock = threading.RLock()

    def __init__(self, root: Path):
        self.root = root

    @property
    def runs_path(self) -> Path:
        return self.root / 'archive' / 'runs.json'

    def _load_runs(self) -> dict[str, Any]:
        if not self.runs_path.exists():
            return {}
        data = read_json(self.runs_path)
        return data if isinstance(data, dict) else {}

    async def archive_range(
        self,
        *,
        subject_id: str,
        from_date: date,
        to_date: date,
        run_id: str,
    ) -> dict[str, Any]:
        token = str(run_id or '').strip()
        if not token:
            raise ArchiveRpcError('run_id is required')
        try:
            with self._lock:
                runs = self._load_runs()
                existing = runs.get(token)
                if existing is not None:
                    logger.info('Archive run %s already applied; replaying stored result', token)
                    return {**existing, 'replayed': True}
                result = {
                    'ok': True,
                    'subject_id': subject_id,
                    'from_date': from_date.isoformat(),
                    'to_date': to_date.isoformat(),
                    'run_id': token,
                    'archived_at': datetime.now(timezone.utc).isoformat(),
                }
                runs[token] = result
                write_json_atomic(self.runs_path, runs)
        except OSError as exc:
            raise ArchiveRpcError(str(exc), kind=classify_error_kind(exc), run_id=token) from exc
        return {**result, 'replayed': False}
