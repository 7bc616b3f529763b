from __future__ import annotations

import threading
from pathlib import Path

from .storage import read_json, storage_key, write_json_atomic
from .types import LedgerRecord, utcnow


_LEDGER_LOCK = threading.RLock()


class LedgerStore:
    """One JSON file per (subject, period); writes replace the previous record."""

    def __init__(self, root: Path):
        self.root = root

    def path_for(self, subject_id: str, period: str) -> Path:
        subject = storage_key(subject_id, label='subject_id')
        month = storage_key(period, label='period')
        return self.root / 'ledger' / subject / f'{month}.json'

    def upsert(self, record: LedgerRecord) -> LedgerRecord:
        path = self.path_for(record.subject_id, record.period)
        with _LEDGER_LOCK:
            existing = self.load(record.subject_id, record.period)
            if existing is not None:
                record.created_at = existing.created_at
            record.updated_at = utcnow()
            write_json_atomic(path, record.model_dump(mode='json'))
        return record

    def load(self, subject_id: str, period: str) -> LedgerRecord | None:
        path = self.path_for(subject_id, period)
        if not path.exists():
            return None
        with _LEDGER_LOCK:
            payload = read_json(path)
        return LedgerRecord.model_validate(payload)

    def list(self, subject_id: str | None = None, *, limit: int = 200) -> list[LedgerRecord]:
        base = self.root / 'ledger'
        if subject_id:
            folders = [base / storage_key(subject_id, label='subject_id')]
        else:
            folders = [p for p in base.iterdir() if p.is_dir()] if base.exists() else []

        records: list[LedgerRecord] = []
        with _LEDGER_LOCK:
            for folder in folders:
                if not folder.exists():
                    continue
                for path in folder.glob('*.json'):
                    records.append(LedgerRecord.model_validate(read_json(path)))
        records.sort(key=lambda r: r.updated_at, reverse=True)
        records.sort(key=lambda r: r.period, reverse=True)
        return records[: max(0, int(limit))]
