from __future__ import annotations

import re
import threading
from pathlib import Path
from typing import Any

from .storage import read_json, safe_token, storage_key, write_bytes_atomic, write_json_atomic
from .types import DocumentRecord, DocumentVersion, utcnow


UUID_PATTERN = re.compile(
    r'^[0-9a-f]{8}-[0-9a-f]{4}-[1-5][0-9a-f]{3}-[89ab][0-9a-f]{3}-[0-9a-f]{12}$',
    re.IGNORECASE,
)

_DOCUMENTS_LOCK = threading.RLock()


def is_uuid(value: str | None) -> bool:
    return bool(value) and bool(UUID_PATTERN.fullmatch(str(value)))


def build_document_storage_path(subject_id: str | None, file_name: str) -> str:
    folder = subject_id if subject_id and is_uuid(subject_id) else 'global'
    return f'{folder}/{file_name}'


def report_file_name(period: str) -> str:
    return f'report_{period}.pdf'


def report_display_name(period: str) -> str:
    return f'Monthly Report {period}'


class BlobStore:
    """Bucketed byte storage under ``<root>/blobs/<bucket>/<path>``."""

    def __init__(self, root: Path, *, bucket: str = 'documents'):
        self.root = root
        self.bucket = safe_token(bucket, label='bucket')

    def _resolve(self, object_path: str) -> Path:
        parts = [p for p in str(object_path or '').split('/') if p]
        if not parts:
            raise ValueError('object path is required')
        safe_parts = [safe_token(p, label='path segment') for p in parts]
        return self.root / 'blobs' / self.bucket / Path(*safe_parts)

    def put(self, object_path: str, content: bytes) -> int:
        write_bytes_atomic(self._resolve(object_path), content)
        return len(content)

    def get(self, object_path: str) -> bytes | None:
        path = self._resolve(object_path)
        if not path.exists():
            return None
        return path.read_bytes()


class DocumentStore:
    """Logical documents with one version row per stored artifact.

    Data for a subject lives in one JSON file; all read-modify-write cycles
    run under a process lock.
    """

    def __init__(self, root: Path):
        self.root = root

    def _path(self, subject_id: str) -> Path:
        return self.root / 'documents' / f"{storage_key(subject_id, label='subject_id')}.json"

    def _load(self, subject_id: str) -> dict[str, Any]:
        path = self._path(subject_id)
        if not path.exists():
            return {'documents': [], 'versions': []}
        data = read_json(path)
        data.setdefault('documents', [])
        data.setdefault('versions', [])
        return data

    def find(self, subject_id: str, *, name: str, doc_type: str) -> DocumentRecord | None:
        with _DOCUMENTS_LOCK:
            data = self._load(subject_id)
        for row in data['documents']:
            if row.get('name') == name and row.get('type') == doc_type:
                return DocumentRecord.model_validate(row)
        return None

    def add_version(
        self,
        subject_id: str,
        *,
        name: str,
        doc_type: str,
        file_path: str,
        file_size: int,
        mime_type: str = 'application/pdf',
        user_id: str | None = None,
        change_log: str | None = None,
    ) -> tuple[DocumentRecord, DocumentVersion]:
        with _DOCUMENTS_LOCK:
            data = self._load(subject_id)
            document: DocumentRecord | None = None
            index = -1
            for i, row in enumerate(data['documents']):
                if row.get('name') == name and row.get('type') == doc_type:
                    document = DocumentRecord.model_validate(row)
                    index = i
                    break

            if document is None:
                document = DocumentRecord(
                    subject_id=subject_id,
                    name=name,
                    type=doc_type,
                    current_version=1,
                    created_by=user_id,
                )
                data['documents'].append(document.model_dump(mode='json'))
            else:
                document.current_version += 1
                document.updated_at = utcnow()
                data['documents'][index] = document.model_dump(mode='json')

            version = DocumentVersion(
                document_id=document.id,
                version_number=document.current_version,
                file_path=file_path,
                file_size=file_size,
                mime_type=mime_type,
                uploaded_by=user_id,
                change_log=change_log,
            )
            data['versions'].append(version.model_dump(mode='json'))
            write_json_atomic(self._path(subject_id), data)
        return document, version

    def list_versions(self, subject_id: str, document_id: str) -> list[DocumentVersion]:
        with _DOCUMENTS_LOCK:
            data = self._load(subject_id)
        versions = [
            DocumentVersion.model_validate(row)
            for row in data['versions']
            if row.get('document_id') == document_id
        ]
        versions.sort(key=lambda v: v.version_number, reverse=True)
        return versions
