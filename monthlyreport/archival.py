from __future__ import annotations

import asyncio
import base64
import logging
from datetime import date
from pathlib import Path
from typing import Any, Mapping

from .adapters.archive_rpc import ArchiveClient, ArchiveRpcConfig, HttpArchiveClient, LocalArchiveClient
from .config import get_settings
from .documents import (
    BlobStore,
    DocumentStore,
    build_document_storage_path,
    report_display_name,
    report_file_name,
)
from .errors import ArchiveRpcError, PayloadValidationError, classify_persistence_error
from .ledger import LedgerStore
from .payload import normalize_period
from .types import DocumentRecord, DocumentVersion, LedgerEvents, LedgerRecord, ReportTotals, SendResult


logger = logging.getLogger(__name__)

REPORT_DOCUMENT_TYPE = 'report'
REPORT_SUBFOLDER = 'reports'
PDF_MIME_TYPE = 'application/pdf'


def period_range(period: str) -> tuple[date, date]:
    """First day of ``period`` (inclusive) and of the next month (exclusive)."""
    month = normalize_period(period)
    if month is None:
        raise PayloadValidationError(['Invalid period'])
    year, mon = int(month[:4]), int(month[5:7])
    if mon < 1 or mon > 12:
        raise PayloadValidationError(['Invalid period'])
    start = date(year, mon, 1)
    end = date(year + 1, 1, 1) if mon == 12 else date(year, mon + 1, 1)
    return start, end


class ArchivalCoordinator:
    def __init__(
        self,
        *,
        ledger: LedgerStore,
        documents: DocumentStore,
        blobs: BlobStore,
        archive_client: ArchiveClient,
    ):
        self.ledger = ledger
        self.documents = documents
        self.blobs = blobs
        self.archive_client = archive_client

    def save_ledger(
        self,
        *,
        subject_id: str,
        period: str,
        events: LedgerEvents | Mapping[str, Any],
        totals: ReportTotals | Mapping[str, Any],
        artifact_bytes: bytes,
        created_by: str | None = None,
    ) -> LedgerRecord:
        record = LedgerRecord(
            subject_id=subject_id,
            period=period,
            events=events if isinstance(events, LedgerEvents) else LedgerEvents.model_validate(dict(events)),
            totals=totals if isinstance(totals, ReportTotals) else ReportTotals.model_validate(dict(totals)),
            artifact_base64=base64.b64encode(artifact_bytes).decode('ascii'),
            artifact_size=len(artifact_bytes),
            created_by=created_by,
        )
        try:
            saved = self.ledger.upsert(record)
        except (OSError, ValueError) as exc:
            raise classify_persistence_error(exc, operation='ledger upsert') from exc
        logger.info('Ledger saved for %s/%s (%s bytes)', subject_id, period, saved.artifact_size)
        return saved

    def load_ledger(self, subject_id: str, period: str) -> LedgerRecord | None:
        try:
            return self.ledger.load(subject_id, period)
        except (OSError, ValueError) as exc:
            raise classify_persistence_error(exc, operation='ledger read') from exc

    def list_ledger(self, subject_id: str | None = None, *, limit: int = 200) -> list[LedgerRecord]:
        try:
            return self.ledger.list(subject_id, limit=limit)
        except (OSError, ValueError) as exc:
            raise classify_persistence_error(exc, operation='ledger list') from exc

    async def send_and_archive(
        self,
        *,
        subject_id: str,
        period: str,
        artifact_bytes: bytes,
        run_id: str,
        uploaded_by: str | None = None,
    ) -> SendResult:
        """Store, version and archive one rendered report.

        Steps run in order and any failure propagates; nothing already written
        is rolled back. Retrying with the same ``run_id`` is safe for the
        archive step. Blob and document writes run in a worker thread.
        """
        from_date, to_date = period_range(period)

        file_path = build_document_storage_path(subject_id, f'{REPORT_SUBFOLDER}/{report_file_name(period)}')
        try:
            size = await asyncio.to_thread(self.blobs.put, file_path, artifact_bytes)
        except (OSError, ValueError) as exc:
            raise classify_persistence_error(exc, operation='blob write') from exc
        logger.info('Stored report artifact at %s (%s bytes)', file_path, size)

        try:
            document, version = await asyncio.to_thread(
                self.documents.add_version,
                subject_id,
                name=report_display_name(period),
                doc_type=REPORT_DOCUMENT_TYPE,
                file_path=file_path,
                file_size=size,
                mime_type=PDF_MIME_TYPE,
                user_id=uploaded_by,
                change_log='Monthly report generation',
            )
        except (OSError, ValueError) as exc:
            raise classify_persistence_error(exc, operation='document version write') from exc
        logger.info('Document %s archived as version %s', document.id, version.version_number)

        try:
            archive_result = await self.archive_client.archive_range(
                subject_id=subject_id,
                from_date=from_date,
                to_date=to_date,
                run_id=run_id,
            )
        except ArchiveRpcError:
            raise
        except Exception as exc:
            raise ArchiveRpcError(f'{type(exc).__name__}: {exc}', run_id=run_id) from exc

        return SendResult(
            document_id=document.id,
            version_number=version.version_number,
            file_path=file_path,
            archive_result=archive_result,
        )

    def list_document_versions(self, subject_id: str, document_id: str) -> list[DocumentVersion]:
        try:
            return self.documents.list_versions(subject_id, document_id)
        except (OSError, ValueError) as exc:
            raise classify_persistence_error(exc, operation='document version read') from exc

    def find_report_document(self, subject_id: str, period: str) -> DocumentRecord | None:
        try:
            return self.documents.find(subject_id, name=report_display_name(period), doc_type=REPORT_DOCUMENT_TYPE)
        except (OSError, ValueError) as exc:
            raise classify_persistence_error(exc, operation='document read') from exc


def build_archive_client(root: Path | None = None) -> ArchiveClient:
    settings = get_settings()
    remote = HttpArchiveClient(
        ArchiveRpcConfig(
            url=settings.archive_rpc_url,
            api_key=settings.archive_rpc_key,
            timeout_seconds=settings.archive_rpc_timeout_seconds,
        )
    )
    if remote.configured:
        return remote
    return LocalArchiveClient(root or settings.data_dir)


def build_coordinator(root: Path | None = None) -> ArchivalCoordinator:
    base = root or get_settings().data_dir
    return ArchivalCoordinator(
        ledger=LedgerStore(base),
        documents=DocumentStore(base),
        blobs=BlobStore(base),
        archive_client=build_archive_client(base),
    )
