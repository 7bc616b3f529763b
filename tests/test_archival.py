from __future__ import annotations

import asyncio
import json
import threading
from datetime import date

import httpx
import pytest

from monthlyreport.adapters.archive_rpc import ArchiveRpcConfig, HttpArchiveClient, LocalArchiveClient
from monthlyreport.archival import ArchivalCoordinator, build_coordinator, period_range
from monthlyreport.documents import BlobStore, DocumentStore, build_document_storage_path
from monthlyreport.errors import (
    ArchiveRpcError,
    PayloadValidationError,
    PersistenceError,
    classify_persistence_error,
)
from monthlyreport.ledger import LedgerStore
from monthlyreport.types import LedgerEvents, ReportTotals


SUBJECT_UUID = '3f2b8c1e-9a4d-4e2f-8b6a-1c2d3e4f5a6b'
PDF_V1 = b'%PDF-1.4 first'
PDF_V2 = b'%PDF-1.4 second render'


class RecordingArchive:
    def __init__(self, error: Exception | None = None):
        self.calls: list[dict] = []
        self.error = error

    async def archive_range(self, *, subject_id, from_date, to_date, run_id):
        self.calls.append({'subject_id': subject_id, 'from': from_date, 'to': to_date, 'run_id': run_id})
        if self.error is not None:
            raise self.error
        return {'ok': True, 'archived': 3}


class DeniedBlobStore(BlobStore):
    def put(self, object_path: str, content: bytes) -> int:
        raise PermissionError('permission denied for bucket documents')


class ThreadNoteBlobStore(BlobStore):
    def __init__(self, root):
        super().__init__(root)
        self.threads: list[str] = []

    def put(self, object_path: str, content: bytes) -> int:
        self.threads.append(threading.current_thread().name)
        return super().put(object_path, content)


class ThreadNoteDocumentStore(DocumentStore):
    def __init__(self, root):
        super().__init__(root)
        self.threads: list[str] = []

    def add_version(self, *args, **kwargs):
        self.threads.append(threading.current_thread().name)
        return super().add_version(*args, **kwargs)


def _coordinator(root, archive=None, blobs=None) -> ArchivalCoordinator:
    return ArchivalCoordinator(
        ledger=LedgerStore(root),
        documents=DocumentStore(root),
        blobs=blobs or BlobStore(root),
        archive_client=archive or RecordingArchive(),
    )


def test_period_range_includes_year_rollover():
    assert period_range('2026-02') == (date(2026, 2, 1), date(2026, 3, 1))
    assert period_range('2026-12') == (date(2026, 12, 1), date(2027, 1, 1))
    for bad in ('2026-13', '2026-00', 'Feb 2026'):
        with pytest.raises(PayloadValidationError):
            period_range(bad)


def test_save_ledger_overwrites_same_key(tmp_path):
    coordinator = _coordinator(tmp_path)
    first = coordinator.save_ledger(
        subject_id='prop-1',
        period='2026-02',
        events=LedgerEvents(incident_text='first'),
        totals=ReportTotals(total_cost=10),
        artifact_bytes=PDF_V1,
    )
    second = coordinator.save_ledger(
        subject_id='prop-1',
        period='2026-02',
        events={'incident_text': 'second'},
        totals={'total_cost': 25},
        artifact_bytes=PDF_V2,
        created_by='user-7',
    )

    stored = coordinator.load_ledger('prop-1', '2026-02')
    assert stored is not None
    assert stored.artifact_bytes == PDF_V2
    assert stored.artifact_size == len(PDF_V2)
    assert stored.events.incident_text == 'second'
    assert stored.totals.total_cost == 25
    assert stored.created_at == first.created_at
    assert second.updated_at >= first.updated_at
    assert len(coordinator.list_ledger('prop-1')) == 1


def test_list_ledger_newest_period_first(tmp_path):
    coordinator = _coordinator(tmp_path)
    for subject, period in (('prop-1', '2026-01'), ('prop-2', '2026-03'), ('prop-1', '2026-02')):
        coordinator.save_ledger(subject_id=subject, period=period, events={}, totals={}, artifact_bytes=PDF_V1)

    assert [r.period for r in coordinator.list_ledger()] == ['2026-03', '2026-02', '2026-01']
    assert [r.period for r in coordinator.list_ledger('prop-1')] == ['2026-02', '2026-01']
    assert len(coordinator.list_ledger(limit=1)) == 1
    assert coordinator.load_ledger('prop-9', '2026-01') is None


def test_subject_ids_with_spaces_persist_and_send(tmp_path):
    coordinator = _coordinator(tmp_path)
    coordinator.save_ledger(
        subject_id='Casa Azul',
        period='2026-02',
        events={'incident_text': 'Roof leak'},
        totals={'total_cost': 40},
        artifact_bytes=PDF_V1,
    )

    stored = coordinator.load_ledger('Casa Azul', '2026-02')
    assert stored is not None
    assert stored.subject_id == 'Casa Azul'
    assert stored.artifact_bytes == PDF_V1
    assert [r.subject_id for r in coordinator.list_ledger('Casa Azul')] == ['Casa Azul']
    assert coordinator.load_ledger('Casa-Azul', '2026-02') is None

    result = asyncio.run(
        coordinator.send_and_archive(subject_id='Casa Azul', period='2026-02', artifact_bytes=PDF_V1, run_id='run-1')
    )
    assert result.version_number == 1
    assert result.file_path == 'global/reports/report_2026-02.pdf'
    versions = coordinator.list_document_versions('Casa Azul', result.document_id)
    assert [v.version_number for v in versions] == [1]


def test_storage_path_uses_subject_folder_only_for_uuid():
    assert build_document_storage_path(SUBJECT_UUID, 'reports/report_2026-02.pdf') == f'{SUBJECT_UUID}/reports/report_2026-02.pdf'
    assert build_document_storage_path('prop-1', 'reports/report_2026-02.pdf') == 'global/reports/report_2026-02.pdf'


def test_send_versions_document_and_archives_month(tmp_path):
    archive = RecordingArchive()
    coordinator = _coordinator(tmp_path, archive=archive)

    first = asyncio.run(
        coordinator.send_and_archive(subject_id=SUBJECT_UUID, period='2026-12', artifact_bytes=PDF_V1, run_id='run-1')
    )
    second = asyncio.run(
        coordinator.send_and_archive(
            subject_id=SUBJECT_UUID,
            period='2026-12',
            artifact_bytes=PDF_V2,
            run_id='run-2',
            uploaded_by='user-7',
        )
    )

    assert (first.version_number, second.version_number) == (1, 2)
    assert first.document_id == second.document_id
    assert second.file_path == f'{SUBJECT_UUID}/reports/report_2026-12.pdf'
    assert coordinator.blobs.get(second.file_path) == PDF_V2
    assert second.archive_result == {'ok': True, 'archived': 3}

    versions = coordinator.list_document_versions(SUBJECT_UUID, first.document_id)
    assert [v.version_number for v in versions] == [2, 1]
    assert versions[0].mime_type == 'application/pdf'
    assert versions[0].file_size == len(PDF_V2)
    assert versions[0].uploaded_by == 'user-7'

    document = coordinator.find_report_document(SUBJECT_UUID, '2026-12')
    assert document is not None
    assert document.name == 'Monthly Report 2026-12'
    assert document.current_version == 2

    assert archive.calls[0] == {
        'subject_id': SUBJECT_UUID,
        'from': date(2026, 12, 1),
        'to': date(2027, 1, 1),
        'run_id': 'run-1',
    }


def test_blob_permission_failure_is_classified_and_stops_send(tmp_path):
    archive = RecordingArchive()
    coordinator = _coordinator(tmp_path, archive=archive, blobs=DeniedBlobStore(tmp_path))

    with pytest.raises(PersistenceError) as excinfo:
        asyncio.run(
            coordinator.send_and_archive(subject_id='prop-1', period='2026-02', artifact_bytes=PDF_V1, run_id='r')
        )

    assert excinfo.value.kind == 'permission'
    assert excinfo.value.operation == 'blob write'
    assert 'admin/super_admin' in excinfo.value.user_message
    assert archive.calls == []


def test_send_writes_files_off_the_event_loop_thread(tmp_path):
    blobs = ThreadNoteBlobStore(tmp_path)
    documents = ThreadNoteDocumentStore(tmp_path)
    coordinator = ArchivalCoordinator(
        ledger=LedgerStore(tmp_path),
        documents=documents,
        blobs=blobs,
        archive_client=RecordingArchive(),
    )

    async def run():
        loop_thread = threading.current_thread().name
        result = await coordinator.send_and_archive(
            subject_id='prop-1', period='2026-02', artifact_bytes=PDF_V1, run_id='r'
        )
        return loop_thread, result

    loop_thread, result = asyncio.run(run())

    assert result.version_number == 1
    assert len(blobs.threads) == 1 and len(documents.threads) == 1
    assert loop_thread not in blobs.threads + documents.threads
    assert blobs.get(result.file_path) == PDF_V1


def test_archive_failure_surfaces_after_artifact_stored(tmp_path):
    archive = RecordingArchive(error=RuntimeError('procedure crashed'))
    coordinator = _coordinator(tmp_path, archive=archive)

    with pytest.raises(ArchiveRpcError) as excinfo:
        asyncio.run(
            coordinator.send_and_archive(subject_id='prop-1', period='2026-02', artifact_bytes=PDF_V1, run_id='run-9')
        )

    assert excinfo.value.run_id == 'run-9'
    assert 'procedure crashed' in str(excinfo.value)
    # earlier steps are not rolled back
    assert coordinator.blobs.get('global/reports/report_2026-02.pdf') == PDF_V1
    assert coordinator.find_report_document('prop-1', '2026-02') is not None


def test_local_archive_replays_same_run_id(tmp_path):
    client = LocalArchiveClient(tmp_path)

    async def run():
        first = await client.archive_range(
            subject_id='prop-1', from_date=date(2026, 2, 1), to_date=date(2026, 3, 1), run_id='run-1'
        )
        again = await client.archive_range(
            subject_id='prop-1', from_date=date(2026, 2, 1), to_date=date(2026, 3, 1), run_id='run-1'
        )
        other = await client.archive_range(
            subject_id='prop-1', from_date=date(2026, 2, 1), to_date=date(2026, 3, 1), run_id='run-2'
        )
        return first, again, other

    first, again, other = asyncio.run(run())

    assert first['replayed'] is False and first['to_date'] == '2026-03-01'
    assert again['replayed'] is True
    assert again['archived_at'] == first['archived_at']
    assert other['replayed'] is False
    assert set(json.loads((tmp_path / 'archive' / 'runs.json').read_text(encoding='utf-8'))) == {'run-1', 'run-2'}

    with pytest.raises(ArchiveRpcError):
        asyncio.run(
            client.archive_range(subject_id='prop-1', from_date=date(2026, 2, 1), to_date=date(2026, 3, 1), run_id=' ')
        )


def _http_client(handler) -> HttpArchiveClient:
    return HttpArchiveClient(
        ArchiveRpcConfig(url='https://db.test/rpc/archive_range', api_key='secret', timeout_seconds=10),
        transport=httpx.MockTransport(handler),
    )


def _archive(client: HttpArchiveClient):
    return asyncio.run(
        client.archive_range(subject_id='prop-1', from_date=date(2026, 2, 1), to_date=date(2026, 3, 1), run_id='run-1')
    )


def test_http_archive_posts_range_and_run_id():
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json={'ok': True, 'archived': 4})

    assert _archive(_http_client(handler)) == {'ok': True, 'archived': 4}
    body = json.loads(seen[0].content)
    assert body == {
        'p_subject_id': 'prop-1',
        'p_from_date': '2026-02-01',
        'p_to_date': '2026-03-01',
        'p_report_run_id': 'run-1',
    }
    assert seen[0].headers['authorization'] == 'Bearer secret'


def test_http_archive_error_kinds():
    def forbidden(request: httpx.Request) -> httpx.Response:
        return httpx.Response(403, json={'message': 'permission denied'})

    def refused(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError('connection refused', request=request)

    def not_ok(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={'ok': False, 'error': 'range already archived'})

    def server_error(request: httpx.Request) -> httpx.Response:
        return httpx.Response(500, text='boom')

    expected = [(forbidden, 'permission'), (refused, 'transport'), (not_ok, 'other'), (server_error, 'other')]
    for handler, kind in expected:
        with pytest.raises(ArchiveRpcError) as excinfo:
            _archive(_http_client(handler))
        assert excinfo.value.kind == kind
        assert excinfo.value.run_id == 'run-1'


def test_unconfigured_http_archive_raises():
    client = HttpArchiveClient(ArchiveRpcConfig(url=None, api_key=None, timeout_seconds=10))
    assert not client.configured
    with pytest.raises(ArchiveRpcError):
        _archive(client)


class _CodedError(Exception):
    def __init__(self, message: str, code: str):
        super().__init__(message)
        self.code = code


def test_persistence_error_classification():
    assert classify_persistence_error(PermissionError('nope')).kind == 'permission'
    assert classify_persistence_error(_CodedError('insert failed', '42501')).kind == 'permission'
    assert classify_persistence_error(Exception('new row violates row-level security policy')).kind == 'permission'
    assert classify_persistence_error(Exception('TypeError: Failed to fetch')).kind == 'transport'
    assert classify_persistence_error(ConnectionResetError('reset')).kind == 'transport'
    assert classify_persistence_error(ValueError('disk full')).kind == 'other'

    err = classify_persistence_error(TimeoutError('timed out'), operation='ledger upsert')
    assert err.kind == 'transport'
    assert err.operation == 'ledger upsert'
    assert classify_persistence_error(err) is err


def test_build_coordinator_falls_back_to_local_archive(data_dir):
    coordinator = build_coordinator()
    assert isinstance(coordinator.archive_client, LocalArchiveClient)
    assert coordinator.ledger.root == data_dir
