from __future__ import annotations

from typing import Literal

import httpx


PersistenceKind = Literal['permission', 'transport', 'other']

_PERMISSION_MARKERS = (
    'permission denied',
    'row-level security',
    'row level security',
    'forbidden',
    'not authorized',
    'unauthorized',
)
_TRANSPORT_MARKERS = (
    'failed to fetch',
    'networkerror',
    'network error',
    'connection refused',
    'connection reset',
    'timed out',
)

_USER_MESSAGES: dict[str, str] = {
    'permission': 'You do not have permission to store or send this report (admin/super_admin required).',
    'transport': 'Could not reach the storage service. Check connectivity and retry.',
    'other': 'Could not store the report.',
}


class ReportError(Exception):
    """Base class for report pipeline failures."""


class PayloadValidationError(ReportError):
    def __init__(self, errors: list[str]):
        self.errors = list(errors)
        super().__init__('Report payload is invalid: ' + '; '.join(self.errors))


class ResourceFetchError(ReportError):
    def __init__(self, url: str, reason: str):
        self.url = url
        self.reason = reason
        super().__init__(f'Failed to load image {url}: {reason}')


class PersistenceError(ReportError):
    def __init__(self, kind: PersistenceKind, message: str, *, operation: str | None = None):
        self.kind = kind
        self.message = message
        self.operation = operation
        label = f'{operation} ' if operation else ''
        super().__init__(f'{label}failed ({kind}): {message}')

    @property
    def user_message(self) -> str:
        return f'{_USER_MESSAGES[self.kind]}\n\nDetail: {self.message}'


class ArchiveRpcError(ReportError):
    def __init__(self, message: str, *, kind: PersistenceKind = 'other', run_id: str | None = None):
        self.kind = kind
        self.message = message
        self.run_id = run_id
        super().__init__(f'Archive procedure failed ({kind}): {message}')


class ReportAccessError(ReportError):
    def __init__(self, role: str):
        self.role = role
        super().__init__(f'Role {role or "<none>"} may not generate or send reports')


class NarrativeGenerationError(ReportError):
    pass


def classify_error_kind(exc: BaseException) -> PersistenceKind:
    if isinstance(exc, PermissionError):
        return 'permission'
    if isinstance(exc, httpx.HTTPStatusError) and exc.response.status_code in {401, 403}:
        return 'permission'
    if isinstance(exc, (httpx.TransportError, ConnectionError, TimeoutError)):
        return 'transport'

    code = str(getattr(exc, 'code', '') or '').strip()
    if code == '42501':
        return 'permission'

    message = str(exc).lower()
    if any(marker in message for marker in _PERMISSION_MARKERS):
        return 'permission'
    if any(marker in message for marker in _TRANSPORT_MARKERS):
        return 'transport'
    return 'other'


def classify_persistence_error(exc: BaseException, *, operation: str | None = None) -> PersistenceError:
    if isinstance(exc, PersistenceError):
        return exc
    detail = str(exc) or type(exc).__name__
    return PersistenceError(classify_error_kind(exc), detail, operation=operation)
