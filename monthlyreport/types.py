from __future__ import annotations

import base64
from datetime import datetime, timezone
from typing import Any
from uuid import uuid4

from pydantic import BaseModel, Field


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class CostRow(BaseModel):
    date: str
    concept: str
    amount: float


class ImageItem(BaseModel):
    url: str
    caption: str = ''
    order: float = 0
    name: str | None = None


class ReportTotals(BaseModel):
    total_cost: float = 0.0


class ReportPayload(BaseModel):
    subject_id: str
    period: str
    incident_text: str
    costs: list[CostRow] = Field(default_factory=list)
    images: list[ImageItem] = Field(default_factory=list)
    totals: ReportTotals = Field(default_factory=ReportTotals)


class LedgerEvents(BaseModel):
    incident_text: str = ''
    generated_narrative: str = ''
    costs: list[CostRow] = Field(default_factory=list)
    images: list[ImageItem] = Field(default_factory=list)


class LedgerRecord(BaseModel):
    subject_id: str
    period: str
    events: LedgerEvents = Field(default_factory=LedgerEvents)
    totals: ReportTotals = Field(default_factory=ReportTotals)
    artifact_base64: str = ''
    artifact_size: int = 0
    created_by: str | None = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    @property
    def artifact_bytes(self) -> bytes:
        if not self.artifact_base64:
            return b''
        return base64.b64decode(self.artifact_base64)


class DocumentRecord(BaseModel):
    id: str = Field(default_factory=lambda: str(uuid4()))
    subject_id: str
    name: str
    type: str
    current_version: int = 1
    created_by: str | None = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class DocumentVersion(BaseModel):
    document_id: str
    version_number: int
    file_path: str
    file_size: int
    mime_type: str = 'application/pdf'
    uploaded_by: str | None = None
    change_log: str | None = None
    created_at: datetime = Field(default_factory=utcnow)


class SendResult(BaseModel):
    document_id: str
    version_number: int
    file_path: str
    archive_result: dict[str, Any] = Field(default_factory=dict)


class RequestContext(BaseModel):
    user_id: str | None = None
    role: str = ''
