from __future__ import annotations

import io

import pytest
from PIL import Image

from monthlyreport.config import get_settings


@pytest.fixture(autouse=True)
def isolated_settings(tmp_path, monkeypatch):
    """Point every test at its own data dir with no remote providers configured."""
    monkeypatch.setenv('DATA_DIR', str(tmp_path / 'data'))
    for name in (
        'OPENAI_API_KEY',
        'LLM_API_KEY',
        'LOCAL_AI_API_KEY',
        'OPENAI_BASE_URL',
        'LLM_BASE_URL',
        'LOCAL_AI_ENDPOINT',
        'ARCHIVE_RPC_URL',
        'ARCHIVE_RPC_KEY',
        'PDF_TEMPLATES_PATH',
        'REPORT_ROLES',
        'REPORT_MAX_IMAGES',
    ):
        monkeypatch.delenv(name, raising=False)
    get_settings.cache_clear()
    yield get_settings()
    get_settings.cache_clear()


@pytest.fixture
def data_dir(isolated_settings):
    return isolated_settings.data_dir


@pytest.fixture
def image_bytes():
    def make(fmt: str = 'PNG', size: tuple[int, int] = (64, 32), color: str = 'red') -> bytes:
        buf = io.BytesIO()
        Image.new('RGB', size, color).save(buf, format=fmt)
        return buf.getvalue()

    return make
