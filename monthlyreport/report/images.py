from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from io import BytesIO
from typing import Iterable, Literal

import httpx
from reportlab.lib.utils import ImageReader

from monthlyreport.errors import ResourceFetchError


logger = logging.getLogger(__name__)

PNG_SIGNATURE = b'\x89PNG'


@dataclass(frozen=True)
class ReportImage:
    url: str
    caption: str = ''


@dataclass
class FetchedImage:
    url: str
    caption: str = ''
    data: bytes | None = None
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.data is not None and self.error is None


@dataclass
class DecodedImage:
    reader: ImageReader
    width: float
    height: float
    format: Literal['png', 'jpeg']


def sniff_image_format(data: bytes) -> Literal['png', 'jpeg']:
    if len(data) > 8 and data[:4] == PNG_SIGNATURE:
        return 'png'
    return 'jpeg'


def decode_image(data: bytes, *, url: str = '') -> DecodedImage:
    fmt = sniff_image_format(data)
    if fmt == 'jpeg' and not data.startswith(b'\xff\xd8'):
        raise ResourceFetchError(url, 'not a PNG or JPEG image')
    try:
        reader = ImageReader(BytesIO(data))
        width, height = reader.getSize()
    except Exception as exc:
        raise ResourceFetchError(url, f'{type(exc).__name__}: {exc}') from exc
    return DecodedImage(reader=reader, width=float(width), height=float(height), format=fmt)


async def fetch_image_bytes(
    client: httpx.AsyncClient,
    url: str,
    *,
    max_bytes: int,
) -> bytes:
    try:
        response = await client.get(url)
    except httpx.HTTPError as exc:
        raise ResourceFetchError(url, f'{type(exc).__name__}: {exc}') from exc
    if response.status_code < 200 or response.status_code >= 300:
        raise ResourceFetchError(url, f'HTTP {response.status_code}')
    content_type = str(response.headers.get('content-type') or '').lower()
    if content_type and not content_type.startswith('image/') and 'octet-stream' not in content_type:
        raise ResourceFetchError(url, f'unexpected content-type {content_type}')
    body = response.content
    if max_bytes > 0 and len(body) > max_bytes:
        raise ResourceFetchError(url, f'image too large ({len(body)} bytes)')
    return body


async def fetch_images(
    images: Iterable[ReportImage],
    *,
    client: httpx.AsyncClient | None = None,
    concurrency: int = 4,
    timeout_seconds: float = 20.0,
    max_bytes: int = 4 * 1024 * 1024,
) -> list[FetchedImage]:
    """Fetch every image concurrently; results keep the input order.

    A failed fetch is recorded on its ``FetchedImage`` instead of raising.
    """
    items = [img for img in images if str(img.url or '').strip()]
    if not items:
        return []

    semaphore = asyncio.Semaphore(max(1, int(concurrency)))

    async def load(http: httpx.AsyncClient, item: ReportImage) -> FetchedImage:
        url = item.url.strip()
        async with semaphore:
            try:
                data = await fetch_image_bytes(http, url, max_bytes=max_bytes)
            except ResourceFetchError as exc:
                logger.warning('Image fetch failed for %s: %s', url, exc.reason)
                return FetchedImage(url=url, caption=item.caption, error=exc.reason)
        return FetchedImage(url=url, caption=item.caption, data=data)

    if client is not None:
        return list(await asyncio.gather(*(load(client, item) for item in items)))

    async with httpx.AsyncClient(timeout=timeout_seconds, follow_redirects=True) as http:
        return list(await asyncio.gather(*(load(http, item) for item in items)))
