from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable

import httpx
import openai
from openai import AsyncOpenAI

from monthlyreport.errors import NarrativeGenerationError


logger = logging.getLogger(__name__)

SYSTEM_PROMPT = (
    'You write professional property maintenance reports. '
    'Use clear sections with markdown headings and bullet lists.'
)


@dataclass
class NarrativeConfig:
    base_url: str | None
    api_key: str | None
    model: str
    temperature: float
    timeout_seconds: int
    max_attempts: int = 3


class NarrativeClient:
    """Async OpenAI-compatible client that turns a prompt into report text.

    Rate limits, 5xx responses and connection errors are retried by the SDK.
    """

    def __init__(
        self,
        cfg: NarrativeConfig,
        *,
        fallback: Callable[[str], str] | None = None,
        http_client: httpx.AsyncClient | None = None,
    ):
        self.cfg = cfg
        self.fallback = fallback
        self._http_client = http_client
        self._client: AsyncOpenAI | None = None

    @property
    def configured(self) -> bool:
        return bool(self.cfg.api_key)

    def client(self) -> AsyncOpenAI:
        if not self.configured:
            raise NarrativeGenerationError('Narrative client is not configured')
        if self._client is None:
            self._client = AsyncOpenAI(
                api_key=self.cfg.api_key,
                base_url=self.cfg.base_url,
                timeout=max(30, int(self.cfg.timeout_seconds)),
                max_retries=max(0, int(self.cfg.max_attempts) - 1),
                http_client=self._http_client,
            )
        return self._client

    async def generate(self, prompt: str) -> str:
        if not self.configured:
            if self.fallback is None:
                raise NarrativeGenerationError('Narrative client is not configured and no fallback is set')
            logger.info('Narrative provider not configured; using fallback text')
            return self.fallback(prompt)

        try:
            response = await self.client().chat.completions.create(
                model=self.cfg.model,
                messages=[
                    {'role': 'system', 'content': SYSTEM_PROMPT},
                    {'role': 'user', 'content': prompt},
                ],
                temperature=self.cfg.temperature,
            )
        except openai.OpenAIError as exc:
            raise NarrativeGenerationError(f'Narrative provider error: {exc}') from exc

        choices = getattr(response, 'choices', None) or []
        content = ''
        if choices:
            content = str(getattr(choices[0].message, 'content', '') or '').strip()
        if not content:
            raise NarrativeGenerationError('Narrative provider returned empty content')
        return content
