from __future__ import annotations

from functools import lru_cache
from pathlib import Path

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file='.env',
        env_file_encoding='utf-8',
        case_sensitive=False,
        extra='ignore',
    )

    app_name: str = 'Monthly Report Back Office'
    log_level: str = 'INFO'

    data_dir: Path = Field(default=Path('./data'))

    # Narrative generation (OpenAI-compatible endpoint, local or hosted)
    narrative_api_key: str | None = Field(
        default=None,
        validation_alias=AliasChoices('OPENAI_API_KEY', 'LLM_API_KEY', 'LOCAL_AI_API_KEY'),
    )
    narrative_base_url: str | None = Field(
        default=None,
        validation_alias=AliasChoices('OPENAI_BASE_URL', 'LLM_BASE_URL', 'LOCAL_AI_ENDPOINT'),
    )
    narrative_model: str = Field(
        default='gpt-4o-mini',
        validation_alias=AliasChoices('NARRATIVE_MODEL', 'OPENAI_TEXT_MODEL', 'LOCAL_AI_MODEL'),
    )
    narrative_temperature: float = 0.2
    narrative_timeout_seconds: int = 120
    narrative_max_attempts: int = 3

    # Downstream "archive operational records in date range" procedure
    archive_rpc_url: str | None = None
    archive_rpc_key: str | None = None
    archive_rpc_timeout_seconds: int = 30

    # Image fetching for the images section
    image_fetch_timeout_seconds: float = 20.0
    image_fetch_concurrency: int = 4
    image_max_bytes: int = 4 * 1024 * 1024
    report_max_images: int = 25

    # PDF layout defaults (templates may override per report)
    pdf_page_size: str = 'LETTER'
    pdf_page_margin: float = 40
    pdf_primary_color: str = '#0f172a'
    pdf_templates_path: Path | None = None
    report_key: str = 'property_monthly_maintenance'

    # Roles allowed to generate, store and send reports
    report_roles: str = 'admin,super_admin'

    def allowed_report_roles(self) -> set[str]:
        roles: set[str] = set()
        for item in self.report_roles.split(','):
            normalized = item.strip().lower()
            if not normalized:
                continue
            roles.add(normalized)
        return roles

    def templates_file(self) -> Path:
        if self.pdf_templates_path is not None:
            return self.pdf_templates_path
        return self.data_dir / 'pdf_templates.json'


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    settings = Settings()
    settings.data_dir.mkdir(parents=True, exist_ok=True)
    for child in ('ledger', 'blobs', 'documents', 'events', 'archive'):
        (settings.data_dir / child).mkdir(parents=True, exist_ok=True)
    return settings
