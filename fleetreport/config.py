from __future__ import annotations

from functools import lru_cache
from pathlib import Path

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from .types import RouteOption


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file='.env',
        env_file_encoding='utf-8',
        case_sensitive=False,
        extra='ignore',
    )

    app_name: str = 'Fleet Transport Report'

    data_dir: Path = Field(default=Path('./data'))

    # Photo normalization
    image_max_dimension: int = 500
    image_quality: float = 0.5
    orientation_prefix_bytes: int = 64 * 1024
    max_photo_bytes: int = 25 * 1024 * 1024

    # PDF layout
    pdf_font_name: str = 'Helvetica'
    pdf_bold_font_name: str = 'Helvetica-Bold'
    pdf_body_font_size: float = 9
    pdf_row_height_mm: float = 18
    pdf_photo_size_mm: float = 12
    pdf_missing_photo_label: str = 'No photo'

    operator_name: str | None = None
    default_route: RouteOption = RouteOption.manaus_to_santarem

    # Optional vision model used to pre-fill plate/model from a photo
    openai_api_key: str | None = Field(
        default=None,
        validation_alias=AliasChoices('OPENAI_API_KEY', 'API_KEY', 'LLM_API_KEY'),
    )
    openai_base_url: str | None = Field(
        default=None,
        validation_alias=AliasChoices('OPENAI_BASE_URL', 'BASE_URL', 'LLM_BASE_URL'),
    )
    vision_model: str = 'gpt-4o-mini'
    vision_timeout_seconds: int = 60

    def reports_dir(self) -> Path:
        return self.data_dir / 'reports'


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    settings = Settings()
    settings.data_dir.mkdir(parents=True, exist_ok=True)
    settings.reports_dir().mkdir(parents=True, exist_ok=True)
    return settings
