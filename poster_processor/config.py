"""
Runtime configuration.

Values come from environment variables or a ``.env.local`` file in the
working directory. Settings are built explicitly by the caller and passed
to the components that need them.
"""

from typing import Dict, List, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .data_models import CalendarType, ProviderSpec
from .prompts import PROMPTS


DEFAULT_CANDIDATES = [
    ProviderSpec(model_id="anthropic/claude-3-haiku", priority=1),
    ProviderSpec(model_id="openai/gpt-4o-mini", priority=2),
    ProviderSpec(model_id="anthropic/claude-3-5-sonnet", priority=3),
]


class Settings(BaseSettings):
    """Poster processor settings."""

    model_config = SettingsConfigDict(
        env_file=".env.local",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Vision providers
    openrouter_api_key: str = ""
    anthropic_api_key: str = ""
    candidate_models: List[ProviderSpec] = Field(default_factory=lambda: list(DEFAULT_CANDIDATES))
    prompt_locale: str = "nl"
    permissive_parsing: bool = False
    request_timeout: float = 60.0
    # None disables the overall deadline
    extraction_timeout: Optional[float] = 180.0
    app_referer: str = "http://localhost:3001"
    app_title: str = "HDCN Poster Processor"

    # Events
    event_timezone: str = "Europe/Amsterdam"
    max_upload_mb: int = 10

    # Google
    google_client_id: str = ""
    google_client_secret: str = ""
    google_refresh_token: str = ""
    google_drive_folder_id: str = ""
    google_calendar_nationaal: str = ""
    google_calendar_internationaal: str = ""
    google_calendar_beurzen: str = ""
    google_photos_album_id: str = ""

    @field_validator('prompt_locale')
    @classmethod
    def known_locale(cls, v):
        if v not in PROMPTS:
            raise ValueError(f"prompt_locale must be one of {sorted(PROMPTS)}")
        return v

    @field_validator('candidate_models')
    @classmethod
    def at_least_one_candidate(cls, v):
        if not v:
            raise ValueError("candidate_models must not be empty")
        return v

    @property
    def calendar_ids(self) -> Dict[CalendarType, str]:
        return {
            CalendarType.NATIONAAL: self.google_calendar_nationaal,
            CalendarType.INTERNATIONAAL: self.google_calendar_internationaal,
            CalendarType.BEURZEN: self.google_calendar_beurzen,
        }

    def missing_settings(self) -> List[str]:
        """Environment variable names required for publishing that are not set."""
        required = {
            'OPENROUTER_API_KEY': self.openrouter_api_key,
            'GOOGLE_CLIENT_ID': self.google_client_id,
            'GOOGLE_CLIENT_SECRET': self.google_client_secret,
            'GOOGLE_REFRESH_TOKEN': self.google_refresh_token,
            'GOOGLE_DRIVE_FOLDER_ID': self.google_drive_folder_id,
            'GOOGLE_CALENDAR_NATIONAAL': self.google_calendar_nationaal,
            'GOOGLE_CALENDAR_INTERNATIONAAL': self.google_calendar_internationaal,
            'GOOGLE_CALENDAR_BEURZEN': self.google_calendar_beurzen,
        }
        return [name for name, value in required.items() if not value]
