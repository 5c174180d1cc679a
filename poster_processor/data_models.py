"""
Data models for poster event extraction and publishing.
"""

from typing import List, Optional, Any
from datetime import datetime, timedelta, timezone
from enum import Enum
from pydantic import BaseModel, ConfigDict, Field, field_validator, field_serializer, model_validator


PLACEHOLDER_TITLE = "Event from Poster"
PLACEHOLDER_LOCATION = "Location from poster"
PLACEHOLDER_DESCRIPTION = "Event details extracted from poster"
DEFAULT_DURATION = timedelta(hours=4)


class CalendarType(str, Enum):
    """The three club calendars an event can be published to."""
    NATIONAAL = "Nationaal"
    INTERNATIONAAL = "Internationaal"
    BEURZEN = "Beurzen en Diversen"

    @classmethod
    def from_label(cls, value: Any) -> Optional['CalendarType']:
        """Match a calendar label, Dutch or English, ignoring case."""
        if not isinstance(value, str):
            return None
        label = value.strip().lower()
        for member in cls:
            if label == member.value.lower():
                return member
        return _ENGLISH_LABELS.get(label)


_ENGLISH_LABELS = {
    "national": CalendarType.NATIONAAL,
    "international": CalendarType.INTERNATIONAAL,
    "fairs/other": CalendarType.BEURZEN,
    "fairs": CalendarType.BEURZEN,
}


def to_utc(value: datetime) -> datetime:
    """Naive datetimes are read as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def format_timestamp(value: datetime) -> str:
    """Render a datetime as a millisecond UTC timestamp, e.g. 2024-12-15T09:00:00.000Z."""
    return to_utc(value).isoformat(timespec='milliseconds').replace('+00:00', 'Z')


class EventDetails(BaseModel):
    """Event record extracted from a poster."""
    model_config = ConfigDict(populate_by_name=True, validate_assignment=True)

    title: str = Field(PLACEHOLDER_TITLE, description="Event title")
    start_date: datetime = Field(..., alias="startDate", description="Event start")
    end_date: datetime = Field(..., alias="endDate", description="Event end, always after start")
    location: str = Field(PLACEHOLDER_LOCATION, description="Venue or address")
    description: str = Field(PLACEHOLDER_DESCRIPTION, description="Short event description")
    calendar: CalendarType = Field(CalendarType.NATIONAAL, description="Target calendar")
    raw_text: Optional[str] = Field(None, alias="rawText", description="All text visible on the poster")

    @field_validator('title', 'location', 'description', mode='before')
    @classmethod
    def strip_text(cls, v):
        if isinstance(v, str):
            return v.strip()
        return v

    @field_validator('title')
    @classmethod
    def title_not_empty(cls, v):
        return v or PLACEHOLDER_TITLE

    @field_validator('start_date', 'end_date')
    @classmethod
    def normalize_timezone(cls, v):
        return to_utc(v)

    @model_validator(mode='after')
    def end_after_start(self):
        if self.end_date <= self.start_date:
            # object.__setattr__ avoids re-running validation on assignment
            object.__setattr__(self, 'end_date', self.start_date + DEFAULT_DURATION)
        return self

    @field_serializer('start_date', 'end_date')
    def serialize_timestamp(self, v: datetime) -> str:
        return format_timestamp(v)

    def to_dict(self) -> dict:
        """Convert to a JSON-ready dictionary using the wire field names."""
        return self.model_dump(mode='json', by_alias=True)

    @classmethod
    def from_dict(cls, data: dict) -> 'EventDetails':
        """Create EventDetails from dictionary."""
        return cls.model_validate(data)


class ProviderSpec(BaseModel):
    """A vision model candidate. Lower priority is tried first."""
    model_config = ConfigDict(frozen=True)

    model_id: str = Field(..., description="Provider model identifier")
    priority: int = Field(0, description="Position in the candidate list")
    backend: str = Field("openrouter", description="Client used to reach the model")

    @field_validator('backend')
    @classmethod
    def known_backend(cls, v):
        if v not in ("openrouter", "anthropic"):
            raise ValueError(f"Unknown backend: {v}")
        return v


class ProviderAttempt(BaseModel):
    """One try of one candidate during a sequencer run."""
    model_id: str
    raw_text: Optional[str] = None
    error: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return self.error is None


class SinkResult(BaseModel):
    """Outcome of a single downstream upload."""
    success: bool
    message: str
    url: Optional[str] = None


class PublishResult(BaseModel):
    """Per-sink outcome of publishing one event."""
    drive: SinkResult
    calendar: SinkResult
    photos: SinkResult

    @property
    def all_succeeded(self) -> bool:
        return self.drive.success and self.calendar.success and self.photos.success


class DuplicateCheck(BaseModel):
    """Result of looking for an already uploaded poster."""
    is_duplicate: bool
    message: str
    matches: List[str] = Field(default_factory=list)


class VerificationStatus(str, Enum):
    SUCCESS = "success"
    WARNING = "warning"
    ERROR = "error"


class VerificationResult(BaseModel):
    """Result of one setup check."""
    service: str
    status: VerificationStatus
    message: str
    details: Optional[str] = None
