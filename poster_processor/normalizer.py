"""
Turns raw vision-model output into validated EventDetails records.

Model output is expected to be a single JSON object but frequently is not:
it may be wrapped in prose or markdown fences, truncated, or use free-form
labels instead of JSON. The normalizer recovers what it can and fills the
rest with fixed placeholders, so every record it returns is structurally
valid. Text it cannot recover is rejected with ``None`` so that the
sequencer can move on to the next provider.
"""

import json
import logging
import re
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional

from dateutil import parser as dateutil_parser
from dateutil import tz as dateutil_tz

from .data_models import (
    CalendarType, EventDetails, DEFAULT_DURATION, PLACEHOLDER_DESCRIPTION,
    PLACEHOLDER_LOCATION, PLACEHOLDER_TITLE, to_utc,
)


logger = logging.getLogger(__name__)

FALLBACK_TITLE = "Ham Radio Event (OCR Failed)"
FALLBACK_DESCRIPTION = "Event details extracted from poster. Please review and edit as needed."

EVENT_KEYS = ("title", "startDate", "endDate", "location", "description", "calendar", "rawText")

DEFAULT_LEAD_TIME = timedelta(days=7)
DEFAULT_START_HOUR = 9
SUMMARY_LENGTH = 200

TEMPLATE_TOKEN = re.compile(r'\{[^}]*\}')
UNDEFINED_PARAMETER = re.compile(r'Tot\s+Undefined\s+parameter[^\n]*', re.IGNORECASE)
INLINE_WHITESPACE = re.compile(r'[ \t]{2,}')
JSON_OBJECT = re.compile(r'\{[\s\S]*\}')

INTERNATIONAL_KEYWORDS = (
    'international', 'internationaal', 'world', 'wereld', 'europe', 'europa',
    'germany', 'duitsland', 'deutschland', 'belgium', 'belgië', 'belgie',
    'france', 'frankrijk', 'england', 'engeland', 'united kingdom',
)
FAIR_KEYWORDS = ('fair', 'swap', 'beurs', 'rommelmarkt', 'vlooienmarkt', 'flea')


def classify_calendar(text: str) -> CalendarType:
    """
    Pick a calendar from keywords in free text.

    International keywords win over fair keywords; anything else is national.
    """
    lowered = (text or '').lower()
    if any(keyword in lowered for keyword in INTERNATIONAL_KEYWORDS):
        return CalendarType.INTERNATIONAAL
    if any(keyword in lowered for keyword in FAIR_KEYWORDS):
        return CalendarType.BEURZEN
    return CalendarType.NATIONAAL


def strip_template_tokens(text: str) -> str:
    """Remove leftover prompt placeholders such as {TIME} from a description."""
    cleaned = TEMPLATE_TOKEN.sub('', text)
    cleaned = UNDEFINED_PARAMETER.sub('', cleaned)
    cleaned = INLINE_WHITESPACE.sub(' ', cleaned)
    return '\n'.join(line.strip() for line in cleaned.splitlines()).strip()


def parse_json_object(text: str) -> Optional[Dict[str, Any]]:
    """
    Find the JSON object in a model response.

    Tries the whole text first, then the span from the first '{' to the
    last '}'. Returns None when neither yields a JSON object.
    """
    stripped = (text or '').strip()
    if not stripped:
        return None

    try:
        parsed = json.loads(stripped)
        if isinstance(parsed, dict):
            return parsed
    except json.JSONDecodeError:
        pass

    match = JSON_OBJECT.search(stripped)
    if not match:
        logger.debug("No JSON object found in response")
        return None

    try:
        parsed = json.loads(match.group(0))
    except json.JSONDecodeError as e:
        logger.debug(f"Embedded JSON did not parse: {e}")
        return None

    return parsed if isinstance(parsed, dict) else None


def fields_needing_review(event: EventDetails) -> List[str]:
    """Names of the fields that still hold placeholder values."""
    fields = []
    if event.title in (PLACEHOLDER_TITLE, FALLBACK_TITLE):
        fields.append('title')
    if event.location == PLACEHOLDER_LOCATION:
        fields.append('location')
    if event.description in (PLACEHOLDER_DESCRIPTION, FALLBACK_DESCRIPTION):
        fields.append('description')
    return fields


def _text(value: Any) -> Optional[str]:
    if isinstance(value, str) and value.strip():
        return value.strip()
    return None


class ResponseNormalizer:
    """Converts model response text into EventDetails."""

    def __init__(self, event_timezone: str = "Europe/Amsterdam", permissive: bool = False,
                 clock: Optional[Callable[[], datetime]] = None):
        """
        Initialize the normalizer.

        Args:
            event_timezone: Timezone used for naive poster times and defaults
            permissive: Build a minimal record from plain text when no JSON is found
            clock: Returns the current time; defaults to the system clock
        """
        self.timezone = dateutil_tz.gettz(event_timezone)
        if self.timezone is None:
            raise ValueError(f"Unknown timezone: {event_timezone}")
        self.permissive = permissive
        self.clock = clock or (lambda: datetime.now(timezone.utc))

    def normalize(self, raw_text: str) -> Optional[EventDetails]:
        """
        Normalize one model response.

        Returns:
            EventDetails, or None when the response is unusable
        """
        payload = parse_json_object(raw_text)

        if payload is None:
            if self.permissive and (raw_text or '').strip():
                logger.info("No JSON in response, building record from plain text")
                return self.build_event(self._payload_from_text(raw_text.strip()), raw_text)
            return None

        if not any(key in payload for key in EVENT_KEYS):
            logger.warning(f"JSON object has none of the event fields: {sorted(payload)}")
            return None

        return self.build_event(payload, raw_text)

    def build_event(self, payload: Dict[str, Any], raw_text: str = "") -> EventDetails:
        """Apply the field repair rules to a parsed payload."""
        title = _text(payload.get('title'))
        location = _text(payload.get('location'))
        description = _text(payload.get('description'))
        raw = _text(payload.get('rawText')) or (raw_text or '').strip() or None

        if description:
            description = strip_template_tokens(description) or None

        start = self.parse_timestamp(payload.get('startDate'))
        if start is None:
            start = self.default_start()

        end = self.parse_timestamp(payload.get('endDate'))
        if end is None or end <= start:
            end = start + DEFAULT_DURATION

        calendar_value = payload.get('calendar')
        if calendar_value not in (None, ''):
            calendar = CalendarType.from_label(calendar_value)
            if calendar is None:
                logger.debug(f"Unknown calendar '{calendar_value}', using {CalendarType.NATIONAAL.value}")
                calendar = CalendarType.NATIONAAL
        else:
            calendar = classify_calendar(' '.join(filter(None, [title, location, description, raw])))

        return EventDetails(
            title=title or PLACEHOLDER_TITLE,
            start_date=start,
            end_date=end,
            location=location or PLACEHOLDER_LOCATION,
            description=description or PLACEHOLDER_DESCRIPTION,
            calendar=calendar,
            raw_text=raw,
        )

    def parse_timestamp(self, value: Any) -> Optional[datetime]:
        """
        Parse a timestamp string; naive values are read in the event timezone.

        Returns:
            UTC datetime or None when the value is missing or unparsable
        """
        text = _text(value)
        if text is None:
            return None

        try:
            parsed = dateutil_parser.isoparse(text)
        except (ValueError, OverflowError):
            try:
                today = self.clock().astimezone(self.timezone).replace(
                    hour=0, minute=0, second=0, microsecond=0, tzinfo=None)
                parsed = dateutil_parser.parse(text, dayfirst=True, default=today)
            except (ValueError, OverflowError):
                logger.debug(f"Unparsable timestamp: {text!r}")
                return None

        if parsed.tzinfo is None:
            parsed = parsed.replace(tzinfo=self.timezone)

        # The end date is derived by adding DEFAULT_DURATION, so it must fit too
        try:
            result = to_utc(parsed)
            result + DEFAULT_DURATION
        except OverflowError:
            logger.debug(f"Timestamp out of range: {text!r}")
            return None
        return result

    def default_start(self) -> datetime:
        """Next week at 09:00 event time."""
        local = self.clock().astimezone(self.timezone) + DEFAULT_LEAD_TIME
        local = local.replace(hour=DEFAULT_START_HOUR, minute=0, second=0, microsecond=0)
        return to_utc(local)

    def fallback_event(self) -> EventDetails:
        """The placeholder record returned when no provider produced anything usable."""
        start = to_utc(self.clock()).replace(microsecond=0) + DEFAULT_LEAD_TIME
        return EventDetails(
            title=FALLBACK_TITLE,
            start_date=start,
            end_date=start + DEFAULT_DURATION,
            location=PLACEHOLDER_LOCATION,
            description=FALLBACK_DESCRIPTION,
            calendar=CalendarType.NATIONAAL,
        )

    def _payload_from_text(self, text: str) -> Dict[str, Any]:
        """Build a payload from labelled lines, or from the first line and a summary."""
        title = _labelled(text, 'title', 'titel', 'event')
        if title is None:
            title = next((line.strip(' #*') for line in text.splitlines() if line.strip(' #*')), None)

        description = _labelled(text, 'description', 'beschrijving')
        if description is None:
            description = text[:SUMMARY_LENGTH] + '...' if len(text) > SUMMARY_LENGTH else text

        payload = {
            'title': title,
            'location': _labelled(text, 'location', 'locatie', 'venue'),
            'description': description,
            'rawText': text,
        }

        date = _labelled(text, 'date', 'datum')
        if date:
            time = _labelled(text, 'time', 'tijd') or f"{DEFAULT_START_HOUR:02d}:00"
            payload['startDate'] = f"{date} {time}"

        return payload


def _labelled(text: str, *labels: str) -> Optional[str]:
    for label in labels:
        match = re.search(rf'^[\s*\-#]*{label}\**\s*:\**\s*(.+)$', text, re.IGNORECASE | re.MULTILINE)
        if match and match.group(1).strip():
            return match.group(1).strip()
    return None
