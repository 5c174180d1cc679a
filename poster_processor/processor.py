"""
Main poster processor orchestrator that coordinates extraction and publishing.
"""

import asyncio
import csv
import json
import logging
import mimetypes
import time
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

import aiohttp

from .config import Settings
from .data_models import DuplicateCheck, EventDetails, PublishResult, VerificationResult
from .google_session import GoogleSession
from .normalizer import ResponseNormalizer, fields_needing_review
from .publisher import EventPublisher
from .sequencer import Candidate, ProviderSequencer
from .sinks import CalendarSink, DriveSink, PhotosSink
from .verification import verify_setup
from .vision_clients import AnthropicVisionClient, OpenRouterVisionClient


logger = logging.getLogger(__name__)


class PosterProcessor:
    """
    Extracts events from poster images and publishes reviewed events.

    Use as an async context manager; it owns the HTTP session shared by the
    vision clients and the Google sinks.
    """

    def __init__(self, settings: Settings):
        """
        Initialize poster processor.

        Args:
            settings: Runtime configuration
        """
        self.settings = settings
        self.session: Optional[aiohttp.ClientSession] = None
        self.google: Optional[GoogleSession] = None
        self.openrouter: Optional[OpenRouterVisionClient] = None
        self.anthropic: Optional[AnthropicVisionClient] = None
        self.sequencer: Optional[ProviderSequencer] = None
        self.publisher: Optional[EventPublisher] = None
        self.normalizer = ResponseNormalizer(
            event_timezone=settings.event_timezone,
            permissive=settings.permissive_parsing,
        )

    async def __aenter__(self):
        """Async context manager entry."""
        settings = self.settings
        self.session = aiohttp.ClientSession()

        self.openrouter = OpenRouterVisionClient(
            self.session, settings.openrouter_api_key,
            referer=settings.app_referer, title=settings.app_title,
            timeout=settings.request_timeout,
        )
        clients: Dict[str, Any] = {OpenRouterVisionClient.backend: self.openrouter}
        if settings.anthropic_api_key:
            self.anthropic = AnthropicVisionClient(settings.anthropic_api_key,
                                                   timeout=settings.request_timeout)
            clients[AnthropicVisionClient.backend] = self.anthropic

        self.sequencer = ProviderSequencer(
            clients=clients,
            normalizer=self.normalizer,
            candidates=settings.candidate_models,
            locale=settings.prompt_locale,
            timeout=settings.extraction_timeout,
        )

        self.google = GoogleSession(settings.google_client_id, settings.google_client_secret,
                                    settings.google_refresh_token, session=self.session)
        self.publisher = EventPublisher(
            drive=DriveSink(self.google, settings.google_drive_folder_id),
            calendar=CalendarSink(self.google, settings.calendar_ids, settings.event_timezone),
            photos=PhotosSink(self.google, settings.google_photos_album_id),
        )

        logger.info("PosterProcessor initialized successfully")
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        """Async context manager exit."""
        if self.anthropic:
            await self.anthropic.close()
        if self.session:
            await self.session.close()
            self.session = None

    def _read_image(self, image_path: str) -> tuple:
        path = Path(image_path)
        if not path.is_file():
            raise FileNotFoundError(f"Image file not found: {image_path}")

        size = path.stat().st_size
        if size > self.settings.max_upload_mb * 1024 * 1024:
            raise ValueError(f"Image is {size / 1024 / 1024:.1f} MB, limit is {self.settings.max_upload_mb} MB")

        mime_type = mimetypes.guess_type(path.name)[0] or 'image/jpeg'
        return path.read_bytes(), mime_type

    async def extract(self, image_bytes: bytes, mime_type: str,
                      candidates: Optional[Sequence[Candidate]] = None) -> EventDetails:
        """
        Extract an event from image bytes. Always returns a record.

        Args:
            image_bytes: Poster image contents
            mime_type: MIME type of the image
            candidates: Model candidates overriding the configured list
        """
        start_time = time.time()
        event = await self.sequencer.extract(image_bytes, mime_type, candidates)

        review = fields_needing_review(event)
        if review:
            logger.info(f"Fields needing review: {', '.join(review)}")
        logger.info(f"Extraction completed in {time.time() - start_time:.2f} seconds")
        return event

    async def analyze_poster(self, image_path: str,
                             candidates: Optional[Sequence[Candidate]] = None) -> EventDetails:
        """
        Analyze a poster image file.

        Raises:
            FileNotFoundError: if the image does not exist
            ValueError: if the image exceeds the upload limit
        """
        image_bytes, mime_type = self._read_image(image_path)
        logger.info(f"Starting analysis of: {image_path}")
        return await self.extract(image_bytes, mime_type, candidates)

    async def analyze_multiple_posters(self, image_paths: List[str], max_concurrent: int = 3,
                                       candidates: Optional[Sequence[Candidate]] = None) -> Dict[str, EventDetails]:
        """
        Analyze multiple posters concurrently. Each poster gets its own sequencer run.

        Returns:
            EventDetails keyed by image path, for every poster that could be read
        """
        logger.info(f"Starting analysis of {len(image_paths)} posters")

        semaphore = asyncio.Semaphore(max_concurrent)

        async def analyze_with_semaphore(path: str) -> EventDetails:
            async with semaphore:
                return await self.analyze_poster(path, candidates)

        tasks = [analyze_with_semaphore(path) for path in image_paths]
        results = await asyncio.gather(*tasks, return_exceptions=True)

        events = {}
        for path, result in zip(image_paths, results):
            if isinstance(result, EventDetails):
                events[path] = result
            elif isinstance(result, Exception):
                logger.error(f"Error analyzing {path}: {result}")

        logger.info(f"Successfully analyzed {len(events)} out of {len(image_paths)} posters")
        return events

    async def check_duplicate(self, filename: str) -> DuplicateCheck:
        """Check whether a poster with this file name was uploaded before."""
        return await self.publisher.drive.find_duplicates(filename)

    async def publish(self, event: EventDetails, image_path: str) -> PublishResult:
        """Publish a reviewed event together with its poster image."""
        image_bytes, mime_type = self._read_image(image_path)
        return await self.publisher.publish(event, image_bytes, Path(image_path).name, mime_type)

    async def list_models(self) -> List[Dict[str, str]]:
        """Vision-capable models available on OpenRouter."""
        return await self.openrouter.list_vision_models()

    async def verify_setup(self) -> List[VerificationResult]:
        """Check configuration and access to every external service."""
        return await verify_setup(self.settings, self.google, self.publisher.drive,
                                  self.publisher.calendar, self.openrouter, self.anthropic)

    def export_results(self, event: EventDetails, output_path: str,
                       format: str = 'json') -> bool:
        """
        Export an extracted event to file.

        Args:
            event: Event to export
            output_path: Output file path
            format: Export format ('json' or 'csv')

        Returns:
            True if export successful
        """
        try:
            output_file = Path(output_path)
            output_file.parent.mkdir(parents=True, exist_ok=True)

            if format.lower() == 'json':
                with open(output_file, 'w', encoding='utf-8') as f:
                    json.dump(event.to_dict(), f, ensure_ascii=False, indent=2)

            elif format.lower() == 'csv':
                row = event.to_dict()
                with open(output_file, 'w', newline='', encoding='utf-8') as f:
                    writer = csv.DictWriter(f, fieldnames=list(row.keys()))
                    writer.writeheader()
                    writer.writerow(row)

            else:
                raise ValueError(f"Unsupported format: {format}")

            logger.info(f"Results exported to: {output_path}")
            return True

        except (OSError, ValueError) as e:
            logger.error(f"Export failed: {e}")
            return False


def load_event(path: str) -> EventDetails:
    """Read a reviewed event from a JSON file written by export_results."""
    with open(path, 'r', encoding='utf-8') as f:
        return EventDetails.from_dict(json.load(f))
