"""
Provider sequencer: tries vision models one after another until one
yields a usable event record.
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence, Tuple, Union

from .data_models import EventDetails, ProviderAttempt, ProviderSpec
from .imaging import PreparedImage, prepare_image
from .normalizer import ResponseNormalizer
from .prompts import get_prompt
from .vision_clients import ProviderError


logger = logging.getLogger(__name__)

Candidate = Union[ProviderSpec, str]


@dataclass(frozen=True)
class Ok:
    """A provider produced a usable record."""
    event: EventDetails
    attempts: Tuple[ProviderAttempt, ...] = ()


@dataclass(frozen=True)
class Retry:
    """A single attempt failed; the next candidate should be tried."""
    reason: str
    raw_text: Optional[str] = None


@dataclass(frozen=True)
class Exhausted:
    """Every candidate failed."""
    attempts: Tuple[ProviderAttempt, ...] = ()


def order_candidates(candidates: Sequence[Candidate]) -> List[ProviderSpec]:
    """
    Turn a candidate list into ProviderSpecs sorted by priority.

    Bare model ids get their list position as priority. Ties keep list order.
    """
    specs = [
        candidate if isinstance(candidate, ProviderSpec)
        else ProviderSpec(model_id=candidate, priority=index)
        for index, candidate in enumerate(candidates)
    ]
    return sorted(specs, key=lambda spec: spec.priority)


@dataclass
class ProviderSequencer:
    """
    Runs the candidate list strictly in order, one request per candidate.

    Attributes:
        clients: Vision clients keyed by backend name
        normalizer: Converts response text into EventDetails
        candidates: Default candidate list
        locale: Prompt variant to send
        timeout: Overall deadline in seconds for ``extract``; None for no deadline
    """
    clients: Dict[str, object]
    normalizer: ResponseNormalizer
    candidates: Sequence[Candidate] = field(default_factory=list)
    locale: str = "nl"
    timeout: Optional[float] = None

    async def attempt(self, spec: ProviderSpec, prompt: str,
                      image: PreparedImage) -> Union[Ok, Retry]:
        """Try one candidate once."""
        client = self.clients.get(spec.backend)
        if client is None:
            return Retry(f"No client configured for backend '{spec.backend}'")

        try:
            raw_text = await client.complete(spec.model_id, prompt, image)
        except ProviderError as e:
            return Retry(str(e))
        except Exception as e:
            logger.exception(f"Unexpected error from {spec.model_id}")
            return Retry(f"Unexpected error: {e}")

        try:
            event = self.normalizer.normalize(raw_text)
        except Exception as e:
            logger.exception(f"Normalizing the answer from {spec.model_id} failed")
            return Retry(f"Normalization error: {e}", raw_text)

        if event is None:
            return Retry("Response could not be parsed into an event", raw_text)
        return Ok(event, (ProviderAttempt(model_id=spec.model_id, raw_text=raw_text),))

    async def run(self, image_bytes: bytes, mime_type: str,
                  candidates: Optional[Sequence[Candidate]] = None) -> Union[Ok, Exhausted]:
        """
        Walk the candidate list until a provider succeeds.

        Args:
            image_bytes: Poster image contents
            mime_type: MIME type of the image
            candidates: Candidate list overriding the default one

        Returns:
            Ok with the event and attempt log, or Exhausted with the attempt log
        """
        specs = order_candidates(candidates if candidates is not None else self.candidates)
        prompt = get_prompt(self.locale)
        image = await asyncio.to_thread(prepare_image, image_bytes, mime_type)
        attempts: List[ProviderAttempt] = []

        for spec in specs:
            logger.info(f"Trying model: {spec.model_id}")
            started = time.time()
            outcome = await self.attempt(spec, prompt, image)
            elapsed = time.time() - started

            if isinstance(outcome, Ok):
                attempts.extend(outcome.attempts)
                logger.info(f"Model {spec.model_id} succeeded in {elapsed:.2f}s: {outcome.event.title}")
                return Ok(outcome.event, tuple(attempts))

            attempts.append(ProviderAttempt(model_id=spec.model_id, raw_text=outcome.raw_text,
                                            error=outcome.reason))
            logger.warning(f"Model {spec.model_id} failed after {elapsed:.2f}s: {outcome.reason}")

        logger.error(f"All {len(specs)} models failed")
        return Exhausted(tuple(attempts))

    async def extract(self, image_bytes: bytes, mime_type: str,
                      candidates: Optional[Sequence[Candidate]] = None) -> EventDetails:
        """
        Extract an event from a poster. Never raises.

        Returns:
            The first usable record, or the placeholder record when all
            candidates fail, the deadline passes or preparation fails
        """
        try:
            outcome = await asyncio.wait_for(self.run(image_bytes, mime_type, candidates),
                                             timeout=self.timeout)
        except asyncio.TimeoutError:
            logger.error(f"Extraction did not finish within {self.timeout}s")
            outcome = Exhausted()
        except Exception:
            logger.exception("Extraction failed")
            outcome = Exhausted()

        if isinstance(outcome, Ok):
            return outcome.event

        logger.info("Using fallback placeholder record")
        return self.normalizer.fallback_event()
