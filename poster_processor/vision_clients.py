"""
Vision model clients used by the provider sequencer.

Each client exposes ``complete(model_id, prompt, image)`` returning the
model's text answer, and raises ProviderError for anything that keeps it
from producing one.
"""

import asyncio
import logging
from typing import Any, Dict, List

import aiohttp
import anthropic

from .imaging import PreparedImage


logger = logging.getLogger(__name__)

MAX_TOKENS = 1000
TEMPERATURE = 0.1  # Low temperature for consistent output
PROBE_MODEL = "anthropic/claude-3-haiku"
VISION_MODEL_MARKERS = ('vision', 'gpt-4o', 'claude', 'gemini')


class ProviderError(Exception):
    """A provider could not deliver a response."""


class OpenRouterVisionClient:
    """OpenRouter chat-completions client for vision models."""

    backend = "openrouter"
    API_URL = "https://openrouter.ai/api/v1/chat/completions"
    MODELS_URL = "https://openrouter.ai/api/v1/models"

    def __init__(self, session: aiohttp.ClientSession, api_key: str,
                 referer: str = "http://localhost:3001", title: str = "HDCN Poster Processor",
                 timeout: float = 60.0):
        """
        Initialize OpenRouter client.

        Args:
            session: Shared aiohttp session, owned by the caller
            api_key: OpenRouter API key
            referer: Value for the HTTP-Referer attribution header
            title: Value for the X-Title attribution header
            timeout: Per-request timeout in seconds
        """
        self.session = session
        self.api_key = api_key
        self.referer = referer
        self.title = title
        self.timeout = aiohttp.ClientTimeout(total=timeout)

    def _headers(self) -> Dict[str, str]:
        return {
            'Authorization': f'Bearer {self.api_key}',
            'Content-Type': 'application/json',
            'HTTP-Referer': self.referer,
            'X-Title': self.title,
        }

    async def complete(self, model_id: str, prompt: str, image: PreparedImage) -> str:
        """
        Send one prompt plus image to a model.

        Returns:
            The model's answer text

        Raises:
            ProviderError: on transport failure, non-200 status or empty answer
        """
        body = {
            'model': model_id,
            'messages': [{
                'role': 'user',
                'content': [
                    {'type': 'text', 'text': prompt},
                    {'type': 'image_url',
                     'image_url': {'url': f'data:{image.mime_type};base64,{image.data}'}},
                ],
            }],
            'max_tokens': MAX_TOKENS,
            'temperature': TEMPERATURE,
        }
        result = await self._post(model_id, body)
        return self._extract_content(model_id, result)

    async def _post(self, model_id: str, body: Dict[str, Any]) -> Dict[str, Any]:
        if not self.api_key:
            raise ProviderError("OpenRouter API key is missing")

        try:
            async with self.session.post(self.API_URL, json=body, headers=self._headers(),
                                         timeout=self.timeout) as response:
                if response.status != 200:
                    error_text = await response.text()
                    raise ProviderError(f"{model_id} returned HTTP {response.status}: {error_text[:300]}")
                return await response.json(content_type=None)
        except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as e:
            raise ProviderError(f"Request to {model_id} failed: {e}") from e

    @staticmethod
    def _extract_content(model_id: str, result: Any) -> str:
        try:
            content = result['choices'][0]['message']['content']
        except (KeyError, IndexError, TypeError):
            raise ProviderError(f"Invalid response structure from {model_id}")

        if isinstance(content, list):
            content = ''.join(part.get('text', '') for part in content if isinstance(part, dict))

        if not isinstance(content, str) or not content.strip():
            raise ProviderError(f"Empty response from {model_id}")

        return content

    async def list_vision_models(self) -> List[Dict[str, str]]:
        """List OpenRouter models that accept images, as id/name pairs."""
        try:
            async with self.session.get(self.MODELS_URL, headers=self._headers(),
                                        timeout=self.timeout) as response:
                if response.status != 200:
                    raise ProviderError(f"Model listing returned HTTP {response.status}")
                models = await response.json(content_type=None)
        except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as e:
            raise ProviderError(f"Model listing failed: {e}") from e

        return [
            {'id': model['id'], 'name': model.get('name', model['id'])}
            for model in models.get('data', [])
            if any(marker in model.get('id', '') for marker in VISION_MODEL_MARKERS)
        ]

    async def check_connection(self) -> None:
        """Send a tiny text-only request to confirm the key works."""
        body = {
            'model': PROBE_MODEL,
            'messages': [{'role': 'user', 'content': 'Say "API test successful"'}],
            'max_tokens': 10,
        }
        await self._post(PROBE_MODEL, body)


class AnthropicVisionClient:
    """Direct Anthropic API client for Claude vision models."""

    backend = "anthropic"
    PROBE_MODEL = "claude-3-haiku-20240307"

    def __init__(self, api_key: str, timeout: float = 60.0):
        """
        Initialize Claude client.

        Args:
            api_key: Anthropic API key
            timeout: Per-request timeout in seconds
        """
        self.client = anthropic.AsyncAnthropic(api_key=api_key, timeout=timeout)

    async def complete(self, model_id: str, prompt: str, image: PreparedImage) -> str:
        """
        Analyze a poster image with a Claude model.

        Raises:
            ProviderError: on API failure or an answer without text
        """
        try:
            response = await self.client.messages.create(
                model=model_id,
                max_tokens=MAX_TOKENS,
                temperature=TEMPERATURE,
                messages=[{
                    "role": "user",
                    "content": [
                        {
                            "type": "image",
                            "source": {
                                "type": "base64",
                                "media_type": image.mime_type,
                                "data": image.data
                            }
                        },
                        {
                            "type": "text",
                            "text": prompt
                        }
                    ]
                }]
            )
        except anthropic.APIError as e:
            raise ProviderError(f"Claude request to {model_id} failed: {e}") from e

        text = ''.join(block.text for block in response.content if block.type == 'text')
        if not text.strip():
            raise ProviderError(f"Empty response from {model_id}")
        return text

    async def check_connection(self) -> None:
        """Make a minimal request to test the API key."""
        try:
            await self.client.messages.create(
                model=self.PROBE_MODEL,
                max_tokens=10,
                messages=[{"role": "user", "content": "Test"}]
            )
        except anthropic.APIError as e:
            raise ProviderError(f"Anthropic API check failed: {e}") from e

    async def close(self) -> None:
        await self.client.close()
