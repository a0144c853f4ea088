# ai.py
"""
Generative-AI capability client for merchmate.
Handles:
- JSON-mode chat completions used to classify user messages.
- Text-to-image generation for product designs.
- Vision analysis of generated designs (best effort, callers may ignore failures).

Talks to any OpenAI-compatible API over httpx. Every call is bounded by
settings.AI_TIMEOUT; a timeout is reported like any other remote failure.
"""

import logging
from typing import Any, Dict, List, Optional

import httpx

from .errors import AIServiceError, AnalysisFailure
from .models import Message
from .settings import settings

log = logging.getLogger(__name__)

# Print-oriented wrapper for every design prompt. The lineage keeps the user-level prompt.
DESIGN_PROMPT_TEMPLATE = (
    "A single, high-resolution, print-quality standalone graphic of: '{prompt}'. "
    "Centered, plain background, suitable for printing on merchandise. No clothing, models or mockups."
)
ANALYSIS_INSTRUCTION = "Analyze this image and suggest any needed improvements for product printing:"


class AIClient:
    """Async adapter over the chat, image and vision endpoints."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.api_key = api_key if api_key is not None else settings.AI_API_KEY
        self.base_url = (base_url or settings.AI_API_URL).rstrip("/")
        self.timeout = timeout or settings.AI_TIMEOUT
        self._transport = transport
        if not self.api_key:
            log.warning("AI_API_KEY is not set. AI calls will be rejected by the provider.")

    def _headers(self) -> Dict[str, str]:
        return {"Authorization": f"Bearer {self.api_key}", "Content-Type": "application/json"}

    async def _post(self, path: str, payload: Dict[str, Any], label: str) -> Dict[str, Any]:
        url = f"{self.base_url}{path}"
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                response = await client.post(url, headers=self._headers(), json=payload)
                response.raise_for_status()
            return response.json()
        except httpx.TimeoutException as e:
            log.error(f"{label} timed out after {self.timeout}s: {e}")
            raise AIServiceError(f"{label} timed out") from e
        except httpx.HTTPStatusError as e:
            log.error(f"{label} API Error: {e.response.status_code} - {e.response.text[:200]}")
            raise AIServiceError(f"{label} Service Error ({e.response.status_code})") from e
        except httpx.RequestError as e:
            log.error(f"Network error calling {label}: {e}")
            raise AIServiceError(f"{label} Service Network Error") from e
        except ValueError as e:
            log.error(f"{label} returned a non-JSON body: {e}")
            raise AIServiceError(f"{label} returned an unreadable response") from e

    async def generate_chat_response(self, messages: List[Message]) -> str:
        """Returns the raw text of a JSON-mode completion. Parsing is the caller's job."""
        payload = {
            "model": settings.AI_CHAT_MODEL,
            "messages": [{"role": m.role, "content": m.content} for m in messages],
            "response_format": {"type": "json_object"},
        }
        data = await self._post("/chat/completions", payload, "Chat")
        try:
            content = data["choices"][0]["message"].get("content")
        except (KeyError, IndexError, TypeError, AttributeError) as e:
            log.error(f"Chat completion had an unexpected shape: {str(data)[:200]}")
            raise AIServiceError("Chat completion had an unexpected shape") from e
        return content or ""

    async def generate_image(self, prompt: str) -> str:
        """Generates one image and returns its URL."""
        payload = {
            "model": settings.AI_IMAGE_MODEL,
            "prompt": DESIGN_PROMPT_TEMPLATE.format(prompt=prompt),
            "n": 1,
            "size": settings.AI_IMAGE_SIZE,
        }
        data = await self._post("/images/generations", payload, "Image Generation")
        try:
            images = data.get("data") or []
            url = images[0].get("url") if images else None
        except (AttributeError, IndexError, TypeError, KeyError) as e:
            log.error(f"Image generation had an unexpected shape: {str(data)[:200]}")
            raise AIServiceError("Image generation had an unexpected shape") from e
        if not url:
            log.error("Image generation returned no URL.")
            raise AIServiceError("No image URL returned from image generation")
        log.info(f"Generated design image (prompt length {len(prompt)})")
        return url

    async def analyze_image(self, image_url: str) -> str:
        """Asks the vision model for print-readiness notes. Raises AnalysisFailure on any error."""
        payload = {
            "model": settings.AI_VISION_MODEL,
            "messages": [
                {
                    "role": "user",
                    "content": [
                        {"type": "text", "text": ANALYSIS_INSTRUCTION},
                        {"type": "image_url", "image_url": {"url": image_url}},
                    ],
                }
            ],
        }
        try:
            data = await self._post("/chat/completions", payload, "Image Analysis")
            return data["choices"][0]["message"].get("content") or "No analysis available"
        except AIServiceError as e:
            raise AnalysisFailure(str(e)) from e
        except (KeyError, IndexError, TypeError, AttributeError) as e:
            raise AnalysisFailure("Image analysis had an unexpected shape") from e
