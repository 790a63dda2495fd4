"""
Gemini Client — the generative collaborator behind every AI action.

Two calls, both async:
    generate_json(prompt, schema)   structured text, decoded from JSON
    generate_image(prompt, ...)     raw image bytes

The availability gate is computed once, at construction, from whether an
API key (or an injected client) exists. When it is False every call
raises GenerationDisabledError before touching the network.
"""

import json
import logging
from typing import Any, Dict, Optional

from google import genai
from google.genai import types as genai_types

from agents.tools.gemini_errors import (
    GenerationDisabledError,
    GenerationCallError,
    GenerationParseError,
)
from tools.rate_limiter import IMAGE, TEXT, gemini_quota

logger = logging.getLogger('GeminiClient')

TEXT_MODEL = "gemini-2.5-flash"
IMAGE_MODEL = "imagen-3.0-generate-002"

DEFAULT_FAILURE = "The muses are silent. Please try again."


class GeminiClient:
    """Thin async wrapper over google-genai with a startup availability gate."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        client: Any = None,
        text_model: str = TEXT_MODEL,
        image_model: str = IMAGE_MODEL,
    ):
        """
        Args:
            api_key: Gemini API key. None disables every AI action.
            client: Pre-built client (tests inject a mock here).
            text_model: Model for structured JSON generation.
            image_model: Model for image generation.
        """
        self.text_model = text_model
        self.image_model = image_model
        if client is not None:
            self.client = client
        elif api_key:
            self.client = genai.Client(api_key=api_key)
        else:
            self.client = None
            logger.warning("API key not set. Gemini features are disabled.")

    @property
    def available(self) -> bool:
        return self.client is not None

    def require(self) -> None:
        """Fail fast when the gate is closed."""
        if not self.available:
            raise GenerationDisabledError()

    async def generate_json(
        self,
        prompt: str,
        schema: Dict[str, Any],
        failure_message: str = DEFAULT_FAILURE,
    ) -> Any:
        """Ask for JSON conforming to `schema` and return it decoded."""
        self.require()
        try:
            await gemini_quota.acquire(TEXT)
            response = await self.client.aio.models.generate_content(
                model=self.text_model,
                contents=prompt,
                config=genai_types.GenerateContentConfig(
                    response_mime_type="application/json",
                    response_schema=schema,
                ),
            )
            text = response.text
        except Exception as e:
            logger.error(f"JSON generation failed: {e}", exc_info=True)
            raise GenerationCallError(failure_message) from e

        try:
            return json.loads(text)
        except (TypeError, ValueError) as e:
            logger.error(f"Model returned malformed JSON: {str(text)[:200]!r}")
            raise GenerationParseError(failure_message) from e

    async def generate_image(
        self,
        prompt: str,
        aspect_ratio: str = "1:1",
        mime_type: str = "image/png",
        failure_message: str = DEFAULT_FAILURE,
    ) -> bytes:
        """Generate exactly one image and return its bytes."""
        self.require()
        try:
            await gemini_quota.acquire(IMAGE)
            response = await self.client.aio.models.generate_images(
                model=self.image_model,
                prompt=prompt,
                config=genai_types.GenerateImagesConfig(
                    number_of_images=1,
                    output_mime_type=mime_type,
                    aspect_ratio=aspect_ratio,
                ),
            )
            image_bytes = response.generated_images[0].image.image_bytes
        except Exception as e:
            logger.error(f"Image generation failed: {e}", exc_info=True)
            raise GenerationCallError(failure_message) from e

        if not image_bytes:
            logger.warning("No image data in response")
            raise GenerationCallError(failure_message)
        return image_bytes
