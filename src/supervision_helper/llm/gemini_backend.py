"""Google Gemini backend using the google-genai SDK."""

import logging
from typing import Any, Optional

from google import genai
from google.genai import types

from ..errors import AuthenticationError
from ..models.schemas import GenerationRequest
from .base import BaseGenerationBackend, to_data_uri

logger = logging.getLogger(__name__)


def to_gemini_schema(schema: dict[str, Any]) -> types.Schema:
    """Convert a plain JSON-schema dict into a google-genai Schema.

    Only the keywords the response schemas here use are carried over:
    type, properties, required, enum and description.
    """
    kwargs: dict[str, Any] = {"type": str(schema.get("type", "string")).upper()}
    if "properties" in schema:
        kwargs["properties"] = {
            name: to_gemini_schema(prop) for name, prop in schema["properties"].items()
        }
    if "required" in schema:
        kwargs["required"] = list(schema["required"])
    if "enum" in schema:
        kwargs["enum"] = [str(v) for v in schema["enum"]]
    if "description" in schema:
        kwargs["description"] = schema["description"]
    return types.Schema(**kwargs)


class GeminiBackend(BaseGenerationBackend):
    """Gemini backend implementation.

    A fresh client is created for every call so the per-call credential is
    always the one used.
    """

    name = "gemini"

    def __init__(self, http_options: Optional[dict[str, Any]] = None):
        """Initialize Gemini backend.

        Args:
            http_options: Optional google-genai HTTP options (base_url, timeout)
        """
        self.http_options = http_options
        logger.info("Initialized Gemini backend")

    def _client(self, credential: str) -> genai.Client:
        if not credential:
            raise AuthenticationError(
                "No Gemini API key configured. Set GEMINI_API_KEY or pass an API key."
            )
        if self.http_options:
            return genai.Client(api_key=credential, http_options=self.http_options)
        return genai.Client(api_key=credential)

    async def _generate(
        self,
        request: GenerationRequest,
        credential: str,
        config: Optional[types.GenerateContentConfig],
    ) -> types.GenerateContentResponse:
        client = self._client(credential)

        logger.debug(f"Generating with {request.model} ({request.operation_kind.value})")
        logger.debug(f"LLM Input - System: {request.system_instruction}")
        logger.debug(
            f"LLM Input - Prompt: {(request.prompt[:500] + '...') if len(request.prompt) > 500 else request.prompt}"
        )

        return await client.aio.models.generate_content(
            model=request.model,
            contents=request.prompt,
            config=config,
        )

    async def generate_text(self, request: GenerationRequest, credential: str) -> Optional[str]:
        """Generate text with an optional system instruction."""
        config = None
        if request.system_instruction:
            config = types.GenerateContentConfig(system_instruction=request.system_instruction)

        response = await self._generate(request, credential, config)
        result = response.text

        if result:
            logger.debug(f"LLM Output ({len(result)} chars): {(result[:500] + '...') if len(result) > 500 else result}")
        return result

    async def generate_json(self, request: GenerationRequest, credential: str) -> Optional[str]:
        """Generate a JSON payload constrained by the response schema."""
        config = types.GenerateContentConfig(
            system_instruction=request.system_instruction,
            response_mime_type="application/json",
            response_schema=to_gemini_schema(request.output_schema or {}),
        )

        response = await self._generate(request, credential, config)
        result = response.text
        logger.debug(f"JSON Output: {result}")
        return result

    async def generate_image(self, request: GenerationRequest, credential: str) -> Optional[str]:
        """Generate an image and return the first inline image part."""
        image_config = request.image_config
        config = types.GenerateContentConfig(
            image_config=types.ImageConfig(
                aspect_ratio=image_config.aspect_ratio,
                image_size=image_config.resolution_tier,
            ),
        )

        response = await self._generate(request, credential, config)

        candidates = response.candidates or []
        if not candidates or candidates[0].content is None:
            logger.warning("Image response contained no candidates")
            return None

        for part in candidates[0].content.parts or []:
            if part.inline_data and part.inline_data.data:
                logger.debug(f"Found inline image ({part.inline_data.mime_type})")
                return to_data_uri(part.inline_data.data, part.inline_data.mime_type)

        logger.warning("Image response contained no inline image data")
        return None
