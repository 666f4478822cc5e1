"""OpenAI API backend for generation operations."""

import copy
import logging
from typing import Any, Optional

from openai import AsyncOpenAI

from ..errors import AuthenticationError
from ..models.schemas import GenerationRequest
from .base import BaseGenerationBackend, to_data_uri

logger = logging.getLogger(__name__)

# Nearest supported image size per aspect ratio
IMAGE_SIZES = {
    "1:1": "1024x1024",
    "3:4": "1024x1536",
    "9:16": "1024x1536",
    "4:3": "1536x1024",
    "16:9": "1536x1024",
}


def _strict_schema(schema: dict[str, Any]) -> dict[str, Any]:
    """Add additionalProperties=false to every object, as strict mode requires."""
    schema = copy.deepcopy(schema)
    if schema.get("type") == "object":
        schema["additionalProperties"] = False
        for name, prop in schema.get("properties", {}).items():
            schema["properties"][name] = _strict_schema(prop)
    return schema


class OpenAIBackend(BaseGenerationBackend):
    """OpenAI API backend implementation.

    Chat completions serve text and structured output; the images endpoint
    serves illustrations.
    """

    name = "openai"

    def __init__(self, base_url: Optional[str] = None):
        """Initialize OpenAI backend.

        Args:
            base_url: Optional API base URL (for compatible gateways)
        """
        self.base_url = base_url
        logger.info("Initialized OpenAI backend")

    def _client(self, credential: str) -> AsyncOpenAI:
        if not credential:
            raise AuthenticationError(
                "No OpenAI API key configured. Set OPENAI_API_KEY or pass an API key."
            )
        return AsyncOpenAI(api_key=credential, base_url=self.base_url)

    @staticmethod
    def _messages(request: GenerationRequest) -> list[dict[str, str]]:
        messages = []

        if request.system_instruction:
            messages.append({"role": "system", "content": request.system_instruction})

        messages.append({"role": "user", "content": request.prompt})
        return messages

    async def generate_text(self, request: GenerationRequest, credential: str) -> Optional[str]:
        """Generate text completion using the chat completions API."""
        client = self._client(credential)

        logger.debug(f"Generating with {request.model}")
        logger.debug(f"LLM Input - System: {request.system_instruction}")
        logger.debug(
            f"LLM Input - Prompt: {(request.prompt[:500] + '...') if len(request.prompt) > 500 else request.prompt}"
        )

        response = await client.chat.completions.create(
            model=request.model,
            messages=self._messages(request),
        )
        result = response.choices[0].message.content

        if result:
            logger.debug(f"LLM Output ({len(result)} chars): {(result[:500] + '...') if len(result) > 500 else result}")
        return result

    async def generate_json(self, request: GenerationRequest, credential: str) -> Optional[str]:
        """Generate a JSON payload using strict json_schema output."""
        client = self._client(credential)

        response = await client.chat.completions.create(
            model=request.model,
            messages=self._messages(request),
            response_format={
                "type": "json_schema",
                "json_schema": {
                    "name": "structured_output",
                    "schema": _strict_schema(request.output_schema or {}),
                    "strict": True,
                },
            },
        )
        result = response.choices[0].message.content
        logger.debug(f"JSON Output: {result}")
        return result

    async def generate_image(self, request: GenerationRequest, credential: str) -> Optional[str]:
        """Generate an image and return it as a data URI."""
        client = self._client(credential)
        size = IMAGE_SIZES.get(request.image_config.aspect_ratio, "1024x1536")

        kwargs: dict[str, Any] = {
            "model": request.model,
            "prompt": request.prompt,
            "size": size,
            "n": 1,
        }
        # gpt-image models always return base64; DALL-E needs asking
        if request.model.startswith("dall-e"):
            kwargs["response_format"] = "b64_json"

        logger.debug(f"Generating image with {request.model} at {size}")
        response = await client.images.generate(**kwargs)

        for image in response.data or []:
            if image.b64_json:
                return to_data_uri(image.b64_json, "image/png")

        logger.warning("Image response contained no image data")
        return None
