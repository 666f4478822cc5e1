"""Abstract base class for generation backends."""

import base64
from abc import ABC, abstractmethod
from typing import Optional

from ..models.schemas import GenerationRequest, OperationKind


class BaseGenerationBackend(ABC):
    """Abstract base class defining the generation service interface.

    A backend turns one GenerationRequest into exactly one provider call and
    extracts the typed result. Backends never retry; retries happen in
    RetryingInvoker.
    """

    name: str = "base"

    async def execute(self, request: GenerationRequest, credential: str) -> Optional[str]:
        """Dispatch a request on its operation kind.

        Args:
            request: The request to issue
            credential: Resolved API key (may be empty)

        Returns:
            Text, a JSON payload string, or an image data URI; None if the
            provider produced nothing usable
        """
        if request.operation_kind == OperationKind.PLAIN_TEXT:
            return await self.generate_text(request, credential)
        if request.operation_kind == OperationKind.STRUCTURED_JSON:
            return await self.generate_json(request, credential)
        return await self.generate_image(request, credential)

    @abstractmethod
    async def generate_text(self, request: GenerationRequest, credential: str) -> Optional[str]:
        """Generate a plain-text completion.

        Returns:
            Response text, or None if the provider returned no text
        """
        pass

    @abstractmethod
    async def generate_json(self, request: GenerationRequest, credential: str) -> Optional[str]:
        """Generate a completion constrained to request.output_schema.

        Returns:
            Raw JSON text as returned by the provider (unparsed)
        """
        pass

    @abstractmethod
    async def generate_image(self, request: GenerationRequest, credential: str) -> Optional[str]:
        """Generate an image.

        Returns:
            Base64 data URI of the first image, or None if none was returned
        """
        pass


def to_data_uri(data: bytes | str, mime_type: Optional[str] = None) -> str:
    """Encode image bytes (or an already base64 string) as a data URI."""
    if isinstance(data, bytes):
        data = base64.b64encode(data).decode("utf-8")
    return f"data:{mime_type or 'image/png'};base64,{data}"
