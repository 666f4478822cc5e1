"""Shared fixtures: a scripted in-memory backend and a recording sleep."""

from typing import Optional

import pytest

from supervision_helper.client import GenerationClient
from supervision_helper.config import Config
from supervision_helper.llm import BaseGenerationBackend, RetryingInvoker
from supervision_helper.models import GenerationRequest, OperationKind, RetryPolicy


class FakeBackend(BaseGenerationBackend):
    """Backend that replays scripted results per operation kind.

    Each script entry is either a return value or an exception instance to
    raise. When a script runs out, the last entry is repeated.
    """

    name = "fake"

    def __init__(self, text=None, json=None, image=None):
        self.scripts = {
            OperationKind.PLAIN_TEXT: list(text or ["text"]),
            OperationKind.STRUCTURED_JSON: list(json or ["{}"]),
            OperationKind.IMAGE: list(image or ["data:image/png;base64,AAAA"]),
        }
        self.requests: list[GenerationRequest] = []
        self.credentials: list[str] = []

    def _next(self, request: GenerationRequest, credential: str) -> Optional[str]:
        self.requests.append(request)
        self.credentials.append(credential)
        script = self.scripts[request.operation_kind]
        entry = script.pop(0) if len(script) > 1 else script[0]
        if isinstance(entry, BaseException):
            raise entry
        return entry

    async def generate_text(self, request, credential):
        return self._next(request, credential)

    async def generate_json(self, request, credential):
        return self._next(request, credential)

    async def generate_image(self, request, credential):
        return self._next(request, credential)

    def calls(self, kind: OperationKind) -> list[GenerationRequest]:
        return [r for r in self.requests if r.operation_kind == kind]


class SleepRecorder:
    """Async sleep replacement that records requested delays."""

    def __init__(self):
        self.delays: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)


@pytest.fixture
def sleep_recorder():
    return SleepRecorder()


@pytest.fixture
def invoker(sleep_recorder):
    return RetryingInvoker(RetryPolicy(), sleep=sleep_recorder)


@pytest.fixture
def make_client(invoker):
    """Build a GenerationClient around a FakeBackend."""

    def _make(backend: FakeBackend, default_credential: Optional[str] = "env-key") -> GenerationClient:
        return GenerationClient(
            backend=backend,
            text_model="text-model",
            image_model="image-model",
            invoker=invoker,
            retry_policy=RetryPolicy(),
            default_credential=default_credential,
        )

    return _make


@pytest.fixture
def config(monkeypatch):
    """Default config isolated from the caller's environment."""
    for name in ("GEMINI_API_KEY", "OPENAI_API_KEY"):
        monkeypatch.delenv(name, raising=False)
    return Config()
