"""Generation client: builds one request per operation and extracts typed results."""

import json
import logging
from pathlib import Path
from typing import Any, Optional

from pydantic import ValidationError

from .config import Config, resolve_credential
from .llm import BaseGenerationBackend, RetryingInvoker, create_backend
from .models.schemas import (
    ContentKind,
    DesignConfig,
    FeedbackResult,
    GenerationRequest,
    ImageConfig,
    OperationKind,
    RetryPolicy,
)
from .styles import StyleKey, build_generation_prompt, parse_style

logger = logging.getLogger(__name__)

PROMPTS_DIR = Path(__file__).parent / "prompts"

FEEDBACK_SCHEMA: dict[str, Any] = {
    "type": "object",
    "properties": {
        "feedbackCard": {"type": "string"},
        "healingSentence": {"type": "string"},
        "theme": {"type": "string"},
        "designConfig": {
            "type": "object",
            "properties": {
                "textColor": {"type": "string", "enum": ["light", "dark"]},
                "textPosition": {"type": "string", "enum": ["top", "center", "bottom"]},
                "fontStyle": {"type": "string", "enum": ["rounded", "serif", "handwritten"]},
            },
            "required": ["textColor", "textPosition", "fontStyle"],
        },
    },
    "required": ["feedbackCard", "healingSentence", "theme", "designConfig"],
}

CARD_IMAGE_CONFIG = ImageConfig(aspect_ratio="3:4", resolution_tier="1K")

_DEFAULT_PROMPTS = {
    "record": "請將以下督導會議內容整理成 Markdown 格式的社工個別督導記錄表。\n\n{raw_input}",
    "feedback": "請將以下督導紀錄轉譯為寫給社工的回饋卡片，以 JSON 格式回傳。\n\n{formal_record}",
    "refine_record": "請根據使用者的指令微調目前的督導紀錄。",
    "refine_feedback": "請根據使用者的指令微調目前的回饋卡片內容，字數控制在 50-80 字。",
    "refine_image_prompt": "請根據使用者的指令微調目前的英文繪圖提示詞，只輸出最終的提示詞。",
}


def _load_prompt(name: str) -> str:
    """Load a prompt template from the prompts directory."""
    path = PROMPTS_DIR / f"{name}.txt"
    if path.exists():
        return path.read_text(encoding="utf-8").strip()
    logger.warning(f"Prompt template not found at {path}, using default")
    return _DEFAULT_PROMPTS[name]


class GenerationClient:
    """Issues record, feedback, image and refinement requests.

    Each public method builds exactly one GenerationRequest and sends it
    through the RetryingInvoker. Provider errors are not translated here;
    they propagate unchanged once retries are exhausted.
    """

    def __init__(
        self,
        backend: BaseGenerationBackend,
        text_model: str,
        image_model: str,
        invoker: Optional[RetryingInvoker] = None,
        retry_policy: Optional[RetryPolicy] = None,
        default_credential: Optional[str] = None,
    ):
        """Initialize the client.

        Args:
            backend: Provider backend that executes requests
            text_model: Model identifier for text and JSON requests
            image_model: Model identifier for image requests
            invoker: Retry wrapper (a default one is created if omitted)
            retry_policy: Policy applied to every call
            default_credential: Process-wide fallback API key
        """
        self.backend = backend
        self.text_model = text_model
        self.image_model = image_model
        self.invoker = invoker or RetryingInvoker()
        self.retry_policy = retry_policy
        self.default_credential = default_credential

        self.record_prompt = _load_prompt("record")
        self.feedback_prompt = _load_prompt("feedback")
        self.refine_prompts = {
            ContentKind.RECORD: _load_prompt("refine_record"),
            ContentKind.FEEDBACK: _load_prompt("refine_feedback"),
        }
        self.refine_image_prompt_system = _load_prompt("refine_image_prompt")

    @classmethod
    def from_config(
        cls,
        config: Config,
        backend: Optional[BaseGenerationBackend] = None,
        invoker: Optional[RetryingInvoker] = None,
    ) -> "GenerationClient":
        """Create a client from application configuration."""
        llm_config = config.llm
        if backend is None:
            if llm_config.backend == "openai":
                backend = create_backend("openai", base_url=llm_config.openai.base_url)
            else:
                backend = create_backend("gemini")

        return cls(
            backend=backend,
            text_model=llm_config.text_model,
            image_model=llm_config.image_model,
            invoker=invoker,
            retry_policy=config.retry.to_policy(),
            default_credential=llm_config.default_credential(),
        )

    async def _call(self, request: GenerationRequest, credential: Optional[str]) -> Optional[str]:
        resolved = resolve_credential(credential, self.default_credential)
        return await self.invoker.invoke(
            lambda: self.backend.execute(request, resolved),
            self.retry_policy,
        )

    async def produce_record(self, raw_input: str, credential: Optional[str] = None) -> str:
        """Turn raw supervision notes into a formal markdown record.

        Args:
            raw_input: Transcript or notes from the supervision session
            credential: Optional per-call API key

        Returns:
            Markdown record, or an empty string if the provider returned no text
        """
        logger.info(f"Producing formal record from {len(raw_input)} chars of notes")

        request = GenerationRequest(
            operation_kind=OperationKind.PLAIN_TEXT,
            model=self.text_model,
            prompt=self.record_prompt.format(raw_input=raw_input),
        )
        return await self._call(request, credential) or ""

    async def produce_feedback(self, formal_record: str, credential: Optional[str] = None) -> FeedbackResult:
        """Derive the feedback card from a formal record.

        Args:
            formal_record: Markdown record from produce_record
            credential: Optional per-call API key

        Returns:
            FeedbackResult; all fields absent if the payload was unreadable
        """
        logger.info("Producing feedback card")

        request = GenerationRequest(
            operation_kind=OperationKind.STRUCTURED_JSON,
            model=self.text_model,
            prompt=self.feedback_prompt.format(formal_record=formal_record),
            output_schema=FEEDBACK_SCHEMA,
        )
        payload = await self._call(request, credential)
        return self._parse_feedback(payload)

    def _parse_feedback(self, payload: Optional[str]) -> FeedbackResult:
        """Parse the structured payload into a FeedbackResult.

        Unreadable payloads are not raised: they become an empty result so the
        caller can still show (and edit) the card.
        """
        try:
            data = json.loads(payload or "{}")
        except json.JSONDecodeError as e:
            logger.warning(f"Feedback payload is not valid JSON, using empty result: {e}")
            logger.debug(f"Raw payload: {payload}")
            return FeedbackResult.empty()

        if not isinstance(data, dict):
            logger.warning(f"Feedback payload is a {type(data).__name__}, not an object; using empty result")
            return FeedbackResult.empty()

        try:
            design = data.get("designConfig")
            return FeedbackResult.from_fields(
                feedback_card=data.get("feedbackCard"),
                healing_sentence=data.get("healingSentence"),
                theme=data.get("theme"),
                design_config=DesignConfig.model_validate(design) if design else None,
            )
        except (ValidationError, TypeError) as e:
            logger.warning(f"Feedback payload does not match the schema, using empty result: {e}")
            return FeedbackResult.empty()

    async def produce_image(
        self,
        theme: Optional[str],
        style_key: str | StyleKey = StyleKey.WARM_BOOK,
        raw_prompt: Optional[str] = None,
        credential: Optional[str] = None,
    ) -> Optional[str]:
        """Generate the card illustration.

        Args:
            theme: English theme phrase from the feedback
            style_key: Key into the style table
            raw_prompt: Prompt used verbatim instead of the style template
            credential: Optional per-call API key

        Returns:
            Image as a base64 data URI, or None if no image was returned

        Raises:
            ValueError: If style_key is not a known style
        """
        style = parse_style(style_key)
        prompt = build_generation_prompt(theme, style, raw_prompt)
        logger.info(f"Producing card image (style: {style.value}, override: {bool(raw_prompt)})")

        request = GenerationRequest(
            operation_kind=OperationKind.IMAGE,
            model=self.image_model,
            prompt=prompt,
            image_config=CARD_IMAGE_CONFIG,
        )
        return await self._call(request, credential)

    async def refine(
        self,
        current_content: str,
        instruction: str,
        content_kind: ContentKind,
        credential: Optional[str] = None,
    ) -> str:
        """Revise a record or feedback text according to an instruction."""
        logger.info(f"Refining {ContentKind(content_kind).value}: {instruction[:100]}")

        request = GenerationRequest(
            operation_kind=OperationKind.PLAIN_TEXT,
            model=self.text_model,
            prompt=f"目前的內容：\n{current_content}\n\n指令：\n{instruction}",
            system_instruction=self.refine_prompts[ContentKind(content_kind)],
        )
        return await self._call(request, credential) or ""

    async def refine_image_prompt(
        self,
        current_prompt: str,
        instruction: str,
        credential: Optional[str] = None,
    ) -> str:
        """Revise an English image prompt according to an instruction."""
        logger.info(f"Refining image prompt: {instruction[:100]}")

        request = GenerationRequest(
            operation_kind=OperationKind.PLAIN_TEXT,
            model=self.text_model,
            prompt=f"目前的提示詞：\n{current_prompt}\n\n指令：\n{instruction}",
            system_instruction=self.refine_image_prompt_system,
        )
        return await self._call(request, credential) or ""
