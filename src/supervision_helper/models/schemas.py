"""Pydantic data models for the Supervision Helper pipeline."""

from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator


class OperationKind(str, Enum):
    """Kind of call issued to the generation service."""

    PLAIN_TEXT = "plain_text"
    STRUCTURED_JSON = "structured_json"
    IMAGE = "image"


class ContentKind(str, Enum):
    """Which stage text a refinement targets."""

    RECORD = "record"
    FEEDBACK = "feedback"


class ImageConfig(BaseModel):
    """Image generation settings."""

    model_config = ConfigDict(frozen=True)

    aspect_ratio: str = Field(default="3:4", description="Output aspect ratio")
    resolution_tier: str = Field(default="1K", description="Resolution tier (1K, 2K, 4K)")


class GenerationRequest(BaseModel):
    """A single request to the generation service. Immutable once built."""

    model_config = ConfigDict(frozen=True)

    operation_kind: OperationKind
    model: str = Field(..., description="Model identifier")
    prompt: str = Field(..., description="Prompt body sent as user content")
    system_instruction: Optional[str] = Field(None, description="System-role instruction")
    output_schema: Optional[dict[str, Any]] = Field(None, description="JSON schema for structured output")
    image_config: Optional[ImageConfig] = Field(None, description="Image generation settings")

    @model_validator(mode="after")
    def check_kind_requirements(self) -> "GenerationRequest":
        """Structured requests need a schema, image requests need an image config."""
        if self.operation_kind == OperationKind.STRUCTURED_JSON and not self.output_schema:
            raise ValueError("structured_json requests require an output_schema")
        if self.operation_kind == OperationKind.IMAGE and self.image_config is None:
            raise ValueError("image requests require an image_config")
        return self


class RetryPolicy(BaseModel):
    """Backoff policy for rate-limited calls."""

    model_config = ConfigDict(frozen=True)

    max_attempts: int = Field(default=3, ge=1, le=10, description="Total attempts including the first")
    backoff_base: float = Field(default=2.0, gt=0, description="Delay before the first retry, in seconds")
    jitter: float = Field(default=1.0, ge=0, description="Upper bound of random extra delay, in seconds")


class TextColor(str, Enum):
    LIGHT = "light"
    DARK = "dark"


class TextPosition(str, Enum):
    TOP = "top"
    CENTER = "center"
    BOTTOM = "bottom"


class FontStyle(str, Enum):
    ROUNDED = "rounded"
    SERIF = "serif"
    HANDWRITTEN = "handwritten"


class DesignConfig(BaseModel):
    """Layout hints suggested alongside the feedback card."""

    model_config = ConfigDict(populate_by_name=True)

    text_color: TextColor = Field(..., alias="textColor")
    text_position: TextPosition = Field(..., alias="textPosition")
    font_style: FontStyle = Field(..., alias="fontStyle")


def join_feedback_text(feedback_card: Optional[str], healing_sentence: Optional[str]) -> str:
    """Join card text and healing sentence with a blank line, skipping absent parts."""
    return "\n\n".join(part for part in (feedback_card, healing_sentence) if part)


class FeedbackResult(BaseModel):
    """Feedback card derived from a formal record.

    Every field is optional so that a malformed provider payload can be
    represented as an all-absent result instead of an exception.
    """

    model_config = ConfigDict(populate_by_name=True)

    feedback_card: Optional[str] = Field(None, alias="feedbackCard", description="50-80 character card text")
    healing_sentence: Optional[str] = Field(None, alias="healingSentence")
    theme: Optional[str] = Field(None, description="English keyword phrase for the illustration")
    design_config: Optional[DesignConfig] = Field(None, alias="designConfig")
    full_text: str = Field(default="", alias="fullText", description="Editable card text")

    @classmethod
    def from_fields(
        cls,
        feedback_card: Optional[str] = None,
        healing_sentence: Optional[str] = None,
        theme: Optional[str] = None,
        design_config: Optional[DesignConfig] = None,
    ) -> "FeedbackResult":
        """Build a result with full_text derived from the two text fields."""
        return cls(
            feedback_card=feedback_card,
            healing_sentence=healing_sentence,
            theme=theme,
            design_config=design_config,
            full_text=join_feedback_text(feedback_card, healing_sentence),
        )

    @classmethod
    def empty(cls) -> "FeedbackResult":
        """Result used when the provider payload could not be read."""
        return cls.from_fields()

    @property
    def is_empty(self) -> bool:
        return (
            self.feedback_card is None
            and self.healing_sentence is None
            and self.theme is None
            and self.design_config is None
        )

    def with_text_fields(
        self,
        feedback_card: Optional[str] = None,
        healing_sentence: Optional[str] = None,
    ) -> "FeedbackResult":
        """Return a copy with new text fields and a recomputed full_text."""
        card = feedback_card if feedback_card is not None else self.feedback_card
        healing = healing_sentence if healing_sentence is not None else self.healing_sentence
        return self.model_copy(
            update={
                "feedback_card": card,
                "healing_sentence": healing,
                "full_text": join_feedback_text(card, healing),
            }
        )

    def with_full_text(self, full_text: str) -> "FeedbackResult":
        """Return a copy whose editable text was replaced by a refinement."""
        return self.model_copy(update={"full_text": full_text})


class PipelineStage(str, Enum):
    """Active step of the record -> feedback -> visual wizard."""

    INITIAL = "initial"
    RECORD = "record"
    FEEDBACK = "feedback"
    VISUAL = "visual"


class ErrorCategory(str, Enum):
    """User-facing classification of a failed operation."""

    RATE_LIMIT = "rate_limit"
    AUTHENTICATION = "authentication"
    MALFORMED_RESPONSE = "malformed_response"
    TRANSPORT = "transport"
    VALIDATION = "validation"


class PipelineState(BaseModel):
    """State of one user session. Owned by the orchestrator."""

    raw_input: str = Field(default="", description="Free-text supervision notes")
    formal_record: str = Field(default="", description="Structured markdown record")
    feedback: Optional[FeedbackResult] = None
    image_prompt: Optional[str] = None
    card_image: Optional[str] = Field(None, description="Card illustration as a data URI")
    stage: PipelineStage = Field(default=PipelineStage.INITIAL)
    selected_style: str = Field(default="auto", description="Key into the image style table")
    refinement_instruction: str = ""
    image_refinement_instruction: str = ""
    error: Optional[str] = Field(None, description="Message from the last failed operation")
    error_category: Optional[ErrorCategory] = None
    needs_credential: bool = Field(False, description="Set when the provider rejected the API key")

    def clear_error(self) -> None:
        self.error = None
        self.error_category = None
