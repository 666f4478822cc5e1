"""Data models for the Supervision Helper pipeline."""

from .schemas import (
    ContentKind,
    DesignConfig,
    ErrorCategory,
    FeedbackResult,
    FontStyle,
    GenerationRequest,
    ImageConfig,
    OperationKind,
    PipelineStage,
    PipelineState,
    RetryPolicy,
    TextColor,
    TextPosition,
    join_feedback_text,
)

__all__ = [
    "ContentKind",
    "DesignConfig",
    "ErrorCategory",
    "FeedbackResult",
    "FontStyle",
    "GenerationRequest",
    "ImageConfig",
    "OperationKind",
    "PipelineStage",
    "PipelineState",
    "RetryPolicy",
    "TextColor",
    "TextPosition",
    "join_feedback_text",
]
