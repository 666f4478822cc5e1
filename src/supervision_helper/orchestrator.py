"""Pipeline orchestrator for the record -> feedback -> visual wizard.

Holds one session's PipelineState and moves it through the stages by
calling GenerationClient. The orchestrator does no I/O of its own; callers
observe progress by re-reading ``state`` after each operation settles.
"""

import logging
from typing import Optional

from .client import GenerationClient
from .config import Config
from .errors import classify_error, user_message
from .models.schemas import (
    ContentKind,
    DesignConfig,
    ErrorCategory,
    FontStyle,
    PipelineStage,
    PipelineState,
    TextColor,
    TextPosition,
)
from .styles import StyleKey, build_visual_prompt, parse_style

logger = logging.getLogger(__name__)


class PipelineOrchestrator:
    """Stage machine over PipelineState.

    initial -> record -> feedback -> visual, with back-navigation from
    visual to feedback, reset to initial from anywhere, and in-place
    refinement of the record, feedback and image prompt.

    Only one operation may be in flight at a time; a second call made while
    one is pending is ignored.
    """

    def __init__(
        self,
        config: Config,
        client: Optional[GenerationClient] = None,
        credential: Optional[str] = None,
    ):
        """Initialize the orchestrator.

        Args:
            config: Application configuration
            client: Optional generation client (created from config if not provided)
            credential: Optional session API key, preferred over the process default
        """
        self.config = config
        self.client = client or GenerationClient.from_config(config)
        self.credential = credential
        self.state = PipelineState(selected_style=config.pipeline.default_style)
        self._in_flight = False

    @property
    def is_busy(self) -> bool:
        return self._in_flight

    @property
    def stage(self) -> PipelineStage:
        return self.state.stage

    def _begin(self, operation: str) -> bool:
        if self._in_flight:
            logger.warning(f"Ignoring {operation}: another operation is still running")
            return False
        self._in_flight = True
        self.state.clear_error()
        return True

    def _requires_stage(self, operation: str, *stages: PipelineStage) -> bool:
        if self.state.stage in stages:
            return True
        logger.warning(
            f"Ignoring {operation} in stage '{self.state.stage.value}' "
            f"(allowed: {', '.join(s.value for s in stages)})"
        )
        return False

    def _fail(self, operation: str, error: Exception) -> None:
        """Record a classified failure; the stage is left unchanged."""
        category = classify_error(error)
        logger.error(f"{operation} failed ({category.value}): {error}")
        self.state.error_category = category
        self.state.error = user_message(category, operation)
        if category == ErrorCategory.AUTHENTICATION:
            self.state.needs_credential = True

    def _succeed(self) -> None:
        self.state.needs_credential = False

    async def generate_record(self, raw_input: Optional[str] = None) -> PipelineState:
        """Produce the formal record from the raw notes.

        Args:
            raw_input: Notes to use; defaults to the notes already in state

        Returns:
            The updated state (stage ``record`` on success)
        """
        if raw_input is None:
            raw_input = self.state.raw_input
        if not raw_input.strip():
            logger.debug("generate_record skipped: empty input")
            return self.state
        if not self._requires_stage("generate_record", PipelineStage.INITIAL):
            return self.state
        if not self._begin("generate_record"):
            return self.state

        self.state.raw_input = raw_input
        try:
            record = await self.client.produce_record(self.state.raw_input, self.credential)
            self.state.formal_record = record
            self.state.stage = PipelineStage.RECORD
            self._succeed()
            logger.info(f"Formal record ready ({len(record)} chars)")
        except Exception as e:
            self._fail("generate_record", e)
        finally:
            self._in_flight = False

        return self.state

    async def generate_feedback(self) -> PipelineState:
        """Derive the feedback card from the current record."""
        if not self._requires_stage("generate_feedback", PipelineStage.RECORD):
            return self.state
        if not self._begin("generate_feedback"):
            return self.state

        try:
            feedback = await self.client.produce_feedback(self.state.formal_record, self.credential)
            if feedback.is_empty:
                logger.warning("Feedback arrived empty; the card text will need manual editing")
            self.state.feedback = feedback
            self.state.stage = PipelineStage.FEEDBACK
            self._succeed()
            logger.info(f"Feedback ready (theme: {feedback.theme})")
        except Exception as e:
            self._fail("generate_feedback", e)
        finally:
            self._in_flight = False

        return self.state

    async def generate_visual(self, style: Optional[str | StyleKey] = None) -> PipelineState:
        """Build the image prompt and generate the card illustration.

        The stage moves to ``visual`` even when the provider returns no image.

        Args:
            style: Optional style key; replaces the selected style

        Raises:
            ValueError: If style is not a known style key
        """
        if not self._requires_stage("generate_visual", PipelineStage.FEEDBACK):
            return self.state
        if style is not None:
            self.select_style(style)
        if not self._begin("generate_visual"):
            return self.state

        try:
            style_key = parse_style(self.state.selected_style)
            theme = (self.state.feedback.theme if self.state.feedback else None) or "warmth"
            prompt = build_visual_prompt(style_key, theme)

            image = await self.client.produce_image(theme, style_key, prompt, self.credential)

            self.state.image_prompt = prompt
            self.state.card_image = image
            self.state.stage = PipelineStage.VISUAL
            self._succeed()
            if image is None:
                logger.warning("Image generation returned no image")
            else:
                logger.info(f"Card image ready (style: {style_key.value})")
        except Exception as e:
            self._fail("generate_visual", e)
        finally:
            self._in_flight = False

        return self.state

    async def refine(self, instruction: Optional[str] = None) -> PipelineState:
        """Revise the record or feedback text in place.

        Args:
            instruction: Natural-language edit request; defaults to
                state.refinement_instruction
        """
        if instruction is None:
            instruction = self.state.refinement_instruction
        if not instruction.strip():
            logger.debug("refine skipped: empty instruction")
            return self.state
        if not self._requires_stage("refine", PipelineStage.RECORD, PipelineStage.FEEDBACK):
            return self.state
        if self.state.stage == PipelineStage.FEEDBACK and self.state.feedback is None:
            logger.warning("Ignoring refine: no feedback to revise")
            return self.state
        if not self._begin("refine"):
            return self.state

        self.state.refinement_instruction = instruction
        try:
            if self.state.stage == PipelineStage.RECORD:
                refined = await self.client.refine(
                    self.state.formal_record, instruction, ContentKind.RECORD, self.credential
                )
                self.state.formal_record = refined
            else:
                refined = await self.client.refine(
                    self.state.feedback.full_text, instruction, ContentKind.FEEDBACK, self.credential
                )
                self.state.feedback = self.state.feedback.with_full_text(refined)
            self.state.refinement_instruction = ""
            self._succeed()
            logger.info(f"Refined {self.state.stage.value} text ({len(refined)} chars)")
        except Exception as e:
            self._fail("refine", e)
        finally:
            self._in_flight = False

        return self.state

    async def refine_image(self, instruction: Optional[str] = None) -> PipelineState:
        """Refine the image prompt, then regenerate the illustration.

        This is a two-step update and is not atomic: when the second call
        fails the refined prompt is kept and ``card_image`` stays cleared.

        Args:
            instruction: Edit request for the prompt; defaults to
                state.image_refinement_instruction
        """
        if instruction is None:
            instruction = self.state.image_refinement_instruction
        if not instruction.strip() or not self.state.image_prompt:
            logger.debug("refine_image skipped: empty instruction or no image prompt")
            return self.state
        if not self._requires_stage("refine_image", PipelineStage.VISUAL):
            return self.state
        if not self._begin("refine_image"):
            return self.state

        self.state.image_refinement_instruction = instruction
        try:
            refined_prompt = await self.client.refine_image_prompt(
                self.state.image_prompt, instruction, self.credential
            )
            if refined_prompt:
                self.state.image_prompt = refined_prompt
                self.state.card_image = None
                self.state.card_image = await self.client.produce_image(
                    "", self.state.selected_style, refined_prompt, self.credential
                )
            else:
                logger.warning("Prompt refinement returned nothing; keeping the current prompt")
            self.state.image_refinement_instruction = ""
            self._succeed()
        except Exception as e:
            self._fail("refine_image", e)
        finally:
            self._in_flight = False

        return self.state

    def back_to_feedback(self) -> PipelineState:
        """Return from visual to feedback, keeping the image and prompt."""
        if self._requires_stage("back_to_feedback", PipelineStage.VISUAL):
            self.state.stage = PipelineStage.FEEDBACK
        return self.state

    def reset(self) -> PipelineState:
        """Discard everything and start over from the initial stage."""
        self.state.stage = PipelineStage.INITIAL
        self.state.raw_input = ""
        self.state.formal_record = ""
        self.state.feedback = None
        self.state.image_prompt = None
        self.state.card_image = None
        self.state.refinement_instruction = ""
        self.state.image_refinement_instruction = ""
        self.state.clear_error()
        logger.info("Pipeline reset")
        return self.state

    def select_style(self, style: str | StyleKey) -> StyleKey:
        """Choose the illustration style for the next generate_visual.

        Raises:
            ValueError: If style is not a known style key
        """
        key = parse_style(style)
        self.state.selected_style = key.value
        return key

    def edit_record(self, text: str) -> PipelineState:
        """Replace the record with a manual edit."""
        if self._requires_stage("edit_record", PipelineStage.RECORD):
            self.state.formal_record = text
        return self.state

    def edit_feedback_text(self, text: str) -> PipelineState:
        """Replace the card text with a manual edit."""
        if self._requires_stage("edit_feedback_text", PipelineStage.FEEDBACK, PipelineStage.VISUAL):
            if self.state.feedback is not None:
                self.state.feedback = self.state.feedback.with_full_text(text)
        return self.state

    def update_design(
        self,
        text_color: Optional[str | TextColor] = None,
        text_position: Optional[str | TextPosition] = None,
        font_style: Optional[str | FontStyle] = None,
    ) -> PipelineState:
        """Override the suggested layout hints for the card.

        Raises:
            ValueError: If a value is outside its enumeration
        """
        if self.state.feedback is None:
            logger.debug("update_design skipped: no feedback yet")
            return self.state

        current = self.state.feedback.design_config or DesignConfig(
            text_color=TextColor.DARK,
            text_position=TextPosition.CENTER,
            font_style=FontStyle.SERIF,
        )
        design = DesignConfig(
            text_color=TextColor(text_color) if text_color else current.text_color,
            text_position=TextPosition(text_position) if text_position else current.text_position,
            font_style=FontStyle(font_style) if font_style else current.font_style,
        )
        self.state.feedback = self.state.feedback.model_copy(update={"design_config": design})
        return self.state
