"""Tests for the pipeline stage machine.

The orchestrator runs against a GenerationClient wrapping FakeBackend, so
every provider interaction is scripted and inspectable.
"""

import asyncio
import json

import pytest

from supervision_helper.errors import AuthenticationError, RateLimitError
from supervision_helper.models import (
    ErrorCategory,
    FontStyle,
    OperationKind,
    PipelineStage,
    TextColor,
    TextPosition,
)
from supervision_helper.orchestrator import PipelineOrchestrator
from supervision_helper.styles import PORTRAIT_DIRECTIVE

from conftest import FakeBackend

FEEDBACK_PAYLOAD = json.dumps({
    "feedbackCard": "你的陪伴很溫暖",
    "healingSentence": "慢慢來也沒關係",
    "theme": "gentle light",
    "designConfig": {"textColor": "dark", "textPosition": "center", "fontStyle": "serif"},
})


@pytest.fixture
def backend():
    return FakeBackend(
        text=["# 督導紀錄"],
        json=[FEEDBACK_PAYLOAD],
        image=["data:image/png;base64,AAAA"],
    )


@pytest.fixture
def orchestrator(config, backend, make_client):
    return PipelineOrchestrator(config, client=make_client(backend))


async def advance_to(orchestrator, stage):
    """Drive the pipeline forward until it reaches stage."""
    await orchestrator.generate_record("notes from today")
    if stage == PipelineStage.RECORD:
        return
    await orchestrator.generate_feedback()
    if stage == PipelineStage.FEEDBACK:
        return
    await orchestrator.generate_visual()


# ---------------------------------------------------------------------------
# generate_record
# ---------------------------------------------------------------------------


class TestGenerateRecord:
    @pytest.mark.asyncio
    async def test_success_moves_to_record(self, orchestrator):
        state = await orchestrator.generate_record("notes from today")

        assert state.stage == PipelineStage.RECORD
        assert state.formal_record == "# 督導紀錄"
        assert state.raw_input == "notes from today"
        assert state.error is None

    @pytest.mark.asyncio
    @pytest.mark.parametrize("raw", ["", "   ", "\n\t"])
    async def test_blank_input_is_noop(self, orchestrator, backend, raw):
        state = await orchestrator.generate_record(raw)

        assert state.stage == PipelineStage.INITIAL
        assert state.error is None
        assert backend.requests == []

    @pytest.mark.asyncio
    async def test_failure_keeps_stage_and_sets_error(self, config, make_client):
        backend = FakeBackend(text=[RuntimeError("socket closed")])
        orch = PipelineOrchestrator(config, client=make_client(backend))

        state = await orch.generate_record("notes")

        assert state.stage == PipelineStage.INITIAL
        assert state.error_category == ErrorCategory.TRANSPORT
        assert state.error == "生成紀錄時發生錯誤，請稍後再試。"
        assert not orch.is_busy

    @pytest.mark.asyncio
    async def test_rate_limit_exhaustion_is_classified(self, config, make_client):
        backend = FakeBackend(text=[RateLimitError("429")])
        orch = PipelineOrchestrator(config, client=make_client(backend))

        state = await orch.generate_record("notes")

        assert state.error_category == ErrorCategory.RATE_LIMIT
        assert len(backend.requests) == 3

    @pytest.mark.asyncio
    async def test_auth_failure_requests_credential(self, config, make_client):
        backend = FakeBackend(text=[AuthenticationError("Requested entity was not found")])
        orch = PipelineOrchestrator(config, client=make_client(backend))

        state = await orch.generate_record("notes")

        assert state.error_category == ErrorCategory.AUTHENTICATION
        assert state.needs_credential is True

    @pytest.mark.asyncio
    async def test_success_clears_previous_error(self, config, make_client):
        backend = FakeBackend(text=[RuntimeError("flaky"), "# ok"])
        orch = PipelineOrchestrator(config, client=make_client(backend))

        await orch.generate_record("notes")
        assert orch.state.error is not None

        state = await orch.generate_record()
        assert state.error is None
        assert state.stage == PipelineStage.RECORD

    @pytest.mark.asyncio
    async def test_session_credential_is_forwarded(self, config, backend, make_client):
        orch = PipelineOrchestrator(config, client=make_client(backend), credential="session-key")

        await orch.generate_record("notes")

        assert backend.credentials == ["session-key"]


# ---------------------------------------------------------------------------
# generate_feedback
# ---------------------------------------------------------------------------


class TestGenerateFeedback:
    @pytest.mark.asyncio
    async def test_success_moves_to_feedback(self, orchestrator):
        await advance_to(orchestrator, PipelineStage.FEEDBACK)
        state = orchestrator.state

        assert state.stage == PipelineStage.FEEDBACK
        assert state.feedback.full_text == "你的陪伴很溫暖\n\n慢慢來也沒關係"
        assert state.feedback.theme == "gentle light"

    @pytest.mark.asyncio
    async def test_ignored_outside_record_stage(self, orchestrator, backend):
        state = await orchestrator.generate_feedback()

        assert state.stage == PipelineStage.INITIAL
        assert backend.requests == []

    @pytest.mark.asyncio
    async def test_malformed_payload_still_advances(self, config, make_client):
        backend = FakeBackend(text=["# record"], json=["oops"])
        orch = PipelineOrchestrator(config, client=make_client(backend))
        await orch.generate_record("notes")

        state = await orch.generate_feedback()

        assert state.stage == PipelineStage.FEEDBACK
        assert state.feedback.is_empty
        assert state.feedback.full_text == ""


# ---------------------------------------------------------------------------
# generate_visual
# ---------------------------------------------------------------------------


class TestGenerateVisual:
    @pytest.mark.asyncio
    async def test_auto_style_prompt(self, orchestrator, backend):
        await advance_to(orchestrator, PipelineStage.VISUAL)
        state = orchestrator.state

        assert state.stage == PipelineStage.VISUAL
        assert state.card_image == "data:image/png;base64,AAAA"
        assert state.image_prompt.startswith(PORTRAIT_DIRECTIVE)
        assert "gentle light" in state.image_prompt

        (image_request,) = backend.calls(OperationKind.IMAGE)
        assert image_request.prompt.startswith(state.image_prompt)

    @pytest.mark.asyncio
    async def test_named_style_has_no_portrait_directive(self, orchestrator):
        await advance_to(orchestrator, PipelineStage.FEEDBACK)

        state = await orchestrator.generate_visual("oil_texture")

        assert state.selected_style == "oil_texture"
        assert not state.image_prompt.startswith(PORTRAIT_DIRECTIVE)
        assert "Theme: gentle light." in state.image_prompt

    @pytest.mark.asyncio
    async def test_missing_theme_falls_back_to_warmth(self, config, make_client):
        backend = FakeBackend(text=["# record"], json=["{}"])
        orch = PipelineOrchestrator(config, client=make_client(backend))
        await advance_to(orch, PipelineStage.VISUAL)

        assert "warmth" in orch.state.image_prompt

    @pytest.mark.asyncio
    async def test_no_image_still_moves_to_visual(self, config, make_client):
        backend = FakeBackend(text=["# record"], json=[FEEDBACK_PAYLOAD], image=[None])
        orch = PipelineOrchestrator(config, client=make_client(backend))

        await advance_to(orch, PipelineStage.VISUAL)

        assert orch.state.stage == PipelineStage.VISUAL
        assert orch.state.card_image is None
        assert orch.state.image_prompt

    @pytest.mark.asyncio
    async def test_failure_stays_in_feedback(self, config, make_client):
        backend = FakeBackend(
            text=["# record"], json=[FEEDBACK_PAYLOAD], image=[RuntimeError("down")]
        )
        orch = PipelineOrchestrator(config, client=make_client(backend))

        await advance_to(orch, PipelineStage.VISUAL)

        assert orch.state.stage == PipelineStage.FEEDBACK
        assert orch.state.image_prompt is None
        assert orch.state.error == "生成視覺卡片時發生錯誤。"

    @pytest.mark.asyncio
    async def test_style_unchanged_when_ignored_in_wrong_stage(self, orchestrator, backend):
        state = await orchestrator.generate_visual("oil_texture")

        assert state.stage == PipelineStage.INITIAL
        assert state.selected_style == "auto"
        assert backend.requests == []

    @pytest.mark.asyncio
    async def test_unknown_style_raises(self, orchestrator):
        await advance_to(orchestrator, PipelineStage.FEEDBACK)
        with pytest.raises(ValueError):
            await orchestrator.generate_visual("crayon")


# ---------------------------------------------------------------------------
# Refinement
# ---------------------------------------------------------------------------


class TestRefine:
    @pytest.mark.asyncio
    async def test_refines_record(self, config, make_client):
        backend = FakeBackend(text=["# record", "# refined record"])
        orch = PipelineOrchestrator(config, client=make_client(backend))
        await orch.generate_record("notes")

        state = await orch.refine("更正式")

        assert state.stage == PipelineStage.RECORD
        assert state.formal_record == "# refined record"
        assert state.refinement_instruction == ""

    @pytest.mark.asyncio
    async def test_refines_feedback_full_text_only(self, config, make_client):
        backend = FakeBackend(text=["# record", "新的卡片文字"], json=[FEEDBACK_PAYLOAD])
        orch = PipelineOrchestrator(config, client=make_client(backend))
        await advance_to(orch, PipelineStage.FEEDBACK)

        state = await orch.refine("短一點")

        assert state.feedback.full_text == "新的卡片文字"
        assert state.feedback.feedback_card == "你的陪伴很溫暖"
        assert state.feedback.theme == "gentle light"

    @pytest.mark.asyncio
    async def test_blank_instruction_is_noop(self, orchestrator, backend):
        await orchestrator.generate_record("notes")
        before = len(backend.requests)

        await orchestrator.refine("   ")

        assert len(backend.requests) == before

    @pytest.mark.asyncio
    async def test_feedback_stage_without_feedback_skips_call(self, orchestrator, backend):
        orchestrator.state.stage = PipelineStage.FEEDBACK

        state = await orchestrator.refine("短一點")

        assert backend.requests == []
        assert state.feedback is None
        assert state.error is None

    @pytest.mark.asyncio
    async def test_failure_keeps_content_and_instruction(self, config, make_client):
        backend = FakeBackend(text=["# record", RuntimeError("down")])
        orch = PipelineOrchestrator(config, client=make_client(backend))
        await orch.generate_record("notes")

        state = await orch.refine("更正式")

        assert state.formal_record == "# record"
        assert state.refinement_instruction == "更正式"
        assert state.error == "微調內容時發生錯誤，請稍後再試。"


class TestRefineImage:
    @pytest.mark.asyncio
    async def test_refines_prompt_and_regenerates(self, config, make_client):
        backend = FakeBackend(
            text=["# record", "a brighter valley"],
            json=[FEEDBACK_PAYLOAD],
            image=["data:image/png;base64,AAAA", "data:image/png;base64,BBBB"],
        )
        orch = PipelineOrchestrator(config, client=make_client(backend))
        await advance_to(orch, PipelineStage.VISUAL)

        state = await orch.refine_image("brighter")

        assert state.image_prompt == "a brighter valley"
        assert state.card_image == "data:image/png;base64,BBBB"
        assert state.image_refinement_instruction == ""
        last_image = backend.calls(OperationKind.IMAGE)[-1]
        assert last_image.prompt.startswith("a brighter valley. ")

    @pytest.mark.asyncio
    async def test_second_call_failure_is_not_rolled_back(self, config, make_client):
        backend = FakeBackend(
            text=["# record", "a brighter valley"],
            json=[FEEDBACK_PAYLOAD],
            image=["data:image/png;base64,AAAA", RuntimeError("image service down")],
        )
        orch = PipelineOrchestrator(config, client=make_client(backend))
        await advance_to(orch, PipelineStage.VISUAL)

        state = await orch.refine_image("brighter")

        assert state.image_prompt == "a brighter valley"
        assert state.card_image is None
        assert state.error is not None
        assert state.stage == PipelineStage.VISUAL

    @pytest.mark.asyncio
    async def test_empty_refinement_keeps_prompt(self, config, make_client):
        backend = FakeBackend(text=["# record", ""], json=[FEEDBACK_PAYLOAD])
        orch = PipelineOrchestrator(config, client=make_client(backend))
        await advance_to(orch, PipelineStage.VISUAL)
        original_prompt = orch.state.image_prompt

        state = await orch.refine_image("brighter")

        assert state.image_prompt == original_prompt
        assert state.card_image == "data:image/png;base64,AAAA"
        assert len(backend.calls(OperationKind.IMAGE)) == 1


# ---------------------------------------------------------------------------
# Navigation and manual edits
# ---------------------------------------------------------------------------


class TestNavigation:
    @pytest.mark.asyncio
    async def test_back_to_feedback_keeps_image(self, orchestrator):
        await advance_to(orchestrator, PipelineStage.VISUAL)

        state = orchestrator.back_to_feedback()

        assert state.stage == PipelineStage.FEEDBACK
        assert state.card_image == "data:image/png;base64,AAAA"
        assert state.image_prompt is not None

    @pytest.mark.asyncio
    async def test_reset_clears_everything(self, orchestrator):
        await advance_to(orchestrator, PipelineStage.VISUAL)

        state = orchestrator.reset()

        assert state.stage == PipelineStage.INITIAL
        assert state.raw_input == ""
        assert state.formal_record == ""
        assert state.feedback is None
        assert state.image_prompt is None
        assert state.card_image is None
        assert state.error is None

    def test_back_to_feedback_ignored_in_initial(self, orchestrator):
        assert orchestrator.back_to_feedback().stage == PipelineStage.INITIAL

    def test_default_style_from_config(self, orchestrator):
        assert orchestrator.state.selected_style == "auto"

    def test_select_style_validates(self, orchestrator):
        orchestrator.select_style("ghibli_fresh")
        assert orchestrator.state.selected_style == "ghibli_fresh"
        with pytest.raises(ValueError):
            orchestrator.select_style("nope")


class TestManualEdits:
    @pytest.mark.asyncio
    async def test_edit_record(self, orchestrator):
        await orchestrator.generate_record("notes")
        assert orchestrator.edit_record("# hand edited").formal_record == "# hand edited"

    @pytest.mark.asyncio
    async def test_edit_feedback_text(self, orchestrator):
        await advance_to(orchestrator, PipelineStage.FEEDBACK)
        state = orchestrator.edit_feedback_text("自己寫的")
        assert state.feedback.full_text == "自己寫的"

    @pytest.mark.asyncio
    async def test_update_design_overrides_single_field(self, orchestrator):
        await advance_to(orchestrator, PipelineStage.FEEDBACK)

        state = orchestrator.update_design(text_color="light")

        design = state.feedback.design_config
        assert design.text_color == TextColor.LIGHT
        assert design.text_position == TextPosition.CENTER
        assert design.font_style == FontStyle.SERIF

    @pytest.mark.asyncio
    async def test_update_design_rejects_unknown_value(self, orchestrator):
        await advance_to(orchestrator, PipelineStage.FEEDBACK)
        with pytest.raises(ValueError):
            orchestrator.update_design(font_style="comic")


# ---------------------------------------------------------------------------
# Concurrency guard
# ---------------------------------------------------------------------------


class SlowBackend(FakeBackend):
    """FakeBackend whose text calls wait on an event."""

    def __init__(self, **kwargs):
        super().__init__(**kwargs)
        self.release = asyncio.Event()

    async def generate_text(self, request, credential):
        await self.release.wait()
        return self._next(request, credential)


class TestBusyGuard:
    @pytest.mark.asyncio
    async def test_second_call_while_busy_is_ignored(self, config, make_client):
        backend = SlowBackend(text=["# record"])
        orch = PipelineOrchestrator(config, client=make_client(backend))

        first = asyncio.create_task(orch.generate_record("notes"))
        await asyncio.sleep(0)
        assert orch.is_busy

        await orch.generate_record("other notes")
        backend.release.set()
        await first

        assert len(backend.requests) == 1
        assert orch.state.stage == PipelineStage.RECORD
        assert not orch.is_busy
