"""Progression scenarios: a full five-segment playthrough, guard failures and degraded choice generation."""

import asyncio
import math
from unittest.mock import AsyncMock

import pytest

from conftest import OWNER_ID, STRANGER_ID, continuation, story_create
from storyforge.core.errors import ConflictError, ExternalServiceError, ForbiddenError, InvalidStateError, ValidationError
from storyforge.crud import crud_choice, crud_content, crud_story
from storyforge.models.story import StoryStatus
from storyforge.schemas.story import StorySettings
from storyforge.services import choice_ledger
from storyforge.services.progression import CONCLUDED_MESSAGE, ProgressionEngine
from storyforge.services.providers.base import RequestKind
from storyforge.services.providers.mock import MOCK_SEGMENTS
from storyforge.services.providers.registry import GenerationResult
from storyforge.services.story_service import StoryService


async def _play_to_end(service, story_id):
    """Continue five times, selecting the first choice after each non-final segment."""
    choice_id = None
    results = []
    for _ in range(5):
        result = await service.continue_story(story_id, continuation(story_id, choice_id), OWNER_ID)
        results.append(result)
        if result.choices:
            await service.make_choice(story_id, result.choices[0].id, OWNER_ID)
            choice_id = result.choices[0].id
    return results


# ── Scenario A: full playthrough ─────────────────────────


class TestFullPlaythrough:
    async def test_five_segments_then_completed(self, service, db, story):
        results = await _play_to_end(service, story.id)

        assert all(r.success for r in results)
        assert [r.segment.text_content for r in results] == [s.content for s in MOCK_SEGMENTS]
        assert [len(r.choices) for r in results] == [4, 4, 4, 4, 0]

        stored = await crud_story.get_story(db, story.id)
        assert stored.status == StoryStatus.COMPLETED
        assert stored.total_choices_made == 4
        assert stored.current_content_id == results[-1].segment.id

    async def test_sequences_are_contiguous(self, service, db, story):
        await _play_to_end(service, story.id)
        segments = await crud_content.list_contents(db, story.id)
        assert [s.sequence for s in segments] == [1, 2, 3, 4, 5]

    async def test_every_non_final_segment_has_four_choices(self, service, db, story):
        await _play_to_end(service, story.id)
        for segment in await crud_content.list_contents(db, story.id):
            choices = await crud_choice.list_choices_by_content(db, segment.id)
            if segment.sequence < 5:
                assert segment.has_choices
                assert [c.sequence for c in choices] == [1, 2, 3, 4]
            else:
                assert not segment.has_choices
                assert choices == []

    async def test_choices_come_from_the_matching_segment(self, service, story):
        result = await service.continue_story(story.id, continuation(story.id), OWNER_ID)
        assert [c.text for c in result.choices] == [c["text"] for c in MOCK_SEGMENTS[0].choices]

    async def test_first_continuation_starts_a_draft(self, service, db, story):
        assert story.status == StoryStatus.DRAFT
        await service.continue_story(story.id, continuation(story.id), OWNER_ID)
        stored = await crud_story.get_story(db, story.id)
        assert stored.status == StoryStatus.IN_PROGRESS

    async def test_prompt_history_and_reading_time(self, service, db, story):
        await service.continue_story(story.id, continuation(story.id, prompt="Open with a snowy mountain pass"), OWNER_ID)
        await service.continue_story(story.id, continuation(story.id), OWNER_ID)
        stored = await crud_story.get_story(db, story.id)
        assert stored.prompts == ["Begin an epic quest in a snowy kingdom.", "Open with a snowy mountain pass"]
        words = sum(len(s.content.split()) for s in MOCK_SEGMENTS[:2])
        assert stored.estimated_reading_time == math.ceil(words / 200)

    async def test_continuing_past_the_end_concludes(self, service, db, story):
        await _play_to_end(service, story.id)
        stored = await crud_story.get_story(db, story.id)
        # Reopen the story to reach the count guard.
        await crud_story.update_story(db, stored.id, {"status": StoryStatus.IN_PROGRESS})

        result = await service.continue_story(story.id, continuation(story.id), OWNER_ID)
        assert not result.success
        assert result.error == CONCLUDED_MESSAGE
        assert (await crud_story.get_story(db, story.id)).status == StoryStatus.COMPLETED
        assert await crud_content.count_contents(db, story.id) == 5


# ── Scenario B: status guard ─────────────────────────────


class TestStatusGuard:
    @pytest.mark.parametrize("status, reason", [
        (StoryStatus.COMPLETED, "concluded"),
        (StoryStatus.ARCHIVED, "archived"),
        (StoryStatus.PUBLISHED, "published_read_only"),
    ])
    async def test_cannot_continue(self, service, db, story, status, reason):
        await crud_story.update_story(db, story.id, {"status": status})
        with pytest.raises(ValidationError) as exc_info:
            await service.continue_story(story.id, continuation(story.id), OWNER_ID)
        assert status.value in exc_info.value.message
        assert exc_info.value.details["reason"] == reason
        assert exc_info.value.details["continuable_statuses"] == ["draft", "in_progress"]
        assert await crud_content.count_contents(db, story.id) == 0


# ── Scenario C: single-use selection ─────────────────────


class TestSelection:
    async def test_second_selection_fails(self, service, db, story):
        result = await service.continue_story(story.id, continuation(story.id), OWNER_ID)
        choice_id = result.choices[2].id

        await service.make_choice(story.id, choice_id, OWNER_ID)
        with pytest.raises(InvalidStateError):
            await service.make_choice(story.id, choice_id, OWNER_ID)

        stored = await crud_story.get_story(db, story.id)
        assert stored.total_choices_made == 1
        choice = await crud_choice.get_choice(db, choice_id)
        assert choice.is_selected
        assert choice.selected_at is not None


# ── Scenario D: degraded choice generation ───────────────


class TestDegradedChoices:
    async def test_unparsable_choice_output_gets_fillers(self, service, db, story, registry, mock_provider):
        real = mock_provider.generate_text

        async def garbled(prompt, options):
            if options.kind and options.kind.value == "choices":
                return "I'd rather not produce JSON today."
            return await real(prompt, options)

        mock_provider.generate_text = garbled
        result = await service.continue_story(story.id, continuation(story.id), OWNER_ID)

        assert result.success
        assert result.segment.text_content == MOCK_SEGMENTS[0].content
        assert [c.text for c in result.choices] == [d.text for d in choice_ledger.FILLER_CHOICES]
        assert len(await crud_choice.list_choices_by_content(db, result.segment.id)) == 4

    async def test_failed_choice_call_gets_fillers(self, service, db, story, registry):
        real = registry.generate_text
        calls = []

        async def fail_second(selector, prompt, options):
            calls.append(options.kind)
            if len(calls) == 2:
                return GenerationResult(success=False, provider="mocked", error="timeout")
            return await real(selector, prompt, options)

        registry.generate_text = fail_second
        result = await service.continue_story(story.id, continuation(story.id), OWNER_ID)

        assert result.success
        assert len(result.choices) == 4
        assert result.choices[0].text == "Continue the story"

    async def test_primary_failure_is_fatal(self, service, db, story, registry):
        registry.generate_text = AsyncMock(
            return_value=GenerationResult(success=False, provider="mocked", error="backend down")
        )
        with pytest.raises(ExternalServiceError) as exc_info:
            await service.continue_story(story.id, continuation(story.id), OWNER_ID)
        assert exc_info.value.operation == "continue_story"
        assert "backend down" in exc_info.value.message
        assert await crud_content.count_contents(db, story.id) == 0
        assert (await crud_story.get_story(db, story.id)).status == StoryStatus.DRAFT

    async def test_unknown_provider_is_fatal(self, service, db, story):
        await crud_story.update_story(db, story.id, {"settings": StorySettings(model="openai")})
        with pytest.raises(ExternalServiceError) as exc_info:
            await service.continue_story(story.id, continuation(story.id), OWNER_ID)
        assert "not implemented" in exc_info.value.message


# ── Scenario E: ownership ────────────────────────────────


class TestOwnership:
    async def test_stranger_cannot_continue(self, service, db, story):
        with pytest.raises(ForbiddenError):
            await service.continue_story(story.id, continuation(story.id), STRANGER_ID)
        assert await crud_content.count_contents(db, story.id) == 0

    async def test_engine_checks_owner_first(self, db, registry, story):
        engine = ProgressionEngine(db, registry)
        completed = story.model_copy(update={"status": StoryStatus.COMPLETED})
        with pytest.raises(ForbiddenError):
            await engine.continue_story(completed, continuation(story.id), STRANGER_ID)


# ── continue_from_content_id references ──────────────────


class TestContinueFromChoice:
    async def test_unknown_choice(self, service, story):
        with pytest.raises(ValidationError) as exc_info:
            await service.continue_story(story.id, continuation(story.id, "missing"), OWNER_ID)
        assert exc_info.value.message == "Invalid choice reference for continuation"

    async def test_unselected_choice(self, service, story):
        result = await service.continue_story(story.id, continuation(story.id), OWNER_ID)
        with pytest.raises(ValidationError) as exc_info:
            await service.continue_story(story.id, continuation(story.id, result.choices[0].id), OWNER_ID)
        assert exc_info.value.message == "Cannot continue from unselected choice"

    async def test_choice_from_another_story(self, service, story):
        other = await service.create_story(story_create(title="Another tale"), OWNER_ID)
        result = await service.continue_story(other.id, continuation(other.id), OWNER_ID)
        await service.make_choice(other.id, result.choices[0].id, OWNER_ID)

        with pytest.raises(ValidationError) as exc_info:
            await service.continue_story(story.id, continuation(story.id, result.choices[0].id), OWNER_ID)
        assert exc_info.value.message == "Choice does not belong to this story"


# ── Media and persistence conflicts ──────────────────────


class TestMedia:
    async def test_media_attached_when_enabled(self, service, db, story):
        settings = StorySettings(model="mocked", generate_image=True, generate_audio=True)
        await crud_story.update_story(db, story.id, {"settings": settings})

        result = await service.continue_story(story.id, continuation(story.id), OWNER_ID)
        assert result.segment.image_url.startswith("https://example.com/")
        assert result.segment.audio_url.startswith("https://example.com/")

    async def test_media_failure_is_ignored(self, service, db, story, mock_provider):
        mock_provider.generate_image = AsyncMock(side_effect=RuntimeError("no gpu"))
        settings = StorySettings(model="mocked", generate_image=True)
        await crud_story.update_story(db, story.id, {"settings": settings})

        result = await service.continue_story(story.id, continuation(story.id), OWNER_ID)
        assert result.success
        assert result.segment.image_url is None
        assert len(result.choices) == 4


async def test_duplicate_sequence_is_a_conflict(service, db, story, monkeypatch):
    await service.continue_story(story.id, continuation(story.id), OWNER_ID)
    # Simulate a concurrent progression that read a stale segment count.
    monkeypatch.setattr(crud_content, "count_contents", AsyncMock(return_value=0))

    with pytest.raises(ConflictError):
        await service.continue_story(story.id, continuation(story.id), OWNER_ID)
    assert len(await crud_content.list_contents(db, story.id)) == 1


# ── Overlapping requests on separate sessions ────────────


class TestOverlappingRequests:
    async def test_choice_made_during_continuation_is_kept(self, service, db, story, registry, session_factory):
        first = await service.continue_story(story.id, continuation(story.id), OWNER_ID)
        real = registry.generate_text
        picked = []

        async with session_factory() as other_db:
            other = StoryService(other_db, registry)

            async def choose_mid_generation(selector, prompt, options):
                # Another request selects a choice while this continuation waits on the provider.
                if options.kind == RequestKind.CONTINUATION and not picked:
                    picked.append(await other.make_choice(story.id, first.choices[0].id, OWNER_ID))
                return await real(selector, prompt, options)

            registry.generate_text = choose_mid_generation
            second = await service.continue_story(story.id, continuation(story.id), OWNER_ID)

        assert picked[0].total_choices_made == 1
        stored = await crud_story.get_story(db, story.id)
        assert stored.total_choices_made == 1
        assert stored.current_content_id == second.segment.id
        assert stored.status == StoryStatus.IN_PROGRESS

    async def test_simultaneous_selection_has_one_winner(self, service, db, story, registry, session_factory):
        result = await service.continue_story(story.id, continuation(story.id), OWNER_ID)
        choice_id = result.choices[1].id

        async with session_factory() as db_a, session_factory() as db_b:
            outcomes = await asyncio.gather(
                StoryService(db_a, registry).make_choice(story.id, choice_id, OWNER_ID),
                StoryService(db_b, registry).make_choice(story.id, choice_id, OWNER_ID),
                return_exceptions=True,
            )

        failures = [o for o in outcomes if isinstance(o, Exception)]
        assert len(failures) == 1
        assert isinstance(failures[0], InvalidStateError)
        winner = next(o for o in outcomes if not isinstance(o, Exception))
        assert winner.total_choices_made == 1

        stored = await crud_story.get_story(db, story.id)
        assert stored.total_choices_made == 1
        choice = await crud_choice.get_choice(db, choice_id)
        assert choice.is_selected

        # A late selection leaves the recorded timestamp alone.
        with pytest.raises(InvalidStateError):
            await service.make_choice(story.id, choice_id, OWNER_ID)
        assert (await crud_choice.get_choice(db, choice_id)).selected_at == choice.selected_at

    async def test_stale_read_cannot_select_twice(self, service, db, story):
        result = await service.continue_story(story.id, continuation(story.id), OWNER_ID)
        stale = result.choices[0]
        await service.make_choice(story.id, stale.id, OWNER_ID)
        selected_at = (await crud_choice.get_choice(db, stale.id)).selected_at

        # The stale copy still passes the in-memory check, so only the conditional write stops it.
        assert await crud_choice.mark_selected(db, choice_ledger.select(stale)) is None
        assert (await crud_choice.get_choice(db, stale.id)).selected_at == selected_at
        assert (await crud_story.get_story(db, story.id)).total_choices_made == 1
