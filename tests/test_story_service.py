"""Story lifecycle operations: validation, access checks, status transitions and details."""

import pytest

from conftest import OWNER_ID, STRANGER_ID, continuation, story_create
from storyforge.core.errors import ForbiddenError, NotFoundError, ValidationError
from storyforge.crud import crud_choice, crud_content, crud_story
from storyforge.models.story import StoryGenre, StoryStatus
from storyforge.schemas.story import StorySettings, StoryUpdate
from storyforge.services.story_service import validate_story_data


async def _set_status(db, story, status):
    return await crud_story.update_story(db, story.id, {"status": status})


# ── Validation ───────────────────────────────────────────


class TestValidateStoryData:
    @pytest.mark.parametrize("title", ["ab", "x" * 201, "   a   "])
    def test_bad_title(self, title):
        with pytest.raises(ValidationError):
            validate_story_data(title=title)

    @pytest.mark.parametrize("description", ["too short", "x" * 1001])
    def test_bad_description(self, description):
        with pytest.raises(ValidationError):
            validate_story_data(description=description)

    def test_custom_genre_requires_name(self):
        with pytest.raises(ValidationError):
            validate_story_data(genre=StoryGenre.CUSTOM, custom_genre="  ")
        validate_story_data(genre=StoryGenre.CUSTOM, custom_genre="Solarpunk")

    def test_valid_fields(self):
        validate_story_data("A fine title", "A description long enough", StoryGenre.HORROR)


# ── Create / read / list ─────────────────────────────────


class TestCreateAndRead:
    async def test_create_defaults(self, service):
        story = await service.create_story(story_create(title="  Padded title  "), OWNER_ID)
        assert story.status == StoryStatus.DRAFT
        assert story.title == "Padded title"
        assert story.prompts == ["Begin an epic quest in a snowy kingdom."]
        assert story.settings == StorySettings()
        assert story.total_choices_made == 0
        assert story.created_at is not None

    async def test_custom_genre_kept_only_for_custom(self, service):
        custom = await service.create_story(story_create(genre=StoryGenre.CUSTOM, custom_genre="Solarpunk"), OWNER_ID)
        assert custom.custom_genre == "Solarpunk"
        plain = await service.create_story(story_create(custom_genre="Ignored"), OWNER_ID)
        assert plain.custom_genre is None

    async def test_create_requires_initial_prompt(self, service):
        with pytest.raises(ValidationError):
            await service.create_story(story_create(initial_prompt="  "), OWNER_ID)

    async def test_get_missing(self, service):
        with pytest.raises(NotFoundError):
            await service.get_story("does-not-exist", OWNER_ID)

    async def test_get_foreign(self, service, story):
        with pytest.raises(ForbiddenError):
            await service.get_story(story.id, STRANGER_ID)

    async def test_list_is_per_user_and_paginated(self, service):
        for n in range(3):
            await service.create_story(story_create(title=f"Story number {n}"), OWNER_ID)
        await service.create_story(story_create(), STRANGER_ID)

        page = await service.list_stories(OWNER_ID, page=1, limit=2)
        assert page.total == 3
        assert len(page.items) == 2
        second = await service.list_stories(OWNER_ID, page=2, limit=2)
        assert len(second.items) == 1
        assert {s.user_id for s in page.items + second.items} == {OWNER_ID}

    async def test_list_rejects_bad_paging(self, service):
        with pytest.raises(ValidationError):
            await service.list_stories(OWNER_ID, page=0)
        with pytest.raises(ValidationError):
            await service.list_stories(OWNER_ID, limit=500)


class TestUpdateAndDelete:
    async def test_update_fields(self, service, story):
        updated = await service.update_story(
            story.id,
            StoryUpdate(title="New title", settings=StorySettings(model="test-model-v1", generate_image=True)),
            OWNER_ID,
        )
        assert updated.title == "New title"
        assert updated.description == story.description
        assert updated.settings.generate_image

    async def test_update_validates(self, service, story):
        with pytest.raises(ValidationError):
            await service.update_story(story.id, StoryUpdate(title="x"), OWNER_ID)

    async def test_soft_delete_hides_story(self, service, db, story):
        await service.delete_story(story.id, OWNER_ID)

        stored = await crud_story.get_story(db, story.id)
        assert stored.status == StoryStatus.DELETED
        assert stored.deleted_at is not None
        with pytest.raises(NotFoundError):
            await service.get_story(story.id, OWNER_ID)
        assert (await service.list_stories(OWNER_ID)).total == 0

    async def test_soft_delete_follows_transitions(self, service, db, story):
        await _set_status(db, story, StoryStatus.COMPLETED)
        with pytest.raises(ValidationError):
            await service.delete_story(story.id, OWNER_ID)

    async def test_hard_delete_cascades(self, service, db, story):
        await service.continue_story(story.id, continuation(story.id), OWNER_ID)
        await _set_status(db, await crud_story.get_story(db, story.id), StoryStatus.COMPLETED)

        await service.delete_story(story.id, OWNER_ID, hard=True)
        assert await crud_story.get_story(db, story.id) is None
        assert await crud_content.count_contents(db, story.id) == 0
        assert await crud_choice.list_choices_by_story(db, story.id) == []


# ── Status transitions ───────────────────────────────────


class TestTransitions:
    async def test_start_and_complete(self, service, story):
        started = await service.start_story(story.id, OWNER_ID)
        assert started.status == StoryStatus.IN_PROGRESS
        completed = await service.complete_story(story.id, OWNER_ID)
        assert completed.status == StoryStatus.COMPLETED

    async def test_complete_from_draft_fails(self, service, story):
        with pytest.raises(ValidationError):
            await service.complete_story(story.id, OWNER_ID)

    async def test_publish_requires_segment(self, service, db, story):
        await _set_status(db, story, StoryStatus.COMPLETED)
        with pytest.raises(ValidationError):
            await service.publish_story(story.id, OWNER_ID)

    async def test_publish_archive_restore_round_trip(self, service, db, story):
        await service.continue_story(story.id, continuation(story.id), OWNER_ID)
        await service.complete_story(story.id, OWNER_ID)

        assert (await service.publish_story(story.id, OWNER_ID)).status == StoryStatus.PUBLISHED
        archived = await service.archive_story(story.id, OWNER_ID)
        assert archived.status == StoryStatus.ARCHIVED
        assert archived.status_before_archive == StoryStatus.PUBLISHED

        restored = await service.restore_story(story.id, OWNER_ID)
        assert restored.status == StoryStatus.PUBLISHED
        assert restored.status_before_archive is None

    async def test_restore_completed_story(self, service, db, story):
        await _set_status(db, story, StoryStatus.COMPLETED)
        await service.archive_story(story.id, OWNER_ID)
        assert (await service.restore_story(story.id, OWNER_ID)).status == StoryStatus.COMPLETED

    async def test_restore_without_recorded_status(self, service, db, story):
        await _set_status(db, story, StoryStatus.ARCHIVED)
        assert (await service.restore_story(story.id, OWNER_ID)).status == StoryStatus.COMPLETED

    async def test_restore_requires_archived(self, service, story):
        with pytest.raises(ValidationError):
            await service.restore_story(story.id, OWNER_ID)

    @pytest.mark.parametrize("status", [StoryStatus.DRAFT, StoryStatus.IN_PROGRESS])
    async def test_archive_requires_finished_story(self, service, db, story, status):
        await _set_status(db, story, status)
        with pytest.raises(ValidationError):
            await service.archive_story(story.id, OWNER_ID)

    async def test_unpublish_returns_to_draft(self, service, db, story):
        await _set_status(db, story, StoryStatus.IN_PROGRESS)
        assert (await service.unpublish_story(story.id, OWNER_ID)).status == StoryStatus.DRAFT

    async def test_unpublish_published_is_rejected(self, service, db, story):
        await _set_status(db, story, StoryStatus.PUBLISHED)
        with pytest.raises(ValidationError):
            await service.unpublish_story(story.id, OWNER_ID)

    async def test_stranger_cannot_transition(self, service, story):
        with pytest.raises(ForbiddenError):
            await service.start_story(story.id, STRANGER_ID)


# ── Choices and details ──────────────────────────────────


class TestChoicesAndDetails:
    async def test_make_choice_unknown(self, service, story):
        with pytest.raises(NotFoundError):
            await service.make_choice(story.id, "missing", OWNER_ID)

    async def test_make_choice_from_other_story(self, service, story):
        other = await service.create_story(story_create(title="Another tale"), OWNER_ID)
        result = await service.continue_story(other.id, continuation(other.id), OWNER_ID)
        with pytest.raises(NotFoundError):
            await service.make_choice(story.id, result.choices[0].id, OWNER_ID)

    async def test_make_choice_by_stranger(self, service, story):
        result = await service.continue_story(story.id, continuation(story.id), OWNER_ID)
        with pytest.raises(ForbiddenError):
            await service.make_choice(story.id, result.choices[0].id, STRANGER_ID)

    async def test_details(self, service, story):
        first = await service.continue_story(story.id, continuation(story.id), OWNER_ID)
        await service.make_choice(story.id, first.choices[1].id, OWNER_ID)
        await service.continue_story(story.id, continuation(story.id, first.choices[1].id), OWNER_ID)

        details = await service.get_story_details(story.id, OWNER_ID)
        assert [s.sequence for s in details.content] == [1, 2]
        assert len(details.choices) == 8
        assert details.choices[0].parent_content_id == details.content[0].id
        assert details.progress.choices_made == 1
        assert details.progress.progress_percentage == pytest.approx(40.0)
        assert details.progress.estimated_time_remaining == 6
        assert details.progress.current_content_id == details.content[1].id

    async def test_details_of_empty_story(self, service, story):
        details = await service.get_story_details(story.id, OWNER_ID)
        assert details.progress.progress_percentage == 0
        assert details.progress.estimated_time_remaining == 10
        assert details.content == []
