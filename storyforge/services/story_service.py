import logging
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from storyforge.core.errors import ForbiddenError, InvalidStateError, NotFoundError, ValidationError, database_errors
from storyforge.crud import crud_choice, crud_content, crud_story
from storyforge.models.story import StoryGenre, StoryStatus
from storyforge.schemas.story import (
    ContinuationRequest,
    ContinuationResult,
    Story,
    StoryCreate,
    StoryDetails,
    StoryPage,
    StoryProgress,
    StoryUpdate,
)
from storyforge.services import choice_ledger, state_machine
from storyforge.services.progression import ProgressionEngine
from storyforge.services.providers.registry import ProviderRegistry

logger = logging.getLogger(__name__)

TITLE_LENGTH = (3, 200)
DESCRIPTION_LENGTH = (10, 1000)
MAX_PAGE_SIZE = 100


def validate_story_data(title: Optional[str] = None, description: Optional[str] = None,
                        genre: Optional[StoryGenre] = None, custom_genre: Optional[str] = None) -> None:
    """
    Checks the caller-editable story fields. Only the fields passed in are checked.
    """
    if title is not None:
        length = len(title.strip())
        if not TITLE_LENGTH[0] <= length <= TITLE_LENGTH[1]:
            raise ValidationError(
                f"Title must be between {TITLE_LENGTH[0]} and {TITLE_LENGTH[1]} characters",
                {"field": "title", "length": length},
            )
    if description is not None:
        length = len(description.strip())
        if not DESCRIPTION_LENGTH[0] <= length <= DESCRIPTION_LENGTH[1]:
            raise ValidationError(
                f"Description must be between {DESCRIPTION_LENGTH[0]} and {DESCRIPTION_LENGTH[1]} characters",
                {"field": "description", "length": length},
            )
    if genre == StoryGenre.CUSTOM and not (custom_genre and custom_genre.strip()):
        raise ValidationError(
            "Custom genre name is required when genre is 'custom'",
            {"field": "custom_genre"},
        )


class StoryService:
    """
    Story lifecycle operations on top of the crud layer.

    Every operation loads the story, checks that the caller owns it, applies
    the state machine and writes back only the columns it changed. Progression
    itself is delegated to ProgressionEngine.
    """

    def __init__(
        self,
        db: AsyncSession,
        providers: ProviderRegistry,
        max_segments: int = 5,
        minutes_per_segment: int = 2,
        words_per_minute: int = 200,
    ):
        self.db = db
        self.providers = providers
        self.max_segments = max_segments
        self.minutes_per_segment = minutes_per_segment
        self.engine = ProgressionEngine(
            db,
            providers,
            max_segments=max_segments,
            words_per_minute=words_per_minute,
        )

    # --- CRUD ---

    async def create_story(self, story_in: StoryCreate, user_id: int) -> Story:
        validate_story_data(story_in.title, story_in.description, story_in.genre, story_in.custom_genre)
        if not story_in.initial_prompt or not story_in.initial_prompt.strip():
            raise ValidationError("Initial prompt is required", {"field": "initial_prompt"})

        story_in = story_in.model_copy(update={
            "title": story_in.title.strip(),
            "description": story_in.description.strip(),
            "custom_genre": story_in.custom_genre.strip() if story_in.genre == StoryGenre.CUSTOM else None,
        })
        with database_errors("create_story"):
            story = await crud_story.create_story(self.db, story_in, user_id)
        logger.info(f"User {user_id} created story {story.id} ('{story.title}')")
        return story

    async def get_story(self, story_id: str, user_id: int) -> Story:
        with database_errors("get_story"):
            story = await crud_story.get_story(self.db, story_id)
        if story is None or story.is_deleted:
            raise NotFoundError.story(story_id)
        if story.user_id != user_id:
            raise ForbiddenError.story_access(story_id, user_id)
        return story

    async def list_stories(self, user_id: int, page: int = 1, limit: int = 10) -> StoryPage:
        if page < 1 or not 1 <= limit <= MAX_PAGE_SIZE:
            raise ValidationError(
                f"Page must be at least 1 and limit between 1 and {MAX_PAGE_SIZE}",
                {"page": page, "limit": limit},
            )
        with database_errors("list_stories"):
            items, total = await crud_story.list_user_stories(self.db, user_id, page=page, limit=limit)
        return StoryPage(items=items, total=total, page=page, limit=limit)

    async def update_story(self, story_id: str, story_in: StoryUpdate, user_id: int) -> Story:
        story = await self.get_story(story_id, user_id)
        validate_story_data(story_in.title, story_in.description)

        update = {}
        if story_in.title is not None:
            update["title"] = story_in.title.strip()
        if story_in.description is not None:
            update["description"] = story_in.description.strip()
        if story_in.settings is not None:
            update["settings"] = story_in.settings
        if not update:
            return story
        return await self._write(story.id, update, "update_story")

    async def delete_story(self, story_id: str, user_id: int, hard: bool = False) -> None:
        """
        Soft-deletes a story (status deleted, deleted_at set). With hard=True the
        story is removed together with its segments and choices.
        """
        story = await self.get_story(story_id, user_id)
        if hard:
            with database_errors("delete_story"):
                await crud_story.delete_story(self.db, story_id)
            logger.info(f"Story {story_id} permanently deleted")
            return

        state_machine.ensure_transition(story.status, StoryStatus.DELETED)
        await self._write(
            story.id,
            {"status": StoryStatus.DELETED, "deleted_at": datetime.now(timezone.utc)},
            "delete_story",
        )
        logger.info(f"Story {story_id} deleted")

    # --- Status transitions ---

    async def start_story(self, story_id: str, user_id: int) -> Story:
        return await self._transition(story_id, user_id, StoryStatus.IN_PROGRESS)

    async def complete_story(self, story_id: str, user_id: int) -> Story:
        return await self._transition(story_id, user_id, StoryStatus.COMPLETED)

    async def unpublish_story(self, story_id: str, user_id: int) -> Story:
        # Unpublishing sends the story back to draft, so only in_progress stories qualify.
        return await self._transition(story_id, user_id, StoryStatus.DRAFT)

    async def publish_story(self, story_id: str, user_id: int) -> Story:
        story = await self.get_story(story_id, user_id)
        with database_errors("publish_story"):
            count = await crud_content.count_contents(self.db, story_id)
        if not state_machine.can_publish(story.status, count):
            raise ValidationError(
                "Story cannot be published",
                {"current_status": story.status.value, "segment_count": count},
            )
        return await self._set_status(story, StoryStatus.PUBLISHED, status_before_archive=None)

    async def archive_story(self, story_id: str, user_id: int) -> Story:
        story = await self.get_story(story_id, user_id)
        if not state_machine.can_archive(story.status):
            raise ValidationError(
                f"Cannot archive a {story.status.value} story",
                {"current_status": story.status.value},
            )
        return await self._set_status(story, StoryStatus.ARCHIVED, status_before_archive=story.status)

    async def restore_story(self, story_id: str, user_id: int) -> Story:
        story = await self.get_story(story_id, user_id)
        if not state_machine.can_restore(story.status):
            raise ValidationError(
                "Only archived stories can be restored",
                {"current_status": story.status.value},
            )
        target = state_machine.restore_target(story.status_before_archive)
        # Restoring is not an edge of the transition table, so no ensure_transition here.
        updated = await self._write(
            story.id,
            {"status": target, "status_before_archive": None},
            "restore_story",
        )
        logger.info(f"Story {story_id} restored to {target.value}")
        return updated

    # --- Progression ---

    async def make_choice(self, story_id: str, choice_id: str, user_id: int) -> Story:
        story = await self.get_story(story_id, user_id)
        with database_errors("make_choice"):
            choice = await crud_choice.get_choice(self.db, choice_id)
        if choice is None or choice.story_id != story.id:
            raise NotFoundError.choice(choice_id)

        selected = choice_ledger.select(choice)
        with database_errors("make_choice"):
            stored = await crud_choice.mark_selected(self.db, selected)
        if stored is None:
            # Selected or withdrawn by a concurrent request since it was read.
            raise InvalidStateError("Choice is already selected", {"choice_id": choice_id})

        with database_errors("make_choice"):
            updated = await crud_story.increment_choices_made(self.db, story.id)
        if updated is None:
            raise NotFoundError.story(story.id)
        logger.info(f"User {user_id} selected choice {choice_id} in story {story_id}")
        return updated

    async def continue_story(self, story_id: str, request: ContinuationRequest, user_id: int) -> ContinuationResult:
        with database_errors("continue_story"):
            story = await crud_story.get_story(self.db, story_id)
        if story is None or story.is_deleted:
            raise NotFoundError.story(story_id)
        return await self.engine.continue_story(story, request, user_id)

    async def get_story_details(self, story_id: str, user_id: int) -> StoryDetails:
        story = await self.get_story(story_id, user_id)
        with database_errors("get_story_details"):
            content = await crud_content.list_contents(self.db, story_id)
            choices = await crud_choice.list_choices_by_story(self.db, story_id)

        count = len(content)
        progress = StoryProgress(
            story_id=story.id,
            current_content_id=story.current_content_id,
            choices_made=story.total_choices_made,
            progress_percentage=min(count / self.max_segments * 100, 100.0),
            estimated_time_remaining=max(0, (self.max_segments - count) * self.minutes_per_segment),
        )
        return StoryDetails(story=story, progress=progress, content=content, choices=choices)

    # --- Helpers ---

    async def _transition(self, story_id: str, user_id: int, target: StoryStatus) -> Story:
        story = await self.get_story(story_id, user_id)
        return await self._set_status(story, target)

    async def _set_status(self, story: Story, target: StoryStatus, **extra) -> Story:
        state_machine.ensure_transition(story.status, target)
        updated = await self._write(story.id, {"status": target, **extra}, "update_story_status")
        logger.info(f"Story {story.id}: {story.status.value} -> {target.value}")
        return updated

    async def _write(self, story_id: str, values: dict, operation: str) -> Story:
        with database_errors(operation):
            updated = await crud_story.update_story(self.db, story_id, values)
        if updated is None:
            raise NotFoundError.story(story_id)
        return updated
