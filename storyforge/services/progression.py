import logging
import math
from typing import List, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from storyforge.core.errors import ConflictError, ExternalServiceError, ForbiddenError, ValidationError, database_errors
from storyforge.crud import crud_choice, crud_content, crud_story
from storyforge.models.story import StoryStatus
from storyforge.schemas.story import Choice, ContinuationRequest, ContinuationResult, Segment, Story
from storyforge.services import choice_ledger, state_machine
from storyforge.services.providers.base import GenerationOptions, RequestKind
from storyforge.services.providers.registry import ProviderRegistry

logger = logging.getLogger(__name__)

DEFAULT_CONTINUATION_PROMPT = "Continue the story based on the previous choice"
CONCLUDED_MESSAGE = "Story has reached its conclusion"

CONTINUE_REFUSALS = {
    StoryStatus.COMPLETED: "concluded",
    StoryStatus.ARCHIVED: "archived",
    StoryStatus.PUBLISHED: "published_read_only",  # No edge leads from published back to in_progress
    StoryStatus.DELETED: "deleted",
}


def _build_continuation_prompt(story: Story, request: ContinuationRequest, previous_choice: Optional[Choice]) -> str:
    prompt = f"{request.prompt or DEFAULT_CONTINUATION_PROMPT}\n\n"
    prompt += f"Story: {story.title}\n"
    prompt += f"Genre: {story.custom_genre or story.genre.value}\n"
    if story.prompts:
        prompt += f"Premise: {story.prompts[0]}\n"
    if previous_choice:
        prompt += f"Reader's choice: {previous_choice.text} ({previous_choice.description})\n"
    return prompt


def _build_choice_prompt(story: Story, segment: Segment) -> str:
    count = choice_ledger.CHOICES_PER_SEGMENT
    prompt = f"Based on the following story content, generate exactly {count} meaningful and diverse choices for the reader:\n\n"
    prompt += f"Story Content: {segment.text_content}\n\n"
    prompt += f"Genre: {story.custom_genre or story.genre.value}\n\n"
    prompt += "Return a JSON array only, each item shaped as\n"
    prompt += '{"text": "short choice text", "description": "what this choice leads to", '
    prompt += '"type": "narrative|dialogue|action|exploration", "consequences": "possible consequences"}'
    return prompt


class ProgressionEngine:
    """
    Extends a story by one segment per call.

    Order within a call is fixed: guards, primary text generation, segment
    write, optional media, choice generation, choice write, story update.
    Primary generation failures abort the step; choice and media generation
    failures degrade to defaults.
    """

    def __init__(
        self,
        db: AsyncSession,
        providers: ProviderRegistry,
        max_segments: int = 5,
        words_per_minute: int = 200,
    ):
        self.db = db
        self.providers = providers
        self.max_segments = max_segments
        self.words_per_minute = words_per_minute

    async def continue_story(self, story: Story, request: ContinuationRequest, caller_id: int) -> ContinuationResult:
        if story.user_id != caller_id:
            raise ForbiddenError.story_access(story.id, caller_id)
        if request.story_id != story.id:
            raise ValidationError(
                "Continuation request does not match the story",
                {"story_id": story.id, "request_story_id": request.story_id},
            )
        if not state_machine.can_continue(story.status):
            raise ValidationError(
                f"Cannot continue a {story.status.value} story",
                {
                    "current_status": story.status.value,
                    "reason": CONTINUE_REFUSALS.get(story.status, "not_continuable"),
                    "continuable_statuses": sorted(s.value for s in state_machine.CONTINUABLE),
                },
            )

        previous_choice = None
        if request.continue_from_content_id:
            previous_choice = await self._resolve_previous_choice(story, request.continue_from_content_id)

        with database_errors("continue_story"):
            count = await crud_content.count_contents(self.db, story.id)
        if count >= self.max_segments:
            if story.status == StoryStatus.DRAFT:
                story = await self._set_status(story, StoryStatus.IN_PROGRESS)
            await self._set_status(story, StoryStatus.COMPLETED)
            logger.info(f"Story {story.id} already has {count} segments; marked as completed.")
            return ContinuationResult(success=False, error=CONCLUDED_MESSAGE)

        next_sequence = count + 1
        result = await self.providers.generate_text(
            story.settings.model,
            _build_continuation_prompt(story, request, previous_choice),
            GenerationOptions(
                story_id=story.id,
                current_segment_count=count,
                kind=RequestKind.NARRATIVE if count == 0 else RequestKind.CONTINUATION,
                genre=story.genre.value,
            ),
        )
        if not result.success:
            logger.error(f"Primary generation failed for story {story.id}: {result.error}")
            raise ExternalServiceError.ai_provider(
                "continue_story",
                result.provider,
                result.error or "Failed to generate content",
            )

        with database_errors("continue_story"):
            segment = await crud_content.create_content(
                self.db,
                story_id=story.id,
                text_content=result.content or "",
                sequence=next_sequence,
                has_choices=next_sequence < self.max_segments,
            )
        logger.info(f"Story {story.id}: created segment {next_sequence}/{self.max_segments}")

        segment = await self._attach_media(story, segment)

        choices: List[Choice] = []
        if segment.has_choices:
            choices = await self._create_choices(story, segment, count)

        await self._record_progress(story, request, segment)
        return ContinuationResult(success=True, segment=segment, choices=choices)

    async def _resolve_previous_choice(self, story: Story, choice_id: str) -> Choice:
        with database_errors("continue_story"):
            choice = await crud_choice.get_choice(self.db, choice_id)
        if choice is None:
            raise ValidationError(
                "Invalid choice reference for continuation",
                {"choice_id": choice_id},
            )
        if not choice.is_selected:
            raise ValidationError(
                "Cannot continue from unselected choice",
                {"choice_id": choice_id, "is_selected": False},
            )
        if choice.story_id != story.id:
            raise ValidationError(
                "Choice does not belong to this story",
                {"choice_id": choice_id, "choice_story_id": choice.story_id},
            )
        return choice

    async def _create_choices(self, story: Story, segment: Segment, count: int) -> List[Choice]:
        result = await self.providers.generate_text(
            story.settings.model,
            _build_choice_prompt(story, segment),
            GenerationOptions(
                story_id=story.id,
                current_segment_count=count,  # Index of the segment the choices belong to
                kind=RequestKind.CHOICES,
                genre=story.genre.value,
            ),
        )
        if result.success:
            candidates = choice_ledger.parse_candidates(result.content or "")
        else:
            logger.warning(f"Choice generation failed for story {story.id}, using filler choices: {result.error}")
            candidates = []

        drafts = choice_ledger.build_choice_set(candidates)
        try:
            with database_errors("create_choices"):
                return await crud_choice.create_choices(self.db, story.id, segment.id, drafts)
        except (ConflictError, ExternalServiceError) as e:
            logger.warning(f"Could not store choices for segment {segment.id}, continuing without them: {e}")
            return []

    async def _attach_media(self, story: Story, segment: Segment) -> Segment:
        if not (story.settings.generate_image or story.settings.generate_audio):
            return segment

        options = GenerationOptions(story_id=story.id, current_segment_count=segment.sequence - 1)
        update = {}
        if story.settings.generate_image:
            image = await self.providers.generate_image(story.settings.model, f"Illustrate this scene: {segment.text_content[:500]}", options)
            if image.success:
                update["image_url"] = image.image_url
            else:
                logger.warning(f"Image generation failed for segment {segment.id}: {image.error}")
        if story.settings.generate_audio:
            audio = await self.providers.generate_audio(story.settings.model, f"Narrate this scene: {segment.text_content[:500]}", options)
            if audio.success:
                update["audio_url"] = audio.audio_url
            else:
                logger.warning(f"Audio generation failed for segment {segment.id}: {audio.error}")
        if not update:
            return segment

        with database_errors("attach_media"):
            return await crud_content.update_content(self.db, segment.model_copy(update=update)) or segment

    async def _record_progress(self, story: Story, request: ContinuationRequest, segment: Segment) -> Story:
        with database_errors("continue_story"):
            segments = await crud_content.list_contents(self.db, story.id)
        words = sum(len(s.text_content.split()) for s in segments)

        # Only the columns progression owns; total_choices_made belongs to make_choice.
        values = {
            "current_content_id": segment.id,
            "estimated_reading_time": math.ceil(words / self.words_per_minute),
        }
        if request.prompt:
            values["prompts"] = [*story.prompts, request.prompt]

        status = story.status
        if status == StoryStatus.DRAFT:
            state_machine.ensure_transition(status, StoryStatus.IN_PROGRESS)
            status = StoryStatus.IN_PROGRESS
        if segment.sequence >= self.max_segments:
            state_machine.ensure_transition(status, StoryStatus.COMPLETED)
            status = StoryStatus.COMPLETED
            logger.info(f"Story {story.id} reached its final segment; marked as completed.")
        if status != story.status:
            values["status"] = status
            logger.info(f"Story {story.id}: {story.status.value} -> {status.value}")

        with database_errors("continue_story"):
            return await crud_story.update_story(self.db, story.id, values)

    async def _set_status(self, story: Story, target: StoryStatus) -> Story:
        state_machine.ensure_transition(story.status, target)
        with database_errors("update_story_status"):
            updated = await crud_story.update_story(self.db, story.id, {"status": target})
        logger.info(f"Story {story.id}: {story.status.value} -> {target.value}")
        return updated
