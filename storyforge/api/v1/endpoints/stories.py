import logging
from fastapi import APIRouter, Depends

from storyforge.api.deps import get_current_user_id, get_story_service
from storyforge.schemas import story as story_schema
from storyforge.services.story_service import StoryService

router = APIRouter()

@router.post("/stories", response_model=story_schema.Story, status_code=201)
async def create_story(
    story_in: story_schema.StoryCreate,
    user_id: int = Depends(get_current_user_id),
    service: StoryService = Depends(get_story_service),
):
    """
    Creates a new story in draft status.
    """
    logging.info(f"Creating '{story_in.genre.value}' story for user {user_id}")
    return await service.create_story(story_in, user_id)

@router.get("/stories", response_model=story_schema.StoryPage)
async def list_stories(
    page: int = 1,
    limit: int = 10,
    user_id: int = Depends(get_current_user_id),
    service: StoryService = Depends(get_story_service),
):
    return await service.list_stories(user_id, page=page, limit=limit)

@router.get("/stories/{story_id}", response_model=story_schema.Story)
async def get_story(
    story_id: str,
    user_id: int = Depends(get_current_user_id),
    service: StoryService = Depends(get_story_service),
):
    return await service.get_story(story_id, user_id)

@router.get("/stories/{story_id}/details", response_model=story_schema.StoryDetails)
async def get_story_details(
    story_id: str,
    user_id: int = Depends(get_current_user_id),
    service: StoryService = Depends(get_story_service),
):
    """
    Returns the story with its segments, choices and reading progress.
    """
    return await service.get_story_details(story_id, user_id)

@router.patch("/stories/{story_id}", response_model=story_schema.Story)
async def update_story(
    story_id: str,
    story_in: story_schema.StoryUpdate,
    user_id: int = Depends(get_current_user_id),
    service: StoryService = Depends(get_story_service),
):
    return await service.update_story(story_id, story_in, user_id)

@router.delete("/stories/{story_id}", status_code=204)
async def delete_story(
    story_id: str,
    hard: bool = False,
    user_id: int = Depends(get_current_user_id),
    service: StoryService = Depends(get_story_service),
):
    """
    Soft-deletes a story; `?hard=true` removes it with its segments and choices.
    """
    await service.delete_story(story_id, user_id, hard=hard)
    logging.info(f"Deleted story {story_id} (hard={hard})")
    return

@router.post("/stories/{story_id}/continue", response_model=story_schema.ContinuationResult)
async def continue_story(
    story_id: str,
    body: story_schema.ContinueBody,
    user_id: int = Depends(get_current_user_id),
    service: StoryService = Depends(get_story_service),
):
    """
    Generates the next segment of the story and its choices.
    """
    request = story_schema.ContinuationRequest(
        story_id=story_id,
        prompt=body.prompt,
        continue_from_content_id=body.continue_from_content_id,
    )
    return await service.continue_story(story_id, request, user_id)

@router.post("/stories/{story_id}/choices/{choice_id}/select", response_model=story_schema.ChoiceSelectionResponse)
async def select_choice(
    story_id: str,
    choice_id: str,
    auto_continue: bool = True,
    user_id: int = Depends(get_current_user_id),
    service: StoryService = Depends(get_story_service),
):
    """
    Selects a choice and, unless `auto_continue=false`, continues the story from it.
    """
    story = await service.make_choice(story_id, choice_id, user_id)
    if not auto_continue:
        return story_schema.ChoiceSelectionResponse(success=True, story=story)

    continuation = await service.continue_story(
        story_id,
        story_schema.ContinuationRequest(story_id=story_id, continue_from_content_id=choice_id),
        user_id,
    )
    story = await service.get_story(story_id, user_id)
    return story_schema.ChoiceSelectionResponse(success=True, story=story, continuation=continuation)

@router.post("/stories/{story_id}/start", response_model=story_schema.Story)
async def start_story(story_id: str, user_id: int = Depends(get_current_user_id), service: StoryService = Depends(get_story_service)):
    return await service.start_story(story_id, user_id)

@router.post("/stories/{story_id}/complete", response_model=story_schema.Story)
async def complete_story(story_id: str, user_id: int = Depends(get_current_user_id), service: StoryService = Depends(get_story_service)):
    return await service.complete_story(story_id, user_id)

@router.post("/stories/{story_id}/publish", response_model=story_schema.Story)
async def publish_story(story_id: str, user_id: int = Depends(get_current_user_id), service: StoryService = Depends(get_story_service)):
    return await service.publish_story(story_id, user_id)

@router.post("/stories/{story_id}/unpublish", response_model=story_schema.Story)
async def unpublish_story(story_id: str, user_id: int = Depends(get_current_user_id), service: StoryService = Depends(get_story_service)):
    return await service.unpublish_story(story_id, user_id)

@router.post("/stories/{story_id}/archive", response_model=story_schema.Story)
async def archive_story(story_id: str, user_id: int = Depends(get_current_user_id), service: StoryService = Depends(get_story_service)):
    return await service.archive_story(story_id, user_id)

@router.post("/stories/{story_id}/restore", response_model=story_schema.Story)
async def restore_story(story_id: str, user_id: int = Depends(get_current_user_id), service: StoryService = Depends(get_story_service)):
    return await service.restore_story(story_id, user_id)
