from typing import Any, Dict, List, Optional, Tuple
from pydantic import BaseModel
from sqlalchemy import delete, func, update
from sqlalchemy.future import select
from sqlalchemy.ext.asyncio import AsyncSession

from storyforge.models import story as story_model
from storyforge.schemas import story as story_schema

# Columns the database owns; updates never write them.
_READ_ONLY_FIELDS = {"id", "created_at", "updated_at"}

async def create_story(db: AsyncSession, story_in: story_schema.StoryCreate, user_id: int) -> story_schema.Story:
    """
    Creates a new story in draft status with the initial prompt as its only prompt.
    """
    settings = story_in.settings or story_schema.StorySettings()
    new_story = story_model.Story(
        title=story_in.title,
        description=story_in.description,
        genre=story_in.genre,
        custom_genre=story_in.custom_genre,
        user_id=user_id,
        status=story_model.StoryStatus.DRAFT,
        prompts=[story_in.initial_prompt],
        settings=settings.model_dump(),
        total_choices_made=0,
    )
    db.add(new_story)
    await db.commit()
    await db.refresh(new_story)
    return story_schema.Story.model_validate(new_story)

async def get_story(db: AsyncSession, story_id: str) -> Optional[story_schema.Story]:
    """
    Retrieves a story by its ID, soft-deleted ones included. Always reads the committed row.
    """
    result = await db.execute(
        select(story_model.Story)
        .where(story_model.Story.id == story_id)
        .execution_options(populate_existing=True)
    )
    row = result.scalars().first()
    return story_schema.Story.model_validate(row) if row else None

async def update_story(db: AsyncSession, story_id: str, values: Dict[str, Any]) -> Optional[story_schema.Story]:
    """
    Writes only the given columns of a story and returns the stored record.
    Columns not named in `values` keep whatever concurrent writers put there.
    """
    values = {
        key: value.model_dump() if isinstance(value, BaseModel) else value
        for key, value in values.items()
        if key not in _READ_ONLY_FIELDS
    }
    if values:
        result = await db.execute(
            update(story_model.Story)
            .where(story_model.Story.id == story_id)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        await db.commit()
        if result.rowcount == 0:
            return None
    return await get_story(db, story_id)

async def increment_choices_made(db: AsyncSession, story_id: str) -> Optional[story_schema.Story]:
    """
    Adds one to the story's choice counter in a single UPDATE.
    """
    result = await db.execute(
        update(story_model.Story)
        .where(story_model.Story.id == story_id)
        .values(total_choices_made=story_model.Story.total_choices_made + 1)
        .execution_options(synchronize_session=False)
    )
    await db.commit()
    if result.rowcount == 0:
        return None
    return await get_story(db, story_id)

async def list_user_stories(db: AsyncSession, user_id: int, page: int = 1, limit: int = 10) -> Tuple[List[story_schema.Story], int]:
    """
    Returns one page of a user's stories (newest first) and the total count, skipping soft-deleted ones.
    """
    conditions = (
        story_model.Story.user_id == user_id,
        story_model.Story.deleted_at.is_(None),
    )
    total = await db.scalar(select(func.count()).select_from(story_model.Story).where(*conditions))
    result = await db.execute(
        select(story_model.Story)
        .where(*conditions)
        .order_by(story_model.Story.created_at.desc())
        .offset((page - 1) * limit)
        .limit(limit)
        .execution_options(populate_existing=True)
    )
    stories = [story_schema.Story.model_validate(row) for row in result.scalars().all()]
    return stories, total or 0

async def delete_story(db: AsyncSession, story_id: str) -> bool:
    """
    Physically deletes a story together with its contents and choices.
    """
    result = await db.execute(select(story_model.Story).where(story_model.Story.id == story_id))
    row = result.scalars().first()
    if not row:
        return False
    await db.execute(delete(story_model.StoryChoice).where(story_model.StoryChoice.story_id == story_id))
    await db.execute(delete(story_model.StoryContent).where(story_model.StoryContent.story_id == story_id))
    await db.delete(row)
    await db.commit()
    return True
