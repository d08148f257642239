from typing import List, Optional
from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.future import select
from sqlalchemy.ext.asyncio import AsyncSession

from storyforge.models import story as story_model
from storyforge.schemas import story as story_schema

async def create_content(db: AsyncSession, story_id: str, text_content: str, sequence: int, has_choices: bool) -> story_schema.Segment:
    """
    Persists a new segment. Raises IntegrityError if the sequence is already taken for the story.
    """
    segment = story_model.StoryContent(
        story_id=story_id,
        text_content=text_content,
        sequence=sequence,
        has_choices=has_choices,
    )
    db.add(segment)
    try:
        await db.commit()
    except IntegrityError:
        await db.rollback()
        raise
    await db.refresh(segment)
    return story_schema.Segment.model_validate(segment)

async def get_content(db: AsyncSession, content_id: str) -> Optional[story_schema.Segment]:
    result = await db.execute(select(story_model.StoryContent).where(story_model.StoryContent.id == content_id))
    row = result.scalars().first()
    return story_schema.Segment.model_validate(row) if row else None

async def list_contents(db: AsyncSession, story_id: str) -> List[story_schema.Segment]:
    """
    Returns the segments of a story ordered by sequence.
    """
    result = await db.execute(
        select(story_model.StoryContent)
        .where(story_model.StoryContent.story_id == story_id)
        .order_by(story_model.StoryContent.sequence)
    )
    return [story_schema.Segment.model_validate(row) for row in result.scalars().all()]

async def count_contents(db: AsyncSession, story_id: str) -> int:
    count = await db.scalar(
        select(func.count()).select_from(story_model.StoryContent).where(story_model.StoryContent.story_id == story_id)
    )
    return count or 0

async def update_content(db: AsyncSession, segment: story_schema.Segment) -> Optional[story_schema.Segment]:
    """
    Writes the media references of a segment. Text, sequence and choice flag never change after creation.
    """
    result = await db.execute(select(story_model.StoryContent).where(story_model.StoryContent.id == segment.id))
    row = result.scalars().first()
    if not row:
        return None
    row.image_url = segment.image_url
    row.audio_url = segment.audio_url
    await db.commit()
    await db.refresh(row)
    return story_schema.Segment.model_validate(row)
