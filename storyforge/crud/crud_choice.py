from typing import List, Optional
from sqlalchemy import update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.future import select
from sqlalchemy.ext.asyncio import AsyncSession

from storyforge.models import story as story_model
from storyforge.schemas import story as story_schema

async def create_choices(db: AsyncSession, story_id: str, parent_content_id: str, drafts: List[story_schema.ChoiceDraft]) -> List[story_schema.Choice]:
    """
    Persists a batch of choices for one segment, numbering them 1..n in the given order.
    """
    rows = [
        story_model.StoryChoice(
            story_id=story_id,
            parent_content_id=parent_content_id,
            text=draft.text,
            description=draft.description,
            type=draft.type,
            consequences=draft.consequences,
            sequence=index,
        )
        for index, draft in enumerate(drafts, start=1)
    ]
    db.add_all(rows)
    try:
        await db.commit()
    except SQLAlchemyError:
        await db.rollback()
        raise
    for row in rows:
        await db.refresh(row)
    return [story_schema.Choice.model_validate(row) for row in rows]

async def get_choice(db: AsyncSession, choice_id: str) -> Optional[story_schema.Choice]:
    result = await db.execute(
        select(story_model.StoryChoice)
        .where(story_model.StoryChoice.id == choice_id)
        .execution_options(populate_existing=True)
    )
    row = result.scalars().first()
    return story_schema.Choice.model_validate(row) if row else None

async def list_choices_by_story(db: AsyncSession, story_id: str) -> List[story_schema.Choice]:
    """
    Returns every choice of a story, ordered by segment sequence and then choice sequence.
    """
    result = await db.execute(
        select(story_model.StoryChoice)
        .join(story_model.StoryContent, story_model.StoryContent.id == story_model.StoryChoice.parent_content_id)
        .where(story_model.StoryChoice.story_id == story_id)
        .order_by(story_model.StoryContent.sequence, story_model.StoryChoice.sequence)
        .execution_options(populate_existing=True)
    )
    return [story_schema.Choice.model_validate(row) for row in result.scalars().all()]

async def list_choices_by_content(db: AsyncSession, content_id: str) -> List[story_schema.Choice]:
    result = await db.execute(
        select(story_model.StoryChoice)
        .where(story_model.StoryChoice.parent_content_id == content_id)
        .order_by(story_model.StoryChoice.sequence)
        .execution_options(populate_existing=True)
    )
    return [story_schema.Choice.model_validate(row) for row in result.scalars().all()]

async def mark_selected(db: AsyncSession, choice: story_schema.Choice) -> Optional[story_schema.Choice]:
    """
    Stores the selection of a choice, but only if the row is still available and unselected.
    Returns None when another writer got there first, leaving the stored selected_at untouched.
    """
    result = await db.execute(
        update(story_model.StoryChoice)
        .where(
            story_model.StoryChoice.id == choice.id,
            story_model.StoryChoice.is_selected.is_(False),
            story_model.StoryChoice.is_available.is_(True),
        )
        .values(is_selected=True, selected_at=choice.selected_at)
        .execution_options(synchronize_session=False)
    )
    await db.commit()
    if result.rowcount == 0:
        return None
    return await get_choice(db, choice.id)
