from typing import Optional

from fastapi import Depends, Header, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from storyforge.core.config import settings
from storyforge.database import get_session
from storyforge.services.providers.registry import ProviderRegistry
from storyforge.services.story_service import StoryService

# One registry per process; rate-limit windows live on it.
provider_registry = ProviderRegistry.from_settings(settings)


def get_provider_registry() -> ProviderRegistry:
    return provider_registry


async def get_current_user_id(x_user_id: Optional[str] = Header(default=None)) -> int:
    """
    Reads the caller's id from the X-User-Id header. Token verification happens upstream.
    """
    if x_user_id is None:
        raise HTTPException(status_code=401, detail="Missing X-User-Id header")
    try:
        return int(x_user_id)
    except ValueError:
        raise HTTPException(status_code=401, detail="Invalid X-User-Id header")


async def get_story_service(
    db: AsyncSession = Depends(get_session),
    providers: ProviderRegistry = Depends(get_provider_registry),
) -> StoryService:
    return StoryService(
        db,
        providers,
        max_segments=settings.MAX_SEGMENTS,
        minutes_per_segment=settings.MINUTES_PER_SEGMENT,
        words_per_minute=settings.READING_WORDS_PER_MINUTE,
    )
