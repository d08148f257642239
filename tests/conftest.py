import pytest
import pytest_asyncio

from storyforge.database import build_engine, build_session_factory, init_db
from storyforge.models.story import StoryGenre
from storyforge.schemas.story import ContinuationRequest, StoryCreate
from storyforge.services.providers.mock import DeterministicMockProvider
from storyforge.services.providers.registry import ProviderConfig, ProviderRegistry
from storyforge.services.story_service import StoryService

OWNER_ID = 1
STRANGER_ID = 2


@pytest_asyncio.fixture
async def engine(tmp_path):
    """Fresh file-backed SQLite database per test."""
    engine = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'stories.db'}")
    await init_db(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return build_session_factory(engine)


@pytest_asyncio.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def mock_provider():
    return DeterministicMockProvider()


@pytest.fixture
def registry(mock_provider):
    registry = ProviderRegistry(default_provider="mocked")
    registry.register(mock_provider, ProviderConfig(provider="mocked", model="test-model-v1"))
    return registry


@pytest.fixture
def service(db, registry):
    return StoryService(db, registry, max_segments=5, minutes_per_segment=2, words_per_minute=200)


def story_create(**overrides) -> StoryCreate:
    data = {
        "title": "The Crystal of Harmony",
        "description": "A princess searches for a lost artifact to end a war.",
        "genre": StoryGenre.FANTASY,
        "initial_prompt": "Begin an epic quest in a snowy kingdom.",
    }
    data.update(overrides)
    return StoryCreate(**data)


def continuation(story_id: str, choice_id: str = None, prompt: str = None) -> ContinuationRequest:
    return ContinuationRequest(story_id=story_id, prompt=prompt, continue_from_content_id=choice_id)


@pytest_asyncio.fixture
async def story(service):
    return await service.create_story(story_create(), OWNER_ID)
