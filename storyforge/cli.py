import typer
import asyncio
import logging
from storyforge.core.config import settings
from storyforge.database import AsyncSessionLocal, init_db
from storyforge.models.story import StoryGenre
from storyforge.schemas.story import ContinuationRequest, StoryCreate
from storyforge.services.providers.registry import ProviderRegistry
from storyforge.services.story_service import StoryService

cli_app = typer.Typer()

@cli_app.command("init-db")
def init_db_command():
    """
    Initializes the database.
    """
    print("Initializing the database...")
    asyncio.run(init_db())
    print("Database initialized.")

async def _play(genre: StoryGenre, user_id: int, choice_number: int):
    await init_db()
    async with AsyncSessionLocal() as db:
        service = StoryService(
            db,
            ProviderRegistry.from_settings(settings),
            max_segments=settings.MAX_SEGMENTS,
            minutes_per_segment=settings.MINUTES_PER_SEGMENT,
            words_per_minute=settings.READING_WORDS_PER_MINUTE,
        )
        story = await service.create_story(
            StoryCreate(
                title="The Crystal of Harmony",
                description="A princess gathers companions to end a war between magical kingdoms.",
                genre=genre,
                custom_genre="Interactive fable" if genre == StoryGenre.CUSTOM else None,
                initial_prompt="Begin an epic quest for a lost artifact.",
            ),
            user_id,
        )
        print(f"Created story {story.id}")

        request = ContinuationRequest(story_id=story.id, prompt="Begin the story with an engaging opening scene")
        while True:
            result = await service.continue_story(story.id, request, user_id)
            if not result.success:
                print(result.error)
                break
            print(f"\n--- Segment {result.segment.sequence} ---\n{result.segment.text_content}\n")
            if not result.choices:
                break
            for choice in result.choices:
                print(f"  {choice.sequence}. {choice.text} - {choice.description}")
            picked = result.choices[min(choice_number, len(result.choices)) - 1]
            print(f"\n> {picked.text}")
            await service.make_choice(story.id, picked.id, user_id)
            request = ContinuationRequest(story_id=story.id, continue_from_content_id=picked.id)

        details = await service.get_story_details(story.id, user_id)
        print(
            f"\nStory is {details.story.status.value}: {len(details.content)} segments, "
            f"{details.progress.choices_made} choices made, "
            f"about {details.story.estimated_reading_time} min of reading."
        )

@cli_app.command()
def play(
    genre: StoryGenre = typer.Option(StoryGenre.FANTASY, help="Story genre."),
    user_id: int = typer.Option(1, help="Id of the user that owns the story."),
    choice: int = typer.Option(1, min=1, max=4, help="Choice number picked at every branch."),
):
    """
    Plays a story to its end against the configured provider, always picking the same choice number.
    """
    logging.basicConfig(level=settings.LOG_LEVEL, format='%(asctime)s - %(name)s - %(levelname)s - %(message)s')
    asyncio.run(_play(genre, user_id, choice))

if __name__ == "__main__":
    cli_app()
