from typing import Any, Dict, List, Optional
import datetime
import enum
import uuid
from sqlmodel import Field, SQLModel
from sqlalchemy import JSON, Column, DateTime, ForeignKey, String, Text, UniqueConstraint
from sqlalchemy.sql import func


class StoryStatus(str, enum.Enum):
    DRAFT = "draft"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    PUBLISHED = "published"
    ARCHIVED = "archived"
    DELETED = "deleted"


class StoryGenre(str, enum.Enum):
    FANTASY = "fantasy"
    SCIENCE_FICTION = "science_fiction"
    MYSTERY = "mystery"
    THRILLER = "thriller"
    ROMANCE = "romance"
    HORROR = "horror"
    ADVENTURE = "adventure"
    DRAMA = "drama"
    COMEDY = "comedy"
    HISTORICAL = "historical"
    WESTERN = "western"
    CRIME = "crime"
    SUPERNATURAL = "supernatural"
    DYSTOPIAN = "dystopian"
    STEAMPUNK = "steampunk"
    CYBERPUNK = "cyberpunk"
    URBAN_FANTASY = "urban_fantasy"
    SLICE_OF_LIFE = "slice_of_life"
    COMING_OF_AGE = "coming_of_age"
    CUSTOM = "custom"


class ChoiceType(str, enum.Enum):
    NARRATIVE = "narrative"
    DIALOGUE = "dialogue"
    ACTION = "action"
    MORAL = "moral"
    STRATEGIC = "strategic"
    EXPLORATION = "exploration"
    RELATIONSHIP = "relationship"
    SKILL_CHECK = "skill_check"
    INVENTORY = "inventory"
    ENDING = "ending"


def new_id() -> str:
    return str(uuid.uuid4())


class Story(SQLModel, table=True):
    __tablename__ = "stories"

    id: str = Field(default_factory=new_id, primary_key=True)
    title: str
    description: str
    genre: StoryGenre
    custom_genre: Optional[str] = Field(default=None)
    user_id: int = Field(index=True)
    status: StoryStatus = Field(default=StoryStatus.DRAFT, index=True)
    status_before_archive: Optional[StoryStatus] = Field(default=None)
    prompts: List[str] = Field(default_factory=list, sa_column=Column(JSON, nullable=False))  # Append-only prompt history
    settings: Dict[str, Any] = Field(default_factory=dict, sa_column=Column(JSON, nullable=False))
    current_content_id: Optional[str] = Field(default=None)
    total_choices_made: int = Field(default=0)
    estimated_reading_time: Optional[int] = Field(default=None)  # Minutes
    created_at: datetime.datetime = Field(
        sa_column=Column(
            DateTime(timezone=True),
            server_default=func.now(),
            nullable=False,
        )
    )
    updated_at: datetime.datetime = Field(
        sa_column=Column(
            DateTime(timezone=True),
            server_default=func.now(),
            onupdate=func.now(),
            nullable=False,
        )
    )
    deleted_at: Optional[datetime.datetime] = Field(
        default=None,
        sa_column=Column(DateTime(timezone=True), nullable=True),
    )


class StoryContent(SQLModel, table=True):
    """A narrative segment. (story_id, sequence) is the backstop against concurrent progressions."""
    __tablename__ = "story_contents"
    __table_args__ = (
        UniqueConstraint("story_id", "sequence", name="uq_story_contents_story_sequence"),
    )

    id: str = Field(default_factory=new_id, primary_key=True)
    story_id: str = Field(
        sa_column=Column(String, ForeignKey("stories.id", ondelete="CASCADE"), nullable=False, index=True)
    )
    text_content: str = Field(sa_column=Column(Text, nullable=False))
    sequence: int
    image_url: Optional[str] = Field(default=None)
    audio_url: Optional[str] = Field(default=None)
    has_choices: bool = Field(default=False)
    created_at: datetime.datetime = Field(
        sa_column=Column(
            DateTime(timezone=True),
            server_default=func.now(),
            nullable=False,
        )
    )


class StoryChoice(SQLModel, table=True):
    __tablename__ = "story_choices"
    __table_args__ = (
        UniqueConstraint("parent_content_id", "sequence", name="uq_story_choices_content_sequence"),
    )

    id: str = Field(default_factory=new_id, primary_key=True)
    story_id: str = Field(
        sa_column=Column(String, ForeignKey("stories.id", ondelete="CASCADE"), nullable=False, index=True)
    )
    parent_content_id: str = Field(
        sa_column=Column(String, ForeignKey("story_contents.id", ondelete="CASCADE"), nullable=False, index=True)
    )
    text: str
    description: str = Field(sa_column=Column(Text, nullable=False))
    type: ChoiceType = Field(default=ChoiceType.NARRATIVE)
    consequences: Optional[str] = Field(default=None)
    sequence: int
    is_available: bool = Field(default=True)
    is_selected: bool = Field(default=False)
    selected_at: Optional[datetime.datetime] = Field(
        default=None,
        sa_column=Column(DateTime(timezone=True), nullable=True),
    )
    created_at: datetime.datetime = Field(
        sa_column=Column(
            DateTime(timezone=True),
            server_default=func.now(),
            nullable=False,
        )
    )
