import datetime
from pydantic import BaseModel, ConfigDict, Field
from typing import List, Optional

from storyforge.models.story import ChoiceType, StoryGenre, StoryStatus

# --- Domain Records ---
# Immutable snapshots of persisted rows. Stories are changed by writing only the
# affected columns through the crud layer and reading the record back.

class StorySettings(BaseModel):
    model: str = "mocked"  # Provider id or model name
    generate_image: bool = False
    generate_audio: bool = False


class Story(BaseModel):
    model_config = ConfigDict(frozen=True, from_attributes=True)

    id: str
    title: str
    description: str
    genre: StoryGenre
    custom_genre: Optional[str] = None
    user_id: int
    status: StoryStatus
    status_before_archive: Optional[StoryStatus] = None
    prompts: List[str] = Field(default_factory=list)
    settings: StorySettings = Field(default_factory=StorySettings)
    current_content_id: Optional[str] = None
    total_choices_made: int = 0
    estimated_reading_time: Optional[int] = None
    created_at: Optional[datetime.datetime] = None
    updated_at: Optional[datetime.datetime] = None
    deleted_at: Optional[datetime.datetime] = None

    @property
    def is_deleted(self) -> bool:
        return self.deleted_at is not None or self.status == StoryStatus.DELETED


class Segment(BaseModel):
    model_config = ConfigDict(frozen=True, from_attributes=True)

    id: str
    story_id: str
    text_content: str
    sequence: int
    image_url: Optional[str] = None
    audio_url: Optional[str] = None
    has_choices: bool = False
    created_at: Optional[datetime.datetime] = None


class Choice(BaseModel):
    model_config = ConfigDict(frozen=True, from_attributes=True)

    id: str
    story_id: str
    parent_content_id: str
    text: str
    description: str
    type: ChoiceType = ChoiceType.NARRATIVE
    consequences: Optional[str] = None
    sequence: int
    is_available: bool = True
    is_selected: bool = False
    selected_at: Optional[datetime.datetime] = None
    created_at: Optional[datetime.datetime] = None

    @property
    def is_selectable(self) -> bool:
        return self.is_available and not self.is_selected


class ChoiceDraft(BaseModel):
    """A validated choice candidate that has not been persisted yet."""
    model_config = ConfigDict(frozen=True)

    text: str
    description: str
    type: ChoiceType = ChoiceType.NARRATIVE
    consequences: Optional[str] = None

# --- Request Models ---

class StoryCreate(BaseModel):
    title: str
    description: str
    genre: StoryGenre
    custom_genre: Optional[str] = None
    initial_prompt: str
    settings: Optional[StorySettings] = None

class StoryUpdate(BaseModel):
    title: Optional[str] = None
    description: Optional[str] = None
    settings: Optional[StorySettings] = None

class ContinueBody(BaseModel):
    prompt: Optional[str] = None
    continue_from_content_id: Optional[str] = None

class ContinuationRequest(BaseModel):
    story_id: str
    prompt: Optional[str] = None
    continue_from_content_id: Optional[str] = None  # Id of the selected choice to continue from

# --- Response Models ---

class ContinuationResult(BaseModel):
    success: bool
    segment: Optional[Segment] = None
    choices: List[Choice] = Field(default_factory=list)
    error: Optional[str] = None

class StoryProgress(BaseModel):
    story_id: str
    current_content_id: Optional[str] = None
    choices_made: int
    progress_percentage: float
    estimated_time_remaining: int  # Minutes

class StoryDetails(BaseModel):
    story: Story
    progress: StoryProgress
    content: List[Segment]
    choices: List[Choice]

class StoryPage(BaseModel):
    items: List[Story]
    total: int
    page: int
    limit: int

class ChoiceSelectionResponse(BaseModel):
    success: bool
    story: Story
    continuation: Optional[ContinuationResult] = None
