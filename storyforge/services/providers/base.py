"""Generation provider contract.

The progression engine never talks to a backend directly. It goes through
ProviderRegistry, which forwards to an object matching this protocol:

    async def generate_text(self, prompt: str, options: GenerationOptions) -> str: ...

Implementations must not touch story state; persistence belongs to the
engine. A failing call may raise any exception; the registry turns it into a
structured GenerationResult.
"""
import enum
from typing import List, Optional, Protocol

from pydantic import BaseModel


class RequestKind(str, enum.Enum):
    NARRATIVE = "narrative"
    CONTINUATION = "continuation"
    CHOICES = "choices"


class GenerationOptions(BaseModel):
    story_id: Optional[str] = None
    current_segment_count: int = 0  # Segments that existed before this request
    kind: Optional[RequestKind] = None  # Structured request kind; providers sniff the prompt when absent
    genre: Optional[str] = None
    model: Optional[str] = None
    max_tokens: Optional[int] = None
    temperature: Optional[float] = None


class ModerationResult(BaseModel):
    flagged: bool
    categories: List[str]
    confidence: float


class GenerationProvider(Protocol):
    provider_id: str

    async def generate_text(self, prompt: str, options: GenerationOptions) -> str: ...

    async def generate_image(self, prompt: str, options: GenerationOptions) -> str: ...

    async def generate_audio(self, prompt: str, options: GenerationOptions) -> str: ...

    async def is_available(self) -> bool: ...

    async def list_models(self) -> List[str]: ...

    async def estimate_cost(self, input_units: int, output_units: int) -> float: ...

    async def moderate_content(self, text: str) -> ModerationResult: ...
