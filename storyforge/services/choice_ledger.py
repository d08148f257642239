"""
Choice ledger: the rules that keep every non-final segment at exactly four
consistent choices, and that make selecting a choice a one-time event.
"""
import json
import logging
from datetime import datetime, timezone
from typing import Any, List, Optional

from storyforge.core.errors import InvalidStateError
from storyforge.models.story import ChoiceType
from storyforge.schemas.story import Choice, ChoiceDraft

logger = logging.getLogger(__name__)

CHOICES_PER_SEGMENT = 4

# Rotation used to pad a short candidate list; the n-th missing slot takes FILLER_CHOICES[n % 4].
FILLER_CHOICES = (
    ChoiceDraft(
        text="Continue the story",
        description="Move forward with the current narrative thread.",
        type=ChoiceType.NARRATIVE,
        consequences="This choice will influence the story direction.",
    ),
    ChoiceDraft(
        text="Explore the area",
        description="Take time to investigate your surroundings.",
        type=ChoiceType.EXPLORATION,
        consequences="This choice will influence the story direction.",
    ),
    ChoiceDraft(
        text="Take immediate action",
        description="Act quickly based on your instincts.",
        type=ChoiceType.ACTION,
        consequences="This choice will influence the story direction.",
    ),
    ChoiceDraft(
        text="Engage in dialogue",
        description="Speak with someone to gather information.",
        type=ChoiceType.DIALOGUE,
        consequences="This choice will influence the story direction.",
    ),
)


def _extract_json_from_string(text: str) -> Optional[str]:
    """
    Extracts a JSON array or object string from a larger string, cleaning up markdown.
    """
    if not text:
        return None

    text = text.strip()
    if text.startswith("```"):
        text = text[3:]
        if text.startswith("json"):
            text = text[4:]
        if text.endswith("```"):
            text = text[:-3]
        text = text.strip()

    starts = [pos for pos in (text.find('['), text.find('{')) if pos != -1]
    if not starts:
        return None
    first = min(starts)
    closing = ']' if text[first] == '[' else '}'
    last = text.rfind(closing)
    if last < first:
        return None

    return text[first:last + 1]


def parse_candidates(content: str) -> List[Any]:
    """
    Parses provider output into a list of raw choice candidates.

    Accepts a JSON array, or an object holding the array under "choices".
    Anything unparsable yields an empty list.
    """
    json_str = _extract_json_from_string(content)
    if not json_str:
        logger.warning("Choice output contained no JSON; falling back to filler choices.")
        return []
    try:
        data = json.loads(json_str)
    except json.JSONDecodeError as e:
        logger.warning(f"Failed to parse choice output: {e}")
        return []

    if isinstance(data, dict):
        data = data.get("choices", [])
    if not isinstance(data, list):
        logger.warning(f"Choice output was {type(data).__name__}, expected a list.")
        return []
    return data


def parse_choice_type(value: Any) -> ChoiceType:
    """
    Maps a free-form type tag onto ChoiceType; unknown or missing tags become narrative.
    """
    if not isinstance(value, str):
        return ChoiceType.NARRATIVE
    normalized = value.strip().lower().replace("-", "_").replace(" ", "_")
    try:
        return ChoiceType(normalized)
    except ValueError:
        return ChoiceType.NARRATIVE


def _to_draft(candidate: Any) -> Optional[ChoiceDraft]:
    if not isinstance(candidate, dict):
        return None
    text = candidate.get("text")
    description = candidate.get("description")
    if not isinstance(text, str) or not text.strip():
        return None
    if not isinstance(description, str) or not description.strip():
        return None
    consequences = candidate.get("consequences")
    return ChoiceDraft(
        text=text.strip(),
        description=description.strip(),
        type=parse_choice_type(candidate.get("type")),
        consequences=consequences if isinstance(consequences, str) else None,
    )


def build_choice_set(raw_candidates: List[Any], target_count: int = CHOICES_PER_SEGMENT) -> List[ChoiceDraft]:
    """
    Turns raw candidates into exactly `target_count` drafts.

    Candidates without text or description are dropped, surplus ones are
    truncated, and missing slots are filled from FILLER_CHOICES.
    """
    drafts = [draft for draft in map(_to_draft, raw_candidates or []) if draft is not None]
    dropped = len(raw_candidates or []) - len(drafts)
    if dropped:
        logger.info(f"Dropped {dropped} invalid choice candidate(s).")

    drafts = drafts[:target_count]
    while len(drafts) < target_count:
        drafts.append(FILLER_CHOICES[len(drafts) % len(FILLER_CHOICES)])
    return drafts


def select(choice: Choice, now: Optional[datetime] = None) -> Choice:
    """
    Returns the selected copy of a choice. A choice can be selected once, and only while available.
    """
    if not choice.is_available:
        raise InvalidStateError(
            "Cannot select an unavailable choice",
            {"choice_id": choice.id},
        )
    if choice.is_selected:
        raise InvalidStateError(
            "Choice is already selected",
            {"choice_id": choice.id, "selected_at": choice.selected_at.isoformat() if choice.selected_at else None},
        )
    return choice.model_copy(update={
        "is_selected": True,
        "selected_at": now or datetime.now(timezone.utc),
    })
