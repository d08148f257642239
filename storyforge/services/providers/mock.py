import json
import logging
import unicodedata
from typing import Dict, List, NamedTuple, Tuple

from storyforge.services.providers.base import GenerationOptions, ModerationResult, RequestKind

logger = logging.getLogger(__name__)


class MockSegment(NamedTuple):
    content: str
    choices: Tuple[dict, ...]


MOCK_SEGMENTS: Tuple[MockSegment, ...] = (
    MockSegment(
        content=(
            "Once upon a time, in a distant kingdom called Eldoria, magic flowed through snow-covered mountains "
            "and enchanted forests. Young Princess Lyra discovered an ancient scroll in her library, revealing the "
            "existence of a lost artifact known as the Crystal of Harmony. This crystal had the power to restore "
            "balance between the magical kingdoms that had been at war for decades.\n\n"
            "Determined to bring peace to her people, Lyra decided to embark on a dangerous journey to find the "
            "crystal. She knew she couldn't do this alone, so she gathered a group of loyal companions: Kael, a "
            "skilled elven warrior with the sword; Mira, a mage who specialized in protection spells; and Thorin, "
            "a dwarf who knew the secrets of the ancient mountains."
        ),
        choices=(
            {"text": "Depart immediately for the Dark Forest", "description": "Follow the first clue from the scroll without delay", "type": "action"},
            {"text": "Gather more information in the library", "description": "Research more about the Crystal of Harmony before departing", "type": "exploration"},
            {"text": "Consult the kingdom's oracle", "description": "Seek mystical guidance before beginning the journey", "type": "dialogue"},
            {"text": "Train with the companions", "description": "Spend time preparing and strengthening the team", "type": "action"},
        ),
    ),
    MockSegment(
        content=(
            "The first clue from the scroll led the group to the Dark Forest, a place where few ventured and even "
            "fewer returned. The trees whispered ancient secrets, and mystical creatures watched every movement of "
            "the group. As they advanced deeper into the forest, they found ruins of a lost civilization, where "
            "magical symbols glowed faintly on moss-covered stones.\n\n"
            "Mira examined the symbols carefully, recognizing some as being from the ancient elven language. "
            "\"These symbols speak of a trial,\" she murmured. \"Only those pure of heart may proceed.\" Suddenly, "
            "the ground began to shake, and an ethereal voice echoed through the ruins: \"Who dares disturb the "
            "rest of the ancients?\""
        ),
        choices=(
            {"text": "Lyra steps forward and speaks", "description": "The princess presents herself and explains her noble mission", "type": "dialogue"},
            {"text": "Prepare for battle", "description": "Kael and the group prepare to defend themselves", "type": "action"},
            {"text": "Mira casts a protection spell", "description": "The mage creates a magical barrier around the group", "type": "action"},
            {"text": "Thorin examines the ruins", "description": "The dwarf searches for clues about the trial", "type": "exploration"},
        ),
    ),
    MockSegment(
        content=(
            "Lyra stepped forward with courage, her voice firm but respectful. \"We are seekers of peace,\" she "
            "declared. \"We search for the Crystal of Harmony to end the war that has plagued our lands.\" The "
            "ethereal voice fell silent for a moment, and then the ruins began to glow with an intense blue light.\n\n"
            "\"Your heart is pure, young princess,\" the voice responded. \"But the path to the crystal is fraught "
            "with trials. You must prove not only your courage but also your wisdom and compassion.\" A portal of "
            "light opened before them, revealing a path that seemed to lead to another dimension."
        ),
        choices=(
            {"text": "Enter the portal immediately", "description": "Accept the challenge without hesitation", "type": "action"},
            {"text": "Ask about the trials", "description": "Seek more information before proceeding", "type": "dialogue"},
            {"text": "Discuss with the group", "description": "Consult the companions before making a decision", "type": "dialogue"},
            {"text": "Prepare supplies", "description": "Organize equipment before entering the portal", "type": "exploration"},
        ),
    ),
    MockSegment(
        content=(
            "The group crossed the portal and found themselves in a realm of pure magic, where reality seemed to "
            "bend to the will of thought. They faced three trials: the Trial of Courage, where they had to face "
            "their deepest fears; the Trial of Wisdom, where they solved ancient riddles; and the Trial of "
            "Compassion, where they had to choose between personal gain and the greater good.\n\n"
            "With each trial overcome, the group grew stronger and more united. Finally, they reached the chamber "
            "where the Crystal of Harmony rested, glowing with a soft, welcoming light. But as Lyra approached to "
            "take the crystal, a dark figure emerged from the shadows.\n\n"
            "\"So, you've made it this far,\" said the figure, revealing himself to be the Dark Sorcerer Malachar, "
            "the one who had started the war between the kingdoms. \"But the crystal will be mine, and with it, I "
            "will rule all the lands!\""
        ),
        choices=(
            {"text": "Challenge Malachar to a duel", "description": "Kael steps forward to face the sorcerer", "type": "action"},
            {"text": "Try to reason with him", "description": "Lyra attempts to appeal to any good left in Malachar", "type": "dialogue"},
            {"text": "Use the power of the crystal", "description": "Attempt to channel the crystal's energy", "type": "action"},
            {"text": "Work together as a team", "description": "Combine everyone's abilities for a coordinated attack", "type": "action"},
        ),
    ),
    MockSegment(
        content=(
            "The final battle was epic. Malachar wielded dark magic with devastating power, but the group fought "
            "with courage and determination. Lyra realized that the true power of the Crystal of Harmony wasn't in "
            "combat, but in unity and peace.\n\n"
            "Instead of using the crystal as a weapon, she channeled its energy to show Malachar visions of what "
            "the world could be: kingdoms living in harmony, children playing without fear, and families reunited. "
            "The dark sorcerer, touched by these visions, began to remember who he was before darkness consumed "
            "him.\n\n"
            "With tears in his eyes, Malachar renounced his dark powers and asked for forgiveness. The Crystal of "
            "Harmony glowed brighter than ever, and its light spread across all the lands, healing old wounds and "
            "bringing peace to the warring kingdoms.\n\n"
            "And so, the legend of Princess Lyra and the Crystal of Harmony was told for generations, reminding "
            "everyone that even in the darkest hours, hope and unity can overcome any adversity."
        ),
        choices=(),
    ),
)

DEFAULT_IMAGE_URL = "https://example.com/mock-story-image.jpg"
DEFAULT_AUDIO_URL = "https://example.com/mock-story-audio.mp3"


def classify_prompt(prompt: str) -> RequestKind:
    """
    Guesses what a free-text prompt asks for. Only the mock relies on this;
    callers that know the request kind pass it in GenerationOptions.
    """
    lowered = prompt.lower()
    if "choice" in lowered or "escolha" in lowered:
        return RequestKind.CHOICES
    if "continue" in lowered or "continuar" in lowered:
        return RequestKind.CONTINUATION
    return RequestKind.NARRATIVE


class DeterministicMockProvider:
    """
    Replays a fixed five-segment story.

    Output is indexed by the caller-supplied segment count, never by internal
    state, so the same (prompt, current_segment_count) always returns the same
    text. Counts past the end stick to the last segment.
    """

    provider_id = "mocked"
    models = ["test", "mock", "test-model-v1", "test-model-v2", "mock-gpt-4", "mock-gemini"]

    def __init__(self, segments: Tuple[MockSegment, ...] = MOCK_SEGMENTS, cost_per_token: float = 0.001):
        self.segments = segments
        self.cost_per_token = cost_per_token
        self._progress: Dict[str, int] = {}  # Advisory only; never read by generate_text. Finished stories are dropped.

    def segment_index(self, current_segment_count: int) -> int:
        return min(max(current_segment_count, 0), len(self.segments) - 1)

    def progress(self, story_id: str) -> int:
        return self._progress.get(story_id, 0)

    def _track(self, story_id: str, index: int) -> None:
        if index >= len(self.segments) - 1:
            self._progress.pop(story_id, None)
        else:
            self._progress[story_id] = max(self._progress.get(story_id, 0), index + 1)

    async def generate_text(self, prompt: str, options: GenerationOptions) -> str:
        index = self.segment_index(options.current_segment_count)
        kind = options.kind or classify_prompt(prompt)
        segment = self.segments[index]

        if options.story_id:
            self._track(options.story_id, index)

        logger.debug(f"Mock {kind.value} request for story {options.story_id} at segment index {index}")
        if kind == RequestKind.CHOICES:
            return json.dumps(list(segment.choices), ensure_ascii=False)
        return segment.content

    async def generate_image(self, prompt: str, options: GenerationOptions) -> str:
        lowered = prompt.lower()
        if "forest" in lowered or "floresta" in lowered:
            return "https://example.com/mock-forest-image.jpg"
        if "character" in lowered or "personagem" in lowered:
            return "https://example.com/mock-character-image.jpg"
        return DEFAULT_IMAGE_URL

    async def generate_audio(self, prompt: str, options: GenerationOptions) -> str:
        # Strip accents so "dramático" matches "dramatico".
        normalized = "".join(
            ch for ch in unicodedata.normalize("NFD", prompt.lower())
            if not unicodedata.combining(ch)
        )
        if "dramatic" in normalized or "dramatico" in normalized:
            return "https://example.com/mock-dramatic-audio.mp3"
        if "calm" in normalized or "calmo" in normalized:
            return "https://example.com/mock-calm-audio.mp3"
        return DEFAULT_AUDIO_URL

    async def is_available(self) -> bool:
        return True

    async def list_models(self) -> List[str]:
        return list(self.models)

    async def estimate_cost(self, input_units: int, output_units: int) -> float:
        return (input_units + output_units) * self.cost_per_token

    async def moderate_content(self, text: str) -> ModerationResult:
        lowered = text.lower()
        flagged = "inappropriate" in lowered or "harmful" in lowered
        return ModerationResult(
            flagged=flagged,
            categories=["mock-violation"] if flagged else [],
            confidence=0.95 if flagged else 0.05,
        )
