"""
Story lifecycle state machine.

draft -> in_progress -> completed -> published -> archived, with deletion
allowed from draft, in_progress and archived. `deleted` has no outbound
edges. All checks here are pure; callers persist the new status.
"""
from typing import Dict, FrozenSet, Optional

from storyforge.core.errors import ValidationError
from storyforge.models.story import StoryStatus

TRANSITIONS: Dict[StoryStatus, FrozenSet[StoryStatus]] = {
    StoryStatus.DRAFT: frozenset({StoryStatus.IN_PROGRESS, StoryStatus.DELETED}),
    StoryStatus.IN_PROGRESS: frozenset({StoryStatus.COMPLETED, StoryStatus.DRAFT, StoryStatus.DELETED}),
    StoryStatus.COMPLETED: frozenset({StoryStatus.PUBLISHED, StoryStatus.ARCHIVED, StoryStatus.IN_PROGRESS}),
    StoryStatus.PUBLISHED: frozenset({StoryStatus.ARCHIVED}),
    StoryStatus.ARCHIVED: frozenset({StoryStatus.PUBLISHED, StoryStatus.DELETED}),
    StoryStatus.DELETED: frozenset(),
}

# Statuses from which a new segment may be generated.
CONTINUABLE = frozenset({StoryStatus.DRAFT, StoryStatus.IN_PROGRESS})
ARCHIVABLE = frozenset({StoryStatus.COMPLETED, StoryStatus.PUBLISHED})
# Where an archived story may land when restored.
RESTORE_TARGETS = frozenset({StoryStatus.COMPLETED, StoryStatus.PUBLISHED})


def can_transition(current: StoryStatus, target: StoryStatus) -> bool:
    return target in TRANSITIONS.get(current, frozenset())


def ensure_transition(current: StoryStatus, target: StoryStatus) -> None:
    if not can_transition(current, target):
        raise ValidationError(
            f"Cannot change story status from '{current.value}' to '{target.value}'",
            {"current_status": current.value, "target_status": target.value},
        )


def can_continue(status: StoryStatus) -> bool:
    return status in CONTINUABLE


def can_archive(status: StoryStatus) -> bool:
    return status in ARCHIVABLE and can_transition(status, StoryStatus.ARCHIVED)


def can_publish(status: StoryStatus, segment_count: int) -> bool:
    return segment_count > 0 and can_transition(status, StoryStatus.PUBLISHED)


def can_restore(status: StoryStatus) -> bool:
    return status == StoryStatus.ARCHIVED


def restore_target(status_before_archive: Optional[StoryStatus]) -> StoryStatus:
    """
    Picks the status an archived story returns to: the one it was archived
    from, or completed when that was never recorded.
    """
    if status_before_archive in RESTORE_TARGETS:
        return status_before_archive
    return StoryStatus.COMPLETED
