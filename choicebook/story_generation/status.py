"""
Story completion lattice and the projection from completion percentage to status.
"""

from __future__ import annotations

from enum import Enum


class StoryStatus(str, Enum):
    """
    Ordered completion states of a story. Comparisons follow lattice order, so a
    status only ever advances with ``max``.
    """

    INCOMPLETE = "incomplete"
    GENERATING = "generating"
    PROGRESS10 = "10%"
    PROGRESS20 = "20%"
    PROGRESS30 = "30%"
    PROGRESS40 = "40%"
    PROGRESS50 = "50%"
    PROGRESS60 = "60%"
    PROGRESS70 = "70%"
    PROGRESS80 = "80%"
    PROGRESS90 = "90%"
    COMPLETE = "complete"

    @property
    def rank(self) -> int:
        return _LATTICE.index(self)

    def __lt__(self, other: object) -> bool:
        if not isinstance(other, StoryStatus):
            return NotImplemented
        return self.rank < other.rank

    def __le__(self, other: object) -> bool:
        if not isinstance(other, StoryStatus):
            return NotImplemented
        return self.rank <= other.rank

    def __gt__(self, other: object) -> bool:
        if not isinstance(other, StoryStatus):
            return NotImplemented
        return self.rank > other.rank

    def __ge__(self, other: object) -> bool:
        if not isinstance(other, StoryStatus):
            return NotImplemented
        return self.rank >= other.rank

    @classmethod
    def parse(cls, value: "str | StoryStatus") -> "StoryStatus":
        """Accept enum values, enum names, and legacy ``progress_<n>`` strings."""
        if isinstance(value, StoryStatus):
            return value
        text = str(value).strip()
        try:
            return cls(text.lower())
        except ValueError:
            pass
        if text.upper() in cls.__members__:
            return cls[text.upper()]
        if text.lower().startswith("progress_"):
            return project_status(float(text.split("_", 1)[1]))
        raise ValueError(f"Unknown story status: {value!r}")


_LATTICE: tuple[StoryStatus, ...] = tuple(StoryStatus)

# Highest threshold first; the first one the percentage reaches wins.
_THRESHOLDS: tuple[tuple[float, StoryStatus], ...] = (
    (100, StoryStatus.COMPLETE),
    (90, StoryStatus.PROGRESS90),
    (80, StoryStatus.PROGRESS80),
    (70, StoryStatus.PROGRESS70),
    (60, StoryStatus.PROGRESS60),
    (50, StoryStatus.PROGRESS50),
    (40, StoryStatus.PROGRESS40),
    (30, StoryStatus.PROGRESS30),
    (20, StoryStatus.PROGRESS20),
    (10, StoryStatus.PROGRESS10),
)

_PROGRESS_VALUES: dict[StoryStatus, int] = {
    StoryStatus.INCOMPLETE: 0,
    StoryStatus.GENERATING: 10,
    **{status: int(threshold) for threshold, status in _THRESHOLDS},
}


def project_status(percentage: float) -> StoryStatus:
    """
    Map a completion percentage to the largest status threshold it reaches.

    ``0`` (or less) is INCOMPLETE, anything between 0 and 10 is GENERATING and
    ``100`` (or more) is COMPLETE.
    """
    for threshold, status in _THRESHOLDS:
        if percentage >= threshold:
            return status
    if percentage > 0:
        return StoryStatus.GENERATING
    return StoryStatus.INCOMPLETE


def advance_status(current: StoryStatus, candidate: StoryStatus) -> StoryStatus:
    """Return whichever status is further along the lattice."""
    return candidate if candidate > current else current


def progress_from_status(status: StoryStatus | str) -> int:
    """Approximate percentage represented by a status, for progress displays."""
    try:
        resolved = StoryStatus.parse(status)
    except ValueError:
        return 0
    return _PROGRESS_VALUES[resolved]


def message_from_progress(progress: float | StoryStatus | str) -> str:
    """Human readable progress message for a percentage or status."""
    if isinstance(progress, (StoryStatus, str)):
        progress = progress_from_status(progress)

    if progress <= 0:
        return "Starting image generation..."
    if progress < 10:
        return "Initializing story generation..."
    if progress < 20:
        return "Generating story concept..."
    if progress < 30:
        return "Creating story title..."
    if progress < 40:
        return "Saving initial story data..."
    if progress < 50:
        return "Generating story text..."
    if progress < 60:
        return "Processing story elements..."
    if progress < 70:
        return "Preparing for image generation..."
    if progress < 80:
        return "Generating images..."
    if progress < 90:
        return "Finalizing images..."
    if progress < 100:
        return "Completing story..."
    return "Story complete!"
