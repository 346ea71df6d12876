"""
Choicebook package exposing story generation, image generation, and the orchestration pipeline.
"""

from .common import ErrorCode, ErrorRecord, GenerationError, RetryConfig
from .pipeline import (
    InMemoryStoryRepository,
    StoryOrchestrator,
    StoryUpdate,
    YamlStoryRepository,
)
from .story_generation import KidDetails, PageType, Story, StoryPage, StoryStatus

__all__ = [
    "ErrorCode",
    "ErrorRecord",
    "GenerationError",
    "InMemoryStoryRepository",
    "KidDetails",
    "PageType",
    "RetryConfig",
    "Story",
    "StoryOrchestrator",
    "StoryPage",
    "StoryStatus",
    "StoryUpdate",
    "YamlStoryRepository",
]
