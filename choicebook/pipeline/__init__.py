"""
End-to-end orchestration for Choicebook story and image generation.
"""

from .category import CategoryGenerator, CategoryResult
from .identity import ReferenceImageAnalyzer, filter_physical_traits
from .orchestrator import (
    CategoryProgress,
    CategoryState,
    ProgressCallback,
    StoryOrchestrator,
    StoryUpdate,
    merge_category_result,
)
from .providers import ImageGenerator, PromptRefiner, StoryRepository, TextGenerator
from .repository import InMemoryStoryRepository, YamlStoryRepository

__all__ = [
    "CategoryGenerator",
    "CategoryProgress",
    "CategoryResult",
    "CategoryState",
    "ImageGenerator",
    "InMemoryStoryRepository",
    "ProgressCallback",
    "PromptRefiner",
    "ReferenceImageAnalyzer",
    "StoryOrchestrator",
    "StoryRepository",
    "StoryUpdate",
    "TextGenerator",
    "YamlStoryRepository",
    "filter_physical_traits",
    "merge_category_result",
]
