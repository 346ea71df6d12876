"""
Capability interfaces the orchestrator consumes.
"""

from __future__ import annotations

from typing import Protocol, runtime_checkable

from choicebook.ai_generation import ImageRequest, ImageResult, PromptRefinementRequest
from choicebook.story_generation import Story, StoryTextRequest, StoryTitlesRequest, TextResult


@runtime_checkable
class TextGenerator(Protocol):
    async def generate(self, request: StoryTextRequest) -> TextResult: ...

    async def generate_titles(self, request: StoryTitlesRequest) -> TextResult: ...


@runtime_checkable
class ImageGenerator(Protocol):
    async def generate(self, request: ImageRequest) -> ImageResult: ...


@runtime_checkable
class PromptRefiner(Protocol):
    """Rewrites an illustration scene the image model rejected."""

    async def refine(self, request: PromptRefinementRequest) -> str: ...


@runtime_checkable
class StoryRepository(Protocol):
    """
    Document store for stories. ``load`` returns ``None`` for unknown ids; ``save``
    returns the story as stored.
    """

    async def load(self, story_id: str) -> Story | None: ...

    async def save(self, story: Story) -> Story: ...
