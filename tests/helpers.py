"""Fakes and builders shared by the Choicebook tests."""

from __future__ import annotations

import asyncio
import json
from typing import Any, Callable, Sequence

from choicebook.ai_generation import ImageRequest, ImageResult, PromptRefinementRequest
from choicebook.pipeline import InMemoryStoryRepository
from choicebook.story_generation import (
    PageType,
    Story,
    StoryPage,
    StoryTextRequest,
    StoryTitlesRequest,
    TextResult,
)


class RecordingSleep:
    """Stand-in for asyncio.sleep that records delays without waiting."""

    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)
        await asyncio.sleep(0)


def _next_response(queue: list[str | Exception]) -> TextResult:
    response = queue.pop(0) if len(queue) > 1 else queue[0]
    if isinstance(response, Exception):
        raise response
    return TextResult(text=response)


class FakeTextGenerator:
    """
    Returns queued responses (strings) or raises queued exceptions, in order. The
    last response repeats. Title requests read from the separate ``titles`` queue.
    """

    def __init__(
        self, *responses: str | Exception, titles: Sequence[str | Exception] = ('["A title"]',)
    ) -> None:
        self._responses = list(responses)
        self._titles = list(titles)
        self.requests: list[StoryTextRequest] = []
        self.title_requests: list[StoryTitlesRequest] = []

    async def generate(self, request: StoryTextRequest) -> TextResult:
        self.requests.append(request)
        return _next_response(self._responses)

    async def generate_titles(self, request: StoryTitlesRequest) -> TextResult:
        self.title_requests.append(request)
        return _next_response(self._titles)


class FakeImageGenerator:
    """
    Returns a unique URL per call. ``failures`` maps a prompt fragment to the
    exception raised for every prompt containing it.
    """

    def __init__(
        self,
        failures: dict[str, Exception] | None = None,
        gate: Callable[[ImageRequest], Any] | None = None,
    ) -> None:
        self.failures = dict(failures or {})
        self.gate = gate
        self.requests: list[ImageRequest] = []

    async def generate(self, request: ImageRequest) -> ImageResult:
        self.requests.append(request)
        if self.gate is not None:
            await self.gate(request)
        await asyncio.sleep(0)
        for fragment, error in self.failures.items():
            if fragment in request.prompt:
                raise error
        number = len(self.requests)
        urls = tuple(
            f"https://images.test/{number}-{index}.png" for index in range(request.output_count)
        )
        return ImageResult(image_urls=urls)

    def calls_for(self, fragment: str) -> int:
        return sum(1 for request in self.requests if fragment in request.prompt)


class FakePromptRefiner:
    """Returns the queued scenes in order, or raises a queued exception."""

    def __init__(self, *scenes: str | Exception) -> None:
        self._scenes = list(scenes)
        self.requests: list[PromptRefinementRequest] = []

    async def refine(self, request: PromptRefinementRequest) -> str:
        self.requests.append(request)
        scene = self._scenes.pop(0) if len(self._scenes) > 1 else self._scenes[0]
        if isinstance(scene, Exception):
            raise scene
        return scene


class RecordingRepository(InMemoryStoryRepository):
    """In-memory repository that remembers every status it saved."""

    def __init__(self) -> None:
        super().__init__()
        self.saved_statuses: list[Any] = []

    async def save(self, story: Story) -> Story:
        self.saved_statuses.append(story.status)
        await asyncio.sleep(0)
        return await super().save(story)


class FailingSaveRepository(RecordingRepository):
    """Raises ``error`` for every save of a story matching ``fails_for``."""

    def __init__(self, fails_for: Callable[[Story], bool], error: Exception) -> None:
        super().__init__()
        self.fails_for = fails_for
        self.error = error

    async def save(self, story: Story) -> Story:
        if self.fails_for(story):
            raise self.error
        return await super().save(story)


class FakeAnalyzer:
    def __init__(self, notes: str = "- curly brown hair") -> None:
        self.notes = notes
        self.calls: list[str] = []

    async def analyze(self, image_url: str) -> str:
        self.calls.append(image_url)
        return self.notes


def make_page(
    page_type: PageType,
    page_num: int,
    *,
    image: str | None = None,
    prompt: str | None = None,
    text: str | None = None,
) -> StoryPage:
    return StoryPage(
        page_type=page_type,
        page_num=page_num,
        story_text=text if text is not None else f"{page_type.value} text {page_num}",
        image_prompt=prompt if prompt is not None else f"scene-{page_type.value}-{page_num}",
        selected_image_url=image,
        images_urls=(image,) if image else (),
    )


def make_story(pages: list[StoryPage], story_id: str = "story-1") -> Story:
    return Story(
        id=story_id,
        kid_id="kid-1",
        account_id="account-1",
        title="Maya Learns to Share",
        problem_description="Maya does not want to share her toys.",
        pages=pages,
    )


def story_json(pages: list[dict[str, Any]]) -> str:
    return json.dumps({"pages": pages})
