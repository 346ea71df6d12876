"""Pytest configuration and shared fixtures for Choicebook tests."""

from __future__ import annotations

from typing import Any

import pytest

from choicebook.common import RetryConfig
from choicebook.pipeline import InMemoryStoryRepository, StoryOrchestrator
from choicebook.story_generation import KidDetails, PageType, Story
from tests.helpers import (
    FakeAnalyzer,
    FakeImageGenerator,
    FakeTextGenerator,
    RecordingRepository,
    RecordingSleep,
    make_page,
    make_story,
    story_json,
)


@pytest.fixture(scope="session")
def anyio_backend():
    """Configure anyio to use asyncio only."""
    return "asyncio"


@pytest.fixture
def kid() -> KidDetails:
    return KidDetails(
        id="kid-1",
        account_id="account-1",
        name="Maya",
        age=6,
        gender="female",
        avatar_url="https://photos.test/maya.jpg",
    )


@pytest.fixture
def five_page_story() -> Story:
    """1 COVER, 2 NORMAL, 1 GOOD, 1 BAD, none illustrated."""
    return make_story(
        [
            make_page(PageType.COVER, 1),
            make_page(PageType.NORMAL, 1),
            make_page(PageType.NORMAL, 2),
            make_page(PageType.GOOD, 1),
            make_page(PageType.BAD, 1),
        ]
    )


@pytest.fixture
def no_sleep() -> RecordingSleep:
    return RecordingSleep()


@pytest.fixture
def retry_config() -> RetryConfig:
    return RetryConfig(max_retries=3, base_delay=1.0, max_delay=30.0, backoff_factor=2.0)


@pytest.fixture
def build_orchestrator(retry_config, no_sleep):
    """Factory building an orchestrator around fakes; returns (orchestrator, repository)."""

    def _build(
        *,
        text_generator: FakeTextGenerator | None = None,
        image_generator: FakeImageGenerator | None = None,
        repository: InMemoryStoryRepository | None = None,
        **kwargs: Any,
    ) -> tuple[StoryOrchestrator, InMemoryStoryRepository]:
        repo = repository if repository is not None else RecordingRepository()
        orchestrator = StoryOrchestrator(
            text_generator=text_generator or FakeTextGenerator(story_json([])),
            image_generator=image_generator or FakeImageGenerator(),
            repository=repo,
            image_analyzer=kwargs.pop("image_analyzer", FakeAnalyzer()),
            retry_config=retry_config,
            sleep=no_sleep,
            **kwargs,
        )
        return orchestrator, repo

    return _build
