"""
Orchestrates story text generation and concurrent per-category image generation.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import uuid
from collections import OrderedDict
from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from typing import Any, AsyncIterator, Callable, Iterable, Mapping

from choicebook.ai_generation import DEFAULT_MAX_REFINEMENTS, ImageRequest, build_avatar_prompt
from choicebook.common import (
    ErrorRecord,
    OperationContext,
    RetryConfig,
    SleepCallable,
    classify_error,
    with_retry,
)
from choicebook.story_generation import (
    KidDetails,
    PageType,
    Story,
    StoryPage,
    StoryStatus,
    StoryTextRequest,
    StoryTitlesRequest,
    advance_status,
    parse_story_pages,
    parse_story_titles,
    project_status,
)
from choicebook.story_generation.models import utcnow

from .category import CategoryGenerator, CategoryResult
from .identity import ReferenceImageAnalyzer
from .providers import ImageGenerator, PromptRefiner, StoryRepository, TextGenerator

ProgressCallback = Callable[[str, dict[str, Any]], None]

DEFAULT_MAX_TRACKED_STORIES = 256

logger = logging.getLogger(__name__)


class CategoryState(str, Enum):
    IDLE = "idle"
    GENERATING = "generating"
    COMPLETE = "complete"
    FAILED = "failed"


@dataclass(frozen=True)
class CategoryProgress:
    """Latest known generation state of one category of a story."""

    state: CategoryState
    error: ErrorRecord | None = None
    updated_at: datetime = field(default_factory=utcnow)


@dataclass(frozen=True)
class StoryUpdate:
    """
    Story as persisted after a generation step, plus the errors of categories that
    failed during it. Pages that succeeded are kept even when a category failed.
    """

    story: Story
    errors: Mapping[PageType, ErrorRecord] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return not self.errors


def merge_category_result(story: Story, result: CategoryResult) -> Story:
    """
    Return a copy of ``story`` with the result's pages applied.

    Pages are matched on ``(page_type, page_num)`` and only pages of the result's
    category are touched, so merging is idempotent and order-independent across
    categories.
    """
    replacements = {
        page.key: page for page in result.succeeded_pages if page.page_type == result.category
    }
    if not replacements:
        return story.copy()

    known_keys = {page.key for page in story.pages}
    for key in replacements.keys() - known_keys:
        logger.warning(
            "Ignoring generated %s page %d that is not part of story %s.",
            key[0].value,
            key[1],
            story.id,
        )

    merged_pages = [replacements.get(page.key, page) for page in story.pages]
    return replace(story, pages=merged_pages)


def new_story_id(now: datetime) -> str:
    return f"story-{int(now.timestamp() * 1000)}-{uuid.uuid4().hex[:9]}"


@dataclass
class _StoryLock:
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    users: int = 0


class StoryOrchestrator:
    """
    Owns the story lifecycle: text generation, per-category image generation and
    the status state machine.

    Every page or status change goes through a merge step that holds a per-story
    lock, reloads the persisted story, applies results and saves, so concurrent
    categories never overwrite each other. Category progress is kept for the
    ``max_tracked_stories`` most recently active stories.
    """

    def __init__(
        self,
        *,
        text_generator: TextGenerator,
        image_generator: ImageGenerator,
        repository: StoryRepository,
        image_analyzer: ReferenceImageAnalyzer | None = None,
        prompt_refiner: PromptRefiner | None = None,
        retry_config: RetryConfig | None = None,
        max_concurrency: int | None = None,
        max_refinements: int = DEFAULT_MAX_REFINEMENTS,
        image_output_count: int = 1,
        max_tracked_stories: int = DEFAULT_MAX_TRACKED_STORIES,
        sleep: SleepCallable = asyncio.sleep,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        if max_tracked_stories < 1:
            raise ValueError("max_tracked_stories must be at least 1.")
        self._text_generator = text_generator
        self._image_generator = image_generator
        self._repository = repository
        self._image_analyzer = image_analyzer or ReferenceImageAnalyzer()
        self._retry_config = retry_config or RetryConfig.from_env()
        self._sleep = sleep
        self._clock = clock
        self._category_generator = CategoryGenerator(
            image_generator,
            retry_config=self._retry_config,
            max_concurrency=max_concurrency,
            output_count=image_output_count,
            sleep=sleep,
            prompt_refiner=prompt_refiner,
            max_refinements=max_refinements,
        )
        self._max_tracked_stories = max_tracked_stories
        self._locks: dict[str, _StoryLock] = {}
        self._category_progress: OrderedDict[str, dict[PageType, CategoryProgress]] = (
            OrderedDict()
        )
        self._background: set[asyncio.Future[Any]] = set()

    async def generate_full_story(
        self,
        title: str,
        problem_description: str,
        kid: KidDetails,
        advantages: str = "",
        disadvantages: str = "",
        *,
        user_id: str | None = None,
        progress_callback: ProgressCallback | None = None,
    ) -> Story:
        """
        Generate the story text, split it into pages and persist a new INCOMPLETE story.

        Raises
        ------
        GenerationError
            When the text provider keeps failing or its response has no parsable page.
        """
        if not title or not title.strip():
            raise ValueError("title must be a non-empty string.")
        if not problem_description or not problem_description.strip():
            raise ValueError("problem_description must be a non-empty string.")

        acting_user = user_id or kid.account_id
        context = OperationContext(
            operation="story_generation",
            user_id=acting_user or None,
            kid_id=kid.id,
        )
        request = StoryTextRequest(
            name=kid.name,
            age=kid.age,
            gender=kid.gender,
            title=title.strip(),
            problem_description=problem_description.strip(),
            advantages=advantages or "",
            disadvantages=disadvantages or "",
        )

        self._notify(progress_callback, "story:generating", kid_id=kid.id, title=request.title)

        async def attempt() -> list[StoryPage]:
            result = await self._text_generator.generate(request)
            return parse_story_pages(result.text)

        pages = await with_retry(attempt, context, self._retry_config, sleep=self._sleep)

        now = self._clock()
        story = Story(
            id=new_story_id(now),
            kid_id=kid.id,
            account_id=acting_user,
            title=request.title,
            problem_description=request.problem_description,
            advantages=request.advantages,
            disadvantages=request.disadvantages,
            status=StoryStatus.INCOMPLETE,
            pages=pages,
            created_at=now,
            last_updated=now,
        )
        saved = await self._repository.save(story)
        self._progress_for(saved.id).update(
            {
                page_type: CategoryProgress(state=CategoryState.IDLE, updated_at=now)
                for page_type in saved.page_types()
            }
        )

        logger.info("Generated story %s with %d pages for kid %s", saved.id, len(pages), kid.id)
        self._notify(
            progress_callback,
            "story:generated",
            story_id=saved.id,
            total_pages=len(saved.pages),
            categories=[page_type.value for page_type in saved.page_types()],
        )
        return saved

    async def generate_story_titles(
        self,
        kid: KidDetails,
        problem_description: str,
        advantages: str = "",
        disadvantages: str = "",
        *,
        user_id: str | None = None,
    ) -> list[str]:
        """
        Suggest titles for a story about the kid and the problem it should address.

        Raises
        ------
        ValueError
            When the kid has no gender or age, or the problem description is empty.
        GenerationError
            When the text provider keeps failing or its reply holds no usable title.
        """
        if not kid.gender:
            raise ValueError("kid gender is required for title suggestions.")
        if kid.age is None:
            raise ValueError("kid age is required for title suggestions.")
        if not problem_description or not problem_description.strip():
            raise ValueError("problem_description must be a non-empty string.")

        context = OperationContext(
            operation="story_titles",
            user_id=(user_id or kid.account_id) or None,
            kid_id=kid.id,
        )
        request = StoryTitlesRequest(
            name=kid.name,
            gender=kid.gender,
            age=kid.age,
            problem_description=problem_description.strip(),
            advantages=advantages or "",
            disadvantages=disadvantages or "",
        )

        async def attempt() -> list[str]:
            result = await self._text_generator.generate_titles(request)
            return parse_story_titles(result.text)

        titles = await with_retry(attempt, context, self._retry_config, sleep=self._sleep)
        logger.info("Suggested %d titles for kid %s", len(titles), kid.id)
        return titles

    async def generate_category_images_for_story(
        self,
        story: Story,
        category: PageType,
        kid: KidDetails,
        *,
        progress_callback: ProgressCallback | None = None,
    ) -> StoryUpdate:
        """
        Generate images for one category and merge the pages that succeeded.

        A failed category is reported in :attr:`StoryUpdate.errors`; the story keeps
        its last computed status and the category can be retried on its own.
        """
        current = await self._repository.load(story.id) or story
        updated, result = await self._generate_and_merge(current, category, kid, progress_callback)
        return StoryUpdate(story=updated, errors=_collect_errors((result,)))

    async def generate_all_categories_concurrently(
        self,
        story: Story,
        kid: KidDetails,
        *,
        progress_callback: ProgressCallback | None = None,
    ) -> StoryUpdate:
        """
        Run one task per category present in the story and merge each as it finishes.

        The fan-in is shielded: if the caller is cancelled, in-flight categories still
        finish and persist their results. A category that fails, including while its
        pages are being saved, is reported without affecting the others.
        """
        current = await self._repository.load(story.id) or story
        categories = current.page_types()
        if not categories:
            return StoryUpdate(story=current)

        async def run(category: PageType) -> CategoryResult:
            _, result = await self._generate_and_merge(current, category, kid, progress_callback)
            return result

        tasks = [asyncio.ensure_future(run(category)) for category in categories]
        for task in tasks:
            self._background.add(task)
            task.add_done_callback(self._background.discard)

        results = await asyncio.shield(asyncio.gather(*tasks))

        final = await self._repository.load(current.id) or current
        errors = _collect_errors(results)
        self._notify(
            progress_callback,
            "story:categories_done",
            story_id=final.id,
            status=final.status.value,
            failed_categories=[category.value for category in errors],
        )
        return StoryUpdate(story=final, errors=errors)

    async def generate_avatar_image(self, kid: KidDetails) -> str:
        """
        Generate an avatar for the kid from their reference photo.

        Raises
        ------
        GenerationError
            When the image provider keeps failing or the kid has no reference photo.
        """
        context = OperationContext(
            operation="avatar_generation",
            user_id=kid.account_id or None,
            kid_id=kid.id,
        )
        prompt = build_avatar_prompt(kid)

        async def attempt() -> str:
            if not kid.avatar_url:
                raise ValueError("Invalid kid details: a reference photo is required for an avatar.")
            result = await self._image_generator.generate(
                ImageRequest(
                    prompt=prompt.positive,
                    negative_prompt=prompt.negative,
                    reference_image_url=kid.avatar_url,
                )
            )
            if not result.image_url:
                raise RuntimeError("Avatar generation returned no images.")
            return result.image_url

        return await with_retry(attempt, context, self._retry_config, sleep=self._sleep)

    async def analyze_kid_image(self, kid: KidDetails) -> str:
        """Describe the physical traits visible in the kid's reference photo."""
        context = OperationContext(
            operation="image_analysis",
            user_id=kid.account_id or None,
            kid_id=kid.id,
        )

        async def attempt() -> str:
            return await self._image_analyzer.analyze(kid.avatar_url or "")

        return await with_retry(attempt, context, self._retry_config, sleep=self._sleep)

    def category_status(self, story_id: str) -> dict[PageType, CategoryProgress]:
        """Snapshot of the per-category generation state of a story."""
        return dict(self._category_progress.get(story_id, {}))

    def forget_story(self, story_id: str) -> None:
        """Drop the category progress kept for ``story_id``."""
        self._category_progress.pop(story_id, None)

    async def _generate_and_merge(
        self,
        story: Story,
        category: PageType,
        kid: KidDetails,
        progress_callback: ProgressCallback | None,
    ) -> tuple[Story, CategoryResult]:
        self._set_category_progress(story.id, category, CategoryState.GENERATING)
        self._notify(
            progress_callback,
            "category:started",
            story_id=story.id,
            category=category.value,
            total_pages=len(story.pages_by_type(category)),
        )

        context = OperationContext(
            operation="image_generation",
            user_id=story.account_id or None,
            kid_id=story.kid_id,
            story_id=story.id,
            page_type=category.value,
        )
        attempted = 0
        try:
            result = await self._category_generator.generate_category_images(
                category,
                story.pages_by_type(category),
                kid,
                context=context,
            )
            attempted = result.attempted_pages
            updated = await self._merge_and_save(story, (result,), progress_callback)
        except Exception as exc:
            record = classify_error(exc, context)
            logger.error(
                "Category %s of story %s could not be completed: %s",
                category.value,
                story.id,
                record.message,
            )
            result = CategoryResult(
                category=category, succeeded_pages=(), error=record, attempted_pages=attempted
            )
            updated = story

        if result.error is not None:
            self._set_category_progress(story.id, category, CategoryState.FAILED, result.error)
        else:
            self._set_category_progress(story.id, category, CategoryState.COMPLETE)
        self._notify(
            progress_callback,
            "category:done",
            story_id=story.id,
            category=category.value,
            succeeded=len(result.succeeded_pages),
            attempted=result.attempted_pages,
            error_code=result.error.code.value if result.error else None,
        )
        return updated, result

    async def _merge_and_save(
        self,
        story: Story,
        results: Iterable[CategoryResult],
        progress_callback: ProgressCallback | None,
    ) -> Story:
        async with self._story_lock(story.id):
            base = await self._repository.load(story.id) or story.copy()
            merged = base
            for result in results:
                merged = merge_category_result(merged, result)

            percentage = merged.completion_percentage()
            status = advance_status(base.status, project_status(percentage))
            if merged.pages == base.pages and status == base.status:
                return base

            merged.status = status
            merged.touch(self._clock())
            saved = await self._repository.save(merged)

        logger.info(
            "Story %s at %.0f%% (%s)", saved.id, percentage, saved.status.value
        )
        self._notify(
            progress_callback,
            "story:merged",
            story_id=saved.id,
            percentage=percentage,
            status=saved.status.value,
        )
        return saved

    @contextlib.asynccontextmanager
    async def _story_lock(self, story_id: str) -> AsyncIterator[None]:
        entry = self._locks.get(story_id)
        if entry is None:
            entry = self._locks[story_id] = _StoryLock()
        entry.users += 1
        try:
            async with entry.lock:
                yield
        finally:
            entry.users -= 1
            if entry.users == 0:
                del self._locks[story_id]

    def _progress_for(self, story_id: str) -> dict[PageType, CategoryProgress]:
        progress = self._category_progress.setdefault(story_id, {})
        self._category_progress.move_to_end(story_id)
        while len(self._category_progress) > self._max_tracked_stories:
            evicted, _ = self._category_progress.popitem(last=False)
            logger.debug("No longer tracking category progress of story %s", evicted)
        return progress

    def _set_category_progress(
        self,
        story_id: str,
        category: PageType,
        state: CategoryState,
        error: ErrorRecord | None = None,
    ) -> None:
        progress = self._progress_for(story_id)
        progress[category] = CategoryProgress(state=state, error=error, updated_at=self._clock())

    @staticmethod
    def _notify(
        callback: ProgressCallback | None,
        stage: str,
        **payload: Any,
    ) -> None:
        if callback is not None:
            callback(stage, payload)


def _collect_errors(results: Iterable[CategoryResult]) -> dict[PageType, ErrorRecord]:
    return {result.category: result.error for result in results if result.error is not None}
