"""
Image generation for one category of story pages.
"""

from __future__ import annotations

import asyncio
import logging
import os
from dataclasses import dataclass
from typing import Sequence

from choicebook.ai_generation import (
    DEFAULT_MAX_REFINEMENTS,
    ImageRequest,
    PromptRefinementRequest,
    build_page_image_prompt,
    is_refinable_error,
    page_scene,
)
from choicebook.common import (
    ErrorRecord,
    GenerationError,
    OperationContext,
    RetryConfig,
    SleepCallable,
    with_retry,
)
from choicebook.story_generation import KidDetails, PageType, StoryPage

from .providers import ImageGenerator, PromptRefiner

logger = logging.getLogger(__name__)

DEFAULT_MAX_CONCURRENCY = 4


def default_max_concurrency() -> int:
    return int(os.getenv("CHOICEBOOK_MAX_CONCURRENT_IMAGES", DEFAULT_MAX_CONCURRENCY))


@dataclass(frozen=True)
class CategoryResult:
    """
    Outcome of generating one category.

    ``succeeded_pages`` holds the updated pages that now have images; ``error`` is the
    first page failure (in page order) when any page failed.
    """

    category: PageType
    succeeded_pages: tuple[StoryPage, ...]
    error: ErrorRecord | None = None
    attempted_pages: int = 0

    @property
    def ok(self) -> bool:
        return self.error is None

    @property
    def failed(self) -> bool:
        return self.error is not None


class CategoryGenerator:
    """
    Generates images for every page of a category that has no selected image yet.

    Pages are independent: one page failing does not stop its siblings. Concurrent
    provider calls are capped by ``max_concurrency``. With a ``prompt_refiner``, a page
    whose prompt the image model rejects is retried with a rewritten scene, at most
    ``max_refinements`` times.
    """

    def __init__(
        self,
        image_generator: ImageGenerator,
        *,
        retry_config: RetryConfig | None = None,
        max_concurrency: int | None = None,
        output_count: int = 1,
        sleep: SleepCallable = asyncio.sleep,
        prompt_refiner: PromptRefiner | None = None,
        max_refinements: int = DEFAULT_MAX_REFINEMENTS,
    ) -> None:
        limit = max_concurrency if max_concurrency is not None else default_max_concurrency()
        if limit < 1:
            raise ValueError("max_concurrency must be at least 1.")
        if max_refinements < 0:
            raise ValueError("max_refinements must not be negative.")
        self._image_generator = image_generator
        self._retry_config = retry_config
        self._max_concurrency = limit
        self._output_count = output_count
        self._sleep = sleep
        self._prompt_refiner = prompt_refiner
        self._max_refinements = max_refinements

    async def generate_category_images(
        self,
        category: PageType,
        pages: Sequence[StoryPage],
        kid: KidDetails,
        *,
        context: OperationContext | None = None,
    ) -> CategoryResult:
        base_context = (context or OperationContext(operation="image_generation")).with_updates(
            kid_id=kid.id,
            page_type=category.value,
        )
        pending = sorted(
            (page for page in pages if page.page_type == category and not page.has_image),
            key=lambda page: page.page_num,
        )
        if not pending:
            return CategoryResult(category=category, succeeded_pages=())

        semaphore = asyncio.Semaphore(self._max_concurrency)

        async def run(page: StoryPage) -> StoryPage | ErrorRecord:
            async with semaphore:
                try:
                    return await self._generate_page(page, kid, base_context)
                except GenerationError as exc:
                    return exc.record

        outcomes = await asyncio.gather(*(run(page) for page in pending))

        succeeded: list[StoryPage] = []
        errors: list[ErrorRecord] = []
        for page, outcome in zip(pending, outcomes):
            if isinstance(outcome, StoryPage):
                succeeded.append(outcome)
            else:
                logger.warning(
                    "Image generation failed for %s page %d: %s",
                    category.value,
                    page.page_num,
                    outcome.code.value,
                )
                errors.append(outcome)

        return CategoryResult(
            category=category,
            succeeded_pages=tuple(succeeded),
            error=errors[0] if errors else None,
            attempted_pages=len(pending),
        )

    async def _generate_page(
        self,
        page: StoryPage,
        kid: KidDetails,
        context: OperationContext,
    ) -> StoryPage:
        page_context = context.with_updates(
            additional={**context.additional, "page_num": page.page_num}
        )
        refiner = self._prompt_refiner
        scene = page_scene(page)
        refinements = 0
        while True:
            try:
                return await self._illustrate(page, kid, scene, page_context)
            except GenerationError as exc:
                if refiner is None or not self._can_refine(exc.record, refinements):
                    raise
                refinements += 1
                scene = await self._refine_scene(
                    refiner, page, kid, scene, exc, refinements, page_context
                )

    async def _illustrate(
        self,
        page: StoryPage,
        kid: KidDetails,
        scene: str,
        context: OperationContext,
    ) -> StoryPage:
        prompt = build_page_image_prompt(page, kid, scene=scene)
        request = ImageRequest(
            prompt=prompt.positive,
            negative_prompt=prompt.negative,
            reference_image_url=kid.reference_image,
            output_count=self._output_count,
        )

        async def attempt() -> StoryPage:
            result = await self._image_generator.generate(request)
            if not result.image_urls:
                raise RuntimeError("Image generation returned no images.")
            return page.with_images(result.image_urls)

        return await with_retry(attempt, context, self._retry_config, sleep=self._sleep)

    def _can_refine(self, record: ErrorRecord, refinements: int) -> bool:
        return refinements < self._max_refinements and is_refinable_error(record)

    async def _refine_scene(
        self,
        refiner: PromptRefiner,
        page: StoryPage,
        kid: KidDetails,
        scene: str,
        error: GenerationError,
        attempt_number: int,
        context: OperationContext,
    ) -> str:
        logger.warning(
            "Image prompt for %s page %d was rejected (%s); rewriting it, attempt %d/%d",
            page.page_type.value,
            page.page_num,
            error.code.value,
            attempt_number,
            self._max_refinements,
        )
        request = PromptRefinementRequest(
            page_text=page.story_text or scene,
            previous_prompt=scene,
            previous_error=error.record.message,
            attempt_number=attempt_number,
            gender=kid.gender,
            age=kid.age,
        )

        async def attempt() -> str:
            return await refiner.refine(request)

        try:
            return await with_retry(
                attempt,
                context.with_updates(operation="prompt_refinement"),
                self._retry_config,
                sleep=self._sleep,
            )
        except GenerationError as refine_error:
            raise error from refine_error
