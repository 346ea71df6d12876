"""
Story and page entities shared by the generation pipeline.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Iterable, Mapping, Sequence

import yaml

from .status import StoryStatus

logger = logging.getLogger(__name__)


class PageType(str, Enum):
    """Story categories; each one is generated and error-tracked as a unit."""

    COVER = "cover"
    NORMAL = "normal"
    GOOD = "good"
    BAD = "bad"
    GOOD_CHOICE = "good_choice"
    BAD_CHOICE = "bad_choice"


_PAGE_TYPE_ALIASES: Mapping[str, PageType] = {
    "good": PageType.GOOD,
    "goodflow": PageType.GOOD,
    "bad": PageType.BAD,
    "badflow": PageType.BAD,
    "cover": PageType.COVER,
    "good_choice": PageType.GOOD_CHOICE,
    "bad_choice": PageType.BAD_CHOICE,
    "normal": PageType.NORMAL,
    "choice": PageType.NORMAL,
}


def page_type_from_string(value: str | PageType | None) -> PageType:
    """
    Resolve a page type from loosely formatted provider output. Unknown values fall
    back to NORMAL.
    """
    if isinstance(value, PageType):
        return value
    normalized = str(value or "").strip().lower().replace("-", "_").replace(" ", "_")
    page_type = _PAGE_TYPE_ALIASES.get(normalized)
    if page_type is None:
        logger.warning("Unknown page type %r, defaulting to NORMAL.", value)
        return PageType.NORMAL
    return page_type


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


PageKey = tuple[PageType, int]


@dataclass(frozen=True)
class StoryPage:
    """
    A single page of a story.

    ``page_num`` orders pages inside their category; a page is identified by
    ``(page_type, page_num)``, never by its position in the story.
    """

    page_type: PageType
    page_num: int
    story_text: str = ""
    image_prompt: str = ""
    selected_image_url: str | None = None
    images_urls: tuple[str, ...] = ()

    @property
    def key(self) -> PageKey:
        return (self.page_type, self.page_num)

    @property
    def has_image(self) -> bool:
        return bool(self.selected_image_url)

    def with_images(self, image_urls: Sequence[str]) -> "StoryPage":
        """Return a copy holding the candidates, with the first one selected."""
        candidates = tuple(url for url in image_urls if url)
        return replace(
            self,
            images_urls=candidates,
            selected_image_url=candidates[0] if candidates else None,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "pageType": self.page_type.value,
            "pageNum": self.page_num,
            "storyText": self.story_text,
            "imagePrompt": self.image_prompt,
            "selectedImageUrl": self.selected_image_url,
            "imagesUrls": list(self.images_urls),
        }

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "StoryPage":
        try:
            page_num = int(payload.get("pageNum", payload.get("page_num", 0)))
        except (TypeError, ValueError) as exc:
            raise ValueError(f"Invalid page number in page payload: {payload}") from exc

        images = payload.get("imagesUrls", payload.get("images_urls")) or ()
        return cls(
            page_type=page_type_from_string(
                payload.get("pageType", payload.get("page_type", "normal"))
            ),
            page_num=page_num,
            story_text=str(payload.get("storyText", payload.get("story_text")) or ""),
            image_prompt=str(payload.get("imagePrompt", payload.get("image_prompt")) or ""),
            selected_image_url=payload.get(
                "selectedImageUrl", payload.get("selected_image_url")
            )
            or None,
            images_urls=tuple(str(url) for url in images),
        )


def completion_percentage(pages: Sequence[StoryPage]) -> float:
    """Share of pages with a selected image, in percent. An empty story is at 0."""
    if not pages:
        return 0.0
    done = sum(1 for page in pages if page.has_image)
    return done / len(pages) * 100


@dataclass
class Story:
    """
    A personalized story and its pages.

    The generation pipeline only changes ``pages``, ``status`` and
    ``last_updated``; everything else is owned by the caller.
    """

    id: str
    kid_id: str
    account_id: str
    title: str
    problem_description: str = ""
    advantages: str = ""
    disadvantages: str = ""
    status: StoryStatus = StoryStatus.INCOMPLETE
    pages: list[StoryPage] = field(default_factory=list)
    created_at: datetime = field(default_factory=utcnow)
    last_updated: datetime = field(default_factory=utcnow)

    def pages_by_type(self, page_type: PageType) -> list[StoryPage]:
        return [page for page in self.pages if page.page_type == page_type]

    def page_types(self) -> list[PageType]:
        """Distinct categories present in the story, in order of first appearance."""
        seen: list[PageType] = []
        for page in self.pages:
            if page.page_type not in seen:
                seen.append(page.page_type)
        return seen

    def find_page(self, page_type: PageType, page_num: int) -> StoryPage | None:
        return next((page for page in self.pages if page.key == (page_type, page_num)), None)

    def completion_percentage(self) -> float:
        return completion_percentage(self.pages)

    def touch(self, now: datetime | None = None) -> None:
        """Bump ``last_updated`` without ever moving it backwards."""
        moment = now or utcnow()
        if moment > self.last_updated:
            self.last_updated = moment

    def copy(self) -> "Story":
        return replace(self, pages=list(self.pages))

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "kidId": self.kid_id,
            "accountId": self.account_id,
            "title": self.title,
            "problemDescription": self.problem_description,
            "advantages": self.advantages,
            "disadvantages": self.disadvantages,
            "status": self.status.value,
            "pages": [page.to_dict() for page in self.pages],
            "createdAt": self.created_at.isoformat(),
            "lastUpdated": self.last_updated.isoformat(),
        }

    def to_yaml(self) -> str:
        return yaml.safe_dump(self.to_dict(), sort_keys=False, allow_unicode=True)

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "Story":
        story_id = str(payload.get("id") or "").strip()
        if not story_id:
            raise ValueError("Story payload must include a non-empty 'id'.")

        pages = [StoryPage.from_dict(entry) for entry in payload.get("pages") or ()]
        _ensure_unique_keys(pages)

        account_id = payload.get("accountId") or payload.get("userId") or ""
        return cls(
            id=story_id,
            kid_id=str(payload.get("kidId") or ""),
            account_id=str(account_id),
            title=str(payload.get("title") or ""),
            problem_description=str(payload.get("problemDescription") or ""),
            advantages=str(payload.get("advantages") or ""),
            disadvantages=str(payload.get("disadvantages") or ""),
            status=StoryStatus.parse(payload.get("status") or StoryStatus.INCOMPLETE),
            pages=pages,
            created_at=_parse_datetime(payload.get("createdAt")),
            last_updated=_parse_datetime(payload.get("lastUpdated")),
        )

    @classmethod
    def from_yaml(cls, source: str | Path) -> "Story":
        path = Path(source)
        data = yaml.safe_load(path.read_text(encoding="utf-8"))
        if not isinstance(data, Mapping):
            raise ValueError("Story YAML must deserialize to a mapping.")
        return cls.from_dict(data)


def _ensure_unique_keys(pages: Iterable[StoryPage]) -> None:
    seen: set[PageKey] = set()
    for page in pages:
        if page.key in seen:
            raise ValueError(
                f"Duplicate page number {page.page_num} for page type '{page.page_type.value}'."
            )
        seen.add(page.key)


def _parse_datetime(value: Any) -> datetime:
    if value is None or value == "":
        return utcnow()
    if isinstance(value, datetime):
        moment = value
    else:
        moment = datetime.fromisoformat(str(value))
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment
