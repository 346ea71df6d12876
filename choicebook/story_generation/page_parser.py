"""
Parsing of the text provider's story response into ordered story pages.
"""

from __future__ import annotations

import json
import logging
import re
from typing import Any, Iterable, Sequence

from .models import StoryPage, page_type_from_string

logger = logging.getLogger(__name__)

_CODE_FENCE = re.compile(r"```(?:json)?", re.IGNORECASE)


class StoryParseError(ValueError):
    """A provider response could not be turned into story pages or titles."""

    def __init__(self, detail: str, *, subject: str = "story") -> None:
        # The "Invalid" prefix classifies these as INVALID_INPUT.
        super().__init__(f"Invalid {subject} response: {detail}")


def parse_story_pages(raw_text: str) -> list[StoryPage]:
    """
    Parse the JSON story payload returned by the text provider.

    Markdown code fences are stripped and a response truncated mid-page is cut back
    to its last complete page. Raises :class:`StoryParseError` when no page can be
    recovered.
    """
    if not raw_text or not raw_text.strip():
        raise StoryParseError("the response was empty.")

    pages_data = _parse_pages_json(_repair_truncated_json(strip_code_fences(raw_text)))
    pages = _convert_to_pages(pages_data)
    if not pages:
        raise StoryParseError("the response did not contain any pages.")
    _validate_page_keys(pages)
    return pages


def strip_code_fences(text: str) -> str:
    cleaned = _CODE_FENCE.sub("", text).strip()
    return cleaned.strip("`").strip()


def _repair_truncated_json(text: str) -> str:
    if text.endswith("}") or text.endswith("]}"):
        return text

    logger.warning("Story response appears truncated; attempting to recover complete pages.")
    last_complete_page = text.rfind("},")
    if last_complete_page > -1:
        return text[: last_complete_page + 1] + "]}"
    if '"pages"' in text:
        return text + "]}"
    return text + "}"


def _parse_pages_json(text: str) -> Sequence[Any]:
    try:
        parsed = json.loads(text)
    except json.JSONDecodeError as exc:
        raise StoryParseError("the response is not valid JSON.") from exc

    if not isinstance(parsed, dict):
        raise StoryParseError("the response JSON must be an object.")

    pages = parsed.get("pages")
    if not isinstance(pages, list):
        raise StoryParseError("the response JSON must contain a 'pages' list.")
    return pages


def _convert_to_pages(pages_data: Iterable[Any]) -> list[StoryPage]:
    pages: list[StoryPage] = []
    for index, item in enumerate(pages_data, start=1):
        if not isinstance(item, dict):
            raise StoryParseError(f"page entry #{index} is not an object.")
        try:
            page_num = int(item["pageNum"])
        except (KeyError, TypeError, ValueError) as exc:
            raise StoryParseError(f"page entry #{index} has no usable pageNum.") from exc

        pages.append(
            StoryPage(
                page_type=page_type_from_string(item.get("pageType")),
                page_num=page_num,
                story_text=str(item.get("text") or item.get("storyText") or "").strip(),
                image_prompt=str(item.get("imagePrompt") or "").strip(),
            )
        )
    return pages


def _validate_page_keys(pages: Sequence[StoryPage]) -> None:
    seen: set[tuple[Any, int]] = set()
    for page in pages:
        if page.key in seen:
            raise StoryParseError(
                f"page {page.page_num} appears twice in category '{page.page_type.value}'."
            )
        seen.add(page.key)
