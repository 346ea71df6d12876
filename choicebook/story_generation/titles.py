"""
Story title suggestions: the prompt sent to the text model and the parser for its reply.
"""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass
from typing import Any

from .page_parser import StoryParseError, strip_code_fences
from .prompting import StoryPrompt

logger = logging.getLogger(__name__)

DEFAULT_TITLE_COUNT = 5

_JSON_OBJECT = re.compile(r"\{[\s\S]*\}")
_JSON_ARRAY = re.compile(r"\[[\s\S]*\]")
# Some models answer with {titles=[...]}, which is not JSON.
_TITLES_ASSIGNMENT = re.compile(r"\{\s*titles\s*=\s*\[([\s\S]*?)\]\s*\}")


@dataclass(frozen=True)
class StoryTitlesRequest:
    """Inputs the text provider receives to suggest titles for a new story."""

    name: str
    gender: str
    age: int
    problem_description: str
    advantages: str = ""
    disadvantages: str = ""
    count: int = DEFAULT_TITLE_COUNT


def build_titles_prompt(request: StoryTitlesRequest) -> StoryPrompt:
    system_prompt = f"""You name short illustrated "choice" stories for young children.
Suggest {request.count} warm, age-appropriate titles for a story in which the child is the hero
and works through the problem described. Keep each title under eight words.
Respond with valid JSON only: {{"titles": ["First title", "Second title"]}}"""

    details = [
        f"Name: {request.name}",
        f"Gender: {request.gender}",
        f"Problem Description: {request.problem_description}",
        f"Age: {request.age} years old",
    ]
    if request.advantages.strip():
        details.append(f"Advantages: {request.advantages.strip()}")
    if request.disadvantages.strip():
        details.append(f"Disadvantages: {request.disadvantages.strip()}")

    return StoryPrompt(system=system_prompt, user="\n".join(details))


def parse_story_titles(raw_text: str) -> list[str]:
    """
    Parse the titles returned by the text provider.

    Accepts a JSON list of titles or an object with a ``titles`` list, possibly
    wrapped in prose or code fences. Raises :class:`StoryParseError` when no
    non-empty list of non-empty titles can be read.
    """
    if not raw_text or not raw_text.strip():
        raise StoryParseError("the response was empty.", subject="titles")

    payload = _extract_json(strip_code_fences(raw_text))
    payload = _TITLES_ASSIGNMENT.sub(r'{"titles": [\1]}', payload)
    try:
        parsed: Any = json.loads(payload)
    except json.JSONDecodeError as exc:
        raise StoryParseError("the response is not valid JSON.", subject="titles") from exc

    titles = parsed.get("titles") if isinstance(parsed, dict) else parsed
    if not isinstance(titles, list):
        raise StoryParseError(
            "expected a list of titles or an object with a 'titles' list.", subject="titles"
        )
    if not titles:
        raise StoryParseError("no titles were generated.", subject="titles")
    if any(not isinstance(title, str) or not title.strip() for title in titles):
        raise StoryParseError("some titles are empty or not text.", subject="titles")
    return [title.strip() for title in titles]


def _extract_json(text: str) -> str:
    if (text.startswith("{") and text.endswith("}")) or (
        text.startswith("[") and text.endswith("]")
    ):
        return text

    match = _JSON_OBJECT.search(text) or _JSON_ARRAY.search(text)
    if match is None:
        raise StoryParseError("no JSON found in the response.", subject="titles")
    logger.debug("Extracted titles JSON from a response with surrounding text.")
    return match.group(0)
