"""
Story generation utilities: the story model, its status lattice, and story text generation.
"""

from .models import PageType, Story, StoryPage, completion_percentage, page_type_from_string
from .page_parser import StoryParseError, parse_story_pages
from .profile import KidDetails
from .prompting import StoryPrompt, StoryTextRequest, build_story_prompt
from .status import (
    StoryStatus,
    advance_status,
    message_from_progress,
    progress_from_status,
    project_status,
)
from .story_service import LiteLLMStoryTextGenerator, TextResult
from .titles import StoryTitlesRequest, build_titles_prompt, parse_story_titles

__all__ = [
    "KidDetails",
    "LiteLLMStoryTextGenerator",
    "PageType",
    "Story",
    "StoryPage",
    "StoryParseError",
    "StoryPrompt",
    "StoryStatus",
    "StoryTextRequest",
    "StoryTitlesRequest",
    "TextResult",
    "advance_status",
    "build_story_prompt",
    "build_titles_prompt",
    "completion_percentage",
    "message_from_progress",
    "page_type_from_string",
    "parse_story_pages",
    "parse_story_titles",
    "progress_from_status",
    "project_status",
]
