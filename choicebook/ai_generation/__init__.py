"""
AI image generation package for Choicebook.
"""

from .prompt_refiner import (
    DEFAULT_MAX_REFINEMENTS,
    LiteLLMImagePromptRefiner,
    PromptRefinementRequest,
    is_refinable_error,
)
from .prompting import (
    StorybookPrompt,
    build_avatar_prompt,
    build_page_image_prompt,
    build_storybook_prompt,
    page_scene,
    placeholder_prompt,
)
from .replicate_service import (
    ImageRequest,
    ImageResult,
    ReplicateImageGenerator,
    normalize_image_outputs,
)

__all__ = [
    "DEFAULT_MAX_REFINEMENTS",
    "ImageRequest",
    "ImageResult",
    "LiteLLMImagePromptRefiner",
    "PromptRefinementRequest",
    "ReplicateImageGenerator",
    "StorybookPrompt",
    "build_avatar_prompt",
    "build_page_image_prompt",
    "build_storybook_prompt",
    "is_refinable_error",
    "normalize_image_outputs",
    "page_scene",
    "placeholder_prompt",
]
