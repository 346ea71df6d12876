"""
Rewrites an illustration prompt after the image model rejected it.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from typing import Any, Sequence

from choicebook.common import CompletionCallable, ErrorCode, ErrorRecord, call_chat_completion

logger = logging.getLogger(__name__)

DEFAULT_MAX_REFINEMENTS = 2

REFINABLE_ERROR_PATTERNS = (
    "content policy",
    "content_policy",
    "policy violation",
    "safety",
    "inappropriate",
    "unsafe",
    "quality",
    "invalid prompt",
    "prompt too",
    "prompt contains",
    "cannot generate",
    "unable to generate",
    "generation failed",
    "refused to generate",
    "rejected",
    "blocked",
    "filtered",
)


def is_refinable_error(record: ErrorRecord) -> bool:
    """True when a different prompt could get past the failure in ``record``."""
    if record.code is ErrorCode.CONTENT_POLICY_VIOLATION:
        return True
    message = record.message.lower()
    return any(pattern in message for pattern in REFINABLE_ERROR_PATTERNS)


@dataclass(frozen=True)
class PromptRefinementRequest:
    """
    What the text model needs to rewrite a rejected scene.

    ``attempt_number`` counts refinements of the same page, starting at 1.
    """

    page_text: str
    previous_prompt: str
    previous_error: str
    attempt_number: int
    gender: str | None = None
    age: int | None = None


class LiteLLMImagePromptRefiner:
    """
    Writes a new illustration scene from the page text and the image model's error.
    """

    def __init__(
        self,
        *,
        model: str | None = None,
        api_key: str | None = None,
        completion_fn: CompletionCallable | None = None,
        max_tokens: int = 300,
        temperature: float = 0.5,
    ) -> None:
        self._model = (
            model
            or os.getenv("CHOICEBOOK_PROMPT_MODEL")
            or os.getenv("CHOICEBOOK_STORY_MODEL")
            or "gpt-4.1-mini"
        )
        self._api_key = api_key or os.getenv("OPENAI_API_KEY") or os.getenv("LITELLM_API_KEY")
        self._completion_fn: CompletionCallable = completion_fn or call_chat_completion
        self._max_tokens = max_tokens
        self._temperature = temperature

    @property
    def model(self) -> str:
        return self._model

    async def refine(self, request: PromptRefinementRequest) -> str:
        details = [
            f"Page text: {request.page_text}",
            f"Rejected prompt: {request.previous_prompt}",
            f"Image model error: {request.previous_error}",
            f"Refinement attempt: {request.attempt_number}",
        ]
        if request.gender:
            details.append(f"Gender: {request.gender}")
        if request.age is not None:
            details.append(f"Age: {request.age} years old")

        messages: Sequence[dict[str, Any]] = [
            {
                "role": "system",
                "content": (
                    "You write one-sentence illustration prompts for children's storybooks. "
                    "The image model rejected the previous prompt. Describe the same moment of "
                    "the page as a gentle, clearly child-safe scene that avoids whatever "
                    "triggered the error. Reply with the new prompt only."
                ),
            },
            {"role": "user", "content": "\n".join(details)},
        ]

        result = await self._completion_fn(
            model=self._model,
            messages=messages,
            temperature=self._temperature,
            max_tokens=self._max_tokens,
            api_key=self._api_key,
        )
        scene = result.text.strip().strip('"').strip()
        if not scene:
            raise RuntimeError("Prompt refinement returned no text.")
        logger.debug("Refined image prompt (attempt %d): %s", request.attempt_number, scene)
        return scene
