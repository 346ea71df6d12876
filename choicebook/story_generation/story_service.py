"""
Service layer for producing story text via LiteLLM-compatible models.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Any

from choicebook.common import ChatResult, CompletionCallable, call_chat_completion

from .prompting import StoryPrompt, StoryTextRequest, build_story_prompt
from .titles import StoryTitlesRequest, build_titles_prompt


@dataclass(frozen=True)
class TextResult:
    """Raw text returned by the text provider."""

    text: str


class LiteLLMStoryTextGenerator:
    """
    Text provider that turns a :class:`StoryTextRequest` into the story JSON payload.
    """

    def __init__(
        self,
        *,
        api_key: str | None = None,
        model: str | None = None,
        completion_fn: CompletionCallable | None = None,
        temperature: float = 0.7,
        max_output_tokens: int | None = 4000,
    ) -> None:
        self._api_key = api_key or os.getenv("OPENAI_API_KEY") or os.getenv("LITELLM_API_KEY")
        self._model = (
            model
            or os.getenv("CHOICEBOOK_STORY_MODEL")
            or os.getenv("LITELLM_STORY_MODEL")
            or os.getenv("LITELLM_MODEL")
            or "gpt-4.1-mini"
        )
        self._completion_fn: CompletionCallable = completion_fn or call_chat_completion
        self._temperature = temperature
        self._max_output_tokens = max_output_tokens

    @property
    def model(self) -> str:
        """Return the model identifier in use."""
        return self._model

    async def generate(self, request: StoryTextRequest, **response_kwargs: Any) -> TextResult:
        """
        Invoke the configured LLM to produce the story text.
        """
        return await self._complete(build_story_prompt(request), **response_kwargs)

    async def generate_titles(
        self, request: StoryTitlesRequest, **response_kwargs: Any
    ) -> TextResult:
        """Ask the model for title suggestions; the reply is parsed by the caller."""
        return await self._complete(build_titles_prompt(request), **response_kwargs)

    async def _complete(self, prompt: StoryPrompt, **response_kwargs: Any) -> TextResult:
        messages = [
            {"role": "system", "content": prompt.system},
            {"role": "user", "content": prompt.user},
        ]

        result: ChatResult = await self._completion_fn(
            model=self._model,
            messages=messages,
            temperature=self._temperature,
            max_tokens=self._max_output_tokens,
            api_key=self._api_key,
            **response_kwargs,
        )

        if not result.text:
            raise RuntimeError("LLM response did not contain any text content.")

        return TextResult(text=result.text)
