"""
Async chat completion helper on top of LiteLLM.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Mapping, Sequence

from litellm import acompletion

ChatMessage = Mapping[str, Any]

DEFAULT_TIMEOUT = 120.0

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ChatResult:
    """
    Text of one chat completion, with the provider response it was read from.
    """

    text: str
    raw: Any
    finish_reason: str | None = None

    @property
    def truncated(self) -> bool:
        return self.finish_reason == "length"


CompletionCallable = Callable[..., Awaitable[ChatResult]]


def default_timeout() -> float:
    return float(os.getenv("CHOICEBOOK_LLM_TIMEOUT", DEFAULT_TIMEOUT))


async def call_chat_completion(
    *,
    model: str,
    messages: Sequence[ChatMessage],
    temperature: float | None = None,
    max_tokens: int | None = None,
    api_key: str | None = None,
    timeout: float | None = None,
    **extra_kwargs: Any,
) -> ChatResult:
    """
    Send a single chat completion through ``litellm.acompletion``.

    LiteLLM's built-in retries are turned off; callers retry through
    :func:`choicebook.common.retry.with_retry`.
    """
    optional = {"temperature": temperature, "max_tokens": max_tokens, "api_key": api_key}
    payload: dict[str, Any] = {
        "model": model,
        "messages": list(messages),
        "num_retries": 0,
        "timeout": timeout if timeout is not None else default_timeout(),
        **{key: value for key, value in optional.items() if value is not None},
        **extra_kwargs,
    }

    response = await acompletion(**payload)

    try:
        choice = response["choices"][0]
        content = choice["message"]["content"]
    except (KeyError, IndexError, TypeError) as exc:
        raise RuntimeError("Unexpected LiteLLM response format.") from exc

    if isinstance(choice, Mapping):
        finish_reason = choice.get("finish_reason")
    else:
        finish_reason = getattr(choice, "finish_reason", None)

    result = ChatResult(text=str(content or "").strip(), raw=response, finish_reason=finish_reason)
    if result.truncated:
        logger.warning("Completion from %s stopped at max_tokens; text is truncated.", model)
    return result
