"""
Reference photo analysis used to describe the kid consistently in illustration prompts.
"""

from __future__ import annotations

import logging
import os
import re
from typing import Any, Sequence

from choicebook.common import CompletionCallable, call_chat_completion

logger = logging.getLogger(__name__)


_NON_PHYSICAL_PATTERN = re.compile(
    r"\b("
    r"jacket|hoodie|sweater|coat|shirt|t-shirt|tee|top|blouse|pants|jeans|shorts|skirt|dress|"
    r"outfit|clothing|attire|costume|cape|uniform|boots|shoes|sneakers|sandals|socks|"
    r"hat|beanie|cap|helmet|gloves|scarf|mask|backpack|bag|vest|overalls|glasses|goggles|"
    r"bracelet|necklace|earrings|watch|rings|belt"
    r")\b",
    re.IGNORECASE,
)


def filter_physical_traits(notes: str) -> str:
    """Keep only bullet lines describing physical traits; drop clothing and props."""
    filtered: list[str] = []
    for raw_line in notes.splitlines():
        normalized = raw_line.strip().lstrip("-•").strip()
        if not normalized or _NON_PHYSICAL_PATTERN.search(normalized):
            continue
        filtered.append(f"- {normalized}")
    return "\n".join(filtered)


class ReferenceImageAnalyzer:
    """
    Describes the child in a reference photo with a multimodal chat model.
    """

    def __init__(
        self,
        *,
        model: str | None = None,
        api_key: str | None = None,
        completion_fn: CompletionCallable | None = None,
        max_tokens: int = 450,
        temperature: float = 0.2,
    ) -> None:
        self._model = (
            model
            or os.getenv("CHOICEBOOK_IDENTITY_MODEL")
            or os.getenv("LITELLM_IDENTITY_MODEL")
            or "gpt-4o-mini"
        )
        self._api_key = (
            api_key or os.getenv("CHOICEBOOK_IDENTITY_API_KEY") or os.getenv("OPENAI_API_KEY")
        )
        self._completion_fn: CompletionCallable = completion_fn or call_chat_completion
        self._max_tokens = max_tokens
        self._temperature = temperature

    @property
    def model(self) -> str:
        return self._model

    async def analyze(self, image_url: str) -> str:
        """
        Return bullet-point notes on the child's physical features in ``image_url``.
        """
        if not image_url or not image_url.strip():
            raise ValueError("Invalid reference image: an image URL is required.")

        messages: Sequence[dict[str, Any]] = [
            {
                "role": "system",
                "content": (
                    "You are an illustration continuity director. "
                    "Respond only with bullet points describing the child's inherent physical "
                    "facial features (face, eyes, hair, skin, freckles). "
                    "Never mention clothing, outfits, accessories, or props. "
                    "Do not speculate about names, backstory, or personality."
                ),
            },
            {
                "role": "user",
                "content": [
                    {
                        "type": "text",
                        "text": (
                            "Review the child in this reference portrait and produce a concise "
                            "bullet list of 6-8 immutable physical traits. Use the format '- detail'."
                        ),
                    },
                    {"type": "image_url", "image_url": {"url": image_url}},
                ],
            },
        ]

        result = await self._completion_fn(
            model=self._model,
            messages=messages,
            temperature=self._temperature,
            max_tokens=self._max_tokens,
            api_key=self._api_key,
        )
        notes = filter_physical_traits(result.text)
        if not notes:
            logger.warning("Reference image analysis returned no usable traits.")
        return notes
