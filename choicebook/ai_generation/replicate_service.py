"""
Integration with Replicate for storybook image generation.
"""

from __future__ import annotations

import asyncio
import os
from collections.abc import Iterable as IterableABC
from dataclasses import dataclass
from typing import Any, Callable

import replicate


@dataclass(frozen=True)
class ImageRequest:
    """
    One image generation call.

    ``output_count`` above one asks for several candidates to choose from.
    """

    prompt: str
    negative_prompt: str | None = None
    reference_image_url: str | None = None
    output_count: int = 1


@dataclass(frozen=True)
class ImageResult:
    """Candidate image URLs produced by one generation call."""

    image_urls: tuple[str, ...]

    @property
    def image_url(self) -> str | None:
        return self.image_urls[0] if self.image_urls else None


@dataclass(frozen=True)
class _ModelSpec:
    build_input: Callable[..., dict[str, Any]]
    requires_reference: bool
    batch_outputs: bool


def _build_instant_id_input(*, request: ImageRequest) -> dict[str, Any]:
    return {
        "prompt": request.prompt,
        "negative_prompt": request.negative_prompt or "",
        "image": request.reference_image_url,
        "output_format": "png",
        "sdxl_weights": "protovision-xl-high-fidel",
        "guidance_scale": 5,
        "num_outputs": request.output_count,
    }


def _build_flux_kontext_input(*, request: ImageRequest) -> dict[str, Any]:
    return {
        "prompt": request.prompt,
        "input_image": request.reference_image_url,
        "output_format": "png",
        "safety_tolerance": 2,
        "prompt_upsampling": True,
        "aspect_ratio": "1:1",
    }


def _build_flux_schnell_input(*, request: ImageRequest) -> dict[str, Any]:
    return {
        "prompt": request.prompt,
        "num_outputs": request.output_count,
        "output_format": "png",
        "aspect_ratio": "1:1",
    }


_MODEL_SPECS: dict[str, _ModelSpec] = {
    "zsxkib/instant-id": _ModelSpec(_build_instant_id_input, True, True),
    "black-forest-labs/flux-kontext-pro": _ModelSpec(_build_flux_kontext_input, True, False),
    "black-forest-labs/flux-schnell": _ModelSpec(_build_flux_schnell_input, False, True),
}


def _resolve_model_spec(model_identifier: str) -> _ModelSpec:
    normalized_identifier = model_identifier.strip().lower()
    spec = _MODEL_SPECS.get(normalized_identifier)
    if spec is None and ":" in normalized_identifier:
        base_identifier = normalized_identifier.split(":", maxsplit=1)[0]
        spec = _MODEL_SPECS.get(base_identifier)
    if spec is None:
        supported_models = ", ".join(sorted(_MODEL_SPECS))
        raise ValueError(
            "Model identifier "
            f"'{model_identifier}' is not configured with a default input payload. "
            f"Supported models: {supported_models}."
        )
    return spec


class ReplicateImageGenerator:
    """
    Image provider backed by the Replicate async client.

    Parameters
    ----------
    api_token:
        Replicate API token. Falls back to ``REPLICATE_API_TOKEN`` environment variable.
    model_identifier:
        Model string in the ``owner/model[:version]`` format. Falls back to
        ``REPLICATE_MODEL`` environment variable.
    client:
        Optional pre-configured :class:`replicate.Client`. Mainly useful for testing.
    """

    def __init__(
        self,
        *,
        api_token: str | None = None,
        model_identifier: str | None = None,
        client: replicate.Client | None = None,
        **model_kwargs: Any,
    ) -> None:
        self._api_token = api_token or os.getenv("REPLICATE_API_TOKEN")
        if not self._api_token and not client:
            raise ValueError(
                "Replicate API token is required. Set REPLICATE_API_TOKEN or pass api_token."
            )

        self._model_identifier = model_identifier or os.getenv("REPLICATE_MODEL")
        if not self._model_identifier:
            raise ValueError(
                "Replicate model identifier is required. "
                "Set REPLICATE_MODEL or pass model_identifier in the form 'owner/model:version'."
            )

        self._spec = _resolve_model_spec(self._model_identifier)
        self._client = client or replicate.Client(api_token=self._api_token)
        self._model_kwargs = model_kwargs

    @property
    def model_identifier(self) -> str:
        """Return the model identifier currently used."""
        return self._model_identifier

    async def generate(self, request: ImageRequest) -> ImageResult:
        """
        Generate one or more candidate images for the request.
        """
        if request.output_count < 1:
            raise ValueError("Invalid image request: output_count must be at least 1.")
        if self._spec.requires_reference and not request.reference_image_url:
            raise ValueError(
                f"Invalid image request: model '{self._model_identifier}' needs a reference image."
            )

        if self._spec.batch_outputs or request.output_count == 1:
            outputs = await self._run(request)
        else:
            # Single-output models are called once per requested candidate.
            runs = await asyncio.gather(
                *(self._run(request) for _ in range(request.output_count))
            )
            outputs = [url for run in runs for url in run]

        if not outputs:
            raise RuntimeError("Image generation returned no images.")
        return ImageResult(image_urls=tuple(outputs[: request.output_count]))

    async def _run(self, request: ImageRequest) -> list[str]:
        replicate_input = self._spec.build_input(request=request)
        # Allow the caller to tweak model-specific knobs (e.g., guidance_scale, seed).
        replicate_input.update(self._model_kwargs)
        raw = await self._client.async_run(self._model_identifier, input=replicate_input)
        return normalize_image_outputs(raw)


def normalize_image_outputs(raw: Any) -> list[str]:
    """
    Normalize the image outputs returned by Replicate into a list of URL strings.
    """

    if raw is None:
        return []

    if isinstance(raw, str):
        return [raw]

    if isinstance(raw, bytes):
        return [raw.decode("utf-8", errors="ignore")]

    # FileOutput objects are iterable over their bytes; use their URL instead.
    if hasattr(raw, "url"):
        return [str(raw.url)]

    if isinstance(raw, IterableABC):
        collected = list(raw)
        if not collected:
            return []

        if all(isinstance(item, str) and len(item) == 1 for item in collected):
            return ["".join(collected)]

        normalized: list[str] = []
        for item in collected:
            normalized.extend(normalize_image_outputs(item))
        return normalized

    return [str(raw)]
