"""
Prompt construction utilities for Choicebook illustrations.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Sequence

from choicebook.story_generation import KidDetails, StoryPage

NEGATIVE_PROMPT = (
    "identity drift, age change, plastic skin, uncanny valley, harsh shadows, blown highlights, "
    "excessive stylization, obscured face, cluttered background, watermark, text, logo"
)

AVATAR_SCENE = (
    "A friendly portrait avatar of the child, shoulders-up, smiling gently, "
    "plain soft-colored background."
)


@dataclass(frozen=True)
class StorybookPrompt:
    """Container for the positive and negative prompts passed to the image model."""

    positive: str
    negative: str = NEGATIVE_PROMPT


def placeholder_prompt(page: StoryPage) -> str:
    """Deterministic scene for a page that has neither an illustration prompt nor text yet."""
    return f"{page.page_type.value} page: page {page.page_num}"


def page_scene(page: StoryPage) -> str:
    """
    Scene to illustrate for ``page``.

    The page's own illustration prompt wins; a page without one is drawn from its
    story text, and only a page with neither falls back to :func:`placeholder_prompt`.
    """
    return page.image_prompt.strip() or page.story_text.strip() or placeholder_prompt(page)


def build_page_image_prompt(
    page: StoryPage, kid: KidDetails, *, scene: str | None = None
) -> StorybookPrompt:
    """
    Build the illustration prompt for a story page, anchored on the kid's identity.

    ``scene`` replaces the page's own scene, e.g. after a rejected prompt was rewritten.
    """
    return build_storybook_prompt(kid, scene or page_scene(page))


def build_avatar_prompt(kid: KidDetails) -> StorybookPrompt:
    return build_storybook_prompt(kid, AVATAR_SCENE, camera_shot="close-up portrait (shoulders-up)")


def build_storybook_prompt(
    kid: KidDetails,
    scene_description: str,
    *,
    camera_shot: str | None = None,
    extra_notes: Sequence[str] | None = None,
) -> StorybookPrompt:
    """
    Build the structured prompt used to guide the image generation model.

    Parameters
    ----------
    kid:
        The child that will appear in the illustration.
    scene_description:
        Narrative description of the scene that should be rendered.
    camera_shot:
        Optional camera guidance; defaults to a medium, eye-level framing.
    extra_notes:
        Optional additional bullet lines appended to the prompt.
    """
    if not scene_description or not scene_description.strip():
        raise ValueError("scene_description must be a non-empty string.")

    shot = camera_shot.strip() if camera_shot else "medium (waist-up), eye-level"

    identity_lines = [line for line in kid.context_bullets() if not line.startswith("Name:")]
    identity_block = "\n".join(f"- {line}" for line in identity_lines) or "- (no extra details)"

    positive_prompt = f"""TASK
Create a storybook illustration of {kid.name} based on the reference photo, preserving the child's facial identity and age.

CHILD
{identity_block}

SCENE
- {scene_description.strip()}
- The child remains the clear focal point.

ART DIRECTION
- Pixar/Disney-like 3D storybook style, warm and vivid palette, soft lighting.
- Camera: {shot}.
- Wholesome, child-safe mood. No text or logos."""

    notes = [note.strip() for note in extra_notes or () if note and note.strip()]
    if notes:
        bullet_block = "\n".join(f"- {note}" for note in notes)
        positive_prompt = f"{positive_prompt}\n\nNOTES\n{bullet_block}"

    return StorybookPrompt(positive=positive_prompt)
