"""Test illustration prompts and reference photo analysis."""

import pytest

from choicebook.ai_generation import (
    LiteLLMImagePromptRefiner,
    PromptRefinementRequest,
    build_avatar_prompt,
    build_page_image_prompt,
    build_storybook_prompt,
    is_refinable_error,
    placeholder_prompt,
)
from choicebook.common import ChatResult, OperationContext, classify_error
from choicebook.pipeline import ReferenceImageAnalyzer, filter_physical_traits
from choicebook.story_generation import PageType, StoryPage


def test_page_prompt_uses_image_prompt_and_kid(kid):
    page = StoryPage(page_type=PageType.GOOD, page_num=2, image_prompt="Maya hands over a truck")

    prompt = build_page_image_prompt(page, kid.with_image_analysis("- curly brown hair"))

    assert "Maya hands over a truck" in prompt.positive
    assert "Age: 6" in prompt.positive
    assert "Appearance: - curly brown hair" in prompt.positive
    assert "watermark" in prompt.negative


def test_page_without_image_prompt_uses_placeholder(kid):
    page = StoryPage(page_type=PageType.BAD_CHOICE, page_num=1)

    prompt = build_page_image_prompt(page, kid)

    assert placeholder_prompt(page) == "bad_choice page: page 1"
    assert "- bad_choice page: page 1" in prompt.positive


def test_page_without_image_prompt_is_drawn_from_story_text(kid):
    page = StoryPage(
        page_type=PageType.NORMAL,
        page_num=2,
        story_text="Maya hands her red truck to Leo.",
        image_prompt="",
    )

    prompt = build_page_image_prompt(page, kid)

    assert "- Maya hands her red truck to Leo." in prompt.positive
    assert placeholder_prompt(page) not in prompt.positive


def test_page_prompt_scene_override(kid):
    page = StoryPage(page_type=PageType.COVER, page_num=1, image_prompt="Maya at the gate")

    prompt = build_page_image_prompt(page, kid, scene="Maya waves from a sunny garden")

    assert "- Maya waves from a sunny garden" in prompt.positive
    assert "Maya at the gate" not in prompt.positive


def test_avatar_prompt_is_a_portrait(kid):
    assert "close-up portrait" in build_avatar_prompt(kid).positive


def test_storybook_prompt_notes_and_validation(kid):
    prompt = build_storybook_prompt(kid, "At the park", extra_notes=["Sunny day", "  "])

    assert prompt.positive.endswith("NOTES\n- Sunny day")
    with pytest.raises(ValueError):
        build_storybook_prompt(kid, "   ")


def test_filter_physical_traits():
    """Test that clothing and accessories are dropped."""
    notes = "- Curly brown hair\n- Red hoodie\n• Green eyes\n\n- Wears glasses"

    assert filter_physical_traits(notes) == "- Curly brown hair\n- Green eyes"


@pytest.mark.anyio
async def test_reference_image_analyzer():
    calls = []

    async def completion(**kwargs):
        calls.append(kwargs)
        return ChatResult(text="- Round face\n- Blue jacket\n- Freckles", raw=None)

    analyzer = ReferenceImageAnalyzer(model="gpt-vision", api_key="sk", completion_fn=completion)

    notes = await analyzer.analyze("https://photos.test/maya.jpg")

    assert notes == "- Round face\n- Freckles"
    user_content = calls[0]["messages"][1]["content"]
    assert user_content[1]["image_url"]["url"] == "https://photos.test/maya.jpg"


@pytest.mark.anyio
async def test_reference_image_analyzer_requires_url():
    async def completion(**kwargs):
        raise AssertionError("should not be called")

    analyzer = ReferenceImageAnalyzer(model="gpt-vision", completion_fn=completion)

    with pytest.raises(ValueError, match="Invalid reference image"):
        await analyzer.analyze("")


@pytest.mark.anyio
async def test_reference_image_analyzer_propagates_failures():
    async def completion(**kwargs):
        raise RuntimeError("Rate limit reached")

    analyzer = ReferenceImageAnalyzer(model="gpt-vision", completion_fn=completion)

    with pytest.raises(RuntimeError, match="Rate limit"):
        await analyzer.analyze("https://photos.test/maya.jpg")


@pytest.mark.parametrize(
    ("message", "refinable"),
    [
        ("Your request was rejected as a result of our safety system", True),
        ("Output image was filtered", True),
        ("Image quality too low", True),
        ("Rate limit exceeded", False),
        ("Invalid API key", False),
    ],
)
def test_is_refinable_error(message, refinable):
    record = classify_error(RuntimeError(message), OperationContext(operation="image_generation"))
    assert is_refinable_error(record) is refinable


@pytest.mark.anyio
async def test_prompt_refiner_sends_page_and_error():
    calls = []

    async def completion(**kwargs):
        calls.append(kwargs)
        return ChatResult(text='"Maya shares her truck in a sunny park."', raw=None)

    refiner = LiteLLMImagePromptRefiner(model="gpt-test", api_key="sk", completion_fn=completion)
    request = PromptRefinementRequest(
        page_text="Maya hands her red truck to Leo.",
        previous_prompt="Maya grabs the truck",
        previous_error="content policy violation",
        attempt_number=2,
        gender="female",
        age=6,
    )

    scene = await refiner.refine(request)

    assert scene == "Maya shares her truck in a sunny park."
    assert calls[0]["model"] == "gpt-test"
    user_message = calls[0]["messages"][1]["content"]
    assert "Page text: Maya hands her red truck to Leo." in user_message
    assert "Image model error: content policy violation" in user_message
    assert "Refinement attempt: 2" in user_message
    assert "Age: 6 years old" in user_message


@pytest.mark.anyio
async def test_prompt_refiner_rejects_empty_reply():
    async def completion(**kwargs):
        return ChatResult(text="  ", raw=None)

    refiner = LiteLLMImagePromptRefiner(model="gpt-test", completion_fn=completion)
    request = PromptRefinementRequest(
        page_text="text", previous_prompt="scene", previous_error="blocked", attempt_number=1
    )

    with pytest.raises(RuntimeError, match="no text"):
        await refiner.refine(request)
