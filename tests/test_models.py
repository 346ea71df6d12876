"""Test the story and page models."""

from datetime import datetime, timedelta, timezone

import pytest

from choicebook.story_generation import (
    PageType,
    Story,
    StoryPage,
    StoryStatus,
    completion_percentage,
    page_type_from_string,
)
from tests.helpers import make_page, make_story


@pytest.mark.parametrize(
    ("value", "expected"),
    [
        ("cover", PageType.COVER),
        ("GOOD", PageType.GOOD),
        ("goodflow", PageType.GOOD),
        ("badflow", PageType.BAD),
        ("good-choice", PageType.GOOD_CHOICE),
        ("Bad Choice", PageType.BAD_CHOICE),
        ("choice", PageType.NORMAL),
        ("epilogue", PageType.NORMAL),
        (None, PageType.NORMAL),
        (PageType.BAD, PageType.BAD),
    ],
)
def test_page_type_from_string(value, expected):
    """Test loose page type parsing with NORMAL as fallback."""
    assert page_type_from_string(value) == expected


def test_with_images_selects_first_candidate():
    """Test that the first candidate becomes the selected image."""
    page = make_page(PageType.GOOD, 2)

    updated = page.with_images(["https://a.png", "", "https://b.png"])

    assert updated.selected_image_url == "https://a.png"
    assert updated.images_urls == ("https://a.png", "https://b.png")
    assert updated.key == page.key
    assert updated.story_text == page.story_text
    assert not page.has_image


def test_completion_percentage():
    """Test the share of illustrated pages."""
    assert completion_percentage([]) == 0.0

    pages = [
        make_page(PageType.COVER, 1, image="https://cover.png"),
        make_page(PageType.NORMAL, 1),
        make_page(PageType.NORMAL, 2),
        make_page(PageType.GOOD, 1),
        make_page(PageType.BAD, 1),
    ]
    assert completion_percentage(pages) == pytest.approx(20.0)


def test_page_types_in_first_appearance_order():
    story = make_story(
        [
            make_page(PageType.NORMAL, 1),
            make_page(PageType.COVER, 1),
            make_page(PageType.NORMAL, 2),
            make_page(PageType.BAD, 1),
        ]
    )
    assert story.page_types() == [PageType.NORMAL, PageType.COVER, PageType.BAD]
    assert story.find_page(PageType.NORMAL, 2) is story.pages[2]
    assert story.find_page(PageType.GOOD, 1) is None


def test_touch_never_moves_backwards():
    """Test that last_updated only advances."""
    story = make_story([])
    start = story.last_updated

    story.touch(start - timedelta(minutes=5))
    assert story.last_updated == start

    later = start + timedelta(seconds=1)
    story.touch(later)
    assert story.last_updated == later


def test_copy_does_not_share_pages():
    story = make_story([make_page(PageType.COVER, 1)])
    clone = story.copy()

    clone.pages.append(make_page(PageType.NORMAL, 1))

    assert len(story.pages) == 1


def test_story_yaml_round_trip(tmp_path):
    """Test writing a story to YAML and reading it back."""
    created = datetime(2026, 1, 2, 3, 4, 5, tzinfo=timezone.utc)
    story = make_story(
        [
            make_page(PageType.COVER, 1, image="https://cover.png"),
            make_page(PageType.GOOD_CHOICE, 1),
        ]
    )
    story.status = StoryStatus.PROGRESS50
    story.created_at = created
    story.last_updated = created

    path = tmp_path / "story.yaml"
    path.write_text(story.to_yaml(), encoding="utf-8")

    assert Story.from_yaml(path) == story


def test_from_dict_accepts_legacy_fields():
    """Test userId fallback, progress_<n> statuses and naive timestamps."""
    story = Story.from_dict(
        {
            "id": "story-9",
            "kidId": "kid-1",
            "userId": "user-7",
            "title": "Bedtime",
            "status": "progress_40",
            "createdAt": "2026-03-01T10:00:00",
            "pages": [{"pageType": "goodflow", "pageNum": "1", "storyText": "Hi"}],
        }
    )

    assert story.account_id == "user-7"
    assert story.status == StoryStatus.PROGRESS40
    assert story.created_at.tzinfo == timezone.utc
    assert story.pages == [StoryPage(page_type=PageType.GOOD, page_num=1, story_text="Hi")]


def test_from_dict_rejects_duplicate_pages():
    payload = {
        "id": "story-1",
        "pages": [
            {"pageType": "normal", "pageNum": 1},
            {"pageType": "normal", "pageNum": 1},
        ],
    }
    with pytest.raises(ValueError, match="Duplicate page number 1"):
        Story.from_dict(payload)


def test_from_dict_requires_id():
    with pytest.raises(ValueError):
        Story.from_dict({"title": "No id"})
