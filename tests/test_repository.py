"""Test story repositories."""

import pytest

from choicebook import InMemoryStoryRepository, YamlStoryRepository
from choicebook.pipeline import StoryRepository
from choicebook.story_generation import PageType, StoryStatus
from tests.helpers import make_page, make_story


@pytest.mark.anyio
async def test_in_memory_repository_returns_copies():
    """Test that callers never share the stored page list."""
    repository = InMemoryStoryRepository()
    story = make_story([make_page(PageType.COVER, 1)])

    await repository.save(story)
    story.pages.append(make_page(PageType.NORMAL, 1))
    loaded = await repository.load(story.id)
    loaded.pages.clear()

    assert len((await repository.load(story.id)).pages) == 1
    assert await repository.load("missing") is None
    assert isinstance(repository, StoryRepository)


@pytest.mark.anyio
async def test_yaml_repository_round_trip(tmp_path):
    repository = YamlStoryRepository(tmp_path / "stories")
    story = make_story(
        [make_page(PageType.COVER, 1, image="https://c.png"), make_page(PageType.BAD, 1)]
    )
    story.status = StoryStatus.PROGRESS50

    await repository.save(story)
    loaded = await repository.load(story.id)

    assert repository.path_for(story.id).exists()
    assert loaded == story
    assert isinstance(repository, StoryRepository)


@pytest.mark.anyio
async def test_yaml_repository_overwrites(tmp_path):
    repository = YamlStoryRepository(tmp_path)
    story = make_story([make_page(PageType.COVER, 1)])
    await repository.save(story)

    story.status = StoryStatus.COMPLETE
    await repository.save(story)

    assert (await repository.load(story.id)).status == StoryStatus.COMPLETE
    assert sorted(path.name for path in tmp_path.iterdir()) == ["story-1.yaml"]


@pytest.mark.anyio
async def test_yaml_repository_missing_story(tmp_path):
    assert await YamlStoryRepository(tmp_path).load("story-404") is None


@pytest.mark.parametrize("story_id", ["../escape", "a/b", "", "..", "with space"])
def test_yaml_repository_rejects_unsafe_ids(tmp_path, story_id):
    with pytest.raises(ValueError):
        YamlStoryRepository(tmp_path).path_for(story_id)
