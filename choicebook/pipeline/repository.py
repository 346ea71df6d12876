"""
Story repositories: an in-memory store and a YAML-file store.
"""

from __future__ import annotations

import asyncio
import logging
import re
from pathlib import Path

from choicebook.story_generation import Story

logger = logging.getLogger(__name__)

_SAFE_ID = re.compile(r"^[A-Za-z0-9_.-]+$")


class InMemoryStoryRepository:
    """
    Keeps stories in a dict. Stored and returned stories are copies, so callers
    never share page lists with the store.
    """

    def __init__(self) -> None:
        self._stories: dict[str, Story] = {}

    async def load(self, story_id: str) -> Story | None:
        story = self._stories.get(story_id)
        return story.copy() if story is not None else None

    async def save(self, story: Story) -> Story:
        self._stories[story.id] = story.copy()
        return story.copy()

    def __contains__(self, story_id: object) -> bool:
        return story_id in self._stories

    def __len__(self) -> int:
        return len(self._stories)


class YamlStoryRepository:
    """
    Stores each story as ``<directory>/<story_id>.yaml``. File IO runs in a worker
    thread so it never blocks the event loop.
    """

    def __init__(self, directory: str | Path) -> None:
        self._directory = Path(directory).expanduser()

    @property
    def directory(self) -> Path:
        return self._directory

    def path_for(self, story_id: str) -> Path:
        if not _SAFE_ID.match(story_id) or story_id in {".", ".."}:
            raise ValueError(f"Invalid story id for file storage: {story_id!r}")
        return self._directory / f"{story_id}.yaml"

    async def load(self, story_id: str) -> Story | None:
        path = self.path_for(story_id)
        return await asyncio.to_thread(self._read, path)

    async def save(self, story: Story) -> Story:
        path = self.path_for(story.id)
        await asyncio.to_thread(self._write, path, story.to_yaml())
        logger.debug("Saved story %s to %s", story.id, path)
        return story.copy()

    @staticmethod
    def _read(path: Path) -> Story | None:
        if not path.exists():
            return None
        return Story.from_yaml(path)

    @staticmethod
    def _write(path: Path, text: str) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = path.with_suffix(".yaml.tmp")
        tmp_path.write_text(text, encoding="utf-8")
        tmp_path.replace(path)
