"""
CLI to run the complete Choicebook pipeline end-to-end.

Usage:
    python scripts/run_story_generation.py \
        --kid kid_details.yaml \
        --title "Maya Learns to Share" \
        --problem "Maya does not want to share her toys at kindergarten." \
        --stories-dir stories/

    python scripts/run_story_generation.py --kid kid_details.yaml \
        --problem "Maya does not want to share her toys at kindergarten." --suggest-titles
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import Any, Dict

import yaml

from tqdm.auto import tqdm

# Ensure project root is on the Python path when running as a script.
PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from choicebook import GenerationError, KidDetails, StoryOrchestrator, YamlStoryRepository  # noqa: E402
from choicebook.ai_generation import LiteLLMImagePromptRefiner, ReplicateImageGenerator  # noqa: E402
from choicebook.common import operation_error_message, recovery_suggestions  # noqa: E402
from choicebook.story_generation import LiteLLMStoryTextGenerator, message_from_progress  # noqa: E402


class ProgressTracker:
    """
    Provides user-friendly command-line progress updates for the Choicebook pipeline.
    """

    def __init__(self) -> None:
        self._page_bar: tqdm | None = None

    def __call__(self, stage: str, payload: Dict[str, Any]) -> None:
        match stage:
            case "story:generating":
                self._write(f"[1/3] Writing the story '{payload.get('title', '')}'...")
            case "story:generated":
                total = payload.get("total_pages", 0)
                categories = ", ".join(payload.get("categories", []))
                self._write(f"[2/3] Story has {total} pages ({categories}). Illustrating...")
                self.start(total)
            case "category:done":
                if self._page_bar is not None:
                    self._page_bar.update(payload.get("succeeded", 0))
                if payload.get("error_code"):
                    self._write(
                        f"  Category '{payload.get('category')}' failed: {payload['error_code']}"
                    )
            case "story:merged":
                if self._page_bar is not None:
                    self._page_bar.set_description(
                        message_from_progress(float(payload.get("percentage", 0)))
                    )
            case "story:categories_done":
                self._write(f"[3/3] Done. Story status: {payload.get('status')}.")
                self.close()

    def start(self, total: int) -> None:
        self.close()
        self._page_bar = tqdm(total=total, desc="Illustrated pages", unit="page")

    def close(self) -> None:
        if self._page_bar is not None:
            self._page_bar.close()
            self._page_bar = None

    @staticmethod
    def _write(message: str) -> None:
        tqdm.write(message)


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Run the full Choicebook generation pipeline.")
    parser.add_argument("--kid", required=True, help="Path to the kid details YAML/JSON file.")
    parser.add_argument("--title", default=None, help="Story title (new stories).")
    parser.add_argument("--problem", default=None, help="Problem the story helps with.")
    parser.add_argument(
        "--story-id",
        default=None,
        help="Resume an existing story, regenerating only pages without images.",
    )
    parser.add_argument("--advantages", default="", help="Benefits of the good choice.")
    parser.add_argument("--disadvantages", default="", help="Costs of the bad choice.")
    parser.add_argument(
        "--stories-dir",
        default="stories",
        help="Directory where story YAML documents are stored.",
    )
    parser.add_argument(
        "--suggest-titles",
        action="store_true",
        help="Print title suggestions for --problem and exit.",
    )
    parser.add_argument(
        "--max-refinements",
        type=int,
        default=2,
        help="How many times a rejected illustration prompt is rewritten (0 disables).",
    )
    parser.add_argument(
        "--analyze-photo",
        action="store_true",
        help="Describe the kid's reference photo first and use it in illustration prompts.",
    )
    parser.add_argument(
        "--verbose",
        action="store_true",
        help="Enable debug logging.",
    )
    return parser.parse_args()


def load_kid_mapping(path: Path) -> Dict[str, Any]:
    text = path.read_text(encoding="utf-8")
    suffix = path.suffix.lower()
    if suffix in {".yaml", ".yml"}:
        data = yaml.safe_load(text)
    elif suffix == ".json":
        data = json.loads(text)
    else:
        raise ValueError("Unsupported kid details file format. Use YAML or JSON.")

    if not isinstance(data, Dict):
        raise ValueError("Kid details file must deserialize to a mapping.")
    return data


async def run(args: argparse.Namespace) -> int:
    kid = KidDetails.from_mapping(load_kid_mapping(Path(args.kid)))
    repository = YamlStoryRepository(args.stories_dir)
    orchestrator = StoryOrchestrator(
        text_generator=LiteLLMStoryTextGenerator(),
        image_generator=ReplicateImageGenerator(),
        repository=repository,
        prompt_refiner=LiteLLMImagePromptRefiner(),
        max_refinements=args.max_refinements,
    )
    tracker = ProgressTracker()

    try:
        if args.analyze_photo and kid.avatar_url:
            kid = kid.with_image_analysis(await orchestrator.analyze_kid_image(kid))

        if args.suggest_titles:
            titles = await orchestrator.generate_story_titles(
                kid, args.problem, args.advantages, args.disadvantages
            )
            for title in titles:
                print(title)
            return 0

        if args.story_id:
            story = await repository.load(args.story_id)
            if story is None:
                raise SystemExit(f"Story '{args.story_id}' not found in {repository.directory}.")
            pending = sum(1 for page in story.pages if not page.has_image)
            tqdm.write(f"Resuming '{story.title}': {pending} page(s) without images.")
            tracker.start(pending)
        else:
            story = await orchestrator.generate_full_story(
                args.title,
                args.problem,
                kid,
                args.advantages,
                args.disadvantages,
                progress_callback=tracker,
            )
        update = await orchestrator.generate_all_categories_concurrently(
            story, kid, progress_callback=tracker
        )
    except GenerationError as exc:
        tqdm.write(operation_error_message(exc.record.context.operation, exc.record))
        for suggestion in recovery_suggestions(exc.record):
            tqdm.write(f"  - {suggestion}")
        return 1
    finally:
        tracker.close()

    print(f"Saved story {update.story.id} to {repository.path_for(update.story.id)}")
    for category, record in update.errors.items():
        print(f"  {category.value}: {record.user_message} (retry with --story-id {update.story.id})")
    return 0 if update.ok else 2


def main() -> int:
    args = parse_args()
    if args.suggest_titles and not args.problem:
        raise SystemExit("--suggest-titles needs --problem.")
    if not args.suggest_titles and not args.story_id and not (args.title and args.problem):
        raise SystemExit("--title and --problem are required unless --story-id is given.")
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    return asyncio.run(run(args))


if __name__ == "__main__":
    raise SystemExit(main())
