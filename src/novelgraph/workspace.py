"""Single-writer holder for the novel currently being edited."""

from __future__ import annotations

import logging
import threading
from typing import Any, Callable, Sequence

from .editing import GraphEditError, replace_dialogue, set_scene_background
from .generation import (
    BackgroundGenerator,
    GenerationError,
    StoryGenerator,
    generate_background,
    generate_dialogue,
    generate_novel,
    normalise_dialogue,
)
from .model import DialogueLine, VisualNovel
from .persistence import load_demo_novel, novel_from_payload

LOGGER = logging.getLogger(__name__)


class StaleSceneError(GenerationError):
    """Raised when a scene disappears while content is generated for it."""


def _commit_dialogue(
    novel: VisualNovel, scene_id: str, lines: Sequence[DialogueLine]
) -> VisualNovel:
    scene = novel.scene(scene_id)
    if scene is None:
        raise StaleSceneError(f"Scene '{scene_id}' was deleted during generation.")
    # Presence may have changed since the lines were generated.
    try:
        return replace_dialogue(novel, scene_id, normalise_dialogue(scene, lines))
    except GraphEditError as exc:
        raise GenerationError(str(exc)) from exc


def _commit_background(novel: VisualNovel, scene_id: str, address: str) -> VisualNovel:
    if novel.scene(scene_id) is None:
        raise StaleSceneError(f"Scene '{scene_id}' was deleted during generation.")
    return set_scene_background(novel, scene_id, address)


class NovelWorkspace:
    """Serialises mutations so readers always see a whole snapshot.

    Every operation computes a new :class:`VisualNovel` from the current one
    and swaps it in while holding the lock. A failing operation leaves the
    snapshot untouched. Snapshots are immutable, so reads never take the
    lock, and slow generator calls run on a snapshot outside of it.
    """

    def __init__(self, novel: VisualNovel | None = None) -> None:
        self._novel = novel if novel is not None else load_demo_novel()
        self._lock = threading.Lock()

    @property
    def snapshot(self) -> VisualNovel:
        return self._novel

    def apply(
        self, operation: Callable[..., VisualNovel], *args: Any, **kwargs: Any
    ) -> VisualNovel:
        """Run ``operation(current, *args, **kwargs)`` and keep its result.

        ``operation`` runs under the lock and must not block.
        """

        with self._lock:
            updated = operation(self._novel, *args, **kwargs)
            if not isinstance(updated, VisualNovel):
                raise TypeError(
                    f"workspace operations must return a VisualNovel, got {type(updated)!r}"
                )
            self._novel = updated
            return updated

    def replace(self, novel: VisualNovel) -> VisualNovel:
        if not isinstance(novel, VisualNovel):
            raise TypeError(f"expected a VisualNovel, got {type(novel)!r}")
        with self._lock:
            self._novel = novel
            return novel

    def import_payload(self, payload: Any) -> VisualNovel:
        """Replace the novel with an imported record.

        Validation happens before the lock is taken, so a rejected record
        never disturbs the current snapshot.
        """

        novel = novel_from_payload(payload)
        LOGGER.info("Imported novel '%s' with %d scenes.", novel.title, len(novel.scenes))
        return self.replace(novel)

    def generate_story(self, theme: str, generator: StoryGenerator) -> VisualNovel:
        novel = generate_novel(theme, generator)
        LOGGER.info("Generated novel '%s' for theme %r.", novel.title, theme)
        return self.replace(novel)

    def generate_dialogue(self, scene_id: str, generator: StoryGenerator) -> VisualNovel:
        """Generate lines from the current snapshot, then merge them in.

        Edits made while the generator runs are kept. Raises
        :class:`StaleSceneError` when the scene was deleted in the meantime.
        """

        draft = generate_dialogue(self.snapshot, scene_id, generator)
        scene = draft.scene(scene_id)
        if scene is None:
            raise StaleSceneError(f"Scene '{scene_id}' was deleted during generation.")
        return self.apply(_commit_dialogue, scene_id, scene.dialogue)

    def generate_background(
        self, scene_id: str, generator: BackgroundGenerator
    ) -> VisualNovel:
        draft = generate_background(self.snapshot, scene_id, generator)
        scene = draft.scene(scene_id)
        if scene is None:
            raise StaleSceneError(f"Scene '{scene_id}' was deleted during generation.")
        return self.apply(_commit_background, scene_id, scene.background_address)


__all__ = ["NovelWorkspace", "StaleSceneError"]
