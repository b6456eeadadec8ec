"""Pure state machine that steps a player through the story graph."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Tuple, Union

from .model import Character, Choice, DialogueLine, Expression, Scene, VisualNovel

LOGGER = logging.getLogger(__name__)

FALLBACK_IMAGE_ADDRESS = "https://picsum.photos/400/600"


class PlaybackErrorReason(str, Enum):
    """Why playback stopped."""

    SCENE_NOT_FOUND = "scene_not_found"


@dataclass(frozen=True)
class AtLine:
    """Showing ``line_index`` of ``scene_id``."""

    scene_id: str
    line_index: int = 0


@dataclass(frozen=True)
class AtEnding:
    """Showing the final line of a scene without choices."""

    scene_id: str
    line_index: int = 0


@dataclass(frozen=True)
class PlaybackError:
    """Terminal state; only :func:`initialize` leaves it."""

    reason: PlaybackErrorReason
    scene_id: str | None = None


PlaybackState = Union[AtLine, AtEnding, PlaybackError]


def _land(scene: Scene, line_index: int) -> PlaybackState:
    if line_index >= scene.last_line_index and scene.is_ending:
        return AtEnding(scene_id=scene.id, line_index=scene.last_line_index)
    return AtLine(scene_id=scene.id, line_index=line_index)


def _not_found(scene_id: str) -> PlaybackError:
    LOGGER.warning("Playback could not resolve scene '%s'.", scene_id)
    return PlaybackError(reason=PlaybackErrorReason.SCENE_NOT_FOUND, scene_id=scene_id)


def initialize(novel: VisualNovel, scene_id: str) -> PlaybackState:
    """Start playback at the first line of ``scene_id``."""

    scene = novel.scene(scene_id)
    if scene is None:
        return _not_found(scene_id)
    return _land(scene, 0)


restart = initialize


def advance(novel: VisualNovel, state: PlaybackState) -> PlaybackState:
    """Move to the next line.

    At the last line the state is unchanged: either the scene is an ending or
    it is waiting for :func:`choose`.
    """

    if not isinstance(state, AtLine):
        return state

    scene = novel.scene(state.scene_id)
    if scene is None:
        return _not_found(state.scene_id)
    if state.line_index >= scene.last_line_index:
        return state
    return _land(scene, state.line_index + 1)


def awaiting_choice(novel: VisualNovel, state: PlaybackState) -> bool:
    """Return ``True`` when ``state`` is at the last line of a branching scene."""

    if not isinstance(state, AtLine):
        return False
    scene = novel.scene(state.scene_id)
    if scene is None:
        return False
    return bool(scene.choices) and state.line_index >= scene.last_line_index


def choose(novel: VisualNovel, state: PlaybackState, next_scene_id: str) -> PlaybackState:
    """Follow a choice to ``next_scene_id``.

    Input is ignored unless the player is at the last line of a scene that has
    choices. A target that does not resolve moves to :class:`PlaybackError`.
    """

    if not awaiting_choice(novel, state):
        LOGGER.debug("Ignoring choice '%s' in state %r.", next_scene_id, state)
        return state
    return initialize(novel, next_scene_id)


def current_scene(novel: VisualNovel, state: PlaybackState) -> Scene | None:
    if isinstance(state, PlaybackError):
        return None
    return novel.scene(state.scene_id)


def current_line(novel: VisualNovel, state: PlaybackState) -> DialogueLine | None:
    scene = current_scene(novel, state)
    if scene is None or not scene.dialogue or isinstance(state, PlaybackError):
        return None
    return scene.dialogue[min(state.line_index, scene.last_line_index)]


def resolve_expression(
    novel: VisualNovel, character: Character, state: PlaybackState
) -> Expression | None:
    """Pick the expression shown for ``character`` in ``state``.

    The speaker's explicit expression wins, then the character's default,
    then its first expression. ``None`` is only possible for characters with
    no expressions at all.
    """

    line = current_line(novel, state)
    if line is not None and line.character_id == character.id:
        explicit = character.expression(line.expression_id)
        if explicit is not None:
            return explicit

    default = character.default_expression
    if default is not None:
        return default

    if character.expressions:
        return character.expressions[0]
    return None


def resolve_image_address(
    novel: VisualNovel, character: Character, state: PlaybackState
) -> str:
    expression = resolve_expression(novel, character, state)
    if expression is None or not expression.image_address:
        return FALLBACK_IMAGE_ADDRESS
    return expression.image_address


@dataclass(frozen=True)
class Portrait:
    """A character drawn on stage."""

    character_id: str
    name: str
    image_address: str
    is_speaking: bool


@dataclass(frozen=True)
class PlaybackFrame:
    """Everything a player host needs to present ``state``."""

    state: PlaybackState
    background_address: str = ""
    speaker_name: str | None = None
    text: str = ""
    portraits: Tuple[Portrait, ...] = ()
    choices: Tuple[Choice, ...] = ()
    awaiting_choice: bool = False
    is_ending: bool = False
    error: PlaybackErrorReason | None = None


def describe_frame(novel: VisualNovel, state: PlaybackState) -> PlaybackFrame:
    """Build the presentation view for ``state``."""

    if isinstance(state, PlaybackError):
        return PlaybackFrame(state=state, error=state.reason)

    scene = novel.scene(state.scene_id)
    if scene is None:
        error = _not_found(state.scene_id)
        return PlaybackFrame(state=error, error=error.reason)

    line = current_line(novel, state)
    speaker = novel.character(line.character_id) if line is not None else None

    portraits = []
    for character_id in scene.present_character_ids:
        character = novel.character(character_id)
        if character is None:
            continue
        portraits.append(
            Portrait(
                character_id=character.id,
                name=character.name,
                image_address=resolve_image_address(novel, character, state),
                is_speaking=speaker is not None and speaker.id == character.id,
            )
        )

    waiting = awaiting_choice(novel, state)
    return PlaybackFrame(
        state=state,
        background_address=scene.background_address,
        speaker_name=speaker.name if speaker is not None else None,
        text=line.text if line is not None else "",
        portraits=tuple(portraits),
        choices=scene.choices if waiting else (),
        awaiting_choice=waiting,
        is_ending=isinstance(state, AtEnding),
    )


class PlaybackSession:
    """Mutable convenience wrapper pairing a novel with its playback state."""

    def __init__(self, novel: VisualNovel, scene_id: str | None = None) -> None:
        self.novel = novel
        self.state: PlaybackState = initialize(novel, scene_id or novel.start_scene_id)

    @property
    def frame(self) -> PlaybackFrame:
        return describe_frame(self.novel, self.state)

    def advance(self) -> PlaybackFrame:
        self.state = advance(self.novel, self.state)
        return self.frame

    def choose(self, next_scene_id: str) -> PlaybackFrame:
        self.state = choose(self.novel, self.state, next_scene_id)
        return self.frame

    def choose_index(self, index: int) -> PlaybackFrame:
        """Follow the choice at ``index`` among those currently offered."""

        choices = self.frame.choices
        if index < 0 or index >= len(choices):
            raise IndexError(f"choice index {index} is out of range")
        return self.choose(choices[index].next_scene_id)

    def restart(self, scene_id: str | None = None) -> PlaybackFrame:
        self.state = restart(self.novel, scene_id or self.novel.start_scene_id)
        return self.frame


__all__ = [
    "FALLBACK_IMAGE_ADDRESS",
    "PlaybackErrorReason",
    "AtLine",
    "AtEnding",
    "PlaybackError",
    "PlaybackState",
    "initialize",
    "restart",
    "advance",
    "choose",
    "awaiting_choice",
    "current_scene",
    "current_line",
    "resolve_expression",
    "resolve_image_address",
    "Portrait",
    "PlaybackFrame",
    "describe_frame",
    "PlaybackSession",
]
