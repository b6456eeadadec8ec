"""Copy-on-write mutation operations for the story graph.

Every function takes a :class:`~novelgraph.model.VisualNovel` snapshot and
returns a new snapshot. Rejected edits raise :class:`GraphEditError` and leave
the input untouched, which is always the case since snapshots are immutable.
"""

from __future__ import annotations

import uuid
from dataclasses import replace
from typing import Callable, Sequence

from .model import Character, Choice, DialogueLine, Expression, Scene, VisualNovel

DEFAULT_CHARACTER_NAME = "New Character"
DEFAULT_EXPRESSION_NAME = "Default"
NEW_EXPRESSION_NAME = "New Expression"
DEFAULT_SCENE_NAME = "New Scene"
DEFAULT_DIALOGUE_TEXT = "New dialogue..."
DEFAULT_CHOICE_TEXT = "New Choice"


class GraphEditError(ValueError):
    """Raised when a mutation would break an invariant of the story graph."""


def _new_id(prefix: str) -> str:
    return f"{prefix}_{uuid.uuid4().hex[:12]}"


def _require_scene(novel: VisualNovel, scene_id: str) -> Scene:
    scene = novel.scene(scene_id)
    if scene is None:
        raise GraphEditError(f"Scene '{scene_id}' does not exist.")
    return scene


def _require_character(novel: VisualNovel, character_id: str) -> Character:
    character = novel.character(character_id)
    if character is None:
        raise GraphEditError(f"Character '{character_id}' does not exist.")
    return character


def _require_expression(character: Character, expression_id: str) -> Expression:
    expression = character.expression(expression_id)
    if expression is None:
        raise GraphEditError(
            f"Expression '{expression_id}' does not belong to character '{character.id}'."
        )
    return expression


def _require_index(items: Sequence[object], index: int, *, label: str) -> int:
    if not isinstance(index, int) or isinstance(index, bool):
        raise TypeError(f"{label} index must be an int, got {type(index)!r}")
    if index < 0 or index >= len(items):
        raise GraphEditError(f"{label.capitalize()} index {index} is out of range.")
    return index


def _with_scene(novel: VisualNovel, updated: Scene) -> VisualNovel:
    return replace(
        novel,
        scenes=tuple(updated if scene.id == updated.id else scene for scene in novel.scenes),
    )


def _with_character(novel: VisualNovel, updated: Character) -> VisualNovel:
    return replace(
        novel,
        characters=tuple(
            updated if character.id == updated.id else character
            for character in novel.characters
        ),
    )


def _map_scenes(novel: VisualNovel, update: Callable[[Scene], Scene]) -> VisualNovel:
    return replace(novel, scenes=tuple(update(scene) for scene in novel.scenes))


def _moved(items: Sequence[object], from_index: int, to_index: int) -> tuple:
    reordered = list(items)
    entry = reordered.pop(from_index)
    reordered.insert(to_index, entry)
    return tuple(reordered)


def set_title(novel: VisualNovel, title: str) -> VisualNovel:
    return replace(novel, title=title)


# Characters -----------------------------------------------------------------


def add_character(
    novel: VisualNovel,
    name: str = DEFAULT_CHARACTER_NAME,
    *,
    character_id: str | None = None,
    expression_id: str | None = None,
) -> VisualNovel:
    """Append a character that starts with a single default expression."""

    new_id = character_id or _new_id("char")
    if novel.character_exists(new_id):
        raise GraphEditError(f"Character '{new_id}' already exists.")

    default_expression = Expression(
        id=expression_id or _new_id("expr"), name=DEFAULT_EXPRESSION_NAME
    )
    character = Character(
        id=new_id,
        name=name,
        expressions=(default_expression,),
        default_expression_id=default_expression.id,
    )
    return replace(novel, characters=novel.characters + (character,))


def rename_character(novel: VisualNovel, character_id: str, name: str) -> VisualNovel:
    character = _require_character(novel, character_id)
    return _with_character(novel, replace(character, name=name))


def delete_character(novel: VisualNovel, character_id: str) -> VisualNovel:
    """Remove a character and every forward reference to it.

    The character leaves every scene it was present in and the lines it spoke
    become narration.
    """

    _require_character(novel, character_id)

    def _strip(scene: Scene) -> Scene:
        return replace(
            scene,
            present_character_ids=tuple(
                entry for entry in scene.present_character_ids if entry != character_id
            ),
            dialogue=tuple(
                DialogueLine(text=line.text) if line.character_id == character_id else line
                for line in scene.dialogue
            ),
        )

    stripped = _map_scenes(novel, _strip)
    return replace(
        stripped,
        characters=tuple(
            character for character in stripped.characters if character.id != character_id
        ),
    )


# Expressions ----------------------------------------------------------------


def add_expression(
    novel: VisualNovel,
    character_id: str,
    name: str = NEW_EXPRESSION_NAME,
    *,
    image_address: str = "",
    expression_id: str | None = None,
) -> VisualNovel:
    character = _require_character(novel, character_id)
    new_id = expression_id or _new_id("expr")
    if character.expression(new_id) is not None:
        raise GraphEditError(
            f"Expression '{new_id}' already exists on character '{character_id}'."
        )
    expression = Expression(id=new_id, name=name, image_address=image_address)
    return _with_character(
        novel, replace(character, expressions=character.expressions + (expression,))
    )


def _with_expression(
    novel: VisualNovel, character: Character, updated: Expression
) -> VisualNovel:
    return _with_character(
        novel,
        replace(
            character,
            expressions=tuple(
                updated if expression.id == updated.id else expression
                for expression in character.expressions
            ),
        ),
    )


def rename_expression(
    novel: VisualNovel, character_id: str, expression_id: str, name: str
) -> VisualNovel:
    character = _require_character(novel, character_id)
    expression = _require_expression(character, expression_id)
    return _with_expression(novel, character, replace(expression, name=name))


def set_expression_image(
    novel: VisualNovel, character_id: str, expression_id: str, image_address: str
) -> VisualNovel:
    character = _require_character(novel, character_id)
    expression = _require_expression(character, expression_id)
    return _with_expression(
        novel, character, replace(expression, image_address=image_address)
    )


def delete_expression(
    novel: VisualNovel, character_id: str, expression_id: str
) -> VisualNovel:
    """Remove an expression, keeping at least one on the character.

    A deleted default falls back to the first remaining expression and lines
    that referenced the expression revert to the default.
    """

    character = _require_character(novel, character_id)
    _require_expression(character, expression_id)
    if len(character.expressions) <= 1:
        raise GraphEditError("A character must have at least one expression.")

    remaining = tuple(
        expression for expression in character.expressions if expression.id != expression_id
    )
    default_id = character.default_expression_id
    if default_id == expression_id:
        default_id = remaining[0].id

    updated = _with_character(
        novel,
        replace(character, expressions=remaining, default_expression_id=default_id),
    )

    def _reset_lines(scene: Scene) -> Scene:
        if not any(
            line.character_id == character_id and line.expression_id == expression_id
            for line in scene.dialogue
        ):
            return scene
        return replace(
            scene,
            dialogue=tuple(
                replace(line, expression_id=None)
                if line.character_id == character_id
                and line.expression_id == expression_id
                else line
                for line in scene.dialogue
            ),
        )

    return _map_scenes(updated, _reset_lines)


def set_default_expression(
    novel: VisualNovel, character_id: str, expression_id: str | None
) -> VisualNovel:
    character = _require_character(novel, character_id)
    if expression_id is not None:
        _require_expression(character, expression_id)
    return _with_character(
        novel, replace(character, default_expression_id=expression_id)
    )


# Scenes ---------------------------------------------------------------------


def add_scene(
    novel: VisualNovel,
    name: str = DEFAULT_SCENE_NAME,
    *,
    scene_id: str | None = None,
) -> VisualNovel:
    """Append a scene with one narrator line and no choices."""

    new_id = scene_id or _new_id("scene")
    if novel.scene_exists(new_id):
        raise GraphEditError(f"Scene '{new_id}' already exists.")
    scene = Scene(
        id=new_id,
        name=name,
        dialogue=(DialogueLine(text=DEFAULT_DIALOGUE_TEXT),),
        authoring_prompt="",
    )
    return replace(novel, scenes=novel.scenes + (scene,))


def rename_scene(novel: VisualNovel, scene_id: str, name: str) -> VisualNovel:
    scene = _require_scene(novel, scene_id)
    return _with_scene(novel, replace(scene, name=name))


def set_scene_background(
    novel: VisualNovel, scene_id: str, background_address: str
) -> VisualNovel:
    scene = _require_scene(novel, scene_id)
    return _with_scene(novel, replace(scene, background_address=background_address))


def set_scene_prompt(
    novel: VisualNovel, scene_id: str, authoring_prompt: str | None
) -> VisualNovel:
    scene = _require_scene(novel, scene_id)
    return _with_scene(novel, replace(scene, authoring_prompt=authoring_prompt))


def set_start_scene(novel: VisualNovel, scene_id: str) -> VisualNovel:
    _require_scene(novel, scene_id)
    return replace(novel, start_scene_id=scene_id)


def delete_scene(novel: VisualNovel, scene_id: str) -> VisualNovel:
    """Remove a scene along with every choice that leads to it."""

    _require_scene(novel, scene_id)
    if scene_id == novel.start_scene_id:
        raise GraphEditError("The start scene cannot be deleted.")

    def _drop_choices(scene: Scene) -> Scene:
        kept = tuple(choice for choice in scene.choices if choice.next_scene_id != scene_id)
        if len(kept) == len(scene.choices):
            return scene
        return replace(scene, choices=kept)

    pruned = _map_scenes(novel, _drop_choices)
    return replace(
        pruned, scenes=tuple(scene for scene in pruned.scenes if scene.id != scene_id)
    )


def set_character_presence(
    novel: VisualNovel, scene_id: str, character_id: str, present: bool
) -> VisualNovel:
    """Toggle whether a character appears in a scene.

    Removing a character turns its lines in that scene into narration.
    """

    scene = _require_scene(novel, scene_id)
    _require_character(novel, character_id)

    if present:
        if scene.is_present(character_id):
            return novel
        return _with_scene(
            novel,
            replace(
                scene, present_character_ids=scene.present_character_ids + (character_id,)
            ),
        )

    return _with_scene(
        novel,
        replace(
            scene,
            present_character_ids=tuple(
                entry for entry in scene.present_character_ids if entry != character_id
            ),
            dialogue=tuple(
                DialogueLine(text=line.text) if line.character_id == character_id else line
                for line in scene.dialogue
            ),
        ),
    )


# Dialogue -------------------------------------------------------------------


def _with_line(
    novel: VisualNovel, scene: Scene, index: int, line: DialogueLine
) -> VisualNovel:
    dialogue = list(scene.dialogue)
    dialogue[index] = line
    return _with_scene(novel, replace(scene, dialogue=tuple(dialogue)))


def add_dialogue_line(
    novel: VisualNovel,
    scene_id: str,
    text: str = "",
    *,
    character_id: str | None = None,
) -> VisualNovel:
    scene = _require_scene(novel, scene_id)
    if character_id is not None and not scene.is_present(character_id):
        raise GraphEditError(
            f"Character '{character_id}' is not present in scene '{scene_id}'."
        )
    line = DialogueLine(character_id=character_id, text=text)
    return _with_scene(novel, replace(scene, dialogue=scene.dialogue + (line,)))


def set_dialogue_speaker(
    novel: VisualNovel, scene_id: str, line_index: int, character_id: str | None
) -> VisualNovel:
    """Change who speaks a line; the explicit expression is reset."""

    scene = _require_scene(novel, scene_id)
    _require_index(scene.dialogue, line_index, label="dialogue line")
    if character_id is not None:
        _require_character(novel, character_id)
        if not scene.is_present(character_id):
            raise GraphEditError(
                f"Character '{character_id}' is not present in scene '{scene_id}'."
            )
    line = scene.dialogue[line_index]
    return _with_line(
        novel, scene, line_index, DialogueLine(character_id=character_id, text=line.text)
    )


def set_dialogue_expression(
    novel: VisualNovel, scene_id: str, line_index: int, expression_id: str | None
) -> VisualNovel:
    scene = _require_scene(novel, scene_id)
    _require_index(scene.dialogue, line_index, label="dialogue line")
    line = scene.dialogue[line_index]
    if expression_id is not None:
        if line.character_id is None:
            raise GraphEditError("Narration lines cannot select an expression.")
        if not novel.expression_exists(line.character_id, expression_id):
            raise GraphEditError(
                f"Expression '{expression_id}' does not belong to character '{line.character_id}'."
            )
    return _with_line(novel, scene, line_index, replace(line, expression_id=expression_id))


def set_dialogue_text(
    novel: VisualNovel, scene_id: str, line_index: int, text: str
) -> VisualNovel:
    scene = _require_scene(novel, scene_id)
    _require_index(scene.dialogue, line_index, label="dialogue line")
    return _with_line(
        novel, scene, line_index, replace(scene.dialogue[line_index], text=text)
    )


def delete_dialogue_line(
    novel: VisualNovel, scene_id: str, line_index: int
) -> VisualNovel:
    scene = _require_scene(novel, scene_id)
    _require_index(scene.dialogue, line_index, label="dialogue line")
    if len(scene.dialogue) <= 1:
        raise GraphEditError("A scene must have at least one line of dialogue.")
    dialogue = scene.dialogue[:line_index] + scene.dialogue[line_index + 1 :]
    return _with_scene(novel, replace(scene, dialogue=dialogue))


def move_dialogue_line(
    novel: VisualNovel, scene_id: str, from_index: int, to_index: int
) -> VisualNovel:
    scene = _require_scene(novel, scene_id)
    _require_index(scene.dialogue, from_index, label="dialogue line")
    _require_index(scene.dialogue, to_index, label="dialogue line")
    return _with_scene(
        novel, replace(scene, dialogue=_moved(scene.dialogue, from_index, to_index))
    )


def replace_dialogue(
    novel: VisualNovel, scene_id: str, dialogue: Sequence[DialogueLine]
) -> VisualNovel:
    """Swap a scene's whole dialogue, validating every speaker and expression."""

    scene = _require_scene(novel, scene_id)
    lines = tuple(dialogue)
    if not lines:
        raise GraphEditError("A scene must have at least one line of dialogue.")
    for index, line in enumerate(lines):
        if line.character_id is None:
            continue
        if not scene.is_present(line.character_id):
            raise GraphEditError(
                f"Line #{index} speaker '{line.character_id}' is not present in scene '{scene_id}'."
            )
        if line.expression_id is not None and not novel.expression_exists(
            line.character_id, line.expression_id
        ):
            raise GraphEditError(
                f"Line #{index} uses unknown expression '{line.expression_id}'."
            )
    return _with_scene(novel, replace(scene, dialogue=lines))


# Choices --------------------------------------------------------------------


def _with_choice(
    novel: VisualNovel, scene: Scene, index: int, choice: Choice
) -> VisualNovel:
    choices = list(scene.choices)
    choices[index] = choice
    return _with_scene(novel, replace(scene, choices=tuple(choices)))


def add_choice(
    novel: VisualNovel,
    scene_id: str,
    text: str = DEFAULT_CHOICE_TEXT,
    *,
    next_scene_id: str | None = None,
) -> VisualNovel:
    """Append a choice; without a target it links to the first other scene."""

    scene = _require_scene(novel, scene_id)
    if next_scene_id is None:
        target = next((entry for entry in novel.scenes if entry.id != scene_id), None)
        if target is None:
            raise GraphEditError("Create another scene before linking a choice to it.")
        next_scene_id = target.id
    else:
        _require_scene(novel, next_scene_id)

    choice = Choice(text=text, next_scene_id=next_scene_id)
    return _with_scene(novel, replace(scene, choices=scene.choices + (choice,)))


def set_choice_text(
    novel: VisualNovel, scene_id: str, choice_index: int, text: str
) -> VisualNovel:
    scene = _require_scene(novel, scene_id)
    _require_index(scene.choices, choice_index, label="choice")
    return _with_choice(
        novel, scene, choice_index, replace(scene.choices[choice_index], text=text)
    )


def set_choice_target(
    novel: VisualNovel, scene_id: str, choice_index: int, next_scene_id: str
) -> VisualNovel:
    scene = _require_scene(novel, scene_id)
    _require_index(scene.choices, choice_index, label="choice")
    _require_scene(novel, next_scene_id)
    return _with_choice(
        novel,
        scene,
        choice_index,
        replace(scene.choices[choice_index], next_scene_id=next_scene_id),
    )


def delete_choice(novel: VisualNovel, scene_id: str, choice_index: int) -> VisualNovel:
    scene = _require_scene(novel, scene_id)
    _require_index(scene.choices, choice_index, label="choice")
    choices = scene.choices[:choice_index] + scene.choices[choice_index + 1 :]
    return _with_scene(novel, replace(scene, choices=choices))


def move_choice(
    novel: VisualNovel, scene_id: str, from_index: int, to_index: int
) -> VisualNovel:
    scene = _require_scene(novel, scene_id)
    _require_index(scene.choices, from_index, label="choice")
    _require_index(scene.choices, to_index, label="choice")
    return _with_scene(
        novel, replace(scene, choices=_moved(scene.choices, from_index, to_index))
    )


__all__ = [
    "GraphEditError",
    "set_title",
    "add_character",
    "rename_character",
    "delete_character",
    "add_expression",
    "rename_expression",
    "set_expression_image",
    "delete_expression",
    "set_default_expression",
    "add_scene",
    "rename_scene",
    "set_scene_background",
    "set_scene_prompt",
    "set_start_scene",
    "delete_scene",
    "set_character_presence",
    "add_dialogue_line",
    "set_dialogue_speaker",
    "set_dialogue_expression",
    "set_dialogue_text",
    "delete_dialogue_line",
    "move_dialogue_line",
    "replace_dialogue",
    "add_choice",
    "set_choice_text",
    "set_choice_target",
    "delete_choice",
    "move_choice",
]
