"""Immutable entities describing a branching visual novel."""

from __future__ import annotations

from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Iterable, Mapping, Tuple


def _validate_identifier(value: str, *, field_name: str) -> str:
    """Ensure identifiers are non-empty strings."""

    if not isinstance(value, str):
        raise TypeError(f"{field_name} must be a string, got {type(value)!r}")

    stripped = value.strip()
    if not stripped:
        raise ValueError(f"{field_name} must be a non-empty string")

    return stripped


def _validate_optional_identifier(value: str | None, *, field_name: str) -> str | None:
    if value is None:
        return None
    return _validate_identifier(value, field_name=field_name)


def _validate_free_text(value: str, *, field_name: str) -> str:
    """Free text may be blank because the editor creates empty lines."""

    if not isinstance(value, str):
        raise TypeError(f"{field_name} must be a string, got {type(value)!r}")
    return value


def _unique_ids(entries: Iterable[str]) -> Tuple[str, ...]:
    seen: dict[str, None] = {}
    for entry in entries:
        seen.setdefault(entry, None)
    return tuple(seen)


@dataclass(frozen=True)
class Expression:
    """One visual variant of a character."""

    id: str
    name: str
    image_address: str = ""

    def __post_init__(self) -> None:
        object.__setattr__(
            self, "id", _validate_identifier(self.id, field_name="expression id")
        )
        _validate_free_text(self.name, field_name="expression name")
        _validate_free_text(self.image_address, field_name="image address")


@dataclass(frozen=True)
class Character:
    """A cast member and the expressions it can be drawn with.

    The editor keeps at least one expression on every character, but imported
    data may not, so construction only checks that expression ids are unique.
    """

    id: str
    name: str
    expressions: Tuple[Expression, ...] = ()
    default_expression_id: str | None = None
    _expression_index: Mapping[str, Expression] = field(
        init=False, repr=False, compare=False
    )

    def __post_init__(self) -> None:
        object.__setattr__(
            self, "id", _validate_identifier(self.id, field_name="character id")
        )
        _validate_free_text(self.name, field_name="character name")

        expressions = tuple(self.expressions)
        index: dict[str, Expression] = {}
        for expression in expressions:
            if not isinstance(expression, Expression):
                raise TypeError(
                    f"expressions must contain Expression instances, got {type(expression)!r}"
                )
            if expression.id in index:
                raise ValueError(
                    f"Character '{self.id}' defines duplicate expression id '{expression.id}'."
                )
            index[expression.id] = expression

        object.__setattr__(self, "expressions", expressions)
        object.__setattr__(
            self,
            "default_expression_id",
            _validate_optional_identifier(
                self.default_expression_id, field_name="default expression id"
            ),
        )
        object.__setattr__(self, "_expression_index", MappingProxyType(index))

    def expression(self, expression_id: str | None) -> Expression | None:
        """Return the expression with ``expression_id`` or ``None``."""

        if expression_id is None:
            return None
        return self._expression_index.get(expression_id)

    @property
    def default_expression(self) -> Expression | None:
        """Return the default expression when it resolves."""

        return self.expression(self.default_expression_id)


@dataclass(frozen=True)
class DialogueLine:
    """A single spoken or narrated line.

    A line without a speaker is narration, so any expression id supplied
    alongside ``character_id=None`` is discarded.
    """

    character_id: str | None = None
    expression_id: str | None = None
    text: str = ""

    def __post_init__(self) -> None:
        character_id = _validate_optional_identifier(
            self.character_id, field_name="dialogue character id"
        )
        expression_id = _validate_optional_identifier(
            self.expression_id, field_name="dialogue expression id"
        )
        if character_id is None:
            expression_id = None
        _validate_free_text(self.text, field_name="dialogue text")

        object.__setattr__(self, "character_id", character_id)
        object.__setattr__(self, "expression_id", expression_id)

    @property
    def is_narration(self) -> bool:
        return self.character_id is None


@dataclass(frozen=True)
class Choice:
    """A labelled edge leading to another scene."""

    text: str
    next_scene_id: str

    def __post_init__(self) -> None:
        _validate_free_text(self.text, field_name="choice text")
        object.__setattr__(
            self,
            "next_scene_id",
            _validate_identifier(self.next_scene_id, field_name="next scene id"),
        )


@dataclass(frozen=True)
class Scene:
    """A node of the story graph."""

    id: str
    name: str
    background_address: str = ""
    present_character_ids: Tuple[str, ...] = ()
    dialogue: Tuple[DialogueLine, ...] = ()
    choices: Tuple[Choice, ...] = ()
    authoring_prompt: str | None = None

    def __post_init__(self) -> None:
        object.__setattr__(
            self, "id", _validate_identifier(self.id, field_name="scene id")
        )
        _validate_free_text(self.name, field_name="scene name")
        _validate_free_text(self.background_address, field_name="background address")
        if self.authoring_prompt is not None:
            _validate_free_text(self.authoring_prompt, field_name="authoring prompt")

        present = _unique_ids(
            _validate_identifier(entry, field_name="present character id")
            for entry in self.present_character_ids
        )
        dialogue = tuple(self.dialogue)
        for line in dialogue:
            if not isinstance(line, DialogueLine):
                raise TypeError(
                    f"dialogue must contain DialogueLine instances, got {type(line)!r}"
                )
        choices = tuple(self.choices)
        for choice in choices:
            if not isinstance(choice, Choice):
                raise TypeError(
                    f"choices must contain Choice instances, got {type(choice)!r}"
                )

        object.__setattr__(self, "present_character_ids", present)
        object.__setattr__(self, "dialogue", dialogue)
        object.__setattr__(self, "choices", choices)

    @property
    def is_ending(self) -> bool:
        """Return ``True`` when the scene offers no choices."""

        return not self.choices

    @property
    def last_line_index(self) -> int:
        """Index of the final dialogue line (``0`` for empty dialogue)."""

        return max(len(self.dialogue) - 1, 0)

    def is_present(self, character_id: str | None) -> bool:
        return character_id is not None and character_id in self.present_character_ids


@dataclass(frozen=True)
class VisualNovel:
    """Root aggregate owning every character and scene.

    Scenes and characters are kept in authoring order. Lookups by id go
    through indexes built once per snapshot.
    """

    title: str
    start_scene_id: str
    characters: Tuple[Character, ...] = ()
    scenes: Tuple[Scene, ...] = ()
    _scene_index: Mapping[str, Scene] = field(init=False, repr=False, compare=False)
    _character_index: Mapping[str, Character] = field(
        init=False, repr=False, compare=False
    )

    def __post_init__(self) -> None:
        _validate_free_text(self.title, field_name="title")
        object.__setattr__(
            self,
            "start_scene_id",
            _validate_identifier(self.start_scene_id, field_name="start scene id"),
        )

        characters = tuple(self.characters)
        character_index: dict[str, Character] = {}
        for character in characters:
            if not isinstance(character, Character):
                raise TypeError(
                    f"characters must contain Character instances, got {type(character)!r}"
                )
            if character.id in character_index:
                raise ValueError(f"Duplicate character id '{character.id}'.")
            character_index[character.id] = character

        scenes = tuple(self.scenes)
        scene_index: dict[str, Scene] = {}
        for scene in scenes:
            if not isinstance(scene, Scene):
                raise TypeError(
                    f"scenes must contain Scene instances, got {type(scene)!r}"
                )
            if scene.id in scene_index:
                raise ValueError(f"Duplicate scene id '{scene.id}'.")
            scene_index[scene.id] = scene

        object.__setattr__(self, "characters", characters)
        object.__setattr__(self, "scenes", scenes)
        object.__setattr__(self, "_character_index", MappingProxyType(character_index))
        object.__setattr__(self, "_scene_index", MappingProxyType(scene_index))

    def scene(self, scene_id: str | None) -> Scene | None:
        """Return the scene registered under ``scene_id`` or ``None``."""

        if scene_id is None:
            return None
        return self._scene_index.get(scene_id)

    def character(self, character_id: str | None) -> Character | None:
        """Return the character registered under ``character_id`` or ``None``."""

        if character_id is None:
            return None
        return self._character_index.get(character_id)

    @property
    def start_scene(self) -> Scene | None:
        return self.scene(self.start_scene_id)

    def scene_exists(self, scene_id: str | None) -> bool:
        return self.scene(scene_id) is not None

    def character_exists(self, character_id: str | None) -> bool:
        return self.character(character_id) is not None

    def expression_exists(
        self, character_id: str | None, expression_id: str | None
    ) -> bool:
        """Return ``True`` when ``expression_id`` belongs to ``character_id``."""

        character = self.character(character_id)
        if character is None:
            return False
        return character.expression(expression_id) is not None

    @property
    def scene_ids(self) -> Tuple[str, ...]:
        return tuple(scene.id for scene in self.scenes)

    @property
    def character_ids(self) -> Tuple[str, ...]:
        return tuple(character.id for character in self.characters)


__all__ = [
    "Expression",
    "Character",
    "DialogueLine",
    "Choice",
    "Scene",
    "VisualNovel",
]
