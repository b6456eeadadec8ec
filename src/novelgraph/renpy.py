"""Compile a story graph into a Ren'Py script.

The output is deterministic: characters, expressions and scenes are emitted in
authoring order and identifier collisions are resolved in that same order.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Iterable, List, Tuple

from .model import Character, Scene, VisualNovel

INDENT = "    "
NARRATOR_BACKGROUND = "black"
FALLBACK_START_LABEL = "scene_1"
EMPTY_LABEL = "scene"
# Labels Ren'Py enters on its own; scenes must not shadow them.
RESERVED_LABELS = frozenset(
    {
        "start",
        "quit",
        "after_load",
        "splashscreen",
        "before_main_menu",
        "main_menu",
        "after_warp",
        "hide_windows",
    }
)

# Alphanumerics, underscore, space and Hangul jamo/syllables.
_DISALLOWED = re.compile(r"[^a-zA-Z0-9ㄱ-ㅎㅏ-ㅣ가-힣_ ]")
_WHITESPACE = re.compile(r"\s+")


def sanitize_filename(name: str) -> str:
    """Reduce ``name`` to the allowed character set, preserving case."""

    return _WHITESPACE.sub("_", _DISALLOWED.sub("", name).strip())


def sanitize_identifier(name: str) -> str:
    """Lower-cased variant of :func:`sanitize_filename` for script symbols."""

    return sanitize_filename(name).lower()


def escape_text(text: str) -> str:
    return text.replace('"', '\\"')


class _Namespace:
    """Hands out unique identifiers, suffixing repeats with ``_2``, ``_3``..."""

    def __init__(self, reserved: Iterable[str] = ()) -> None:
        self._taken: set[str] = set(reserved)

    def claim(self, base: str) -> str:
        candidate = base
        counter = 2
        while candidate in self._taken:
            candidate = f"{base}_{counter}"
            counter += 1
        self._taken.add(candidate)
        return candidate


@dataclass(frozen=True)
class ScriptSymbols:
    """Identifiers assigned to every entity of a novel."""

    characters: Dict[str, str]
    expressions: Dict[Tuple[str, str], str]
    labels: Dict[str, str]
    backgrounds: Dict[str, str]


def _label_base(sanitized: str) -> str:
    if not sanitized:
        return EMPTY_LABEL
    if sanitized[0].isdigit():
        return f"{EMPTY_LABEL}_{sanitized}"
    return sanitized


def assign_symbols(novel: VisualNovel) -> ScriptSymbols:
    """Derive script identifiers for characters, expressions and scenes.

    Expression and background images share one tag namespace, and scene labels
    never take a name Ren'Py itself jumps to.
    """

    character_names = _Namespace()
    image_tags = _Namespace()
    characters: Dict[str, str] = {}
    expressions: Dict[Tuple[str, str], str] = {}
    for character in novel.characters:
        variable = character_names.claim(f"c_{sanitize_identifier(character.name)}")
        characters[character.id] = variable
        for expression in character.expressions:
            expressions[(character.id, expression.id)] = image_tags.claim(
                f"{variable}_{sanitize_identifier(expression.name)}"
            )

    label_names = _Namespace(RESERVED_LABELS)
    labels: Dict[str, str] = {}
    backgrounds: Dict[str, str] = {}
    for scene in novel.scenes:
        sanitized = sanitize_identifier(scene.name)
        labels[scene.id] = label_names.claim(_label_base(sanitized))
        if scene.background_address:
            backgrounds[scene.id] = image_tags.claim(f"bg_{sanitized}")

    return ScriptSymbols(
        characters=characters,
        expressions=expressions,
        labels=labels,
        backgrounds=backgrounds,
    )


def _character_image_lines(novel: VisualNovel, symbols: ScriptSymbols) -> List[str]:
    lines = []
    for character in novel.characters:
        for expression in character.expressions:
            file_name = (
                f"char_{sanitize_filename(character.name)}_"
                f"{sanitize_filename(expression.name)}.png"
            )
            tag = symbols.expressions[(character.id, expression.id)]
            lines.append(f'image {tag} = "images/{file_name}"')
    return lines


def _background_image_lines(novel: VisualNovel, symbols: ScriptSymbols) -> List[str]:
    lines = []
    for scene in novel.scenes:
        tag = symbols.backgrounds.get(scene.id)
        if tag is None:
            continue
        lines.append(f'image {tag} = "images/bg_{sanitize_filename(scene.name)}.png"')
    return lines


def _standing_tag(character: Character, symbols: ScriptSymbols) -> str | None:
    expression = character.default_expression
    if expression is None and character.expressions:
        expression = character.expressions[0]
    if expression is None:
        return None
    return symbols.expressions[(character.id, expression.id)]


def _staging_lines(
    novel: VisualNovel, scene: Scene, symbols: ScriptSymbols
) -> List[str]:
    """Show the first two present characters; further ones are not placed."""

    tags = []
    for character_id in scene.present_character_ids:
        character = novel.character(character_id)
        if character is None:
            continue
        tag = _standing_tag(character, symbols)
        if tag is not None:
            tags.append(tag)

    if len(tags) == 1:
        return [f"{INDENT}show {tags[0]} at center"]
    if len(tags) > 1:
        return [f"{INDENT}show {tags[0]} at left", f"{INDENT}show {tags[1]} at right"]
    return []


def _dialogue_lines(
    novel: VisualNovel, scene: Scene, symbols: ScriptSymbols
) -> List[str]:
    lines = []
    for line in scene.dialogue:
        text = escape_text(line.text)
        variable = symbols.characters.get(line.character_id) if line.character_id else None
        if variable is None:
            lines.append(f'{INDENT}"{text}"')
            continue

        tag = symbols.expressions.get((line.character_id, line.expression_id or ""))
        if tag is not None:
            lines.append(f"{INDENT}show {tag}")
        lines.append(f'{INDENT}{variable} "{text}"')
    return lines


def _branch_lines(novel: VisualNovel, scene: Scene, symbols: ScriptSymbols) -> List[str]:
    entries = []
    for choice in scene.choices:
        label = symbols.labels.get(choice.next_scene_id)
        if label is None:
            continue
        entries.append(f'{INDENT * 2}"{escape_text(choice.text)}":')
        entries.append(f"{INDENT * 3}jump {label}")

    if not entries:
        return [f"{INDENT}return"]
    return [f"{INDENT}menu:", *entries]


def _scene_block(novel: VisualNovel, scene: Scene, symbols: ScriptSymbols) -> List[str]:
    lines = [
        f"label {symbols.labels[scene.id]}:",
        f"{INDENT}scene {symbols.backgrounds.get(scene.id, NARRATOR_BACKGROUND)}",
    ]
    lines.extend(_staging_lines(novel, scene, symbols))
    lines.extend(_dialogue_lines(novel, scene, symbols))
    lines.extend(_branch_lines(novel, scene, symbols))
    lines.append("")
    return lines


def _join(blocks: Iterable[str]) -> str:
    return "\n".join(blocks) + "\n"


def compile_script(novel: VisualNovel) -> str:
    """Translate ``novel`` into Ren'Py source.

    Broken references never raise: choices whose target is gone are left out
    of the menu, a missing background shows ``black`` and dialogue from an
    unknown character is emitted as narration.
    """

    symbols = assign_symbols(novel)
    lines = [f"# Ren'Py Script - {novel.title}", "", "# Character Definitions"]
    for character in novel.characters:
        lines.append(
            f'define {symbols.characters[character.id]} = '
            f'Character("{escape_text(character.name)}")'
        )
    lines.append("")

    lines.extend(_character_image_lines(novel, symbols))
    lines.extend(_background_image_lines(novel, symbols))
    lines.append("")

    start_label = symbols.labels.get(novel.start_scene_id, FALLBACK_START_LABEL)
    lines.extend(
        [
            "# The game starts here.",
            "label start:",
            f"{INDENT}jump {start_label}",
            "",
        ]
    )

    for scene in novel.scenes:
        lines.extend(_scene_block(novel, scene, symbols))

    return _join(lines)


def write_script(novel: VisualNovel, path: str | Path) -> Path:
    """Compile ``novel`` and write it to ``path`` as UTF-8."""

    target = Path(path)
    target.write_text(compile_script(novel), encoding="utf-8")
    return target


__all__ = [
    "ScriptSymbols",
    "assign_symbols",
    "compile_script",
    "escape_text",
    "sanitize_filename",
    "sanitize_identifier",
    "write_script",
]
