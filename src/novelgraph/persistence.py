"""Export and import of novels as self-describing JSON records."""

from __future__ import annotations

import json
import logging
from importlib import resources
from pathlib import Path
from typing import Any, Dict, List, Mapping

from .model import Character, Choice, DialogueLine, Expression, Scene, VisualNovel

LOGGER = logging.getLogger(__name__)

DEMO_RESOURCE_PACKAGE = "novelgraph.data"
DEMO_RESOURCE_NAME = "demo_novel.json"

# Field names written by older exports of the editor.
_LEGACY_ALIASES = {
    "imageAddress": "imageUrl",
    "backgroundAddress": "backgroundUrl",
    "authoringPrompt": "aiPrompt",
}


class ImportValidationError(ValueError):
    """Raised when an imported record does not describe a valid novel."""


def novel_to_payload(novel: VisualNovel) -> Dict[str, Any]:
    """Return a JSON-serialisable representation of ``novel``."""

    return {
        "title": novel.title,
        "startSceneId": novel.start_scene_id,
        "characters": [
            {
                "id": character.id,
                "name": character.name,
                "expressions": [
                    {
                        "id": expression.id,
                        "name": expression.name,
                        "imageAddress": expression.image_address,
                    }
                    for expression in character.expressions
                ],
                "defaultExpressionId": character.default_expression_id,
            }
            for character in novel.characters
        ],
        "scenes": [_scene_to_payload(scene) for scene in novel.scenes],
    }


def _scene_to_payload(scene: Scene) -> Dict[str, Any]:
    payload: Dict[str, Any] = {
        "id": scene.id,
        "name": scene.name,
        "backgroundAddress": scene.background_address,
        "presentCharacterIds": list(scene.present_character_ids),
        "dialogue": [
            {
                "characterId": line.character_id,
                "expressionId": line.expression_id,
                "text": line.text,
            }
            for line in scene.dialogue
        ],
        "choices": [
            {"text": choice.text, "nextSceneId": choice.next_scene_id}
            for choice in scene.choices
        ],
    }
    if scene.authoring_prompt is not None:
        payload["authoringPrompt"] = scene.authoring_prompt
    return payload


def _field(payload: Mapping[str, Any], key: str, default: Any = None) -> Any:
    if key in payload:
        return payload[key]
    legacy = _LEGACY_ALIASES.get(key)
    if legacy is not None and legacy in payload:
        return payload[legacy]
    return default


def _require_mapping(value: Any, *, path: str) -> Mapping[str, Any]:
    if not isinstance(value, Mapping):
        raise ImportValidationError(f"{path} must be an object.")
    return value


def _require_list(value: Any, *, path: str) -> List[Any]:
    if not isinstance(value, list):
        raise ImportValidationError(f"{path} must be a list.")
    return value


def _require_string(value: Any, *, path: str) -> str:
    if not isinstance(value, str):
        raise ImportValidationError(f"{path} must be a string.")
    return value


def _optional_string(value: Any, *, path: str) -> str | None:
    if value is None:
        return None
    return _require_string(value, path=path)


def _optional_reference(value: Any, *, path: str) -> str | None:
    """Like :func:`_optional_string` but blank ids count as absent."""

    text = _optional_string(value, path=path)
    if text is None or not text.strip():
        return None
    return text


def _parse_expression(payload: Any, *, path: str) -> Expression:
    data = _require_mapping(payload, path=path)
    return Expression(
        id=_require_string(data.get("id"), path=f"{path}.id"),
        name=_require_string(data.get("name", ""), path=f"{path}.name"),
        image_address=_require_string(
            _field(data, "imageAddress", ""), path=f"{path}.imageAddress"
        ),
    )


def _parse_character(payload: Any, *, path: str) -> Character:
    data = _require_mapping(payload, path=path)
    raw_expressions = _require_list(data.get("expressions", []), path=f"{path}.expressions")
    return Character(
        id=_require_string(data.get("id"), path=f"{path}.id"),
        name=_require_string(data.get("name", ""), path=f"{path}.name"),
        expressions=tuple(
            _parse_expression(entry, path=f"{path}.expressions[{index}]")
            for index, entry in enumerate(raw_expressions)
        ),
        default_expression_id=_optional_string(
            data.get("defaultExpressionId"), path=f"{path}.defaultExpressionId"
        ),
    )


def _parse_line(payload: Any, *, path: str) -> DialogueLine:
    data = _require_mapping(payload, path=path)
    return DialogueLine(
        character_id=_optional_reference(
            data.get("characterId"), path=f"{path}.characterId"
        ),
        expression_id=_optional_reference(
            data.get("expressionId"), path=f"{path}.expressionId"
        ),
        text=_require_string(data.get("text", ""), path=f"{path}.text"),
    )


def _parse_choice(payload: Any, *, path: str) -> Choice:
    data = _require_mapping(payload, path=path)
    return Choice(
        text=_require_string(data.get("text", ""), path=f"{path}.text"),
        next_scene_id=_require_string(data.get("nextSceneId"), path=f"{path}.nextSceneId"),
    )


def _parse_scene(payload: Any, *, path: str) -> Scene:
    data = _require_mapping(payload, path=path)
    present = _require_list(
        data.get("presentCharacterIds", []), path=f"{path}.presentCharacterIds"
    )
    dialogue = _require_list(data.get("dialogue", []), path=f"{path}.dialogue")
    choices = _require_list(data.get("choices", []), path=f"{path}.choices")
    return Scene(
        id=_require_string(data.get("id"), path=f"{path}.id"),
        name=_require_string(data.get("name", ""), path=f"{path}.name"),
        background_address=_require_string(
            _field(data, "backgroundAddress", ""), path=f"{path}.backgroundAddress"
        ),
        present_character_ids=tuple(
            _require_string(entry, path=f"{path}.presentCharacterIds[{index}]")
            for index, entry in enumerate(present)
        ),
        dialogue=tuple(
            _parse_line(entry, path=f"{path}.dialogue[{index}]")
            for index, entry in enumerate(dialogue)
        ),
        choices=tuple(
            _parse_choice(entry, path=f"{path}.choices[{index}]")
            for index, entry in enumerate(choices)
        ),
        authoring_prompt=_optional_string(
            _field(data, "authoringPrompt"), path=f"{path}.authoringPrompt"
        ),
    )


def validate_record_shape(payload: Any) -> Mapping[str, Any]:
    """Check the top-level fields every exported novel carries."""

    if not isinstance(payload, Mapping):
        raise ImportValidationError("A novel record must be a JSON object.")
    if not payload.get("title"):
        raise ImportValidationError("The record is missing a 'title'.")
    if not isinstance(payload.get("scenes"), list):
        raise ImportValidationError("The record must define 'scenes' as a list.")
    if not isinstance(payload.get("characters"), list):
        raise ImportValidationError("The record must define 'characters' as a list.")
    start_scene_id = payload.get("startSceneId")
    if not isinstance(start_scene_id, str) or not start_scene_id.strip():
        raise ImportValidationError("The record must define 'startSceneId' as a string.")
    return payload


def novel_from_payload(payload: Any) -> VisualNovel:
    """Build a :class:`VisualNovel` from an exported record.

    Raises:
        ImportValidationError: If the record or any entity inside it is
            malformed. Nothing is partially applied.
    """

    data = validate_record_shape(payload)
    try:
        return VisualNovel(
            title=_require_string(data["title"], path="title"),
            start_scene_id=data["startSceneId"],
            characters=tuple(
                _parse_character(entry, path=f"characters[{index}]")
                for index, entry in enumerate(data["characters"])
            ),
            scenes=tuple(
                _parse_scene(entry, path=f"scenes[{index}]")
                for index, entry in enumerate(data["scenes"])
            ),
        )
    except ImportValidationError:
        raise
    except (TypeError, ValueError) as exc:
        raise ImportValidationError(str(exc)) from exc


def dumps_novel(novel: VisualNovel, *, pretty: bool = True) -> str:
    if pretty:
        return json.dumps(novel_to_payload(novel), indent=2, ensure_ascii=False)
    return json.dumps(novel_to_payload(novel), separators=(",", ":"), ensure_ascii=False)


def loads_novel(text: str) -> VisualNovel:
    try:
        payload = json.loads(text)
    except json.JSONDecodeError as exc:
        LOGGER.warning("Rejected novel import: invalid JSON (%s).", exc)
        raise ImportValidationError(f"The file is not valid JSON: {exc.msg}.") from exc
    try:
        return novel_from_payload(payload)
    except ImportValidationError as exc:
        LOGGER.warning("Rejected novel import: %s", exc)
        raise


def load_novel_from_file(path: str | Path) -> VisualNovel:
    """Load an exported novel from a JSON file on disk."""

    data_path = Path(path)
    return loads_novel(data_path.read_text(encoding="utf-8"))


def save_novel_to_file(novel: VisualNovel, path: str | Path) -> Path:
    data_path = Path(path)
    data_path.write_text(dumps_novel(novel) + "\n", encoding="utf-8")
    return data_path


def export_file_name(novel: VisualNovel) -> str:
    """Suggested download name, derived from the title."""

    from .renpy import sanitize_filename

    return f"{sanitize_filename(novel.title) or 'visual-novel'}.json"


def load_demo_novel() -> VisualNovel:
    """Read the bundled sample novel from the package data directory."""

    data_resource = resources.files(DEMO_RESOURCE_PACKAGE).joinpath(DEMO_RESOURCE_NAME)
    with data_resource.open("r", encoding="utf-8") as handle:
        return novel_from_payload(json.load(handle))


__all__ = [
    "ImportValidationError",
    "novel_to_payload",
    "novel_from_payload",
    "validate_record_shape",
    "dumps_novel",
    "loads_novel",
    "load_novel_from_file",
    "save_novel_to_file",
    "export_file_name",
    "load_demo_novel",
]
