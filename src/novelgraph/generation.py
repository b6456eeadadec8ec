"""Generative collaborators and the core rules applied to what they return.

Generators are untrusted: every story they produce is validated through the
import path and every dialogue line is normalised before it reaches a novel.
None of the helpers here mutate their input; they return a new snapshot or
raise :class:`GenerationError`.
"""

from __future__ import annotations

import json
import logging
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Mapping, Protocol, Sequence

from .analytics import assess_integrity
from .editing import GraphEditError, replace_dialogue, set_scene_background
from .llm import (
    LLMClient,
    LLMClientError,
    LLMErrorCategory,
    LLMErrorClassifier,
    LLMMessage,
    LLMRetryPolicy,
    call_with_retries,
)
from .model import Character, DialogueLine, Scene, VisualNovel
from .persistence import ImportValidationError, novel_from_payload

LOGGER = logging.getLogger(__name__)

PLACEHOLDER_PORTRAIT_ADDRESS = "https://picsum.photos/400/600"
PLACEHOLDER_BACKGROUND_ADDRESS = "https://picsum.photos/1280/720"


class GenerationError(RuntimeError):
    """Raised when a generative collaborator fails or returns unusable data."""


class StoryGenerator(ABC):
    """Produces whole stories and per-scene dialogue."""

    @abstractmethod
    def generate_story(self, theme: str) -> Mapping[str, Any]:
        """Return an exported novel record for ``theme``."""

    @abstractmethod
    def generate_scene_dialogue(
        self, scene_name: str, prompt: str, present_characters: Sequence[Character]
    ) -> Sequence[DialogueLine]:
        """Return dialogue for one scene, in speaking order."""


class BackgroundGenerator(Protocol):
    def generate_scene_background(self, prompt: str) -> str:
        """Return the address of an image matching ``prompt``."""


def _require_prompt(scene: Scene) -> str:
    prompt = (scene.authoring_prompt or "").strip()
    if not prompt:
        raise GenerationError(f"Scene '{scene.id}' has no authoring prompt.")
    return prompt


def _require_scene(novel: VisualNovel, scene_id: str) -> Scene:
    scene = novel.scene(scene_id)
    if scene is None:
        raise GenerationError(f"Unknown scene '{scene_id}'.")
    return scene


def generate_novel(theme: str, generator: StoryGenerator) -> VisualNovel:
    """Ask ``generator`` for a story and validate it like an import.

    Beyond the record shape, the story must pass every integrity check: no
    dangling references, no empty scenes and no characters without
    expressions.
    """

    if not isinstance(theme, str) or not theme.strip():
        raise GenerationError("A theme is required to generate a story.")

    try:
        payload = generator.generate_story(theme.strip())
    except GenerationError:
        raise
    except Exception as exc:
        LOGGER.warning("Story generation failed for theme %r: %s", theme, exc)
        raise GenerationError("Failed to generate story.") from exc

    try:
        novel = novel_from_payload(payload)
    except ImportValidationError as exc:
        LOGGER.warning("Generated story was rejected: %s", exc)
        raise GenerationError(f"The generated story is invalid: {exc}") from exc

    if novel.start_scene is None:
        LOGGER.warning(
            "Generated story points at missing start scene '%s'.", novel.start_scene_id
        )
        raise GenerationError("The generated story has no start scene.")

    report = assess_integrity(novel)
    problems = sorted(
        {issue.kind for issue in report.issues}
        | {warning.kind for warning in report.structural_warnings}
    )
    if problems:
        LOGGER.warning("Generated story failed integrity checks: %s", ", ".join(problems))
        raise GenerationError(
            "The generated story is inconsistent: " + ", ".join(problems) + "."
        )
    return novel


def generate_background(
    novel: VisualNovel, scene_id: str, generator: BackgroundGenerator
) -> VisualNovel:
    """Replace the background of ``scene_id`` with a generated image."""

    scene = _require_scene(novel, scene_id)
    prompt = _require_prompt(scene)
    try:
        address = generator.generate_scene_background(prompt)
    except Exception as exc:
        LOGGER.warning("Background generation failed for scene '%s': %s", scene_id, exc)
        raise GenerationError("Failed to generate background image.") from exc

    if not isinstance(address, str) or not address.strip():
        raise GenerationError("The background generator returned no image.")
    return set_scene_background(novel, scene_id, address.strip())


def normalise_dialogue(
    scene: Scene, lines: Sequence[DialogueLine]
) -> tuple[DialogueLine, ...]:
    """Drop generated expressions and demote absent speakers to narration."""

    normalised = []
    for line in lines:
        speaker = line.character_id
        if speaker is not None and not scene.is_present(speaker):
            LOGGER.debug("Demoting generated line from absent speaker '%s'.", speaker)
            speaker = None
        normalised.append(DialogueLine(character_id=speaker, text=line.text))
    return tuple(normalised)


def generate_dialogue(
    novel: VisualNovel, scene_id: str, generator: StoryGenerator
) -> VisualNovel:
    """Replace the dialogue of ``scene_id`` with generated lines."""

    scene = _require_scene(novel, scene_id)
    prompt = _require_prompt(scene)
    present = [
        character
        for character in (novel.character(cid) for cid in scene.present_character_ids)
        if character is not None
    ]
    try:
        lines = generator.generate_scene_dialogue(scene.name, prompt, present)
    except GenerationError:
        raise
    except Exception as exc:
        LOGGER.warning("Dialogue generation failed for scene '%s': %s", scene_id, exc)
        raise GenerationError("Failed to generate dialogue.") from exc

    dialogue = normalise_dialogue(scene, lines)
    if not dialogue:
        raise GenerationError("The generator returned no dialogue.")
    try:
        return replace_dialogue(novel, scene_id, dialogue)
    except GraphEditError as exc:
        raise GenerationError(str(exc)) from exc


class PlaceholderBackgroundGenerator:
    """Returns a stock placeholder image for every prompt."""

    def __init__(self, address: str = PLACEHOLDER_BACKGROUND_ADDRESS) -> None:
        self.address = address

    def generate_scene_background(self, prompt: str) -> str:
        return self.address


STORY_SYSTEM_PROMPT = (
    "You write complete, self-contained visual novels for a branching story "
    "editor. Answer with a single JSON object and no markdown."
)

STORY_PROMPT_TEMPLATE = """Create a complete visual novel story based on the theme "{theme}".
The story needs a clear beginning, middle and end.
Use at least 2 characters and 4 scenes connected by choices so that every scene is reachable.
Several characters may share a scene and talk to each other.
Final scenes have no choices.
Give each character one expression named "Default" and make it the default expression.
Set "expressionId" to null on every dialogue line.

Return a JSON object with this structure:
{{
  "title": "A title based on the theme",
  "startSceneId": "scene_1",
  "characters": [
    {{
      "id": "char_1",
      "name": "Character Name",
      "defaultExpressionId": "expr_1",
      "expressions": [
        {{"id": "expr_1", "name": "Default", "imageAddress": "{portrait}"}}
      ]
    }}
  ],
  "scenes": [
    {{
      "id": "scene_1",
      "name": "A short scene name",
      "backgroundAddress": "{background}",
      "presentCharacterIds": ["char_1"],
      "dialogue": [
        {{"characterId": "char_1", "expressionId": null, "text": "A spoken line."}},
        {{"characterId": null, "expressionId": null, "text": "A narrator line."}}
      ],
      "choices": [{{"text": "Choice text", "nextSceneId": "scene_2"}}]
    }}
  ]
}}"""

DIALOGUE_PROMPT_TEMPLATE = """You are a dialogue writer for a visual novel.
The current scene is named "{scene_name}".
The theme of the scene is "{prompt}".
The characters present are:
{characters}

Write a short dialogue sequence of 3-5 lines for this scene.
Narrator lines use a null "characterId"; spoken lines use the character id given above.
Return a JSON array of objects shaped like:
[{{"characterId": "the_character_id", "text": "The line."}}]"""


def _extract_json(text: str, pattern: str) -> Any:
    stripped = text.strip()
    if not stripped:
        raise GenerationError("The model returned an empty response.")

    match = re.search(pattern, stripped, re.DOTALL)
    if match:
        stripped = match.group()

    try:
        return json.loads(stripped)
    except json.JSONDecodeError as exc:
        preview = stripped[:200] + "..." if len(stripped) > 200 else stripped
        raise GenerationError(f"The model did not return valid JSON. Received: {preview}") from exc


def _describe_characters(characters: Sequence[Character]) -> str:
    if not characters:
        return "None. Use only the narrator."
    return "\n".join(f"- {character.name} (id: {character.id})" for character in characters)


def _default_classifier() -> LLMErrorClassifier:
    return LLMErrorClassifier(rules=[(LLMErrorCategory.TRANSIENT, LLMClientError)])


@dataclass
class LLMStoryWriter(StoryGenerator):
    """:class:`StoryGenerator` that prompts an :class:`LLMClient`."""

    llm_client: LLMClient
    temperature: float | None = None
    retry_policy: LLMRetryPolicy | None = None
    classifier: LLMErrorClassifier | None = None

    def _complete(self, messages: Sequence[LLMMessage]) -> str:
        response = call_with_retries(
            lambda: self.llm_client.complete(messages, temperature=self.temperature),
            retry_policy=self.retry_policy,
            classifier=self.classifier or _default_classifier(),
        )
        return response.message.content

    def generate_story(self, theme: str) -> Mapping[str, Any]:
        prompt = STORY_PROMPT_TEMPLATE.format(
            theme=theme,
            portrait=PLACEHOLDER_PORTRAIT_ADDRESS,
            background=PLACEHOLDER_BACKGROUND_ADDRESS,
        )
        content = self._complete(
            [
                LLMMessage(role="system", content=STORY_SYSTEM_PROMPT),
                LLMMessage(role="user", content=prompt),
            ]
        )
        data = _extract_json(content, r"\{.*\}")
        if not isinstance(data, Mapping):
            raise GenerationError("The generated story must be a JSON object.")
        return data

    def generate_scene_dialogue(
        self, scene_name: str, prompt: str, present_characters: Sequence[Character]
    ) -> Sequence[DialogueLine]:
        content = self._complete(
            [
                LLMMessage(
                    role="user",
                    content=DIALOGUE_PROMPT_TEMPLATE.format(
                        scene_name=scene_name,
                        prompt=prompt,
                        characters=_describe_characters(present_characters),
                    ),
                )
            ]
        )
        data = _extract_json(content, r"\[.*\]")
        if not isinstance(data, list):
            raise GenerationError("The generated dialogue must be a JSON array.")

        lines = []
        for index, entry in enumerate(data):
            if not isinstance(entry, Mapping) or not isinstance(entry.get("text"), str):
                raise GenerationError(f"Dialogue entry {index} needs a string 'text'.")
            speaker = entry.get("characterId")
            if isinstance(speaker, str):
                speaker = speaker.strip()
            lines.append(
                DialogueLine(
                    character_id=speaker or None,
                    text=entry["text"],
                )
            )
        return lines


__all__ = [
    "BackgroundGenerator",
    "GenerationError",
    "LLMStoryWriter",
    "PlaceholderBackgroundGenerator",
    "StoryGenerator",
    "generate_background",
    "generate_dialogue",
    "generate_novel",
    "normalise_dialogue",
]
