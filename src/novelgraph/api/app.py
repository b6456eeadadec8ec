"""FastAPI application exposing the story graph to editor and player hosts."""

from __future__ import annotations

import logging
from typing import Any, Literal

from fastapi import Body, FastAPI, HTTPException
from fastapi.responses import PlainTextResponse
from pydantic import BaseModel, Field

from ..analytics import (
    IntegrityIssue,
    StructuralWarning,
    analyze_reachability,
    assess_integrity,
    compute_story_metrics,
)
from ..editing import (
    DEFAULT_CHARACTER_NAME,
    DEFAULT_SCENE_NAME,
    GraphEditError,
    add_character,
    add_scene,
    delete_character,
    delete_scene,
)
from ..generation import (
    BackgroundGenerator,
    GenerationError,
    PlaceholderBackgroundGenerator,
    StoryGenerator,
)
from ..model import VisualNovel
from ..persistence import (
    ImportValidationError,
    load_demo_novel,
    load_novel_from_file,
    novel_to_payload,
)
from ..playback import (
    AtEnding,
    AtLine,
    PlaybackError,
    PlaybackErrorReason,
    PlaybackFrame,
    PlaybackState,
    advance,
    choose,
    describe_frame,
    initialize,
)
from ..renpy import compile_script
from ..tree import SceneTreeNode, render_tree
from ..workspace import NovelWorkspace, StaleSceneError
from .settings import NovelApiSettings

LOGGER = logging.getLogger(__name__)

PlaybackKind = Literal["line", "ending", "error"]


class StructuralWarningResource(BaseModel):
    """Structural problem reported next to an analysis result."""

    kind: str
    scene_id: str
    choice_index: int | None = None

    @classmethod
    def from_warning(cls, warning: StructuralWarning) -> "StructuralWarningResource":
        return cls(
            kind=warning.kind,
            scene_id=warning.scene_id,
            choice_index=warning.choice_index,
        )


class ReachabilityResponse(BaseModel):
    start_scene_id: str
    reachable: list[str]
    orphans: list[str]
    warnings: list[StructuralWarningResource] = Field(default_factory=list)
    fully_reachable: bool


class SceneTreeNodeResource(BaseModel):
    """One scene in the editor tree; loop nodes never have children."""

    scene_id: str
    scene_name: str
    incoming_choice_text: str | None = None
    is_loop: bool = False
    is_start: bool = False
    children: list["SceneTreeNodeResource"] = Field(default_factory=list)

    @classmethod
    def from_node(cls, node: SceneTreeNode) -> "SceneTreeNodeResource":
        return cls(
            scene_id=node.scene_id,
            scene_name=node.scene_name,
            incoming_choice_text=node.incoming_choice_text,
            is_loop=node.is_loop,
            is_start=node.is_start,
            children=[cls.from_node(child) for child in node.children],
        )


SceneTreeNodeResource.model_rebuild()


class SceneTreeResponse(BaseModel):
    root: SceneTreeNodeResource | None = None
    orphans: list[SceneTreeNodeResource] = Field(default_factory=list)
    warnings: list[StructuralWarningResource] = Field(default_factory=list)


class IntegrityIssueResource(BaseModel):
    kind: str
    scene_id: str | None = None
    character_id: str | None = None
    index: int | None = None
    reference: str | None = None

    @classmethod
    def from_issue(cls, issue: IntegrityIssue) -> "IntegrityIssueResource":
        return cls(
            kind=issue.kind,
            scene_id=issue.scene_id,
            character_id=issue.character_id,
            index=issue.index,
            reference=issue.reference,
        )


class StoryMetricsResource(BaseModel):
    scene_count: int
    ending_count: int
    choice_count: int
    dialogue_line_count: int
    narration_line_count: int
    character_count: int
    expression_count: int
    max_choices_in_scene: int


class IntegrityResponse(BaseModel):
    """Integrity issues, structural warnings and headline metrics."""

    issues: list[IntegrityIssueResource]
    warnings: list[StructuralWarningResource]
    metrics: StoryMetricsResource


class SceneCreateRequest(BaseModel):
    name: str = Field(DEFAULT_SCENE_NAME, description="Display name of the new scene.")


class CharacterCreateRequest(BaseModel):
    name: str = Field(
        DEFAULT_CHARACTER_NAME, description="Display name of the new character."
    )


class EntityResource(BaseModel):
    """Identifier and name of a created or deleted scene or character."""

    id: str
    name: str


class PlaybackStateResource(BaseModel):
    """Serialised playback state carried by the client between requests."""

    kind: PlaybackKind
    scene_id: str | None = None
    line_index: int = Field(0, ge=0)
    reason: PlaybackErrorReason | None = None

    @classmethod
    def from_state(cls, state: PlaybackState) -> "PlaybackStateResource":
        if isinstance(state, PlaybackError):
            return cls(kind="error", scene_id=state.scene_id, reason=state.reason)
        kind: PlaybackKind = "ending" if isinstance(state, AtEnding) else "line"
        return cls(kind=kind, scene_id=state.scene_id, line_index=state.line_index)

    def to_state(self) -> PlaybackState:
        if self.kind == "error":
            return PlaybackError(
                reason=self.reason or PlaybackErrorReason.SCENE_NOT_FOUND,
                scene_id=self.scene_id,
            )
        if self.scene_id is None:
            raise HTTPException(status_code=422, detail="scene_id is required.")
        if self.kind == "ending":
            return AtEnding(scene_id=self.scene_id, line_index=self.line_index)
        return AtLine(scene_id=self.scene_id, line_index=self.line_index)


class PortraitResource(BaseModel):
    character_id: str
    name: str
    image_address: str
    is_speaking: bool


class ChoiceResource(BaseModel):
    text: str
    next_scene_id: str


class PlaybackFrameResource(BaseModel):
    background_address: str = ""
    speaker_name: str | None = None
    text: str = ""
    portraits: list[PortraitResource] = Field(default_factory=list)
    choices: list[ChoiceResource] = Field(default_factory=list)
    awaiting_choice: bool = False
    is_ending: bool = False
    error: str | None = None

    @classmethod
    def from_frame(cls, frame: PlaybackFrame) -> "PlaybackFrameResource":
        return cls(
            background_address=frame.background_address,
            speaker_name=frame.speaker_name,
            text=frame.text,
            portraits=[
                PortraitResource(
                    character_id=portrait.character_id,
                    name=portrait.name,
                    image_address=portrait.image_address,
                    is_speaking=portrait.is_speaking,
                )
                for portrait in frame.portraits
            ],
            choices=[
                ChoiceResource(text=choice.text, next_scene_id=choice.next_scene_id)
                for choice in frame.choices
            ],
            awaiting_choice=frame.awaiting_choice,
            is_ending=frame.is_ending,
            error=frame.error.value if frame.error is not None else None,
        )


class PlaybackStartRequest(BaseModel):
    scene_id: str | None = Field(
        None, description="Scene to start from; defaults to the start scene."
    )


class PlaybackAdvanceRequest(BaseModel):
    state: PlaybackStateResource


class PlaybackChooseRequest(BaseModel):
    state: PlaybackStateResource
    next_scene_id: str


class PlaybackResponse(BaseModel):
    state: PlaybackStateResource
    frame: PlaybackFrameResource


class StoryGenerationRequest(BaseModel):
    theme: str = Field(..., min_length=1, description="Theme of the story to write.")


def _playback_response(novel: VisualNovel, state: PlaybackState) -> PlaybackResponse:
    frame = describe_frame(novel, state)
    return PlaybackResponse(
        state=PlaybackStateResource.from_state(frame.state),
        frame=PlaybackFrameResource.from_frame(frame),
    )


def _load_initial_novel(settings: NovelApiSettings) -> VisualNovel:
    if settings.novel_path is None:
        return load_demo_novel()
    LOGGER.info("Opening novel from %s.", settings.novel_path)
    return load_novel_from_file(settings.novel_path)


def create_app(
    workspace: NovelWorkspace | None = None,
    *,
    settings: NovelApiSettings | None = None,
    story_generator: StoryGenerator | None = None,
    background_generator: BackgroundGenerator | None = None,
) -> FastAPI:
    """Create a FastAPI app serving one editable novel."""

    resolved_settings = settings or NovelApiSettings.from_env()
    active = workspace or NovelWorkspace(_load_initial_novel(resolved_settings))
    backgrounds = background_generator or PlaceholderBackgroundGenerator()

    tags_metadata = [
        {
            "name": "Novel",
            "description": "Import, export, analysis and compilation of the story graph.",
        },
        {"name": "Editing", "description": "Add and remove scenes and characters."},
        {
            "name": "Playback",
            "description": "Stateless playback; the client sends the state it holds.",
        },
        {"name": "Generation", "description": "Story, dialogue and background generation."},
    ]

    app = FastAPI(
        title="Visual Novel Graph API",
        version="0.1.0",
        description=(
            "HTTP API for authoring branching visual novels: import and export, "
            "reachability analysis, Ren'Py compilation and playback."
        ),
        openapi_tags=tags_metadata,
    )

    @app.get("/api/novel", tags=["Novel"])
    def get_novel() -> dict[str, Any]:
        return novel_to_payload(active.snapshot)

    @app.put("/api/novel", tags=["Novel"])
    def put_novel(payload: Any = Body(...)) -> dict[str, Any]:
        try:
            novel = active.import_payload(payload)
        except ImportValidationError as exc:
            raise HTTPException(status_code=422, detail=str(exc)) from exc
        return novel_to_payload(novel)

    @app.get(
        "/api/novel/reachability", response_model=ReachabilityResponse, tags=["Novel"]
    )
    def get_reachability() -> ReachabilityResponse:
        report = analyze_reachability(active.snapshot)
        return ReachabilityResponse(
            start_scene_id=report.start_scene_id,
            reachable=list(report.reachable),
            orphans=list(report.orphans),
            warnings=[StructuralWarningResource.from_warning(w) for w in report.warnings],
            fully_reachable=report.fully_reachable,
        )

    @app.get("/api/novel/tree", response_model=SceneTreeResponse, tags=["Novel"])
    def get_tree() -> SceneTreeResponse:
        tree = render_tree(active.snapshot)
        root = SceneTreeNodeResource.from_node(tree.root) if tree.root is not None else None
        return SceneTreeResponse(
            root=root,
            orphans=[SceneTreeNodeResource.from_node(node) for node in tree.orphans],
            warnings=[StructuralWarningResource.from_warning(w) for w in tree.warnings],
        )

    @app.get("/api/novel/integrity", response_model=IntegrityResponse, tags=["Novel"])
    def get_integrity() -> IntegrityResponse:
        novel = active.snapshot
        report = assess_integrity(novel)
        metrics = compute_story_metrics(novel)
        return IntegrityResponse(
            issues=[IntegrityIssueResource.from_issue(issue) for issue in report.issues],
            warnings=[
                StructuralWarningResource.from_warning(w) for w in report.structural_warnings
            ],
            metrics=StoryMetricsResource(
                scene_count=metrics.scene_count,
                ending_count=metrics.ending_count,
                choice_count=metrics.choice_count,
                dialogue_line_count=metrics.dialogue_line_count,
                narration_line_count=metrics.narration_line_count,
                character_count=metrics.character_count,
                expression_count=metrics.expression_count,
                max_choices_in_scene=metrics.max_choices_in_scene,
            ),
        )

    @app.get("/api/novel/script", response_class=PlainTextResponse, tags=["Novel"])
    def get_script() -> str:
        return compile_script(active.snapshot)

    @app.post(
        "/api/scenes", response_model=EntityResource, status_code=201, tags=["Editing"]
    )
    def post_scene(request: SceneCreateRequest | None = None) -> EntityResource:
        name = request.name if request is not None else DEFAULT_SCENE_NAME
        novel = active.apply(add_scene, name)
        scene = novel.scenes[-1]
        return EntityResource(id=scene.id, name=scene.name)

    @app.delete("/api/scenes/{scene_id}", response_model=EntityResource, tags=["Editing"])
    def remove_scene(scene_id: str) -> EntityResource:
        removed: list[EntityResource] = []

        def _delete(novel: VisualNovel) -> VisualNovel:
            scene = novel.scene(scene_id)
            if scene is None:
                raise HTTPException(status_code=404, detail=f"Unknown scene '{scene_id}'.")
            removed.append(EntityResource(id=scene.id, name=scene.name))
            return delete_scene(novel, scene_id)

        try:
            active.apply(_delete)
        except GraphEditError as exc:
            raise HTTPException(status_code=409, detail=str(exc)) from exc
        return removed[0]

    @app.post(
        "/api/characters",
        response_model=EntityResource,
        status_code=201,
        tags=["Editing"],
    )
    def post_character(request: CharacterCreateRequest | None = None) -> EntityResource:
        name = request.name if request is not None else DEFAULT_CHARACTER_NAME
        novel = active.apply(add_character, name)
        character = novel.characters[-1]
        return EntityResource(id=character.id, name=character.name)

    @app.delete(
        "/api/characters/{character_id}", response_model=EntityResource, tags=["Editing"]
    )
    def remove_character(character_id: str) -> EntityResource:
        removed: list[EntityResource] = []

        def _delete(novel: VisualNovel) -> VisualNovel:
            character = novel.character(character_id)
            if character is None:
                raise HTTPException(
                    status_code=404, detail=f"Unknown character '{character_id}'."
                )
            removed.append(EntityResource(id=character.id, name=character.name))
            return delete_character(novel, character_id)

        active.apply(_delete)
        return removed[0]

    @app.post("/api/playback/start", response_model=PlaybackResponse, tags=["Playback"])
    def start_playback(request: PlaybackStartRequest | None = None) -> PlaybackResponse:
        novel = active.snapshot
        scene_id = request.scene_id if request is not None else None
        return _playback_response(novel, initialize(novel, scene_id or novel.start_scene_id))

    @app.post("/api/playback/advance", response_model=PlaybackResponse, tags=["Playback"])
    def advance_playback(request: PlaybackAdvanceRequest) -> PlaybackResponse:
        novel = active.snapshot
        return _playback_response(novel, advance(novel, request.state.to_state()))

    @app.post("/api/playback/choose", response_model=PlaybackResponse, tags=["Playback"])
    def choose_playback(request: PlaybackChooseRequest) -> PlaybackResponse:
        novel = active.snapshot
        state = choose(novel, request.state.to_state(), request.next_scene_id)
        return _playback_response(novel, state)

    @app.post("/api/generate/story", tags=["Generation"])
    def post_generate_story(request: StoryGenerationRequest) -> dict[str, Any]:
        if story_generator is None:
            raise HTTPException(status_code=503, detail="Story generation is not configured.")
        if not request.theme.strip():
            raise HTTPException(status_code=422, detail="A theme is required.")
        try:
            novel = active.generate_story(request.theme, story_generator)
        except GenerationError as exc:
            raise HTTPException(status_code=502, detail=str(exc)) from exc
        return novel_to_payload(novel)

    def _require_prompted_scene(novel: VisualNovel, scene_id: str) -> None:
        scene = novel.scene(scene_id)
        if scene is None:
            raise HTTPException(status_code=404, detail=f"Unknown scene '{scene_id}'.")
        if not (scene.authoring_prompt or "").strip():
            raise HTTPException(
                status_code=422, detail=f"Scene '{scene_id}' has no authoring prompt."
            )

    @app.post("/api/scenes/{scene_id}/generate/dialogue", tags=["Generation"])
    def post_generate_dialogue(scene_id: str) -> dict[str, Any]:
        if story_generator is None:
            raise HTTPException(status_code=503, detail="Story generation is not configured.")
        _require_prompted_scene(active.snapshot, scene_id)
        try:
            novel = active.generate_dialogue(scene_id, story_generator)
        except StaleSceneError as exc:
            raise HTTPException(status_code=409, detail=str(exc)) from exc
        except GenerationError as exc:
            raise HTTPException(status_code=502, detail=str(exc)) from exc
        return novel_to_payload(novel)

    @app.post("/api/scenes/{scene_id}/generate/background", tags=["Generation"])
    def post_generate_background(scene_id: str) -> dict[str, Any]:
        _require_prompted_scene(active.snapshot, scene_id)
        try:
            novel = active.generate_background(scene_id, backgrounds)
        except StaleSceneError as exc:
            raise HTTPException(status_code=409, detail=str(exc)) from exc
        except GenerationError as exc:
            raise HTTPException(status_code=502, detail=str(exc)) from exc
        return novel_to_payload(novel)

    return app


__all__ = ["create_app"]
