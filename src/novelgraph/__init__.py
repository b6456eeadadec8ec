"""Story graph engine for branching visual novels."""

from .model import Character, Choice, DialogueLine, Expression, Scene, VisualNovel
from .editing import GraphEditError
from .analytics import (
    IntegrityReport,
    ReachabilityReport,
    StructuralWarning,
    analyze_reachability,
    assess_integrity,
    compute_story_metrics,
)
from .tree import SceneTree, SceneTreeNode, render_tree
from .renpy import compile_script, sanitize_filename, sanitize_identifier
from .playback import (
    AtEnding,
    AtLine,
    PlaybackError,
    PlaybackSession,
    advance,
    choose,
    initialize,
    restart,
)
from .persistence import (
    ImportValidationError,
    load_demo_novel,
    novel_from_payload,
    novel_to_payload,
)
from .llm import LLMClient, LLMClientError, LLMMessage, LLMResponse
from .generation import (
    GenerationError,
    LLMStoryWriter,
    StoryGenerator,
    generate_background,
    generate_dialogue,
    generate_novel,
)
from .workspace import NovelWorkspace, StaleSceneError

__all__ = [
    "Expression",
    "Character",
    "DialogueLine",
    "Choice",
    "Scene",
    "VisualNovel",
    "GraphEditError",
    "StructuralWarning",
    "ReachabilityReport",
    "IntegrityReport",
    "analyze_reachability",
    "assess_integrity",
    "compute_story_metrics",
    "SceneTree",
    "SceneTreeNode",
    "render_tree",
    "compile_script",
    "sanitize_filename",
    "sanitize_identifier",
    "AtLine",
    "AtEnding",
    "PlaybackError",
    "PlaybackSession",
    "initialize",
    "advance",
    "choose",
    "restart",
    "ImportValidationError",
    "novel_to_payload",
    "novel_from_payload",
    "load_demo_novel",
    "LLMClient",
    "LLMClientError",
    "LLMMessage",
    "LLMResponse",
    "GenerationError",
    "StoryGenerator",
    "LLMStoryWriter",
    "generate_novel",
    "generate_background",
    "generate_dialogue",
    "NovelWorkspace",
    "StaleSceneError",
]
