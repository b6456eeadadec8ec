"""Command-line entry point for inspecting, compiling and playing novels."""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path
from typing import Sequence, TextIO

from .analytics import (
    analyze_reachability,
    assess_integrity,
    compute_story_metrics,
    format_integrity_report,
    format_reachability_report,
    format_story_metrics,
)
from .logging_config import configure_logging
from .model import VisualNovel
from .persistence import ImportValidationError, load_demo_novel, load_novel_from_file
from .playback import PlaybackFrame, PlaybackSession
from .renpy import compile_script, write_script
from .tree import format_scene_tree, render_tree

LOGGER = logging.getLogger(__name__)

QUIT_COMMANDS = frozenset({"q", "quit", "exit"})
RESTART_COMMANDS = frozenset({"r", "restart"})


def _add_novel_argument(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "novel",
        nargs="?",
        type=Path,
        help="Path to an exported novel JSON file. Defaults to the bundled demo.",
    )


def _parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="novelgraph",
        description="Inspect, compile and play branching visual novels.",
    )
    parser.add_argument(
        "--log-level",
        help="Logging level (default: NOVELGRAPH_LOG_LEVEL or WARNING).",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    analyse = subparsers.add_parser(
        "analyse", help="Print reachability, integrity and metrics reports."
    )
    _add_novel_argument(analyse)

    tree = subparsers.add_parser("tree", help="Print the scene tree outline.")
    _add_novel_argument(tree)

    compile_parser = subparsers.add_parser("compile", help="Compile to a Ren'Py script.")
    _add_novel_argument(compile_parser)
    compile_parser.add_argument(
        "-o",
        "--output",
        type=Path,
        help="Write the script to this file instead of standard output.",
    )

    play = subparsers.add_parser("play", help="Play the novel in the terminal.")
    _add_novel_argument(play)
    play.add_argument("--scene", help="Scene id to start from instead of the start scene.")

    serve = subparsers.add_parser("serve", help="Run the HTTP API with uvicorn.")
    serve.add_argument("--host", default="127.0.0.1", help="Interface to bind.")
    serve.add_argument("--port", type=int, default=8000, help="Port to listen on.")
    serve.add_argument(
        "--novel",
        type=Path,
        help="Novel to open on startup. Defaults to NOVELGRAPH_NOVEL_PATH or the demo.",
    )

    return parser.parse_args(argv)


def _load(path: Path | None) -> VisualNovel:
    if path is None:
        return load_demo_novel()
    return load_novel_from_file(path)


def _format_frame(frame: PlaybackFrame) -> str:
    lines = []
    if frame.error is not None:
        lines.append(f"[error] Scene '{frame.state.scene_id}' could not be found.")
        return "\n".join(lines)

    if frame.speaker_name:
        lines.append(f"{frame.speaker_name}: {frame.text}")
    else:
        lines.append(frame.text)
    for index, choice in enumerate(frame.choices, start=1):
        lines.append(f"  {index}. {choice.text}")
    if frame.is_ending:
        lines.append("")
        lines.append("The End")
    return "\n".join(lines)


def play(
    novel: VisualNovel,
    *,
    scene_id: str | None = None,
    stdin: TextIO | None = None,
    stdout: TextIO | None = None,
) -> int:
    """Run an interactive playthrough.

    Enter advances, a number picks a choice, ``r`` restarts and ``q`` quits.
    Returns ``1`` when playback hits a missing scene.
    """

    source = stdin or sys.stdin
    sink = stdout or sys.stdout
    session = PlaybackSession(novel, scene_id)
    frame = session.frame
    print(f"== {novel.title} ==", file=sink)

    while True:
        print(_format_frame(frame), file=sink)
        if frame.error is not None:
            return 1
        if frame.is_ending:
            return 0

        prompt = "choose> " if frame.awaiting_choice else "> "
        sink.write(prompt)
        sink.flush()
        raw = source.readline()
        if not raw:
            print("", file=sink)
            return 0

        command = raw.strip().lower()
        if command in QUIT_COMMANDS:
            return 0
        if command in RESTART_COMMANDS:
            frame = session.restart(scene_id)
            continue
        if frame.awaiting_choice:
            if not command.isdigit() or not 1 <= int(command) <= len(frame.choices):
                print(f"Pick a number between 1 and {len(frame.choices)}.", file=sink)
                continue
            frame = session.choose_index(int(command) - 1)
            continue
        frame = session.advance()


def _serve(args: argparse.Namespace) -> int:
    import uvicorn

    from .api import NovelApiSettings, create_app

    settings = NovelApiSettings.from_env()
    if args.novel is not None:
        settings = NovelApiSettings(novel_path=args.novel, log_level=settings.log_level)
    app = create_app(settings=settings)
    uvicorn.run(app, host=args.host, port=args.port, log_level=settings.log_level.lower())
    return 0


def main(
    argv: Sequence[str] | None = None,
    *,
    stdin: TextIO | None = None,
    stdout: TextIO | None = None,
) -> int:
    args = _parse_args(argv)
    configure_logging(args.log_level)
    sink = stdout or sys.stdout

    if args.command == "serve":
        return _serve(args)

    try:
        novel = _load(args.novel)
    except (OSError, ImportValidationError) as exc:
        print(f"Failed to load novel: {exc}", file=sys.stderr)
        return 2

    if args.command == "analyse":
        print(format_reachability_report(novel, analyze_reachability(novel)), file=sink)
        print("", file=sink)
        print(format_integrity_report(assess_integrity(novel)), file=sink)
        print("", file=sink)
        print(format_story_metrics(compute_story_metrics(novel)), file=sink)
        return 0

    if args.command == "tree":
        print(format_scene_tree(render_tree(novel)), file=sink)
        return 0

    if args.command == "compile":
        if args.output is not None:
            target = write_script(novel, args.output)
            LOGGER.info("Wrote Ren'Py script to %s.", target)
            print(f"Wrote {target}", file=sink)
        else:
            sink.write(compile_script(novel))
        return 0

    return play(novel, scene_id=args.scene, stdin=stdin, stdout=sink)


if __name__ == "__main__":  # pragma: no cover - convenience CLI
    raise SystemExit(main())
