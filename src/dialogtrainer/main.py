"""CLI entrypoint for dialogue dictation practice."""

from __future__ import annotations

import argparse
import logging
from collections.abc import Callable
from pathlib import Path

from .alignment import render_diff
from .config import default_db_path
from .content_loader import ContentRoot, default_content_root, load_pack_index, load_script
from .errors import EmptyInputError, PersistenceError, ValidationError
from .models import PackEntry
from .progress import ProgressTracker
from .scoring import feedback_message
from .session import SessionController
from .settings import SettingsStore
from .storage import KeyValueStore, SqliteKeyValueStore

InputFn = Callable[[str], str]
PrintFn = Callable[[str], None]
MENU_QUIT_COMMANDS = {"q"}
MENU_BACK_COMMANDS = {"b"}
EMPTY_PACK_MESSAGE = "No lines in this pack."


class QuitApp(Exception):
    """Signal immediate app exit from nested menu flows."""


def _controller(store: KeyValueStore) -> SessionController:
    """Create a session controller over a key-value store."""
    settings = SettingsStore(store)
    tracker = ProgressTracker(store, settings)
    return SessionController(tracker, settings)


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="dialogtrainer", description="Dialogue dictation practice")
    parser.add_argument("--content-root", type=Path, default=None, help="directory containing packs/index.json")
    parser.add_argument("--db", type=Path, default=None, help="progress database path")
    parser.add_argument("-v", "--verbose", action="store_true", help="enable debug logging")
    commands = parser.add_subparsers(dest="command")
    commands.add_parser("practice", help="interactive practice shell (default)")
    commands.add_parser("packs", help="list available packs with completion")
    check = commands.add_parser("check", help="grade one typed line")
    check.add_argument("pack_id")
    check.add_argument("line", type=int, help="1-based line number")
    check.add_argument("text")
    return parser


def run(argv: list[str] | None = None) -> int:
    """Run the CLI application."""
    args = build_parser().parse_args(argv)
    _configure_logging(args.verbose)
    root: ContentRoot = args.content_root if args.content_root is not None else default_content_root()
    try:
        store = SqliteKeyValueStore(args.db or default_db_path())
    except PersistenceError as exc:
        print(f"Error: {exc}")
        return 1
    try:
        controller = _controller(store)
        if args.command == "packs":
            return list_packs(controller, root)
        if args.command == "check":
            return check_line(controller, root, args.pack_id, args.line, args.text)
        return play_shell(controller, root)
    finally:
        store.close()


def _load_entries(root: ContentRoot, print_fn: PrintFn) -> list[PackEntry] | None:
    try:
        return load_pack_index(root)
    except ValidationError as exc:
        print_fn(f"Error: {exc}")
        return None


def _completion_label(controller: SessionController, entry: PackEntry, root: ContentRoot) -> str:
    try:
        script = load_script(entry, root)
    except ValidationError:
        return "unavailable"
    return f"{controller.tracker.completion(entry.id, len(script))}% complete"


def list_packs(controller: SessionController, root: ContentRoot, print_fn: PrintFn = print) -> int:
    """Print every pack in the index with its completion."""
    entries = _load_entries(root, print_fn)
    if entries is None:
        return 1
    if not entries:
        print_fn("No packs available. Add packs to the packs/ directory.")
        return 0
    for entry in entries:
        meta = " / ".join(item for item in (entry.category, entry.level) if item)
        suffix = f" [{meta}]" if meta else ""
        print_fn(f"{entry.id}: {entry.title}{suffix} - {_completion_label(controller, entry, root)}")
    return 0


def check_line(
    controller: SessionController,
    root: ContentRoot,
    pack_id: str,
    line_number: int,
    text: str,
    print_fn: PrintFn = print,
) -> int:
    """Grade one typed attempt from the command line."""
    entries = _load_entries(root, print_fn)
    if entries is None:
        return 1
    entry = next((item for item in entries if item.id == pack_id), None)
    if entry is None:
        print_fn(f"Unknown pack: {pack_id}")
        return 1
    try:
        controller.open_pack(entry, root)
    except ValidationError as exc:
        print_fn(f"Error: {exc}")
        return 1
    if not controller.script:
        print_fn(EMPTY_PACK_MESSAGE)
        return 1
    if not controller.select_line(line_number - 1):
        print_fn(f"Line {line_number} is out of range (1-{len(controller.script)}).")
        return 1
    try:
        result = controller.grade(text)
    except EmptyInputError as exc:
        print_fn(str(exc))
        return 1
    print_fn(render_diff(result.alignment))
    print_fn(f"Score: {result.score}%")
    print_fn(feedback_message(result.score))
    return 0


def play_shell(
    controller: SessionController,
    root: ContentRoot,
    input_fn: InputFn = input,
    print_fn: PrintFn = print,
) -> int:
    """Run the persistent menu-driven practice shell."""
    try:
        while True:
            entries = _load_entries(root, print_fn)
            if entries is None:
                return 1
            entry = _select_pack(controller, root, entries, input_fn, print_fn)
            if entry is None:
                return 0
            try:
                controller.open_pack(entry, root)
            except ValidationError as exc:
                print_fn(f"Error: {exc}")
                continue
            _trainer_flow(controller, input_fn, print_fn)
    except QuitApp:
        return 0


def _select_pack(
    controller: SessionController,
    root: ContentRoot,
    entries: list[PackEntry],
    input_fn: InputFn,
    print_fn: PrintFn,
) -> PackEntry | None:
    """Choose a pack from the index."""
    last_unit_id = controller.settings.current.last_unit_id
    while True:
        print_fn("\n=== Packs ===")
        if not entries:
            print_fn("No packs available. Add packs to the packs/ directory.")
        for idx, entry in enumerate(entries, start=1):
            marker = " (last opened)" if entry.id == last_unit_id else ""
            print_fn(f"{idx}) {entry.title}{marker} - {_completion_label(controller, entry, root)}")
        print_fn("q) Quit")
        choice = input_fn("Select pack: ").strip().lower()
        if choice in MENU_QUIT_COMMANDS:
            return None
        if choice.isdigit():
            index = int(choice) - 1
            if 0 <= index < len(entries):
                return entries[index]
        print_fn("Invalid pack selection.")


def _trainer_flow(controller: SessionController, input_fn: InputFn, print_fn: PrintFn) -> None:
    """Practice lines of the open pack until the learner goes back."""
    context = controller.context
    if context is None:
        return
    if not context.script:
        print_fn(EMPTY_PACK_MESSAGE)
        return
    while True:
        line = controller.current_line
        view = "review only" if context.review_only else "all lines"
        print_fn(f"\n=== {context.entry.title} ===")
        print_fn(f"Line {context.current_index + 1}/{len(context.script)} ({line.role}) - {view}")
        print_fn(f"Review queue: {controller.review_count()} | Completion: {controller.completion()}%")
        print_fn("d) Dictation check")
        print_fn("r) Reveal line")
        print_fn("n) Next line")
        print_fn("p) Previous line")
        print_fn("l) List lines")
        print_fn("s) Select line")
        print_fn("v) Toggle review-only")
        print_fn("t) Settings")
        print_fn("x) Reset all data")
        print_fn("b) Back")
        print_fn("q) Quit")
        choice = input_fn("Choose: ").strip().lower()

        if choice == "d":
            _dictation_flow(controller, input_fn, print_fn)
        elif choice == "r":
            print_fn(f"{line.role}: {line.text}")
        elif choice == "n":
            if not controller.next_line():
                print_fn("Already at the last line.")
        elif choice == "p":
            if not controller.prev_line():
                print_fn("Already at the first line.")
        elif choice == "l":
            _list_lines(controller, print_fn)
        elif choice == "s":
            _select_line_flow(controller, input_fn, print_fn)
        elif choice == "v":
            first = controller.set_review_only(not context.review_only)
            if context.review_only and first is None:
                print_fn("No lines in review queue.")
        elif choice == "t":
            _settings_flow(controller, input_fn, print_fn)
        elif choice == "x":
            if _reset_flow(controller, input_fn, print_fn):
                return
        elif choice in MENU_BACK_COMMANDS:
            return
        elif choice in MENU_QUIT_COMMANDS:
            raise QuitApp
        else:
            print_fn("Invalid choice.")


def _list_lines(controller: SessionController, print_fn: PrintFn) -> None:
    visible = controller.visible_lines()
    if not visible:
        print_fn("No lines in review queue.")
        return
    for index, line in visible:
        marker = ">" if index == controller.current_index else " "
        stat = controller.tracker.line_stat(controller.unit_id, index)
        best = f" best {stat.best_score}%" if stat is not None else ""
        print_fn(f"{marker}{index + 1:>3} {line.role}{best}")


def _select_line_flow(controller: SessionController, input_fn: InputFn, print_fn: PrintFn) -> None:
    choice = input_fn("Line number: ").strip()
    if not choice.isdigit() or not controller.select_line(int(choice) - 1):
        print_fn("Invalid line number.")


def _dictation_flow(controller: SessionController, input_fn: InputFn, print_fn: PrintFn) -> None:
    """Grade one typed attempt of the current line."""
    typed = input_fn("Type what you hear: ")
    try:
        result = controller.grade(typed)
    except EmptyInputError as exc:
        print_fn(str(exc))
        return
    print_fn(render_diff(result.alignment))
    print_fn(f"Score: {result.score}%")
    print_fn(feedback_message(result.score))


def _settings_flow(controller: SessionController, input_fn: InputFn, print_fn: PrintFn) -> None:
    """Show and edit playback settings."""
    current = controller.settings.current
    print_fn(f"\nRate: {current.rate}")
    print_fn(f"Gap: {current.gap_ms} ms")
    print_fn(f"Voice: {current.voice_id or 'Default'}")
    rate = input_fn("New rate (blank to keep): ").strip()
    if rate:
        try:
            controller.set_rate(float(rate))
        except ValueError:
            print_fn("Invalid rate.")
    gap = input_fn("New gap in ms (blank to keep): ").strip()
    if gap:
        try:
            controller.set_gap(int(gap))
        except ValueError:
            print_fn("Invalid gap.")


def _reset_flow(controller: SessionController, input_fn: InputFn, print_fn: PrintFn) -> bool:
    """Erase all progress and settings with explicit confirmation safeguard."""
    print_fn("WARNING: This permanently deletes all progress and restores default settings.")
    confirm = input_fn("Type YES to confirm reset: ").strip()
    if confirm != "YES":
        print_fn("Reset cancelled.")
        return False
    controller.tracker.reset(confirm=True)
    print_fn("All data has been reset.")
    return True


def main_entry() -> None:
    """Console script entrypoint."""
    raise SystemExit(run())


if __name__ == "__main__":  # pragma: no cover
    main_entry()
