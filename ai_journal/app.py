from __future__ import annotations

import argparse
import logging
import sys
import threading
from collections.abc import Iterable, Iterator
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path

from . import __version__
from .analytics import AnalyticsEngine
from .chat import ChatOrchestrator, estimate_request, list_available_models
from .courses import COURSES, TERMS, make_course_info
from .errors import JournalError, StateError, ValidationError
from .journal_format import ParsedDocument, parse_document
from .lifecycle import JournalLifecycle, JournalState, derive_state
from .models import Configuration, CourseInfo, EndWeekResult, JournalEntry, ModelDefinition
from .note import JournalNote, MarkdownNote
from .paths import ensure_directories, settings_path
from .providers import build_providers
from .settings_store import SETTING_KEYS, SettingsStore, masked
from .transport import RequestsTransport, Transport

logger = logging.getLogger(__name__)


class JournalApp:
    """Entry points used by the host. One action runs at a time."""

    def __init__(
        self,
        settings: SettingsStore,
        transport: Transport | None = None,
        clock=None,
    ):
        self.settings = settings
        self.transport = transport or RequestsTransport()
        self._clock = clock
        self._busy = threading.Lock()

    @contextmanager
    def _action(self) -> Iterator[Configuration]:
        if not self._busy.acquire(blocking=False):
            raise StateError("Another journal action is already in progress.")
        try:
            yield self.settings.load()
        finally:
            self._busy.release()

    def _lifecycle(self, note: JournalNote) -> JournalLifecycle:
        if self._clock is None:
            return JournalLifecycle(note)
        return JournalLifecycle(note, self._clock)

    def available_models(self) -> list[ModelDefinition]:
        return list_available_models(self.settings.load())

    def read_entries(self, note: JournalNote) -> ParsedDocument:
        return parse_document(note.get_text())

    def state(self, note: JournalNote) -> JournalState:
        return derive_state(note.read_frontmatter())

    def add_exchange(
        self,
        note: JournalNote,
        prompt: str,
        selected_ids: Iterable[int] = (),
        model_id: str | None = None,
        course_info: CourseInfo | None = None,
    ) -> JournalEntry:
        with self._action() as config:
            lifecycle = self._lifecycle(note)
            lifecycle.require_can_add(course_info)

            entries = self.read_entries(note).entries
            selected = sorted(set(selected_ids))
            known = {entry.id for entry in entries}
            missing = [entry_id for entry_id in selected if entry_id not in known]
            if missing:
                raise ValidationError(f"Unknown entry ids: {', '.join(map(str, missing))}")

            orchestrator = ChatOrchestrator(config, build_providers(self.transport))
            result = orchestrator.submit(prompt, selected, model_id, entries)
            return lifecycle.append_exchange(prompt, result, course_info)

    def end_week(self, note: JournalNote, reflection: str) -> EndWeekResult:
        with self._action() as config:
            lifecycle = self._lifecycle(note)
            return lifecycle.end_week(reflection, AnalyticsEngine(config, self.transport))


def _parse_ids(raw: str | None) -> list[int]:
    if not raw:
        return []
    ids: list[int] = []
    for part in raw.split(","):
        part = part.strip()
        if not part:
            continue
        if not part.isdigit():
            raise ValidationError(f"Invalid entry id: '{part}'.")
        ids.append(int(part))
    return ids


def _read_text_arg(text: str | None, file: Path | None) -> str:
    if text is not None:
        return text
    if file is not None:
        return file.read_text(encoding="utf-8")
    if not sys.stdin.isatty():
        return sys.stdin.read()
    return ""


def _course_info_from_args(args: argparse.Namespace) -> CourseInfo | None:
    if not args.student_name and not args.course:
        return None
    return make_course_info(
        course_id=args.course or "",
        student_name=args.student_name or "",
        student_id=args.student_id or "",
        term=args.term,
        year=args.year,
    )


def _cmd_models(app: JournalApp, args: argparse.Namespace) -> int:
    models = app.available_models()
    if not models:
        print("No AI models are configured. Please check your settings.")
        return 0
    default = next((m for m in models if not m.is_separator), None)
    for model in models:
        if model.is_separator:
            print(model.display_name)
            continue
        marker = "*" if default is not None and model.id == default.id else " "
        print(f"{marker} {model.id:<26} {model.display_name}")
    return 0


def _cmd_entries(app: JournalApp, args: argparse.Namespace) -> int:
    parsed = app.read_entries(MarkdownNote(args.note))
    for entry in parsed.entries:
        preview = entry.prompt.replace("\n", " ")
        if len(preview) > 100:
            preview = preview[:100] + "..."
        print(f"Prompt {entry.id}: {preview}")
        if entry.metadata_text:
            print(f"  {entry.metadata_text}")
    for warning in parsed.warnings:
        print(f"Warning: {warning}", file=sys.stderr)
    if not parsed.entries:
        print("No journal entries found.")
    return 0


def _cmd_status(app: JournalApp, args: argparse.Namespace) -> int:
    note = MarkdownNote(args.note)
    frontmatter = note.read_frontmatter()
    state = derive_state(frontmatter)
    print(f"State: {state.value}")
    for key in ("course-id", "course-title", "student-name", "semester"):
        if frontmatter.get(key):
            print(f"{key}: {frontmatter[key]}")
    print(f"Entries: {len(app.read_entries(note).entries)}")
    if state is JournalState.LOCKED:
        print("This note is locked (read-only).")
    return 0


def _cmd_add(app: JournalApp, args: argparse.Namespace) -> int:
    note = MarkdownNote(args.note)
    prompt = _read_text_arg(args.prompt, args.prompt_file)
    selected = _parse_ids(args.context)
    total, context, new = estimate_request(prompt, selected, app.read_entries(note).entries)
    print(f"Estimated Tokens: ~{total} (Context: {context}, New: {new})")
    if args.estimate:
        return 0
    entry = app.add_exchange(
        note,
        prompt,
        selected_ids=selected,
        model_id=args.model,
        course_info=_course_info_from_args(args),
    )
    print(f"AI chat entry added as Prompt {entry.id}.")
    print(entry.metadata_text)
    return 0


def _cmd_end_week(app: JournalApp, args: argparse.Namespace) -> int:
    reflection = _read_text_arg(args.reflection, args.reflection_file)
    print("Analyzing journal... this may take a moment.")
    result = app.end_week(MarkdownNote(args.note), reflection)
    if result.analytics_error:
        print(f"Could not get AI analytics: {result.analytics_error}", file=sys.stderr)
    print(
        f"Week ended and all analytics saved: {result.prompt_count} prompts, "
        f"{result.total_tokens} tokens, {result.time_to_complete} elapsed."
    )
    print(f"Main topics: {result.analytics.main_topics}")
    print(f"Learning theory: {result.analytics.learning_theory}")
    print(f"ID model: {result.analytics.id_model}")
    return 0


def _cmd_config(app: JournalApp, args: argparse.Namespace) -> int:
    if args.config_command == "set":
        config = app.settings.update(**{args.key: args.value})
    else:
        config = app.settings.load()
    for key, value in masked(config).items():
        print(f"{key} = {value}")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="ai-journal", description="AI-assisted learning journal for markdown notes.")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument("--log-level", default="WARNING", choices=["DEBUG", "INFO", "WARNING", "ERROR"])
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("models", help="List the AI models available with the current settings")

    entries = sub.add_parser("entries", help="List the prompts recorded in a note")
    entries.add_argument("note", type=Path)

    status = sub.add_parser("status", help="Show the lifecycle state of a note")
    status.add_argument("note", type=Path)

    add = sub.add_parser("add", help="Send a prompt and append the exchange to a note")
    add.add_argument("note", type=Path)
    add.add_argument("-p", "--prompt", help="Prompt text (default: read from stdin)")
    add.add_argument("--prompt-file", type=Path, help="Read the prompt from a file")
    add.add_argument("-c", "--context", help="Comma-separated entry ids to replay as context, e.g. 1,3")
    add.add_argument("-m", "--model", help="Model id from 'ai-journal models' (default: first available)")
    add.add_argument("--estimate", action="store_true", help="Only print the token estimate")
    add.add_argument("--student-name", help="Initializes a new journal")
    add.add_argument("--student-id", default="")
    add.add_argument("--course", help=f"Course id, one of: {', '.join(COURSES)}")
    add.add_argument("--term", default="Fall", choices=list(TERMS))
    add.add_argument("--year", default=str(datetime.now().year))

    end = sub.add_parser("end-week", help="Record the weekly reflection, compute analytics and lock the note")
    end.add_argument("note", type=Path)
    end.add_argument("-r", "--reflection", help="Reflection text (default: read from stdin)")
    end.add_argument("--reflection-file", type=Path)

    config = sub.add_parser("config", help="Show or change settings")
    config_sub = config.add_subparsers(dest="config_command", required=True)
    config_sub.add_parser("show")
    config_set = config_sub.add_parser("set")
    config_set.add_argument("key", choices=list(SETTING_KEYS))
    config_set.add_argument("value")
    return parser


COMMANDS = {
    "models": _cmd_models,
    "entries": _cmd_entries,
    "status": _cmd_status,
    "add": _cmd_add,
    "end-week": _cmd_end_week,
    "config": _cmd_config,
}


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    ensure_directories()
    logger.debug("Running '%s' with settings from %s", args.command, settings_path())
    app = JournalApp(SettingsStore(settings_path()))
    try:
        return COMMANDS[args.command](app, args)
    except JournalError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1
    except OSError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1
