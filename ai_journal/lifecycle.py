"""Journal lifecycle: uninitialized -> active -> locked.

The state is derived once per action from a snapshot of the note's
frontmatter. ``journal-status: locked`` is terminal and never cleared.
"""

from __future__ import annotations

import enum
import logging
from collections.abc import Callable, Mapping
from datetime import datetime, timedelta
from typing import Any

from .analytics import UNAVAILABLE, AnalyticsEngine
from .errors import JournalError, NoteLockedError, StateError, ValidationError
from .journal_format import (
    count_existing_prompts,
    format_metadata,
    metadata_model,
    metadata_total_tokens,
    parse_document,
    serialize,
    serialize_reflection,
)
from .models import ChatResult, CourseInfo, EndWeekResult, JournalEntry
from .note import JournalNote

logger = logging.getLogger(__name__)

STATUS_KEY = "journal-status"
LOCKED = "locked"


class JournalState(str, enum.Enum):
    UNINITIALIZED = "uninitialized"
    ACTIVE = "active"
    LOCKED = "locked"


def derive_state(frontmatter: Mapping[str, Any]) -> JournalState:
    if frontmatter.get(STATUS_KEY) == LOCKED:
        return JournalState.LOCKED
    if frontmatter.get("course-id"):
        return JournalState.ACTIVE
    return JournalState.UNINITIALIZED


def format_timestamp(moment: datetime) -> str:
    return moment.astimezone().strftime("%Y-%m-%d %H:%M:%S")


def format_elapsed(delta: timedelta) -> str:
    total = max(0, int(delta.total_seconds()))
    hours, rest = divmod(total, 3600)
    minutes, seconds = divmod(rest, 60)
    return f"{hours:02d}:{minutes:02d}:{seconds:02d}"


def _now() -> datetime:
    return datetime.now().astimezone()


class JournalLifecycle:
    """Gate and perform the state-changing actions on one note."""

    def __init__(self, note: JournalNote, clock: Callable[[], datetime] = _now):
        self._note = note
        self._clock = clock
        self.frontmatter = note.read_frontmatter()
        self.state = derive_state(self.frontmatter)

    @property
    def is_locked(self) -> bool:
        return self.state is JournalState.LOCKED

    def require_can_add(self, course_info: CourseInfo | None = None) -> None:
        """Raise unless an exchange may be added; checked before any network call."""
        if self.is_locked:
            raise NoteLockedError()
        if self.state is JournalState.UNINITIALIZED and course_info is None:
            raise ValidationError("Course information is required to initialize this journal.")

    def append_exchange(self, prompt: str, result: ChatResult, course_info: CourseInfo | None = None) -> JournalEntry:
        """Record a successful exchange, initializing the note first if needed."""
        self.require_can_add(course_info)
        if self.state is JournalState.UNINITIALIZED and course_info is not None:
            fields = course_info.as_frontmatter()
            self._note.mutate_frontmatter(lambda fm: fm.update(fields))
            self.frontmatter = {**self.frontmatter, **fields}
            self.state = JournalState.ACTIVE
            logger.info("Journal initialized for %s (%s)", course_info.course_id, course_info.semester)

        index = count_existing_prompts(self._note.get_text()) + 1
        self._note.replace_selection(serialize(index, prompt, result.response, result.metadata))
        return JournalEntry(
            id=index,
            prompt=prompt.strip(),
            response=result.response.strip(),
            metadata_text=format_metadata(result.metadata),
        )

    def require_can_end(self) -> None:
        if self.is_locked:
            raise NoteLockedError("This journal is already locked.")
        if self.state is JournalState.UNINITIALIZED:
            raise StateError("Please add a chat entry first to initialize the note.", self.state)

    def end_week(self, reflection: str, analytics: AnalyticsEngine) -> EndWeekResult:
        """Compute the week's analytics, append the reflection and lock the note.

        A failed analytics call is logged and reported in the result; the
        analytics fields fall back to "N/A" and the note is locked anyway.
        """
        self.require_can_end()
        if not reflection.strip():
            raise ValidationError("Reflection cannot be empty.")

        content = self._note.get_text()
        parsed = parse_document(content)
        entries = parsed.entries
        models_used = list(dict.fromkeys(
            name for name in (metadata_model(entry.metadata_text) for entry in entries) if name
        ))
        total_tokens = sum(metadata_total_tokens(entry.metadata_text) for entry in entries)

        start_time = self._note.get_creation_timestamp()
        end_time = self._clock()
        time_to_complete = format_elapsed(end_time - start_time)

        analytics_error: str | None = None
        try:
            result = analytics.analyze([entry.prompt for entry in entries])
        except JournalError as exc:
            logger.warning("Could not get AI analytics: %s", exc)
            analytics_error = str(exc)
            result = UNAVAILABLE

        end_stamp = format_timestamp(end_time)
        fields: dict[str, Any] = {
            STATUS_KEY: LOCKED,
            "start-time": format_timestamp(start_time),
            "end-time": end_stamp,
            "time-to-complete": time_to_complete,
            "prompt-count": len(entries),
            "total-tokens-used": total_tokens,
            "models-used": models_used,
            "main-topics": result.main_topics,
            "inferred-learning-theory": result.learning_theory,
            "inferred-id-model": result.id_model,
        }
        text = content + serialize_reflection(reflection, end_stamp)
        write_both = getattr(self._note, "set_text_and_frontmatter", None)
        if callable(write_both):
            write_both(text, lambda fm: fm.update(fields))
        else:
            self._note.set_text(text)
            self._note.mutate_frontmatter(lambda fm: fm.update(fields))
        self.frontmatter = {**self.frontmatter, **fields}
        self.state = JournalState.LOCKED

        make_read_only = getattr(self._note, "make_read_only", None)
        if callable(make_read_only):
            make_read_only()
        logger.info("Journal locked: %d prompts, %d tokens", len(entries), total_tokens)

        return EndWeekResult(
            prompt_count=len(entries),
            total_tokens=total_tokens,
            models_used=models_used,
            time_to_complete=time_to_complete,
            analytics=result,
            analytics_error=analytics_error,
            warnings=parsed.warnings,
        )
