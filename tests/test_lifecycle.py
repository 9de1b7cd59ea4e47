from __future__ import annotations

import json
import tempfile
import unittest
from datetime import datetime, timedelta, timezone
from pathlib import Path
from unittest import mock

from ai_journal.analytics import AnalyticsEngine
from ai_journal.courses import make_course_info
from ai_journal.errors import NoteLockedError, StateError, TransportError, ValidationError
from ai_journal.journal_format import parse, serialize
from ai_journal.lifecycle import JournalLifecycle, JournalState, derive_state, format_elapsed
from ai_journal.models import ChatResult, Configuration, EntryMetadata
from ai_journal.note import MarkdownNote

from fakes import FakeTransport, InMemoryNote, openai_reply

COURSE = {"course-id": "OLID 512", "course-title": "Instructional Design Methods", "student-name": "Sam"}
CREATED = datetime(2026, 1, 5, 9, 0, 0, tzinfo=timezone.utc)
ENDED = CREATED + timedelta(days=4, hours=8, minutes=30, seconds=5)


def two_entry_text() -> str:
    return (
        "# Week 1\n"
        + serialize(1, "What is ADDIE?", "It is a model...", EntryMetadata("OpenAI: gpt-4o", 120, 0))
        + serialize(2, "Give an example", "Example: ...", EntryMetadata("Gemini: 2.5 Pro", 210, 9))
        + serialize(3, "And SAM?", "Successive...", EntryMetadata("OpenAI: gpt-4o", 70, 0))
    )


def analytics_engine(*responses) -> tuple[AnalyticsEngine, FakeTransport]:
    transport = FakeTransport(*responses)
    return AnalyticsEngine(Configuration(official_openai_api_key="sk"), transport), transport


class StateTests(unittest.TestCase):
    def test_derive_state(self) -> None:
        self.assertIs(derive_state({}), JournalState.UNINITIALIZED)
        self.assertIs(derive_state(COURSE), JournalState.ACTIVE)
        self.assertIs(derive_state({**COURSE, "journal-status": "locked"}), JournalState.LOCKED)
        self.assertIs(derive_state({"journal-status": "locked"}), JournalState.LOCKED)

    def test_format_elapsed_does_not_wrap_at_a_day(self) -> None:
        self.assertEqual(format_elapsed(timedelta(days=1, hours=2, minutes=3, seconds=4)), "26:03:04")
        self.assertEqual(format_elapsed(timedelta(seconds=-5)), "00:00:00")


class AddExchangeTests(unittest.TestCase):
    def test_first_exchange_initializes_note(self) -> None:
        note = InMemoryNote()
        lifecycle = JournalLifecycle(note)
        course = make_course_info("OLID 505", "Sam Lee", "D123", "Spring", 2026)
        result = ChatResult("The answer", 50, 0, "OpenAI: gpt-4o")

        entry = lifecycle.append_exchange("First question", result, course)

        self.assertEqual(entry.id, 1)
        self.assertEqual(note.frontmatter["course-title"], "Usability & Problem Solving with AI")
        self.assertEqual(note.frontmatter["semester"], "Spring 2026")
        self.assertIs(lifecycle.state, JournalState.ACTIVE)
        self.assertIn("### Prompt 1", note.text)

    def test_uninitialized_note_requires_course_info(self) -> None:
        lifecycle = JournalLifecycle(InMemoryNote())
        with self.assertRaises(ValidationError):
            lifecycle.require_can_add()

    def test_example_exchange_appended_as_prompt_two(self) -> None:
        note = InMemoryNote(
            text=serialize(1, "What is ADDIE?", "It is a model...", EntryMetadata("OpenAI: gpt-4o", 120, 0)),
            frontmatter=dict(COURSE),
        )
        result = ChatResult("Example: ...", 210, 9, "OpenAI: gpt-4o")
        JournalLifecycle(note).append_exchange("Give an example", result)

        self.assertTrue(note.text.endswith(serialize(2, "Give an example", "Example: ...", result.metadata)))
        self.assertIn("Total Tokens: 210 (Context: 9)", note.text)
        self.assertEqual([e.id for e in parse(note.text)], [1, 2])

    def test_uninitialized_append_without_course_leaves_note_untouched(self) -> None:
        note = InMemoryNote(text="# Week 1\n")
        with self.assertRaises(ValidationError):
            JournalLifecycle(note).append_exchange("Hello", ChatResult("Hi", 5, 0, "OpenAI: gpt-4o"))
        self.assertEqual(note.text, "# Week 1\n")
        self.assertEqual(note.frontmatter, {})

    def test_locked_note_rejects_add_without_mutation(self) -> None:
        frontmatter = {**COURSE, "journal-status": "locked"}
        note = InMemoryNote(text=two_entry_text(), frontmatter=frontmatter)
        lifecycle = JournalLifecycle(note)
        with self.assertRaises(NoteLockedError):
            lifecycle.append_exchange("more", ChatResult("x", 1, 0, "m"))
        self.assertEqual(note.frontmatter, frontmatter)
        self.assertEqual(note.text, two_entry_text())


class EndWeekTests(unittest.TestCase):
    def test_end_week_writes_analytics_and_locks(self) -> None:
        note = InMemoryNote(text=two_entry_text(), frontmatter=dict(COURSE), created_at=CREATED)
        engine, transport = analytics_engine(
            openai_reply(json.dumps({"mainTopics": "ADDIE, SAM", "learningTheory": "Cognitivism", "idModel": "ADDIE"}))
        )

        result = JournalLifecycle(note, clock=lambda: ENDED).end_week("I learned to compare models.", engine)

        fm = note.frontmatter
        self.assertEqual(fm["journal-status"], "locked")
        self.assertEqual(fm["prompt-count"], 3)
        self.assertEqual(fm["total-tokens-used"], 400)
        self.assertEqual(fm["models-used"], ["OpenAI: gpt-4o", "Gemini: 2.5 Pro"])
        self.assertEqual(fm["time-to-complete"], "104:30:05")
        self.assertEqual(fm["main-topics"], "ADDIE, SAM")
        self.assertEqual(fm["inferred-learning-theory"], "Cognitivism")
        self.assertEqual(fm["inferred-id-model"], "ADDIE")
        self.assertEqual(fm["course-id"], "OLID 512")
        self.assertIn("## Weekly Reflection\n\nI learned to compare models.", note.text)
        self.assertIn("*This journal entry was locked on", note.text)
        self.assertTrue(note.read_only)
        self.assertIsNone(result.analytics_error)
        self.assertEqual(
            transport.requests[0].payload["messages"][1]["content"],
            "User Prompts:\n1. What is ADDIE?\n2. Give an example\n3. And SAM?",
        )
        self.assertEqual(len(parse(note.text)), 3)

    def test_analytics_failure_still_locks(self) -> None:
        note = InMemoryNote(text=two_entry_text(), frontmatter=dict(COURSE), created_at=CREATED)
        engine, _ = analytics_engine(TransportError("HTTP", reason="Connection refused"))

        with self.assertLogs("ai_journal.lifecycle", level="WARNING"):
            result = JournalLifecycle(note, clock=lambda: ENDED).end_week("Reflection", engine)

        self.assertEqual(note.frontmatter["journal-status"], "locked")
        self.assertEqual(note.frontmatter["main-topics"], "N/A")
        self.assertEqual(note.frontmatter["inferred-learning-theory"], "N/A")
        self.assertEqual(note.frontmatter["inferred-id-model"], "N/A")
        self.assertIn("Connection refused", result.analytics_error)

    def test_missing_analytics_key_still_locks(self) -> None:
        note = InMemoryNote(text=two_entry_text(), frontmatter=dict(COURSE), created_at=CREATED)
        engine = AnalyticsEngine(Configuration(gemini_api_key="AIza"), FakeTransport())
        with self.assertLogs("ai_journal.lifecycle", level="WARNING"):
            result = JournalLifecycle(note, clock=lambda: ENDED).end_week("Reflection", engine)
        self.assertEqual(note.frontmatter["journal-status"], "locked")
        self.assertIn("API key", result.analytics_error)

    def test_failed_write_leaves_markdown_note_active(self) -> None:
        with tempfile.TemporaryDirectory() as tmp_dir:
            path = Path(tmp_dir) / "week1.md"
            original = "---\ncourse-id: OLID 512\ncreated: '2026-01-05 09:00:00'\n---\n" + two_entry_text()
            path.write_text(original, encoding="utf-8")
            engine, _ = analytics_engine(
                openai_reply(json.dumps({"mainTopics": "ADDIE", "learningTheory": "Cognitivism", "idModel": "ADDIE"}))
            )

            with mock.patch("ai_journal.note.os.replace", side_effect=OSError("disk full")):
                with self.assertRaises(OSError):
                    JournalLifecycle(MarkdownNote(path), clock=lambda: ENDED).end_week("Reflection", engine)

            self.assertEqual(path.read_text(encoding="utf-8"), original)
            self.assertEqual([p.name for p in Path(tmp_dir).iterdir()], ["week1.md"])
            self.assertIs(JournalLifecycle(MarkdownNote(path)).state, JournalState.ACTIVE)

    def test_markdown_note_end_week_measures_from_recorded_creation(self) -> None:
        with tempfile.TemporaryDirectory() as tmp_dir:
            path = Path(tmp_dir) / "week1.md"
            path.write_text("---\ncourse-id: OLID 512\ncreated: '2026-01-05 09:00:00'\n---\n" + two_entry_text())
            note = MarkdownNote(path)
            created = datetime(2026, 1, 5, 9, 0, 0).astimezone()
            engine, _ = analytics_engine(
                openai_reply(json.dumps({"mainTopics": "ADDIE", "learningTheory": "Cognitivism", "idModel": "ADDIE"}))
            )

            with mock.patch.object(note, "_write", wraps=note._write) as write:
                result = JournalLifecycle(note, clock=lambda: created + timedelta(hours=30)).end_week("Done", engine)

            self.assertEqual(write.call_count, 1)
            self.assertEqual(result.time_to_complete, "30:00:00")
            frontmatter = note.read_frontmatter()
            self.assertEqual(frontmatter["start-time"], "2026-01-05 09:00:00")
            self.assertEqual(frontmatter["journal-status"], "locked")
            self.assertIn("## Weekly Reflection\n\nDone", note.get_text())
            path.chmod(0o644)

    def test_locked_note_rejects_end_week_without_mutation(self) -> None:
        frontmatter = {**COURSE, "journal-status": "locked", "main-topics": "x"}
        note = InMemoryNote(text=two_entry_text(), frontmatter=frontmatter)
        engine, transport = analytics_engine()
        with self.assertRaises(StateError):
            JournalLifecycle(note).end_week("Reflection", engine)
        self.assertEqual(note.frontmatter, frontmatter)
        self.assertEqual(note.text, two_entry_text())
        self.assertEqual(transport.requests, [])

    def test_uninitialized_note_cannot_end(self) -> None:
        engine, _ = analytics_engine()
        with self.assertRaises(StateError) as ctx:
            JournalLifecycle(InMemoryNote(text=two_entry_text())).end_week("Reflection", engine)
        self.assertEqual(ctx.exception.state, JournalState.UNINITIALIZED)

    def test_blank_reflection_rejected(self) -> None:
        note = InMemoryNote(text=two_entry_text(), frontmatter=dict(COURSE))
        engine, transport = analytics_engine()
        with self.assertRaises(ValidationError):
            JournalLifecycle(note).end_week("  ", engine)
        self.assertNotIn("journal-status", note.frontmatter)
        self.assertEqual(transport.requests, [])


if __name__ == "__main__":
    unittest.main()
