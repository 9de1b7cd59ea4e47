"""Canonical text format of journal entries.

An entry is stored in the note body as::

    ---
    ### Prompt 2

    > first line of the prompt
    > second line

    ### AI Response

    response text

    *Metadata: Model: OpenAI: gpt-4o, Total Tokens: 210 (Context: 31)*

The parser is line oriented. Each line outside a fenced code block is one of
a header, a response header, a metadata annotation, a separator, a quoted
prompt line, or plain text, and the block grammar is built from those:

    block    := HEADER prompt RESPONSE_HEADER response [METADATA]
    prompt   := (QUOTE | TEXT | BLANK)*
    response := any line up to METADATA, else up to the first SEPARATOR,
                the next HEADER or the end of the text

A response that is closed by its metadata annotation may contain separators
of its own. A response without an annotation stops at the first separator so
the weekly reflection appended when the week ends is never read as part of
the last entry. A metadata annotation, or a header directly after a
separator, is structural even inside a code fence left open by a truncated
response.
"""

from __future__ import annotations

import logging
import re
from collections import Counter
from dataclasses import dataclass, field

from .models import EntryMetadata, JournalEntry

logger = logging.getLogger(__name__)

SEPARATOR = "---"
RESPONSE_HEADER = "### AI Response"
REFLECTION_HEADER = "## Weekly Reflection"

_HEADER_RE = re.compile(r"^### Prompt (\d+)\s*$")
_RESPONSE_HEADER_RE = re.compile(r"^### AI Response\s*$")
_METADATA_LINE_RE = re.compile(r"^\s*\*Metadata:.*\*\s*$")
_SEPARATOR_RE = re.compile(r"^---\s*$")
_FENCE_RE = re.compile(r"^\s*(```|~~~)")

_MODEL_RE = re.compile(r"Model: (.*?)(?:,|\*?\s*$)")
_TOTAL_TOKENS_RE = re.compile(r"Total Tokens: (\d+)")
_CONTEXT_TOKENS_RE = re.compile(r"Context: (\d+)")


@dataclass(frozen=True)
class ParsedDocument:
    entries: list[JournalEntry]
    header_count: int
    warnings: list[str] = field(default_factory=list)


def serialize(index: int, prompt: str, response: str, metadata: EntryMetadata) -> str:
    """Render one exchange as a canonical block, preceded by a separator."""
    quoted = "> " + prompt.strip().replace("\n", "\n> ")
    return (
        f"\n{SEPARATOR}\n"
        f"### Prompt {index}\n\n"
        f"{quoted}\n\n"
        f"{RESPONSE_HEADER}\n\n"
        f"{response.strip()}\n\n"
        f"{format_metadata(metadata)}\n"
    )


def format_metadata(metadata: EntryMetadata) -> str:
    return (
        f"*Metadata: Model: {metadata.model}, "
        f"Total Tokens: {metadata.total_tokens} (Context: {metadata.context_tokens})*"
    )


def serialize_reflection(reflection: str, locked_at: str) -> str:
    return (
        f"\n{SEPARATOR}\n"
        f"{REFLECTION_HEADER}\n\n"
        f"{reflection.strip()}\n\n"
        f"{SEPARATOR}\n"
        f"*This journal entry was locked on {locked_at}.*\n"
    )


def parse(text: str) -> list[JournalEntry]:
    return parse_document(text).entries


def count_existing_prompts(text: str) -> int:
    """Number of entry headers in ``text``; the next entry gets this plus one."""
    return parse_document(text).header_count


def parse_document(text: str) -> ParsedDocument:
    lines = text.splitlines()
    entries: list[JournalEntry] = []
    warnings: list[str] = []
    header_count = 0
    in_fence = False
    i = 0
    n = len(lines)

    while i < n:
        if _FENCE_RE.match(lines[i]):
            in_fence = not in_fence
        header = _HEADER_RE.match(lines[i])
        if header and in_fence and not _opens_block(lines, i):
            header = None
        if not header:
            i += 1
            continue
        in_fence = False
        header_count += 1
        entry_id = int(header.group(1))
        i += 1

        prompt_lines: list[str] = []
        while i < n and not _HEADER_RE.match(lines[i]) and not _RESPONSE_HEADER_RE.match(lines[i]):
            prompt_lines.append(lines[i])
            i += 1
        if i >= n or _HEADER_RE.match(lines[i]):
            warnings.append(f"Prompt {entry_id} has no AI response section and was skipped.")
            continue
        i += 1

        response_lines, metadata_text, i = _read_response(lines, i)
        entries.append(
            JournalEntry(
                id=entry_id,
                prompt=_unquote(prompt_lines),
                response="\n".join(response_lines).strip(),
                metadata_text=metadata_text,
            )
        )

    warnings.extend(_id_warnings(entries))
    for warning in warnings:
        logger.warning("Journal parse: %s", warning)
    return ParsedDocument(entries=entries, header_count=header_count, warnings=warnings)


def _read_response(lines: list[str], start: int) -> tuple[list[str], str, int]:
    """Return the response lines, the metadata annotation and the index after the block.

    The metadata annotation and a separator followed by a header end the
    response even inside an unclosed code fence.
    """
    in_fence = False
    first_separator: int | None = None
    i = start
    while i < len(lines):
        line = lines[i]
        if _METADATA_LINE_RE.match(line):
            return lines[start:i], line.strip(), i + 1
        if _HEADER_RE.match(line):
            if not in_fence:
                break
            if _opens_block(lines, i):
                if first_separator is None:
                    first_separator = i - 1
                break
        if _FENCE_RE.match(line):
            in_fence = not in_fence
        elif not in_fence and first_separator is None and _SEPARATOR_RE.match(line):
            first_separator = i
        i += 1

    end = first_separator if first_separator is not None else i
    return lines[start:end], "", end


def _opens_block(lines: list[str], index: int) -> bool:
    """True when the header at ``index`` directly follows a separator."""
    return index > 0 and bool(_SEPARATOR_RE.match(lines[index - 1]))


def _unquote(lines: list[str]) -> str:
    stripped: list[str] = []
    for line in lines:
        if line.startswith("> "):
            stripped.append(line[2:])
        elif line.startswith(">"):
            stripped.append(line[1:])
        else:
            stripped.append(line)
    return "\n".join(stripped).strip()


def _id_warnings(entries: list[JournalEntry]) -> list[str]:
    ids = [entry.id for entry in entries]
    warnings = [
        f"Prompt id {entry_id} appears {count} times; ids are kept as written."
        for entry_id, count in sorted(Counter(ids).items())
        if count > 1
    ]
    if ids != list(range(1, len(ids) + 1)):
        warnings.append(f"Prompt ids are not sequential: {ids}.")
    return warnings


def metadata_model(metadata_text: str) -> str | None:
    match = _MODEL_RE.search(metadata_text)
    if not match:
        return None
    return match.group(1).strip() or None


def metadata_total_tokens(metadata_text: str) -> int:
    match = _TOTAL_TOKENS_RE.search(metadata_text)
    return int(match.group(1)) if match else 0


def parse_metadata(metadata_text: str) -> EntryMetadata | None:
    model = metadata_model(metadata_text)
    if model is None:
        return None
    context = _CONTEXT_TOKENS_RE.search(metadata_text)
    return EntryMetadata(
        model=model,
        total_tokens=metadata_total_tokens(metadata_text),
        context_tokens=int(context.group(1)) if context else 0,
    )
