"""Markdown notes on disk: body text plus a YAML frontmatter block."""

from __future__ import annotations

import io
import os
import re
import stat
import tempfile
from collections.abc import Callable, MutableMapping
from datetime import date, datetime
from pathlib import Path
from typing import Any, Protocol

from ruamel.yaml import YAML
from ruamel.yaml.comments import CommentedMap

_FRONTMATTER_RE = re.compile(r"\A---[ \t]*\r?\n(.*?)^---[ \t]*(?:\r?\n|\Z)", re.DOTALL | re.MULTILINE)

CREATED_KEY = "created"
TIMESTAMP_FORMAT = "%Y-%m-%d %H:%M:%S"


class JournalNote(Protocol):
    """What the journal core needs from the host's document."""

    def get_text(self) -> str: ...

    def set_text(self, text: str) -> None: ...

    def replace_selection(self, text: str) -> None: ...

    def get_creation_timestamp(self) -> datetime: ...

    def read_frontmatter(self) -> dict[str, Any]: ...

    def mutate_frontmatter(self, fn: Callable[[MutableMapping[str, Any]], None]) -> None: ...


def _yaml() -> YAML:
    y = YAML()
    y.default_flow_style = False
    y.width = 4096
    y.preserve_quotes = True
    return y


def split_frontmatter(text: str) -> tuple[str | None, str]:
    """Return (frontmatter source or None, body)."""
    match = _FRONTMATTER_RE.match(text)
    if not match:
        return None, text
    return match.group(1), text[match.end():]


class MarkdownNote:
    """A note file. The body is the document; frontmatter is its metadata.

    Files have no cursor, so ``replace_selection`` inserts at the end of the
    body. Writes replace the file atomically, which gives it a new inode, so
    the first write records the file's creation time under ``created``.
    """

    def __init__(self, path: Path):
        self.path = Path(path)

    def _read(self) -> tuple[CommentedMap | None, str]:
        if not self.path.exists():
            return None, ""
        raw = self.path.read_text(encoding="utf-8")
        source, body = split_frontmatter(raw)
        if source is None:
            return None, body
        data = _yaml().load(source) if source.strip() else None
        if data is not None and not isinstance(data, CommentedMap):
            raise ValueError(f"Frontmatter of {self.path} is not a mapping.")
        return (data if data is not None else CommentedMap()), body

    def _write(self, frontmatter: CommentedMap | None, body: str) -> None:
        if frontmatter is None:
            frontmatter = CommentedMap()
        if CREATED_KEY not in frontmatter:
            frontmatter[CREATED_KEY] = self._file_created().strftime(TIMESTAMP_FORMAT)

        buffer = io.StringIO()
        _yaml().dump(frontmatter, buffer)
        content = f"---\n{buffer.getvalue()}---\n{body}"

        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(prefix=f".{self.path.name}.", dir=self.path.parent)
        try:
            with os.fdopen(fd, "w", encoding="utf-8", newline="") as handle:
                handle.write(content)
            os.replace(tmp_name, self.path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise

    def _file_created(self) -> datetime:
        if not self.path.exists():
            return datetime.now().astimezone().replace(microsecond=0)
        st = self.path.stat()
        created = getattr(st, "st_birthtime", None) or st.st_ctime
        return datetime.fromtimestamp(created).astimezone().replace(microsecond=0)

    def get_text(self) -> str:
        return self._read()[1]

    def set_text(self, text: str) -> None:
        frontmatter, _ = self._read()
        self._write(frontmatter, text)

    def replace_selection(self, text: str) -> None:
        frontmatter, body = self._read()
        self._write(frontmatter, body + text)

    def get_creation_timestamp(self) -> datetime:
        frontmatter, _ = self._read()
        recorded = _parse_timestamp(frontmatter.get(CREATED_KEY)) if frontmatter else None
        return recorded or self._file_created()

    def read_frontmatter(self) -> dict[str, Any]:
        frontmatter, _ = self._read()
        return dict(frontmatter) if frontmatter else {}

    def mutate_frontmatter(self, fn: Callable[[MutableMapping[str, Any]], None]) -> None:
        frontmatter, body = self._read()
        if frontmatter is None:
            frontmatter = CommentedMap()
        fn(frontmatter)
        self._write(frontmatter, body)

    def set_text_and_frontmatter(self, text: str, fn: Callable[[MutableMapping[str, Any]], None]) -> None:
        """Replace the body and update the frontmatter in a single write."""
        frontmatter, _ = self._read()
        if frontmatter is None:
            frontmatter = CommentedMap()
        fn(frontmatter)
        self._write(frontmatter, text)

    def make_read_only(self) -> None:
        mode = self.path.stat().st_mode
        os.chmod(self.path, mode & ~(stat.S_IWUSR | stat.S_IWGRP | stat.S_IWOTH))

    @property
    def is_read_only(self) -> bool:
        return not os.access(self.path, os.W_OK)


def _parse_timestamp(value: Any) -> datetime | None:
    if isinstance(value, datetime):
        return value.astimezone()
    if isinstance(value, date):
        return datetime.combine(value, datetime.min.time()).astimezone()
    if isinstance(value, str):
        text = value.strip()
        try:
            return datetime.strptime(text, TIMESTAMP_FORMAT).astimezone()
        except ValueError:
            pass
        try:
            return datetime.fromisoformat(text).astimezone()
        except ValueError:
            return None
    return None
