from __future__ import annotations

import json
import math
from typing import Any

# Rough heuristic used only when a provider omits usage data.
CHARS_PER_TOKEN = 4


def estimate_tokens(text: str) -> int:
    """Estimate token count from text length (~4 characters per token).

    >>> estimate_tokens("Hello, world!")
    4
    """
    if not text:
        return 0
    return math.ceil(len(text) / CHARS_PER_TOKEN)


def compact_json(value: Any) -> str:
    """Serialize ``value`` the way request bodies are estimated: no spaces, unicode kept."""
    return json.dumps(value, separators=(",", ":"), ensure_ascii=False)
