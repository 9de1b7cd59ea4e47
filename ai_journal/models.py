from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Literal

Role = Literal["user", "assistant"]
Family = Literal["openai", "gemini", "compatible", "local"]
LocalApiFormat = Literal["openai-compatible", "ollama-native"]

LOCAL_API_FORMATS: tuple[str, ...] = ("openai-compatible", "ollama-native")


@dataclass(frozen=True)
class JournalEntry:
    id: int
    prompt: str
    response: str
    metadata_text: str = ""


@dataclass(frozen=True)
class EntryMetadata:
    model: str
    total_tokens: int
    context_tokens: int


@dataclass(frozen=True)
class Turn:
    role: Role
    content: str


@dataclass(frozen=True)
class ModelDefinition:
    id: str
    api_id: str
    display_name: str
    family: Family
    kind: Literal["model", "separator"] = "model"

    @property
    def is_separator(self) -> bool:
        return self.kind == "separator"


@dataclass(frozen=True)
class Configuration:
    """Snapshot of the user's provider settings.

    Instances are immutable; a settings change produces a new snapshot that
    only later actions see.
    """

    official_openai_api_key: str = ""
    gemini_api_key: str = ""
    compatible_api_key: str = ""
    compatible_base_url: str = "https://openrouter.ai/api/v1"
    use_local_llm: bool = False
    local_llm_base_url: str = "http://localhost:11434"
    local_llm_model_name: str = ""
    local_llm_api_format: LocalApiFormat = "openai-compatible"

    def with_changes(self, **changes: object) -> Configuration:
        return replace(self, **changes)

    @property
    def has_analytics_key(self) -> bool:
        return bool(self.official_openai_api_key.strip() or self.compatible_api_key.strip())


@dataclass(frozen=True)
class ProviderReply:
    text: str
    token_count: int


@dataclass(frozen=True)
class ChatResult:
    response: str
    tokens_total: int
    tokens_context: int
    model_name: str

    @property
    def metadata(self) -> EntryMetadata:
        return EntryMetadata(
            model=self.model_name,
            total_tokens=self.tokens_total,
            context_tokens=self.tokens_context,
        )


@dataclass(frozen=True)
class LearningAnalytics:
    main_topics: str
    learning_theory: str
    id_model: str


@dataclass(frozen=True)
class CourseInfo:
    course_id: str
    course_title: str
    student_name: str
    student_id: str
    semester: str

    def as_frontmatter(self) -> dict[str, str]:
        return {
            "course-id": self.course_id,
            "course-title": self.course_title,
            "student-name": self.student_name,
            "student-id": self.student_id,
            "semester": self.semester,
        }


@dataclass(frozen=True)
class EndWeekResult:
    prompt_count: int
    total_tokens: int
    models_used: list[str]
    time_to_complete: str
    analytics: LearningAnalytics
    analytics_error: str | None = None
    warnings: list[str] = field(default_factory=list)
