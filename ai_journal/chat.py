from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping

from .errors import ConfigurationError, ValidationError
from .models import ChatResult, Configuration, JournalEntry, ModelDefinition, Turn
from .providers import ChatProvider
from .tokens import compact_json, estimate_tokens

logger = logging.getLogger(__name__)

SEPARATOR_LABEL = "─" * 10

OFFICIAL_OPENAI_MODELS: tuple[tuple[str, str, str], ...] = (
    ("official-gpt-5-main-mini", "gpt-5-main-mini", "OpenAI: gpt-5-main-mini"),
    ("official-gpt-4o", "gpt-4o", "OpenAI: gpt-4o"),
    ("official-o4-mini-high", "o4-mini-high", "OpenAI: o4-mini-high"),
)
GEMINI_MODELS: tuple[tuple[str, str, str], ...] = (
    ("gem-2.5-pro", "gemini-2.5-pro", "Gemini: 2.5 Pro"),
    ("gem-2.0-flash", "gemini-2.0-flash", "Gemini: 2.0 Flash"),
)
COMPATIBLE_MODELS: tuple[tuple[str, str, str], ...] = (
    ("comp-gpt-4o", "openai/gpt-4o", "Compatible: gpt-4o"),
    ("comp-o4-mini-high", "openai/o4-mini-high", "Compatible: o4-mini-high"),
)
LOCAL_MODEL_ID = "local-llm"


def list_available_models(config: Configuration) -> list[ModelDefinition]:
    """Models selectable with the current configuration, in display order.

    Local mode hides every remote family. Otherwise families appear as
    official OpenAI, Gemini, compatible, with a separator in front of a family
    only when an earlier family produced entries.
    """
    if config.use_local_llm:
        name = config.local_llm_model_name.strip()
        if not name:
            return []
        return [ModelDefinition(LOCAL_MODEL_ID, name, f"Local LLM: {name}", "local")]

    families = (
        ("openai", config.official_openai_api_key, OFFICIAL_OPENAI_MODELS),
        ("gemini", config.gemini_api_key, GEMINI_MODELS),
        ("compatible", config.compatible_api_key, COMPATIBLE_MODELS),
    )
    models: list[ModelDefinition] = []
    separators = 0
    for family, api_key, catalog in families:
        if not api_key.strip():
            continue
        if models:
            separators += 1
            models.append(ModelDefinition(f"sep{separators}", "", SEPARATOR_LABEL, family, "separator"))
        models.extend(ModelDefinition(model_id, api_id, name, family) for model_id, api_id, name in catalog)
    return models


def default_model(models: Iterable[ModelDefinition]) -> ModelDefinition | None:
    return next((model for model in models if not model.is_separator), None)


def build_conversation(
    prompt: str,
    selected_entry_ids: Iterable[int],
    entries: Iterable[JournalEntry],
) -> list[Turn]:
    """Selected entries as user/assistant pairs by ascending id, then the new prompt."""
    selected = set(selected_entry_ids)
    chosen = sorted((entry for entry in entries if entry.id in selected), key=lambda entry: entry.id)
    turns: list[Turn] = []
    for entry in chosen:
        turns.append(Turn("user", entry.prompt))
        turns.append(Turn("assistant", entry.response))
    turns.append(Turn("user", prompt))
    return turns


def context_tokens(conversation: list[Turn]) -> int:
    """Estimate for every turn except the final prompt, with replies under the "model" role."""
    history = [
        {"role": "model" if turn.role == "assistant" else "user", "content": turn.content}
        for turn in conversation[:-1]
    ]
    return estimate_tokens(compact_json(history))


def estimate_request(
    prompt: str,
    selected_entry_ids: Iterable[int],
    entries: Iterable[JournalEntry],
) -> tuple[int, int, int]:
    """Preview shown while composing: (total, context, new prompt) token estimates."""
    selected = set(selected_entry_ids)
    context = sum(
        estimate_tokens(entry.prompt) + estimate_tokens(entry.response)
        for entry in entries
        if entry.id in selected
    )
    new = estimate_tokens(prompt)
    return context + new, context, new


class ChatOrchestrator:
    def __init__(self, config: Configuration, providers: Mapping[str, ChatProvider]):
        self._config = config
        self._providers = providers
        self.models = list_available_models(config)

    @property
    def config(self) -> Configuration:
        return self._config

    @property
    def default_model(self) -> ModelDefinition | None:
        return default_model(self.models)

    def resolve_model(self, model_id: str | None) -> ModelDefinition:
        if not self.models:
            raise ConfigurationError("No AI models are configured. Please check your settings.")
        if not model_id:
            model = self.default_model
        else:
            model = next((m for m in self.models if m.id == model_id), None)
        if model is None:
            available = ", ".join(m.id for m in self.models if not m.is_separator)
            raise ValidationError(f"Unknown model: '{model_id}'. Available models: {available}")
        if model.is_separator:
            raise ValidationError("A separator cannot be selected as a model.")
        return model

    def metadata_model_name(self, model: ModelDefinition) -> str:
        if model.family != "local":
            return model.display_name
        suffix = " (Native)" if self._config.local_llm_api_format == "ollama-native" else " (Compatible)"
        return model.display_name + suffix

    def submit(
        self,
        prompt: str,
        selected_entry_ids: Iterable[int],
        model_id: str | None,
        prior_entries: Iterable[JournalEntry],
    ) -> ChatResult:
        if not prompt.strip():
            raise ValidationError("Prompt cannot be empty.")
        model = self.resolve_model(model_id)
        provider = self._providers.get(model.family)
        if provider is None:
            raise ConfigurationError(f"No provider is registered for the '{model.family}' family.")

        conversation = build_conversation(prompt, selected_entry_ids, prior_entries)
        context = context_tokens(conversation)
        logger.info(
            "Dispatching prompt: family=%s model=%s turns=%d context~%d",
            model.family,
            model.api_id,
            len(conversation),
            context,
        )
        try:
            reply = provider.complete(conversation, model.api_id, self._config)
        except Exception:
            logger.warning("Provider call failed: family=%s model=%s", model.family, model.api_id)
            raise

        return ChatResult(
            response=reply.text.strip(),
            tokens_total=reply.token_count,
            tokens_context=context,
            model_name=self.metadata_model_name(model),
        )
