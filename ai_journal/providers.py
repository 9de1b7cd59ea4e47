"""Chat-completion providers.

Each provider family implements ChatProvider and speaks its own wire format;
the orchestrator picks one by the ``family`` tag of the selected model. Adding
a provider means registering one more implementation in ``build_providers``.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import Any

from .errors import ConfigurationError, ProtocolError
from .models import Configuration, ProviderReply, Turn
from .tokens import compact_json, estimate_tokens
from .transport import Transport, decode_json, post_json

logger = logging.getLogger(__name__)

OPENAI_BASE_URL = "https://api.openai.com/v1"
GEMINI_BASE_URL = "https://generativelanguage.googleapis.com/v1"


class ChatProvider(ABC):
    label = "Provider"

    def __init__(self, transport: Transport):
        self._transport = transport

    @abstractmethod
    def complete(self, conversation: list[Turn], model_api_id: str, config: Configuration) -> ProviderReply:
        """Send one request for ``conversation`` and return the generated text."""

    def _post(self, url: str, payload: dict[str, Any], headers: dict[str, str]) -> dict[str, Any]:
        logger.info("%s request: model=%s", self.label, payload.get("model", "-"))
        response = post_json(self._transport, url, payload, headers, self.label)
        return decode_json(response, self.label)


class OpenAICompatibleProvider(ChatProvider):
    """Official OpenAI or a third-party OpenAI-compatible service."""

    def __init__(self, transport: Transport, compatible: bool = False):
        super().__init__(transport)
        self._compatible = compatible
        self.label = "OpenAI-Compatible" if compatible else "OpenAI"

    def complete(self, conversation: list[Turn], model_api_id: str, config: Configuration) -> ProviderReply:
        if self._compatible:
            api_key = config.compatible_api_key.strip()
            url = chat_completions_url(config.compatible_base_url)
        else:
            api_key = config.official_openai_api_key.strip()
            url = chat_completions_url(OPENAI_BASE_URL)
        if not api_key:
            raise ConfigurationError(f"{self.label} API key is not configured.")

        messages = openai_messages(conversation)
        data = self._post(url, {"model": model_api_id, "messages": messages}, auth_headers(api_key))
        content = extract_openai_text(data, self.label)
        usage = data.get("usage") or {}
        tokens = _positive_int(usage.get("total_tokens")) or estimate_tokens(compact_json(messages) + content)
        return ProviderReply(text=content, token_count=tokens)


class GeminiProvider(ChatProvider):
    label = "Gemini"

    def complete(self, conversation: list[Turn], model_api_id: str, config: Configuration) -> ProviderReply:
        api_key = config.gemini_api_key.strip()
        if not api_key:
            raise ConfigurationError("Gemini API key is not configured.")

        url = f"{GEMINI_BASE_URL}/models/{model_api_id}:generateContent?key={api_key}"
        contents = gemini_contents(conversation)
        data = self._post(url, {"contents": contents}, headers={})
        content = extract_gemini_text(data)
        usage = data.get("usageMetadata") or {}
        tokens = _positive_int(usage.get("totalTokenCount")) or estimate_tokens(compact_json(contents) + content)
        return ProviderReply(text=content, token_count=tokens)


class LocalLlmProvider(ChatProvider):
    """Local server, either Ollama's native API or an OpenAI-compatible one."""

    label = "Local LLM"

    def complete(self, conversation: list[Turn], model_api_id: str, config: Configuration) -> ProviderReply:
        base = config.local_llm_base_url.strip().rstrip("/")
        if not base:
            raise ConfigurationError("Local LLM base URL is not configured.")
        native = config.local_llm_api_format == "ollama-native"
        url = f"{base}/api/chat" if native else f"{base}/v1/chat/completions"

        messages = openai_messages(conversation)
        data = self._post(url, {"model": model_api_id, "messages": messages, "stream": False}, headers={})
        if native:
            message = data.get("message")
            content = message.get("content") if isinstance(message, dict) else None
            if not isinstance(content, str):
                raise ProtocolError("Local LLM response missing message content.")
            prompt_count = _count(data.get("prompt_eval_count"))
            eval_count = _count(data.get("eval_count"))
            reported = None
            if prompt_count is not None and eval_count is not None:
                reported = _positive_int(prompt_count + eval_count)
        else:
            content = extract_openai_text(data, self.label)
            reported = _positive_int((data.get("usage") or {}).get("total_tokens"))
        tokens = reported or estimate_tokens(compact_json(messages) + content)
        return ProviderReply(text=content, token_count=tokens)


def build_providers(transport: Transport) -> dict[str, ChatProvider]:
    return {
        "openai": OpenAICompatibleProvider(transport),
        "compatible": OpenAICompatibleProvider(transport, compatible=True),
        "gemini": GeminiProvider(transport),
        "local": LocalLlmProvider(transport),
    }


def chat_completions_url(base_url: str) -> str:
    return base_url.strip().rstrip("/") + "/chat/completions"


def auth_headers(api_key: str) -> dict[str, str]:
    if not api_key.strip():
        return {}
    return {"Authorization": f"Bearer {api_key.strip()}"}


def openai_messages(conversation: list[Turn]) -> list[dict[str, str]]:
    return [
        {"role": "assistant" if turn.role == "assistant" else "user", "content": turn.content}
        for turn in conversation
    ]


def gemini_contents(conversation: list[Turn]) -> list[dict[str, Any]]:
    return [
        {"role": "model" if turn.role == "assistant" else "user", "parts": [{"text": turn.content}]}
        for turn in conversation
    ]


def extract_openai_text(data: dict[str, Any], label: str = "OpenAI") -> str:
    choices = data.get("choices")
    if not isinstance(choices, list) or not choices or not isinstance(choices[0], dict):
        raise ProtocolError(f"{label} response missing choices.")
    message = choices[0].get("message")
    if not isinstance(message, dict):
        raise ProtocolError(f"{label} response missing message.")
    content = message.get("content")
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        chunks = [entry["text"] for entry in content if isinstance(entry, dict) and isinstance(entry.get("text"), str)]
        joined = "\n".join(chunks).strip()
        if joined:
            return joined
    raise ProtocolError(f"{label} response did not include text content.")


def extract_gemini_text(data: dict[str, Any]) -> str:
    candidates = data.get("candidates")
    if not isinstance(candidates, list) or not candidates:
        message = "No response candidate returned."
        feedback = data.get("promptFeedback")
        block_reason = feedback.get("blockReason") if isinstance(feedback, dict) else None
        if block_reason:
            message += f" Reason: {block_reason}."
        raise ProtocolError(f"Gemini API Error: {message}")
    content = candidates[0].get("content", {}) if isinstance(candidates[0], dict) else {}
    parts = content.get("parts", []) if isinstance(content, dict) else []
    for part in parts:
        text = part.get("text") if isinstance(part, dict) else None
        if isinstance(text, str):
            return text
    raise ProtocolError("Gemini response did not include text output.")


def _positive_int(value: Any) -> int | None:
    if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
        return None
    return value


def _count(value: Any) -> int | None:
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        return None
    return value
