"""End-of-week learning analytics.

One chat-completion request over the student's own prompts, always in the
OpenAI wire shape, answered as a JSON object with three string fields.
"""

from __future__ import annotations

import json
import logging
from typing import Any

from .errors import AnalyticsResponseError, ConfigurationError, ProtocolError, TransportError
from .models import Configuration, LearningAnalytics
from .providers import OPENAI_BASE_URL, auth_headers, chat_completions_url, extract_openai_text
from .transport import Transport, decode_json, post_json

logger = logging.getLogger(__name__)

OFFICIAL_ANALYTICS_MODEL = "gpt-4o"
COMPATIBLE_ANALYTICS_MODEL = "openai/gpt-4o"

FIELD_FAILED = "Analysis failed"
NOT_AVAILABLE = "N/A"

NO_DATA = LearningAnalytics(
    main_topics="No prompts to analyze",
    learning_theory=NOT_AVAILABLE,
    id_model=NOT_AVAILABLE,
)
UNAVAILABLE = LearningAnalytics(
    main_topics=NOT_AVAILABLE,
    learning_theory=NOT_AVAILABLE,
    id_model=NOT_AVAILABLE,
)

SYSTEM_PROMPT = """You are an expert in instructional design and learning sciences. Analyze the following list of user prompts from a student's journal.
Based ONLY on the user's prompts, provide a brief analysis. Do NOT analyze the AI's hypothetical responses.
Focus on the student's line of inquiry. Respond ONLY with a valid JSON object with three keys: "mainTopics", "learningTheory", "idModel".
- "mainTopics": A string of 3-5 comma-separated keywords summarizing the user's topics.
- "learningTheory": A string identifying the most relevant learning theory (e.g., "Constructivism", "Cognitivism", "Behaviorism"). If none apply, state "N/A".
- "idModel": A string identifying the most relevant instructional design model (e.g., "ADDIE", "Gagne's Nine Events", "Bloom's Taxonomy"), including a model for ADDIE(M), which is ADDIE plus Management. If none apply, state "N/A"."""


def build_user_message(prompts: list[str]) -> str:
    return "User Prompts:\n" + "\n".join(f"{i}. {prompt}" for i, prompt in enumerate(prompts, start=1))


class AnalyticsEngine:
    label = "Analytics"

    def __init__(self, config: Configuration, transport: Transport):
        self._config = config
        self._transport = transport

    def _endpoint(self) -> tuple[str, str, str]:
        """(url, api key, model); the official endpoint wins when both keys are set."""
        official = self._config.official_openai_api_key.strip()
        if official:
            return chat_completions_url(OPENAI_BASE_URL), official, OFFICIAL_ANALYTICS_MODEL
        return (
            chat_completions_url(self._config.compatible_base_url),
            self._config.compatible_api_key.strip(),
            COMPATIBLE_ANALYTICS_MODEL,
        )

    def analyze(self, prompts: list[str]) -> LearningAnalytics:
        if not self._config.has_analytics_key:
            raise ConfigurationError("Analytics requires an Official OpenAI or OpenAI-Compatible API key.")
        if not prompts:
            return NO_DATA

        url, api_key, model = self._endpoint()
        payload = {
            "model": model,
            "messages": [
                {"role": "system", "content": SYSTEM_PROMPT},
                {"role": "user", "content": build_user_message(prompts)},
            ],
            "response_format": {"type": "json_object"},
        }
        logger.info("Requesting learning analytics for %d prompts with %s", len(prompts), model)
        try:
            response = post_json(self._transport, url, payload, auth_headers(api_key), self.label)
        except TransportError as exc:
            if exc.status is None:
                raise
            logger.error("Analytics API failed: %s %s", exc.status, exc.reason)
            raise AnalyticsResponseError(body=exc.body, status=exc.status) from exc

        try:
            data = decode_json(response, self.label)
            content = extract_openai_text(data, self.label)
            result = json.loads(content)
        except (ProtocolError, json.JSONDecodeError) as exc:
            logger.error("Failed to parse analytics JSON: %s", response.text)
            raise AnalyticsResponseError(body=response.text) from exc
        if not isinstance(result, dict):
            logger.error("Analytics content is not a JSON object: %s", content)
            raise AnalyticsResponseError(body=response.text)

        return LearningAnalytics(
            main_topics=_field(result, "mainTopics"),
            learning_theory=_field(result, "learningTheory"),
            id_model=_field(result, "idModel"),
        )


def _field(result: dict[str, Any], key: str) -> str:
    value = result.get(key)
    if value is None or value == "":
        return FIELD_FAILED
    if isinstance(value, list):
        return ", ".join(str(item) for item in value)
    return str(value)
