from __future__ import annotations

import json
import unittest

from ai_journal.analytics import FIELD_FAILED, NO_DATA, SYSTEM_PROMPT, AnalyticsEngine
from ai_journal.errors import AnalyticsResponseError, ConfigurationError, TransportError
from ai_journal.models import Configuration, LearningAnalytics
from ai_journal.transport import HttpResponse

from fakes import FakeTransport, json_response, openai_reply

PROMPTS = ["What is ADDIE?", "Give an example"]


def analytics_reply(**fields: str) -> HttpResponse:
    return openai_reply(json.dumps(fields))


class AnalyticsTests(unittest.TestCase):
    def test_requires_openai_style_key(self) -> None:
        transport = FakeTransport()
        engine = AnalyticsEngine(Configuration(gemini_api_key="AIza"), transport)
        with self.assertRaises(ConfigurationError):
            engine.analyze(PROMPTS)
        self.assertEqual(transport.requests, [])

    def test_no_prompts_skips_network(self) -> None:
        transport = FakeTransport()
        result = AnalyticsEngine(Configuration(official_openai_api_key="sk"), transport).analyze([])
        self.assertEqual(result, NO_DATA)
        self.assertEqual(transport.requests, [])

    def test_official_endpoint_preferred(self) -> None:
        transport = FakeTransport(
            analytics_reply(mainTopics="ADDIE, examples", learningTheory="Cognitivism", idModel="ADDIE")
        )
        config = Configuration(official_openai_api_key="sk", compatible_api_key="or")
        result = AnalyticsEngine(config, transport).analyze(PROMPTS)

        self.assertEqual(result, LearningAnalytics("ADDIE, examples", "Cognitivism", "ADDIE"))
        sent = transport.requests[0]
        self.assertEqual(sent.url, "https://api.openai.com/v1/chat/completions")
        self.assertEqual(sent.headers["Authorization"], "Bearer sk")
        self.assertEqual(sent.payload["model"], "gpt-4o")
        self.assertEqual(sent.payload["response_format"], {"type": "json_object"})
        self.assertEqual(sent.payload["messages"][0], {"role": "system", "content": SYSTEM_PROMPT})
        self.assertEqual(sent.payload["messages"][1]["content"], "User Prompts:\n1. What is ADDIE?\n2. Give an example")

    def test_compatible_endpoint(self) -> None:
        transport = FakeTransport(analytics_reply(mainTopics="a", learningTheory="b", idModel="c"))
        config = Configuration(compatible_api_key="or", compatible_base_url="https://openrouter.ai/api/v1/")
        AnalyticsEngine(config, transport).analyze(PROMPTS)
        self.assertEqual(transport.requests[0].url, "https://openrouter.ai/api/v1/chat/completions")
        self.assertEqual(transport.requests[0].payload["model"], "openai/gpt-4o")

    def test_missing_fields_become_sentinel(self) -> None:
        transport = FakeTransport(analytics_reply(mainTopics="ADDIE", idModel=""))
        result = AnalyticsEngine(Configuration(official_openai_api_key="sk"), transport).analyze(PROMPTS)
        self.assertEqual(result.main_topics, "ADDIE")
        self.assertEqual(result.learning_theory, FIELD_FAILED)
        self.assertEqual(result.id_model, FIELD_FAILED)

    def test_invalid_responses(self) -> None:
        bad_replies = [
            openai_reply("this is not json"),
            openai_reply('["a", "list"]'),
            json_response({"choices": []}),
            HttpResponse(status=200, reason="OK", text="<html>"),
            json_response({"error": {"message": "bad key"}}, status=401, reason="Unauthorized"),
        ]
        for reply in bad_replies:
            with self.subTest(reply=reply.text[:30]):
                engine = AnalyticsEngine(Configuration(official_openai_api_key="sk"), FakeTransport(reply))
                with self.assertLogs("ai_journal.analytics", level="ERROR"):
                    with self.assertRaises(AnalyticsResponseError):
                        engine.analyze(PROMPTS)

    def test_error_status_is_recorded(self) -> None:
        reply = HttpResponse(status=500, reason="Internal Server Error", text="oops")
        engine = AnalyticsEngine(Configuration(official_openai_api_key="sk"), FakeTransport(reply))
        with self.assertLogs("ai_journal.analytics", level="ERROR"):
            with self.assertRaises(AnalyticsResponseError) as ctx:
                engine.analyze(PROMPTS)
        self.assertEqual(ctx.exception.status, 500)
        self.assertEqual(ctx.exception.body, "oops")

    def test_network_failure_is_not_an_invalid_response(self) -> None:
        transport = FakeTransport(TransportError("HTTP", reason="Name or service not known"))
        engine = AnalyticsEngine(Configuration(official_openai_api_key="sk"), transport)
        with self.assertRaises(TransportError) as ctx:
            engine.analyze(PROMPTS)
        self.assertNotIsInstance(ctx.exception, AnalyticsResponseError)


if __name__ == "__main__":
    unittest.main()
