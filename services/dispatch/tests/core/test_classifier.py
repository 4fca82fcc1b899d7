"""Tests for the OpenAI risk classifier adapter (no network)."""

import json
from unittest.mock import MagicMock, patch

import pytest

from services.dispatch.src.dispatch.adapters.openai_classifier import (
    OpenAIRiskClassifier,
    parse_assessment,
)
from services.dispatch.src.dispatch.core.errors import ClassifierUnavailable


class TestParseAssessment:
    def test_parses_reply(self):
        a = parse_assessment(json.dumps(
            {"category": "Pothole", "risk_score": 72, "confidence": 87}
        ))
        assert (a.category, a.risk_score, a.confidence) == ("Pothole", 72, 87)

    def test_rounds_and_clamps(self):
        a = parse_assessment(json.dumps(
            {"category": "pothole", "risk_score": 140.6, "confidence": 66.5}
        ))
        assert a.risk_score == 100
        assert a.confidence == 66

    def test_unknown_category_and_missing_scores(self):
        a = parse_assessment(json.dumps({"category": "UFO"}))
        assert a.category == "Other"
        assert a.risk_score == 0

    def test_non_object_rejected(self):
        with pytest.raises(ValueError):
            parse_assessment("[1, 2]")


def _reply(content: str):
    response = MagicMock()
    response.choices = [MagicMock()]
    response.choices[0].message.content = content
    return response


class TestClassify:
    def test_without_api_key(self):
        with pytest.raises(ClassifierUnavailable):
            OpenAIRiskClassifier(api_key="").classify(b"img")

    def test_successful_call(self):
        client = MagicMock()
        client.chat.completions.create.return_value = _reply(
            '{"category": "Garbage Dump", "risk_score": 35, "confidence": 80}'
        )
        with patch("openai.OpenAI", return_value=client) as factory:
            a = OpenAIRiskClassifier(api_key="sk-test", timeout_s=3).classify(b"img", "image/png")

        assert a.category == "Garbage Dump"
        assert factory.call_args.kwargs["max_retries"] == 0
        assert factory.call_args.kwargs["timeout"] == 3
        sent = client.chat.completions.create.call_args.kwargs
        image_part = sent["messages"][1]["content"][0]
        assert image_part["image_url"]["url"].startswith("data:image/png;base64,")

    def test_malformed_reply(self):
        client = MagicMock()
        client.chat.completions.create.return_value = _reply("not json")
        with patch("openai.OpenAI", return_value=client):
            with pytest.raises(ClassifierUnavailable):
                OpenAIRiskClassifier(api_key="sk-test").classify(b"img")

    def test_timeout(self):
        import httpx
        import openai

        client = MagicMock()
        client.chat.completions.create.side_effect = openai.APITimeoutError(
            request=httpx.Request("POST", "https://api.openai.com/v1/chat/completions")
        )
        with patch("openai.OpenAI", return_value=client):
            with pytest.raises(ClassifierUnavailable) as exc:
                OpenAIRiskClassifier(api_key="sk-test").classify(b"img")
        assert exc.value.context["reason"] == "timeout"
