"""Tests for activity payload redaction."""

from services.dispatch.src.dispatch.core.redaction import redact_dict, redact_text, redact_value


def test_redact_value_returns_hash():
    result = redact_value("sensitive-data")
    assert result.startswith("REDACTED:")
    assert len(result) > 10


def test_redact_value_deterministic():
    assert redact_value("test") == redact_value("test")


def test_redact_dict_sensitive_keys():
    data = {
        "reporter_phone": "+91 98765 43210",
        "address": "12 MG Road",
        "category": "Pothole",
    }
    result = redact_dict(data)
    assert result["reporter_phone"].startswith("REDACTED:")
    assert result["address"].startswith("REDACTED:")
    assert result["category"] == "Pothole"


def test_redact_dict_keeps_ids():
    data = {"id": "abc", "worker_id": "w-1", "issue_id": "i-1"}
    assert redact_dict(data) == data


def test_redact_dict_nested_and_lists():
    data = {
        "reporter": {"email": "someone@example.com", "note": "call me"},
        "notes": ["mail someone@example.com", 3],
    }
    result = redact_dict(data)
    assert result["reporter"]["email"].startswith("REDACTED:")
    assert result["reporter"]["note"] == "call me"
    assert result["notes"][0] == "mail [REDACTED]"
    assert result["notes"][1] == 3


def test_redact_text_phone_in_description():
    text = "Leak outside, call 9876543210 for access"
    assert "9876543210" not in redact_text(text)


def test_redact_text_leaves_dates_alone():
    text = "Reported on 2026-03-02, still flooding"
    assert redact_text(text) == text


def test_empty_sensitive_value_becomes_none():
    assert redact_dict({"phone": ""})["phone"] is None
