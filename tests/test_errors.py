"""
Tests for error classification and retry-delay extraction.

Run with:
    python -m pytest tests/test_errors.py -v
"""

import json
import os
import sys

import pytest

# Add project root to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from google.genai import errors as genai_errors

from core.errors import (
    ErrorKind,
    GenerationBusy,
    GenerationError,
    RetriesExhausted,
    classify,
    describe_error,
    extract_retry_delay_ms,
    is_credential_error,
    normalize_error,
    parse_duration_ms,
)


class ApiError(Exception):
    """Exception carrying a structured status code, like SDK errors do."""

    def __init__(self, message, code=None, status=None):
        super().__init__(message)
        self.code = code
        self.status = status


def quota_json(retry_delay=None):
    details = []
    if retry_delay:
        details.append({
            "@type": "type.googleapis.com/google.rpc.RetryInfo",
            "retryDelay": retry_delay,
        })
    return json.dumps({
        "error": {
            "code": 429,
            "message": "You exceeded your current quota.",
            "status": "RESOURCE_EXHAUSTED",
            "details": details,
        }
    })


class TestClassify:
    """Quota vs fatal classification."""

    def test_generation_error_keeps_its_kind(self):
        assert classify(GenerationError("x", kind=ErrorKind.QUOTA)) == ErrorKind.QUOTA
        assert classify(GenerationError("x")) == ErrorKind.FATAL

    def test_structured_code(self):
        assert classify(ApiError("slow down", code=429)) == ErrorKind.QUOTA

    def test_structured_status(self):
        assert classify(ApiError("slow down", status="RESOURCE_EXHAUSTED")) == ErrorKind.QUOTA

    @pytest.mark.parametrize("message", [
        "429 Too Many Requests",
        "RESOURCE_EXHAUSTED: try later",
        "Quota exceeded for metric generate_requests",
    ])
    def test_message_markers(self, message):
        assert classify(Exception(message)) == ErrorKind.QUOTA

    def test_json_message(self):
        assert classify(Exception(quota_json())) == ErrorKind.QUOTA

    def test_everything_else_is_fatal(self):
        assert classify(ValueError("Invalid argument: prompt blocked")) == ErrorKind.FATAL
        assert classify(ApiError("bad request", code=400)) == ErrorKind.FATAL

    def test_sdk_client_error(self):
        error = genai_errors.ClientError(429, json.loads(quota_json("3s")))
        assert classify(error) == ErrorKind.QUOTA
        assert extract_retry_delay_ms(error) == 3000


class TestRetryDelay:
    """Server-suggested delays."""

    def test_parse_duration(self):
        assert parse_duration_ms("12s") == 12000
        assert parse_duration_ms("2.5s") == 2500
        assert parse_duration_ms("soon") is None
        assert parse_duration_ms("") is None

    def test_retry_info_details(self):
        assert extract_retry_delay_ms(Exception(quota_json("2.5s"))) == 2500

    def test_retry_in_phrase(self):
        error = Exception("Quota exceeded. Please retry in 12.5s.")
        assert extract_retry_delay_ms(error) == 12500

    def test_no_hint(self):
        assert extract_retry_delay_ms(Exception("RESOURCE_EXHAUSTED")) is None

    def test_generation_error_delay_wins(self):
        error = GenerationError("retry in 99s", kind=ErrorKind.QUOTA, retry_delay_ms=1000)
        assert extract_retry_delay_ms(error) == 1000


class TestNormalize:
    """Folding foreign errors into GenerationError."""

    def test_json_message_becomes_readable(self):
        error = normalize_error(Exception(quota_json("4s")))

        assert isinstance(error, GenerationError)
        assert str(error) == "You exceeded your current quota."
        assert error.kind == ErrorKind.QUOTA
        assert error.retryable
        assert error.retry_delay_ms == 4000

    def test_fatal_has_no_delay(self):
        error = normalize_error(ApiError("Permission denied. retry in 3s", code=403))

        assert error.kind == ErrorKind.FATAL
        assert error.code == 403
        assert error.retry_delay_ms is None

    def test_generation_error_passes_through(self):
        original = GenerationError("already normalized")
        assert normalize_error(original) is original


class TestDescribe:
    """Log line rendering."""

    def test_unwraps_json(self):
        message = json.dumps({"error": {"code": 404, "message": "Requested entity was not found."}})
        assert describe_error(Exception(message)) == "Requested entity was not found."

    def test_retries_exhausted_mentions_last_error(self):
        error = RetriesExhausted("voice-1", 10, GenerationError("Quota exceeded"))

        text = describe_error(error)

        assert "Max retries exceeded for [voice-1] after 10 attempts" in text
        assert "Quota exceeded" in text

    def test_busy(self):
        assert "keyframe generation already running for segment 2" == str(GenerationBusy("keyframe", "2"))

    def test_credential_marker(self):
        assert is_credential_error("Requested entity was not found.")
        assert not is_credential_error("Quota exceeded")
