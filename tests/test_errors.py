"""
Unit tests for backend error classification.
"""

import asyncio
import json

import pytest

from ai_call_governor.core.errors import (
    DEFAULT_ERROR_MESSAGE,
    ClientError,
    QuotaExceeded,
    ServerError,
    UnknownCallError,
    classify_error,
)


class FakeAPIError(Exception):
    """Backend-style exception carrying status attributes."""

    def __init__(self, message="", status_code=None, code=None, status=None):
        super().__init__(message)
        if status_code is not None:
            self.status_code = status_code
        if code is not None:
            self.code = code
        if status is not None:
            self.status = status


class TestClassifyError:
    """Test mapping raw exceptions onto the error taxonomy."""

    def test_resource_exhausted_status(self):
        """Verify a RESOURCE_EXHAUSTED status string means quota exhaustion."""
        error = classify_error(FakeAPIError("quota", status="RESOURCE_EXHAUSTED"), "gemini-2.5-pro")
        assert isinstance(error, QuotaExceeded)
        assert error.model == "gemini-2.5-pro"
        assert not error.retryable

    def test_resource_exhausted_in_json_body(self):
        """Verify quota exhaustion is detected from a JSON-encoded message."""
        body = json.dumps({"error": {"code": 429, "status": "RESOURCE_EXHAUSTED", "message": "quota"}})
        error = classify_error(Exception(body), "gemini-2.5-flash")
        assert isinstance(error, QuotaExceeded)
        assert error.message == body

    def test_http_429_is_quota(self):
        """Verify a bare 429 status code means quota exhaustion."""
        assert isinstance(classify_error(FakeAPIError("slow down", status_code=429), "m"), QuotaExceeded)

    def test_insufficient_quota_code(self):
        """Verify OpenAI's insufficient_quota code means quota exhaustion."""
        error = classify_error(FakeAPIError("no quota", status_code=400, code="insufficient_quota"), "gpt-4o")
        assert isinstance(error, QuotaExceeded)

    @pytest.mark.parametrize("code", [500, 502, 503, 599])
    def test_server_errors_are_retryable(self, code):
        """Verify 5xx codes classify as retryable server errors."""
        error = classify_error(FakeAPIError("boom", code=code), "m")
        assert isinstance(error, ServerError)
        assert error.code == code
        assert error.retryable

    @pytest.mark.parametrize("code", [400, 401, 403, 404])
    def test_client_errors_are_fatal(self, code):
        """Verify other numeric codes classify as fatal client errors."""
        error = classify_error(FakeAPIError("bad", status_code=code), "m")
        assert isinstance(error, ClientError)
        assert error.code == code
        assert not error.retryable

    def test_numeric_status_string(self):
        """Verify digit strings are read as status codes."""
        assert isinstance(classify_error(FakeAPIError("x", status="503"), "m"), ServerError)

    def test_server_code_in_json_body(self):
        """Verify a 5xx code inside a JSON body is found."""
        body = json.dumps({"error": {"code": 503, "status": "UNAVAILABLE"}})
        assert isinstance(classify_error(Exception(body), "m"), ServerError)

    def test_plain_exception_is_unknown(self):
        """Verify exceptions without status information are fatal unknowns."""
        error = classify_error(ValueError("nope"), "m")
        assert isinstance(error, UnknownCallError)
        assert error.message == "nope"
        assert not error.retryable

    def test_empty_message_uses_default(self):
        """Verify a default message replaces an empty one."""
        assert classify_error(RuntimeError(), "m").message == DEFAULT_ERROR_MESSAGE

    def test_timeout_is_retryable_server_error(self):
        """Verify attempt timeouts are treated as 504s."""
        error = classify_error(asyncio.TimeoutError(), "m")
        assert isinstance(error, ServerError)
        assert error.code == 504

    def test_cause_is_kept(self):
        """Verify the raw exception is preserved."""
        raw = FakeAPIError("bad", status_code=400)
        assert classify_error(raw, "m").cause is raw
