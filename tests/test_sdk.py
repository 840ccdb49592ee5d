"""
Unit tests for SDK layer.

Tests the OpenAI client wrapper and its integration with the governor.
"""

import asyncio
from unittest.mock import AsyncMock, Mock, patch

import pytest

from ai_call_governor.core.audit_trail import AuditTrail
from ai_call_governor.core.errors import GovernedCallError
from ai_call_governor.core.governor import GovernorConfig, RequestGovernor
from ai_call_governor.core.ledger import CallLedger
from ai_call_governor.sdk.openai_client import GovernedOpenAI
from ai_call_governor.storage.models import CallStatus


class FakeStatusError(Exception):
    """Mimics openai.APIStatusError's status_code and code attributes."""

    def __init__(self, message, status_code, code=None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.code = code


def completion_response(prompt_tokens=100, completion_tokens=50):
    response = Mock()
    response.usage.prompt_tokens = prompt_tokens
    response.usage.completion_tokens = completion_tokens
    response.usage.total_tokens = prompt_tokens + completion_tokens
    return response


class TestGovernedOpenAI:
    """Test GovernedOpenAI client wrapper."""

    def setup_method(self):
        """Set up test environment."""
        self.sleeps = []
        self.ledger = CallLedger()
        self.governor = RequestGovernor(
            self.ledger,
            AuditTrail(download_threshold_kb=0),
            GovernorConfig(poll_interval_ms=1),
            sleep=self._sleep,
        )
        self.openai = Mock()
        self.openai.chat.completions.create = AsyncMock(return_value=completion_response())

    async def _sleep(self, delay):
        self.sleeps.append(delay)

    def _client(self, model="gpt-4o"):
        return GovernedOpenAI(model=model, agent_name="Persona Agent",
                              governor=self.governor, client=self.openai)

    @patch('ai_call_governor.sdk.openai_client.AsyncOpenAI')
    def test_init_default_client(self, mock_openai_class):
        """Test that a client is built from the environment when none is given."""
        mock_openai_class.return_value = Mock()

        client = GovernedOpenAI(model="gpt-4o", agent_name="Persona Agent", governor=self.governor)

        assert client.client is mock_openai_class.return_value
        mock_openai_class.assert_called_once_with()

    def test_init_missing_model(self):
        """Test initialization fails with missing model."""
        with pytest.raises(ValueError, match="model is required"):
            GovernedOpenAI(model="", agent_name="agent", governor=self.governor, client=self.openai)

    def test_init_whitespace_agent_name(self):
        """Test initialization fails with blank agent name."""
        with pytest.raises(ValueError, match="agent_name is required"):
            GovernedOpenAI(model="gpt-4o", agent_name="   ", governor=self.governor, client=self.openai)

    def test_chat_empty_messages(self):
        """Test that empty messages are rejected before queuing."""
        client = self._client()
        with pytest.raises(ValueError, match="messages is required"):
            asyncio.run(client.chat([]))
        assert self.ledger.get_logs() == []

    def test_chat_success_records_usage(self):
        """Test a successful chat is recorded with usage and cost."""
        client = self._client()
        messages = [{"role": "user", "content": "Hello"}]

        response = asyncio.run(client.chat(messages, temperature=0.2, max_tokens=64))

        assert response is self.openai.chat.completions.create.return_value
        self.openai.chat.completions.create.assert_awaited_once_with(
            model="gpt-4o", messages=messages, temperature=0.2, max_tokens=64
        )

        record = self.ledger.get_logs()[0]
        assert record.status == CallStatus.SUCCESS
        assert record.agent_name == "Persona Agent"
        assert record.model == "gpt-4o"
        assert record.request_payload == {"lastMessage": messages[-1], "historyLength": 1}
        assert record.prompt_tokens == 100
        assert record.candidate_tokens == 50
        assert record.total_tokens == 150
        assert record.estimated_cost > 0

    def test_chat_passes_extra_parameters(self):
        """Test that extra keyword arguments reach the API."""
        client = self._client()

        asyncio.run(client.chat([{"role": "user", "content": "Hi"}], top_p=0.9))

        kwargs = self.openai.chat.completions.create.call_args.kwargs
        assert kwargs["top_p"] == 0.9

    def test_insufficient_quota_falls_back(self):
        """Test that OpenAI quota errors downgrade the model."""
        self.openai.chat.completions.create = AsyncMock(side_effect=[
            FakeStatusError("You exceeded your current quota", 429, "insufficient_quota"),
            completion_response(),
        ])
        client = self._client()

        asyncio.run(client.chat([{"role": "user", "content": "Hi"}]))

        models = [c.kwargs["model"] for c in self.openai.chat.completions.create.call_args_list]
        assert models == ["gpt-4o", "gpt-4o-mini"]
        assert self.ledger.get_logs()[0].model == "gpt-4o-mini"

    def test_server_error_retried_then_raised(self):
        """Test that persistent 5xx errors surface as GovernedCallError."""
        self.openai.chat.completions.create = AsyncMock(
            side_effect=FakeStatusError("The server had an error", 500)
        )
        client = self._client()

        with pytest.raises(GovernedCallError, match="The server had an error"):
            asyncio.run(client.chat([{"role": "user", "content": "Hi"}]))

        assert self.openai.chat.completions.create.await_count == 3
        assert self.sleeps == [1.0, 2.0]
        assert self.ledger.get_logs()[0].status == CallStatus.FAILED

    def test_authentication_error_not_retried(self):
        """Test that 401 errors fail immediately."""
        self.openai.chat.completions.create = AsyncMock(
            side_effect=FakeStatusError("Incorrect API key provided", 401)
        )
        client = self._client()

        with pytest.raises(GovernedCallError) as excinfo:
            asyncio.run(client.chat([{"role": "user", "content": "Hi"}]))

        assert excinfo.value.attempts == 1
        assert self.openai.chat.completions.create.await_count == 1
