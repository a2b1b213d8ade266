"""
Tests for the LLM completion clients.
"""

import asyncio
import json

import httpx
import pytest

from clipforge.services.llm_client import (
    LlmUnavailableError,
    NullLlmClient,
    OpenRouterLlmClient,
    is_unavailable_response,
)


def make_client(handler, api_key="test-key"):
    return OpenRouterLlmClient(
        api_key=api_key,
        model="test/model",
        base_url="https://llm.test/api/v1",
        transport=httpx.MockTransport(handler),
    )


class TestOpenRouterLlmClient:
    """Tests for OpenRouterLlmClient against a mock transport."""

    def test_complete_returns_first_choice(self):
        """The prompt is sent as one user message and the reply text returned."""
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["url"] = str(request.url)
            seen["auth"] = request.headers["Authorization"]
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json={
                "choices": [{"message": {"content": "[{\"index\": 1}]"}}],
            })

        async def run():
            client = make_client(handler)
            try:
                return await client.complete("Score these")
            finally:
                await client.close()

        result = asyncio.run(run())

        assert result == "[{\"index\": 1}]"
        assert seen["url"] == "https://llm.test/api/v1/chat/completions"
        assert seen["auth"] == "Bearer test-key"
        assert seen["body"]["model"] == "test/model"
        assert seen["body"]["messages"] == [{"role": "user", "content": "Score these"}]

    def test_error_status_raises(self):
        def handler(request):
            return httpx.Response(429, text="rate limited")

        client = make_client(handler)

        with pytest.raises(LlmUnavailableError, match="429"):
            asyncio.run(client.complete("prompt"))

    def test_malformed_body_raises(self):
        def handler(request):
            return httpx.Response(200, json={"choices": []})

        client = make_client(handler)

        with pytest.raises(LlmUnavailableError):
            asyncio.run(client.complete("prompt"))

    def test_transport_error_raises(self):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        client = make_client(handler)

        with pytest.raises(LlmUnavailableError, match="request failed"):
            asyncio.run(client.complete("prompt"))

    def test_null_content_returns_empty(self):
        def handler(request):
            return httpx.Response(200, json={"choices": [{"message": {"content": None}}]})

        client = make_client(handler)

        assert asyncio.run(client.complete("prompt")) == ""

    def test_not_ready_without_key(self):
        client = make_client(lambda request: httpx.Response(500), api_key="")

        assert not client.is_ready
        assert asyncio.run(client.try_initialize()) is False
        with pytest.raises(LlmUnavailableError):
            asyncio.run(client.complete("prompt"))


class TestNullLlmClient:
    """Tests for the unconfigured client."""

    def test_reports_unavailable(self):
        client = NullLlmClient()

        assert not client.is_ready
        assert asyncio.run(client.try_initialize()) is False
        with pytest.raises(LlmUnavailableError):
            asyncio.run(client.complete("prompt"))


class TestIsUnavailableResponse:

    @pytest.mark.parametrize("text,expected", [
        (None, True),
        ("", True),
        ("   ", True),
        ("[LLM unavailable]", True),
        ("  [llm offline]", True),
        ("[{\"index\": 1}]", False),
    ])
    def test_detection(self, text, expected):
        assert is_unavailable_response(text) is expected
