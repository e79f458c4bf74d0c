"""
Unit tests for Local LLM provider.

Tests non-streaming chat completions against an OpenAI-compatible endpoint
with mocked HTTP responses.
"""

import pytest
import httpx
from unittest.mock import AsyncMock, MagicMock, patch

from avatar_chat.llm.local_llm import LocalLLMProvider
from avatar_chat.llm.types import LLMMessage, LLMRequest, LLMError, LLMConnectionError


@pytest.fixture
def provider():
    return LocalLLMProvider(base_url="http://localhost:11434/v1/")


@pytest.fixture
def request_obj():
    return LLMRequest(
        messages=[LLMMessage(role="user", content="Hello")],
        model="llama3.2",
        temperature=0.5,
        max_tokens=128,
    )


def _completion(content: str) -> MagicMock:
    response = MagicMock()
    response.json.return_value = {"choices": [{"message": {"role": "assistant", "content": content}}]}
    return response


# ============================================================
# Initialization Tests
# ============================================================


@pytest.mark.unit
def test_init_requires_base_url():
    with pytest.raises(ValueError, match="Base URL is required"):
        LocalLLMProvider(base_url="")


@pytest.mark.unit
def test_headers_with_and_without_key(provider):
    assert "Authorization" not in provider._headers()

    keyed = LocalLLMProvider(base_url="http://localhost:8000/v1", api_key="secret")
    assert keyed._headers()["Authorization"] == "Bearer secret"


# ============================================================
# Generation Tests
# ============================================================


@pytest.mark.unit
@pytest.mark.asyncio
async def test_generate_success(provider, request_obj):
    """Test a non-streaming completion returns the message content"""
    # ARRANGE
    with patch.object(provider.client, "post", new_callable=AsyncMock) as mock_post:
        mock_post.return_value = _completion("Hi there!\n")

        # ACT
        text = await provider.generate(request_obj)

    # ASSERT
    assert text == "Hi there!"
    url = mock_post.call_args.args[0]
    payload = mock_post.call_args.kwargs["json"]
    assert url == "http://localhost:11434/v1/chat/completions"
    assert payload["stream"] is False
    assert payload["max_tokens"] == 128
    assert payload["messages"] == [{"role": "user", "content": "Hello"}]


@pytest.mark.unit
@pytest.mark.asyncio
async def test_generate_empty_reply(provider, request_obj):
    with patch.object(provider.client, "post", new_callable=AsyncMock) as mock_post:
        mock_post.return_value = _completion("")

        with pytest.raises(LLMError, match="empty reply"):
            await provider.generate(request_obj)


@pytest.mark.unit
@pytest.mark.asyncio
async def test_generate_no_choices(provider, request_obj):
    response = MagicMock()
    response.json.return_value = {"choices": []}

    with patch.object(provider.client, "post", new_callable=AsyncMock) as mock_post:
        mock_post.return_value = response

        with pytest.raises(LLMError):
            await provider.generate(request_obj)


@pytest.mark.unit
@pytest.mark.asyncio
async def test_generate_http_error(provider, request_obj):
    request = httpx.Request("POST", "http://localhost:11434/v1/chat/completions")
    response = MagicMock()
    response.raise_for_status.side_effect = httpx.HTTPStatusError(
        "error", request=request, response=httpx.Response(500, request=request)
    )

    with patch.object(provider.client, "post", new_callable=AsyncMock) as mock_post:
        mock_post.return_value = response

        with pytest.raises(LLMError, match="500"):
            await provider.generate(request_obj)


@pytest.mark.unit
@pytest.mark.asyncio
async def test_generate_connection_error(provider, request_obj):
    with patch.object(provider, "_make_request_with_retry", new_callable=AsyncMock) as mock_request:
        mock_request.side_effect = httpx.ConnectError("Connection refused")

        with pytest.raises(LLMConnectionError):
            await provider.generate(request_obj)


@pytest.mark.unit
@pytest.mark.asyncio
async def test_close(provider):
    with patch.object(provider.client, "aclose", new_callable=AsyncMock) as mock_close:
        await provider.close()

    mock_close.assert_awaited_once()
