"""
Unit tests for LLM provider factory.

Tests provider creation, environment variable handling, and configuration.
"""

import pytest
import os
from unittest.mock import patch

from avatar_chat.llm.factory import LLMProviderFactory
from avatar_chat.llm.gemini import GeminiProvider
from avatar_chat.llm.local_llm import LocalLLMProvider


# ============================================================
# Gemini Provider Creation Tests
# ============================================================


@pytest.mark.unit
def test_create_gemini_with_api_key():
    """Test creating Gemini provider with explicit API key"""
    # ACT
    provider = LLMProviderFactory.create_provider(
        provider_name="gemini",
        api_key="test_api_key_123",
    )

    # ASSERT
    assert isinstance(provider, GeminiProvider)
    assert provider.api_key == "test_api_key_123"
    assert provider.base_url == "https://generativelanguage.googleapis.com/v1beta"


@pytest.mark.unit
def test_create_gemini_with_env_variable():
    """Test creating Gemini provider with environment variable"""
    # ARRANGE
    with patch.dict(os.environ, {"GOOGLE_API_KEY": "env_api_key_456"}):
        # ACT
        provider = LLMProviderFactory.create_provider(provider_name="gemini")

        # ASSERT
        assert isinstance(provider, GeminiProvider)
        assert provider.api_key == "env_api_key_456"


@pytest.mark.unit
def test_create_gemini_missing_api_key():
    """Test Gemini creation fails without API key"""
    # ARRANGE
    with patch.dict(os.environ, {}, clear=True):
        # ACT & ASSERT
        with pytest.raises(ValueError) as exc_info:
            LLMProviderFactory.create_provider(provider_name="gemini")

        assert "Google API key not found" in str(exc_info.value)
        assert "GOOGLE_API_KEY" in str(exc_info.value)


@pytest.mark.unit
def test_create_gemini_case_insensitive():
    """Test provider name is case-insensitive"""
    provider = LLMProviderFactory.create_provider(provider_name="  GEMINI ", api_key="k")

    assert isinstance(provider, GeminiProvider)


# ============================================================
# Local LLM Provider Creation Tests
# ============================================================


@pytest.mark.unit
def test_create_local_with_base_url():
    provider = LLMProviderFactory.create_provider(
        provider_name="local",
        base_url="http://localhost:8000/v1/",
    )

    assert isinstance(provider, LocalLLMProvider)
    assert provider.base_url == "http://localhost:8000/v1"


@pytest.mark.unit
def test_create_local_defaults_to_ollama():
    """Test the local provider falls back to Ollama's endpoint"""
    with patch.dict(os.environ, {}, clear=True):
        provider = LLMProviderFactory.create_provider(provider_name="local")

    assert provider.base_url == "http://localhost:11434/v1"


@pytest.mark.unit
def test_create_local_with_env_variable():
    with patch.dict(os.environ, {"LOCAL_LLM_BASE_URL": "http://localhost:1234/v1"}, clear=True):
        provider = LLMProviderFactory.create_provider(provider_name="local")

    assert provider.base_url == "http://localhost:1234/v1"


# ============================================================
# Error Handling Tests
# ============================================================


@pytest.mark.unit
def test_unknown_provider():
    """Test unknown provider names are rejected"""
    with pytest.raises(ValueError) as exc_info:
        LLMProviderFactory.create_provider(provider_name="openrouter")

    assert "Unknown LLM provider" in str(exc_info.value)
    assert "'gemini', 'local'" in str(exc_info.value)
