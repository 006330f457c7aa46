"""
Tests for TaskTroll Provider Adapter

HTTP is mocked through the adapter's requests session, so no network
access is needed. Covers request shapes per provider, text extraction,
and the NetworkError / ProviderError / ShapeError taxonomy.
"""

import asyncio
import logging
import time
from unittest.mock import Mock

import pytest
import requests

from tasktroll.config import AIConfig
from tasktroll.llm.providers import (
    DETECTION_PARAMS,
    CompletionParams,
    NetworkError,
    ProviderAdapter,
    ProviderError,
    ShapeError,
    get_provider,
    is_ready,
    provider_ids,
)

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)


def make_response(status_code=200, payload=None, text=""):
    response = Mock()
    response.status_code = status_code
    response.text = text
    if isinstance(payload, Exception):
        response.json.side_effect = payload
    else:
        response.json.return_value = payload
    return response


def make_adapter(provider="openai", api_key="sk-test", response=None, **config):
    session = Mock(spec=requests.Session)
    if response is not None:
        session.post.return_value = response
    ai_config = AIConfig(provider=provider, api_key=api_key, enabled=True, **config)
    return ProviderAdapter(ai_config, session=session), session


def test_chat_providers():
    """OpenAI-style request and response envelopes"""
    print("\n" + "="*70)
    print("TEST 1: Chat Completion Providers")
    print("="*70)

    print("\n[1.1] OpenAI request shape...")
    response = make_response(payload={"choices": [{"message": {"content": "Do it now!"}}]})
    adapter, session = make_adapter("openai", response=response)
    text = adapter.complete("openai", "Be strict", "Remind me", DETECTION_PARAMS)

    assert text == "Do it now!"
    args, kwargs = session.post.call_args
    assert args[0] == "https://api.openai.com/v1/chat/completions"
    assert kwargs["headers"]["Authorization"] == "Bearer sk-test"
    assert kwargs["json"]["messages"] == [
        {"role": "system", "content": "Be strict"},
        {"role": "user", "content": "Remind me"},
    ]
    assert kwargs["json"]["max_tokens"] == 350
    assert kwargs["timeout"] == 15.0
    print("✓ OpenAI request and response OK")

    print("\n[1.2] OpenRouter headers and list content...")
    response = make_response(payload={"choices": [{"message": {"content": [
        {"type": "text", "text": "Hurry "},
        {"type": "text", "text": "up!"},
    ]}}]})
    adapter, session = make_adapter("openrouter", response=response)
    assert adapter.complete("openrouter", "", "Remind me") == "Hurry up!"
    headers = session.post.call_args.kwargs["headers"]
    assert "HTTP-Referer" in headers and headers["X-Title"] == "TaskTroll"
    print("✓ OpenRouter parts joined")

    print("\n[1.3] JSON mode only where supported...")
    params = CompletionParams(json_mode=True)
    response = make_response(payload={"choices": [{"message": {"content": "{}"}}]})
    adapter, session = make_adapter("deepseek", response=response)
    adapter.complete("deepseek", "", "x", params)
    assert "response_format" not in session.post.call_args.kwargs["json"]
    adapter, session = make_adapter("openai", response=response)
    adapter.complete("openai", "", "x", params)
    assert session.post.call_args.kwargs["json"]["response_format"] == {"type": "json_object"}
    print("✓ response_format only for openai/openrouter")

    print("\n✅ Chat providers test PASSED")


def test_gemini_and_ollama():
    """Non-chat envelopes"""
    print("\n" + "="*70)
    print("TEST 2: Gemini and Ollama")
    print("="*70)

    print("\n[2.1] Gemini...")
    response = make_response(payload={
        "candidates": [{"content": {"parts": [{"text": "Time's up!"}]}}]
    })
    adapter, session = make_adapter("gemini", api_key="g-key", response=response)
    assert adapter.complete("gemini", "System", "Prompt") == "Time's up!"
    args, kwargs = session.post.call_args
    assert args[0].endswith("/models/gemini-pro:generateContent")
    assert kwargs["headers"]["x-goog-api-key"] == "g-key"
    assert kwargs["json"]["contents"][0]["parts"][0]["text"] == "System\n\nPrompt"
    assert kwargs["json"]["generationConfig"]["maxOutputTokens"] == 350
    print("✓ Gemini envelope OK")

    print("\n[2.2] Model and endpoint overrides...")
    adapter, session = make_adapter(
        "gemini", api_key="g-key", response=response, model="gemini-1.5-flash"
    )
    adapter.complete("gemini", "", "Prompt")
    assert "/models/gemini-1.5-flash:generateContent" in session.post.call_args.args[0]
    print("✓ Model override used")

    print("\n[2.3] Ollama needs no key...")
    response = make_response(payload={"response": "Local reply", "done": True})
    adapter, session = make_adapter("ollama", api_key="", response=response)
    assert adapter.complete("ollama", "", "Prompt") == "Local reply"
    assert "Authorization" not in session.post.call_args.kwargs["headers"]
    assert is_ready(AIConfig(provider="ollama", enabled=True))
    assert not is_ready(AIConfig(provider="openai", enabled=True))
    assert not is_ready(AIConfig(provider="openai", api_key="k", enabled=False))
    print("✓ Ollama OK")

    print("\n✅ Gemini and Ollama test PASSED")


def test_error_taxonomy():
    """Every failure maps to one typed error"""
    print("\n" + "="*70)
    print("TEST 3: Error Taxonomy")
    print("="*70)

    print("\n[3.1] Non-2xx status...")
    adapter, _ = make_adapter(response=make_response(401, text="invalid key"))
    with pytest.raises(ProviderError) as excinfo:
        adapter.complete("openai", "", "Prompt")
    assert excinfo.value.status == 401
    print("✓ ProviderError carries status")

    print("\n[3.2] Transport failures...")
    adapter, session = make_adapter()
    session.post.side_effect = requests.ConnectionError("refused")
    with pytest.raises(NetworkError):
        adapter.complete("openai", "", "Prompt")
    session.post.side_effect = requests.Timeout("slow")
    with pytest.raises(NetworkError):
        adapter.complete("openai", "", "Prompt")
    print("✓ NetworkError raised")

    print("\n[3.3] Unexpected envelopes...")
    for payload in ({"choices": []}, {"error": "nope"}, ValueError("not json"), ["list"]):
        adapter, _ = make_adapter(response=make_response(payload=payload))
        with pytest.raises(ShapeError):
            adapter.complete("openai", "", "Prompt")
    print("✓ ShapeError raised")

    print("\n[3.4] Invalid input...")
    adapter, _ = make_adapter()
    with pytest.raises(ValueError):
        adapter.complete("openai", "", "")
    with pytest.raises(ValueError):
        get_provider("unknown")
    with pytest.raises(ValueError):
        CompletionParams(timeout=0)
    assert provider_ids() == ["deepseek", "gemini", "ollama", "openai", "openrouter"]
    print("✓ ValueError raised")

    print("\n✅ Error taxonomy test PASSED")


def test_async_timeout():
    """complete_async gives up after params.timeout"""
    print("\n" + "="*70)
    print("TEST 4: Async Timeout")
    print("="*70)

    adapter, session = make_adapter()

    def slow_post(*args, **kwargs):
        time.sleep(0.5)
        return make_response(payload={"choices": [{"message": {"content": "late"}}]})

    session.post.side_effect = slow_post
    params = CompletionParams(timeout=0.05)

    async def scenario():
        with pytest.raises(NetworkError):
            await adapter.complete_async("openai", "", "Prompt", params)

    asyncio.run(scenario())
    print("✓ Timeout reported as NetworkError")

    print("\n[4.2] Successful async call...")
    session.post.side_effect = None
    session.post.return_value = make_response(
        payload={"choices": [{"message": {"content": "on time"}}]}
    )
    assert asyncio.run(adapter.complete_async("openai", "", "Prompt")) == "on time"
    print("✓ Async result returned")

    print("\n✅ Async timeout test PASSED")


def test_connection_check():
    """test_connection uses the configured provider"""
    print("\n" + "="*70)
    print("TEST 5: Connection Test")
    print("="*70)

    response = make_response(payload={"choices": [{"message": {"content": "Hello there!"}}]})
    adapter, session = make_adapter("deepseek", response=response)
    assert adapter.test_connection() == "Hello there!"
    args, kwargs = session.post.call_args
    assert args[0] == "https://api.deepseek.com/chat/completions"
    assert kwargs["json"]["messages"] == [{"role": "user", "content": "Hello!"}]
    print("✓ Greeting sent to deepseek")

    print("\n✅ Connection test PASSED")


def run_all_tests():
    tests = [
        test_chat_providers,
        test_gemini_and_ollama,
        test_error_taxonomy,
        test_async_timeout,
        test_connection_check,
    ]
    for test in tests:
        test()
    print("\n🎉 ALL PROVIDER TESTS PASSED!")


if __name__ == "__main__":
    run_all_tests()
