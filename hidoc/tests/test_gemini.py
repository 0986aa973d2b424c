import asyncio
import json

import httpx
import pytest

from hidoc.services import gemini
from hidoc.services.ai_config import AIConfig, load_ai_config
from hidoc.utils.exceptions import ConfigurationError, TransientProviderError

CONFIG = AIConfig(api_key="k-123", model="gemini-test", api_base="https://example.test/v1beta", max_output_tokens=256)


def ok_body(text):
    return {"candidates": [{"content": {"parts": [{"text": text}]}}]}


@pytest.fixture
def transport(monkeypatch):
    """Route gemini's httpx client through a MockTransport driven by `handler`."""
    state = {"handler": None, "requests": []}
    real_client = httpx.AsyncClient

    def handle(request):
        state["requests"].append(request)
        return state["handler"](request)

    def factory(**kwargs):
        return real_client(transport=httpx.MockTransport(handle), **kwargs)

    monkeypatch.setattr(gemini.httpx, "AsyncClient", factory)
    return state


def call(messages=None, config=CONFIG):
    return asyncio.run(gemini.generate_chat("be brief", messages or [{"role": "user", "content": "hi"}], 5, config=config))


def test_payload_maps_roles():
    payload = gemini.build_payload(
        "sys",
        [
            {"role": "user", "content": "msg"},
            {"role": "assistant", "content": "bad output"},
            {"role": "system", "content": "extra rule"},
            {"role": "user", "content": "fix it"},
        ],
        max_output_tokens=512,
    )
    assert [c["role"] for c in payload["contents"]] == ["user", "model", "user"]
    assert payload["systemInstruction"]["parts"][0]["text"] == "sys\n\nextra rule"
    assert payload["generationConfig"] == {"maxOutputTokens": 512}


def test_payload_without_overrides():
    payload = gemini.build_payload("", [{"role": "user", "content": "x"}])
    assert "systemInstruction" not in payload
    assert "generationConfig" not in payload


def test_generate_chat_posts_to_model(transport):
    transport["handler"] = lambda request: httpx.Response(200, json=ok_body(' {"parsed": false} '))

    assert call() == '{"parsed": false}'
    request = transport["requests"][0]
    assert request.url.path == "/v1beta/models/gemini-test:generateContent"
    assert request.url.params["key"] == "k-123"
    sent = json.loads(request.content)
    assert sent["contents"][0]["parts"][0]["text"] == "hi"
    assert sent["generationConfig"]["maxOutputTokens"] == 256


def test_missing_key_is_configuration_error(transport):
    with pytest.raises(ConfigurationError):
        call(config=AIConfig(api_key=""))
    assert transport["requests"] == []


@pytest.mark.parametrize(
    "handler",
    [
        lambda request: httpx.Response(503, json={"error": "overloaded"}),
        lambda request: httpx.Response(200, json={"candidates": []}),
        lambda request: httpx.Response(200, content=b"<html>"),
    ],
)
def test_provider_failures_are_transient(transport, handler):
    transport["handler"] = handler
    with pytest.raises(TransientProviderError):
        call()


def test_timeout_is_transient(transport):
    def slow(request):
        raise httpx.ReadTimeout("timed out", request=request)

    transport["handler"] = slow
    with pytest.raises(TransientProviderError, match="timed out"):
        call()


def test_config_from_environment(monkeypatch):
    monkeypatch.setenv("GEMINI_API_KEY", " abc ")
    monkeypatch.setenv("GEMINI_MODEL", "gemini-pro")
    monkeypatch.setenv("AI_SECOND_PASS", "0")
    monkeypatch.setenv("AI_VERBOSE", "1")
    monkeypatch.setenv("AI_CTX", "2048")
    monkeypatch.setenv("AI_TIMEOUT_S", "bogus")
    cfg = load_ai_config()
    assert cfg.configured
    assert cfg.api_key == "abc"
    assert cfg.model == "gemini-pro"
    assert cfg.second_pass is False
    assert cfg.verbose is True
    assert cfg.max_output_tokens == 2048
    assert cfg.timeout_s == 15.0
