"""Tests for llm.py - the Ollama client (HTTP mocked with httpx.MockTransport)."""

import json

import httpx
import pytest

from terse.config import SmartPathConfig
from terse.llm import CONTEXT_WINDOW, LLMError, OllamaClient, response_budget


class FakeOllama:
    """Minimal Ollama stand-in serving /api/tags, /api/ps and /api/chat."""

    def __init__(self, reply="condensed", models=None, loaded=None, chat_error=None, status=200):
        self.reply = reply
        self.models = [{"name": "llama3.2:1b"}] if models is None else models
        self.loaded = loaded or []
        self.chat_error = chat_error
        self.status = status
        self.requests = []

    def __call__(self, request):
        self.requests.append(request)
        if request.url.path == "/api/tags":
            return httpx.Response(200, json={"models": self.models})
        if request.url.path == "/api/ps":
            return httpx.Response(200, json={"models": self.loaded})
        if request.url.path == "/api/chat":
            if self.chat_error is not None:
                raise self.chat_error
            if self.status != 200:
                return httpx.Response(self.status, json={"error": "boom"})
            if isinstance(self.reply, str):
                return httpx.Response(200, json={"message": {"role": "assistant", "content": self.reply}})
            return httpx.Response(200, content=self.reply)
        return httpx.Response(404)

    @property
    def chat_bodies(self):
        return [json.loads(r.content) for r in self.requests if r.url.path == "/api/chat"]


def make_client(server, **kwargs):
    return OllamaClient(
        "http://localhost:11434/", "llama3.2:1b", transport=httpx.MockTransport(server), **kwargs
    )


class TestResponseBudget:
    """Tests for the num_predict budget."""

    def test_clamped(self):
        """Test the budget stays within [1024, 4096]."""
        assert response_budget(0) == 1024
        assert response_budget(16000) == 2000
        assert response_budget(10_000_000) == 4096


class TestOllamaClient:
    """Tests for OllamaClient."""

    def test_base_url_normalized(self):
        """Test trailing slashes and localhost are normalized."""
        client = OllamaClient(" http://localhost:11434/ ", "m")
        assert client.base_url == "http://127.0.0.1:11434"

    def test_from_config(self):
        """Test construction from smart path settings."""
        config = SmartPathConfig(model="qwen", ollama_url="http://gpu:11434", max_latency_ms=1500)
        client = OllamaClient.from_config(config)
        assert client.model == "qwen"
        assert client.base_url == "http://gpu:11434"
        assert client.timeout_ms == 1500
        assert client.cold_start_timeout_ms == 120000

    def test_healthy(self):
        """Test a server with models is healthy."""
        assert make_client(FakeOllama()).is_healthy()

    def test_unhealthy_without_models(self):
        """Test a server with no models is unhealthy."""
        assert not make_client(FakeOllama(models=[])).is_healthy()

    def test_unhealthy_when_unreachable(self):
        """Test connection errors mean unhealthy."""

        def refuse(request):
            raise httpx.ConnectError("connection refused", request=request)

        client = OllamaClient("http://127.0.0.1:1", "m", transport=httpx.MockTransport(refuse))
        assert not client.is_healthy()
        assert not client.is_model_loaded()

    def test_invalid_url(self):
        """Test a malformed server URL means unhealthy and a chat LLMError."""
        client = OllamaClient("http://localhost:eleven", "m")
        assert not client.is_healthy()
        assert not client.is_model_loaded()
        with pytest.raises(LLMError, match="Invalid Ollama URL"):
            client.chat([{"role": "user", "content": "hi"}])

    def test_model_loaded(self):
        """Test /api/ps matching by name or model."""
        assert make_client(FakeOllama(loaded=[{"name": "llama3.2:1b"}])).is_model_loaded()
        assert make_client(FakeOllama(loaded=[{"model": "llama3.2:1b"}])).is_model_loaded()
        assert not make_client(FakeOllama(loaded=[{"name": "other"}])).is_model_loaded()

    def test_chat_request_body(self):
        """Test the chat payload."""
        server = FakeOllama(reply="short")
        client = make_client(server, temperature=0.2)
        messages = [{"role": "user", "content": "x" * 16000}]

        assert client.chat(messages) == "short"

        body = server.chat_bodies[0]
        assert body["model"] == "llama3.2:1b"
        assert body["stream"] is False
        assert body["messages"] == messages
        assert body["options"] == {"temperature": 0.2, "num_predict": 2000, "num_ctx": CONTEXT_WINDOW}

    def test_chat_checks_loaded_model_first(self):
        """Test /api/ps is consulted before chatting."""
        server = FakeOllama()
        make_client(server).chat([{"role": "user", "content": "hi"}])
        assert [r.url.path for r in server.requests] == ["/api/ps", "/api/chat"]

    def test_chat_empty_reply(self):
        """Test an empty reply raises LLMError."""
        with pytest.raises(LLMError):
            make_client(FakeOllama(reply="   ")).chat([{"role": "user", "content": "hi"}])

    def test_chat_http_error(self):
        """Test error statuses raise LLMError."""
        with pytest.raises(LLMError):
            make_client(FakeOllama(status=500)).chat([{"role": "user", "content": "hi"}])

    def test_chat_bad_json(self):
        """Test malformed JSON raises LLMError."""
        with pytest.raises(LLMError):
            make_client(FakeOllama(reply=b"not json")).chat([{"role": "user", "content": "hi"}])

    def test_chat_timeout(self):
        """Test timeouts raise LLMError."""
        server = FakeOllama(chat_error=httpx.ReadTimeout("timed out"))
        with pytest.raises(LLMError, match="timed out"):
            make_client(server).chat([{"role": "user", "content": "hi"}])

    def test_condense(self):
        """Test condense builds a categorized prompt."""
        server = FakeOllama(reply="  branch: main  \n")
        result = make_client(server).condense("git status", "On branch main\n" * 50)

        assert result.output == "branch: main"
        assert result.model == "llama3.2:1b"
        assert result.category == "version_control"
        assert result.latency_ms >= 0
        messages = server.chat_bodies[0]["messages"]
        assert messages[0]["role"] == "system"
        assert "`git status`" in messages[1]["content"]
