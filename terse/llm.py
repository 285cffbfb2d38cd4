"""Client for the local Ollama server used by the smart path.

Only three endpoints are used:
- `GET /api/tags` for health (reachable and at least one model installed)
- `GET /api/ps` to tell whether the model is already loaded
- `POST /api/chat` (non-streaming) for condensation
"""

import logging
import time
from dataclasses import dataclass
from typing import Dict, List, Optional

import httpx

from terse.prompts import build_messages, classify_command

__all__ = [
    "LLMError",
    "LLMResult",
    "OllamaClient",
    "CONTEXT_WINDOW",
    "HEALTH_TIMEOUT_SECS",
    "response_budget",
]

logger = logging.getLogger(__name__)

CONTEXT_WINDOW = 40960
HEALTH_TIMEOUT_SECS = 5.0

MIN_RESPONSE_TOKENS = 1024
MAX_RESPONSE_TOKENS = 4096


class LLMError(Exception):
    """Raised on transport failures, timeouts and unusable responses."""


@dataclass
class LLMResult:
    """A condensation returned by the model.

    Attributes:
        output: Model response text (not yet validated).
        model: Model that produced it.
        latency_ms: Round-trip time of the chat call.
        category: Prompt category used.
    """

    output: str
    model: str
    latency_ms: int
    category: str


def response_budget(total_chars: int) -> int:
    """Half the estimated input tokens, clamped to [1024, 4096]."""
    budget = (total_chars // 4) // 2
    return max(MIN_RESPONSE_TOKENS, min(MAX_RESPONSE_TOKENS, budget))


def _normalize_base_url(url: str) -> str:
    # localhost may resolve to ::1 first while Ollama binds IPv4 only
    return url.strip().rstrip("/").replace("://localhost", "://127.0.0.1")


class OllamaClient:
    """Synchronous Ollama client built on httpx.

    Example:
        >>> client = OllamaClient("http://localhost:11434", "llama3.2:1b")
        >>> client.base_url
        'http://127.0.0.1:11434'
    """

    def __init__(
        self,
        base_url: str,
        model: str,
        timeout_ms: int = 30000,
        cold_start_timeout_ms: int = 120000,
        temperature: float = 0.0,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        """Initialize the client.

        Args:
            base_url: Ollama server URL.
            model: Model name, e.g. `llama3.2:1b`.
            timeout_ms: Chat timeout when the model is already loaded.
            cold_start_timeout_ms: Chat timeout when it has to be loaded first.
            temperature: Sampling temperature.
            transport: Optional httpx transport (tests use MockTransport).
        """
        self.base_url = _normalize_base_url(base_url)
        self.model = model
        self.timeout_ms = timeout_ms
        self.cold_start_timeout_ms = cold_start_timeout_ms
        self.temperature = temperature
        self._transport = transport

    @classmethod
    def from_config(cls, smart_path, transport: Optional[httpx.BaseTransport] = None) -> "OllamaClient":
        """Build a client from a SmartPathConfig."""
        return cls(
            base_url=smart_path.ollama_url,
            model=smart_path.model,
            timeout_ms=smart_path.max_latency_ms,
            cold_start_timeout_ms=smart_path.cold_start_timeout_ms,
            temperature=smart_path.temperature,
            transport=transport,
        )

    def _client(self, timeout: float) -> httpx.Client:
        return httpx.Client(base_url=self.base_url, timeout=timeout, transport=self._transport)

    def _get_models(self, path: str) -> List[dict]:
        with self._client(HEALTH_TIMEOUT_SECS) as client:
            response = client.get(path)
            response.raise_for_status()
            data = response.json()
        models = data.get("models") if isinstance(data, dict) else None
        return models if isinstance(models, list) else []

    def is_healthy(self) -> bool:
        """True when the server answers and has at least one model."""
        try:
            return len(self._get_models("/api/tags")) > 0
        except (httpx.HTTPError, httpx.InvalidURL, ValueError) as e:
            logger.debug("ollama health check failed: %s", e)
            return False

    def is_model_loaded(self) -> bool:
        """True when the configured model is resident in memory."""
        try:
            models = self._get_models("/api/ps")
        except (httpx.HTTPError, httpx.InvalidURL, ValueError) as e:
            logger.debug("ollama /api/ps failed: %s", e)
            return False
        for entry in models:
            if isinstance(entry, dict) and self.model in (entry.get("name"), entry.get("model")):
                return True
        return False

    def chat(self, messages: List[Dict[str, str]]) -> str:
        """Send chat messages and return the assistant's reply.

        Args:
            messages: `{"role", "content"}` dicts.

        Returns:
            Reply text.

        Raises:
            LLMError: On transport errors, timeouts, bad JSON or an empty reply.
        """
        total_chars = sum(len(m.get("content", "")) for m in messages)
        body = {
            "model": self.model,
            "messages": messages,
            "stream": False,
            "options": {
                "temperature": self.temperature,
                "num_predict": response_budget(total_chars),
                "num_ctx": CONTEXT_WINDOW,
            },
        }

        timeout_ms = self.timeout_ms if self.is_model_loaded() else self.cold_start_timeout_ms
        try:
            with self._client(timeout_ms / 1000) as client:
                response = client.post("/api/chat", json=body)
                response.raise_for_status()
                data = response.json()
        except httpx.TimeoutException as e:
            raise LLMError(f"Ollama chat timed out after {timeout_ms} ms") from e
        except httpx.HTTPError as e:
            raise LLMError(f"Ollama chat request failed: {e}") from e
        except httpx.InvalidURL as e:
            raise LLMError(f"Invalid Ollama URL {self.base_url!r}: {e}") from e
        except ValueError as e:
            raise LLMError(f"Invalid Ollama chat response: {e}") from e

        message = data.get("message") if isinstance(data, dict) else None
        content = message.get("content") if isinstance(message, dict) else None
        if not isinstance(content, str) or not content.strip():
            raise LLMError("Ollama returned an empty response")
        return content

    def condense(self, command: str, text: str) -> LLMResult:
        """Ask the model to condense a command's output.

        Raises:
            LLMError: If the chat call fails.
        """
        category = classify_command(command)
        start = time.monotonic()
        output = self.chat(build_messages(command, text))
        latency_ms = int((time.monotonic() - start) * 1000)
        logger.debug("ollama %s condensed %d chars in %d ms", self.model, len(text), latency_ms)
        return LLMResult(
            output=output.strip(),
            model=self.model,
            latency_ms=latency_ms,
            category=category.value,
        )
