"""LLM oracle clients and the deadline-bounded ``Oracle`` capability.

The dialogue graph treats the LLM as a black-box text function: a system
prompt and one user message go in, plain text comes out. ``OracleClient``
implementations talk to a concrete provider; ``Oracle`` wraps a client with
a per-call deadline and converts every recoverable failure into ``None`` so
each call site can apply its own fallback.
"""

from __future__ import annotations

import asyncio
import logging
import time
from abc import ABC, abstractmethod
from typing import Optional

import anthropic
import httpx

from appointment_agent.debug_events import emit_current

log = logging.getLogger("appointment_agent.oracle")


class OracleError(Exception):
    """The oracle could not produce a usable reply."""


class OracleConfigError(OracleError):
    """The oracle is misconfigured (missing key, unknown provider)."""


class OracleRateLimitError(OracleError):
    """The provider rejected the request with a rate limit."""


class OracleClient(ABC):
    """A text-completion provider."""

    @abstractmethod
    async def complete(
        self,
        system: str,
        user: str,
        max_tokens: int = 64,
        temperature: float = 0.0,
    ) -> str:
        """Return the model's text reply.

        Args:
            system: System instructions.
            user: The single user message.
            max_tokens: Upper bound on the reply length.
            temperature: Sampling temperature.

        Returns:
            The reply text, stripped.

        Raises:
            OracleError: On transport failures or unusable replies.
        """


# ── Anthropic ────────────────────────────────────────────────────


class AnthropicOracleClient(OracleClient):
    """Claude via the Anthropic async SDK."""

    def __init__(self, api_key: str, model: str) -> None:
        self._api_key = api_key
        self._model = model
        self._client: Optional[anthropic.AsyncAnthropic] = None

    def _get_client(self) -> anthropic.AsyncAnthropic:
        if self._client is None:
            if not self._api_key:
                raise OracleConfigError("ANTHROPIC_API_KEY is not configured")
            self._client = anthropic.AsyncAnthropic(api_key=self._api_key)
        return self._client

    async def complete(
        self,
        system: str,
        user: str,
        max_tokens: int = 64,
        temperature: float = 0.0,
    ) -> str:
        client = self._get_client()
        try:
            message = await client.messages.create(
                model=self._model,
                max_tokens=max_tokens,
                temperature=temperature,
                system=system,
                messages=[{"role": "user", "content": user}],
            )
        except anthropic.RateLimitError as exc:
            raise OracleRateLimitError(str(exc)) from exc
        except anthropic.AuthenticationError as exc:
            raise OracleConfigError(str(exc)) from exc
        except anthropic.APIError as exc:
            raise OracleError(str(exc)) from exc

        text = "".join(
            block.text for block in message.content if getattr(block, "type", "") == "text"
        )
        return text.strip()


# ── Ollama ───────────────────────────────────────────────────────


class OllamaOracleClient(OracleClient):
    """A local Ollama server via its ``/api/chat`` endpoint."""

    def __init__(self, base_url: str, model: str, timeout: float = 30.0) -> None:
        self._base_url = base_url.rstrip("/")
        self._model = model
        self._timeout = timeout

    async def complete(
        self,
        system: str,
        user: str,
        max_tokens: int = 64,
        temperature: float = 0.0,
    ) -> str:
        payload = {
            "model": self._model,
            "messages": [
                {"role": "system", "content": system},
                {"role": "user", "content": user},
            ],
            "stream": False,
            "options": {"temperature": temperature, "num_predict": max_tokens},
        }
        try:
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                resp = await client.post(f"{self._base_url}/api/chat", json=payload)
                resp.raise_for_status()
                data = resp.json()
        except httpx.ConnectError as exc:
            raise OracleError(f"Cannot connect to Ollama at {self._base_url}") from exc
        except httpx.HTTPStatusError as exc:
            if exc.response.status_code == 429:
                raise OracleRateLimitError("Ollama rate limited the request") from exc
            raise OracleError(f"Ollama returned HTTP {exc.response.status_code}") from exc
        except (httpx.HTTPError, ValueError) as exc:
            raise OracleError(f"Ollama request failed: {exc}") from exc

        try:
            return str(data["message"]["content"]).strip()
        except (KeyError, TypeError) as exc:
            raise OracleError("Ollama reply had no message content") from exc


def create_oracle_client(settings) -> OracleClient:
    """Build the provider client selected by ``settings.llm_provider``."""
    provider = (settings.llm_provider or "").lower()
    if provider == "claude":
        return AnthropicOracleClient(settings.anthropic_api_key, settings.anthropic_model)
    if provider == "ollama":
        return OllamaOracleClient(settings.ollama_url, settings.ollama_model)
    raise OracleConfigError(f"Unknown LLM_PROVIDER: {settings.llm_provider!r}")


# ── Deadline-bounded capability ──────────────────────────────────


class Oracle:
    """Calls the oracle with a deadline and returns ``None`` on failure.

    Configuration and rate-limit errors are re-raised: they are not
    something a re-prompt can fix, and the HTTP layer maps them to 503/502.
    """

    def __init__(self, client: OracleClient, timeout: float = 8.0) -> None:
        self._client = client
        self._timeout = timeout

    async def ask(
        self,
        task: str,
        system: str,
        user: str,
        max_tokens: int = 64,
        temperature: float = 0.0,
    ) -> Optional[str]:
        started = time.monotonic()
        emit_current("oracle_call", task, {"prompt": user[:500]})
        try:
            reply = await asyncio.wait_for(
                self._client.complete(system, user, max_tokens, temperature),
                timeout=self._timeout,
            )
        except (OracleConfigError, OracleRateLimitError):
            raise
        except asyncio.TimeoutError:
            log.warning("Oracle task %s timed out after %.1fs", task, self._timeout)
            emit_current("oracle_fallback", task, {"reason": "timeout"})
            return None
        except OracleError as exc:
            log.warning("Oracle task %s failed: %s", task, exc)
            emit_current("oracle_fallback", task, {"reason": str(exc)[:200]})
            return None

        elapsed_ms = round((time.monotonic() - started) * 1000)
        log.info("Oracle task %s answered in %dms (%d chars)", task, elapsed_ms, len(reply))
        emit_current("oracle_response", task, {"reply": reply[:500], "elapsed_ms": elapsed_ms})
        return reply
