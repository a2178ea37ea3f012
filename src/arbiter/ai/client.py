"""Async model backends that stream chat completions as text fragments.

Two transports are supported:

* :class:`OllamaClient` speaks the Ollama ``/api/chat`` NDJSON protocol over
  ``httpx``. Each line is ``{"message": {"role", "content"}, "done": bool}``.
* :class:`OpenAICompatibleClient` wraps ``AsyncOpenAI`` for any
  ``/v1/chat/completions`` endpoint.

Both yield :class:`BackendChunk` values and raise :class:`TransportError` for
network or protocol failures, so the conversation layer never sees
transport-specific exceptions.
"""

from __future__ import annotations

import inspect
import json
import logging
import math
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Dict, List, Mapping, Protocol, Sequence, runtime_checkable

import httpx
from openai import APIConnectionError, APIError, APIStatusError, AsyncOpenAI, RateLimitError
from tenacity import (
    AsyncRetrying,
    retry_if_exception,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

__all__ = [
    "ApproxByteCounter",
    "BackendChunk",
    "ClientSettings",
    "GenerationOptions",
    "LineParseError",
    "ModelBackend",
    "ModelLoadError",
    "OllamaClient",
    "OpenAICompatibleClient",
    "TransportError",
    "create_backend",
    "parse_stream_line",
]

LOGGER = logging.getLogger(__name__)
_DEFAULT_BYTES_PER_TOKEN = 4
_ERROR_BODY_PREVIEW = 200


# -----------------------------------------------------------------------------
# Errors
# -----------------------------------------------------------------------------


class TransportError(Exception):
    """The backend could not be reached or the stream broke."""


class ModelLoadError(TransportError):
    """A model could not be preloaded on the backend."""

    def __init__(self, model: str, message: str) -> None:
        self.model = model
        super().__init__(f"Failed to load model '{model}': {message}")


class LineParseError(ValueError):
    """One NDJSON line from the backend could not be decoded."""

    def __init__(self, line: str, reason: str) -> None:
        self.line = line
        super().__init__(f"{reason}: {line[:_ERROR_BODY_PREVIEW]!r}")


# -----------------------------------------------------------------------------
# Token estimation
# -----------------------------------------------------------------------------


class ApproxByteCounter:
    """Deterministic token estimate based on UTF-8 byte length."""

    def __init__(self, *, charset: str = "utf-8", bytes_per_token: int = _DEFAULT_BYTES_PER_TOKEN) -> None:
        self._charset = charset
        self._bytes_per_token = max(1, int(bytes_per_token))

    def count(self, text: str) -> int:
        if not text:
            return 0
        data = text.encode(self._charset, errors="ignore")
        return max(1, math.ceil(len(data) / self._bytes_per_token))


# -----------------------------------------------------------------------------
# Wire types
# -----------------------------------------------------------------------------


@dataclass(slots=True, frozen=True)
class BackendChunk:
    """One incremental piece of a streamed response."""

    content: str
    done: bool = False


@dataclass(slots=True, frozen=True)
class GenerationOptions:
    """Per-request sampling parameters.

    Attributes:
        model: Model identifier on the backend.
        temperature: Sampling temperature.
        context_size: Context window requested from the backend (``num_ctx``).
        max_tokens: Generation cap (``num_predict``); None leaves it to the server.
        server: Endpoint hosting ``model``; None uses the client's base URL.
    """

    model: str
    temperature: float = 0.7
    context_size: int | None = None
    max_tokens: int | None = None
    server: str | None = None


@dataclass(slots=True)
class ClientSettings:
    """Subset of settings required to configure a backend."""

    base_url: str = "http://localhost:11434"
    api_key: str = ""
    request_timeout: float | None = 300.0
    connect_timeout: float = 10.0
    max_retries: int = 3
    retry_min_seconds: float = 0.5
    retry_max_seconds: float = 6.0
    default_headers: Mapping[str, str] = field(default_factory=dict)
    debug_logging: bool = False


@runtime_checkable
class ModelBackend(Protocol):
    """What the conversation manager needs from a model server."""

    def stream_chat(
        self,
        messages: Sequence[Mapping[str, str]],
        options: GenerationOptions,
    ) -> AsyncIterator[BackendChunk]:
        ...

    async def load_model(self, model: str, *, server: str | None = None) -> None:
        ...

    async def list_models(self, *, server: str | None = None) -> List[str]:
        ...

    async def aclose(self) -> None:
        ...


def parse_stream_line(line: str) -> BackendChunk:
    """Decode one Ollama NDJSON line.

    Raises:
        LineParseError: If the line is not a JSON object of the expected shape.
    """
    try:
        payload = json.loads(line)
    except json.JSONDecodeError as exc:
        raise LineParseError(line, f"invalid JSON ({exc.msg})") from exc
    if not isinstance(payload, dict):
        raise LineParseError(line, "expected a JSON object")
    if "error" in payload:
        # Ollama reports mid-stream failures as {"error": "..."}.
        raise TransportError(str(payload["error"]))

    message = payload.get("message") or {}
    if not isinstance(message, dict):
        raise LineParseError(line, "'message' is not an object")
    content = message.get("content", "")
    if not isinstance(content, str):
        raise LineParseError(line, "'message.content' is not a string")
    return BackendChunk(content=content, done=bool(payload.get("done", False)))


# -----------------------------------------------------------------------------
# Ollama
# -----------------------------------------------------------------------------


class OllamaClient:
    """Streaming client for an Ollama server."""

    def __init__(
        self,
        settings: ClientSettings | None = None,
        *,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._settings = settings or ClientSettings()
        self._client = client or self._build_client(self._settings)

    @property
    def settings(self) -> ClientSettings:
        return self._settings

    async def stream_chat(
        self,
        messages: Sequence[Mapping[str, str]],
        options: GenerationOptions,
    ) -> AsyncIterator[BackendChunk]:
        """Stream a chat completion.

        Malformed lines are logged and skipped. The iterator ends after the
        first chunk with ``done`` set.

        Raises:
            TransportError: On connection failure, HTTP error status, or a
                stream that closes before reporting completion.
        """
        payload = self._build_chat_payload(messages, options)
        LOGGER.debug(
            "Starting streamed chat via %s on %s with %d message(s)",
            options.model,
            options.server or self._settings.base_url,
            len(payload["messages"]),
        )
        if self._settings.debug_logging:
            _log_prompt_payload(payload)

        try:
            async with self._client.stream("POST", _endpoint(options.server, "/api/chat"), json=payload) as response:
                if response.status_code >= 400:
                    body = (await response.aread()).decode("utf-8", errors="replace")
                    raise TransportError(
                        f"HTTP {response.status_code} from {response.request.url}: {body[:_ERROR_BODY_PREVIEW]}"
                    )
                async for line in response.aiter_lines():
                    if not line.strip():
                        continue
                    try:
                        chunk = parse_stream_line(line)
                    except LineParseError as exc:
                        LOGGER.warning("Skipping malformed stream line: %s", exc)
                        continue
                    yield chunk
                    if chunk.done:
                        return
        except httpx.HTTPError as exc:
            raise TransportError(f"{type(exc).__name__}: {exc}") from exc
        raise TransportError("Backend closed the stream before completion")

    async def load_model(self, model: str, *, server: str | None = None) -> None:
        """Ask the server to pull/load ``model`` so the next request does not stall.

        Args:
            model: Model to load.
            server: Endpoint hosting the model; defaults to the client's base URL.

        Raises:
            ModelLoadError: If the server rejects the request or stays unreachable.
        """
        LOGGER.info("Loading model %s on %s", model, server or self._settings.base_url)
        try:
            async for attempt in self._retrying():
                with attempt:
                    response = await self._client.post(
                        _endpoint(server, "/api/pull"),
                        json={"name": model, "stream": False},
                    )
        except httpx.HTTPError as exc:
            raise ModelLoadError(model, str(exc)) from exc
        if response.status_code >= 400:
            raise ModelLoadError(model, f"HTTP {response.status_code}: {response.text[:_ERROR_BODY_PREVIEW]}")

    async def list_models(self, *, server: str | None = None) -> List[str]:
        """Return the names of the models available on ``server``."""
        try:
            async for attempt in self._retrying():
                with attempt:
                    response = await self._client.get(_endpoint(server, "/api/tags"))
                    response.raise_for_status()
        except httpx.HTTPError as exc:
            raise TransportError(str(exc)) from exc
        models = response.json().get("models") or []
        return [item["name"] for item in models if isinstance(item, dict) and item.get("name")]

    async def aclose(self) -> None:
        await self._client.aclose()

    def _build_client(self, settings: ClientSettings) -> httpx.AsyncClient:
        timeout = httpx.Timeout(settings.request_timeout, connect=settings.connect_timeout)
        return httpx.AsyncClient(
            base_url=settings.base_url.rstrip("/"),
            timeout=timeout,
            headers=dict(settings.default_headers) or None,
        )

    def _build_chat_payload(
        self,
        messages: Sequence[Mapping[str, str]],
        options: GenerationOptions,
    ) -> Dict[str, Any]:
        sampling: Dict[str, Any] = {"temperature": options.temperature}
        if options.context_size:
            sampling["num_ctx"] = options.context_size
        if options.max_tokens:
            sampling["num_predict"] = options.max_tokens
        return {
            "model": options.model,
            "messages": [dict(message) for message in messages],
            "stream": True,
            "options": sampling,
        }

    def _retrying(self) -> AsyncRetrying:
        return AsyncRetrying(
            reraise=True,
            stop=stop_after_attempt(max(1, self._settings.max_retries)),
            wait=wait_exponential(
                multiplier=self._settings.retry_min_seconds,
                max=self._settings.retry_max_seconds,
            ),
            retry=retry_if_exception_type((httpx.TransportError, httpx.TimeoutException)),
        )


# -----------------------------------------------------------------------------
# OpenAI-compatible
# -----------------------------------------------------------------------------


class OpenAICompatibleClient:
    """Streaming client for ``/v1/chat/completions`` style servers."""

    def __init__(
        self,
        settings: ClientSettings,
        *,
        client: AsyncOpenAI | None = None,
    ) -> None:
        self._settings = settings
        self._client = client or self._build_client(settings)
        self._endpoint_clients: Dict[str, AsyncOpenAI] = {}

    @property
    def settings(self) -> ClientSettings:
        return self._settings

    async def stream_chat(
        self,
        messages: Sequence[Mapping[str, str]],
        options: GenerationOptions,
    ) -> AsyncIterator[BackendChunk]:
        """Stream a chat completion; the final chunk always has ``done`` set.

        ``options.server`` selects another ``/v1`` base URL for this request.
        """
        params: Dict[str, Any] = {
            "model": options.model,
            "messages": [dict(message) for message in messages],
            "temperature": options.temperature,
            "stream": True,
        }
        if options.max_tokens:
            params["max_tokens"] = options.max_tokens
        LOGGER.debug("Starting OpenAI-compatible stream via %s", options.model)
        if self._settings.debug_logging:
            _log_prompt_payload(params)

        try:
            stream = await self._client_for(options.server).chat.completions.create(**params)
            async for chunk in stream:
                choices = getattr(chunk, "choices", None) or []
                if not choices:
                    continue
                choice = choices[0]
                content = getattr(choice.delta, "content", None) or ""
                finished = getattr(choice, "finish_reason", None) is not None
                if content or finished:
                    yield BackendChunk(content=content, done=finished)
                if finished:
                    return
        except (APIError, httpx.HTTPError) as exc:
            raise TransportError(f"{type(exc).__name__}: {exc}") from exc
        yield BackendChunk(content="", done=True)

    async def load_model(self, model: str, *, server: str | None = None) -> None:
        # Hosted endpoints load models on demand.
        LOGGER.debug("Model %s selected (no preload for OpenAI-compatible backends)", model)

    async def list_models(self, *, server: str | None = None) -> List[str]:
        try:
            async for attempt in self._retrying():
                with attempt:
                    response = await self._client_for(server).models.list()
        except APIError as exc:
            raise TransportError(str(exc)) from exc
        return [item.id for item in response.data if getattr(item, "id", None)]

    async def aclose(self) -> None:
        close = getattr(self._client, "close", None)
        if close is None:
            return
        result = close()
        if inspect.isawaitable(result):
            await result

    def _build_client(self, settings: ClientSettings) -> AsyncOpenAI:
        return AsyncOpenAI(
            api_key=settings.api_key or "not-needed",
            base_url=settings.base_url,
            timeout=settings.request_timeout,
            default_headers=dict(settings.default_headers) or None,
        )

    def _client_for(self, server: str | None) -> AsyncOpenAI:
        if not server or server.rstrip("/") == self._settings.base_url.rstrip("/"):
            return self._client
        client = self._endpoint_clients.get(server)
        if client is None:
            # Copies share the underlying HTTP connection pool.
            client = self._client.with_options(base_url=server)
            self._endpoint_clients[server] = client
        return client

    def _retrying(self) -> AsyncRetrying:
        return AsyncRetrying(
            reraise=True,
            stop=stop_after_attempt(max(1, self._settings.max_retries)),
            wait=wait_exponential(
                multiplier=self._settings.retry_min_seconds,
                max=self._settings.retry_max_seconds,
            ),
            retry=retry_if_exception(_is_retryable_api_error),
        )


def _is_retryable_api_error(exc: BaseException) -> bool:
    """Retry connection failures, rate limits and server errors; never 4xx client errors."""
    if isinstance(exc, (APIConnectionError, RateLimitError, httpx.TimeoutException)):
        return True
    if isinstance(exc, APIStatusError):
        return exc.status_code >= 500
    return False


def create_backend(provider: str, settings: ClientSettings) -> ModelBackend:
    """Build the backend for ``provider`` (``"ollama"`` or ``"openai"``)."""
    normalized = (provider or "ollama").strip().lower()
    if normalized == "ollama":
        return OllamaClient(settings)
    if normalized in {"openai", "openai-compatible"}:
        return OpenAICompatibleClient(settings)
    raise ValueError(f"Unknown model provider '{provider}'")


def _endpoint(server: str | None, path: str) -> str:
    # Absolute URLs bypass the client's base_url.
    if not server:
        return path
    return f"{server.rstrip('/')}{path}"


def _log_prompt_payload(payload: Mapping[str, Any]) -> None:
    try:
        serialized = json.dumps(payload, ensure_ascii=False, indent=2)
    except (TypeError, ValueError):
        LOGGER.debug("Prompt payload (unserializable): %s", payload)
    else:
        LOGGER.debug("Prompt payload:\n%s", serialized)
