"""Model backends, prompts, orchestration and tools."""

from .client import (
    BackendChunk,
    ClientSettings,
    GenerationOptions,
    ModelBackend,
    OllamaClient,
    OpenAICompatibleClient,
    TransportError,
    create_backend,
)

__all__ = [
    "BackendChunk",
    "ClientSettings",
    "GenerationOptions",
    "ModelBackend",
    "OllamaClient",
    "OpenAICompatibleClient",
    "TransportError",
    "create_backend",
]
