"""Embedding provider clients."""

from .embeddings import EmbeddingProvider, EmbeddingSettings, OpenAIEmbeddingProvider  # noqa: F401

__all__ = ["EmbeddingProvider", "EmbeddingSettings", "OpenAIEmbeddingProvider"]
