"""Error taxonomy for the ingestion pipeline.

Errors below the batch boundary (enrichment, cache) are absorbed by the
component that raises them; the rest are counted in run statistics. Only
``CatalogError`` escapes ``IngestionOrchestrator.run``.
"""

from __future__ import annotations


class IngestionError(Exception):
    """Base ingestion error."""


class CatalogError(IngestionError):
    """활성 소스 목록을 조회할 수 없음 (치명적)."""


class AdapterError(IngestionError):
    """A whole adapter group failed to fetch."""


class UnknownAdapterError(AdapterError):
    """No adapter registered under the requested identifier."""


class DedupLookupError(IngestionError):
    """Existing-id lookup failed; callers fail open."""


class EnrichmentError(IngestionError):
    """Per-item content fetch/extraction failure."""


class CacheError(IngestionError):
    """Embedding cache store failure; always swallowed."""


class PersistenceError(IngestionError):
    """A single story upsert failed."""


class InputValidationError(IngestionError):
    """Invalid input; fails fast and is never retried."""


class NoTextsProvided(InputValidationError):
    """embed_batch called with an empty list."""

    def __init__(self, message: str = "No texts provided for embedding") -> None:
        super().__init__(message)


class EmbeddingProviderError(IngestionError):
    """임베딩 생성 실패."""


class RateLimitError(EmbeddingProviderError):
    """Provider throttled the request (HTTP 429)."""


class TransientProviderError(EmbeddingProviderError):
    """Network hiccup, timeout or 5xx from the provider."""


class MalformedInputError(EmbeddingProviderError, InputValidationError):
    """Provider rejected the payload or returned a malformed response."""
