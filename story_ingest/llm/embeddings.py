"""OpenAI Embeddings 호출 래퍼.

SDK 없이 REST API를 httpx로 호출한다. HTTP 클라이언트를 주입할 수 있어
테스트에서 네트워크 없이 결정적 동작을 검증할 수 있다.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, List, Optional, Protocol, Sequence

import httpx

from story_ingest.errors import (
    EmbeddingProviderError,
    MalformedInputError,
    RateLimitError,
    TransientProviderError,
)
from story_ingest.settings import Settings


class EmbeddingProvider(Protocol):
    """``embed(texts)[i]`` is the vector for ``texts[i]``."""

    model_name: str

    def embed(self, texts: Sequence[str]) -> List[List[float]]: ...  # noqa: D401


@dataclass(frozen=True)
class EmbeddingSettings:
    model: str = "text-embedding-3-small"
    endpoint: str = "https://api.openai.com/v1/embeddings"
    request_timeout_seconds: float = 30.0
    api_key: Optional[str] = None

    @classmethod
    def from_settings(cls, settings: Settings) -> "EmbeddingSettings":
        key = settings.openai_api_key.get_secret_value().strip() if settings.openai_api_key else None
        return cls(
            model=settings.embedding_model,
            endpoint=settings.embedding_endpoint,
            request_timeout_seconds=float(settings.embedding_request_timeout_seconds),
            api_key=key or None,
        )


def _parse_vectors(data: Any, expected: int) -> List[List[float]]:
    rows = data.get("data") if isinstance(data, dict) else None
    if not isinstance(rows, list):
        raise MalformedInputError("embeddings 응답에 data 배열이 없습니다.")
    if len(rows) != expected:
        raise MalformedInputError(f"embedding count mismatch: got {len(rows)}, expected {expected}")
    # the API tags each row with its input index; do not trust response order
    try:
        ordered = sorted(rows, key=lambda row: int(row.get("index", 0)))
        return [[float(x) for x in row["embedding"]] for row in ordered]
    except (KeyError, TypeError, ValueError) as exc:
        raise MalformedInputError(f"embeddings 응답 형식 오류: {exc}") from exc


class OpenAIEmbeddingProvider:
    """Embedding provider over the OpenAI-compatible REST endpoint."""

    def __init__(self, settings: EmbeddingSettings, *, client: Optional[httpx.Client] = None) -> None:
        self.settings = settings
        self.model_name = settings.model
        self._client = client or httpx.Client(timeout=settings.request_timeout_seconds)

    def close(self) -> None:
        self._client.close()

    def embed(self, texts: Sequence[str]) -> List[List[float]]:
        if not self.settings.api_key:
            raise EmbeddingProviderError("OPENAI_API_KEY가 설정되지 않았습니다.")
        payload = {"input": list(texts), "model": self.settings.model}
        headers = {"Authorization": f"Bearer {self.settings.api_key}"}
        try:
            resp = self._client.post(
                self.settings.endpoint,
                headers=headers,
                json=payload,
                timeout=self.settings.request_timeout_seconds,
            )
        except httpx.TimeoutException as exc:
            raise TransientProviderError("임베딩 요청 타임아웃") from exc
        except httpx.HTTPError as exc:
            raise TransientProviderError(f"임베딩 요청 실패: {exc}") from exc

        if resp.status_code == 429:
            raise RateLimitError(f"임베딩 요청 한도 초과: {resp.text[:200]}")
        if resp.status_code >= 500:
            raise TransientProviderError(f"임베딩 서버 오류: {resp.status_code}")
        if resp.status_code >= 400:
            raise MalformedInputError(f"임베딩 요청 거부: {resp.status_code} {resp.text[:200]}")
        try:
            data = resp.json()
        except ValueError as exc:
            raise MalformedInputError("임베딩 응답 JSON 파싱 실패") from exc
        return _parse_vectors(data, len(texts))
