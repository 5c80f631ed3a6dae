"""Content enrichment: fetch the article page and extract readable text.

Enrichment never fails an item. When the page cannot be fetched or parsed,
the item falls back to text carried in its source metadata, and finally to
its title alone.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterable, Mapping, Optional

import httpx

from story_ingest.errors import EnrichmentError
from story_ingest.models.domain import EnrichedItem, ParsedItem
from story_ingest.utils.logging import get_logger

from .extraction import ExtractedArticle, extract_main_content

ExtractorFn = Callable[[str], Optional[ExtractedArticle]]

# titles shorter than this are replaced by the extracted page title
MIN_TITLE_CHARS = 10

_DEFAULT_HEADERS = {
    "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
    "Accept-Language": "en-US,en;q=0.9",
}


@dataclass(frozen=True)
class EnricherConfig:
    fetch_timeout_seconds: float = 10.0
    min_content_chars: int = 200
    fallback_min_chars: int = 50
    user_agent: str = "Mozilla/5.0 (compatible; StoryIngest/1.0)"


def build_embedding_text(title: str, full_content: str) -> str:
    if full_content:
        return f"{title}\n\n{full_content}"
    return title


def _metadata_candidates(metadata: Mapping[str, Any]) -> Iterable[Any]:
    yield metadata.get("rss_content")
    raw_item = metadata.get("raw_item")
    if isinstance(raw_item, Mapping):
        yield raw_item.get("content")
        yield raw_item.get("contentSnippet")
        yield raw_item.get("description")
    yield metadata.get("summary")
    yield metadata.get("anthropic_description")
    yield metadata.get("description")
    yield metadata.get("content")


def fallback_from_metadata(metadata: Optional[Mapping[str, Any]], min_chars: int = 50) -> Optional[str]:
    """First metadata text field longer than ``min_chars``, in preference order."""
    if not metadata:
        return None
    for candidate in _metadata_candidates(metadata):
        if isinstance(candidate, str) and len(candidate.strip()) > min_chars:
            return candidate.strip()
    return None


class ContentEnricher:
    """필요한 경우에만 원문을 가져와 본문을 보강한다."""

    def __init__(
        self,
        config: Optional[EnricherConfig] = None,
        *,
        client: Optional[httpx.Client] = None,
        extractor: ExtractorFn = extract_main_content,
    ) -> None:
        self.config = config or EnricherConfig()
        headers: Dict[str, str] = {**_DEFAULT_HEADERS, "User-Agent": self.config.user_agent}
        self._client = client or httpx.Client(
            timeout=self.config.fetch_timeout_seconds,
            headers=headers,
            follow_redirects=True,
        )
        self._extract = extractor
        self._logger = get_logger(__name__)

    def close(self) -> None:
        self._client.close()

    def needs_enrichment(self, item: ParsedItem) -> bool:
        return len(item.content or "") <= self.config.min_content_chars

    def enrich(self, item: ParsedItem) -> EnrichedItem:
        title = item.title
        full_content = item.content or ""

        if self.needs_enrichment(item):
            article = self._fetch_article(item)
            if article is not None:
                full_content = article.content
                if article.title and len(title.strip()) < MIN_TITLE_CHARS:
                    title = article.title
            else:
                fallback = fallback_from_metadata(item.original_metadata, self.config.fallback_min_chars)
                if fallback is not None:
                    full_content = fallback
                    self._logger.debug(
                        "enrich.metadata_fallback",
                        extra={"external_id": item.external_id, "chars": len(fallback)},
                    )

        return EnrichedItem(
            **item.model_dump(exclude={"title"}),
            title=title,
            full_content=full_content,
            embedding_text=build_embedding_text(title, full_content),
        )

    def _fetch_article(self, item: ParsedItem) -> Optional[ExtractedArticle]:
        extra = {"external_id": item.external_id, "url": item.url}
        try:
            markup = self.fetch_markup(item.url)
            article = self._extract(markup)
        except EnrichmentError as exc:
            self._logger.info("enrich.failed", extra={**extra, "error": str(exc)[:300]})
            return None
        except Exception as exc:
            self._logger.warning("enrich.unexpected_error", extra={**extra, "error": repr(exc)[:300]})
            return None
        if article is None or not article.content.strip():
            self._logger.info("enrich.empty", extra=extra)
            return None
        self._logger.debug(
            "enrich.extracted",
            extra={**extra, "before": len(item.content or ""), "after": len(article.content)},
        )
        return article

    def fetch_markup(self, url: str) -> str:
        try:
            resp = self._client.get(url, timeout=self.config.fetch_timeout_seconds)
            resp.raise_for_status()
        except httpx.TimeoutException as exc:
            raise EnrichmentError(f"fetch timeout: {url}") from exc
        except httpx.HTTPStatusError as exc:
            raise EnrichmentError(f"fetch status {exc.response.status_code}: {url}") from exc
        except (httpx.HTTPError, httpx.InvalidURL) as exc:
            raise EnrichmentError(f"fetch error: {exc}") from exc
        return resp.text
