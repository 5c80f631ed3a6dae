"""Adapter abstraction and helpers.

Adapters turn one content origin into normalized ``ParsedItem`` lists. Parsing
of any particular feed format lives outside this package; adapters only have
to honour the contract below.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, Iterable, List, Mapping, Sequence, Union

from pydantic import ValidationError

from story_ingest.models.domain import ParsedItem
from story_ingest.utils.logging import get_logger

RawItem = Union[ParsedItem, Mapping[str, Any]]


class Adapter(ABC):
    """Fetches and parses items for a set of source slugs.

    ``fetch_and_parse`` must not raise for partial failures: return whatever
    subset succeeded. An empty list is always a valid answer.
    """

    adapter_id: str

    def fetch_and_parse(self, source_slugs: Sequence[str]) -> List[ParsedItem]:
        raw = self._fetch_raw(list(source_slugs))
        return self._coerce_items(raw)

    @abstractmethod
    def _fetch_raw(self, source_slugs: List[str]) -> Iterable[RawItem]:
        """Return raw item dicts (or ready ParsedItems) from the upstream."""

    def _coerce_items(self, items: Iterable[RawItem]) -> List[ParsedItem]:
        logger = get_logger(__name__)
        seen: set[tuple[str, str]] = set()
        parsed: List[ParsedItem] = []
        for raw in items:
            try:
                item = raw if isinstance(raw, ParsedItem) else ParsedItem.model_validate(dict(raw))
            except (ValidationError, TypeError, ValueError) as exc:
                logger.warning(
                    "adapter.item_invalid",
                    extra={"adapter": self.adapter_id, "error": str(exc)[:300]},
                )
                continue
            key = (item.source_slug, item.external_id)
            if key in seen:
                continue
            seen.add(key)
            parsed.append(item)
        return parsed


FetcherFn = Callable[[List[str]], Iterable[RawItem]]


class FunctionAdapter(Adapter):
    """Adapter backed by an injected fetcher function.

    Useful for wiring existing scrapers and for tests/offline runs: the
    fetcher receives the slugs and returns raw item dicts.
    """

    def __init__(self, adapter_id: str, fetcher: FetcherFn) -> None:
        self.adapter_id = adapter_id
        self._fetcher = fetcher

    def _fetch_raw(self, source_slugs: List[str]) -> Iterable[RawItem]:
        return self._fetcher(source_slugs)


def item_from_feed_entry(source_slug: str, entry: Dict[str, Any]) -> Dict[str, Any]:
    """Map common RSS/Atom-style keys onto ParsedItem fields.

    The raw entry is kept under ``original_metadata.raw_item`` so the enricher
    can fall back to its description/snippet fields later.
    """
    url = str(entry.get("url") or entry.get("link") or "").strip()
    return {
        "external_id": str(entry.get("guid") or entry.get("id") or url).strip(),
        "source_slug": source_slug,
        "title": str(entry.get("title") or "").strip(),
        "url": url,
        "content": str(entry.get("content") or entry.get("summary") or "").strip(),
        "published_at": entry.get("published_at") or entry.get("published") or entry.get("pubDate") or entry.get("isoDate"),
        "author": entry.get("author") or entry.get("creator"),
        "image_url": entry.get("image_url"),
        "original_metadata": {"raw_item": dict(entry)},
    }
