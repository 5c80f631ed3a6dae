"""Readability-style main-content extraction.

Order:
1. readability-lxml main article body
2. whole-page body text, when it is substantial (last resort)

Extraction is CPU-bound and never touches the network.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from lxml import html as lxml_html
from lxml.etree import ParserError
from readability import Document
from readability.readability import Unparseable

from story_ingest.errors import EnrichmentError

BODY_FALLBACK_MIN_CHARS = 100
BODY_FALLBACK_MAX_CHARS = 2000


@dataclass(frozen=True)
class ExtractedArticle:
    content: str
    title: str = ""


def _clean_lines(text: str) -> str:
    lines = [" ".join(line.split()) for line in text.splitlines()]
    return "\n".join(line for line in lines if line)


def _text_of(markup: str) -> str:
    tree = lxml_html.fromstring(markup)
    for bad in tree.xpath("//script|//style|//nav|//footer|//aside|//noscript"):
        bad.drop_tree()
    return _clean_lines(tree.text_content())


def extract_with_readability(markup: str) -> Optional[ExtractedArticle]:
    doc = Document(markup)
    summary_html = doc.summary(html_partial=True)
    text = _text_of(summary_html) if summary_html else ""
    if not text:
        return None
    return ExtractedArticle(content=text, title=(doc.short_title() or "").strip())


def extract_body_text(markup: str) -> Optional[ExtractedArticle]:
    tree = lxml_html.fromstring(markup)
    title = (tree.findtext(".//title") or "").strip()
    body = tree.find(".//body")
    if body is None:
        return None
    for bad in body.xpath(".//script|.//style|.//nav|.//footer|.//aside|.//noscript"):
        bad.drop_tree()
    text = _clean_lines(body.text_content())
    if len(text) <= BODY_FALLBACK_MIN_CHARS:
        return None
    if len(text) > BODY_FALLBACK_MAX_CHARS:
        text = text[:BODY_FALLBACK_MAX_CHARS] + "..."
    return ExtractedArticle(content=text, title=title)


def extract_main_content(markup: str) -> Optional[ExtractedArticle]:
    """Return the article body of ``markup`` or None when nothing usable was found.

    Raises EnrichmentError when the markup cannot be parsed at all.
    """
    if not markup or not markup.strip():
        return None
    try:
        article = extract_with_readability(markup)
        if article is not None:
            return article
        return extract_body_text(markup)
    except (ParserError, Unparseable, ValueError) as exc:
        raise EnrichmentError(f"article extraction failed: {exc}") from exc
