"""Readable article extraction using readability-lxml with trafilatura and newspaper4k fallbacks."""

from __future__ import annotations

import html as html_lib
import logging
import re
import time
from dataclasses import dataclass, field

import trafilatura
from bs4 import BeautifulSoup
from newspaper import Article
from readability import Document

from app.services.extractors.exceptions import EmptyContentError

logger = logging.getLogger(__name__)

# Control characters that break readability's lxml parse
_CONTROL_CHARS = str.maketrans("", "", "".join(chr(i) for i in range(0x20) if chr(i) not in "\t\n\r"))


@dataclass
class ExtractedArticle:
    """Readable body pulled out of a page."""

    content_html: str
    plain_text: str
    extraction_method: str = ""
    extraction_time_ms: float = 0.0
    warnings: list[str] = field(default_factory=list)


def text_to_html(text: str) -> str:
    paragraphs = [p.strip() for p in re.split(r"\n\s*\n|\n", text) if p.strip()]
    return "".join(f"<p>{html_lib.escape(p)}</p>" for p in paragraphs)


def _visible_text(markup: str) -> str:
    return BeautifulSoup(markup, "lxml").get_text(" ", strip=True)


class HTMLExtractor:
    """Extract the main readable body of an HTML page.

    Tiers, in order:
    1. readability-lxml (Mozilla Readability port, keeps markup)
    2. trafilatura with HTML output (keeps markup)
    3. newspaper4k (plain text re-wrapped in paragraphs)

    A later tier is only consulted when the earlier one came back shorter
    than ``min_content_length``; the longest result wins.
    """

    def __init__(self, min_content_length: int = 500) -> None:
        self.min_content_length = min_content_length

    def extract(self, html: str, url: str) -> ExtractedArticle:
        """Extract the readable body from HTML.

        Args:
            html: Raw HTML content to extract from
            url: Source URL for context and link resolution

        Returns:
            ExtractedArticle with body markup and visible text

        Raises:
            EmptyContentError: If no tier produced any text
        """
        start_time = time.perf_counter()
        warnings: list[str] = []

        best = self._try_readability(html, url)
        if best is None or len(best.plain_text) < self.min_content_length:
            for name, tier in (("trafilatura", self._try_trafilatura), ("newspaper4k", self._try_newspaper4k)):
                if best is not None:
                    warnings.append(
                        f"{best.extraction_method} returned only {len(best.plain_text)} chars, trying {name}"
                    )
                candidate = tier(html, url)
                if candidate is not None and (
                    best is None or len(candidate.plain_text) > len(best.plain_text)
                ):
                    best = candidate
                if len(best.plain_text if best else "") >= self.min_content_length:
                    break

        if best is None or not best.plain_text.strip():
            raise EmptyContentError(f"No readable content found at {url}")

        best.warnings = warnings
        best.extraction_time_ms = (time.perf_counter() - start_time) * 1000
        return best

    # ------------------------------------------------------------------
    # Tier 1: readability
    # ------------------------------------------------------------------

    def _try_readability(self, html: str, url: str) -> ExtractedArticle | None:
        """Extract using readability-lxml."""
        cleaned = html.translate(_CONTROL_CHARS)
        if not cleaned.strip():
            return None
        try:
            summary = Document(cleaned, url=url).summary(html_partial=True)
        except Exception as e:
            logger.warning("readability extraction failed: %s", e)
            return None

        text = _visible_text(summary)
        if not text:
            return None
        return ExtractedArticle(
            content_html=summary,
            plain_text=text,
            extraction_method="readability",
        )

    # ------------------------------------------------------------------
    # Tiers 2 and 3
    # ------------------------------------------------------------------

    def _try_trafilatura(self, html: str, url: str) -> ExtractedArticle | None:
        """Extract using trafilatura, keeping headings, lists and tables."""
        try:
            markup = trafilatura.extract(
                html,
                url=url,
                output_format="html",
                include_comments=False,
                include_tables=True,
                include_images=True,
                include_links=True,
                favor_recall=True,
            )
        except Exception as e:
            logger.warning("trafilatura extraction failed: %s", e)
            return None
        if not markup:
            return None

        soup = BeautifulSoup(markup, "lxml")
        root = soup.body or soup
        text = root.get_text(" ", strip=True)
        if not text:
            return None
        return ExtractedArticle(
            content_html=root.decode_contents() if root is not soup else str(soup),
            plain_text=text,
            extraction_method="trafilatura",
        )

    def _try_newspaper4k(self, html: str, url: str) -> ExtractedArticle | None:
        """Extract using newspaper4k as fallback."""
        try:
            article = Article(url)
            article.set_html(html)
            article.parse()
            text = article.text
        except Exception as e:
            logger.warning("newspaper4k extraction failed: %s", e)
            return None
        if not text:
            return None
        return ExtractedArticle(
            content_html=text_to_html(text),
            plain_text=text,
            extraction_method="newspaper4k",
        )
