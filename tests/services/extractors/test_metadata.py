"""Tests for page metadata helpers."""

from __future__ import annotations

import pytest
from bs4 import BeautifulSoup

from app.services.extractors.base import ContentType
from app.services.extractors.metadata import (
    PageMetadata,
    clean_title,
    estimate_reading_time,
    extract_metadata,
    infer_content_type,
    is_generic_title,
    make_excerpt,
    title_from_url,
)

BASE = "https://example.com/blog/post"

HEAD = """
<html><head>
<title>Fallback title | Example Blog</title>
<meta property="og:title" content="Open Graph title">
<meta name="twitter:title" content="Twitter title">
<meta name="description" content="Plain description">
<meta property="og:image" content="/images/cover.png">
<meta property="og:site_name" content="Example Blog">
<meta property="og:type" content="article">
<link rel="canonical" href="/blog/post-canonical">
<link rel="alternate" type="application/json+oembed" href="/oembed?url=x">
<script type="application/ld+json">
{"@context": "https://schema.org", "@graph": [
  {"@type": "WebSite", "name": "Example Blog"},
  {"@type": ["BlogPosting", "Article"], "headline": "LD headline"}
]}
</script>
<script type="application/ld+json">{not valid json</script>
</head><body></body></html>
"""


def parse(markup: str, base: str = BASE) -> PageMetadata:
    return extract_metadata(BeautifulSoup(markup, "lxml"), base)


class TestExtractMetadata:
    """Test suite for extract_metadata()."""

    def test_reads_all_sources(self) -> None:
        """Test that Open Graph, Twitter, links and JSON-LD are read."""
        meta = parse(HEAD)

        assert meta.title == "Fallback title | Example Blog"
        assert meta.og_title == "Open Graph title"
        assert meta.twitter_title == "Twitter title"
        assert meta.description == "Plain description"
        assert meta.image == "https://example.com/images/cover.png"
        assert meta.site_name == "Example Blog"
        assert meta.canonical_url == "https://example.com/blog/post-canonical"
        assert meta.oembed_url == "https://example.com/oembed?url=x"
        assert meta.has_structured is True

    def test_json_ld_graph_is_flattened(self) -> None:
        """Test that @graph items are collected and bad blocks are skipped."""
        meta = parse(HEAD)

        assert len(meta.json_ld) == 2
        assert meta.json_ld_types == ["WebSite", "BlogPosting", "Article"]

    def test_json_ld_image_fallback(self) -> None:
        """Test that a JSON-LD image is used when no og:image exists."""
        meta = parse(
            '<html><head><script type="application/ld+json">'
            '{"@type": "Product", "name": "Lamp", "image": {"url": "/lamp.jpg"}}'
            "</script></head></html>"
        )
        assert meta.image == "https://example.com/lamp.jpg"

    def test_empty_page(self) -> None:
        """Test that a page without metadata yields empty fields."""
        meta = parse("<html><body><p>text</p></body></html>")

        assert meta.title is None
        assert meta.image is None
        assert meta.has_structured is False
        assert meta.best_title() is None


class TestTitles:
    """Test suite for title selection and cleanup."""

    def test_best_title_prefers_open_graph(self) -> None:
        """Test title source priority."""
        assert parse(HEAD).best_title() == "Open Graph title"

    def test_best_title_falls_back_to_json_ld_then_title(self) -> None:
        """Test fallbacks when Open Graph is missing."""
        assert PageMetadata(json_ld=[{"headline": "LD"}], title="T").best_title() == "LD"
        assert PageMetadata(title="Only | Site", site_name="Site").best_title() == "Only"

    @pytest.mark.parametrize(
        "title,site,expected",
        [
            ("How tides work | Coastal Notes", None, "How tides work"),
            ("How tides work - Coastal Notes", "Coastal Notes", "How tides work"),
            ("A - B", None, "A - B"),
            ("No separator here", None, "No separator here"),
            ("  Extra   spaces  ", None, "Extra spaces"),
        ],
    )
    def test_clean_title(self, title, site, expected) -> None:
        """Test site-name suffix stripping."""
        assert clean_title(title, site) == expected

    @pytest.mark.parametrize(
        "title,domain",
        [(None, ""), ("", ""), ("Home", ""), ("Loading...", ""), ("example.com", "example.com"),
         ("www.example.com", "example.com"), ("example", "example.com")],
    )
    def test_generic_titles(self, title, domain) -> None:
        """Test placeholder and bare-domain titles."""
        assert is_generic_title(title, domain) is True

    def test_specific_title_is_not_generic(self) -> None:
        """Test that a real title passes."""
        assert is_generic_title("Understanding tide pools", "example.com") is False

    @pytest.mark.parametrize(
        "url,expected",
        [
            ("https://example.com/blog/how-tides_work.html", "How tides work"),
            ("https://example.com/caf%C3%A9-guide", "Café guide"),
            ("https://www.example.com/", "example.com"),
            ("https://example.com/items/12345", "example.com"),
        ],
    )
    def test_title_from_url(self, url, expected) -> None:
        """Test slug-derived titles."""
        assert title_from_url(url) == expected


class TestContentType:
    """Test suite for infer_content_type()."""

    @pytest.mark.parametrize(
        "meta,expected",
        [
            (PageMetadata(og_type="video.movie"), ContentType.VIDEO),
            (PageMetadata(og_type="music.song"), ContentType.AUDIO),
            (PageMetadata(og_type="product"), ContentType.PRODUCT),
            (PageMetadata(og_type="website", json_ld=[{"@type": "Product"}]), ContentType.PRODUCT),
            (PageMetadata(json_ld=[{"@type": "SoftwareSourceCode"}]), ContentType.CODE),
            (PageMetadata(og_type="website"), ContentType.ARTICLE),
            (PageMetadata(), ContentType.ARTICLE),
        ],
    )
    def test_infer(self, meta, expected) -> None:
        """Test og:type and JSON-LD mapping."""
        assert infer_content_type(meta) == expected


class TestTextHelpers:
    """Test suite for reading time and excerpts."""

    def test_reading_time(self) -> None:
        """Test 200 words per minute, rounded up."""
        assert estimate_reading_time("") == 0
        assert estimate_reading_time("word") == 1
        assert estimate_reading_time("word " * 200) == 1
        assert estimate_reading_time("word " * 201) == 2

    def test_excerpt_cuts_at_word_boundary(self) -> None:
        """Test excerpt truncation."""
        excerpt = make_excerpt("alpha beta gamma delta", limit=12)
        assert excerpt == "alpha beta…"

    def test_short_excerpt_is_unchanged(self) -> None:
        """Test short text and whitespace handling."""
        assert make_excerpt("  short\n text ") == "short text"
        assert make_excerpt("   ") is None
