"""Unit tests for quality scoring.

Tests cover:
- Weighted confidence from title, body, metadata and cleanliness signals
- Wall detection (bot, JavaScript, paywall, consent, encoding damage)
- The threshold rule: low confidence always yields a webview with a reason
- Strategy confidence overrides and fetch-error drafts
- Title, excerpt and reading time fallbacks
"""

from __future__ import annotations

import pytest

from app.services.extractors.base import ContentType, FallbackReason, StrategyDraft
from app.services.quality import (
    QualityScorer,
    detect_wall,
    has_encoding_damage,
    is_login_redirect,
)

URL = "https://example.com/posts/my-great-post"
DOMAIN = "example.com"
LONG_TEXT = "word " * 200


def article(**overrides) -> StrategyDraft:
    values = dict(
        title="A genuinely informative headline",
        content_html="<p>" + LONG_TEXT + "</p>",
        plain_text=LONG_TEXT,
        has_structured_metadata=True,
        strategy="generic",
    )
    values.update(overrides)
    return StrategyDraft(**values)


@pytest.fixture
def scorer() -> QualityScorer:
    return QualityScorer(min_content_length=500)


# -----------------------------------------------------------------------------
# Signals
# -----------------------------------------------------------------------------


class TestConfidence:
    """Tests for the weighted score."""

    def test_complete_article_scores_full(self, scorer):
        result = scorer.score(article(), URL, DOMAIN)
        assert result.confidence == 1.0
        assert result.content_type == ContentType.ARTICLE
        assert result.fallback_reason is None
        assert result.reading_time_minutes == 1
        assert result.content_html is not None

    def test_generic_title_loses_title_weight(self, scorer):
        result = scorer.score(article(title="Home"), URL, DOMAIN)
        assert result.confidence == 0.75

    def test_bare_domain_title_is_generic(self, scorer):
        result = scorer.score(article(title="example.com"), URL, DOMAIN)
        assert result.confidence == 0.75

    def test_short_body_scales_body_signal(self, scorer):
        text = "x" * 250
        result = scorer.score(article(plain_text=text, content_html=f"<p>{text}</p>"), URL, DOMAIN)
        assert result.confidence == pytest.approx(0.825)

    def test_metadata_partial_credit(self, scorer):
        draft = article(has_structured_metadata=False, excerpt="Summary")
        assert scorer.signals(draft, DOMAIN).metadata == 0.5

    def test_media_with_embed_counts_as_body(self, scorer):
        draft = StrategyDraft(
            title="A video",
            content_type=ContentType.VIDEO,
            content_html='<iframe src="https://www.youtube.com/embed/x"></iframe>',
            cover_image_url="https://i.ytimg.com/vi/x/hqdefault.jpg",
            has_embed=True,
        )
        result = scorer.score(draft, URL, DOMAIN)
        assert result.confidence == pytest.approx(0.9)
        assert result.content_type == ContentType.VIDEO
        assert result.reading_time_minutes == 0


# -----------------------------------------------------------------------------
# Walls and threshold
# -----------------------------------------------------------------------------


class TestWalls:
    """Tests for blocked-page detection."""

    def test_bot_challenge_becomes_webview(self, scorer):
        draft = article(
            title="Just a moment...",
            plain_text="Checking your browser before accessing the site.",
            has_structured_metadata=False,
        )
        result = scorer.score(draft, URL, DOMAIN)
        assert result.content_type == ContentType.WEBVIEW
        assert result.fallback_reason == FallbackReason.BOT_PROTECTED
        assert result.content_html is None
        assert result.confidence <= 0.2

    @pytest.mark.parametrize(
        "text,reason",
        [
            ("Please enable JavaScript to view this page.", FallbackReason.JS_REQUIRED),
            ("Subscribe to continue reading this story.", FallbackReason.PAYWALLED),
            ("Please log in to see this content.", FallbackReason.PAYWALLED),
            ("We value your privacy. Accept all cookies?", FallbackReason.LOW_CONFIDENCE),
            ("404 Not Found", FallbackReason.LOW_CONFIDENCE),
        ],
    )
    def test_detect_wall(self, text, reason):
        detected = detect_wall("Some page", text)
        assert detected is not None
        assert detected[0] == reason

    def test_wall_overrides_strategy_confidence(self, scorer):
        draft = article(
            title="Verify you are human",
            content_type=ContentType.PRODUCT,
            plain_text="Please complete the CAPTCHA to continue shopping.",
            confidence=0.6,
        )
        result = scorer.score(draft, URL, DOMAIN)
        assert result.content_type == ContentType.WEBVIEW
        assert result.fallback_reason == FallbackReason.BOT_PROTECTED
        assert result.content_html is None
        assert result.confidence <= 0.2

    def test_strategy_webview_is_not_rechecked(self, scorer):
        draft = StrategyDraft(
            title="Access denied",
            content_type=ContentType.WEBVIEW,
            fallback_reason=FallbackReason.PAYWALLED,
            confidence=0.5,
        )
        result = scorer.score(draft, URL, DOMAIN)
        assert result.confidence == 0.5
        assert result.fallback_reason == FallbackReason.PAYWALLED

    def test_long_article_quoting_a_wall_phrase_is_not_a_wall(self):
        text = "Many sites ask you to subscribe to continue. " + "content " * 400
        assert detect_wall("An essay on paywalls", text) is None

    def test_encoding_damage(self):
        assert has_encoding_damage("CafÃ© " * 50) is True
        assert has_encoding_damage("Café " * 50) is False
        assert has_encoding_damage("") is False


class TestThreshold:
    """Low confidence always degrades to a webview with a reason."""

    def test_strategy_confidence_is_kept(self, scorer):
        result = scorer.score(article(confidence=0.9, title="Home"), URL, DOMAIN)
        assert result.confidence == 0.9

    def test_low_override_becomes_webview(self, scorer):
        result = scorer.score(article(confidence=0.1), URL, DOMAIN)
        assert result.content_type == ContentType.WEBVIEW
        assert result.content_html is None
        assert result.fallback_reason == FallbackReason.LOW_CONFIDENCE

    def test_fetch_error_scores_zero(self, scorer):
        draft = StrategyDraft(
            title=None,
            content_type=ContentType.WEBVIEW,
            fallback_reason=FallbackReason.FETCH_ERROR,
            confidence=0.8,
        )
        result = scorer.score(draft, URL, DOMAIN)
        assert result.confidence == 0.0
        assert result.fallback_reason == FallbackReason.FETCH_ERROR
        assert result.title == "My great post"

    def test_reason_from_strategy_caps_score(self, scorer):
        result = scorer.score(article(fallback_reason=FallbackReason.PAYWALLED), URL, DOMAIN)
        assert result.confidence <= 0.2
        assert result.content_type == ContentType.WEBVIEW
        assert result.fallback_reason == FallbackReason.PAYWALLED

    def test_article_without_body_markup_becomes_webview(self, scorer):
        result = scorer.score(article(content_html=None), URL, DOMAIN)
        assert result.content_type == ContentType.WEBVIEW
        assert result.fallback_reason == FallbackReason.LOW_CONFIDENCE
        assert result.confidence <= 0.2

    @pytest.mark.parametrize("confidence", [0.0, 0.1, 0.29])
    def test_below_threshold_never_carries_html(self, scorer, confidence):
        result = scorer.score(article(confidence=confidence), URL, DOMAIN)
        assert result.is_webview
        assert result.content_html is None
        assert result.fallback_reason is not None


class TestFallbackFields:
    """Title, excerpt and reading time defaults."""

    def test_empty_title_uses_url_slug(self, scorer):
        result = scorer.score(article(title="  "), URL, DOMAIN)
        assert result.title == "My great post"

    def test_excerpt_from_text(self, scorer):
        result = scorer.score(article(), URL, DOMAIN)
        assert result.excerpt.startswith("word word")
        assert len(result.excerpt) <= 201

    def test_explicit_reading_time_is_kept(self, scorer):
        result = scorer.score(article(reading_time_minutes=7), URL, DOMAIN)
        assert result.reading_time_minutes == 7


class TestLoginRedirect:
    """Tests for is_login_redirect()."""

    def test_redirect_to_login_path(self):
        assert is_login_redirect(URL, "https://example.com/login?next=/posts/1") is True

    def test_redirect_to_identity_provider(self):
        assert is_login_redirect(URL, "https://accounts.google.com/signin") is True

    def test_requested_login_page_is_not_a_redirect(self):
        assert is_login_redirect("https://example.com/login", "https://example.com/login/") is False

    def test_no_redirect(self):
        assert is_login_redirect(URL, URL) is False
        assert is_login_redirect(URL, None) is False
