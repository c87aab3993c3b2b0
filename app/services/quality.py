"""Quality scoring: turns a strategy draft into a scored ParseResult.

Confidence is a weighted sum of four signals:

    title        0.25  usable title (not empty, placeholder or bare domain)
    body         0.35  extracted text relative to a minimum length; for
                       media types an embed or cover image satisfies it
    metadata     0.20  Open Graph / Twitter card / JSON-LD present
    clean        0.20  no blocked-page fingerprints

Detected walls cap the score below the threshold and name the reason.
Anything under the threshold is downgraded to a webview with no body.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from urllib.parse import urlsplit

from app.services.extractors.base import (
    MEDIA_TYPES,
    ContentType,
    FallbackReason,
    ParseResult,
    StrategyDraft,
)
from app.services.extractors.metadata import (
    estimate_reading_time,
    is_generic_title,
    make_excerpt,
    title_from_url,
)

logger = logging.getLogger(__name__)

TITLE_WEIGHT = 0.25
BODY_WEIGHT = 0.35
METADATA_WEIGHT = 0.20
CLEAN_WEIGHT = 0.20

CONFIDENCE_THRESHOLD = 0.3
# Score ceiling once a wall has been detected
WALL_CAP = 0.2
SOFT_FAILURE_CAP = 0.25

# Fingerprints in long articles are usually quotes, not walls
FINGERPRINT_TEXT_LIMIT = 2000

BOT_PATTERNS = (
    "captcha",
    "verify you are human",
    "verify you are a human",
    "are you a robot",
    "just a moment...",
    "checking your browser",
    "attention required",
    "cf-browser-verification",
    "ddos protection by",
    "unusual traffic from your computer",
    "access denied",
    "request blocked",
    "bot detection",
)

JS_REQUIRED_PATTERNS = (
    "please enable javascript",
    "you need to enable javascript",
    "javascript is required",
    "javascript is disabled",
    "enable javascript to run this app",
    "this site requires javascript",
    "your browser does not support javascript",
)

PAYWALL_PATTERNS = (
    "subscribe to continue",
    "subscribe to read",
    "subscribers only",
    "subscriber-only",
    "this content is for subscribers",
    "already a subscriber",
    "to continue reading",
    "member-only story",
    "members only",
    "premium content",
    "unlock this article",
    "this post is for paid subscribers",
    "jetzt abonnieren",
    "nur für abonnenten",
    "réservé aux abonnés",
    "solo para suscriptores",
    "riservato agli abbonati",
)

LOGIN_PATTERNS = (
    "sign in to continue",
    "log in to continue",
    "login to continue",
    "please log in",
    "please sign in",
    "login required",
    "you must be logged in",
    "sign in to view",
    "bitte melden sie sich an",
    "connectez-vous pour continuer",
    "inicia sesión para continuar",
)

CONSENT_PATTERNS = (
    "we value your privacy",
    "cookie consent",
    "accept all cookies",
    "manage cookie preferences",
    "manage your cookies",
    "before you continue to",
    "we use cookies",
    "wir verwenden cookies",
    "nous utilisons des cookies",
    "utilizamos cookies",
)

ERROR_PAGE_PATTERNS = (
    "404 not found",
    "page not found",
    "this page could not be found",
    "page you requested could not be found",
    "500 internal server error",
    "502 bad gateway",
    "503 service unavailable",
    "rate limit exceeded",
    "too many requests",
)

LOGIN_PATH_PATTERN = re.compile(
    r"(^|/)(login|log-in|signin|sign-in|sign_in|auth|sso|account/login|accounts/login|"
    r"session/new|users/sign_in|uas/login|checkpoint)(/|$|\?)",
    re.IGNORECASE,
)
LOGIN_HOSTS = ("accounts.google.com", "login.microsoftonline.com", "login.live.com", "auth0.com", "okta.com")

_MOJIBAKE = re.compile(r"Ã[\x80-\xbf]|â€[\x80-\xbf\x9c\x9d]")


def is_login_redirect(requested_url: str, final_url: str | None) -> bool:
    """Return True if a fetch for ``requested_url`` ended on a login page."""
    if not final_url or final_url == requested_url:
        return False
    final = urlsplit(final_url)
    host = (final.hostname or "").lower()
    if any(host == h or host.endswith("." + h) for h in LOGIN_HOSTS):
        return True
    requested_path = urlsplit(requested_url).path
    if LOGIN_PATH_PATTERN.search(requested_path):
        return False
    return bool(LOGIN_PATH_PATTERN.search(final.path))


def has_encoding_damage(text: str) -> bool:
    """Return True if text shows replacement characters or UTF-8 mojibake."""
    if not text:
        return False
    sample = text[:5000]
    damaged = sample.count("\ufffd") + len(_MOJIBAKE.findall(sample))
    return damaged / len(sample) > 0.02


def _contains(haystack: str, patterns: tuple[str, ...]) -> bool:
    return any(p in haystack for p in patterns)


def detect_wall(title: str | None, text: str) -> tuple[FallbackReason, float] | None:
    """Look for blocked-page fingerprints.

    Args:
        title: Draft title.
        text: Visible page text.

    Returns:
        (reason, score cap) for the first wall found, or None.
    """
    title_l = (title or "").lower()
    body_l = text[:FINGERPRINT_TEXT_LIMIT].lower() if len(text) < FINGERPRINT_TEXT_LIMIT else ""
    haystack = f"{title_l}\n{body_l}"

    if _contains(haystack, BOT_PATTERNS):
        return FallbackReason.BOT_PROTECTED, WALL_CAP
    if _contains(haystack, JS_REQUIRED_PATTERNS):
        return FallbackReason.JS_REQUIRED, WALL_CAP
    if _contains(haystack, PAYWALL_PATTERNS) or _contains(haystack, LOGIN_PATTERNS):
        return FallbackReason.PAYWALLED, WALL_CAP
    if _contains(haystack, CONSENT_PATTERNS) or _contains(haystack, ERROR_PAGE_PATTERNS):
        return FallbackReason.LOW_CONFIDENCE, SOFT_FAILURE_CAP
    if has_encoding_damage(text) or has_encoding_damage(title or ""):
        return FallbackReason.LOW_CONFIDENCE, SOFT_FAILURE_CAP
    return None


@dataclass(frozen=True)
class QualitySignals:
    """Individual signal values in [0, 1] before weighting."""

    title: float
    body: float
    metadata: float
    clean: float

    @property
    def confidence(self) -> float:
        return round(
            TITLE_WEIGHT * self.title
            + BODY_WEIGHT * self.body
            + METADATA_WEIGHT * self.metadata
            + CLEAN_WEIGHT * self.clean,
            3,
        )


class QualityScorer:
    """Scores drafts and enforces the webview fallback rule."""

    def __init__(
        self,
        min_content_length: int = 500,
        threshold: float = CONFIDENCE_THRESHOLD,
    ) -> None:
        self.min_content_length = min_content_length
        self.threshold = threshold

    def signals(self, draft: StrategyDraft, domain: str, wall: bool = False) -> QualitySignals:
        title = 0.0 if is_generic_title(draft.title, domain) else 1.0

        if draft.has_embed:
            body = 1.0
        elif draft.content_type in MEDIA_TYPES and draft.cover_image_url:
            body = 1.0
        else:
            body = min(1.0, draft.text_length / max(1, self.min_content_length))

        if draft.has_structured_metadata:
            metadata = 1.0
        elif draft.cover_image_url or draft.excerpt:
            metadata = 0.5
        else:
            metadata = 0.0

        return QualitySignals(title=title, body=body, metadata=metadata, clean=0.0 if wall else 1.0)

    def score(self, draft: StrategyDraft, url: str, domain: str) -> ParseResult:
        """Score a sanitized draft and build the final result.

        Args:
            draft: Strategy output, body already sanitized.
            url: Normalized request URL (used for fallback titles).
            domain: Display domain.

        Returns:
            ParseResult honouring the threshold rule.
        """
        reason = draft.fallback_reason
        if reason == FallbackReason.FETCH_ERROR:
            confidence = 0.0
        else:
            # A strategy that already chose a webview has nothing left to check
            decided = draft.confidence is not None and draft.content_type == ContentType.WEBVIEW
            wall = None if decided else detect_wall(draft.title, draft.plain_text)
            if draft.confidence is not None:
                confidence = max(0.0, min(1.0, draft.confidence))
            else:
                confidence = self.signals(draft, domain, wall=wall is not None).confidence
            if wall is not None:
                detected, cap = wall
                reason = reason or detected
                confidence = min(confidence, cap)
            if draft.confidence is None and reason is not None:
                confidence = min(confidence, WALL_CAP)

        content_type = draft.content_type
        content_html = draft.content_html
        if confidence < self.threshold:
            content_type = ContentType.WEBVIEW
            reason = reason or FallbackReason.LOW_CONFIDENCE
        if content_type == ContentType.WEBVIEW:
            content_html = None
        elif not content_html and content_type not in MEDIA_TYPES and not draft.cover_image_url:
            # Nothing to show offline
            content_type = ContentType.WEBVIEW
            reason = reason or FallbackReason.LOW_CONFIDENCE
            confidence = min(confidence, WALL_CAP)

        title = (draft.title or "").strip()
        if not title:
            title = title_from_url(draft.final_url or url)

        reading_time = draft.reading_time_minutes
        if reading_time is None:
            reading_time = (
                estimate_reading_time(draft.plain_text)
                if content_type == ContentType.ARTICLE
                else 0
            )

        logger.debug(
            "Scored %s via %s: confidence=%.3f type=%s reason=%s",
            domain,
            draft.strategy or "?",
            confidence,
            content_type.value,
            reason.value if reason else None,
        )
        return ParseResult(
            title=title,
            content_type=content_type,
            domain=domain,
            confidence=confidence,
            content_html=content_html,
            cover_image_url=draft.cover_image_url,
            fallback_reason=reason,
            excerpt=draft.excerpt or make_excerpt(draft.plain_text),
            reading_time_minutes=reading_time,
            final_url=draft.final_url,
            strategy=draft.strategy,
        )
