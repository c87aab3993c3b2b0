"""Workspaces behind authentication: Notion, Jira.

Their content is private by default and must never be stored server-side,
so the result is always a webview.
"""

from __future__ import annotations

import logging
import re

from bs4 import BeautifulSoup

from app.exceptions import FetchError
from app.services.extractors.base import (
    ContentType,
    FallbackReason,
    StrategyContext,
    StrategyDraft,
    StrategyKind,
)
from app.services.extractors.metadata import extract_metadata, is_generic_title

logger = logging.getLogger(__name__)


class NotionStrategy:
    """Notion pages: public metadata when available, never the body."""

    name = "notion"
    kind = StrategyKind.STRUCTURED_METADATA

    async def parse(self, ctx: StrategyContext) -> StrategyDraft:
        draft = StrategyDraft(
            title="Notion page",
            content_type=ContentType.WEBVIEW,
            excerpt="View this page on Notion",
            confidence=0.5,
            final_url=ctx.url.url,
            strategy=self.name,
        )
        try:
            page = await ctx.probe()
        except FetchError as e:
            logger.info("Notion page not public (%s): %s", ctx.url.loggable, e)
            draft.fallback_reason = FallbackReason.PAYWALLED
            return draft

        meta = extract_metadata(BeautifulSoup(page.text, "lxml"), page.final_url)
        title = meta.best_title()
        if not is_generic_title(title, ctx.url.domain):
            draft.title = title
        draft.excerpt = meta.description or draft.excerpt
        draft.cover_image_url = meta.image
        draft.has_structured_metadata = meta.has_structured
        return draft


class JiraStrategy:
    """Jira issues: the key from the URL, nothing fetched."""

    name = "jira"
    kind = StrategyKind.STRUCTURED_METADATA

    _ISSUE_KEY = re.compile(r"/browse/([A-Z][A-Z0-9_]*-\d+)")

    async def parse(self, ctx: StrategyContext) -> StrategyDraft:
        match = self._ISSUE_KEY.search(ctx.url.path)
        return StrategyDraft(
            title=match.group(1) if match else "Jira issue",
            content_type=ContentType.WEBVIEW,
            excerpt="Jira issue, sign in to view",
            fallback_reason=FallbackReason.PAYWALLED,
            confidence=0.3,
            reading_time_minutes=0,
            final_url=ctx.url.url,
            strategy=self.name,
        )
