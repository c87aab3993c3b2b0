"""Developer platforms with public JSON APIs: GitHub, Stack Overflow, Hacker News."""

from __future__ import annotations

import html as html_lib
import logging
import re
from urllib.parse import parse_qs, quote

from app.services.extractors.base import ContentType, StrategyContext, StrategyDraft, StrategyKind
from app.services.extractors.exceptions import StrategyError
from app.services.extractors.metadata import estimate_reading_time

logger = logging.getLogger(__name__)

GITHUB_API = "https://api.github.com"
STACKEXCHANGE_API = "https://api.stackexchange.com/2.3"
HACKER_NEWS_API = "https://hacker-news.firebaseio.com/v0"

# Includes question body in the response
STACKEXCHANGE_BODY_FILTER = "!9_bDDxJY5"

_GITHUB_RESERVED = frozenset({
    "about", "features", "marketplace", "orgs", "pricing", "settings",
    "sponsors", "topics", "trending", "explore", "login", "search",
})
_TAGS = re.compile(r"<[^>]+>")


def _text(markup: str) -> str:
    return html_lib.unescape(_TAGS.sub(" ", markup))


class GitHubStrategy:
    """Repository cards from the GitHub REST API."""

    name = "github"
    kind = StrategyKind.PLATFORM_API

    async def parse(self, ctx: StrategyContext) -> StrategyDraft:
        segments = [s for s in ctx.url.path.split("/") if s]
        if len(segments) < 2 or segments[0].lower() in _GITHUB_RESERVED:
            raise StrategyError(self.name, "not a repository URL")
        owner, repo = segments[0], segments[1].removesuffix(".git")

        data = await ctx.get_json(
            f"{GITHUB_API}/repos/{quote(owner)}/{quote(repo)}",
            headers={"Accept": "application/vnd.github+json"},
        )
        if not isinstance(data, dict) or "full_name" not in data:
            raise StrategyError(self.name, "unexpected repository payload")

        full_name = str(data["full_name"])
        description = str(data.get("description") or "")
        facts = [
            f"★ {data.get('stargazers_count', 0)}",
            f"Forks {data.get('forks_count', 0)}",
        ]
        if data.get("language"):
            facts.append(str(data["language"]))
        if isinstance(data.get("license"), dict) and data["license"].get("spdx_id"):
            facts.append(str(data["license"]["spdx_id"]))

        body = (
            f"<h2>{html_lib.escape(full_name)}</h2>"
            + (f"<p>{html_lib.escape(description)}</p>" if description else "")
            + f"<p>{html_lib.escape(' · '.join(facts))}</p>"
        )
        topics = data.get("topics") or []
        if topics:
            body += "<ul>" + "".join(f"<li>{html_lib.escape(str(t))}</li>" for t in topics) + "</ul>"

        owner_info = data.get("owner") if isinstance(data.get("owner"), dict) else {}
        return StrategyDraft(
            title=full_name,
            content_type=ContentType.CODE,
            content_html=body,
            cover_image_url=owner_info.get("avatar_url"),
            excerpt=description or "GitHub repository",
            plain_text=_text(body),
            has_structured_metadata=True,
            has_embed=True,
            reading_time_minutes=0,
            final_url=str(data.get("html_url") or ctx.url.url),
            strategy=self.name,
        )


class StackOverflowStrategy:
    """Questions from the Stack Exchange API, including the question body."""

    name = "stackoverflow"
    kind = StrategyKind.PLATFORM_API

    _QUESTION_ID = re.compile(r"/questions/(\d+)")

    async def parse(self, ctx: StrategyContext) -> StrategyDraft:
        match = self._QUESTION_ID.search(ctx.url.path)
        if not match:
            raise StrategyError(self.name, "no question id in URL")

        data = await ctx.get_json(
            f"{STACKEXCHANGE_API}/questions/{match.group(1)}"
            f"?site=stackoverflow&filter={STACKEXCHANGE_BODY_FILTER}"
        )
        items = data.get("items") if isinstance(data, dict) else None
        if not items:
            raise StrategyError(self.name, "question not found")
        question = items[0]

        body = str(question.get("body") or "")
        owner = question.get("owner") or {}
        plain = _text(body)
        return StrategyDraft(
            title=html_lib.unescape(str(question.get("title") or "")),
            content_type=ContentType.ARTICLE,
            content_html=body,
            cover_image_url=owner.get("profile_image"),
            excerpt=f"Stack Overflow question by {html_lib.unescape(str(owner.get('display_name') or 'unknown'))}",
            plain_text=plain,
            has_structured_metadata=True,
            reading_time_minutes=estimate_reading_time(plain),
            final_url=str(question.get("link") or ctx.url.url),
            strategy=self.name,
        )


class HackerNewsStrategy:
    """Items from the Hacker News Firebase API."""

    name = "hackernews"
    kind = StrategyKind.PLATFORM_API

    async def parse(self, ctx: StrategyContext) -> StrategyDraft:
        ids = parse_qs(ctx.url.query).get("id")
        if not ids or not ids[0].isdigit():
            raise StrategyError(self.name, "no item id in URL")

        data = await ctx.get_json(f"{HACKER_NEWS_API}/item/{ids[0]}.json")
        if not isinstance(data, dict) or not data.get("title"):
            raise StrategyError(self.name, "item not found")

        title = str(data["title"])
        text = data.get("text")
        link = data.get("url")
        if text:
            body = f"<p>{text}</p>"
        elif link:
            body = f'<p><a href="{html_lib.escape(link, quote=True)}">{html_lib.escape(title)}</a></p>'
        else:
            body = f"<p>{html_lib.escape(title)}</p>"

        comments = data.get("descendants") or 0
        return StrategyDraft(
            title=title,
            content_type=ContentType.ARTICLE,
            content_html=body,
            excerpt=f"Hacker News discussion with {comments} comments",
            plain_text=_text(body),
            has_structured_metadata=True,
            # A link post's value is the linked page, the card is enough
            has_embed=not text,
            final_url=ctx.url.url,
            strategy=self.name,
        )
