"""Platform-specific parse strategies.

Each strategy normalizes one platform's API or page format into a
StrategyDraft. ``register_platform_strategies`` holds the matcher and
priority table for all of them.
"""

from __future__ import annotations

import re
from typing import TYPE_CHECKING

from app.services.extractors.base import StrategyKind
from app.services.extractors.platforms import media
from app.services.extractors.platforms.community import (
    RedditStrategy,
    TrelloStrategy,
    WikipediaStrategy,
)
from app.services.extractors.platforms.developer import (
    GitHubStrategy,
    HackerNewsStrategy,
    StackOverflowStrategy,
)
from app.services.extractors.platforms.protected import JiraStrategy, NotionStrategy
from app.services.extractors.platforms.publishing import MediumStrategy, SubstackStrategy
from app.services.extractors.platforms.structured import (
    AmazonStrategy,
    FacebookStrategy,
    IMDbStrategy,
    InstagramStrategy,
)

if TYPE_CHECKING:
    from app.services.extractors.html_extractor import HTMLExtractor
    from app.services.extractors.registry import StrategyRegistry
    from app.services.url_normalizer import NormalizedURL

AMAZON_DOMAINS = (
    "amazon.com",
    "amazon.co.uk",
    "amazon.de",
    "amazon.fr",
    "amazon.it",
    "amazon.es",
    "amazon.ca",
    "amazon.co.jp",
    "amazon.in",
    "amazon.com.br",
    "amazon.com.mx",
    "amzn.to",
)

GITHUB_HOSTS = frozenset({"github.com", "www.github.com"})
_GITHUB_REPO_PATH = re.compile(r"^/[^/]+/[^/]+")


def is_github_repository(url: NormalizedURL) -> bool:
    # gist.github.com and other subdomains are not repositories
    return url.host in GITHUB_HOSTS and bool(_GITHUB_REPO_PATH.match(url.path))


def register_platform_strategies(registry: StrategyRegistry, extractor: HTMLExtractor) -> None:
    """Register every platform strategy with its matcher and priority."""
    from app.services.extractors.registry import (
        PRIORITY_PLATFORM_API,
        PRIORITY_READABILITY,
        PRIORITY_STRUCTURED_METADATA,
        DomainMatcher,
        PredicateMatcher,
    )

    api = dict(kind=StrategyKind.PLATFORM_API, priority=PRIORITY_PLATFORM_API)
    structured = dict(kind=StrategyKind.STRUCTURED_METADATA, priority=PRIORITY_STRUCTURED_METADATA)
    readability = dict(kind=StrategyKind.GENERIC_READABILITY, priority=PRIORITY_READABILITY)

    # --- oEmbed platforms ---
    registry.register(media.youtube(), DomainMatcher("youtube.com", path_pattern=r"^/(watch|shorts/|live/|embed/)"), **api)
    registry.register(media.youtube(), DomainMatcher("youtu.be", path_pattern=r"^/[\w-]+"), **api)
    registry.register(media.vimeo(), DomainMatcher("vimeo.com", path_pattern=r"^/(\d+|channels/|groups/|album/)"), **api)
    registry.register(media.spotify(), DomainMatcher("open.spotify.com", path_pattern=r"/(track|album|playlist|episode|show|artist)/"), **api)
    registry.register(media.soundcloud(), DomainMatcher("soundcloud.com", path_pattern=r"^/[^/]+/[^/]+"), **api)
    registry.register(media.tiktok(), DomainMatcher("tiktok.com", path_pattern=r"^/@[^/]+/video/"), **api)
    registry.register(media.twitch(), DomainMatcher("twitch.tv", path_pattern=r"^/(videos/|[^/]+/clip/|[^/]+$)"), **api)
    registry.register(media.figma(), DomainMatcher("figma.com", path_pattern=r"^/(file|proto|design|board)/"), **api)
    registry.register(media.pinterest(), DomainMatcher("pinterest.com", "pin.it", path_pattern=r"^/(pin/|[\w-]+$)"), **api)
    registry.register(media.linkedin(), DomainMatcher("linkedin.com", path_pattern=r"^/(posts|feed/update)/"), **api)

    # --- JSON APIs ---
    registry.register(GitHubStrategy(), PredicateMatcher(is_github_repository, "github-repository"), **api)
    registry.register(StackOverflowStrategy(), DomainMatcher("stackoverflow.com", path_pattern=r"^/questions/\d+"), **api)
    registry.register(HackerNewsStrategy(), DomainMatcher("news.ycombinator.com", path_pattern=r"^/item"), **api)
    registry.register(WikipediaStrategy(), DomainMatcher("wikipedia.org", path_pattern=r"^/wiki/."), **api)
    registry.register(RedditStrategy(), DomainMatcher("reddit.com", path_pattern=r"/comments/"), **api)
    registry.register(TrelloStrategy(), DomainMatcher("trello.com", path_pattern=r"^/[bc]/"), **api)

    # --- Page metadata ---
    registry.register(media.AppleMusicStrategy(), DomainMatcher("music.apple.com"), **structured)
    registry.register(AmazonStrategy(), DomainMatcher(*AMAZON_DOMAINS), **structured)
    registry.register(IMDbStrategy(), DomainMatcher("imdb.com", path_pattern=r"^/title/"), **structured)
    registry.register(InstagramStrategy(), DomainMatcher("instagram.com"), **structured)
    registry.register(FacebookStrategy(), DomainMatcher("facebook.com", "fb.watch"), **structured)
    registry.register(NotionStrategy(), DomainMatcher("notion.so", "notion.site"), **structured)
    registry.register(JiraStrategy(), DomainMatcher("atlassian.net", path_pattern=r"^/browse/"), **structured)

    # --- Readability with paywall detection ---
    registry.register(MediumStrategy(extractor), DomainMatcher("medium.com"), **readability)
    registry.register(SubstackStrategy(extractor), DomainMatcher("substack.com"), **readability)


__all__ = [
    "register_platform_strategies",
    "AmazonStrategy",
    "FacebookStrategy",
    "GitHubStrategy",
    "HackerNewsStrategy",
    "IMDbStrategy",
    "InstagramStrategy",
    "JiraStrategy",
    "MediumStrategy",
    "NotionStrategy",
    "RedditStrategy",
    "StackOverflowStrategy",
    "SubstackStrategy",
    "TrelloStrategy",
    "WikipediaStrategy",
]
