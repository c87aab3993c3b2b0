"""Strategy registry and selector.

Each strategy is registered with a matcher and a priority. Selection picks
the first match ordered by ``(priority, registration order)``; the generic
strategy handles everything else. Selection depends on the URL only, so it
happens before anything is fetched.
"""

from __future__ import annotations

import logging
import re
from collections import Counter
from dataclasses import dataclass
from typing import Callable, Protocol

from app.services.extractors.base import ParsingStrategy, StrategyKind
from app.services.url_normalizer import NormalizedURL

logger = logging.getLogger(__name__)

# Priority bands (lower runs first)
PRIORITY_SPA_BYPASS = 10
PRIORITY_PLATFORM_API = 20
PRIORITY_OEMBED_PROVIDER = 25
PRIORITY_STRUCTURED_METADATA = 30
PRIORITY_READABILITY = 40


class URLMatcher(Protocol):
    """Decides whether a strategy applies to a URL."""

    def matches(self, url: NormalizedURL) -> bool:
        ...


class DomainMatcher:
    """Matches a host (or any subdomain of it), optionally with a path regex.

    Args:
        domains: Registrable domains such as ``"youtube.com"``.
        path_pattern: Regex searched against the URL path.
    """

    def __init__(self, *domains: str, path_pattern: str | None = None) -> None:
        self.domains = tuple(d.lower() for d in domains)
        self.path_pattern = re.compile(path_pattern) if path_pattern else None

    def matches(self, url: NormalizedURL) -> bool:
        host = url.host
        if not any(host == d or host.endswith("." + d) for d in self.domains):
            return False
        if self.path_pattern is not None:
            return bool(self.path_pattern.search(url.path))
        return True

    def __repr__(self) -> str:
        pattern = f", path={self.path_pattern.pattern!r}" if self.path_pattern else ""
        return f"DomainMatcher({', '.join(self.domains)}{pattern})"


class PredicateMatcher:
    """Wraps an arbitrary predicate over the normalized URL."""

    def __init__(self, predicate: Callable[[NormalizedURL], bool], label: str = "") -> None:
        self.predicate = predicate
        self.label = label or getattr(predicate, "__name__", "predicate")

    def matches(self, url: NormalizedURL) -> bool:
        return self.predicate(url)

    def __repr__(self) -> str:
        return f"PredicateMatcher({self.label})"


@dataclass(frozen=True)
class StrategyDescriptor:
    """A registered strategy with its selection rule."""

    strategy: ParsingStrategy
    matcher: URLMatcher
    kind: StrategyKind
    priority: int
    order: int

    @property
    def name(self) -> str:
        return self.strategy.name


class StrategyRegistry:
    """Ordered table of strategies plus the generic fallback.

    Also counts executions per strategy name so operators and tests can see
    which strategies actually ran.
    """

    def __init__(self, generic: ParsingStrategy) -> None:
        self.generic = generic
        self._descriptors: list[StrategyDescriptor] = []
        self.executions: Counter[str] = Counter()

    def register(
        self,
        strategy: ParsingStrategy,
        matcher: URLMatcher,
        *,
        kind: StrategyKind,
        priority: int,
    ) -> StrategyDescriptor:
        """Add a strategy to the table."""
        descriptor = StrategyDescriptor(
            strategy=strategy,
            matcher=matcher,
            kind=kind,
            priority=priority,
            order=len(self._descriptors),
        )
        self._descriptors.append(descriptor)
        self._descriptors.sort(key=lambda d: (d.priority, d.order))
        return descriptor

    @property
    def descriptors(self) -> list[StrategyDescriptor]:
        return list(self._descriptors)

    def select(self, url: NormalizedURL) -> ParsingStrategy:
        """Return the first matching strategy, or the generic one."""
        for descriptor in self._descriptors:
            try:
                matched = descriptor.matcher.matches(url)
            except Exception:
                logger.exception("Matcher for %s failed", descriptor.name)
                continue
            if matched:
                return descriptor.strategy
        return self.generic

    def record_execution(self, strategy: ParsingStrategy) -> None:
        self.executions[strategy.name] += 1


def build_default_registry(min_content_length: int = 500) -> StrategyRegistry:
    """Build the registry with every built-in strategy."""
    from app.services.extractors.generic import GenericStrategy
    from app.services.extractors.html_extractor import HTMLExtractor
    from app.services.extractors.oembed import OEmbedProviderStrategy
    from app.services.extractors.platforms import register_platform_strategies
    from app.services.extractors.spa import SPA_DOMAINS, SpaBypassStrategy

    extractor = HTMLExtractor(min_content_length=min_content_length)
    registry = StrategyRegistry(GenericStrategy(extractor))

    registry.register(
        SpaBypassStrategy(),
        DomainMatcher(*SPA_DOMAINS),
        kind=StrategyKind.SPA_BYPASS,
        priority=PRIORITY_SPA_BYPASS,
    )
    register_platform_strategies(registry, extractor)

    oembed = OEmbedProviderStrategy()
    registry.register(
        oembed,
        PredicateMatcher(oembed.matches, "oembed-providers"),
        kind=StrategyKind.PLATFORM_API,
        priority=PRIORITY_OEMBED_PROVIDER,
    )
    return registry
