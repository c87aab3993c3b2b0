"""Exception hierarchy for content extraction."""

from __future__ import annotations


class ExtractionError(Exception):
    """Base exception for all extraction errors."""

    pass


class StrategyError(ExtractionError):
    """Raised when a platform answers with an unusable payload.

    The selector treats this as a signal to fall back to the generic
    strategy.
    """

    def __init__(self, strategy: str, message: str) -> None:
        self.strategy = strategy
        super().__init__(f"{strategy}: {message}")


class EmptyContentError(ExtractionError):
    """Raised when extraction produces insufficient content."""

    pass
