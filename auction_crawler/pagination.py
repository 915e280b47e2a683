"""
Pagination Continuation
=======================
Loads the next batch of results on an already-loaded search page.

Strategies are tried top-to-bottom on every call:

  1. ``SearchClientStrategy``   — drive the page's search-client object
  2. ``FrameworkEventStrategy`` — dispatch mouse events on the load-more control
  3. ``UiClickStrategy``        — raw UI click on the load-more control

A strategy succeeds only if it performed its control action AND a matching
search-results response arrived within the timeout.  The first success
wins; later strategies are not attempted.  There is no memory of which
strategy worked last time; any of them can fail intermittently
depending on page state.

All strategies failing means the listing is exhausted, which callers treat
as a normal stopping condition.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import Any, List, Optional, Sequence

from .errors import PaginationExhausted
from .session import ResponsePredicate, SessionProvider

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Page scripts
# ---------------------------------------------------------------------------

_SEARCH_CLIENT_NEXT_PAGE = """
() => {
    const candidates = [
        window.searchHelper,
        window.algoliaHelper,
        window.helper,
        window.search && window.search.helper,
    ];
    for (const h of candidates) {
        if (h && typeof h.setPage === 'function'
              && typeof h.getPage === 'function'
              && typeof h.search === 'function') {
            h.setPage(h.getPage() + 1).search();
            return true;
        }
    }
    return false;
}
"""

_DISPATCH_LOAD_MORE = """
(selector) => {
    const btn = document.querySelector(selector);
    if (!btn || btn.disabled) {
        return false;
    }
    btn.scrollIntoView({behavior: 'smooth', block: 'center'});
    window.dispatchEvent(new Event('scroll'));
    btn.dispatchEvent(new MouseEvent('mousedown', {bubbles: true}));
    btn.dispatchEvent(new MouseEvent('mouseup', {bubbles: true}));
    btn.dispatchEvent(new MouseEvent('click', {bubbles: true}));
    return true;
}
"""


# ---------------------------------------------------------------------------
# Strategies
# ---------------------------------------------------------------------------

class PaginationStrategy(ABC):
    """One way of asking the page for its next batch of results."""
    name: str = "strategy"

    @abstractmethod
    async def trigger(self, provider: SessionProvider, handle: Any) -> bool:
        """Perform the control action. Returns False if nothing was done."""
        ...


class SearchClientStrategy(PaginationStrategy):
    name = "search_client"

    async def trigger(self, provider: SessionProvider, handle: Any) -> bool:
        return bool(await provider.evaluate(handle, _SEARCH_CLIENT_NEXT_PAGE))


class FrameworkEventStrategy(PaginationStrategy):
    name = "framework_event"

    def __init__(self, selector: str = ".load-more-btn"):
        self.selector = selector

    async def trigger(self, provider: SessionProvider, handle: Any) -> bool:
        return bool(await provider.evaluate(handle, _DISPATCH_LOAD_MORE, self.selector))


class UiClickStrategy(PaginationStrategy):
    name = "ui_click"

    def __init__(self, selector: str = ".load-more-btn", timeout_ms: int = 5000):
        self.selector = selector
        self.timeout_ms = timeout_ms

    async def trigger(self, provider: SessionProvider, handle: Any) -> bool:
        return await provider.perform_interaction(
            handle, 'click', selector=self.selector, timeout_ms=self.timeout_ms,
        )


def default_strategies(load_more_selector: str = ".load-more-btn") -> List[PaginationStrategy]:
    return [
        SearchClientStrategy(),
        FrameworkEventStrategy(load_more_selector),
        UiClickStrategy(load_more_selector),
    ]


# ---------------------------------------------------------------------------
# Paginator
# ---------------------------------------------------------------------------

class Paginator:
    """Ordered strategy chain evaluated from the top on every call."""

    def __init__(
        self,
        provider: SessionProvider,
        response_predicate: ResponsePredicate,
        *,
        strategies: Optional[Sequence[PaginationStrategy]] = None,
        timeout_ms: int = 30000,
    ):
        self.provider = provider
        self.response_predicate = response_predicate
        self.strategies = list(strategies) if strategies is not None else default_strategies()
        self.timeout_ms = timeout_ms
        self.attempts: List[str] = []
        self.last_strategy: Optional[str] = None

    async def next_batch(self, handle: Any) -> bool:
        """Fetch the next batch. False means exhausted (or every strategy failed)."""
        self.attempts = []
        self.last_strategy = None
        for strategy in self.strategies:
            self.attempts.append(strategy.name)
            try:
                ok = await self.provider.expect_response(
                    handle,
                    self.response_predicate,
                    lambda s=strategy: s.trigger(self.provider, handle),
                    timeout_ms=self.timeout_ms,
                )
            except Exception as e:
                logger.debug(f"[PAGINATE] {strategy.name} raised: {e}")
                ok = False
            if ok:
                self.last_strategy = strategy.name
                logger.info(f"[PAGINATE] Next batch loaded via {strategy.name}")
                return True
            logger.debug(f"[PAGINATE] {strategy.name} failed")

        logger.info("[PAGINATE] All strategies failed — listing exhausted")
        return False

    async def advance(self, handle: Any) -> str:
        """Like ``next_batch`` but raises ``PaginationExhausted`` at the end.

        Returns the name of the strategy that loaded the batch.
        """
        if not await self.next_batch(handle):
            raise PaginationExhausted(f"exhausted after trying {', '.join(self.attempts)}")
        return self.last_strategy
