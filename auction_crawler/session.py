"""
Session Provider
================
Isolated browsing sessions ("tabs") consumed by the sweep core.

The core never touches raw browser primitives; it goes through the
``SessionProvider`` contract.  ``PlaywrightSessionProvider`` is the
production implementation:

- Single browser instance per run
- One fresh ``BrowserContext`` + ``Page`` per session, so cookies, route
  handlers and response listeners never leak between ranges
- Resource blocking (images, fonts, media)
- Optional ``storage_state`` file injected into every context (cookies)

Use ``session_scope`` to acquire a session; it is always released, on
success, failure and cancellation alike.
"""

from __future__ import annotations

import asyncio
import logging
import random
from abc import ABC, abstractmethod
from contextlib import asynccontextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Any, AsyncIterator, Awaitable, Callable, Optional

from playwright.async_api import async_playwright, Browser, BrowserContext, Page
from playwright.async_api import Error as PlaywrightError
from playwright.async_api import TimeoutError as PlaywrightTimeout

from .errors import NavigationFailed, NavigationTimeout
from .run_config import CrawlerRunConfig

logger = logging.getLogger(__name__)

# Resource types to block for speed
_BLOCKED_RESOURCE_TYPES = frozenset([
    "image", "media", "font",
])

ResponsePredicate = Callable[[str, int], bool]


# ---------------------------------------------------------------------------
# Contract
# ---------------------------------------------------------------------------

class SessionProvider(ABC):
    """Abstract session provider.

    Handles are opaque to the core; they are only ever passed back to the
    provider that created them.
    """

    async def start(self) -> None:
        """Acquire shared resources (browser). Default: nothing."""

    async def stop(self) -> None:
        """Release shared resources. Default: nothing."""

    @abstractmethod
    async def open_session(self, name: str) -> Any:
        """Open an isolated session and return its handle."""
        ...

    @abstractmethod
    async def close_session(self, handle: Any) -> None:
        """Destroy the session. Must be safe to call on a half-broken handle."""
        ...

    @abstractmethod
    async def navigate(
        self,
        handle: Any,
        url: str,
        *,
        wait_until: str = "networkidle",
        timeout_ms: int = 60000,
    ) -> Optional[int]:
        """Navigate and return the HTTP status (None if unknown).

        Raises ``NavigationTimeout`` / ``NavigationFailed``.
        """
        ...

    @abstractmethod
    async def capture_content(self, handle: Any) -> str:
        """Return the current page HTML."""
        ...

    @abstractmethod
    def on_response(self, handle: Any, callback: Callable[[Any], Awaitable[None]]) -> None:
        """Register *callback* for every network response of the session."""
        ...

    @abstractmethod
    async def perform_interaction(self, handle: Any, kind: str, **options) -> bool:
        """Run an interaction primitive (``mouse_move``, ``scroll``, ``wait``, ``click``)."""
        ...

    @abstractmethod
    async def evaluate(self, handle: Any, script: str, arg: Any = None) -> Any:
        """Evaluate *script* in the page and return its result."""
        ...

    @abstractmethod
    async def expect_response(
        self,
        handle: Any,
        predicate: ResponsePredicate,
        action: Callable[[], Awaitable[bool]],
        *,
        timeout_ms: int = 30000,
    ) -> bool:
        """Run *action* and wait for a response matching *predicate*.

        Returns True only if the action reported it acted AND a matching
        response arrived within the timeout.
        """
        ...


@asynccontextmanager
async def session_scope(provider: SessionProvider, name: str) -> AsyncIterator[Any]:
    """Acquire a session, yield it, always close it."""
    handle = await provider.open_session(name)
    try:
        yield handle
    finally:
        try:
            await asyncio.shield(provider.close_session(handle))
        except Exception as e:
            logger.debug(f"[SESSION] Close failed for {name}: {e}")


# ---------------------------------------------------------------------------
# Playwright implementation
# ---------------------------------------------------------------------------

@dataclass
class SessionHandle:
    """Playwright session: one context, one page."""
    name: str
    context: BrowserContext
    page: Page


class _ActionNotPerformed(Exception):
    """Raised inside ``expect_response`` when the action did nothing."""


class PlaywrightSessionProvider(SessionProvider):
    """
    Session provider backed by async Playwright (Chromium).

    Usage::

        provider = PlaywrightSessionProvider(config)
        await provider.start()
        async with session_scope(provider, "probe-250-500") as handle:
            await provider.navigate(handle, url)
        await provider.stop()
    """

    def __init__(self, config: CrawlerRunConfig = None):
        self.config = config or CrawlerRunConfig()
        self._playwright = None
        self._browser: Optional[Browser] = None

    async def start(self) -> None:
        """Launch the shared browser."""
        if self._browser:
            return
        self._playwright = await async_playwright().start()
        width = self.config.viewport_width + random.randint(0, 99)
        height = self.config.viewport_height + random.randint(0, 99)
        self._browser = await self._playwright.chromium.launch(
            headless=self.config.headless,
            args=[
                '--no-sandbox',
                '--disable-setuid-sandbox',
                '--disable-dev-shm-usage',
                '--disable-gpu',
                f'--window-size={width},{height}',
                '--disable-blink-features=AutomationControlled',
            ]
        )
        logger.info(
            f"Playwright browser initialized (headless={self.config.headless}, "
            f"blocking={'images,fonts,media' if self.config.block_resources else 'none'})"
        )

    async def stop(self) -> None:
        """Close browser and Playwright."""
        if self._browser:
            try:
                await self._browser.close()
            except Exception as e:
                logger.debug(f"[SESSION] Browser close error: {e}")
            self._browser = None
        if self._playwright:
            try:
                await self._playwright.stop()
            except Exception as e:
                logger.debug(f"[SESSION] Playwright stop error: {e}")
            self._playwright = None

    async def open_session(self, name: str) -> SessionHandle:
        if not self._browser:
            await self.start()

        ctx_kwargs = dict(
            user_agent=self.config.user_agent,
            viewport={
                'width': self.config.viewport_width,
                'height': self.config.viewport_height,
            },
            locale='en-US',
            timezone_id='America/New_York',
        )
        state_path = self.config.storage_state
        if state_path:
            if Path(state_path).exists():
                ctx_kwargs['storage_state'] = state_path
            else:
                logger.warning(f"[SESSION] Storage state not found: {state_path}")

        try:
            context = await self._browser.new_context(**ctx_kwargs)
        except PlaywrightError as e:
            raise NavigationFailed(f"could not open session {name}: {e}") from e
        try:
            if self.config.block_resources:
                await context.route("**/*", self._route_handler)
            page = await context.new_page()
        except PlaywrightError as e:
            await self._close_context(context, name)
            raise NavigationFailed(f"could not open session {name}: {e}") from e
        except BaseException:
            await self._close_context(context, name)
            raise
        logger.debug(f"[SESSION] Opened {name}")
        return SessionHandle(name=name, context=context, page=page)

    async def close_session(self, handle: SessionHandle) -> None:
        try:
            await handle.page.close()
        except Exception:
            pass
        await self._close_context(handle.context, handle.name)
        logger.debug(f"[SESSION] Closed {handle.name}")

    async def _close_context(self, context: BrowserContext, name: str) -> None:
        try:
            await context.close()
        except Exception as e:
            if 'closed' not in str(e).lower():
                logger.debug(f"[SESSION] Context close error ({name}): {e}")

    async def _route_handler(self, route) -> None:
        """Block unnecessary resources for speed."""
        if route.request.resource_type in _BLOCKED_RESOURCE_TYPES:
            await route.abort()
            return
        await route.continue_()

    async def navigate(
        self,
        handle: SessionHandle,
        url: str,
        *,
        wait_until: str = "networkidle",
        timeout_ms: int = 60000,
    ) -> Optional[int]:
        try:
            response = await handle.page.goto(url, wait_until=wait_until, timeout=timeout_ms)
        except PlaywrightTimeout as e:
            raise NavigationTimeout(f"navigation to {url} timed out after {timeout_ms}ms") from e
        except PlaywrightError as e:
            raise NavigationFailed(f"navigation to {url} failed: {e}") from e
        return response.status if response is not None else None

    async def capture_content(self, handle: SessionHandle) -> str:
        try:
            return await handle.page.content()
        except PlaywrightError as e:
            raise NavigationFailed(f"could not read page content: {e}") from e

    def on_response(self, handle: SessionHandle, callback) -> None:
        handle.page.on('response', callback)

    async def perform_interaction(self, handle: SessionHandle, kind: str, **options) -> bool:
        page = handle.page
        try:
            if kind == 'mouse_move':
                moves = options.get('moves', 1)
                for _ in range(moves):
                    await page.mouse.move(
                        100 + random.random() * 100,
                        100 + random.random() * 100,
                        steps=10,
                    )
                return True
            if kind == 'scroll':
                await page.evaluate(
                    "top => window.scrollTo({top: top, behavior: 'smooth'})",
                    options.get('top', 100),
                )
                return True
            if kind == 'wait':
                await asyncio.sleep(options.get('seconds', 1.0))
                return True
            if kind == 'click':
                await page.click(options['selector'], timeout=options.get('timeout_ms', 5000))
                return True
        except (PlaywrightError, KeyError) as e:
            logger.debug(f"[SESSION] Interaction {kind} failed: {e}")
            return False
        raise ValueError(f"unknown interaction kind: {kind}")

    async def evaluate(self, handle: SessionHandle, script: str, arg: Any = None) -> Any:
        if arg is None:
            return await handle.page.evaluate(script)
        return await handle.page.evaluate(script, arg)

    async def expect_response(
        self,
        handle: SessionHandle,
        predicate: ResponsePredicate,
        action: Callable[[], Awaitable[bool]],
        *,
        timeout_ms: int = 30000,
    ) -> bool:
        try:
            async with handle.page.expect_response(
                lambda resp: predicate(resp.url, resp.status), timeout=timeout_ms
            ):
                if not await action():
                    raise _ActionNotPerformed()
            return True
        except _ActionNotPerformed:
            return False
        except PlaywrightTimeout:
            return False
