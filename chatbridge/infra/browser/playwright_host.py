"""Playwright-backed TabHost: each page in one browser context is a tab."""

from __future__ import annotations

import asyncio
import logging
import uuid
from collections.abc import Awaitable, Callable

from playwright.async_api import BrowserContext, Page, Playwright, async_playwright
from playwright.async_api import Error as PlaywrightError

from chatbridge.config import AppConfig
from chatbridge.errors import DeliveryError, TabGoneError
from chatbridge.infra.browser.base import (
    ResponseCheck,
    ResponseStabilizer,
    TabInfo,
    TabMessage,
    TabMessageType,
)
from chatbridge.infra.browser.platforms import detect_platform
from chatbridge.infra.browser.selector_adapter import SelectorAdapter

logger = logging.getLogger(__name__)

ResponseHandler = Callable[[str, str, "str | None"], Awaitable[object]]
TabHandler = Callable[[str], Awaitable[object]]
RegisterHandler = Callable[[str, str], Awaitable[object]]

WATCH_INTERVAL_S = 2.0
WATCH_CEILING_S = 360.0


class PlaywrightTabHost:
    """TabHost over a single Playwright browser context.

    Tabs opened through ``open_tab`` on a recognised platform self-register
    to the pool. In always/never activation modes the host watches the page
    after a send and reports the finished reply through the response handler.
    """

    def __init__(self, config: AppConfig) -> None:
        self._config = config
        self._playwright: Playwright | None = None
        self._context: BrowserContext | None = None
        self._pages: dict[str, Page] = {}
        self._active: str | None = None
        self._watchers: dict[str, asyncio.Task] = {}
        self._on_response: ResponseHandler | None = None
        self._on_closed: TabHandler | None = None
        self._on_registered: RegisterHandler | None = None

    def set_handlers(
        self,
        on_response: ResponseHandler | None = None,
        on_closed: TabHandler | None = None,
        on_registered: RegisterHandler | None = None,
    ) -> None:
        """Late-bind controller callbacks (avoids circular dependency)."""
        self._on_response = on_response
        self._on_closed = on_closed
        self._on_registered = on_registered

    # --- Lifecycle ---

    async def start(self) -> None:
        browser_cfg = self._config.browser
        self._playwright = await async_playwright().start()
        launch_kwargs: dict = {"headless": browser_cfg.headless}
        if browser_cfg.channel:
            launch_kwargs["channel"] = browser_cfg.channel
        if browser_cfg.user_data_dir:
            self._context = await self._playwright.chromium.launch_persistent_context(
                browser_cfg.user_data_dir, **launch_kwargs,
            )
        else:
            browser = await self._playwright.chromium.launch(**launch_kwargs)
            self._context = await browser.new_context()
        logger.info("Browser started (headless=%s)", browser_cfg.headless)

    async def stop(self) -> None:
        # Shutdown is not a user closing tabs; keep persisted participants.
        self._on_closed = None
        self._on_response = None
        for task in self._watchers.values():
            task.cancel()
        self._watchers.clear()
        if self._context is not None:
            try:
                await self._context.close()
            except PlaywrightError:
                logger.debug("Error closing browser context", exc_info=True)
            self._context = None
        if self._playwright is not None:
            await self._playwright.stop()
            self._playwright = None
        self._pages.clear()
        logger.info("Browser stopped")

    # --- TabHost ---

    def _page(self, tab_handle: str) -> Page:
        page = self._pages.get(tab_handle)
        if page is None or page.is_closed():
            raise TabGoneError(tab_handle)
        return page

    def _adapter(self, tab_handle: str, page: Page) -> SelectorAdapter:
        platform_id = detect_platform(page.url, self._config.platforms)
        if platform_id is None:
            raise DeliveryError(f"No site adapter for {page.url}")
        return SelectorAdapter(page, self._config.platforms[platform_id])

    async def get_tab(self, tab_handle: str) -> TabInfo | None:
        page = self._pages.get(tab_handle)
        if page is None or page.is_closed():
            return None
        try:
            title = await page.title()
        except PlaywrightError:
            title = ""
        return TabInfo(
            handle=tab_handle,
            url=page.url,
            title=title,
            active=tab_handle == self._active,
            platform_id=detect_platform(page.url, self._config.platforms),
        )

    async def active_tab(self) -> str | None:
        if self._active and self._active in self._pages:
            return self._active
        return None

    async def activate(self, tab_handle: str) -> None:
        page = self._page(tab_handle)
        await page.bring_to_front()
        self._active = tab_handle

    async def send(self, tab_handle: str, message: TabMessage) -> dict:
        page = self._page(tab_handle)
        try:
            return await self._dispatch(tab_handle, page, message)
        except PlaywrightError as e:
            if page.is_closed():
                raise TabGoneError(tab_handle) from e
            raise DeliveryError(f"{message.type.value} failed on {tab_handle}: {e}") from e

    async def _dispatch(self, tab_handle: str, page: Page, message: TabMessage) -> dict:
        if message.type == TabMessageType.SEND_MESSAGE:
            adapter = self._adapter(tab_handle, page)
            baseline = await adapter.get_latest_response()
            if not await adapter.set_input_text(message.payload["text"]):
                raise DeliveryError(f"Could not set input text on {tab_handle}")
            if not await adapter.click_send():
                raise DeliveryError(f"Could not submit message on {tab_handle}")
            if message.payload.get("watch", True):
                self._start_watcher(tab_handle, adapter, baseline, message.payload.get("request_id"))
            return {"success": True}

        if message.type == TabMessageType.CHECK_RESPONSE:
            adapter = self._adapter(tab_handle, page)
            text = await adapter.get_latest_response() or ""
            return ResponseCheck(
                has_response=bool(text),
                text=text,
                length=len(text),
                is_generating=await adapter.is_generating(),
            ).to_reply()

        if message.type == TabMessageType.CHECK_AVAILABILITY:
            adapter = self._adapter(tab_handle, page)
            return (await adapter.check_availability()).to_doc()

        if message.type in (
            TabMessageType.CONVERSATION_STOPPED,
            TabMessageType.REMOVED_FROM_CONVERSATION,
        ):
            self._cancel_watcher(tab_handle)

        return {"success": True}

    async def open_tab(self, url: str) -> TabInfo:
        if self._context is None:
            raise RuntimeError("Browser not started")
        page = await self._context.new_page()
        tab_handle = self._adopt(page)
        await page.goto(url)
        await page.bring_to_front()
        self._active = tab_handle
        info = await self.get_tab(tab_handle)
        if info is None:
            raise TabGoneError(tab_handle)
        if info.platform_id and self._on_registered is not None:
            await self._on_registered(tab_handle, info.platform_id)
        return info

    async def close_tab(self, tab_handle: str) -> None:
        page = self._page(tab_handle)
        await page.close()

    # --- Internals ---

    def _adopt(self, page: Page) -> str:
        tab_handle = uuid.uuid4().hex[:12]
        self._pages[tab_handle] = page

        async def _closed(_page: Page) -> None:
            await self._handle_close(tab_handle)

        page.on("close", _closed)
        return tab_handle

    async def _handle_close(self, tab_handle: str) -> None:
        self._pages.pop(tab_handle, None)
        self._cancel_watcher(tab_handle)
        if self._active == tab_handle:
            self._active = None
        logger.info("Tab %s closed", tab_handle)
        if self._on_closed is not None:
            await self._on_closed(tab_handle)

    def _start_watcher(
        self, tab_handle: str, adapter: SelectorAdapter, baseline: str | None, request_id: str | None,
    ) -> None:
        self._cancel_watcher(tab_handle)
        self._watchers[tab_handle] = asyncio.ensure_future(
            self._watch(tab_handle, adapter, baseline, request_id)
        )

    def _cancel_watcher(self, tab_handle: str) -> None:
        task = self._watchers.pop(tab_handle, None)
        if task is not None and task is not asyncio.current_task():
            task.cancel()

    async def _watch(
        self, tab_handle: str, adapter: SelectorAdapter, baseline: str | None, request_id: str | None,
    ) -> None:
        """Poll the page until the reply settles, then report it once."""
        stabilizer = ResponseStabilizer(baseline=baseline)
        loop = asyncio.get_running_loop()
        deadline = loop.time() + WATCH_CEILING_S
        try:
            while loop.time() < deadline:
                await asyncio.sleep(WATCH_INTERVAL_S)
                try:
                    text = await adapter.get_latest_response() or ""
                    check = ResponseCheck(
                        has_response=bool(text),
                        text=text,
                        length=len(text),
                        is_generating=await adapter.is_generating(),
                    )
                except PlaywrightError:
                    logger.debug("Watch poll failed on %s", tab_handle, exc_info=True)
                    continue
                if stabilizer.observe(check):
                    self._watchers.pop(tab_handle, None)
                    if self._on_response is not None:
                        await self._on_response(tab_handle, check.text, request_id)
                    return
            logger.warning("Gave up watching %s after %.0fs", tab_handle, WATCH_CEILING_S)
        finally:
            if self._watchers.get(tab_handle) is asyncio.current_task():
                self._watchers.pop(tab_handle, None)
