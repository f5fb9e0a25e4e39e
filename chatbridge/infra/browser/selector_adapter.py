"""Selector-driven SiteAdapter over a Playwright page."""

from __future__ import annotations

import logging

from playwright.async_api import Error as PlaywrightError
from playwright.async_api import Locator, Page

from chatbridge.config import PlatformConfig
from chatbridge.models.participant import AvailabilitySnapshot

logger = logging.getLogger(__name__)


class SelectorAdapter:
    """Implements the SiteAdapter capability set from a PlatformConfig.

    Each selector list is tried in order; the first selector that matches
    anything wins.
    """

    def __init__(self, page: Page, platform: PlatformConfig) -> None:
        self._page = page
        self._platform = platform

    @property
    def name(self) -> str:
        return self._platform.name

    async def _find_first(self, selectors: list[str]) -> Locator | None:
        for selector in selectors:
            locator = self._page.locator(selector)
            if await locator.count() > 0:
                return locator.first
        return None

    async def _any_visible(self, selectors: list[str]) -> bool:
        for selector in selectors:
            locator = self._page.locator(selector)
            if await locator.count() > 0 and await locator.first.is_visible():
                return True
        return False

    async def get_input_field(self) -> Locator | None:
        return await self._find_first(self._platform.input_selectors)

    async def get_send_button(self) -> Locator | None:
        return await self._find_first(self._platform.send_selectors)

    async def set_input_text(self, text: str) -> bool:
        field = await self.get_input_field()
        if field is None:
            logger.warning("%s: input field not found", self.name)
            return False
        try:
            await field.click()
            await field.fill(text)
        except PlaywrightError:
            logger.warning("%s: failed to fill input", self.name, exc_info=True)
            return False
        return True

    async def click_send(self) -> bool:
        button = await self.get_send_button()
        try:
            if button is not None:
                await button.click()
                return True
            field = await self.get_input_field()
            if field is not None:
                await field.press("Enter")
                return True
        except PlaywrightError:
            logger.warning("%s: failed to submit", self.name, exc_info=True)
        return False

    async def get_latest_response(self) -> str | None:
        for selector in self._platform.response_selectors:
            locator = self._page.locator(selector)
            count = await locator.count()
            if count:
                text = await locator.nth(count - 1).inner_text()
                return text.strip()
        return None

    async def is_generating(self) -> bool:
        return await self._any_visible(self._platform.generating_selectors)

    async def check_availability(self) -> AvailabilitySnapshot:
        if await self._any_visible(self._platform.login_selectors):
            return AvailabilitySnapshot(available=False, reason="Login required", requires_login=True)
        if await self.get_input_field() is None:
            return AvailabilitySnapshot(available=False, reason="Input field not found")
        return AvailabilitySnapshot(available=True)
