from __future__ import annotations

import logging
from typing import Protocol

from playwright.async_api import Browser, BrowserContext, Page, Playwright, async_playwright

from review_harvester.core.config import Settings

logger = logging.getLogger(__name__)


class DriverSession(Protocol):
    """Automation driver shared by every extraction of a job."""

    async def start(self) -> None: ...

    async def close(self) -> None: ...


class BrowserSession:
    """One Chromium browser with a single page, reused across portals."""

    def __init__(
        self,
        *,
        headless: bool = True,
        executable_path: str | None = None,
        locale: str = "ko-KR",
        timezone_id: str = "Asia/Seoul",
        user_agent: str | None = None,
        viewport_width: int = 1280,
        viewport_height: int = 800,
    ) -> None:
        self.headless = headless
        self.executable_path = executable_path
        self.locale = locale
        self.timezone_id = timezone_id
        self.user_agent = user_agent
        self.viewport = {"width": viewport_width, "height": viewport_height}
        self._playwright: Playwright | None = None
        self._browser: Browser | None = None
        self._context: BrowserContext | None = None
        self._page: Page | None = None

    @classmethod
    def from_settings(cls, settings: Settings) -> BrowserSession:
        return cls(
            headless=settings.browser_headless,
            executable_path=settings.browser_executable_path,
            locale=settings.browser_locale,
            timezone_id=settings.timezone,
            user_agent=settings.browser_user_agent,
            viewport_width=settings.browser_viewport_width,
            viewport_height=settings.browser_viewport_height,
        )

    @property
    def page(self) -> Page:
        if self._page is None:
            raise RuntimeError("browser session is not started")
        return self._page

    async def start(self) -> None:
        if self._page is not None:
            return
        self._playwright = await async_playwright().start()
        try:
            launch_kwargs: dict[str, object] = {"headless": self.headless}
            if self.executable_path:
                launch_kwargs["executable_path"] = self.executable_path
            self._browser = await self._playwright.chromium.launch(**launch_kwargs)
            accept_language = f"{self.locale},{self.locale.split('-')[0]};q=0.9,en-US;q=0.8,en;q=0.7"
            self._context = await self._browser.new_context(
                user_agent=self.user_agent,
                locale=self.locale,
                timezone_id=self.timezone_id,
                viewport=self.viewport,
                extra_http_headers={"Accept-Language": accept_language},
            )
            self._page = await self._context.new_page()
        except Exception:
            await self.close()
            raise
        logger.info("browser session started headless=%s locale=%s", self.headless, self.locale)

    async def close(self) -> None:
        browser, playwright = self._browser, self._playwright
        self._page = None
        self._context = None
        self._browser = None
        self._playwright = None
        if browser is not None:
            try:
                await browser.close()
            except Exception as exc:
                logger.warning("browser close failed: %s", exc)
        if playwright is not None:
            try:
                await playwright.stop()
            except Exception as exc:
                logger.warning("playwright stop failed: %s", exc)
