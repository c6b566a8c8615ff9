"""
Headless Chromium for receipt capture.

BrowserManager owns the Playwright process, browser and context. ReceiptPage
gets the receipt document into a page, and PlaywrightCaptureSurface is what
the capture stage drives once the document is showing.
"""

import asyncio
import time
from contextlib import asynccontextmanager
from typing import Any, Optional

from playwright.async_api import (
    Browser,
    BrowserContext,
    ConsoleMessage,
    Page,
    Playwright,
    Request,
    async_playwright,
)
from playwright.async_api import TimeoutError as PlaywrightTimeoutError

from ..utils.logger import final_tabs_logger, get_logger
from ..utils.metrics import get_metrics

logger = get_logger()
metrics = get_metrics()

# Receipts are posted as images, so render at 2x for a crisp PNG
DEFAULT_SCALE_FACTOR = 2.0
DEFAULT_USER_AGENT = (
    "Mozilla/5.0 (X11; Linux x86_64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/124.0.0.0 Safari/537.36 final-tabs"
)


class BrowserConfig:
    """Launch settings for the capture browser."""

    def __init__(
        self,
        headless: bool = True,
        timeout: int = 30000,
        viewport_width: int = 1200,
        viewport_height: int = 900,
        device_scale_factor: float = DEFAULT_SCALE_FACTOR,
        user_agent: Optional[str] = None,
    ):
        self.headless = headless
        self.timeout = timeout
        self.viewport_width = viewport_width
        self.viewport_height = viewport_height
        self.device_scale_factor = device_scale_factor
        self.user_agent = user_agent or DEFAULT_USER_AGENT


class BrowserManager:
    """Starts and stops one Chromium instance with a single browsing context."""

    # Container-friendly flags; the receipt page needs no GPU or extensions
    LAUNCH_ARGS = [
        "--no-sandbox",
        "--disable-setuid-sandbox",
        "--disable-dev-shm-usage",
        "--disable-gpu",
        "--no-first-run",
        "--disable-extensions",
        "--mute-audio",
    ]

    def __init__(self, config: Optional[BrowserConfig] = None):
        self.config = config or BrowserConfig()
        self._playwright: Optional[Playwright] = None
        self._browser: Optional[Browser] = None
        self._context: Optional[BrowserContext] = None

    async def initialize(self) -> None:
        """Start Playwright, launch Chromium and open a browser context."""
        start_time = time.time()
        logger.info(
            "Launching Chromium for receipt capture",
            extra={"headless": self.config.headless, "timeout": self.config.timeout},
        )

        try:
            self._playwright = await async_playwright().start()
            self._browser = await self._playwright.chromium.launch(
                headless=self.config.headless,
                args=self.LAUNCH_ARGS,
            )
            self._context = await self._browser.new_context(
                viewport={
                    "width": self.config.viewport_width,
                    "height": self.config.viewport_height,
                },
                device_scale_factor=self.config.device_scale_factor,
                user_agent=self.config.user_agent,
            )
            self._context.set_default_timeout(self.config.timeout)
        except Exception as e:
            final_tabs_logger.log_browser_operation(
                "launch", success=False, duration_ms=(time.time() - start_time) * 1000, error=str(e)
            )
            await self.cleanup()
            raise

        final_tabs_logger.log_browser_operation(
            "launch", success=True, duration_ms=(time.time() - start_time) * 1000
        )

    async def new_page(self) -> Page:
        """Open a page whose console output and errors go to the log."""
        if not self._context:
            raise RuntimeError("Browser not initialized. Call initialize() first.")

        page = await self._context.new_page()
        page.on("console", _log_console_message)
        page.on("pageerror", _log_page_error)
        page.on("requestfailed", _log_request_failed)
        return page

    async def cleanup(self) -> None:
        """Close context, browser and Playwright; errors are logged, not raised."""
        try:
            if self._context:
                await self._context.close()
                self._context = None
            if self._browser:
                await self._browser.close()
                self._browser = None
            if self._playwright:
                await self._playwright.stop()
                self._playwright = None
        except Exception as e:
            logger.error(
                "Browser shutdown failed",
                extra={"error": str(e), "error_type": type(e).__name__},
            )
            return

        logger.info("Browser closed")

    @asynccontextmanager
    async def get_page(self):
        page = None
        try:
            page = await self.new_page()
            yield page
        finally:
            if page:
                try:
                    await page.close()
                except Exception as e:
                    logger.warning("Receipt page did not close cleanly", extra={"error": str(e)})


def _log_console_message(message: ConsoleMessage) -> None:
    logger.debug("[BROWSER] " + message.text, extra={"console_type": message.type})


def _log_page_error(error: Any) -> None:
    logger.error("[BROWSER ERROR] " + str(error))


def _log_request_failed(request: Request) -> None:
    logger.warning("[REQUEST FAILED] " + request.url, extra={"failure": request.failure})


class ReceiptPage:
    """
    Puts the receipt document into a page.

    The document is normally rendered in-process and set as page content. A
    hosted copy can be opened by URL instead, with exponential backoff
    between attempts.
    """

    def __init__(
        self,
        page: Page,
        timeout: int = 30000,
        max_retries: int = 3,
        retry_delay: float = 1.0,
    ):
        self.page = page
        self.timeout = timeout
        self.max_retries = max_retries
        self.retry_delay = retry_delay

    async def open(self, html: str, url: Optional[str] = None) -> bool:
        """
        Show the receipt document.

        Args:
            html: Rendered receipt document, used when ``url`` is not given
            url: Hosted receipt page to open instead

        Returns:
            True once the document is loaded, False if it never loaded
        """
        start_time = time.time()
        if url:
            loaded = await self.open_url(url)
        else:
            loaded = await self.open_html(html)
        metrics.record_browser_operation("load_document", loaded, time.time() - start_time)
        return loaded

    async def open_html(self, html: str) -> bool:
        try:
            await self.page.set_content(html, timeout=self.timeout, wait_until="networkidle")
        except PlaywrightTimeoutError as e:
            logger.warning(
                "Receipt document did not finish loading",
                extra={"timeout": self.timeout, "error": str(e)},
            )
            return False

        logger.info("Receipt document loaded", extra={"bytes": len(html)})
        return True

    async def open_url(self, url: str) -> bool:
        for attempt in range(self.max_retries + 1):
            try:
                response = await self.page.goto(
                    url, wait_until="networkidle", timeout=self.timeout
                )
                if response and response.ok:
                    logger.info(
                        "Receipt page opened",
                        extra={"url": url, "status": response.status, "attempt": attempt + 1},
                    )
                    return True

                logger.warning(
                    "Receipt page returned an error status",
                    extra={"url": url, "status": response.status if response else None},
                )
            except PlaywrightTimeoutError as e:
                logger.warning(
                    "Receipt page timed out",
                    extra={"url": url, "attempt": attempt + 1, "error": str(e)},
                )
            except Exception as e:
                logger.error(
                    "Receipt page failed to open",
                    extra={
                        "url": url,
                        "attempt": attempt + 1,
                        "error": str(e),
                        "error_type": type(e).__name__,
                    },
                )

            if attempt < self.max_retries:
                await asyncio.sleep(self.retry_delay * (2**attempt))

        logger.error(
            "Giving up on receipt page",
            extra={"url": url, "attempts": self.max_retries + 1},
        )
        return False


class PlaywrightCaptureSurface:
    """
    Capture surface over a Playwright page.

    Waits and clicks report failure as False (bounded by their timeout);
    script errors and screenshot failures propagate.
    """

    def __init__(self, page: Page, default_timeout: int = 10000):
        self.page = page
        self.default_timeout = default_timeout

    async def wait_for(
        self, selector: str, timeout: Optional[int] = None, state: str = "visible"
    ) -> bool:
        timeout = timeout or self.default_timeout
        try:
            await self.page.wait_for_selector(selector, timeout=timeout, state=state)
        except PlaywrightTimeoutError:
            logger.debug(
                "Selector did not reach state",
                extra={"selector": selector, "state": state, "timeout": timeout},
            )
            return False
        except Exception as e:
            logger.error(
                "Waiting on selector failed",
                extra={"selector": selector, "error": str(e), "error_type": type(e).__name__},
            )
            return False
        return True

    async def click(self, selector: str) -> bool:
        if not await self.wait_for(selector):
            return False
        try:
            await self.page.click(selector, timeout=self.default_timeout)
        except PlaywrightTimeoutError:
            logger.warning("Click timed out", extra={"selector": selector})
            return False
        except Exception as e:
            logger.error(
                "Click failed",
                extra={"selector": selector, "error": str(e), "error_type": type(e).__name__},
            )
            return False
        return True

    async def evaluate(self, script: str, arg: Any = None) -> Any:
        return await self.page.evaluate(script, arg)

    async def screenshot(self, selector: str) -> bytes:
        start_time = time.time()
        image = await self.page.locator(selector).first.screenshot(
            type="png", timeout=self.default_timeout
        )
        metrics.record_browser_operation("screenshot", True, time.time() - start_time)
        return image


@asynccontextmanager
async def get_browser_manager(config: Optional[BrowserConfig] = None):
    """
    Run a block with a launched browser, closing it afterwards.

    Usage:
        async with get_browser_manager(config) as manager:
            async with manager.get_page() as page:
                await ReceiptPage(page).open(html)
    """
    manager = BrowserManager(config)
    try:
        await manager.initialize()
        yield manager
    finally:
        await manager.cleanup()
