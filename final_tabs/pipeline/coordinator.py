"""
Autopost run coordination.

This module provides the AutopostCoordinator that sequences one run:
fetch today's and yesterday's finished games, build receipts, capture each
receipt in a headless browser, then post every receipt that is not already
in the post history.
"""

import asyncio
import time
from datetime import date, datetime, timedelta
from pathlib import Path
from typing import Optional, Union

from ..api.espn_client import ESPNClient
from ..api.x_client import TweepyPostingClient
from ..capture.browser import (
    BrowserConfig,
    PlaywrightCaptureSurface,
    ReceiptPage,
    get_browser_manager,
)
from ..capture.capture import CaptureTimeoutError, ReceiptCapturer
from ..posting.history import PostHistory
from ..posting.publisher import Publisher, PublishResult, PublishStatus
from ..receipts.builder import ReceiptBook, build_receipts
from ..receipts.document import render_document
from ..receipts.identity import parse_identity, receipt_identity, resolve_identity_date
from ..receipts.models import Game, Receipt, ReceiptCapture
from ..utils.logger import final_tabs_logger, get_logger
from ..utils.metrics import get_metrics
from .config import AutopostConfig
from .models import RunState, RunSummary

logger = get_logger()
metrics = get_metrics()

YESTERDAY_LABEL = "Yesterday"
TODAY_LABEL = "Today"


class AutopostError(Exception):
    """Raised when the run cannot continue (browser or page failure)."""

    pass


class AutopostCoordinator:
    """
    Orchestrates fetch -> build -> capture -> post for one run.

    The post history is the only state that outlives the run; it is loaded by
    the caller and passed in so tests and the CLI control where it lives.
    """

    def __init__(
        self,
        config: AutopostConfig,
        history: PostHistory,
        publisher: Publisher,
        espn_client: Optional[ESPNClient] = None,
        output_dir: Optional[Union[str, Path]] = None,
        reference_date: Optional[date] = None,
    ):
        """
        Initialize the coordinator.

        Args:
            config: Run configuration
            history: Post history, already loaded
            publisher: Publisher (dry run or live)
            espn_client: Provider client (built from config when omitted)
            output_dir: Also save every captured PNG here when set
            reference_date: "Today" for the run (defaults to today in the
                configured timezone)
        """
        self.config = config
        self.history = history
        self.publisher = publisher
        self.espn = espn_client or ESPNClient(
            base_url=config.espn_base_url,
            timeout=config.http_timeout,
            max_retries=config.http_max_retries,
        )
        self.output_dir = Path(output_dir) if output_dir else None
        self.reference_date = reference_date
        self.state = RunState.IDLE
        self._last_publish_at: Optional[float] = None

    @classmethod
    def from_config(
        cls, config: AutopostConfig, output_dir: Optional[Union[str, Path]] = None
    ) -> "AutopostCoordinator":
        """Build a coordinator with the live (or dry-run) publisher and history."""
        client = None
        if not config.dry_run:
            client = TweepyPostingClient.from_credentials(
                config.twitter_app_key,
                config.twitter_app_secret,
                config.twitter_access_token,
                config.twitter_access_secret,
            )
        return cls(
            config=config,
            history=PostHistory.load(config.history_file),
            publisher=Publisher(client, dry_run=config.dry_run),
            output_dir=output_dir,
        )

    def today(self) -> date:
        return self.reference_date or datetime.now(self.config.tz).date()

    async def run(self) -> RunSummary:
        """
        Execute one autopost run.

        Returns:
            RunSummary with counters, per-receipt results and exit code

        Raises:
            AutopostError: If the browser stage fails outside a capture timeout
        """
        summary = RunSummary()
        final_tabs_logger.log_run_start(self.config.public_summary())

        with metrics.time_operation("autopost_run", {"dry_run": str(self.config.dry_run).lower()}):
            book = await self.fetch_and_build(summary)

            if len(book) > 0:
                captures = await self.capture_stage(book, summary)
                self.state = RunState.POSTING
                await self.post_all(captures, summary)

        self.state = RunState.DONE
        final_tabs_logger.log_run_complete(
            {**summary.counters(), "exit_code": summary.exit_code}
        )
        return summary

    async def fetch_and_build(self, summary: RunSummary) -> ReceiptBook:
        """Fetch both target dates concurrently and build the run's ReceiptBook."""
        self.state = RunState.FETCHING
        today = self.today()
        yesterday = today - timedelta(days=1)

        games_by_date = await self.espn.fetch_finished_games_for_dates([yesterday, today])
        yesterday_games = games_by_date.get(yesterday, [])
        today_games = games_by_date.get(today, [])
        summary.games_found = len(yesterday_games) + len(today_games)

        if summary.games_found == 0:
            logger.info(
                "No finished games from today or yesterday",
                extra={"today": today.isoformat(), "yesterday": yesterday.isoformat()},
            )
            return ReceiptBook()

        self.state = RunState.BUILDING
        book = await self.build_book(
            [(YESTERDAY_LABEL, yesterday_games), (TODAY_LABEL, today_games)]
        )
        summary.receipts_built = len(book)
        summary.build_failures = len(book.failed_event_ids)

        logger.info(
            "Receipts built",
            extra={
                "games_found": summary.games_found,
                "receipts_built": summary.receipts_built,
                "identities": book.identities(),
            },
        )
        return book

    async def build_book(self, sections: list[tuple[str, list[Game]]]) -> ReceiptBook:
        """Fetch box scores for every game at once, then build section by section."""
        all_games = [game for _, games in sections for game in games]
        with metrics.time_operation("fetch_summaries"):
            summaries = await self.espn.fetch_summaries(all_games)

        book = ReceiptBook()
        for label, games in sections:
            build_receipts(games, summaries, self.config.tz, section=label, book=book)
        return book

    async def capture_stage(
        self, book: ReceiptBook, summary: Optional[RunSummary] = None
    ) -> list[ReceiptCapture]:
        """
        Render and capture every receipt in the book.

        A capture timeout stops the capture loop; receipts captured before it
        are still returned and posted.
        """
        self.state = RunState.CAPTURING
        html = render_document(book)

        try:
            with metrics.time_operation("capture_receipts"):
                captures = await self._capture(book, html)
        except CaptureTimeoutError as e:
            logger.error(
                "Capture timed out, continuing with receipts captured so far",
                extra={
                    "identity": e.identity,
                    "captured": len(e.captured),
                    "error": str(e),
                },
            )
            captures = e.captured
            if summary is not None:
                summary.capture_aborted = True

        for capture in captures:
            book.attach_image(capture.identity, capture.image)
            if self.output_dir:
                self._save_image(capture)

        if summary is not None:
            summary.captured = len(captures)
        return captures

    async def _capture(self, book: ReceiptBook, html: str) -> list[ReceiptCapture]:
        """Open a browser, load the receipt page and capture every receipt."""
        browser_config = BrowserConfig(
            headless=self.config.headless,
            timeout=self.config.page_timeout_ms,
            viewport_width=self.config.viewport_width,
            viewport_height=self.config.viewport_height,
        )

        try:
            async with get_browser_manager(browser_config) as browser_manager:
                async with browser_manager.get_page() as page:
                    receipt_page = ReceiptPage(page, timeout=self.config.page_timeout_ms)
                    if not await receipt_page.open(html, self.config.page_url):
                        raise AutopostError("Failed to load the receipt page")

                    capturer = ReceiptCapturer(
                        PlaywrightCaptureSurface(
                            page, default_timeout=self.config.overlay_timeout_ms
                        ),
                        book=book,
                        page_timeout=self.config.page_timeout_ms,
                        overlay_timeout=self.config.overlay_timeout_ms,
                        image_timeout=self.config.image_timeout_ms,
                        settle_delay=self.config.settle_delay_seconds,
                        dismiss_delay=self.config.dismiss_delay_seconds,
                    )
                    return await capturer.capture_all()

        except (AutopostError, CaptureTimeoutError):
            raise
        except Exception as e:
            raise AutopostError(f"Browser capture failed: {e}") from e

    def _save_image(self, capture: ReceiptCapture) -> None:
        self.output_dir.mkdir(parents=True, exist_ok=True)
        path = self.output_dir / f"{capture.identity}.png"
        path.write_bytes(capture.image)
        logger.debug("Saved receipt image", extra={"identity": capture.identity, "path": str(path)})

    async def _throttle(self) -> None:
        """Keep live posts at least post_delay_seconds apart."""
        if self.config.dry_run or self._last_publish_at is None:
            return
        remaining = self.config.post_delay_seconds - (time.monotonic() - self._last_publish_at)
        if remaining > 0:
            await asyncio.sleep(remaining)

    async def post_all(
        self, captures: list[ReceiptCapture], summary: RunSummary
    ) -> RunSummary:
        """
        Post captured receipts in order, at most once per identity.

        History is consulted before any network call and updated right after
        each successful post. An authorization failure ends the loop; other
        failures are logged and the loop continues.
        """
        for index, capture in enumerate(captures):
            if self.history.has_posted(capture.identity):
                logger.info(
                    "Skipping receipt, already posted",
                    extra={"identity": capture.identity},
                )
                summary.results.append(PublishResult.skipped(capture.identity))
                metrics.record_post(PublishStatus.SKIPPED.value)
                continue

            await self._throttle()
            result = await self.publisher.publish(capture)
            self._last_publish_at = time.monotonic()
            summary.results.append(result)

            if result.status == PublishStatus.POSTED:
                self.history.record_posted(capture.identity)
                continue

            if result.is_auth_failure:
                logger.error(
                    "Authorization failure, skipping remaining posts. Check app "
                    "permissions and regenerate access tokens with read+write scope.",
                    extra={
                        "identity": capture.identity,
                        "remaining": len(captures) - index - 1,
                        "error": result.error,
                    },
                )
                summary.auth_aborted = True
                break

            logger.warning(
                "Post failed, continuing with next receipt",
                extra={"identity": capture.identity, "error": result.error},
            )

        return summary

    async def preview(self, identity: str) -> tuple[Optional[Receipt], ReceiptBook]:
        """
        Look up the receipt behind an identity or deep link.

        The month/day is resolved to its most recent past occurrence, that
        date's games are fetched and built, and the matching receipt returned.

        Args:
            identity: ``ABBR-MMDD`` (``#`` prefix and lower case accepted)

        Returns:
            Tuple of (receipt or None, book with that date's receipts)

        Raises:
            ValueError: If the identity is malformed
            ProviderError: If the scoreboard cannot be fetched
        """
        abbrev, month, day = parse_identity(identity)
        game_date = resolve_identity_date(month, day, now=self.today())

        games = await self.espn.fetch_finished_games(game_date)
        book = await self.build_book([(game_date.strftime("%b %d").upper(), games)])
        key = receipt_identity(abbrev, game_date)

        receipt = book.get(key)
        logger.info(
            "Resolved receipt identity",
            extra={
                "identity": key,
                "date": game_date.isoformat(),
                "found": receipt is not None,
            },
        )
        return receipt, book
