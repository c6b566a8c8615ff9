"""
Receipt capture orchestration.

Drives the rendered receipt page through each winner key in document order:
open the receipt, freeze its animation at the resting state, let images
settle, screenshot it, dismiss it. Every wait is bounded.
"""

import asyncio
import re
import time
from typing import Any, Optional, Protocol

from ..receipts.builder import ReceiptBook
from ..receipts.document import (
    KEY_SELECTOR,
    NO_GAMES_SELECTOR,
    OVERLAY_SELECTOR,
    RECEIPT_SELECTOR,
    TAGLINE_SELECTOR,
    VISIBLE_OVERLAY_SELECTOR,
)
from ..receipts.models import DEFAULT_TAGLINE, ReceiptCapture
from ..utils.logger import get_logger
from ..utils.metrics import get_metrics

logger = get_logger()
metrics = get_metrics()

DISCOVER_KEYS_SCRIPT = """(selector) => Array.from(document.querySelectorAll(selector)).map((key) => ({
  id: key.dataset.teamId || '',
  name: (key.querySelector('.key-name') || {}).textContent || '',
  score: (key.querySelector('.key-score') || {}).textContent || '',
}))"""

FREEZE_ANIMATION_SCRIPT = """() => {
  const slide = document.querySelector('.receipt-slide');
  if (slide) {
    slide.style.animation = 'none';
    slide.style.transform = 'translateX(-50%) translateY(0)';
  }
  document.querySelectorAll('.receipt-line-item, .receipt-line-extra').forEach((el) => {
    el.style.animation = 'none';
    el.style.opacity = '1';
    el.classList.add('printed');
  });
}"""

# Resolves true once every image loaded or failed, false when the timeout wins
WAIT_FOR_IMAGES_SCRIPT = """(timeoutMs) => {
  const receipt = document.querySelector('.receipt');
  if (!receipt) return true;
  const pending = Array.from(receipt.querySelectorAll('img'))
    .filter((img) => !img.complete)
    .map((img) => new Promise((resolve) => {
      img.addEventListener('load', resolve, { once: true });
      img.addEventListener('error', resolve, { once: true });
    }));
  const timeout = new Promise((resolve) => setTimeout(() => resolve(false), timeoutMs));
  return Promise.race([Promise.all(pending).then(() => true), timeout]);
}"""

TEXT_CONTENT_SCRIPT = """(selector) => {
  const el = document.querySelector(selector);
  return el ? el.textContent.trim() : '';
}"""

DISMISS_SCRIPT = """() => {
  if (typeof closeReceipt === 'function') {
    closeReceipt();
  } else {
    document.dispatchEvent(new KeyboardEvent('keydown', { key: 'Escape' }));
  }
}"""

_SCORE_PATTERN = re.compile(r"^\s*(\d+)\s*-\s*(\d+)\s*$")


class CaptureSurface(Protocol):
    """What the capture stage needs from a rendering/automation backend."""

    async def wait_for(self, selector: str, timeout: int, state: str = "visible") -> bool:
        ...

    async def click(self, selector: str) -> bool:
        ...

    async def evaluate(self, script: str, arg: Any = None) -> Any:
        ...

    async def screenshot(self, selector: str) -> bytes:
        ...


class CaptureTimeoutError(Exception):
    """A bounded wait expired while capturing; later receipts were not attempted."""

    def __init__(
        self,
        message: str,
        identity: Optional[str] = None,
        captured: Optional[list[ReceiptCapture]] = None,
    ):
        super().__init__(message)
        self.identity = identity
        self.captured = captured or []


def parse_score(text: str) -> tuple[int, int]:
    """Parse a key score such as "120-110" into (winner, loser)."""
    match = _SCORE_PATTERN.match(text)
    if not match:
        raise ValueError(f"Unrecognized score text: {text!r}")
    return int(match.group(1)), int(match.group(2))


def key_selector(identity: str) -> str:
    return f'{KEY_SELECTOR}[data-team-id="{identity}"]'


class ReceiptCapturer:
    """
    Captures every receipt on a loaded page.

    Timeouts are milliseconds for selector/script waits and seconds for the
    fixed settle delays.
    """

    def __init__(
        self,
        surface: CaptureSurface,
        book: Optional[ReceiptBook] = None,
        page_timeout: int = 30000,
        overlay_timeout: int = 5000,
        image_timeout: int = 5000,
        settle_delay: float = 1.0,
        dismiss_delay: float = 0.8,
    ):
        self.surface = surface
        self.book = book
        self.page_timeout = page_timeout
        self.overlay_timeout = overlay_timeout
        self.image_timeout = image_timeout
        self.settle_delay = settle_delay
        self.dismiss_delay = dismiss_delay

    async def discover_keys(self) -> list[dict[str, str]]:
        """
        Wait for the page to settle on keys or the no-games message.

        Returns:
            Winner keys in document order (empty when there are no games)

        Raises:
            CaptureTimeoutError: If neither keys nor the no-games message appear
        """
        ready = await self.surface.wait_for(
            f"{KEY_SELECTOR}, {NO_GAMES_SELECTOR}", self.page_timeout, "attached"
        )
        if not ready:
            raise CaptureTimeoutError("Receipt page never showed keys or a no-games message")

        keys = await self.surface.evaluate(DISCOVER_KEYS_SCRIPT, KEY_SELECTOR) or []
        keys = [key for key in keys if key.get("id")]

        if not keys:
            message = await self.surface.evaluate(TEXT_CONTENT_SCRIPT, NO_GAMES_SELECTOR)
            logger.info("No finished games found", extra={"page_text": message})

        return keys

    async def capture_all(self) -> list[ReceiptCapture]:
        """
        Capture every receipt in key order.

        Returns:
            One ReceiptCapture per key, in the order the keys appear

        Raises:
            CaptureTimeoutError: When a bounded wait expires; ``captured``
                holds the receipts finished before the failure
        """
        keys = await self.discover_keys()
        logger.info("Found winners to capture", extra={"count": len(keys)})

        captures: list[ReceiptCapture] = []
        for key in keys:
            try:
                capture = await self.capture_one(key)
            except CaptureTimeoutError as e:
                e.captured = list(captures)
                metrics.record_receipts_captured(len(captures))
                raise

            captures.append(capture)
            logger.info(
                "Captured receipt",
                extra={
                    "identity": capture.identity,
                    "score": capture.score_text,
                    "tagline": capture.tagline,
                    "image_bytes": len(capture.image),
                },
            )

        metrics.record_receipts_captured(len(captures))
        return captures

    async def capture_one(self, key: dict[str, str]) -> ReceiptCapture:
        """
        Open, freeze, screenshot and dismiss one receipt.

        Args:
            key: Discovered key with ``id``, ``name`` and ``score``

        Raises:
            CaptureTimeoutError: If the receipt does not open or close in time
        """
        identity = key["id"]
        start_time = time.time()

        if not await self.surface.click(key_selector(identity)):
            raise CaptureTimeoutError(f"Could not click key for {identity}", identity)

        if not await self.surface.wait_for(
            VISIBLE_OVERLAY_SELECTOR, self.overlay_timeout, "visible"
        ):
            raise CaptureTimeoutError(f"Receipt overlay for {identity} never appeared", identity)

        # Capturing mid-animation produces a half-printed receipt
        await self.surface.evaluate(FREEZE_ANIMATION_SCRIPT)

        images_ready = await self.surface.evaluate(WAIT_FOR_IMAGES_SCRIPT, self.image_timeout)
        if images_ready is False:
            logger.warning(
                "Receipt images still loading after timeout, capturing anyway",
                extra={"identity": identity, "timeout": self.image_timeout},
            )

        if self.settle_delay:
            await asyncio.sleep(self.settle_delay)

        tagline = await self.surface.evaluate(TEXT_CONTENT_SCRIPT, TAGLINE_SELECTOR)
        image = await self.surface.screenshot(RECEIPT_SELECTOR)

        capture = self._build_capture(key, tagline, image)

        await self.surface.evaluate(DISMISS_SCRIPT)
        if not await self.surface.wait_for(OVERLAY_SELECTOR, self.overlay_timeout, "hidden"):
            raise CaptureTimeoutError(f"Receipt overlay for {identity} never closed", identity)
        if self.dismiss_delay:
            await asyncio.sleep(self.dismiss_delay)

        metrics.record_browser_operation("capture_receipt", True, time.time() - start_time)
        return capture

    def _build_capture(
        self, key: dict[str, str], tagline: Optional[str], image: bytes
    ) -> ReceiptCapture:
        identity = key["id"]
        receipt = self.book.get(identity) if self.book is not None else None

        if receipt is not None:
            return ReceiptCapture(
                identity=identity,
                team_abbrev=receipt.team_abbrev,
                final_score=receipt.final_score,
                tagline=tagline or receipt.tagline,
                image=image,
            )

        return ReceiptCapture(
            identity=identity,
            team_abbrev=key.get("name") or identity.split("-")[0],
            final_score=parse_score(key.get("score", "")),
            tagline=tagline or DEFAULT_TAGLINE,
            image=image,
        )
