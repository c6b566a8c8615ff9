"""
Unit tests for receipt capture orchestration.

The capture surface is an AsyncMock so the open/freeze/screenshot/dismiss
sequence can be checked without a browser.
"""

from unittest.mock import AsyncMock

import pytest
from conftest import EASTERN, make_game

from final_tabs.capture.capture import (
    DISCOVER_KEYS_SCRIPT,
    DISMISS_SCRIPT,
    FREEZE_ANIMATION_SCRIPT,
    TEXT_CONTENT_SCRIPT,
    WAIT_FOR_IMAGES_SCRIPT,
    CaptureTimeoutError,
    ReceiptCapturer,
    key_selector,
    parse_score,
)
from final_tabs.receipts.builder import ReceiptBook, build_receipt
from final_tabs.receipts.document import OVERLAY_SELECTOR, VISIBLE_OVERLAY_SELECTOR

KEYS = [
    {"id": "LAL-0211", "name": "LAL", "score": "120-110"},
    {"id": "BOS-0211", "name": "BOS", "score": "101-99"},
]


def make_surface(keys=KEYS, tagline="Everyone Eats", images_ready=True):
    surface = AsyncMock()
    surface.wait_for.return_value = True
    surface.click.return_value = True
    surface.screenshot.side_effect = lambda selector: f"png-{len(surface.screenshot.mock_calls)}".encode()

    async def evaluate(script, arg=None):
        if script == DISCOVER_KEYS_SCRIPT:
            return keys
        if script == TEXT_CONTENT_SCRIPT:
            return tagline if "tagline" in arg else "No finalized games"
        if script == WAIT_FOR_IMAGES_SCRIPT:
            return images_ready
        return None

    surface.evaluate.side_effect = evaluate
    return surface


def make_capturer(surface, book=None):
    return ReceiptCapturer(surface, book=book, settle_delay=0, dismiss_delay=0)


class TestHelpers:
    """Test parsing helpers."""

    def test_parse_score(self):
        assert parse_score("120-110") == (120, 110)
        assert parse_score(" 99 - 98 ") == (99, 98)

    def test_parse_score_invalid(self):
        with pytest.raises(ValueError):
            parse_score("final")

    def test_key_selector(self):
        assert key_selector("LAL-0211") == '.key[data-team-id="LAL-0211"]'


class TestReceiptCapturer:
    """Test the capture sequence."""

    @pytest.mark.asyncio
    async def test_captures_in_key_order(self):
        surface = make_surface()

        captures = await make_capturer(surface).capture_all()

        assert [c.identity for c in captures] == ["LAL-0211", "BOS-0211"]
        assert captures[0].final_score == (120, 110)
        assert captures[1].team_abbrev == "BOS"
        assert captures[0].image != captures[1].image
        assert [call.args[0] for call in surface.click.await_args_list] == [
            key_selector("LAL-0211"),
            key_selector("BOS-0211"),
        ]

    @pytest.mark.asyncio
    async def test_freeze_before_screenshot_and_dismiss_after(self):
        surface = make_surface(keys=KEYS[:1])

        await make_capturer(surface).capture_all()

        scripts = [call.args[0] for call in surface.evaluate.await_args_list]
        assert scripts.index(FREEZE_ANIMATION_SCRIPT) < scripts.index(DISMISS_SCRIPT)
        waits = [call.args for call in surface.wait_for.await_args_list]
        assert (VISIBLE_OVERLAY_SELECTOR, 5000, "visible") in waits
        assert (OVERLAY_SELECTOR, 5000, "hidden") in waits

    @pytest.mark.asyncio
    async def test_no_games_returns_empty(self):
        surface = make_surface(keys=[])

        captures = await make_capturer(surface).capture_all()

        assert captures == []
        surface.click.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_page_never_ready(self):
        surface = make_surface()
        surface.wait_for.return_value = False

        with pytest.raises(CaptureTimeoutError) as exc_info:
            await make_capturer(surface).capture_all()

        assert exc_info.value.captured == []

    @pytest.mark.asyncio
    async def test_timeout_keeps_earlier_captures(self):
        """A receipt that never opens stops the loop; earlier captures survive."""
        surface = make_surface()
        visible_waits = iter([True, False])

        async def wait_for(selector, timeout, state="visible"):
            if selector == VISIBLE_OVERLAY_SELECTOR:
                return next(visible_waits)
            return True

        surface.wait_for.side_effect = wait_for

        with pytest.raises(CaptureTimeoutError) as exc_info:
            await make_capturer(surface).capture_all()

        assert exc_info.value.identity == "BOS-0211"
        assert [c.identity for c in exc_info.value.captured] == ["LAL-0211"]

    @pytest.mark.asyncio
    async def test_slow_images_still_captured(self):
        surface = make_surface(keys=KEYS[:1], images_ready=False)

        captures = await make_capturer(surface).capture_all()

        assert len(captures) == 1

    @pytest.mark.asyncio
    async def test_book_values_preferred(self):
        game = make_game()
        book = ReceiptBook()
        book.add(build_receipt(game, game.winner(), game.loser(), [], EASTERN))
        surface = make_surface(
            keys=[{"id": "LAL-0211", "name": "", "score": "garbled"}], tagline=""
        )

        captures = await make_capturer(surface, book=book).capture_all()

        assert captures[0].team_abbrev == "LAL"
        assert captures[0].final_score == (120, 110)
        assert captures[0].tagline == "Everyone Eats"
