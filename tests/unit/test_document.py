"""Unit tests for the rendered receipt document."""

from datetime import datetime

from conftest import EASTERN, make_game

from final_tabs.receipts.builder import ReceiptBook, build_receipt
from final_tabs.receipts.document import (
    NO_GAMES_SELECTOR,
    format_receipt_datetime,
    render_document,
    render_key,
    render_receipt,
)
from final_tabs.receipts.models import BoxScoreLine


def _receipt(**game_kwargs):
    game = make_game(**game_kwargs)
    box = [BoxScoreLine(name="Player A", points=32), BoxScoreLine(name="Player B", points=10)]
    return build_receipt(game, game.winner(), game.loser(), box, EASTERN)


class TestRenderReceipt:
    """Test receipt and key markup."""

    def test_key_carries_identity(self):
        html = render_key(_receipt())

        assert 'data-team-id="LAL-0211"' in html
        assert '<span class="key-score">120-110</span>' in html

    def test_receipt_totals(self):
        html = render_receipt(_receipt())

        assert "ORDER #0211 FOR GS" in html
        assert "PLAYER A" in html
        assert "32.00" in html
        assert "<span>SUBTOTAL</span><span>42.00</span>" in html
        assert "<span>BONUS BUCKETS</span><span>78.00</span>" in html
        assert "<span>TOTAL</span><span>120.00</span>" in html
        assert "W 120 - 110" in html
        assert 'class="receipt-tagline">Everyone Eats<' in html

    def test_datetime_format(self):
        receipt = _receipt().model_copy(
            update={"game_time": datetime(2025, 2, 11, 19, 30, tzinfo=EASTERN)}
        )
        assert format_receipt_datetime(receipt) == "FEB. 11, 2025 07:30 PM"

    def test_names_are_escaped(self):
        receipt = _receipt()
        receipt.line_items[0] = BoxScoreLine(name="<b>A</b>", points=32)

        assert "<B>A</B>" not in render_receipt(receipt)


class TestRenderDocument:
    """Test the full page."""

    def test_empty_book_shows_no_games(self):
        html = render_document(ReceiptBook())

        assert 'class="no-games"' in html
        assert NO_GAMES_SELECTOR.lstrip(".") in html
        assert 'class="key"' not in html

    def test_sections_templates_and_overlay(self):
        book = ReceiptBook()
        book.add(_receipt(event_id="1"), "Yesterday")
        book.add(_receipt(event_id="2", winner_abbrev="BOS", loser_abbrev="NY"), "Today")

        html = render_document(book)

        assert html.index(">Yesterday<") < html.index(">Today<")
        assert html.index('data-team-id="LAL-0211"') < html.index('data-team-id="BOS-0211"')
        assert '<template id="receipt-LAL-0211">' in html
        assert '<template id="receipt-BOS-0211">' in html
        assert 'id="receipt-overlay"' in html
        assert "function showReceipt" in html
