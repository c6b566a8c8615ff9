"""
HTML document for the receipt keyboard.

Renders a self-contained page: one winner key per receipt grouped by date
section, a hidden template per receipt, and the overlay the capture stage
opens, freezes and screenshots. Selectors used by the capture stage are
exported as constants so both sides stay in step.
"""

from html import escape

from .builder import ReceiptBook
from .models import Receipt

KEY_SELECTOR = ".key"
NO_GAMES_SELECTOR = ".no-games"
OVERLAY_SELECTOR = "#receipt-overlay"
VISIBLE_OVERLAY_SELECTOR = ".receipt-overlay.visible"
RECEIPT_SELECTOR = ".receipt"
TAGLINE_SELECTOR = ".receipt .receipt-tagline"

NO_GAMES_MESSAGE = (
    "No finalized games from today or yesterday.<br>"
    "Check back after games wrap up."
)

MONTH_NAMES = [
    "JAN", "FEB", "MAR", "APR", "MAY", "JUN",
    "JUL", "AUG", "SEP", "OCT", "NOV", "DEC",
]

_STYLE = """
body { margin: 0; font-family: "Courier New", monospace; background: #1d1d1f; color: #111; }
#content { padding: 24px; }
.date-label { color: #eee; margin: 16px 0 8px; text-transform: uppercase; }
.keyboard { display: flex; flex-wrap: wrap; gap: 8px; }
.key { display: flex; flex-direction: column; align-items: center; width: 96px; padding: 8px; cursor: pointer; }
.key-logo { width: 40px; height: 40px; }
.key-active { outline: 2px solid #f5c400; }
.no-games { color: #eee; text-align: center; padding: 48px; }
.receipt-overlay { display: none; position: fixed; inset: 0; background: rgba(0, 0, 0, 0.6); }
.receipt-overlay.visible { display: block; }
.receipt-slide { position: absolute; left: 50%; top: 24px; transform: translateX(-50%) translateY(0);
  animation: slide-in 0.6s ease-out; }
@keyframes slide-in { from { transform: translateX(-50%) translateY(100%); } }
.receipt { width: 360px; padding: 24px; background: #fbfbf8; }
.receipt-header { text-align: center; }
.receipt-logo { width: 72px; height: 72px; }
.receipt-team-name { font-weight: bold; font-size: 20px; }
.receipt-line-item, .receipt-line-extra { display: flex; justify-content: space-between; opacity: 0;
  animation: print 0.2s forwards; }
.receipt-line-item.printed, .receipt-line-extra.printed { opacity: 1; }
@keyframes print { to { opacity: 1; } }
.receipt-summary-line, .receipt-total-line { display: flex; justify-content: space-between; }
.receipt-total-line { font-weight: bold; }
.receipt-result { text-align: center; font-size: 22px; margin: 12px 0; }
.receipt-footer { text-align: center; }
"""

_SCRIPT = """
function showReceipt(id) {
  const template = document.getElementById('receipt-' + id);
  if (!template) return;
  const overlay = document.getElementById('receipt-overlay');
  const slide = document.getElementById('receipt-slide');
  slide.innerHTML = '';
  slide.appendChild(template.content.cloneNode(true));
  document.querySelectorAll('.key').forEach((key) => {
    key.classList.toggle('key-active', key.dataset.teamId === id);
  });
  try { history.replaceState(null, '', '#' + id); } catch (e) { /* about:blank */ }
  overlay.classList.remove('visible');
  void overlay.offsetHeight;
  overlay.classList.add('visible');
}

function closeReceipt() {
  document.getElementById('receipt-overlay').classList.remove('visible');
  document.querySelectorAll('.key').forEach((key) => key.classList.remove('key-active'));
  try { history.replaceState(null, '', location.pathname + location.search); } catch (e) { /* about:blank */ }
}

function openFromHash() {
  const id = location.hash.slice(1).toUpperCase();
  if (id) showReceipt(id);
}

document.querySelectorAll('.key').forEach((key) => {
  key.addEventListener('click', () => showReceipt(key.dataset.teamId));
});
document.getElementById('receipt-overlay').addEventListener('click', (e) => {
  if (!e.target.closest('.receipt')) closeReceipt();
});
document.addEventListener('keydown', (e) => {
  if (e.key === 'Escape') closeReceipt();
});
window.addEventListener('hashchange', openFromHash);
openFromHash();
"""


def format_receipt_datetime(receipt: Receipt) -> str:
    """Receipt header timestamp, e.g. "FEB. 11, 2025 07:30 PM"."""
    game_time = receipt.game_time
    return (
        f"{MONTH_NAMES[game_time.month - 1]}. {game_time.day}, {game_time.year} "
        f"{game_time.strftime('%I:%M %p')}"
    )


def render_key(receipt: Receipt) -> str:
    """Render the winner key that opens a receipt."""
    identity = escape(receipt.identity)
    logo = (
        f'<img class="key-logo" src="{escape(receipt.team_logo_ref)}" '
        f'alt="{escape(receipt.team_short_name)}">'
        if receipt.team_logo_ref
        else ""
    )
    return (
        f'<button class="key" data-team-id="{identity}">'
        f"{logo}"
        f'<span class="key-name">{escape(receipt.team_abbrev)}</span>'
        f'<span class="key-score">{escape(receipt.score_text)}</span>'
        f"</button>"
    )


def render_receipt(receipt: Receipt) -> str:
    """Render the receipt body that gets cloned into the overlay."""
    winner_score, loser_score = receipt.final_score
    logo = (
        f'<img class="receipt-logo" src="{escape(receipt.team_logo_ref)}" '
        f'alt="{escape(receipt.team_display_name)}">'
        if receipt.team_logo_ref
        else ""
    )
    line_items = "".join(
        f'<div class="receipt-line-item">'
        f'<span class="receipt-player-name">{escape(item.name.upper())}</span>'
        f'<span class="receipt-player-pts">{item.points:.2f}</span>'
        f"</div>"
        for item in receipt.line_items
    )

    return f"""
<div class="receipt">
  <div class="receipt-header">
    {logo}
    <div class="receipt-team-name">{escape(receipt.team_display_name)}</div>
    <div class="receipt-tagline">{escape(receipt.tagline)}</div>
  </div>
  <div class="receipt-order">ORDER #{receipt.order_number} FOR {escape(receipt.opponent_short_name.upper())}</div>
  <div class="receipt-datetime">{format_receipt_datetime(receipt)}</div>
  <hr class="receipt-divider">
  {line_items}
  <hr class="receipt-divider">
  <div class="receipt-summary">
    <div class="receipt-summary-line receipt-line-extra"><span>SUBTOTAL</span><span>{receipt.subtotal:.2f}</span></div>
    <div class="receipt-summary-line receipt-line-extra"><span>BONUS BUCKETS</span><span>{receipt.bonus:.2f}</span></div>
  </div>
  <div class="receipt-total-line"><span>TOTAL</span><span>{receipt.total:.2f}</span></div>
  <div class="receipt-result win">W {winner_score} - {loser_score}</div>
  <div class="receipt-footer">
    <div class="receipt-thanks">Thank You For Dining!</div>
    <a class="receipt-box-score-link" href="{escape(receipt.game_url)}">Full Box Score</a>
  </div>
</div>"""


def render_document(book: ReceiptBook, title: str = "Final Tabs") -> str:
    """
    Render the full page for a run's receipts.

    Args:
        book: Receipts grouped into sections
        title: Page title

    Returns:
        HTML document as a string
    """
    if len(book) == 0:
        content = f'<div class="no-games">{NO_GAMES_MESSAGE}</div>'
    else:
        parts = []
        for label, receipts in book.sections():
            if not receipts:
                continue
            if label:
                parts.append(f'<div class="date-label">{escape(label)}</div>')
            parts.append(
                '<div class="keyboard">'
                + "".join(render_key(receipt) for receipt in receipts)
                + "</div>"
            )
        content = "".join(parts)

    templates = "".join(
        f'<template id="receipt-{escape(receipt.identity)}">{render_receipt(receipt)}</template>'
        for receipt in book
    )

    return f"""<!DOCTYPE html>
<html lang="en">
<head>
<meta charset="utf-8">
<title>{escape(title)}</title>
<style>{_STYLE}</style>
</head>
<body>
<div id="content">{content}</div>
{templates}
<div class="receipt-overlay" id="receipt-overlay"><div class="receipt-slide" id="receipt-slide"></div></div>
<script>{_SCRIPT}</script>
</body>
</html>
"""
