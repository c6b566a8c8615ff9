# Receipts module

from .builder import (
    MalformedGameError,
    ReceiptBook,
    build_receipt,
    build_receipts,
    extract_box_score_lines,
)
from .document import render_document
from .identity import parse_identity, receipt_identity, resolve_identity_date
from .models import BoxScoreLine, Competitor, Game, Receipt, ReceiptCapture

__all__ = [
    "MalformedGameError",
    "ReceiptBook",
    "build_receipt",
    "build_receipts",
    "extract_box_score_lines",
    "render_document",
    "parse_identity",
    "receipt_identity",
    "resolve_identity_date",
    "BoxScoreLine",
    "Competitor",
    "Game",
    "Receipt",
    "ReceiptCapture",
]
