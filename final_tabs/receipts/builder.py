"""
Receipt building from scoreboard games and box score summaries.

Everything in this module is pure: no network, browser or filesystem access.
``build_receipts`` isolates failures per game so one bad event never costs
the rest of the batch its receipts.
"""

from collections.abc import Iterable, Iterator
from datetime import tzinfo
from typing import Any, Optional

from ..utils.logger import get_logger
from ..utils.metrics import get_metrics
from .identity import receipt_identity
from .models import (
    DEFAULT_TAGLINE,
    LINE_ITEM_MIN_POINTS,
    BoxScoreLine,
    Competitor,
    Game,
    Receipt,
)

logger = get_logger()
metrics = get_metrics()

GAME_URL_TEMPLATE = "https://www.espn.com/nba/game/_/gameId/{event_id}"
POINTS_LABEL = "PTS"
POINTS_NAME = "points"


class MalformedGameError(Exception):
    """Raised when a finished game violates the winner/loser invariants."""

    def __init__(self, message: str, event_id: Optional[str] = None):
        super().__init__(message)
        self.event_id = event_id


def _points_index(group: dict[str, Any]) -> Optional[int]:
    labels = group.get("labels") or []
    if POINTS_LABEL in labels:
        return labels.index(POINTS_LABEL)
    names = group.get("names") or []
    if POINTS_NAME in names:
        return names.index(POINTS_NAME)
    return None


def _parse_points(value: Any) -> int:
    try:
        points = int(str(value).strip())
    except (TypeError, ValueError):
        return 0
    return max(points, 0)


def extract_box_score_lines(
    summary: Optional[dict[str, Any]], team_id: str
) -> list[BoxScoreLine]:
    """
    Pull every player's points for one team out of a summary payload.

    Args:
        summary: Provider summary JSON (may be None when it could not be fetched)
        team_id: Provider team identifier to look for

    Returns:
        One BoxScoreLine per athlete in provider order; empty when the team,
        its statistics or the points column are missing
    """
    if not summary:
        return []

    players = (summary.get("boxscore") or {}).get("players") or []
    team_box = next(
        (p for p in players if str((p.get("team") or {}).get("id")) == str(team_id)),
        None,
    )
    if not team_box or not team_box.get("statistics"):
        return []

    group = team_box["statistics"][0]
    pts_index = _points_index(group)
    if pts_index is None:
        return []

    lines = []
    for athlete in group.get("athletes") or []:
        name = (athlete.get("athlete") or {}).get("displayName")
        stats = athlete.get("stats") or []
        if not name:
            continue
        points = _parse_points(stats[pts_index]) if pts_index < len(stats) else 0
        lines.append(BoxScoreLine(name=name, points=points))

    return lines


def build_receipt(
    game: Game,
    winner: Competitor,
    loser: Competitor,
    box_score: list[BoxScoreLine],
    tz: tzinfo,
) -> Receipt:
    """
    Build the receipt for a game's winner.

    Args:
        game: Finished game
        winner: Winning competitor
        loser: Losing competitor
        box_score: All of the winner's player lines
        tz: Timezone the game date and time are displayed in

    Returns:
        Receipt with line items, subtotal, bonus and identity

    Raises:
        MalformedGameError: If the winner did not outscore the loser
    """
    if winner.score <= loser.score:
        raise MalformedGameError(
            f"Winner {winner.abbreviation} scored {winner.score} but "
            f"{loser.abbreviation} scored {loser.score}",
            event_id=game.event_id,
        )

    # sorted() is stable, so equal scorers keep provider order
    line_items = sorted(
        (line for line in box_score if line.points >= LINE_ITEM_MIN_POINTS),
        key=lambda line: line.points,
        reverse=True,
    )
    subtotal = sum(line.points for line in line_items)
    game_time = game.local_start(tz)

    return Receipt(
        identity=receipt_identity(winner.abbreviation, game_time),
        event_id=game.event_id,
        game_time=game_time,
        team_id=winner.team_id,
        team_abbrev=winner.abbreviation,
        team_display_name=winner.display_name,
        team_short_name=winner.short_display_name,
        team_logo_ref=winner.logo,
        opponent_abbrev=loser.abbreviation,
        opponent_display_name=loser.display_name,
        opponent_short_name=loser.short_display_name,
        final_score=(winner.score, loser.score),
        tagline=DEFAULT_TAGLINE,
        line_items=line_items,
        subtotal=subtotal,
        bonus=winner.score - subtotal,
        game_url=GAME_URL_TEMPLATE.format(event_id=game.event_id),
    )


class ReceiptBook:
    """
    Receipts for one run, keyed by identity in build order.

    Built once by the building stage and handed to rendering, capture and
    posting. Receipts are grouped into labelled sections ("Yesterday",
    "Today") for the rendered page.
    """

    def __init__(self) -> None:
        self._receipts: dict[str, Receipt] = {}
        self._sections: dict[str, list[str]] = {}
        # event ids of games that raised while building
        self.failed_event_ids: list[str] = []

    def add(self, receipt: Receipt, section: str = "") -> bool:
        """Add a receipt; returns False if its identity is already present."""
        if receipt.identity in self._receipts:
            logger.warning(
                "Duplicate receipt identity, keeping the first",
                extra={"identity": receipt.identity, "event_id": receipt.event_id},
            )
            return False
        self._receipts[receipt.identity] = receipt
        self._sections.setdefault(section, []).append(receipt.identity)
        return True

    def get(self, identity: str) -> Optional[Receipt]:
        return self._receipts.get(identity)

    def attach_image(self, identity: str, image: bytes) -> None:
        receipt = self._receipts.get(identity)
        if receipt is not None:
            receipt.rendered_image = image

    def identities(self) -> list[str]:
        return list(self._receipts)

    def sections(self) -> list[tuple[str, list[Receipt]]]:
        """Sections in insertion order with their receipts."""
        return [
            (label, [self._receipts[identity] for identity in identities])
            for label, identities in self._sections.items()
        ]

    def __contains__(self, identity: object) -> bool:
        return identity in self._receipts

    def __iter__(self) -> Iterator[Receipt]:
        return iter(self._receipts.values())

    def __len__(self) -> int:
        return len(self._receipts)


def build_receipts(
    games: Iterable[Game],
    summaries: dict[str, dict[str, Any]],
    tz: tzinfo,
    section: str = "",
    book: Optional[ReceiptBook] = None,
) -> ReceiptBook:
    """
    Build a receipt for every finished game with a winner.

    A game whose summary is missing still gets a receipt with no line items.
    Games that fail to build are logged and skipped, and their event ids are
    kept in ``book.failed_event_ids``. A duplicate identity is not a failure.

    Args:
        games: Finished games
        summaries: Summary payloads keyed by event id
        tz: Display timezone
        section: Section label for the rendered page
        book: Existing book to add to (a new one is created otherwise)

    Returns:
        ReceiptBook containing the receipts that built successfully
    """
    book = book if book is not None else ReceiptBook()
    built = 0

    for game in games:
        try:
            winner = game.winner()
            loser = game.loser()
            if winner is None or loser is None:
                raise MalformedGameError(
                    "Finished game does not have exactly one winner",
                    event_id=game.event_id,
                )

            box_score = extract_box_score_lines(
                summaries.get(game.event_id), winner.team_id
            )
            if game.event_id not in summaries:
                logger.warning(
                    "No box score summary for game, building receipt without line items",
                    extra={"event_id": game.event_id},
                )

            receipt = build_receipt(game, winner, loser, box_score, tz)
            if book.add(receipt, section):
                built += 1
                logger.debug(
                    "Receipt built",
                    extra={
                        "identity": receipt.identity,
                        "event_id": game.event_id,
                        "line_items": len(receipt.line_items),
                        "subtotal": receipt.subtotal,
                        "bonus": receipt.bonus,
                    },
                )

        except Exception as e:
            logger.error(
                "Failed to build receipt",
                extra={
                    "event_id": game.event_id,
                    "error": str(e),
                    "error_type": type(e).__name__,
                },
            )
            metrics.record_build_error(type(e).__name__)
            book.failed_event_ids.append(game.event_id)

    if built:
        metrics.record_receipts_built(built, {"section": section or "default"})

    return book
