"""Data models for Final Tabs receipts.

Contains Pydantic models for provider games, box score lines, receipts and
captured receipt images.
"""

from datetime import datetime, tzinfo
from typing import Optional, Union

from pydantic import BaseModel, Field, field_validator, model_validator

from .identity import order_number

DEFAULT_TAGLINE = "Everyone Eats"
LINE_ITEM_MIN_POINTS = 10


class Competitor(BaseModel):
    """One side of a game as reported by the scoreboard.

    Attributes:
        team_id: Provider team identifier
        display_name: Full team name (e.g. "Los Angeles Lakers")
        short_display_name: Short team name (e.g. "Lakers")
        abbreviation: Provider abbreviation (e.g. "LAL")
        logo: Team logo URL
        score: Final score
        winner: Whether the provider marked this side as the winner
    """

    team_id: str = Field(..., min_length=1, description="Provider team identifier")
    display_name: str = Field(..., min_length=1, description="Full team name")
    short_display_name: str = Field(..., min_length=1, description="Short team name")
    abbreviation: str = Field(..., min_length=1, description="Team abbreviation")
    logo: Optional[str] = Field(None, description="Team logo URL")
    score: int = Field(0, ge=0, description="Final score")
    winner: bool = Field(False, description="Marked as winner by the provider")

    @field_validator("score", mode="before")
    @classmethod
    def parse_score(cls, v: Union[int, str, None]) -> int:
        """Scores arrive as strings ("120"); blank means no points yet."""
        if v is None or v == "":
            return 0
        if isinstance(v, str):
            if not v.strip().isdigit():
                raise ValueError(f"Score must be a non-negative integer, got: {v}")
            return int(v)
        return v


class Game(BaseModel):
    """A basketball game from the scoreboard.

    Attributes:
        event_id: Provider event identifier
        start_time: Tip-off time (timezone aware, UTC from the provider)
        competitors: Both sides of the game
        completed: True when the game finished with a result (not postponed)
    """

    event_id: str = Field(..., min_length=1, description="Provider event identifier")
    start_time: datetime = Field(..., description="Tip-off time")
    competitors: list[Competitor] = Field(..., min_length=2, max_length=2)
    completed: bool = Field(False, description="Game has concluded")

    def winner(self) -> Optional[Competitor]:
        """Return the winning competitor, or None unless exactly one is marked."""
        winners = [c for c in self.competitors if c.winner]
        return winners[0] if len(winners) == 1 else None

    def loser(self) -> Optional[Competitor]:
        """Return the competitor opposite the winner."""
        winner = self.winner()
        if winner is None:
            return None
        return next(c for c in self.competitors if c is not winner)

    def local_start(self, tz: tzinfo) -> datetime:
        """Tip-off time converted to the display timezone."""
        return self.start_time.astimezone(tz)


class BoxScoreLine(BaseModel):
    """A single player's scoring for one team in one game."""

    name: str = Field(..., min_length=1, description="Player display name")
    points: int = Field(..., ge=0, description="Points scored")


class Receipt(BaseModel):
    """One winning team's box score summary, styled as a sales receipt.

    ``bonus`` is the winner's score minus the listed players' points. It is
    never clamped; inconsistent provider data surfaces as a negative bonus.
    """

    identity: str = Field(..., min_length=1, description="ABBR-MMDD receipt key")
    event_id: str = Field(..., min_length=1)
    game_time: datetime = Field(..., description="Tip-off in the display timezone")

    team_id: str
    team_abbrev: str
    team_display_name: str
    team_short_name: str
    team_logo_ref: Optional[str] = None

    opponent_abbrev: str
    opponent_display_name: str
    opponent_short_name: str

    final_score: tuple[int, int] = Field(..., description="(winner, loser)")
    tagline: str = DEFAULT_TAGLINE
    line_items: list[BoxScoreLine] = Field(default_factory=list)
    subtotal: int
    bonus: int
    game_url: str

    rendered_image: Optional[bytes] = Field(None, repr=False)

    @model_validator(mode="after")
    def validate_totals(self) -> "Receipt":
        """Keep the receipt arithmetic and line-item ordering consistent."""
        winner_score, loser_score = self.final_score
        if winner_score < loser_score:
            raise ValueError("final_score must list the winner's score first")
        if any(item.points < LINE_ITEM_MIN_POINTS for item in self.line_items):
            raise ValueError(
                f"line_items must only contain players with {LINE_ITEM_MIN_POINTS}+ points"
            )
        points = [item.points for item in self.line_items]
        if points != sorted(points, reverse=True):
            raise ValueError("line_items must be sorted by points, highest first")
        if self.subtotal != sum(points):
            raise ValueError("subtotal must equal the sum of line item points")
        if self.subtotal + self.bonus != winner_score:
            raise ValueError("subtotal + bonus must equal the winner's score")
        return self

    @property
    def order_number(self) -> str:
        """The MMDD order number printed on the receipt."""
        return order_number(self.game_time)

    @property
    def total(self) -> int:
        return self.final_score[0]

    @property
    def score_text(self) -> str:
        """Score as shown on the winner key, e.g. "120-110"."""
        return f"{self.final_score[0]}-{self.final_score[1]}"


class ReceiptCapture(BaseModel):
    """A rendered receipt image plus the fields needed to caption it."""

    identity: str = Field(..., min_length=1)
    team_abbrev: str = Field(..., min_length=1)
    final_score: tuple[int, int]
    tagline: str = DEFAULT_TAGLINE
    image: bytes = Field(..., repr=False)

    @property
    def score_text(self) -> str:
        return f"{self.final_score[0]}-{self.final_score[1]}"
