"""Receipt identity keys.

A receipt is addressed by the winning team's abbreviation and the game's
month/day, e.g. ``LAL-0211``. The same key is used for deep links into the
rendered page and for post deduplication.
"""

import calendar
import re
from datetime import date, datetime
from typing import Optional, Union

IDENTITY_SEPARATOR = "-"

_IDENTITY_PATTERN = re.compile(r"^#?([A-Za-z]+)-(\d{2})(\d{2})$")


def order_number(game_date: Union[date, datetime]) -> str:
    """Return the zero-padded ``MMDD`` portion of an identity."""
    return f"{game_date.month:02d}{game_date.day:02d}"


def receipt_identity(team_abbrev: str, game_date: Union[date, datetime]) -> str:
    """Build the identity for a team's receipt on a given game date.

    Args:
        team_abbrev: Provider abbreviation of the winning team (e.g. ``LAL``)
        game_date: Calendar date of the game, already in the display timezone

    Returns:
        Identity string such as ``LAL-0211``

    Raises:
        ValueError: If the abbreviation is empty
    """
    abbrev = team_abbrev.strip().upper()
    if not abbrev:
        raise ValueError("team_abbrev must not be empty")
    return f"{abbrev}{IDENTITY_SEPARATOR}{order_number(game_date)}"


def parse_identity(text: str) -> tuple[str, int, int]:
    """Split an identity (or a ``#identity`` deep link) into its parts.

    Args:
        text: Identity in ``ABBR-MMDD`` form, case-insensitive

    Returns:
        Tuple of (abbreviation, month, day)

    Raises:
        ValueError: If the text is not a valid identity
    """
    match = _IDENTITY_PATTERN.match(text.strip())
    if not match:
        raise ValueError(f"Invalid receipt identity: {text!r}")

    abbrev, month_text, day_text = match.groups()
    month, day = int(month_text), int(day_text)

    # Leap year so that 0229 is accepted
    if not 1 <= month <= 12 or not 1 <= day <= calendar.monthrange(2000, month)[1]:
        raise ValueError(f"Invalid month/day in receipt identity: {text!r}")

    return abbrev.upper(), month, day


def resolve_identity_date(
    month: int, day: int, now: Optional[Union[date, datetime]] = None
) -> date:
    """Resolve a year-less month/day to its most recent past occurrence.

    Identities carry no year, so a month/day that is still ahead of ``now``
    in the current year belongs to the previous year (the previous season).

    Args:
        month: Month from the identity
        day: Day from the identity
        now: Reference point (defaults to today)

    Returns:
        The most recent date with that month/day that is not after ``now``
    """
    if now is None:
        today = date.today()
    elif isinstance(now, datetime):
        today = now.date()
    else:
        today = now

    year = today.year
    while True:
        if day <= calendar.monthrange(year, month)[1]:
            candidate = date(year, month, day)
            if candidate <= today:
                return candidate
        year -= 1
