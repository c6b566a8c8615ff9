"""Shared fixtures: ESPN-shaped payloads and pydantic models for the unit tests."""

from datetime import datetime, timezone
from zoneinfo import ZoneInfo

import pytest

from final_tabs.receipts.models import Competitor, Game, ReceiptCapture

EASTERN = ZoneInfo("America/New_York")


def make_competitor_payload(team_id, abbrev, name, score, winner):
    return {
        "id": team_id,
        "homeAway": "home",
        "winner": winner,
        "score": str(score),
        "team": {
            "id": team_id,
            "abbreviation": abbrev,
            "displayName": name,
            "shortDisplayName": name.split()[-1],
            "logo": f"https://a.espncdn.com/i/teamlogos/nba/500/{abbrev.lower()}.png",
        },
    }


def make_event_payload(
    event_id="401705001",
    start="2025-02-12T00:30Z",
    state="post",
    winner=("13", "LAL", "Los Angeles Lakers", 120),
    loser=("9", "GS", "Golden State Warriors", 110),
):
    return {
        "id": event_id,
        "date": start,
        "status": {"type": {"state": state, "completed": state == "post"}},
        "competitions": [
            {
                "competitors": [
                    make_competitor_payload(*winner, True),
                    make_competitor_payload(*loser, False),
                ]
            }
        ],
    }


def make_summary_payload(team_id, players):
    """Summary with one statistics group; ``players`` is [(name, points), ...]."""
    return {
        "boxscore": {
            "players": [
                {
                    "team": {"id": team_id},
                    "statistics": [
                        {
                            "names": ["minutes", "rebounds", "assists", "points"],
                            "labels": ["MIN", "REB", "AST", "PTS"],
                            "athletes": [
                                {
                                    "athlete": {"displayName": name},
                                    "stats": ["30", "5", "4", str(points)],
                                }
                                for name, points in players
                            ],
                        }
                    ],
                }
            ]
        }
    }


def make_game(
    event_id="401705001",
    winner_abbrev="LAL",
    winner_score=120,
    loser_abbrev="GS",
    loser_score=110,
    start=datetime(2025, 2, 12, 0, 30, tzinfo=timezone.utc),
    winners=(True, False),
):
    return Game(
        event_id=event_id,
        start_time=start,
        completed=True,
        competitors=[
            Competitor(
                team_id=f"{winner_abbrev}-id",
                display_name=f"{winner_abbrev} Full Name",
                short_display_name=winner_abbrev.title(),
                abbreviation=winner_abbrev,
                logo=None,
                score=winner_score,
                winner=winners[0],
            ),
            Competitor(
                team_id=f"{loser_abbrev}-id",
                display_name=f"{loser_abbrev} Full Name",
                short_display_name=loser_abbrev.title(),
                abbreviation=loser_abbrev,
                logo=None,
                score=loser_score,
                winner=winners[1],
            ),
        ],
    )


def make_capture(identity="LAL-0211", abbrev="LAL", score=(120, 110)):
    return ReceiptCapture(
        identity=identity,
        team_abbrev=abbrev,
        final_score=score,
        tagline="Everyone Eats",
        image=b"\x89PNG fake",
    )


@pytest.fixture
def eastern():
    return EASTERN


@pytest.fixture
def sample_game():
    return make_game()


@pytest.fixture
def sample_capture():
    return make_capture()
