"""
ESPN site API client for NBA scoreboards and box scores.

This module fetches finished games for a calendar date and per-game summary
payloads, with bounded timeouts, retry on server/network errors, and
per-request failure isolation for the concurrent fetch helpers.
"""

import asyncio
import time
from collections.abc import Iterable
from datetime import date, datetime, timezone
from typing import Any, Optional

import httpx
from pydantic import ValidationError

from ..receipts.models import Competitor, Game
from ..utils.logger import final_tabs_logger, get_logger
from ..utils.metrics import get_metrics

logger = get_logger()
metrics = get_metrics()

FINISHED_STATE = "post"


class ProviderError(Exception):
    """Raised when the sports data provider is unreachable or returns bad data."""

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        endpoint: Optional[str] = None,
    ):
        super().__init__(message)
        self.status_code = status_code
        self.endpoint = endpoint


def format_date_param(day: date) -> str:
    """Format a date the way the scoreboard expects it (YYYYMMDD)."""
    return day.strftime("%Y%m%d")


def _parse_start_time(raw: str) -> datetime:
    # Provider timestamps look like "2025-02-11T00:30Z"
    parsed = datetime.fromisoformat(raw.replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _parse_competitor(raw: dict[str, Any]) -> Competitor:
    team = raw.get("team") or {}
    return Competitor(
        team_id=str(team.get("id") or raw.get("id") or ""),
        display_name=team.get("displayName") or "",
        short_display_name=team.get("shortDisplayName") or team.get("displayName") or "",
        abbreviation=team.get("abbreviation") or "",
        logo=team.get("logo"),
        score=raw.get("score"),
        winner=bool(raw.get("winner", False)),
    )


def _status_type(event: dict[str, Any]) -> dict[str, Any]:
    return ((event.get("status") or {}).get("type")) or {}


def event_state(event: dict[str, Any]) -> Optional[str]:
    """Return the status state of a scoreboard event ("pre", "in", "post")."""
    return _status_type(event).get("state")


def event_completed(event: dict[str, Any]) -> bool:
    """True when the event reached "post" and actually finished.

    Postponed and canceled games also report "post" but with completed false.
    """
    status = _status_type(event)
    return status.get("state") == FINISHED_STATE and bool(status.get("completed"))


def parse_event(event: dict[str, Any]) -> Game:
    """
    Convert a scoreboard event into a Game.

    Args:
        event: One entry of the scoreboard ``events`` list

    Returns:
        Parsed Game

    Raises:
        ProviderError: If the event is missing required fields
    """
    try:
        competition = (event.get("competitions") or [])[0]
        return Game(
            event_id=str(event["id"]),
            start_time=_parse_start_time(event["date"]),
            competitors=[_parse_competitor(c) for c in competition["competitors"]],
            completed=event_completed(event),
        )
    except (KeyError, IndexError, TypeError, ValueError, ValidationError) as e:
        raise ProviderError(
            f"Malformed scoreboard event {event.get('id')!r}: {e}"
        ) from e


class ESPNClient:
    """
    Client for the ESPN site API (NBA).

    Provides scoreboard and summary lookups plus concurrent helpers that
    isolate individual request failures.
    """

    DEFAULT_BASE_URL = "https://site.api.espn.com/apis/site/v2/sports/basketball/nba"

    def __init__(
        self,
        base_url: Optional[str] = None,
        timeout: float = 15.0,
        max_retries: int = 2,
        retry_backoff_base: float = 1.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """
        Initialize the ESPN client.

        Args:
            base_url: API base URL (defaults to the public NBA site API)
            timeout: Per-request timeout in seconds
            max_retries: Retries for server and network errors
            retry_backoff_base: Base delay for exponential backoff
            transport: Optional httpx transport (used by tests)
        """
        self.base_url = (base_url or self.DEFAULT_BASE_URL).rstrip("/")
        self.timeout = timeout
        self.max_retries = max_retries
        self.retry_backoff_base = retry_backoff_base
        self.transport = transport

    @property
    def headers(self) -> dict[str, str]:
        return {"Accept": "application/json", "User-Agent": "final-tabs/1.0"}

    async def _get_json(
        self, endpoint: str, params: Optional[dict[str, Any]] = None
    ) -> dict[str, Any]:
        """
        GET a JSON object with retry logic.

        Args:
            endpoint: Path below the base URL
            params: Query parameters

        Returns:
            Decoded JSON object

        Raises:
            ProviderError: If the request fails after all retries or the body
                is not a JSON object
        """
        url = f"{self.base_url}/{endpoint}"
        start_time = time.time()

        for attempt in range(self.max_retries + 1):
            try:
                async with httpx.AsyncClient(
                    timeout=self.timeout, transport=self.transport
                ) as client:
                    response = await client.get(url, params=params, headers=self.headers)
                    response.raise_for_status()

                duration = time.time() - start_time
                metrics.record_api_call(
                    endpoint=endpoint,
                    method="GET",
                    status_code=response.status_code,
                    duration_seconds=duration,
                )
                final_tabs_logger.log_api_call(
                    endpoint=endpoint,
                    method="GET",
                    status_code=response.status_code,
                    duration_ms=duration * 1000,
                )

                try:
                    data = response.json()
                except ValueError as e:
                    raise ProviderError(
                        f"GET {endpoint} returned invalid JSON", endpoint=endpoint
                    ) from e

                if not isinstance(data, dict):
                    raise ProviderError(
                        f"GET {endpoint} returned {type(data).__name__}, expected an object",
                        endpoint=endpoint,
                    )

                return data

            except httpx.HTTPStatusError as e:
                status_code = e.response.status_code
                duration = time.time() - start_time
                metrics.record_api_call(
                    endpoint=endpoint,
                    method="GET",
                    status_code=status_code,
                    duration_seconds=duration,
                )
                final_tabs_logger.log_api_call(
                    endpoint=endpoint,
                    method="GET",
                    status_code=status_code,
                    duration_ms=duration * 1000,
                )

                if status_code < 500 or attempt == self.max_retries:
                    error_msg = f"GET {endpoint} failed with status {status_code}"
                    logger.error(
                        error_msg,
                        extra={
                            "status_code": status_code,
                            "params": params,
                            "attempt": attempt + 1,
                        },
                    )
                    raise ProviderError(
                        error_msg, status_code=status_code, endpoint=endpoint
                    ) from e

                delay = self.retry_backoff_base * (2**attempt)
                logger.warning(
                    f"Server error on attempt {attempt + 1}, retrying in {delay}s",
                    extra={"status_code": status_code, "endpoint": endpoint},
                )
                await asyncio.sleep(delay)

            except httpx.RequestError as e:
                duration = time.time() - start_time
                metrics.record_api_call(
                    endpoint=endpoint,
                    method="GET",
                    status_code=0,
                    duration_seconds=duration,
                )
                final_tabs_logger.log_api_call(
                    endpoint=endpoint,
                    method="GET",
                    duration_ms=duration * 1000,
                    error=str(e),
                )

                if attempt == self.max_retries:
                    error_msg = f"GET {endpoint} request failed: {e}"
                    logger.error(error_msg, extra={"params": params, "error": str(e)})
                    raise ProviderError(error_msg, endpoint=endpoint) from e

                delay = self.retry_backoff_base * (2**attempt)
                logger.warning(
                    f"Network error on attempt {attempt + 1}, retrying in {delay}s",
                    extra={"error": str(e), "endpoint": endpoint},
                )
                await asyncio.sleep(delay)

        raise ProviderError(
            f"GET {endpoint} failed after {self.max_retries + 1} attempts",
            endpoint=endpoint,
        )

    async def fetch_finished_games(self, day: date) -> list[Game]:
        """
        Fetch the games on a date that have concluded.

        Args:
            day: Calendar date to query

        Returns:
            Finished games in scoreboard order; live and scheduled games are
            excluded

        Raises:
            ProviderError: If the scoreboard cannot be fetched or has no events
                list. A malformed event is logged and skipped.
        """
        date_param = format_date_param(day)
        data = await self._get_json("scoreboard", params={"dates": date_param})

        events = data.get("events")
        if not isinstance(events, list):
            raise ProviderError(
                f"Scoreboard for {date_param} has no events list", endpoint="scoreboard"
            )

        games = []
        for event in events:
            if not isinstance(event, dict) or event_state(event) != FINISHED_STATE:
                continue
            try:
                game = parse_event(event)
            except ProviderError as e:
                logger.error(
                    "Skipping malformed scoreboard event",
                    extra={"date": date_param, "event_id": event.get("id"), "error": str(e)},
                )
                continue
            if not game.completed:
                logger.info(
                    "Skipping event that ended without a result",
                    extra={"date": date_param, "event_id": game.event_id},
                )
                continue
            games.append(game)

        logger.info(
            "Fetched finished games",
            extra={
                "date": date_param,
                "events": len(events),
                "finished": len(games),
            },
        )
        metrics.record_games_fetched(len(games), {"date": date_param})
        return games

    async def fetch_finished_games_for_dates(
        self, days: Iterable[date]
    ) -> dict[date, list[Game]]:
        """
        Fetch several dates concurrently.

        A date whose fetch fails is logged and maps to an empty list; the
        other dates are unaffected.

        Args:
            days: Dates to query

        Returns:
            Finished games per date, in the order the dates were given
        """
        days = list(days)
        results = await asyncio.gather(
            *(self.fetch_finished_games(day) for day in days), return_exceptions=True
        )

        games_by_date: dict[date, list[Game]] = {}
        for day, result in zip(days, results):
            if isinstance(result, BaseException):
                if not isinstance(result, Exception):
                    raise result
                logger.error(
                    "Failed to fetch scoreboard",
                    extra={
                        "date": format_date_param(day),
                        "error": str(result),
                        "error_type": type(result).__name__,
                    },
                )
                games_by_date[day] = []
            else:
                games_by_date[day] = result

        return games_by_date

    async def fetch_summary(self, event_id: str) -> dict[str, Any]:
        """
        Fetch the summary (box score) payload for one event.

        Raises:
            ProviderError: If the summary cannot be fetched
        """
        return await self._get_json("summary", params={"event": event_id})

    async def fetch_summaries(self, games: Iterable[Game]) -> dict[str, dict[str, Any]]:
        """
        Fetch summaries for many games concurrently.

        Failed fetches are logged and omitted from the result.

        Args:
            games: Games to fetch summaries for

        Returns:
            Summary payloads keyed by event id
        """
        games = list(games)
        results = await asyncio.gather(
            *(self.fetch_summary(game.event_id) for game in games),
            return_exceptions=True,
        )

        summaries: dict[str, dict[str, Any]] = {}
        for game, result in zip(games, results):
            if isinstance(result, BaseException):
                if not isinstance(result, Exception):
                    raise result
                logger.warning(
                    "Failed to fetch box score summary",
                    extra={
                        "event_id": game.event_id,
                        "error": str(result),
                        "error_type": type(result).__name__,
                    },
                )
                continue
            summaries[game.event_id] = result

        return summaries
