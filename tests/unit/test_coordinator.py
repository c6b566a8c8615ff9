"""
Unit tests for the autopost run coordinator.

The provider client is an AsyncMock, the browser stage is patched out, and
posting goes through a real Publisher over a mocked posting client so the
history/publish interplay is exercised end to end.
"""

from datetime import date, datetime, timezone
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from conftest import make_capture, make_game, make_summary_payload

from final_tabs.api.espn_client import ESPNClient
from final_tabs.api.x_client import PostingError
from final_tabs.capture.capture import CaptureTimeoutError
from final_tabs.pipeline.config import AutopostConfig
from final_tabs.pipeline.coordinator import AutopostCoordinator, AutopostError
from final_tabs.pipeline.models import RunState
from final_tabs.posting.history import PostHistory
from final_tabs.posting.publisher import Publisher, PublishStatus

TODAY = date(2025, 2, 12)
YESTERDAY = date(2025, 2, 11)


def lakers_game():
    # 19:30 Eastern on the 11th
    return make_game(event_id="1", start=datetime(2025, 2, 12, 0, 30, tzinfo=timezone.utc))


def celtics_game():
    # 19:30 Eastern on the 12th
    return make_game(
        event_id="2",
        winner_abbrev="BOS",
        loser_abbrev="NY",
        winner_score=101,
        loser_score=99,
        start=datetime(2025, 2, 13, 0, 30, tzinfo=timezone.utc),
    )


def make_config(tmp_path, **overrides):
    values = {
        "twitter_app_key": "key",
        "twitter_app_secret": "secret",
        "twitter_access_token": "token",
        "twitter_access_secret": "token-secret",
        "history_file": str(tmp_path / "history.json"),
        "post_delay_seconds": 0,
        "settle_delay_seconds": 0,
        "dismiss_delay_seconds": 0,
    }
    values.update(overrides)
    return AutopostConfig(**values)


def make_espn(games_by_date=None, summaries=None):
    espn = AsyncMock(spec=ESPNClient)
    espn.fetch_finished_games_for_dates.return_value = (
        games_by_date
        if games_by_date is not None
        else {YESTERDAY: [lakers_game()], TODAY: [celtics_game()]}
    )
    espn.fetch_summaries.return_value = summaries or {}
    return espn


async def capture_every_receipt(book, html):
    return [
        make_capture(identity=r.identity, abbrev=r.team_abbrev, score=r.final_score)
        for r in book
    ]


def make_posting_client():
    client = MagicMock()
    client.upload_media.return_value = "media-1"
    client.publish.return_value = "post-1"
    return client


def make_coordinator(tmp_path, client=None, espn=None, dry_run=False, **config_overrides):
    config = make_config(tmp_path, dry_run=dry_run, **config_overrides)
    return AutopostCoordinator(
        config=config,
        history=PostHistory.load(config.history_file),
        publisher=Publisher(client, dry_run=dry_run),
        espn_client=espn or make_espn(),
        reference_date=TODAY,
    )


@pytest.fixture
def patched_capture():
    with patch.object(
        AutopostCoordinator, "_capture", new=AsyncMock(side_effect=capture_every_receipt)
    ) as mock_capture:
        yield mock_capture


class TestAutopostRun:
    """Test full runs with the browser stage patched out."""

    @pytest.mark.asyncio
    async def test_zero_games(self, tmp_path, patched_capture):
        """No finished games is a successful, empty run."""
        client = make_posting_client()
        espn = make_espn({YESTERDAY: [], TODAY: []})
        coordinator = make_coordinator(tmp_path, client, espn)

        summary = await coordinator.run()

        assert summary.games_found == 0
        assert summary.exit_code == 0
        assert coordinator.state == RunState.DONE
        patched_capture.assert_not_awaited()
        espn.fetch_summaries.assert_not_awaited()
        client.upload_media.assert_not_called()

    @pytest.mark.asyncio
    async def test_fetches_yesterday_and_today(self, tmp_path, patched_capture):
        espn = make_espn()
        coordinator = make_coordinator(tmp_path, make_posting_client(), espn)

        await coordinator.run()

        espn.fetch_finished_games_for_dates.assert_awaited_once_with([YESTERDAY, TODAY])

    @pytest.mark.asyncio
    async def test_posts_every_receipt_and_records_history(self, tmp_path, patched_capture):
        client = make_posting_client()
        summaries = {"1": make_summary_payload("LAL-id", [("Player A", 32), ("Player B", 10)])}
        coordinator = make_coordinator(tmp_path, client, make_espn(summaries=summaries))

        summary = await coordinator.run()

        assert [r.identity for r in summary.results] == ["LAL-0211", "BOS-0212"]
        assert summary.posted == 2
        assert summary.receipts_built == 2
        assert summary.captured == 2
        assert summary.exit_code == 0
        assert client.publish.call_count == 2
        assert PostHistory.load(tmp_path / "history.json").posted == ["LAL-0211", "BOS-0212"]

    @pytest.mark.asyncio
    async def test_build_failures_exclude_duplicates(self, tmp_path, patched_capture):
        duplicate = lakers_game().model_copy(update={"event_id": "9"})
        no_winner = make_game(
            event_id="3", winner_abbrev="MIA", loser_abbrev="ORL", winners=(False, False)
        )
        espn = make_espn({YESTERDAY: [lakers_game(), duplicate, no_winner], TODAY: []})
        coordinator = make_coordinator(tmp_path, make_posting_client(), espn)

        summary = await coordinator.run()

        assert summary.games_found == 3
        assert summary.receipts_built == 1
        assert summary.build_failures == 1

    @pytest.mark.asyncio
    async def test_second_run_posts_nothing(self, tmp_path, patched_capture):
        """Running twice over the same games never posts a receipt twice."""
        client = make_posting_client()

        await make_coordinator(tmp_path, client).run()
        second = await make_coordinator(tmp_path, client).run()

        assert second.skipped == 2
        assert second.posted == 0
        assert second.exit_code == 0
        assert client.upload_media.call_count == 2
        assert client.publish.call_count == 2

    @pytest.mark.asyncio
    async def test_history_hit_skips_publisher(self, tmp_path, patched_capture):
        PostHistory(tmp_path / "history.json", ["LAL-0211"]).save()
        coordinator = make_coordinator(tmp_path, make_posting_client())
        coordinator.publisher = AsyncMock()
        coordinator.publisher.publish.return_value = MagicMock(
            status=PublishStatus.POSTED, is_auth_failure=False
        )

        summary = await coordinator.run()

        published = [call.args[0].identity for call in coordinator.publisher.publish.await_args_list]
        assert published == ["BOS-0212"]
        assert summary.results[0].status == PublishStatus.SKIPPED

    @pytest.mark.asyncio
    async def test_auth_failure_stops_posting(self, tmp_path, patched_capture):
        """An authorization failure on the first receipt posts nothing else."""
        client = make_posting_client()
        client.upload_media.side_effect = PostingError("forbidden", status_code=403)
        coordinator = make_coordinator(tmp_path, client)

        summary = await coordinator.run()

        assert summary.auth_aborted is True
        assert summary.posted == 0
        assert len(summary.results) == 1
        assert summary.exit_code == 1
        assert client.upload_media.call_count == 1
        client.publish.assert_not_called()
        assert not (tmp_path / "history.json").exists()

    @pytest.mark.asyncio
    async def test_transient_failure_continues(self, tmp_path, patched_capture):
        client = make_posting_client()
        client.publish.side_effect = [PostingError("rate limited", status_code=429), "post-2"]
        coordinator = make_coordinator(tmp_path, client)

        summary = await coordinator.run()

        assert [r.status for r in summary.results] == [
            PublishStatus.FAILED,
            PublishStatus.POSTED,
        ]
        assert summary.exit_code == 0
        assert PostHistory.load(tmp_path / "history.json").posted == ["BOS-0212"]

    @pytest.mark.asyncio
    async def test_dry_run_records_history_without_client(self, tmp_path, patched_capture):
        coordinator = make_coordinator(tmp_path, client=None, dry_run=True)

        summary = await coordinator.run()

        assert summary.posted == 2
        assert all(r.caption for r in summary.results)
        assert len(PostHistory.load(tmp_path / "history.json")) == 2

    @pytest.mark.asyncio
    async def test_capture_timeout_posts_captured_receipts(self, tmp_path):
        client = make_posting_client()
        partial = [make_capture(identity="LAL-0211")]
        timeout = CaptureTimeoutError("overlay never appeared", "BOS-0212", partial)
        coordinator = make_coordinator(tmp_path, client)

        with patch.object(AutopostCoordinator, "_capture", new=AsyncMock(side_effect=timeout)):
            summary = await coordinator.run()

        assert summary.capture_aborted is True
        assert summary.captured == 1
        assert [r.identity for r in summary.results] == ["LAL-0211"]
        assert summary.posted == 1

    @pytest.mark.asyncio
    async def test_browser_failure_raises(self, tmp_path):
        coordinator = make_coordinator(tmp_path, make_posting_client())

        with patch(
            "final_tabs.pipeline.coordinator.get_browser_manager",
            side_effect=RuntimeError("chromium missing"),
        ):
            with pytest.raises(AutopostError, match="chromium missing"):
                await coordinator.run()

    @pytest.mark.asyncio
    async def test_images_attached_and_saved(self, tmp_path, patched_capture):
        coordinator = make_coordinator(tmp_path, make_posting_client())
        coordinator.output_dir = tmp_path / "receipts"
        book = await coordinator.fetch_and_build(MagicMock())

        await coordinator.capture_stage(book)

        assert book.get("LAL-0211").rendered_image == b"\x89PNG fake"
        assert (tmp_path / "receipts" / "LAL-0211.png").read_bytes() == b"\x89PNG fake"

    @pytest.mark.asyncio
    async def test_live_posts_are_throttled(self, tmp_path, patched_capture):
        coordinator = make_coordinator(
            tmp_path, make_posting_client(), post_delay_seconds=30
        )

        with patch(
            "final_tabs.pipeline.coordinator.asyncio.sleep", new=AsyncMock()
        ) as mock_sleep:
            await coordinator.run()

        mock_sleep.assert_awaited_once()
        assert 0 < mock_sleep.await_args.args[0] <= 30


class TestPreview:
    """Test identity lookups."""

    @pytest.mark.asyncio
    async def test_preview_finds_receipt(self, tmp_path):
        espn = make_espn()
        espn.fetch_finished_games.return_value = [lakers_game()]
        coordinator = make_coordinator(tmp_path, espn=espn, dry_run=True)

        receipt, book = await coordinator.preview("#lal-0211")

        assert receipt.identity == "LAL-0211"
        assert len(book) == 1
        espn.fetch_finished_games.assert_awaited_once_with(YESTERDAY)

    @pytest.mark.asyncio
    async def test_preview_unknown_team(self, tmp_path):
        espn = make_espn()
        espn.fetch_finished_games.return_value = [lakers_game()]
        coordinator = make_coordinator(tmp_path, espn=espn, dry_run=True)

        receipt, _ = await coordinator.preview("MIA-0211")

        assert receipt is None

    @pytest.mark.asyncio
    async def test_preview_invalid_identity(self, tmp_path):
        coordinator = make_coordinator(tmp_path, dry_run=True)

        with pytest.raises(ValueError):
            await coordinator.preview("not-an-identity")
