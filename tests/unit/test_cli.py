"""Unit tests for CLI module."""

import json
import os
import re
from unittest.mock import AsyncMock, MagicMock, patch

from conftest import EASTERN, make_game
from typer.testing import CliRunner

from final_tabs.api.espn_client import ProviderError
from final_tabs.cli.main import app, handle_cli_error, setup_environment
from final_tabs.pipeline.config import ConfigError
from final_tabs.pipeline.models import RunSummary
from final_tabs.posting.publisher import PublishAuthError, PublishResult
from final_tabs.receipts.builder import ReceiptBook, build_receipt


def strip_ansi(text: str) -> str:
    """Remove ANSI escape codes from text."""
    ansi_escape = re.compile(r"\x1B(?:[@-Z\\-_]|\[[0-?]*[ -/]*[@-~])")
    return ansi_escape.sub("", text)


class TestCliUtilityFunctions:
    """Test cases for CLI utility functions."""

    def test_setup_environment_verbose(self):
        with (
            patch.dict(os.environ, {}, clear=True),
            patch("final_tabs.cli.main.load_dotenv"),
        ):
            setup_environment(verbose=True)

            assert os.environ.get("LOG_LEVEL") == "DEBUG"

    def test_setup_environment_keeps_configured_level(self):
        with (
            patch.dict(os.environ, {"LOG_LEVEL": "INFO"}, clear=True),
            patch("final_tabs.cli.main.load_dotenv") as mock_load_dotenv,
        ):
            setup_environment()

            assert os.environ.get("LOG_LEVEL") == "INFO"
            mock_load_dotenv.assert_called_once()

    def test_handle_cli_error_config(self):
        with patch("final_tabs.cli.main.console") as mock_console:
            handle_cli_error(ConfigError("Missing posting credentials"))

        printed = " ".join(str(call.args[0]) for call in mock_console.print.call_args_list)
        assert "Configuration error" in printed
        assert "--dry-run" in printed

    def test_handle_cli_error_provider(self):
        with patch("final_tabs.cli.main.console") as mock_console:
            handle_cli_error(ProviderError("scoreboard down"))

        printed = " ".join(str(call.args[0]) for call in mock_console.print.call_args_list)
        assert "Scoreboard provider error" in printed


class TestCliCommands:
    """Test cases for CLI commands."""

    def setup_method(self):
        """Set up test environment."""
        self.runner = CliRunner(env={"NO_COLOR": "1"})

    def _coordinator(self, summary):
        coordinator = MagicMock()
        coordinator.run = AsyncMock(return_value=summary)
        return coordinator

    @patch("final_tabs.cli.main.setup_environment")
    def test_run_missing_credentials(self, mock_setup_env):
        with patch.dict(os.environ, {}, clear=True):
            result = self.runner.invoke(app, ["run", "--live"])

        assert result.exit_code == 1
        assert "Configuration error" in strip_ansi(result.stdout)

    @patch("final_tabs.cli.main.AutopostCoordinator.from_config")
    @patch("final_tabs.cli.main.setup_environment")
    def test_run_dry_run_success(self, mock_setup_env, mock_from_config, tmp_path):
        summary = RunSummary(
            games_found=1,
            receipts_built=1,
            captured=1,
            results=[PublishResult.posted("LAL-0211", "caption")],
        )
        mock_from_config.return_value = self._coordinator(summary)
        history_file = str(tmp_path / "history.json")

        with patch.dict(os.environ, {}, clear=True):
            result = self.runner.invoke(
                app, ["run", "--dry-run", "--history-file", history_file]
            )

        assert result.exit_code == 0
        assert "#LAL-0211" in strip_ansi(result.stdout)
        config = mock_from_config.call_args.args[0]
        assert config.dry_run is True
        assert config.history_file == history_file
        mock_setup_env.assert_called_once_with(False)

    @patch("final_tabs.cli.main.apply_log_level")
    @patch("final_tabs.cli.main.AutopostCoordinator.from_config")
    @patch("final_tabs.cli.main.setup_environment")
    def test_run_applies_configured_log_level(
        self, mock_setup_env, mock_from_config, mock_apply_log_level
    ):
        mock_from_config.return_value = self._coordinator(RunSummary())

        with patch.dict(os.environ, {"LOG_LEVEL": "error"}, clear=True):
            result = self.runner.invoke(app, ["run", "--dry-run"])

        assert result.exit_code == 0
        mock_apply_log_level.assert_called_once_with("ERROR")
        assert mock_from_config.call_args.args[0].log_level == "ERROR"

    @patch("final_tabs.cli.main.AutopostCoordinator.from_config")
    @patch("final_tabs.cli.main.setup_environment")
    def test_run_exit_code_when_all_posts_fail(self, mock_setup_env, mock_from_config):
        failed = PublishResult.failed("LAL-0211", PublishAuthError("forbidden", status_code=403))
        mock_from_config.return_value = self._coordinator(
            RunSummary(games_found=1, receipts_built=1, captured=1, auth_aborted=True, results=[failed])
        )

        with patch.dict(os.environ, {}, clear=True):
            result = self.runner.invoke(app, ["run", "--dry-run"])

        assert result.exit_code == 1
        assert "authorization" in strip_ansi(result.stdout)

    @patch("final_tabs.cli.main.AutopostCoordinator.from_config")
    @patch("final_tabs.cli.main.setup_environment")
    def test_run_no_games(self, mock_setup_env, mock_from_config):
        mock_from_config.return_value = self._coordinator(RunSummary())

        with patch.dict(os.environ, {}, clear=True):
            result = self.runner.invoke(app, ["run", "--dry-run"])

        assert result.exit_code == 0
        assert "No finished games" in strip_ansi(result.stdout)

    @patch("final_tabs.cli.main.AutopostCoordinator.preview")
    @patch("final_tabs.cli.main.setup_environment")
    def test_preview_shows_receipt(self, mock_setup_env, mock_preview):
        game = make_game()
        receipt = build_receipt(game, game.winner(), game.loser(), [], EASTERN)
        mock_preview.return_value = (receipt, ReceiptBook())

        with patch.dict(os.environ, {}, clear=True):
            result = self.runner.invoke(app, ["preview", "LAL-0211"])

        assert result.exit_code == 0
        output = strip_ansi(result.stdout)
        assert "ORDER #0211" in output
        assert "BONUS BUCKETS" in output

    @patch("final_tabs.cli.main.setup_environment")
    def test_preview_invalid_identity(self, mock_setup_env):
        with patch.dict(os.environ, {}, clear=True):
            result = self.runner.invoke(app, ["preview", "lakers"])

        assert result.exit_code == 1
        assert "Invalid receipt identity" in strip_ansi(result.stdout)

    def test_history_lists_identities(self, tmp_path):
        path = tmp_path / "history.json"
        path.write_text(json.dumps({"posted": ["LAL-0211", "BOS-0212"]}))

        with patch("final_tabs.cli.main.load_dotenv"):
            result = self.runner.invoke(app, ["history", "--history-file", str(path)])

        assert result.exit_code == 0
        output = strip_ansi(result.stdout)
        assert "LAL-0211" in output
        assert "BOS-0212" in output

    def test_history_empty(self, tmp_path):
        with patch("final_tabs.cli.main.load_dotenv"):
            result = self.runner.invoke(
                app, ["history", "--history-file", str(tmp_path / "missing.json")]
            )

        assert result.exit_code == 0
        assert "No posted receipts" in strip_ansi(result.stdout)
