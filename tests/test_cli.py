"""Tests for the command-line entry point."""

from unittest.mock import AsyncMock, patch

import pytest

from depowatch import cli


class TestParser:
    def test_aliases_resolved(self):
        args = cli.build_parser().parse_args(["monitor", "--chain", "ETH,sol,binance", "--once"])

        assert args.command == "monitor"
        assert args.chain == ["ethereum", "solana", "bsc"]
        assert args.once

    def test_default_is_all_chains(self):
        args = cli.build_parser().parse_args(["scan"])

        assert args.chain == ["ethereum", "bsc", "solana"]
        assert args.interval is None

    def test_invalid_chain_exits(self, capsys):
        """An unknown chain stops the process before any scanning."""
        with pytest.raises(SystemExit) as exc_info:
            cli.build_parser().parse_args(["scan", "--chain", "eth,dogecoin"])

        assert exc_info.value.code == 2
        assert "dogecoin" in capsys.readouterr().err

    def test_command_required(self):
        with pytest.raises(SystemExit):
            cli.build_parser().parse_args([])


class TestMain:
    def test_dispatches_scan(self):
        with patch.object(cli, "run_scan", new=AsyncMock(return_value=0)) as run_scan:
            code = cli.main(["scan", "--chain", "sol", "--interval", "600"])

        assert code == 0
        run_scan.assert_awaited_once_with(["solana"], 600)

    def test_dispatches_monitor(self):
        with patch.object(cli, "run_monitor", new=AsyncMock(return_value=0)) as run_monitor:
            code = cli.main(["monitor", "--chain", "bsc", "--once"])

        assert code == 0
        run_monitor.assert_awaited_once_with(["bsc"], True, None)

    def test_failed_scan_exit_code(self):
        with patch.object(cli, "run_scan", new=AsyncMock(return_value=1)):
            assert cli.main(["scan"]) == 1

    def test_auto_uses_configured_interval(self):
        with patch.object(cli, "run_scan", new=AsyncMock(return_value=0)) as run_scan:
            cli.main(["scan", "--chain", "eth", "--auto"])

        run_scan.assert_awaited_once_with(["ethereum"], cli.get_settings().scan_interval)
