"""Tests for the command-line entry point."""
import sys

from finance_tracker.main import main


class TestHelp:

    def test_help_names_installed_script(self, monkeypatch, capsys):
        """Usage and examples use the console script name from pyproject."""
        monkeypatch.setattr(sys, "argv", ["finance-tracker"])

        assert main() == 0

        out = capsys.readouterr().out
        assert out.startswith("usage: finance-tracker")
        assert "  finance-tracker add " in out
        assert "  finance add " not in out
