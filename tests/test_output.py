"""Tests for the output formatting system.

Covers:
- OutputFormat resolution (auto -> rich/plain based on TTY)
- NO_COLOR / TERM=dumb color disabling
- stdout vs stderr discipline
- Quiet and verbose modes
- print_record and print_table in all three formats
- Global instance management and convenience functions
"""

from __future__ import annotations

import json

import pytest

from ddcli import output as output_module
from ddcli.output import (
    OutputFormat,
    OutputManager,
    _should_disable_color,
    get_output,
    reset_output,
    set_output,
)


# ------------------------------------------------------------------ #
# Fixtures
# ------------------------------------------------------------------ #


@pytest.fixture()
def non_tty(monkeypatch):
    """Patch stdout.isatty() to return False."""
    monkeypatch.setattr("ddcli.output._is_tty", lambda: False)


@pytest.fixture()
def tty(monkeypatch):
    """Patch stdout.isatty() to return True."""
    monkeypatch.setattr("ddcli.output._is_tty", lambda: True)


RECORD = {
    "site": "datadoghq.com",
    "client_registered": True,
    "client_id": None,
    "scopes_granted": 2,
}


# ------------------------------------------------------------------ #
# OutputFormat resolution
# ------------------------------------------------------------------ #


class TestOutputFormatResolution:
    def test_auto_resolves_to_plain_when_not_tty(self, non_tty):
        mgr = OutputManager(format=OutputFormat.AUTO)
        assert mgr.format == OutputFormat.PLAIN

    def test_auto_resolves_to_rich_when_tty(self, tty, monkeypatch):
        monkeypatch.delenv("NO_COLOR", raising=False)
        monkeypatch.delenv("TERM", raising=False)
        mgr = OutputManager(format=OutputFormat.AUTO)
        assert mgr.format == OutputFormat.RICH

    def test_no_color_flag_forces_plain_on_tty(self, tty, monkeypatch):
        monkeypatch.delenv("NO_COLOR", raising=False)
        monkeypatch.delenv("TERM", raising=False)
        mgr = OutputManager(format=OutputFormat.AUTO, no_color=True)
        assert mgr.format == OutputFormat.PLAIN

    def test_explicit_json_stays_json(self, tty):
        assert OutputManager(format=OutputFormat.JSON).format == OutputFormat.JSON


class TestColorDisabling:
    def test_no_color_env_any_value(self, monkeypatch):
        monkeypatch.setenv("NO_COLOR", "")
        assert _should_disable_color() is True

    def test_term_dumb_disables_color(self, monkeypatch):
        monkeypatch.delenv("NO_COLOR", raising=False)
        monkeypatch.setenv("TERM", "dumb")
        assert _should_disable_color() is True

    def test_normal_term_keeps_color(self, monkeypatch):
        monkeypatch.delenv("NO_COLOR", raising=False)
        monkeypatch.setenv("TERM", "xterm-256color")
        assert _should_disable_color() is False


# ------------------------------------------------------------------ #
# stdout vs stderr discipline
# ------------------------------------------------------------------ #


class TestStdoutStderrDiscipline:
    @pytest.mark.parametrize("method", ["info", "success", "warning", "error", "suggest"])
    def test_diagnostics_go_to_stderr(self, capfd, non_tty, method):
        mgr = OutputManager(format=OutputFormat.PLAIN, no_color=True)
        getattr(mgr, method)("some message")
        captured = capfd.readouterr()
        assert captured.out == ""
        assert "some message" in captured.err

    def test_print_data_goes_to_stdout(self, capfd, non_tty):
        mgr = OutputManager(format=OutputFormat.PLAIN, no_color=True)
        mgr.print_data("hello world")
        captured = capfd.readouterr()
        assert captured.out == "hello world\n"
        assert captured.err == ""

    def test_record_goes_to_stdout(self, capfd, non_tty):
        mgr = OutputManager(format=OutputFormat.JSON, no_color=True)
        mgr.print_record(RECORD)
        captured = capfd.readouterr()
        assert '"site"' in captured.out
        assert captured.err == ""


class TestDiagnosticFormatting:
    def test_warning_prefix(self, capfd, non_tty):
        OutputManager(format=OutputFormat.PLAIN, no_color=True).warning("careful")
        assert capfd.readouterr().err == "Warning: careful\n"

    def test_error_prefix(self, capfd, non_tty):
        OutputManager(format=OutputFormat.PLAIN, no_color=True).error("broken")
        assert capfd.readouterr().err == "Error: broken\n"

    def test_suggest_arrow(self, capfd, non_tty):
        OutputManager(format=OutputFormat.PLAIN, no_color=True).suggest('Run "ddcli auth login"')
        assert capfd.readouterr().err == '→ Run "ddcli auth login"\n'

    def test_brackets_are_not_markup(self, capfd, non_tty, monkeypatch):
        monkeypatch.delenv("NO_COLOR", raising=False)
        monkeypatch.delenv("TERM", raising=False)
        OutputManager(format=OutputFormat.PLAIN).info("scope [metrics_read]")
        assert "scope [metrics_read]" in capfd.readouterr().err


class TestQuietMode:
    def test_quiet_suppresses_info_success_suggest(self, capfd, non_tty):
        mgr = OutputManager(format=OutputFormat.PLAIN, no_color=True, quiet=True)
        mgr.info("info")
        mgr.success("success")
        mgr.suggest("suggest")
        assert capfd.readouterr().err == ""

    def test_quiet_keeps_warnings_and_errors(self, capfd, non_tty):
        mgr = OutputManager(format=OutputFormat.PLAIN, no_color=True, quiet=True)
        mgr.warning("warn")
        mgr.error("err")
        err = capfd.readouterr().err
        assert "warn" in err
        assert "err" in err

    def test_quiet_keeps_data(self, capfd, non_tty):
        OutputManager(format=OutputFormat.PLAIN, no_color=True, quiet=True).print_data("data")
        assert capfd.readouterr().out == "data\n"


class TestVerboseMode:
    def test_debug_hidden_by_default(self, capfd, non_tty):
        OutputManager(format=OutputFormat.PLAIN, no_color=True).debug("hidden")
        assert capfd.readouterr().err == ""

    def test_debug_shown_when_verbose(self, capfd, non_tty):
        OutputManager(format=OutputFormat.PLAIN, no_color=True, verbose=True).debug("shown")
        assert capfd.readouterr().err == "[debug] shown\n"


# ------------------------------------------------------------------ #
# Records and tables
# ------------------------------------------------------------------ #


class TestPrintRecord:
    def test_json(self, capfd, non_tty):
        OutputManager(format=OutputFormat.JSON, no_color=True).print_record(RECORD)
        assert json.loads(capfd.readouterr().out) == RECORD

    def test_plain(self, capfd, non_tty):
        OutputManager(format=OutputFormat.PLAIN, no_color=True).print_record(RECORD)
        assert capfd.readouterr().out.splitlines() == [
            "site\tdatadoghq.com",
            "client_registered\tyes",
            "client_id\t-",
            "scopes_granted\t2",
        ]

    def test_rich(self, capfd, non_tty):
        OutputManager(format=OutputFormat.RICH, no_color=True).print_record(
            RECORD, title="Status"
        )
        out = capfd.readouterr().out
        assert "Status" in out
        assert "datadoghq.com" in out
        assert "client_registered" in out


class TestPrintTable:
    HEADERS = ["site", "action"]
    ROWS = [["datadoghq.com", "migrate"], ["datadoghq.eu", "unreadable"]]

    def test_json(self, capfd, non_tty):
        OutputManager(format=OutputFormat.JSON, no_color=True).print_table(self.HEADERS, self.ROWS)
        assert json.loads(capfd.readouterr().out) == [
            {"site": "datadoghq.com", "action": "migrate"},
            {"site": "datadoghq.eu", "action": "unreadable"},
        ]

    def test_plain(self, capfd, non_tty):
        OutputManager(format=OutputFormat.PLAIN, no_color=True).print_table(self.HEADERS, self.ROWS)
        assert capfd.readouterr().out.splitlines() == [
            "site\taction",
            "datadoghq.com\tmigrate",
            "datadoghq.eu\tunreadable",
        ]

    def test_rich(self, capfd, non_tty):
        OutputManager(format=OutputFormat.RICH, no_color=True).print_table(self.HEADERS, self.ROWS)
        out = capfd.readouterr().out
        assert "site" in out
        assert "datadoghq.eu" in out


# ------------------------------------------------------------------ #
# Global instance
# ------------------------------------------------------------------ #


class TestGlobalInstance:
    def test_lazy_default(self):
        reset_output()
        assert get_output() is get_output()

    def test_set_output(self):
        mgr = OutputManager(format=OutputFormat.JSON)
        set_output(mgr)
        assert get_output() is mgr

    def test_reset_output(self):
        mgr = OutputManager(format=OutputFormat.JSON)
        set_output(mgr)
        reset_output()
        assert get_output() is not mgr


class TestConvenienceFunctions:
    def test_delegate_to_installed_manager(self, capfd, non_tty):
        set_output(OutputManager(format=OutputFormat.PLAIN, no_color=True))
        output_module.info("hello")
        output_module.print_record({"a": 1})
        output_module.print_table(["h"], [["v"]])
        captured = capfd.readouterr()
        assert captured.err == "hello\n"
        assert captured.out == "a\t1\nh\nv\n"
