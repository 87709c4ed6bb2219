"""Tests for progress reporters, status messages and events."""

import io
import json
import threading

import pytest

from chef_run.events import ActionEvent, ConvergePhase, InstallPhase
from chef_run.messages import converging_resource, status_message
from chef_run.progress import JsonReporter, ReporterFactory, TextReporter


class TestReporters:
    """Tests for the reporter implementations."""

    def test_text_reporter(self):
        output = io.StringIO()
        reporter = TextReporter("web01", output)
        reporter.update("Connecting...")
        reporter.success("done")
        reporter.error("failed")
        assert output.getvalue().splitlines() == [
            "[web01] - Connecting...",
            "[web01] ✓ done",
            "[web01] ✗ failed",
        ]

    def test_json_reporter(self):
        """Test one JSON object per line."""
        output = io.StringIO()
        JsonReporter("web01", output).success("Successfully converged")
        record = json.loads(output.getvalue())
        assert record["target"] == "web01"
        assert record["status"] == "success"
        assert record["message"] == "Successfully converged"
        assert "timestamp" in record

    def test_factory_shares_lock_and_output(self):
        output = io.StringIO()
        factory = ReporterFactory(output=output)
        a, b = factory.for_target("a"), factory.for_target("b")
        assert a.lock is b.lock
        a.update("one")
        b.update("two")
        assert output.getvalue() == "[a] - one\n[b] - two\n"

    def test_factory_json(self):
        assert isinstance(ReporterFactory(json_format=True).for_target("a"), JsonReporter)

    def test_reporter_accepts_explicit_lock(self):
        """Test reporters take a caller supplied lock."""
        lock = threading.Lock()
        reporter = TextReporter("web01", io.StringIO(), lock)
        assert reporter.lock is lock


class TestStatusMessage:
    """Tests for status_message."""

    @pytest.mark.parametrize(
        "phase,data,expected",
        [
            (InstallPhase.DOWNLOADING, {}, "Downloading Chef Infra Client installer"),
            (InstallPhase.INSTALLING, {"version": "18.2.7"}, "Installing Chef Infra Client 18.2.7"),
            (
                InstallPhase.INSTALL_COMPLETE,
                {"version": "18.2.7", "upgrading_from": "13.8.5"},
                "Chef Infra Client upgraded from 13.8.5 to 18.2.7",
            ),
            (InstallPhase.ALREADY_INSTALLED, {"version": "14.1.1"}, "Chef Infra Client 14.1.1 is already installed"),
        ],
    )
    def test_install_messages(self, phase, data, expected):
        assert status_message(ActionEvent(phase, data)) == expected

    def test_converge_messages(self):
        run_list = "recipe[cw_file::default]"
        assert status_message(ActionEvent(ConvergePhase.SUCCESS), run_list) == (
            "Successfully converged recipe[cw_file::default]"
        )
        reboot = status_message(ActionEvent(ConvergePhase.REBOOT, {"exit_code": 35}), run_list)
        assert reboot.endswith("a reboot is required (exit code 35)")

    def test_error_message(self):
        """Test error events render their exception."""
        event = ActionEvent(InstallPhase.ERROR, {"exception": RuntimeError("disk full")})
        assert status_message(event) == "Failed to install Chef Infra Client: disk full"

    def test_every_phase_has_a_message(self):
        for phase in InstallPhase:
            status_message(ActionEvent(phase, {"version": "1.0.0"}))
        for phase in ConvergePhase:
            status_message(ActionEvent(phase, {"exit_code": 1}), "recipe[a::b]")

    def test_converging_resource(self):
        assert converging_resource("user", "jdoe") == "Converging resource user[jdoe]..."


class TestActionEvent:
    """Tests for ActionEvent."""

    def test_is_error(self):
        assert ActionEvent(InstallPhase.ERROR).is_error
        assert ActionEvent(ConvergePhase.CONVERGE_ERROR).is_error
        assert not ActionEvent(ConvergePhase.REBOOT).is_error
