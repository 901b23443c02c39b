# Copyright (c) Syntropy Systems
"""Tests for hilrun CLI commands."""

import json
import os

import pytest
from typer.testing import CliRunner

from conftest import write_project
from hilrun.cli.main import app
from hilrun.remote import SSHChannel
from hilrun.runner import ProcessResult

runner = CliRunner()


@pytest.fixture
def passing_project(temp_dir):
    """A project whose tests all pass."""
    _ = write_project(temp_dir, ["pass-adc", "pass-crc"])
    cwd = os.getcwd()
    os.chdir(temp_dir)
    yield temp_dir
    os.chdir(cwd)


class TestInitCommand:
    """Tests for hilrun init command."""

    def test_init_creates_config(self, temp_dir):
        """Test that init writes .hilrun/config.yaml."""
        result = runner.invoke(app, ["init", str(temp_dir)])

        assert result.exit_code == 0
        assert "Initialized hilrun project" in result.output
        assert (temp_dir / ".hilrun" / "config.yaml").exists()

    def test_init_already_initialized(self, hilrun_project):
        """Test init when already initialized."""
        original = (hilrun_project / ".hilrun" / "config.yaml").read_text()

        result = runner.invoke(app, ["init"])

        assert result.exit_code == 0
        assert "Already initialized" in result.output
        assert (hilrun_project / ".hilrun" / "config.yaml").read_text() == original


class TestListCommand:
    """Tests for hilrun list command."""

    def test_list_tests(self, hilrun_project):
        result = runner.invoke(app, ["list"])

        assert result.exit_code == 0
        assert "fail-gpio" in result.output
        assert "pass-blinky" in result.output
        assert "4 run(s) per session" in result.output

    def test_list_empty(self, temp_dir):
        _ = write_project(temp_dir, [])

        result = runner.invoke(app, ["list", str(temp_dir)])

        assert result.exit_code == 0
        assert "No tests matching" in result.output


class TestParseCommand:
    """Tests for hilrun parse command."""

    def test_success(self):
        result = runner.invoke(app, ["parse"], input="boot\nTEST-SUCCESS: done\n")

        assert result.exit_code == 0
        assert "boot" in result.output
        assert "PASS" in result.output

    def test_failure(self):
        result = runner.invoke(app, ["parse"], input="TEST-FAIL: x\nTEST-SUCCESS\n")

        assert result.exit_code == 1
        assert "FAIL" in result.output

    def test_no_marker(self):
        result = runner.invoke(app, ["parse"], input="boot\nidle\n")

        assert result.exit_code == 1
        assert "without a marker" in result.output

    def test_empty_input(self):
        result = runner.invoke(app, ["parse", "--quiet"], input="")

        assert result.exit_code == 1

    def test_custom_markers(self):
        result = runner.invoke(
            app,
            ["parse", "-s", "ALL OK", "-f", "PANIC", "--quiet"],
            input="TEST-FAIL\nALL OK\n",
        )

        assert result.exit_code == 0
        assert "TEST-FAIL" not in result.output.splitlines()

    def test_overlapping_markers(self):
        result = runner.invoke(app, ["parse", "-s", "TEST", "-f", "TEST"], input="TEST\n")

        assert result.exit_code == 1
        assert "Error" in result.output

    def test_with_timeout(self):
        result = runner.invoke(app, ["parse", "--timeout", "5"], input="TEST-SUCCESS\n")

        assert result.exit_code == 0


class TestRunCommand:
    """Tests for hilrun run command."""

    def test_run_with_failure(self, hilrun_project):
        result = runner.invoke(app, ["run", "--mode", "local"])

        assert result.exit_code == 1
        assert "Executing test 1: fail-gpio [debug]" in result.output
        assert "Executing test 4: pass-blinky [release]" in result.output
        assert "========END OF TESTS SUMMARY========" in result.output
        assert "2 / 4 tests passed" in result.output
        assert "Some tests failed:" in result.output
        assert "fail-gpio [debug]\nfail-gpio [release]" in result.output
        assert "All tests passed!" not in result.output

    def test_run_all_pass(self, passing_project):
        result = runner.invoke(app, ["run", "--mode", "local"])

        assert result.exit_code == 0
        assert "4 / 4 tests passed" in result.output
        assert "All tests passed!" in result.output

    def test_run_single_profile(self, passing_project):
        result = runner.invoke(app, ["run", "--mode", "local", "--profile", "release"])

        assert result.exit_code == 0
        assert "2 / 2 tests passed" in result.output
        assert "[debug]" not in result.output

    def test_run_unknown_profile(self, hilrun_project):
        result = runner.invoke(app, ["run", "--mode", "local", "--profile", "lto"])

        assert result.exit_code == 1
        assert "Unknown profile(s): lto" in result.output

    def test_run_no_tests(self, temp_dir):
        _ = write_project(temp_dir, [])

        result = runner.invoke(app, ["run", str(temp_dir), "--mode", "local"])

        assert result.exit_code == 1
        assert "No tests matching" in result.output

    def test_run_writes_report(self, hilrun_project):
        report = hilrun_project / "out" / "report.json"

        result = runner.invoke(app, ["run", "--mode", "local", "--report", str(report)])

        assert result.exit_code == 1
        data = json.loads(report.read_text())
        assert data["total"] == 4
        assert data["failed"] == 2
        assert data["outcome"] == "fail"
        assert [r["test_case"]["name"] for r in data["results"]] == [
            "fail-gpio", "fail-gpio", "pass-blinky", "pass-blinky",
        ]

    def test_run_remote_without_host(self, hilrun_project):
        result = runner.invoke(app, ["run", "--mode", "remote"])

        assert result.exit_code == 1
        assert "remote.host is not configured" in result.output

    def test_run_remote_forwards_profiles(self, temp_dir, monkeypatch):
        _ = write_project(
            temp_dir,
            ["pass-adc"],
            remote={"host": "rig.lab", "vm": "hil-rig", "settle_delay": 0},
        )
        commands = []

        def execute(self, command, timeout=None):
            commands.append(command)
            return ProcessResult(returncode=0, output="1 / 1 tests passed\nAll tests passed!\n")

        monkeypatch.setattr(SSHChannel, "execute", execute)

        result = runner.invoke(app, ["run", str(temp_dir), "--profile", "release", "--mode", "remote"])

        assert result.exit_code == 0
        assert commands == [
            "VBoxManage snapshot hil-rig restore baseline",
            "cd ~/hil && hilrun run --mode local --profile release",
            "VBoxManage snapshot hil-rig restore baseline",
        ]
        assert "Remote session passed" in result.output

    def test_run_remote_all_profiles_by_default(self, temp_dir, monkeypatch):
        _ = write_project(temp_dir, ["pass-adc"], remote={"host": "rig.lab", "vm": "hil-rig", "settle_delay": 0})
        commands = []

        def execute(self, command, timeout=None):
            commands.append(command)
            return ProcessResult(returncode=0, output="All tests passed!\n")

        monkeypatch.setattr(SSHChannel, "execute", execute)

        result = runner.invoke(app, ["run", str(temp_dir), "--mode", "remote"])

        assert result.exit_code == 0
        assert "cd ~/hil && hilrun run --mode local" in commands

    def test_auto_mode_uses_attached_device(self, passing_project):
        result = runner.invoke(app, ["run"])

        assert result.exit_code == 0
        assert "All tests passed!" in result.output


class TestDoctorCommand:
    """Tests for hilrun doctor command."""

    def test_doctor_healthy(self, hilrun_project):
        result = runner.invoke(app, ["doctor"])

        assert result.exit_code == 0
        assert "Device attached" in result.output
        assert "All checks passed" in result.output

    def test_doctor_missing_tools(self, temp_dir):
        _ = write_project(
            temp_dir,
            [],
            build_command=["no-such-build-tool-xyz"],
            device={"detect_command": ["no-such-probe-xyz"]},
        )

        result = runner.invoke(app, ["doctor", str(temp_dir)])

        assert result.exit_code == 0
        assert "Build tool not found: no-such-build-tool-xyz" in result.output
        assert "No device attached locally" in result.output
        assert "issue(s)" in result.output
