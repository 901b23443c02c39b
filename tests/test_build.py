# Copyright (c) Syntropy Systems
"""Tests for the build driver."""

import sys
from pathlib import Path

import pytest

from conftest import FAKE_BUILD
from hilrun.build import Artifact, BuildDriver, render_argv
from hilrun.errors import BuildError
from hilrun.models.session import DEBUG, RELEASE, BuildProfile, TestCase


@pytest.fixture
def build_dir(temp_dir: Path) -> Path:
    _ = (temp_dir / "fake_build.py").write_text(FAKE_BUILD)
    return temp_dir


def make_driver(workdir: Path, artifact_template: str | None = None) -> BuildDriver:
    return BuildDriver(
        [sys.executable, "fake_build.py", "{test}"],
        workdir,
        artifact_template=artifact_template,
        grace_period=1.0,
    )


def test_render_argv_substitutes_and_appends_flags() -> None:
    argv = render_argv(
        ["cargo", "build", "--bin", "{test}", "--target-dir", "out/{profile}"],
        TestCase(name="uart"),
        RELEASE,
    )

    assert argv == ["cargo", "build", "--bin", "uart", "--target-dir", "out/release", "--release"]


def test_render_argv_artifact_placeholder() -> None:
    argv = render_argv(["probe-rs", "run", "{artifact}"], TestCase(name="crc"), DEBUG, Path("/fw/crc"))

    assert argv == ["probe-rs", "run", "/fw/crc"]


class TestBuildDriver:
    """Tests for BuildDriver.build."""

    def test_successful_build_returns_artifact(self, build_dir: Path) -> None:
        artifact = make_driver(build_dir).build(TestCase(name="blinky"), DEBUG)

        assert isinstance(artifact, Artifact)
        assert artifact.test_case.name == "blinky"
        assert artifact.profile is DEBUG
        assert artifact.path is None

    def test_artifact_path_template(self, build_dir: Path) -> None:
        driver = make_driver(build_dir, artifact_template="target/{profile}/{test}")

        artifact = driver.build(TestCase(name="blinky"), RELEASE)

        assert artifact.path == build_dir / "target" / "release" / "blinky"

    def test_failed_build_surfaces_output_verbatim(self, build_dir: Path) -> None:
        with pytest.raises(BuildError) as excinfo:
            _ = make_driver(build_dir).build(TestCase(name="nobuild-i2c"), DEBUG)

        error = excinfo.value
        assert error.kind == "failed"
        assert error.returncode == 101
        assert "error[E0425]: cannot find value `x` in this scope" in error.output
        assert "exited with code 101" in str(error)

    def test_build_timeout_kills_tool(self, build_dir: Path) -> None:
        profile = BuildProfile(name="debug", build_timeout=1.0)

        with pytest.raises(BuildError) as excinfo:
            _ = make_driver(build_dir).build(TestCase(name="slowbuild-dma"), profile)

        error = excinfo.value
        assert error.kind == "timeout"
        assert "Compiling slowbuild-dma" in error.output
        assert "timed out after 1s" in str(error)

    def test_missing_build_tool(self, temp_dir: Path) -> None:
        driver = BuildDriver(["hilrun-no-such-cargo"], temp_dir)

        with pytest.raises(BuildError) as excinfo:
            _ = driver.build(TestCase(name="adc"), DEBUG)

        assert excinfo.value.kind == "failed"
        assert excinfo.value.returncode is None
