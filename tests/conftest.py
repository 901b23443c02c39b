# Copyright (c) Syntropy Systems
"""Pytest fixtures for hilrun tests."""

import os
import sys
import tempfile
import textwrap
from collections.abc import Generator
from pathlib import Path

import pytest
import yaml

# Store original cwd at module load time
_original_cwd = Path.cwd()

# Stand-in for the build tool: fails or hangs depending on the test name
FAKE_BUILD = textwrap.dedent(
    """
    import sys, time
    name = sys.argv[1]
    print(f"Compiling {name} {' '.join(sys.argv[2:])}", flush=True)
    if name.startswith("nobuild"):
        print("error[E0425]: cannot find value `x` in this scope", flush=True)
        sys.exit(101)
    if name.startswith("slowbuild"):
        time.sleep(60)
    """
)

# Stand-in for the flash/run tool: behaves like firmware that never exits
FAKE_DEVICE = textwrap.dedent(
    """
    import os, sys, time
    from pathlib import Path
    name = sys.argv[1]
    Path(f"{name}.pid").write_text(str(os.getpid()))
    print("boot", flush=True)
    if name.startswith("pass"):
        print("INFO TEST-SUCCESS: Example terminated successfully", flush=True)
    elif name.startswith("fail"):
        print(f"TEST-FAIL: {name} failed on line 12 with error 3", flush=True)
    elif name.startswith("flip"):
        print("TEST-FAIL: early", flush=True)
        print("TEST-SUCCESS", flush=True)
    elif name.startswith("nomarker"):
        sys.exit(0)
    elif name.startswith("crash"):
        sys.exit(3)
    time.sleep(60)
    """
)


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for testing."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


def write_project(root: Path, tests: list[str], **overrides: object) -> Path:
    """Lay out test sources, fake tools and a .hilrun/config.yaml under root."""
    for name in tests:
        _ = (root / f"{name}.rs").write_text("#![no_std]\n")
    _ = (root / "fake_build.py").write_text(FAKE_BUILD)
    _ = (root / "fake_device.py").write_text(FAKE_DEVICE)

    config: dict[str, object] = {
        "build_command": [sys.executable, "fake_build.py", "{test}"],
        "run_command": [sys.executable, "fake_device.py", "{test}"],
        "kill_grace_period": 1,
        "profiles": [
            {"name": "debug", "flags": [], "build_timeout": 2, "run_timeout": 2},
            {"name": "release", "flags": ["--release"], "build_timeout": 2, "run_timeout": 2},
        ],
        "device": {"detect_command": [sys.executable, "-c", "print('probe 0')"]},
    }
    config.update(overrides)

    hilrun_dir = root / ".hilrun"
    hilrun_dir.mkdir(exist_ok=True)
    config_path = hilrun_dir / "config.yaml"
    with config_path.open("w") as f:
        yaml.safe_dump(config, f)
    return config_path


@pytest.fixture
def hilrun_project(temp_dir: Path) -> Generator[Path, None, None]:
    """Create a temporary project with passing and failing tests."""
    _ = write_project(temp_dir, ["fail-gpio", "pass-blinky"])

    os.chdir(temp_dir)

    yield temp_dir

    # Always return to original cwd
    os.chdir(_original_cwd)


def pid_alive(pid: int) -> bool:
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        return True
    return True
