# Copyright (c) Syntropy Systems
"""Configuration management for hilrun."""
from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import cast

import yaml

from hilrun.errors import ConfigError
from hilrun.models.session import DEFAULT_PROFILES, BuildProfile, RestorePolicy, RigState

CONFIG_DIR_NAME = ".hilrun"
CONFIG_FILE_NAME = "config.yaml"

DEFAULT_CONFIG_YAML = """\
# hilrun configuration

# Sentinel markers emitted by the firmware under test
success_markers: [TEST-SUCCESS]
failure_markers: [TEST-FAIL]

# Test programs to discover in the working directory
test_glob: "*.rs"

# Build and run commands; {test} and {profile} are substituted and the
# profile flags are appended
build_command: [cargo, build, --bin, "{test}", --features, test-parser]
run_command: [cargo, run, --bin, "{test}", --features, test-parser]

# Seconds between SIGTERM and SIGKILL when a child is terminated
kill_grace_period: 5

profiles:
  - name: debug
    flags: []
    build_timeout: 180
    run_timeout: 60
  - name: release
    flags: [--release]
    build_timeout: 180
    run_timeout: 60

device:
  detect_command: [probe-rs, list]
  absent_marker: No debug probes were found

# Used when no device is attached locally
remote:
  host: null
  port: 22
  user: null
  key_file: null
  password_env: HILRUN_REMOTE_PASSWORD
  workdir: "~/hil"
  command: "cd {workdir} && hilrun run --mode local"
  restore_command: "VBoxManage snapshot {vm} restore {snapshot}"
  vm: null
  snapshot: baseline
  restore_policy: both
  settle_delay: 30
  command_timeout: 1800
"""


@dataclass
class DeviceConfig:
    """How to tell whether a device is attached locally."""

    detect_command: list[str] = field(default_factory=lambda: ["probe-rs", "list"])
    absent_marker: str = "No debug probes were found"
    detect_timeout: float = 10.0


@dataclass
class RemoteConfig:
    """Remote rig controller connection and hygiene settings."""

    host: str | None = None
    port: int = 22
    user: str | None = None
    key_file: str | None = None
    password_env: str = "HILRUN_REMOTE_PASSWORD"
    workdir: str = "~/hil"
    command: str = "cd {workdir} && hilrun run --mode local"
    restore_command: str = "VBoxManage snapshot {vm} restore {snapshot}"
    vm: str | None = None
    snapshot: str = "baseline"
    restore_policy: RestorePolicy = RestorePolicy.BOTH
    # Seconds to wait after a restore for the rig to reboot and reconnect
    settle_delay: float = 30.0
    command_timeout: float = 1800.0
    connect_timeout: float = 10.0

    @property
    def configured(self) -> bool:
        return bool(self.host)

    @property
    def password(self) -> str | None:
        return os.environ.get(self.password_env) or None

    @property
    def rig_state(self) -> RigState:
        if not self.vm:
            msg = "remote.vm must be set to restore the rig baseline"
            raise ConfigError(msg)
        return RigState(
            vm=self.vm,
            snapshot=self.snapshot,
            restore_policy=self.restore_policy,
        )


@dataclass
class HilrunConfig:
    """Configuration for hilrun."""

    success_markers: list[str] = field(default_factory=lambda: ["TEST-SUCCESS"])
    failure_markers: list[str] = field(default_factory=lambda: ["TEST-FAIL"])

    test_glob: str = "*.rs"

    build_command: list[str] = field(
        default_factory=lambda: [
            "cargo", "build", "--bin", "{test}", "--features", "test-parser",
        ]
    )
    run_command: list[str] = field(
        default_factory=lambda: [
            "cargo", "run", "--bin", "{test}", "--features", "test-parser",
        ]
    )
    # Optional template for the built artifact, e.g. target/{profile}/{test}
    artifact_path: str | None = None

    # Grace period before SIGKILL after SIGTERM (seconds)
    kill_grace_period: float = 5.0

    profiles: list[BuildProfile] = field(default_factory=lambda: list(DEFAULT_PROFILES))
    device: DeviceConfig = field(default_factory=DeviceConfig)
    remote: RemoteConfig = field(default_factory=RemoteConfig)

    def select_profiles(self, names: list[str] | None) -> list[BuildProfile]:
        """Return the named profiles in the requested order, or all of them."""
        if not names:
            return list(self.profiles)
        by_name = {p.name: p for p in self.profiles}
        unknown = [n for n in names if n not in by_name]
        if unknown:
            msg = f"Unknown profile(s): {', '.join(unknown)}"
            raise ConfigError(msg)
        return [by_name[n] for n in names]


def find_hilrun_dir(start_path: Path | None = None) -> Path | None:
    """Find the nearest .hilrun directory by walking up from start_path.

    Returns None if no .hilrun directory is found.
    """
    if start_path is None:
        start_path = Path.cwd()

    current = start_path.resolve()

    while current != current.parent:
        hilrun_dir = current / CONFIG_DIR_NAME
        if hilrun_dir.is_dir():
            return hilrun_dir
        current = current.parent

    hilrun_dir = current / CONFIG_DIR_NAME
    if hilrun_dir.is_dir():
        return hilrun_dir

    return None


def get_global_config_dir() -> Path:
    """Get the global hilrun config directory (~/.hilrun)."""
    return Path.home() / CONFIG_DIR_NAME


def find_config_path(start_path: Path | None = None) -> Path | None:
    """Locate the config file hilrun would load, if any.

    Looks in the nearest .hilrun directory walking up from start_path,
    then ~/.hilrun/config.yaml.
    """
    found_dir = find_hilrun_dir(start_path)
    if found_dir is not None:
        path = found_dir / CONFIG_FILE_NAME
        if path.exists():
            return path
    global_config = get_global_config_dir() / CONFIG_FILE_NAME
    if global_config.exists():
        return global_config
    return None


def load_config(
    start_path: Path | None = None,
    config_path: Path | None = None,
) -> HilrunConfig:
    """Load configuration from an explicit file, a .hilrun directory, or defaults."""
    if config_path is None:
        config_path = find_config_path(start_path)

    if config_path is None:
        return HilrunConfig()

    try:
        with config_path.open() as f:
            data = yaml.safe_load(f) or {}
    except (OSError, yaml.YAMLError) as e:
        msg = f"Cannot read {config_path}: {e}"
        raise ConfigError(msg) from e

    if not isinstance(data, dict):
        msg = f"{config_path}: top level must be a mapping"
        raise ConfigError(msg)

    return parse_config(cast("dict[str, object]", data))


def parse_config(data: dict[str, object]) -> HilrunConfig:
    """Build a HilrunConfig from a decoded YAML mapping.

    Absent or null keys keep their defaults; any other value of the wrong
    type raises ConfigError.
    """
    config = HilrunConfig()

    success = data.get("success_markers")
    if success is not None:
        config.success_markers = _str_list(success, "success_markers", allow_empty=False)
    failure = data.get("failure_markers")
    if failure is not None:
        config.failure_markers = _str_list(failure, "failure_markers", allow_empty=False)

    test_glob = data.get("test_glob")
    if test_glob is not None:
        config.test_glob = _string(test_glob, "test_glob")

    build_command = data.get("build_command")
    if build_command is not None:
        config.build_command = _str_list(build_command, "build_command", allow_empty=False)
    run_command = data.get("run_command")
    if run_command is not None:
        config.run_command = _str_list(run_command, "run_command", allow_empty=False)

    artifact_path = data.get("artifact_path")
    if artifact_path is not None:
        config.artifact_path = _string(artifact_path, "artifact_path")

    kill_grace_period = data.get("kill_grace_period")
    if kill_grace_period is not None:
        config.kill_grace_period = _seconds(kill_grace_period, "kill_grace_period", allow_zero=True)

    profiles = data.get("profiles")
    if profiles is not None:
        config.profiles = _parse_profiles(profiles)

    device = data.get("device")
    if device is not None:
        config.device = _parse_device(_mapping(device, "device"))

    remote = data.get("remote")
    if remote is not None:
        config.remote = _parse_remote(_mapping(remote, "remote"))

    return config


def _mapping(value: object, key: str) -> dict[str, object]:
    if not isinstance(value, dict):
        msg = f"{key} must be a mapping"
        raise ConfigError(msg)
    return cast("dict[str, object]", value)


def _string(value: object, key: str) -> str:
    if not isinstance(value, str) or not value:
        msg = f"{key} must be a non-empty string"
        raise ConfigError(msg)
    return value


def _seconds(value: object, key: str, allow_zero: bool = False) -> float:
    # bool is an int subclass; `timeout: yes` is a typo, not one second
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        msg = f"{key} must be a number of seconds (got {value!r})"
        raise ConfigError(msg)
    if value < 0 or (value == 0 and not allow_zero):
        bound = "non-negative" if allow_zero else "positive"
        msg = f"{key} must be {bound} (got {value!r})"
        raise ConfigError(msg)
    return float(value)


def _str_list(value: object, key: str, allow_empty: bool = True) -> list[str]:
    if isinstance(value, str):
        return [_string(value, key)]
    if isinstance(value, list) and all(
        isinstance(v, (str, int, float)) and not isinstance(v, bool) for v in value
    ):
        if not value and not allow_empty:
            msg = f"{key} must not be empty"
            raise ConfigError(msg)
        return [str(v) for v in cast("list[object]", value)]
    msg = f"{key} must be a string or a list of strings"
    raise ConfigError(msg)


def _parse_profiles(value: object) -> list[BuildProfile]:
    if not isinstance(value, list) or not value:
        msg = "profiles must be a non-empty list"
        raise ConfigError(msg)

    profiles: list[BuildProfile] = []
    for entry in cast("list[object]", value):
        if isinstance(entry, str):
            entry = {"name": entry}
        if not isinstance(entry, dict) or not isinstance(entry.get("name"), str) or not entry["name"]:
            msg = "each profile needs a name"
            raise ConfigError(msg)
        item = cast("dict[str, object]", entry)
        name = cast("str", item["name"])
        kwargs: dict[str, object] = {"name": name}
        if item.get("flags") is not None:
            kwargs["flags"] = tuple(_str_list(item["flags"], f"profiles.{name}.flags"))
        for key in ("build_timeout", "run_timeout"):
            timeout = item.get(key)
            if timeout is not None:
                kwargs[key] = _seconds(timeout, f"profiles.{name}.{key}")
        profiles.append(BuildProfile.model_validate(kwargs))

    names = [p.name for p in profiles]
    if len(set(names)) != len(names):
        msg = "profile names must be unique"
        raise ConfigError(msg)
    return profiles


def _parse_device(data: dict[str, object]) -> DeviceConfig:
    device = DeviceConfig()
    detect_command = data.get("detect_command")
    if detect_command is not None:
        # An empty detect command means "never attached"
        device.detect_command = _str_list(detect_command, "device.detect_command")
    absent_marker = data.get("absent_marker")
    if absent_marker is not None:
        device.absent_marker = _string(absent_marker, "device.absent_marker")
    detect_timeout = data.get("detect_timeout")
    if detect_timeout is not None:
        device.detect_timeout = _seconds(detect_timeout, "device.detect_timeout")
    return device


def _parse_remote(data: dict[str, object]) -> RemoteConfig:
    remote = RemoteConfig()
    for key in (
        "host", "user", "key_file", "password_env", "workdir",
        "command", "restore_command", "vm", "snapshot",
    ):
        value = data.get(key)
        if value is not None:
            setattr(remote, key, _string(value, f"remote.{key}"))

    port = data.get("port")
    if port is not None:
        if isinstance(port, bool) or not isinstance(port, int) or not 0 < port < 65536:
            msg = f"remote.port must be a TCP port number (got {port!r})"
            raise ConfigError(msg)
        remote.port = port

    settle_delay = data.get("settle_delay")
    if settle_delay is not None:
        remote.settle_delay = _seconds(settle_delay, "remote.settle_delay", allow_zero=True)
    for key in ("command_timeout", "connect_timeout"):
        value = data.get(key)
        if value is not None:
            setattr(remote, key, _seconds(value, f"remote.{key}"))

    policy = data.get("restore_policy")
    if policy is not None:
        try:
            remote.restore_policy = RestorePolicy(str(policy))
        except ValueError as e:
            msg = f"remote.restore_policy must be one of before, after, both (got {policy!r})"
            raise ConfigError(msg) from e
    return remote
