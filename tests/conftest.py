"""Test fixtures and utilities for FixSync."""

import subprocess
import tempfile
from pathlib import Path
from typing import Any, Callable

import pytest

import fixsync


DEFAULT_CONTENTS = {
    "build/state.ron": b"(stages: [Enabled, Enabled])\n",
    "build/pipeline_ready_valid_enabled_stages_behave_normally/pipeline_ready_valid.vcd": (
        b"$timescale 1ps $end\n$var wire 1 ! clk $end\n#0\n0!\n#1\n1!\n"
    ),
}


@pytest.fixture
def toolchain_mock(mocker: Any) -> Callable:
    """Mock git and the test runner.

    Fakes `git clone` by creating the checkout (with its test directory),
    `git checkout` as a no-op, and the test command by writing artifacts
    into its working directory.

    Usage:
        def test_something(toolchain_mock):
            mock = toolchain_mock(
                artifacts={'build/state.ron': b'...'},
                fail={'test': (1, '', 'assertion failed')},
            )
            # mock['calls'] lists (cmd, cwd); mock['checkouts'] the cloned dirs

    Failure keys are 'clone', 'checkout' and 'test'. A '_handler' callable
    taking (cmd, cwd) may return a (returncode, stdout, stderr) tuple, or
    None to fall through to the default behavior.
    """

    def _create_mock(
        artifacts: dict[str, bytes] | None = None,
        fail: dict[str, tuple[int, str, str]] | None = None,
        handler: Callable | None = None,
    ) -> dict:
        call_log: list[tuple[list[str], Path | None]] = []
        checkouts: list[Path] = []
        contents = DEFAULT_CONTENTS if artifacts is None else artifacts
        fail = fail or {}

        def mock_run(*args: Any, **kwargs: Any) -> Any:
            cmd = list(args[0] if args else kwargs.get("args", []))
            cwd = kwargs.get("cwd")
            cwd = Path(cwd) if cwd is not None else None
            call_log.append((cmd, cwd))

            if handler:
                response = handler(cmd, cwd)
                if response is not None:
                    return subprocess.CompletedProcess(cmd, *response)

            if cmd[:2] == ["git", "clone"]:
                if "clone" in fail:
                    return subprocess.CompletedProcess(cmd, *fail["clone"])
                checkout = Path(cmd[3])
                (checkout / "swim_tests").mkdir(parents=True)
                checkouts.append(checkout)
                return subprocess.CompletedProcess(cmd, 0, "", "Cloning into 'spade'...\n")

            if cmd[:2] == ["git", "checkout"]:
                if "checkout" in fail:
                    return subprocess.CompletedProcess(cmd, *fail["checkout"])
                return subprocess.CompletedProcess(cmd, 0, "", f"HEAD is now at {cmd[-1][:7]}\n")

            if "test" in fail:
                return subprocess.CompletedProcess(cmd, *fail["test"])
            for rel_path, data in contents.items():
                target = cwd / rel_path
                target.parent.mkdir(parents=True, exist_ok=True)
                target.write_bytes(data)
            return subprocess.CompletedProcess(cmd, 0, "1 test passed\n", "")

        mocker.patch("fixsync.subprocess.run", side_effect=mock_run)

        return {"calls": call_log, "checkouts": checkouts}

    return _create_mock


@pytest.fixture
def project_root(tmp_path: Path) -> Path:
    """Create a temporary project root.

    Creates:
        <tmp_path>/project/
            examples/

    Returns:
        Path to the project root.
    """
    root = tmp_path / "project"
    (root / "examples").mkdir(parents=True)
    return root


@pytest.fixture
def config() -> dict[str, Any]:
    """Validated default configuration."""
    return fixsync.validate_config(fixsync.DEFAULT_CONFIG)


@pytest.fixture
def scratch_dir(tmp_path: Path) -> Path:
    """Directory receiving temporary working directories during a test."""
    return tmp_path / "scratch"


@pytest.fixture(autouse=True)
def isolated_env(tmp_path: Path, scratch_dir: Path, monkeypatch: Any) -> None:
    """Keep home, user config and temp dirs inside tmp_path."""
    home = tmp_path / "home"
    home.mkdir()
    monkeypatch.setenv("HOME", str(home))
    monkeypatch.setenv("USERPROFILE", str(home))
    monkeypatch.setenv("XDG_CONFIG_HOME", str(home / ".config"))
    monkeypatch.setenv("APPDATA", str(home / "AppData"))
    for var in ("FIXSYNC_CONFIG", "FIXSYNC_LOG", "FIXSYNC_USER_CONFIG", "NO_COLOR", "CI"):
        monkeypatch.delenv(var, raising=False)

    scratch_dir.mkdir()
    monkeypatch.setattr(tempfile, "tempdir", str(scratch_dir))


@pytest.fixture(autouse=True)
def block_real_subprocess(monkeypatch: Any) -> None:
    """Block real git and test-runner calls.

    Tests that need them must use the toolchain_mock fixture, which
    overrides this with a proper mock.
    """
    original_run = subprocess.run

    def guarded_run(*args: Any, **kwargs: Any) -> Any:
        cmd = args[0] if args else kwargs.get("args", [])
        if cmd and str(cmd[0]).lower() in ("git", "swim"):
            raise RuntimeError(f"Unmocked external command in test: {cmd}")
        return original_run(*args, **kwargs)

    monkeypatch.setattr("fixsync.subprocess.run", guarded_run)


@pytest.fixture
def artifact_contents() -> dict[str, bytes]:
    """Artifact bytes the mocked test command produces by default."""
    return dict(DEFAULT_CONTENTS)
