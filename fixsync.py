"""
FixSync - regenerate test fixtures from a pinned external revision

Copyright 2026 UAA Software

Permission is hereby granted, free of charge, to any person obtaining a copy of
this software and associated documentation files (the “Software”), to deal in
the Software without restriction, including without limitation the rights to
use, copy, modify, merge, publish, distribute, sublicense, and/or sell copies of
the Software, and to permit persons to whom the Software is furnished to do so,
subject to the following conditions:

The above copyright notice and this permission notice shall be included in all
copies or substantial portions of the Software.

THE SOFTWARE IS PROVIDED “AS IS”, WITHOUT WARRANTY OF ANY KIND, EXPRESS OR
IMPLIED, INCLUDING BUT NOT LIMITED TO THE WARRANTIES OF MERCHANTABILITY, FITNESS
FOR A PARTICULAR PURPOSE AND NONINFRINGEMENT. IN NO EVENT SHALL THE AUTHORS OR
COPYRIGHT HOLDERS BE LIABLE FOR ANY CLAIM, DAMAGES OR OTHER LIABILITY, WHETHER
IN AN ACTION OF CONTRACT, TORT OR OTHERWISE, ARISING FROM, OUT OF OR IN
CONNECTION WITH THE SOFTWARE OR THE USE OR OTHER DEALINGS IN THE SOFTWARE.
"""

import argparse
import hashlib
import json
import logging
import os
import shlex
import shutil
import subprocess
import sys
import tempfile
import tomllib
from pathlib import Path
from typing import Any

from filelock import FileLock
from filelock import Timeout as LockTimeout


logger = logging.getLogger("fixsync")


DEFAULT_URL = "https://gitlab.com/spade-lang/spade"
DEFAULT_REVISION = "03fcfc640df3f52def3e45a3ba2ea2c91a52d7bf"

DEFAULT_CONFIG: dict[str, Any] = {
    "source": {
        "url": DEFAULT_URL,
        "revision": DEFAULT_REVISION,
        "name": "spade",
    },
    "test": {
        "workdir": "swim_tests",
        "command": [
            "swim",
            "test",
            "pipeline_ready_valid",
            "--testcases",
            "enabled_stages_behave_normally",
        ],
    },
    "output": {
        "dest_dir": "examples",
    },
    "artifacts": [
        {"source": "build/state.ron", "dest": "spade_state.ron"},
        {
            "source": "build/pipeline_ready_valid_enabled_stages_behave_normally/pipeline_ready_valid.vcd",
            "dest": "spade.vcd",
        },
    ],
}

TOOL_HINTS = {
    "git": "Install git or fix PATH.",
    "swim": "Install swim (the Spade build tool) or fix PATH.",
}

MANIFEST_VERSION = 1
DIAGNOSTIC_TAIL_LINES = 20


# =============================================================================
# Exceptions
# =============================================================================


class ToolError(Exception):
    """An external command could not be run or exited non-zero."""

    def __init__(
        self,
        message: str,
        returncode: int,
        stdout: str = "",
        stderr: str = "",
        hint: str | None = None,
    ):
        super().__init__(message)
        self.returncode = returncode
        self.stdout = stdout
        self.stderr = stderr
        self.hint = hint

    def diagnostics(self, max_lines: int = DIAGNOSTIC_TAIL_LINES) -> str:
        """Return the last lines of stderr, falling back to stdout."""
        output = self.stderr.strip() or self.stdout.strip()
        return "\n".join(output.splitlines()[-max_lines:])


class ConfigError(Exception):
    """Invalid configuration or command line input."""


class ManifestError(Exception):
    """Unreadable or unsupported manifest."""


class SyncError(Exception):
    """A fixture sync step failed.

    Attributes:
        step: Name of the failing step, shown to the user
        detail: Diagnostic output of the underlying tool, if any
        hint: Optional remediation hint
    """

    step = "sync"

    def __init__(self, message: str, detail: str = "", hint: str | None = None):
        super().__init__(message)
        self.detail = detail
        self.hint = hint


class CloneFailed(SyncError):
    step = "clone"


class CheckoutFailed(SyncError):
    step = "checkout"


class TestRunFailed(SyncError):
    step = "test run"


class ArtifactMissing(SyncError):
    step = "artifact lookup"


class CopyFailed(SyncError):
    step = "copy"


class CleanupFailed(SyncError):
    """The temporary checkout could not be removed. Logged, never fatal."""

    step = "cleanup"


# =============================================================================
# Terminal Output
# =============================================================================


ANSI = {
    "red": "\033[31m",
    "green": "\033[32m",
    "yellow": "\033[33m",
    "reset": "\033[0m",
}


def color_enabled(stream=None) -> bool:
    """Color only interactive terminals, and never under NO_COLOR or CI."""
    if os.environ.get("NO_COLOR") or os.environ.get("CI"):
        return False
    stream = stream if stream is not None else sys.stdout
    return stream.isatty()


def paint(text: str, color: str, stream=None, force: bool = False) -> str:
    """Wrap text in an ANSI color when the target stream shows colors."""
    code = ANSI.get(color)
    if code is None or not (force or color_enabled(stream)):
        return text
    return f"{code}{text}{ANSI['reset']}"


def report_error(message: str, hint: str | None = None) -> int:
    """Print an error (and hint) to stderr, log it, and return exit code 1."""
    print(paint(f"Error: {message}", "red", sys.stderr), file=sys.stderr)
    logger.error(message)
    if hint:
        print(paint(f"Hint: {hint}", "yellow", sys.stderr), file=sys.stderr)
        logger.error(f"Hint: {hint}")
    return 1


def report_sync_failure(exc: SyncError) -> int:
    """Report which step failed, followed by the tool's own diagnostics."""
    message = f"{exc.step} failed: {exc}"
    if exc.detail:
        message = f"{message}\n{exc.detail}"
    return report_error(message, hint=exc.hint)


# =============================================================================
# Logging
# =============================================================================


LOG_FORMAT = "%(asctime)s %(levelname)-7s %(name)s: %(message)s"


def log_file_path() -> Path:
    """Return the log file, ~/.fixsync/fixsync.log unless FIXSYNC_LOG is set."""
    override = os.environ.get("FIXSYNC_LOG")
    if override:
        return Path(override)
    return Path.home() / ".fixsync" / "fixsync.log"


def setup_logging(verbose: int = 0, log_file: bool = True) -> None:
    """Attach console and file handlers to the fixsync logger.

    The console shows warnings by default, progress with -v, and the
    commands run plus their output with -vv. The log file records
    everything regardless of verbosity.

    Args:
        verbose: Number of -v flags given
        log_file: Whether to append to the log file
    """
    console_level = {0: logging.WARNING, 1: logging.INFO}.get(verbose, logging.DEBUG)

    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    console = logging.StreamHandler(sys.stderr)
    console.setLevel(console_level)
    console.setFormatter(logging.Formatter("%(levelname)s: %(message)s"))
    logger.addHandler(console)
    logger.setLevel(console_level)

    if not log_file:
        return

    path = log_file_path()
    path.parent.mkdir(parents=True, exist_ok=True)
    file_handler = logging.FileHandler(path, mode="a", encoding="utf-8")
    file_handler.setLevel(logging.DEBUG)
    file_handler.setFormatter(logging.Formatter(LOG_FORMAT))
    logger.addHandler(file_handler)
    logger.setLevel(logging.DEBUG)
    logger.debug(f"Logging to {path} (verbose={verbose})")


# =============================================================================
# Files & Locks
# =============================================================================


def with_file_lock(path: Path, timeout: float = 10.0) -> FileLock:
    """Return a cross-process lock on path; timeout=0 fails at once if held."""
    path.parent.mkdir(parents=True, exist_ok=True)
    return FileLock(path, timeout=timeout)


def sibling_temp(path: Path, tag: str) -> Path:
    """Create an empty hidden temp file next to path and return its name."""
    fd, name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=f".{tag}")
    os.close(fd)
    return Path(name)


def atomic_write_text(dest: Path, text: str) -> None:
    """Write text to dest through a sibling temp file and a rename."""
    dest.parent.mkdir(parents=True, exist_ok=True)
    temp_path = sibling_temp(dest, "tmp")
    try:
        temp_path.write_text(text, encoding="utf-8")
        os.replace(temp_path, dest)
    except BaseException:
        temp_path.unlink(missing_ok=True)
        raise


def sha256_file(path: Path) -> str:
    with path.open("rb") as f:
        return hashlib.file_digest(f, "sha256").hexdigest()


def _as_text(output: str | bytes | None) -> str:
    if output is None:
        return ""
    if isinstance(output, bytes):
        return output.decode("utf-8", errors="replace")
    return output


# =============================================================================
# Configuration
# =============================================================================


def get_user_config_dir() -> Path:
    """Return the per-user config directory (FIXSYNC_USER_CONFIG, APPDATA or XDG)."""
    override = os.environ.get("FIXSYNC_USER_CONFIG")
    if override:
        return Path(override)
    if os.name == "nt":
        base = Path(os.environ.get("APPDATA", Path.home() / "AppData" / "Roaming"))
    else:
        base = Path(os.environ.get("XDG_CONFIG_HOME", Path.home() / ".config"))
    return base / "fixsync"


def resolve_paths(project_root: Path) -> tuple[Path, Path]:
    """Return (state_dir, config_file) for a project, honoring FIXSYNC_CONFIG."""
    state_dir = project_root / ".fixsync"
    override = os.environ.get("FIXSYNC_CONFIG")
    config_file = Path(override) if override else state_dir / "config.toml"
    return state_dir, config_file


def load_config(config_file: Path) -> dict[str, Any]:
    """Parse a TOML config file; a missing file yields an empty table."""
    if not config_file.is_file():
        return {}
    try:
        with config_file.open("rb") as f:
            return tomllib.load(f)
    except tomllib.TOMLDecodeError as e:
        raise ConfigError(f"Invalid TOML in {config_file}: {e}") from e


def merge_tables(base: dict[str, Any], overlay: dict[str, Any]) -> dict[str, Any]:
    """Overlay one config table on another. Sub-tables merge, lists replace."""
    merged = dict(base)
    for key, value in overlay.items():
        current = merged.get(key)
        if isinstance(current, dict) and isinstance(value, dict):
            value = merge_tables(current, value)
        merged[key] = value
    return merged


def load_merged_config(config_file: Path) -> dict[str, Any]:
    """Built-in defaults, then the project config, then the user config."""
    config = merge_tables(DEFAULT_CONFIG, load_config(config_file))
    return merge_tables(config, load_config(get_user_config_dir() / "config.toml"))


def _check_timeout(value: Any, where: str) -> float | None:
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, (int, float)) or value <= 0:
        raise ConfigError(f"{where} must be a positive number of seconds")
    return float(value)


def _check_relative(rel: str, where: str) -> None:
    rel_path = Path(rel)
    if rel_path.is_absolute() or ".." in rel_path.parts:
        raise ConfigError(f"{where} must be a relative path without '..': {rel}")


def validate_config(config: dict[str, Any]) -> dict[str, Any]:
    """Check a merged configuration and return a normalized copy.

    The test command may be given as a list or a shell-style string.

    Raises:
        ConfigError: If any setting is missing or malformed
    """
    source = dict(config.get("source", {}))
    test = dict(config.get("test", {}))
    output = dict(config.get("output", {}))
    artifacts = config.get("artifacts", [])

    url = source.get("url")
    if not isinstance(url, str) or not url.strip():
        raise ConfigError("source.url must be a non-empty string")

    name = source.get("name")
    if not isinstance(name, str) or name in ("", ".", "..") or "/" in name or "\\" in name:
        raise ConfigError("source.name must be a plain directory name")

    if not isinstance(source.get("revision"), str):
        raise ConfigError("source.revision must be a string")

    command = test.get("command")
    if isinstance(command, str):
        command = shlex.split(command)
    if not isinstance(command, list) or not command or not all(isinstance(a, str) for a in command):
        raise ConfigError("test.command must be a non-empty list of strings")
    test["command"] = command

    workdir = test.setdefault("workdir", "")
    if not isinstance(workdir, str):
        raise ConfigError("test.workdir must be a string")
    _check_relative(workdir, "test.workdir")

    source["timeout"] = _check_timeout(source.get("timeout"), "source.timeout")
    test["timeout"] = _check_timeout(test.get("timeout"), "test.timeout")

    if not isinstance(output.get("dest_dir"), str) or not output["dest_dir"]:
        raise ConfigError("output.dest_dir must be a non-empty string")

    if not isinstance(artifacts, list) or not artifacts:
        raise ConfigError("At least one [[artifacts]] entry is required")

    normalized = []
    for i, artifact in enumerate(artifacts):
        if not isinstance(artifact, dict):
            raise ConfigError(f"artifacts[{i}] must be a table")
        for field in ("source", "dest"):
            value = artifact.get(field)
            if not isinstance(value, str) or not value:
                raise ConfigError(f"artifacts[{i}].{field} must be a non-empty string")
            _check_relative(value, f"artifacts[{i}].{field}")
        normalized.append({"source": artifact["source"], "dest": artifact["dest"]})

    dests = [a["dest"] for a in normalized]
    duplicates = sorted({d for d in dests if dests.count(d) > 1})
    if duplicates:
        raise ConfigError(f"Duplicate artifact destination: {', '.join(duplicates)}")

    return {"source": source, "test": test, "output": output, "artifacts": normalized}


def resolve_dest_dir(project_root: Path, dest: str | Path) -> Path:
    """Resolve the fixture directory against the project root."""
    dest_path = Path(dest)
    return dest_path if dest_path.is_absolute() else project_root / dest_path


# =============================================================================
# External Tools
# =============================================================================


def run_tool(
    args: list[str],
    *,
    cwd: Path | None = None,
    timeout: float | None = None,
) -> str:
    """Run an external command to completion and return its stdout.

    Raises:
        ToolError: 127 if the executable is missing, 126 if it cannot be
            started, 124 on timeout, or the command's own non-zero code
    """
    tool = args[0]
    logger.debug(f"Running {shlex.join(args)} (cwd={cwd})")

    try:
        result = subprocess.run(
            args, capture_output=True, text=True, cwd=cwd, timeout=timeout
        )
    except FileNotFoundError as exc:
        raise ToolError(
            f"{tool} not found in PATH", 127, stderr=str(exc), hint=TOOL_HINTS.get(tool)
        ) from exc
    except subprocess.TimeoutExpired as exc:
        raise ToolError(
            f"{tool} timed out after {timeout:g}s",
            124,
            _as_text(exc.stdout),
            _as_text(exc.stderr),
        ) from exc
    except OSError as exc:
        raise ToolError(
            f"{tool} could not be started: {exc.strerror or exc}",
            126,
            stderr=str(exc),
            hint=f"Check that {tool} is an executable program.",
        ) from exc

    for name, stream in (("stdout", result.stdout), ("stderr", result.stderr)):
        if stream:
            logger.debug(f"{tool} {name}:\n{stream.rstrip()}")

    if result.returncode != 0:
        raise ToolError(
            f"{tool} exited with code {result.returncode}",
            result.returncode,
            result.stdout,
            result.stderr,
        )
    return result.stdout


def clone_repository(url: str, checkout_dir: Path, timeout: float | None = None) -> None:
    logger.info(f"Cloning {url}")
    try:
        run_tool(["git", "clone", url, str(checkout_dir)], timeout=timeout)
    except ToolError as exc:
        raise CloneFailed(
            f"git clone {url}: {exc}",
            exc.diagnostics(),
            hint=exc.hint or "Check network access and the source url.",
        ) from exc


def checkout_revision(checkout_dir: Path, revision: str, timeout: float | None = None) -> None:
    logger.info(f"Checking out {revision}")
    try:
        run_tool(["git", "checkout", "--detach", revision], cwd=checkout_dir, timeout=timeout)
    except ToolError as exc:
        raise CheckoutFailed(
            f"git checkout {revision}: {exc}",
            exc.diagnostics(),
            hint=exc.hint or "Make sure the revision exists in the source repository.",
        ) from exc


def run_test_command(command: list[str], test_dir: Path, timeout: float | None = None) -> None:
    """Run the test command that produces the artifacts, inside test_dir."""
    if not test_dir.is_dir():
        raise TestRunFailed(f"Test directory not found in checkout: {test_dir.name}")

    logger.info(f"Running {shlex.join(command)}")
    try:
        run_tool(command, cwd=test_dir, timeout=timeout)
    except ToolError as exc:
        raise TestRunFailed(
            f"{shlex.join(command)}: {exc}", exc.diagnostics(), hint=exc.hint
        ) from exc


# =============================================================================
# Fixture Sync
# =============================================================================


def create_workdir() -> Path:
    workdir = Path(tempfile.mkdtemp(prefix="fixsync-"))
    logger.debug(f"Created working directory {workdir}")
    return workdir


def release_workdir(workdir: Path) -> None:
    """Delete the temporary working directory.

    Raises:
        CleanupFailed: If the directory could not be removed
    """
    if not workdir.exists():
        return
    try:
        shutil.rmtree(workdir)
    except OSError as exc:
        raise CleanupFailed(f"Could not remove {workdir}: {exc}") from exc
    logger.debug(f"Removed working directory {workdir}")


def locate_artifacts(test_dir: Path, artifacts: list[dict[str, str]]) -> list[Path]:
    """Return the produced file for every artifact, or raise ArtifactMissing."""
    sources = [test_dir / artifact["source"] for artifact in artifacts]
    missing = [a["source"] for a, path in zip(artifacts, sources) if not path.is_file()]
    if missing:
        raise ArtifactMissing(
            f"Expected artifact(s) not produced: {', '.join(missing)}",
            hint="Check that the test command and artifact paths match the pinned revision.",
        )
    return sources


def _roll_back(replaced: list[Path], backups: dict[Path, Path]) -> None:
    """Undo a partial copy: drop new files, move previous contents back."""
    for dest in replaced:
        if dest not in backups:
            dest.unlink(missing_ok=True)
    for dest, backup in backups.items():
        try:
            os.replace(backup, dest)
        except OSError as exc:
            logger.error(f"Could not restore {dest}; previous contents kept in {backup}: {exc}")


def copy_artifacts(
    sources: list[Path], artifacts: list[dict[str, str]], dest_dir: Path
) -> list[Path]:
    """Copy every artifact into dest_dir, or leave dest_dir as it was.

    Each copy is staged next to its destination. Existing fixtures are then
    moved aside to backups while the staged files take their place; if any
    rename fails, the backups are moved back.

    Raises:
        CopyFailed: If staging or replacing fails
    """
    staged: list[tuple[Path, Path]] = []
    try:
        for src, artifact in zip(sources, artifacts):
            dest = dest_dir / artifact["dest"]
            dest.parent.mkdir(parents=True, exist_ok=True)
            temp_path = sibling_temp(dest, "new")
            staged.append((temp_path, dest))
            shutil.copyfile(src, temp_path)
            shutil.copymode(src, temp_path)
    except OSError as exc:
        for temp_path, _ in staged:
            temp_path.unlink(missing_ok=True)
        raise CopyFailed(f"Could not stage {artifact['dest']}: {exc}") from exc

    backups: dict[Path, Path] = {}
    replaced: list[Path] = []
    try:
        for temp_path, dest in staged:
            if dest.exists():
                backup = sibling_temp(dest, "old")
                try:
                    os.replace(dest, backup)
                except OSError:
                    backup.unlink(missing_ok=True)
                    raise
                backups[dest] = backup
            os.replace(temp_path, dest)
            replaced.append(dest)
    except OSError as exc:
        _roll_back(replaced, backups)
        for temp_path, _ in staged:
            temp_path.unlink(missing_ok=True)
        raise CopyFailed(f"Could not replace {dest}: {exc}") from exc

    for backup in backups.values():
        backup.unlink(missing_ok=True)
    for dest in replaced:
        logger.info(f"Wrote {dest}")
    return replaced


def sync_fixtures(
    revision: str,
    dest_dir: Path,
    config: dict[str, Any],
    dry_run: bool = False,
) -> list[Path]:
    """Regenerate fixtures from the external repository at revision.

    Clones the source into a temporary directory, checks out revision, runs
    the test command and copies the artifacts into dest_dir. The temporary
    directory is removed whatever happens, including interruption.

    Args:
        revision: Revision to check out, must be non-empty
        dest_dir: Directory receiving the fixtures
        config: Validated configuration (see validate_config)
        dry_run: If True, only print what would be done

    Returns:
        Destination paths, in artifact order

    Raises:
        ConfigError: If revision is empty
        SyncError: The first failing step (CloneFailed, CheckoutFailed,
            TestRunFailed, ArtifactMissing or CopyFailed)
    """
    revision = (revision or "").strip()
    if not revision:
        raise ConfigError("Revision must be a non-empty identifier")

    source = config["source"]
    test = config["test"]
    artifacts = config["artifacts"]
    destinations = [dest_dir / artifact["dest"] for artifact in artifacts]

    if dry_run:
        print(f"[DRY-RUN] Would clone {source['url']} and check out {revision}")
        print(f"[DRY-RUN] Would run '{shlex.join(test['command'])}' in {test['workdir'] or '.'}")
        for artifact, dest in zip(artifacts, destinations):
            print(f"[DRY-RUN] Would copy {artifact['source']} -> {dest}")
        return destinations

    workdir = create_workdir()
    try:
        checkout_dir = workdir / source["name"]
        clone_repository(source["url"], checkout_dir, timeout=source["timeout"])
        checkout_revision(checkout_dir, revision, timeout=source["timeout"])

        test_dir = checkout_dir / test["workdir"]
        run_test_command(test["command"], test_dir, timeout=test["timeout"])

        produced = locate_artifacts(test_dir, artifacts)
        return copy_artifacts(produced, artifacts, dest_dir)
    finally:
        try:
            release_workdir(workdir)
        except CleanupFailed as exc:
            logger.warning(f"{exc.step} failed: {exc}")


# =============================================================================
# Manifest
# =============================================================================


def manifest_key(path: Path, project_root: Path) -> str:
    """Project-relative POSIX path, or the absolute path outside the project."""
    resolved = path.resolve()
    try:
        return resolved.relative_to(project_root.resolve()).as_posix()
    except ValueError:
        return resolved.as_posix()


def read_manifest(state_dir: Path) -> dict[str, Any] | None:
    """Return the recorded sync, or None if nothing was synced yet."""
    path = state_dir / "manifest.json"
    if not path.exists():
        return None
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, ValueError) as e:
        raise ManifestError(f"Cannot read {path}: {e}") from e
    if not isinstance(data, dict) or data.get("version") != MANIFEST_VERSION:
        raise ManifestError(f"Unsupported manifest format in {path}")
    return data


def record_sync(
    state_dir: Path,
    project_root: Path,
    revision: str,
    source_url: str,
    artifacts: list[dict[str, str]],
    written: list[Path],
) -> dict[str, Any]:
    """Write manifest.json describing the fixtures a sync just produced."""
    fixtures = {
        manifest_key(path, project_root): {
            "artifact": artifact["source"],
            "sha256": sha256_file(path),
            "size": path.stat().st_size,
        }
        for artifact, path in zip(artifacts, written)
    }
    manifest = {
        "version": MANIFEST_VERSION,
        "source": source_url,
        "revision": revision,
        "fixtures": fixtures,
    }
    with with_file_lock(state_dir / "manifest.lock"):
        atomic_write_text(state_dir / "manifest.json", json.dumps(manifest, indent=2) + "\n")
    return manifest


def fixture_status(
    manifest: dict[str, Any], project_root: Path, pinned_revision: str
) -> dict[str, Any]:
    """Compare the fixtures on disk with the last recorded sync.

    A fixture is missing when its file is gone and modified when its sha256
    differs. The sync is stale when the pinned revision has moved on since.
    """
    missing = []
    modified = []
    for key, entry in manifest.get("fixtures", {}).items():
        path = project_root / key
        if not path.is_file():
            missing.append(key)
        elif sha256_file(path) != entry.get("sha256"):
            modified.append(key)

    return {
        "revision": manifest.get("revision"),
        "pinned": pinned_revision,
        "stale": manifest.get("revision") != pinned_revision,
        "missing": missing,
        "modified": modified,
    }


# =============================================================================
# Commands
# =============================================================================


def cmd_sync(
    project_root: Path,
    state_dir: Path,
    config: dict[str, Any],
    revision: str,
    dest: str,
    dry_run: bool = False,
) -> int:
    dest_dir = resolve_dest_dir(project_root, dest)

    try:
        if dry_run:
            sync_fixtures(revision, dest_dir, config, dry_run=True)
            return 0

        with with_file_lock(state_dir / "sync.lock", timeout=0):
            written = sync_fixtures(revision, dest_dir, config)
            try:
                manifest = record_sync(
                    state_dir,
                    project_root,
                    revision.strip(),
                    config["source"]["url"],
                    config["artifacts"],
                    written,
                )
            except OSError as e:
                return report_error(
                    f"Fixtures were written but the sync could not be recorded: {e}",
                    hint=f"Check that {state_dir} is writable.",
                )
    except ConfigError as e:
        return report_error(str(e))
    except SyncError as e:
        return report_sync_failure(e)
    except LockTimeout:
        return report_error(
            "Another sync is already running in this project",
            hint=f"Wait for it to finish, or remove {state_dir / 'sync.lock'} if it crashed.",
        )
    except OSError as e:
        return report_error(f"Sync failed: {e}")

    print(paint(f"Synced {len(written)} fixture(s) at {manifest['revision']}", "green"))
    for key in manifest["fixtures"]:
        print(f"  {key}")
    return 0


def cmd_status(
    project_root: Path,
    state_dir: Path,
    config: dict[str, Any],
    json_output: bool = False,
    check: bool = False,
) -> int:
    """Show whether fixtures still match the last sync and the pinned revision."""
    try:
        manifest = read_manifest(state_dir)
    except ManifestError as e:
        return report_error(str(e), hint="Run: fixsync sync")

    if manifest is None:
        if json_output:
            print(json.dumps({"synced": False}, indent=2))
        else:
            print("No fixtures synced yet (run: fixsync sync)")
        return 1 if check else 0

    try:
        status = fixture_status(manifest, project_root, config["source"]["revision"])
    except OSError as e:
        return report_error(f"Cannot read fixtures: {e}")
    dirty = bool(status["stale"] or status["missing"] or status["modified"])

    if json_output:
        print(json.dumps({"synced": True, **status}, indent=2))
    else:
        print(f"Synced revision: {status['revision']}")
        if status["stale"]:
            print(paint(f"Stale: pinned revision is now {status['pinned']}", "yellow"))
        for key in status["missing"]:
            print(paint(f"  missing   {key}", "red"))
        for key in status["modified"]:
            print(paint(f"  modified  {key}", "yellow"))
        if not dirty:
            print(paint("Fixtures are up to date", "green"))
        else:
            print("Regenerate with: fixsync sync")

    return 1 if (check and dirty) else 0


# =============================================================================
# CLI Entry Point
# =============================================================================


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="fixsync",
        description="Regenerate test fixtures from a pinned revision of an external repository",
        exit_on_error=False,
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="count",
        default=0,
        help="Show progress (-v) or every command and its output (-vv)",
    )
    commands = parser.add_subparsers(dest="command", metavar="COMMAND")

    sync = commands.add_parser("sync", help="Clone, run the test command and copy fixtures")
    sync.add_argument("--revision", help="revision to check out (default: the pinned revision)")
    sync.add_argument("--dest", help="directory receiving the fixtures (default: examples)")
    sync.add_argument("--url", help="source repository url")
    sync.add_argument(
        "--timeout", type=float, help="timeout in seconds for each external command"
    )
    sync.add_argument(
        "--dry-run", action="store_true", help="print the plan without running anything"
    )

    status = commands.add_parser("status", help="Compare fixtures with the last sync")
    status.add_argument("--json", action="store_true", help="machine-readable output")
    status.add_argument(
        "--check",
        action="store_true",
        help="exit 1 if fixtures are missing, modified or stale",
    )
    return parser


def _apply_overrides(config: dict[str, Any], args: argparse.Namespace) -> dict[str, Any]:
    """Overlay sync flags onto the merged configuration."""
    overlay: dict[str, Any] = {}
    if getattr(args, "url", None):
        overlay["source"] = {"url": args.url}
    if getattr(args, "timeout", None) is not None:
        overlay.setdefault("source", {})["timeout"] = args.timeout
        overlay["test"] = {"timeout": args.timeout}
    return merge_tables(config, overlay)


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    try:
        args = parser.parse_args(argv)
    except SystemExit as e:
        # --help, or a usage error argparse already printed
        return e.code if isinstance(e.code, int) else 1
    except argparse.ArgumentError as e:
        return report_error(str(e))

    setup_logging(verbose=args.verbose)

    if args.command is None:
        parser.print_help()
        return 0

    project_root = Path.cwd()
    state_dir, config_file = resolve_paths(project_root)

    try:
        config = validate_config(_apply_overrides(load_merged_config(config_file), args))
    except ConfigError as e:
        return report_error(str(e), hint=f"Check {config_file}")

    if args.command == "sync":
        revision = args.revision if args.revision is not None else config["source"]["revision"]
        dest = args.dest if args.dest is not None else config["output"]["dest_dir"]
        return cmd_sync(project_root, state_dir, config, revision, dest, args.dry_run)
    return cmd_status(project_root, state_dir, config, args.json, args.check)


if __name__ == "__main__":
    sys.exit(main())
