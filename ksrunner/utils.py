"""Utility functions for kickstart-vm-runner."""

from __future__ import annotations

import os
import random
import shutil
import subprocess
import sys
import tempfile
import time
from http.client import HTTPException
from pathlib import Path
from typing import Dict, List, Optional, Sequence
from urllib.error import HTTPError, URLError
from urllib.request import Request, urlopen

try:
    import bcrypt  # type: ignore
except ImportError as exc:  # pragma: no cover
    raise SystemExit("bcrypt is required but not installed") from exc

from ksrunner.constants import (
    _LOG_VERBOSE,
    DISK_SIZE_RE,
    OS_RELEASE_PATH,
    RUN_ID_PREFIX,
    TRUTHY,
)
from ksrunner.exceptions import DownloadFailure, ManagerError
from ksrunner.models import CommandResult


def log(level: str, message: str) -> None:
    """Lightweight structured logging with coloured level tags."""
    if level == "DEBUG" and not _LOG_VERBOSE:
        return
    colours = {
        "INFO": "\033[0;34m",
        "WARN": "\033[1;33m",
        "ERROR": "\033[0;31m",
        "SUCCESS": "\033[0;32m",
        "DEBUG": "\033[0;90m",
    }
    colour = colours.get(level, "")
    reset = "\033[0m" if colour else ""
    stream = sys.stderr if level == "ERROR" else sys.stdout
    print(f"{colour}[{level}]{reset} {message}", file=stream, flush=True)


def get_env(name: str, default: Optional[str] = None) -> Optional[str]:
    return os.environ.get(name, default)


def get_env_bool(name: str, default: bool = False) -> bool:
    raw = os.environ.get(name)
    if raw is None:
        return default
    return raw.lower() in TRUTHY


def parse_int_env(name: str, default: str, min_val: int = 1, max_val: Optional[int] = None) -> int:
    raw = get_env(name, default)
    assert raw is not None
    try:
        value = int(raw)
    except ValueError:
        raise ManagerError(f"{name} must be an integer (got '{raw}')")
    if value < min_val:
        raise ManagerError(f"{name} must be >= {min_val} (got {value})")
    if max_val is not None and value > max_val:
        raise ManagerError(f"{name} must be <= {max_val} (got {value})")
    return value


def validate_disk_size(raw: str) -> str:
    if not DISK_SIZE_RE.match(raw):
        raise ManagerError(
            f"Invalid DISK_SIZE '{raw}'. Use a number with optional suffix: K, M, G, T (e.g. '10G')"
        )
    return raw


def read_os_release(path: Path = OS_RELEASE_PATH) -> Dict[str, str]:
    """Parse an os-release file into a dict (quotes stripped)."""
    info: Dict[str, str] = {}
    try:
        content = path.read_text()
    except OSError:
        return info
    for line in content.splitlines():
        line = line.strip()
        if not line or line.startswith("#") or "=" not in line:
            continue
        key, value = line.split("=", 1)
        info[key.strip()] = value.strip().strip("\"'")
    return info


def generate_run_id() -> str:
    return f"{RUN_ID_PREFIX}-{random.randint(1, 1000000)}"


def hash_password(password: str) -> str:
    """Generate a bcrypt crypt(3) hash for the kickstart user directive."""
    hashed = bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt())
    return hashed.decode("utf-8")


def ensure_directory(path: Path) -> None:
    path.mkdir(parents=True, exist_ok=True)


def missing_tools(tools: Sequence[str]) -> List[str]:
    return [tool for tool in tools if shutil.which(tool) is None]


def download_file(url: str, destination: Path, label: str = "Downloading") -> None:
    """Download a file with a progress bar using Python urllib.

    Data lands in a temporary file next to ``destination`` and is renamed into
    place only once complete, so an existing destination is always a finished
    download. Any transfer error is reported as ``DownloadFailure``.
    """
    log("INFO", f"{label}: {url}")
    req = Request(url, headers={"User-Agent": "kickstart-vm-runner/1.0"})
    try:
        response = urlopen(req, timeout=60)
    except HTTPError as exc:
        raise DownloadFailure(f"HTTP error downloading {url}: {exc.code} {exc.reason}")
    except URLError as exc:
        raise DownloadFailure(f"Failed to download {url}: {exc.reason}")
    except (OSError, HTTPException) as exc:
        raise DownloadFailure(f"Failed to download {url}: {exc!r}") from exc

    try:
        _stream_to_file(response, url, destination)
    finally:
        response.close()


def _stream_to_file(response, url: str, destination: Path) -> None:
    total = response.headers.get("Content-Length")
    try:
        total_bytes = int(total) if total else None
    except ValueError:
        raise DownloadFailure(f"Invalid Content-Length from {url}: {total!r}")
    downloaded = 0
    start_time = time.time()

    with tempfile.NamedTemporaryFile(delete=False, dir=destination.parent, suffix=".part") as tmp:
        tmp_path = Path(tmp.name)
        try:
            chunk_size = 1024 * 1024  # 1 MiB
            while True:
                chunk = response.read(chunk_size)
                if not chunk:
                    break
                tmp.write(chunk)
                downloaded += len(chunk)

                elapsed = time.time() - start_time
                speed = downloaded / elapsed if elapsed > 0 else 0
                downloaded_mb = downloaded / (1024 * 1024)

                if total_bytes:
                    total_mb = total_bytes / (1024 * 1024)
                    pct = downloaded * 100 / total_bytes
                    bar_len = 30
                    filled = int(bar_len * downloaded / total_bytes)
                    bar = "#" * filled + "-" * (bar_len - filled)
                    print(
                        f"\r  [{bar}] {pct:5.1f}% {downloaded_mb:.1f}/{total_mb:.1f} MiB "
                        f"({speed / (1024 * 1024):.1f} MiB/s)",
                        end="", flush=True,
                    )
                else:
                    print(
                        f"\r  {downloaded_mb:.1f} MiB downloaded ({speed / (1024 * 1024):.1f} MiB/s)",
                        end="", flush=True,
                    )
            print(flush=True)  # newline after progress
            tmp.flush()
        except (OSError, HTTPException) as exc:
            tmp_path.unlink(missing_ok=True)
            raise DownloadFailure(f"Transfer of {url} interrupted: {exc!r}") from exc
        except Exception:
            tmp_path.unlink(missing_ok=True)
            raise

    if total_bytes is not None and downloaded != total_bytes:
        tmp_path.unlink(missing_ok=True)
        raise DownloadFailure(f"Short read from {url}: got {downloaded} of {total_bytes} bytes")
    tmp_path.replace(destination)
    elapsed = time.time() - start_time
    log("SUCCESS", f"Downloaded {downloaded / (1024 * 1024):.1f} MiB in {elapsed:.1f}s")


class CommandRunner:
    """Run external commands and report ``(output, status)``.

    ``output`` is stdout on success and stdout plus stderr on failure. A
    missing binary reports status 127 and an expired ``timeout`` status 124.
    With ``capture=False`` the command writes straight to the terminal and
    ``output`` is empty.

    Every component shells out through an instance of this class so tests can
    substitute a scripted fake.
    """

    def __init__(self, sudo: bool = False) -> None:
        self.sudo = sudo

    def run(
        self,
        args: Sequence[str],
        timeout: Optional[float] = None,
        privileged: bool = True,
        capture: bool = True,
    ) -> CommandResult:
        cmd = list(args)
        if self.sudo and privileged:
            cmd = ["sudo"] + cmd
        log("DEBUG", f"Running: {' '.join(cmd)}")
        try:
            result = subprocess.run(cmd, capture_output=capture, text=True, timeout=timeout, check=False)
        except FileNotFoundError:
            log("DEBUG", f"Command not found: {cmd[0]}")
            return CommandResult("", 127)
        except subprocess.TimeoutExpired:
            log("DEBUG", f"Command timed out after {timeout}s: {cmd[0]}")
            return CommandResult("", 124)
        if result.returncode != 0:
            # failing commands report stderr too so callers can surface it
            return CommandResult((result.stdout or "") + (result.stderr or ""), result.returncode)
        return CommandResult(result.stdout or "", result.returncode)


def restore_selinux_context(runner: CommandRunner, path: Path) -> None:
    """Relabel ``path`` so libvirt can read it on SELinux hosts; no-op elsewhere."""
    if shutil.which("restorecon") is None:
        log("DEBUG", "restorecon not installed; skipping SELinux relabel")
        return
    result = runner.run(["restorecon", "-Rv", str(path)])
    if result.status != 0:
        log("WARN", f"restorecon failed on {path}: {result.output.strip()}")
