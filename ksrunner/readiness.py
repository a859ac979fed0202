"""SSH readiness gate for kickstart-vm-runner."""

from __future__ import annotations

import os
import stat
import time
from pathlib import Path

from ksrunner.constants import (
    CONNECT_TIMEOUT,
    DEFAULT_GUEST_USER,
    READY_ATTEMPTS,
    READY_INTERVAL,
    READY_SENTINEL,
)
from ksrunner.exceptions import ManagerError, ReadinessTimeout
from ksrunner.models import ReadinessResult
from ksrunner.utils import CommandRunner, log

SSH_OPTIONS = (
    "-o", "StrictHostKeyChecking=no",
    "-o", "UserKnownHostsFile=/dev/null",
)


def ensure_key_permissions(key: Path) -> None:
    """ssh refuses private keys readable by others; tighten to 0600 if needed."""
    try:
        mode = stat.S_IMODE(key.stat().st_mode)
    except OSError as exc:
        raise ManagerError(f"SSH key not found: {key} ({exc})")
    if mode != 0o600:
        log("INFO", f"File permissions too open ({mode:o}) on {key}; changing to 600")
        os.chmod(key, 0o600)


class ReadinessProbe:
    """Poll the guest over SSH until it echoes the sentinel back.

    At most ``attempts`` tries are made, ``interval`` seconds apart, and the
    loop stops at the first success. Each try is cut off after
    ``connect_timeout`` seconds, which must be shorter than ``interval``.
    """

    def __init__(
        self,
        runner: CommandRunner,
        ssh_key: Path,
        user: str = DEFAULT_GUEST_USER,
        attempts: int = READY_ATTEMPTS,
        interval: float = READY_INTERVAL,
        connect_timeout: int = CONNECT_TIMEOUT,
        sentinel: str = READY_SENTINEL,
    ) -> None:
        if attempts < 1:
            raise ManagerError(f"Readiness attempts must be >= 1 (got {attempts})")
        if connect_timeout >= interval:
            raise ManagerError(
                f"SSH connect timeout ({connect_timeout}s) must be shorter than the retry interval ({interval}s)"
            )
        self.runner = runner
        self.ssh_key = ssh_key
        self.user = user
        self.attempts = attempts
        self.interval = interval
        self.connect_timeout = connect_timeout
        self.sentinel = sentinel

    def _command(self, address: str) -> list:
        return [
            "ssh",
            *SSH_OPTIONS,
            "-o", f"ConnectTimeout={self.connect_timeout}",
            "-i", str(self.ssh_key),
            f"{self.user}@{address}",
            f'/bin/bash -c "echo -n {self.sentinel}"',
        ]

    def check(self, address: str) -> bool:
        """Single attempt; any error, timeout or mismatch counts as not ready."""
        # the key belongs to the invoking user, so ssh never goes through sudo
        result = self.runner.run(self._command(address), timeout=self.connect_timeout, privileged=False)
        return result.status == 0 and result.output == self.sentinel

    def poll(self, address: str) -> ReadinessResult:
        attempt = 0
        while attempt < self.attempts:
            attempt += 1
            if self.check(address):
                log("SUCCESS", f"SSH is ready now (attempt {attempt}/{self.attempts})")
                return ReadinessResult(ready=True, attempts=attempt)
            log("DEBUG", f"SSH not ready yet (attempt {attempt}/{self.attempts})")
            if attempt < self.attempts:
                time.sleep(self.interval)
        return ReadinessResult(ready=False, attempts=attempt)

    def wait(self, address: str) -> ReadinessResult:
        log("INFO", f"Checking for SSH on {address}")
        ensure_key_permissions(self.ssh_key)
        result = self.poll(address)
        if not result.ready:
            raise ReadinessTimeout(
                f"{address} did not answer over SSH after {result.attempts} attempts "
                f"({self.interval:g}s apart)"
            )
        return result
