"""Shared test fixtures: a scripted command runner and a resolved config."""

from __future__ import annotations

from pathlib import Path
from typing import Callable, List, Sequence, Tuple, Union

import pytest

from ksrunner.constants import DEFAULT_PASSWORD_HASH
from ksrunner.models import CommandResult, OsVariant, PipelineConfig

Response = Union[CommandResult, Callable[[List[str]], CommandResult]]

SAMPLE_KICKSTART = "# generated by compose\nlang en_US.UTF-8\nkeyboard us\ntimezone UTC\n"


class FakeRunner:
    """Stand-in for CommandRunner.

    Rules match when every token of the rule appears in the command. A rule
    with several responses hands them out in order and then repeats the last.
    Unmatched commands succeed with empty output.
    """

    def __init__(self) -> None:
        self.calls: List[List[str]] = []
        self.timeouts: List[object] = []
        self.privileged: List[bool] = []
        self._rules: List[Tuple[Tuple[str, ...], List[Response]]] = []

    def on(self, tokens: Sequence[str], *responses: Response) -> "FakeRunner":
        self._rules.append((tuple(tokens), list(responses)))
        return self

    def run(self, args, timeout=None, privileged=True, capture=True) -> CommandResult:
        cmd = list(args)
        self.calls.append(cmd)
        self.timeouts.append(timeout)
        self.privileged.append(privileged)
        for tokens, responses in self._rules:
            if all(token in cmd for token in tokens):
                response = responses.pop(0) if len(responses) > 1 else responses[0]
                return response(cmd) if callable(response) else response
        return CommandResult("", 0)

    def programs(self) -> List[str]:
        return [cmd[0] for cmd in self.calls]

    def find(self, program: str) -> List[List[str]]:
        return [cmd for cmd in self.calls if cmd[0] == program]


def mount_with(files: dict) -> Callable[[List[str]], CommandResult]:
    """Fake ``mount`` that populates the mountpoint with ``files``."""

    def _mount(cmd: List[str]) -> CommandResult:
        mountpoint = Path(cmd[-1])
        for name, content in files.items():
            (mountpoint / name).write_text(content)
        return CommandResult("mounted", 0)

    return _mount


def mkksiso_writes(content: bytes = b"ISO") -> Callable[[List[str]], CommandResult]:
    def _mkksiso(cmd: List[str]) -> CommandResult:
        Path(cmd[-1]).write_bytes(content)
        return CommandResult("", 0)

    return _mkksiso


@pytest.fixture
def runner() -> FakeRunner:
    return FakeRunner()


@pytest.fixture
def rhel98_variant() -> OsVariant:
    return OsVariant(
        key="rhel-9.8",
        os_variant="rhel9-unknown",
        boot_args="uefi,firmware.feature0.name=secure-boot,firmware.feature0.enabled=no",
        compose_url="{download_node}/rhel-9/nightly/RHEL-9/{compose}/compose/BaseOS/{arch}/iso",
        image_filename="{compose}-{arch}-dvd1.iso",
        packages=("make", "rpm-build", "rust-toolset"),
    )


@pytest.fixture
def pipeline_config(tmp_path, rhel98_variant) -> PipelineConfig:
    work_dir = tmp_path / "work"
    images_dir = tmp_path / "images"
    work_dir.mkdir()
    images_dir.mkdir()
    key = tmp_path / "ostree_key"
    key.write_text("PRIVATE")
    key.chmod(0o600)
    compose = "RHEL-9.8.0-20260101.1"
    image_filename = f"{compose}-x86_64-dvd1.iso"
    return PipelineConfig(
        variant=rhel98_variant,
        arch="x86_64",
        compose=compose,
        download_node="https://download.example.com",
        image_url=(
            f"https://download.example.com/rhel-9/nightly/RHEL-9/{compose}"
            f"/compose/BaseOS/x86_64/iso/{image_filename}"
        ),
        image_filename=image_filename,
        work_dir=work_dir,
        images_dir=images_dir,
        run_id="qe-review-4242",
        ssh_key=key,
        ssh_pubkey="ssh-ed25519 AAAAC3Nza test@ci",
        guest_address="192.168.100.50",
        guest_mac="34:49:22:B0:83:30",
        guest_user="core",
        password_hash=DEFAULT_PASSWORD_HASH,
    )


# All environment variables that parse_env() reads, used to ensure a clean slate.
_PARSE_ENV_VARS = [
    "OS_ID",
    "OS_VERSION",
    "VARIANTS_CONFIG",
    "COMPOSE",
    "DOWNLOAD_NODE",
    "ARCH",
    "SSH_KEY",
    "GUEST_ADDRESS",
    "GUEST_MAC",
    "GUEST_USER",
    "GUEST_PASSWORD",
    "IMAGES_DIR",
    "WORK_DIR",
    "MEMORY",
    "CPUS",
    "DISK_SIZE",
    "USE_SUDO",
    "RUN_ID",
]


@pytest.fixture
def clean_env(monkeypatch):
    """Clear every variable parse_env() reads."""
    for key in _PARSE_ENV_VARS:
        monkeypatch.delenv(key, raising=False)


@pytest.fixture
def rhel_env(monkeypatch, clean_env, tmp_path):
    """Environment for a rhel-9.8 host with a key pair on disk."""
    key = tmp_path / "key" / "ostree_key"
    key.parent.mkdir()
    key.write_text("PRIVATE")
    Path(f"{key}.pub").write_text("ssh-ed25519 AAAAC3Nza test@ci\n")
    monkeypatch.setenv("OS_ID", "rhel")
    monkeypatch.setenv("OS_VERSION", "9.8")
    monkeypatch.setenv("COMPOSE", "RHEL-9.8.0-20260101.1")
    monkeypatch.setenv("DOWNLOAD_NODE", "https://download.example.com/")
    monkeypatch.setenv("ARCH", "x86_64")
    monkeypatch.setenv("SSH_KEY", str(key))
    monkeypatch.setenv("WORK_DIR", str(tmp_path / "work"))
    monkeypatch.setenv("IMAGES_DIR", str(tmp_path / "images"))
    return key
