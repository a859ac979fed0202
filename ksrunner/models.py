"""Data models for kickstart-vm-runner."""

from __future__ import annotations

import enum
from dataclasses import dataclass
from pathlib import Path
from typing import NamedTuple, Tuple


class CommandResult(NamedTuple):
    output: str
    status: int


@dataclass(frozen=True)
class OsVariant:
    key: str  # "<id>-<version>", e.g. "rhel-9.8"
    os_variant: str
    boot_args: str
    compose_url: str  # template: {download_node}, {compose}, {arch}
    image_filename: str  # template: {compose}, {arch}
    packages: Tuple[str, ...] = ()


class VmState(enum.Enum):
    NO_DISK = "no-disk"
    DISK_ALLOCATED = "disk-allocated"
    INSTALLING = "installing"
    INSTALLED = "installed"  # powered off after the unattended install
    RUNNING = "running"


@dataclass
class ReadinessResult:
    ready: bool
    attempts: int


@dataclass(frozen=True)
class PipelineConfig:
    variant: OsVariant
    arch: str
    compose: str
    download_node: str
    image_url: str
    image_filename: str
    work_dir: Path
    images_dir: Path
    run_id: str
    ssh_key: Path
    ssh_pubkey: str
    guest_address: str
    guest_mac: str
    guest_user: str
    password_hash: str
    memory_mb: int = 4096
    cpus: int = 2
    disk_size: str = "10G"
    use_sudo: bool = False

    @property
    def source_image(self) -> Path:
        return self.work_dir / self.image_filename

    @property
    def customized_image(self) -> Path:
        return self.images_dir / self.image_filename

    @property
    def vm_name(self) -> str:
        return f"{self.run_id}-uefi"

    @property
    def disk_path(self) -> Path:
        return self.images_dir / f"{self.run_id}-disk.qcow2"

    @property
    def ssh_command(self) -> str:
        return f"ssh -i {self.ssh_key} {self.guest_user}@{self.guest_address}"
