"""VM lifecycle management for kickstart-vm-runner."""

from __future__ import annotations

from pathlib import Path

from ksrunner.constants import LIBVIRT_URI, NETWORK_NAME
from ksrunner.exceptions import (
    DiskAllocationFailure,
    InstallFailure,
    ManagerError,
    StartFailure,
)
from ksrunner.models import PipelineConfig, VmState
from ksrunner.utils import CommandRunner, ensure_directory, log, restore_selinux_context


class VMManager:
    """Drive one guest through disk allocation, unattended install and boot.

    Transitions run strictly in order and none is retried. The installer
    powers the guest off when done (``poweroff`` in the kickstart) and
    ``virt-install --noreboot`` keeps it off until :meth:`start`.
    """

    def __init__(self, cfg: PipelineConfig, runner: CommandRunner, install_media: Path) -> None:
        self.cfg = cfg
        self.runner = runner
        self.install_media = install_media
        self.state = VmState.NO_DISK

    @property
    def name(self) -> str:
        return self.cfg.vm_name

    @property
    def disk_path(self) -> Path:
        return self.cfg.disk_path

    def _require(self, expected: VmState, action: str) -> None:
        if self.state is not expected:
            raise ManagerError(
                f"Cannot {action} domain {self.name}: state is {self.state.value}, expected {expected.value}"
            )

    def allocate_disk(self) -> None:
        self._require(VmState.NO_DISK, "allocate disk for")
        log("INFO", f"Creating VM disk {self.disk_path} ({self.cfg.disk_size})")
        ensure_directory(self.disk_path.parent)
        result = self.runner.run(["qemu-img", "create", "-f", "qcow2", str(self.disk_path), self.cfg.disk_size])
        if result.status != 0:
            raise DiskAllocationFailure(f"qemu-img create failed for {self.disk_path}: {result.output.strip()}")
        restore_selinux_context(self.runner, self.disk_path.parent)
        self.state = VmState.DISK_ALLOCATED

    def install(self) -> None:
        self._require(VmState.DISK_ALLOCATED, "install")
        log("INFO", f"Installing {self.name} from {self.install_media}")
        self.state = VmState.INSTALLING
        result = self.runner.run(self._install_command(), capture=False)
        if result.status != 0:
            raise InstallFailure(
                f"virt-install failed for {self.name} (status {result.status}); "
                f"disk left at {self.disk_path}"
            )
        self.state = VmState.INSTALLED
        log("SUCCESS", f"Installation of {self.name} finished; guest is powered off")

    def _install_command(self) -> list:
        return [
            "virt-install",
            "--connect",
            LIBVIRT_URI,
            f"--name={self.name}",
            "--disk",
            f"path={self.disk_path},format=qcow2",
            "--ram",
            str(self.cfg.memory_mb),
            "--vcpus",
            str(self.cfg.cpus),
            "--network",
            f"network={NETWORK_NAME},mac={self.cfg.guest_mac}",
            "--os-type",
            "linux",
            "--os-variant",
            self.cfg.variant.os_variant,
            "--cdrom",
            str(self.install_media),
            "--boot",
            self.cfg.variant.boot_args,
            "--nographics",
            "--noautoconsole",
            "--wait=-1",
            "--noreboot",
        ]

    def start(self) -> None:
        self._require(VmState.INSTALLED, "start")
        log("INFO", f"Starting UEFI VM {self.name}")
        result = self.runner.run(["virsh", "-c", LIBVIRT_URI, "start", self.name])
        if result.status != 0:
            raise StartFailure(f"Failed to start domain {self.name}: {result.output.strip()}")
        self.state = VmState.RUNNING
        log("SUCCESS", f"Domain {self.name} started")

    def provision(self) -> None:
        self.allocate_disk()
        self.install()
        self.start()
