"""Provisioning pipeline for kickstart-vm-runner.

Stages run strictly in order and the first failure aborts the run. Nothing
created by an earlier stage (downloaded ISO, customized ISO, network, disk,
domain) is rolled back, so a failed run can be inspected afterwards.
"""

from __future__ import annotations

from typing import Callable, List, Optional, Tuple

from ksrunner.exceptions import ManagerError
from ksrunner.image import ImageAcquirer
from ksrunner.kickstart import ImageCustomizer
from ksrunner.models import PipelineConfig, ReadinessResult
from ksrunner.network import NetworkProvisioner
from ksrunner.readiness import ReadinessProbe
from ksrunner.utils import CommandRunner, log, restore_selinux_context
from ksrunner.vm import VMManager


class Pipeline:
    def __init__(
        self,
        cfg: PipelineConfig,
        runner: Optional[CommandRunner] = None,
        acquirer: Optional[ImageAcquirer] = None,
        readiness: bool = True,
    ) -> None:
        self.cfg = cfg
        self.runner = runner or CommandRunner(sudo=cfg.use_sudo)
        self.acquirer = acquirer or ImageAcquirer()
        self.customizer = ImageCustomizer(
            self.runner,
            cfg.ssh_pubkey,
            user=cfg.guest_user,
            password_hash=cfg.password_hash,
        )
        self.network = NetworkProvisioner(self.runner)
        self.vm = VMManager(cfg, self.runner, install_media=cfg.customized_image)
        self.probe = ReadinessProbe(self.runner, cfg.ssh_key, user=cfg.guest_user)
        self.readiness_enabled = readiness
        self.readiness_result: Optional[ReadinessResult] = None

    def stages(self) -> List[Tuple[str, Callable[[], None]]]:
        stages = [
            ("download", self._acquire),
            ("customize", self._customize),
            ("network", self.network.ensure),
            ("provision", self.vm.provision),
        ]
        if self.readiness_enabled:
            stages.append(("readiness", self._wait_ready))
        return stages

    def run(self) -> None:
        for name, stage in self.stages():
            log("DEBUG", f"Stage {name} starting")
            try:
                stage()
            except ManagerError as exc:
                if exc.stage is None:
                    exc.stage = name
                raise

    def _acquire(self) -> None:
        self.acquirer.acquire(self.cfg.image_url, self.cfg.source_image)

    def _customize(self) -> None:
        self.customizer.customize(self.cfg.source_image, self.cfg.customized_image)
        restore_selinux_context(self.runner, self.cfg.images_dir)

    def _wait_ready(self) -> None:
        self.readiness_result = self.probe.wait(self.cfg.guest_address)
