"""CLI entry points for kickstart-vm-runner."""

from __future__ import annotations

import argparse
import dataclasses
import platform
import shutil
from typing import List, Optional

from ksrunner.config import host_packages, parse_env
from ksrunner.constants import REQUIRED_TOOLS
from ksrunner.exceptions import ManagerError
from ksrunner.models import PipelineConfig
from ksrunner.pipeline import Pipeline
from ksrunner.utils import log, missing_tools

_SENSITIVE_FIELDS = {"password_hash"}


def show_config(cfg: PipelineConfig) -> None:
    """Print the resolved pipeline configuration."""
    for field in dataclasses.fields(cfg):
        value = getattr(cfg, field.name)
        if field.name in _SENSITIVE_FIELDS:
            print(f"  {field.name}: ********")
        elif dataclasses.is_dataclass(value):
            print(f"  {field.name}:")
            for sub_field in dataclasses.fields(value):
                print(f"    {sub_field.name}: {getattr(value, sub_field.name)}")
        else:
            print(f"  {field.name}: {value}")
    print(f"  vm_name: {cfg.vm_name}")
    print(f"  disk_path: {cfg.disk_path}")
    print(f"  customized_image: {cfg.customized_image}")


def preflight(cfg: PipelineConfig) -> bool:
    """Check host binaries the pipeline needs; returns False when any is missing."""
    ok = True
    missing = missing_tools(REQUIRED_TOOLS)
    for tool in REQUIRED_TOOLS:
        if tool in missing:
            log("ERROR", f"Tool:        {tool} (NOT FOUND)")
            ok = False
        else:
            log("SUCCESS", f"Tool:        {tool}")
    log("INFO", f"Host packages for {cfg.variant.key}: {' '.join(host_packages(cfg.variant))}")
    if cfg.ssh_key.exists():
        log("SUCCESS", f"SSH key:     {cfg.ssh_key} (found)")
    else:
        log("ERROR", f"SSH key:     {cfg.ssh_key} (NOT FOUND)")
        ok = False
    return ok


def print_host_info() -> None:
    usage = shutil.disk_usage("/")
    log("INFO", f"Host: {platform.node()} | Arch: {platform.machine()} | Kernel: {platform.release()}")
    log("INFO", f"Storage: {usage.free / (1024**3):.1f}G available at /")


def print_startup_banner(cfg: PipelineConfig) -> None:
    """Print a visually distinct access-info banner once the guest answers."""
    lines: List[str] = []
    lines.append(f"  VM: {cfg.vm_name} ({cfg.variant.key}, {cfg.variant.os_variant})")
    lines.append(f"  Memory: {cfg.memory_mb} MiB | CPUs: {cfg.cpus} | Disk: {cfg.disk_size}")
    lines.append(f"  Address: {cfg.guest_address} (mac {cfg.guest_mac})")
    lines.append(f"  SSH:  {cfg.ssh_command}")

    max_len = max(len(line) for line in lines)
    border_len = max_len + 2
    banner_colour = "\033[0;36m"
    reset = "\033[0m"
    print(f"{banner_colour}{'=' * border_len}{reset}", flush=True)
    for line in lines:
        print(f"{banner_colour}{line}{reset}", flush=True)
    print(f"{banner_colour}{'=' * border_len}{reset}", flush=True)


def main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="Provision a kickstart-installed test VM and wait for SSH")
    parser.add_argument("--show-config", action="store_true", help="Show resolved configuration and exit")
    parser.add_argument("--dry-run", action="store_true", help="Validate config and host tools, then exit")
    parser.add_argument(
        "--skip-readiness",
        action="store_true",
        help="Stop after the guest is started instead of waiting for SSH",
    )
    args = parser.parse_args(argv)

    try:
        cfg = parse_env()
    except ManagerError as exc:
        log("ERROR", f"config failed: {exc}")
        return 1

    if args.show_config:
        show_config(cfg)
        return 0

    if args.dry_run:
        log("INFO", "=== Configuration ===")
        show_config(cfg)
        log("INFO", "=== Environment Checks ===")
        ok = preflight(cfg)
        log("INFO", "=== Dry-run complete (no VM started) ===")
        return 0 if ok else 1

    print_host_info()
    log("INFO", f"Distribution: {cfg.variant.key} | Compose: {cfg.compose} | Arch: {cfg.arch}")
    log("INFO", f"Run: {cfg.run_id} | Image: {cfg.image_url}")

    pipeline = Pipeline(cfg, readiness=not args.skip_readiness)
    try:
        pipeline.run()
    except ManagerError as exc:
        stage = exc.stage or "pipeline"
        log("ERROR", f"{stage} failed: {exc}")
        return 1
    except Exception as exc:
        log("ERROR", f"Unexpected error: {exc}")
        log("ERROR", "This is likely a bug in kickstart-vm-runner.")
        import traceback

        traceback.print_exc()
        return 1

    if pipeline.readiness_result is not None:
        log("SUCCESS", f"Guest reachable after {pipeline.readiness_result.attempts} attempt(s)")
    print_startup_banner(cfg)
    return 0
