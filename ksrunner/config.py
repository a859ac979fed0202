"""Configuration loading and environment variable parsing for kickstart-vm-runner."""

from __future__ import annotations

import platform
from pathlib import Path
from typing import Dict, List, Optional

try:
    import yaml  # type: ignore
except ImportError as exc:  # pragma: no cover
    raise SystemExit("PyYAML is required but not installed") from exc

from ksrunner.constants import (
    DEFAULT_GUEST_ADDRESS,
    DEFAULT_GUEST_MAC,
    DEFAULT_GUEST_USER,
    DEFAULT_IMAGES_DIR,
    DEFAULT_PASSWORD_HASH,
    DEFAULT_VARIANTS_PATH,
    MAC_ADDRESS_RE,
)
from ksrunner.exceptions import ConfigurationMissing, ManagerError, UnsupportedPlatform
from ksrunner.models import OsVariant, PipelineConfig
from ksrunner.utils import (
    generate_run_id,
    get_env,
    get_env_bool,
    hash_password,
    log,
    parse_int_env,
    read_os_release,
    validate_disk_size,
)

_REQUIRED_VARIANT_FIELDS = ("os_variant", "boot_args", "compose_url", "image_filename")


def _load_variants_file(config_path: Optional[Path] = None) -> Dict:
    if config_path is None:
        override = get_env("VARIANTS_CONFIG")
        config_path = Path(override) if override else DEFAULT_VARIANTS_PATH
    if not config_path.exists():
        raise ManagerError(f"Variant config missing: {config_path}")
    try:
        data = yaml.safe_load(config_path.read_text()) or {}
    except yaml.YAMLError as exc:
        raise ManagerError(f"Variant config {config_path} is not valid YAML: {exc}")
    if not isinstance(data.get("variants"), dict):
        raise ManagerError(f"Variant config {config_path} has no 'variants' mapping")
    return data


def load_variant(key: str, config_path: Optional[Path] = None) -> OsVariant:
    """Look up the variant for ``<id>-<version>``; unknown keys fail closed."""
    variants = _load_variants_file(config_path)["variants"]
    if key not in variants:
        available_list = "\n    ".join(sorted(variants))
        raise UnsupportedPlatform(
            f"Unsupported distro: {key}\n"
            f"  Available variants:\n"
            f"    {available_list}"
        )
    entry = variants[key] or {}
    missing = [name for name in _REQUIRED_VARIANT_FIELDS if not entry.get(name)]
    if missing:
        raise ManagerError(f"Variant '{key}' is missing field(s): {', '.join(missing)}")
    return OsVariant(
        key=key,
        os_variant=str(entry["os_variant"]),
        boot_args=str(entry["boot_args"]),
        compose_url=str(entry["compose_url"]),
        image_filename=str(entry["image_filename"]),
        packages=tuple(str(pkg) for pkg in entry.get("packages") or ()),
    )


def host_packages(variant: OsVariant, config_path: Optional[Path] = None) -> List[str]:
    """Variant-specific plus common host packages, de-duplicated in order."""
    common = _load_variants_file(config_path).get("common_packages") or []
    packages: List[str] = []
    for pkg in list(variant.packages) + [str(p) for p in common]:
        if pkg not in packages:
            packages.append(pkg)
    return packages


def detect_os_identity() -> str:
    os_release = read_os_release()
    os_id = (get_env("OS_ID") or os_release.get("ID", "")).strip()
    version = (get_env("OS_VERSION") or os_release.get("VERSION_ID", "")).strip()
    if not os_id or not version:
        raise UnsupportedPlatform("Could not determine OS identity (set OS_ID and OS_VERSION)")
    return f"{os_id}-{version}"


def _required(name: str) -> str:
    value = (get_env(name) or "").strip()
    if not value:
        raise ConfigurationMissing(f"{name} is not set")
    return value


def parse_env() -> PipelineConfig:
    variant = load_variant(detect_os_identity())

    arch = (get_env("ARCH") or "").strip() or platform.machine()
    compose = _required("COMPOSE")
    download_node = _required("DOWNLOAD_NODE").rstrip("/")
    fields = {"download_node": download_node, "compose": compose, "arch": arch}
    try:
        compose_url = variant.compose_url.format(**fields)
        image_filename = variant.image_filename.format(**fields)
    except (KeyError, IndexError) as exc:
        raise ManagerError(f"Variant '{variant.key}' uses an unknown template field: {exc}")
    if not compose_url.strip():
        raise ConfigurationMissing(f"COMPOSE_URL is not set for {variant.key}")
    if not image_filename.strip():
        raise ConfigurationMissing(f"Image filename is empty for {variant.key}")

    ssh_key = Path(get_env("SSH_KEY", "key/ostree_key") or "key/ostree_key")
    pubkey_path = Path(f"{ssh_key}.pub")
    try:
        ssh_pubkey = pubkey_path.read_text().strip()
    except OSError as exc:
        raise ConfigurationMissing(f"Cannot read SSH public key {pubkey_path}: {exc}")
    if not ssh_pubkey:
        raise ConfigurationMissing(f"SSH public key {pubkey_path} is empty")

    guest_mac = (get_env("GUEST_MAC") or DEFAULT_GUEST_MAC).strip()
    if not MAC_ADDRESS_RE.match(guest_mac):
        raise ManagerError(f"Invalid GUEST_MAC '{guest_mac}'")

    password = get_env("GUEST_PASSWORD")
    password_hash = hash_password(password) if password else DEFAULT_PASSWORD_HASH

    run_id = (get_env("RUN_ID") or "").strip() or generate_run_id()
    if get_env("RUN_ID"):
        log("INFO", f"Using RUN_ID={run_id}; make sure it is unique to this run")

    return PipelineConfig(
        variant=variant,
        arch=arch,
        compose=compose,
        download_node=download_node,
        image_url=f"{compose_url}/{image_filename}",
        image_filename=image_filename,
        work_dir=Path(get_env("WORK_DIR") or Path.cwd()),
        images_dir=Path(get_env("IMAGES_DIR") or DEFAULT_IMAGES_DIR),
        run_id=run_id,
        ssh_key=ssh_key,
        ssh_pubkey=ssh_pubkey,
        guest_address=(get_env("GUEST_ADDRESS") or DEFAULT_GUEST_ADDRESS).strip(),
        guest_mac=guest_mac,
        guest_user=(get_env("GUEST_USER") or DEFAULT_GUEST_USER).strip(),
        password_hash=password_hash,
        memory_mb=parse_int_env("MEMORY", "4096"),
        cpus=parse_int_env("CPUS", "2"),
        disk_size=validate_disk_size(get_env("DISK_SIZE", "10G") or "10G"),
        use_sudo=get_env_bool("USE_SUDO", False),
    )
