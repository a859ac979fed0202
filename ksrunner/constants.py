"""Global constants and path configuration for kickstart-vm-runner."""

from __future__ import annotations

import os
import re
from pathlib import Path

DEFAULT_VARIANTS_PATH = Path(__file__).resolve().parent / "variants.yaml"
OS_RELEASE_PATH = Path("/etc/os-release")
DEFAULT_IMAGES_DIR = Path("/var/lib/libvirt/images")
LIBVIRT_URI = os.environ.get("LIBVIRT_URI", "qemu:///system")
TRUTHY = {"1", "true", "yes", "on"}
MAC_ADDRESS_RE = re.compile(r"^[0-9A-Fa-f]{2}(:[0-9A-Fa-f]{2}){5}$")
DISK_SIZE_RE = re.compile(r"^\d+[KMGTkmgt]?$")
RUN_ID_PREFIX = "qe-review"

_LOG_VERBOSE = os.environ.get("LOG_VERBOSE", "").lower() in {"1", "true", "yes", "on"}

# Kickstart account defaults. The hash is SHA-512 crypt of the CI password.
DEFAULT_GUEST_USER = "core"
INSTALLER_USER = "installeruser"
DEFAULT_PASSWORD_HASH = (
    "$6$1LgwKw9aOoAi/Zy9$Pn3ErY1E8/yEanJ98evqKEW.DZp24HTuqXPJl6GYCm8uuobAmwxLv7rGCvTRZhxtcYdmC0.XnYRSR9Sh6de3p0"
)

# mkksiso overrides applied to the remastered image
REMASTER_CMDLINE = "console=ttyS0,115200"
REMASTER_RM_ARGS = "quiet"

# libvirt network reserved for integration runs
NETWORK_NAME = "integration"
NETWORK_UUID = "1c8fe98c-b53a-4ca4-bbdb-deb0f26b3579"
NETWORK_BRIDGE_MAC = "52:54:00:36:46:ef"
NETWORK_GATEWAY = "192.168.100.1"
NETWORK_NETMASK = "255.255.255.0"
NETWORK_DHCP_RANGE = ("192.168.100.2", "192.168.100.254")
NETWORK_NAT_PORTS = (1024, 65535)
NETWORK_HOSTS = (
    ("34:49:22:B0:83:30", "vm-1", "192.168.100.50"),
    ("34:49:22:B0:83:31", "vm-2", "192.168.100.51"),
    ("34:49:22:B0:83:32", "vm-3", "192.168.100.52"),
)
DNSMASQ_NS = "http://libvirt.org/schemas/network/dnsmasq/1.0"
DNSMASQ_OPTIONS = (
    "dhcp-vendorclass=set:efi-http,HTTPClient:Arch:00016",
    "dhcp-option-force=tag:efi-http,60,HTTPClient",
    'dhcp-boot=tag:efi-http,"http://192.168.100.1/httpboot/EFI/BOOT/BOOTX64.EFI"',
)

DEFAULT_GUEST_ADDRESS = NETWORK_HOSTS[0][2]
DEFAULT_GUEST_MAC = NETWORK_HOSTS[0][0]

# SSH readiness probe
READY_ATTEMPTS = 31
READY_INTERVAL = 10.0  # seconds between attempts
CONNECT_TIMEOUT = 5  # seconds, must stay below READY_INTERVAL
READY_SENTINEL = "READY"

# Binaries the pipeline shells out to
REQUIRED_TOOLS = ("mount", "umount", "mkksiso", "qemu-img", "virsh", "virt-install", "ssh")
