"""kickstart-vm-runner package."""

__all__ = [
    "cli",
    "config",
    "constants",
    "exceptions",
    "image",
    "kickstart",
    "models",
    "network",
    "pipeline",
    "readiness",
    "utils",
    "vm",
]
