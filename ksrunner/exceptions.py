"""Custom exceptions for kickstart-vm-runner."""

from __future__ import annotations

from typing import Optional


class ManagerError(RuntimeError):
    """Raised on unrecoverable configuration or runtime errors."""

    stage: Optional[str] = None


class UnsupportedPlatform(ManagerError):
    """No variant entry matches the host OS identity."""


class ConfigurationMissing(ManagerError):
    """A required setting or derived value is empty."""


class DownloadFailure(ManagerError):
    pass


class MissingArtifact(ManagerError):
    """The transfer reported success but the file is not on disk."""


class MissingKickstartDescriptor(ManagerError):
    pass


class RemasterFailure(ManagerError):
    pass


class NetworkFailure(ManagerError):
    pass


class DiskAllocationFailure(ManagerError):
    pass


class InstallFailure(ManagerError):
    """Guest installation failed; the disk is left in place."""


class StartFailure(ManagerError):
    pass


class ReadinessTimeout(ManagerError):
    """The guest never answered the SSH probe within the retry budget."""
