"""Base installation image acquisition for kickstart-vm-runner."""

from __future__ import annotations

from pathlib import Path
from typing import Callable

from ksrunner.exceptions import MissingArtifact
from ksrunner.utils import download_file, ensure_directory, log


class ImageAcquirer:
    """Fetch the compose ISO once and reuse the local copy afterwards."""

    def __init__(self, fetch: Callable[..., None] = download_file) -> None:
        self.fetch = fetch

    def acquire(self, url: str, destination: Path) -> Path:
        if destination.exists():
            log("INFO", f"Image already exists, skipping download: {destination}")
            return destination

        log("INFO", "Downloading OS image...")
        ensure_directory(destination.parent)
        # DownloadFailure from the transfer propagates untouched; no retry.
        self.fetch(url, destination, label="Downloading OS image")

        if not destination.exists():
            raise MissingArtifact(f"Downloaded file not found: {destination}")
        log("SUCCESS", f"Download completed: {destination.name}")
        return destination
