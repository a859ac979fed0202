"""Kickstart injection and ISO remastering for kickstart-vm-runner.

The customized ISO is produced by ``mkksiso`` (lorax) from the pristine
compose image. The kickstart found at the top of the image is kept verbatim
and wrapped with a fixed preamble (disk layout, console, user and SSH key)
and a fixed postamble (power off after install, passwordless sudo).
"""

from __future__ import annotations

import shutil
import tempfile
import textwrap
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, List

from ksrunner.constants import (
    DEFAULT_GUEST_USER,
    DEFAULT_PASSWORD_HASH,
    INSTALLER_USER,
    REMASTER_CMDLINE,
    REMASTER_RM_ARGS,
)
from ksrunner.exceptions import ManagerError, MissingKickstartDescriptor, RemasterFailure
from ksrunner.utils import CommandRunner, ensure_directory, log

# Keeps undecodable bytes and CR/CRLF line endings so the original kickstart is copied unchanged.
_KS_ENCODING = {"encoding": "utf-8", "errors": "surrogateescape", "newline": ""}


def kickstart_preamble(ssh_pubkey: str, user: str = DEFAULT_GUEST_USER,
                       password_hash: str = DEFAULT_PASSWORD_HASH) -> str:
    # Anaconda reads these in order: network, partitioning, bootloader, accounts.
    return textwrap.dedent(
        f"""\
        text
        network --bootproto=dhcp --device=link --activate --onboot=on
        zerombr
        clearpart --all --initlabel --disklabel=gpt
        autopart --nohome --noswap --type=plain
        bootloader --append="console=tty0 console=ttyS0,115200n8"
        user --name={user} --groups=wheel --iscrypted --password={password_hash}
        sshkey --username={user} "{ssh_pubkey}"
        """
    )


def kickstart_postamble(user: str = DEFAULT_GUEST_USER) -> str:
    sudoers = "".join(
        f"echo '{name} ALL=(ALL) NOPASSWD: ALL' >> /etc/sudoers\n" for name in (user, INSTALLER_USER)
    )
    return (
        "poweroff\n"
        "%post --log=/var/log/anaconda/post-install.log --erroronfail\n"
        f"{sudoers}"
        "%end\n"
    )


def compose_kickstart(original: str, ssh_pubkey: str, user: str = DEFAULT_GUEST_USER,
                      password_hash: str = DEFAULT_PASSWORD_HASH) -> str:
    """Wrap ``original`` between the fixed preamble and postamble.

    ``original`` is inserted as-is. A newline is added after it only when it
    does not already end with one, so the postamble starts on its own line.
    """
    separator = "" if not original or original.endswith("\n") else "\n"
    return (
        kickstart_preamble(ssh_pubkey, user, password_hash)
        + original
        + separator
        + kickstart_postamble(user)
    )


def find_kickstarts(root: Path) -> List[Path]:
    """Return the ``*.ks`` files directly under ``root``, sorted by name."""
    return sorted(path for path in root.glob("*.ks") if path.is_file())


@contextmanager
def mounted_image(runner: CommandRunner, image: Path) -> Iterator[Path]:
    """Mount ``image`` read-only on a temporary directory for the block's duration."""
    mountpoint = Path(tempfile.mkdtemp(prefix="ksrunner-iso-"))
    log("INFO", f"Mounting {image} -> {mountpoint}")
    result = runner.run(["mount", "-v", "-o", "ro", str(image), str(mountpoint)])
    if result.status != 0:
        shutil.rmtree(mountpoint, ignore_errors=True)
        raise ManagerError(f"Failed to mount {image}: {result.output.strip()}")
    try:
        yield mountpoint
    finally:
        log("INFO", "Unmounting ISO and cleaning up")
        umount = runner.run(["umount", "-v", str(mountpoint)])
        if umount.status == 0:
            shutil.rmtree(mountpoint, ignore_errors=True)
        else:
            # never recurse into a directory that may still be a mount
            log("WARN", f"Failed to unmount {mountpoint}: {umount.output.strip()}")


class ImageCustomizer:
    def __init__(self, runner: CommandRunner, ssh_pubkey: str, user: str = DEFAULT_GUEST_USER,
                 password_hash: str = DEFAULT_PASSWORD_HASH) -> None:
        self.runner = runner
        self.ssh_pubkey = ssh_pubkey
        self.user = user
        self.password_hash = password_hash

    def customize(self, source: Path, destination: Path) -> Path:
        """Build ``destination`` from ``source`` unless it already exists."""
        if destination.exists():
            log("INFO", f"Image already exists, skipping mkksiso: {destination}")
            return destination

        workdir = Path(tempfile.mkdtemp(prefix="ksrunner-ks-"))
        try:
            with mounted_image(self.runner, source) as mountpoint:
                candidates = find_kickstarts(mountpoint)
                if not candidates:
                    raise MissingKickstartDescriptor(f"No kickstart file found in ISO {source}")
                if len(candidates) > 1:
                    names = ", ".join(path.name for path in candidates)
                    log("WARN", f"Multiple kickstart files found ({names}); using the first")
                ksfile = candidates[0]
                log("INFO", f"Found kickstart file: {ksfile}")

                new_ks = workdir / ksfile.name
                with open(ksfile, **_KS_ENCODING) as fh:
                    original = fh.read()
                composed = compose_kickstart(original, self.ssh_pubkey, self.user, self.password_hash)
                with open(new_ks, "w", **_KS_ENCODING) as fh:
                    fh.write(composed)
                self._remaster(new_ks, source, destination)

            log("INFO", "==== NEW KICKSTART FILE ====")
            display = composed.encode("utf-8", "surrogateescape").decode("utf-8", "replace")
            print(display, end="", flush=True)
            log("INFO", "============================")
        finally:
            shutil.rmtree(workdir, ignore_errors=True)
        return destination

    def _remaster(self, kickstart: Path, source: Path, destination: Path) -> None:
        log("INFO", "Writing new ISO")
        ensure_directory(destination.parent)
        result = self.runner.run(
            [
                "mkksiso",
                "-c",
                REMASTER_CMDLINE,
                "--rm-args",
                REMASTER_RM_ARGS,
                str(kickstart),
                str(source),
                str(destination),
            ],
            capture=False,
        )
        if result.status != 0:
            # a half-written ISO would otherwise be taken as valid next run
            self.runner.run(["rm", "-f", str(destination)])
            raise RemasterFailure(f"mkksiso failed with status {result.status}")
        log("SUCCESS", f"Customized image written: {destination}")
