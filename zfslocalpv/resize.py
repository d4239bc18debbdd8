"""Growing the filesystem on a volume after its size has been raised."""

from __future__ import annotations

import logging
import subprocess
from typing import Optional

from .model import ZFSError, ZFSVolume

log = logging.getLogger(__name__)

MOUNTS_FILE = "/proc/mounts"


def _run(cmd: list[str]) -> str:
    """Run a command, returning its combined output; raise ZFSError on failure."""
    try:
        proc = subprocess.run(
            cmd, stdout=subprocess.PIPE, stderr=subprocess.STDOUT, check=False
        )
    except OSError as exc:
        raise ZFSError(f"{cmd[0]} failed: {exc}") from exc
    out = (proc.stdout or b"").decode("utf-8", errors="replace")
    if proc.returncode != 0:
        raise ZFSError(f"{cmd[0]} failed: {out}")
    return out


def resize_extn(devpath: str) -> None:
    """Grow an ext2/3/4 filesystem to the size of its device."""
    try:
        _run(["resize2fs", devpath])
    except ZFSError as exc:
        log.error("zfspv: ResizeExtn failed error: %s", exc)
        raise


def resize_xfs(path: str) -> None:
    """Grow a mounted xfs filesystem to the size of its device."""
    try:
        _run(["xfs_growfs", path])
    except ZFSError as exc:
        log.error("zfspv: ResizeXFS failed error: %s", exc)
        raise


def read_mount_points(mounts_file: Optional[str] = None) -> list[str]:
    """Return the mount paths listed in a mounts table such as /proc/mounts."""
    path = mounts_file if mounts_file is not None else MOUNTS_FILE
    points: list[str] = []
    with open(path, encoding="utf-8", errors="replace") as handle:
        for line in handle:
            if not line.strip():
                continue
            fields = line.split()
            if len(fields) != 6:
                raise ZFSError(
                    f"wrong number of fields (expected 6, got {len(fields)}): {line.rstrip()}"
                )
            points.append(fields[1])
    return points


def handle_vol_resize(vol: ZFSVolume, volume_path: str, devpath: str) -> None:
    """Grow the filesystem mounted at ``volume_path`` once the quota has been set."""
    try:
        mount_points = read_mount_points()
    except (OSError, ZFSError):
        mount_points = []
    if volume_path not in mount_points:
        return
    fs_type = vol.spec.fs_type
    if fs_type == "xfs":
        resize_xfs(volume_path)
    elif fs_type == "zfs":
        # Setting the quota is enough for a dataset.
        return
    else:
        resize_extn(devpath)