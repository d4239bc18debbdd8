"""Mounting and unmounting ZFS volumes, datasets and block devices."""

from __future__ import annotations

import enum
import logging
import os
import re
import subprocess
from dataclasses import dataclass, field
from typing import Optional

from .model import (
    VOL_TYPE_DATASET,
    ZFS_DEV_PATH,
    ZFSError,
    ZFSVolume,
    is_volume_ready,
)
from .zfs import get_volume_dev_path, get_volume_property, mount_zfs_dataset, set_dataset_legacy_mount

log = logging.getLogger(__name__)

MOUNTS_FILE = "/proc/mounts"

_OCTAL_ESCAPE = re.compile(r"\\([0-7]{3})")
_BLKID_NOT_FOUND = 2


class StatusCode(enum.IntEnum):
    """Status codes attached to mount request failures."""

    INVALID_ARGUMENT = 3
    INTERNAL = 13


class MountError(ZFSError):
    """A mount request failed; ``code`` tells whether the request or the node is at fault."""

    def __init__(self, code: StatusCode, message: str) -> None:
        super().__init__(message)
        self.code = code
        self.message = message

    def __str__(self) -> str:
        return f"{self.code.name}: {self.message}"


@dataclass
class MountInfo:
    """Where and how a volume is to be mounted."""

    fs_type: str = ""
    access_modes: list[str] = field(default_factory=list)
    mount_path: str = ""
    mount_options: list[str] = field(default_factory=list)


def _run(cmd: list[str]) -> tuple[int, str]:
    """Run a command and return its exit status and combined output."""
    try:
        proc = subprocess.run(
            cmd, stdout=subprocess.PIPE, stderr=subprocess.STDOUT, check=False
        )
    except OSError as exc:
        raise ZFSError(f"{cmd[0]}: {exc}") from exc
    out = proc.stdout or b""
    text = out.decode("utf-8", errors="replace") if isinstance(out, bytes) else out
    return proc.returncode, text


def _run_checked(cmd: list[str]) -> str:
    code, out = _run(cmd)
    if code != 0:
        raise ZFSError(out)
    return out


def _unescape(text: str) -> str:
    return _OCTAL_ESCAPE.sub(lambda m: chr(int(m.group(1), 8)), text)


def _mount_table(mounts_file: Optional[str] = None) -> list[tuple[str, str]]:
    """Return (device, mount path) pairs from a mounts table."""
    path = mounts_file if mounts_file is not None else MOUNTS_FILE
    entries: list[tuple[str, str]] = []
    with open(path, encoding="utf-8", errors="replace") as handle:
        for line in handle:
            fields = line.split()
            if len(fields) < 2:
                continue
            entries.append((_unescape(fields[0]), _unescape(fields[1])))
    return entries


def get_mounts(device_path: str, mounts_file: Optional[str] = None) -> list[str]:
    """Return the paths at which ``device_path`` is mounted."""
    return [mnt for dev, mnt in _mount_table(mounts_file) if dev == device_path]


def _existing_format(device_path: str) -> str:
    """Return the filesystem type on the device, or "" if it is unformatted."""
    cmd = ["blkid", "-p", "-s", "TYPE", "-s", "PTTYPE", "-o", "export", device_path]
    code, out = _run(cmd)
    if code == _BLKID_NOT_FOUND:
        return ""
    if code != 0:
        raise ZFSError(f"could not determine the format of {device_path}: {out}")
    values = dict(
        line.split("=", 1) for line in out.splitlines() if "=" in line
    )
    if "TYPE" in values:
        return values["TYPE"]
    if "PTTYPE" in values:
        raise ZFSError(f"device {device_path} holds a partition table, not a filesystem")
    return ""


def _mkfs_args(fs_type: str, device_path: str) -> list[str]:
    if fs_type in ("ext3", "ext4"):
        return [f"mkfs.{fs_type}", "-F", "-m0", device_path]
    return [f"mkfs.{fs_type}", device_path]


def format_and_mount_zvol(device_path: str, mount_info: MountInfo) -> None:
    """Format the device if it holds no filesystem, then mount it."""
    fs_type = mount_info.fs_type or "ext4"
    try:
        if not _existing_format(device_path):
            log.info("formatting %s as %s", device_path, fs_type)
            _run_checked(_mkfs_args(fs_type, device_path))
        cmd = ["mount", "-t", fs_type]
        if mount_info.mount_options:
            cmd += ["-o", ",".join(mount_info.mount_options)]
        cmd += [device_path, mount_info.mount_path]
        _run_checked(cmd)
    except ZFSError as exc:
        log.error(
            "zfspv: failed to mount volume %s [%s] to %s, error %s",
            device_path, fs_type, mount_info.mount_path, exc,
        )
        raise


def umount_volume(vol: ZFSVolume, target_path: str) -> None:
    """Unmount the volume at ``target_path`` and remove the mount path."""
    try:
        table = _mount_table()
    except OSError as exc:
        log.error(
            "zfspv umount volume: failed to get device from mnt: %s\nError: %s",
            target_path, exc,
        )
        raise ZFSError(f"failed to read mounts: {exc}") from exc

    device = next((dev for dev, mnt in table if mnt == target_path), "")
    refs = sum(1 for dev, _ in table if dev == device) if device else 0
    if not device or refs == 0:
        log.warning(
            "Warning: Unmount skipped because volume %s not mounted: %s",
            vol.name, target_path,
        )
        return

    try:
        os.lstat(target_path)
    except FileNotFoundError:
        log.warning("Warning: Unmount skipped because path does not exist: %s", target_path)
        return
    except OSError as exc:
        raise ZFSError(f"Error checking if path exists: {exc}") from exc

    try:
        _run_checked(["umount", target_path])
    except ZFSError as exc:
        log.error("zfs: failed to unmount %s: path %s err: %s", vol.name, target_path, exc)
        raise

    try:
        set_dataset_legacy_mount(vol)
    except ZFSError as exc:
        # The volume is unmounted already, so a new pod can still mount it.
        log.warning("zfs: failed to set legacy mountpoint: %s err: %s", vol.name, exc)

    try:
        os.rmdir(target_path) if os.path.isdir(target_path) else os.remove(target_path)
    except OSError as exc:
        log.error("zfspv: failed to remove mount path vol %s err : %s", vol.name, exc)

    log.info("umount done %s path %s", vol.name, target_path)


def verify_mount_request(vol: ZFSVolume, mountpath: str, node_id: str = "") -> bool:
    """Check that the volume may be mounted here; True if it already is at ``mountpath``."""
    if not mountpath:
        raise MountError(
            StatusCode.INVALID_ARGUMENT, "verifyMount: mount path missing in request"
        )
    owner = vol.spec.owner_node_id
    if owner and owner != node_id:
        raise MountError(StatusCode.INTERNAL, "verifyMount: volume is owned by different node")
    if not is_volume_ready(vol):
        raise MountError(
            StatusCode.INTERNAL, "verifyMount: volume is not ready to be mounted"
        )

    try:
        device_path = get_volume_dev_path(vol)
    except (OSError, ZFSError) as exc:
        log.error("can not get device for volume:%s err: %s", vol.name, exc)
        raise MountError(
            StatusCode.INTERNAL, f"verifyMount: GetVolumePath failed {exc}"
        ) from exc

    # A volume that is not shared may be mounted in one place only.
    try:
        current = get_mounts(device_path)
    except (OSError, ZFSError) as exc:
        log.error(
            "can not get mounts for volume:%s dev %s err: %s", vol.name, device_path, exc
        )
        raise MountError(StatusCode.INTERNAL, f"verifyMount: Getmounts failed {exc}") from exc

    if current:
        if mountpath in current:
            return True
        if vol.spec.shared != "yes":
            log.error(
                "can not mount, volume:%s already mounted dev %s mounts: %s",
                vol.name, device_path, current,
            )
            raise MountError(
                StatusCode.INTERNAL, f"verifyMount: device already mounted at {current}"
            )
    return False


def mount_zvol(vol: ZFSVolume, mount_info: MountInfo, node_id: str = "") -> None:
    """Format if needed and mount the zvol at the requested path."""
    volume = vol.dataset()
    if verify_mount_request(vol, mount_info.mount_path, node_id):
        log.info("zvol : already mounted %s => %s", volume, mount_info.mount_path)
        return
    try:
        format_and_mount_zvol(ZFS_DEV_PATH + volume, mount_info)
    except ZFSError as exc:
        raise MountError(
            StatusCode.INTERNAL, "not able to format and mount the zvol"
        ) from exc
    log.info("zvol %s mounted %s fs %s", volume, mount_info.mount_path, mount_info.fs_type)


def mount_dataset(vol: ZFSVolume, mount_info: MountInfo, node_id: str = "") -> None:
    """Mount the dataset at the requested path."""
    volume = vol.dataset()
    if verify_mount_request(vol, mount_info.mount_path, node_id):
        log.info("dataset : already mounted %s => %s", volume, mount_info.mount_path)
        return

    if get_volume_property(vol, "mountpoint") == "legacy":
        options = "".join(f"{option}," for option in mount_info.mount_options)
        cmd = ["mount", "-o", options, "-t", "zfs", volume, mount_info.mount_path]
        code, out = _run(cmd)
        if code != 0:
            log.error(
                "zfs: could not mount the dataset %s cmd %s error: %s", volume, cmd[1:], out
            )
            raise MountError(StatusCode.INTERNAL, f"dataset: mount failed err : {out}")
        log.info("dataset : legacy mounted %s => %s", volume, mount_info.mount_path)
    else:
        # Volumes created before legacy mountpoints were used are mounted by zfs itself.
        try:
            mount_zfs_dataset(vol, mount_info.mount_path)
        except ZFSError as exc:
            raise MountError(StatusCode.INTERNAL, f"zfs: mount failed err : {exc}") from exc
        log.info("dataset : mounted %s => %s", volume, mount_info.mount_path)


def mount_filesystem(vol: ZFSVolume, mount_info: MountInfo, node_id: str = "") -> None:
    """Create the mount directory and mount the dataset or zvol there."""
    try:
        os.makedirs(mount_info.mount_path, mode=0o750, exist_ok=True)
    except OSError as exc:
        raise MountError(
            StatusCode.INTERNAL,
            f"Could not create dir {{{mount_info.mount_path!r}}}, err: {exc}",
        ) from exc
    if vol.spec.volume_type == VOL_TYPE_DATASET:
        mount_dataset(vol, mount_info, node_id)
    else:
        mount_zvol(vol, mount_info, node_id)


def mount_block(vol: ZFSVolume, mount_info: MountInfo) -> None:
    """Bind-mount the zvol device node onto a file at the requested path."""
    target = mount_info.mount_path
    device_path = ZFS_DEV_PATH + vol.dataset()

    # A bind mount of a device node needs a file as its mount point.
    try:
        fd = os.open(os.path.normpath(target), os.O_CREAT, 0o644)
    except FileExistsError:
        pass
    except OSError as exc:
        raise MountError(
            StatusCode.INTERNAL, f"Could not create target file {target!r}: {exc}"
        ) from exc
    else:
        os.close(fd)

    code, out = _run(["mount", "-o", "bind", device_path, target])
    if code != 0:
        try:
            os.remove(target)
        except OSError as exc:
            raise MountError(
                StatusCode.INTERNAL, f"Could not remove mount target {target!r}: {exc}"
            ) from exc
        raise MountError(StatusCode.INTERNAL, f"mount failed at {target} err : {out}")

    log.info("NodePublishVolume mounted block device %s at %s", device_path, target)