"""Creating, cloning, mounting, snapshotting, resizing and destroying ZFS volumes."""

from __future__ import annotations

import logging
import os
import subprocess
import time
from typing import Optional

from .args import (
    ZFS_GET_ARG,
    ZFS_LIST_ARG,
    ZFS_SET_ARG,
    ZFS_VOL_CMD,
    backup_args,
    clone_create_args,
    dataset_create_args,
    decode_list_output,
    pool_list_args,
    restore_args,
    snapshot_create_args,
    snapshot_destroy_args,
    volume_destroy_args,
    volume_resize_args,
    volume_set_args,
    zvol_create_args,
)
from .model import (
    VOL_TYPE_DATASET,
    ZFS_DEV_PATH,
    ZFS_SRC_VOL_KEY,
    ZFS_VOL_KEY,
    Pool,
    VolumeSpec,
    ZFSBackup,
    ZFSError,
    ZFSRestore,
    ZFSSnapshot,
    ZFSVolume,
)
from .resize import handle_vol_resize

log = logging.getLogger(__name__)

_DEVICE_WAIT_SECONDS = 5.0
_DEVICE_POLL_SECONDS = 1.0


def _run(cmd: list[str]) -> str:
    """Run a command and return its combined output; raise ZFSError on failure."""
    try:
        proc = subprocess.run(
            cmd, stdout=subprocess.PIPE, stderr=subprocess.STDOUT, check=False
        )
    except OSError as exc:
        raise ZFSError(f"{cmd[0]}: {exc}") from exc
    out = proc.stdout or b""
    text = out.decode("utf-8", errors="replace") if isinstance(out, bytes) else out
    if proc.returncode != 0:
        raise ZFSError(text)
    return text


def _zfs(args: list[str]) -> str:
    return _run([ZFS_VOL_CMD, *args])


def _regenerate_uuid(fs_type: str, device: str) -> None:
    """Give a cloned or restored xfs/btrfs filesystem a fresh UUID so it can be mounted."""
    if fs_type == "xfs":
        _run(["xfs_admin", "-U", "generate", device])
    elif fs_type == "btrfs":
        _run(["btrfstune", "-f", "-u", device])


def volume_exists(volume: str) -> bool:
    """True if ``zfs list`` knows the dataset, zvol or snapshot."""
    try:
        _zfs([ZFS_LIST_ARG, volume])
    except ZFSError:
        return False
    return True


def create_volume(vol: ZFSVolume) -> None:
    """Create the zvol or dataset described by the volume, unless it exists."""
    volume = vol.dataset()
    if volume_exists(volume):
        log.info("using existing volume %s", volume)
        return
    if vol.spec.volume_type == VOL_TYPE_DATASET:
        args = dataset_create_args(vol)
    else:
        args = zvol_create_args(vol)
    try:
        _zfs(args)
    except ZFSError as exc:
        log.error("zfs: could not create volume %s cmd %s error: %s", volume, args, exc)
        raise
    log.info("created volume %s", volume)


def create_clone(vol: ZFSVolume) -> None:
    """Create the volume as a clone of a snapshot, snapshotting a source volume first."""
    volume = vol.dataset()
    src_vol = vol.labels.get(ZFS_SRC_VOL_KEY)
    if src_vol is not None:
        snap = ZFSSnapshot(name=vol.name, spec=vol.spec, labels={ZFS_VOL_KEY: src_vol})
        log.info("creating snapshot %s@%s for the clone %s", src_vol, snap.name, volume)
        try:
            create_snapshot(snap)
        except ZFSError as exc:
            log.error(
                "zfs: could not create snapshot for the clone vol %s snap %s err %s",
                volume, snap.name, exc,
            )
            raise

    if volume_exists(volume):
        log.info("using existing clone volume %s", volume)
    else:
        args = clone_create_args(vol)
        try:
            _zfs(args)
        except ZFSError as exc:
            log.error("zfs: could not clone volume %s cmd %s error: %s", volume, args, exc)
            raise
        log.info("created clone %s", volume)

    if vol.spec.fs_type in ("xfs", "btrfs"):
        _regenerate_uuid(vol.spec.fs_type, ZFS_DEV_PATH + volume)


def set_dataset_mount_prop(volume: str, mountpath: str) -> None:
    """Set the mountpoint property of a dataset."""
    args = [ZFS_SET_ARG, f"mountpoint={mountpath}", volume]
    try:
        _zfs(args)
    except ZFSError as exc:
        log.error(
            "zfs: could not set mountpoint on dataset %s cmd %s error: %s",
            volume, args, exc,
        )
        raise ZFSError(f"could not set the mountpoint, {exc}") from exc


def mount_zfs_dataset(vol: ZFSVolume, mountpath: str) -> None:
    """Point the dataset at ``mountpath`` and mount it if zfs has not."""
    volume = vol.dataset()
    set_dataset_mount_prop(volume, mountpath)
    # Setting the mountpoint mounts the dataset unless it was unmounted before.
    if get_volume_property(vol, "mounted") == "no":
        args = ["mount", volume]
        try:
            _zfs(args)
        except ZFSError as exc:
            log.error(
                "zfs: could not mount the dataset %s cmd %s error: %s", volume, args, exc
            )
            raise ZFSError(f"not able to mount, {exc}") from exc


def set_dataset_legacy_mount(vol: ZFSVolume) -> None:
    """Set a dataset's mountpoint to legacy if it is not already."""
    if vol.spec.volume_type != VOL_TYPE_DATASET:
        return
    if get_volume_property(vol, "mountpoint") != "legacy":
        set_dataset_mount_prop(vol.dataset(), "legacy")


def get_volume_property(vol: ZFSVolume, prop: str) -> str:
    """Return the parsable value of a zfs property of the volume."""
    volume = vol.dataset()
    args = [ZFS_GET_ARG, "-pH", "-o", "value", prop, volume]
    try:
        out = _zfs(args)
    except ZFSError as exc:
        log.error(
            "zfs: could not get %s on dataset %s cmd %s error: %s", prop, volume, args, exc
        )
        raise ZFSError(f"zfs get {prop} failed, {exc}") from exc
    return out[:-1]


def set_volume_prop(vol: ZFSVolume) -> None:
    """Apply every settable property present on the volume."""
    spec = vol.spec
    if (
        not spec.compression
        and not spec.dedup
        and (spec.volume_type != VOL_TYPE_DATASET or not spec.record_size)
    ):
        return
    volume = vol.dataset()
    args = volume_set_args(vol)
    try:
        _zfs(args)
    except ZFSError as exc:
        log.error(
            "zfs: could not set property on volume %s cmd %s error: %s", volume, args, exc
        )
        raise
    log.info("property set on volume %s", volume)


def destroy_volume(vol: ZFSVolume) -> None:
    """Destroy the volume, and the snapshot a volume-sourced clone was made from."""
    volume = vol.dataset()
    parent = vol.spec.pool_name
    if not volume_exists(parent):
        log.error("destroy: parent dataset %s is not present", parent)
        raise ZFSError(f"destroy: parent dataset {parent} is not present")
    if not volume_exists(volume):
        log.error("destroy: volume %s is not present", volume)
        return

    args = volume_destroy_args(vol)
    try:
        _zfs(args)
    except ZFSError as exc:
        log.error("zfs: could not destroy volume %s cmd %s error: %s", volume, args, exc)
        raise

    src_vol = vol.labels.get(ZFS_SRC_VOL_KEY)
    if src_vol is not None:
        snap = ZFSSnapshot(name=vol.name, spec=vol.spec, labels={ZFS_VOL_KEY: src_vol})
        log.info("destroying snapshot %s@%s for the clone %s", src_vol, snap.name, volume)
        try:
            destroy_snapshot(snap)
        except ZFSError as exc:
            # The volume is gone already; nothing left to reconcile.
            log.error(
                "zfs: could not destroy snapshot for the clone vol %s snap %s err %s",
                volume, snap.name, exc,
            )
    log.info("destroyed volume %s", volume)


def create_snapshot(snap: ZFSSnapshot) -> None:
    """Take the snapshot unless it already exists."""
    snap_dataset = snap.dataset()
    if volume_exists(snap_dataset):
        log.info("snapshot already there %s", snap_dataset)
        return
    args = snapshot_create_args(snap)
    try:
        _zfs(args)
    except ZFSError as exc:
        log.error("zfs: could not create snapshot %s cmd %s error: %s", snap_dataset, args, exc)
        raise
    log.info("created snapshot %s", snap_dataset)


def destroy_snapshot(snap: ZFSSnapshot) -> None:
    """Destroy the snapshot if it exists; its pool must exist."""
    snap_dataset = snap.dataset()
    parent = snap.spec.pool_name
    if not volume_exists(parent):
        log.error(
            "destroy: snapshot's(%s) parent dataset %s is not present", snap_dataset, parent
        )
        raise ZFSError(
            f"destroy: snapshot's({snap_dataset}) parent dataset {parent} is not present"
        )
    if not volume_exists(snap_dataset):
        log.error("destroy: snapshot %s is not present", snap_dataset)
        return
    args = snapshot_destroy_args(snap)
    try:
        _zfs(args)
    except ZFSError as exc:
        log.error(
            "zfs: could not destroy snapshot %s cmd %s error: %s", snap_dataset, args, exc
        )
        raise
    log.info("deleted snapshot %s", snap_dataset)


def get_volume_dev_path(vol: ZFSVolume) -> str:
    """The dataset name for datasets; the resolved device node for zvols."""
    volume = vol.dataset()
    if vol.spec.volume_type == VOL_TYPE_DATASET:
        return volume
    return os.path.realpath(ZFS_DEV_PATH + volume, strict=True)


def resize_zfs_volume(vol: ZFSVolume, mountpath: str, resizefs: bool) -> None:
    """Apply the volume's capacity and, if asked, grow its filesystem."""
    volume = vol.dataset()
    args = volume_resize_args(vol)
    try:
        _zfs(args)
    except ZFSError as exc:
        log.error("zfs: could not resize the volume %s cmd %s error: %s", volume, args, exc)
        raise
    if resizefs:
        handle_vol_resize(vol, mountpath, get_volume_dev_path(vol))


def create_backup(bkp: ZFSBackup, vol: ZFSVolume) -> None:
    """Snapshot the volume and send the snapshot to the backup server."""
    volume = vol.dataset()
    snap = ZFSSnapshot(
        name=bkp.snap_name,
        spec=VolumeSpec(pool_name=vol.spec.pool_name),
        labels={ZFS_VOL_KEY: vol.name},
    )
    try:
        create_snapshot(snap)
    except ZFSError as exc:
        log.error(
            "zfs: could not create snapshot for the backup vol %s snap %s err %s",
            volume, snap.name, exc,
        )
        raise
    args = backup_args(bkp, vol)
    try:
        _run(["bash", *args])
    except ZFSError as exc:
        log.error("zfs: could not backup the volume %s cmd %s error: %s", volume, args, exc)
        raise


def destroy_backup(bkp: ZFSBackup, vol: Optional[ZFSVolume]) -> None:
    """Destroy the snapshot taken for a backup; nothing to do if the volume is gone."""
    if vol is None:
        return
    volume = vol.dataset()
    snap = ZFSSnapshot(
        name=bkp.snap_name,
        spec=VolumeSpec(pool_name=vol.spec.pool_name),
        labels={ZFS_VOL_KEY: vol.name},
    )
    try:
        destroy_snapshot(snap)
    except ZFSError as exc:
        log.error(
            "zfs: could not destroy snapshot for the backup vol %s snap %s err %s",
            volume, snap.name, exc,
        )
        raise


def wait_for_device(volume: str, timeout: float = _DEVICE_WAIT_SECONDS) -> str:
    """Wait for the zvol device node to appear and return its path."""
    device = ZFS_DEV_PATH + volume
    deadline = time.monotonic() + timeout
    while True:
        if os.path.exists(device):
            return device
        remaining = deadline - time.monotonic()
        if remaining <= 0:
            raise ZFSError(f"zfs: not able to get the device: {device}")
        time.sleep(min(_DEVICE_POLL_SECONDS, remaining))


def create_restore(rstr: ZFSRestore) -> None:
    """Receive the volume from the restore server."""
    if not rstr.vol_spec.pool_name:
        raise ZFSError(f"zfs: restore of {rstr.volume_name} has no pool in its volume spec")
    args = restore_args(rstr)
    volume = f"{rstr.vol_spec.pool_name}/{rstr.volume_name}"
    try:
        _run(["bash", *args])
    except ZFSError as exc:
        log.error("zfs: could not restore the volume %s cmd %s error: %s", volume, args, exc)
        raise
    fs_type = rstr.vol_spec.fs_type
    if fs_type in ("xfs", "btrfs"):
        _regenerate_uuid(fs_type, wait_for_device(volume))


def list_zfs_pools() -> list[Pool]:
    """List the pools on this node with their free and used bytes."""
    args = pool_list_args()
    try:
        out = _zfs(args)
    except ZFSError as exc:
        log.error("zfs: could not list zpool cmd %s: %s", args, exc)
        raise
    return decode_list_output(out)