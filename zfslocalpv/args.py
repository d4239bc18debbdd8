"""Argument lists for the zfs commands run on volumes, snapshots, backups and restores."""

from __future__ import annotations

import re
from typing import Iterable, Iterator, Union

from .model import (
    VOL_TYPE_DATASET,
    Pool,
    VolumeSpec,
    ZFSBackup,
    ZFSError,
    ZFSRestore,
    ZFSSnapshot,
    ZFSVolume,
)

ZFS_VOL_CMD = "zfs"
ZFS_CREATE_ARG = "create"
ZFS_CLONE_ARG = "clone"
ZFS_DESTROY_ARG = "destroy"
ZFS_SET_ARG = "set"
ZFS_GET_ARG = "get"
ZFS_LIST_ARG = "list"
ZFS_SNAPSHOT_ARG = "snapshot"
ZFS_SEND_ARG = "send"
ZFS_RECV_ARG = "recv"

_LEGACY_MOUNTPOINT = "mountpoint=legacy"
_INT64_MIN = -(2**63)
_INT64_MAX = 2**63 - 1
_DECIMAL = re.compile(r"[+-]?[0-9]+")


def _common_props(spec: VolumeSpec) -> Iterator[str]:
    """Properties shared by zvols and datasets, in the order zfs is given them."""
    for key, value in (
        ("dedup", spec.dedup),
        ("compression", spec.compression),
        ("encryption", spec.encryption),
        ("keylocation", spec.key_location),
        ("keyformat", spec.key_format),
    ):
        if value:
            yield f"{key}={value}"


def _dataset_props(spec: VolumeSpec) -> Iterator[str]:
    """Quota, record size and reservation properties of a dataset."""
    if spec.capacity:
        yield f"quota={spec.capacity}"
    if spec.record_size:
        yield f"recordsize={spec.record_size}"
    if spec.thin_provision == "no":
        yield f"reservation={spec.capacity}"


def _as_options(props: Iterable[str]) -> list[str]:
    return [arg for prop in props for arg in ("-o", prop)]


def _split_address(address: str, kind: str) -> tuple[str, str]:
    parts = address.split(":")
    if len(parts) != 2:
        raise ZFSError(f"zfs: invalid {kind} server address {address}")
    return parts[0], parts[1]


def zvol_create_args(vol: ZFSVolume) -> list[str]:
    """Arguments of ``zfs create`` for a zvol."""
    spec = vol.spec
    args = [ZFS_CREATE_ARG]
    if spec.thin_provision == "yes":
        args.append("-s")
    if spec.capacity:
        args += ["-V", spec.capacity]
    if spec.vol_block_size:
        args += ["-b", spec.vol_block_size]
    args += _as_options(_common_props(spec))
    args.append(vol.dataset())
    return args


def clone_create_args(vol: ZFSVolume) -> list[str]:
    """Arguments of ``zfs clone`` making the volume from its snapshot."""
    spec = vol.spec
    snapshot = f"{spec.pool_name}/{spec.snap_name}"
    args = [ZFS_CLONE_ARG]
    if spec.volume_type == VOL_TYPE_DATASET:
        args += _as_options(_dataset_props(spec))
        args += ["-o", _LEGACY_MOUNTPOINT]
    args += _as_options(_common_props(spec))
    args += [snapshot, vol.dataset()]
    return args


def snapshot_create_args(snap: ZFSSnapshot) -> list[str]:
    """Arguments of ``zfs snapshot <pool>/<volume>@<snapshot>``."""
    return [ZFS_SNAPSHOT_ARG, snap.dataset()]


def snapshot_destroy_args(snap: ZFSSnapshot) -> list[str]:
    """Arguments of ``zfs destroy <pool>/<volume>@<snapshot>``."""
    return [ZFS_DESTROY_ARG, snap.dataset()]


def dataset_create_args(vol: ZFSVolume) -> list[str]:
    """Arguments of ``zfs create`` for a dataset with a legacy mountpoint."""
    spec = vol.spec
    args = [ZFS_CREATE_ARG]
    args += _as_options(_dataset_props(spec))
    args += _as_options(_common_props(spec))
    args += ["-o", _LEGACY_MOUNTPOINT, vol.dataset()]
    return args


def volume_set_args(vol: ZFSVolume) -> list[str]:
    """Arguments of ``zfs set`` for every settable property present on the volume."""
    spec = vol.spec
    args = [ZFS_SET_ARG]
    if spec.volume_type == VOL_TYPE_DATASET and spec.record_size:
        args.append(f"recordsize={spec.record_size}")
    if spec.dedup:
        args.append(f"dedup={spec.dedup}")
    if spec.compression:
        args.append(f"compression={spec.compression}")
    args.append(vol.dataset())
    return args


def volume_resize_args(vol: ZFSVolume) -> list[str]:
    """Arguments of ``zfs set`` that apply the volume's capacity."""
    spec = vol.spec
    key = "quota" if spec.volume_type == VOL_TYPE_DATASET else "volsize"
    return [ZFS_SET_ARG, f"{key}={spec.capacity}", vol.dataset()]


def backup_args(bkp: ZFSBackup, vol: ZFSVolume) -> list[str]:
    """Arguments for ``bash`` that send the backup snapshot to the backup server."""
    host, port = _split_address(bkp.backup_dest, "backup")
    base = vol.dataset()
    cur_snap = f"{base}@{bkp.snap_name}"
    remote = f" | nc -w 3 {host} {port}"
    if bkp.prev_snap_name:
        prev_snap = f"{base}@{bkp.prev_snap_name}"
        cmd = f"{ZFS_VOL_CMD} {ZFS_SEND_ARG} -i {prev_snap} {cur_snap} {remote}"
    else:
        cmd = f"{ZFS_VOL_CMD} {ZFS_SEND_ARG} {cur_snap}{remote}"
    return ["-c", cmd]


def restore_args(rstr: ZFSRestore) -> list[str]:
    """Arguments for ``bash`` that receive the volume from the restore server."""
    host, port = _split_address(rstr.restore_src, "restore")
    spec = rstr.vol_spec
    volume = f"{spec.pool_name}/{rstr.volume_name}"
    props: list[str] = []
    if spec.volume_type == VOL_TYPE_DATASET:
        props += _dataset_props(spec)
        props.append(_LEGACY_MOUNTPOINT)
    props += _common_props(spec)
    params = "".join(f" -o {prop}" for prop in props)
    source = f"nc -w 3 {host} {port} | "
    cmd = f"{source}{ZFS_VOL_CMD} {ZFS_RECV_ARG}{params} -F {volume}"
    return ["-c", cmd]


def volume_destroy_args(vol: ZFSVolume) -> list[str]:
    """Arguments of ``zfs destroy -r`` for the volume."""
    return [ZFS_DESTROY_ARG, "-r", vol.dataset()]


def pool_list_args() -> list[str]:
    """Arguments of ``zfs list`` that report pools with their guid and sizes."""
    return [
        ZFS_LIST_ARG, "-d", "1", "-s", "name",
        "-o", "name,guid,available,used",
        "-H", "-p",
    ]


def _parse_int64(text: str, pool_name: str) -> int:
    if _DECIMAL.fullmatch(text):
        value = int(text)
        if _INT64_MIN <= value <= _INT64_MAX:
            return value
    raise ZFSError(
        f"cannot get free size for pool {pool_name}: invalid integer {text!r}"
    )


def decode_list_output(raw: Union[bytes, str]) -> list[Pool]:
    """Parse ``zfs list`` output, keeping only pools (names without ``/``)."""
    text = raw.decode("utf-8", errors="replace") if isinstance(raw, bytes) else raw
    pools: list[Pool] = []
    for line in text.splitlines():
        line = line.strip()
        if not line:
            continue
        items = line.split("\t")
        name = items[0]
        if "/" in name:
            continue
        if len(items) < 4:
            raise ZFSError(f"malformed zfs list line: {line!r}")
        free = _parse_int64(items[2], name)
        used = _parse_int64(items[3], name)
        pools.append(Pool(name=name, uuid=items[1], free=free, used=used))
    return pools