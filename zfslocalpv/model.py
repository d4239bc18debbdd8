"""Volume, snapshot, backup and restore records and the checks made on them."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Iterable, Optional

# Paths and filesystem names.
ZFS_DEV_PATH = "/dev/zvol/"
FSTYPE_ZFS = "zfs"

# Volume types.
VOL_TYPE_DATASET = "DATASET"
VOL_TYPE_ZVOL = "ZVOL"

# Environment variables and keys.
OPENEBS_NAMESPACE_KEY = "OPENEBS_NAMESPACE"
GOOGLE_ANALYTICS_KEY = "OPENEBS_IO_ENABLE_ANALYTICS"
ZFS_FINALIZER = "zfs.openebs.io/finalizer"
FOREGROUND_DELETION_FINALIZER = "foregroundDeletion"
ZFS_VOL_KEY = "openebs.io/persistent-volume"
ZFS_SRC_VOL_KEY = "openebs.io/source-volume"
POOL_NAME_KEY = "openebs.io/poolname"
ZFS_NODE_KEY = "kubernetes.io/nodename"
ZFS_TOPOLOGY_KEY = "openebs.io/nodeid"
ZFS_TOPO_NODENAME_KEY = "openebs.io/nodename"
OPENEBS_CAS_TYPE_KEY = "openebs.io/cas-type"
ZFS_CAS_TYPE_NAME = "localpv-zfs"

# Object states.
ZFS_STATUS_PENDING = "Pending"
ZFS_STATUS_FAILED = "Failed"
ZFS_STATUS_READY = "Ready"

_INT64_MIN = -(2**63)
_INT64_MAX = 2**63 - 1
_DECIMAL = re.compile(r"[+-]?[0-9]+")


class ZFSError(Exception):
    """Raised when a ZFS operation or a record check fails."""


@dataclass
class VolumeSpec:
    """Properties of a ZFS volume or dataset."""

    owner_node_id: str = ""
    pool_name: str = ""
    capacity: str = ""
    record_size: str = ""
    vol_block_size: str = ""
    compression: str = ""
    dedup: str = ""
    encryption: str = ""
    key_location: str = ""
    key_format: str = ""
    thin_provision: str = ""
    volume_type: str = ""
    fs_type: str = ""
    snap_name: str = ""
    shared: str = ""


@dataclass
class ZFSVolume:
    """A ZFS volume record."""

    name: str
    spec: VolumeSpec = field(default_factory=VolumeSpec)
    labels: dict[str, str] = field(default_factory=dict)
    finalizers: list[str] = field(default_factory=list)
    state: str = ""

    def dataset(self) -> str:
        """The dataset name, ``<pool>/<volume>``."""
        return f"{self.spec.pool_name}/{self.name}"


@dataclass
class ZFSSnapshot:
    """A ZFS snapshot record; the source volume is held in its labels."""

    name: str
    spec: VolumeSpec = field(default_factory=VolumeSpec)
    labels: dict[str, str] = field(default_factory=dict)
    finalizers: list[str] = field(default_factory=list)
    state: str = ""

    def dataset(self) -> str:
        """The snapshot name, ``<pool>/<volume>@<snapshot>``."""
        volname = self.labels.get(ZFS_VOL_KEY, "")
        return f"{self.spec.pool_name}/{volname}@{self.name}"


@dataclass
class ZFSBackup:
    """A request to send a volume snapshot to a remote server."""

    volume_name: str
    snap_name: str
    backup_dest: str
    prev_snap_name: str = ""
    finalizers: list[str] = field(default_factory=list)
    status: str = ""


@dataclass
class ZFSRestore:
    """A request to receive a volume from a remote server."""

    volume_name: str
    restore_src: str
    vol_spec: VolumeSpec = field(default_factory=VolumeSpec)
    status: str = ""


@dataclass
class Pool:
    """A ZFS pool with its free and used space in bytes."""

    name: str
    uuid: str
    free: int
    used: int


def get_user_finalizers(finalizers: Iterable[str]) -> list[str]:
    """Return the finalizers not owned by the node agent or foreground deletion."""
    return [
        fin
        for fin in finalizers
        if fin not in (ZFS_FINALIZER, FOREGROUND_DELETION_FINALIZER)
    ]


def is_volume_ready(vol: ZFSVolume) -> bool:
    """True if the volume is Ready, or carries the node finalizer (older volumes)."""
    if vol.state == ZFS_STATUS_READY:
        return True
    return ZFS_FINALIZER in vol.finalizers


def snapshot_capacity(snap: Optional[ZFSSnapshot]) -> int:
    """Return the snapshot capacity as an integer; an empty capacity is 0."""
    if snap is None:
        raise ZFSError("expect non-nil snapshot")
    capacity = snap.spec.capacity
    if capacity == "":
        return 0
    if not _DECIMAL.fullmatch(capacity):
        raise ZFSError(f"convert {capacity} to integer failed")
    value = int(capacity)
    if not _INT64_MIN <= value <= _INT64_MAX:
        raise ZFSError(f"convert {capacity} to integer failed")
    return value


def property_changed(old_vol: ZFSVolume, new_vol: ZFSVolume) -> bool:
    """True if a settable property differs between the two volumes."""
    if (
        old_vol.spec.volume_type == VOL_TYPE_DATASET
        and new_vol.spec.volume_type == VOL_TYPE_DATASET
        and old_vol.spec.record_size != new_vol.spec.record_size
    ):
        return True
    return (
        old_vol.spec.compression != new_vol.spec.compression
        or old_vol.spec.dedup != new_vol.spec.dedup
    )


def get_volume_type(fstype: str) -> str:
    """A zfs filesystem makes a dataset; anything else makes a zvol."""
    return VOL_TYPE_DATASET if fstype == FSTYPE_ZFS else VOL_TYPE_ZVOL