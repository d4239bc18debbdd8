# zfslocalpv

A library for managing ZFS-backed local volumes on a Linux node: creating
zvols and datasets, cloning them from snapshots, setting properties,
resizing, mounting and unmounting, and streaming snapshots to and from a
remote server.

The package works by running system commands, so they must be installed
and the caller needs the privileges to run them: `zfs`, `mount`, `umount`,
`blkid`, `mkfs.<fstype>`, `resize2fs`, `xfs_growfs`, `xfs_admin`,
`btrfstune`, and `bash` with `nc` for backups and restores.

## Installation

```
pip install zfslocalpv
```

## Modules

- `zfslocalpv.model` – the records the rest of the package works on:
  `VolumeSpec`, `ZFSVolume`, `ZFSSnapshot`, `ZFSBackup`, `ZFSRestore` and
  `Pool`. `ZFSVolume.dataset()` gives `<pool>/<volume>` and
  `ZFSSnapshot.dataset()` gives `<pool>/<volume>@<snapshot>`, the volume
  being taken from the `openebs.io/persistent-volume` label. Helpers:
  `is_volume_ready`, `get_user_finalizers`, `snapshot_capacity`,
  `property_changed` and `get_volume_type` (`"zfs"` gives a dataset,
  anything else a zvol). Failures are raised as `ZFSError`.
- `zfslocalpv.args` – builds the argument lists for `zfs` commands
  (`zvol_create_args`, `dataset_create_args`, `clone_create_args`,
  `snapshot_create_args`, `snapshot_destroy_args`, `volume_set_args`,
  `volume_resize_args`, `volume_destroy_args`, `pool_list_args`), the
  `bash -c` pipelines for `backup_args` and `restore_args` (the server
  address must be `host:port`), and parses `zfs list` output into `Pool`
  records with `decode_list_output`.
- `zfslocalpv.zfs` – runs the commands: `volume_exists`, `create_volume`,
  `create_clone`, `destroy_volume`, `create_snapshot`, `destroy_snapshot`,
  `get_volume_property`, `set_volume_prop`, `set_dataset_mount_prop`,
  `set_dataset_legacy_mount`, `mount_zfs_dataset`, `get_volume_dev_path`,
  `resize_zfs_volume`, `create_backup`, `destroy_backup`,
  `wait_for_device`, `create_restore` and `list_zfs_pools`. Cloned or
  restored xfs and btrfs filesystems are given a fresh UUID.
- `zfslocalpv.resize` – grows ext and xfs filesystems after a volume has
  been enlarged (`resize_extn`, `resize_xfs`, `handle_vol_resize`), and
  reads mount points with `read_mount_points`.
- `zfslocalpv.mount` – `mount_filesystem` (creates the directory, then
  `mount_dataset` or `mount_zvol`), `mount_block` (bind-mounts the zvol
  device onto a file), `format_and_mount_zvol`, `verify_mount_request`,
  `get_mounts` and `umount_volume`. `MountInfo` holds the path, filesystem
  type and options. Failures are raised as `MountError`, a `ZFSError`
  carrying a `StatusCode` (`INVALID_ARGUMENT` or `INTERNAL`).

## Example

```python
from zfslocalpv.model import VolumeSpec, ZFSVolume, ZFS_STATUS_READY, get_volume_type
from zfslocalpv.zfs import create_volume
from zfslocalpv.mount import MountInfo, mount_filesystem

spec = VolumeSpec(
    pool_name="zfspv-pool",
    capacity="4294967296",
    fs_type="zfs",
    volume_type=get_volume_type("zfs"),
    owner_node_id="node-1",
)
vol = ZFSVolume(name="pvc-example", spec=spec)

create_volume(vol)
vol.state = ZFS_STATUS_READY
mount_filesystem(vol, MountInfo(fs_type="zfs", mount_path="/mnt/pvc-example"), "node-1")
```

A mount is refused unless the volume is ready, is owned by the given node
(or by none), and, when not shared, is not already mounted elsewhere.

## What it does not do

This is a library for one node. It does not store, fetch or watch volume,
snapshot, backup or restore records anywhere: the caller builds them and
passes them in, and keeps track of their state. `create_restore` needs the
pool in the restore's `vol_spec`, and `destroy_backup` expects the volume
record (or `None` when the volume is gone). There is no command-line tool
and no server.

## Running the tests

```
pip install -e ".[test]"
pytest
```