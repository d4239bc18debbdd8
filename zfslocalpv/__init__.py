"""ZFS local volumes: records, zfs command arguments, creation, mounting, snapshots, resize, backup and restore."""

__version__ = "0.1.0"
__all__ = ["args", "model", "mount", "resize", "zfs"]