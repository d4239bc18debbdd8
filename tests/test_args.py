import pytest

from zfslocalpv.args import (
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
from zfslocalpv.model import (
    VOL_TYPE_DATASET,
    VOL_TYPE_ZVOL,
    ZFS_VOL_KEY,
    VolumeSpec,
    ZFSBackup,
    ZFSError,
    ZFSRestore,
    ZFSSnapshot,
    ZFSVolume,
)

POOL = "zfspv-pool"
NAME = "pvc-be02d230-3738-4de9-8968-70f5d10d86dd"


def _vol(**spec):
    return ZFSVolume(name=NAME, spec=VolumeSpec(pool_name=POOL, **spec))


def test_zvol_create_thin_with_size_and_block():
    vol = _vol(thin_provision="yes", capacity="4G", vol_block_size="8k")
    assert zvol_create_args(vol) == [
        "create", "-s", "-V", "4G", "-b", "8k", vol.dataset()
    ]


def test_zvol_create_empty_spec():
    vol = _vol()
    assert zvol_create_args(vol) == ["create", vol.dataset()]


def test_zvol_create_property_order():
    vol = _vol(
        dedup="on", compression="lz4", encryption="on",
        key_location="prompt", key_format="passphrase",
    )
    assert zvol_create_args(vol) == [
        "create",
        "-o", "dedup=on",
        "-o", "compression=lz4",
        "-o", "encryption=on",
        "-o", "keylocation=prompt",
        "-o", "keyformat=passphrase",
        vol.dataset(),
    ]


def test_dataset_create_thick():
    vol = _vol(capacity="4G", record_size="4k", thin_provision="no", dedup="on")
    assert dataset_create_args(vol) == [
        "create",
        "-o", "quota=4G",
        "-o", "recordsize=4k",
        "-o", "reservation=4G",
        "-o", "dedup=on",
        "-o", "mountpoint=legacy",
        vol.dataset(),
    ]


def test_dataset_create_thin_has_no_reservation():
    vol = _vol(capacity="4G", thin_provision="yes")
    args = dataset_create_args(vol)
    assert not any(a.startswith("reservation=") for a in args)
    assert args[-3:] == ["-o", "mountpoint=legacy", vol.dataset()]


def test_clone_dataset():
    vol = _vol(volume_type=VOL_TYPE_DATASET, capacity="4G",
               compression="lz4", snap_name="snap-1")
    assert clone_create_args(vol) == [
        "clone",
        "-o", "quota=4G",
        "-o", "mountpoint=legacy",
        "-o", "compression=lz4",
        f"{POOL}/snap-1",
        vol.dataset(),
    ]


def test_clone_zvol_ignores_dataset_props():
    vol = _vol(volume_type=VOL_TYPE_ZVOL, capacity="4G", snap_name="snap-1")
    assert clone_create_args(vol) == ["clone", f"{POOL}/snap-1", vol.dataset()]


def test_snapshot_create_and_destroy():
    snap = ZFSSnapshot(name="snap-1", spec=VolumeSpec(pool_name=POOL),
                       labels={ZFS_VOL_KEY: NAME})
    assert snapshot_create_args(snap) == ["snapshot", snap.dataset()]
    assert snapshot_destroy_args(snap) == ["destroy", snap.dataset()]


def test_volume_set_dataset_and_zvol():
    ds = _vol(volume_type=VOL_TYPE_DATASET, record_size="4k", dedup="on")
    assert volume_set_args(ds) == ["set", "recordsize=4k", "dedup=on", ds.dataset()]
    zv = _vol(volume_type=VOL_TYPE_ZVOL, record_size="4k", compression="lz4")
    assert volume_set_args(zv) == ["set", "compression=lz4", zv.dataset()]


def test_volume_resize():
    ds = _vol(volume_type=VOL_TYPE_DATASET, capacity="8G")
    assert volume_resize_args(ds) == ["set", "quota=8G", ds.dataset()]
    zv = _vol(volume_type=VOL_TYPE_ZVOL, capacity="8G")
    assert volume_resize_args(zv) == ["set", "volsize=8G", zv.dataset()]


def test_volume_destroy():
    vol = _vol()
    assert volume_destroy_args(vol) == ["destroy", "-r", vol.dataset()]


def test_backup_full():
    vol = _vol()
    bkp = ZFSBackup(volume_name=NAME, snap_name="b1", backup_dest="10.0.0.5:9010")
    assert backup_args(bkp, vol) == [
        "-c", f"zfs send {vol.dataset()}@b1 | nc -w 3 10.0.0.5 9010"
    ]


def test_backup_incremental():
    vol = _vol()
    bkp = ZFSBackup(volume_name=NAME, snap_name="b2",
                    backup_dest="10.0.0.5:9010", prev_snap_name="b1")
    assert backup_args(bkp, vol) == [
        "-c",
        f"zfs send -i {vol.dataset()}@b1 {vol.dataset()}@b2  | nc -w 3 10.0.0.5 9010",
    ]


@pytest.mark.parametrize("dest", ["10.0.0.5", "a:b:c", ""])
def test_backup_invalid_address(dest):
    bkp = ZFSBackup(volume_name=NAME, snap_name="b1", backup_dest=dest)
    with pytest.raises(ZFSError, match="invalid backup server address"):
        backup_args(bkp, _vol())


def test_restore_dataset():
    spec = VolumeSpec(pool_name=POOL, volume_type=VOL_TYPE_DATASET,
                      capacity="4G", dedup="on")
    rstr = ZFSRestore(volume_name=NAME, restore_src="10.0.0.5:9010", vol_spec=spec)
    assert restore_args(rstr) == [
        "-c",
        "nc -w 3 10.0.0.5 9010 | zfs recv -o quota=4G -o mountpoint=legacy"
        f" -o dedup=on -F {POOL}/{NAME}",
    ]


def test_restore_zvol_plain():
    spec = VolumeSpec(pool_name=POOL, volume_type=VOL_TYPE_ZVOL, capacity="4G")
    rstr = ZFSRestore(volume_name=NAME, restore_src="10.0.0.5:9010", vol_spec=spec)
    assert restore_args(rstr) == [
        "-c", f"nc -w 3 10.0.0.5 9010 | zfs recv -F {POOL}/{NAME}"
    ]


def test_restore_invalid_address():
    rstr = ZFSRestore(volume_name=NAME, restore_src="nohost")
    with pytest.raises(ZFSError, match="invalid restore server address"):
        restore_args(rstr)


def test_pool_list_args():
    assert pool_list_args() == [
        "list", "-d", "1", "-s", "name",
        "-o", "name,guid,available,used", "-H", "-p",
    ]


def test_decode_list_output_keeps_only_pools():
    raw = (
        b"zfspv-pool\t4734063099997348493\t103498467328\t1024\n"
        b"zfspv-pool/pvc-be02d230-3738-4de9-8968-70f5d10d86dd"
        b"\t3380225606535803752\t4294942720\t512\n"
    )
    pools = decode_list_output(raw)
    assert len(pools) == 1
    pool = pools[0]
    assert pool.name == "zfspv-pool"
    assert pool.uuid == "4734063099997348493"
    assert pool.free == 103498467328
    assert pool.used == 1024


def test_decode_list_output_str_matches_bytes():
    text = "p1\t11\t100\t5\np2\t22\t200\t6\n"
    assert decode_list_output(text) == decode_list_output(text.encode())
    assert [p.name for p in decode_list_output(text)] == ["p1", "p2"]


def test_decode_list_output_empty():
    assert decode_list_output(b"") == []


def test_decode_list_output_bad_number():
    with pytest.raises(ZFSError, match="cannot get free size for pool p1"):
        decode_list_output("p1\t11\tlots\t5\n")