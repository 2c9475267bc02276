import numpy as np
import pytest

from voxreg.cross_scan import (
    CrossScan,
    CrossScanConfig,
    ScanDirection,
    merge_2d,
    merge_3d,
    scan_2d,
    scan_3d,
)


def test_scan_2d_shapes():
    x = np.zeros((2, 8, 16, 16))
    scanned = scan_2d(x, ScanDirection.HORIZONTAL_FORWARD)
    assert scanned.shape == (2, 8, 256)
    merged = merge_2d(scanned, 16, 16, ScanDirection.HORIZONTAL_FORWARD)
    assert merged.shape == (2, 8, 16, 16)


def test_scan_3d_shapes():
    x = np.zeros((2, 8, 4, 8, 8))
    scanned = scan_3d(x, ScanDirection.DEPTH_FORWARD)
    assert scanned.shape == (2, 8, 256)
    merged = merge_3d(scanned, 4, 8, 8, ScanDirection.DEPTH_FORWARD)
    assert merged.shape == (2, 8, 4, 8, 8)


def test_cross_scan_3d_directions():
    cross = CrossScan(CrossScanConfig.new_3d())
    sequences = cross.apply(np.zeros((1, 16, 4, 8, 8)))
    assert len(sequences) == 6


@pytest.mark.parametrize(
    "direction, expected",
    [
        (ScanDirection.HORIZONTAL_FORWARD, [0, 1, 2, 3, 4, 5]),
        (ScanDirection.HORIZONTAL_REVERSE, [2, 1, 0, 5, 4, 3]),
        (ScanDirection.VERTICAL_FORWARD, [0, 3, 1, 4, 2, 5]),
        (ScanDirection.VERTICAL_REVERSE, [3, 0, 4, 1, 5, 2]),
    ],
)
def test_scan_2d_order(direction, expected):
    x = np.arange(6, dtype=float).reshape(1, 1, 2, 3)
    assert scan_2d(x, direction)[0, 0].tolist() == expected


@pytest.mark.parametrize("direction", ScanDirection.all_2d())
def test_2d_round_trip(direction):
    x = np.random.default_rng(0).normal(size=(2, 3, 4, 5))
    assert np.array_equal(merge_2d(scan_2d(x, direction), 4, 5, direction), x)


@pytest.mark.parametrize("direction", ScanDirection.all_3d())
def test_3d_round_trip(direction):
    x = np.random.default_rng(1).normal(size=(1, 2, 3, 4, 5))
    assert np.array_equal(merge_3d(scan_3d(x, direction), 3, 4, 5, direction), x)


def test_depth_scan_order():
    x = np.arange(8, dtype=float).reshape(1, 1, 2, 2, 2)
    assert scan_3d(x, ScanDirection.DEPTH_FORWARD)[0, 0].tolist() == [0, 4, 1, 5, 2, 6, 3, 7]
    assert scan_3d(x, ScanDirection.DEPTH_REVERSE)[0, 0].tolist() == [4, 0, 5, 1, 6, 2, 7, 3]


def test_scan_2d_rejects_depth_direction():
    with pytest.raises(ValueError):
        scan_2d(np.zeros((1, 1, 2, 2)), ScanDirection.DEPTH_FORWARD)
    with pytest.raises(ValueError):
        merge_2d(np.zeros((1, 1, 4)), 2, 2, ScanDirection.DEPTH_REVERSE)


def test_direction_lists():
    assert len(ScanDirection.all_2d()) == 4
    assert ScanDirection.all_3d()[:4] == ScanDirection.all_2d()
    assert ScanDirection.all_3d()[4:] == (
        ScanDirection.DEPTH_FORWARD,
        ScanDirection.DEPTH_REVERSE,
    )


def test_config_presets():
    assert CrossScanConfig.new_2d() == CrossScanConfig(use_3d=False, num_directions=4)
    assert CrossScanConfig.new_3d() == CrossScanConfig()
    assert CrossScan(CrossScanConfig.new_2d()).use_3d() is False
    assert CrossScan().directions() == ScanDirection.all_3d()


def test_cross_scan_merge_3d_restores_input():
    cross = CrossScan(CrossScanConfig.new_3d())
    x = np.random.default_rng(2).normal(size=(1, 2, 2, 3, 4))
    merged = cross.merge_3d(cross.apply(x), 2, 3, 4, cross.directions())
    assert np.allclose(merged, x)


def test_cross_scan_merge_2d_restores_input():
    cross = CrossScan(CrossScanConfig.new_2d())
    x = np.random.default_rng(3).normal(size=(2, 3, 4, 5))
    sequences = cross.apply(x)
    assert len(sequences) == 4
    merged = cross.merge_2d(sequences, 4, 5, cross.directions())
    assert np.allclose(merged, x)


def test_apply_rejects_wrong_rank():
    with pytest.raises(ValueError):
        CrossScan(CrossScanConfig.new_3d()).apply(np.zeros((1, 1, 2, 2)))
    with pytest.raises(ValueError):
        CrossScan(CrossScanConfig.new_2d()).apply(np.zeros((1, 1, 2, 2, 2)))


def test_merge_rejects_mismatched_config_and_lengths():
    cross_3d = CrossScan(CrossScanConfig.new_3d())
    cross_2d = CrossScan(CrossScanConfig.new_2d())
    seq = [np.zeros((1, 1, 4))]
    with pytest.raises(ValueError):
        cross_3d.merge_2d(seq, 2, 2, [ScanDirection.HORIZONTAL_FORWARD])
    with pytest.raises(ValueError):
        cross_2d.merge_3d(seq, 1, 2, 2, [ScanDirection.HORIZONTAL_FORWARD])
    with pytest.raises(ValueError):
        cross_2d.merge_2d(seq, 2, 2, ScanDirection.all_2d())