import math

import numpy as np
import pytest

from pointpillars.pipeline import (
    MapStats,
    check_head_output,
    format_boxes,
    load_bin,
    load_pointcloud,
)
from pointpillars.postprocess import Box3D


def test_load_bin_round_trip(tmp_path):
    values = np.array([1.5, -2.25, 0.0, 3.0e5], dtype=np.float32)
    path = tmp_path / "weights.bin"
    path.write_bytes(values.tobytes())
    loaded = load_bin(path)
    assert loaded.dtype == np.float32
    np.testing.assert_array_equal(loaded, values)


def test_load_bin_drops_partial_trailing_value(tmp_path):
    values = np.array([1.0, 2.0], dtype=np.float32)
    path = tmp_path / "partial.bin"
    path.write_bytes(values.tobytes() + b"\x01\x02")
    np.testing.assert_array_equal(load_bin(str(path)), values)


def test_load_bin_empty_file(tmp_path):
    path = tmp_path / "empty.bin"
    path.write_bytes(b"")
    assert load_bin(path).size == 0


def test_load_bin_missing_file_raises(tmp_path):
    with pytest.raises(FileNotFoundError):
        load_bin(tmp_path / "missing.bin")


def test_load_pointcloud_round_trip(tmp_path):
    cloud = np.arange(12, dtype=np.float32)
    path = tmp_path / "cloud.bin"
    path.write_bytes(cloud.tobytes())
    loaded = load_pointcloud(path)
    np.testing.assert_array_equal(loaded, cloud)
    assert loaded.size // 4 == 3


def test_load_pointcloud_missing_file_raises(tmp_path):
    with pytest.raises(FileNotFoundError):
        load_pointcloud(tmp_path / "nope.bin")


def test_format_boxes_row_layout():
    box = Box3D(x=1.0, y=2.0, z=3.0, w=4.0, l=5.0, h=6.0, rot=0.5, score=0.5, label=2)
    text = format_boxes([box])
    assert " 0 | 0.5000 |     2 | [1.00, 2.00, 3.00, 4.00, 5.00, 6.00, 0.50]" in text.splitlines()
    assert "ID | Score    | Label | [x, y, z, w, l, h, rot]" in text


def test_format_boxes_respects_limit():
    boxes = [Box3D(score=0.9, label=i % 3) for i in range(12)]
    lines = format_boxes(boxes).splitlines()
    rows = [line for line in lines if line.count("|") == 3 and not line.startswith("ID")]
    assert len(rows) == 10
    assert "Number of boxes: 12" in lines
    rows3 = [
        line
        for line in format_boxes(boxes, limit=3).splitlines()
        if line.count("|") == 3 and not line.startswith("ID")
    ]
    assert len(rows3) == 3


def test_format_boxes_empty_has_no_table():
    text = format_boxes([])
    assert "Number of boxes: 0" in text
    assert "ID |" not in text
    lines = text.splitlines()
    assert lines[0] == "=" * 80
    assert lines[-1] == "=" * 80


def test_check_head_output_counts_invalid_values():
    stats = check_head_output([1.0, -5.0, math.nan, math.inf, -math.inf])
    assert stats.max_abs == 5.0
    assert stats.nan_count == 1
    assert stats.inf_count == 2
    assert stats.has_invalid


def test_check_head_output_clean_map():
    stats = check_head_output(np.array([[0.25, -0.5], [0.0, 0.125]], dtype=np.float32))
    assert stats == MapStats(max_abs=0.5, nan_count=0, inf_count=0)
    assert not stats.has_invalid
    assert not stats.is_large


def test_check_head_output_all_invalid_and_large():
    assert check_head_output([math.nan, math.nan]).max_abs == 0.0
    assert check_head_output([2e6, 1.0]).is_large