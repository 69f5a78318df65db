"""Helpers of the detection pipeline: loading of binary inputs, head output checks, reporting."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Sequence, Union

import numpy as np

from .postprocess import Box3D
from .voxelizer import POINT_FEATURES

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]
RULE_WIDTH = 80
DEFAULT_BOX_LIMIT = 10
LARGE_VALUE_WARNING = 1e6

_FLOAT_BYTES = np.dtype(np.float32).itemsize


@dataclass(frozen=True)
class MapStats:
    """Summary of a head output map: largest finite magnitude and counts of NaN and infinities."""

    max_abs: float = 0.0
    nan_count: int = 0
    inf_count: int = 0

    @property
    def has_invalid(self) -> bool:
        """True when the map holds any NaN or infinite value."""
        return self.nan_count > 0 or self.inf_count > 0

    @property
    def is_large(self) -> bool:
        """True when the largest finite magnitude is beyond the warning limit."""
        return self.max_abs > LARGE_VALUE_WARNING


def load_bin(path: PathLike) -> np.ndarray:
    """Read a raw file of native float32 values; trailing bytes short of a value are dropped."""
    data = Path(path).read_bytes()
    count = len(data) // _FLOAT_BYTES
    return np.frombuffer(data, dtype=np.float32, count=count).copy()


def load_pointcloud(path: PathLike) -> np.ndarray:
    """Read a KITTI point cloud: a flat float32 array of (x, y, z, intensity) points."""
    points = load_bin(path)
    logger.info("Loaded point cloud: %d points", points.size // POINT_FEATURES)
    return points


def format_boxes(boxes: Sequence[Box3D], limit: int = DEFAULT_BOX_LIMIT) -> str:
    """Render a detection report listing at most ``limit`` boxes."""
    rule = "=" * RULE_WIDTH
    lines = [rule, "Detection results", rule, f"Number of boxes: {len(boxes)}"]
    if boxes:
        lines.append("")
        lines.append(f"First {limit} boxes:")
        lines.append("ID | Score    | Label | [x, y, z, w, l, h, rot]")
        lines.append("-" * RULE_WIDTH)
        for i, b in enumerate(boxes[: max(limit, 0)]):
            lines.append(
                "%2d | %.4f | %5d | [%.2f, %.2f, %.2f, %.2f, %.2f, %.2f, %.2f]"
                % (i, b.score, b.label, b.x, b.y, b.z, b.w, b.l, b.h, b.rot)
            )
    lines.append(rule)
    return "\n".join(lines)


def check_head_output(values) -> MapStats:
    """Count NaN and infinite entries of a head output and find its largest finite magnitude."""
    array = np.asarray(values, dtype=np.float32).ravel()
    nan_mask = np.isnan(array)
    inf_mask = np.isinf(array)
    finite = array[~(nan_mask | inf_mask)]
    max_abs = float(np.abs(finite).max()) if finite.size else 0.0
    return MapStats(
        max_abs=max_abs,
        nan_count=int(nan_mask.sum()),
        inf_count=int(inf_mask.sum()),
    )