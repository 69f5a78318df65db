"""Grouping of raw lidar points into pillar voxels."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Optional, Sequence, Tuple

import numpy as np

logger = logging.getLogger(__name__)

POINT_FEATURES = 4


@dataclass(frozen=True)
class VoxelConfig:
    """Voxelization parameters: range is (x_min, y_min, z_min, x_max, y_max, z_max)."""

    max_num_points: int = 32
    point_cloud_range: Tuple[float, ...] = (0.0, -39.68, -3.0, 69.12, 39.68, 1.0)
    voxel_size: Tuple[float, ...] = (0.16, 0.16, 4.0)
    max_voxels: int = 40000


@dataclass
class VoxelData:
    """Voxelized point cloud.

    voxels has shape (num_voxels, max_num_points, 4), coordinates holds
    (batch_id, z, y, x) per voxel and num_points the number of stored points.
    """

    voxels: np.ndarray = field(
        default_factory=lambda: np.zeros((0, 0, POINT_FEATURES), dtype=np.float32)
    )
    coordinates: np.ndarray = field(
        default_factory=lambda: np.zeros((0, 4), dtype=np.int32)
    )
    num_points: np.ndarray = field(
        default_factory=lambda: np.zeros(0, dtype=np.int32)
    )

    @property
    def num_voxels(self) -> int:
        return int(self.num_points.shape[0])


class Voxelizer:
    """Assigns points of a cloud to voxels of a regular grid."""

    def __init__(self, config: VoxelConfig) -> None:
        self.config = config
        rng = np.asarray(config.point_cloud_range, dtype=np.float32)
        if rng.shape != (6,):
            raise ValueError("point_cloud_range must hold six values")
        size = np.asarray(config.voxel_size, dtype=np.float32)
        if size.shape != (3,):
            raise ValueError("voxel_size must hold three values")
        if np.any(size <= 0):
            raise ValueError("voxel_size values must be positive")
        self._low = rng[:3]
        self._high = rng[3:]
        self._size = size
        self.grid_size: Tuple[int, int, int] = tuple(
            int(np.ceil((self._high[i] - self._low[i]) / self._size[i])) for i in range(3)
        )
        logger.debug("Voxelizer initialized with grid size: %s", list(self.grid_size))

    def point_to_grid_coords(self, x: float, y: float, z: float) -> Optional[Tuple[int, int, int]]:
        """Return the (x, y, z) grid cell of a point, or None when it lies outside the range."""
        point = np.array([x, y, z], dtype=np.float32)
        if np.any(point < self._low) or np.any(point >= self._high):
            return None
        cell = ((point - self._low) / self._size).astype(np.int64)
        return int(cell[0]), int(cell[1]), int(cell[2])

    def _empty(self) -> VoxelData:
        return VoxelData(
            voxels=np.zeros((0, self.config.max_num_points, POINT_FEATURES), dtype=np.float32),
            coordinates=np.zeros((0, 4), dtype=np.int32),
            num_points=np.zeros(0, dtype=np.int32),
        )

    def generate(self, points: Sequence[float]) -> VoxelData:
        """Voxelize a flat cloud of (x, y, z, intensity) points.

        Voxels are ordered by the first point that falls into them; points
        within a voxel keep their order in the cloud.
        """
        cfg = self.config
        flat = np.asarray(points, dtype=np.float32).ravel()
        count = flat.size // POINT_FEATURES
        cloud = flat[: count * POINT_FEATURES].reshape(count, POINT_FEATURES)
        xyz = cloud[:, :3]

        inside = np.all((xyz >= self._low) & (xyz < self._high), axis=1)
        point_ids = np.flatnonzero(inside)
        if point_ids.size == 0 or cfg.max_voxels <= 0:
            logger.debug("Voxelization complete: 0 voxels")
            return self._empty()

        grid = ((xyz[point_ids] - self._low) / self._size).astype(np.int64)
        _, gy, gz = self.grid_size
        keys = grid[:, 0] * gy * gz + grid[:, 1] * gz + grid[:, 2]

        _, first, inverse = np.unique(keys, return_index=True, return_inverse=True)
        inverse = inverse.ravel()
        rank = np.empty_like(first)
        rank[np.argsort(first, kind="stable")] = np.arange(first.size)
        voxel_of_point = rank[inverse]

        voxel_grid = np.empty((first.size, 3), dtype=np.int64)
        voxel_grid[rank] = grid[first]

        num_voxels = min(int(first.size), cfg.max_voxels)
        kept = voxel_of_point < num_voxels
        voxel_of_point = voxel_of_point[kept]
        point_ids = point_ids[kept]

        order = np.argsort(voxel_of_point, kind="stable")
        sorted_voxels = voxel_of_point[order]
        slot = np.arange(sorted_voxels.size) - np.searchsorted(
            sorted_voxels, sorted_voxels, side="left"
        )
        within = slot < cfg.max_num_points

        voxels = np.zeros((num_voxels, cfg.max_num_points, POINT_FEATURES), dtype=np.float32)
        voxels[sorted_voxels[within], slot[within]] = cloud[point_ids[order][within]]

        num_points = np.minimum(
            np.bincount(voxel_of_point, minlength=num_voxels), cfg.max_num_points
        ).astype(np.int32)

        coordinates = np.zeros((num_voxels, 4), dtype=np.int32)
        coordinates[:, 1] = voxel_grid[:num_voxels, 2]
        coordinates[:, 2] = voxel_grid[:num_voxels, 1]
        coordinates[:, 3] = voxel_grid[:num_voxels, 0]

        logger.debug("Voxelization complete: %d voxels", num_voxels)
        return VoxelData(voxels=voxels, coordinates=coordinates, num_points=num_points)