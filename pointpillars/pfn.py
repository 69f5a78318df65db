"""Pillar feature network on the CPU and scatter onto the BEV grid."""

from __future__ import annotations

from typing import Sequence

import numpy as np

from .voxelizer import POINT_FEATURES, VoxelData

BEV_CHANNELS = 64
BEV_HEIGHT = 496
BEV_WIDTH = 432
EMPTY_FEATURE = np.float32(-1e9)


class PillarFeatureNet:
    """Linear layer with max pooling over the points of each pillar.

    weights are laid out as [input_dim, output_dim]; output_dim is taken from
    the size of the bias.
    """

    def __init__(self, weights: Sequence[float], bias: Sequence[float]) -> None:
        self.bias = np.asarray(bias, dtype=np.float32).ravel()
        flat = np.asarray(weights, dtype=np.float32).ravel()
        output_dim = self.bias.size
        if output_dim == 0:
            raise ValueError("PFN bias is empty")
        input_dim = flat.size // output_dim
        if flat.size != input_dim * output_dim:
            raise ValueError(
                f"PFN weights size mismatch: expected {input_dim * output_dim}, got {flat.size}"
            )
        self.weights = flat.reshape(input_dim, output_dim)

    @property
    def input_dim(self) -> int:
        return int(self.weights.shape[0])

    @property
    def output_dim(self) -> int:
        return int(self.weights.shape[1])

    def _point_features(self, points: np.ndarray) -> np.ndarray:
        # Only the raw (x, y, z, intensity) values are fed; any extra inputs stay zero.
        features = np.zeros(points.shape[:-1] + (self.input_dim,), dtype=np.float32)
        if self.input_dim >= POINT_FEATURES:
            features[..., :POINT_FEATURES] = points[..., :POINT_FEATURES]
        return features

    def process_voxel(self, points: Sequence[float]) -> np.ndarray:
        """Return the pooled feature vector of one pillar's points."""
        pts = np.asarray(points, dtype=np.float32).reshape(-1, POINT_FEATURES)
        activations = self._point_features(pts) @ self.weights + self.bias
        return activations.max(axis=0, initial=EMPTY_FEATURE).astype(np.float32)

    def run(self, voxel_data: VoxelData) -> np.ndarray:
        """Compute pillar features and scatter them into a [1, 64, 496, 432] map.

        Voxels outside the grid or of a batch other than 0 are skipped; a later
        voxel in the same cell replaces an earlier one.
        """
        if self.output_dim != BEV_CHANNELS:
            raise ValueError(
                f"PFN output dimension must be {BEV_CHANNELS}, got {self.output_dim}"
            )
        bev = np.zeros((1, BEV_CHANNELS, BEV_HEIGHT, BEV_WIDTH), dtype=np.float32)

        voxels = np.asarray(voxel_data.voxels, dtype=np.float32)
        num_voxels = voxels.shape[0] if voxels.ndim else 0
        if num_voxels == 0:
            return bev
        voxels = voxels.reshape(num_voxels, -1, POINT_FEATURES)
        max_points = voxels.shape[1]
        coords = np.asarray(voxel_data.coordinates).reshape(num_voxels, 4)
        counts = np.clip(np.asarray(voxel_data.num_points).ravel()[:num_voxels], 0, max_points)

        batch, ys, xs = coords[:, 0], coords[:, 2], coords[:, 3]
        valid = (batch == 0) & (ys >= 0) & (ys < BEV_HEIGHT) & (xs >= 0) & (xs < BEV_WIDTH)
        if not valid.any():
            return bev

        voxels, counts = voxels[valid], counts[valid]
        activations = self._point_features(voxels) @ self.weights + self.bias
        occupied = np.arange(max_points) < counts[:, None]
        masked = np.where(occupied[..., None], activations, EMPTY_FEATURE)
        pooled = masked.max(axis=1, initial=EMPTY_FEATURE).astype(np.float32)

        plane = bev[0]
        plane[:, ys[valid], xs[valid]] = pooled.T
        return bev