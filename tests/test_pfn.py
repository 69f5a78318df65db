import numpy as np
import pytest

from pointpillars.pfn import (
    BEV_CHANNELS,
    BEV_HEIGHT,
    BEV_WIDTH,
    EMPTY_FEATURE,
    PillarFeatureNet,
)
from pointpillars.voxelizer import VoxelData


def make_net(input_dim=4, output_dim=BEV_CHANNELS, seed=0):
    rng = np.random.default_rng(seed)
    weights = rng.normal(size=(input_dim, output_dim)).astype(np.float32)
    bias = rng.normal(size=output_dim).astype(np.float32)
    return PillarFeatureNet(weights.ravel(), bias), weights, bias


def test_weight_size_mismatch_raises():
    with pytest.raises(ValueError, match="mismatch"):
        PillarFeatureNet(np.zeros(10), np.zeros(4))


def test_empty_bias_raises():
    with pytest.raises(ValueError):
        PillarFeatureNet(np.zeros(4), [])


def test_dimensions_inferred_from_sizes():
    net = PillarFeatureNet(np.zeros(40), np.zeros(4))
    assert (net.input_dim, net.output_dim) == (10, 4)


def test_identity_weights_pool_maximum():
    net = PillarFeatureNet(np.eye(4, dtype=np.float32).ravel(), np.zeros(4))
    points = np.array([[1.0, -2.0, 3.0, 0.5], [-1.0, 4.0, 0.0, 0.25]], dtype=np.float32)
    result = net.process_voxel(points)
    np.testing.assert_allclose(result, points.max(axis=0))


def test_empty_voxel_gives_fill_value():
    net, _, _ = make_net(output_dim=8)
    result = net.process_voxel(np.zeros((0, 4)))
    assert result.shape == (8,)
    assert np.all(result == np.float32(-1e9))


def test_extra_inputs_are_zero_padded():
    rng = np.random.default_rng(3)
    weights = rng.normal(size=(6, 5)).astype(np.float32)
    bias = rng.normal(size=5).astype(np.float32)
    wide = PillarFeatureNet(weights.ravel(), bias)
    narrow = PillarFeatureNet(weights[:4].ravel(), bias)
    points = rng.normal(size=(7, 4)).astype(np.float32)
    np.testing.assert_allclose(wide.process_voxel(points), narrow.process_voxel(points), rtol=1e-6)


def test_small_input_dim_yields_bias():
    bias = np.array([0.5, -1.5, 2.0], dtype=np.float32)
    net = PillarFeatureNet(np.ones(6), bias)
    result = net.process_voxel([[9.0, 9.0, 9.0, 9.0]])
    np.testing.assert_array_equal(result, bias)


def test_run_scatters_features_into_grid():
    net, _, _ = make_net()
    rng = np.random.default_rng(1)
    voxels = rng.normal(size=(4, 3, 4)).astype(np.float32)
    coordinates = np.array(
        [[0, 0, 5, 7], [0, 0, BEV_HEIGHT, 2], [0, 0, 10, 11], [0, 0, 10, 11]],
        dtype=np.int32,
    )
    num_points = np.array([2, 3, 1, 3], dtype=np.int32)
    bev = net.run(VoxelData(voxels=voxels, coordinates=coordinates, num_points=num_points))

    assert bev.shape == (1, BEV_CHANNELS, BEV_HEIGHT, BEV_WIDTH)
    np.testing.assert_allclose(bev[0, :, 5, 7], net.process_voxel(voxels[0, :2]), rtol=1e-5)
    np.testing.assert_allclose(bev[0, :, 10, 11], net.process_voxel(voxels[3]), rtol=1e-5)
    occupied = np.any(bev[0] != 0, axis=0)
    assert occupied.sum() == 2


def test_run_voxel_without_points_writes_fill_value():
    net, _, _ = make_net()
    data = VoxelData(
        voxels=np.zeros((1, 2, 4), dtype=np.float32),
        coordinates=np.array([[0, 0, 1, 1]], dtype=np.int32),
        num_points=np.array([0], dtype=np.int32),
    )
    bev = net.run(data)
    assert np.all(bev[0, :, 1, 1] == EMPTY_FEATURE)


def test_run_requires_64_channels():
    net, _, _ = make_net(output_dim=8)
    with pytest.raises(ValueError):
        net.run(VoxelData())