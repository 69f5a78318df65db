"""CPU stages of a PointPillars detector: voxelization, pillar features, anchor decoding and rotated BEV NMS."""

__version__ = "0.1.0"

__all__ = ["__version__"]