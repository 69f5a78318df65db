[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "pointpillars"
version = "0.1.0"
description = "CPU stages of a PointPillars 3D object detector: voxelization, pillar features, anchor decoding and rotated BEV NMS"
requires-python = ">=3.10"
dependencies = [
    "numpy",
]
keywords = [
    "pointpillars",
    "lidar",
    "point-cloud",
    "3d-detection",
    "voxelization",
    "nms",
    "kitti",
]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Intended Audience :: Developers",
    "Intended Audience :: Science/Research",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Scientific/Engineering :: Image Recognition",
    "Topic :: Scientific/Engineering :: Artificial Intelligence",
]

[project.optional-dependencies]
test = [
    "pytest",
]

[tool.hatch.build.targets.wheel]
packages = ["pointpillars"]

[tool.pytest.ini_options]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.ruff.lint]
select = ["E", "F", "W", "I", "B", "UP"]

[tool.mypy]
python_version = "3.10"
warn_unused_ignores = true
warn_redundant_casts = true
