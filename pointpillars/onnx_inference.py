"""Detection head inference delegated to an external Python service script."""

from __future__ import annotations

import logging
import re
import subprocess
import sys
import tempfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Sequence, Union

import numpy as np

logger = logging.getLogger(__name__)

_ARRAY_PATTERNS = {
    "bboxes": re.compile(r'"bboxes"\s*:\s*\[([\d.,\s-]+)\]'),
    "scores": re.compile(r'"scores"\s*:\s*\[([\d.,\s-]+)\]'),
    "bbox_shape": re.compile(r'"bbox_shape"\s*:\s*\[([\d,\s]+)\]'),
    "score_shape": re.compile(r'"score_shape"\s*:\s*\[([\d,\s]+)\]'),
}
_NUMBER = re.compile(r"-?\d+\.?\d*(?:[eE][+-]?\d+)?")


@dataclass
class InferenceOutput:
    """Flat detection arrays and their shapes: bboxes [batch, n, 7], scores [batch, n, classes]."""

    bboxes: List[float] = field(default_factory=list)
    scores: List[float] = field(default_factory=list)
    bbox_shape: List[int] = field(default_factory=list)
    score_shape: List[int] = field(default_factory=list)


def _extract(name: str, text: str) -> List[str]:
    match = _ARRAY_PATTERNS[name].search(text)
    if match is None:
        return []
    return _NUMBER.findall(match.group(1))


def parse_inference_output(text: str) -> InferenceOutput:
    """Pull the four numeric arrays out of the service's JSON-like output.

    A missing or malformed array is left empty.
    """
    return InferenceOutput(
        bboxes=[float(v) for v in _extract("bboxes", text)],
        scores=[float(v) for v in _extract("scores", text)],
        bbox_shape=[int(v) for v in _extract("bbox_shape", text)],
        score_shape=[int(v) for v in _extract("score_shape", text)],
    )


def _write_array(path: Path, data, dtype) -> Path:
    path.write_bytes(np.asarray(data, dtype=dtype).tobytes())
    return path


class PythonInference:
    """Runs the model through ``inference_service.py`` and reads its printed result."""

    interpreter = sys.executable or "python"
    service_script = "inference_service.py"

    def __init__(self, model_path: Union[str, Path], script_dir: Union[str, Path] = ".") -> None:
        self.model_path = str(model_path)
        self.script_dir = Path(script_dir)
        logger.info("Python inference service ready")

    def build_command(self, voxels_file, coors_file, num_points_file) -> List[str]:
        """Return the argument list that starts the service."""
        return [
            self.interpreter,
            str(self.script_dir / self.service_script),
            "--onnx-model", self.model_path,
            "--voxels", str(voxels_file),
            "--coors", str(coors_file),
            "--num-points", str(num_points_file),
        ]

    def run(
        self,
        voxels: Sequence[float],
        coordinates: Sequence[int],
        num_points: Sequence[int],
        num_voxels: int,
    ) -> InferenceOutput:
        """Hand the voxel arrays to the service through temporary files and parse its output."""
        logger.info("Running Python inference on %d voxels", num_voxels)
        with tempfile.TemporaryDirectory(prefix="pointpillars_") as tmp:
            tmp_dir = Path(tmp)
            voxels_file = _write_array(tmp_dir / "voxels.bin", voxels, np.float32)
            coors_file = _write_array(tmp_dir / "coors.bin", coordinates, np.int32)
            num_points_file = _write_array(tmp_dir / "num_points.bin", num_points, np.int32)
            command = self.build_command(voxels_file, coors_file, num_points_file)
            logger.debug("Executing: %s", " ".join(command))
            try:
                completed = subprocess.run(
                    command, capture_output=True, text=True, check=False
                )
            except OSError as exc:
                raise RuntimeError("Failed to execute Python inference") from exc

        output = parse_inference_output(completed.stdout)
        logger.info(
            "Inference completed: bboxes shape %s, scores shape %s",
            output.bbox_shape,
            output.score_shape,
        )
        return output