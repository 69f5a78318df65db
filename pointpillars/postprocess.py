"""Anchor decoding of the RPN head and rotated bird's-eye-view NMS."""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from typing import List, Optional, Sequence, Tuple, Union

import numpy as np

logger = logging.getLogger(__name__)

Point = Tuple[float, float]

BOX_CODE_SIZE = 7
HALF_PI_ROTATION = 1.57079632679
CANDIDATE_WARNING_LIMIT = 100000
# Limits on |dx|, |dy|, |dz|, |dw|, |dl|, |dh|, |dr| beyond which a regression is dropped.
_DELTA_LIMITS = np.array([100.0, 100.0, 100.0, 10.0, 10.0, 10.0, 3.14], dtype=np.float32)
_PI32 = np.float32(math.pi)
_TWO_PI32 = np.float32(2.0 * math.pi)


@dataclass
class Box3D:
    """A 3D detection: centre, size, yaw, confidence and class label."""

    x: float = 0.0
    y: float = 0.0
    z: float = 0.0
    w: float = 0.0
    l: float = 0.0
    h: float = 0.0
    rot: float = 0.0
    score: float = 0.0
    label: int = 0


@dataclass(frozen=True)
class AnchorSize:
    """Anchor dimensions of one object class and the height of its centre."""

    w: float
    l: float
    h: float
    z_center: float


def _default_anchor_sizes() -> List[AnchorSize]:
    return [
        AnchorSize(1.6, 3.9, 1.56, -1.78),  # Car
        AnchorSize(0.6, 0.8, 1.73, -0.6),  # Pedestrian
        AnchorSize(0.6, 1.76, 1.73, -0.6),  # Cyclist
    ]


@dataclass
class DecodeConfig:
    """BEV grid geometry and anchor layout of the RPN head.

    box_map is read as [num_anchors * 7, grid_y, grid_x] and score_map as
    [num_anchors * num_classes, grid_y, grid_x], with num_anchors equal to
    len(anchor_sizes) * num_rot.
    """

    grid_x: int = 432
    grid_y: int = 496
    voxel_size_x: float = 0.16
    voxel_size_y: float = 0.16
    x_min: float = 0.0
    y_min: float = -39.68
    anchor_sizes: List[AnchorSize] = field(default_factory=_default_anchor_sizes)
    num_rot: int = 2
    num_classes: int = 3

    @property
    def num_anchors(self) -> int:
        return len(self.anchor_sizes) * self.num_rot


def sigmoid(x):
    """Logistic function; returns a float for scalars and an array for arrays."""
    values = np.asarray(x, dtype=np.float64)
    with np.errstate(over="ignore"):
        result = 1.0 / (1.0 + np.exp(-values))
    if result.ndim == 0:
        return float(result)
    return result


def normalize_angle(a: float) -> float:
    """Wrap an angle into [-pi, pi]."""
    if math.isinf(a):
        raise ValueError("cannot normalize an infinite angle")
    while a > math.pi:
        a -= 2.0 * math.pi
    while a < -math.pi:
        a += 2.0 * math.pi
    return a


def _normalize_angles(angles: np.ndarray) -> np.ndarray:
    result = angles.astype(np.float32, copy=True)
    while True:
        over = result > _PI32
        if not over.any():
            break
        result[over] -= _TWO_PI32
    while True:
        under = result < -_PI32
        if not under.any():
            break
        result[under] += _TWO_PI32
    return result


def box_corners_bev(box: Box3D) -> List[Point]:
    """Corners of the box footprint; length runs along the box's local x axis."""
    hl = box.l * 0.5
    hw = box.w * 0.5
    c = math.cos(box.rot)
    s = math.sin(box.rot)
    local = [(hl, hw), (hl, -hw), (-hl, -hw), (-hl, hw)]
    return [(px * c - py * s + box.x, px * s + py * c + box.y) for px, py in local]


def _cross(a: Point, b: Point) -> float:
    return a[0] * b[1] - a[1] * b[0]


def _sub(a: Point, b: Point) -> Point:
    return (a[0] - b[0], a[1] - b[1])


def _inside(p: Point, a: Point, b: Point) -> bool:
    return _cross(_sub(b, a), _sub(p, a)) >= 0.0


def _intersection(p1: Point, p2: Point, a: Point, b: Point) -> Point:
    r = _sub(p2, p1)
    s = _sub(b, a)
    denom = _cross(r, s)
    if abs(denom) < 1e-8:
        return p2
    t = _cross(_sub(a, p1), s) / denom
    return (p1[0] + t * r[0], p1[1] + t * r[1])


def polygon_area(poly: Sequence[Point]) -> float:
    """Area of a simple polygon by the shoelace formula."""
    if len(poly) < 3:
        return 0.0
    pairs = zip(poly, list(poly[1:]) + [poly[0]])
    return abs(sum(p[0] * q[1] - q[0] * p[1] for p, q in pairs)) * 0.5


def clip_polygon(subject: Sequence[Point], a: Point, b: Point) -> List[Point]:
    """Keep the part of a polygon lying on the left of the line a->b."""
    out: List[Point] = []
    if not subject:
        return out
    prev = subject[-1]
    prev_in = _inside(prev, a, b)
    for cur in subject:
        cur_in = _inside(cur, a, b)
        if cur_in:
            if not prev_in:
                out.append(_intersection(prev, cur, a, b))
            out.append(cur)
        elif prev_in:
            out.append(_intersection(prev, cur, a, b))
        prev, prev_in = cur, cur_in
    return out


def iou_bev_rotated(a: Box3D, b: Box3D) -> float:
    """Intersection over union of two rotated footprints by polygon clipping."""
    corners_b = box_corners_bev(b)
    poly = box_corners_bev(a)
    for p, q in zip(corners_b, corners_b[1:] + corners_b[:1]):
        poly = clip_polygon(poly, p, q)
        if not poly:
            break
    inter = polygon_area(poly)
    union = a.l * a.w + b.l * b.w - inter
    if union <= 1e-6:
        return 0.0
    return inter / union


def nms_bev_rotated(boxes: Sequence[Box3D], iou_thr: float, max_num: int) -> List[Box3D]:
    """Greedy per-class NMS by score; max_num <= 0 keeps any number of boxes."""
    if not boxes:
        return []
    logger.debug("NMS start: %d candidates", len(boxes))
    order = sorted(range(len(boxes)), key=lambda i: boxes[i].score, reverse=True)
    suppressed = [False] * len(boxes)
    keep: List[Box3D] = []
    for pos, i in enumerate(order):
        if suppressed[i]:
            continue
        current = boxes[i]
        keep.append(current)
        if max_num > 0 and len(keep) >= max_num:
            break
        for j in order[pos + 1:]:
            if suppressed[j] or boxes[j].label != current.label:
                continue
            if iou_bev_rotated(current, boxes[j]) > iou_thr:
                suppressed[j] = True
    logger.debug("NMS done: kept %d boxes", len(keep))
    return keep


ArrayLike = Union[np.ndarray, Sequence[float]]


class AnchorDecoder:
    """Turns raw NCHW head outputs into scored 3D boxes."""

    def __init__(self, cfg: Optional[DecodeConfig] = None) -> None:
        cfg = cfg if cfg is not None else DecodeConfig()
        if cfg.grid_x <= 0 or cfg.grid_y <= 0:
            raise ValueError("DecodeConfig: invalid grid size")
        if not cfg.anchor_sizes:
            raise ValueError("DecodeConfig: anchor_sizes is empty")
        if cfg.num_rot <= 0:
            raise ValueError("DecodeConfig: num_rot must be > 0")
        if cfg.num_classes <= 0:
            raise ValueError("DecodeConfig: num_classes must be > 0")
        self.cfg = cfg

    def _rotations(self) -> np.ndarray:
        rots = np.full(self.cfg.num_rot, HALF_PI_ROTATION, dtype=np.float32)
        rots[0] = 0.0
        return rots

    @staticmethod
    def _as_map(values: ArrayLike, channels: int, height: int, width: int, name: str) -> np.ndarray:
        array = np.asarray(values, dtype=np.float32)
        expected = channels * height * width
        if array.size != expected:
            raise ValueError(f"{name} must hold {expected} values, got {array.size}")
        return array.reshape(channels, height, width)

    def decode(
        self,
        box_map: Optional[ArrayLike],
        score_map: Optional[ArrayLike],
        score_thresh: float,
    ) -> List[Box3D]:
        """Decode every anchor whose score passes the threshold, best score first."""
        if box_map is None or score_map is None:
            return []
        cfg = self.cfg
        height, width = cfg.grid_y, cfg.grid_x
        num_anchors = cfg.num_anchors
        score_channels = num_anchors * cfg.num_classes
        boxes = self._as_map(box_map, num_anchors * BOX_CODE_SIZE, height, width, "box_map")
        boxes = boxes.reshape(num_anchors, BOX_CODE_SIZE, height, width)
        scores = self._as_map(score_map, score_channels, height, width, "score_map")
        rots = self._rotations()
        thresh = np.float32(score_thresh)
        vsx, vsy = np.float32(cfg.voxel_size_x), np.float32(cfg.voxel_size_y)

        logger.debug("Decoding %d grid cells", height * width)
        parts = []
        for anchor in range(num_anchors):
            type_idx, rot_idx = divmod(anchor, cfg.num_rot)
            channel = anchor * cfg.num_classes + type_idx
            if channel >= score_channels:
                continue
            with np.errstate(over="ignore"):
                score = (1.0 / (1.0 + np.exp(-scores[channel]))).astype(np.float32)
            deltas = boxes[anchor]
            mask = ~(score < thresh)
            mask &= np.isfinite(deltas).all(axis=0)
            with np.errstate(invalid="ignore"):
                mask &= (np.abs(deltas) <= _DELTA_LIMITS[:, None, None]).all(axis=0)
            ys, xs = np.nonzero(mask)
            if ys.size == 0:
                continue

            size = cfg.anchor_sizes[type_idx]
            aw, al, ah = np.float32(size.w), np.float32(size.l), np.float32(size.h)
            diagonal = np.sqrt(al * al + aw * aw)
            d = deltas[:, ys, xs]
            xa = xs.astype(np.float32) * vsx + np.float32(cfg.x_min) + vsx * np.float32(0.5)
            ya = ys.astype(np.float32) * vsy + np.float32(cfg.y_min) + vsy * np.float32(0.5)
            parts.append({
                "pixel": ys * width + xs,
                "anchor": np.full(ys.size, anchor),
                "x": xa + d[0] * diagonal,
                "y": ya + d[1] * diagonal,
                "z": np.float32(size.z_center) + d[2] * ah,
                "w": aw * np.exp(d[3]),
                "l": al * np.exp(d[4]),
                "h": ah * np.exp(d[5]),
                "rot": _normalize_angles(rots[rot_idx] + d[6]),
                "score": score[ys, xs],
                "label": np.full(ys.size, type_idx),
            })

        if not parts:
            logger.debug("Decode done: 0 candidates")
            return []
        merged = {key: np.concatenate([p[key] for p in parts]) for key in parts[0]}
        scan_order = np.lexsort((merged["anchor"], merged["pixel"]))
        by_score = scan_order[np.argsort(-merged["score"][scan_order], kind="stable")]

        count = by_score.size
        logger.debug("Decode done: %d candidates", count)
        if count > CANDIDATE_WARNING_LIMIT:
            logger.warning(
                "Too many candidates (%d); NMS may take long. Check the score threshold.", count
            )
        columns = {key: merged[key][by_score].tolist() for key in merged}
        return [
            Box3D(
                x=columns["x"][k], y=columns["y"][k], z=columns["z"][k],
                w=columns["w"][k], l=columns["l"][k], h=columns["h"][k],
                rot=columns["rot"][k], score=columns["score"][k],
                label=int(columns["label"][k]),
            )
            for k in range(count)
        ]