from __future__ import annotations
import math
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Mapping, Optional, Sequence, Tuple, Union

DEFAULT_ANGLE = 180.0  # fully extended; missing data never looks like a fold


class Joint(str, Enum):
    LEFT_SHOULDER = "left_shoulder"
    RIGHT_SHOULDER = "right_shoulder"
    LEFT_ELBOW = "left_elbow"
    RIGHT_ELBOW = "right_elbow"
    LEFT_WRIST = "left_wrist"
    RIGHT_WRIST = "right_wrist"
    LEFT_HIP = "left_hip"
    RIGHT_HIP = "right_hip"


# MediaPipe Pose landmark indices
MEDIAPIPE_INDEX: Dict[Joint, int] = {
    Joint.LEFT_SHOULDER: 11,
    Joint.RIGHT_SHOULDER: 12,
    Joint.LEFT_ELBOW: 13,
    Joint.RIGHT_ELBOW: 14,
    Joint.LEFT_WRIST: 15,
    Joint.RIGHT_WRIST: 16,
    Joint.LEFT_HIP: 23,
    Joint.RIGHT_HIP: 24,
}


@dataclass(frozen=True)
class Landmark:
    x: float
    y: float
    confidence: float = 1.0


@dataclass(frozen=True)
class AngleSample:
    angle: float
    valid: bool

    @classmethod
    def invalid(cls) -> "AngleSample":
        return cls(DEFAULT_ANGLE, False)


PoseSnapshot = Mapping[Union[Joint, str], Optional[Landmark]]


def _lookup(snapshot: PoseSnapshot, joint: Joint) -> Optional[Landmark]:
    # accept both Joint keys and plain joint-name strings
    lm = snapshot.get(joint)
    if lm is None:
        lm = snapshot.get(joint.value)
    return lm


def _usable(lm: Optional[Landmark], min_confidence: float) -> bool:
    if lm is None:
        return False
    if not (math.isfinite(lm.x) and math.isfinite(lm.y) and math.isfinite(lm.confidence)):
        return False
    return lm.confidence >= min_confidence


# Utility math

def _raw_angle(a: Tuple[float, float], b: Tuple[float, float], c: Tuple[float, float]) -> Optional[float]:
    # None when the vectors are too short or too long to measure
    v1x, v1y = a[0] - b[0], a[1] - b[1]
    v2x, v2y = c[0] - b[0], c[1] - b[1]
    denom = math.hypot(v1x, v1y) * math.hypot(v2x, v2y)
    if denom == 0.0 or not math.isfinite(denom):
        return None
    cos = (v1x * v2x + v1y * v2y) / denom
    if not math.isfinite(cos):
        return None
    cos = max(-1.0, min(1.0, cos))
    return math.degrees(math.acos(cos))


def angle_3pt(a: Tuple[float, float], b: Tuple[float, float], c: Tuple[float, float]) -> float:
    """Return angle ABC in degrees with B as vertex (180.0 if degenerate)."""
    ang = _raw_angle(a, b, c)
    return DEFAULT_ANGLE if ang is None else ang


def compute_angle(
    a: Optional[Landmark],
    b: Optional[Landmark],
    c: Optional[Landmark],
    min_confidence: float = 0.7,
) -> AngleSample:
    """Angle at joint ``b`` formed by ``a-b-c``.

    The sample is valid only when all three landmarks are present, finite and
    at or above ``min_confidence``. Zero-length limbs are treated the same as
    missing landmarks.
    """
    if not (_usable(a, min_confidence) and _usable(b, min_confidence) and _usable(c, min_confidence)):
        return AngleSample.invalid()
    if (a.x, a.y) == (b.x, b.y) or (c.x, c.y) == (b.x, b.y):
        return AngleSample.invalid()
    ang = _raw_angle((a.x, a.y), (b.x, b.y), (c.x, c.y))
    if ang is None or not math.isfinite(ang):
        return AngleSample.invalid()
    return AngleSample(ang, True)


def bilateral_average(left: AngleSample, right: AngleSample) -> AngleSample:
    # both sides must be valid; never average a reading with the 180° default
    if left.valid and right.valid:
        return AngleSample((left.angle + right.angle) / 2.0, True)
    return AngleSample.invalid()


def elbow_angles(snapshot: PoseSnapshot, min_confidence: float = 0.7) -> Tuple[AngleSample, AngleSample]:
    left = compute_angle(
        _lookup(snapshot, Joint.LEFT_SHOULDER),
        _lookup(snapshot, Joint.LEFT_ELBOW),
        _lookup(snapshot, Joint.LEFT_WRIST),
        min_confidence,
    )
    right = compute_angle(
        _lookup(snapshot, Joint.RIGHT_SHOULDER),
        _lookup(snapshot, Joint.RIGHT_ELBOW),
        _lookup(snapshot, Joint.RIGHT_WRIST),
        min_confidence,
    )
    return left, right


def elbow_angle(snapshot: PoseSnapshot, min_confidence: float = 0.7) -> AngleSample:
    left, right = elbow_angles(snapshot, min_confidence)
    return bilateral_average(left, right)


def torso_angle(snapshot: PoseSnapshot, min_confidence: float = 0.7) -> AngleSample:
    """Torso straightness: 180 minus the shoulder-hip line's deviation from vertical.

    180 means shoulders directly above hips, 90 means a horizontal torso.
    """
    joints = (Joint.LEFT_SHOULDER, Joint.RIGHT_SHOULDER, Joint.LEFT_HIP, Joint.RIGHT_HIP)
    lms = [_lookup(snapshot, j) for j in joints]
    if not all(_usable(lm, min_confidence) for lm in lms):
        return AngleSample.invalid()
    ls, rs, lh, rh = lms
    dx = abs((ls.x + rs.x) / 2.0 - (lh.x + rh.x) / 2.0)
    dy = abs((ls.y + rs.y) / 2.0 - (lh.y + rh.y) / 2.0)
    if not (math.isfinite(dx) and math.isfinite(dy)):
        return AngleSample.invalid()
    if dy == 0.0:
        deviation = 90.0
    else:
        deviation = math.degrees(math.atan(dx / dy))
    return AngleSample(180.0 - deviation, True)


# Adapters from upstream pose producers

def snapshot_from_landmarks(
    landmarks: Sequence[Any],
    index_map: Mapping[Joint, int] = MEDIAPIPE_INDEX,
) -> Dict[Joint, Optional[Landmark]]:
    """Build a snapshot from an indexable landmark list (MediaPipe style).

    Each element needs ``x`` and ``y``; ``visibility`` is used as confidence
    when present, otherwise the landmark is taken as fully confident.
    """
    snap: Dict[Joint, Optional[Landmark]] = {}
    for joint, idx in index_map.items():
        if idx >= len(landmarks):
            snap[joint] = None
            continue
        lm = landmarks[idx]
        conf = getattr(lm, "visibility", 1.0)
        snap[joint] = Landmark(float(lm.x), float(lm.y), float(conf))
    return snap


def snapshot_from_dict(payload: Mapping[str, Any]) -> Dict[Joint, Optional[Landmark]]:
    """Build a snapshot from ``{joint_name: {"x", "y", "confidence"} | None}``.

    Unknown joint names are ignored and malformed entries count as missing.
    """
    snap: Dict[Joint, Optional[Landmark]] = {}
    for joint in Joint:
        entry = payload.get(joint.value)
        if not isinstance(entry, Mapping):
            snap[joint] = None
            continue
        try:
            snap[joint] = Landmark(
                float(entry["x"]),
                float(entry["y"]),
                float(entry.get("confidence", entry.get("visibility", 1.0))),
            )
        except (KeyError, TypeError, ValueError):
            snap[joint] = None
    return snap
