from __future__ import annotations
from dataclasses import dataclass, replace
from enum import Enum
from typing import Callable, Dict, Optional

from repcounter.counter.pose_core import AngleSample, PoseSnapshot, elbow_angle, torso_angle


class ConfigError(ValueError):
    """Raised when a RepConfig cannot be used to count reps."""


@dataclass(frozen=True)
class RepConfig:
    min_confidence: float = 0.7     # landmark gate
    # Thresholds (deg); the gap between them is the dead zone
    down_threshold: float = 70.0    # flexed
    up_threshold: float = 130.0     # extended
    min_stable_frames: int = 3      # consecutive frames before a phase commits
    # Torso straightness gate (deg, 180 = straight); None turns it off
    min_torso_straightness: Optional[float] = None

    def __post_init__(self):
        if not 0.0 <= self.min_confidence <= 1.0:
            raise ConfigError(f"min_confidence must be within [0, 1], got {self.min_confidence}")
        for name in ("down_threshold", "up_threshold"):
            value = getattr(self, name)
            if not 0.0 <= value <= 180.0:
                raise ConfigError(f"{name} must be within [0, 180], got {value}")
        if self.down_threshold >= self.up_threshold:
            raise ConfigError(
                f"down_threshold ({self.down_threshold}) must be below up_threshold ({self.up_threshold})"
            )
        if isinstance(self.min_stable_frames, bool) or not isinstance(self.min_stable_frames, int):
            raise ConfigError(f"min_stable_frames must be an int, got {self.min_stable_frames!r}")
        if self.min_stable_frames < 1:
            raise ConfigError(f"min_stable_frames must be >= 1, got {self.min_stable_frames}")
        if self.min_torso_straightness is not None and not 0.0 <= self.min_torso_straightness <= 180.0:
            raise ConfigError(
                f"min_torso_straightness must be within [0, 180], got {self.min_torso_straightness}"
            )

    @property
    def torso_gate(self) -> bool:
        return self.min_torso_straightness is not None

    def with_overrides(self, **overrides) -> "RepConfig":
        """Return a validated copy; ``None`` values leave a field untouched."""
        changes = {k: v for k, v in overrides.items() if v is not None}
        try:
            return replace(self, **changes)
        except TypeError as e:
            raise ConfigError(str(e)) from e

    @classmethod
    def preset(cls, name: str) -> "RepConfig":
        try:
            return PRESETS[name]
        except KeyError:
            raise ConfigError(f"unknown preset {name!r}; expected one of {sorted(PRESETS)}") from None


# Tuning variants share one state machine
PRESETS: Dict[str, RepConfig] = {
    # lenient bands, no torso check
    "standard": RepConfig(),
    # tighter bands, longer debounce, torso must stay within 30° of vertical
    "strict": RepConfig(
        min_confidence=0.5,
        down_threshold=60.0,
        up_threshold=140.0,
        min_stable_frames=5,
        min_torso_straightness=150.0,
    ),
}


class Phase(str, Enum):
    NEUTRAL = "neutral"
    UP = "up"
    DOWN = "down"

    @property
    def label(self) -> str:
        return _PHASE_LABELS[self]


_PHASE_LABELS = {
    Phase.NEUTRAL: "Get in position",
    Phase.UP: "UP",
    Phase.DOWN: "DOWN",
}


class Feedback(str, Enum):
    GET_IN_POSITION = "get into position"
    NOT_VISIBLE = "keep your upper body visible"
    KEEP_TORSO_STRAIGHT = "keep torso straight"
    NOT_ENOUGH_EXTENSION = "hold, not enough extension"
    HOLD_POSITION = "hold the up position"
    GO_DOWN = "go down"
    GO_LOWER = "go lower"
    PUSH_UP = "push up"


class PhaseCounter:
    """
    Debounced UP/DOWN state machine over a single angle signal.
    One rep is a committed DOWN→UP transition. Invalid samples are skipped and
    never move the phase; the dead zone between thresholds holds the last
    confirmed phase.

    Not thread-safe: feed one instance from one producer.
    """
    def __init__(self, cfg: Optional[RepConfig] = None, debug_cb: Optional[Callable[[dict], None]] = None):
        self.cfg = cfg or RepConfig()
        self._dbg = debug_cb or (lambda *_: None)
        self.reset()

    def reset(self) -> None:
        self._phase = Phase.NEUTRAL
        self._pending = Phase.NEUTRAL
        self._stable_frames = 0
        self._count = 0
        # Feedback inputs
        self._last_angle: Optional[float] = None
        self._last_valid = False
        self._torso: AngleSample = AngleSample.invalid()

    # ----- per-frame -----
    def process(self, snapshot: PoseSnapshot) -> int:
        """Extract features from one pose and ingest them."""
        cfg = self.cfg
        if cfg.torso_gate:
            torso = torso_angle(snapshot, cfg.min_confidence)
            if torso.valid:
                self._torso = torso
        return self.ingest(elbow_angle(snapshot, cfg.min_confidence))

    def ingest(self, sample: AngleSample) -> int:
        self._last_valid = sample.valid
        if not sample.valid:
            return self._count
        self._last_angle = sample.angle

        candidate = self._classify(sample.angle)
        if candidate == self._pending:
            self._stable_frames += 1
        else:
            self._pending = candidate
            self._stable_frames = 1

        if self._stable_frames >= self.cfg.min_stable_frames and self._pending != self._phase:
            self._commit(self._pending)
        return self._count

    def _classify(self, angle: float) -> Phase:
        if angle <= self.cfg.down_threshold:
            return Phase.DOWN
        if angle >= self.cfg.up_threshold:
            return Phase.UP
        return self._phase

    def _commit(self, new_phase: Phase) -> None:
        previous, self._phase = self._phase, new_phase
        self._dbg({"type": "trace", "msg": f"phase→{new_phase.name}"})
        if (previous, new_phase) == (Phase.DOWN, Phase.UP):
            self._count += 1
            self._dbg({"type": "rep", "count": self._count})

    # ----- accessors -----
    @property
    def count(self) -> int:
        return self._count

    @property
    def phase(self) -> Phase:
        return self._phase

    @property
    def phase_label(self) -> str:
        return self._phase.label

    @property
    def pending_phase(self) -> Phase:
        return self._pending

    @property
    def stable_frames(self) -> int:
        return self._stable_frames

    @property
    def last_angle(self) -> Optional[float]:
        """Latest valid angle, or None before the first valid frame."""
        return self._last_angle

    @property
    def form_ok(self) -> bool:
        if not self.cfg.torso_gate or not self._torso.valid:
            return True
        return self._torso.angle >= self.cfg.min_torso_straightness

    @property
    def in_position(self) -> bool:
        return self._last_valid and self._phase in (Phase.UP, Phase.DOWN)

    @property
    def feedback(self) -> Feedback:
        if self._last_angle is None:
            return Feedback.GET_IN_POSITION
        if not self._last_valid:
            return Feedback.NOT_VISIBLE
        if not self.form_ok:
            return Feedback.KEEP_TORSO_STRAIGHT
        if self._phase is Phase.DOWN:
            return Feedback.PUSH_UP
        if self._phase is Phase.UP:
            if self._last_angle < self.cfg.up_threshold:
                return Feedback.GO_LOWER
            return Feedback.GO_DOWN
        if self._last_angle >= self.cfg.up_threshold:
            return Feedback.HOLD_POSITION
        return Feedback.NOT_ENOUGH_EXTENSION
