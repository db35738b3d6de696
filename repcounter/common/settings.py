from __future__ import annotations
import os
from dataclasses import dataclass, field
from typing import Mapping, Optional

from dotenv import load_dotenv

from repcounter.counter.detector import ConfigError, RepConfig

ENV_PREFIX = "REPCOUNT_"

# field name → parser; every field is optional in the environment
_OVERRIDES = {
    "min_confidence": float,
    "down_threshold": float,
    "up_threshold": float,
    "min_stable_frames": int,
    "min_torso_straightness": float,
}


@dataclass
class Settings:
    preset: str = "standard"
    rep: RepConfig = field(default_factory=RepConfig)
    camera_index: int = 0
    log_level: str = "INFO"


def _parse(env: Mapping[str, str], key: str, conv):
    raw = env.get(ENV_PREFIX + key.upper())
    if raw is None or raw.strip() == "":
        return None
    try:
        return conv(raw)
    except ValueError:
        raise ConfigError(f"{ENV_PREFIX}{key.upper()}={raw!r} is not a valid {conv.__name__}") from None


def load_settings(env: Optional[Mapping[str, str]] = None, dotenv: bool = True) -> Settings:
    """Read REPCOUNT_* variables (after loading .env) into Settings."""
    if env is None:
        if dotenv:
            load_dotenv()
        env = os.environ

    preset = env.get(ENV_PREFIX + "PRESET", "standard")
    overrides = {key: _parse(env, key, conv) for key, conv in _OVERRIDES.items()}
    rep = RepConfig.preset(preset).with_overrides(**overrides)
    camera_index = _parse(env, "camera_index", int)
    return Settings(
        preset=preset,
        rep=rep,
        camera_index=0 if camera_index is None else camera_index,
        log_level=env.get(ENV_PREFIX + "LOG_LEVEL", "INFO").upper(),
    )
