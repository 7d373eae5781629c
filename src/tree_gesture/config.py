"""Engine configuration, loaded from YAML."""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, fields
from pathlib import Path
from typing import Optional

import yaml

from tree_gesture.classifier import FOLD_RATIO, MIN_FOLDED_FINGERS
from tree_gesture.errors import ConfigError
from tree_gesture.landmarks import HandLandmark

logger = logging.getLogger("tree_gesture.config")


@dataclass
class EngineConfig:
    # Classification (empirical, tune per deployment)
    fold_ratio: float = FOLD_RATIO
    min_folded_fingers: int = MIN_FOLDED_FINGERS

    # Camera and detection backend
    camera_index: int = 0
    camera_width: int = 320
    camera_height: int = 240
    frame_interval: float = 1 / 60
    max_hands: int = 1
    min_detection_confidence: float = 0.5
    min_tracking_confidence: float = 0.5
    max_read_failures: int = 30

    # Server
    host: str = "0.0.0.0"
    port: int = 8765
    log_level: str = "info"

    def validate(self) -> EngineConfig:
        if self.fold_ratio <= 0:
            raise ConfigError(f"fold_ratio must be positive, got {self.fold_ratio}")
        if not 1 <= self.min_folded_fingers <= len(HandLandmark.FINGERTIPS):
            raise ConfigError(
                f"min_folded_fingers must be between 1 and {len(HandLandmark.FINGERTIPS)}, "
                f"got {self.min_folded_fingers}"
            )
        if self.frame_interval <= 0:
            raise ConfigError(f"frame_interval must be positive, got {self.frame_interval}")
        if self.camera_width <= 0 or self.camera_height <= 0:
            raise ConfigError(f"invalid camera size {self.camera_width}x{self.camera_height}")
        if self.max_hands < 1:
            raise ConfigError(f"max_hands must be at least 1, got {self.max_hands}")
        if self.max_read_failures < 1:
            raise ConfigError(f"max_read_failures must be at least 1, got {self.max_read_failures}")
        return self

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> EngineConfig:
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(data) - known)
        if unknown:
            logger.warning("Ignoring unknown config keys: %s", ", ".join(unknown))
        try:
            return cls(**{k: v for k, v in data.items() if k in known}).validate()
        except TypeError as e:
            raise ConfigError(f"invalid config value: {e}") from e


def load_config(path: Optional[str | Path] = None) -> EngineConfig:
    """Load configuration from a YAML file, or defaults when no path is given."""
    if path is None:
        return EngineConfig()

    path = Path(path)
    if not path.exists():
        raise ConfigError(f"config file not found: {path}")

    try:
        with open(path) as f:
            data = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        raise ConfigError(f"invalid YAML in {path}: {e}") from e

    if not isinstance(data, dict):
        raise ConfigError(f"{path} must contain a mapping, got {type(data).__name__}")

    logger.debug("Loaded config from %s", path)
    return EngineConfig.from_dict(data)


def save_config(config: EngineConfig, path: str | Path):
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w") as f:
        yaml.safe_dump(config.to_dict(), f, sort_keys=False)
