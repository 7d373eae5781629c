"""Open palm vs closed fist classification from hand landmarks."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional

import numpy as np

from tree_gesture.errors import MalformedDetection
from tree_gesture.landmarks import HandLandmark, as_landmark_set

logger = logging.getLogger("tree_gesture.classifier")

# Empirical tuning constants. A fingertip is folded when it sits closer to the
# wrist than FOLD_RATIO palm lengths; MIN_FOLDED_FINGERS folded tips make a fist.
FOLD_RATIO = 1.3
MIN_FOLDED_FINGERS = 3


class GestureLabel(Enum):
    NONE = "NONE"
    OPEN_PALM = "OPEN_PALM"
    CLOSED_FIST = "CLOSED_FIST"


@dataclass(frozen=True)
class FoldReport:
    """Intermediate measurements behind a classification."""
    palm_size: float
    tip_distances: tuple[float, ...]
    folded: tuple[bool, ...]
    label: GestureLabel

    @property
    def folded_count(self) -> int:
        return sum(self.folded)

    def to_dict(self) -> dict:
        return {
            "label": self.label.value,
            "palm_size": self.palm_size,
            "tip_distances": list(self.tip_distances),
            "folded": list(self.folded),
            "folded_count": self.folded_count,
        }


def palm_size(landmarks: np.ndarray) -> float:
    """Distance from the wrist to the middle finger MCP joint."""
    return float(np.linalg.norm(landmarks[HandLandmark.WRIST] - landmarks[HandLandmark.MIDDLE_MCP]))


def tip_distances(landmarks: np.ndarray) -> np.ndarray:
    """Wrist distance of each fingertip in ``HandLandmark.FINGERTIPS`` order."""
    tips = landmarks[list(HandLandmark.FINGERTIPS)]
    return np.linalg.norm(tips - landmarks[HandLandmark.WRIST], axis=1)


def folded_fingers(landmarks: np.ndarray, fold_ratio: float = FOLD_RATIO) -> list[bool]:
    """Per-fingertip fold flags (index, middle, ring, pinky)."""
    threshold = palm_size(landmarks) * fold_ratio
    return [bool(d < threshold) for d in tip_distances(landmarks)]


class GestureClassifier:
    """Classifies a single hand as OPEN_PALM or CLOSED_FIST.

    Distances are measured from the wrist and compared against a multiple of
    the palm size, so the result does not depend on hand size or distance
    from the camera. Only the four non-thumb fingers vote.

    The classifier holds no per-frame state: the same landmarks always give
    the same label.
    """

    def __init__(
        self,
        fold_ratio: float = FOLD_RATIO,
        min_folded: int = MIN_FOLDED_FINGERS,
    ):
        if fold_ratio <= 0:
            raise ValueError(f"fold_ratio must be positive, got {fold_ratio}")
        if not 1 <= min_folded <= len(HandLandmark.FINGERTIPS):
            raise ValueError(
                f"min_folded must be between 1 and {len(HandLandmark.FINGERTIPS)}, got {min_folded}"
            )
        self.fold_ratio = fold_ratio
        self.min_folded = min_folded

    @classmethod
    def from_config(cls, config) -> GestureClassifier:
        return cls(fold_ratio=config.fold_ratio, min_folded=config.min_folded_fingers)

    def explain(self, landmarks: Any) -> FoldReport:
        """Classify and return the measurements used.

        Raises:
            MalformedDetection: if ``landmarks`` is not a valid hand.
        """
        lm = as_landmark_set(landmarks)
        size = palm_size(lm)
        distances = tip_distances(lm)
        folded = tuple(bool(d < size * self.fold_ratio) for d in distances)

        if sum(folded) >= self.min_folded:
            label = GestureLabel.CLOSED_FIST
        else:
            label = GestureLabel.OPEN_PALM

        return FoldReport(
            palm_size=size,
            tip_distances=tuple(float(d) for d in distances),
            folded=folded,
            label=label,
        )

    def classify(self, landmarks: Any) -> GestureLabel:
        """Return CLOSED_FIST or OPEN_PALM for one detected hand.

        Raises:
            MalformedDetection: if ``landmarks`` is not a valid hand.
        """
        return self.explain(landmarks).label

    def classify_detection(self, detection: Optional[Any]) -> GestureLabel:
        """Classify a raw per-frame detection, mapping absence to NONE.

        Malformed detections are treated as "no hand" instead of raising.
        """
        if detection is None:
            return GestureLabel.NONE
        try:
            return self.classify(detection)
        except MalformedDetection as e:
            logger.debug("Ignoring malformed detection: %s", e)
            return GestureLabel.NONE
