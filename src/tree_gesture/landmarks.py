"""Hand landmark conventions, validation, and the landmark source interface."""

from __future__ import annotations

from typing import Any, Optional, Protocol, Sequence

import numpy as np

from tree_gesture.errors import MalformedDetection


class HandLandmark:
    """MediaPipe hand landmark indices.

    21 landmarks per hand. Each landmark is (x, y, z) with x, y normalized
    to the image and z a relative depth.
    """

    WRIST = 0
    THUMB_CMC, THUMB_MCP, THUMB_IP, THUMB_TIP = 1, 2, 3, 4
    INDEX_MCP, INDEX_PIP, INDEX_DIP, INDEX_TIP = 5, 6, 7, 8
    MIDDLE_MCP, MIDDLE_PIP, MIDDLE_DIP, MIDDLE_TIP = 9, 10, 11, 12
    RING_MCP, RING_PIP, RING_DIP, RING_TIP = 13, 14, 15, 16
    PINKY_MCP, PINKY_PIP, PINKY_DIP, PINKY_TIP = 17, 18, 19, 20

    THUMB = (THUMB_CMC, THUMB_MCP, THUMB_IP, THUMB_TIP)

    # Fingertips that vote on fist vs open palm. The thumb is excluded.
    FINGERTIPS = (INDEX_TIP, MIDDLE_TIP, RING_TIP, PINKY_TIP)

    # Indices the classifier reads; all must hold finite coordinates.
    REQUIRED = (WRIST, MIDDLE_MCP) + FINGERTIPS

    NUM_LANDMARKS = 21
    LANDMARK_DIM = 3  # x, y, z


def _rows(points: Any) -> list[Sequence[float]]:
    rows = []
    for p in points:
        if hasattr(p, "x") and hasattr(p, "y"):
            rows.append((p.x, p.y, getattr(p, "z", 0.0)))
        else:
            rows.append(p)
    return rows


def as_landmark_set(points: Any) -> np.ndarray:
    """Validate a detection and return it as a (21, 3) float32 array.

    Accepts an array-like of (x, y, z) rows or objects exposing ``x``, ``y``
    and ``z`` attributes (MediaPipe ``NormalizedLandmark``). Points beyond
    the 21st are dropped.

    Raises:
        MalformedDetection: fewer than 21 points, rows that are not 3-wide,
            or a non-finite coordinate on one of the required landmarks.
    """
    if points is None:
        raise MalformedDetection("detection is empty")

    if isinstance(points, np.ndarray):
        arr = points
    else:
        try:
            arr = np.asarray(_rows(points), dtype=np.float32)
        except (TypeError, ValueError) as e:
            raise MalformedDetection(f"cannot read landmarks: {e}") from e

    if arr.ndim != 2 or arr.shape[1] != HandLandmark.LANDMARK_DIM:
        raise MalformedDetection(f"expected rows of (x, y, z), got shape {arr.shape}")
    if arr.shape[0] < HandLandmark.NUM_LANDMARKS:
        raise MalformedDetection(
            f"expected {HandLandmark.NUM_LANDMARKS} landmarks, got {arr.shape[0]}"
        )

    arr = np.asarray(arr[: HandLandmark.NUM_LANDMARKS], dtype=np.float32)
    required = arr[list(HandLandmark.REQUIRED)]
    if not np.all(np.isfinite(required)):
        raise MalformedDetection("required landmarks contain non-finite values")

    return arr


class LandmarkSource(Protocol):
    """Supplies at most one hand's landmarks per video frame.

    ``current_time`` reports the timestamp (seconds) of the newest frame
    and never decreases. ``detect`` runs hand detection on the frame for
    that timestamp and may block; the scheduler calls it off the event loop.
    """

    def current_time(self) -> float: ...

    def detect(self, timestamp: float) -> Optional[np.ndarray]: ...

    def close(self) -> None: ...
