"""Webcam hand detection with MediaPipe and OpenCV."""

from __future__ import annotations

import logging
import time
from typing import Optional

import numpy as np

try:
    import mediapipe as mp
except ImportError:
    mp = None

try:
    import cv2
except ImportError:
    cv2 = None

from tree_gesture.errors import DeviceAccessFailure, InitializationFailure, SourceError

logger = logging.getLogger("tree_gesture.detector")

# Consecutive failed reads before the camera is reported as lost.
MAX_READ_FAILURES = 30


class HandDetector:
    """Extracts 21 3D hand landmarks with MediaPipe Hands.

    Only one hand is tracked. If the backend reports more than one, the
    first is used and the rest are ignored.
    """

    def __init__(
        self,
        max_hands: int = 1,
        min_detection_confidence: float = 0.5,
        min_tracking_confidence: float = 0.5,
        static_image_mode: bool = False,
    ):
        if mp is None:
            raise InitializationFailure(
                "mediapipe is required. Install with: pip install 'tree-gesture[camera]'"
            )

        try:
            self._hands = mp.solutions.hands.Hands(
                static_image_mode=static_image_mode,
                max_num_hands=max_hands,
                min_detection_confidence=min_detection_confidence,
                min_tracking_confidence=min_tracking_confidence,
            )
        except Exception as e:
            raise InitializationFailure(f"could not load hand landmark model: {e}") from e

    @classmethod
    def from_config(cls, config) -> HandDetector:
        return cls(
            max_hands=config.max_hands,
            min_detection_confidence=config.min_detection_confidence,
            min_tracking_confidence=config.min_tracking_confidence,
        )

    def detect(self, frame_rgb: np.ndarray) -> Optional[np.ndarray]:
        """Detect the first hand in an RGB frame.

        Args:
            frame_rgb: RGB image as numpy array (H, W, 3), uint8.

        Returns:
            Landmark array of shape (21, 3), or None if no hand is visible.
        """
        results = self._hands.process(frame_rgb)

        if not results.multi_hand_landmarks:
            return None

        if len(results.multi_hand_landmarks) > 1:
            logger.debug("Ignoring %d extra hands", len(results.multi_hand_landmarks) - 1)

        hand = results.multi_hand_landmarks[0]
        return np.array([[lm.x, lm.y, lm.z] for lm in hand.landmark], dtype=np.float32)

    def close(self):
        """Release MediaPipe resources."""
        self._hands.close()

    def __enter__(self):
        return self

    def __exit__(self, *args):
        self.close()


class WebcamSource:
    """LandmarkSource reading frames from an OpenCV capture device.

    ``current_time`` grabs the newest frame and returns its timestamp in
    seconds. Devices that do not report a position get a monotonic clock
    instead. ``detect`` runs the hand detector on that frame. After
    ``max_read_failures`` consecutive failed reads the device is treated as
    lost and ``current_time`` raises DeviceAccessFailure.
    """

    def __init__(
        self,
        detector: HandDetector,
        camera_index: int = 0,
        width: int = 320,
        height: int = 240,
        max_read_failures: int = MAX_READ_FAILURES,
    ):
        if cv2 is None:
            raise InitializationFailure(
                "opencv-python is required. Install with: pip install 'tree-gesture[camera]'"
            )

        self._capture = cv2.VideoCapture(camera_index)
        if not self._capture.isOpened():
            self._capture.release()
            raise DeviceAccessFailure(f"Could not open camera {camera_index}")

        self._capture.set(cv2.CAP_PROP_FRAME_WIDTH, width)
        self._capture.set(cv2.CAP_PROP_FRAME_HEIGHT, height)

        self._detector = detector
        self._start = time.monotonic()
        self._frame: Optional[np.ndarray] = None
        self._frame_time = 0.0
        self._camera_index = camera_index
        self._max_read_failures = max_read_failures
        self._read_failures = 0
        logger.info("Camera %d opened at %dx%d", camera_index, width, height)

    def current_time(self) -> float:
        ok, frame = self._capture.read()
        if not ok:
            self._read_failures += 1
            if self._read_failures >= self._max_read_failures:
                raise DeviceAccessFailure(
                    f"Camera {self._camera_index} stopped delivering frames "
                    f"({self._read_failures} failed reads)"
                )
            return self._frame_time
        self._read_failures = 0

        position = self._capture.get(cv2.CAP_PROP_POS_MSEC) / 1000.0
        timestamp = position if position > 0 else time.monotonic() - self._start
        if timestamp <= self._frame_time:
            return self._frame_time

        self._frame = cv2.cvtColor(frame, cv2.COLOR_BGR2RGB)
        self._frame_time = timestamp
        return timestamp

    def detect(self, timestamp: float) -> Optional[np.ndarray]:
        if self._frame is None:
            return None
        return self._detector.detect(self._frame)

    def close(self):
        self._capture.release()
        self._detector.close()


def open_webcam_source(config) -> WebcamSource:
    """Build the detector and open the camera described by ``config``.

    Raises:
        InitializationFailure: the detection backend could not load.
        DeviceAccessFailure: the camera could not be opened.
    """
    detector = HandDetector.from_config(config)
    try:
        return WebcamSource(
            detector,
            camera_index=config.camera_index,
            width=config.camera_width,
            height=config.camera_height,
            max_read_failures=config.max_read_failures,
        )
    except SourceError:
        detector.close()
        raise
