"""Landmark recording and replay.

Recorded sessions let the detection loop run without a camera:
- reproducible tests and CI on headless machines
- tuning the fold thresholds against real hands
- demos that play back deterministically
"""

from __future__ import annotations

import json
import logging
import time
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Iterator, Optional

import numpy as np

from tree_gesture.errors import SourceExhausted

logger = logging.getLogger("tree_gesture.recorder")

FORMAT_VERSION = 1


@dataclass
class RecordedFrame:
    """A single frame in a recording."""
    timestamp: float  # seconds from recording start
    landmarks: Optional[list[list[float]]]  # (21, 3) as nested lists, None if no hand
    gesture: str = "NONE"
    scene_state: str = "CHAOS"


class GestureRecorder:
    """Records per-frame landmarks and the labels they produced.

    Usage:
        recorder = GestureRecorder()
        recorder.start()
        # In your frame loop:
        recorder.add_frame(ts, landmarks, gesture, scene_state)
        # When done:
        recorder.save("session.json")
    """

    def __init__(self):
        self._frames: list[RecordedFrame] = []
        self._start_time: Optional[float] = None
        self._recording = False

    def start(self):
        """Begin a new recording session."""
        self._frames = []
        self._start_time = None
        self._recording = True

    def stop(self) -> int:
        """Stop recording. Returns number of frames captured."""
        self._recording = False
        return len(self._frames)

    @property
    def is_recording(self) -> bool:
        return self._recording

    @property
    def frame_count(self) -> int:
        return len(self._frames)

    @property
    def duration(self) -> float:
        if not self._frames:
            return 0.0
        return self._frames[-1].timestamp

    def add_frame(
        self,
        timestamp: Optional[float],
        landmarks: Optional[np.ndarray],
        gesture: str = "NONE",
        scene_state: str = "CHAOS",
    ):
        """Append a frame. Timestamps are stored relative to the first frame.

        ``timestamp`` defaults to the monotonic clock.
        """
        if not self._recording:
            return

        if timestamp is None:
            timestamp = time.monotonic()
        if self._start_time is None:
            self._start_time = timestamp

        self._frames.append(RecordedFrame(
            timestamp=timestamp - self._start_time,
            landmarks=np.asarray(landmarks, dtype=np.float32).tolist() if landmarks is not None else None,
            gesture=gesture,
            scene_state=scene_state,
        ))

    def save(self, path: str | Path):
        """Save recording to a JSON file."""
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)

        data = {
            "version": FORMAT_VERSION,
            "frame_count": len(self._frames),
            "duration": self.duration,
            "frames": [asdict(f) for f in self._frames],
        }

        with open(path, "w") as f:
            json.dump(data, f)
        logger.info("Saved %d frames to %s", len(self._frames), path)


class GesturePlayer:
    """Replays a recorded session.

    Usage:
        player = GesturePlayer.load("session.json")
        for frame in player.play():
            loop.step(frame.timestamp, frame.landmarks)
    """

    def __init__(self, frames: list[RecordedFrame]):
        self._frames = frames

    @classmethod
    def load(cls, path: str | Path) -> GesturePlayer:
        with open(path) as f:
            data = json.load(f)
        if not isinstance(data, dict):
            raise ValueError(f"malformed recording {path}: expected a JSON object")

        version = data.get("version", FORMAT_VERSION)
        if version != FORMAT_VERSION:
            raise ValueError(f"unsupported recording version {version}")

        try:
            frames = [_load_frame(f) for f in data["frames"]]
        except (KeyError, TypeError, ValueError) as e:
            raise ValueError(f"malformed recording {path}: {e!r}") from e
        return cls(frames)

    @property
    def frame_count(self) -> int:
        return len(self._frames)

    @property
    def duration(self) -> float:
        if not self._frames:
            return 0.0
        return self._frames[-1].timestamp

    def play(self) -> Iterator[RecordedFrame]:
        """Iterate through all frames with landmarks as numpy arrays."""
        for frame in self._frames:
            yield RecordedFrame(
                timestamp=frame.timestamp,
                landmarks=np.array(frame.landmarks, dtype=np.float32) if frame.landmarks is not None else None,
                gesture=frame.gesture,
                scene_state=frame.scene_state,
            )

    def play_realtime(self, speed: float = 1.0) -> Iterator[RecordedFrame]:
        """Replay at original timing, scaled by ``speed``."""
        start = time.monotonic()
        for frame in self.play():
            target = frame.timestamp / speed
            elapsed = time.monotonic() - start
            if target > elapsed:
                time.sleep(target - elapsed)
            yield frame


def _load_frame(data: dict) -> RecordedFrame:
    landmarks = data.get("landmarks")
    if landmarks is not None:
        points = np.asarray(landmarks, dtype=np.float32)
        if points.ndim != 2 or points.shape[1] != 3:
            raise ValueError(f"landmarks must be rows of (x, y, z), got shape {points.shape}")
    return RecordedFrame(
        timestamp=float(data["timestamp"]),
        landmarks=landmarks,
        gesture=data.get("gesture", "NONE"),
        scene_state=data.get("scene_state", "CHAOS"),
    )


class ReplaySource:
    """LandmarkSource that serves a recording one frame per ``current_time``.

    Raises SourceExhausted once every frame has been served.
    """

    def __init__(self, player: GesturePlayer):
        self._frames = list(player.play())
        self._index = -1

    @classmethod
    def from_file(cls, path: str | Path) -> ReplaySource:
        return cls(GesturePlayer.load(path))

    def current_time(self) -> float:
        if self._index + 1 >= len(self._frames):
            raise SourceExhausted(f"replay finished after {len(self._frames)} frames")
        self._index += 1
        return self._frames[self._index].timestamp

    def detect(self, timestamp: float) -> Optional[np.ndarray]:
        if self._index < 0:
            return None
        return self._frames[self._index].landmarks

    def close(self):
        self._index = len(self._frames)
