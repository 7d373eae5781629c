"""Scene state reducer: gesture labels in, CHAOS/FORMED out."""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional

from tree_gesture.classifier import GestureLabel

logger = logging.getLogger("tree_gesture.state")


class SceneState(Enum):
    CHAOS = "CHAOS"
    FORMED = "FORMED"


# NONE is absent: no hand keeps the last state.
TRANSITIONS: dict[GestureLabel, SceneState] = {
    GestureLabel.CLOSED_FIST: SceneState.FORMED,
    GestureLabel.OPEN_PALM: SceneState.CHAOS,
}


@dataclass(frozen=True)
class SceneSnapshot:
    """Consistent view of everything the scene sink reads."""
    gesture: GestureLabel
    scene_state: SceneState
    ready: bool
    error: Optional[str] = None
    frame_timestamp: Optional[float] = None

    def to_dict(self) -> dict:
        return {
            "gesture": self.gesture.value,
            "scene_state": self.scene_state.value,
            "ready": self.ready,
            "error": self.error,
            "frame_timestamp": self.frame_timestamp,
        }


Listener = Callable[[SceneSnapshot], None]


class SceneStateReducer:
    """Owns the current gesture label and scene state.

    Every label is applied immediately: CLOSED_FIST forms the tree, OPEN_PALM
    scatters it, NONE changes nothing. Applying the label for the state that
    is already current is a no-op.

    There is a single writer (the detection loop, plus UI overrides) and any
    number of readers; writes take a lock so a render thread polling
    ``snapshot()`` never sees a half-applied update. Listeners registered
    with ``subscribe`` are called after each change, outside the lock.
    """

    def __init__(self, initial: SceneState = SceneState.CHAOS):
        self._lock = threading.Lock()
        self._gesture = GestureLabel.NONE
        self._scene_state = initial
        self._ready = False
        self._error: Optional[str] = None
        self._frame_timestamp: Optional[float] = None
        self._listeners: list[Listener] = []

    # --- queries ---

    @property
    def gesture(self) -> GestureLabel:
        return self._gesture

    @property
    def scene_state(self) -> SceneState:
        return self._scene_state

    @property
    def ready(self) -> bool:
        return self._ready

    @property
    def error(self) -> Optional[str]:
        return self._error

    def snapshot(self) -> SceneSnapshot:
        with self._lock:
            return self._snapshot_locked()

    def _snapshot_locked(self) -> SceneSnapshot:
        return SceneSnapshot(
            gesture=self._gesture,
            scene_state=self._scene_state,
            ready=self._ready,
            error=self._error,
            frame_timestamp=self._frame_timestamp,
        )

    # --- updates ---

    def apply(self, label: GestureLabel, timestamp: Optional[float] = None) -> SceneState:
        """Apply one frame's gesture label and return the resulting state."""
        with self._lock:
            before = (self._gesture, self._scene_state)
            self._gesture = label
            self._scene_state = TRANSITIONS.get(label, self._scene_state)
            if timestamp is not None:
                self._frame_timestamp = timestamp
            changed = before != (self._gesture, self._scene_state)
            if changed and before[1] != self._scene_state:
                logger.info("Scene %s -> %s (%s)", before[1].value, self._scene_state.value, label.value)
            snap = self._snapshot_locked()
            result = self._scene_state

        if changed:
            self._notify(snap)
        return result

    def set_state(self, scene_state: SceneState) -> SceneState:
        """Set the scene state directly, as the UI controls do."""
        with self._lock:
            changed = scene_state != self._scene_state
            self._scene_state = scene_state
            snap = self._snapshot_locked()

        if changed:
            logger.info("Scene set to %s by UI", scene_state.value)
            self._notify(snap)
        return scene_state

    def toggle(self) -> SceneState:
        with self._lock:
            target = SceneState.CHAOS if self._scene_state == SceneState.FORMED else SceneState.FORMED
        return self.set_state(target)

    def mark_ready(self):
        """Signal that the landmark source is up and producing frames."""
        with self._lock:
            changed = not self._ready or self._error is not None
            self._ready = True
            self._error = None
            snap = self._snapshot_locked()
        if changed:
            self._notify(snap)

    def mark_unavailable(self, reason: str):
        """Enter degraded mode: no detections, state frozen, gesture NONE."""
        with self._lock:
            self._ready = False
            self._error = reason
            self._gesture = GestureLabel.NONE
            snap = self._snapshot_locked()
        self._notify(snap)

    # --- subscriptions ---

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register a listener; returns a function that unregisters it."""
        self._listeners.append(listener)

        def unsubscribe():
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _notify(self, snap: SceneSnapshot):
        for listener in list(self._listeners):
            try:
                listener(snap)
            except Exception:
                logger.exception("Scene listener %r failed", listener)
