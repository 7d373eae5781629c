"""Prometheus-compatible metrics for the gesture pipeline.

Renders the Prometheus text exposition format directly.

Tracked metrics:
- tree_gesture_frames_total (counter)
- tree_gesture_frames_skipped_total (counter, repeated frame timestamps)
- tree_gesture_malformed_detections_total (counter)
- tree_gesture_gestures_total (counter, by label)
- tree_gesture_scene_transitions_total (counter, by target state)
- tree_gesture_scene_formed (gauge, 1 when FORMED)
- tree_gesture_detector_ready (gauge)
- tree_gesture_step_latency_seconds (histogram)
- tree_gesture_active_connections (gauge)
"""

from __future__ import annotations

import threading
import time
from collections import Counter


class _Histogram:
    """Cumulative histogram over fixed upper bounds."""

    def __init__(self, buckets: list[float]):
        self.buckets = sorted(buckets)
        self.bucket_counts = [0] * len(self.buckets)
        self.count = 0
        self.sum = 0.0
        self._lock = threading.Lock()

    def observe(self, value: float):
        with self._lock:
            self.count += 1
            self.sum += value
            for i, upper in enumerate(self.buckets):
                if value <= upper:
                    self.bucket_counts[i] += 1
                    break

    def render(self, name: str, help_text: str) -> list[str]:
        lines = [f"# HELP {name} {help_text}", f"# TYPE {name} histogram"]
        with self._lock:
            cumulative = 0
            for upper, n in zip(self.buckets, self.bucket_counts):
                cumulative += n
                lines.append(f'{name}_bucket{{le="{upper}"}} {cumulative}')
            lines.append(f'{name}_bucket{{le="+Inf"}} {self.count}')
            lines.append(f"{name}_sum {self.sum:.6f}")
            lines.append(f"{name}_count {self.count}")
        return lines


def _metric(lines: list[str], name: str, kind: str, help_text: str, samples: list[tuple[str, object]]):
    lines.append(f"# HELP {name} {help_text}")
    lines.append(f"# TYPE {name} {kind}")
    for labels, value in samples:
        lines.append(f"{name}{labels} {value}")
    lines.append("")


class MetricsCollector:
    """Counts frames, gestures, and scene transitions for /metrics."""

    PREFIX = "tree_gesture"

    def __init__(self):
        self._gestures: Counter = Counter()
        self._transitions: Counter = Counter()
        self._frames_total = 0
        self._frames_skipped = 0
        self._malformed = 0
        self._scene_formed = 0
        self._ready = 0
        self._active_connections = 0
        self._lock = threading.Lock()

        # Step latency: 0.1ms to 50ms (detection runs outside the step)
        self._latency = _Histogram([0.0001, 0.0005, 0.001, 0.002, 0.005, 0.010, 0.020, 0.050])
        self._start_time = time.time()

    def record_frame(self, gesture: str, latency_seconds: float):
        with self._lock:
            self._frames_total += 1
            self._gestures[gesture] += 1
        self._latency.observe(latency_seconds)

    def record_skipped(self):
        with self._lock:
            self._frames_skipped += 1

    def record_malformed(self):
        with self._lock:
            self._malformed += 1

    def record_transition(self, scene_state: str):
        with self._lock:
            self._transitions[scene_state] += 1
            self._scene_formed = 1 if scene_state == "FORMED" else 0

    def set_ready(self, ready: bool):
        self._ready = 1 if ready else 0

    def observe_snapshot(self, snapshot):
        """Reducer listener: count scene changes and track readiness."""
        self.set_ready(snapshot.ready)
        formed = 1 if snapshot.scene_state.value == "FORMED" else 0
        if formed != self._scene_formed:
            self.record_transition(snapshot.scene_state.value)

    def set_connections(self, count: int):
        self._active_connections = count

    @property
    def frames_total(self) -> int:
        return self._frames_total

    @property
    def frames_skipped(self) -> int:
        return self._frames_skipped

    @property
    def malformed_total(self) -> int:
        return self._malformed

    @property
    def gesture_counts(self) -> dict[str, int]:
        with self._lock:
            return dict(self._gestures)

    @property
    def transition_counts(self) -> dict[str, int]:
        with self._lock:
            return dict(self._transitions)

    def render(self) -> str:
        """Render all metrics in Prometheus text exposition format."""
        p = self.PREFIX
        lines: list[str] = []

        _metric(lines, f"{p}_uptime_seconds", "gauge", "Time since collector start",
                [("", f"{time.time() - self._start_time:.1f}")])

        with self._lock:
            _metric(lines, f"{p}_frames_total", "counter", "Distinct frames classified",
                    [("", self._frames_total)])
            _metric(lines, f"{p}_frames_skipped_total", "counter", "Steps skipped for an unchanged frame timestamp",
                    [("", self._frames_skipped)])
            _metric(lines, f"{p}_malformed_detections_total", "counter", "Detections rejected as malformed",
                    [("", self._malformed)])
            _metric(lines, f"{p}_gestures_total", "counter", "Classified frames by gesture label",
                    [(f'{{gesture="{name}"}}', n) for name, n in sorted(self._gestures.items())])
            _metric(lines, f"{p}_scene_transitions_total", "counter", "Scene state changes by target state",
                    [(f'{{state="{name}"}}', n) for name, n in sorted(self._transitions.items())])
            _metric(lines, f"{p}_scene_formed", "gauge", "1 when the scene is FORMED, 0 when CHAOS",
                    [("", self._scene_formed)])

        _metric(lines, f"{p}_detector_ready", "gauge", "1 when the landmark source is producing frames",
                [("", self._ready)])

        lines.extend(self._latency.render(f"{p}_step_latency_seconds", "Classification and reduction time per frame"))
        lines.append("")

        _metric(lines, f"{p}_active_connections", "gauge", "Current WebSocket connections",
                [("", self._active_connections)])

        return "\n".join(lines) + "\n"
