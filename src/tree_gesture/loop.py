"""Detection loop: frame timestamps and landmarks in, gesture and scene state out.

``DetectionLoop.step`` is the synchronous transition function. It dedups
frames by timestamp, classifies, and reduces. ``FrameScheduler`` is the thin
asyncio harness around it that paces steps per display refresh, runs the
blocking detection call off the event loop, and handles start/stop.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, Callable, Optional

from tree_gesture.classifier import GestureClassifier, GestureLabel
from tree_gesture.errors import MalformedDetection, SourceError, SourceExhausted
from tree_gesture.landmarks import LandmarkSource
from tree_gesture.metrics import MetricsCollector
from tree_gesture.state import SceneState, SceneStateReducer

logger = logging.getLogger("tree_gesture.loop")

DEFAULT_FRAME_INTERVAL = 1 / 60


class DetectionLoop:
    """Applies at most one classification per distinct frame timestamp."""

    def __init__(
        self,
        classifier: Optional[GestureClassifier] = None,
        reducer: Optional[SceneStateReducer] = None,
        metrics: Optional[MetricsCollector] = None,
    ):
        self.classifier = classifier or GestureClassifier()
        self.reducer = reducer or SceneStateReducer()
        self.metrics = metrics
        self._last_timestamp: Optional[float] = None
        self._frames_processed = 0
        self._frames_skipped = 0

        if metrics is not None:
            self.reducer.subscribe(metrics.observe_snapshot)

    @property
    def last_timestamp(self) -> Optional[float]:
        return self._last_timestamp

    @property
    def frames_processed(self) -> int:
        return self._frames_processed

    @property
    def frames_skipped(self) -> int:
        return self._frames_skipped

    def is_new_frame(self, timestamp: float) -> bool:
        return self._last_timestamp is None or timestamp > self._last_timestamp

    def step(self, timestamp: float, landmarks: Optional[Any]) -> tuple[GestureLabel, SceneState]:
        """Process one frame.

        Args:
            timestamp: Frame time in seconds, non-decreasing across calls.
            landmarks: The first detected hand as 21 (x, y, z) points, or
                None when no hand is visible.

        Returns:
            (gesture, scene_state) after the step. A repeated timestamp
            returns the current pair without classifying again.
        """
        if not self.is_new_frame(timestamp):
            self._frames_skipped += 1
            if self.metrics:
                self.metrics.record_skipped()
            return self.reducer.gesture, self.reducer.scene_state

        self._last_timestamp = timestamp
        t0 = time.perf_counter()

        label = self._classify(landmarks)
        scene_state = self.reducer.apply(label, timestamp)

        self._frames_processed += 1
        if self.metrics:
            self.metrics.record_frame(label.value, time.perf_counter() - t0)

        return label, scene_state

    def _classify(self, landmarks: Optional[Any]) -> GestureLabel:
        if landmarks is None:
            return GestureLabel.NONE
        try:
            return self.classifier.classify(landmarks)
        except MalformedDetection as e:
            logger.debug("Malformed detection treated as no hand: %s", e)
            if self.metrics:
                self.metrics.record_malformed()
            return GestureLabel.NONE

    def reset(self):
        """Forget the last frame timestamp and clear counters."""
        self._last_timestamp = None
        self._frames_processed = 0
        self._frames_skipped = 0


SourceFactory = Callable[[], LandmarkSource]


class FrameScheduler:
    """Runs a DetectionLoop against a landmark source, one frame at a time.

    The source is opened inside ``run`` so that backend or camera failures
    put the reducer into degraded mode instead of propagating to the host.
    Only one detection is ever in flight; the next step is scheduled after
    the previous result has been applied. ``stop`` takes effect before the
    next step, and a detection still running when ``stop`` is called has its
    result discarded. The source is closed only after that detection returns.
    """

    def __init__(
        self,
        loop: DetectionLoop,
        source_factory: SourceFactory,
        frame_interval: float = DEFAULT_FRAME_INTERVAL,
    ):
        self.loop = loop
        self._source_factory = source_factory
        self.frame_interval = frame_interval
        self._task: Optional[asyncio.Task] = None
        self._running = False
        self._generation = 0
        self._detection: Optional[asyncio.Future] = None

    @property
    def running(self) -> bool:
        return self._running

    def start(self) -> asyncio.Task:
        """Schedule ``run`` on the current event loop."""
        if self._task is not None and not self._task.done():
            return self._task
        self._task = asyncio.get_running_loop().create_task(self.run())
        return self._task

    def stop(self):
        """Stop scheduling steps; pending detection results are dropped."""
        self._generation += 1
        self._running = False
        if self._task is not None and not self._task.done():
            self._task.cancel()

    async def wait_stopped(self):
        if self._task is not None:
            await asyncio.wait([self._task])

    async def run(self):
        generation = self._generation
        self._running = True

        # Opening loads the model and the camera; keep it off the event loop.
        opening = asyncio.ensure_future(asyncio.to_thread(self._source_factory))
        try:
            source = await asyncio.shield(opening)
        except SourceError as e:
            self._running = False
            logger.error("Landmark source unavailable, gestures disabled: %s", e)
            self.loop.reducer.mark_unavailable(str(e))
            return
        except asyncio.CancelledError:
            self._running = False
            opening.add_done_callback(_close_when_opened)
            raise

        self.loop.reducer.mark_ready()
        logger.info("Detection loop started")

        try:
            while self._running and generation == self._generation:
                await self._tick(source, generation)
                await asyncio.sleep(self.frame_interval)
        except SourceExhausted:
            logger.info("Landmark source exhausted after %d frames", self.loop.frames_processed)
        except SourceError as e:
            logger.error("Landmark source failed, gestures disabled: %s", e)
            self.loop.reducer.mark_unavailable(str(e))
        finally:
            self._running = False
            await self._close_after_detection(source)
            logger.info("Detection loop stopped")

    async def _tick(self, source: LandmarkSource, generation: int):
        timestamp = source.current_time()
        if not self.loop.is_new_frame(timestamp):
            return

        self._detection = asyncio.ensure_future(asyncio.to_thread(source.detect, timestamp))
        try:
            landmarks = await asyncio.shield(self._detection)
        except SourceError:
            self._detection = None
            raise
        except Exception as e:
            logger.warning("Hand detection failed at t=%.3f: %s", timestamp, e)
            landmarks = None
        self._detection = None

        if generation != self._generation or not self._running:
            logger.debug("Discarding detection for t=%.3f after stop", timestamp)
            return

        self.loop.step(timestamp, landmarks)

    async def _close_after_detection(self, source: LandmarkSource):
        """Close ``source`` once no detection is running in its worker thread."""
        detection, self._detection = self._detection, None
        if detection is not None:
            try:
                await asyncio.shield(detection)
            except asyncio.CancelledError:
                detection.add_done_callback(lambda _: source.close())
                raise
            except Exception as e:
                logger.debug("Discarded detection failed after stop: %s", e)
        source.close()


def _close_when_opened(opening: asyncio.Future):
    """Close a source whose opening finished after the scheduler was stopped."""
    if opening.cancelled() or opening.exception() is not None:
        return
    opening.result().close()
