"""Tests for the MediaPipe detector and webcam source, using fake backends."""

import asyncio
from types import SimpleNamespace

import numpy as np
import pytest

import tree_gesture.detector as detector_module
from tree_gesture.config import EngineConfig
from tree_gesture.detector import HandDetector, WebcamSource, open_webcam_source
from tree_gesture.errors import DeviceAccessFailure, InitializationFailure
from tree_gesture.loop import DetectionLoop, FrameScheduler
from tree_gesture.state import SceneState


def fake_hand(offset):
    return SimpleNamespace(landmark=[
        SimpleNamespace(x=offset + i * 0.01, y=0.5, z=0.0) for i in range(21)
    ])


class FakeHands:
    instances = []

    def __init__(self, **kwargs):
        self.kwargs = kwargs
        self.results = SimpleNamespace(multi_hand_landmarks=None)
        self.closed = False
        FakeHands.instances.append(self)

    def process(self, frame):
        return self.results

    def close(self):
        self.closed = True


def fake_mediapipe(hands_cls=FakeHands):
    return SimpleNamespace(solutions=SimpleNamespace(hands=SimpleNamespace(Hands=hands_cls)))


class FakeCapture:
    opened = True

    def __init__(self, index):
        self.index = index
        self.released = False
        self.props = {}
        self.position_ms = 0.0

    def isOpened(self):
        return self.opened

    def set(self, prop, value):
        self.props[prop] = value

    def get(self, prop):
        return self.position_ms

    def read(self):
        self.position_ms += 33.0
        return True, np.zeros((240, 320, 3), dtype=np.uint8)

    def release(self):
        self.released = True


class UnpluggedCapture(FakeCapture):
    """Delivers ``good_frames`` frames, then every read fails."""

    good_frames = 2

    def read(self):
        if self.position_ms >= self.good_frames * 33.0:
            return False, None
        return super().read()


def fake_cv2(capture_cls=FakeCapture):
    return SimpleNamespace(
        VideoCapture=capture_cls,
        CAP_PROP_FRAME_WIDTH=3,
        CAP_PROP_FRAME_HEIGHT=4,
        CAP_PROP_POS_MSEC=0,
        COLOR_BGR2RGB=4,
        cvtColor=lambda frame, code: frame,
    )


class TestHandDetector:
    def test_requires_mediapipe(self, monkeypatch):
        monkeypatch.setattr(detector_module, "mp", None)
        with pytest.raises(InitializationFailure):
            HandDetector()

    def test_model_load_failure(self, monkeypatch):
        def broken(**kwargs):
            raise RuntimeError("model fetch failed")

        monkeypatch.setattr(detector_module, "mp", fake_mediapipe(broken))
        with pytest.raises(InitializationFailure, match="model fetch failed"):
            HandDetector()

    def test_single_hand_tracking(self, monkeypatch):
        monkeypatch.setattr(detector_module, "mp", fake_mediapipe())
        detector = HandDetector()
        assert detector._hands.kwargs["max_num_hands"] == 1

    def test_no_hand(self, monkeypatch):
        monkeypatch.setattr(detector_module, "mp", fake_mediapipe())
        assert HandDetector().detect(np.zeros((4, 4, 3), dtype=np.uint8)) is None

    def test_first_hand_used(self, monkeypatch):
        monkeypatch.setattr(detector_module, "mp", fake_mediapipe())
        detector = HandDetector()
        detector._hands.results = SimpleNamespace(multi_hand_landmarks=[fake_hand(0.1), fake_hand(0.6)])

        lm = detector.detect(np.zeros((4, 4, 3), dtype=np.uint8))
        assert lm.shape == (21, 3)
        assert lm.dtype == np.float32
        assert lm[0, 0] == pytest.approx(0.1)

    def test_context_manager_closes(self, monkeypatch):
        monkeypatch.setattr(detector_module, "mp", fake_mediapipe())
        with HandDetector() as detector:
            pass
        assert detector._hands.closed


class TestWebcamSource:
    def make_detector(self, monkeypatch):
        monkeypatch.setattr(detector_module, "mp", fake_mediapipe())
        return HandDetector()

    def test_requires_opencv(self, monkeypatch):
        detector = self.make_detector(monkeypatch)
        monkeypatch.setattr(detector_module, "cv2", None)
        with pytest.raises(InitializationFailure):
            WebcamSource(detector)

    def test_camera_unavailable(self, monkeypatch):
        class ClosedCapture(FakeCapture):
            opened = False

        detector = self.make_detector(monkeypatch)
        monkeypatch.setattr(detector_module, "cv2", fake_cv2(ClosedCapture))
        with pytest.raises(DeviceAccessFailure):
            WebcamSource(detector, camera_index=3)

    def test_timestamps_advance(self, monkeypatch):
        detector = self.make_detector(monkeypatch)
        monkeypatch.setattr(detector_module, "cv2", fake_cv2())
        source = WebcamSource(detector, width=320, height=240)

        t1 = source.current_time()
        t2 = source.current_time()
        assert t1 == pytest.approx(0.033)
        assert t2 > t1

    def test_detect_runs_on_grabbed_frame(self, monkeypatch):
        detector = self.make_detector(monkeypatch)
        monkeypatch.setattr(detector_module, "cv2", fake_cv2())
        source = WebcamSource(detector)

        assert source.detect(0.0) is None  # nothing grabbed yet

        detector._hands.results = SimpleNamespace(multi_hand_landmarks=[fake_hand(0.2)])
        ts = source.current_time()
        assert source.detect(ts).shape == (21, 3)

    def test_close_releases(self, monkeypatch):
        detector = self.make_detector(monkeypatch)
        monkeypatch.setattr(detector_module, "cv2", fake_cv2())
        source = WebcamSource(detector)
        source.close()
        assert source._capture.released
        assert detector._hands.closed


class TestOpenWebcamSource:
    def test_closes_detector_when_camera_fails(self, monkeypatch):
        class ClosedCapture(FakeCapture):
            opened = False

        FakeHands.instances.clear()
        monkeypatch.setattr(detector_module, "mp", fake_mediapipe())
        monkeypatch.setattr(detector_module, "cv2", fake_cv2(ClosedCapture))

        with pytest.raises(DeviceAccessFailure):
            open_webcam_source(EngineConfig())
        assert FakeHands.instances[-1].closed

    def test_uses_config(self, monkeypatch):
        monkeypatch.setattr(detector_module, "mp", fake_mediapipe())
        monkeypatch.setattr(detector_module, "cv2", fake_cv2())

        source = open_webcam_source(EngineConfig(camera_index=2, camera_width=640, camera_height=480))
        assert source._capture.index == 2
        assert source._capture.props == {3: 640, 4: 480}


class TestLostCamera:
    def make_source(self, monkeypatch, capture_cls=UnpluggedCapture, **kwargs):
        monkeypatch.setattr(detector_module, "mp", fake_mediapipe())
        monkeypatch.setattr(detector_module, "cv2", fake_cv2(capture_cls))
        return WebcamSource(HandDetector(), **kwargs)

    def test_failed_reads_raise_after_limit(self, monkeypatch):
        source = self.make_source(monkeypatch, max_read_failures=3)
        source.current_time()
        last = source.current_time()

        assert source.current_time() == last
        assert source.current_time() == last
        with pytest.raises(DeviceAccessFailure, match="stopped delivering frames"):
            source.current_time()

    def test_good_read_resets_failure_count(self, monkeypatch):
        class FlakyCapture(FakeCapture):
            reads = 0

            def read(self):
                self.reads += 1
                if self.reads % 2 == 0:
                    return False, None
                return super().read()

        source = self.make_source(monkeypatch, capture_cls=FlakyCapture, max_read_failures=2)
        for _ in range(20):
            source.current_time()

    def test_lost_camera_degrades_scheduler(self, monkeypatch):
        source = self.make_source(monkeypatch, max_read_failures=3)
        loop = DetectionLoop()
        loop.reducer.set_state(SceneState.FORMED)

        asyncio.run(FrameScheduler(loop, lambda: source, frame_interval=0).run())

        snap = loop.reducer.snapshot()
        assert snap.ready is False
        assert "stopped delivering frames" in snap.error
        assert snap.scene_state == SceneState.FORMED
        assert source._capture.released
