"""tree-gesture - hand gestures that form and scatter the Christmas tree scene."""

__version__ = "0.1.0"

from tree_gesture.classifier import GestureClassifier, GestureLabel, FoldReport
from tree_gesture.config import EngineConfig, load_config
from tree_gesture.errors import (
    TreeGestureError, SourceError, InitializationFailure, DeviceAccessFailure,
    SourceExhausted, MalformedDetection, ConfigError,
)
from tree_gesture.landmarks import HandLandmark, LandmarkSource, as_landmark_set
from tree_gesture.loop import DetectionLoop, FrameScheduler
from tree_gesture.metrics import MetricsCollector
from tree_gesture.recorder import GestureRecorder, GesturePlayer, ReplaySource
from tree_gesture.state import SceneState, SceneSnapshot, SceneStateReducer
