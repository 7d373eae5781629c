"""Tests for Prometheus metrics."""

from tree_gesture.metrics import MetricsCollector
from tree_gesture.state import SceneStateReducer
from tree_gesture.classifier import GestureLabel


class TestMetricsCollector:
    def test_record_frame(self):
        m = MetricsCollector()
        m.record_frame("CLOSED_FIST", 0.0002)
        m.record_frame("CLOSED_FIST", 0.0003)
        m.record_frame("NONE", 0.0001)
        assert m.frames_total == 3
        assert m.gesture_counts == {"CLOSED_FIST": 2, "NONE": 1}

    def test_skipped_and_malformed(self):
        m = MetricsCollector()
        m.record_skipped()
        m.record_skipped()
        m.record_malformed()
        assert m.frames_skipped == 2
        assert m.malformed_total == 1

    def test_observes_reducer(self):
        m = MetricsCollector()
        reducer = SceneStateReducer()
        reducer.subscribe(m.observe_snapshot)

        reducer.mark_ready()
        reducer.apply(GestureLabel.CLOSED_FIST)
        reducer.apply(GestureLabel.NONE)
        reducer.apply(GestureLabel.OPEN_PALM)
        reducer.toggle()

        assert m.transition_counts == {"FORMED": 2, "CHAOS": 1}
        output = m.render()
        assert "tree_gesture_scene_formed 1" in output
        assert "tree_gesture_detector_ready 1" in output

    def test_render_prometheus_format(self):
        m = MetricsCollector()
        m.record_frame("OPEN_PALM", 0.0004)
        m.record_transition("CHAOS")
        m.set_connections(3)

        output = m.render()
        assert "tree_gesture_gestures_total" in output
        assert 'gesture="OPEN_PALM"' in output
        assert 'tree_gesture_scene_transitions_total{state="CHAOS"} 1' in output
        assert "tree_gesture_frames_total 1" in output
        assert "tree_gesture_active_connections 3" in output
        assert "tree_gesture_detector_ready 0" in output
        assert "# HELP" in output
        assert "# TYPE" in output

    def test_histogram_buckets(self):
        m = MetricsCollector()
        for _ in range(10):
            m.record_frame("NONE", 0.0003)
        m.record_frame("NONE", 1.0)
        output = m.render()
        assert 'tree_gesture_step_latency_seconds_bucket{le="0.0001"} 0' in output
        assert 'tree_gesture_step_latency_seconds_bucket{le="0.0005"} 10' in output
        assert 'tree_gesture_step_latency_seconds_bucket{le="0.05"} 10' in output
        assert 'tree_gesture_step_latency_seconds_bucket{le="+Inf"} 11' in output
        assert "tree_gesture_step_latency_seconds_count 11" in output
