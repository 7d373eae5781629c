#!/usr/bin/env python3
"""Live webcam demo: shows the detected gesture and scene state over the video.

Usage:
    python examples/demo_webcam.py [--camera 0] [--no-display]
"""

import argparse
import sys
import time

import cv2

from tree_gesture import DetectionLoop, GestureClassifier, MetricsCollector
from tree_gesture.detector import HandDetector
from tree_gesture.errors import SourceError
from tree_gesture.landmarks import HandLandmark

STATE_COLORS = {"FORMED": (0, 200, 0), "CHAOS": (0, 140, 255)}


def draw_overlay(frame, landmarks, gesture, scene_state, fps):
    """Draw fingertips, the gesture label and the scene state on the frame."""
    h, w = frame.shape[:2]
    cv2.putText(frame, f"FPS: {fps:.1f}", (10, 30), cv2.FONT_HERSHEY_SIMPLEX, 0.7, (0, 255, 0), 2)
    cv2.putText(
        frame, f"{gesture.value} -> {scene_state.value}", (10, 60),
        cv2.FONT_HERSHEY_SIMPLEX, 0.8, STATE_COLORS[scene_state.value], 2,
    )

    if landmarks is not None:
        for idx in (HandLandmark.WRIST, HandLandmark.MIDDLE_MCP) + HandLandmark.FINGERTIPS:
            x, y = int(landmarks[idx][0] * w), int(landmarks[idx][1] * h)
            cv2.circle(frame, (x, y), 5, (0, 255, 255), -1)

    return frame


def main():
    parser = argparse.ArgumentParser(description="tree-gesture webcam demo")
    parser.add_argument("--camera", type=int, default=0, help="Camera index")
    parser.add_argument("--no-display", action="store_true", help="Run headless")
    args = parser.parse_args()

    cap = cv2.VideoCapture(args.camera)
    if not cap.isOpened():
        print(f"Error: Cannot open camera {args.camera}")
        sys.exit(1)

    try:
        detector = HandDetector()
    except SourceError as e:
        print(f"Error: {e}")
        cap.release()
        sys.exit(1)

    metrics = MetricsCollector()
    loop = DetectionLoop(classifier=GestureClassifier(), metrics=metrics)
    loop.reducer.subscribe(
        lambda snap: print(f"  🤚 {snap.gesture.value:12s} → 🎄 {snap.scene_state.value}")
    )
    loop.reducer.mark_ready()

    print("Fist forms the tree, open palm scatters it.")
    print("Press 'q' to quit\n")

    start = time.monotonic()
    last = time.monotonic()
    fps = 0.0

    with detector:
        while True:
            ret, frame = cap.read()
            if not ret:
                break

            landmarks = detector.detect(cv2.cvtColor(frame, cv2.COLOR_BGR2RGB))
            gesture, scene_state = loop.step(time.monotonic() - start, landmarks)

            now = time.monotonic()
            fps = 0.9 * fps + 0.1 / max(now - last, 1e-6)
            last = now

            if not args.no_display:
                cv2.imshow("tree-gesture", draw_overlay(frame, landmarks, gesture, scene_state, fps))
                if cv2.waitKey(1) & 0xFF == ord("q"):
                    break

    cap.release()
    cv2.destroyAllWindows()

    print(f"\nProcessed {metrics.frames_total} frames, gestures: {metrics.gesture_counts}")


if __name__ == "__main__":
    main()
