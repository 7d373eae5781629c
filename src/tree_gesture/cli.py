"""tree-gesture CLI.

Usage:
    tree-gesture serve       — Start the HTTP/WebSocket server with the webcam loop
    tree-gesture run         — Run the webcam loop headless and print state changes
    tree-gesture record      — Record webcam landmarks to a JSON file
    tree-gesture replay      — Push a recording through the detection loop
    tree-gesture classify    — Classify a single landmark set from a JSON file
    tree-gesture benchmark   — Measure classification throughput
"""

from __future__ import annotations

import json
import logging
import time
from pathlib import Path
from typing import Optional

import typer

from tree_gesture.config import EngineConfig, load_config
from tree_gesture.errors import ConfigError, MalformedDetection, SourceError

app = typer.Typer(
    name="tree-gesture",
    help="🎄 Form and scatter the tree with your hand.",
    add_completion=False,
)


@app.callback()
def main_options(
    log_level: str = typer.Option("info", "--log-level", help="Log level"),
):
    logging.basicConfig(
        level=log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def _load(config_path: Optional[str]) -> EngineConfig:
    try:
        return load_config(config_path)
    except ConfigError as e:
        typer.echo(f"❌ {e}", err=True)
        raise typer.Exit(1)


@app.command()
def serve(
    config: Optional[str] = typer.Option(None, "--config", "-c", help="Path to YAML config"),
    host: Optional[str] = typer.Option(None, help="Bind address (overrides config)"),
    port: Optional[int] = typer.Option(None, help="Port (overrides config)"),
    no_camera: bool = typer.Option(False, "--no-camera", help="Serve state only, UI controls drive the scene"),
):
    """Start the scene state server."""
    import uvicorn
    from tree_gesture.server import app as fastapi_app, state

    cfg = _load(config)
    state.configure(cfg)
    state.autostart = not no_camera

    bind_host = host or cfg.host
    bind_port = port or cfg.port
    typer.echo(f"🚀 Starting tree-gesture server on {bind_host}:{bind_port}")
    typer.echo(f"   Fold ratio {cfg.fold_ratio}, fist at {cfg.min_folded_fingers}+ folded fingers")
    uvicorn.run(fastapi_app, host=bind_host, port=bind_port, log_level=cfg.log_level)


@app.command()
def run(
    config: Optional[str] = typer.Option(None, "--config", "-c", help="Path to YAML config"),
    duration: float = typer.Option(0, help="Run time in seconds (0 = until Ctrl+C)"),
):
    """Run the webcam detection loop and print gesture/state changes."""
    import asyncio
    from tree_gesture.classifier import GestureClassifier
    from tree_gesture.detector import open_webcam_source
    from tree_gesture.loop import DetectionLoop, FrameScheduler

    cfg = _load(config)
    loop = DetectionLoop(classifier=GestureClassifier.from_config(cfg))
    scheduler = FrameScheduler(loop, lambda: open_webcam_source(cfg), frame_interval=cfg.frame_interval)

    def on_change(snap):
        if not snap.ready and snap.error:
            typer.echo(f"⚠️  Gestures unavailable: {snap.error}", err=True)
            return
        typer.echo(f"   🤚 {snap.gesture.value:12s} → 🎄 {snap.scene_state.value}")

    loop.reducer.subscribe(on_change)

    async def _main():
        scheduler.start()
        if duration > 0:
            try:
                await asyncio.wait_for(scheduler.wait_stopped(), timeout=duration)
            except asyncio.TimeoutError:
                scheduler.stop()
        await scheduler.wait_stopped()

    typer.echo("🎥 Watching the camera. Fist forms the tree, open palm scatters it.")
    try:
        asyncio.run(_main())
    except KeyboardInterrupt:
        pass

    if not loop.reducer.ready and loop.reducer.error:
        raise typer.Exit(1)
    typer.echo(f"\n✅ {loop.frames_processed} frames, final state {loop.reducer.scene_state.value}")


@app.command()
def record(
    output: str = typer.Option("recording.json", "-o", help="Output file path"),
    config: Optional[str] = typer.Option(None, "--config", "-c", help="Path to YAML config"),
    duration: float = typer.Option(0, help="Recording duration in seconds (0 = until Ctrl+C)"),
):
    """Record hand landmarks from the camera."""
    from tree_gesture.classifier import GestureClassifier
    from tree_gesture.detector import open_webcam_source
    from tree_gesture.loop import DetectionLoop
    from tree_gesture.recorder import GestureRecorder

    cfg = _load(config)
    try:
        source = open_webcam_source(cfg)
    except SourceError as e:
        typer.echo(f"❌ {e}", err=True)
        raise typer.Exit(1)

    loop = DetectionLoop(classifier=GestureClassifier.from_config(cfg))
    recorder = GestureRecorder()

    typer.echo(f"🎥 Recording from camera {cfg.camera_index}...")
    typer.echo("   Press Ctrl+C to stop")
    recorder.start()
    start = time.monotonic()

    try:
        while True:
            ts = source.current_time()
            if loop.is_new_frame(ts):
                landmarks = source.detect(ts)
                gesture, scene_state = loop.step(ts, landmarks)
                recorder.add_frame(ts, landmarks, gesture.value, scene_state.value)

                if recorder.frame_count % 30 == 0:
                    elapsed = time.monotonic() - start
                    typer.echo(
                        f"\r   Frames: {recorder.frame_count} | {elapsed:.1f}s | {gesture.value}",
                        nl=False,
                    )

            if duration > 0 and (time.monotonic() - start) >= duration:
                break
    except KeyboardInterrupt:
        pass
    finally:
        recorder.stop()
        source.close()

    recorder.save(output)
    typer.echo(f"\n\n📼 Recorded {recorder.frame_count} frames ({recorder.duration:.1f}s)")
    typer.echo(f"💾 Saved to: {output}")


@app.command()
def replay(
    recording: str = typer.Argument(..., help="Path to recording file"),
    config: Optional[str] = typer.Option(None, "--config", "-c", help="Path to YAML config"),
    realtime: bool = typer.Option(False, help="Play at original timing"),
    speed: float = typer.Option(1.0, help="Playback speed multiplier"),
):
    """Replay a recorded session through the detection loop."""
    from tree_gesture.classifier import GestureClassifier
    from tree_gesture.loop import DetectionLoop
    from tree_gesture.metrics import MetricsCollector
    from tree_gesture.recorder import GesturePlayer

    path = Path(recording)
    if not path.exists():
        typer.echo(f"❌ Recording not found: {recording}", err=True)
        raise typer.Exit(1)

    cfg = _load(config)
    try:
        player = GesturePlayer.load(path)
    except ValueError as e:
        typer.echo(f"❌ Could not read recording: {e}", err=True)
        raise typer.Exit(1)
    metrics = MetricsCollector()
    loop = DetectionLoop(classifier=GestureClassifier.from_config(cfg), metrics=metrics)

    typer.echo(f"▶️  Replaying {path.name} ({player.frame_count} frames, {player.duration:.1f}s)")

    last = None
    frames = player.play_realtime(speed=speed) if realtime else player.play()
    for frame in frames:
        current = loop.step(frame.timestamp, frame.landmarks)
        if current != last:
            gesture, scene_state = current
            typer.echo(f"   {frame.timestamp:7.2f}s  🤚 {gesture.value:12s} → 🎄 {scene_state.value}")
            last = current

    typer.echo(f"\n✅ Replay complete. {loop.frames_processed} frames, {loop.frames_skipped} duplicates skipped.")
    typer.echo(f"   Gestures: {metrics.gesture_counts}")
    typer.echo(f"   Final state: {loop.reducer.scene_state.value}")


@app.command()
def classify(
    landmarks_file: str = typer.Argument(..., help="JSON file with 21 [x, y, z] rows"),
    fold_ratio: Optional[float] = typer.Option(None, help="Override the fold ratio"),
    min_folded: Optional[int] = typer.Option(None, help="Override folded fingers needed for a fist"),
    as_json: bool = typer.Option(False, "--json", help="Print the full report as JSON"),
):
    """Classify one landmark set and show the fold measurements."""
    from tree_gesture.classifier import GestureClassifier, FOLD_RATIO, MIN_FOLDED_FINGERS

    path = Path(landmarks_file)
    if not path.exists():
        typer.echo(f"❌ File not found: {landmarks_file}", err=True)
        raise typer.Exit(1)

    try:
        with open(path) as f:
            data = json.load(f)
    except json.JSONDecodeError as e:
        typer.echo(f"❌ Invalid JSON in {landmarks_file}: {e}", err=True)
        raise typer.Exit(1)
    if isinstance(data, dict):
        data = data.get("landmarks")

    try:
        classifier = GestureClassifier(
            fold_ratio=fold_ratio if fold_ratio is not None else FOLD_RATIO,
            min_folded=min_folded if min_folded is not None else MIN_FOLDED_FINGERS,
        )
        report = classifier.explain(data)
    except (MalformedDetection, ValueError) as e:
        typer.echo(f"❌ {e}", err=True)
        raise typer.Exit(1)

    if as_json:
        typer.echo(json.dumps(report.to_dict(), indent=2))
        return

    typer.echo(f"🤚 {report.label.value}")
    typer.echo(f"   Palm size: {report.palm_size:.4f} (fold below {report.palm_size * classifier.fold_ratio:.4f})")
    for name, dist, folded in zip(("index", "middle", "ring", "pinky"), report.tip_distances, report.folded):
        typer.echo(f"   {name:7s} {dist:.4f}  {'folded' if folded else 'extended'}")


@app.command()
def benchmark(
    iterations: int = typer.Option(10000, min=1, help="Number of frames"),
):
    """Measure classification and reduction throughput on synthetic hands."""
    import numpy as np
    from tree_gesture.loop import DetectionLoop

    typer.echo(f"⚡ Running benchmark: {iterations} frames")

    rng = np.random.default_rng(42)
    hands = [rng.random((21, 3)).astype(np.float32) for _ in range(64)]
    loop = DetectionLoop()

    times = []
    for i in range(iterations):
        t0 = time.perf_counter()
        loop.step(float(i), hands[i % len(hands)])
        times.append(time.perf_counter() - t0)

    avg_ms = sum(times) / len(times) * 1000
    p95_ms = sorted(times)[int(len(times) * 0.95)] * 1000

    typer.echo(f"\n📊 Results:")
    typer.echo(f"   Average step: {avg_ms:.4f} ms")
    typer.echo(f"   P95 step:     {p95_ms:.4f} ms")
    typer.echo(f"   Throughput:   {1000 / avg_ms if avg_ms > 0 else 0:.0f} frames/s")


def main():
    app()


if __name__ == "__main__":
    main()
