#!/usr/bin/env python3
"""
Video upscaler pipeline for realsr-ncnn / realcugan-ncnn.

This script extracts frames, upscales them with an external ncnn binary
while reporting progress, and rebuilds the final video with the original
audio track.
"""

from __future__ import annotations

import functools
import os
import re
import shutil
import subprocess
import sys
import tempfile
import time
from pathlib import Path
from typing import IO, Optional, Sequence

from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor

# ── Extracted modules (re-exported for callers and tests) ──────────────────────
from toolchain import (  # noqa: F401
    Toolchain,
    get_upscaler_binary_name,
    progress_write,
    resolve_toolchain,
    resolve_upscaler_binary,
    run_subprocess,
    start_background_process,
)
from cli import (  # noqa: F401
    DENOISE_ENGINES,
    ENGINES,
    MODEL_SCALES,
    RunConfig,
    build_run_config,
    format_model_info,
    parse_args,
    validate_engine_denoise,
    validate_model_scale,
)
from progress import (  # noqa: F401
    ProgressSnapshot,
    compute_progress,
    count_output_frames,
    format_eta,
    format_progress_line,
    monitor_upscale,
)

OTLP_ENDPOINT_ENV = "UPSCALE_VIDEO_OTLP_ENDPOINT"

tracer = None


def init_tracing() -> None:
    """Export spans over OTLP/HTTP when an endpoint is configured, else no-op."""
    global tracer
    if tracer is not None:
        return

    endpoint = os.environ.get(OTLP_ENDPOINT_ENV)
    if endpoint:
        resource = Resource.create({"service.name": "ncnn-video-upscale"})
        provider = TracerProvider(resource=resource)
        provider.add_span_processor(BatchSpanProcessor(OTLPSpanExporter(endpoint=endpoint)))
        trace.set_tracer_provider(provider)
    tracer = trace.get_tracer(__name__)


def _traced(func):
    """Decorator that wraps a function call in a tracing span."""
    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        if tracer is None:
            init_tracing()
        with tracer.start_as_current_span(func.__name__):
            return func(*args, **kwargs)

    return wrapper


DEFAULT_FPS = 23.98

TMP_FRAMES_DIRNAME = "tmp_frames"
OUT_FRAMES_DIRNAME = "out_frames"

INPUT_FRAME_PATTERN = "frame%08d.png"
INPUT_FRAME_GLOB = "frame*.png"
OUTPUT_FRAME_FORMAT = "jpg"
OUTPUT_FRAME_PATTERN = "frame%08d.jpg"

FPS_PATTERN = re.compile(r"(\d+(?:\.\d+)?) fps")


def parse_framerate(banner: str) -> float:
    """Return the first `<n> fps` value in ffmpeg's stream banner."""
    match = FPS_PATTERN.search(banner or "")
    if not match:
        return DEFAULT_FPS
    framerate = float(match.group(1))
    if framerate <= 0:
        return DEFAULT_FPS
    return framerate


@_traced
def detect_framerate(ffmpeg_bin: str, input_video: Path) -> float:
    # ffmpeg exits non-zero without an output file; only the banner matters.
    result = run_subprocess(
        [ffmpeg_bin, "-hide_banner", "-i", str(input_video)],
        check=False,
        capture_output=True,
    )
    return parse_framerate((result.stderr or "") + (result.stdout or ""))


@_traced
def extract_frames(ffmpeg_bin: str, input_video: Path, frames_dir: Path) -> int:
    """Extract every input frame into max-quality PNG files."""
    output_pattern = frames_dir / INPUT_FRAME_PATTERN
    cmd = [
        ffmpeg_bin,
        "-i",
        str(input_video),
        "-qscale:v",
        "1",
        "-qmin",
        "1",
        "-qmax",
        "1",
        "-fps_mode",
        "passthrough",
        "-start_number",
        "1",
        str(output_pattern),
        "-y",
        "-hide_banner",
        "-loglevel",
        "warning",
    ]
    run_subprocess(cmd)

    frame_count = sum(1 for _ in frames_dir.glob(INPUT_FRAME_GLOB))
    if frame_count == 0:
        raise RuntimeError("Frame extraction produced zero output frames.")
    return frame_count


def build_upscale_command(
    toolchain: Toolchain,
    config: RunConfig,
    input_dir: Path,
    output_dir: Path,
) -> list[str]:
    if config.engine in DENOISE_ENGINES and config.denoise is None:
        raise ValueError(f"{config.engine} requires -n <denoise>.")

    cmd = [
        str(toolchain.upscaler_binary),
        "-i",
        str(input_dir),
        "-o",
        str(output_dir),
        "-m",
        str(config.model_path),
        "-s",
        str(config.scale),
    ]

    if config.engine in DENOISE_ENGINES:
        cmd.extend(["-n", str(config.denoise)])

    cmd.extend(["-f", OUTPUT_FRAME_FORMAT])
    return cmd


def launch_upscaler(
    toolchain: Toolchain,
    config: RunConfig,
    input_dir: Path,
    output_dir: Path,
    log_handle: IO[str],
) -> subprocess.Popen:
    """Start the upscaler in the background; its output only goes to the log."""
    cmd = build_upscale_command(toolchain, config, input_dir, output_dir)
    return start_background_process(cmd, log_handle)


def check_upscale_result(
    returncode: Optional[int],
    snapshot: ProgressSnapshot,
    *,
    engine: str,
    log_file: Path,
) -> None:
    """Fail on a crashed upscaler and warn when frames are missing."""
    if returncode != 0:
        raise RuntimeError(f"{engine} exited with code {returncode}. See {log_file}")
    if snapshot.completed == 0:
        raise RuntimeError(f"{engine} produced zero output frames. See {log_file}")
    if snapshot.completed < snapshot.total:
        progress_write(
            f"Warning: only {snapshot.completed} of {snapshot.total} frames were "
            f"upscaled. See {log_file}"
        )


@_traced
def reassemble_video(
    ffmpeg_bin: str,
    frames_dir: Path,
    input_video: Path,
    output_video: Path,
    *,
    framerate: float,
) -> None:
    input_pattern = frames_dir / OUTPUT_FRAME_PATTERN
    cmd = [
        ffmpeg_bin,
        "-r",
        str(framerate),
        "-i",
        str(input_pattern),
        "-i",
        str(input_video),
        "-map",
        "0:v:0",
        "-map",
        "1:a:0?",
        "-c:a",
        "copy",
        "-c:v",
        "libx264",
        "-r",
        str(framerate),
        "-pix_fmt",
        "yuv420p",
        str(output_video),
        "-y",
        "-hide_banner",
        "-loglevel",
        "warning",
    ]
    run_subprocess(cmd)


def prepare_workspace(work_dir: Optional[Path]) -> Path:
    """Create a fresh workspace, under `work_dir` when one is given."""
    if work_dir is not None:
        work_dir.mkdir(parents=True, exist_ok=True)
    return Path(tempfile.mkdtemp(prefix="video_upscale_", dir=work_dir))


def cleanup_workspace(workspace_root: Path) -> None:
    shutil.rmtree(workspace_root, ignore_errors=True)


def reset_log_file(log_file: Path) -> None:
    log_file.parent.mkdir(parents=True, exist_ok=True)
    log_file.write_text("", encoding="utf-8")


def stop_process(process: subprocess.Popen) -> None:
    if process.poll() is not None:
        return
    process.terminate()
    try:
        process.wait(timeout=10)
    except subprocess.TimeoutExpired:
        process.kill()
        process.wait()


def format_time(seconds: float) -> str:
    hours = int(seconds // 3600)
    minutes = int((seconds % 3600) // 60)
    secs = seconds % 60
    if hours:
        return f"{hours}h {minutes}m {secs:.1f}s"
    if minutes:
        return f"{minutes}m {secs:.1f}s"
    return f"{secs:.1f}s"


def run_pipeline(config: RunConfig) -> int:
    toolchain = resolve_toolchain(
        config.engine,
        realsr_path=config.realsr_path,
        realcugan_path=config.realcugan_path,
    )
    config.output_video.parent.mkdir(parents=True, exist_ok=True)
    reset_log_file(config.log_file)

    workspace_root = prepare_workspace(config.work_dir)
    input_frames_dir = workspace_root / TMP_FRAMES_DIRNAME
    output_frames_dir = workspace_root / OUT_FRAMES_DIRNAME

    print("\n" + "=" * 60)
    print(f"Video Upscaler - {config.engine}")
    print("=" * 60)
    print(f"Input:  {config.input_video}")
    print(f"Output: {config.output_video}")
    print(f"Model:  {config.model}")
    print(f"Scale:  {config.scale}x")
    if config.denoise is not None:
        print(f"Denoise: {config.denoise}")
    print(f"Log:    {config.log_file}")
    print("=" * 60 + "\n")

    total_start = time.time()
    process: Optional[subprocess.Popen] = None
    try:
        input_frames_dir.mkdir(parents=True, exist_ok=True)
        output_frames_dir.mkdir(parents=True, exist_ok=True)

        framerate = detect_framerate(toolchain.ffmpeg, config.input_video)

        print("[1/4] Extracting frames from video...")
        frame_count = extract_frames(toolchain.ffmpeg, config.input_video, input_frames_dir)
        print(f"  Frames: {frame_count} @ {framerate} fps")

        print(f"[2/4] Upscaling {frame_count} frames with {config.engine}...")
        with config.log_file.open("a", encoding="utf-8") as log_handle:
            start_time = time.monotonic()
            process = launch_upscaler(
                toolchain,
                config,
                input_frames_dir,
                output_frames_dir,
                log_handle,
            )
            final = monitor_upscale(
                process,
                output_frames_dir,
                frame_count,
                start_time=start_time,
                poll_interval=config.poll_interval,
            )
        upscale_elapsed = time.monotonic() - start_time
        check_upscale_result(
            process.returncode,
            final,
            engine=config.engine,
            log_file=config.log_file,
        )
        fps_processed = final.completed / upscale_elapsed if upscale_elapsed > 0 else 0.0
        print(f"  Time: {format_time(upscale_elapsed)} ({fps_processed:.2f} frames/sec)")

        print("[3/4] Rebuilding video...")
        reassemble_video(
            toolchain.ffmpeg,
            output_frames_dir,
            config.input_video,
            config.output_video,
            framerate=framerate,
        )

        print("\n" + "=" * 60)
        print("Complete!")
        print(f"Total time: {format_time(time.time() - total_start)}")
        print(f"Output: {config.output_video}")
        if config.output_video.exists():
            output_size_mb = config.output_video.stat().st_size / (1024 * 1024)
            print(f"Output size: {output_size_mb:.1f} MB")
        print("=" * 60 + "\n")
        return 0
    finally:
        if process is not None:
            stop_process(process)
        print("[4/4] Cleaning up...")
        cleanup_workspace(workspace_root)


@_traced
def main(argv: Optional[Sequence[str]] = None) -> int:
    raw_argv = list(argv) if argv is not None else sys.argv[1:]
    args = parse_args(raw_argv)
    if args is None:
        return 0

    try:
        config = build_run_config(args)
        return run_pipeline(config)
    except KeyboardInterrupt:
        print("Interrupted by user.", file=sys.stderr)
        return 130
    except Exception as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    init_tracing()
    raise SystemExit(main())
