"""Progress: frame-count polling, throughput and ETA for a running upscaler."""

from __future__ import annotations

import sys
import time
from dataclasses import dataclass
from pathlib import Path
from typing import IO, Callable, Optional, Protocol

from tqdm import tqdm

OUTPUT_FRAME_GLOB = "*.jpg"
ETA_PLACEHOLDER = "--m --s"


class PollableProcess(Protocol):
    def poll(self) -> Optional[int]: ...


@dataclass(frozen=True)
class ProgressSnapshot:
    completed: int
    total: int
    elapsed: float
    percent: int
    rate: Optional[float]
    eta_seconds: Optional[float]


def count_output_frames(output_dir: Path, pattern: str = OUTPUT_FRAME_GLOB) -> int:
    """Count produced frames; listing order is irrelevant."""
    if not output_dir.is_dir():
        return 0
    return sum(1 for _ in output_dir.glob(pattern))


def compute_progress(total: int, completed: int, elapsed: float) -> ProgressSnapshot:
    """
    Derive percentage, rate and ETA from one observation.

    Rate and ETA stay undefined until at least one frame exists and some
    time has elapsed.
    """
    percent = completed * 100 // total if total > 0 else 0

    rate: Optional[float] = None
    eta_seconds: Optional[float] = None
    if completed > 0 and elapsed > 0:
        rate = completed / elapsed
        remaining = max(total - completed, 0)
        eta_seconds = remaining / rate

    return ProgressSnapshot(
        completed=completed,
        total=total,
        elapsed=elapsed,
        percent=percent,
        rate=rate,
        eta_seconds=eta_seconds,
    )


def format_eta(seconds: Optional[float]) -> str:
    if seconds is None:
        return ETA_PLACEHOLDER
    minutes, secs = divmod(max(seconds, 0.0), 60)
    rounded = round(secs)
    if rounded == 60:
        minutes += 1
        rounded = 0
    return f"{int(minutes)}m {rounded}s"


def format_progress_line(snapshot: ProgressSnapshot) -> str:
    return (
        f"Upscaling: {snapshot.percent}% ({snapshot.completed}/{snapshot.total}) "
        f"| ETA: {format_eta(snapshot.eta_seconds)}"
    )


def format_final_line(snapshot: ProgressSnapshot) -> str:
    # Process has exited; nothing is left to wait for.
    return (
        f"Upscaling: {snapshot.percent}% ({snapshot.completed}/{snapshot.total}) "
        f"| ETA: {format_eta(0.0)}"
    )


def monitor_upscale(
    process: PollableProcess,
    output_dir: Path,
    total_frames: int,
    *,
    start_time: float,
    poll_interval: float = 1.0,
    clock: Callable[[], float] = time.monotonic,
    sleep: Callable[[float], None] = time.sleep,
    file: Optional[IO[str]] = None,
) -> ProgressSnapshot:
    """
    Redraw one status line until `process` exits, then report the final count.

    `start_time` must come from the same `clock`. The exit status is left to
    the caller; the final line reflects frames actually present on disk.
    """
    if file is None:
        file = sys.stdout
    status = tqdm(
        total=total_frames,
        desc=format_progress_line(compute_progress(total_frames, 0, 0.0)),
        bar_format="{desc}",
        file=file,
        leave=True,
    )
    try:
        while process.poll() is None:
            completed = count_output_frames(output_dir)
            snapshot = compute_progress(total_frames, completed, clock() - start_time)
            status.set_description_str(format_progress_line(snapshot))
            sleep(poll_interval)

        completed = count_output_frames(output_dir)
        final = compute_progress(total_frames, completed, clock() - start_time)
        status.set_description_str(format_final_line(final))
        return final
    finally:
        status.close()
