"""Toolchain: binary resolution, subprocess wrappers, and progress output."""

from __future__ import annotations

import os
import platform
import shutil
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import IO, Optional, Sequence

from tqdm import tqdm

UPSCALER_BINARY_NAMES = {
    "realsr": "realsr-ncnn",
    "realcugan": "realcugan-ncnn",
}


@dataclass(frozen=True)
class Toolchain:
    ffmpeg: str
    upscaler_binary: Path


def progress_write(message: str) -> None:
    """Write a message without clobbering an active progress line."""
    tqdm.write(message)


def run_subprocess(
    cmd: Sequence[str],
    *,
    check: bool = True,
    capture_output: bool = False,
    timeout: Optional[float] = None,
) -> subprocess.CompletedProcess[str]:
    return subprocess.run(
        [str(part) for part in cmd],
        check=check,
        capture_output=capture_output,
        text=True,
        timeout=timeout,
    )


def start_background_process(cmd: Sequence[str], log_handle: IO[str]) -> subprocess.Popen:
    """Start a process that appends stdout and stderr to an open log file."""
    return subprocess.Popen(
        [str(part) for part in cmd],
        stdout=log_handle,
        stderr=subprocess.STDOUT,
        stdin=subprocess.DEVNULL,
    )


def get_upscaler_binary_name(engine: str) -> str:
    """Return the expected upscaler binary name for the engine and OS."""
    try:
        name = UPSCALER_BINARY_NAMES[engine]
    except KeyError:
        raise ValueError(f"Unsupported engine: {engine}") from None
    if platform.system().lower() == "windows":
        return f"{name}.exe"
    return name


def _is_executable(candidate: Path) -> bool:
    if not candidate.is_file():
        return False
    if platform.system().lower() == "windows":
        return True
    return os.access(candidate, os.X_OK)


def resolve_upscaler_binary(
    engine: str,
    custom_path: Optional[str],
    search_root: Optional[Path] = None,
) -> Path:
    """Resolve the upscaler from a custom path, the working directory, or PATH."""
    if search_root is None:
        search_root = Path.cwd()

    if custom_path:
        candidate = Path(custom_path).expanduser().resolve()
        if not candidate.is_file():
            raise FileNotFoundError(f"{engine} binary not found at: {candidate}")
        return candidate

    binary_name = get_upscaler_binary_name(engine)

    local_binary = search_root / binary_name
    if _is_executable(local_binary):
        return local_binary.resolve()

    system_binary = shutil.which(binary_name)
    if system_binary:
        return Path(system_binary).resolve()

    raise FileNotFoundError(
        f"Unable to locate {binary_name}. Place it in the working directory, "
        f"install it in PATH, or pass --{engine}-path explicitly."
    )


def resolve_toolchain(
    engine: str,
    *,
    realsr_path: Optional[str] = None,
    realcugan_path: Optional[str] = None,
) -> Toolchain:
    """Resolve runtime binaries and raise clear dependency errors."""
    ffmpeg_bin = shutil.which("ffmpeg")
    if not ffmpeg_bin:
        raise FileNotFoundError(
            "Missing required dependency: ffmpeg. "
            "Install it with your system package manager."
        )

    custom_path = realsr_path if engine == "realsr" else realcugan_path
    upscaler_binary = resolve_upscaler_binary(engine, custom_path, Path.cwd())

    return Toolchain(ffmpeg=ffmpeg_bin, upscaler_binary=upscaler_binary)
