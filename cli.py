"""CLI: argument parsing, model capability table, and run configuration."""

from __future__ import annotations

import argparse
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Sequence

# ── Constants ──────────────────────────────────────────────────────────────────

ENGINES = ("realsr", "realcugan")
DENOISE_ENGINES = ("realcugan",)
DENOISE_LEVELS = (-1, 0, 1, 2, 3)

DEFAULT_MODEL_SCALES = (4,)
DEFAULT_LOG_FILE = "upscaling.log"
DEFAULT_MODELS_DIR = "models"
DEFAULT_POLL_INTERVAL = 1.0

REALSR_MODEL_SCALES: dict[str, tuple[int, ...]] = {
    "models-ESRGAN-Nomos8kSC": (4,),
    "models-Real-ESRGAN": (4,),
    "models-Real-ESRGAN-anime": (4,),
    "models-Real-ESRGAN-animevideov3": (2, 3, 4),
    "models-Real-ESRGANv2-anime": (2, 4),
    "models-Real-ESRGANv3-anime": (2, 3, 4),
    "models-Real-ESRGAN-plus": (4,),
    "models-Real-ESRGAN-plus-anime": (4,),
    "models-RealeSR-general-v3": (4,),
    "models-RealeSR-general-v3-wdn": (4,),
    "models-Real-ESRGAN-SourceBook": (2,),
}

REALCUGAN_MODEL_SCALES: dict[str, tuple[int, ...]] = {
    "models-nose": (2,),
    "models-pro": (2, 3),
    "models-se": (2, 3, 4),
}

# Models without a denoise network: only -1 (or no -n at all) is valid.
NO_DENOISE_MODELS = ("models-nose",)

MODEL_SCALES: dict[str, tuple[int, ...]] = {**REALSR_MODEL_SCALES, **REALCUGAN_MODEL_SCALES}


@dataclass(frozen=True)
class RunConfig:
    input_video: Path
    engine: str
    model: str
    scale: int
    denoise: Optional[int]
    output_video: Path
    log_file: Path
    models_dir: Path
    work_dir: Optional[Path] = None
    poll_interval: float = DEFAULT_POLL_INTERVAL
    realsr_path: Optional[str] = None
    realcugan_path: Optional[str] = None

    @property
    def model_path(self) -> Path:
        return self.models_dir / self.model


# ── Functions ──────────────────────────────────────────────────────────────────


def get_supported_scales(model: str) -> tuple[int, ...]:
    """Return supported scales for a model; unknown models only support 4x."""
    return MODEL_SCALES.get(model, DEFAULT_MODEL_SCALES)


def _join_scales(scales: Sequence[int]) -> str:
    labels = [str(scale) for scale in scales]
    if len(labels) == 1:
        return labels[0]
    if len(labels) == 2:
        return f"{labels[0]} or {labels[1]}"
    return ", ".join(labels[:-1]) + f", or {labels[-1]}"


def validate_model_scale(model: str, scale: int, denoise: Optional[int] = None) -> None:
    """Reject scale/denoise combinations the model cannot produce."""
    supported = get_supported_scales(model)
    if scale not in supported:
        if model in MODEL_SCALES:
            raise ValueError(f"Scale for {model} must be {_join_scales(supported)}.")
        raise ValueError(f"Model {model} supports only scale {_join_scales(supported)}.")

    if model in NO_DENOISE_MODELS and denoise not in (None, -1):
        raise ValueError(f"{model} only supports no-denoise (-n -1).")


def validate_engine_denoise(engine: str, denoise: Optional[int]) -> None:
    if engine not in ENGINES:
        raise ValueError(f"Unsupported engine: {engine}")
    if engine in DENOISE_ENGINES and denoise is None:
        raise ValueError(f"{engine} requires -n <denoise>.")
    if denoise is not None and denoise not in DENOISE_LEVELS:
        raise ValueError("Denoise level must be between -1 and 3.")


def format_model_info() -> str:
    """Render the model capability table shown in --help."""
    lines = ["Available Models and Capabilities:", "", "[realsr-ncnn]"]
    width = max(len(name) for name in REALSR_MODEL_SCALES)
    for name, scales in REALSR_MODEL_SCALES.items():
        lines.append(f"  {name:<{width}} => scale: {', '.join(map(str, scales))}")

    lines.extend(["", "[realcugan-ncnn] (supports denoise)"])
    width = max(len(name) for name in REALCUGAN_MODEL_SCALES)
    for name, scales in REALCUGAN_MODEL_SCALES.items():
        scale_text = ", ".join(map(str, scales))
        if name in NO_DENOISE_MODELS:
            note = "(no-denoise only)"
        else:
            note = "with denoise levels 0-3"
        lines.append(f"  {name:<{width}} => scale: {scale_text} {note}")

    lines.append("")
    lines.append(f"Any other model name => scale: {_join_scales(DEFAULT_MODEL_SCALES)}")
    return "\n".join(lines)


def build_parser(require_flags: bool = True) -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="upscale-video",
        description="Upscale a video with realsr-ncnn or realcugan-ncnn",
        epilog=format_model_info(),
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )

    required = parser.add_argument_group("required")
    required.add_argument(
        "-i",
        dest="input_video",
        metavar="<input_video>",
        required=require_flags,
        help="Input video file",
    )
    required.add_argument(
        "-e",
        dest="engine",
        metavar="<engine>",
        required=require_flags,
        choices=ENGINES,
        help="Engine: realsr or realcugan",
    )
    required.add_argument(
        "-m",
        dest="model",
        metavar="<model>",
        required=require_flags,
        help="Model name (relative to the models directory)",
    )
    required.add_argument(
        "-s",
        dest="scale",
        metavar="<scale>",
        type=int,
        required=require_flags,
        help="Scale factor (1/2/3/4 depending on model)",
    )
    required.add_argument(
        "-o",
        dest="output",
        metavar="<output_name>",
        required=require_flags,
        help="Output file name (e.g., upscaled.mp4)",
    )

    optional = parser.add_argument_group("optional (realcugan only)")
    optional.add_argument(
        "-n",
        dest="denoise",
        metavar="<denoise>",
        type=int,
        default=None,
        help="Denoise level (-1 to 3)",
    )

    runtime = parser.add_argument_group("runtime")
    runtime.add_argument(
        "--realsr-path",
        type=str,
        default=None,
        help="Custom path to realsr-ncnn binary",
    )
    runtime.add_argument(
        "--realcugan-path",
        type=str,
        default=None,
        help="Custom path to realcugan-ncnn binary",
    )
    runtime.add_argument(
        "--models-dir",
        type=str,
        default=DEFAULT_MODELS_DIR,
        help="Directory holding model folders (default: %(default)s)",
    )
    runtime.add_argument(
        "--log-file",
        type=str,
        default=DEFAULT_LOG_FILE,
        help="Upscaler log file, truncated every run (default: %(default)s)",
    )
    runtime.add_argument(
        "--work-dir",
        type=str,
        default=None,
        help="Parent directory for temporary frame folders (default: system temp)",
    )
    runtime.add_argument(
        "--poll-interval",
        type=float,
        default=DEFAULT_POLL_INTERVAL,
        help="Seconds between progress updates (default: %(default)s)",
    )
    return parser


def parse_args(argv: Optional[Sequence[str]] = None) -> Optional[argparse.Namespace]:
    """Parse arguments; return None when usage was shown for an unknown option."""
    parser = build_parser()
    # Unknown options win over missing required ones, so scan leniently first.
    _, unknown = build_parser(require_flags=False).parse_known_args(argv)
    if unknown:
        print(f"Unknown option: {unknown[0]}")
        parser.print_help()
        return None
    return parser.parse_args(argv)


def build_run_config(args: argparse.Namespace) -> RunConfig:
    """Validate parsed arguments and freeze them into a RunConfig."""
    input_video = Path(args.input_video).expanduser().resolve()
    if not input_video.is_file():
        raise FileNotFoundError(f"Video not found: {args.input_video}")

    if args.poll_interval <= 0:
        raise ValueError("Poll interval must be > 0.")

    validate_engine_denoise(args.engine, args.denoise)
    validate_model_scale(args.model, args.scale, args.denoise)

    output_video = Path(args.output).expanduser().resolve()
    if output_video == input_video:
        raise ValueError("Output video path must be different from input video path.")

    return RunConfig(
        input_video=input_video,
        engine=args.engine,
        model=args.model,
        scale=args.scale,
        denoise=args.denoise,
        output_video=output_video,
        log_file=Path(args.log_file).expanduser().resolve(),
        models_dir=Path(args.models_dir).expanduser(),
        work_dir=Path(args.work_dir).expanduser().resolve() if args.work_dir else None,
        poll_interval=args.poll_interval,
        realsr_path=args.realsr_path,
        realcugan_path=args.realcugan_path,
    )
