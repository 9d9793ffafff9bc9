"""Run configuration for retrack.

Configuration is stored as TOML, for example::

    input_braidz = "20211108_084523.braidz"
    sync_threshold_microseconds = 3000
    max_num_frames = 500

    [[input_video]]
    filename = "movie20211108_084523_Basler-22445994.mp4"

    [[output]]
    type = "video"
    filename = "out/composite.mp4"

Relative paths are resolved against the directory holding the TOML file.
"""

import enum
import os
import tomllib
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import List, Optional, Union

DEFAULT_COMPOSITE_MARGIN_PIXELS = 5
DEFAULT_FEATURE_RADIUS = 10
DEFAULT_LOG_INTERVAL_FRAMES = 100

_INT_FIELDS = (
    "frame_duration_microsecs",
    "sync_threshold_microseconds",
    "max_num_frames",
    "skip_n_first_output_frames",
    "log_interval_frames",
)


class ConfigError(ValueError):
    """Raised when a configuration cannot be used."""


class FeatureDetectionMethod(enum.Enum):
    """How 2D points are obtained for each camera frame."""

    # Use the points already stored in the braidz archive.
    COPY_EXISTING = "copy_existing"


@dataclass
class VideoSourceConfig:
    filename: str
    camera_name: Optional[str] = None


@dataclass
class VideoOutputConfig:
    filename: str
    composite_margin_pixels: int = DEFAULT_COMPOSITE_MARGIN_PIXELS
    feature_radius: int = DEFAULT_FEATURE_RADIUS
    fps: Optional[float] = None


@dataclass
class DebugOutputConfig:
    filename: str


@dataclass
class BraidzOutputConfig:
    filename: str


OutputConfig = Union[VideoOutputConfig, DebugOutputConfig, BraidzOutputConfig]

_OUTPUT_TYPES = {
    "video": VideoOutputConfig,
    "debug_txt": DebugOutputConfig,
    "braidz": BraidzOutputConfig,
}


@dataclass
class ProcessingConfig:
    feature_detection_method: FeatureDetectionMethod = FeatureDetectionMethod.COPY_EXISTING


@dataclass
class RetrackConfig:
    """Everything needed for one reconstruction run."""

    input_braidz: Optional[str] = None
    input_video: List[VideoSourceConfig] = field(default_factory=list)
    output: List[OutputConfig] = field(default_factory=list)
    processing: ProcessingConfig = field(default_factory=ProcessingConfig)
    frame_duration_microsecs: Optional[int] = None
    sync_threshold_microseconds: Optional[int] = None
    max_num_frames: Optional[int] = None
    skip_n_first_output_frames: Optional[int] = None
    log_interval_frames: Optional[int] = None

    @property
    def effective_log_interval(self) -> int:
        if self.log_interval_frames is None:
            return DEFAULT_LOG_INTERVAL_FRAMES
        return self.log_interval_frames

    def check_types(self) -> None:
        """Raise ConfigError for values of the wrong type (TOML is loosely typed)."""
        for name in _INT_FIELDS:
            _require_int(name, getattr(self, name))
        _require_str("input_braidz", self.input_braidz)
        for i, video in enumerate(self.input_video):
            _require_str(f"input_video[{i}].filename", video.filename, optional=False)
            _require_str(f"input_video[{i}].camera_name", video.camera_name)
        for i, output in enumerate(self.output):
            _require_str(f"output[{i}].filename", output.filename, optional=False)
            if isinstance(output, VideoOutputConfig):
                _require_int(f"output[{i}].composite_margin_pixels",
                             output.composite_margin_pixels, optional=False)
                _require_int(f"output[{i}].feature_radius", output.feature_radius,
                             optional=False)
                if output.fps is not None and (isinstance(output.fps, bool)
                                               or not isinstance(output.fps, (int, float))):
                    raise ConfigError(f"output[{i}].fps must be a number, got {output.fps!r}")

    def validate(self, check_files: bool = True) -> "RetrackConfig":
        """
        Check the configuration for values the pipeline cannot use.

        Args:
            check_files: If True, require every input file to exist

        Returns:
            self, to allow chaining

        Raises:
            ConfigError: on the first problem found
        """
        self.check_types()
        for name in ("frame_duration_microsecs", "sync_threshold_microseconds",
                     "log_interval_frames"):
            value = getattr(self, name)
            if value is not None and value <= 0:
                raise ConfigError(f"{name} must be positive, got {value}")
        for name in ("max_num_frames", "skip_n_first_output_frames"):
            value = getattr(self, name)
            if value is not None and value < 0:
                raise ConfigError(f"{name} must not be negative, got {value}")

        if check_files:
            if self.input_braidz is not None and not os.path.exists(self.input_braidz):
                raise ConfigError(f"braidz archive not found: {self.input_braidz}")
            for video in self.input_video:
                if not os.path.exists(video.filename):
                    raise ConfigError(f"video file not found: {video.filename}")

        seen = set()
        for output in self.output:
            if output.filename in seen:
                raise ConfigError(f"duplicate output filename: {output.filename}")
            seen.add(output.filename)
        return self


def _require_int(name: str, value, optional: bool = True) -> None:
    if value is None and optional:
        return
    if isinstance(value, bool) or not isinstance(value, int):
        raise ConfigError(f"{name} must be an integer, got {value!r}")


def _require_str(name: str, value, optional: bool = True) -> None:
    if value is None and optional:
        return
    if not isinstance(value, str):
        raise ConfigError(f"{name} must be a string, got {value!r}")


def _build(cls, data: dict, context: str):
    """Instantiate a config dataclass, rejecting unknown keys."""
    if not isinstance(data, dict):
        raise ConfigError(f"{context}: expected a table, got {type(data).__name__}")
    known = {f.name for f in fields(cls)}
    unknown = sorted(set(data) - known)
    if unknown:
        raise ConfigError(f"{context}: unknown key(s): {', '.join(unknown)}")
    try:
        return cls(**data)
    except TypeError as e:
        raise ConfigError(f"{context}: {e}") from e


def _resolve(path: str, base_dir: Optional[Path]) -> str:
    if base_dir is None or os.path.isabs(path):
        return path
    return str(base_dir / path)


def _parse_output(data: dict, index: int) -> OutputConfig:
    context = f"output[{index}]"
    if not isinstance(data, dict) or "type" not in data:
        raise ConfigError(f"{context}: missing 'type'")
    data = dict(data)
    kind = data.pop("type")
    cls = _OUTPUT_TYPES.get(kind) if isinstance(kind, str) else None
    if cls is None:
        raise ConfigError(
            f"{context}: unknown output type '{kind}' "
            f"(expected one of {', '.join(_OUTPUT_TYPES)})"
        )
    return _build(cls, data, context)


def output_type_name(output: OutputConfig) -> str:
    for name, cls in _OUTPUT_TYPES.items():
        if isinstance(output, cls):
            return name
    raise TypeError(f"Unknown output config: {output!r}")


def parse_config(data: dict, base_dir: Optional[Path] = None) -> RetrackConfig:
    """
    Build a RetrackConfig from a parsed TOML document.

    Args:
        data: Parsed TOML as a dict
        base_dir: Directory used to resolve relative paths (None to keep as-is)

    Returns:
        Unvalidated RetrackConfig
    """
    data = dict(data)
    videos = [
        _build(VideoSourceConfig, v, f"input_video[{i}]")
        for i, v in enumerate(data.pop("input_video", []))
    ]
    outputs = [_parse_output(o, i) for i, o in enumerate(data.pop("output", []))]

    processing_data = dict(data.pop("processing", {}))
    method = processing_data.pop("feature_detection_method", "copy_existing")
    try:
        processing_data["feature_detection_method"] = FeatureDetectionMethod(method)
    except ValueError as e:
        raise ConfigError(f"processing: unknown feature_detection_method '{method}'") from e
    processing = _build(ProcessingConfig, processing_data, "processing")

    cfg = _build(RetrackConfig, data, "config")
    cfg.input_video = videos
    cfg.output = outputs
    cfg.processing = processing
    cfg.check_types()

    if cfg.input_braidz is not None:
        cfg.input_braidz = _resolve(cfg.input_braidz, base_dir)
    for video in cfg.input_video:
        video.filename = _resolve(video.filename, base_dir)
    for output in cfg.output:
        output.filename = _resolve(output.filename, base_dir)
    return cfg


def load_config(config_path: str) -> RetrackConfig:
    """Read and validate a TOML configuration file."""
    path = Path(config_path)
    try:
        with open(path, "rb") as f:
            data = tomllib.load(f)
    except tomllib.TOMLDecodeError as e:
        raise ConfigError(f"could not parse {config_path}: {e}") from e
    return parse_config(data, base_dir=path.resolve().parent).validate()


_TOML_ESCAPES = {
    "\\": "\\\\",
    '"': '\\"',
    "\b": "\\b",
    "\n": "\\n",
    "\f": "\\f",
    "\r": "\\r",
}


def _toml_string(value: str) -> str:
    """Quote a TOML basic string, escaping control characters (tab is legal as is)."""
    out = []
    for ch in value:
        if ch in _TOML_ESCAPES:
            out.append(_TOML_ESCAPES[ch])
        elif ch != "\t" and (ord(ch) < 0x20 or ord(ch) == 0x7F):
            out.append(f"\\u{ord(ch):04X}")
        else:
            out.append(ch)
    return '"' + "".join(out) + '"'


def format_config(cfg: RetrackConfig, base_dir: Optional[Path] = None) -> str:
    """
    Serialize a config as TOML.

    Paths under base_dir are written relative to it so the file can be
    moved along with its data.
    """

    def rel(p: str) -> str:
        if base_dir is not None:
            try:
                return Path(p).resolve().relative_to(Path(base_dir).resolve()).as_posix()
            except ValueError:
                pass
        return p

    def quote(value) -> str:
        if isinstance(value, str):
            return _toml_string(value)
        if isinstance(value, bool):
            return "true" if value else "false"
        return str(value)

    lines = []
    if cfg.input_braidz is not None:
        lines.append(f"input_braidz = {quote(rel(cfg.input_braidz))}")
    for name in ("frame_duration_microsecs", "sync_threshold_microseconds",
                 "max_num_frames", "skip_n_first_output_frames", "log_interval_frames"):
        value = getattr(cfg, name)
        if value is not None:
            lines.append(f"{name} = {value}")

    for video in cfg.input_video:
        lines.append("")
        lines.append("[[input_video]]")
        lines.append(f"filename = {quote(rel(video.filename))}")
        if video.camera_name is not None:
            lines.append(f"camera_name = {quote(video.camera_name)}")

    for output in cfg.output:
        lines.append("")
        lines.append("[[output]]")
        lines.append(f"type = {quote(output_type_name(output))}")
        lines.append(f"filename = {quote(rel(output.filename))}")
        for f in fields(output):
            if f.name == "filename":
                continue
            value = getattr(output, f.name)
            if value is not None:
                lines.append(f"{f.name} = {quote(value)}")

    return "\n".join(lines) + "\n"
