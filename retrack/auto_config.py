"""Generate a run configuration from the contents of a directory."""

import os
from pathlib import Path
from typing import Optional

from .config import (
    ConfigError,
    DebugOutputConfig,
    RetrackConfig,
    VideoOutputConfig,
    VideoSourceConfig,
)

VIDEO_EXTENSIONS = (".mp4", ".mkv", ".avi", ".mov")
OUTPUT_DIRNAME = "retrack-output"


def auto_config(directory: str, output_dir: Optional[str] = None) -> RetrackConfig:
    """
    Build a configuration from the braidz archive and movies in a directory.

    Movies are files named ``movie*`` with a video extension. At most one
    ``.braidz`` may be present. Outputs (a composite video and a debug text
    file) go to ``<directory>/retrack-output`` unless output_dir is given.

    Raises:
        ConfigError: If the directory holds no usable input or several archives
    """
    root = Path(directory)
    if not root.is_dir():
        raise ConfigError(f"not a directory: {directory}")

    braidz_files = sorted(p for p in root.iterdir() if p.name.endswith(".braidz"))
    if len(braidz_files) > 1:
        names = ", ".join(p.name for p in braidz_files)
        raise ConfigError(f"more than one braidz archive in {directory}: {names}")

    movies = sorted(
        p for p in root.iterdir()
        if p.is_file() and p.name.startswith("movie") and p.suffix.lower() in VIDEO_EXTENSIONS
    )
    if not braidz_files and not movies:
        raise ConfigError(f"no braidz archive or movie files found in {directory}")

    out = Path(output_dir) if output_dir is not None else root / OUTPUT_DIRNAME
    stem = braidz_files[0].name[:-len(".braidz")] if braidz_files else "retrack"

    return RetrackConfig(
        input_braidz=str(braidz_files[0]) if braidz_files else None,
        input_video=[VideoSourceConfig(filename=str(p)) for p in movies],
        output=[
            VideoOutputConfig(filename=os.path.join(out, f"{stem}_composite.mp4")),
            DebugOutputConfig(filename=os.path.join(out, f"{stem}_debug.txt")),
        ],
    )
