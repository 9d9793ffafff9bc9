"""Retrack - reconstruct synchronized multi-camera video and 2D tracking output."""

from .models import (
    FrameData,
    Data2dRow,
    MovieCamId,
    BraidzCamId,
    MovieOnly,
    BraidzOnly,
    Both,
    CameraIdentifier,
    OutTimepointPerCamera,
    BraidzFrameInfo,
    SyncedPictures,
    best_name,
    camn,
)
from .peek2 import Peek2
from .config import (
    ConfigError,
    FeatureDetectionMethod,
    RetrackConfig,
    VideoSourceConfig,
    VideoOutputConfig,
    DebugOutputConfig,
    BraidzOutputConfig,
    load_config,
    parse_config,
)
from .auto_config import auto_config
from .frame_source import FrameSource, VideoFileSource, SyntheticFrameSource
from .braidz import BraidzArchive, BraidzError, open_braidz, build_data2d_index
from .identity import ResolvedRoster, resolve_cameras, cam_from_filename
from .render import CameraArena, CameraSource, PerCamRender, PerCamRenderFrame
from .aligner import synchronize_readers_from
from .merge import BraidzMomentIter, SyncedIter, build_moment_iter, resolve_timing
from .fusion import gather_frame_data
from .pipeline import run_config

__all__ = [
    # Models
    "FrameData",
    "Data2dRow",
    "MovieCamId",
    "BraidzCamId",
    "MovieOnly",
    "BraidzOnly",
    "Both",
    "CameraIdentifier",
    "OutTimepointPerCamera",
    "BraidzFrameInfo",
    "SyncedPictures",
    "best_name",
    "camn",
    # Cursor
    "Peek2",
    # Configuration
    "ConfigError",
    "FeatureDetectionMethod",
    "RetrackConfig",
    "VideoSourceConfig",
    "VideoOutputConfig",
    "DebugOutputConfig",
    "BraidzOutputConfig",
    "load_config",
    "parse_config",
    "auto_config",
    # Inputs
    "FrameSource",
    "VideoFileSource",
    "SyntheticFrameSource",
    "BraidzArchive",
    "BraidzError",
    "open_braidz",
    "build_data2d_index",
    # Camera roster
    "ResolvedRoster",
    "resolve_cameras",
    "cam_from_filename",
    "CameraArena",
    "CameraSource",
    "PerCamRender",
    "PerCamRenderFrame",
    # Synchronization
    "synchronize_readers_from",
    "BraidzMomentIter",
    "SyncedIter",
    "build_moment_iter",
    "resolve_timing",
    # Fusion and pipeline
    "gather_frame_data",
    "run_config",
]
