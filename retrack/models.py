"""Data models for retrack."""

import math
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import TYPE_CHECKING, List, Optional, Union

import numpy as np

if TYPE_CHECKING:
    from .peek2 import Peek2


def timestamp_to_datetime(ts: float) -> datetime:
    """Convert seconds since the Unix epoch to an aware UTC datetime."""
    return datetime.fromtimestamp(ts, tz=timezone.utc)


def datetime_to_f64(dt: datetime) -> float:
    """Convert an aware datetime to seconds since the Unix epoch."""
    return dt.timestamp()


@dataclass(frozen=True)
class FrameData:
    """A single decoded frame from a video file."""

    timestamp: datetime  # Host timestamp (UTC)
    image: np.ndarray  # Mono8 (H, W) or RGB8 (H, W, 3)
    frame_index: int = 0


@dataclass(frozen=True)
class Data2dRow:
    """One 2D detection row from a braidz archive."""

    camn: int
    frame: int
    timestamp: float  # Trigger timestamp, NaN when unknown
    cam_received_timestamp: float
    x: float
    y: float
    area: float = math.nan
    frame_pt_idx: int = 0

    @property
    def cam_received_datetime(self) -> Optional[datetime]:
        if not math.isfinite(self.cam_received_timestamp):
            return None
        return timestamp_to_datetime(self.cam_received_timestamp)


@dataclass
class MovieCamId:
    """Camera identified by a video file."""

    full_path: str
    filename: str  # File name without directory
    frame0_time: Optional[datetime]
    cfg_name: Optional[str] = None  # Name given in configuration
    title: Optional[str] = None  # Name stored in the video metadata
    cam_from_filename: Optional[str] = None  # Parsed from movieYYYYMMDD_HHMMSS_<name>
    reader: Optional["Peek2"] = field(default=None, compare=False, repr=False)

    def raw_name(self) -> Optional[str]:
        """Camera name as recorded by the acquisition software."""
        if self.title is not None:
            return self.title
        if self.cam_from_filename is not None:
            return self.cam_from_filename
        return None


@dataclass(frozen=True)
class BraidzCamId:
    """Camera identified by a braidz archive."""

    cam_id_str: str
    camn: int  # Archive join key


@dataclass
class MovieOnly:
    movie: MovieCamId


@dataclass
class BraidzOnly:
    braidz: BraidzCamId


@dataclass
class Both:
    movie: MovieCamId
    braidz: BraidzCamId


CameraIdentifier = Union[MovieOnly, BraidzOnly, Both]


def _unknown_identifier(cam_id) -> TypeError:
    return TypeError(f"Unknown camera identifier: {cam_id!r}")


def movie_of(cam_id: CameraIdentifier) -> Optional[MovieCamId]:
    """Return the video half of an identity, if any."""
    if isinstance(cam_id, (MovieOnly, Both)):
        return cam_id.movie
    if isinstance(cam_id, BraidzOnly):
        return None
    raise _unknown_identifier(cam_id)


def braidz_of(cam_id: CameraIdentifier) -> Optional[BraidzCamId]:
    """Return the archive half of an identity, if any."""
    if isinstance(cam_id, (BraidzOnly, Both)):
        return cam_id.braidz
    if isinstance(cam_id, MovieOnly):
        return None
    raise _unknown_identifier(cam_id)


def best_name(cam_id: CameraIdentifier) -> str:
    """
    Resolve the display name of a camera.

    Video cameras prefer, in order: the configured name, the camera name
    saved in the file metadata, and the file name. Archive-only cameras use
    the archive id string.
    """
    movie = movie_of(cam_id)
    if movie is not None:
        if movie.cfg_name is not None:
            return movie.cfg_name
        if movie.title is not None:
            return movie.title
        return movie.filename
    return cam_id.braidz.cam_id_str


def raw_name(cam_id: CameraIdentifier) -> str:
    """Name used to match cameras across sources and label output rows."""
    movie = movie_of(cam_id)
    if movie is not None:
        name = movie.raw_name()
        return name if name is not None else best_name(cam_id)
    return cam_id.braidz.cam_id_str


def frame0_time(cam_id: CameraIdentifier) -> Optional[datetime]:
    movie = movie_of(cam_id)
    if movie is None:
        return None
    return movie.frame0_time


def camn(cam_id: CameraIdentifier) -> Optional[int]:
    """Archive camera number, or None for video-only cameras."""
    braidz = braidz_of(cam_id)
    return braidz.camn if braidz is not None else None


@dataclass
class OutTimepointPerCamera:
    """One camera's contribution to a synchronized moment."""

    timestamp: datetime
    image: Optional[np.ndarray] = None  # None if no frame within tolerance
    this_cam_this_frame: List[Data2dRow] = field(default_factory=list)


@dataclass(frozen=True)
class BraidzFrameInfo:
    """Extra timing data available when a braidz archive drives sync."""

    frame_num: int
    trigger_timestamp: Optional[float]


@dataclass
class SyncedPictures:
    """A synchronized moment with one entry per camera, in roster order."""

    timestamp: datetime
    camera_pictures: List[OutTimepointPerCamera]
    braidz_info: Optional[BraidzFrameInfo] = None
