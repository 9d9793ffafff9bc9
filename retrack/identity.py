"""Matching cameras from video files with cameras from a braidz archive."""

import os
from dataclasses import dataclass, field
from typing import List, Optional, Sequence

from .config import VideoSourceConfig
from .frame_source import MOVIE_FILENAME_RE, FrameSource
from .models import (
    Both,
    BraidzCamId,
    BraidzOnly,
    CameraIdentifier,
    MovieCamId,
    MovieOnly,
)
from .peek2 import Peek2


def cam_from_filename(filename: str) -> Optional[str]:
    """
    Extract the raw camera name from a movie file name.

    Example: "movie20211108_084523_Basler-22445994.mp4" -> "Basler-22445994"
    """
    stem = os.path.basename(filename).split(".")[0]
    match = MOVIE_FILENAME_RE.match(stem)
    if match is None:
        return None
    return match.group(3)


def movie_cam_id(video_cfg: VideoSourceConfig, frame_source: FrameSource) -> MovieOnly:
    """Build the identity of a video camera, with a fresh cursor over its frames."""
    filename = os.path.basename(video_cfg.filename)
    return MovieOnly(
        MovieCamId(
            full_path=video_cfg.filename,
            filename=filename,
            frame0_time=frame_source.frame0_time(),
            cfg_name=video_cfg.camera_name,
            title=frame_source.camera_name(),
            cam_from_filename=cam_from_filename(filename),
            reader=Peek2(frame_source.iter_frames()),
        )
    )


@dataclass
class ResolvedRoster:
    """Outcome of merging video cameras with archive cameras."""

    cameras: List[CameraIdentifier] = field(default_factory=list)
    # Archive cameras without a video file while videos drive the roster.
    unmatched_braidz: List[BraidzCamId] = field(default_factory=list)
    braidz_only: bool = False

    @property
    def is_empty(self) -> bool:
        return not self.cameras


def resolve_cameras(
    movie_ids: Sequence[CameraIdentifier],
    braidz_cams: Optional[Sequence[BraidzCamId]],
) -> ResolvedRoster:
    """
    Left-join video cameras with archive cameras on exact camera name.

    A video camera whose raw name (metadata title, else the name parsed from
    its file name) equals an archive camera id becomes a ``Both`` identity.
    When there are no video cameras, every archive camera becomes
    ``BraidzOnly``. The inputs are not modified.

    Args:
        movie_ids: Video camera identities, in configuration order
        braidz_cams: Archive roster, or None without an archive

    Returns:
        ResolvedRoster with cameras in video order (archive order when
        braidz-only)
    """
    if not movie_ids:
        if braidz_cams is None:
            return ResolvedRoster()
        return ResolvedRoster(
            cameras=[BraidzOnly(b) for b in braidz_cams],
            braidz_only=True,
        )

    cameras: List[CameraIdentifier] = list(movie_ids)
    matched = set()
    for braidz_cam in braidz_cams or []:
        for i, cam_id in enumerate(cameras):
            if isinstance(cam_id, MovieOnly) and cam_id.movie.raw_name() == braidz_cam.cam_id_str:
                cameras[i] = Both(cam_id.movie, braidz_cam)
                matched.add(braidz_cam)

    unmatched = [b for b in braidz_cams or [] if b not in matched]
    return ResolvedRoster(cameras=cameras, unmatched_braidz=unmatched)


def braidz_cam_ids(pairs) -> List[BraidzCamId]:
    """Convert (cam_id, camn) pairs from an archive roster."""
    return [BraidzCamId(cam_id_str=cam_id, camn=camn) for cam_id, camn in pairs]
