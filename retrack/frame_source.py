"""Frame sources: per-camera video inputs yielding timestamped frames.

A frame source reports the image size, an optional camera name embedded in
the file, the absolute time of its first frame, and produces its frames
exactly once as a lazy iterator.
"""

import os
import re
from datetime import datetime, timedelta, timezone
from typing import Iterator, List, Optional, Sequence, Tuple

import cv2
import numpy as np
from moviepy.video.io.ffmpeg_reader import ffmpeg_parse_infos

from .models import FrameData

# movie20211108_084523_Basler-22445994.mp4
MOVIE_FILENAME_RE = re.compile(r"^movie(\d{8})_(\d{6})_(.*)$")


def frame0_time_from_filename(filename: str) -> Optional[datetime]:
    """
    Parse the recording start time from a movieYYYYMMDD_HHMMSS_<cam> file name.

    The time is interpreted as UTC. Returns None if the name does not match.
    """
    stem = os.path.basename(filename).split(".")[0]
    match = MOVIE_FILENAME_RE.match(stem)
    if match is None:
        return None
    try:
        naive = datetime.strptime(match.group(1) + match.group(2), "%Y%m%d%H%M%S")
    except ValueError:
        return None
    return naive.replace(tzinfo=timezone.utc)


def _parse_creation_time(value: str) -> Optional[datetime]:
    try:
        dt = datetime.fromisoformat(value.strip())
    except ValueError:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def read_container_metadata(path: str) -> dict:
    """Return the container-level metadata tags of a video file (lowercase keys)."""
    infos = ffmpeg_parse_infos(path)
    metadata = infos.get("metadata") or {}
    return {str(k).strip().lower(): str(v).strip() for k, v in metadata.items()}


class FrameSource:
    """Interface implemented by all frame sources."""

    width: int
    height: int

    def camera_name(self) -> Optional[str]:
        raise NotImplementedError

    def frame0_time(self) -> Optional[datetime]:
        raise NotImplementedError

    def iter_frames(self) -> Iterator[FrameData]:
        raise NotImplementedError

    def close(self) -> None:
        """Release decoder resources; safe to call more than once."""


class VideoFileSource(FrameSource):
    """Frame source decoding a video file with OpenCV."""

    def __init__(self, path: str, metadata_reader=read_container_metadata) -> None:
        """
        Open a video file.

        Args:
            path: Video file path
            metadata_reader: Function returning container metadata tags
                (for testing injection)

        Raises:
            ValueError: If the video cannot be opened
        """
        self.path = path
        self._video = cv2.VideoCapture(path)
        if not self._video.isOpened():
            raise ValueError(f"Could not open video: {path}")
        self.width = int(self._video.get(cv2.CAP_PROP_FRAME_WIDTH))
        self.height = int(self._video.get(cv2.CAP_PROP_FRAME_HEIGHT))
        self.fps = self._video.get(cv2.CAP_PROP_FPS)
        self._metadata = metadata_reader(path)
        self._iterated = False

    def camera_name(self) -> Optional[str]:
        title = self._metadata.get("title")
        return title or None

    def frame0_time(self) -> Optional[datetime]:
        creation_time = self._metadata.get("creation_time")
        if creation_time:
            parsed = _parse_creation_time(creation_time)
            if parsed is not None:
                return parsed
        return frame0_time_from_filename(self.path)

    def iter_frames(self) -> Iterator[FrameData]:
        if self._iterated:
            raise RuntimeError(f"frames of {self.path} were already iterated")
        self._iterated = True
        return self._generate()

    def _generate(self) -> Iterator[FrameData]:
        # Without a known start time, timestamps are relative to the epoch.
        t0 = self.frame0_time() or datetime.fromtimestamp(0, tz=timezone.utc)
        index = 0
        try:
            while True:
                ret, frame = self._video.read()
                if not ret:
                    break
                msec = self._video.get(cv2.CAP_PROP_POS_MSEC)
                if msec <= 0 and index > 0 and self.fps > 0:
                    msec = index * 1000.0 / self.fps
                # OpenCV reads as BGR, convert to RGB
                image = cv2.cvtColor(frame, cv2.COLOR_BGR2RGB)
                yield FrameData(
                    timestamp=t0 + timedelta(milliseconds=msec),
                    image=image,
                    frame_index=index,
                )
                index += 1
        finally:
            self._video.release()

    def close(self) -> None:
        self._video.release()


class SyntheticFrameSource(FrameSource):
    """
    In-memory frame source with explicit frame timestamps.

    Each frame is a mono8 image filled with its frame index (mod 256), which
    makes it easy to tell which frame ended up in which moment.
    """

    def __init__(
        self,
        timestamps: Sequence[datetime],
        size: Tuple[int, int] = (32, 24),
        name: Optional[str] = None,
        start_time: Optional[datetime] = None,
        fail_at: Optional[int] = None,
    ) -> None:
        self.timestamps: List[datetime] = list(timestamps)
        self.width, self.height = size
        self._name = name
        self._start_time = start_time
        self._fail_at = fail_at
        self._iterated = False
        self.closed = False

    def camera_name(self) -> Optional[str]:
        return self._name

    def frame0_time(self) -> Optional[datetime]:
        if self._start_time is not None:
            return self._start_time
        return self.timestamps[0] if self.timestamps else None

    def close(self) -> None:
        self.closed = True

    def iter_frames(self) -> Iterator[FrameData]:
        if self._iterated:
            raise RuntimeError("frames of synthetic source were already iterated")
        self._iterated = True
        return self._generate()

    def _generate(self) -> Iterator[FrameData]:
        for index, ts in enumerate(self.timestamps):
            if self._fail_at is not None and index == self._fail_at:
                raise ValueError(f"could not decode frame {index}")
            image = np.full((self.height, self.width), index % 256, dtype=np.uint8)
            yield FrameData(timestamp=ts, image=image, frame_index=index)


def open_frame_source(path: str) -> FrameSource:
    """Open a video file as a frame source."""
    return VideoFileSource(path)
