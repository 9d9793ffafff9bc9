"""Merging per-camera frame streams into synchronized moments.

Two strategies produce the moments of a run:

- ``BraidzMomentIter``: the frames of a braidz archive define the moments;
  video frames, if any, are matched to the archive's trigger timestamps.
- ``SyncedIter``: without an archive, moments are paced by a nominal frame
  duration starting at the latest camera start time, and each camera
  contributes the frame nearest to each moment within the sync threshold.

Both emit moments in strictly increasing timestamp order, with exactly one
entry per camera in roster order.
"""

import math
import sys
from datetime import datetime, timedelta
from typing import Dict, Iterator, List, Optional, Sequence, Tuple

from .aligner import synchronize_readers_from
from .braidz import iter_archive_frames
from .config import ConfigError, RetrackConfig
from .models import (
    BraidzFrameInfo,
    CameraIdentifier,
    Data2dRow,
    FrameData,
    OutTimepointPerCamera,
    SyncedPictures,
    best_name,
    camn,
    frame0_time,
    timestamp_to_datetime,
)
from .peek2 import Peek2


def estimate_frame_duration(readers: Sequence[Optional[Peek2]]) -> Optional[timedelta]:
    """
    Estimate the native frame duration from the first two frames of each cursor.

    Returns:
        The smallest positive first-to-second frame interval, or None if no
        cursor has two frames
    """
    best = None
    for reader in readers:
        if reader is None:
            continue
        p1 = reader.peek1()
        p2 = reader.peek2()
        if p1 is None or p2 is None:
            continue
        delta = p2.timestamp - p1.timestamp
        if delta <= timedelta(0):
            continue
        if best is None or delta < best:
            best = delta
    return best


def resolve_timing(
    cfg: RetrackConfig,
    readers: Sequence[Optional[Peek2]],
    expected_fps: Optional[float] = None,
) -> Tuple[timedelta, timedelta]:
    """
    Determine the nominal frame duration and the sync threshold.

    The frame duration is the configured value, else estimated from the
    video cursors, else derived from the archive's expected frame rate. The
    sync threshold is the configured value, else half the frame duration.

    Returns:
        (frame_duration, sync_threshold)

    Raises:
        ConfigError: If no frame duration can be determined
    """
    if cfg.frame_duration_microsecs is not None:
        frame_duration = timedelta(microseconds=cfg.frame_duration_microsecs)
    else:
        frame_duration = estimate_frame_duration(readers)
        if frame_duration is None and expected_fps:
            frame_duration = timedelta(seconds=1.0 / expected_fps)
        if frame_duration is None:
            raise ConfigError(
                "Could not determine frame duration: no video has two frames. "
                "Set frame_duration_microsecs."
            )

    if cfg.sync_threshold_microseconds is not None:
        sync_threshold = timedelta(microseconds=cfg.sync_threshold_microseconds)
    else:
        sync_threshold = frame_duration / 2
    return frame_duration, sync_threshold


def take_nearest_in_window(
    reader: Peek2,
    t: datetime,
    sync_threshold: timedelta,
) -> Optional[FrameData]:
    """
    Consume and return the frame nearest to t within t +/- sync_threshold.

    Frames before the window are dropped. Frames after the window are left
    in the cursor for later moments. On equal distance the earlier frame wins.
    """
    lo = t - sync_threshold
    hi = t + sync_threshold

    p1 = reader.peek1()
    while p1 is not None and p1.timestamp < lo:
        reader.advance()
        p1 = reader.peek1()
    if p1 is None or p1.timestamp > hi:
        return None

    while True:
        p2 = reader.peek2()
        if p2 is None or p2.timestamp > hi:
            break
        if abs(p2.timestamp - t) >= abs(p1.timestamp - t):
            break
        reader.advance()
        p1 = p2
    return reader.advance()


class MomentSource:
    """Iterable of SyncedPictures; one of the two merge strategies."""

    mode = ""

    def __init__(self, n_cameras: int) -> None:
        self.n_cameras = n_cameras
        # Nominal frame duration, when known.
        self.frame_duration: Optional[timedelta] = None

    def __iter__(self) -> Iterator[SyncedPictures]:
        raise NotImplementedError


class BraidzMomentIter(MomentSource):
    """Moments defined by the frames of a braidz archive."""

    mode = "braidz"

    def __init__(
        self,
        data2d: Dict[int, List[Data2dRow]],
        cameras: Sequence[CameraIdentifier],
        readers: Optional[Sequence[Optional[Peek2]]] = None,
        sync_threshold: Optional[timedelta] = None,
    ) -> None:
        """
        Args:
            data2d: Archive rows indexed by camera number
            cameras: Roster, in output order
            readers: Video cursor per roster camera (None entries allowed),
                or None when no video is used
            sync_threshold: Matching window for video frames; required with readers
        """
        super().__init__(len(cameras))
        if readers is not None:
            if len(readers) != len(cameras):
                raise ValueError("need one reader slot per camera")
            if sync_threshold is None:
                raise ValueError("sync_threshold is required when matching video frames")
        self._data2d = data2d
        self._camns = []
        for cam_id in cameras:
            self._camns.append(camn(cam_id))
        self._readers = readers
        self._sync_threshold = sync_threshold

    @staticmethod
    def _frame_timestamp(rows_by_camn: Dict[int, List[Data2dRow]]) -> Tuple[float, Optional[float]]:
        """Return (moment time, trigger time or None) in epoch seconds."""
        trigger = None
        received = math.inf
        for rows in rows_by_camn.values():
            for row in rows:
                if trigger is None and math.isfinite(row.timestamp):
                    trigger = row.timestamp
                if math.isfinite(row.cam_received_timestamp):
                    received = min(received, row.cam_received_timestamp)
        if trigger is not None:
            return trigger, trigger
        return received, None

    def __iter__(self) -> Iterator[SyncedPictures]:
        previous: Optional[datetime] = None
        for frame, rows_by_camn in iter_archive_frames(self._data2d):
            ts, trigger = self._frame_timestamp(rows_by_camn)
            if not math.isfinite(ts):
                print(f"Warning: skipping archive frame {frame} without timestamps",
                      file=sys.stderr)
                continue
            t = timestamp_to_datetime(ts)
            if previous is not None and t <= previous:
                print(f"Warning: skipping archive frame {frame}: timestamp {t} "
                      f"not after previous moment {previous}", file=sys.stderr)
                continue
            previous = t

            pictures = []
            for i, cam_number in enumerate(self._camns):
                rows = list(rows_by_camn.get(cam_number, [])) if cam_number is not None else []
                image = None
                cam_ts = t
                reader = self._readers[i] if self._readers is not None else None
                if reader is not None:
                    found = take_nearest_in_window(reader, t, self._sync_threshold)
                    if found is not None:
                        image = found.image
                        cam_ts = found.timestamp
                pictures.append(OutTimepointPerCamera(cam_ts, image, rows))

            yield SyncedPictures(
                timestamp=t,
                camera_pictures=pictures,
                braidz_info=BraidzFrameInfo(frame_num=frame, trigger_timestamp=trigger),
            )


class SyncedIter(MomentSource):
    """Moments paced by the nominal frame duration over free-running videos."""

    mode = "video"

    def __init__(
        self,
        readers: Sequence[Optional[Peek2]],
        sync_threshold: timedelta,
        frame_duration: timedelta,
        start_time: Optional[datetime] = None,
    ) -> None:
        """
        Args:
            readers: Aligned frame cursor per roster camera
            sync_threshold: Maximum distance between a frame and its moment
            frame_duration: Step between consecutive moments
            start_time: Time of the first moment (default: earliest upcoming frame)

        Raises:
            ValueError: If frame_duration is not positive
        """
        super().__init__(len(readers))
        if frame_duration <= timedelta(0):
            raise ValueError(f"frame duration must be positive, got {frame_duration}")
        self._readers = list(readers)
        self._sync_threshold = sync_threshold
        self._frame_duration = frame_duration
        self._start_time = start_time

    def _earliest_upcoming(self) -> Optional[datetime]:
        upcoming = [r.peek1() for r in self._readers if r is not None]
        times = [f.timestamp for f in upcoming if f is not None]
        return min(times) if times else None

    def __iter__(self) -> Iterator[SyncedPictures]:
        clock = self._start_time
        while True:
            earliest = self._earliest_upcoming()
            if earliest is None:
                return
            if clock is None:
                clock = earliest

            pictures = []
            taken = []
            for reader in self._readers:
                found = None
                if reader is not None:
                    found = take_nearest_in_window(reader, clock, self._sync_threshold)
                if found is None:
                    pictures.append(OutTimepointPerCamera(clock))
                else:
                    taken.append(found.timestamp)
                    pictures.append(OutTimepointPerCamera(found.timestamp, found.image))

            if not taken and self._earliest_upcoming() is None:
                # Only stale frames were left.
                return

            yield SyncedPictures(timestamp=clock, camera_pictures=pictures)

            next_clock = clock + self._frame_duration
            if taken:
                # Follow the cameras rather than the nominal clock.
                next_clock = min(taken) + self._frame_duration
            if next_clock <= clock:
                next_clock = clock + self._frame_duration
            clock = next_clock


def build_moment_iter(
    cameras: Sequence[CameraIdentifier],
    readers: Sequence[Optional[Peek2]],
    cfg: RetrackConfig,
    data2d: Optional[Dict[int, List[Data2dRow]]] = None,
    braidz_only: bool = False,
    expected_fps: Optional[float] = None,
) -> MomentSource:
    """
    Choose the merge strategy for a run.

    Args:
        cameras: Resolved roster
        readers: Video cursor per roster camera (taken from the sources)
        cfg: Run configuration
        data2d: Archive rows by camera number, or None without an archive
        braidz_only: True when the archive is the only input
        expected_fps: Archive frame rate, used when video timing is unavailable

    Raises:
        ConfigError: If neither the archive nor the videos can provide timing
    """
    if braidz_only:
        if data2d is None:
            raise ConfigError("braidz-only processing requires an archive")
        return BraidzMomentIter(data2d, cameras)

    frame_duration, sync_threshold = resolve_timing(cfg, readers, expected_fps)
    print(f"sync_threshold: {sync_threshold // timedelta(microseconds=1)} microseconds",
          file=sys.stderr)

    if data2d is not None:
        moments = BraidzMomentIter(data2d, cameras, readers, sync_threshold)
        moments.frame_duration = frame_duration
        return moments

    start_times = [frame0_time(cam_id) for cam_id in cameras]
    missing = [best_name(c) for c, t in zip(cameras, start_times) if t is None]
    if not start_times or missing:
        raise ConfigError(
            "Neither braidz archive nor input videos could be used as source of "
            f"frame data (no start time for: {', '.join(missing) or 'any camera'})."
        )

    # Start when the last camera started.
    approx_start_time = max(start_times)
    print(f"start time determined from videos: {approx_start_time}", file=sys.stderr)

    synchronize_readers_from(approx_start_time, readers)
    moments = SyncedIter(readers, sync_threshold, frame_duration, start_time=approx_start_time)
    moments.frame_duration = frame_duration
    return moments
