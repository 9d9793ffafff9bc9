"""Output sinks receiving the fused moments of a run.

Three sink types exist, matching the output configuration types:

- ``VideoStorage``: side-by-side composite MP4 with the 2D points drawn
- ``DebugStorage``: plain-text trace of what was collected per moment
- ``BraidzStorage``: a new braidz archive holding the collected 2D points
"""

import csv
import gzip
import io
import math
import time
import zipfile
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from typing import List, Optional, Sequence, Union

import cv2
import numpy as np
import yaml
from moviepy.video.io.ffmpeg_writer import FFMPEG_VideoWriter

from .braidz import CAM_INFO, DATA2D, DATA2D_COLUMNS, IMAGES_DIR, METADATA
from .config import (
    BraidzOutputConfig,
    DebugOutputConfig,
    OutputConfig,
    VideoOutputConfig,
)
from .models import SyncedPictures, datetime_to_f64
from .render import CameraSource, PerCamRenderFrame

DEFAULT_FPS = 25.0
FEATURE_COLOR = (0, 191, 255)  # deepskyblue, RGB
TEXT_COLOR = (0, 191, 255)


class VideoStorage:
    """Composite MP4 writer: cameras side by side, points drawn as circles."""

    def __init__(
        self,
        cfg: VideoOutputConfig,
        path: Path,
        sources: Sequence[CameraSource],
        fps: float,
        writer_factory=FFMPEG_VideoWriter,
    ) -> None:
        """
        Args:
            cfg: Video output configuration
            path: Output MP4 path
            sources: Camera roster, fixes the composite layout
            fps: Output frame rate
            writer_factory: Callable(filename, size, fps) returning an object
                with write_frame() and close() (for testing injection)
        """
        self.path = path
        self._margin = cfg.composite_margin_pixels
        self._radius = cfg.feature_radius
        self._offsets = []
        x = self._margin
        max_height = 0
        for source in sources:
            self._offsets.append(x)
            x += source.per_cam_render.width + self._margin
            max_height = max(max_height, source.per_cam_render.height)
        width = x
        height = max_height + 2 * self._margin
        # yuv420p needs even dimensions
        self.size = (width + width % 2, height + height % 2)
        self._writer = writer_factory(str(path), self.size, fps)

    def compose(self, render_frames: Sequence[PerCamRenderFrame]) -> np.ndarray:
        """Render one RGB composite image for a moment."""
        canvas = np.zeros((self.size[1], self.size[0], 3), dtype=np.uint8)
        for x0, frame in zip(self._offsets, render_frames):
            image = frame.image()
            if image.ndim == 2:
                image = cv2.cvtColor(image, cv2.COLOR_GRAY2RGB)
            h, w = image.shape[:2]
            y0 = self._margin
            canvas[y0:y0 + h, x0:x0 + w] = image

            for px, py in frame.points:
                center = (int(round(x0 + px)), int(round(y0 + py)))
                cv2.circle(canvas, center, self._radius, FEATURE_COLOR, 2)

            cv2.putText(canvas, frame.p.best_name, (x0 + 10, y0 + 40),
                        cv2.FONT_HERSHEY_SIMPLEX, 1.0, TEXT_COLOR, 2)
        return canvas

    def render_frame(
        self,
        out_fno: int,
        synced_data: SyncedPictures,
        render_frames: Sequence[PerCamRenderFrame],
    ) -> None:
        self._writer.write_frame(self.compose(render_frames))

    def close(self) -> None:
        if self._writer is not None:
            self._writer.close()
            self._writer = None


class DebugStorage:
    """Plain-text trace of each moment."""

    def __init__(self, path: Path) -> None:
        self.path = path
        self._fd = open(path, "w", encoding="utf-8")

    def write_line(self, line: str) -> None:
        self._fd.write(line + "\n")

    def begin_frame(self, out_fno: int) -> None:
        self.write_line(f"output frame {out_fno} ----------")

    def render_frame(
        self,
        out_fno: int,
        synced_data: SyncedPictures,
        render_frames: Sequence[PerCamRenderFrame],
    ) -> None:
        info = synced_data.braidz_info
        source = f"braidz frame {info.frame_num}" if info is not None else "video timestamps"
        n_images = sum(1 for f in render_frames if f.png_buf is not None)
        n_points = sum(len(f.points) for f in render_frames)
        self.write_line(
            f"   Moment {synced_data.timestamp} ({source}): "
            f"{n_images}/{len(render_frames)} images, {n_points} points"
        )

    def close(self) -> None:
        if not self._fd.closed:
            self._fd.close()


class BraidzStorage:
    """Writes the collected 2D points as a new braidz archive."""

    def __init__(
        self,
        path: Path,
        sources: Sequence[CameraSource],
        expected_fps: Optional[float] = None,
        tracking_parameters: Optional[dict] = None,
    ) -> None:
        self.path = path
        self._sources = list(sources)
        self._expected_fps = expected_fps
        self._tracking_parameters = tracking_parameters
        self._zip = zipfile.ZipFile(path, "w", compression=zipfile.ZIP_STORED)
        self._member = self._zip.open(DATA2D + ".gz", "w", force_zip64=True)
        self._gz = gzip.GzipFile(fileobj=self._member, mode="wb")
        self._text = io.TextIOWrapper(self._gz, encoding="utf-8", newline="")
        self._csv = csv.writer(self._text, lineterminator="\n")
        self._csv.writerow(DATA2D_COLUMNS)

    def render_frame(
        self,
        out_fno: int,
        synced_data: SyncedPictures,
        render_frames: Sequence[PerCamRenderFrame],
    ) -> None:
        trigger = math.nan
        if synced_data.braidz_info is not None and synced_data.braidz_info.trigger_timestamp is not None:
            trigger = synced_data.braidz_info.trigger_timestamp
        for camn, frame in enumerate(render_frames):
            received = datetime_to_f64(frame.pts)
            points = frame.points or [(math.nan, math.nan)]
            for pt_idx, (x, y) in enumerate(points):
                self._csv.writerow([
                    camn, out_fno, trigger, received, math.nan, math.nan,
                    x, y, math.nan, math.nan, math.nan, pt_idx,
                    math.nan, math.nan, math.nan,
                ])

    def close(self) -> None:
        if self._zip is None:
            return
        # Closes the gzip stream; the zip member stays open until closed here.
        self._text.close()
        self._member.close()

        cam_info = io.StringIO(newline="")
        writer = csv.writer(cam_info, lineterminator="\n")
        writer.writerow(["camn", "cam_id"])
        for camn, source in enumerate(self._sources):
            writer.writerow([camn, source.per_cam_render.raw_name])
        self._zip.writestr(CAM_INFO + ".gz", gzip.compress(cam_info.getvalue().encode("utf-8")))

        metadata = {
            "schema": 1,
            "saving_program_name": "retrack",
            "created_timestamp": int(time.time()),
        }
        if self._expected_fps is not None:
            metadata["expected_fps"] = float(self._expected_fps)
        if self._tracking_parameters is not None:
            metadata["tracking_parameters"] = self._tracking_parameters
        self._zip.writestr(METADATA, yaml.safe_dump(metadata, sort_keys=False))

        for source in self._sources:
            render = source.per_cam_render
            self._zip.writestr(f"{IMAGES_DIR}{render.raw_name}.png", render.frame0_png_buf)

        self._zip.close()
        self._zip = None


OutputStorage = Union[VideoStorage, DebugStorage, BraidzStorage]


def debug_outputs(outputs: Sequence[OutputStorage]) -> List[DebugStorage]:
    return [o for o in outputs if isinstance(o, DebugStorage)]


def open_output(
    cfg: OutputConfig,
    sources: Sequence[CameraSource],
    fps: float,
    expected_fps: Optional[float] = None,
    tracking_parameters: Optional[dict] = None,
) -> OutputStorage:
    """Create the destination directory and open one sink."""
    path = Path(cfg.filename)
    path.parent.mkdir(parents=True, exist_ok=True)

    if isinstance(cfg, VideoOutputConfig):
        return VideoStorage(cfg, path, sources, cfg.fps or fps)
    if isinstance(cfg, DebugOutputConfig):
        return DebugStorage(path)
    if isinstance(cfg, BraidzOutputConfig):
        return BraidzStorage(path, sources, expected_fps, tracking_parameters)
    raise TypeError(f"Unknown output config: {cfg!r}")


def open_outputs(
    cfgs: Sequence[OutputConfig],
    sources: Sequence[CameraSource],
    fps: Optional[float] = None,
    expected_fps: Optional[float] = None,
    tracking_parameters: Optional[dict] = None,
) -> List[OutputStorage]:
    """
    Open all sinks concurrently; sinks share no state with each other.

    If any sink fails to open, the ones already opened are closed and the
    first error is raised.
    """
    fps = fps or expected_fps or DEFAULT_FPS
    if not cfgs:
        return []
    with ThreadPoolExecutor(max_workers=len(cfgs)) as pool:
        futures = [
            pool.submit(open_output, c, sources, fps, expected_fps, tracking_parameters)
            for c in cfgs
        ]

    opened = []
    error = None
    for future in futures:
        try:
            opened.append(future.result())
        except Exception as e:
            if error is None:
                error = e
    if error is not None:
        for output in opened:
            output.close()
        raise error
    return opened
