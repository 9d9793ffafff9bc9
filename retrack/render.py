"""Per-camera render templates and per-moment render frames."""

from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional, Tuple

import cv2
import numpy as np

from .braidz import BraidzArchive
from .frame_source import FrameSource
from .models import BraidzCamId, CameraIdentifier, FrameData, best_name, movie_of, raw_name
from .peek2 import Peek2


def encode_png(image: np.ndarray) -> bytes:
    """
    PNG-encode a mono8 (H, W) or RGB8 (H, W, 3) image.

    Raises:
        ValueError: For any other image layout
    """
    if image.dtype != np.uint8:
        raise ValueError(f"only 8-bit images supported, got {image.dtype}")
    if image.ndim == 2:
        bgr_or_mono = image
    elif image.ndim == 3 and image.shape[2] == 3:
        bgr_or_mono = cv2.cvtColor(image, cv2.COLOR_RGB2BGR)
    else:
        raise ValueError(f"only mono8 or rgb8 supported, got shape {image.shape}")
    ok, buf = cv2.imencode(".png", bgr_or_mono)
    if not ok:
        raise ValueError("PNG encoding failed")
    return buf.tobytes()


def decode_png(png_buf: bytes) -> np.ndarray:
    """Decode a PNG buffer to mono8 or RGB8."""
    image = cv2.imdecode(np.frombuffer(png_buf, dtype=np.uint8), cv2.IMREAD_UNCHANGED)
    if image is None:
        raise ValueError("could not decode PNG image")
    if image.ndim == 3:
        image = cv2.cvtColor(image, cv2.COLOR_BGR2RGB)
    return image


@dataclass
class PerCamRender:
    """Render template: what every output frame of a camera starts from."""

    best_name: str
    raw_name: str
    frame0_png_buf: bytes
    width: int
    height: int

    @classmethod
    def from_reader(cls, cam_id: CameraIdentifier) -> "PerCamRender":
        """
        Snapshot the first upcoming frame of a video camera.

        Raises:
            ValueError: If the camera has no video cursor or no frames
        """
        movie = movie_of(cam_id)
        if movie is None or movie.reader is None:
            raise ValueError(f"camera {best_name(cam_id)} has no video reader")
        frame: Optional[FrameData] = movie.reader.peek1()
        if frame is None:
            raise ValueError(f"video {movie.filename} contains no frames")
        height, width = frame.image.shape[:2]
        return cls(
            best_name=best_name(cam_id),
            raw_name=raw_name(cam_id),
            frame0_png_buf=encode_png(frame.image),
            width=width,
            height=height,
        )

    @classmethod
    def from_braidz(cls, archive: BraidzArchive, braidz_cam: BraidzCamId) -> "PerCamRender":
        """Synthesize a blank mono8 template of the camera's recorded resolution."""
        width, height = archive.blank_image_size(braidz_cam.cam_id_str)
        blank = np.zeros((height, width), dtype=np.uint8)
        return cls(
            best_name=braidz_cam.cam_id_str,
            raw_name=braidz_cam.cam_id_str,
            frame0_png_buf=encode_png(blank),
            width=width,
            height=height,
        )

    def new_render_data(self, pts: datetime) -> "PerCamRenderFrame":
        return PerCamRenderFrame(p=self, pts=pts)


@dataclass
class PerCamRenderFrame:
    """Working record for one camera at one moment."""

    p: PerCamRender
    pts: datetime
    png_buf: Optional[bytes] = None  # None: render the template image
    points: List[Tuple[float, float]] = field(default_factory=list)

    def set_original_image(self, image: np.ndarray) -> None:
        self.png_buf = encode_png(image)

    def append_2d_point(self, x: float, y: float) -> None:
        self.points.append((x, y))

    def image(self) -> np.ndarray:
        """The image to render: this moment's frame, else the template."""
        return decode_png(self.png_buf if self.png_buf is not None else self.p.frame0_png_buf)


@dataclass
class CameraSource:
    """A camera of the roster: its identity plus its render template."""

    cam_id: CameraIdentifier
    per_cam_render: PerCamRender

    def take_reader(self) -> Optional[Peek2]:
        """Move the frame cursor out of the identity (None for archive-only cameras)."""
        movie = movie_of(self.cam_id)
        if movie is None:
            return None
        reader, movie.reader = movie.reader, None
        return reader


@dataclass
class CameraArena:
    """Owns the camera sources and the optional archive for one run."""

    sources: List[CameraSource]
    archive: Optional[BraidzArchive] = None
    braidz_only: bool = False
    frame_sources: List[FrameSource] = field(default_factory=list)

    def __len__(self) -> int:
        return len(self.sources)

    def take_readers(self) -> List[Optional[Peek2]]:
        return [source.take_reader() for source in self.sources]

    def camera_names(self) -> List[str]:
        return [source.per_cam_render.raw_name for source in self.sources]

    def close(self) -> None:
        for frame_source in self.frame_sources:
            frame_source.close()
        if self.archive is not None:
            self.archive.close()
