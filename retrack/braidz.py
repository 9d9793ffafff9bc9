"""Reading braidz archives.

A braidz archive is a zip file (or an unpacked directory with a ``.braidz``
name) holding the 2D detections of a multi-camera recording:

- ``cam_info.csv[.gz]``: camera roster, columns ``camn,cam_id``
- ``data2d_distorted.csv[.gz]``: one row per detected point
- ``braid_metadata.yml``: recording metadata (expected frame rate, ...)
- ``images/<cam_id>.png``: a representative image per camera
"""

import csv
import gzip
import io
import math
import os
import re
import zipfile
from dataclasses import dataclass, field
from typing import Dict, Iterator, List, Optional, Tuple

import cv2
import numpy as np
import yaml

from .models import Data2dRow

CAM_INFO = "cam_info.csv"
DATA2D = "data2d_distorted.csv"
METADATA = "braid_metadata.yml"
TEXTLOG = "textlog.csv"
IMAGES_DIR = "images/"

DATA2D_COLUMNS = [
    "camn", "frame", "timestamp", "cam_received_timestamp", "device_timestamp",
    "block_id", "x", "y", "area", "slope", "eccentricity", "frame_pt_idx",
    "cur_val", "mean_val", "sumsqf_val",
]

_FPS_MESSAGE_RE = re.compile(r"running at\s+([0-9.]+)\s*fps", re.IGNORECASE)


class BraidzError(ValueError):
    """Raised when a braidz archive cannot be opened or parsed."""


def _parse_float(value: Optional[str]) -> float:
    if value is None or value == "" or value.lower() == "nan":
        return math.nan
    return float(value)


def _parse_int(value: Optional[str], default: int = 0) -> int:
    if value is None or value == "":
        return default
    return int(float(value))


@dataclass
class CamInfo:
    camid2camn: Dict[str, int] = field(default_factory=dict)


class BraidzArchive:
    """Read-only access to the contents of a braidz archive."""

    def __init__(self, path: str) -> None:
        """
        Open an archive and read its small members eagerly.

        Args:
            path: Path to a .braidz zip file or unpacked .braidz directory

        Raises:
            BraidzError: If the archive cannot be opened or lacks cam_info
        """
        self.path = path
        self._zip: Optional[zipfile.ZipFile] = None
        if os.path.isdir(path):
            self._names = set()
            for root, _dirs, files in os.walk(path):
                for name in files:
                    rel = os.path.relpath(os.path.join(root, name), path)
                    self._names.add(rel.replace(os.sep, "/"))
        else:
            try:
                self._zip = zipfile.ZipFile(path)
            except (OSError, zipfile.BadZipFile) as e:
                raise BraidzError(f"Could not open braidz archive {path}: {e}") from e
            self._names = set(self._zip.namelist())

        self.cam_info = self._read_cam_info()
        self.metadata = self._read_metadata()
        self.expected_fps = self._read_expected_fps()
        self.tracking_parameters: Optional[dict] = self.metadata.get("tracking_parameters")
        self.image_sizes = self._read_image_sizes()

    def close(self) -> None:
        if self._zip is not None:
            self._zip.close()
            self._zip = None

    def __enter__(self) -> "BraidzArchive":
        return self

    def __exit__(self, *exc) -> None:
        self.close()

    # -- member access -------------------------------------------------

    def _member_name(self, name: str) -> Optional[str]:
        """Find a member, accepting a gzipped variant."""
        for candidate in (name, name + ".gz"):
            if candidate in self._names:
                return candidate
        return None

    def _open_binary(self, member: str):
        if self._zip is not None:
            raw = self._zip.open(member)
        else:
            raw = open(os.path.join(self.path, member), "rb")
        if member.endswith(".gz"):
            return gzip.GzipFile(fileobj=raw)
        return raw

    def _read_bytes(self, member: str) -> bytes:
        with self._open_binary(member) as f:
            return f.read()

    def _open_csv(self, name: str):
        member = self._member_name(name)
        if member is None:
            return None
        return io.TextIOWrapper(self._open_binary(member), encoding="utf-8", newline="")

    # -- eager members -------------------------------------------------

    def _read_cam_info(self) -> CamInfo:
        f = self._open_csv(CAM_INFO)
        if f is None:
            raise BraidzError(f"{self.path}: missing {CAM_INFO}")
        info = CamInfo()
        with f:
            for lineno, row in enumerate(_data_rows(f), start=2):
                try:
                    info.camid2camn[row["cam_id"]] = int(row["camn"])
                except (KeyError, ValueError, TypeError) as e:
                    raise BraidzError(f"{self.path}: {CAM_INFO} line {lineno}: {e}") from e
        return info

    def _read_metadata(self) -> dict:
        if METADATA not in self._names:
            return {}
        try:
            data = yaml.safe_load(self._read_bytes(METADATA))
        except yaml.YAMLError as e:
            raise BraidzError(f"{self.path}: could not parse {METADATA}: {e}") from e
        return data if isinstance(data, dict) else {}

    def _read_expected_fps(self) -> Optional[float]:
        fps = self.metadata.get("expected_fps")
        if fps is not None:
            return float(fps)
        f = self._open_csv(TEXTLOG)
        if f is None:
            return None
        with f:
            for row in _data_rows(f):
                match = _FPS_MESSAGE_RE.search(row.get("message") or "")
                if match:
                    return float(match.group(1))
        return None

    def _read_image_sizes(self) -> Dict[str, Tuple[int, int]]:
        sizes = {}
        for member in sorted(self._names):
            if not (member.startswith(IMAGES_DIR) and member.endswith(".png")):
                continue
            cam_id = member[len(IMAGES_DIR):-len(".png")]
            buf = np.frombuffer(self._read_bytes(member), dtype=np.uint8)
            image = cv2.imdecode(buf, cv2.IMREAD_UNCHANGED)
            if image is None:
                raise BraidzError(f"{self.path}: could not decode {member}")
            sizes[cam_id] = (image.shape[1], image.shape[0])
        return sizes

    # -- lazy members --------------------------------------------------

    def iter_data2d_distorted(self) -> Iterator[Data2dRow]:
        """
        Iterate the 2D detection rows in file order.

        Raises:
            BraidzError: If the data2d member is missing or a row fails to parse
        """
        f = self._open_csv(DATA2D)
        if f is None:
            raise BraidzError(f"{self.path}: missing {DATA2D}")
        with f:
            for lineno, row in enumerate(_data_rows(f), start=2):
                try:
                    yield Data2dRow(
                        camn=int(row["camn"]),
                        frame=int(row["frame"]),
                        timestamp=_parse_float(row.get("timestamp")),
                        cam_received_timestamp=_parse_float(row["cam_received_timestamp"]),
                        x=_parse_float(row["x"]),
                        y=_parse_float(row["y"]),
                        area=_parse_float(row.get("area")),
                        frame_pt_idx=_parse_int(row.get("frame_pt_idx")),
                    )
                except (KeyError, ValueError, TypeError) as e:
                    raise BraidzError(f"{self.path}: {DATA2D} line {lineno}: {e}") from e

    def braidz_cameras(self) -> List[Tuple[str, int]]:
        """Camera roster as (cam_id, camn), ordered by camn."""
        return sorted(self.cam_info.camid2camn.items(), key=lambda item: item[1])

    def blank_image_size(self, cam_id: str) -> Tuple[int, int]:
        """
        Return the recorded (width, height) of a camera.

        Raises:
            BraidzError: If the archive has no image for the camera
        """
        try:
            return self.image_sizes[cam_id]
        except KeyError:
            raise BraidzError(f"{self.path}: no image size recorded for camera {cam_id}") from None


def _data_rows(f) -> Iterator[dict]:
    """csv.DictReader that skips '#' comment lines before the header."""
    lines = (line for line in f if not line.startswith("#"))
    return csv.DictReader(lines)


def open_braidz(path: str) -> BraidzArchive:
    return BraidzArchive(path)


def build_data2d_index(archive: BraidzArchive) -> Dict[int, List[Data2dRow]]:
    """
    Group all detection rows by camera number, each list ordered by frame.

    Built once before merging and only read afterwards.
    """
    index: Dict[int, List[Data2dRow]] = {}
    for row in archive.iter_data2d_distorted():
        index.setdefault(row.camn, []).append(row)
    for rows in index.values():
        # Stable sort keeps the file order of points within a frame.
        rows.sort(key=lambda r: r.frame)
    return index


def iter_archive_frames(
    data2d: Dict[int, List[Data2dRow]],
) -> Iterator[Tuple[int, Dict[int, List[Data2dRow]]]]:
    """
    Walk the index frame by frame.

    Yields:
        (frame, {camn: rows for that camera at that frame}) in ascending
        frame order; cameras without rows at a frame are absent.
    """
    frames = sorted({row.frame for rows in data2d.values() for row in rows})
    positions = {camn: 0 for camn in data2d}
    for frame in frames:
        this_frame: Dict[int, List[Data2dRow]] = {}
        for camn, rows in data2d.items():
            pos = positions[camn]
            start = pos
            while pos < len(rows) and rows[pos].frame == frame:
                pos += 1
            if pos > start:
                this_frame[camn] = rows[start:pos]
            positions[camn] = pos
        yield frame, this_frame
