"""Pytest fixtures for retrack tests."""

import csv
import gzip
import io
import math
import zipfile
from datetime import datetime, timedelta, timezone

import cv2
import numpy as np
import pytest

from retrack.frame_source import SyntheticFrameSource
from retrack.peek2 import Peek2

T0 = datetime(2021, 11, 8, 8, 45, 23, tzinfo=timezone.utc)


def frame_times(start, n, interval_ms):
    """n timestamps starting at start, interval_ms apart."""
    return [start + timedelta(milliseconds=i * interval_ms) for i in range(n)]


def reader_at(times):
    """A cursor over a synthetic source with the given frame times."""
    return Peek2(SyntheticFrameSource(times).iter_frames())


@pytest.fixture
def t0():
    return T0


@pytest.fixture
def synthetic_source():
    """Create a synthetic frame source."""

    def _create(start=T0, n=10, interval_ms=10.0, size=(32, 24), name=None, **kwargs):
        return SyntheticFrameSource(frame_times(start, n, interval_ms), size=size,
                                    name=name, **kwargs)

    return _create


def _gz_csv(header, rows):
    out = io.StringIO(newline="")
    writer = csv.writer(out, lineterminator="\n")
    writer.writerow(header)
    for row in rows:
        writer.writerow(row)
    return gzip.compress(out.getvalue().encode("utf-8"))


def _png(width, height):
    ok, buf = cv2.imencode(".png", np.zeros((height, width), dtype=np.uint8))
    assert ok
    return buf.tobytes()


@pytest.fixture
def make_braidz(tmp_path):
    """
    Write a small braidz archive.

    cameras: list of (cam_id, camn, (width, height))
    rows: list of (camn, frame, timestamp, cam_received_timestamp, x, y)
    """

    def _create(cameras, rows, name="test.braidz", expected_fps=100.0, metadata_extra=None):
        path = tmp_path / name
        data2d_header = [
            "camn", "frame", "timestamp", "cam_received_timestamp", "device_timestamp",
            "block_id", "x", "y", "area", "slope", "eccentricity", "frame_pt_idx",
            "cur_val", "mean_val", "sumsqf_val",
        ]
        data2d_rows = []
        for camn, frame, ts, received, x, y in rows:
            data2d_rows.append([
                camn, frame, ts, received, "", "", x, y, 10.0, math.nan, math.nan, 0,
                0, 0, 0,
            ])
        metadata = f"schema: 1\nexpected_fps: {expected_fps}\n"
        if metadata_extra:
            metadata += metadata_extra
        with zipfile.ZipFile(path, "w") as zf:
            zf.writestr("cam_info.csv.gz", _gz_csv(
                ["camn", "cam_id"], [(camn, cam_id) for cam_id, camn, _ in cameras]))
            zf.writestr("data2d_distorted.csv.gz", _gz_csv(data2d_header, data2d_rows))
            zf.writestr("braid_metadata.yml", metadata)
            for cam_id, _camn, (width, height) in cameras:
                zf.writestr(f"images/{cam_id}.png", _png(width, height))
        return str(path)

    return _create
