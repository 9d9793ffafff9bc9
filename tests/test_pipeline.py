"""End-to-end tests for running a configuration."""

from datetime import timedelta

import numpy as np
import pytest

from retrack.braidz import BraidzArchive, BraidzError
from retrack.config import (
    BraidzOutputConfig,
    ConfigError,
    DebugOutputConfig,
    RetrackConfig,
    VideoSourceConfig,
)
from retrack.frame_source import SyntheticFrameSource
from retrack.models import Both, MovieOnly, timestamp_to_datetime
from retrack.pipeline import build_arena, run_config
from retrack.render import decode_png

from conftest import frame_times

T_BASE = 1636361123.0

ARCHIVE_CAMERAS = [("Basler-22445994", 0, (40, 30)), ("Basler-22445995", 1, (20, 16))]


def archive_rows(n_frames, camns=(0, 1)):
    rows = []
    for frame in range(n_frames):
        for camn in camns:
            ts = T_BASE + frame * 0.01
            rows.append((camn, frame, ts, ts + 0.002, 5.0 + frame, 6.0 + camn))
    return rows


def factory_for(sources):
    """frame_source_factory serving synthetic sources by file name."""

    def _open(path):
        for name, source in sources.items():
            if path.endswith(name):
                return source
        raise ValueError(f"could not open video {path}")

    return _open


def debug_lines(path):
    with open(path) as f:
        return f.read().splitlines()


def frame_headers(lines):
    return [line for line in lines if line.startswith("output frame ")]


class TestBraidzOnly:
    def test_blank_templates_and_outputs(self, make_braidz, tmp_path):
        cfg = RetrackConfig(
            input_braidz=make_braidz(ARCHIVE_CAMERAS, archive_rows(3)),
            output=[
                DebugOutputConfig(str(tmp_path / "out" / "debug.txt")),
                BraidzOutputConfig(str(tmp_path / "out" / "retracked.braidz")),
            ],
        )

        paths = run_config(cfg)

        assert [str(p) for p in paths] == [o.filename for o in cfg.output]
        lines = debug_lines(tmp_path / "out" / "debug.txt")
        assert frame_headers(lines) == [f"output frame {i} ----------" for i in range(3)]
        assert sum("Collect Basler-22445994" in line for line in lines) == 3
        assert sum("braidz frame" in line for line in lines) == 3

        with BraidzArchive(str(tmp_path / "out" / "retracked.braidz")) as archive:
            assert archive.braidz_cameras() == [("Basler-22445994", 0), ("Basler-22445995", 1)]
            assert archive.image_sizes == {"Basler-22445994": (40, 30), "Basler-22445995": (20, 16)}
            assert archive.expected_fps == 100.0
            rows = list(archive.iter_data2d_distorted())
        assert len(rows) == 6
        assert [r.x for r in rows if r.camn == 0] == [5.0, 6.0, 7.0]

    def test_templates_are_blank_at_archive_resolution(self, make_braidz):
        cfg = RetrackConfig(input_braidz=make_braidz(ARCHIVE_CAMERAS, archive_rows(1)))
        arena = build_arena(cfg)
        try:
            assert arena.braidz_only
            assert arena.camera_names() == ["Basler-22445994", "Basler-22445995"]
            image = decode_png(arena.sources[0].per_cam_render.frame0_png_buf)
            assert image.shape == (30, 40)
            assert not image.any()
        finally:
            arena.close()

    def test_max_num_frames(self, make_braidz, tmp_path):
        cfg = RetrackConfig(
            input_braidz=make_braidz(ARCHIVE_CAMERAS, archive_rows(20)),
            output=[DebugOutputConfig(str(tmp_path / "debug.txt"))],
            max_num_frames=5,
        )
        run_config(cfg)
        assert len(frame_headers(debug_lines(tmp_path / "debug.txt"))) == 5

    def test_skip_first_frames(self, make_braidz, tmp_path):
        cfg = RetrackConfig(
            input_braidz=make_braidz(ARCHIVE_CAMERAS, archive_rows(6)),
            output=[DebugOutputConfig(str(tmp_path / "debug.txt"))],
            skip_n_first_output_frames=4,
        )
        run_config(cfg)
        headers = frame_headers(debug_lines(tmp_path / "debug.txt"))
        assert headers == ["output frame 4 ----------", "output frame 5 ----------"]

    def test_progress_logged(self, make_braidz, tmp_path, capsys):
        cfg = RetrackConfig(
            input_braidz=make_braidz(ARCHIVE_CAMERAS, archive_rows(5)),
            log_interval_frames=2,
        )
        run_config(cfg)
        err = capsys.readouterr().err
        assert "frame 0\n" in err
        assert "frame 2\n" in err
        assert "frame 4\n" in err
        assert "frame 1\n" not in err

    def test_bad_archive(self, tmp_path):
        path = tmp_path / "broken.braidz"
        path.write_text("not a zip")
        with pytest.raises(BraidzError, match="opening braidz archive"):
            run_config(RetrackConfig(input_braidz=str(path)))


class TestVideoOnly:
    def test_two_cameras(self, tmp_path, t0):
        start_b = t0 + timedelta(milliseconds=200)
        sources = {
            "movie20211108_084523_CamA.mp4": SyntheticFrameSource(frame_times(t0, 50, 10)),
            "movie20211108_084523_CamB.mp4": SyntheticFrameSource(frame_times(start_b, 30, 10)),
        }
        cfg = RetrackConfig(
            input_video=[VideoSourceConfig(name) for name in sources],
            output=[
                DebugOutputConfig(str(tmp_path / "debug.txt")),
                BraidzOutputConfig(str(tmp_path / "out.braidz")),
            ],
        )

        run_config(cfg, frame_source_factory=factory_for(sources))

        lines = debug_lines(tmp_path / "debug.txt")
        assert len(frame_headers(lines)) == 30
        summaries = [line for line in lines if "Moment" in line]
        assert all("video timestamps" in line for line in summaries)
        assert all(line.endswith("2/2 images, 0 points") for line in summaries)

        with BraidzArchive(str(tmp_path / "out.braidz")) as archive:
            assert archive.braidz_cameras() == [("CamA", 0), ("CamB", 1)]
            assert archive.image_sizes["CamA"] == (32, 24)

    def test_template_is_first_video_frame(self, t0):
        sources = {"movie20211108_084523_CamA.mp4": SyntheticFrameSource(frame_times(t0, 5, 10))}
        cfg = RetrackConfig(input_video=[VideoSourceConfig(name) for name in sources])
        arena = build_arena(cfg, frame_source_factory=factory_for(sources))
        try:
            assert isinstance(arena.sources[0].cam_id, MovieOnly)
            assert not arena.braidz_only
            image = decode_png(arena.sources[0].per_cam_render.frame0_png_buf)
            assert np.all(image == 0)
        finally:
            arena.close()

    def test_missing_start_time(self, t0):
        source = SyntheticFrameSource(frame_times(t0, 5, 10))
        source.frame0_time = lambda: None
        cfg = RetrackConfig(input_video=[VideoSourceConfig("camera_left.mp4")])
        with pytest.raises(ConfigError):
            run_config(cfg, frame_source_factory=lambda path: source)
        assert source.closed

    def test_opened_sources_closed_when_later_video_fails(self, t0):
        opened = SyntheticFrameSource(frame_times(t0, 5, 10))
        sources = {"movie20211108_084523_CamA.mp4": opened}
        cfg = RetrackConfig(input_video=[VideoSourceConfig("movie20211108_084523_CamA.mp4"),
                                         VideoSourceConfig("movie20211108_084523_CamB.mp4")])
        with pytest.raises(ValueError, match="could not open video"):
            build_arena(cfg, frame_source_factory=factory_for(sources))
        assert opened.closed

    def test_arena_close_closes_sources(self, t0):
        source = SyntheticFrameSource(frame_times(t0, 5, 10))
        cfg = RetrackConfig(input_video=[VideoSourceConfig("movie20211108_084523_CamA.mp4")])
        arena = build_arena(cfg, frame_source_factory=lambda path: source)
        assert arena.frame_sources == [source]
        assert not source.closed
        arena.close()
        assert source.closed

    def test_decode_error_propagates(self, tmp_path, t0):
        sources = {"movie20211108_084523_CamA.mp4":
                   SyntheticFrameSource(frame_times(t0, 10, 10), fail_at=4)}
        cfg = RetrackConfig(
            input_video=[VideoSourceConfig(name) for name in sources],
            output=[DebugOutputConfig(str(tmp_path / "debug.txt"))],
        )
        with pytest.raises(ValueError, match="could not decode frame 4"):
            run_config(cfg, frame_source_factory=factory_for(sources))
        # Output was closed and flushed up to the failure.
        assert len(frame_headers(debug_lines(tmp_path / "debug.txt"))) >= 2


class TestHybrid:
    def test_video_matched_to_archive_camera(self, make_braidz, tmp_path, capsys):
        start = timestamp_to_datetime(T_BASE)
        sources = {
            "movie20211108_084523_Basler-22445994.mp4":
                SyntheticFrameSource(frame_times(start, 10, 10)),
        }
        cfg = RetrackConfig(
            input_braidz=make_braidz(ARCHIVE_CAMERAS, archive_rows(10)),
            input_video=[VideoSourceConfig(name) for name in sources],
            output=[
                DebugOutputConfig(str(tmp_path / "debug.txt")),
                BraidzOutputConfig(str(tmp_path / "out.braidz")),
            ],
        )

        arena = build_arena(cfg, frame_source_factory=factory_for(sources))
        try:
            assert len(arena.sources) == 1
            assert isinstance(arena.sources[0].cam_id, Both)
        finally:
            arena.close()
        assert "Basler-22445995 has no matching video file" in capsys.readouterr().err

        sources["movie20211108_084523_Basler-22445994.mp4"] = \
            SyntheticFrameSource(frame_times(start, 10, 10))
        run_config(cfg, frame_source_factory=factory_for(sources))

        lines = debug_lines(tmp_path / "debug.txt")
        summaries = [line for line in lines if "Moment" in line]
        assert len(summaries) == 10
        assert all("braidz frame" in line for line in summaries)
        assert all(line.endswith("1/1 images, 1 points") for line in summaries)

        with BraidzArchive(str(tmp_path / "out.braidz")) as archive:
            assert archive.braidz_cameras() == [("Basler-22445994", 0)]
            rows = list(archive.iter_data2d_distorted())
        assert [r.frame for r in rows] == list(range(10))
        assert rows[3].timestamp == pytest.approx(T_BASE + 0.03)


class TestNoInput:
    def test_nothing_to_do(self, capsys):
        assert run_config(RetrackConfig()) == []
        assert "No sources given" in capsys.readouterr().err
