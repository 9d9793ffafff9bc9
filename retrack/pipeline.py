"""Running a full reconstruction: inputs -> synchronized moments -> outputs."""

import sys
from datetime import timedelta
from itertools import islice
from pathlib import Path
from typing import Callable, List, Optional

from .braidz import BraidzArchive, BraidzError, build_data2d_index, open_braidz
from .config import RetrackConfig
from .frame_source import FrameSource, open_frame_source
from .fusion import gather_frame_data
from .identity import braidz_cam_ids, movie_cam_id, resolve_cameras
from .merge import build_moment_iter
from .models import braidz_of, movie_of
from .outputs import debug_outputs, open_outputs
from .render import CameraArena, CameraSource, PerCamRender


def build_arena(
    cfg: RetrackConfig,
    frame_source_factory: Callable[[str], FrameSource] = open_frame_source,
) -> CameraArena:
    """
    Open all inputs and build the camera roster.

    Args:
        cfg: Run configuration
        frame_source_factory: Opens a video path (for testing injection)

    Returns:
        CameraArena owning the sources and archive; empty if no input was given

    Raises:
        BraidzError: If the archive cannot be opened
        ValueError: If a video cannot be opened
    """
    archive: Optional[BraidzArchive] = None
    if cfg.input_braidz is not None:
        try:
            archive = open_braidz(cfg.input_braidz)
        except BraidzError as e:
            raise BraidzError(f"opening braidz archive {cfg.input_braidz}: {e}") from e

    frame_sources: List[FrameSource] = []
    try:
        movie_ids = []
        for video_cfg in cfg.input_video:
            frame_source = frame_source_factory(video_cfg.filename)
            frame_sources.append(frame_source)
            movie_ids.append(movie_cam_id(video_cfg, frame_source))
        braidz_cams = braidz_cam_ids(archive.braidz_cameras()) if archive is not None else None
        resolved = resolve_cameras(movie_ids, braidz_cams)

        for braidz_cam in resolved.unmatched_braidz:
            print(f"Archive camera {braidz_cam.cam_id_str} has no matching video file.",
                  file=sys.stderr)

        sources = []
        for cam_id in resolved.cameras:
            if movie_of(cam_id) is not None:
                per_cam_render = PerCamRender.from_reader(cam_id)
            else:
                per_cam_render = PerCamRender.from_braidz(archive, braidz_of(cam_id))
            sources.append(CameraSource(cam_id, per_cam_render))
    except Exception:
        for frame_source in frame_sources:
            frame_source.close()
        if archive is not None:
            archive.close()
        raise

    return CameraArena(sources=sources, archive=archive, braidz_only=resolved.braidz_only,
                       frame_sources=frame_sources)


def run_config(
    cfg: RetrackConfig,
    frame_source_factory: Callable[[str], FrameSource] = open_frame_source,
) -> List[Path]:
    """
    Reconstruct synchronized output for a configuration.

    Args:
        cfg: Validated run configuration
        frame_source_factory: Opens a video path (for testing injection)

    Returns:
        Paths written by the output sinks; empty if there was no input
    """
    arena = build_arena(cfg, frame_source_factory)
    try:
        if not arena.sources:
            print("No sources given (either video files or braidz archive).", file=sys.stderr)
            return []
        return _run_arena(arena, cfg)
    finally:
        arena.close()


def _run_arena(arena: CameraArena, cfg: RetrackConfig) -> List[Path]:
    archive = arena.archive
    data2d = build_data2d_index(archive) if archive is not None else None
    expected_fps = archive.expected_fps if archive is not None else None
    tracking_parameters = archive.tracking_parameters if archive is not None else None

    cameras = [source.cam_id for source in arena.sources]
    moments = build_moment_iter(
        cameras,
        arena.take_readers(),
        cfg,
        data2d=data2d,
        braidz_only=arena.braidz_only,
        expected_fps=expected_fps,
    )
    print(f"Merging {len(cameras)} camera(s) using {moments.mode} timing", file=sys.stderr)

    fps = None
    if moments.frame_duration is not None and moments.frame_duration > timedelta(0):
        fps = timedelta(seconds=1) / moments.frame_duration
    if expected_fps:
        fps = expected_fps

    outputs = open_outputs(
        cfg.output,
        arena.sources,
        fps=fps,
        expected_fps=expected_fps,
        tracking_parameters=tracking_parameters,
    )
    debug = debug_outputs(outputs)
    log_interval = cfg.effective_log_interval
    skip = cfg.skip_n_first_output_frames or 0

    moment_iter = iter(moments)
    if cfg.max_num_frames is not None:
        moment_iter = islice(moment_iter, cfg.max_num_frames)

    try:
        for out_fno, synced_data in enumerate(moment_iter):
            if out_fno < skip:
                continue

            for d in debug:
                d.begin_frame(out_fno)

            if out_fno % log_interval == 0:
                print(f"frame {out_fno}", file=sys.stderr)

            render_frames = gather_frame_data(synced_data, arena.sources, cfg, debug)
            for output in outputs:
                output.render_frame(out_fno, synced_data, render_frames)
    finally:
        for output in outputs:
            output.close()

    return [output.path for output in outputs]
