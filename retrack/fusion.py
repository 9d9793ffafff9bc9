"""Combining the images and 2D detections of one moment into render frames."""

import math
from typing import List, Sequence

from .config import FeatureDetectionMethod, RetrackConfig
from .models import SyncedPictures, datetime_to_f64
from .render import CameraSource, PerCamRenderFrame


def gather_frame_data(
    synced_data: SyncedPictures,
    sources: Sequence[CameraSource],
    cfg: RetrackConfig,
    debug_outputs: Sequence = (),
) -> List[PerCamRenderFrame]:
    """
    Build one render frame per camera for a moment.

    Each render frame starts from the camera's template at the camera's
    timestamp, takes this moment's image if there is one, and receives the
    camera's 2D points according to the feature detection method. Points
    with a non-finite coordinate are skipped.

    Args:
        synced_data: The moment
        sources: Camera roster, in the same order as the moment's pictures
        cfg: Run configuration
        debug_outputs: Debug sinks receiving a trace of collected points

    Returns:
        Render frames in roster order
    """
    synced_pics = synced_data.camera_pictures
    if len(synced_pics) != len(sources):
        raise ValueError(
            f"moment has {len(synced_pics)} camera pictures for {len(sources)} cameras"
        )

    method = cfg.processing.feature_detection_method
    all_cam_render_data = []
    for per_cam, source in zip(synced_pics, sources):
        cam_render_data = source.per_cam_render.new_render_data(per_cam.timestamp)

        if per_cam.image is not None:
            cam_render_data.set_original_image(per_cam.image)

        name = source.per_cam_render.best_name
        pts_f64 = datetime_to_f64(per_cam.timestamp)
        for rowi, row in enumerate(per_cam.this_cam_this_frame):
            for d in debug_outputs:
                d.write_line(
                    f"   Collect {name}: {per_cam.timestamp} ({pts_f64}), rowi {rowi}, "
                    f"{row.cam_received_datetime} ({row.cam_received_timestamp}), "
                    f"{row.x}, {row.y}"
                )

            if method is FeatureDetectionMethod.COPY_EXISTING:
                if math.isfinite(row.x) and math.isfinite(row.y):
                    cam_render_data.append_2d_point(row.x, row.y)
            else:
                raise ValueError(f"unsupported feature detection method: {method}")

        if not per_cam.this_cam_this_frame:
            for d in debug_outputs:
                d.write_line(f"   Collect {name}: {per_cam.timestamp} ({pts_f64}) no points")

        all_cam_render_data.append(cam_render_data)
    return all_cam_render_data
