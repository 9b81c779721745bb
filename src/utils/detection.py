import asyncio
from dataclasses import dataclass
from typing import Dict, List, Optional

import numpy as np

from viam.components.camera import Camera
from viam.logging import getLogger

try:
    from utils.camera_utils import get_point_cloud_mm
    from utils.errors import DetectionError
    from utils.pose_utils import Vector3
    from utils.segmentation import SegmentationConfig, Segmenter
except ModuleNotFoundError:
    from ..utils.camera_utils import get_point_cloud_mm
    from ..utils.errors import DetectionError
    from ..utils.pose_utils import Vector3
    from ..utils.segmentation import SegmentationConfig, Segmenter


LOGGER = getLogger(__name__)


@dataclass(frozen=True)
class DetectedObject:
    """A candidate graspable cluster, center in mm in the detection frame."""
    center: Vector3
    point_count: int

    def to_dict(self, index: int) -> Dict[str, float]:
        return {
            "index": index,
            "point_count": self.point_count,
            "center_x_mm": self.center.x,
            "center_y_mm": self.center.y,
            "center_z_mm": self.center.z,
        }


def compute_center(points: np.ndarray) -> Vector3:
    """Arithmetic mean of all points in a cluster."""
    points = np.asarray(points, dtype=np.float64).reshape(-1, 3)
    if len(points) == 0:
        return Vector3(0.0, 0.0, 0.0)
    mean = points.mean(axis=0)
    return Vector3(float(mean[0]), float(mean[1]), float(mean[2]))


def filter_clusters(clusters: List[np.ndarray], config: SegmentationConfig) -> List[DetectedObject]:
    """Turn clusters into objects, dropping ones that fail the depth or size limits."""
    detected = []
    for cluster in clusters:
        point_count = len(cluster)
        if point_count == 0:
            continue
        center = compute_center(cluster)
        if config.max_depth_mm > 0 and center.z > config.max_depth_mm:
            LOGGER.debug(f"Dropping cluster at depth {center.z:.1f}mm (max {config.max_depth_mm:.1f}mm)")
            continue
        if config.max_point_count > 0 and point_count > config.max_point_count:
            LOGGER.debug(f"Dropping cluster with {point_count} points (max {config.max_point_count})")
            continue
        detected.append(DetectedObject(center=center, point_count=point_count))
    return detected


async def detect_objects(
    camera: Camera,
    segmenter: Segmenter,
    config: SegmentationConfig,
    *,
    timeout: Optional[float] = None
) -> List[DetectedObject]:
    """Capture a point cloud and find objects on the support plane.

    Centers are reported in whatever frame the camera reports points in.
    An empty list means nothing was detected; failures raise DetectionError.
    """
    config.check_valid()

    points = await get_point_cloud_mm(camera, timeout=timeout)
    LOGGER.debug(f"Captured point cloud with {len(points)} points")

    try:
        clusters = await asyncio.to_thread(segmenter.segment, points, config)
    except DetectionError:
        raise
    except Exception as e:
        raise DetectionError(f"Segmentation failed: {e}") from e

    detected = filter_clusters(clusters, config)
    LOGGER.info(f"Detected {len(detected)} objects ({len(clusters)} clusters before filtering)")
    return detected


class ObjectDetector:
    """Binds a camera, a segmenter and its config for repeated detection."""

    def __init__(self, camera: Camera, segmenter: Segmenter, config: SegmentationConfig):
        self.camera = camera
        self.segmenter = segmenter
        self.config = config

    async def detect(self, *, timeout: Optional[float] = None) -> List[DetectedObject]:
        return await detect_objects(self.camera, self.segmenter, self.config, timeout=timeout)
