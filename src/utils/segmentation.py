"""
Point cloud segmentation.

SegmentationConfig carries the plane and cluster parameters the detection
pipeline hands to a segmenter. RadiusClusteringSegmenter is the default
segmenter: statistical outlier removal, removal of the dominant support
plane, then radius clustering of whatever is left.
"""

import math
from dataclasses import dataclass, field
from typing import Any, List, Mapping, Optional, Protocol, Sequence

import numpy as np
import open3d as o3d

from viam.logging import getLogger

try:
    from utils.errors import ConfigError
except ModuleNotFoundError:
    from ..utils.errors import ConfigError


LOGGER = getLogger(__name__)

# Attribute names under the "segmentation" config key
MIN_PTS_IN_PLANE_ATTR = "min_pts_in_plane"
MAX_DIST_FROM_PLANE_ATTR = "max_dist_from_plane_mm"
GROUND_NORMAL_ATTR = "ground_normal"
ANGLE_TOLERANCE_ATTR = "angle_tolerance_deg"
MIN_PTS_IN_SEGMENT_ATTR = "min_pts_in_segment"
CLUSTERING_RADIUS_ATTR = "clustering_radius_mm"
MEAN_K_FILTERING_ATTR = "mean_k_filtering"
MAX_DEPTH_ATTR = "max_depth_mm"
MAX_POINT_COUNT_ATTR = "max_point_count"

# Default config attribute values
DEFAULT_MIN_PTS_IN_PLANE = 1500
DEFAULT_MAX_DIST_FROM_PLANE_MM = 5.0
DEFAULT_GROUND_NORMAL = (0.0, 0.0, 1.0)
DEFAULT_ANGLE_TOLERANCE_DEG = 20.0
DEFAULT_MIN_PTS_IN_SEGMENT = 100
DEFAULT_CLUSTERING_RADIUS_MM = 5.0
DEFAULT_MEAN_K_FILTERING = 50

OUTLIER_STD_RATIO = 1.0
PLANE_RANSAC_N = 3
PLANE_NUM_ITERATIONS = 1000


@dataclass
class SegmentationConfig:
    min_pts_in_plane: int = DEFAULT_MIN_PTS_IN_PLANE
    max_dist_from_plane_mm: float = DEFAULT_MAX_DIST_FROM_PLANE_MM
    ground_normal: Sequence[float] = field(default_factory=lambda: DEFAULT_GROUND_NORMAL)
    angle_tolerance_deg: float = DEFAULT_ANGLE_TOLERANCE_DEG
    min_pts_in_segment: int = DEFAULT_MIN_PTS_IN_SEGMENT
    clustering_radius_mm: float = DEFAULT_CLUSTERING_RADIUS_MM
    mean_k_filtering: int = DEFAULT_MEAN_K_FILTERING
    # Post-filters, disabled at 0
    max_depth_mm: float = 0.0
    max_point_count: int = 0

    @classmethod
    def from_attributes(cls, attrs: Optional[Mapping[str, Any]]) -> "SegmentationConfig":
        """Build a config from the "segmentation" attribute mapping.

        Missing or zero values fall back to the defaults, the same way
        the module config treats them.
        """
        attrs = attrs or {}
        if not isinstance(attrs, Mapping):
            raise ConfigError("segmentation must be a mapping of parameters.")

        def number(key: str, default: float) -> float:
            value = attrs.get(key)
            if value is None or value == 0:
                return default
            if isinstance(value, bool) or not isinstance(value, (int, float)):
                raise ConfigError(f"segmentation.{key} must be a number, got: {value!r}")
            return float(value)

        ground_normal = attrs.get(GROUND_NORMAL_ATTR)
        if ground_normal is None:
            ground_normal = DEFAULT_GROUND_NORMAL
        if not isinstance(ground_normal, (list, tuple)):
            raise ConfigError(f"segmentation.{GROUND_NORMAL_ATTR} must be a list of 3 numbers, got: {ground_normal!r}")

        return cls(
            min_pts_in_plane=int(number(MIN_PTS_IN_PLANE_ATTR, DEFAULT_MIN_PTS_IN_PLANE)),
            max_dist_from_plane_mm=number(MAX_DIST_FROM_PLANE_ATTR, DEFAULT_MAX_DIST_FROM_PLANE_MM),
            ground_normal=tuple(ground_normal),
            angle_tolerance_deg=number(ANGLE_TOLERANCE_ATTR, DEFAULT_ANGLE_TOLERANCE_DEG),
            min_pts_in_segment=int(number(MIN_PTS_IN_SEGMENT_ATTR, DEFAULT_MIN_PTS_IN_SEGMENT)),
            clustering_radius_mm=number(CLUSTERING_RADIUS_ATTR, DEFAULT_CLUSTERING_RADIUS_MM),
            mean_k_filtering=int(number(MEAN_K_FILTERING_ATTR, DEFAULT_MEAN_K_FILTERING)),
            max_depth_mm=number(MAX_DEPTH_ATTR, 0.0),
            max_point_count=int(number(MAX_POINT_COUNT_ATTR, 0)),
        )

    def check_valid(self) -> None:
        """Raise ConfigError if the parameters are inconsistent."""
        if self.min_pts_in_plane <= 0:
            raise ConfigError(f"{MIN_PTS_IN_PLANE_ATTR} must be greater than 0, got {self.min_pts_in_plane}")
        if self.max_dist_from_plane_mm <= 0:
            raise ConfigError(f"{MAX_DIST_FROM_PLANE_ATTR} must be greater than 0, got {self.max_dist_from_plane_mm}")
        if not 0 <= self.angle_tolerance_deg <= 180:
            raise ConfigError(f"{ANGLE_TOLERANCE_ATTR} must be between 0 and 180, got {self.angle_tolerance_deg}")
        if self.min_pts_in_segment <= 0:
            raise ConfigError(f"{MIN_PTS_IN_SEGMENT_ATTR} must be greater than 0, got {self.min_pts_in_segment}")
        if self.clustering_radius_mm <= 0:
            raise ConfigError(f"{CLUSTERING_RADIUS_ATTR} must be greater than 0, got {self.clustering_radius_mm}")
        if self.mean_k_filtering < 0:
            raise ConfigError(f"{MEAN_K_FILTERING_ATTR} must not be negative, got {self.mean_k_filtering}")
        if self.max_depth_mm < 0:
            raise ConfigError(f"{MAX_DEPTH_ATTR} must not be negative, got {self.max_depth_mm}")
        if self.max_point_count < 0:
            raise ConfigError(f"{MAX_POINT_COUNT_ATTR} must not be negative, got {self.max_point_count}")
        if len(self.ground_normal) != 3:
            raise ConfigError(f"{GROUND_NORMAL_ATTR} must have 3 components, got {list(self.ground_normal)}")
        if np.linalg.norm(np.asarray(self.ground_normal, dtype=float)) == 0:
            raise ConfigError(f"{GROUND_NORMAL_ATTR} must not be the zero vector")


class Segmenter(Protocol):
    def segment(self, points: np.ndarray, config: SegmentationConfig) -> List[np.ndarray]:
        """Split an (N, 3) cloud into object clusters, one (M, 3) array each."""
        ...


class RadiusClusteringSegmenter:
    """Plane removal plus radius clustering, built on Open3D."""

    def __init__(self, logger=None):
        self.logger = logger or LOGGER

    def remove_outliers(self, pcd: o3d.geometry.PointCloud, mean_k: int) -> o3d.geometry.PointCloud:
        if mean_k <= 0 or len(pcd.points) <= mean_k:
            return pcd
        filtered, _ = pcd.remove_statistical_outlier(nb_neighbors=mean_k, std_ratio=OUTLIER_STD_RATIO)
        return filtered

    def remove_ground_plane(self, pcd: o3d.geometry.PointCloud, config: SegmentationConfig) -> o3d.geometry.PointCloud:
        """Drop the dominant plane if it is big enough and faces the expected way."""
        if len(pcd.points) < max(PLANE_RANSAC_N, config.min_pts_in_plane):
            self.logger.debug(f"Only {len(pcd.points)} points, not enough to look for a plane")
            return pcd

        plane_model, inliers = pcd.segment_plane(
            distance_threshold=config.max_dist_from_plane_mm,
            ransac_n=PLANE_RANSAC_N,
            num_iterations=PLANE_NUM_ITERATIONS
        )
        normal = np.asarray(plane_model[:3], dtype=float)
        normal /= np.linalg.norm(normal)
        expected = np.asarray(config.ground_normal, dtype=float)
        expected /= np.linalg.norm(expected)

        # Plane normals have no preferred sign
        cos_angle = min(1.0, abs(float(np.dot(normal, expected))))
        angle_deg = math.degrees(math.acos(cos_angle))

        if len(inliers) < config.min_pts_in_plane or angle_deg > config.angle_tolerance_deg:
            self.logger.debug(
                f"Dominant plane rejected: {len(inliers)} inliers, {angle_deg:.1f} deg from expected normal"
            )
            return pcd

        self.logger.debug(f"Removing plane with {len(inliers)} points ({angle_deg:.1f} deg from expected normal)")
        return pcd.select_by_index(inliers, invert=True)

    def segment(self, points: np.ndarray, config: SegmentationConfig) -> List[np.ndarray]:
        points = np.asarray(points, dtype=np.float64).reshape(-1, 3)
        if len(points) == 0:
            return []

        pcd = o3d.geometry.PointCloud()
        pcd.points = o3d.utility.Vector3dVector(points)

        pcd = self.remove_outliers(pcd, config.mean_k_filtering)
        pcd = self.remove_ground_plane(pcd, config)
        if len(pcd.points) == 0:
            return []

        # min_points=1 makes DBSCAN plain radius clustering: every point within
        # the radius of a cluster member joins that cluster.
        labels = np.array(pcd.cluster_dbscan(eps=config.clustering_radius_mm, min_points=1, print_progress=False))
        if labels.size == 0 or labels.max() < 0:
            return []

        remaining = np.asarray(pcd.points)
        clusters = []
        for label in np.unique(labels):
            if label < 0:
                continue
            cluster = remaining[labels == label]
            if len(cluster) >= config.min_pts_in_segment:
                clusters.append(cluster)

        clusters.sort(key=len, reverse=True)
        self.logger.debug(f"Segmented {len(clusters)} clusters from {len(points)} points")
        return clusters
