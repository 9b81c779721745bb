import math
from typing import Tuple

import numpy as np
from scipy.spatial.transform import Rotation

from viam.proto.common import Pose

# Below this, an orientation vector is treated as pointing straight along +/-z
# and its longitude is undefined.
ANGLE_EPSILON = 1e-4


def _lat_lon(ox: float, oy: float, oz: float) -> Tuple[float, float]:
    """Latitude and longitude (radians) of a unit z axis direction."""
    lat = math.acos(max(-1.0, min(1.0, oz)))
    lon = 0.0
    if 1 - abs(oz) > ANGLE_EPSILON:
        lon = math.atan2(oy, ox)
    return lat, lon


def ov2mat(ox: float, oy: float, oz: float, theta: float) -> np.ndarray:
    """
    Convert a Viam orientation vector (degrees) to a rotation matrix.

    The orientation vector is the direction of the frame's z axis plus a
    rotation of theta degrees about it. In the frame system that is the
    intrinsic ZYZ rotation (longitude, latitude, theta).

    Args:
        ox, oy, oz, theta: Viam orientation vector components

    Returns:
        3x3 rotation matrix as numpy array
    """
    norm = math.sqrt(ox * ox + oy * oy + oz * oz)
    if norm == 0:
        raise ValueError("orientation vector has zero length")

    lat, lon = _lat_lon(ox / norm, oy / norm, oz / norm)
    return Rotation.from_euler("ZYZ", [lon, lat, math.radians(theta)]).as_matrix()


def mat2ov(R: np.ndarray) -> Tuple[float, float, float, float]:
    """
    Convert a rotation matrix to a Viam orientation vector

    Args:
        R: 3x3 rotation matrix as numpy array

    Returns:
        (ox, oy, oz, theta): Orientation vector components, theta in degrees
    """
    rotation = Rotation.from_matrix(R)
    ox, oy, oz = (float(v) for v in rotation.as_matrix()[0:3, 2])
    lat, lon = _lat_lon(ox, oy, oz)

    # Whatever remains after undoing longitude and latitude is a pure z rotation
    remainder = Rotation.from_euler("ZY", [lon, lat]).inv() * rotation
    theta = float(remainder.as_euler("ZYX", degrees=True)[0])

    return ox, oy, oz, theta


def compose(pose1: Pose, pose2: Pose) -> Pose:
    """
    Compose two poses: pose2 is expressed in the frame described by pose1.

    Args:
        pose1: First Viam Pose
        pose2: Second Viam Pose

    Returns:
        Composed Pose
    """
    R1 = ov2mat(pose1.o_x, pose1.o_y, pose1.o_z, pose1.theta)
    R2 = ov2mat(pose2.o_x, pose2.o_y, pose2.o_z, pose2.theta)
    t1 = np.array([pose1.x, pose1.y, pose1.z])
    t2 = np.array([pose2.x, pose2.y, pose2.z])

    R = R1 @ R2
    t = R1 @ t2 + t1
    ox, oy, oz, theta = mat2ov(R)

    return Pose(
        x=float(t[0]),
        y=float(t[1]),
        z=float(t[2]),
        o_x=ox,
        o_y=oy,
        o_z=oz,
        theta=theta
    )
