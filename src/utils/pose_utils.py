import math
from typing import Dict, NamedTuple, Tuple

from viam.proto.common import Pose

try:
    from utils.utils import compose
except ModuleNotFoundError:
    from ..utils.utils import compose


WORLD_FRAME = "world"


class Vector3(NamedTuple):
    """A point or displacement in millimeters."""
    x: float
    y: float
    z: float

    def to_position_dict(self) -> Dict[str, float]:
        return {"x_mm": self.x, "y_mm": self.y, "z_mm": self.z}

    def to_offset_dict(self) -> Dict[str, float]:
        return {"x": self.x, "y": self.y, "z": self.z, "total": vector_norm(self)}


def vector_difference(a: Vector3, b: Vector3) -> Vector3:
    """Per-axis difference a - b."""
    return Vector3(a.x - b.x, a.y - b.y, a.z - b.z)


def vector_norm(v: Vector3) -> float:
    return math.sqrt(v.x * v.x + v.y * v.y + v.z * v.z)


def point_of(pose: Pose) -> Vector3:
    return Vector3(pose.x, pose.y, pose.z)


def orientation_of(pose: Pose) -> Tuple[float, float, float, float]:
    return pose.o_x, pose.o_y, pose.o_z, pose.theta


def make_pose(point: Vector3, orientation: Tuple[float, float, float, float] = (0.0, 0.0, 1.0, 0.0)) -> Pose:
    """Build a Viam Pose from a point and an (o_x, o_y, o_z, theta) orientation."""
    o_x, o_y, o_z, theta = orientation
    return Pose(
        x=float(point.x),
        y=float(point.y),
        z=float(point.z),
        o_x=float(o_x),
        o_y=float(o_y),
        o_z=float(o_z),
        theta=float(theta)
    )


def compose_point(frame_pose: Pose, point: Vector3) -> Vector3:
    """Express a point given in a child frame in the parent frame.

    frame_pose is the child frame's pose in the parent (for example a
    camera's pose in the world), point is in the child frame.
    """
    return point_of(compose(frame_pose, make_pose(point)))
