import asyncio
import tempfile
from typing import Optional

import numpy as np
import open3d as o3d

from viam.components.camera import Camera

try:
    from utils.errors import SensorError
except ModuleNotFoundError:
    from ..utils.errors import SensorError

# Viam encodes PCD coordinates in meters
METERS_TO_MM = 1000.0


def decode_pcd(data: bytes) -> np.ndarray:
    """Decode PCD bytes into an (N, 3) array of points in millimeters.

    Open3D only warns on a payload it cannot parse and hands back an empty
    cloud, so an unreadable payload comes back as zero points.
    """
    with tempfile.NamedTemporaryFile(suffix=".pcd") as f:
        f.write(data)
        f.flush()
        pcd = o3d.io.read_point_cloud(f.name, format="pcd")
    return np.asarray(pcd.points, dtype=np.float64).reshape(-1, 3) * METERS_TO_MM


async def get_point_cloud_mm(camera: Camera, *, timeout: Optional[float] = None) -> np.ndarray:
    try:
        data, _ = await camera.get_point_cloud(timeout=timeout)
    except Exception as e:
        raise SensorError(f"Could not get point cloud from camera: {e}") from e
    if not data:
        raise SensorError("Camera returned an empty point cloud payload")

    try:
        points = await asyncio.to_thread(decode_pcd, data)
    except Exception as e:
        raise SensorError(f"Could not decode point cloud payload: {e}") from e
    if len(points) == 0:
        raise SensorError(f"Point cloud payload of {len(data)} bytes decoded to no points")
    return points
