"""Unit tests for utils.camera_utils module."""

from unittest.mock import AsyncMock, Mock, patch

import pytest

from viam.components.camera import Camera

from src.utils.camera_utils import decode_pcd, get_point_cloud_mm
from src.utils.detection import detect_objects
from src.utils.errors import DetectionError, SensorError
from src.utils.segmentation import SegmentationConfig


ASCII_PCD = b"""# .PCD v0.7 - Point Cloud Data file format
VERSION .7
FIELDS x y z
SIZE 4 4 4
TYPE F F F
COUNT 1 1 1
WIDTH 2
HEIGHT 1
VIEWPOINT 0 0 0 1 0 0 0
POINTS 2
DATA ascii
0.1 0.2 0.3
-0.05 0 1.5
"""


@pytest.fixture
def mock_camera():
    camera = AsyncMock(spec=Camera)
    camera.name = "test_camera"
    return camera


def test_decode_pcd_converts_to_mm():
    points = decode_pcd(ASCII_PCD)
    assert points.shape == (2, 3)
    assert points[0] == pytest.approx([100.0, 200.0, 300.0], abs=1e-3)
    assert points[1] == pytest.approx([-50.0, 0.0, 1500.0], abs=1e-3)


@pytest.mark.asyncio
async def test_get_point_cloud_mm(mock_camera):
    mock_camera.get_point_cloud.return_value = (ASCII_PCD, "pointcloud/pcd")
    points = await get_point_cloud_mm(mock_camera, timeout=3.0)
    mock_camera.get_point_cloud.assert_awaited_once_with(timeout=3.0)
    assert len(points) == 2


@pytest.mark.asyncio
async def test_empty_payload(mock_camera):
    mock_camera.get_point_cloud.return_value = (b"", "pointcloud/pcd")
    with pytest.raises(SensorError):
        await get_point_cloud_mm(mock_camera)


@pytest.mark.asyncio
async def test_camera_error(mock_camera):
    mock_camera.get_point_cloud.side_effect = Exception("timeout")
    with pytest.raises(SensorError, match="timeout"):
        await get_point_cloud_mm(mock_camera)


@pytest.mark.asyncio
async def test_unreadable_payload(mock_camera):
    mock_camera.get_point_cloud.return_value = (b"garbage", "pointcloud/pcd")
    with pytest.raises(SensorError):
        await get_point_cloud_mm(mock_camera)


@pytest.mark.asyncio
async def test_decode_error(mock_camera):
    mock_camera.get_point_cloud.return_value = (ASCII_PCD, "pointcloud/pcd")
    with patch("src.utils.camera_utils.decode_pcd", side_effect=RuntimeError("bad header")):
        with pytest.raises(SensorError, match="bad header"):
            await get_point_cloud_mm(mock_camera)


@pytest.mark.asyncio
async def test_unreadable_payload_fails_detection(mock_camera):
    mock_camera.get_point_cloud.return_value = (b"garbage", "pointcloud/pcd")
    segmenter = Mock()
    with pytest.raises(DetectionError):
        await detect_objects(mock_camera, segmenter, SegmentationConfig())
    segmenter.segment.assert_not_called()
