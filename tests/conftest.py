"""Shared fixtures: mocked Viam components and a scripted motion service."""

from typing import Dict, Optional
from unittest.mock import AsyncMock, Mock

import pytest

from viam.components.arm import Arm
from viam.components.gripper import Gripper
from viam.proto.common import Pose, PoseInFrame
from viam.services.motion import Motion

from src.utils.detection import DetectedObject, ObjectDetector
from src.utils.pose_utils import Vector3


GRIPPER_NAME = "test_gripper"
CAMERA_NAME = "test_camera"


def make_pose_in_frame(x, y, z, frame="world", o_x=0.0, o_y=0.0, o_z=1.0, theta=0.0) -> PoseInFrame:
    return PoseInFrame(
        reference_frame=frame,
        pose=Pose(x=x, y=y, z=z, o_x=o_x, o_y=o_y, o_z=o_z, theta=theta)
    )


class ScriptedPoses:
    """get_pose side effect returning a fixed pose per component, or raising."""

    def __init__(self, poses: Optional[Dict[str, object]] = None):
        self.poses = dict(poses or {})

    async def __call__(self, component_name, destination_frame, timeout=None, **kwargs):
        pose = self.poses.get(component_name)
        if pose is None:
            raise Exception(f"no frame for {component_name}")
        if isinstance(pose, Exception):
            raise pose
        return pose


@pytest.fixture
def mock_gripper():
    gripper = AsyncMock(spec=Gripper)
    gripper.name = GRIPPER_NAME
    gripper.grab.return_value = True
    gripper.is_holding_something.return_value = Mock(is_holding_something=True)
    return gripper


@pytest.fixture
def mock_arm():
    arm = AsyncMock(spec=Arm)
    arm.name = "test_arm"
    arm.get_end_position.return_value = Pose(x=300.0, y=0.0, z=200.0, o_x=0.0, o_y=0.0, o_z=-1.0, theta=0.0)
    return arm


@pytest.fixture
def scripted_poses():
    return ScriptedPoses({
        # Object (120.5, -45.2, 310) in camera frame is (-20.5, 154.8, 190) in world
        GRIPPER_NAME: make_pose_in_frame(-19.5, 154.3, 192.0, o_z=-1.0),
        # Camera 500mm above the table, looking straight down
        CAMERA_NAME: make_pose_in_frame(100.0, 200.0, 500.0, o_z=-1.0),
    })


@pytest.fixture
def mock_motion(scripted_poses):
    motion = AsyncMock(spec=Motion)
    motion.move.return_value = True
    motion.get_pose.side_effect = scripted_poses.__call__
    return motion


@pytest.fixture
def detected_object():
    return DetectedObject(center=Vector3(120.5, -45.2, 310.0), point_count=342)


@pytest.fixture
def mock_detector(detected_object):
    detector = AsyncMock(spec=ObjectDetector)
    detector.detect.return_value = [
        DetectedObject(center=Vector3(121.3, -45.5, 311.2), point_count=330)
    ]
    return detector
