import asyncio
from typing import Any, ClassVar, Dict, Mapping, Optional, Sequence, Set, Tuple

from typing_extensions import Self
from viam.components.arm import Arm
from viam.components.camera import Camera
from viam.components.gripper import Gripper
from viam.proto.app.robot import ComponentConfig
from viam.proto.common import ResourceName
from viam.resource.base import ResourceBase
from viam.resource.easy_resource import EasyResource
from viam.resource.types import Model, ModelFamily
from viam.services.generic import Generic
from viam.services.motion import Motion
from viam.utils import struct_to_dict, ValueTypes

try:
    from models.commands import (
        Command,
        DetectCommand,
        MoveToCommand,
        PickCommand,
        PickDetectedCommand,
        StatusCommand,
        parse_command,
    )
    from models.session import Session
    from utils.detection import ObjectDetector
    from utils.errors import ConfigError, HandEyeTestError
    from utils.move import ConvergenceController
    from utils.pick import (
        DEFAULT_APPROACH_OFFSET_MM,
        DEFAULT_GRASP_DEPTH_OFFSET_MM,
        DEFAULT_LIFT_HEIGHT_MM,
        PickConfig,
        PickOrchestrator,
    )
    from utils.pose_utils import Vector3
    from utils.segmentation import RadiusClusteringSegmenter, SegmentationConfig
except ModuleNotFoundError:
    # when running as local module with run.sh
    from ..models.commands import (
        Command,
        DetectCommand,
        MoveToCommand,
        PickCommand,
        PickDetectedCommand,
        StatusCommand,
        parse_command,
    )
    from ..models.session import Session
    from ..utils.detection import ObjectDetector
    from ..utils.errors import ConfigError, HandEyeTestError
    from ..utils.move import ConvergenceController
    from ..utils.pick import (
        DEFAULT_APPROACH_OFFSET_MM,
        DEFAULT_GRASP_DEPTH_OFFSET_MM,
        DEFAULT_LIFT_HEIGHT_MM,
        PickConfig,
        PickOrchestrator,
    )
    from ..utils.pose_utils import Vector3
    from ..utils.segmentation import RadiusClusteringSegmenter, SegmentationConfig


# required attributes
ARM_ATTR = "arm"
CAMERA_ATTR = "camera"
GRIPPER_ATTR = "gripper"
# optional attributes
MOTION_ATTR = "motion"
DETECTION_FRAME_ATTR = "detection_frame"
APPROACH_OFFSET_ATTR = "approach_offset_mm"
GRASP_DEPTH_OFFSET_ATTR = "grasp_depth_offset_mm"
LIFT_HEIGHT_ATTR = "lift_height_mm"
SEGMENTATION_ATTR = "segmentation"
# Default config attribute values
DEFAULT_MOTION_SERVICE = "builtin"


def _positive_or_default(attrs: Mapping[str, Any], key: str, default: float) -> float:
    """Zero or missing means "use the default", matching the module config."""
    value = attrs.get(key)
    if value is None or value == 0:
        return default
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ConfigError(f"{key} must be a number, got: {value!r}")
    return float(value)


class HandEyeTest(Generic, EasyResource):
    """Generic service that validates hand-eye calibration by picking an object.

    The service finds objects in the camera's point cloud, drives the gripper
    to one of them and reports how far the gripper ended up from where the
    calibrated frame system said the object was.
    """

    MODEL: ClassVar[Model] = Model(ModelFamily("shannon", "hand-eye-test"), "calibration-tester")

    def __init__(self, name: str):
        super().__init__(name)
        self.session: Optional[Session] = None
        self._tasks: Set[asyncio.Task] = set()

    @classmethod
    def new(
        cls, config: ComponentConfig, dependencies: Mapping[ResourceName, ResourceBase]
    ) -> Self:
        """This method creates a new instance of this Generic service.
        The default implementation sets the name from the `config` parameter and then calls `reconfigure`.

        Args:
            config (ComponentConfig): The configuration for this resource
            dependencies (Mapping[ResourceName, ResourceBase]): The dependencies (both required and optional)

        Returns:
            Self: The resource
        """
        return super().new(config, dependencies)

    @classmethod
    def validate_config(
        cls, config: ComponentConfig
    ) -> Tuple[Sequence[str], Sequence[str]]:
        """Validate the configuration object.

        Args:
            config: The configuration for this resource

        Returns:
            Tuple[Sequence[str], Sequence[str]]: A tuple where the
                first element is a list of required dependencies and the
                second element is a list of optional dependencies
        """
        attrs = struct_to_dict(config.attributes)

        arm = attrs.get(ARM_ATTR)
        if arm is None:
            raise Exception(f"Missing required {ARM_ATTR} attribute.")

        camera = attrs.get(CAMERA_ATTR)
        if camera is None:
            raise Exception(f"Missing required {CAMERA_ATTR} attribute.")

        gripper = attrs.get(GRIPPER_ATTR)
        if gripper is None:
            raise Exception(f"Missing required {GRIPPER_ATTR} attribute.")

        for key in (APPROACH_OFFSET_ATTR, GRASP_DEPTH_OFFSET_ATTR, LIFT_HEIGHT_ATTR):
            value = attrs.get(key)
            if value is not None and (isinstance(value, bool) or not isinstance(value, (int, float))):
                raise Exception(f"{key} must be a number.")

        SegmentationConfig.from_attributes(attrs.get(SEGMENTATION_ATTR)).check_valid()

        motion = attrs.get(MOTION_ATTR, DEFAULT_MOTION_SERVICE)
        return [str(arm), str(camera), str(gripper)], [str(motion)]

    def reconfigure(
        self, config: ComponentConfig, dependencies: Mapping[ResourceName, ResourceBase]
    ):
        """Dynamically update the service when it receives a new config.

        Reconfiguring starts a fresh session: the last detection and the last
        result are dropped.

        Args:
            config: The new configuration
            dependencies: Any dependencies (both required and optional)
        """
        self.logger.debug(f"Reconfiguring hand-eye test resource with deps: {dependencies}")
        attrs = struct_to_dict(config.attributes)

        arm_name: str = attrs.get(ARM_ATTR)
        self.arm: Arm = dependencies.get(Arm.get_resource_name(arm_name))
        if self.arm is None:
            raise Exception(f"Arm not found: {arm_name}")

        camera_name: str = attrs.get(CAMERA_ATTR)
        self.camera: Camera = dependencies.get(Camera.get_resource_name(camera_name))
        if self.camera is None:
            raise Exception(f"Camera not found: {camera_name}")
        self.camera_name = camera_name

        gripper_name: str = attrs.get(GRIPPER_ATTR)
        self.gripper: Gripper = dependencies.get(Gripper.get_resource_name(gripper_name))
        if self.gripper is None:
            raise Exception(f"Gripper not found: {gripper_name}")
        self.gripper_name = gripper_name

        motion_name: str = attrs.get(MOTION_ATTR, DEFAULT_MOTION_SERVICE)
        self.motion: Motion = dependencies.get(Motion.get_resource_name(motion_name))
        if self.motion is None:
            raise Exception(f"Motion service not found: {motion_name}")

        self.detection_frame: str = attrs.get(DETECTION_FRAME_ATTR) or camera_name
        self.segmentation = SegmentationConfig.from_attributes(attrs.get(SEGMENTATION_ATTR))
        self.pick_config = PickConfig(
            gripper_name=gripper_name,
            detection_frame=self.detection_frame,
            approach_offset_mm=_positive_or_default(attrs, APPROACH_OFFSET_ATTR, DEFAULT_APPROACH_OFFSET_MM),
            grasp_depth_offset_mm=float(attrs.get(GRASP_DEPTH_OFFSET_ATTR, DEFAULT_GRASP_DEPTH_OFFSET_MM)),
            lift_height_mm=_positive_or_default(attrs, LIFT_HEIGHT_ATTR, DEFAULT_LIFT_HEIGHT_MM),
        )
        self.logger.debug(f"Pick config: {self.pick_config}")
        self.logger.debug(f"Segmentation config: {self.segmentation}")

        detector = ObjectDetector(
            self.camera,
            RadiusClusteringSegmenter(logger=self.logger),
            self.segmentation
        )
        self.session = Session(
            detector=detector,
            orchestrator=PickOrchestrator(
                self.gripper, self.arm, self.motion, detector, self.pick_config, logger=self.logger
            ),
            controller=ConvergenceController(self.motion, gripper_name, logger=self.logger),
            logger=self.logger,
        )

        return super().reconfigure(config, dependencies)

    async def _dispatch(self, command: Command, timeout: Optional[float]) -> Dict[str, Any]:
        if self.session is None:
            raise Exception("Service is not configured")

        match command:
            case DetectCommand():
                objects = await self.session.detect(timeout=timeout)
                return {
                    "objects": [obj.to_dict(i) for i, obj in enumerate(objects)],
                    "count": len(objects),
                }
            case PickCommand(object_index=index):
                result = await self.session.pick(index, timeout=timeout)
                return result.to_dict()
            case PickDetectedCommand(object_index=index):
                result = await self.session.pick_detected(index, timeout=timeout)
                return result.to_dict()
            case MoveToCommand(x=x, y=y, z=z, step_size=step_size):
                result = await self.session.move_to(Vector3(x, y, z), step_size, timeout=timeout)
                return result.to_dict()
            case StatusCommand():
                return await self.session.status()

    async def do_command(
        self,
        command: Mapping[str, ValueTypes],
        *,
        timeout: Optional[float] = None,
        **kwargs
    ) -> Mapping[str, ValueTypes]:
        """Execute custom commands.

        Supported commands:
        - {"command": "detect"}: Detect objects in the camera's point cloud
        - {"command": "pick", "object_index": 0}: Detect, then pick the object at object_index
        - {"command": "pick_detected", "object_index": 0}: Pick from the last detection
        - {"command": "move_to", "x": .., "y": .., "z": .., "step_size": 20}: Step the gripper to a world-frame point
        - {"command": "status"}: Current status, last result and number of detected objects
        """
        try:
            parsed = parse_command(command)
        except HandEyeTestError as e:
            self.logger.error(f"Rejected command {dict(command)}: {e}")
            raise

        task = asyncio.ensure_future(self._dispatch(parsed, timeout))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        try:
            return await task
        except HandEyeTestError as e:
            self.logger.error(f"Command {command.get('command')} failed: {e}")
            raise

    async def close(self):
        """Cancel in-flight commands."""
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self.logger.debug(f"Closed hand-eye test resource, cancelled {len(tasks)} in-flight commands")
