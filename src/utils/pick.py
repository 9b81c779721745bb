"""
Pick sequence used to validate hand-eye calibration.

The sequence opens the gripper, approaches the detected object, re-detects it
from the approach pose, moves to grasp, compares the gripper's world position
with the object's, grabs, lifts and checks whether the gripper is holding
something. Each step is either fatal (its failure aborts the pick) or
advisory (its failure is logged and the sequence carries on); the table in
PICK_STEPS is the only place that decides which.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple

from viam.components.arm import Arm
from viam.components.gripper import Gripper
from viam.logging import getLogger
from viam.proto.common import PoseInFrame
from viam.services.motion import Motion

try:
    from utils.detection import DetectedObject, ObjectDetector
    from utils.errors import ActuationError, DetectionError, HandEyeTestError, PickError, QueryError
    from utils.motion_utils import get_pose_in_frame, move_component
    from utils.pose_utils import (
        WORLD_FRAME,
        Vector3,
        compose_point,
        make_pose,
        orientation_of,
        point_of,
        vector_difference,
        vector_norm,
    )
except ModuleNotFoundError:
    from ..utils.detection import DetectedObject, ObjectDetector
    from ..utils.errors import ActuationError, DetectionError, HandEyeTestError, PickError, QueryError
    from ..utils.motion_utils import get_pose_in_frame, move_component
    from ..utils.pose_utils import (
        WORLD_FRAME,
        Vector3,
        compose_point,
        make_pose,
        orientation_of,
        point_of,
        vector_difference,
        vector_norm,
    )


LOGGER = getLogger(__name__)

DEFAULT_APPROACH_OFFSET_MM = 100.0
DEFAULT_GRASP_DEPTH_OFFSET_MM = 0.0
DEFAULT_LIFT_HEIGHT_MM = 50.0

# Gripper z along the camera's viewing axis
SENSOR_FRAME_ORIENTATION = (0.0, 0.0, 1.0, 0.0)
# Gripper z pointing down in the world
WORLD_DOWN_ORIENTATION = (0.0, 0.0, -1.0, 0.0)


class StepPolicy(str, Enum):
    FATAL = "fatal"
    ADVISORY = "advisory"


OPEN_GRIPPER = "open_gripper"
APPROACH_POSE = "approach_pose"
APPROACH = "approach"
RE_DETECT = "re_detect"
GRASP_POSITION = "grasp_position"
WORLD_FRAME_COMPARE = "world_frame_compare"
GRAB = "grab"
LIFT = "lift"
VERIFY = "verify"

PICK_STEPS: Tuple[Tuple[str, StepPolicy], ...] = (
    (OPEN_GRIPPER, StepPolicy.FATAL),
    (APPROACH_POSE, StepPolicy.ADVISORY),
    (APPROACH, StepPolicy.FATAL),
    (RE_DETECT, StepPolicy.ADVISORY),
    (GRASP_POSITION, StepPolicy.FATAL),
    (WORLD_FRAME_COMPARE, StepPolicy.ADVISORY),
    (GRAB, StepPolicy.FATAL),
    (LIFT, StepPolicy.ADVISORY),
    (VERIFY, StepPolicy.ADVISORY),
)
STEP_POLICIES: Dict[str, StepPolicy] = dict(PICK_STEPS)


@dataclass
class PickConfig:
    gripper_name: str
    detection_frame: str
    approach_offset_mm: float = DEFAULT_APPROACH_OFFSET_MM
    grasp_depth_offset_mm: float = DEFAULT_GRASP_DEPTH_OFFSET_MM
    lift_height_mm: float = DEFAULT_LIFT_HEIGHT_MM

    @property
    def in_world_frame(self) -> bool:
        return self.detection_frame == WORLD_FRAME

    @property
    def away_from_surface(self) -> float:
        """Sign of the z axis pointing away from the surface.

        A camera looks along +z, so away from the surface is -z in a sensor
        frame and +z in the world.
        """
        return 1.0 if self.in_world_frame else -1.0


@dataclass
class PickResult:
    detected_position: Vector3
    detection_frame: str
    success: bool = False
    is_holding: bool = False
    grabbed: bool = False
    # None means the value was never obtained
    object_position_world_frame: Optional[Vector3] = None
    gripper_position_world_frame: Optional[Vector3] = None
    approach_offset: Optional[Vector3] = None
    world_frame_offset: Optional[Vector3] = None
    steps_completed: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        detected = self.detected_position.to_position_dict()
        detected["frame"] = self.detection_frame
        result: Dict[str, Any] = {
            "success": self.success,
            "is_holding": self.is_holding,
            "grabbed": self.grabbed,
            "detected_position": detected,
        }
        if self.object_position_world_frame is not None:
            result["object_position_world_frame"] = {
                **self.object_position_world_frame.to_position_dict(), "frame": WORLD_FRAME
            }
        if self.gripper_position_world_frame is not None:
            result["gripper_position_world_frame"] = {
                **self.gripper_position_world_frame.to_position_dict(), "frame": WORLD_FRAME
            }
        if self.approach_offset is not None:
            result["approach_offset_mm"] = self.approach_offset.to_offset_dict()
        if self.world_frame_offset is not None:
            result["world_frame_offset_mm"] = self.world_frame_offset.to_offset_dict()
        result["steps_completed"] = list(self.steps_completed)
        return result


@dataclass
class _PickContext:
    obj: DetectedObject
    result: PickResult
    approach_point: Vector3
    grasp_point: Vector3
    orientation: Tuple[float, float, float, float]
    timeout: Optional[float] = None


class PickOrchestrator:
    """Runs the pick sequence against a gripper, an arm and the motion service."""

    def __init__(
        self,
        gripper: Gripper,
        arm: Arm,
        motion: Motion,
        detector: ObjectDetector,
        config: PickConfig,
        logger=None
    ):
        self.gripper = gripper
        self.arm = arm
        self.motion = motion
        self.detector = detector
        self.config = config
        self.logger = logger or LOGGER

        self._steps: Dict[str, Callable[[_PickContext], Awaitable[None]]] = {
            OPEN_GRIPPER: self._open_gripper,
            APPROACH_POSE: self._approach_pose,
            APPROACH: self._approach,
            RE_DETECT: self._re_detect,
            GRASP_POSITION: self._grasp_position,
            WORLD_FRAME_COMPARE: self._world_frame_compare,
            GRAB: self._grab,
            LIFT: self._lift,
            VERIFY: self._verify,
        }

    async def pick(self, obj: DetectedObject, *, timeout: Optional[float] = None) -> PickResult:
        """Run the full sequence on obj.

        Returns the result once the sequence has run to the end, regardless of
        whether the gripper ended up holding anything. Raises PickError if a
        fatal step fails.
        """
        cfg = self.config
        center = obj.center
        away = cfg.away_from_surface
        ctx = _PickContext(
            obj=obj,
            result=PickResult(detected_position=center, detection_frame=cfg.detection_frame),
            approach_point=Vector3(center.x, center.y, center.z + away * cfg.approach_offset_mm),
            grasp_point=Vector3(center.x, center.y, center.z - away * cfg.grasp_depth_offset_mm),
            orientation=WORLD_DOWN_ORIENTATION if cfg.in_world_frame else SENSOR_FRAME_ORIENTATION,
            timeout=timeout,
        )

        self.logger.info(
            f"Starting pick sequence for object at {cfg.detection_frame}-frame position: "
            f"({center.x:.1f}, {center.y:.1f}, {center.z:.1f})mm"
        )

        for name, _ in PICK_STEPS:
            await self._run_step(name, ctx)

        result = ctx.result
        result.success = result.is_holding
        if result.success:
            self.logger.info("RESULT: PASS - calibration validated, object picked successfully")
        else:
            self.logger.info("RESULT: FAIL - gripper did not hold object")
        return result

    async def _run_step(self, name: str, ctx: _PickContext) -> None:
        policy = STEP_POLICIES[name]
        try:
            await self._steps[name](ctx)
        except HandEyeTestError as e:
            if policy is StepPolicy.FATAL:
                self.logger.error(f"Pick step {name} failed: {e}")
                raise PickError(f"{name} failed: {e}", ctx.result.steps_completed) from e
            self.logger.warning(f"Pick step {name} failed (non-fatal): {e}")
            return
        ctx.result.steps_completed.append(name)

    async def _move_gripper(self, point: Vector3, ctx: _PickContext, description: str) -> None:
        destination = PoseInFrame(
            reference_frame=self.config.detection_frame,
            pose=make_pose(point, ctx.orientation)
        )
        await move_component(
            self.motion,
            self.config.gripper_name,
            destination,
            description=description,
            timeout=ctx.timeout
        )

    async def _open_gripper(self, ctx: _PickContext) -> None:
        self.logger.info("Opening gripper...")
        try:
            await self.gripper.open(timeout=ctx.timeout)
        except Exception as e:
            raise ActuationError(f"Failed to open gripper: {e}") from e

    async def _approach_pose(self, ctx: _PickContext) -> None:
        p = ctx.approach_point
        self.logger.debug(f"Approach point in {self.config.detection_frame} frame: ({p.x:.1f}, {p.y:.1f}, {p.z:.1f})mm")
        if not self.config.in_world_frame:
            return
        gripper_pose = await get_pose_in_frame(
            self.motion, self.config.gripper_name, WORLD_FRAME, timeout=ctx.timeout
        )
        ctx.orientation = orientation_of(gripper_pose)

    async def _approach(self, ctx: _PickContext) -> None:
        self.logger.info(f"Moving to approach position ({self.config.approach_offset_mm:.0f}mm from object)...")
        await self._move_gripper(ctx.approach_point, ctx, "approach position")

    async def _re_detect(self, ctx: _PickContext) -> None:
        self.logger.info("Re-detecting object from approach position...")
        objects = await self.detector.detect(timeout=ctx.timeout)
        if len(objects) == 0:
            raise DetectionError("No objects found from approach position")

        redetected = objects[0]
        offset = vector_difference(redetected.center, ctx.obj.center)
        ctx.result.approach_offset = offset
        self.logger.info(
            f"Approach offset: ({offset.x:.1f}, {offset.y:.1f}, {offset.z:.1f})mm, total: {vector_norm(offset):.1f}mm"
        )

    async def _grasp_position(self, ctx: _PickContext) -> None:
        self.logger.info("Moving to grasp position...")
        await self._move_gripper(ctx.grasp_point, ctx, "grasp position")

    async def _world_frame_compare(self, ctx: _PickContext) -> None:
        result = ctx.result
        gripper_pose = await get_pose_in_frame(
            self.motion, self.config.gripper_name, WORLD_FRAME, timeout=ctx.timeout
        )
        gripper_position = point_of(gripper_pose)
        result.gripper_position_world_frame = gripper_position

        if self.config.in_world_frame:
            object_position = ctx.obj.center
        else:
            sensor_pose = await get_pose_in_frame(
                self.motion, self.config.detection_frame, WORLD_FRAME, timeout=ctx.timeout
            )
            object_position = compose_point(sensor_pose, ctx.obj.center)
        result.object_position_world_frame = object_position

        offset = vector_difference(gripper_position, object_position)
        result.world_frame_offset = offset
        self.logger.info(
            f"World-frame offset: ({offset.x:.1f}, {offset.y:.1f}, {offset.z:.1f})mm, total: {vector_norm(offset):.1f}mm"
        )

    async def _grab(self, ctx: _PickContext) -> None:
        self.logger.info("Closing gripper...")
        try:
            grabbed = await self.gripper.grab(timeout=ctx.timeout)
        except Exception as e:
            raise ActuationError(f"Failed to grab: {e}") from e
        ctx.result.grabbed = bool(grabbed)
        self.logger.info(f"Grab reported: {ctx.result.grabbed}")

    async def _lift(self, ctx: _PickContext) -> None:
        lift = self.config.lift_height_mm
        self.logger.info(f"Lifting {lift:.0f}mm...")
        try:
            end_pose = await self.arm.get_end_position(timeout=ctx.timeout)
        except Exception as e:
            raise QueryError(f"Could not get arm end position: {e}") from e

        end = point_of(end_pose)
        lifted = make_pose(Vector3(end.x, end.y, end.z + lift), orientation_of(end_pose))
        try:
            await self.arm.move_to_position(lifted, timeout=ctx.timeout)
        except Exception as e:
            raise ActuationError(f"Lift move failed: {e}") from e

    async def _verify(self, ctx: _PickContext) -> None:
        self.logger.info("Verifying hold...")
        try:
            status = await self.gripper.is_holding_something(timeout=ctx.timeout)
        except Exception as e:
            raise QueryError(f"Holding check failed: {e}") from e
        ctx.result.is_holding = bool(status.is_holding_something)
