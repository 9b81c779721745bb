from dataclasses import dataclass
from typing import Any, Dict, Optional

from viam.logging import getLogger
from viam.proto.common import PoseInFrame
from viam.services.motion import Motion

try:
    from utils.errors import ConvergenceExhaustedError, MotionError, PlanningError, QueryError
    from utils.motion_utils import get_pose_in_frame, move_component
    from utils.pose_utils import WORLD_FRAME, Vector3, make_pose, orientation_of, point_of, vector_difference, vector_norm
except ModuleNotFoundError:
    from ..utils.errors import ConvergenceExhaustedError, MotionError, PlanningError, QueryError
    from ..utils.motion_utils import get_pose_in_frame, move_component
    from ..utils.pose_utils import WORLD_FRAME, Vector3, make_pose, orientation_of, point_of, vector_difference, vector_norm


LOGGER = getLogger(__name__)

DEFAULT_MAX_STEPS = 200
DEFAULT_TOLERANCE_MM = 1.0


@dataclass
class MoveResult:
    success: bool
    steps: int
    final_position: Vector3
    target: Vector3

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "steps": self.steps,
            "final_position": self.final_position.to_position_dict(),
            "target": self.target.to_position_dict(),
        }


class ConvergenceController:
    """Moves a component to a world-frame point through short re-planned steps.

    Every step asks the motion service for a fresh plan from wherever the
    component actually is, so the caller can watch progress step by step.
    """

    def __init__(
        self,
        motion: Motion,
        component_name: str,
        *,
        max_steps: int = DEFAULT_MAX_STEPS,
        tolerance_mm: float = DEFAULT_TOLERANCE_MM,
        logger=None
    ):
        self.motion = motion
        self.component_name = component_name
        self.max_steps = max_steps
        self.tolerance_mm = tolerance_mm
        self.logger = logger or LOGGER

    async def move_to(self, target: Vector3, step_size: float, *, timeout: Optional[float] = None) -> MoveResult:
        if step_size <= 0:
            raise MotionError(f"step_size must be greater than 0, got {step_size}")

        for step in range(self.max_steps):
            try:
                pose = await get_pose_in_frame(self.motion, self.component_name, WORLD_FRAME, timeout=timeout)
            except QueryError as e:
                raise MotionError(f"Failed to get {self.component_name} pose: {e}") from e
            current = point_of(pose)

            remaining = vector_difference(target, current)
            distance = vector_norm(remaining)
            self.logger.info(
                f"Step {step}: current=({current.x:.1f}, {current.y:.1f}, {current.z:.1f}), "
                f"distance to target={distance:.1f}mm"
            )

            if distance <= self.tolerance_mm:
                self.logger.info(f"Reached target (within {self.tolerance_mm:g}mm) after {step} steps")
                return MoveResult(success=True, steps=step, final_position=current, target=target)

            if distance <= step_size:
                waypoint = target
            else:
                scale = step_size / distance
                waypoint = Vector3(
                    current.x + remaining.x * scale,
                    current.y + remaining.y * scale,
                    current.z + remaining.z * scale
                )

            self.logger.debug(f"Step {step}: moving to ({waypoint.x:.1f}, {waypoint.y:.1f}, {waypoint.z:.1f})...")
            destination = PoseInFrame(reference_frame=WORLD_FRAME, pose=make_pose(waypoint, orientation_of(pose)))
            try:
                await move_component(
                    self.motion,
                    self.component_name,
                    destination,
                    description=f"step {step} waypoint",
                    timeout=timeout
                )
            except PlanningError as e:
                raise MotionError(f"Step {step} move failed: {e}") from e

        raise ConvergenceExhaustedError(f"Did not reach target after {self.max_steps} steps")
