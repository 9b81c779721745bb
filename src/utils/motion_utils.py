from typing import Optional

from viam.proto.common import Pose, PoseInFrame
from viam.services.motion import Motion

try:
    from utils.errors import PlanningError, QueryError
except ModuleNotFoundError:
    from ..utils.errors import PlanningError, QueryError


async def get_pose_in_frame(
    motion: Motion,
    component_name: str,
    destination_frame: str,
    *,
    timeout: Optional[float] = None
) -> Pose:
    """Get the pose of a component expressed in another frame."""
    try:
        pose_in_frame = await motion.get_pose(
            component_name=component_name,
            destination_frame=destination_frame,
            timeout=timeout
        )
    except Exception as e:
        raise QueryError(f"Could not get pose of {component_name} in {destination_frame} frame: {e}") from e
    return pose_in_frame.pose


async def move_component(
    motion: Motion,
    component_name: str,
    destination: PoseInFrame,
    *,
    description: str = "destination",
    timeout: Optional[float] = None
) -> None:
    """Plan and execute an obstacle-aware move, raising PlanningError on failure."""
    try:
        success = await motion.move(
            component_name=component_name,
            destination=destination,
            timeout=timeout
        )
    except Exception as e:
        raise PlanningError(f"Failed to move to {description}: {e}") from e
    if not success:
        raise PlanningError(f"Motion planner could not find path to {description}")
