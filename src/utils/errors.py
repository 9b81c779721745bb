from typing import List, Optional


class HandEyeTestError(Exception):
    """Base class for errors raised by the hand-eye test service."""


class CommandError(HandEyeTestError):
    """Malformed or unknown do_command payload."""


class DetectionError(HandEyeTestError):
    """Object detection could not run to completion."""


class ConfigError(DetectionError):
    """Invalid segmentation or service configuration. Never retried."""


class SensorError(DetectionError):
    """The camera could not deliver a point cloud."""


class QueryError(HandEyeTestError):
    """A pose or gripper state query failed."""


class ActuationError(HandEyeTestError):
    """A gripper or arm command failed."""


class PlanningError(HandEyeTestError):
    """The motion service failed or found no path."""


class RangeError(HandEyeTestError):
    """Requested object index is outside the detected set."""


class StateError(HandEyeTestError):
    """Operation requires state that does not exist yet."""


class PickError(HandEyeTestError):
    """A fatal step aborted the pick sequence."""

    def __init__(self, message: str, steps_completed: Optional[List[str]] = None):
        self.steps_completed = list(steps_completed or [])
        if self.steps_completed:
            message = f"{message} (steps completed: {', '.join(self.steps_completed)})"
        super().__init__(message)


class MotionError(HandEyeTestError):
    """The convergence loop was aborted."""


class ConvergenceExhaustedError(MotionError):
    """The convergence loop hit its iteration cap without reaching the target."""
