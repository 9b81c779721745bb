import asyncio
from enum import Enum
from typing import Any, Dict, List, Optional

from viam.logging import getLogger

try:
    from utils.detection import DetectedObject, ObjectDetector
    from utils.errors import RangeError, StateError
    from utils.move import ConvergenceController, MoveResult
    from utils.pick import PickOrchestrator, PickResult
    from utils.pose_utils import Vector3
except ModuleNotFoundError:
    from ..utils.detection import DetectedObject, ObjectDetector
    from ..utils.errors import RangeError, StateError
    from ..utils.move import ConvergenceController, MoveResult
    from ..utils.pick import PickOrchestrator, PickResult
    from ..utils.pose_utils import Vector3


LOGGER = getLogger(__name__)


class Status(str, Enum):
    IDLE = "idle"
    DETECTING = "detecting"
    PICKING = "picking"
    MOVING = "moving"


class Session:
    """Status state machine for one service instance.

    status, last_detection and last_result are only touched while holding
    the lock. Detection, picking and moving run outside it, so status can be
    polled while a long operation is in flight. The status is for
    observability only; it does not stop two commands from driving the arm
    at the same time.
    """

    def __init__(
        self,
        detector: ObjectDetector,
        orchestrator: PickOrchestrator,
        controller: ConvergenceController,
        logger=None
    ):
        self.detector = detector
        self.orchestrator = orchestrator
        self.controller = controller
        self.logger = logger or LOGGER

        self._lock = asyncio.Lock()
        self._status = Status.IDLE
        self._last_detection: Optional[List[DetectedObject]] = None
        self._last_result: Optional[PickResult] = None

    async def _set_status(self, status: Status) -> None:
        async with self._lock:
            self._status = status

    async def _run_detection(self, timeout: Optional[float]) -> List[DetectedObject]:
        await self._set_status(Status.DETECTING)
        objects = await self.detector.detect(timeout=timeout)
        async with self._lock:
            self._last_detection = objects
        return objects

    async def _run_pick(self, objects: List[DetectedObject], index: int, timeout: Optional[float]) -> PickResult:
        if not 0 <= index < len(objects):
            raise RangeError(f"object_index {index} out of range (detected {len(objects)} objects)")

        await self._set_status(Status.PICKING)
        result = await self.orchestrator.pick(objects[index], timeout=timeout)
        async with self._lock:
            self._last_result = result
        return result

    async def detect(self, *, timeout: Optional[float] = None) -> List[DetectedObject]:
        try:
            return await self._run_detection(timeout)
        finally:
            await self._set_status(Status.IDLE)

    async def pick(self, index: int = 0, *, timeout: Optional[float] = None) -> PickResult:
        """Detect afresh, then pick the object at index."""
        try:
            objects = await self._run_detection(timeout)
            return await self._run_pick(objects, index, timeout)
        finally:
            await self._set_status(Status.IDLE)

    async def pick_detected(self, index: int = 0, *, timeout: Optional[float] = None) -> PickResult:
        """Pick the object at index from the last detection."""
        async with self._lock:
            objects = self._last_detection
        if objects is None:
            raise StateError("No previous detection; run 'detect' first")

        try:
            return await self._run_pick(objects, index, timeout)
        finally:
            await self._set_status(Status.IDLE)

    async def move_to(self, target: Vector3, step_size: float, *, timeout: Optional[float] = None) -> MoveResult:
        await self._set_status(Status.MOVING)
        try:
            return await self.controller.move_to(target, step_size, timeout=timeout)
        finally:
            await self._set_status(Status.IDLE)

    async def status(self) -> Dict[str, Any]:
        async with self._lock:
            snapshot: Dict[str, Any] = {"status": self._status.value}
            if self._last_result is not None:
                snapshot["last_result"] = self._last_result.to_dict()
            if self._last_detection is not None:
                snapshot["detected_objects"] = len(self._last_detection)
        return snapshot
