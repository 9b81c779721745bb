import math
from dataclasses import dataclass
from typing import Any, Mapping, Union

try:
    from utils.errors import CommandError
except ModuleNotFoundError:
    from ..utils.errors import CommandError


COMMAND_KEY = "command"
OBJECT_INDEX_KEY = "object_index"
STEP_SIZE_KEY = "step_size"

DEFAULT_STEP_SIZE_MM = 20.0


@dataclass(frozen=True)
class DetectCommand:
    pass


@dataclass(frozen=True)
class PickCommand:
    object_index: int = 0


@dataclass(frozen=True)
class PickDetectedCommand:
    object_index: int = 0


@dataclass(frozen=True)
class MoveToCommand:
    x: float
    y: float
    z: float
    step_size: float = DEFAULT_STEP_SIZE_MM


@dataclass(frozen=True)
class StatusCommand:
    pass


Command = Union[DetectCommand, PickCommand, PickDetectedCommand, MoveToCommand, StatusCommand]


def _number(raw: Mapping[str, Any], key: str) -> float:
    value = raw.get(key)
    if value is None:
        raise CommandError(f"Missing required '{key}' field.")
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise CommandError(f"'{key}' must be a number, got: {value!r}")
    if not math.isfinite(value):
        raise CommandError(f"'{key}' must be finite, got: {value!r}")
    return float(value)


def _object_index(raw: Mapping[str, Any]) -> int:
    value = raw.get(OBJECT_INDEX_KEY, 0)
    # Struct values arrive as floats over the wire
    if (
        isinstance(value, bool)
        or not isinstance(value, (int, float))
        or not math.isfinite(value)
        or int(value) != value
    ):
        raise CommandError(f"'{OBJECT_INDEX_KEY}' must be an integer, got: {value!r}")
    return int(value)


def parse_command(raw: Mapping[str, Any]) -> Command:
    """Validate a do_command payload and turn it into a command variant."""
    name = raw.get(COMMAND_KEY)
    if not isinstance(name, str):
        raise CommandError(f"Missing or invalid '{COMMAND_KEY}' field.")

    match name:
        case "detect":
            return DetectCommand()
        case "pick":
            return PickCommand(object_index=_object_index(raw))
        case "pick_detected":
            return PickDetectedCommand(object_index=_object_index(raw))
        case "move_to":
            step_size = _number(raw, STEP_SIZE_KEY) if raw.get(STEP_SIZE_KEY) is not None else DEFAULT_STEP_SIZE_MM
            if step_size <= 0:
                raise CommandError(f"'{STEP_SIZE_KEY}' must be greater than 0, got: {step_size}")
            return MoveToCommand(
                x=_number(raw, "x"),
                y=_number(raw, "y"),
                z=_number(raw, "z"),
                step_size=step_size
            )
        case "status":
            return StatusCommand()
        case _:
            raise CommandError(f"Unknown command: {name}")
