import argparse
import asyncio
import json
import os

from dotenv import load_dotenv
from viam.robot.client import RobotClient
from viam.services.generic import Generic


DEFAULT_SERVICE_NAME = "hand-eye-test"
DEFAULT_STEP_SIZE_MM = 20.0

DESCRIPTION = """Validate hand-eye calibration by moving an arm to detected objects.

Commands:
  detect          Capture a point cloud and detect objects via plane segmentation + clustering.
                  Returns object positions in the detection frame.
  pick            Detect objects, then run the full pick sequence on one of them:
                  open gripper -> approach -> re-detect -> grasp -> grab -> lift -> verify.
                  Reports calibration accuracy (approach offset and world-frame offset in mm).
  pick-detected   Like pick, but uses the objects from the last detect call.
  move-to         Incrementally move the gripper to a world-frame coordinate using the
                  motion service. Useful for testing reachability and collision geometry.
  status          Return the current service status and last result.

Connection settings are read from VIAM_MACHINE_ADDRESS, VIAM_MACHINE_API_KEY and
VIAM_MACHINE_API_KEY_ID (a .env file works too).
"""


async def connect():
    load_dotenv()
    opts = RobotClient.Options.with_api_key(
        api_key=os.getenv('VIAM_MACHINE_API_KEY'),
        api_key_id=os.getenv('VIAM_MACHINE_API_KEY_ID'),
    )
    address = os.getenv('VIAM_MACHINE_ADDRESS')
    return await RobotClient.at_address(address, opts)


def build_command(args: argparse.Namespace) -> dict:
    """Translate parsed CLI arguments into a do_command payload."""
    if args.subcommand == "detect":
        return {"command": "detect"}
    if args.subcommand == "pick":
        return {"command": "pick", "object_index": args.object}
    if args.subcommand == "pick-detected":
        return {"command": "pick_detected", "object_index": args.object}
    if args.subcommand == "move-to":
        return {
            "command": "move_to",
            "x": args.x,
            "y": args.y,
            "z": args.z,
            "step_size": args.step_size,
        }
    return {"command": "status"}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description=DESCRIPTION,
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument(
        '--service-name',
        type=str,
        default=DEFAULT_SERVICE_NAME,
        help=f'Name of the hand-eye test service on the machine (default: {DEFAULT_SERVICE_NAME})'
    )
    subparsers = parser.add_subparsers(dest='subcommand', required=True)

    subparsers.add_parser('detect', help='Detect objects in the camera point cloud')

    for name, help_text in (
        ('pick', 'Detect objects, then pick one'),
        ('pick-detected', 'Pick an object from the last detection'),
    ):
        pick_parser = subparsers.add_parser(name, help=help_text)
        pick_parser.add_argument(
            '--object',
            type=int,
            default=0,
            help='Index of detected object to pick (default: 0, the first reported object)'
        )

    move_parser = subparsers.add_parser('move-to', help='Step the gripper to a world-frame point')
    move_parser.add_argument('--x', type=float, required=True, help='Target X position in world frame (mm)')
    move_parser.add_argument('--y', type=float, required=True, help='Target Y position in world frame (mm)')
    move_parser.add_argument('--z', type=float, required=True, help='Target Z position in world frame (mm)')
    move_parser.add_argument(
        '--step-size',
        type=float,
        default=DEFAULT_STEP_SIZE_MM,
        help=f'Step size per move increment in mm (default: {DEFAULT_STEP_SIZE_MM})'
    )

    subparsers.add_parser('status', help='Show service status and last result')
    return parser


async def main(service_name: str, command: dict):
    machine = None
    try:
        print("Connecting to robot...")
        machine = await connect()
        print("✓ Connected!\n")

        service = Generic.from_robot(machine, service_name)
        result = await service.do_command(command)
        print(json.dumps(result, indent=2))
    finally:
        if machine:
            await machine.close()


if __name__ == '__main__':
    args = build_parser().parse_args()
    asyncio.run(main(args.service_name, build_command(args)))
