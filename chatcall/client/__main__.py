from __future__ import annotations

import argparse
import asyncio
import logging

from chatcall.config import settings

from .session import CallSessionController
from .transport import SignalingClient

logger = logging.getLogger(__name__)


async def run(args: argparse.Namespace) -> None:
    # Passing --mic/--camera on the command line is the user's confirmation
    allowed = {kind for kind, flag in (("audio", args.mic), ("video", args.camera)) if flag}

    signaling = SignalingClient(args.server)
    controller = CallSessionController(signaling, confirm=lambda kind: kind in allowed)
    controller.on_participants_update(
        lambda room_id, participants: logger.info(
            "Room %s: %s", room_id, ", ".join(f"{p.name}{' (you)' if p.is_local else ''}" for p in participants)
        )
    )

    def show_speakers(speaking: set) -> None:
        if speaking:
            logger.info("Speaking: %s", ", ".join(sorted(speaking)))

    detector = controller.create_speaking_detector(args.room, on_update=show_speakers)

    await controller.join_call(args.room, args.user_id, args.name or args.user_id)
    try:
        if args.mic:
            await controller.toggle_audio(args.room, True)
        if args.camera:
            await controller.toggle_video(args.room, True)
        detector.start()
        await asyncio.Event().wait()
    finally:
        detector.stop()
        await controller.leave_call(args.room)
        await signaling.aclose()


def main() -> None:
    parser = argparse.ArgumentParser(description="Join a chatcall room from the command line")
    parser.add_argument("room", help="Room id to join")
    parser.add_argument("user_id", help="Your user id")
    parser.add_argument("--name", help="Display name announced to the room")
    parser.add_argument("--server", default=settings.SIGNALING_URL, help="Signaling server base URL")
    parser.add_argument("--mic", action="store_true", help="Turn the microphone on after joining")
    parser.add_argument("--camera", action="store_true", help="Turn the camera on after joining")
    parser.add_argument(
        "--log-level",
        default=settings.LOG_LEVEL,
        help="Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)",
    )
    args = parser.parse_args()

    log_level = getattr(logging, str(args.log_level).upper(), logging.INFO)
    logging.basicConfig(
        level=log_level,
        format="[%(asctime)s] %(levelname)s %(name)s: %(message)s",
    )
    # Quiet down noisy third-party loggers
    for name in ("aioice", "aiortc", "httpx"):
        logging.getLogger(name).setLevel(logging.WARNING)

    try:
        asyncio.run(run(args))
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    main()
