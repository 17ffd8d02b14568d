"""
Manual probe against a running replay server.

Loads the recording metadata, enters replay, plays for a few seconds
and prints how much of the cursor window is cached at each step.

    python tools/replay_probe.py --seconds 5 --seek 12000 --metrics speed,rpm
"""

import argparse
import asyncio

from dotenv import load_dotenv

from config import AppConfig
from observability import logger
from playback.commands import Seek, SetSpeed
from session.viewer_session import ViewerSession
from telemetry.metrics_table import DEFAULT_METRICS
from transport.http_backend import HttpFrameBackend


async def run(args: argparse.Namespace) -> None:
    config = AppConfig.load_from_env()
    logger.configure(enable_json_logs=config.enable_json_logs, log_level=config.log_level)

    backend = HttpFrameBackend.from_config(config)
    session = ViewerSession.from_config(config, backend)
    if args.metrics:
        session.runtime.fields = DEFAULT_METRICS.field_mask(args.metrics.split(","))

    try:
        info = await backend.get_info()
        print(f"recording: {info.track_name or '?'} / {info.car_name or '?'}")
        print(f"frames={info.total_frames} tick_rate={info.tick_rate}")

        await session.enter_replay(info)
        if args.seek is not None:
            await session.runtime.handle(Seek(frame=args.seek))
        if args.speed is not None:
            await session.runtime.handle(SetSpeed(speed=args.speed))

        steps = int(args.seconds / args.interval)
        for _ in range(steps):
            await session.runtime.tick()
            view = session.window(session.context(window_ms=args.window_ms))
            state = session.runtime.state
            print(
                f"cursor={state.cursor:>7} mode={state.mode.value:<9} "
                f"loaded={view.loaded_count():>5}/{len(view):<5} "
                f"cache={session.cache.count}"
            )
            await asyncio.sleep(args.interval)

        await session.runtime.wait_idle()
    finally:
        await session.exit_replay()
        await session.wait_idle()
        await backend.aclose()


def main() -> None:
    load_dotenv()

    ap = argparse.ArgumentParser()
    ap.add_argument("--seconds", type=float, default=5.0)
    ap.add_argument("--interval", type=float, default=0.25)
    ap.add_argument("--window-ms", type=int, default=10_000)
    ap.add_argument("--seek", type=int, default=None)
    ap.add_argument("--speed", type=float, default=None)
    ap.add_argument("--metrics", type=str, default="", help="comma list, e.g. speed,rpm")
    args = ap.parse_args()

    asyncio.run(run(args))


if __name__ == "__main__":
    main()
