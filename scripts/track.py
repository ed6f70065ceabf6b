#!/usr/bin/env python3
"""Run the pylocus engine against an OwnTracks deployment.

Connection details come from ``LOCUS_OWNTRACKS_*`` environment variables
(see ``LocusConfig.from_env``).

Default behavior:
1) one-shot acquisition (cached fix if fresh, otherwise a live fix),
2) start background tracking as if the process had just been launched,
3) print every fix published to the shared store until Ctrl+C.

Ctrl+C / SIGTERM is treated as an explicit user stop.
"""

from __future__ import annotations

import argparse
import asyncio
import contextlib
import logging
import signal
import sys
from pathlib import Path

# Allow running from repo root without installing the package.
_repo = Path(__file__).resolve().parent.parent
_src = _repo / "src"
if _src.is_dir():
    sys.path.insert(0, str(_src))

from pylocus import (  # noqa: E402
    LifecycleSignal,
    LocusConfig,
    LocusEngine,
    LocusError,
    LoggingSink,
    PermissionGate,
    SupervisorAction,
    describe_accuracy,
    format_speed,
)
from pylocus.models.fix import Fix  # noqa: E402

_LOG = logging.getLogger("track")


def _parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Track an OwnTracks device with the pylocus engine.",
    )
    parser.add_argument(
        "--threshold",
        type=float,
        default=None,
        help="Freshness threshold in seconds for the cached fix (default: config).",
    )
    parser.add_argument(
        "--timeout",
        type=float,
        default=None,
        help="Seconds to wait for a live fix (default: config).",
    )
    parser.add_argument(
        "--acquire-only",
        action="store_true",
        help="Only perform the one-shot acquisition, then exit.",
    )
    parser.add_argument(
        "--duration",
        type=int,
        default=0,
        help="Maximum tracking time in seconds (0 = run until Ctrl+C).",
    )
    parser.add_argument(
        "--verbose",
        "-v",
        action="store_true",
        help="Enable debug logs.",
    )
    return parser.parse_args()


def _print_fix(prefix: str, fix: Fix) -> None:
    print(
        f"[{prefix}] {fix.latitude:.6f}, {fix.longitude:.6f} "
        f"at {fix.timestamp.astimezone():%H:%M:%S} "
        f"accuracy={describe_accuracy(fix.accuracy)} speed={format_speed(fix.speed)}"
    )


async def _run(args: argparse.Namespace, config: LocusConfig) -> int:
    gate = PermissionGate()
    gate.grant()

    async with LocusEngine(config, gate, sink=LoggingSink(_LOG)) as engine:
        fix = await engine.acquire(args.threshold, args.timeout)
        if fix is None:
            print("[acquire] no fix available")
        else:
            _print_fix("acquire", fix)
        if args.acquire_only:
            return 0 if fix is not None else 1

        action = await engine.handle(LifecycleSignal.PROCESS_RESTARTED)
        if action is not SupervisorAction.STARTED:
            print(f"[track] tracking not started: {action}", file=sys.stderr)
            return 2

        stop = asyncio.Event()
        loop = asyncio.get_running_loop()
        for signum in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(signum, stop.set)
        if args.duration > 0:
            loop.call_later(args.duration, stop.set)

        async def _printer() -> None:
            async with engine.store.subscribe() as updates:
                async for update in updates:
                    _print_fix("track", update)

        printer = asyncio.create_task(_printer())
        await stop.wait()
        await engine.handle(LifecycleSignal.EXPLICIT_STOP)
        printer.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await printer
    return 0


def _main() -> int:
    args = _parse_args()
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(levelname)s %(name)s: %(message)s",
    )
    try:
        config = LocusConfig.from_env()
        return asyncio.run(_run(args, config))
    except LocusError as exc:
        print(f"[track] {exc}", file=sys.stderr)
        return 2


if __name__ == "__main__":
    raise SystemExit(_main())
