"""Command-line entrypoint: run a command under a lock, or inspect one.

    lease-lock run nightly-report --wait --timeout 30 -- ./report.sh
    lease-lock status nightly-report
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from typing import Sequence

from .container import build_container, shutdown, startup
from .exceptions import AcquireFailed, LockError
from .settings import get_settings, load_dotenv_if_present

logger = logging.getLogger(__name__)

# EX_TEMPFAIL from sysexits.h
EXIT_LOCK_BUSY = 75
EXIT_STORE_ERROR = 69
CHILD_GRACE_SECONDS = 5.0


class _LockKeyFilter(logging.Filter):
    """Ensure every log record has a lock_key attribute."""

    def filter(self, record: logging.LogRecord) -> bool:
        if not hasattr(record, "lock_key"):
            record.lock_key = "-"
        return True


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s %(levelname)s [lock_key=%(lock_key)s] %(name)s: %(message)s",
    )
    key_filter = _LockKeyFilter()
    for handler in logging.getLogger().handlers:
        handler.addFilter(key_filter)


def _parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="lease-lock",
        description="Serialize work across processes with a lease-based lock.",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging.")
    parser.add_argument(
        "--pool",
        default="default",
        help="Store pool name to use (default: default).",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    run = subparsers.add_parser("run", help="Run a command while holding the lock.")
    run.add_argument("key", help="Logical lock name (the key prefix is added).")
    run.add_argument(
        "--lease",
        type=float,
        default=None,
        help="Lease duration in seconds (default: LOCK_LEASE_SECONDS or 5).",
    )
    run.add_argument(
        "--wait",
        action="store_true",
        help="Wait for the lock instead of failing when it is busy.",
    )
    run.add_argument(
        "--timeout",
        type=float,
        default=None,
        help="Give up waiting after this many seconds (default: wait forever).",
    )
    run.add_argument(
        "--no-renewal",
        action="store_true",
        help="Do not refresh the lease while the command runs.",
    )
    run.add_argument("cmd", nargs=argparse.REMAINDER, help="Command to run, after --.")

    status = subparsers.add_parser("status", help="Show the current holder of a lock.")
    status.add_argument("key", help="Logical lock name (the key prefix is added).")
    return parser.parse_args(argv)


async def _run_child(cmd: Sequence[str], grace_seconds: float = CHILD_GRACE_SECONDS) -> int:
    """Run `cmd` to completion; the child never outlives the caller's lock."""
    process = await asyncio.create_subprocess_exec(*cmd)
    try:
        return await process.wait()
    except BaseException:
        if process.returncode is None:
            logger.warning("terminating child pid=%s", process.pid)
            try:
                process.terminate()
                await asyncio.wait_for(process.wait(), grace_seconds)
            except asyncio.TimeoutError:
                process.kill()
                await process.wait()
            except ProcessLookupError:
                pass
        raise


async def _run_command(args: argparse.Namespace) -> int:
    cmd = list(args.cmd)
    if cmd and cmd[0] == "--":
        cmd = cmd[1:]
    if not cmd:
        print("lease-lock run: no command given", file=sys.stderr)
        return 2

    container = build_container()
    overrides = {"pool_name": args.pool}
    if args.lease is not None:
        overrides["lease_seconds"] = args.lease
    handle = container.lock(args.key, **overrides)

    try:
        await startup(container)
        return await handle.run_exclusive(
            lambda: _run_child(cmd),
            wait=args.wait,
            timeout=args.timeout,
            renewal=not args.no_renewal,
        )
    except AcquireFailed as exc:
        print(f"lease-lock: {exc}", file=sys.stderr)
        return EXIT_LOCK_BUSY
    except LockError as exc:
        print(f"lease-lock: {exc}", file=sys.stderr)
        return EXIT_STORE_ERROR
    finally:
        await shutdown(container)


async def _show_status(args: argparse.Namespace) -> int:
    container = build_container()
    key = f"{container.settings.key_prefix}{args.key}"
    try:
        info = await container.pools.get(args.pool).inspect(key)
    except LockError as exc:
        print(f"lease-lock: {exc}", file=sys.stderr)
        return EXIT_STORE_ERROR
    finally:
        await shutdown(container)
    if not info.held:
        print(f"{key}: free")
        return 0
    ttl = "no expiry" if info.ttl_ms is None else f"{info.ttl_ms / 1000:.2f}s left"
    print(f"{key}: held by {info.holder} ({ttl})")
    return 0


def main(argv: Sequence[str] | None = None) -> int:
    args = _parse_args(argv)
    _configure_logging(args.verbose)
    load_dotenv_if_present()
    logger.debug("settings=%s", get_settings())
    if args.command == "run":
        return asyncio.run(_run_command(args))
    return asyncio.run(_show_status(args))


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
