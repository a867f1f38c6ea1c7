"""Run one device of a divisible workspace until interrupted.

Usage
-----
::

    export DWS_USERNAME="integrator"
    export DWS_PASSWORD="..."
    python -m divisiblews --config workspace.json

Options::

    --config PATH      Roster/heartbeat JSON (default: $DWS_CONFIG_FILE)
    --serial SERIAL    Use this identity instead of /etc/machine-id
    --state-file PATH  Persist the applied state in this JSON file
    --verbose / -v     Enable debug logging
"""

from __future__ import annotations

import argparse
import asyncio
import contextlib
import logging
import signal
import sys
from typing import Any

from divisiblews.config import DwsConfig
from divisiblews.exceptions import DwsConfigError
from divisiblews.presets import canonical_states
from divisiblews.roles import IdentityProvider, MachineIdIdentityProvider, StaticIdentityProvider
from divisiblews.workspace import Workspace

_logger = logging.getLogger("divisiblews")


def _parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="divisiblews",
        description="Keep a divisible room's devices in the same combined/divided state.",
    )
    parser.add_argument(
        "--config",
        default=None,
        help="Path to the workspace JSON config (default: $DWS_CONFIG_FILE).",
    )
    parser.add_argument(
        "--serial",
        default=None,
        help="Identity of this device; overrides /etc/machine-id.",
    )
    parser.add_argument(
        "--state-file",
        default=None,
        help="JSON file used to persist the applied state across restarts.",
    )
    parser.add_argument(
        "--verbose",
        "-v",
        action="store_true",
        help="Enable debug logs.",
    )
    return parser.parse_args(argv)


def _load_config(args: argparse.Namespace) -> DwsConfig:
    overrides: dict[str, Any] = {}
    if args.config:
        overrides["config_file"] = args.config
    if args.state_file:
        overrides["state_file"] = args.state_file
    return DwsConfig.from_env(**overrides)


async def _run(config: DwsConfig, identity: IdentityProvider) -> int:
    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        with contextlib.suppress(NotImplementedError):
            loop.add_signal_handler(sig, stop.set)

    states = canonical_states(config.roster, config.heartbeat)
    async with Workspace(config, states, identity=identity) as workspace:
        _logger.info("Running as %s; Ctrl+C to stop", workspace.role)
        await stop.wait()
    return 0


def main(argv: list[str] | None = None) -> int:
    args = _parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    try:
        config = _load_config(args)
    except DwsConfigError as exc:
        print(f"[divisiblews] {exc}", file=sys.stderr)
        return 2

    identity: IdentityProvider
    identity = StaticIdentityProvider(args.serial) if args.serial else MachineIdIdentityProvider()
    try:
        return asyncio.run(_run(config, identity))
    except DwsConfigError as exc:
        print(f"[divisiblews] {exc}", file=sys.stderr)
        return 2


if __name__ == "__main__":
    raise SystemExit(main())
