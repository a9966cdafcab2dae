# -*- codeing = utf-8 -*-
"""Run one reachability loop and print every measurement as a JSON line."""

from __future__ import annotations

import argparse
import json
import logging
import signal
import sys
from dataclasses import replace
from typing import Optional, Sequence, TextIO

import configuration

from .events import MeasurementEvent
from .exceptions import (
    ConfigurationError,
    ProbeSetupError,
    SchedulingEngineFailure,
)
from .probes import SUPPORTED_MODES
from .service import PingInput

LOGGER = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_ENGINE_FAILURE = 1
EXIT_CONFIGURATION = 2


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="reachability", description=__doc__)
    parser.add_argument("--config", help="path to config.ini")
    parser.add_argument("--host", help="host to probe")
    parser.add_argument(
        "--mode",
        help=f"probe mechanism, one of {', '.join(SUPPORTED_MODES)}",
    )
    parser.add_argument("--interval", type=float,
                        help="seconds between probes")
    parser.add_argument(
        "--schedule",
        help="cron line, e.g. '*/5 * * * * * UTC'; overrides --interval",
    )
    parser.add_argument("--timeout", type=float,
                        help="seconds allowed for one probe attempt")
    parser.add_argument("--port", type=int, help="TCP/UDP/HTTP port")
    parser.add_argument("--log-level", help="override [Logging].log_level")
    parser.add_argument(
        "--write-config",
        metavar="PATH",
        help="write a sample config.ini to PATH and exit",
    )
    return parser


def _apply_overrides(settings: configuration.PingSettings,
                     args: argparse.Namespace) -> configuration.PingSettings:
    overrides = {
        name: getattr(args, name)
        for name in ("host", "mode", "interval", "schedule", "timeout", "port")
        if getattr(args, name) is not None
    }
    return replace(settings, **overrides) if overrides else settings


def json_lines_sink(stream: TextIO):

    def emit(event: MeasurementEvent) -> None:
        stream.write(json.dumps(event.to_dict()) + "\n")
        stream.flush()

    return emit


def main(argv: Optional[Sequence[str]] = None,
         stream: Optional[TextIO] = None) -> int:
    args = build_parser().parse_args(argv)
    stream = stream or sys.stdout

    if args.write_config:
        path = configuration.writeconfig(args.write_config)
        print(f"Sample configuration written to {path}", file=sys.stderr)
        return EXIT_OK

    try:
        logging_settings = configuration.get_logging_settings(args.config)
        if args.log_level:
            level_name, level = configuration.parse_log_level(args.log_level)
            logging_settings = replace(logging_settings,
                                       level_name=level_name,
                                       level=level)
        configuration.configure_logging(logging_settings)
        settings = _apply_overrides(
            configuration.read_ping_settings(args.config), args)
    except ValueError as exc:
        print(f"Configuration error: {exc}", file=sys.stderr)
        return EXIT_CONFIGURATION

    loop = PingInput(settings)
    try:
        loop.register()
    except (ConfigurationError, ProbeSetupError) as exc:
        LOGGER.error("reachability.startup_failed error=%s", exc)
        print(f"Startup failed: {exc}", file=sys.stderr)
        return EXIT_CONFIGURATION

    def _request_stop(signum, frame):  # noqa: ARG001 - signal handler signature
        LOGGER.info("reachability.signal signal=%s", signum)
        loop.stop()

    signal.signal(signal.SIGINT, _request_stop)
    signal.signal(signal.SIGTERM, _request_stop)

    try:
        loop.run(json_lines_sink(stream))
    except SchedulingEngineFailure as exc:
        LOGGER.error("reachability.engine_failed error=%s", exc)
        return EXIT_ENGINE_FAILURE
    return EXIT_OK


if __name__ == "__main__":
    sys.exit(main())
