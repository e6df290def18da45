# -- coding: utf-8 --

import argparse
import logging
import sys
import time

from core.config import (
    ConfigError,
    LoadedConfig,
    build_run_configuration,
    load_config,
    validate_config,
)
from core.errors import InspectionError, InvalidArgumentsError, UnknownFailure
from core.lifecycle import CancelToken, install_signal_handlers
from core.runtime import EXIT_FAILURE, InspectionRuntime, log_failure
from device import build_device_config, create_device

L = logging.getLogger("cvx_trigger")


class _ArgumentParser(argparse.ArgumentParser):
    def error(self, message):
        raise InvalidArgumentsError(f"Failed to parse arguments: {message}")


def _flag(value: str) -> bool:
    if value not in ("0", "1"):
        raise argparse.ArgumentTypeError(f"expected 0 or 1, got {value!r}")
    return value == "1"


def parse_args(argv=None):
    p = _ArgumentParser(
        description="Trigger one inspection on a CV-X controller and print the result as JSON",
    )
    p.add_argument("--host", default=None, help="Controller address (default 192.168.1.233)")
    p.add_argument("--port", type=int, default=None, help="Controller port, 1-65535 (default 8502)")
    p.add_argument("--program", type=int, default=None, help="Program number, 0-31 (default 0)")
    p.add_argument(
        "--repeat",
        type=int,
        default=None,
        help="Repeat interval in ms; 0 runs a single cycle (default 0)",
    )
    p.add_argument("--reset", type=_flag, default=None, help="1 = hard reset (RS), 0 = clear error (CE)")
    p.add_argument(
        "--inline-image",
        type=_flag,
        default=None,
        help="1 = embed the image as base64 instead of its path",
    )
    p.add_argument(
        "--debug",
        type=_flag,
        default=None,
        help="1 = skip the reset after triggering",
    )
    p.add_argument("--config", default=None, help="YAML config file")
    p.add_argument("--config-dir", default=None, help="Directory containing main_*.yaml")
    p.add_argument("--device", default=None, help="Device backend (cvx, mock)")
    p.add_argument("--verbose", action="store_true", help="Debug log")
    p.add_argument(
        "--log-level", default="", help="Override log level (debug/info/warning/error)"
    )
    return p.parse_args(argv)


def setup_logging(verbose: bool, log_level: str = ""):
    if verbose:
        level = logging.DEBUG
    else:
        level_map = {
            "debug": logging.DEBUG,
            "info": logging.INFO,
            "warning": logging.WARNING,
            "warn": logging.WARNING,
            "error": logging.ERROR,
            "critical": logging.CRITICAL,
        }
        level = level_map.get(str(log_level or "").strip().lower(), logging.INFO)
    # Use UTC for all %(asctime)s timestamps in logs.
    logging.Formatter.converter = time.gmtime
    # stdout carries only the JSON result.
    logging.basicConfig(
        level=level,
        format="%(asctime)sZ [%(levelname)s] %(message)s",
        stream=sys.stderr,
        force=True,
    )


def apply_cli_overrides(cfg: LoadedConfig, args) -> LoadedConfig:
    overrides = (
        (cfg.controller, "host", args.host),
        (cfg.controller, "port", args.port),
        (cfg.inspection, "program", args.program),
        (cfg.inspection, "repeat_ms", args.repeat),
        (cfg.inspection, "reset", args.reset),
        (cfg.inspection, "inline_image", args.inline_image),
        (cfg.inspection, "debug", args.debug),
        (cfg.device, "type", args.device),
    )
    for block, name, value in overrides:
        if value is not None:
            setattr(block, name, value)
    return cfg


def main(argv=None) -> int:
    try:
        args = parse_args(argv)
    except InvalidArgumentsError as e:
        setup_logging(False)
        log_failure(e, L)
        return EXIT_FAILURE
    setup_logging(args.verbose, args.log_level)

    try:
        cfg = apply_cli_overrides(
            load_config(args.config, config_dir=args.config_dir), args
        )
        validate_config(cfg)
        run_cfg = build_run_configuration(cfg)
        device = create_device(cfg.device.type, build_device_config(cfg))
    except (ConfigError, ValueError) as e:
        err = e if isinstance(e, ConfigError) else InvalidArgumentsError(str(e))
        log_failure(err, L)
        return EXIT_FAILURE
    # Config-driven log level (unless overridden by CLI).
    if not args.verbose and not args.log_level:
        setup_logging(False, cfg.runtime.log_level)
    if cfg.paths.get("main"):
        L.info("Config file: %s", cfg.paths["main"])

    cancel = CancelToken()
    install_signal_handlers(cancel)
    runtime = InspectionRuntime(run_cfg, device, cancel=cancel)
    try:
        with runtime:
            return runtime.run()
    except InspectionError as e:
        log_failure(e, L)
        return EXIT_FAILURE
    except Exception as e:
        L.exception("Unhandled error")
        log_failure(UnknownFailure(str(e)), L)
        return EXIT_FAILURE


if __name__ == "__main__":
    sys.exit(main())
