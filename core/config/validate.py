"""Config value validation."""

from __future__ import annotations

from typing import Any

from .schema import ConfigError, LoadedConfig

MAX_PROGRAM_INDEX = 31
_MOCK_MODES = {"run", "setup"}


def validate_config(cfg: LoadedConfig) -> None:
    # runtime
    _require_int("runtime.trigger_timeout_ms", cfg.runtime.trigger_timeout_ms, min_v=1)
    _require_int("runtime.poll_interval_ms", cfg.runtime.poll_interval_ms, min_v=1)
    _require_str("runtime.output_dir", cfg.runtime.output_dir)

    # controller
    _require_str("controller.host", cfg.controller.host, allow_empty=False)
    _require_port("controller.port", cfg.controller.port)

    # inspection
    _require_int(
        "inspection.program",
        cfg.inspection.program,
        min_v=0,
        max_v=MAX_PROGRAM_INDEX,
    )
    _require_int("inspection.repeat_ms", cfg.inspection.repeat_ms, min_v=0)
    _require_bool("inspection.reset", cfg.inspection.reset)
    _require_bool("inspection.inline_image", cfg.inspection.inline_image)
    _require_bool("inspection.debug", cfg.inspection.debug)

    # device
    _require_str("device.type", cfg.device.type, allow_empty=False)
    _require_int("device.timeout_ms", cfg.device.timeout_ms, min_v=1)
    _require_int("device.scan_interval_ms", cfg.device.scan_interval_ms, min_v=1)
    mock = cfg.device.mock
    if str(mock.start_mode).strip().lower() not in _MOCK_MODES:
        raise ConfigError(
            f"device.mock.start_mode must be one of {sorted(_MOCK_MODES)}"
        )
    _require_int(
        "device.mock.start_program",
        mock.start_program,
        min_v=0,
        max_v=MAX_PROGRAM_INDEX,
    )
    _require_int("device.mock.result_delay_ms", mock.result_delay_ms, min_v=0)
    _require_int("device.mock.image_delay_ms", mock.image_delay_ms, min_v=0)
    _require_str("device.mock.record", mock.record)
    if not isinstance(mock.fail_commands, list) or not all(
        isinstance(c, str) for c in mock.fail_commands
    ):
        raise ConfigError("device.mock.fail_commands must be a list of strings")


def _require_int(
    name: str, value: Any, *, min_v: int | None = None, max_v: int | None = None
) -> int:
    if isinstance(value, bool):
        raise ConfigError(f"{name} must be an integer")
    try:
        iv = int(value)
    except (TypeError, ValueError) as e:
        raise ConfigError(f"{name} must be an integer") from e
    if min_v is not None and iv < min_v:
        op = ">=" if min_v != 1 else ">"
        threshold = min_v if min_v != 1 else 0
        raise ConfigError(f"{name} must be {op} {threshold}")
    if max_v is not None and iv > max_v:
        raise ConfigError(f"{name} must be <= {max_v}")
    return iv


def _require_port(name: str, value: Any) -> int:
    return _require_int(name, value, min_v=1, max_v=65535)


def _require_bool(name: str, value: Any) -> bool:
    if not isinstance(value, bool):
        raise ConfigError(f"{name} must be a boolean")
    return value


def _require_str(name: str, value: Any, *, allow_empty: bool = True) -> str:
    if not isinstance(value, str):
        raise ConfigError(f"{name} must be a string")
    if not allow_empty and not value.strip():
        raise ConfigError(f"{name} must not be empty")
    return value


__all__ = ["MAX_PROGRAM_INDEX", "validate_config"]
