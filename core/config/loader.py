"""YAML loader and section builders for the trigger configuration."""

from __future__ import annotations

import glob
import os
from typing import Any

import yaml

from .schema import (
    ConfigError,
    ControllerConfigBlock,
    DeviceConfigBlock,
    InspectionConfigBlock,
    LoadedConfig,
    MockDeviceConfigBlock,
    RuntimeConfig,
)


def load_config(path: str | None = None, *, config_dir: str | None = None) -> LoadedConfig:
    """Load `path`, or the single main_*.yaml under `config_dir`.

    With neither given, returns the built-in defaults.
    """
    if path is None and config_dir is not None:
        path = _find_main_config(config_dir)
    if path is None:
        return LoadedConfig()
    if not os.path.isfile(path):
        raise ConfigError(f"Config file not found: {path}")
    data = _read_yaml(path)
    _validate_allowed_keys(
        data, {"runtime", "controller", "inspection", "device"}, "root", path
    )
    return LoadedConfig(
        runtime=_build_dataclass(
            RuntimeConfig, _section(data, "runtime", path), path, section="runtime"
        ),
        controller=_build_dataclass(
            ControllerConfigBlock,
            _section(data, "controller", path),
            path,
            section="controller",
        ),
        inspection=_build_dataclass(
            InspectionConfigBlock,
            _section(data, "inspection", path),
            path,
            section="inspection",
        ),
        device=_build_device_config(_section(data, "device", path), path),
        paths={"main": path},
    )


def _find_main_config(config_dir: str) -> str:
    patterns = [
        os.path.join(config_dir, "main_*.yaml"),
        os.path.join(config_dir, "main_*.yml"),
    ]
    candidates: list[str] = []
    for pattern in patterns:
        candidates.extend(glob.glob(pattern))
    if len(candidates) == 0:
        raise ConfigError(f"No main_*.yaml found under {config_dir}")
    if len(candidates) > 1:
        raise ConfigError(
            f"Expected exactly one main_*.yaml, found: {', '.join(sorted(candidates))}"
        )
    return candidates[0]


def _read_yaml(path: str) -> dict[str, Any]:
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in {path}: {e}") from e
    if not isinstance(data, dict):
        raise ConfigError(f"YAML root must be a mapping: {path}")
    return data


def _section(data: dict[str, Any], name: str, path: str) -> dict[str, Any]:
    block = data.get(name)
    if block is None:
        return {}
    if not isinstance(block, dict):
        raise ConfigError(f"'{name}' must be a mapping in {path}")
    return block


def _build_dataclass(cls, data: dict[str, Any], main_path: str, section: str):
    obj = cls()
    fields = cls.__dataclass_fields__
    for k, v in (data or {}).items():
        if k in fields:
            setattr(obj, k, v)
        else:
            raise ConfigError(f"Unknown field {section}.{k} in {main_path}")
    return obj


def _validate_allowed_keys(
    data: dict[str, Any], allowed_keys: set[str], section: str, main_path: str
) -> None:
    for key in data.keys():
        if key not in allowed_keys:
            raise ConfigError(f"Unknown field {section}.{key} in {main_path}")


def _build_device_config(data: dict[str, Any], main_path: str) -> DeviceConfigBlock:
    scalars = {k: v for k, v in data.items() if k != "mock"}
    cfg = _build_dataclass(DeviceConfigBlock, scalars, main_path, section="device")
    mock = data.get("mock")
    if mock is not None:
        if not isinstance(mock, dict):
            raise ConfigError(f"'device.mock' must be a mapping in {main_path}")
        cfg.mock = _build_dataclass(
            MockDeviceConfigBlock, mock, main_path, section="device.mock"
        )
    return cfg


__all__ = ["load_config"]
