"""Typed config schema blocks shared by loader/validator/runtime."""

import os
import tempfile
from dataclasses import dataclass, field
from typing import Dict, List

from core.errors import InvalidArgumentsError


class ConfigError(InvalidArgumentsError):
    pass


def default_output_dir() -> str:
    return os.path.join(tempfile.gettempdir(), "KeyenceCvXTest")


@dataclass
class RuntimeConfig:
    output_dir: str = ""
    log_level: str = "info"
    trigger_timeout_ms: int = 5000
    poll_interval_ms: int = 100


@dataclass
class ControllerConfigBlock:
    host: str = "192.168.1.233"
    port: int = 8502


@dataclass
class InspectionConfigBlock:
    program: int = 0
    reset: bool = False
    repeat_ms: int = 0
    inline_image: bool = False
    debug: bool = False


@dataclass
class MockDeviceConfigBlock:
    start_mode: str = "run"
    start_program: int = 0
    result_delay_ms: int = 50
    image_delay_ms: int = 80
    drop_image: bool = False
    record: str = "program={program},result=0"
    fail_commands: List[str] = field(default_factory=list)


@dataclass
class DeviceConfigBlock:
    type: str = "cvx"
    timeout_ms: int = 3000
    scan_interval_ms: int = 50
    mock: MockDeviceConfigBlock = field(default_factory=MockDeviceConfigBlock)


@dataclass
class LoadedConfig:
    runtime: RuntimeConfig = field(default_factory=RuntimeConfig)
    controller: ControllerConfigBlock = field(default_factory=ControllerConfigBlock)
    inspection: InspectionConfigBlock = field(default_factory=InspectionConfigBlock)
    device: DeviceConfigBlock = field(default_factory=DeviceConfigBlock)
    paths: Dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class RunConfiguration:
    """Parameters of one process invocation; immutable once built."""

    address: str = "192.168.1.233"
    port: int = 8502
    program_index: int = 0
    use_hard_reset: bool = False
    repeat_interval_ms: int = 0
    inline_image: bool = False
    debug: bool = False
    output_dir: str = field(default_factory=default_output_dir)
    trigger_timeout_ms: int = 5000
    poll_interval_ms: int = 100

    @property
    def repeating(self) -> bool:
        return self.repeat_interval_ms > 0


def build_run_configuration(cfg: LoadedConfig) -> RunConfiguration:
    return RunConfiguration(
        address=str(cfg.controller.host),
        port=int(cfg.controller.port),
        program_index=int(cfg.inspection.program),
        use_hard_reset=bool(cfg.inspection.reset),
        repeat_interval_ms=int(cfg.inspection.repeat_ms),
        inline_image=bool(cfg.inspection.inline_image),
        debug=bool(cfg.inspection.debug),
        output_dir=str(cfg.runtime.output_dir or default_output_dir()),
        trigger_timeout_ms=int(cfg.runtime.trigger_timeout_ms),
        poll_interval_ms=int(cfg.runtime.poll_interval_ms),
    )


__all__ = [
    "ConfigError",
    "RuntimeConfig",
    "ControllerConfigBlock",
    "InspectionConfigBlock",
    "MockDeviceConfigBlock",
    "DeviceConfigBlock",
    "LoadedConfig",
    "RunConfiguration",
    "build_run_configuration",
    "default_output_dir",
]
