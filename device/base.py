# -- coding: utf-8 --

import logging
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Callable, Dict, Optional, Type

from core.config.schema import MockDeviceConfigBlock
from core.registry import register_named, resolve_registered

L = logging.getLogger("cvx_trigger.device")

DeviceFactory = Dict[str, Type["BaseDevice"]]
_registry: DeviceFactory = {}

STATUS_OK = 0
STATUS_TRANSPORT_ERROR = -1
STATUS_NOT_CONNECTED = -2

# (state, drive_no, setting_no, path)
ResultLogCallback = Callable[[int, int, int, str], None]
# (state, drive_no, setting_no, condition_type, count)
ImageLogCallback = Callable[[int, int, int, int, int], None]


@dataclass
class DeviceConfig:
    host: str = "192.168.1.233"
    port: int = 8502
    timeout_ms: int = 3000
    scan_interval_ms: int = 50
    mock: MockDeviceConfigBlock = field(default_factory=MockDeviceConfigBlock)


def build_device_config(cfg) -> DeviceConfig:
    return DeviceConfig(
        host=str(cfg.controller.host),
        port=int(cfg.controller.port),
        timeout_ms=int(cfg.device.timeout_ms),
        scan_interval_ms=int(cfg.device.scan_interval_ms),
        mock=cfg.device.mock,
    )


class BaseDevice(ABC):
    """Controller session: commands plus result/image log notifications.

    Every method returns a vendor status code (0 on success) instead of
    raising; interpretation is left to the caller. Notifications are
    delivered from device-owned threads.
    """

    def __init__(self, cfg: DeviceConfig):
        self.cfg = cfg
        self.lock = threading.Lock()
        self.on_result_log: Optional[ResultLogCallback] = None
        self.on_image_log: Optional[ImageLogCallback] = None
        self._connected = False
        self._result_log_started = False
        self._image_log_started = False

    @property
    def connected(self) -> bool:
        return self._connected

    @property
    def result_log_started(self) -> bool:
        return self._result_log_started

    @property
    def image_log_started(self) -> bool:
        return self._image_log_started

    @abstractmethod
    def connect(self) -> int:
        """Open the session."""

    @abstractmethod
    def disconnect(self):
        """Close the session; safe to call when not connected."""

    @abstractmethod
    def execute(self, command: str) -> tuple[int, str]:
        """Send one command and return (status, response)."""

    @abstractmethod
    def start_result_log(self, setting_no: int, output_dir: str) -> int:
        pass

    @abstractmethod
    def stop_result_log(self):
        pass

    @abstractmethod
    def start_image_log(self, output_dir: str) -> int:
        pass

    @abstractmethod
    def stop_image_log(self):
        pass

    def _emit_result_log(self, state: int, drive_no: int, setting_no: int, path: str):
        cb = self.on_result_log
        if cb is None:
            return
        try:
            cb(state, drive_no, setting_no, path)
        except Exception:
            L.exception("Result log subscriber failed")

    def _emit_image_log(
        self,
        state: int,
        drive_no: int,
        setting_no: int,
        condition_type: int,
        count: int,
    ):
        cb = self.on_image_log
        if cb is None:
            return
        try:
            cb(state, drive_no, setting_no, condition_type, count)
        except Exception:
            L.exception("Image log subscriber failed")


def register_device(name: str):
    return register_named(_registry, name)


def create_device(name: str, cfg: DeviceConfig) -> BaseDevice:
    cls = resolve_registered(
        _registry,
        name,
        package=__package__ or "device",
        unknown_label="device type",
    )
    return cls(cfg)


__all__ = [
    "STATUS_NOT_CONNECTED",
    "STATUS_OK",
    "STATUS_TRANSPORT_ERROR",
    "BaseDevice",
    "DeviceConfig",
    "ImageLogCallback",
    "ResultLogCallback",
    "build_device_config",
    "create_device",
    "register_device",
]
