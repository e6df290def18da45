from .base import (
    STATUS_OK,
    BaseDevice,
    DeviceConfig,
    build_device_config,
    create_device,
    register_device,
)

__all__ = [
    "STATUS_OK",
    "BaseDevice",
    "DeviceConfig",
    "build_device_config",
    "create_device",
    "register_device",
]
