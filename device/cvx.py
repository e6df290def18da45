# -- coding: utf-8 --

import logging
import os
import socket
import threading

from core.worker import BaseWorker
from device.base import (
    STATUS_NOT_CONNECTED,
    STATUS_OK,
    STATUS_TRANSPORT_ERROR,
    BaseDevice,
    DeviceConfig,
    register_device,
)

L = logging.getLogger("cvx_trigger.device.cvx")

TERMINATOR = b"\r"
MAX_REPLY_BYTES = 64 * 1024
RESULT_EXTS = (".txt",)
IMAGE_EXTS = (".jpg", ".jpeg", ".png", ".bmp")


def parse_error_reply(reply: str) -> int | None:
    """Return the error code of an `ER,<cmd>,<code>` reply, or None."""
    if reply != "ER" and not reply.startswith("ER,"):
        return None
    parts = reply.split(",")
    try:
        code = int(parts[-1])
    except ValueError:
        return STATUS_TRANSPORT_ERROR
    return code or STATUS_TRANSPORT_ERROR


def _list_files(root: str, exts: tuple[str, ...]) -> list[str]:
    found = []
    for dirpath, dirnames, filenames in os.walk(root):
        dirnames.sort()
        for name in sorted(filenames):
            if os.path.splitext(name)[1].lower() in exts:
                found.append(os.path.join(dirpath, name))
    return found


class LogDirectoryWatcher(BaseWorker):
    """Report files the controller drops into a log directory.

    A file is reported once, after its size is unchanged across two scans.
    Files already present when the watcher starts are never reported.
    """

    def __init__(self, name: str, root: str, exts: tuple[str, ...], on_file, interval_s: float):
        super().__init__(name)
        self.root = root
        self.exts = exts
        self.on_file = on_file
        self.interval_s = interval_s
        self._seen: set[str] = set(_list_files(root, exts)) if os.path.isdir(root) else set()
        self._pending: dict[str, int] = {}

    def run(self):
        while not self._stop_evt.wait(self.interval_s):
            self.scan_once()

    def scan_once(self):
        if not os.path.isdir(self.root):
            return
        for path in _list_files(self.root, self.exts):
            if path in self._seen:
                continue
            try:
                size = os.path.getsize(path)
            except OSError:
                continue
            if self._pending.get(path) != size:
                self._pending[path] = size
                continue
            del self._pending[path]
            self._seen.add(path)
            self.on_file(path)


@register_device("cvx")
class CvxDevice(BaseDevice):
    """CV-X controller driven by its text command protocol over TCP."""

    def __init__(self, cfg: DeviceConfig):
        super().__init__(cfg)
        self._sock: socket.socket | None = None
        self._rx = bytearray()
        self._result_watcher: LogDirectoryWatcher | None = None
        self._image_watcher: LogDirectoryWatcher | None = None
        self._result_setting_no = 0
        self._image_count = 0
        self._count_lock = threading.Lock()

    def connect(self) -> int:
        with self.lock:
            if self._sock is not None:
                return STATUS_OK
            try:
                self._sock = socket.create_connection(
                    (self.cfg.host, self.cfg.port),
                    timeout=self.cfg.timeout_ms / 1000.0,
                )
                self._sock.setsockopt(socket.IPPROTO_TCP, socket.TCP_NODELAY, 1)
            except OSError as e:
                L.error("Connect %s:%d failed: %s", self.cfg.host, self.cfg.port, e)
                self._sock = None
                return STATUS_TRANSPORT_ERROR
            self._rx.clear()
            self._connected = True
        L.info("Connected to %s:%d", self.cfg.host, self.cfg.port)
        return STATUS_OK

    def disconnect(self):
        self.stop_result_log()
        self.stop_image_log()
        with self.lock:
            sock, self._sock = self._sock, None
            self._connected = False
        if sock is not None:
            try:
                sock.close()
            except OSError:
                L.warning("Socket close failed", exc_info=True)

    def execute(self, command: str) -> tuple[int, str]:
        with self.lock:
            if self._sock is None:
                return STATUS_NOT_CONNECTED, ""
            try:
                self._sock.sendall(command.encode("ascii") + TERMINATOR)
                reply = self._read_reply()
            except (OSError, UnicodeError) as e:
                L.error("Command %s transport error: %s", command, e)
                return STATUS_TRANSPORT_ERROR, str(e)
        L.debug("%s -> %s", command, reply)
        code = parse_error_reply(reply)
        if code is not None:
            return code, reply
        return STATUS_OK, reply

    def _read_reply(self) -> str:
        while TERMINATOR not in self._rx:
            chunk = self._sock.recv(4096)
            if not chunk:
                raise ConnectionError("connection closed by controller")
            self._rx.extend(chunk)
            if len(self._rx) > MAX_REPLY_BYTES:
                self._rx.clear()
                raise ConnectionError("reply exceeds maximum length")
        idx = self._rx.index(TERMINATOR)
        line = bytes(self._rx[:idx])
        del self._rx[: idx + 1]
        return line.decode("ascii").strip()

    def start_result_log(self, setting_no: int, output_dir: str) -> int:
        if not self._connected:
            return STATUS_NOT_CONNECTED
        if self._result_watcher is not None:
            return STATUS_OK
        self._result_setting_no = int(setting_no)
        self._result_watcher = LogDirectoryWatcher(
            "ResultLogWatcher",
            output_dir,
            RESULT_EXTS,
            self._on_result_file,
            self.cfg.scan_interval_ms / 1000.0,
        )
        self._result_watcher.start()
        self._result_log_started = True
        return STATUS_OK

    def stop_result_log(self):
        watcher, self._result_watcher = self._result_watcher, None
        self._result_log_started = False
        if watcher is not None:
            watcher.stop()

    def start_image_log(self, output_dir: str) -> int:
        if not self._connected:
            return STATUS_NOT_CONNECTED
        if self._image_watcher is not None:
            return STATUS_OK
        self._image_watcher = LogDirectoryWatcher(
            "ImageLogWatcher",
            output_dir,
            IMAGE_EXTS,
            self._on_image_file,
            self.cfg.scan_interval_ms / 1000.0,
        )
        self._image_watcher.start()
        self._image_log_started = True
        return STATUS_OK

    def stop_image_log(self):
        watcher, self._image_watcher = self._image_watcher, None
        self._image_log_started = False
        if watcher is not None:
            watcher.stop()

    def _on_result_file(self, path: str):
        L.debug("Result log file %s", path)
        self._emit_result_log(STATUS_OK, 0, self._result_setting_no, path)

    def _on_image_file(self, path: str):
        with self._count_lock:
            self._image_count += 1
            count = self._image_count
        L.debug("Image log file %s", path)
        self._emit_image_log(STATUS_OK, 0, 0, 0, count)


__all__ = ["CvxDevice", "LogDirectoryWatcher", "parse_error_reply"]
