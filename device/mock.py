# -- coding: utf-8 --

import logging
import os
import threading

import cv2
import numpy as np

from device.base import (
    STATUS_NOT_CONNECTED,
    STATUS_OK,
    BaseDevice,
    DeviceConfig,
    register_device,
)

L = logging.getLogger("cvx_trigger.device.mock")

ERR_UNKNOWN_COMMAND = 2
ERR_COMMAND_REFUSED = 3


def _render_image(seq: int, program: int) -> np.ndarray:
    img = np.full((240, 320, 3), 64, dtype=np.uint8)
    cv2.rectangle(img, (40, 40), (280, 200), (0, 200, 0), 2)
    cv2.putText(
        img,
        f"P{program:03d} #{seq}",
        (60, 130),
        cv2.FONT_HERSHEY_SIMPLEX,
        0.9,
        (255, 255, 255),
        2,
    )
    return img


def _write_jpeg(path: str, img: np.ndarray):
    ok, buf = cv2.imencode(".jpg", img)
    if not ok:
        raise RuntimeError("opencv_imencode_failed")
    buf.tofile(path)


@register_device("mock")
class MockDevice(BaseDevice):
    """In-process controller stand-in.

    Keeps run/setup mode and the selected program, answers the command set
    the trigger uses, and on `TA` writes a result record and a JPEG into the
    log directory from timer threads before firing the notifications.
    """

    def __init__(self, cfg: DeviceConfig):
        super().__init__(cfg)
        opts = cfg.mock
        self.run_mode = str(opts.start_mode).strip().lower() == "run"
        self.program = int(opts.start_program)
        self.commands: list[str] = []
        self._output_dir = ""
        self._seq = 0
        self._timers: list[threading.Timer] = []

    def connect(self) -> int:
        self._connected = True
        L.info("Mock controller connected (%s:%d)", self.cfg.host, self.cfg.port)
        return STATUS_OK

    def disconnect(self):
        self.stop_result_log()
        self.stop_image_log()
        with self.lock:
            timers, self._timers = self._timers, []
            self._connected = False
        for t in timers:
            t.cancel()

    def execute(self, command: str) -> tuple[int, str]:
        if not self._connected:
            return STATUS_NOT_CONNECTED, ""
        self.commands.append(command)
        head = command.split(",", 1)[0]
        if head in self.cfg.mock.fail_commands:
            return ERR_COMMAND_REFUSED, f"ER,{head},{ERR_COMMAND_REFUSED:02d}"
        if head == "RM":
            return STATUS_OK, f"RM,{1 if self.run_mode else 0}"
        if head == "R0":
            self.run_mode = True
            return STATUS_OK, "R0"
        if head == "S0":
            self.run_mode = False
            return STATUS_OK, "S0"
        if head == "PR":
            return STATUS_OK, f"PR,1,{self.program:03d}"
        if head == "PW":
            return self._change_program(command)
        if head in ("RS", "CE"):
            return STATUS_OK, head
        if head == "TA":
            if not self.run_mode:
                return ERR_COMMAND_REFUSED, f"ER,TA,{ERR_COMMAND_REFUSED:02d}"
            self._schedule_logs()
            return STATUS_OK, "TA"
        return ERR_UNKNOWN_COMMAND, f"ER,{head},{ERR_UNKNOWN_COMMAND:02d}"

    def _change_program(self, command: str) -> tuple[int, str]:
        parts = command.split(",")
        try:
            program = int(parts[2])
        except (IndexError, ValueError):
            return ERR_UNKNOWN_COMMAND, f"ER,PW,{ERR_UNKNOWN_COMMAND:02d}"
        self.program = program
        return STATUS_OK, "PW"

    def start_result_log(self, setting_no: int, output_dir: str) -> int:
        if not self._connected:
            return STATUS_NOT_CONNECTED
        self._output_dir = output_dir
        self._result_log_started = True
        return STATUS_OK

    def stop_result_log(self):
        self._result_log_started = False

    def start_image_log(self, output_dir: str) -> int:
        if not self._connected:
            return STATUS_NOT_CONNECTED
        self._output_dir = output_dir
        self._image_log_started = True
        return STATUS_OK

    def stop_image_log(self):
        self._image_log_started = False

    def _schedule_logs(self):
        self._seq += 1
        seq = self._seq
        program = self.program
        result_path = os.path.join(self._output_dir, f"result_{seq:05d}.txt")
        timers = []
        if self._result_log_started:
            timers.append(
                threading.Timer(
                    self.cfg.mock.result_delay_ms / 1000.0,
                    self._deliver_result,
                    args=(result_path, program),
                )
            )
        if self._image_log_started and not self.cfg.mock.drop_image:
            timers.append(
                threading.Timer(
                    self.cfg.mock.image_delay_ms / 1000.0,
                    self._deliver_image,
                    args=(result_path, seq, program),
                )
            )
        with self.lock:
            self._timers = [t for t in self._timers if t.is_alive()] + timers
        for t in timers:
            t.daemon = True
            t.start()

    def _deliver_result(self, result_path: str, program: int):
        record = self.cfg.mock.record.format(program=program)
        with open(result_path, "w", encoding="utf-8") as f:
            f.write(record + "\r\n")
        self._emit_result_log(STATUS_OK, 0, 0, result_path)

    def _deliver_image(self, result_path: str, seq: int, program: int):
        image_dir = os.path.join(os.path.splitext(result_path)[0], "CAM1")
        os.makedirs(image_dir, exist_ok=True)
        _write_jpeg(os.path.join(image_dir, f"{seq:05d}.jpg"), _render_image(seq, program))
        self._emit_image_log(STATUS_OK, 0, 0, 0, seq)


__all__ = ["MockDevice"]
