"""Core runtime: session setup, repeat loop, and orderly shutdown."""

from __future__ import annotations

import logging
import os
import shutil
import sys
import time
from typing import Callable, TextIO

from core.config.schema import RunConfiguration
from core.errors import (
    DeviceConnectionError,
    ImageLogStartError,
    InspectionCancelled,
    InspectionError,
    OutputDirectorySetupError,
    ResultLogStartError,
)
from core.lifecycle import CancelToken
from core.orchestrator import CycleOutcome, InspectionCycle
from core.session import TriggerSession
from device.base import STATUS_OK, BaseDevice
from output.encoder import ResultEncoder

L = logging.getLogger("cvx_trigger.runtime")

RESULT_LOG_SETTING_NO = 0
EXIT_OK = 0
EXIT_FAILURE = 1


def recreate_output_dir(path: str) -> str:
    try:
        if os.path.isdir(path):
            shutil.rmtree(path)
        os.makedirs(path)
    except OSError as e:
        raise OutputDirectorySetupError(
            f"Failed to setup the output directory: {e}"
        ) from e
    return path


def log_failure(err: InspectionError, logger: logging.Logger = L):
    """Log the message then the ERR_* code, which is always the last line."""
    msg = str(err)
    if msg and msg != err.code:
        logger.error("%s", msg)
    logger.error("%s", err.code)


class InspectionRuntime:
    """Owns the device session for the process lifetime.

    `open()` performs the setup steps whose failures are process-fatal,
    `run()` executes cycles under the repeat policy and returns the exit
    code, `close()` stops logging and disconnects.
    """

    def __init__(
        self,
        cfg: RunConfiguration,
        device: BaseDevice,
        *,
        cancel: CancelToken | None = None,
        stream: TextIO | None = None,
        encoder: ResultEncoder | None = None,
    ):
        self.cfg = cfg
        self.device = device
        self.cancel = cancel or CancelToken()
        self.stream = stream
        self.session = TriggerSession()
        self.encoder = encoder or ResultEncoder(
            program_index=cfg.program_index,
            inline_image=cfg.inline_image,
            output_dir=cfg.output_dir,
        )
        self.last_outcome: CycleOutcome | None = None
        self.cycles_run = 0
        self.cycles_failed = 0
        self._closed = False

    def open(self):
        L.info("Setting up the output directory...")
        recreate_output_dir(self.cfg.output_dir)

        self.device.on_result_log = self.session.on_result_log
        self.device.on_image_log = self.session.on_image_log

        L.info("Connecting to %s:%d...", self.cfg.address, self.cfg.port)
        status = self.device.connect()
        if status != STATUS_OK:
            raise DeviceConnectionError(f"Failed to connect: {status}")

        status = self.device.start_result_log(RESULT_LOG_SETTING_NO, self.cfg.output_dir)
        if status != STATUS_OK:
            raise ResultLogStartError(f"Failed to start the result log: {status}")

        status = self.device.start_image_log(self.cfg.output_dir)
        if status != STATUS_OK:
            raise ImageLogStartError(f"Failed to start the image log: {status}")

    def run_cycle(self) -> CycleOutcome:
        outcome = InspectionCycle(self.device, self.session, self.cfg, self.cancel).run()
        self.last_outcome = outcome
        self.cycles_run += 1
        if not outcome.succeeded:
            self.cycles_failed += 1
        return outcome

    def run(self) -> int:
        while not self.cancel.cancelled:
            outcome = self.run_cycle()
            if outcome.succeeded:
                L.info("Cycle succeeded in %.1fms", outcome.elapsed_ms)
                self.encoder.emit(outcome.result_path, self.stream or sys.stdout)
            else:
                err = outcome.error
                if self.cancel.cancelled and not err.process_fatal:
                    err = InspectionCancelled(str(err) or "Cancelled")
                if err.process_fatal:
                    raise err
                L.warning(
                    "Cycle failed at %s",
                    outcome.failed_at.name if outcome.failed_at else "?",
                )
                log_failure(err)
                if isinstance(err, InspectionCancelled):
                    return EXIT_OK if self.cfg.repeating else EXIT_FAILURE
                if not self.cfg.repeating:
                    return EXIT_FAILURE
            if not self.cfg.repeating:
                return EXIT_OK
            if self.cancel.wait(self.cfg.repeat_interval_ms / 1000.0):
                break
        L.info("Stopped by cancellation")
        return EXIT_OK if self.cfg.repeating else EXIT_FAILURE

    def close(self):
        if self._closed:
            return
        self._closed = True
        if not self.device.connected:
            return
        L.info("Closing the connection...")

        def _run_stage(name: str, fn: Callable[[], None]):
            t0 = time.perf_counter()
            try:
                fn()
            except Exception:
                L.exception("Shutdown stage failed: %s", name)
            finally:
                L.debug(
                    "Shutdown stage=%s elapsed=%.1fms",
                    name,
                    (time.perf_counter() - t0) * 1000,
                )

        if self.device.result_log_started:
            _run_stage("result_log", self.device.stop_result_log)
        if self.device.image_log_started:
            _run_stage("image_log", self.device.stop_image_log)
        _run_stage("disconnect", self.device.disconnect)
        self.device.on_result_log = None
        self.device.on_image_log = None

    def __enter__(self):
        try:
            self.open()
        except BaseException:
            self.close()
            raise
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()


__all__ = [
    "EXIT_FAILURE",
    "EXIT_OK",
    "InspectionRuntime",
    "log_failure",
    "recreate_output_dir",
]
