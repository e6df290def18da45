"""Arrival state shared between device notification threads and the cycle."""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass

from core.errors import InspectionCancelled, ResultNotAvailableError
from core.lifecycle import CancelToken

L = logging.getLogger("cvx_trigger.session")

DEFAULT_TRIGGER_TIMEOUT_MS = 5000
DEFAULT_POLL_INTERVAL_MS = 100


@dataclass(frozen=True, slots=True)
class SessionSnapshot:
    result_available: bool = False
    image_available: bool = False
    result_path: str = ""
    armed_at: float = 0.0

    @property
    def complete(self) -> bool:
        return self.result_available and self.image_available


class TriggerSession:
    """Result/image arrival flags for one trigger cycle.

    Producers are the device callbacks (`mark_result`, `mark_image`), called
    from device threads. The consumer is `wait_for_arrival` on the cycle
    thread. `result_path` is only meaningful once `result_available` is set.
    """

    def __init__(self):
        self._cond = threading.Condition()
        self._result_available = False
        self._image_available = False
        self._result_path = ""
        self._armed_at = 0.0

    def arm(self):
        """Clear both flags before a new trigger is issued."""
        with self._cond:
            self._result_available = False
            self._image_available = False
            self._result_path = ""
            self._armed_at = time.monotonic()

    def mark_result(self, path: str):
        with self._cond:
            self._result_path = str(path or "")
            self._result_available = True
            self._cond.notify_all()

    def mark_image(self):
        with self._cond:
            self._image_available = True
            self._cond.notify_all()

    def snapshot(self) -> SessionSnapshot:
        with self._cond:
            return SessionSnapshot(
                result_available=self._result_available,
                image_available=self._image_available,
                result_path=self._result_path,
                armed_at=self._armed_at,
            )

    def on_result_log(self, state: int, drive_no: int, setting_no: int, path: str):
        L.debug(
            "Result log notification state=%s drive=%s setting=%s path=%s",
            state,
            drive_no,
            setting_no,
            path,
        )
        self.mark_result(path)

    def on_image_log(
        self,
        state: int,
        drive_no: int,
        setting_no: int,
        condition_type: int,
        count: int,
    ):
        L.debug(
            "Image log notification state=%s drive=%s setting=%s cond=%s count=%s",
            state,
            drive_no,
            setting_no,
            condition_type,
            count,
        )
        self.mark_image()

    def wait_for_arrival(
        self,
        started_at: float,
        cancel: CancelToken,
        *,
        timeout_ms: int = DEFAULT_TRIGGER_TIMEOUT_MS,
        poll_ms: int = DEFAULT_POLL_INTERVAL_MS,
    ) -> SessionSnapshot:
        """Block until both result and image have arrived.

        `started_at` is the monotonic time the trigger was issued; the deadline
        is `timeout_ms` after it. Wakes at least every `poll_ms` to observe
        cancellation. Raises ResultNotAvailableError on deadline and
        InspectionCancelled on cancellation.
        """
        deadline = started_at + timeout_ms / 1000.0
        poll_s = max(poll_ms, 1) / 1000.0
        result_seen = False
        with self._cond:
            while True:
                if cancel.cancelled:
                    raise InspectionCancelled("Cancelled while awaiting result")
                if self._result_available:
                    if not result_seen:
                        result_seen = True
                        L.info("...result available!")
                    if self._image_available:
                        L.info("...image available!")
                        return SessionSnapshot(
                            result_available=True,
                            image_available=True,
                            result_path=self._result_path,
                            armed_at=self._armed_at,
                        )
                    L.debug("...image not available...")
                else:
                    L.debug("...result not available...")
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    raise ResultNotAvailableError(
                        f"Result not available within {timeout_ms} ms"
                        f" (result={self._result_available}"
                        f" image={self._image_available})"
                    )
                self._cond.wait(min(poll_s, remaining))


__all__ = [
    "DEFAULT_POLL_INTERVAL_MS",
    "DEFAULT_TRIGGER_TIMEOUT_MS",
    "SessionSnapshot",
    "TriggerSession",
]
