"""One inspection cycle as an explicit state machine.

CHECKING_MODE -> RESETTING_STATE -> SELECTING_PROGRAM -> TRIGGERING
-> AWAITING_RESULT -> CLOSING_RESET -> SUCCEEDED

CLOSING_RESET is skipped in debug mode. Any step may end in FAILED; the
failure is returned as a value in CycleOutcome rather than raised.
"""

from __future__ import annotations

import enum
import logging
import time
from dataclasses import dataclass
from typing import Callable

from core.config.schema import RunConfiguration
from core.errors import CommandError, InspectionError, as_inspection_error
from core.lifecycle import CancelToken
from core.session import TriggerSession
from device.base import STATUS_OK, BaseDevice

L = logging.getLogger("cvx_trigger.orchestrator")

CMD_READ_MODE = "RM"
CMD_RUN_MODE = "R0"
CMD_RESET = "RS"
CMD_CLEAR_ERROR = "CE"
CMD_READ_PROGRAM = "PR"
CMD_WRITE_PROGRAM = "PW"
CMD_TRIGGER_ALL = "TA"

SETUP_MODE_REPLY = "RM,0"


class CycleState(enum.Enum):
    CHECKING_MODE = "checking_mode"
    RESETTING_STATE = "resetting_state"
    SELECTING_PROGRAM = "selecting_program"
    TRIGGERING = "triggering"
    AWAITING_RESULT = "awaiting_result"
    CLOSING_RESET = "closing_reset"
    SUCCEEDED = "succeeded"
    FAILED = "failed"

    @property
    def terminal(self) -> bool:
        return self in (CycleState.SUCCEEDED, CycleState.FAILED)


_SUCCESSORS = {
    CycleState.CHECKING_MODE: CycleState.RESETTING_STATE,
    CycleState.RESETTING_STATE: CycleState.SELECTING_PROGRAM,
    CycleState.SELECTING_PROGRAM: CycleState.TRIGGERING,
    CycleState.TRIGGERING: CycleState.AWAITING_RESULT,
    CycleState.AWAITING_RESULT: CycleState.CLOSING_RESET,
    CycleState.CLOSING_RESET: CycleState.SUCCEEDED,
}


def next_state(state: CycleState, *, debug: bool = False) -> CycleState:
    """Successor of `state` when its step completed without failure."""
    if state.terminal:
        raise ValueError(f"{state.name} is terminal")
    nxt = _SUCCESSORS[state]
    if nxt is CycleState.CLOSING_RESET and debug:
        return CycleState.SUCCEEDED
    return nxt


@dataclass(frozen=True)
class CycleOutcome:
    state: CycleState
    error: InspectionError | None = None
    failed_at: CycleState | None = None
    result_path: str = ""
    elapsed_ms: float = 0.0

    @property
    def succeeded(self) -> bool:
        return self.state is CycleState.SUCCEEDED


def format_program_no(program: int) -> str:
    return f"{int(program):03d}"


def execute_command(device: BaseDevice, command: str, cancel: CancelToken) -> str:
    """Send one command; never sends once cancellation was requested."""
    cancel.raise_if_cancelled()
    status, response = device.execute(command)
    if status != STATUS_OK:
        raise CommandError(command, status, response)
    return response


class InspectionCycle:
    """Drives one pass of the state machine against a connected device."""

    def __init__(
        self,
        device: BaseDevice,
        session: TriggerSession,
        cfg: RunConfiguration,
        cancel: CancelToken,
    ):
        self.device = device
        self.session = session
        self.cfg = cfg
        self.cancel = cancel
        self._triggered_at = 0.0
        self._result_path = ""
        self._handlers: dict[CycleState, Callable[[], None]] = {
            CycleState.CHECKING_MODE: self.check_mode,
            CycleState.RESETTING_STATE: self.reset_state,
            CycleState.SELECTING_PROGRAM: self.select_program,
            CycleState.TRIGGERING: self.trigger,
            CycleState.AWAITING_RESULT: self.await_result,
            CycleState.CLOSING_RESET: self.reset_state,
        }

    def command(self, command: str) -> str:
        return execute_command(self.device, command, self.cancel)

    def check_mode(self):
        L.info("Checking initial conditions...")
        if self.command(CMD_READ_MODE) == SETUP_MODE_REPLY:
            L.info("Switching to run mode...")
            self.command(CMD_RUN_MODE)

    def reset_state(self):
        L.info("Resetting state...")
        self.command(CMD_RESET if self.cfg.use_hard_reset else CMD_CLEAR_ERROR)

    def select_program(self):
        program_no = format_program_no(self.cfg.program_index)
        L.info("Selecting program no. %d...", self.cfg.program_index)
        if self.command(CMD_READ_PROGRAM) == f"{CMD_READ_PROGRAM},1,{program_no}":
            L.info("Program already selected.")
            return
        self.command(f"{CMD_WRITE_PROGRAM},1,{program_no}")

    def trigger(self):
        L.info("Triggering...")
        self.cancel.raise_if_cancelled()
        self.session.arm()
        self._triggered_at = time.monotonic()
        self.command(CMD_TRIGGER_ALL)

    def await_result(self):
        snap = self.session.wait_for_arrival(
            self._triggered_at,
            self.cancel,
            timeout_ms=self.cfg.trigger_timeout_ms,
            poll_ms=self.cfg.poll_interval_ms,
        )
        self._result_path = snap.result_path
        L.debug(
            "Result and image arrived after %.1fms",
            (time.monotonic() - self._triggered_at) * 1000,
        )

    def run(self) -> CycleOutcome:
        t0 = time.perf_counter()
        state = CycleState.CHECKING_MODE
        while not state.terminal:
            try:
                self._handlers[state]()
            except Exception as e:
                return CycleOutcome(
                    state=CycleState.FAILED,
                    error=as_inspection_error(e),
                    failed_at=state,
                    elapsed_ms=(time.perf_counter() - t0) * 1000,
                )
            state = next_state(state, debug=self.cfg.debug)
        return CycleOutcome(
            state=state,
            result_path=self._result_path,
            elapsed_ms=(time.perf_counter() - t0) * 1000,
        )


__all__ = [
    "CycleOutcome",
    "CycleState",
    "InspectionCycle",
    "execute_command",
    "format_program_no",
    "next_state",
]
