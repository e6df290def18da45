"""Failure taxonomy for the inspection trigger.

Every failure carries a stable ``ERR_*`` code that is logged as the last line
of a failure report. ``process_fatal`` failures end the process regardless of
the repeat policy; the others only end the current cycle.
"""

from __future__ import annotations


class InspectionError(Exception):
    code = "ERR_EXCEPTION"
    process_fatal = False


class InvalidArgumentsError(InspectionError):
    code = "ERR_INVALID_ARGS"
    process_fatal = True


class OutputDirectorySetupError(InspectionError):
    code = "ERR_OUTPUT_DIR_SETUP"
    process_fatal = True


class DeviceConnectionError(InspectionError):
    code = "ERR_CONNECTION_FAILURE"
    process_fatal = True


class ResultLogStartError(InspectionError):
    code = "ERR_RESULT_LOG_FAILURE"
    process_fatal = True


class ImageLogStartError(InspectionError):
    code = "ERR_IMAGE_LOG_FAILURE"
    process_fatal = True


class CommandError(InspectionError):
    code = "ERR_COMMAND_FAILURE"

    def __init__(self, command: str, status: int, response: str = ""):
        self.command = command
        self.status = int(status)
        self.response = response or "?"
        super().__init__(
            f"Command {command} failed: ({self.status}) {self.response}"
        )


class ResultNotAvailableError(InspectionError):
    code = "ERR_RESULT_NOT_AVAILABLE"


class InspectionCancelled(InspectionError):
    code = "ERR_CANCELLED"


class ResultOutputError(InspectionError):
    code = "ERR_RESULT_FAILURE"
    process_fatal = True


class UnknownFailure(InspectionError):
    code = "ERR_EXCEPTION"


def as_inspection_error(exc: BaseException) -> InspectionError:
    """Wrap anything that is not already an InspectionError."""
    if isinstance(exc, InspectionError):
        return exc
    wrapped = UnknownFailure(f"{type(exc).__name__}: {exc}")
    wrapped.__cause__ = exc
    return wrapped


__all__ = [
    "InspectionError",
    "InvalidArgumentsError",
    "OutputDirectorySetupError",
    "DeviceConnectionError",
    "ResultLogStartError",
    "ImageLogStartError",
    "CommandError",
    "ResultNotAvailableError",
    "InspectionCancelled",
    "ResultOutputError",
    "UnknownFailure",
    "as_inspection_error",
]
