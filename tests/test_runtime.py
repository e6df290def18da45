import io
import json
import os
import tempfile
import unittest
from collections import deque

from core.config.schema import RunConfiguration
from core.errors import (
    DeviceConnectionError,
    ImageLogStartError,
    OutputDirectorySetupError,
    ResultLogStartError,
    ResultOutputError,
)
from core.lifecycle import CancelToken
from core.runtime import EXIT_FAILURE, EXIT_OK, InspectionRuntime, recreate_output_dir
from fakes import FakeDevice


def _cfg(tmp: str, **kwargs) -> RunConfiguration:
    base = dict(
        output_dir=os.path.join(tmp, "out"),
        trigger_timeout_ms=300,
        poll_interval_ms=10,
    )
    base.update(kwargs)
    return RunConfiguration(**base)


def _run(cfg, device, cancel=None):
    out = io.StringIO()
    runtime = InspectionRuntime(cfg, device, cancel=cancel, stream=out)
    with runtime:
        code = runtime.run()
    return code, out.getvalue(), runtime


class TestRecreateOutputDir(unittest.TestCase):
    def test_removes_previous_contents(self):
        with tempfile.TemporaryDirectory() as tmp:
            target = os.path.join(tmp, "out")
            os.makedirs(os.path.join(target, "old"))
            recreate_output_dir(target)
            self.assertEqual(os.listdir(target), [])

    def test_failure_is_setup_error(self):
        with tempfile.TemporaryDirectory() as tmp:
            blocker = os.path.join(tmp, "file")
            with open(blocker, "w") as f:
                f.write("x")
            with self.assertRaises(OutputDirectorySetupError):
                recreate_output_dir(os.path.join(blocker, "out"))


class TestSingleRun(unittest.TestCase):
    def test_success_emits_one_json_line_and_disconnects(self):
        with tempfile.TemporaryDirectory() as tmp:
            device = FakeDevice(replies={"PR": "PR,1,003"})
            code, out, _ = _run(_cfg(tmp, program_index=3), device)
            self.assertEqual(code, EXIT_OK)
            lines = out.splitlines()
            self.assertEqual(len(lines), 1)
            doc = json.loads(lines[0])
            self.assertEqual(list(doc), ["program", "result", "X", "image"])
            self.assertEqual(doc["program"], 3)
            self.assertIs(doc["result"], True)
            self.assertEqual(doc["X"], 1.5)
            self.assertTrue(doc["image"].endswith("00001.jpg"))
            self.assertEqual(device.disconnect_calls, 1)
            self.assertEqual(sorted(device.stopped_logs), ["image", "result"])

    def test_reset_failure_exits_one_without_json(self):
        with tempfile.TemporaryDirectory() as tmp:
            device = FakeDevice(failures={"CE": (2, "ER,CE,02")})
            code, out, _ = _run(_cfg(tmp), device)
            self.assertEqual(code, EXIT_FAILURE)
            self.assertEqual(out, "")
            self.assertEqual(device.disconnect_calls, 1)

    def test_timeout_exits_one_without_json(self):
        with tempfile.TemporaryDirectory() as tmp:
            device = FakeDevice(deliver_image=False)
            code, out, _ = _run(_cfg(tmp, trigger_timeout_ms=100), device)
            self.assertEqual(code, EXIT_FAILURE)
            self.assertEqual(out, "")

    def test_unparsable_program_is_process_fatal(self):
        with tempfile.TemporaryDirectory() as tmp:
            device = FakeDevice(record="program=abc,result=0")
            runtime = InspectionRuntime(_cfg(tmp), device, stream=io.StringIO())
            with self.assertRaises(ResultOutputError):
                with runtime:
                    runtime.run()
            self.assertEqual(device.disconnect_calls, 1)


class TestSetupFailures(unittest.TestCase):
    def test_each_setup_failure_maps_to_its_error(self):
        cases = [
            ({"connect_status": -1}, DeviceConnectionError),
            ({"result_log_status": 7}, ResultLogStartError),
            ({"image_log_status": 8}, ImageLogStartError),
        ]
        for kwargs, expected in cases:
            with self.subTest(expected=expected.__name__):
                with tempfile.TemporaryDirectory() as tmp:
                    device = FakeDevice(**kwargs)
                    runtime = InspectionRuntime(_cfg(tmp, repeat_interval_ms=10), device)
                    with self.assertRaises(expected) as cm:
                        with runtime:
                            runtime.run()
                    self.assertTrue(cm.exception.process_fatal)
                    self.assertEqual(device.commands, [])


class TestRepeatRun(unittest.TestCase):
    def test_cycle_failure_is_followed_by_another_cycle(self):
        cancel = CancelToken()
        triggers = []

        def _cancel_after_triggered_cycle(_dev, command):
            if command == "TA":
                triggers.append(command)
            elif command == "CE" and triggers:
                cancel.cancel()

        with tempfile.TemporaryDirectory() as tmp:
            device = FakeDevice(
                fail_once={"CE": (2, "ER,CE,02")},
                on_execute=_cancel_after_triggered_cycle,
            )
            code, out, runtime = _run(_cfg(tmp, repeat_interval_ms=20), device, cancel)
            self.assertEqual(code, EXIT_OK)
            self.assertEqual(runtime.cycles_run, 2)
            self.assertEqual(runtime.cycles_failed, 1)
            self.assertTrue(runtime.last_outcome.succeeded)
            self.assertEqual(len(out.splitlines()), 1)

    def test_cancel_during_sleep_stops_loop_with_exit_zero(self):
        cancel = CancelToken()

        def _cancel_after_closing_reset(dev, command):
            if command == "CE" and dev.commands.count("CE") == 2:
                cancel.cancel()

        with tempfile.TemporaryDirectory() as tmp:
            device = FakeDevice(on_execute=_cancel_after_closing_reset)
            code, _, runtime = _run(
                _cfg(tmp, repeat_interval_ms=60_000), device, cancel
            )
            self.assertEqual(code, EXIT_OK)
            self.assertEqual(runtime.cycles_run, 1)
            self.assertEqual(device.disconnect_calls, 1)

    def test_long_repeat_run_does_not_accumulate_cycle_state(self):
        cancel = CancelToken()
        cycles = 20

        def _cancel_after_last_closing_reset(dev, command):
            if command == "CE" and dev.commands.count("CE") == 2 * cycles:
                cancel.cancel()

        with tempfile.TemporaryDirectory() as tmp:
            device = FakeDevice(on_execute=_cancel_after_last_closing_reset)
            code, out, runtime = _run(
                _cfg(tmp, repeat_interval_ms=1, inline_image=True), device, cancel
            )
            self.assertEqual(code, EXIT_OK)
            self.assertEqual(runtime.cycles_run, cycles)
            self.assertEqual(runtime.cycles_failed, 0)
            self.assertEqual(len(out.splitlines()), cycles)
            for name, value in vars(runtime).items():
                if isinstance(value, (list, tuple, dict, set, deque)):
                    self.assertLessEqual(len(value), 1, name)

    def test_cancelled_single_run_exits_one(self):
        cancel = CancelToken()

        def _cancel_on_trigger(_dev, command):
            if command == "TA":
                cancel.cancel()

        with tempfile.TemporaryDirectory() as tmp:
            device = FakeDevice(deliver_result=False, on_execute=_cancel_on_trigger)
            code, out, _ = _run(_cfg(tmp, trigger_timeout_ms=5000), device, cancel)
            self.assertEqual(code, EXIT_FAILURE)
            self.assertEqual(out, "")
            self.assertEqual(device.commands[-1], "TA")


if __name__ == "__main__":
    unittest.main()
