import contextlib
import io
import json
import os
import tempfile
import unittest
from unittest import mock

from core.config import (
    ConfigError,
    LoadedConfig,
    build_run_configuration,
    load_config,
    validate_config,
)
from core.errors import InvalidArgumentsError
from main import apply_cli_overrides, main, parse_args


def _write_yaml(path: str, text: str) -> str:
    with open(path, "w", encoding="utf-8") as f:
        f.write(text)
    return path


class TestConfigValidation(unittest.TestCase):
    def test_defaults_pass(self):
        cfg = LoadedConfig()
        validate_config(cfg)
        run_cfg = build_run_configuration(cfg)
        self.assertEqual(run_cfg.address, "192.168.1.233")
        self.assertEqual(run_cfg.port, 8502)
        self.assertEqual(run_cfg.program_index, 0)
        self.assertEqual(run_cfg.repeat_interval_ms, 0)
        self.assertFalse(run_cfg.use_hard_reset or run_cfg.inline_image or run_cfg.debug)
        self.assertTrue(run_cfg.output_dir.endswith("KeyenceCvXTest"))

    def test_invalid_values_raise_config_error(self):
        cases = [
            ("controller.port", "controller", {"port": 0}),
            ("controller.port", "controller", {"port": 70000}),
            ("inspection.program", "inspection", {"program": 32}),
            ("inspection.program", "inspection", {"program": -1}),
            ("inspection.repeat_ms", "inspection", {"repeat_ms": -5}),
            ("runtime.poll_interval_ms", "runtime", {"poll_interval_ms": 0}),
            ("inspection.debug", "inspection", {"debug": "yes"}),
        ]
        for expected_name, target, patch in cases:
            with self.subTest(field=expected_name, patch=patch):
                cfg = LoadedConfig()
                obj = getattr(cfg, target)
                for k, v in patch.items():
                    setattr(obj, k, v)
                with self.assertRaises(ConfigError) as cm:
                    validate_config(cfg)
                self.assertIn(expected_name, str(cm.exception))
                self.assertEqual(cm.exception.code, "ERR_INVALID_ARGS")


class TestLoadConfig(unittest.TestCase):
    def test_yaml_sections_are_applied(self):
        with tempfile.TemporaryDirectory() as tmp:
            path = _write_yaml(
                os.path.join(tmp, "main_line1.yaml"),
                "controller:\n  host: 10.0.0.5\n  port: 8500\n"
                "inspection:\n  program: 12\n  reset: true\n"
                "device:\n  type: mock\n  mock:\n    start_mode: setup\n",
            )
            cfg = load_config(config_dir=tmp)
            validate_config(cfg)
            self.assertEqual(cfg.paths["main"], path)
            self.assertEqual(cfg.controller.host, "10.0.0.5")
            self.assertEqual(cfg.inspection.program, 12)
            self.assertTrue(cfg.inspection.reset)
            self.assertEqual(cfg.device.mock.start_mode, "setup")

    def test_unknown_field_is_rejected(self):
        with tempfile.TemporaryDirectory() as tmp:
            path = _write_yaml(os.path.join(tmp, "c.yaml"), "controller:\n  hots: x\n")
            with self.assertRaises(ConfigError) as cm:
                load_config(path)
            self.assertIn("controller.hots", str(cm.exception))

    def test_missing_main_yaml(self):
        with tempfile.TemporaryDirectory() as tmp:
            with self.assertRaises(ConfigError):
                load_config(config_dir=tmp)


class TestCliArguments(unittest.TestCase):
    def test_flags_override_config(self):
        args = parse_args(
            [
                "--host", "10.1.1.1", "--port", "9000", "--program", "5",
                "--repeat", "250", "--reset", "1", "--inline-image", "1", "--debug", "0",
            ]
        )
        cfg = apply_cli_overrides(LoadedConfig(), args)
        validate_config(cfg)
        run_cfg = build_run_configuration(cfg)
        self.assertEqual(run_cfg.address, "10.1.1.1")
        self.assertEqual(run_cfg.port, 9000)
        self.assertEqual(run_cfg.program_index, 5)
        self.assertEqual(run_cfg.repeat_interval_ms, 250)
        self.assertTrue(run_cfg.use_hard_reset)
        self.assertTrue(run_cfg.inline_image)
        self.assertFalse(run_cfg.debug)

    def test_bad_flag_value_raises_invalid_arguments(self):
        for argv in (["--debug", "2"], ["--port", "abc"], ["--bogus"]):
            with self.subTest(argv=argv):
                with self.assertRaises(InvalidArgumentsError):
                    parse_args(argv)

    def test_out_of_range_program_exits_one(self):
        self.assertEqual(main(["--program", "40"]), 1)
        self.assertEqual(main(["--repeat", "-1"]), 1)


class TestMainWithMockDevice(unittest.TestCase):
    def test_single_run_prints_json(self):
        with tempfile.TemporaryDirectory() as tmp:
            out_dir = os.path.join(tmp, "out")
            path = _write_yaml(
                os.path.join(tmp, "main_mock.yaml"),
                f"runtime:\n  output_dir: {json.dumps(out_dir)}\n"
                "device:\n  type: mock\n  mock:\n"
                "    start_mode: setup\n    result_delay_ms: 10\n    image_delay_ms: 20\n"
                "    record: 'program={program},result=0,Area=0012.500,Label=ok'\n",
            )
            stdout = io.StringIO()
            with mock.patch("main.install_signal_handlers"), contextlib.redirect_stdout(stdout):
                code = main(["--config", path, "--program", "4"])
            self.assertEqual(code, 0)
            doc = json.loads(stdout.getvalue())
            self.assertEqual(doc["program"], 4)
            self.assertIs(doc["result"], True)
            self.assertEqual(doc["Area"], 12.5)
            self.assertEqual(doc["Label"], "ok")
            self.assertTrue(os.path.isfile(doc["image"]))


if __name__ == "__main__":
    unittest.main()
