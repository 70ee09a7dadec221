"""Tests for prbench.suite — running the benchmark suite."""

from __future__ import annotations

import json
import os
import subprocess
import tempfile
import time
import unittest
from pathlib import Path
from typing import Any
from unittest.mock import MagicMock, patch

from result_helpers import make_document, make_test

from prbench.errors import SuiteExecutionError, SuiteLoadError, SuiteShapeError
from prbench.suite import RESULT_FILE_ENV, SuiteRunner
from prbench.workspace import Workspace

DOCUMENT = make_document({"S": [make_test("T", 1234.5)]}, name="bench")


def _proc(returncode: int = 0, stdout: str = "", stderr: str = "") -> MagicMock:
    proc = MagicMock()
    proc.returncode = returncode
    proc.stdout = stdout
    proc.stderr = stderr
    return proc


class TestSuiteRunner(unittest.TestCase):
    def setUp(self) -> None:
        self.tmpdir = tempfile.TemporaryDirectory()
        self.ws = Workspace(id="ws", path=Path(self.tmpdir.name) / "ws")
        self.ws.repo_dir.mkdir(parents=True)
        (self.ws.repo_dir / "bench").mkdir()
        (self.ws.repo_dir / "bench" / "suite.py").write_text("# suite\n")
        self.runner = SuiteRunner(timeout=42)

    def tearDown(self) -> None:
        self.tmpdir.cleanup()

    def test_result_from_env_file(self) -> None:
        def fake_run(cmd: str, **kwargs: Any) -> MagicMock:
            Path(kwargs["env"][RESULT_FILE_ENV]).write_text(json.dumps(DOCUMENT))
            return _proc(stdout="progress output that is not JSON")

        with patch("prbench.suite.run_command", side_effect=fake_run) as mock_run:
            result = self.runner.run(self.ws, "bench/suite.py")

        self.assertEqual(result.name, "bench")
        self.assertEqual(result.suites[0].tests[0].rps, 1234.5)
        cmd = mock_run.call_args.args[0]
        self.assertEqual(cmd, f"{self.ws.venv_python} bench/suite.py")
        kwargs = mock_run.call_args.kwargs
        self.assertEqual(kwargs["cwd"], str(self.ws.repo_dir))
        self.assertEqual(kwargs["timeout"], 42)
        self.assertEqual(kwargs["env"][RESULT_FILE_ENV], str(self.ws.result_file))

    def test_result_from_stdout(self) -> None:
        with patch(
            "prbench.suite.run_command", return_value=_proc(stdout=json.dumps(DOCUMENT))
        ):
            result = self.runner.run(self.ws, "bench/suite.py")
        self.assertEqual(result.name, "bench")

    def test_stale_result_file_removed(self) -> None:
        self.ws.result_file.write_text(json.dumps(make_document({}, name="stale")))
        with patch(
            "prbench.suite.run_command", return_value=_proc(stdout=json.dumps(DOCUMENT))
        ):
            result = self.runner.run(self.ws, "bench/suite.py")
        self.assertEqual(result.name, "bench")

    def test_custom_command(self) -> None:
        runner = SuiteRunner(suite_command="python -m benchrunner {entry} --fast")
        with patch(
            "prbench.suite.run_command", return_value=_proc(stdout=json.dumps(DOCUMENT))
        ) as mock_run:
            runner.run(self.ws, "bench/suite.py")
        self.assertEqual(
            mock_run.call_args.args[0],
            f"{self.ws.venv_python} -m benchrunner bench/suite.py --fast",
        )

    def test_json_entry_loaded_directly(self) -> None:
        (self.ws.repo_dir / "result.json").write_text(json.dumps(DOCUMENT))
        with patch("prbench.suite.run_command") as mock_run:
            result = self.runner.run(self.ws, "result.json")
        mock_run.assert_not_called()
        self.assertEqual(result.name, "bench")

    def test_missing_entry(self) -> None:
        with self.assertRaises(SuiteLoadError):
            self.runner.run(self.ws, "bench/missing.py")

    def test_non_zero_exit(self) -> None:
        with patch(
            "prbench.suite.run_command",
            return_value=_proc(returncode=1, stderr="Traceback: ZeroDivisionError"),
        ):
            with self.assertRaises(SuiteExecutionError) as ctx:
                self.runner.run(self.ws, "bench/suite.py")
        self.assertIn("ZeroDivisionError", str(ctx.exception))

    def test_timeout(self) -> None:
        with patch(
            "prbench.suite.run_command",
            side_effect=subprocess.TimeoutExpired("python", 42),
        ):
            with self.assertRaises(SuiteExecutionError) as ctx:
                self.runner.run(self.ws, "bench/suite.py")
        self.assertIn("timed out", str(ctx.exception))

    def test_unparseable_output(self) -> None:
        with patch("prbench.suite.run_command", return_value=_proc(stdout="Done!")):
            with self.assertRaises(SuiteLoadError):
                self.runner.run(self.ws, "bench/suite.py")

    def test_empty_output(self) -> None:
        with patch("prbench.suite.run_command", return_value=_proc(stdout="")):
            with self.assertRaises(SuiteLoadError):
                self.runner.run(self.ws, "bench/suite.py")

    def test_bad_shape(self) -> None:
        bad = {"name": "bench", "suites": [{"name": "S", "tests": [{"name": "T"}]}]}
        with patch("prbench.suite.run_command", return_value=_proc(stdout=json.dumps(bad))):
            with self.assertRaises(SuiteShapeError):
                self.runner.run(self.ws, "bench/suite.py")


@unittest.skipUnless(os.name == "posix", "process groups are POSIX-only")
class TestSuiteRunnerProcesses(unittest.TestCase):
    def setUp(self) -> None:
        self.tmpdir = tempfile.TemporaryDirectory()
        self.ws = Workspace(id="ws", path=Path(self.tmpdir.name) / "ws")
        (self.ws.repo_dir / "bench").mkdir(parents=True)

    def tearDown(self) -> None:
        self.tmpdir.cleanup()

    def test_timeout_stops_spawned_processes(self) -> None:
        marker = self.ws.path / "marker"
        (self.ws.repo_dir / "bench" / "spawn.sh").write_text(
            f"(while true; do echo x >> {marker}; sleep 0.1; done) &\nsleep 60\n"
        )
        runner = SuiteRunner(suite_command="sh {entry}", timeout=1)

        with self.assertRaises(SuiteExecutionError) as ctx:
            runner.run(self.ws, "bench/spawn.sh")
        self.assertIn("timed out", str(ctx.exception))

        size = marker.stat().st_size
        time.sleep(0.5)
        self.assertEqual(marker.stat().st_size, size)

    def test_result_written_to_env_file(self) -> None:
        (self.ws.repo_dir / "bench" / "emit.sh").write_text(
            f"cat > \"${RESULT_FILE_ENV}\" <<'JSON'\n{json.dumps(DOCUMENT)}\nJSON\n"
        )
        runner = SuiteRunner(suite_command="sh {entry}", timeout=30)
        result = runner.run(self.ws, "bench/emit.sh")
        self.assertEqual(result.name, "bench")
