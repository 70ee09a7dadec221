"""Benchmark suite execution inside a provisioned workspace.

The suite is an opaque program in the checked-out repository. The
runner executes it with the workspace venv and reads the result
document it emits, either from the file named by ``PRBENCH_RESULT_FILE``
or, if the suite did not write that file, from its stdout. An entry
file ending in ``.json`` is taken to be a pre-generated document and is
read as is.
"""

from __future__ import annotations

import shlex
import subprocess
import time

from prbench.errors import SuiteExecutionError, SuiteLoadError
from prbench.formatting import format_duration
from prbench.logging import get_logger
from prbench.results import BenchmarkResult, load_result, parse_result_text
from prbench.workspace import Workspace, build_env, resolve_venv_command, run_command

log = get_logger("suite")

RESULT_FILE_ENV = "PRBENCH_RESULT_FILE"


class SuiteRunner:
    """Runs a benchmark suite and returns its validated result.

    Usage::

        runner = SuiteRunner(suite_command="python {entry}", timeout=1800)
        result = runner.run(workspace, "benchmark/suite.py")
    """

    def __init__(self, *, suite_command: str = "python {entry}", timeout: int = 1800) -> None:
        self.suite_command = suite_command
        self.timeout = timeout

    def run(self, workspace: Workspace, entry_file: str) -> BenchmarkResult:
        """Execute *entry_file* in *workspace* and load its result.

        Args:
            workspace: A workspace with the revision checked out and installed.
            entry_file: Path of the suite entry, relative to the repository root.

        Raises:
            SuiteLoadError: If the entry file is missing or the output is not JSON.
            SuiteExecutionError: If the suite exits non-zero or times out.
            SuiteShapeError: If the document does not have the expected shape.
        """
        entry = workspace.repo_dir / entry_file
        if not entry.is_file():
            raise SuiteLoadError(f"Suite entry file not found: {entry}")

        if entry.suffix == ".json":
            log.info("Loading pre-generated result %s", entry)
            return load_result(entry)

        result_file = workspace.result_file
        result_file.unlink(missing_ok=True)

        cmd = resolve_venv_command(
            self.suite_command.format(entry=shlex.quote(entry_file)), workspace.venv_python
        )
        env = build_env(workspace.venv_dir)
        env[RESULT_FILE_ENV] = str(result_file)

        log.debug("Suite command (resolved): %s", cmd)
        start = time.monotonic()
        try:
            proc = run_command(
                cmd,
                shell=True,
                cwd=str(workspace.repo_dir),
                timeout=self.timeout,
                env=env,
            )
        except subprocess.TimeoutExpired:
            raise SuiteExecutionError(
                f"Suite {entry_file} timed out after {self.timeout}s"
            ) from None
        except OSError as exc:
            raise SuiteExecutionError(f"Cannot run suite {entry_file}: {exc}") from exc
        elapsed = time.monotonic() - start

        if proc.stderr:
            log.debug("Suite stderr:\n%s", proc.stderr[-3000:])
        if proc.returncode != 0:
            tail = proc.stderr.strip()[-500:] if proc.stderr else ""
            raise SuiteExecutionError(
                f"Suite {entry_file} exited with status {proc.returncode}: {tail}"
            )
        log.info("Suite %s finished in %s", entry_file, format_duration(elapsed))

        if result_file.exists():
            return load_result(result_file)
        if not proc.stdout.strip():
            raise SuiteLoadError(
                f"Suite {entry_file} produced no result (no {RESULT_FILE_ENV} file, empty stdout)"
            )
        return parse_result_text(proc.stdout, source=f"stdout of {entry_file}")
