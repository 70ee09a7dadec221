"""Isolated workspaces for checking out and installing one revision.

Each workspace is a fresh directory under a scratch root::

    <scratch_root>/<workspace_id>/
        repo/         git checkout of the revision
        venv/         virtual environment with the project installed
        result.json   written by the benchmark suite (see prbench.suite)

Workspace ids are 16 random characters from ``[a-z0-9]``. That gives
36**16 (about 8e24) possible ids; even after a million events the
chance of any two colliding is below 1e-12. Uniqueness is still only
probabilistic, so :meth:`WorkspaceManager.create_workspace` relies on
``mkdir`` failing for an existing directory and retries with a new id.
"""

from __future__ import annotations

import os
import re
import secrets
import shutil
import signal
import string
import subprocess
from dataclasses import dataclass
from pathlib import Path

from prbench.errors import CheckoutError, DependencyError, FetchError, WorkspaceError
from prbench.logging import get_logger

log = get_logger("workspace")

ID_ALPHABET = string.ascii_lowercase + string.digits
ID_LENGTH = 16
_MAX_ID_ATTEMPTS = 5


def new_workspace_id(length: int = ID_LENGTH) -> str:
    """Return a random workspace identifier."""
    return "".join(secrets.choice(ID_ALPHABET) for _ in range(length))


@dataclass(frozen=True)
class Workspace:
    """Paths belonging to one workspace."""

    id: str
    path: Path

    @property
    def repo_dir(self) -> Path:
        return self.path / "repo"

    @property
    def venv_dir(self) -> Path:
        return self.path / "venv"

    @property
    def venv_python(self) -> Path:
        return self.venv_dir / "bin" / "python"

    @property
    def result_file(self) -> Path:
        return self.path / "result.json"


def _tail(text: str | None, limit: int = 500) -> str:
    return text.strip()[-limit:] if text else ""


def build_env(venv_dir: Path | None = None) -> dict[str, str]:
    """Build the environment for subprocesses run inside a workspace.

    Starts from the inherited ``os.environ`` (so ``git``, compilers, etc.
    are found), strips Python-specific pollution and, when *venv_dir* is
    given, puts the venv's ``bin/`` first on ``PATH``.
    """
    env = dict(os.environ)
    env.pop("PYTHONHOME", None)
    env.pop("PYTHONPATH", None)
    env["PYTHONDONTWRITEBYTECODE"] = "1"
    env["GIT_TERMINAL_PROMPT"] = "0"
    if venv_dir is not None:
        env["PATH"] = f"{venv_dir / 'bin'}:{env.get('PATH', '')}"
        env["VIRTUAL_ENV"] = str(venv_dir)
    return env


# A ``python``/``pip`` word in command position: at the start of the
# command or right after a shell separator.
_VENV_EXECUTABLE_RE = re.compile(r"(^|&&|\|\||;)(\s*)(python3?|pip3?)(?=\s|$)")


def resolve_venv_command(command: str, venv_python: Path) -> str:
    """Point ``pip`` and ``python`` in a shell command at the venv.

    ``pip install -e .`` becomes ``<venv>/bin/pip install -e .`` and
    ``python bench.py`` becomes ``<venv>/bin/python bench.py``. Only
    words in command position are rewritten, so arguments such as a
    quoted ``'bench/python suite.py'`` are left alone.
    """
    venv_pip = venv_python.parent / "pip"

    def _swap(match: re.Match[str]) -> str:
        target = venv_pip if match.group(3).startswith("pip") else venv_python
        return f"{match.group(1)}{match.group(2)}{target}"

    return _VENV_EXECUTABLE_RE.sub(_swap, command)


def _kill_process_group(pid: int) -> None:
    """Kill the whole process group started for a timed-out command."""
    try:
        os.killpg(os.getpgid(pid), signal.SIGKILL)
    except (ProcessLookupError, PermissionError, OSError) as exc:
        log.debug("Could not kill process group of %d: %s", pid, exc)


def run_command(
    cmd: str | list[str],
    *,
    timeout: float,
    cwd: str | None = None,
    env: dict[str, str] | None = None,
    shell: bool = False,
) -> subprocess.CompletedProcess[str]:
    """Run *cmd* in its own session, capturing text output.

    On timeout the entire process group is killed, so anything the
    command spawned goes with it, and ``subprocess.TimeoutExpired`` is
    re-raised.
    """
    proc = subprocess.Popen(
        cmd,
        shell=shell,
        cwd=cwd,
        env=env,
        stdout=subprocess.PIPE,
        stderr=subprocess.PIPE,
        text=True,
        start_new_session=True,
    )
    try:
        stdout, stderr = proc.communicate(timeout=timeout)
    except subprocess.TimeoutExpired:
        _kill_process_group(proc.pid)
        try:
            proc.communicate(timeout=5)
        except subprocess.TimeoutExpired:
            proc.kill()
            proc.communicate()
        raise
    return subprocess.CompletedProcess(cmd, proc.returncode, stdout, stderr)


class WorkspaceManager:
    """Creates, provisions and destroys workspaces under *scratch_root*.

    Holds no per-workspace state; everything lives on disk.
    """

    def __init__(
        self,
        scratch_root: Path,
        *,
        python: str,
        install_command: str = "pip install -e .",
        clone_depth: int | None = None,
        clone_timeout: int = 300,
        install_timeout: int = 900,
    ) -> None:
        self.scratch_root = Path(scratch_root)
        self.python = python
        self.install_command = install_command
        self.clone_depth = clone_depth
        self.clone_timeout = clone_timeout
        self.install_timeout = install_timeout

    # -- lifecycle ---------------------------------------------------------

    def create_workspace(self, workspace_id: str | None = None) -> Workspace:
        """Create a fresh, empty workspace directory.

        Args:
            workspace_id: Directory name to use.  Generated when omitted.

        Raises:
            WorkspaceError: If a supplied id already exists, or the
                directory cannot be created.
        """
        self.scratch_root.mkdir(parents=True, exist_ok=True)
        attempts = 1 if workspace_id is not None else _MAX_ID_ATTEMPTS
        for _ in range(attempts):
            ws_id = workspace_id or new_workspace_id()
            path = self.scratch_root / ws_id
            try:
                path.mkdir()
            except FileExistsError:
                log.warning("Workspace %s already exists", path)
                continue
            except OSError as exc:
                raise WorkspaceError(f"Cannot create workspace {path}: {exc}") from exc
            log.debug("Created workspace %s", path)
            return Workspace(id=ws_id, path=path)
        raise WorkspaceError(
            f"Could not allocate a unique workspace under {self.scratch_root} "
            f"after {attempts} attempt(s)"
        )

    def destroy_workspace(self, workspace: Workspace | Path) -> None:
        """Remove a workspace and everything in it.

        Safe to call more than once and on half-provisioned workspaces.

        Raises:
            WorkspaceError: If the path is not inside the scratch root.
        """
        path = workspace.path if isinstance(workspace, Workspace) else Path(workspace)
        root = self.scratch_root.resolve()
        target = path.resolve()
        if target == root or root not in target.parents:
            raise WorkspaceError(f"Refusing to remove {path}: not inside {self.scratch_root}")
        if not path.exists():
            log.debug("Workspace %s already gone", path)
            return
        shutil.rmtree(path, ignore_errors=True)
        if path.exists():
            log.warning("Workspace %s could not be removed completely", path)
        else:
            log.debug("Removed workspace %s", path)

    # -- provisioning ------------------------------------------------------

    def materialize_revision(self, workspace: Workspace, remote_url: str, ref: str) -> str | None:
        """Clone *remote_url* into the workspace and check out *ref*.

        Returns:
            The HEAD commit hash, or ``None`` if it cannot be determined.

        Raises:
            FetchError: If the clone fails or times out.
            CheckoutError: If *ref* cannot be checked out.
        """
        dest = workspace.repo_dir
        env = build_env()

        clone_cmd = ["git", "clone"]
        if self.clone_depth is not None:
            clone_cmd += [f"--depth={self.clone_depth}", "--no-single-branch"]
        clone_cmd += [remote_url, str(dest)]

        log.debug("Running: %s", " ".join(clone_cmd))
        try:
            proc = run_command(
                clone_cmd,
                timeout=self.clone_timeout,
                env=env,
            )
        except subprocess.TimeoutExpired:
            raise FetchError(
                f"git clone of {remote_url} timed out after {self.clone_timeout}s"
            ) from None
        except OSError as exc:
            raise FetchError(f"Cannot run git: {exc}") from exc
        if proc.returncode != 0:
            raise FetchError(
                f"git clone of {remote_url} failed (exit {proc.returncode}): {_tail(proc.stderr)}"
            )

        log.debug("Running: git checkout %s (in %s)", ref, dest)
        try:
            proc = run_command(
                ["git", "checkout", ref],
                cwd=str(dest),
                timeout=self.clone_timeout,
                env=env,
            )
        except subprocess.TimeoutExpired:
            raise CheckoutError(f"git checkout {ref} timed out") from None
        except OSError as exc:
            raise CheckoutError(f"Cannot run git: {exc}") from exc
        if proc.returncode != 0:
            raise CheckoutError(
                f"git checkout {ref} failed (exit {proc.returncode}): {_tail(proc.stderr)}"
            )

        try:
            rev = run_command(
                ["git", "rev-parse", "HEAD"],
                cwd=str(dest),
                timeout=10,
                env=env,
            )
        except (subprocess.TimeoutExpired, OSError):
            return None
        if rev.returncode == 0:
            return rev.stdout.strip()
        return None

    def install_dependencies(self, workspace: Workspace) -> None:
        """Create the workspace venv and install the project into it.

        Raises:
            DependencyError: If venv creation or the install command fails.
        """
        venv_dir = workspace.venv_dir
        log.debug("Running: %s -m venv %s", self.python, venv_dir)
        try:
            proc = run_command(
                [self.python, "-m", "venv", str(venv_dir)],
                timeout=self.install_timeout,
                env=build_env(),
            )
        except subprocess.TimeoutExpired:
            raise DependencyError(f"Venv creation timed out: {venv_dir}") from None
        except OSError as exc:
            raise DependencyError(f"Cannot run {self.python}: {exc}") from exc
        if proc.returncode != 0:
            raise DependencyError(
                f"Venv creation failed (exit {proc.returncode}): {_tail(proc.stderr)}"
            )

        cmd = resolve_venv_command(self.install_command, workspace.venv_python)
        log.debug("Install command (resolved): %s", cmd)
        try:
            proc = run_command(
                cmd,
                shell=True,
                cwd=str(workspace.repo_dir),
                timeout=self.install_timeout,
                env=build_env(venv_dir),
            )
        except subprocess.TimeoutExpired:
            raise DependencyError(
                f"Install timed out after {self.install_timeout}s: {self.install_command}"
            ) from None
        except OSError as exc:
            raise DependencyError(f"Install failed: {exc}") from exc

        if proc.stderr:
            log.debug("Install stderr:\n%s", proc.stderr[-3000:])
        if proc.returncode != 0:
            raise DependencyError(
                f"Install failed (exit {proc.returncode}): {_tail(proc.stderr) or 'non-zero'}"
            )
