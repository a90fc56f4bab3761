from __future__ import annotations

import logging
import os
import secrets
import signal
import subprocess
import threading
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional, Protocol, Tuple

from .config import SHELL_LANGUAGES, Configuration

logger = logging.getLogger(__name__)

TIMEOUT_EXIT_CODE = 124
_POLL_INTERVAL = 0.1
_KILL_GRACE = 1.0


class CancellationToken:
    """Cooperative cancellation signal shared by a run and its executors."""

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def wait(self, timeout: Optional[float] = None) -> bool:
        return self._event.wait(timeout)


@dataclass
class ExecutionResult:
    stdout: str
    stderr: str
    exit_code: int
    cancelled: bool = False
    timed_out: bool = False


class Executor(Protocol):
    def execute(
        self,
        source: str,
        language: str,
        options: Dict[str, Any],
        token: Optional[CancellationToken] = None,
    ) -> ExecutionResult: ...


class CodeExecutor:
    """Runs a cell body as a temporary executable file.

    The file gets the language's shebang and extension and is run with the
    configured interpreter (or the shell, or directly via its shebang) from the
    workspace directory. A timeout kills the process and yields exit code 124;
    cancellation kills it and flags the result as cancelled. Failing to start
    the process raises OSError.
    """

    def __init__(
        self, config: Optional[Configuration] = None, cwd: str | Path | None = None
    ):
        self.config = config or Configuration()
        self.cwd = Path(cwd) if cwd else Path.cwd()

    def execute(
        self,
        source: str,
        language: str,
        options: Optional[Dict[str, Any]] = None,
        token: Optional[CancellationToken] = None,
    ) -> ExecutionResult:
        path = self.write_temp_file(source, language)
        try:
            return self.run_file(path, language, options or {}, token)
        finally:
            try:
                path.unlink()
            except OSError as e:
                logger.warning("Failed to clean up temp file %s: %s", path, e)

    def write_temp_file(self, source: str, language: str) -> Path:
        ext = self.config.extension_for(language)
        shebang = self.config.shebang_for(language)
        self.cwd.mkdir(parents=True, exist_ok=True)
        path = self.cwd / f"tmp-{secrets.token_hex(8)}.{ext}"
        # LF only
        normalized = source.replace("\r\n", "\n").replace("\r", "\n")
        path.write_text(shebang + normalized, encoding="utf-8")
        path.chmod(0o755)
        return path

    def command_for(self, path: Path, language: str) -> List[str]:
        interpreter = self.config.interpreters.get(language)
        if interpreter:
            return [*interpreter, str(path)]
        if language in SHELL_LANGUAGES:
            return [self.config.shell, str(path)]
        return [str(path)]

    def timeout_for(self, options: Dict[str, Any]) -> Optional[float]:
        t = options.get("timeout")
        if isinstance(t, bool) or not isinstance(t, (int, float)) or t <= 0:
            return self.config.default_timeout
        return float(t)

    def run_file(
        self,
        path: Path,
        language: str,
        options: Dict[str, Any],
        token: Optional[CancellationToken] = None,
    ) -> ExecutionResult:
        cmd = self.command_for(path, language)
        timeout = self.timeout_for(options)
        logger.debug("Running %s in %s (timeout=%s)", cmd, self.cwd, timeout)
        proc = subprocess.Popen(
            cmd,
            cwd=str(self.cwd),
            env=dict(os.environ),
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            text=True,
            start_new_session=(os.name == "posix"),
        )
        deadline = time.monotonic() + timeout if timeout else None
        while True:
            wait = _POLL_INTERVAL
            if deadline is not None:
                wait = max(0.0, min(wait, deadline - time.monotonic()))
            try:
                stdout, stderr = proc.communicate(timeout=wait)
                return ExecutionResult(stdout or "", stderr or "", proc.returncode)
            except subprocess.TimeoutExpired:
                pass
            if token is not None and token.cancelled:
                logger.info("Cancelled %s", cmd[-1])
                stdout, stderr = _kill(proc)
                return ExecutionResult(stdout, stderr, proc.returncode, cancelled=True)
            if deadline is not None and time.monotonic() >= deadline:
                logger.info("Timed out after %ss: %s", timeout, cmd[-1])
                stdout, stderr = _kill(proc)
                return ExecutionResult(
                    stdout=stdout + f"\n[Process timed out after {timeout:g} seconds]",
                    stderr=stderr + "\n[Process killed due to timeout]",
                    exit_code=TIMEOUT_EXIT_CODE,
                    timed_out=True,
                )


def _signal(proc: subprocess.Popen, sig: int) -> None:
    try:
        if os.name == "posix":
            os.killpg(proc.pid, sig)
        else:
            proc.send_signal(sig)
    except (ProcessLookupError, PermissionError):
        pass


def _kill(proc: subprocess.Popen) -> Tuple[str, str]:
    """SIGTERM the process group, SIGKILL if it lingers; return remaining output."""
    _signal(proc, signal.SIGTERM)
    try:
        stdout, stderr = proc.communicate(timeout=_KILL_GRACE)
    except subprocess.TimeoutExpired:
        _signal(proc, getattr(signal, "SIGKILL", signal.SIGTERM))
        stdout, stderr = proc.communicate()
    return stdout or "", stderr or ""


class PromptBackend(Protocol):
    """Answers a resolved prompt; ``options`` carries ``mode``/``model`` as given."""

    def ask(
        self,
        prompt: str,
        options: Dict[str, Any],
        token: Optional[CancellationToken] = None,
    ) -> str: ...
