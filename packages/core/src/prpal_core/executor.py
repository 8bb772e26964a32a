"""Run the external review tool as a child process.

The prompt is written to the child's stdin rather than passed as an argument:
diffs routinely exceed ARG_MAX and would need shell escaping otherwise.

Termination (on timeout or abort) is SIGTERM first, then SIGKILL once
``kill_grace`` seconds have passed without the process exiting. The grace
period is an empirical value, not part of any contract with the tool, so it is
configurable (``kill_grace_seconds``).

Every execution started with an ``item_id`` is registered so that ``abort``
can find it from another thread. Aborting is idempotent.
"""

from __future__ import annotations

import logging
import subprocess
import threading
import time
from dataclasses import dataclass

from prpal_core.errors import ReviewCancelled, classify_failure, crashed_error, not_installed_error, timeout_error

logger = logging.getLogger(__name__)

DEFAULT_TOOL = "opencode"
# AI reviews of large PRs are slow.
DEFAULT_TIMEOUT = 300.0
DEFAULT_KILL_GRACE = 5.0
_STDERR_LOG_LIMIT = 500


@dataclass(frozen=True)
class ExecutionResult:
    stdout: str
    stderr: str
    exit_code: int
    duration_seconds: float = 0.0


def build_args(model: str | None = None) -> list[str]:
    args = ["run", "--format", "json"]
    if model:
        args += ["--model", model]
    return args


def terminate_process(proc: subprocess.Popen, grace: float) -> None:
    """SIGTERM, wait up to ``grace`` seconds, then SIGKILL. Blocks until exit."""
    if proc.poll() is not None:
        return
    proc.terminate()
    try:
        proc.wait(timeout=grace)
    except subprocess.TimeoutExpired:
        logger.info("Process %s ignored SIGTERM for %.1fs; sending SIGKILL", proc.pid, grace)
        proc.kill()
        proc.wait()


def _kill_if_alive(proc: subprocess.Popen) -> None:
    if proc.poll() is None:
        logger.info("Process %s still alive after abort grace period; sending SIGKILL", proc.pid)
        proc.kill()


class ProcessExecutor:
    def __init__(self, tool_path: str = DEFAULT_TOOL, kill_grace: float = DEFAULT_KILL_GRACE):
        self.tool_path = tool_path
        self.kill_grace = kill_grace
        self._running: dict[str, subprocess.Popen] = {}
        self._aborted: set[subprocess.Popen] = set()
        self._lock = threading.Lock()

    # ------------------------------------------------------------------ #
    # Public interface                                                     #
    # ------------------------------------------------------------------ #

    def execute(
        self,
        prompt: str,
        model: str | None = None,
        timeout: float = DEFAULT_TIMEOUT,
        item_id: str | None = None,
        tool_path: str | None = None,
    ) -> ExecutionResult:
        """Run the tool once and return its output.

        Raises ProcessError (NOT_INSTALLED, TIMEOUT or a classified non-zero
        exit) or ReviewCancelled when ``abort(item_id)`` was called meanwhile.
        """
        path = tool_path or self.tool_path
        command = [path, *build_args(model)]
        start = time.monotonic()

        try:
            proc = subprocess.Popen(
                command,
                stdin=subprocess.PIPE,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                text=True,
                encoding="utf-8",
                errors="replace",
            )
        except FileNotFoundError:
            raise not_installed_error(path)
        except OSError as e:
            raise crashed_error(e, path)

        logger.info(
            "Spawned %s (pid=%s, model=%s, prompt=%d chars, timeout=%.0fs)",
            path,
            proc.pid,
            model or "default",
            len(prompt),
            timeout,
        )
        if item_id:
            with self._lock:
                self._running[item_id] = proc

        timed_out = False
        try:
            try:
                stdout, stderr = proc.communicate(input=prompt, timeout=timeout)
            except subprocess.TimeoutExpired:
                timed_out = True
                logger.info(
                    "Timeout reached after %.1fs, terminating pid %s",
                    time.monotonic() - start,
                    proc.pid,
                )
                terminate_process(proc, self.kill_grace)
                stdout, stderr = proc.communicate()
        finally:
            cancelled = False
            if item_id:
                with self._lock:
                    if self._running.get(item_id) is proc:
                        del self._running[item_id]
                    cancelled = proc in self._aborted
                    self._aborted.discard(proc)

        duration = time.monotonic() - start
        if stderr.strip():
            logger.info("Tool stderr: %s", stderr.strip()[:_STDERR_LOG_LIMIT])

        if cancelled:
            logger.info("Execution for %s cancelled after %.1fs", item_id, duration)
            raise ReviewCancelled(item_id)
        if timed_out:
            raise timeout_error(timeout)

        exit_code = proc.returncode if proc.returncode is not None else 1
        if exit_code != 0:
            logger.error(
                "Tool exited with code %d after %.1fs: %s",
                exit_code,
                duration,
                stderr[:_STDERR_LOG_LIMIT],
            )
            raise classify_failure(exit_code, stdout, stderr)

        logger.info("Tool completed in %.1fs (%d bytes of output)", duration, len(stdout))
        return ExecutionResult(stdout=stdout, stderr=stderr, exit_code=exit_code, duration_seconds=duration)

    def abort(self, item_id: str) -> bool:
        """Terminate the running execution for ``item_id``.

        Sends SIGTERM immediately and schedules SIGKILL after the grace period
        without blocking the caller. Returns False when nothing is running.
        """
        with self._lock:
            proc = self._running.pop(item_id, None)
            if proc is None:
                return False
            self._aborted.add(proc)

        logger.info("Aborting execution for %s (pid=%s)", item_id, proc.pid)
        if proc.poll() is None:
            proc.terminate()
            timer = threading.Timer(self.kill_grace, _kill_if_alive, args=(proc,))
            timer.daemon = True
            timer.start()
        return True

    def is_running(self, item_id: str) -> bool:
        with self._lock:
            return item_id in self._running
