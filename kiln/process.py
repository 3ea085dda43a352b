# kiln/process.py
"""
process.py - external process execution for kiln

Every stage script and the root population step go through execute_command().
The outcome is an ExecutionResult carrying the exit status or the execution
error; callers branch on result.ok instead of catching exceptions.
"""

from __future__ import annotations

import os
import signal
import subprocess
import threading
import time
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional

from kiln.logging import get_logger

logger = get_logger("process")


@dataclass
class ExecutionResult:
    command: List[str]
    exit_code: Optional[int] = None
    error: Optional[str] = None
    duration: float = 0.0

    @property
    def ok(self) -> bool:
        return self.error is None and self.exit_code == 0

    def describe(self) -> str:
        if self.error is not None:
            return f"execution error: {self.error}"
        return f"exit code {self.exit_code}"

    def to_dict(self) -> Dict[str, object]:
        return {
            "command": list(self.command),
            "exit_code": self.exit_code,
            "error": self.error,
            "duration": round(self.duration, 3),
        }


def _pump(stream, on_line: Optional[Callable[[str], None]]):
    for line in stream:
        if on_line:
            on_line(line.rstrip("\n"))


def _kill_group(proc: subprocess.Popen):
    try:
        os.killpg(proc.pid, signal.SIGKILL)
    except ProcessLookupError:
        pass


def execute_command(program: str, args: List[str], env: Optional[Dict[str, str]] = None,
                    cwd: Optional[str] = None, timeout: Optional[int] = None,
                    on_line: Optional[Callable[[str], None]] = None) -> ExecutionResult:
    """
    Run program with args, merging stderr into stdout.
    Each output line is handed to on_line as it arrives. env replaces the
    environment entirely when given. The command runs in its own process
    group; on timeout the whole group is killed.
    """
    cmd = [program] + list(args)
    result = ExecutionResult(command=cmd)
    start = time.time()
    logger.debug("RUN: %s (cwd=%s)", " ".join(cmd), cwd)
    try:
        proc = subprocess.Popen(cmd, cwd=cwd, env=env, stdout=subprocess.PIPE,
                                stderr=subprocess.STDOUT, text=True, errors="replace",
                                start_new_session=True)
    except OSError as e:
        result.error = f"{program}: {e.strerror or e}"
        result.duration = time.time() - start
        return result

    reader = threading.Thread(target=_pump, args=(proc.stdout, on_line), daemon=True)
    reader.start()
    with proc:
        try:
            proc.wait(timeout=timeout or None)
        except subprocess.TimeoutExpired:
            _kill_group(proc)
            proc.wait()
            result.error = f"timed out after {timeout}s"
        reader.join()
    result.exit_code = proc.returncode
    result.duration = time.time() - start
    return result


def minimal_env(path: str, extra: Optional[Dict[str, str]] = None) -> Dict[str, str]:
    """Environment holding only PATH plus extra."""
    env = {"PATH": path}
    if extra:
        env.update(extra)
    return env


def inherited_env(extra: Optional[Dict[str, str]] = None) -> Dict[str, str]:
    env = dict(os.environ)
    if extra:
        env.update(extra)
    return env
