# cellar/modules/runner.py
import os
import re
import shlex
import subprocess
import threading
import time

from cellar.modules import logger

_PLACEHOLDER_RE = re.compile(r"\{([a-z_]+(?::[A-Za-z0-9_.+@-]+)?)\}")

TIMEOUT_RC = -9
NOT_FOUND_RC = 127


def expand_placeholders(command, values):
    """
    Replace {prefix}, {name}, {resource:astroid}, ... with their values.
    Unknown placeholders (and shell braces) are left untouched.
    """
    def sub(text):
        return _PLACEHOLDER_RE.sub(lambda m: values.get(m.group(1), m.group(0)), text)

    if isinstance(command, str):
        return sub(command)
    return [sub(str(arg)) for arg in command]


class CommandResult:
    def __init__(self, command, returncode, stdout="", stderr="", duration=0.0, cwd=None):
        self.command = command
        self.returncode = returncode
        self.stdout = stdout or ""
        self.stderr = stderr or ""
        self.duration = duration
        self.cwd = cwd

    def ok(self):
        return self.returncode == 0

    def output_tail(self, lines=20):
        """Last `lines` lines of stdout followed by stderr."""
        text = self.stdout + self.stderr
        return "\n".join(text.rstrip().splitlines()[-lines:])

    def __repr__(self):
        return f"CommandResult({shlex.join(self.command)!r}, rc={self.returncode})"


class CommandRunner:
    """
    Runs build-step commands as blocking subprocesses.

    The step's environment is layered over os.environ. With `use_fakeroot`
    every command is wrapped in fakeroot so install steps may chown/chmod.
    A non-zero exit comes back in the CommandResult instead of raising;
    a missing program is rc 127 and a timeout rc -9.
    """

    def __init__(self, use_fakeroot: bool = False, timeout=None):
        self.use_fakeroot = use_fakeroot
        self.timeout = timeout
        self.log = logger.Logger("runner")
        self.history = []
        self._lock = threading.Lock()

    def run(self, command, cwd=None, env=None, timeout=None) -> CommandResult:
        argv = shlex.split(command) if isinstance(command, str) else [str(a) for a in command]
        timeout = timeout or self.timeout
        self.log.debug(f"$ {shlex.join(argv)} (cwd={cwd})")

        started = time.time()
        try:
            proc = subprocess.run(
                (["fakeroot"] if self.use_fakeroot else []) + argv,
                cwd=cwd,
                env={**os.environ, **(env or {})},
                capture_output=True,
                text=True,
                timeout=timeout,
            )
            result = CommandResult(argv, proc.returncode, proc.stdout, proc.stderr,
                                   time.time() - started, cwd)
        except subprocess.TimeoutExpired as e:
            self.log.error(f"Timed out after {timeout}s: {shlex.join(argv)}")
            result = CommandResult(argv, TIMEOUT_RC, _text(e.stdout),
                                   _text(e.stderr) + f"\ntimed out after {timeout}s",
                                   time.time() - started, cwd)
        except OSError as e:
            result = CommandResult(argv, NOT_FOUND_RC, "", str(e), time.time() - started, cwd)

        with self._lock:
            self.history.append(result)
        return result

    def stats(self):
        with self._lock:
            done = list(self.history)
        failed = sum(1 for r in done if not r.ok())
        return {
            "total": len(done),
            "failed": failed,
            "seconds": round(sum(r.duration for r in done), 3),
        }


def _text(data) -> str:
    if data is None:
        return ""
    return data.decode("utf-8", "replace") if isinstance(data, bytes) else data
