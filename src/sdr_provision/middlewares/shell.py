"""External command execution.

Every tool the pipeline drives (git, cmake, make, tar, dpkg-deb, grcc,
vendor installers) goes through CommandRunner so its output lands in
the run log and a non-zero exit aborts the run.
"""

from __future__ import annotations

import logging
import shlex
import subprocess
from pathlib import Path
from typing import Mapping, Sequence

logger = logging.getLogger(__name__)


class CommandError(RuntimeError):
    """Raised when an external tool exits non-zero."""

    def __init__(self, cmd: Sequence[str], returncode: int, output: str = ""):
        self.cmd = list(cmd)
        self.returncode = returncode
        self.output = output
        message = f"{shlex.join(self.cmd)} failed (exit {returncode})"
        if output:
            message += f": {output[-500:]}"
        super().__init__(message)


class CommandRunner:
    """Runs external commands, streaming their output into the logger."""

    def run(
        self,
        cmd: Sequence[str],
        cwd: Path | str | None = None,
        env: Mapping[str, str] | None = None,
    ) -> list[str]:
        """Run a command to completion. Returns its output lines."""
        logger.info("$ %s%s", shlex.join(cmd), f"  (in {cwd})" if cwd else "")
        proc = subprocess.Popen(
            list(cmd),
            cwd=cwd,
            env=dict(env) if env is not None else None,
            stdout=subprocess.PIPE,
            stderr=subprocess.STDOUT,
            text=True,
            errors="replace",
        )
        lines: list[str] = []
        with proc.stdout:
            for raw in proc.stdout:
                line = raw.rstrip("\n")
                lines.append(line)
                logger.info("  %s", line)
        returncode = proc.wait()
        if returncode != 0:
            raise CommandError(cmd, returncode, "\n".join(lines[-20:]))
        return lines

    def capture(self, cmd: Sequence[str], cwd: Path | str | None = None) -> str:
        """Run a command quietly and return its stripped stdout."""
        logger.debug("$ %s", shlex.join(cmd))
        result = subprocess.run(
            list(cmd),
            cwd=cwd,
            capture_output=True,
            text=True,
        )
        if result.returncode != 0:
            raise CommandError(cmd, result.returncode, result.stderr.strip())
        return result.stdout.strip()
