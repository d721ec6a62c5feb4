"""Unattended driving of interactive vendor installers.

Legacy vendor installers only talk to a terminal. A dialogue is a list
of (expected prompt regex, response) pairs; the installer is spawned on
a pty, each prompt is awaited with a timeout and answered in order.
This stays brittle by nature: a vendor changing its prompt wording
breaks the dialogue, which surfaces as an InstallerError naming the
prompt that never came.
"""

from __future__ import annotations

import io
import logging
from pathlib import Path
from typing import Mapping, Sequence

import pexpect

logger = logging.getLogger(__name__)

DEFAULT_PROMPT_TIMEOUT = 60
DEFAULT_FINISH_TIMEOUT = 1800

Dialogue = Sequence[tuple[str, str]]


class InstallerError(RuntimeError):
    """Raised when an interactive installer cannot be driven to completion."""


class ScriptedInstaller:
    """Drives an installer command through a scripted dialogue."""

    def __init__(
        self,
        prompt_timeout: float = DEFAULT_PROMPT_TIMEOUT,
        finish_timeout: float = DEFAULT_FINISH_TIMEOUT,
    ):
        self._prompt_timeout = prompt_timeout
        self._finish_timeout = finish_timeout

    def drive(
        self,
        command: Sequence[str],
        dialogue: Dialogue,
        cwd: Path | str | None = None,
        env: Mapping[str, str] | None = None,
    ) -> str:
        """Run command, answering each expected prompt in turn.

        Returns the installer transcript.
        """
        transcript = io.StringIO()
        logger.info("Driving installer %s (%d prompts)", " ".join(command), len(dialogue))
        child = pexpect.spawn(
            command[0],
            list(command[1:]),
            cwd=str(cwd) if cwd is not None else None,
            env=dict(env) if env is not None else None,
            encoding="utf-8",
            codec_errors="replace",
            timeout=self._prompt_timeout,
        )
        child.logfile_read = transcript
        try:
            for prompt, response in dialogue:
                try:
                    child.expect(prompt)
                except pexpect.TIMEOUT:
                    raise InstallerError(
                        f"Timed out waiting for installer prompt {prompt!r}"
                    ) from None
                except pexpect.EOF:
                    raise InstallerError(
                        f"Installer exited while waiting for prompt {prompt!r}"
                    ) from None
                child.sendline(response)
            try:
                child.expect(pexpect.EOF, timeout=self._finish_timeout)
            except pexpect.TIMEOUT:
                raise InstallerError("Installer did not finish in time") from None
        finally:
            child.close()
            for line in transcript.getvalue().splitlines():
                logger.info("  %s", line.rstrip("\r"))

        if child.exitstatus != 0:
            raise InstallerError(
                f"Installer {command[0]} failed (exit {child.exitstatus})"
            )
        return transcript.getvalue()
