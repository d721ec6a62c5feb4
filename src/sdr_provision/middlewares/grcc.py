from __future__ import annotations

import logging
import time
from pathlib import Path

from sdr_provision.middlewares.shell import CommandError, CommandRunner

logger = logging.getLogger(__name__)

# grcc fails nondeterministically on hier blocks; a rerun usually succeeds.
GRCC_ATTEMPTS = 20
GRCC_RETRY_DELAY = 1.0


class HierBlockCompiler:
    """Compiles GRC hierarchical blocks with grcc."""

    def __init__(
        self,
        runner: CommandRunner | None = None,
        attempts: int = GRCC_ATTEMPTS,
        retry_delay: float = GRCC_RETRY_DELAY,
    ):
        self._runner = runner or CommandRunner()
        self._attempts = attempts
        self._retry_delay = retry_delay

    def compile(
        self, grc_file: Path, output_dir: Path, env: dict[str, str] | None = None
    ) -> int:
        """Compile one .grc file. Returns the number of attempts used."""
        output_dir.mkdir(parents=True, exist_ok=True)
        cmd = ["grcc", "-o", str(output_dir), str(grc_file)]
        attempt = 1
        while True:
            try:
                self._runner.run(cmd, env=env)
                return attempt
            except CommandError as e:
                if attempt >= self._attempts:
                    raise
                logger.warning(
                    "grcc failed on %s (attempt %d/%d): exit %d, retrying",
                    grc_file.name,
                    attempt,
                    self._attempts,
                    e.returncode,
                )
                time.sleep(self._retry_delay)
                attempt += 1

    def compile_tree(
        self, design_dir: Path, output_dir: Path, env: dict[str, str] | None = None
    ) -> list[Path]:
        """Compile every .grc under design_dir, in sorted order."""
        compiled = []
        for grc_file in sorted(design_dir.rglob("*.grc")):
            self.compile(grc_file, output_dir, env=env)
            compiled.append(grc_file)
        if not compiled:
            logger.info("No hierarchical blocks found under %s", design_dir)
        return compiled
