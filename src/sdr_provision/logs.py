"""Console logging and the per-prefix run log.

Every run, whether started from the command line or through the MCP
server, appends to <install_dir>/share/sdr-provision/build.log under a
"==== sdr-provision run" header line.
"""

from __future__ import annotations

import logging
import os
import platform
import shlex
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Iterator, Sequence

from sdr_provision.models import PROGRAM_NAME

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(message)s"


def setup_logging(verbose: bool = False) -> None:
    """Send log records to the console, replacing any earlier handlers."""
    root = logging.getLogger()
    root.setLevel(logging.DEBUG if verbose else logging.INFO)
    root.handlers.clear()
    console_handler = logging.StreamHandler()
    console_handler.setFormatter(logging.Formatter(LOG_FORMAT))
    root.addHandler(console_handler)


def log_header(argv: Sequence[str]) -> None:
    logger.info(
        "==== %s run %s host=%s cwd=%s cmd=%s",
        PROGRAM_NAME,
        datetime.now().isoformat(timespec="seconds"),
        platform.node(),
        os.getcwd(),
        shlex.join(argv),
    )


@contextmanager
def run_log(log_path: Path, argv: Sequence[str]) -> Iterator[logging.Handler]:
    """Append everything logged inside the block to log_path.

    The root logger is lowered to INFO for the duration if it was
    quieter, and restored afterwards together with its handlers.
    """
    log_path.parent.mkdir(parents=True, exist_ok=True)
    root = logging.getLogger()
    saved_level = root.level
    handler = logging.FileHandler(log_path, mode="a")
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    root.addHandler(handler)
    if root.getEffectiveLevel() > logging.INFO:
        root.setLevel(logging.INFO)
    try:
        log_header(argv)
        yield handler
    finally:
        root.removeHandler(handler)
        handler.close()
        root.setLevel(saved_level)
