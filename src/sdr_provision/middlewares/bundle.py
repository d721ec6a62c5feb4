from __future__ import annotations

import logging
from pathlib import Path

from sdr_provision.models import BundleEntries

logger = logging.getLogger(__name__)

COMMENT = "#"


class BundleStore:
    """Flat ``key=value`` file pinning revisions and package filenames.

    The input bundle is read-only and seeds defaults. The output bundle
    is rewritten key by key as steps resolve concrete values, and is
    itself a valid input bundle for a later run.
    """

    def __init__(self, input_path: Path | None = None, output_path: Path | None = None):
        self._input_path = input_path
        self._output_path = output_path

    @property
    def output_path(self) -> Path | None:
        return self._output_path

    def load(self, key: str, default: str) -> str:
        """Return the pinned value for key, or default when unpinned."""
        if self._input_path is None:
            return default
        value = self.read_entries(self._input_path).get(key)
        if value:
            logger.info("Bundle pin %s=%s", key, value)
            return value
        return default

    def save(self, key: str, value: str) -> None:
        """Record key=value, replacing any previous line for key."""
        if self._output_path is None:
            return
        lines = []
        if self._output_path.exists():
            lines = [
                line
                for line in self._output_path.read_text().splitlines()
                if self._split(line)[0] != key
            ]
        lines.append(f"{key}={value}")
        self._output_path.parent.mkdir(parents=True, exist_ok=True)
        self._output_path.write_text("\n".join(lines) + "\n")

    def open_output(self, header: str) -> None:
        """Start the output bundle for this run.

        Entries from an earlier run are kept; only the header comment
        is replaced.
        """
        if self._output_path is None:
            return
        self._output_path.parent.mkdir(parents=True, exist_ok=True)
        kept = []
        if self._output_path.exists():
            kept = [
                line
                for line in self._output_path.read_text().splitlines()
                if line.strip() and not line.startswith(COMMENT)
            ]
        self._output_path.write_text(
            "\n".join([f"{COMMENT} {header}", *kept]) + "\n"
        )

    # ──────────────────────────────────────────
    # Parsing
    # ──────────────────────────────────────────

    @staticmethod
    def _split(line: str) -> tuple[str | None, str]:
        stripped = line.strip()
        if not stripped or stripped.startswith(COMMENT) or "=" not in stripped:
            return None, ""
        key, value = stripped.split("=", 1)
        return key.strip(), value.strip()

    @classmethod
    def read_entries(cls, path: Path) -> dict[str, str]:
        """Parse a bundle file. A missing file has no entries."""
        if not path.exists():
            return {}
        entries: dict[str, str] = {}
        for line in path.read_text().splitlines():
            key, value = cls._split(line)
            if key is not None:
                entries[key] = value
        return entries

    @classmethod
    def describe(cls, path: Path) -> BundleEntries:
        header = None
        if path.exists():
            for line in path.read_text().splitlines():
                if line.startswith(COMMENT):
                    header = line.lstrip(COMMENT).strip()
                    break
        return BundleEntries(path=str(path), header=header, entries=cls.read_entries(path))
