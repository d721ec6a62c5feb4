from __future__ import annotations

import logging
import re
from datetime import datetime
from pathlib import Path

from sdr_provision.middlewares.bundle import BundleStore
from sdr_provision.middlewares.shell import CommandRunner
from sdr_provision.models import ProvisionConfig

logger = logging.getLogger(__name__)

WORKING_COPY_SUFFIX = ".git"
DIRTY_PREFIX = "dirty-"
DIRTY_REVISION_RE = re.compile(r"^dirty-\d{8}-\d{6}$")

_SCHEME_RE = re.compile(r"^[A-Za-z][A-Za-z0-9+.-]*://")
_USER_RE = re.compile(r"^[^@/]+@")


class RevisionSync:
    """Keeps working copies under the source dir at pinned revisions.

    Working copies are cloned once and updated in place afterwards. The
    revision actually checked out is written back to the output bundle
    so the run can be reproduced.
    """

    def __init__(
        self,
        config: ProvisionConfig,
        bundle: BundleStore,
        runner: CommandRunner | None = None,
    ):
        self._config = config
        self._bundle = bundle
        self._runner = runner or CommandRunner()

    # ──────────────────────────────────────────
    # Public API
    # ──────────────────────────────────────────

    def working_copy(self, git_url: str) -> Path:
        return self._config.source_dir / self.repo_dir_name(git_url)

    def sync(self, git_url: str, default_revision: str) -> str:
        """Bring the working copy for git_url to its target revision.

        Returns the resolved revision (a commit id, or a synthetic
        ``dirty-<timestamp>`` string when the tree has local changes).
        """
        dir_name = self.repo_dir_name(git_url)
        path = self._config.source_dir / dir_name

        if not path.exists():
            self._config.source_dir.mkdir(parents=True, exist_ok=True)
            logger.info("Cloning %s into %s", git_url, path)
            self._git(["clone", "--recursive", git_url, str(path)])
            self._update_submodules(path)

        if not self._config.no_checkout:
            target = self._bundle.load(dir_name, default_revision)
            if self._config.force_checkout:
                self._git(["checkout", "--force", target], path)
            else:
                self._git(["checkout", target], path)
            self._update_submodules(path)
            if self._config.pull:
                self._git(["pull", "--recurse-submodules"], path)
                self._update_submodules(path)

        resolved = self.resolve_revision(path)
        self._bundle.save(dir_name, resolved)
        return resolved

    def resolve_revision(self, path: Path) -> str:
        status = self._runner.capture(
            ["git", "status", "--porcelain", "--untracked-files=no"], cwd=path
        )
        if status:
            revision = DIRTY_PREFIX + datetime.now().strftime("%Y%m%d-%H%M%S")
            logger.warning(
                "%s has uncommitted changes, recording %s instead of a commit",
                path,
                revision,
            )
            return revision
        return self._runner.capture(["git", "rev-parse", "HEAD"], cwd=path)

    # ──────────────────────────────────────────
    # Internal Helpers
    # ──────────────────────────────────────────

    @staticmethod
    def repo_dir_name(url: str) -> str:
        """Deterministic working copy name for a repository locator.

        "https://github.com/gnuradio/volk.git" -> "volk.git"
        "git@github.com:gnuradio/volk" -> "volk.git"
        "github.com/gnuradio/volk/" -> "volk.git"
        """
        cleaned = _SCHEME_RE.sub("", url.strip())
        cleaned = _USER_RE.sub("", cleaned)
        cleaned = cleaned.rstrip("/")
        if cleaned.endswith(".git"):
            cleaned = cleaned[:-4]
        name = re.split(r"[/:]", cleaned)[-1]
        return name + WORKING_COPY_SUFFIX

    @staticmethod
    def is_synthetic(revision: str) -> bool:
        return DIRTY_REVISION_RE.match(revision) is not None

    def _update_submodules(self, path: Path) -> None:
        self._git(["submodule", "update", "--init", "--recursive"], path)

    def _git(self, args: list[str], cwd: Path | None = None) -> None:
        self._runner.run(["git", *args], cwd=cwd)
