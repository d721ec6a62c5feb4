from __future__ import annotations

import os
from pathlib import Path
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

StepSetName = Literal["default", "all"]
StepGroup = Literal["default", "hardware"]
StepAction = Literal["cmake", "make", "package", "hier_blocks"]
InstallMethod = Literal[
    "deb_payload", "interactive", "shared_libs", "copy_tree", "batch_installer", "sdk"
]

PROGRAM_NAME = "sdr-provision"


# ──────────────────────────────────────────────
# Run Configuration
# ──────────────────────────────────────────────


class ProvisionConfig(BaseModel):
    """Immutable run configuration threaded through every component.

    Built once from the command line (or an MCP tool call) and never
    mutated afterwards.
    """

    model_config = ConfigDict(frozen=True)

    source_dir: Path
    install_dir: Path
    step_set: StepSetName = "default"
    hardware: bool = False
    only: tuple[str, ...] | None = None
    pull: bool = False
    bundle_in: Path | None = None
    git_only: bool = False
    no_checkout: bool = False
    force_checkout: bool = False
    clean: bool = False
    jobs: int = Field(default_factory=lambda: os.cpu_count() or 1, ge=1)
    docs: bool = False

    @property
    def state_dir(self) -> Path:
        """Per-program directory under the prefix (log, bundle, cache)."""
        return self.install_dir / "share" / PROGRAM_NAME

    @property
    def bundle_out(self) -> Path:
        return self.state_dir / "bundle.txt"

    @property
    def log_path(self) -> Path:
        return self.state_dir / "build.log"

    @property
    def cache_dir(self) -> Path:
        return self.state_dir / "cache"


# ──────────────────────────────────────────────
# Catalog Models
# ──────────────────────────────────────────────


class StepEntry(BaseModel):
    """One named pipeline stage."""

    name: str
    description: str
    group: StepGroup = "default"
    action: StepAction
    git_url: str | None = None
    branch: str = "master"
    depends: list[str] = []
    source_subdir: str = ""
    cmake_args: list[str] = []
    package: str | None = None

    @property
    def has_source(self) -> bool:
        return self.git_url is not None


class VendorPackageEntry(BaseModel):
    """A proprietary distribution archive installed from the source dir."""

    name: str
    description: str
    pattern: str
    method: InstallMethod
    library: str | None = None
    headers: list[str] = []


class StepSummary(BaseModel):
    """Compact catalog row for listings."""

    name: str
    description: str
    group: StepGroup
    depends: list[str] = []
    git_url: str | None = None
    branch: str | None = None
    package: str | None = None


# ──────────────────────────────────────────────
# Results
# ──────────────────────────────────────────────


class PackageInstallResult(BaseModel):
    package: str
    filename: str
    extracted: bool
    extract_dir: str


class StepResult(BaseModel):
    name: str
    revision: str | None = None
    built: bool = False
    package: PackageInstallResult | None = None


class PipelineResult(BaseModel):
    steps: list[StepResult] = []
    env_script: str | None = None
    setup_script: str | None = None
    bundle_path: str | None = None


class EnvironmentVariable(BaseModel):
    name: str
    paths: list[str]


class EnvironmentProgram(BaseModel):
    """Ordered environment variables derived from the install prefix."""

    prefix: str
    variables: list[EnvironmentVariable] = []
    preload: list[str] = []
    exports: dict[str, str] = {}


class BundleEntries(BaseModel):
    path: str
    header: str | None = None
    entries: dict[str, str] = {}
