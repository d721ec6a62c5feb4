from __future__ import annotations

import logging
from pathlib import Path
from typing import List, Optional

from sdr_provision.logs import run_log
from sdr_provision.middlewares.bundle import BundleStore
from sdr_provision.models import (
    BundleEntries,
    PipelineResult,
    ProvisionConfig,
    StepSetName,
    StepSummary,
)
from sdr_provision.providers.environment import EnvironmentComposer
from sdr_provision.providers.pipeline import StepPipeline
from sdr_provision.steps import STEPS, execution_order, summarize

logger = logging.getLogger(__name__)


class ProvisionProvider:
    """Provisioning operations exposed to MCP clients."""

    ##############################################
    # Catalog
    ##############################################

    def list_steps(self) -> list[StepSummary]:
        """List every pipeline step in execution order."""
        return [summarize(s) for s in execution_order(STEPS)]

    def plan_pipeline(
        self,
        source_dir: str,
        install_dir: str,
        step_set: StepSetName = "default",
        hardware: bool = False,
        only: Optional[List[str]] = None,
    ) -> list[str]:
        """Return the step names a run with these options would execute, in order."""
        config = ProvisionConfig(
            source_dir=Path(source_dir),
            install_dir=Path(install_dir),
            step_set=step_set,
            hardware=hardware,
            only=tuple(only) if only is not None else None,
        )
        return [s.name for s in StepPipeline(config).plan()]

    ##############################################
    # Bundles and Environment
    ##############################################

    def read_bundle(self, path: str) -> BundleEntries:
        """Read the pinned revisions and package filenames of a bundle file."""
        return BundleStore.describe(Path(path))

    def preview_environment(self, install_dir: str) -> str:
        """Render the environment script for an install prefix without writing it."""
        return EnvironmentComposer(Path(install_dir)).render_env_script()

    ##############################################
    # Execution
    ##############################################

    def run_pipeline(
        self,
        source_dir: str,
        install_dir: str,
        step_set: StepSetName = "default",
        hardware: bool = False,
        only: Optional[List[str]] = None,
        bundle: Optional[str] = None,
        pull: bool = False,
        git_only: bool = False,
        no_checkout: bool = False,
        force_checkout: bool = False,
        clean: bool = False,
        docs: bool = False,
        jobs: Optional[int] = None,
    ) -> PipelineResult:
        """Run the provisioning pipeline. Blocks until every selected step finished.

        Args:
            source_dir: Directory holding working copies and vendor archives
            install_dir: Install prefix
            step_set: Preset step list ("default" or "all")
            hardware: Add the hardware vendor steps
            only: Explicit step names, replacing the preset
            bundle: Bundle file with revision pins
            pull: Pull latest on synced repositories
            git_only: Synchronize sources without building
            no_checkout: Skip checkout and pull
            force_checkout: Discard local modifications on checkout
            clean: Remove build directories first
            docs: Build documentation
            jobs: Parallel make jobs, defaults to the CPU count

        The run is appended to build.log under the install prefix.
        """
        fields = dict(
            source_dir=Path(source_dir),
            install_dir=Path(install_dir),
            step_set=step_set,
            hardware=hardware,
            only=tuple(only) if only is not None else None,
            bundle_in=Path(bundle) if bundle else None,
            pull=pull,
            git_only=git_only,
            no_checkout=no_checkout,
            force_checkout=force_checkout,
            clean=clean,
            docs=docs,
        )
        if jobs is not None:
            fields["jobs"] = jobs
        config = ProvisionConfig(**fields)
        argv = ["run_pipeline", str(source_dir), str(install_dir)]
        with run_log(config.log_path, argv):
            logger.info("MCP run_pipeline into %s", install_dir)
            return StepPipeline(config).run(argv)
