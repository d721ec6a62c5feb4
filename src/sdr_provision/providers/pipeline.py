from __future__ import annotations

import logging
import platform
import shlex
import sys
from datetime import datetime
from typing import Callable, Sequence

from sdr_provision.middlewares.bundle import BundleStore
from sdr_provision.middlewares.cmake import BuildRunner
from sdr_provision.middlewares.git import RevisionSync
from sdr_provision.middlewares.grcc import HierBlockCompiler
from sdr_provision.middlewares.installer import ScriptedInstaller
from sdr_provision.middlewares.packages import PackageInstaller
from sdr_provision.middlewares.shell import CommandRunner
from sdr_provision.models import (
    PROGRAM_NAME,
    PipelineResult,
    ProvisionConfig,
    StepEntry,
    StepResult,
)
from sdr_provision.providers.environment import EnvironmentComposer
from sdr_provision.steps import PACKAGES, STEPS, active_step_names, select_steps

logger = logging.getLogger(__name__)

HIER_BLOCKS_DIR = "hier_blocks"
HIER_OUTPUT_DIR = "share/gnuradio/grc/hier"
USB_DRIVER_ARTIFACTS = ["libusb-driver.so", "libusb-driver-DEBUG.so"]


class StepPipeline:
    """Runs the selected steps in catalog order.

    A source-bearing step always synchronizes its working copy when
    selected; its build runs only when ``git_only`` is off. Steps
    without a repository run their action whenever selected. The first
    failure propagates: earlier steps stay installed and a rerun picks
    up from idempotent state.
    """

    def __init__(
        self,
        config: ProvisionConfig,
        runner: CommandRunner | None = None,
        bundle: BundleStore | None = None,
        sync: RevisionSync | None = None,
        build: BuildRunner | None = None,
        packages: PackageInstaller | None = None,
        hier: HierBlockCompiler | None = None,
        installer: ScriptedInstaller | None = None,
        steps: Sequence[StepEntry] = STEPS,
    ):
        self._config = config
        self._runner = runner or CommandRunner()
        self._bundle = bundle or BundleStore(config.bundle_in, config.bundle_out)
        self._composer = EnvironmentComposer(config.install_dir)
        self._sync = sync or RevisionSync(config, self._bundle, self._runner)
        self._build = build or BuildRunner(
            config, self._runner, self._composer.toolchain_env
        )
        self._packages = packages or PackageInstaller(
            config, self._bundle, self._runner, installer, self._build
        )
        self._hier = hier or HierBlockCompiler(self._runner)
        self._steps = list(steps)
        self._actions: dict[str, Callable[[StepEntry, StepResult], None]] = {
            "cmake": self._run_cmake,
            "make": self._run_make,
            "package": self._run_package,
            "hier_blocks": self._run_hier_blocks,
        }

    @property
    def bundle(self) -> BundleStore:
        return self._bundle

    # ──────────────────────────────────────────
    # Public API
    # ──────────────────────────────────────────

    def plan(self) -> list[StepEntry]:
        """Steps that would run, in execution order."""
        names = active_step_names(
            self._config.step_set, self._config.hardware, self._config.only, self._steps
        )
        return select_steps(names, self._steps)

    def run(self, argv: Sequence[str] | None = None) -> PipelineResult:
        steps = self.plan()
        self._config.install_dir.mkdir(parents=True, exist_ok=True)
        self._bundle.open_output(self.bundle_header(argv))
        logger.info("Running steps: %s", ", ".join(s.name for s in steps) or "(none)")

        result = PipelineResult(
            bundle_path=str(self._bundle.output_path) if self._bundle.output_path else None
        )
        for step in steps:
            result.steps.append(self.run_step(step))

        env_script, setup_script = self._composer.write_scripts()
        result.env_script = str(env_script)
        result.setup_script = str(setup_script)
        logger.info("Done. Source %s to use the toolchain.", env_script)
        return result

    def run_step(self, step: StepEntry) -> StepResult:
        logger.info("──── %s: %s", step.name, step.description)
        result = StepResult(name=step.name)
        if step.has_source:
            result.revision = self._sync.sync(step.git_url, step.branch)
            if self._config.git_only:
                logger.info("%s: sync only, skipping build", step.name)
                return result
        self._actions[step.action](step, result)
        return result

    def bundle_header(self, argv: Sequence[str] | None = None) -> str:
        argv = sys.argv if argv is None else argv
        return (
            f"{PROGRAM_NAME} bundle {datetime.now().isoformat(timespec='seconds')} "
            f"host={platform.node()} cmd={shlex.join(argv)}"
        )

    # ──────────────────────────────────────────
    # Step Actions
    # ──────────────────────────────────────────

    def _source_dir(self, step: StepEntry):
        path = self._sync.working_copy(step.git_url)
        return path / step.source_subdir if step.source_subdir else path

    def _run_cmake(self, step: StepEntry, result: StepResult) -> None:
        self._build.build(self._source_dir(step), step.cmake_args)
        result.built = True

    def _run_make(self, step: StepEntry, result: StepResult) -> None:
        self._build.make_install(
            self._source_dir(step), USB_DRIVER_ARTIFACTS, self._config.install_dir / "lib"
        )
        result.built = True

    def _run_package(self, step: StepEntry, result: StepResult) -> None:
        result.package = self._packages.install(PACKAGES[step.package or step.name])
        result.built = True

    def _run_hier_blocks(self, step: StepEntry, result: StepResult) -> None:
        design_dir = self._config.source_dir / HIER_BLOCKS_DIR
        if not design_dir.is_dir():
            logger.info("%s: no %s directory, nothing to compile", step.name, design_dir)
            return
        self._hier.compile_tree(
            design_dir,
            self._config.install_dir / HIER_OUTPUT_DIR,
            env=self._composer.toolchain_env(),
        )
        result.built = True
