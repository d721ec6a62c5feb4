from __future__ import annotations

import logging
import os
import shutil
from pathlib import Path
from typing import Callable, Mapping, Sequence

from sdr_provision.middlewares.shell import CommandRunner
from sdr_provision.models import ProvisionConfig

logger = logging.getLogger(__name__)

BUILD_DIR_NAME = "build"
BUILD_TYPE = "Release"


class BuildRunner:
    """Configure, compile and install a CMake project into the prefix.

    ``environment`` returns the process environment for every tool run;
    it is called per build so search paths pick up what earlier steps
    installed. Without it the current process environment is used.
    """

    def __init__(
        self,
        config: ProvisionConfig,
        runner: CommandRunner | None = None,
        environment: Callable[[], Mapping[str, str]] | None = None,
    ):
        self._config = config
        self._runner = runner or CommandRunner()
        self._environment = environment

    def common_options(self) -> list[str]:
        prefix = self._config.install_dir
        return [
            f"-DCMAKE_INSTALL_PREFIX={prefix}",
            f"-DCMAKE_PREFIX_PATH={prefix}",
            f"-DCMAKE_BUILD_TYPE={BUILD_TYPE}",
            f"-DENABLE_DOXYGEN={'ON' if self._config.docs else 'OFF'}",
        ]

    def build(
        self,
        source_dir: Path,
        extra_options: Sequence[str] = (),
        build_dir_name: str = BUILD_DIR_NAME,
    ) -> Path:
        """Build source_dir out of tree in source_dir/<build_dir_name>.

        Returns the build directory.
        """
        build_dir = source_dir / build_dir_name
        if self._config.clean and build_dir.exists():
            logger.info("Removing build directory %s", build_dir)
            shutil.rmtree(build_dir)
        build_dir.mkdir(parents=True, exist_ok=True)

        env = self._tool_env()
        self._runner.run(
            ["cmake", *self.common_options(), *extra_options, ".."],
            cwd=build_dir,
            env=env,
        )
        self._runner.run(["make", f"-j{self._config.jobs}"], cwd=build_dir, env=env)
        self._runner.run(["make", "install"], cwd=build_dir, env=env)
        return build_dir

    def make_install(self, source_dir: Path, artifacts: Sequence[str], dest: Path) -> list[Path]:
        """Build a plain Makefile project in place and copy its artifacts."""
        env = self._tool_env()
        if self._config.clean:
            self._runner.run(["make", "clean"], cwd=source_dir, env=env)
        self._runner.run(["make", f"-j{self._config.jobs}"], cwd=source_dir, env=env)
        dest.mkdir(parents=True, exist_ok=True)
        installed = []
        for name in artifacts:
            target = dest / Path(name).name
            shutil.copy2(source_dir / name, target)
            logger.info("Installed %s", target)
            installed.append(target)
        return installed

    def _tool_env(self) -> dict[str, str]:
        if self._environment is None:
            return dict(os.environ)
        return dict(self._environment())
