"""Runtime environment and system set-up generation.

Search paths are derived from what is actually present under the
install prefix when the scripts are generated, so optional vendor
components that were never installed contribute nothing.
"""

from __future__ import annotations

import logging
import os
import shlex
import stat
from pathlib import Path
from typing import Mapping

from sdr_provision.models import (
    PROGRAM_NAME,
    EnvironmentProgram,
    EnvironmentVariable,
)

logger = logging.getLogger(__name__)

ENV_SCRIPT_NAME = f"{PROGRAM_NAME}-env.sh"
SETUP_SCRIPT_NAME = f"{PROGRAM_NAME}-setup.sh"
LD_CONF_NAME = f"{PROGRAM_NAME}.conf"
USB_DRIVER_SHIM = "lib/libusb-driver.so"

# variable -> prefix-relative glob patterns, in search order
SEARCH_PATHS: list[tuple[str, list[str]]] = [
    ("PATH", ["bin", "opt/Xilinx/*/LabTools/bin/lin64", "opt/MTCA/sdk/bin"]),
    (
        "LD_LIBRARY_PATH",
        [
            "lib",
            "lib64",
            "lib/digilent/adept",
            "lib64/digilent/adept",
            "opt/Xilinx/*/LabTools/lib/lin64",
            "opt/MTCA/sdk/lib",
        ],
    ),
    ("MANPATH", ["share/man"]),
    ("PKG_CONFIG_PATH", ["lib/pkgconfig", "lib64/pkgconfig", "opt/MTCA/sdk/lib/pkgconfig"]),
    ("CMAKE_PREFIX_PATH", [".", "opt/MTCA/sdk"]),
    ("PYTHONPATH", ["lib/python3*/site-packages", "lib/python3*/dist-packages"]),
    ("GRC_BLOCKS_PATH", ["share/gnuradio/grc/blocks", "share/gnuradio/grc/hier"]),
    ("UHD_MODULE_PATH", ["lib/uhd/modules"]),
    ("SOAPY_SDR_PLUGIN_PATH", ["lib/SoapySDR/modules*"]),
]

# hardware family -> prefix-relative udev rule file or glob
UDEV_RULES: list[tuple[str, str]] = [
    ("usrp", "lib/uhd/utils/uhd-usrp.rules"),
    ("digilent", "etc/udev/rules.d/52-digilent-usb.rules"),
    (
        "xilinx",
        "opt/Xilinx/*/LabTools/bin/lin64/install_script/install_drivers/linux_drivers/pcusb/*.rules",
    ),
    ("mtca", "opt/MTCA/sdk/etc/udev/60-mtca.rules"),
]


class EnvironmentComposer:
    def __init__(self, prefix: Path):
        self._prefix = prefix

    # ──────────────────────────────────────────
    # Environment Program
    # ──────────────────────────────────────────

    def compose(self) -> EnvironmentProgram:
        """Build the environment program for the current prefix contents."""
        variables = [
            EnvironmentVariable(name=name, paths=self._discover(patterns))
            for name, patterns in SEARCH_PATHS
        ]
        program = EnvironmentProgram(prefix=str(self._prefix), variables=variables)
        shim = self._prefix / USB_DRIVER_SHIM
        if shim.exists():
            program.preload.append(str(shim))
            program.exports["XIL_IMPACT_USE_LIBUSB"] = "1"
        return program

    def toolchain_env(self, base: Mapping[str, str] | None = None) -> dict[str, str]:
        """Process environment for configure/compile/install runs.

        Prefix paths are placed ahead of whatever base already holds.
        """
        env = dict(os.environ if base is None else base)
        for var in self.compose().variables:
            if not var.paths:
                continue
            current = env.get(var.name)
            env[var.name] = os.pathsep.join(var.paths + ([current] if current else []))
        return env

    def _discover(self, patterns: list[str]) -> list[str]:
        found: list[str] = []
        for pattern in patterns:
            if pattern == ".":
                matches = [self._prefix] if self._prefix.is_dir() else []
            else:
                matches = sorted(p for p in self._prefix.glob(pattern) if p.is_dir())
            for match in matches:
                if str(match) not in found:
                    found.append(str(match))
        return found

    # ──────────────────────────────────────────
    # Script Rendering
    # ──────────────────────────────────────────

    def render_env_script(self, program: EnvironmentProgram | None = None) -> str:
        program = program or self.compose()
        lines = [
            "# Source this file to use the toolchain installed under",
            f"#   {program.prefix}",
            f"# Generated by {PROGRAM_NAME}.",
            "",
        ]
        for var in program.variables:
            if not var.paths:
                continue
            joined = ":".join(shlex.quote(p) for p in var.paths)
            lines.append(f"export {var.name}={joined}${{{var.name}:+:${var.name}}}")
        for name, value in program.exports.items():
            lines.append(f"export {name}={shlex.quote(value)}")
        for lib in program.preload:
            lines.append(f"export LD_PRELOAD={shlex.quote(lib)}${{LD_PRELOAD:+:$LD_PRELOAD}}")
        return "\n".join(lines) + "\n"

    def render_setup_script(self) -> str:
        """Root-run system configuration: udev rules and linker cache."""
        prefix = self._prefix
        lines = [
            "#!/bin/sh",
            f"# One-time system configuration for {prefix}. Run as root.",
            f"# Generated by {PROGRAM_NAME}.",
            "set -e",
            "",
        ]
        for family, rel in UDEV_RULES:
            lines.append(f"# {family}")
            for rule in self._rule_files(rel):
                lines += [
                    f"if [ -f {shlex.quote(str(rule))} ]; then",
                    f"    install -m 0644 {shlex.quote(str(rule))} /etc/udev/rules.d/",
                    "fi",
                ]
        ld_dir = prefix / "etc" / "ld.so.conf.d"
        lines += [
            "udevadm control --reload-rules || true",
            "",
            f"install -m 0644 {shlex.quote(str(ld_dir / LD_CONF_NAME))} /etc/ld.so.conf.d/",
        ]
        # linker configs shipped by vendor packages
        for conf in sorted(ld_dir.glob("*.conf")):
            if conf.name == LD_CONF_NAME:
                continue
            lines += [
                f"if [ -f {shlex.quote(str(conf))} ]; then",
                f"    install -m 0644 {shlex.quote(str(conf))} /etc/ld.so.conf.d/",
                "fi",
            ]
        lines.append("ldconfig")
        return "\n".join(lines) + "\n"

    def _rule_files(self, rel: str) -> list[Path]:
        if "*" not in rel:
            return [self._prefix / rel]
        return sorted(self._prefix.glob(rel))

    def render_ld_conf(self, program: EnvironmentProgram | None = None) -> str:
        program = program or self.compose()
        libs = next(v.paths for v in program.variables if v.name == "LD_LIBRARY_PATH")
        return "\n".join(libs) + "\n"

    def write_scripts(self) -> tuple[Path, Path]:
        """Write the env script, the set-up script and the linker config.

        Returns (env_script, setup_script).
        """
        program = self.compose()
        bin_dir = self._prefix / "bin"
        ld_dir = self._prefix / "etc" / "ld.so.conf.d"
        bin_dir.mkdir(parents=True, exist_ok=True)
        ld_dir.mkdir(parents=True, exist_ok=True)

        (ld_dir / LD_CONF_NAME).write_text(self.render_ld_conf(program))

        env_script = bin_dir / ENV_SCRIPT_NAME
        env_script.write_text(self.render_env_script(program))
        setup_script = bin_dir / SETUP_SCRIPT_NAME
        setup_script.write_text(self.render_setup_script())
        for script in (env_script, setup_script):
            mode = script.stat().st_mode
            script.chmod(mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)

        logger.info("Wrote %s", env_script)
        logger.info("Wrote %s (run once as root)", setup_script)
        return env_script, setup_script
