from __future__ import annotations

import logging
import os
import re
import shutil
import stat
from pathlib import Path
from typing import Callable, Literal

from sdr_provision.middlewares.bundle import BundleStore
from sdr_provision.middlewares.cmake import BuildRunner
from sdr_provision.middlewares.installer import Dialogue, ScriptedInstaller
from sdr_provision.middlewares.shell import CommandRunner
from sdr_provision.models import PackageInstallResult, ProvisionConfig, VendorPackageEntry

logger = logging.getLogger(__name__)

PackageKind = Literal["deb", "tar"]

EXTRACT_SUFFIX = ".extract"
TAR_SUFFIXES = (".tar", ".tar.gz", ".tgz", ".tar.bz2", ".tar.xz")
ARCHIVE_SUFFIXES = (".deb", *TAR_SUFFIXES)

# Compiled-in vendor defaults that must point into the prefix instead.
_VENDOR_PATH_RE = re.compile(r"(?<![\w./-])/(usr|etc)/")

ADEPT_RUNTIME_DIALOGUE: list[tuple[str, str]] = [
    (r"runtime libraries be installed\?", "{prefix}/lib64/digilent/adept"),
    (r"data files be installed\?", "{prefix}/share/digilent/adept/data"),
    (r"configuration file be installed\?", "{prefix}/etc"),
    (r"udev rules be installed\?", "{prefix}/etc/udev/rules.d"),
    (r"utilities be installed\?", "{prefix}/sbin"),
    (r"(?i)continue\?", ""),
    (r"(?i)update the dynamic linker.*\?", "n"),
    (r"(?i)press enter", ""),
]

FPGA_TARGET = "opt/Xilinx"
FPGA_INSTALLER = "xsetup"
FPGA_ANSWER_TEMPLATE = "install_config.sample.txt"
FPGA_CONFLICTING_LIBS = ("libstdc++.so*", "libgcc_s.so*", "libusb-1.0.so*")

SDK_TARGET = "opt/MTCA/sdk"
SDK_SHARED_CMAKE_MODULE = "lib/cmake/gnuradio/GrMiscUtils.cmake"


class PackageNotFoundError(RuntimeError):
    """Raised when no archive matches a vendor package."""


class PackageFormatError(RuntimeError):
    """Raised when an archive is not a deb or a tarball."""


class PackageInstaller:
    """Idempotently unpacks vendor archives and installs them into the prefix.

    Archives are looked up in the source dir. Each archive is extracted
    once into ``<cache>/<filename>.extract``; a rerun with the same
    filename reuses it, a different filename (e.g. pinned by a bundle)
    gets its own extract dir.
    """

    def __init__(
        self,
        config: ProvisionConfig,
        bundle: BundleStore,
        runner: CommandRunner | None = None,
        installer: ScriptedInstaller | None = None,
        build_runner: BuildRunner | None = None,
    ):
        self._config = config
        self._bundle = bundle
        self._runner = runner or CommandRunner()
        self._installer = installer or ScriptedInstaller()
        self._build = build_runner or BuildRunner(config, self._runner)
        self._methods: dict[str, Callable[[VendorPackageEntry, Path], None]] = {
            "deb_payload": self._install_deb_payload,
            "interactive": self._install_interactive,
            "shared_libs": self._install_shared_libs,
            "copy_tree": self._install_copy_tree,
            "batch_installer": self._install_batch_installer,
            "sdk": self._install_sdk,
        }

    @property
    def prefix(self) -> Path:
        return self._config.install_dir

    # ──────────────────────────────────────────
    # Public API
    # ──────────────────────────────────────────

    def install(self, entry: VendorPackageEntry) -> PackageInstallResult:
        filename = self.select_filename(entry)
        extract_dir, extracted = self.extract(filename)
        method = "deb_payload" if self.kind(filename) == "deb" else entry.method
        logger.info("Installing %s from %s (%s)", entry.name, filename, method)
        self._methods[method](entry, extract_dir)
        return PackageInstallResult(
            package=entry.name,
            filename=filename,
            extracted=extracted,
            extract_dir=str(extract_dir),
        )

    def select_filename(self, entry: VendorPackageEntry) -> str:
        """Pick the archive for entry, honouring a bundle pin.

        Without a pin the lexically last deb or tarball in the source
        dir matching the entry's pattern is used.
        """
        matches = sorted(
            p.name
            for p in self._config.source_dir.glob(entry.pattern)
            if p.name.endswith(ARCHIVE_SUFFIXES)
        )
        default = matches[-1] if matches else ""
        filename = self._bundle.load(entry.name, default)
        if not filename or not (self._config.source_dir / filename).is_file():
            raise PackageNotFoundError(
                f"No archive for '{entry.name}' in {self._config.source_dir} "
                f"(expected {filename or entry.pattern})"
            )
        self.kind(filename)
        self._bundle.save(entry.name, filename)
        return filename

    def extract(self, filename: str) -> tuple[Path, bool]:
        """Extract an archive unless already done.

        Returns (extract_dir, extracted_now).
        """
        cache = self._config.cache_dir
        extract_dir = cache / (filename + EXTRACT_SUFFIX)
        if extract_dir.exists():
            logger.info("Reusing %s", extract_dir)
            return extract_dir, False

        kind = self.kind(filename)
        archive = self._config.source_dir / filename
        partial = cache / (filename + EXTRACT_SUFFIX + ".partial")
        if partial.exists():
            shutil.rmtree(partial)
        partial.mkdir(parents=True)

        if kind == "deb":
            # Unpack data only; maintainer scripts never run.
            self._runner.run(["dpkg-deb", "-x", str(archive), str(partial)])
        else:
            self._runner.run(["tar", "-xf", str(archive), "-C", str(partial)])
        partial.rename(extract_dir)
        return extract_dir, True

    @staticmethod
    def kind(filename: str) -> PackageKind:
        if filename.endswith(".deb"):
            return "deb"
        if filename.endswith(TAR_SUFFIXES):
            return "tar"
        raise PackageFormatError(f"Unsupported package format: {filename}")

    # ──────────────────────────────────────────
    # Configuration Rewriting
    # ──────────────────────────────────────────

    def rewrite_vendor_paths(self, path: Path) -> bool:
        """Point /usr/ and /etc/ references in a text file into the prefix."""
        text = path.read_text(errors="replace")
        prefix = str(self.prefix)

        def _sub(m: re.Match) -> str:
            # Already inside the prefix, e.g. a prefix under /usr/local.
            if text.startswith(prefix + "/", m.start()):
                return m.group(0)
            return f"{prefix}/" if m.group(1) == "usr" else f"{prefix}/etc/"

        new_text = _VENDOR_PATH_RE.sub(_sub, text)
        if new_text == text:
            return False
        path.write_text(new_text)
        logger.info("Rewrote vendor paths in %s", path)
        return True

    @staticmethod
    def rewrite_conf_keys(path: Path, values: dict[str, str]) -> None:
        """Set ``key=value`` lines in a conf file, appending missing keys."""
        lines = path.read_text().splitlines() if path.exists() else []
        remaining = dict(values)
        for i, line in enumerate(lines):
            key = line.split("=", 1)[0].strip()
            if "=" in line and key in remaining:
                lines[i] = f"{key}={remaining.pop(key)}"
        lines += [f"{k}={v}" for k, v in remaining.items()]
        path.write_text("\n".join(lines) + "\n")

    # ──────────────────────────────────────────
    # Install Methods
    # ──────────────────────────────────────────

    def _install_deb_payload(self, entry: VendorPackageEntry, extract_dir: Path) -> None:
        usr = extract_dir / "usr"
        if usr.is_dir():
            shutil.copytree(usr, self.prefix, symlinks=True, dirs_exist_ok=True)
        etc = extract_dir / "etc"
        if etc.is_dir():
            shutil.copytree(etc, self.prefix / "etc", symlinks=True, dirs_exist_ok=True)
            for conf in etc.rglob("*"):
                if conf.is_file() and not conf.is_symlink():
                    self.rewrite_vendor_paths(self.prefix / "etc" / conf.relative_to(etc))

    def _install_interactive(self, entry: VendorPackageEntry, extract_dir: Path) -> None:
        root = self._payload_root(extract_dir)
        script = root / "install.sh"
        if not script.is_file():
            raise PackageNotFoundError(f"{entry.name}: no install.sh in {root}")
        dialogue: Dialogue = [
            (prompt, response.format(prefix=self.prefix))
            for prompt, response in ADEPT_RUNTIME_DIALOGUE
        ]
        self._installer.drive(["/bin/sh", str(script)], dialogue, cwd=root)

        conf = self.prefix / "etc" / "digilent-adept.conf"
        if conf.exists():
            self.rewrite_vendor_paths(conf)
        rules = self.prefix / "etc" / "udev" / "rules.d"
        for rule in sorted(rules.glob("*digilent*.rules")):
            self.rewrite_vendor_paths(rule)

    def _install_shared_libs(self, entry: VendorPackageEntry, extract_dir: Path) -> None:
        stem = entry.library or entry.name
        versioned = re.compile(rf"^{re.escape(stem)}\.so\.(\d+(?:\.\d+)*)$")
        candidates = [
            (tuple(int(x) for x in m.group(1).split(".")), p)
            for p in extract_dir.rglob(f"{stem}.so.*")
            if (m := versioned.match(p.name)) and p.is_file() and not p.is_symlink()
        ]
        if not candidates:
            raise PackageNotFoundError(f"{entry.name}: no {stem}.so.<version> in archive")
        version, library = max(candidates)

        lib_dir = self.prefix / "lib"
        lib_dir.mkdir(parents=True, exist_ok=True)
        shutil.copy2(library, lib_dir / library.name)
        for link in (f"{stem}.so", f"{stem}.so.{version[0]}"):
            target = lib_dir / link
            if target.is_symlink() or target.exists():
                target.unlink()
            target.symlink_to(library.name)
        logger.info("Installed %s", lib_dir / library.name)

        include = self.prefix / "include"
        for header in entry.headers:
            for found in extract_dir.rglob(header):
                include.mkdir(parents=True, exist_ok=True)
                shutil.copy2(found, include / found.name)

    def _install_copy_tree(self, entry: VendorPackageEntry, extract_dir: Path) -> None:
        root = self._payload_root(extract_dir)
        bin_src = next((root / d for d in ("bin64", "bin") if (root / d).is_dir()), None)
        if bin_src is not None:
            shutil.copytree(bin_src, self.prefix / "bin", dirs_exist_ok=True)
        man_dir = self.prefix / "share" / "man" / "man1"
        for page in sorted(root.glob("man/*.1*")):
            man_dir.mkdir(parents=True, exist_ok=True)
            shutil.copy2(page, man_dir / page.name)
        if (root / "doc").is_dir():
            shutil.copytree(
                root / "doc", self.prefix / "share" / "doc" / entry.name, dirs_exist_ok=True
            )

    def _install_batch_installer(self, entry: VendorPackageEntry, extract_dir: Path) -> None:
        root = self._payload_root(extract_dir)
        target = self.prefix / FPGA_TARGET
        # The vendor installer refuses to run over an existing install.
        if target.exists():
            logger.info("Removing previous install %s", target)
            shutil.rmtree(target)

        template = next(root.rglob(FPGA_ANSWER_TEMPLATE), None)
        if template is None:
            raise PackageNotFoundError(f"{entry.name}: no {FPGA_ANSWER_TEMPLATE} in archive")
        answers = self._config.cache_dir / f"{entry.name}.install_config.txt"
        shutil.copy2(template, answers)
        self.rewrite_conf_keys(answers, {"Destination": str(target)})

        self._runner.run(
            [
                f"./{FPGA_INSTALLER}",
                "--agree",
                "XilinxEULA,3rdPartyEULA",
                "--batch",
                "Install",
                "--config",
                str(answers),
            ],
            cwd=root,
        )

        for pattern in FPGA_CONFLICTING_LIBS:
            for lib in sorted(target.rglob(pattern)):
                if lib.is_file() or lib.is_symlink():
                    logger.info("Removing bundled %s", lib.relative_to(self.prefix))
                    lib.unlink()
        self.strip_group_other_write(target)

    def _install_sdk(self, entry: VendorPackageEntry, extract_dir: Path) -> None:
        root = self._payload_root(extract_dir)
        target = self.prefix / SDK_TARGET
        shutil.copytree(root, target, symlinks=True, dirs_exist_ok=True)

        shared = self.prefix / SDK_SHARED_CMAKE_MODULE
        if not shared.is_file():
            raise PackageNotFoundError(
                f"{entry.name}: {SDK_SHARED_CMAKE_MODULE} missing from the prefix; "
                f"build gnuradio first"
            )
        modules = target / "cmake" / "Modules"
        modules.mkdir(parents=True, exist_ok=True)
        shutil.copy2(shared, modules / shared.name)

        self._build.build(target, [f"-DCMAKE_MODULE_PATH={modules}"])

    # ──────────────────────────────────────────
    # Internal Helpers
    # ──────────────────────────────────────────

    @staticmethod
    def _payload_root(extract_dir: Path) -> Path:
        """Descend into a tarball's single top-level directory, if any."""
        children = list(extract_dir.iterdir())
        if len(children) == 1 and children[0].is_dir():
            return children[0]
        return extract_dir

    @staticmethod
    def strip_group_other_write(root: Path) -> None:
        mask = ~(stat.S_IWGRP | stat.S_IWOTH)
        for dirpath, dirnames, filenames in os.walk(root):
            for name in [*dirnames, *filenames]:
                path = Path(dirpath) / name
                if path.is_symlink():
                    continue
                path.chmod(path.stat().st_mode & mask)
        root.chmod(root.stat().st_mode & mask)
