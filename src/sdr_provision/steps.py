"""Step and vendor package catalog.

Steps are declared in a fixed order that matches real build
dependencies; ``depends`` makes those dependencies explicit. The
execution order is the stable topological sort of that graph, which
for this catalog reproduces the declaration order exactly.
"""

from __future__ import annotations

import heapq
from graphlib import TopologicalSorter
from typing import Iterable, Sequence

from sdr_provision.models import (
    StepAction,
    StepEntry,
    StepGroup,
    StepSetName,
    StepSummary,
    VendorPackageEntry,
)


class StepSelectionError(ValueError):
    """Raised when a requested step name is not in the catalog."""


# ──────────────────────────────────────────────
# Catalog Entries
# ──────────────────────────────────────────────


def _step(
    name: str,
    description: str,
    action: StepAction,
    git_url: str | None = None,
    branch: str = "master",
    depends: list[str] | None = None,
    group: StepGroup = "default",
    source_subdir: str = "",
    cmake_args: list[str] | None = None,
    package: str | None = None,
) -> StepEntry:
    return StepEntry(
        name=name,
        description=description,
        group=group,
        action=action,
        git_url=git_url,
        branch=branch,
        depends=depends or [],
        source_subdir=source_subdir,
        cmake_args=cmake_args or [],
        package=package,
    )


STEPS: list[StepEntry] = [
    _step(
        name="volk",
        description="Vector-optimized kernel library",
        action="cmake",
        git_url="https://github.com/gnuradio/volk.git",
        branch="main",
        cmake_args=["-DENABLE_TESTING=OFF"],
    ),
    _step(
        name="uhd",
        description="USRP hardware driver",
        action="cmake",
        git_url="https://github.com/EttusResearch/uhd.git",
        branch="master",
        source_subdir="host",
        cmake_args=["-DENABLE_EXAMPLES=OFF", "-DENABLE_TESTS=OFF"],
    ),
    _step(
        name="gnuradio",
        description="GNU Radio runtime and blocks",
        action="cmake",
        git_url="https://github.com/gnuradio/gnuradio.git",
        branch="maint-3.10",
        depends=["volk", "uhd"],
        cmake_args=["-DENABLE_INTERNAL_VOLK=OFF", "-DENABLE_GR_UHD=ON"],
    ),
    _step(
        name="soapysdr",
        description="Vendor-neutral SDR device abstraction",
        action="cmake",
        git_url="https://github.com/pothosware/SoapySDR.git",
        branch="master",
    ),
    _step(
        name="soapyuhd",
        description="SoapySDR plugin for UHD devices",
        action="cmake",
        git_url="https://github.com/pothosware/SoapyUHD.git",
        branch="master",
        depends=["uhd", "soapysdr"],
    ),
    _step(
        name="gr_osmosdr",
        description="Hardware source/sink blocks for GNU Radio",
        action="cmake",
        git_url="https://github.com/osmocom/gr-osmosdr.git",
        branch="master",
        depends=["gnuradio", "soapysdr"],
    ),
    _step(
        name="hier_blocks",
        description="Compile GRC hierarchical blocks from <source_dir>/hier_blocks",
        action="hier_blocks",
        depends=["gnuradio", "gr_osmosdr"],
    ),
    # ── Hardware vendor group (-H) ──
    _step(
        name="usb_driver",
        description="libusb shim replacing the vendor JTAG kernel driver",
        action="make",
        git_url="git://git.zerfleddert.de/usb-driver",
        branch="master",
        group="hardware",
    ),
    _step(
        name="ftdi_d2xx",
        description="FTDI D2XX USB library",
        action="package",
        package="ftdi_d2xx",
        group="hardware",
    ),
    _step(
        name="adept_runtime",
        description="Digilent Adept USB/JTAG runtime",
        action="package",
        package="adept_runtime",
        depends=["ftdi_d2xx"],
        group="hardware",
    ),
    _step(
        name="adept_utilities",
        description="Digilent Adept command line utilities",
        action="package",
        package="adept_utilities",
        depends=["adept_runtime"],
        group="hardware",
    ),
    _step(
        name="fpga_toolchain",
        description="Xilinx FPGA lab tools (batch install)",
        action="package",
        package="fpga_toolchain",
        depends=["usb_driver"],
        group="hardware",
    ),
    _step(
        name="mtca_sdk",
        description="microTCA crate management SDK",
        action="package",
        package="mtca_sdk",
        depends=["gnuradio", "adept_runtime"],
        group="hardware",
    ),
]

PACKAGES: dict[str, VendorPackageEntry] = {
    p.name: p
    for p in [
        VendorPackageEntry(
            name="ftdi_d2xx",
            description="FTDI D2XX shared library",
            pattern="libftd2xx-x86_64-*.tgz",
            method="shared_libs",
            library="libftd2xx",
            headers=["ftd2xx.h", "WinTypes.h"],
        ),
        VendorPackageEntry(
            name="adept_runtime",
            description="Digilent Adept runtime (.deb or legacy tarball)",
            pattern="digilent.adept.runtime_*",
            method="interactive",
        ),
        VendorPackageEntry(
            name="adept_utilities",
            description="Digilent Adept utilities tarball",
            pattern="digilent.adept.utilities_*.tar.gz",
            method="copy_tree",
        ),
        VendorPackageEntry(
            name="fpga_toolchain",
            description="Xilinx lab tools installer tarball",
            pattern="Xilinx_LabTools_*.tar",
            method="batch_installer",
        ),
        VendorPackageEntry(
            name="mtca_sdk",
            description="microTCA SDK source tarball",
            pattern="mtca-sdk-*.tar.gz",
            method="sdk",
        ),
    ]
}


# ──────────────────────────────────────────────
# Ordering and Selection
# ──────────────────────────────────────────────


def execution_order(steps: Sequence[StepEntry] = STEPS) -> list[StepEntry]:
    """Stable topological order of the step graph.

    Among steps whose dependencies are satisfied the earliest declared
    runs first. Raises graphlib.CycleError on a cyclic graph and
    StepSelectionError on a dependency that is not declared.
    """
    index = {s.name: i for i, s in enumerate(steps)}
    by_name = {s.name: s for s in steps}
    for s in steps:
        unknown = [d for d in s.depends if d not in index]
        if unknown:
            raise StepSelectionError(f"Step '{s.name}' depends on unknown {unknown}")

    sorter = TopologicalSorter({s.name: s.depends for s in steps})
    sorter.prepare()
    ready = [(index[n], n) for n in sorter.get_ready()]
    heapq.heapify(ready)
    ordered: list[StepEntry] = []
    while ready:
        _, name = heapq.heappop(ready)
        ordered.append(by_name[name])
        sorter.done(name)
        for n in sorter.get_ready():
            heapq.heappush(ready, (index[n], n))
    return ordered


def active_step_names(
    step_set: StepSetName = "default",
    hardware: bool = False,
    only: Iterable[str] | None = None,
    steps: Sequence[StepEntry] = STEPS,
) -> set[str]:
    """Names selected by the user: a preset, optionally plus the
    hardware group, or an explicit override list."""
    if only is not None:
        names = {n.strip() for n in only if n.strip()}
    elif step_set == "all":
        names = {s.name for s in steps}
    else:
        names = {s.name for s in steps if s.group == "default"}
        if hardware:
            names.update(s.name for s in steps if s.group == "hardware")
    unknown = sorted(names - {s.name for s in steps})
    if unknown:
        known = ", ".join(s.name for s in steps)
        raise StepSelectionError(f"Unknown step(s) {', '.join(unknown)}. Available: {known}")
    return names


def select_steps(names: Iterable[str], steps: Sequence[StepEntry] = STEPS) -> list[StepEntry]:
    """Intersection of names with the master order, in master order."""
    wanted = set(names)
    return [s for s in execution_order(steps) if s.name in wanted]


def summarize(step: StepEntry) -> StepSummary:
    return StepSummary(
        name=step.name,
        description=step.description,
        group=step.group,
        depends=step.depends,
        git_url=step.git_url,
        branch=step.branch if step.has_source else None,
        package=step.package,
    )
