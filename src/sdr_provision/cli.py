"""Command line front end.

    sdr-provision [options] <source_dir> <install_dir>

Clones and builds the SDR toolchain from <source_dir> into the
<install_dir> prefix. Every run is appended to
<install_dir>/share/sdr-provision/build.log and the revisions it used
are recorded in bundle.txt next to it; pass that file back with
--bundle to rebuild the same versions elsewhere.
"""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path
from typing import Sequence

from sdr_provision.logs import run_log, setup_logging
from sdr_provision.models import PROGRAM_NAME, ProvisionConfig
from sdr_provision.providers.pipeline import StepPipeline
from sdr_provision.steps import (
    PACKAGES,
    STEPS,
    StepSelectionError,
    active_step_names,
    execution_order,
)

logger = logging.getLogger(__name__)

def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog=PROGRAM_NAME,
        description="Build and install the SDR toolchain into a relocatable prefix.",
    )
    parser.add_argument(
        "source_dir", type=Path, nargs="?", help="working copies and vendor archives"
    )
    parser.add_argument("install_dir", type=Path, nargs="?", help="install prefix")
    parser.add_argument(
        "-s",
        "--step-set",
        choices=["default", "all"],
        default="default",
        help="preset list of steps (default: %(default)s)",
    )
    parser.add_argument(
        "-H", "--hardware", action="store_true", help="add the hardware vendor steps"
    )
    parser.add_argument(
        "-p", "--pull", action="store_true", help="pull latest on synced repositories"
    )
    parser.add_argument(
        "-b", "--bundle", type=Path, metavar="FILE", help="load revision pins from FILE"
    )
    parser.add_argument(
        "-n", "--no-build", action="store_true", help="git operations only, no builds"
    )
    parser.add_argument(
        "-N", "--no-checkout", action="store_true", help="do not check out or pull sources"
    )
    parser.add_argument(
        "-o", "--only", metavar="STEPS", help="comma separated steps, replaces the step list"
    )
    parser.add_argument(
        "-f", "--force", action="store_true", help="force checkouts, discarding local changes"
    )
    parser.add_argument(
        "-c", "--clean", action="store_true", help="remove build directories first"
    )
    parser.add_argument(
        "-1", "--single-job", action="store_true", help="build with one make job"
    )
    parser.add_argument("-d", "--docs", action="store_true", help="build documentation")
    parser.add_argument(
        "-l", "--list-steps", action="store_true", help="list steps in build order and exit"
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="debug logging")
    return parser


def config_from_args(args: argparse.Namespace) -> ProvisionConfig:
    only = tuple(args.only.split(",")) if args.only else None
    # Validate the selection before anything touches the disk.
    active_step_names(args.step_set, args.hardware, only)
    fields = dict(
        source_dir=args.source_dir.resolve(),
        install_dir=args.install_dir.resolve(),
        step_set=args.step_set,
        hardware=args.hardware,
        only=only,
        pull=args.pull,
        bundle_in=args.bundle.resolve() if args.bundle else None,
        git_only=args.no_build,
        no_checkout=args.no_checkout,
        force_checkout=args.force,
        clean=args.clean,
        docs=args.docs,
    )
    if args.single_job:
        fields["jobs"] = 1
    return ProvisionConfig(**fields)


def print_steps(out=None) -> None:
    out = out or sys.stdout
    for step in execution_order(STEPS):
        if step.git_url:
            origin = f"{step.git_url} ({step.branch})"
        elif step.package:
            origin = f"archive {PACKAGES[step.package].pattern}"
        else:
            origin = "local"
        deps = f" (after {', '.join(step.depends)})" if step.depends else ""
        print(f"{step.name:<16} [{step.group}] {step.description}{deps}", file=out)
        print(f"    {origin}", file=out)


def main(argv: Sequence[str] | None = None) -> int:
    argv = list(sys.argv[1:] if argv is None else argv)
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.list_steps:
        print_steps()
        return 0
    if args.source_dir is None or args.install_dir is None:
        parser.print_usage(sys.stderr)
        print(
            f"{PROGRAM_NAME}: error: source_dir and install_dir are required",
            file=sys.stderr,
        )
        return 2

    try:
        config = config_from_args(args)
    except StepSelectionError as e:
        parser.print_usage(sys.stderr)
        print(f"{PROGRAM_NAME}: error: {e}", file=sys.stderr)
        return 2

    setup_logging(args.verbose)
    full_argv = [PROGRAM_NAME, *argv]
    with run_log(config.log_path, full_argv):
        try:
            StepPipeline(config).run(full_argv)
        except (RuntimeError, OSError) as e:
            logger.error("Aborted: %s", e)
            logger.error("Fix the problem and rerun; completed steps are reused.")
            return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
