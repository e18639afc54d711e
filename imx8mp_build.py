#!/usr/bin/env python3
"""Buildroot build helper for the i.MX8MP Olimex board.

The heavy lifting is done by Buildroot itself; this helper only validates the
host, forwards to the relevant ``make`` target and keeps a ``build.log`` of the
compilation output.  Run it without arguments for an incremental build or pass
exactly one command:

* ``clean`` – remove build directories while keeping ``dl/``.
* ``distclean`` – remove everything including downloads and configuration.
* ``rebuild`` – clean and rebuild from scratch.
* ``menuconfig`` / ``linux-menuconfig`` – open the configuration menus.
* ``savedefconfig`` – save the current configuration to the defconfig.
* ``linux-rebuild`` / ``uboot-rebuild`` – rebuild one component, then the images.
* ``help`` – show the usage message.

The Buildroot tree defaults to the directory containing this script and can be
overridden with ``IMX8MP_BUILDROOT_DIR``.
"""

from __future__ import annotations

import logging
import os
import shutil
import subprocess
import sys
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, TextIO

from cli_prompts import prompt_for_confirmation
from make_progress import (
    ProgressTracker,
    ProgressUpdate,
    format_bytes,
    format_progress_message,
    get_progress_parser,
)

LOG = logging.getLogger("imx8mp.build")

REPO_ROOT = Path(__file__).resolve().parent
BUILDROOT_DIR_ENV = "IMX8MP_BUILDROOT_DIR"

BUILD_LOG_NAME = "build.log"
IMAGES_SUBDIR = Path("output") / "images"
IMAGE_PATTERNS = ("*.img", "Image")
DOWNLOAD_SUBDIR = "dl"

# Host PATH entries with spaces (e.g. Windows paths under WSL) break Buildroot.
SANITISED_PATH = "/usr/local/sbin:/usr/local/bin:/usr/sbin:/usr/bin:/sbin:/bin"

DEFAULT_USERNAME = "root"
DEFAULT_PASSWORD = "olimex"

DEPENDENCY_PACKAGES: dict[str, str] = {
    "make": "build-essential",
    "gcc": "build-essential",
    "g++": "build-essential",
    "patch": "patch",
    "gzip": "gzip",
    "bzip2": "bzip2",
    "perl": "perl",
    "tar": "tar",
    "cpio": "cpio",
    "unzip": "unzip",
    "rsync": "rsync",
    "bc": "bc",
    "wget": "wget",
}

ALL_DEPENDENCIES = list(DEPENDENCY_PACKAGES)

# Needed by the menuconfig targets but not detectable through PATH.
EXTRA_PACKAGES = ("libncurses-dev",)

HELP_COMMANDS = frozenset({"help", "--help", "-h"})

COLOUR_RESET = "\033[0m"


class BuildError(RuntimeError):
    """Raised when a build step cannot complete."""

    def __init__(self, message: str, *, hint: str | None = None) -> None:
        super().__init__(message)
        self.hint = hint


class UsageError(ValueError):
    """Raised when the command line does not name exactly one known command."""


class ColourFormatter(logging.Formatter):
    """Prefix each record with a coloured ``[LEVEL]`` tag."""

    LEVEL_STYLES: dict[int, tuple[str, str]] = {
        logging.DEBUG: ("DEBUG", ""),
        logging.INFO: ("INFO", "\033[0;32m"),
        logging.WARNING: ("WARN", "\033[1;33m"),
        logging.ERROR: ("ERROR", "\033[0;31m"),
        logging.CRITICAL: ("ERROR", "\033[0;31m"),
    }

    def __init__(self, *, use_colour: bool) -> None:
        super().__init__("%(message)s")
        self.use_colour = use_colour

    def format(self, record: logging.LogRecord) -> str:
        message = super().format(record)
        label, colour = self.LEVEL_STYLES.get(record.levelno, (record.levelname, ""))
        tag = f"[{label}]"
        if self.use_colour and colour:
            tag = f"{colour}{tag}{COLOUR_RESET}"
        return f"{tag} {message}"


def _supports_colour(stream: TextIO) -> bool:
    if os.environ.get("NO_COLOR"):
        return False
    isatty = getattr(stream, "isatty", None)
    return bool(isatty and isatty())


def setup_logging(stream: TextIO | None = None) -> None:
    stream = sys.stdout if stream is None else stream

    LOG.setLevel(logging.INFO)
    LOG.handlers.clear()
    LOG.propagate = False

    console_handler = logging.StreamHandler(stream)
    console_handler.setFormatter(ColourFormatter(use_colour=_supports_colour(stream)))
    console_handler.setLevel(logging.INFO)

    LOG.addHandler(console_handler)


@dataclass
class BuildContext:
    """Everything a command needs to drive ``make`` in the Buildroot tree."""

    build_dir: Path
    jobs: int
    env: dict[str, str]

    @property
    def log_path(self) -> Path:
        return self.build_dir / BUILD_LOG_NAME

    @property
    def images_dir(self) -> Path:
        return self.build_dir / IMAGES_SUBDIR


@dataclass
class MakeResult:
    """Outcome of a ``make`` invocation whose output was captured."""

    args: list[str]
    returncode: int
    last_step: ProgressUpdate | None = None
    packages: int = 0


def resolve_build_dir() -> Path:
    override = os.environ.get(BUILDROOT_DIR_ENV)
    if override:
        return Path(override).expanduser().resolve()
    return REPO_ROOT


def configure_build_env() -> dict[str, str]:
    env = os.environ.copy()
    env["PATH"] = SANITISED_PATH
    return env


def create_context(build_dir: Path | None = None) -> BuildContext:
    build_dir = resolve_build_dir() if build_dir is None else build_dir
    if not build_dir.is_dir():
        raise BuildError(f"Buildroot directory not found: {build_dir}")
    return BuildContext(build_dir=build_dir, jobs=os.cpu_count() or 1, env=configure_build_env())


def find_missing_commands(commands: list[str], path: str | None = None) -> list[str]:
    return [cmd for cmd in commands if shutil.which(cmd, path=path) is None]


def install_hint(missing: list[str]) -> str:
    """Return an ``apt-get`` command line installing the packages for *missing*."""

    packages = dict.fromkeys(DEPENDENCY_PACKAGES.get(cmd, cmd) for cmd in missing)
    packages.update(dict.fromkeys(EXTRA_PACKAGES))
    return "sudo apt-get install " + " ".join(packages)


def check_dependencies(context: BuildContext) -> None:
    missing = find_missing_commands(ALL_DEPENDENCIES, context.env.get("PATH"))
    if missing:
        raise BuildError(
            f"Missing dependencies: {' '.join(missing)}",
            hint=f"Install with: {install_hint(missing)}",
        )


def format_duration(seconds: float) -> str:
    if seconds < 60:
        return f"{seconds:.1f}s"
    minutes, secs = divmod(int(seconds), 60)
    hours, minutes = divmod(minutes, 60)
    if hours:
        return f"{hours}h {minutes:02d}m {secs:02d}s"
    return f"{minutes}m {secs:02d}s"


def _spawn_error(command: list[str], exc: OSError) -> BuildError:
    return BuildError(f"Unable to run '{' '.join(command)}': {exc}")


def run_make(context: BuildContext, *targets: str) -> int:
    """Run ``make`` in the foreground, attached to the terminal."""

    command = ["make", *targets]
    LOG.info("$ %s", " ".join(command))
    try:
        completed = subprocess.run(command, cwd=context.build_dir, env=context.env, check=False)
    except OSError as exc:
        raise _spawn_error(command, exc) from exc
    return completed.returncode


def tee_make(context: BuildContext, *targets: str, append: bool = False) -> MakeResult:
    """Run ``make`` while mirroring its combined output to the console and log."""

    command = ["make", *targets]
    tracker = ProgressTracker(get_progress_parser(command))
    LOG.info("$ %s", " ".join(command))

    try:
        process = subprocess.Popen(
            command,
            cwd=context.build_dir,
            env=context.env,
            text=True,
            errors="replace",
            stdout=subprocess.PIPE,
            stderr=subprocess.STDOUT,
        )
    except OSError as exc:
        raise _spawn_error(command, exc) from exc
    assert process.stdout is not None  # For type-checkers.

    # The log is only touched once make is actually running.
    try:
        with context.log_path.open("a" if append else "w", encoding="utf-8") as log_file:
            for line in process.stdout:
                sys.stdout.write(line)
                sys.stdout.flush()
                log_file.write(line)
                tracker.feed(line)
    finally:
        process.stdout.close()
        returncode = process.wait()

    return MakeResult(command, returncode, tracker.last_update, len(tracker.packages))


def _require_success(action: str, returncode: int) -> None:
    if returncode != 0:
        raise BuildError(f"{action} failed (make exited with status {returncode}).")


def _failure_message(action: str, result: MakeResult) -> str:
    message = f"{action} failed! Check {BUILD_LOG_NAME} for details."
    if result.last_step is not None:
        message = f"{message} Last Buildroot step: {format_progress_message(result.last_step)}."
    return message


def list_image_artefacts(images_dir: Path) -> list[Path]:
    """Log the images produced by the build and return their paths."""

    artefacts: list[Path] = []
    for pattern in IMAGE_PATTERNS:
        artefacts.extend(path for path in sorted(images_dir.glob(pattern)) if path.is_file())

    if not artefacts:
        LOG.warning("No image artefacts found in %s", images_dir)
        return []

    for artefact in artefacts:
        LOG.info("  %s (%s)", artefact.name, format_bytes(artefact.stat().st_size))
    return artefacts


def do_build(context: BuildContext) -> None:
    LOG.info("Starting incremental build with %s parallel jobs...", context.jobs)
    LOG.info("Build log: %s", BUILD_LOG_NAME)

    started = time.monotonic()
    result = tee_make(context, f"-j{context.jobs}")
    LOG.info("make finished in %s", format_duration(time.monotonic() - started))

    if result.returncode != 0:
        raise BuildError(_failure_message("Build", result))

    LOG.info("Build completed successfully!")
    if result.packages:
        LOG.info("Buildroot packages processed in this run: %d", result.packages)
    LOG.info("Output images are in: %s/", IMAGES_SUBDIR.as_posix())
    list_image_artefacts(context.images_dir)


def do_clean(context: BuildContext) -> None:
    LOG.info("Cleaning build directories...")
    _require_success("Clean", run_make(context, "clean"))
    LOG.info("Clean completed. Downloads preserved in %s/", DOWNLOAD_SUBDIR)


def do_distclean(context: BuildContext) -> None:
    LOG.warning("This will remove everything including downloads and configuration!")
    if not prompt_for_confirmation("Are you sure?"):
        LOG.info("Cancelled.")
        return

    LOG.info("Performing full clean...")
    _require_success("Distclean", run_make(context, "distclean"))
    LOG.info("Distclean completed.")


def do_rebuild(context: BuildContext) -> None:
    LOG.info("Starting clean rebuild...")
    do_clean(context)
    do_build(context)


def do_menuconfig(context: BuildContext) -> None:
    LOG.info("Opening Buildroot configuration menu...")
    _require_success("menuconfig", run_make(context, "menuconfig"))


def do_savedefconfig(context: BuildContext) -> None:
    LOG.info("Saving current configuration...")
    _require_success("savedefconfig", run_make(context, "savedefconfig"))
    LOG.info("Configuration saved.")


def do_linux_menuconfig(context: BuildContext) -> None:
    LOG.info("Opening Linux kernel configuration menu...")
    _require_success("linux-menuconfig", run_make(context, "linux-menuconfig"))


def _rebuild_component(context: BuildContext, label: str, target: str) -> None:
    LOG.info("Rebuilding %s...", label)
    result = tee_make(context, target, append=True)
    if result.returncode != 0:
        raise BuildError(_failure_message(f"{label} rebuild", result))

    LOG.info("Rebuilding images...")
    result = tee_make(context, append=True)
    if result.returncode != 0:
        raise BuildError(_failure_message("Image rebuild", result))


def do_linux_rebuild(context: BuildContext) -> None:
    _rebuild_component(context, "Linux kernel", "linux-rebuild")


def do_uboot_rebuild(context: BuildContext) -> None:
    _rebuild_component(context, "U-Boot", "uboot-rebuild")


COMMAND_EXECUTORS: dict[str | None, Callable[[BuildContext], None]] = {
    None: do_build,
    "clean": do_clean,
    "distclean": do_distclean,
    "rebuild": do_rebuild,
    "menuconfig": do_menuconfig,
    "savedefconfig": do_savedefconfig,
    "linux-menuconfig": do_linux_menuconfig,
    "linux-rebuild": do_linux_rebuild,
    "uboot-rebuild": do_uboot_rebuild,
}

DEPENDENCY_CHECKED_COMMANDS = frozenset({None, "rebuild", "linux-rebuild", "uboot-rebuild"})

COMMAND_SUMMARIES: tuple[tuple[str, str], ...] = (
    ("(none)", "Incremental build"),
    ("clean", "Clean build directories (keeps downloads)"),
    ("distclean", "Full clean including downloads and config"),
    ("rebuild", "Clean and rebuild from scratch"),
    ("menuconfig", "Open configuration menu"),
    ("savedefconfig", "Save current config to defconfig"),
    ("linux-menuconfig", "Configure Linux kernel"),
    ("linux-rebuild", "Rebuild Linux kernel only"),
    ("uboot-rebuild", "Rebuild U-Boot only"),
    ("help", "Show this help message"),
)


def format_usage(prog: str | None = None) -> str:
    prog = prog or Path(sys.argv[0]).name or "imx8mp-build"
    width = max(len(name) for name, _ in COMMAND_SUMMARIES) + 2
    lines = [
        "Buildroot Build Script for i.MX8MP Olimex",
        "",
        f"Usage: {prog} [command]",
        "",
        "Commands:",
    ]
    lines.extend(f"  {name:<{width}}{summary}" for name, summary in COMMAND_SUMMARIES)
    lines.extend(
        [
            "",
            f"Output images will be in: {IMAGES_SUBDIR.as_posix()}/",
            "",
            "Default credentials:",
            f"  Username: {DEFAULT_USERNAME}",
            f"  Password: {DEFAULT_PASSWORD}",
        ]
    )
    return "\n".join(lines)


def print_help() -> None:
    print(format_usage())


def parse_command(argv: list[str]) -> str | None:
    """Return the command named by *argv*, ``None`` meaning the default build.

    Exactly zero or one argument is accepted.  An explicit empty argument is
    rejected rather than treated as "no argument".
    """

    if not argv:
        return None
    if len(argv) > 1:
        raise UsageError(f"expected one command, got {len(argv)} arguments")

    command = argv[0]
    if command in HELP_COMMANDS:
        return "help"
    if command not in COMMAND_EXECUTORS:
        raise UsageError(f"unknown command {command!r}")
    return command


def main(argv: list[str] | None = None) -> int:
    argv = sys.argv[1:] if argv is None else list(argv)
    setup_logging()

    try:
        command = parse_command(argv)
    except UsageError:
        LOG.error("Unknown command: %s", " ".join(argv))
        print_help()
        return 1

    if command in HELP_COMMANDS:
        print_help()
        return 0

    try:
        context = create_context()
        if command in DEPENDENCY_CHECKED_COMMANDS:
            check_dependencies(context)
        COMMAND_EXECUTORS[command](context)
    except BuildError as exc:
        LOG.error("%s", exc)
        if exc.hint:
            LOG.info("%s", exc.hint)
        return 1
    except KeyboardInterrupt:
        LOG.warning("Interrupted.")
        return 130
    return 0


if __name__ == "__main__":
    sys.exit(main())
