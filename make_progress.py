"""Utilities for parsing and formatting Buildroot ``make`` progress output."""

from __future__ import annotations

import re
from dataclasses import dataclass
from pathlib import Path
from typing import Sequence

__all__ = [
    "ProgressUpdate",
    "ProgressParser",
    "BuildrootProgressParser",
    "ProgressTracker",
    "get_progress_parser",
    "format_progress_message",
    "format_bytes",
]

GENERIC_LABEL = "buildroot"


@dataclass
class ProgressUpdate:
    """Structured representation of a single Buildroot step banner."""

    label: str
    step: str
    version: str | None = None


class ProgressParser:
    """Base class for command-specific progress parsers."""

    def parse(self, text: str) -> list[ProgressUpdate]:
        """Return progress updates extracted from *text*."""

        raise NotImplementedError


class BuildrootProgressParser(ProgressParser):
    """Parse the ``>>> package version step`` banners printed by Buildroot.

    Generic banners leave the package and version empty, which Buildroot
    renders as ``>>>   Finalizing target directory``; those are attributed to
    :data:`GENERIC_LABEL`.
    """

    _BANNER_RE = re.compile(r"^>>> (?P<package>\S*) (?P<version>\S*) (?P<step>\S.*?)\s*$")

    def parse(self, text: str) -> list[ProgressUpdate]:
        match = self._BANNER_RE.match(text.rstrip("\r\n"))
        if not match:
            return []
        package = match.group("package") or GENERIC_LABEL
        version = match.group("version") or None
        return [ProgressUpdate(label=package, step=match.group("step"), version=version)]


class ProgressTracker:
    """Remember the most recent banner and the packages seen during a run."""

    def __init__(self, parser: ProgressParser | None) -> None:
        self._parser = parser
        self.last_update: ProgressUpdate | None = None
        self.packages: set[str] = set()

    def feed(self, line: str) -> None:
        if self._parser is None:
            return
        for update in self._parser.parse(line):
            self.last_update = update
            if update.label != GENERIC_LABEL:
                self.packages.add(update.label)


def get_progress_parser(command: Sequence[str]) -> ProgressParser | None:
    """Return a parser suitable for *command*, or ``None`` when none applies."""

    if not command:
        return None
    if Path(command[0]).name in {"make", "gmake"}:
        return BuildrootProgressParser()
    return None


def format_progress_message(update: ProgressUpdate) -> str:
    """Return a human-readable string representing *update*."""

    parts: list[str] = [update.label]
    if update.version:
        parts.append(update.version)
    parts.append(f"({update.step})")
    return " ".join(parts)


def format_bytes(value: float) -> str:
    units = ["B", "KiB", "MiB", "GiB", "TiB", "PiB"]
    abs_value = abs(value)
    unit_index = 0
    while abs_value >= 1024 and unit_index < len(units) - 1:
        abs_value /= 1024
        value /= 1024
        unit_index += 1
    if abs_value >= 10 or unit_index == 0:
        formatted = f"{value:.0f}"
    else:
        formatted = f"{value:.1f}"
    return f"{formatted} {units[unit_index]}"
