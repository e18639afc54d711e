"""Shared helpers for interactive command-line prompts."""

from __future__ import annotations

from typing import Callable

AFFIRMATIVE_RESPONSES = frozenset({"y", "yes"})


def prompt_for_confirmation(
    question: str,
    *,
    input_func: Callable[[str], str] | None = None,
    print_func: Callable[[str], None] = print,
) -> bool:
    """Ask *question* and return ``True`` only for an explicit affirmative.

    Anything other than ``y``/``yes`` (case-insensitive) is treated as a
    decline, including an empty answer.  EOF and keyboard interrupts at the
    prompt also count as a decline so callers can abort without side effects.
    ``input_func`` mirrors :func:`input` to aid testing.
    """

    prompt_input = input if input_func is None else input_func

    try:
        response = prompt_input(f"{question} (y/N) ")
    except (EOFError, KeyboardInterrupt):
        print_func("")
        return False

    return response.strip().lower() in AFFIRMATIVE_RESPONSES
